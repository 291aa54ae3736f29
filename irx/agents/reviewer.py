"""Reviewer ("architect") — critiques or independently solves the conversation.

Required output schema:
{
  "criticalIssues": ["string"],
  "potentialProblems": ["string"],
  "improvements": ["string"],
  "verdict": "APPROVED | NEEDS_REVISION",
  "solution": "string (solve mode only)"
}

Wire format (Gemini generateContent):
request  {"contents": [{"parts": [{"text"}]}], "generationConfig", "safetySettings"}
response {"candidates": [{"content": {"parts": [{"text"}]}}]}

``review`` never raises: transport, auth and parse failures all come back as
a NEEDS_REVISION result describing what went wrong.
"""

import sys
from collections.abc import Iterable

import httpx

from irx.config import get_config
from irx.errors import IRXError, TransportError
from irx.state import Message, ReviewResult
from irx.utils.code_check import check_code
from irx.utils.context import derive_context, extract_code, format_transcript
from irx.utils.credentials import validate_credential
from irx.utils.parsing import decode_with_repair, post_with_retry
from irx.utils.prompts import review_prompt

VALID_VERDICTS = {"APPROVED", "NEEDS_REVISION"}
VALID_MODES = {"review", "solve"}

LIST_FIELDS = {
    "critical_issues": "criticalIssues",
    "potential_problems": "potentialProblems",
    "improvements": "improvements",
}

# Used when the model omits a field entirely.
MISSING_FIELD_DEFAULTS = {
    "critical_issues": "No critical issues reported: the architect did not list any",
    "potential_problems": "No potential problems reported: the architect did not list any",
    "improvements": "No improvements suggested: the architect did not list any",
}

# Used when the field is present but empty.
EMPTY_FIELD_DEFAULTS = {
    "critical_issues": "No critical issues found: Solution provides accurate and clear explanation",
    "potential_problems": "No significant problems identified: Content is well-structured and accurate",
    "improvements": "Consider adding more interactive examples or visualizations to enhance understanding",
}

INCOMPLETE_SOLUTION_NOTE = (
    "The architect did not return a solution; the latest engineer answer is shown and may be incomplete."
)
NO_SOLUTION_TEXT = "No solution was produced for this question."

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


def is_placeholder_issue(issue: str) -> bool:
    """True for "no critical issues" style entries, which do not count as issues."""
    lowered = issue.strip().lower()
    return lowered.startswith("no critical issue") or lowered in {"none", "n/a", ""}


def failure_review(problem: str, detail: str = "Review system encountered an error") -> dict:
    """Raw (pre-coercion) review describing a failure."""
    return {
        "criticalIssues": [problem],
        "potentialProblems": [detail],
        "improvements": ["Retry the review or manually inspect the solution"],
        "verdict": "NEEDS_REVISION",
    }


def _coerce_list(value, field: str) -> list[str]:
    if value is None:
        return [MISSING_FIELD_DEFAULTS[field]]
    if isinstance(value, (list, tuple)):
        items = [str(item).strip() for item in value if item is not None and str(item).strip()]
    else:
        items = [str(value).strip()] if str(value).strip() else []
    return items or [EMPTY_FIELD_DEFAULTS[field]]


def coerce_review(
    data: dict,
    mode: str = "review",
    history: Iterable[Message] = (),
) -> ReviewResult:
    """Normalize a decoded review (steps 4–7 of the repair pipeline).

    Accepts camelCase or snake_case keys. Lists are coerced and backfilled,
    the verdict is recomputed, and in solve mode a missing solution is taken
    from the latest answer in ``history``.
    """
    result: ReviewResult = {}
    for field, wire_name in LIST_FIELDS.items():
        value = data.get(wire_name, data.get(field))
        result[field] = _coerce_list(value, field)

    if any(not is_placeholder_issue(issue) for issue in result["critical_issues"]):
        result["verdict"] = "NEEDS_REVISION"
    else:
        verdict = str(data.get("verdict", "")).strip().upper()
        result["verdict"] = verdict if verdict in VALID_VERDICTS else "NEEDS_REVISION"

    if mode == "solve":
        solution = data.get("solution")
        if isinstance(solution, str) and solution.strip():
            result["solution"] = solution.strip()
        else:
            latest = None
            for message in history:
                if message.get("kind") == "answer" and (message.get("text") or "").strip():
                    latest = message["text"]
            result["solution"] = latest or NO_SOLUTION_TEXT
            result["potential_problems"].append(INCOMPLETE_SOLUTION_NOTE)

    return result


def apply_code_check(result: ReviewResult, history: Iterable[Message]) -> ReviewResult:
    """Merge the code-quality heuristics into ``result``."""
    history = list(history)
    answers = [m.get("text", "") for m in history if m.get("kind") == "answer"]
    code = extract_code(history)
    if result.get("solution"):
        code = "\n\n".join(c for c in (code, extract_code([{"kind": "answer", "text": result["solution"]}])) if c)
    critical, potential = check_code(code, answers[-1] if answers else "")

    if critical:
        kept = [issue for issue in result["critical_issues"] if not is_placeholder_issue(issue)]
        result["critical_issues"] = kept + [c for c in critical if c not in kept]
        result["verdict"] = "NEEDS_REVISION"
    for problem in potential:
        if problem not in result["potential_problems"]:
            result["potential_problems"].append(problem)
    return result


def parse_review(raw_text: str | None, mode: str = "review", history: Iterable[Message] = ()) -> ReviewResult:
    """Run the full repair pipeline on the architect's raw text."""
    history = list(history)
    decoded = decode_with_repair(
        raw_text,
        default=lambda note: failure_review(
            f"Error parsing review response: {note}. Will need manual review",
            "Unable to automatically analyze the solution",
        ),
    )
    if decoded["status"] != "ok":
        print(f"[IRX] Review response repaired: {'; '.join(decoded['notes'])}", file=sys.stderr)
    result = coerce_review(decoded["value"], mode, history)
    return apply_code_check(result, history)


def _candidate_text(data) -> str | None:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    return text if isinstance(text, str) and text.strip() else None


class ReviewerClient:
    """Client for the architect model."""

    def __init__(self, config: dict | None = None, sleep=None):
        config = config if config is not None else get_config()
        self.model = config.get("reviewer_model", "gemini-2.0-flash-thinking-exp-01-21")
        self.api_url = config.get(
            "reviewer_api_url",
            "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
        ).format(model=self.model)
        self.timeout = config.get("reviewer_timeout", 120)
        self.temperature = config.get("reviewer_temperature", 0.7)
        self.max_output_tokens = config.get("reviewer_max_output_tokens", 1024)
        self.max_retries = config.get("llm_max_retries", 2)
        self._sleep = sleep

    def build_payload(self, messages: list[Message], mode: str) -> dict:
        transcript = format_transcript(derive_context(messages))
        return {
            "contents": [{"parts": [{"text": review_prompt(transcript, mode)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "topK": 40,
                "topP": 0.95,
                "maxOutputTokens": self.max_output_tokens,
            },
            "safetySettings": SAFETY_SETTINGS,
        }

    async def review(self, messages: Iterable[Message], credential: str | None, mode: str = "review") -> ReviewResult:
        """Review (or, in ``solve`` mode, solve) the conversation in ``messages``."""
        history = [dict(m) for m in messages]
        if mode not in VALID_MODES:
            raise ValueError(f"Invalid review mode '{mode}'. Must be one of: {VALID_MODES}")

        try:
            credential = validate_credential(credential, "reviewer")
            raw_text = await self._generate(self.build_payload(history, mode), credential)
        except (IRXError, httpx.HTTPError) as e:
            print(f"[IRX] Error calling architect: {e!r}", file=sys.stderr)
            failed = failure_review(f"Failed to complete automatic review: {e}")
            return apply_code_check(coerce_review(failed, mode, history), history)

        return parse_review(raw_text, mode, history)

    async def _generate(self, payload: dict, credential: str) -> str:
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        try:
            response = await post_with_retry(
                self.api_url,
                headers={"Content-Type": "application/json", "x-goog-api-key": credential},
                payload=payload,
                timeout=self.timeout,
                max_retries=self.max_retries,
                **kwargs,
            )
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Architect API call failed: {e.response.status_code} - {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError("Invalid response format from architect API") from e
        text = _candidate_text(data)
        if text is None:
            raise TransportError("Invalid response format from architect API")
        return text
