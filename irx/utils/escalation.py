"""Escalation Policy — decides when the primary reasoner hands off to the architect.

Decisions are produced fresh per attempt and never persisted.
"""

import random
import re
from collections.abc import Iterable

from irx.config import get_config
from irx.state import EscalationDecision, Message

# Questions matching any of these go straight to the architect.
COMPLEX_PATTERNS = [
    re.compile(r"\b(implement|create|build|design)\b.*\b(system|architecture|framework)\b", re.IGNORECASE),
    re.compile(r"\b(optimize|improve|enhance)\b.*\b(performance|efficiency|scalability)\b", re.IGNORECASE),
    re.compile(r"\b(debug|fix|solve)\b.*\b(complex|difficult|challenging)\b", re.IGNORECASE),
    re.compile(r"\b(3D|three\.js|webgl|canvas|graphics)\b", re.IGNORECASE),
    re.compile(r"\b(algorithm|data structure)\b.*\b(implementation|design)\b", re.IGNORECASE),
    re.compile(r"\b(security|authentication|authorization|auth)\b", re.IGNORECASE),
    re.compile(r"\b(distributed|concurrent|concurrency|parallel)\b", re.IGNORECASE),
]

FAILED_ANSWER_MARKERS = ("error", "failed", "unable")
REPEATED_FAILURE_THRESHOLD = 2


def is_complex(message: str) -> bool:
    return any(pattern.search(message or "") for pattern in COMPLEX_PATTERNS)


def count_failed_answers(history: Iterable[Message]) -> int:
    count = 0
    for message in history:
        if message.get("kind") != "answer":
            continue
        text = (message.get("text") or "").lower()
        if any(marker in text for marker in FAILED_ANSWER_MARKERS):
            count += 1
    return count


class EscalationPolicy:
    """Classifies failures into retry / escalate and computes backoff delays."""

    def __init__(self, config: dict | None = None, rng: random.Random | None = None):
        config = config if config is not None else get_config()
        self.max_retries = config.get("escalation_max_retries", 3)
        self.base_delay = float(config.get("retry_base_delay", 5))
        self.jitter_max = float(config.get("retry_jitter_max", 1))
        self.max_delay = float(config.get("retry_max_delay", 120))
        self._rng = rng or random.Random()

    def decide(
        self,
        message: str,
        error_kind: str | None = None,
        retry_count: int = 0,
        history: Iterable[Message] = (),
        check_complexity: bool = True,
    ) -> EscalationDecision:
        """Return whether to escalate for this attempt.

        Priority order:
        1. complexity pattern in the question → escalate (unless
           ``check_complexity`` is False)
        2. two or more failed answers in the history → escalate
        3. error with retries left → retry (``retry_count`` + 1)
        4. error with retries exhausted → escalate naming the error
        5. otherwise → no escalation
        """
        if check_complexity and is_complex(message):
            return {
                "should_escalate": True,
                "reason": "Question complexity requires architect expertise",
                "retry_count": retry_count,
            }

        if count_failed_answers(history) >= REPEATED_FAILURE_THRESHOLD:
            return {
                "should_escalate": True,
                "reason": "Repeated failure: multiple failed attempts to answer the question",
                "retry_count": retry_count,
            }

        if error_kind:
            if retry_count < self.max_retries:
                return {
                    "should_escalate": False,
                    "reason": "Attempting retry with the primary reasoner",
                    "retry_count": retry_count + 1,
                }
            return {
                "should_escalate": True,
                "reason": f"Primary reasoner failed after {retry_count} retries: {error_kind}",
                "retry_count": retry_count,
            }

        return {"should_escalate": False, "reason": "", "retry_count": retry_count}

    def retry_delay(self, retry_count: int) -> float:
        """Exponential backoff with jitter, capped at ``max_delay`` seconds."""
        exponential = self.base_delay * (2 ** max(retry_count, 0))
        jitter = self._rng.random() * self.jitter_max
        return min(exponential + jitter, self.max_delay)
