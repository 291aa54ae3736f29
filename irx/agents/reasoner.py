"""Primary Reasoner — drives the two-phase (thinking → solution) exchange.

Wire format (OpenAI-compatible chat completions):
request  {"model", "messages": [{"role", "content"}], "temperature", "max_tokens", "stream"}
response {"choices": [{"message": {"content"}}]}

Both phases send the formatted conversation transcript and differ only in
the system instruction. Each phase runs inside a retry loop whose retry and
wait decisions come from the Escalation Policy; a single deadline bounds the
whole exchange.
"""

import asyncio
import json
import sys
import time
from collections.abc import Callable

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt

from irx.config import get_config
from irx.errors import (
    CredentialRejected,
    EmptyResponse,
    Escalated,
    IRXError,
    ParseError,
    TransportError,
)
from irx.state import Marker, Message, ReasonerResult, ThoughtUpdate
from irx.store import MessageStore, is_transient, make_message
from irx.utils.context import derive_context, format_transcript
from irx.utils.credentials import CredentialCache, validate_credential
from irx.utils.escalation import EscalationPolicy
from irx.utils.parsing import decode_with_repair, strip_fences
from irx.utils.prompts import THINKING_PROMPT, solution_prompt

THOUGHT_KINDS = {"thinking", "planning", "analyzing", "solving"}
DEFAULT_THOUGHT = "Still analyzing the question..."
RETRYABLE_ERRORS = (TransportError, EmptyResponse, ParseError)

OnThought = Callable[[ThoughtUpdate], None]


def make_thought(kind: str, text: str) -> ThoughtUpdate:
    return {"kind": kind if kind in THOUGHT_KINDS else "thinking", "text": text, "timestamp": time.time()}


def parse_thought(text: str | None) -> ThoughtUpdate:
    """Turn the thinking-phase output into a thought unit.

    Plain text is the thought itself. A JSON object must carry a string
    ``content`` (and optionally a ``type``); anything unusable yields the
    default "still analyzing" thought instead of failing the call.
    """
    cleaned = strip_fences(text or "")
    if not cleaned:
        return make_thought("thinking", DEFAULT_THOUGHT)
    if not cleaned.startswith("{"):
        return make_thought("thinking", cleaned)

    decoded = decode_with_repair(cleaned, default=lambda note: {})
    content = decoded["value"].get("content")
    if decoded["status"] == "failed" or not isinstance(content, str) or not content.strip():
        print(f"[IRX] Unusable thinking output ({'; '.join(decoded['notes']) or 'no content'}).", file=sys.stderr)
        return make_thought("thinking", DEFAULT_THOUGHT)
    return make_thought(str(decoded["value"].get("type", "thinking")), content.strip())


def _message_content(data) -> str | None:
    try:
        content = data["choices"][0]["message"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


def _parse_sse_line(line: str) -> str | None:
    """Return the content carried by one server-sent-event line, if any."""
    line = line.strip()
    if not line or line.startswith(":") or not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if payload == "[DONE]":
        return None
    try:
        data = json.loads(payload)
        choice = data["choices"][0]
    except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
        print(f"[IRX] Skipping malformed stream chunk: {e!r}", file=sys.stderr)
        return None
    delta = choice.get("delta") or choice.get("message") or {}
    content = delta.get("content")
    return content if isinstance(content, str) else None


class ReasonerClient:
    """Client for the primary reasoning model."""

    def __init__(
        self,
        config: dict | None = None,
        policy: EscalationPolicy | None = None,
        cache: CredentialCache | None = None,
        sleep=asyncio.sleep,
    ):
        config = config if config is not None else get_config()
        self.model = config.get("reasoner_model", "deepseek-chat")
        self.api_url = config.get("reasoner_api_url", "https://api.deepseek.com/v1/chat/completions")
        self.temperature = config.get("reasoner_temperature", 0.7)
        self.thinking_max_tokens = config.get("thinking_max_tokens", 2000)
        self.solution_max_tokens = config.get("solution_max_tokens", 4000)
        self.request_timeout = config.get("request_timeout", 120)
        self.total_timeout = config.get("total_timeout", 180)
        self.stream = config.get("reasoner_stream", False)
        self.auto_escalation = config.get("auto_escalation_enabled", True)
        self.policy = policy or EscalationPolicy(config)
        self.cache = cache if cache is not None else CredentialCache()
        self.partial_response: dict | None = None
        self._sleep = sleep

    async def solve(
        self,
        message: str,
        credential: str | None,
        store: MessageStore,
        on_thought: OnThought | None = None,
        precheck: bool = True,
    ) -> ReasonerResult:
        """Run the thinking and solution phases for ``message``.

        With ``precheck`` the Escalation Policy may hand the question to the
        architect before any network call (complexity, repeated failure).

        Returns a ``complete``, ``timeout`` or ``escalate`` result. Credential
        errors are raised before any network call; retry exhaustion without
        an escalation decision re-raises the last error. The trailing status
        line in ``store`` is replaced as phases progress and settled into a
        permanent message on every terminal outcome except ``complete``.
        """
        credential = validate_credential(credential, "reasoner", self.cache)
        history = self._working_history(store, message)

        if precheck and self.auto_escalation:
            decision = self.policy.decide(message, None, 0, history)
            if decision["should_escalate"]:
                return self._escalate(store, decision["reason"])

        thoughts: list[ThoughtUpdate] = []

        def emit(thought: ThoughtUpdate, marker: Marker = "thinking", record: bool = True) -> None:
            if record:
                thoughts.append(thought)
            store.show_status(f"🤔 {thought['text']}", marker)
            if on_thought is not None:
                on_thought(thought)

        self.partial_response = None
        try:
            content, reasoning = await asyncio.wait_for(
                self._exchange(message, credential, history, emit, precheck),
                timeout=self.total_timeout,
            )
        except asyncio.TimeoutError:
            reason = self._timeout_reason()
            print(f"[IRX] {reason}", file=sys.stderr)
            store.settle_status(f"⏱️ Timeout: {reason} You can escalate to the architect.", "timeout")
            return {"status": "timeout", "timeout_reason": reason}
        except Escalated as e:
            return self._escalate(store, e.reason)
        except IRXError as e:
            store.settle_status(f"❌ Error: {e}", "error")
            raise

        store.settle_status()
        return {
            "status": "complete",
            "content": content,
            "reasoning": reasoning,
            "thought_process": thoughts,
        }

    @staticmethod
    def _working_history(store: MessageStore, message: str) -> list[Message]:
        history = [m for m in store.snapshot() if not is_transient(m)]
        question = make_message("user", message)
        if not history or history[-1] != question:
            history.append(question)
        return history

    @staticmethod
    def _escalate(store: MessageStore, reason: str) -> ReasonerResult:
        print(f"[IRX] Escalating to architect: {reason}", file=sys.stderr)
        store.settle_status(f"🏗️ Escalating to architect: {reason}", "escalation")
        return {"status": "escalate", "escalation_reason": reason}

    def _timeout_reason(self) -> str:
        reason = f"The primary reasoner did not finish within {self.total_timeout} seconds."
        partial = self.partial_response
        if partial and partial["content"]:
            reason += f" {len(partial['content'])} characters of a partial answer were captured."
        return reason

    async def _exchange(
        self, message: str, credential: str, history: list[Message], emit, precheck: bool = True,
    ) -> tuple[str, str]:
        emit(make_thought("analyzing", "Analyzing your question..."))
        transcript = format_transcript(derive_context(history))
        thinking_text = await self._run_phase(
            "thinking",
            lambda: self._chat(credential, THINKING_PROMPT, transcript, self.thinking_max_tokens),
            message,
            history,
            emit,
            precheck,
        )
        thought = parse_thought(thinking_text)
        emit(thought)

        working = history + [make_message("reasoning", thought["text"])]
        emit(make_thought("solving", "Generating solution..."))
        transcript = format_transcript(derive_context(working))
        system = solution_prompt(message)

        async def solution_call() -> str:
            content = await self._chat(
                credential, system, transcript, self.solution_max_tokens, stream=self.stream, emit=emit,
            )
            if not content or not content.strip():
                raise EmptyResponse("Empty response from the primary reasoner")
            return content

        content = await self._run_phase("solution", solution_call, message, working, emit, precheck)
        return content, thought["text"]

    async def _run_phase(
        self, phase: str, call, message: str, history: list[Message], emit, precheck: bool = True,
    ):
        """Run one phase with policy-driven retries.

        The Escalation Policy decides after each failure: retry (after
        ``retry_delay``), escalate (raises Escalated), or, when auto
        escalation is off, give up and re-raise.

        Without ``precheck`` the complexity rule is not applied, so a revision
        prompt quoting a complex question still gets its retries. With auto
        escalation off only the retry budget counts.
        """
        retry_count = 0
        escalation_reason = None

        def should_retry(exc: BaseException) -> bool:
            nonlocal retry_count, escalation_reason
            if not isinstance(exc, RETRYABLE_ERRORS):
                return False
            decision = self.policy.decide(
                message,
                f"{type(exc).__name__}: {exc}",
                retry_count,
                history if self.auto_escalation else (),
                check_complexity=precheck and self.auto_escalation,
            )
            if decision["should_escalate"]:
                escalation_reason = decision["reason"] if self.auto_escalation else None
                return False
            retry_count = decision["retry_count"]
            return True

        def wait(retry_state) -> float:
            return self.policy.retry_delay(retry_count)

        def before_sleep(retry_state) -> None:
            print(
                f"[IRX] {phase} phase failed: {retry_state.outcome.exception()!r}. "
                f"Retrying in {retry_state.next_action.sleep:.1f}s "
                f"(retry {retry_count}/{self.policy.max_retries})...",
                file=sys.stderr,
            )
            emit(
                make_thought("thinking", f"Retrying... Attempt {retry_count + 1}/{self.policy.max_retries + 1}"),
                marker="retry",
                record=False,
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.policy.max_retries + 2),
                wait=wait,
                retry=retry_if_exception(should_retry),
                reraise=True,
                sleep=self._sleep,
                before_sleep=before_sleep,
            ):
                with attempt:
                    return await call()
        except RETRYABLE_ERRORS as e:
            if escalation_reason:
                raise Escalated(escalation_reason) from e
            raise

    async def _chat(
        self,
        credential: str,
        system_prompt: str,
        transcript: str,
        max_tokens: int,
        stream: bool = False,
        emit=None,
    ) -> str | None:
        """POST one chat completion and return the message content (may be None)."""
        headers = {
            "Authorization": f"Bearer {credential}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": transcript},
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }
        try:
            async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                if stream:
                    return await self._read_stream(client, headers, payload, credential, emit)
                response = await client.post(self.api_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise TransportError(f"Request timed out: {e!r}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e!r}") from e

        self._check_status(response, credential)
        try:
            data = response.json()
        except ValueError as e:
            raise ParseError("Malformed JSON in API response") from e
        return _message_content(data)

    async def _read_stream(self, client: httpx.AsyncClient, headers, payload, credential, emit) -> str:
        async with client.stream("POST", self.api_url, headers=headers, json=payload) as response:
            if response.status_code >= 400:
                await response.aread()
                self._check_status(response, credential)

            partial = {"content": "", "timestamp": time.time(), "is_complete": False}
            self.partial_response = partial
            async for line in response.aiter_lines():
                chunk = _parse_sse_line(line)
                if not chunk:
                    continue
                partial["content"] += chunk
                partial["timestamp"] = time.time()
                if emit is not None:
                    emit(make_thought("solving", partial["content"]), record=False)
            partial["is_complete"] = True
            return partial["content"]

    def _check_status(self, response: httpx.Response, credential: str) -> None:
        if response.status_code in (401, 403):
            self.cache.set(credential, False)
            raise CredentialRejected(
                f"Invalid or expired reasoning provider API key ({response.status_code}). "
                "Please check it in the settings."
            )
        if response.status_code >= 400:
            raise TransportError(
                f"API Error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
