"""Context Processor — derives a normalized view of the conversation log.

``derive_context`` is called before every upstream request, so it must stay
pure and cheap: no I/O apart from a diagnostic line when malformed entries
are dropped.
"""

import re
import sys
from collections.abc import Iterable
from datetime import datetime, timezone

from irx.state import FAILURE_MARKERS, MESSAGE_KINDS, Message, MessageContext

FAILURE_SUBSTRINGS = ("error", "fail", "retry", "escalat")

_ROLE_LABELS = {
    "user": "👤 User Question:",
    "answer": "🤖 Assistant Answer:",
    "reasoning": "💭 Assistant Reasoning:",
    "system": "⚙️ System:",
}

_CODE_BLOCK_RE = re.compile(r"```(?:html|javascript|js|typescript|ts)?\n(.*?)```", re.DOTALL)


def is_valid_message(message) -> bool:
    return (
        isinstance(message, dict)
        and message.get("kind") in MESSAGE_KINDS
        and isinstance(message.get("text"), str)
        and bool(message["text"].strip())
    )


def _normalize(message: dict) -> Message:
    normalized: Message = {"kind": message["kind"], "text": message["text"]}
    if message.get("marker"):
        normalized["marker"] = message["marker"]
    return normalized


def _signals_failure(message: Message) -> bool:
    if message["kind"] != "system":
        return False
    marker = message.get("marker")
    if marker is not None:
        return marker in FAILURE_MARKERS
    # Entries rehydrated from older logs carry no marker.
    text = message["text"].lower()
    return any(s in text for s in FAILURE_SUBSTRINGS)


def empty_context() -> MessageContext:
    return {
        "original_question": "",
        "last_user_message": None,
        "relevant_history": [],
        "has_failed_attempts": False,
        "counts": {"total": 0, "user_count": 0, "invalid": 0},
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


def derive_context(messages: Iterable[Message] | None) -> MessageContext:
    """Build a MessageContext from a snapshot of the log.

    Structurally invalid entries (unknown kind, missing or blank text) are
    dropped and counted in ``counts["invalid"]``.
    """
    if not messages:
        return empty_context()

    raw = list(messages)
    valid = [_normalize(m) for m in raw if is_valid_message(m)]
    invalid = len(raw) - len(valid)
    if invalid:
        print(f"[IRX] Dropped {invalid} malformed message(s) while building context.", file=sys.stderr)

    if not valid:
        context = empty_context()
        context["counts"]["invalid"] = invalid
        return context

    user_messages = [m for m in valid if m["kind"] == "user"]
    return {
        "original_question": user_messages[0]["text"] if user_messages else "",
        "last_user_message": user_messages[-1] if user_messages else None,
        "relevant_history": valid,
        "has_failed_attempts": any(_signals_failure(m) for m in valid),
        "counts": {"total": len(valid), "user_count": len(user_messages), "invalid": invalid},
        "processed_at": datetime.now(timezone.utc).isoformat(),
    }


def format_transcript(context: MessageContext) -> str:
    """Render the context as the sectioned transcript both providers receive."""
    last_user = context["last_user_message"]
    current = (last_user["text"] if last_user else "") or context["original_question"] or "No question found"
    sections = [
        "=== ORIGINAL QUESTION ===",
        context["original_question"] or "No original question found",
        "=== CURRENT QUESTION ===",
        current,
        "=== COMPLETE CONVERSATION HISTORY ===",
    ]
    for message in context["relevant_history"]:
        label = _ROLE_LABELS.get(message["kind"], message["kind"].upper() + ":")
        sections.append(f"{label}\n{message['text'].strip()}")
    sections.extend([
        "=== CONVERSATION METADATA ===",
        f"Total Messages: {context['counts']['total']}",
        f"User Messages: {context['counts']['user_count']}",
        f"Failed Attempts: {'Yes' if context['has_failed_attempts'] else 'No'}",
        f"Last Update: {context['processed_at']}",
    ])
    return "\n\n".join(sections)


def extract_code(messages: Iterable[Message]) -> str:
    """Return the fenced html/js/ts code found in answer messages, joined."""
    blocks = []
    for message in messages:
        if not is_valid_message(message) or message["kind"] != "answer":
            continue
        blocks.extend(block.strip() for block in _CODE_BLOCK_RE.findall(message["text"]))
    return "\n\n".join(b for b in blocks if b)
