"""Conversation types — the shapes passed between the store, clients and graph."""

from typing import Any, Literal, TypedDict

MessageKind = Literal["user", "reasoning", "answer", "system"]

# Category of a system (or reviewer-produced) message. Replaces sniffing
# emoji and keywords out of message text.
Marker = Literal[
    "banner",
    "thinking",
    "retry",
    "escalation",
    "timeout",
    "error",
    "revision",
    "review",
    "notice",
]

MESSAGE_KINDS = ("user", "reasoning", "answer", "system")
TRANSIENT_MARKERS = {"thinking", "retry"}
FAILURE_MARKERS = {"retry", "escalation", "timeout", "error"}


class _MessageBase(TypedDict):
    kind: MessageKind
    text: str


class Message(_MessageBase, total=False):
    marker: Marker


class MessageCounts(TypedDict):
    total: int
    user_count: int
    invalid: int


class MessageContext(TypedDict):
    original_question: str
    last_user_message: Message | None
    relevant_history: list[Message]
    has_failed_attempts: bool
    counts: MessageCounts
    processed_at: str


class EscalationDecision(TypedDict):
    should_escalate: bool
    reason: str
    retry_count: int


class ThoughtUpdate(TypedDict):
    kind: Literal["thinking", "planning", "analyzing", "solving"]
    text: str
    timestamp: float


class ReasonerResult(TypedDict, total=False):
    status: Literal["complete", "timeout", "escalate"]
    content: str
    reasoning: str
    thought_process: list[ThoughtUpdate]
    timeout_reason: str
    escalation_reason: str


class _ReviewBase(TypedDict):
    critical_issues: list[str]
    potential_problems: list[str]
    improvements: list[str]
    verdict: Literal["APPROVED", "NEEDS_REVISION"]


class ReviewResult(_ReviewBase, total=False):
    solution: str


class DecodeResult(TypedDict):
    status: Literal["ok", "repaired", "failed"]
    value: dict[str, Any]
    notes: list[str]


class TurnState(TypedDict, total=False):
    kind: Literal["send", "revision"]
    message: str  # User input for this turn. Immutable after init.
    improvements: list[str] | None  # Revision rounds only.
    generation: int  # Session topic generation captured at turn start.
    reviewer_available: bool
    outcome: ReasonerResult
    review: ReviewResult | None
    status: Literal["in_progress", "answered", "escalated", "timeout", "unavailable", "dropped"]
