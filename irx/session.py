"""Chat session — hosts the store, clients and collaborators for one conversation.

The UI layers (CLI and dashboard) talk to the core only through this object:
``send``, ``review``, ``escalate``, ``request_revision``, ``new_topic`` and
the persistence helpers. Re-entrancy is prevented by the caller; the session
holds no lock.
"""

import sys

from irx.agents.reasoner import OnThought, ReasonerClient
from irx.agents.reviewer import VALID_MODES, ReviewerClient
from irx.config import get_config
from irx.errors import CredentialError
from irx.graph import build_turn_graph, review_to_text
from irx.revision import RevisionController
from irx.speech import SpeechService
from irx.state import ReasonerResult, ReviewResult, TurnState
from irx.store import MessageStore
from irx.utils.credentials import (
    PROVIDERS,
    CredentialCache,
    load_env_credentials,
    validate_credential,
)
from irx.utils.persistence import (
    clear_history,
    load_credentials,
    load_history,
    save_credentials,
    save_history,
)
from irx.utils.validator import validate_message

INTERACTION_OPTIONS = [
    "Ask follow-up question",
    "Explain reasoning in more detail",
    "Show me examples",
    "Start new topic",
    "Let architect review the solution",
]

FOLLOW_UP_PROMPTS = {
    2: "Explain the reasoning in more detail",
    3: "Show examples to support this reasoning",
}


class ChatSession:
    def __init__(
        self,
        config: dict | None = None,
        credentials: dict | None = None,
        store: MessageStore | None = None,
        reasoner: ReasonerClient | None = None,
        reviewer: ReviewerClient | None = None,
        speech: SpeechService | None = None,
        persist: bool = True,
    ):
        self.config = config if config is not None else get_config()
        self.cache = CredentialCache(self.config.get("credential_cache_ttl"), self.config.get("credential_cache_size"))
        self.credentials: dict[str, str | None] = {provider: None for provider in PROVIDERS}
        self.credentials.update(credentials or {})
        self.store = store if store is not None else MessageStore(self.config.get("banner"))
        self.reasoner = reasoner or ReasonerClient(self.config, cache=self.cache)
        self.reviewer = reviewer or ReviewerClient(self.config)
        self.speech = speech
        self.revisions = RevisionController(self.store, self.reasoner, self.credentials)
        self.persist = persist
        self.generation = 0
        self.escalation_offered = False
        self.last_review: ReviewResult | None = None
        self.on_thought: OnThought | None = None
        self.graph = build_turn_graph(self)

    @classmethod
    def restore(cls, config: dict | None = None, **kwargs) -> "ChatSession":
        """Rehydrate a session from saved history and credentials.

        Stored credentials win over environment variables. An unreadable
        credential file is reported and the environment is used instead.
        """
        config = config if config is not None else get_config()
        credentials = load_env_credentials()
        try:
            stored = load_credentials(config.get("credentials_path"))
        except CredentialError as e:
            print(f"[IRX] Ignoring stored credentials: {e}", file=sys.stderr)
            stored = None
        if stored:
            credentials.update({k: v for k, v in stored.items() if v})
        credentials.update(kwargs.pop("credentials", None) or {})

        store = MessageStore(config.get("banner"), load_history(config.get("history_path")))
        return cls(config=config, credentials=credentials, store=store, **kwargs)

    # --- credentials ---

    def update_credentials(self, credentials: dict[str, str | None]) -> None:
        """Validate, store and apply new provider credentials."""
        merged = {**self.credentials, **credentials}
        validated = save_credentials(merged, self.config.get("credentials_path"), cache=self.cache)
        # Updated in place: the revision controller holds this dict.
        self.credentials.update(validated)

    # --- orchestration ---

    def is_stale(self, generation: int) -> bool:
        if generation == self.generation:
            return False
        print("[IRX] Dropping a result that arrived after the topic was reset.", file=sys.stderr)
        self.store.settle_status()
        return True

    def _turn_state(self, **fields) -> TurnState:
        state: TurnState = {
            "generation": self.generation,
            "reviewer_available": bool(self.credentials.get("reviewer")),
            "status": "in_progress",
            "review": None,
        }
        state.update(fields)
        return state

    async def send(self, message: str) -> TurnState:
        """Append the user's message and run one turn through the graph.

        Credential problems are raised before anything is appended.
        """
        message = validate_message(message)
        validate_credential(self.credentials.get("reasoner"), "reasoner", self.cache)

        self.escalation_offered = False
        self.store.append("user", message)
        try:
            return await self.graph.ainvoke(self._turn_state(kind="send", message=message))
        finally:
            self.save()

    async def request_revision(self, improvements: list[str] | None = None) -> TurnState:
        """Send the latest solution back to the engineer.

        Without explicit improvements the last review's improvements are used.
        """
        if improvements is None and self.last_review is not None:
            improvements = self.last_review["improvements"]
        validate_credential(self.credentials.get("reasoner"), "reasoner", self.cache)

        self.escalation_offered = False
        try:
            return await self.graph.ainvoke(
                self._turn_state(kind="revision", message="", improvements=improvements)
            )
        finally:
            self.save()

    async def escalate(self, mode: str = "solve") -> ReviewResult:
        """Hand the conversation to the architect (manual escalation)."""
        if mode not in VALID_MODES:
            raise ValueError(f"Invalid review mode '{mode}'. Must be one of: {VALID_MODES}")
        generation = self.generation
        if mode == "review":
            self.store.append("system", "🏗️ Architect review requested.", "notice")
        else:
            self.store.append("system", "🏗️ Escalated to the architect.", "escalation")
        review = await self.reviewer.review(self.store.snapshot(), self.credentials.get("reviewer"), mode)
        if not self.is_stale(generation):
            self.record_review(review)
        self.save()
        return review

    async def review(self) -> ReviewResult:
        return await self.escalate(mode="review")

    def record_review(self, review: ReviewResult) -> None:
        self.last_review = review
        self.escalation_offered = False
        self.store.append("system", review_to_text(review), "review")
        if review.get("solution"):
            self.store.append("answer", review["solution"], "review")

    async def speak_result(self, result: ReasonerResult) -> None:
        if self.speech is None or not self.credentials.get("speech"):
            return
        await self.speech.speak(result["reasoning"], self.credentials["speech"])
        await self.speech.speak(result["content"], self.credentials["speech"])

    @property
    def revision_count(self) -> int:
        return self.revisions.revision_count

    def can_request_revision(self) -> bool:
        return self.last_review is not None and self.last_review["verdict"] == "NEEDS_REVISION"

    # --- lifecycle ---

    def new_topic(self) -> None:
        """Truncate the log to the banner and reset revision state."""
        if self.speech is not None:
            self.speech.stop()
        self.store.reset()
        self.revisions.reset()
        self.generation += 1
        self.last_review = None
        self.escalation_offered = False
        if self.persist:
            clear_history(self.config.get("history_path"))

    def save(self) -> None:
        if self.persist:
            save_history(
                self.store.history(),
                self.config.get("history_path"),
                self.config.get("history_max_entries", 5),
            )
