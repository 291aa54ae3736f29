"""Revision Loop — sends a prior solution back to the engineer with requested improvements."""

import sys
from collections.abc import Callable

from irx.agents.reasoner import OnThought, ReasonerClient
from irx.state import ReasonerResult
from irx.store import MessageStore
from irx.utils.context import derive_context
from irx.utils.prompts import revision_prompt
from irx.utils.validator import validate_improvements


class RevisionController:
    """Owns the revision counter and drives revision rounds through the reasoner.

    ``revision_count`` starts at 1 and increments once per completed round.
    """

    def __init__(self, store: MessageStore, reasoner: ReasonerClient, credentials: dict):
        self.store = store
        self.reasoner = reasoner
        self.credentials = credentials
        self.revision_count = 1

    def reset(self) -> None:
        self.revision_count = 1

    def build_prompt(self, improvements: list[str]) -> str:
        context = derive_context(self.store.snapshot())
        prior = self.store.latest("answer", exclude_marker="review")
        return revision_prompt(context["original_question"], prior["text"] if prior else "", improvements)

    async def request_revision(
        self,
        improvements: list[str] | None = None,
        on_thought: OnThought | None = None,
        is_current: Callable[[], bool] | None = None,
    ) -> ReasonerResult:
        """Run one revision round.

        On ``complete`` appends a "Revision Attempt #N" label, the new
        reasoning and the new answer, then increments the counter. Timeout
        and escalation results are returned untouched for the caller to
        offer the architect; the counter does not move. When ``is_current``
        reports the topic was reset mid-round, nothing is appended and the
        counter stays put.
        """
        improvements = validate_improvements(improvements)
        prompt = self.build_prompt(improvements)

        result = await self.reasoner.solve(
            prompt, self.credentials.get("reasoner"), self.store, on_thought, precheck=False,
        )
        if result["status"] != "complete":
            print(
                f"[IRX] Revision #{self.revision_count} ended with status '{result['status']}'.",
                file=sys.stderr,
            )
            return result
        if is_current is not None and not is_current():
            return result

        self.store.append("system", f"🔄 Revision Attempt #{self.revision_count}", "revision")
        self.store.append("reasoning", result["reasoning"])
        self.store.append("answer", result["content"])
        self.revision_count += 1
        return result
