"""LangGraph StateGraph for one conversation turn.

reasoner ──complete──────────────────────────▶ END
   │──timeout──▶ timeout (offer manual escalation) ─▶ END
   │──escalate─▶ architect (reviewer, solve mode) ──▶ END
   │──escalate, no reviewer key─▶ unavailable ──────▶ END
   └──stale (topic reset mid-flight)──────────────▶ END

The reasoner node runs either a normal send (``kind == "send"``) or a
revision round (``kind == "revision"``); routing is identical for both.
"""

import json

from langgraph.graph import END, StateGraph

from irx.state import TurnState


def _route_after_reasoner(state: TurnState) -> str:
    """Conditional edge: decide next step after the reasoner node.

    Priority order:
    1. dropped (result arrived after a topic reset) → end
    2. complete → end
    3. timeout → timeout
    4. escalate + reviewer key available → architect
    5. escalate without a reviewer key → unavailable
    """
    if state.get("status") == "dropped":
        return "end"

    outcome = state.get("outcome") or {}
    status = outcome.get("status")
    if status == "complete":
        return "end"
    if status == "timeout":
        return "timeout"
    if status == "escalate":
        return "architect" if state.get("reviewer_available") else "unavailable"
    return "end"


def build_turn_graph(session):
    """Compile the turn graph with nodes bound to ``session``."""

    async def reasoner_node(state: TurnState) -> dict:
        if state.get("kind") == "revision":
            result = await session.revisions.request_revision(
                state.get("improvements"),
                session.on_thought,
                is_current=lambda: session.generation == state["generation"],
            )
        else:
            result = await session.reasoner.solve(
                state["message"], session.credentials.get("reasoner"), session.store, session.on_thought,
            )

        if session.is_stale(state["generation"]):
            return {"outcome": result, "status": "dropped"}

        if result["status"] == "complete":
            if state.get("kind") != "revision":
                session.store.append("reasoning", result["reasoning"])
                session.store.append("answer", result["content"])
            await session.speak_result(result)
            return {"outcome": result, "status": "answered"}
        return {"outcome": result}

    async def architect_node(state: TurnState) -> dict:
        review = await session.reviewer.review(session.store.snapshot(), session.credentials.get("reviewer"), "solve")
        if session.is_stale(state["generation"]):
            return {"review": review, "status": "dropped"}
        session.record_review(review)
        return {"review": review, "status": "escalated"}

    def timeout_node(state: TurnState) -> dict:
        session.escalation_offered = True
        return {"status": "timeout"}

    def unavailable_node(state: TurnState) -> dict:
        reason = state["outcome"].get("escalation_reason", "escalation requested")
        session.store.append(
            "system",
            f"⚠️ The architect is needed ({reason}) but no reviewer API key is configured.",
            "notice",
        )
        return {"status": "unavailable"}

    workflow = StateGraph(TurnState)

    workflow.add_node("reasoner", reasoner_node)
    workflow.add_node("architect", architect_node)
    workflow.add_node("timeout", timeout_node)
    workflow.add_node("unavailable", unavailable_node)

    workflow.set_entry_point("reasoner")

    workflow.add_conditional_edges(
        "reasoner",
        _route_after_reasoner,
        {
            "end": END,
            "timeout": "timeout",
            "architect": "architect",
            "unavailable": "unavailable",
        },
    )

    workflow.add_edge("architect", END)
    workflow.add_edge("timeout", END)
    workflow.add_edge("unavailable", END)

    return workflow.compile()


def review_to_text(review) -> str:
    """Serialize a review for the log in the architect's own wire shape."""
    data = {
        "criticalIssues": review["critical_issues"],
        "potentialProblems": review["potential_problems"],
        "improvements": review["improvements"],
        "verdict": review["verdict"],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
