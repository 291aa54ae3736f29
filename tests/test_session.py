"""End-to-end tests for irx.session.ChatSession with mocked providers."""

import asyncio
import json

import pytest
import respx

from conftest import (
    REASONER_KEY,
    REASONER_URL,
    REVIEWER_KEY,
    REVIEWER_URL,
    chat_response,
    review_response,
)
from irx.errors import CredentialMissing
from irx.session import ChatSession
from irx.utils.persistence import load_history, save_credentials, save_history

NEEDS_REVISION = {
    "criticalIssues": ["The answer skips the carry step"],
    "potentialProblems": ["No worked example"],
    "improvements": ["Show the work"],
    "verdict": "NEEDS_REVISION",
}


def _session(config, reviewer=False, **kwargs):
    credentials = {"reasoner": REASONER_KEY}
    if reviewer:
        credentials["reviewer"] = REVIEWER_KEY
    kwargs.setdefault("persist", False)
    return ChatSession(config=config, credentials=credentials, **kwargs)


class TestSend:
    @pytest.mark.asyncio
    async def test_answered_turn(self, test_config):
        session = _session(test_config)
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(REASONER_URL).mock(side_effect=[
                chat_response("The user asks for a simple sum."),
                chat_response("2 + 2 = 4"),
            ])
            state = await session.send("What is 2+2?")

        assert state["status"] == "answered"
        assert state["outcome"]["content"] == "2 + 2 = 4"
        assert [m["kind"] for m in session.store] == ["system", "user", "reasoning", "answer"]
        assert session.store[-1]["text"] == "2 + 2 = 4"

    @pytest.mark.asyncio
    async def test_history_saved_after_turn(self, test_config):
        session = _session(test_config, persist=True)
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(REASONER_URL).mock(side_effect=[chat_response("Sum."), chat_response("4")])
            await session.send("What is 2+2?")

        saved = load_history(test_config["history_path"])
        assert [m["kind"] for m in saved] == ["user", "reasoning", "answer"]

    @pytest.mark.asyncio
    async def test_missing_key_raises_before_append(self, test_config):
        session = ChatSession(config=test_config, persist=False)
        with pytest.raises(CredentialMissing):
            await session.send("What is 2+2?")
        assert len(session.store) == 1

    @pytest.mark.asyncio
    async def test_blank_message_rejected(self, test_config):
        session = _session(test_config)
        with pytest.raises(ValueError):
            await session.send("   ")
        assert len(session.store) == 1


class TestAutomaticEscalation:
    @pytest.mark.asyncio
    async def test_complex_question_goes_to_architect(self, test_config):
        session = _session(test_config, reviewer=True)
        with respx.mock(assert_all_called=False) as respx_mock:
            reasoner = respx_mock.post(REASONER_URL).mock(return_value=chat_response("x"))
            reviewer = respx_mock.post(REVIEWER_URL).mock(
                return_value=review_response({**NEEDS_REVISION, "solution": "Use OAuth2 with PKCE."})
            )
            state = await session.send("Design an authentication system")

        assert reasoner.call_count == 0
        assert reviewer.call_count == 1
        assert state["status"] == "escalated"
        assert session.last_review["verdict"] == "NEEDS_REVISION"
        assert session.store[-2]["marker"] == "review"
        assert json.loads(session.store[-2]["text"])["criticalIssues"] == ["The answer skips the carry step"]
        assert session.store[-1] == {"kind": "answer", "text": "Use OAuth2 with PKCE.", "marker": "review"}
        assert session.can_request_revision()

    @pytest.mark.asyncio
    async def test_escalation_without_reviewer_key(self, test_config):
        session = _session(test_config)
        state = await session.send("Design an authentication system")
        assert state["status"] == "unavailable"
        assert session.store[-1]["marker"] == "notice"
        assert "no reviewer API key" in session.store[-1]["text"]


class TestTimeoutAndManualEscalation:
    @pytest.mark.asyncio
    async def test_timeout_offers_escalation(self, test_config):
        session = _session({**test_config, "total_timeout": 0.05}, reviewer=True)

        async def slow_chat(*args, **kwargs):
            await asyncio.sleep(5)

        session.reasoner._chat = slow_chat
        state = await session.send("What is 2+2?")

        assert state["status"] == "timeout"
        assert session.escalation_offered is True
        assert session.store[-1]["marker"] == "timeout"

        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(REVIEWER_URL).mock(return_value=review_response({**NEEDS_REVISION, "solution": "4"}))
            review = await session.escalate()

        assert review["solution"] == "4"
        assert session.escalation_offered is False
        assert session.store[-3] == {"kind": "system", "text": "🏗️ Escalated to the architect.", "marker": "escalation"}
        assert session.store[-1]["text"] == "4"

    @pytest.mark.asyncio
    async def test_invalid_mode_rejected_before_append(self, test_config):
        session = _session(test_config, reviewer=True)
        with pytest.raises(ValueError):
            await session.escalate("grade")
        assert len(session.store) == 1


class TestReviewAndRevision:
    @pytest.mark.asyncio
    async def test_review_then_send_back_to_engineer(self, test_config):
        session = _session(test_config, reviewer=True)
        with respx.mock(assert_all_called=True) as respx_mock:
            reasoner = respx_mock.post(REASONER_URL).mock(side_effect=[
                chat_response("Simple sum."),
                chat_response("2 + 2 = 5"),
                chat_response("Re-check the sum."),
                chat_response("2 + 2 = 4"),
            ])
            respx_mock.post(REVIEWER_URL).mock(return_value=review_response(NEEDS_REVISION))

            await session.send("What is 2+2?")
            review = await session.review()
            assert "solution" not in review
            assert session.store[-1]["marker"] == "review"
            assert session.revision_count == 1

            state = await session.request_revision()

        assert state["status"] == "answered"
        assert session.revision_count == 2
        assert session.store[-3]["text"] == "🔄 Revision Attempt #1"
        assert session.store[-1] == {"kind": "answer", "text": "2 + 2 = 4"}

        revision_request = json.loads(reasoner.calls[2].request.content)
        transcript = revision_request["messages"][1]["content"]
        assert "- Show the work" in transcript
        assert "Previous solution:\n2 + 2 = 5" in transcript

    @pytest.mark.asyncio
    async def test_approved_review_offers_no_revision(self, test_config):
        session = _session(test_config, reviewer=True)
        approved = {**NEEDS_REVISION, "criticalIssues": ["No critical issues found: correct"], "verdict": "APPROVED"}
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(REVIEWER_URL).mock(return_value=review_response(approved))
            await session.review()
        assert session.last_review["verdict"] == "APPROVED"
        assert not session.can_request_revision()


class TestNewTopic:
    @pytest.mark.asyncio
    async def test_late_result_dropped(self, test_config):
        session = _session(test_config)

        async def solve_across_reset(message, credential, store, on_thought=None, precheck=True):
            session.new_topic()
            return {"status": "complete", "content": "late", "reasoning": "late", "thought_process": []}

        session.reasoner.solve = solve_across_reset
        state = await session.send("What is 2+2?")

        assert state["status"] == "dropped"
        assert len(session.store) == 1
        assert session.store[0]["marker"] == "banner"

    @pytest.mark.asyncio
    async def test_late_revision_dropped(self, test_config):
        session = _session(test_config)
        session.store.append("user", "What is 2+2?")
        session.store.append("reasoning", "Simple addition.")
        session.store.append("answer", "2 + 2 = 5")
        session.revisions.revision_count = 2
        solve = session.reasoner.solve

        async def solve_across_reset(*args, **kwargs):
            result = await solve(*args, **kwargs)
            session.new_topic()
            return result

        session.reasoner.solve = solve_across_reset
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post(REASONER_URL).mock(side_effect=[chat_response("think"), chat_response("4")])
            state = await session.request_revision(["add tests"])

        assert state["status"] == "dropped"
        assert session.revision_count == 1
        assert len(session.store) == 1
        assert session.store[0]["marker"] == "banner"

    def test_resets_state(self, test_config):
        session = _session(test_config)
        session.store.append("user", "What is 2+2?")
        session.revisions.revision_count = 3
        session.last_review = dict(NEEDS_REVISION)
        session.escalation_offered = True

        session.new_topic()

        assert len(session.store) == 1
        assert session.revision_count == 1
        assert session.generation == 1
        assert session.last_review is None
        assert session.escalation_offered is False

    def test_clears_saved_history(self, test_config):
        session = _session(test_config, persist=True)
        session.store.append("user", "What is 2+2?")
        session.save()
        session.new_topic()
        assert load_history(test_config["history_path"]) == []


class TestCredentialsAndRestore:
    def test_update_credentials_shared_with_revisions(self, test_config):
        session = _session(test_config)
        session.update_credentials({"reviewer": REVIEWER_KEY})
        assert session.credentials["reviewer"] == REVIEWER_KEY
        assert session.revisions.credentials is session.credentials

    def test_restore_from_disk(self, test_config, monkeypatch):
        for var in ("DEEPSEEK_API_KEY", "ELEVENLABS_API_KEY", "GEMINI_API_KEY"):
            monkeypatch.delenv(var, raising=False)
        save_history([{"kind": "user", "text": "What is 2+2?"}, {"kind": "answer", "text": "4"}], test_config["history_path"])
        save_credentials({"reasoner": REASONER_KEY}, test_config["credentials_path"])

        session = ChatSession.restore(test_config, persist=False)

        assert session.credentials["reasoner"] == REASONER_KEY
        assert session.credentials["reviewer"] is None
        assert [m["kind"] for m in session.store] == ["system", "user", "answer"]
        assert session.store[0]["text"] == test_config["banner"]

    def test_restore_falls_back_to_env(self, test_config, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", REASONER_KEY)
        session = ChatSession.restore(test_config, persist=False)
        assert session.credentials["reasoner"] == REASONER_KEY
        assert len(session.store) == 1

    def test_restore_survives_corrupt_history(self, test_config, monkeypatch):
        monkeypatch.setenv("DEEPSEEK_API_KEY", REASONER_KEY)
        with open(test_config["history_path"], "w", encoding="utf-8") as f:
            f.write("{not json")

        session = ChatSession.restore(test_config, persist=False)

        assert len(session.store) == 1
        assert session.store[0]["marker"] == "banner"

    def test_restore_ignores_invalid_stored_key(self, test_config, monkeypatch, capsys):
        monkeypatch.setenv("DEEPSEEK_API_KEY", REASONER_KEY)
        with open(test_config["credentials_path"], "w", encoding="utf-8") as f:
            json.dump({"reasoner": "bad key"}, f)

        session = ChatSession.restore(test_config, persist=False)

        assert session.credentials["reasoner"] == REASONER_KEY
        assert "[IRX] Ignoring stored credentials" in capsys.readouterr().err
