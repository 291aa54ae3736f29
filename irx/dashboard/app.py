"""Reasoning Explorer — Streamlit chat UI over a ChatSession."""

import sys
from pathlib import Path

# Add project root to path so 'irx' package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

import asyncio

import streamlit as st

from irx.config import get_config
from irx.errors import CredentialError, IRXError
from irx.session import FOLLOW_UP_PROMPTS, INTERACTION_OPTIONS, ChatSession
from irx.speech import SpeechService

st.set_page_config(page_title="Interactive Reasoning Explorer", layout="wide")
st.title("Interactive Reasoning Explorer")
st.markdown(
    "Ask a question and watch the **Engineer** think it through before answering. "
    "Hard or failing questions are handed to the **Architect**, who reviews the "
    "conversation and can send the solution back for revision."
)

AVATARS = {"user": "🧑", "reasoning": "🤔", "answer": "💡", "system": "⚙️"}


class BrowserPlayer:
    """Keeps generated clips so the page can render them with st.audio."""

    def __init__(self):
        self.clips: list[bytes] = []

    async def __call__(self, audio: bytes) -> None:
        self.clips.append(audio)

    def stop(self) -> None:
        self.clips.clear()


def _get_session() -> ChatSession:
    if "irx_session" not in st.session_state:
        config = get_config()
        player = BrowserPlayer()
        speech = SpeechService(config, player=player) if config.get("speech_enabled", True) else None
        st.session_state["irx_player"] = player
        st.session_state["irx_session"] = ChatSession.restore(config, speech=speech)
    return st.session_state["irx_session"]


def _run(session: ChatSession, coro) -> None:
    """Drive one session call to completion inside a status widget."""
    if session.speech is not None:
        session.speech.mark_user_interaction()
    with st.status("Thinking...", expanded=True) as status_widget:
        session.on_thought = lambda thought: status_widget.write(f"🤔 {thought['text'][:200]}")
        try:
            asyncio.run(coro)
        except CredentialError as e:
            status_widget.update(label="Credential problem", state="error")
            st.session_state["irx_error"] = f"{e.provider}: {e}"
            return
        except IRXError as e:
            status_widget.update(label="Request failed", state="error")
            st.session_state["irx_error"] = str(e)
            return
        finally:
            session.on_thought = None
        status_widget.update(label="Done", state="complete", expanded=False)
    st.session_state.pop("irx_error", None)
    st.rerun()


def _render_sidebar(session: ChatSession) -> None:
    with st.sidebar:
        st.header("API keys")
        reasoner = st.text_input("Reasoning provider (DeepSeek)", type="password", value=session.credentials.get("reasoner") or "")
        reviewer = st.text_input("Architect (Gemini)", type="password", value=session.credentials.get("reviewer") or "")
        speech = st.text_input("Speech (ElevenLabs)", type="password", value=session.credentials.get("speech") or "")
        if st.button("Save keys"):
            try:
                session.update_credentials({"reasoner": reasoner or None, "reviewer": reviewer or None, "speech": speech or None})
            except CredentialError as e:
                st.error(f"{e.provider}: {e}")
            else:
                st.success("Keys saved.")

        if session.speech is not None:
            st.divider()
            session.speech.enabled = st.toggle("Speak answers", value=session.speech.enabled)
            if session.speech.quota_exceeded:
                st.warning("Speech quota exceeded.")

        st.divider()
        st.caption(f"Revision attempt #{session.revision_count}")


def _render_messages(session: ChatSession) -> None:
    for message in session.store:
        kind = message["kind"]
        with st.chat_message("user" if kind == "user" else "assistant", avatar=AVATARS[kind]):
            if kind == "reasoning":
                with st.expander("Reasoning", expanded=False):
                    st.markdown(message["text"])
            elif message.get("marker") == "review":
                if kind == "system":
                    st.markdown("**Architect review**")
                    st.code(message["text"], language="json")
                else:
                    st.markdown(message["text"])
            else:
                st.markdown(message["text"])

    player = st.session_state.get("irx_player")
    if player is not None and player.clips:
        st.audio(player.clips[-1], format="audio/mp3", autoplay=True)


def _render_actions(session: ChatSession) -> None:
    if not session.store.history():
        return

    cols = st.columns(len(INTERACTION_OPTIONS) - 1)
    # Option 1 (follow-up) is the chat input itself.
    if cols[0].button(INTERACTION_OPTIONS[1]):
        _run(session, session.send(FOLLOW_UP_PROMPTS[2]))
    if cols[1].button(INTERACTION_OPTIONS[2]):
        _run(session, session.send(FOLLOW_UP_PROMPTS[3]))
    if cols[2].button(INTERACTION_OPTIONS[3]):
        session.new_topic()
        st.rerun()
    if cols[3].button(INTERACTION_OPTIONS[4]):
        _run(session, session.review())

    if session.escalation_offered and st.button("Escalate to the architect", type="primary"):
        _run(session, session.escalate())

    if session.can_request_revision():
        review = session.last_review
        with st.expander("Improvements requested by the architect", expanded=True):
            for item in review["improvements"]:
                st.markdown(f"- {item}")
        if st.button("Send Back to Engineer", type="primary"):
            _run(session, session.request_revision())


# ---------------------------------------------------------------------------
# Page logic
# ---------------------------------------------------------------------------

session = _get_session()
_render_sidebar(session)
_render_messages(session)

if "irx_error" in st.session_state:
    st.error(st.session_state["irx_error"])

_render_actions(session)

question = st.chat_input("Ask a question...")
if question:
    if not question.strip():
        st.error("Please enter a non-empty question.")
        st.stop()
    _run(session, session.send(question))
