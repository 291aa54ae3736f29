"""Entry point: terminal chat loop over a ChatSession."""

import asyncio
import sys

from irx.config import get_config
from irx.errors import CredentialError, IRXError
from irx.session import FOLLOW_UP_PROMPTS, INTERACTION_OPTIONS, ChatSession
from irx.speech import SpeechService
from irx.state import ThoughtUpdate, TurnState

ROLE_LABELS = {
    "user": "You",
    "reasoning": "Reasoning",
    "answer": "Answer",
    "system": "System",
}

EXTRA_LABELS = {
    "escalate": "Escalate to the architect",
    "revise": "Send back to engineer",
}


def _print_thought(thought: ThoughtUpdate) -> None:
    print(f"  … {thought['text'][:120]}", file=sys.stderr)


def _print_new_messages(session: ChatSession, start: int) -> None:
    for message in session.store.snapshot()[start:]:
        if message["kind"] == "user":
            continue
        print(f"\n[{ROLE_LABELS[message['kind']]}]\n{message['text']}")


def _extra_options(session: ChatSession) -> list[str]:
    """Options offered only in some states, numbered after the fixed ones."""
    extra = []
    if session.escalation_offered:
        extra.append("escalate")
    if session.can_request_revision():
        extra.append("revise")
    return extra


def _print_options(session: ChatSession) -> None:
    print("\nWhat next?")
    labels = INTERACTION_OPTIONS + [EXTRA_LABELS[key] for key in _extra_options(session)]
    for i, label in enumerate(labels, 1):
        print(f"  {i}. {label}")
    print("  (or type a new question, empty line to quit)")


def _report(state: TurnState) -> None:
    print(f"[IRX] Turn status: {state['status']}", file=sys.stderr)


async def _run_turn(session: ChatSession, coro) -> None:
    start = len(session.store)
    try:
        result = await coro
    except CredentialError as e:
        print(f"[IRX] Credential problem ({e.provider}): {e}")
        return
    except IRXError as e:
        print(f"[IRX] Request failed: {e}")
        _print_new_messages(session, start)
        return
    if isinstance(result, dict) and "status" in result:
        _report(result)
    _print_new_messages(session, start)


async def _handle_choice(session: ChatSession, choice: str) -> bool:
    """Act on a menu choice or a free-text question. Returns False to quit."""
    if not choice:
        return False

    if not choice.isdigit():
        await _run_turn(session, session.send(choice))
        return True

    number = int(choice)
    extra = _extra_options(session)
    action = None
    if len(INTERACTION_OPTIONS) < number <= len(INTERACTION_OPTIONS) + len(extra):
        action = extra[number - len(INTERACTION_OPTIONS) - 1]

    if number == 1:
        question = input("Follow-up question: ").strip()
        if question:
            await _run_turn(session, session.send(question))
    elif number in FOLLOW_UP_PROMPTS:
        await _run_turn(session, session.send(FOLLOW_UP_PROMPTS[number]))
    elif number == 4:
        session.new_topic()
        print("\n--- New topic ---")
    elif number == 5:
        await _run_turn(session, session.review())
    elif action == "escalate":
        await _run_turn(session, session.escalate())
    elif action == "revise":
        print(f"[IRX] Sending back to engineer (revision #{session.revision_count})")
        await _run_turn(session, session.request_revision())
    else:
        print("Please pick one of the listed options.")
    return True


async def run(first_question: str | None = None, speech: bool | None = None) -> None:
    """Run an interactive session, or a single turn when ``first_question`` is given.

    Args:
        first_question: Question to answer in one-shot mode.
        speech: Override for speech output. None uses config default.
    """
    config = get_config()
    speech_enabled = speech if speech is not None else config.get("speech_enabled", True)
    service = None
    if speech_enabled:
        service = SpeechService(config)
        # Launching the CLI is the user's interaction.
        service.mark_user_interaction()

    session = ChatSession.restore(config, speech=service)
    session.on_thought = _print_thought
    if not session.credentials.get("reasoner"):
        print("[IRX] No reasoning provider key found. Set DEEPSEEK_API_KEY in .env.")
        return

    if first_question:
        # One-shot turn: answer and exit.
        await _run_turn(session, session.send(first_question))
        return

    _print_new_messages(session, 0)
    while True:
        _print_options(session)
        try:
            choice = input("> ").strip()
        except EOFError:
            break
        if not await _handle_choice(session, choice):
            break

    session.save()
    print(f"[IRX] History saved to: {config.get('history_path')}")


def main() -> None:
    """CLI entry point — a question given as arguments runs a single turn."""
    speech = None
    args = sys.argv[1:]

    if "--no-speech" in args:
        speech = False
        args.remove("--no-speech")

    asyncio.run(run(" ".join(args) or None, speech=speech))


if __name__ == "__main__":
    main()
