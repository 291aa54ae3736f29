"""Input validation — checks that a chat message is a non-empty string before any provider call."""


def validate_message(message: str) -> str:
    """Validate that the message is a non-empty string.

    Returns the stripped input on success.
    Raises ValueError if input is empty or whitespace-only.
    """
    if not isinstance(message, str) or not message.strip():
        raise ValueError("Message must be a non-empty string.")
    return message.strip()


def validate_improvements(improvements) -> list[str]:
    """Normalize a revision request's improvements to a list of non-blank strings.

    None and an empty list are both valid (a degenerate revision round).
    """
    if improvements is None:
        return []
    if isinstance(improvements, str):
        improvements = [improvements]
    if not isinstance(improvements, (list, tuple)):
        raise ValueError("Improvements must be a list of strings.")
    return [str(item).strip() for item in improvements if str(item).strip()]
