"""JSON-file persistence for chat history and provider credentials."""

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from irx.config import get_config
from irx.errors import CredentialInvalidFormat
from irx.state import Message
from irx.utils.context import is_valid_message
from irx.utils.credentials import CredentialCache, validate_credentials

HISTORY_VERSION = "1.0"


def _history_path(path: str | Path | None) -> Path:
    return Path(path or get_config().get("history_path", "./data/chat_history.json"))


def _credentials_path(path: str | Path | None) -> Path:
    return Path(path or get_config().get("credentials_path", "./data/credentials.json"))


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def save_history(
    messages: list[Message],
    path: str | Path | None = None,
    max_entries: int | None = None,
) -> list[Message]:
    """Persist the most recent ``max_entries`` messages and return what was written."""
    if max_entries is None:
        max_entries = get_config().get("history_max_entries", 5)
    trimmed = list(messages)[-max_entries:] if max_entries > 0 else []
    _write_json(_history_path(path), {
        "messages": trimmed,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": HISTORY_VERSION,
    })
    return trimmed


def load_history(path: str | Path | None = None) -> list[Message]:
    """Load saved messages; a missing file is an empty history.

    Malformed entries are dropped with a diagnostic line. A file that is not
    valid JSON is reported and treated as an empty history.
    """
    history_path = _history_path(path)
    if not history_path.exists():
        return []

    try:
        with open(history_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        print(f"[IRX] Could not read chat history from {history_path}: {e}", file=sys.stderr)
        return []

    messages = data.get("messages", []) if isinstance(data, dict) else data
    if not isinstance(messages, list):
        print(f"[IRX] Chat history in {history_path} has no message list.", file=sys.stderr)
        return []
    valid = [m for m in messages if is_valid_message(m)]
    if len(valid) != len(messages):
        print(
            f"[IRX] Skipped {len(messages) - len(valid)} malformed entries in {history_path}.",
            file=sys.stderr,
        )
    return valid


def clear_history(path: str | Path | None = None) -> None:
    history_path = _history_path(path)
    if history_path.exists():
        history_path.unlink()


def save_credentials(
    credentials: dict[str, str | None],
    path: str | Path | None = None,
    cache: CredentialCache | None = None,
) -> dict[str, str | None]:
    """Validate and store provider credentials.

    Raises a CredentialError subclass when any key fails its format rule;
    nothing is written in that case. Saving clears the validation cache.
    """
    validated = validate_credentials(credentials)
    _write_json(_credentials_path(path), validated)
    if cache is not None:
        cache.clear()
    return validated


def load_credentials(path: str | Path | None = None) -> dict[str, str | None] | None:
    """Load stored credentials, or None if none were saved.

    Stored keys failing their format rule raise a CredentialError subclass.
    A file that is not valid JSON is reported and treated as missing.
    """
    credentials_path = _credentials_path(path)
    if not credentials_path.exists():
        return None

    try:
        with open(credentials_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        print(f"[IRX] Could not read stored credentials from {credentials_path}: {e}", file=sys.stderr)
        return None
    if not isinstance(data, dict):
        raise CredentialInvalidFormat(f"Credential file {credentials_path} is not a mapping.")
    return validate_credentials(data)
