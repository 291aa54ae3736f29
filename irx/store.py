"""Message Store — ordered, append-only conversation log.

The only mutations are append, truncate-to-prefix (reset, dropping a
trailing transient status line) and in-place replacement of the trailing
transient status message.
"""

from collections.abc import Iterable, Sequence

from irx.state import TRANSIENT_MARKERS, Marker, Message, MessageKind


def make_message(kind: MessageKind, text: str, marker: Marker | None = None) -> Message:
    message: Message = {"kind": kind, "text": text}
    if marker:
        message["marker"] = marker
    return message


def is_transient(message: Message) -> bool:
    return message.get("kind") == "system" and message.get("marker") in TRANSIENT_MARKERS


class MessageStore(Sequence):
    """Conversation log shared by the session, the reasoner and the revision loop."""

    def __init__(self, banner: str | None = None, messages: Iterable[Message] = ()):
        self._messages: list[Message] = []
        if banner:
            self._messages.append(make_message("system", banner, "banner"))
        self._messages.extend(dict(m) for m in messages)

    def __getitem__(self, index):
        return self._messages[index]

    def __len__(self) -> int:
        return len(self._messages)

    def snapshot(self) -> list[Message]:
        """Return a copy of the log. Callers may mutate it freely."""
        return [dict(m) for m in self._messages]

    def append(self, kind: MessageKind, text: str, marker: Marker | None = None) -> Message:
        message = make_message(kind, text, marker)
        self._messages.append(message)
        return message

    def extend(self, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(message["kind"], message["text"], message.get("marker"))

    def show_status(self, text: str, marker: Marker = "thinking") -> Message:
        """Show a transient status line, replacing the previous one if it is last."""
        message = make_message("system", text, marker)
        if self._messages and is_transient(self._messages[-1]):
            self._messages[-1] = message
        else:
            self._messages.append(message)
        return message

    def settle_status(self, text: str | None = None, marker: Marker | None = None) -> None:
        """End the transient status line.

        With ``text`` the trailing status line becomes a permanent system
        message; without it the status line is removed.
        """
        trailing = bool(self._messages) and is_transient(self._messages[-1])
        if text is None:
            if trailing:
                del self._messages[-1]
            return
        message = make_message("system", text, marker)
        if trailing:
            self._messages[-1] = message
        else:
            self._messages.append(message)

    def reset(self) -> None:
        """Truncate to the banner (first system entry), or empty the log."""
        if self._messages and self._messages[0].get("kind") == "system":
            del self._messages[1:]
        else:
            self._messages.clear()

    def history(self) -> list[Message]:
        """Entries worth persisting: no banner, no transient status lines."""
        return [
            dict(m) for m in self._messages
            if m.get("marker") != "banner" and not is_transient(m)
        ]

    def latest(self, kind: MessageKind, exclude_marker: Marker | None = None) -> Message | None:
        for message in reversed(self._messages):
            if message.get("kind") != kind:
                continue
            if exclude_marker and message.get("marker") == exclude_marker:
                continue
            return message
        return None
