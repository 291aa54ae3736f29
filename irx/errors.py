"""Error taxonomy shared by the reasoner, reviewer and credential helpers."""


class IRXError(Exception):
    """Base class for all orchestration errors."""


class CredentialError(IRXError):
    """A provider credential is unusable. Never retried."""

    def __init__(self, message: str, provider: str = "reasoner"):
        super().__init__(message)
        self.provider = provider


class CredentialMissing(CredentialError):
    pass


class CredentialInvalidFormat(CredentialError):
    pass


class CredentialRejected(CredentialError):
    """The provider answered 401/403 for this credential."""


class TransportError(IRXError):
    """Network failure or non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyResponse(IRXError):
    pass


class ParseError(IRXError):
    pass


class Escalated(IRXError):
    """Controlled handoff to the reviewer. Not a failure."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
