"""Credential format rules and the validation cache.

Each provider key is checked against a format rule before it is accepted.
Keys the reasoning provider rejected (HTTP 401/403) are remembered in a
bounded TTL cache so the next attempt fails fast without a network call.
"""

import hashlib
import os
import re
import time
from collections import OrderedDict

from irx.config import get_config
from irx.errors import CredentialInvalidFormat, CredentialMissing, CredentialRejected

PROVIDERS = ("reasoner", "speech", "reviewer")

FORMAT_RULES = {
    "reasoner": re.compile(r"^[A-Za-z0-9_-]{10,}$"),
    "speech": re.compile(r"^[A-Za-z0-9]{32}$"),
    "reviewer": re.compile(r"^[A-Za-z0-9_-]{39}$"),
}

PROVIDER_NAMES = {
    "reasoner": "reasoning provider",
    "speech": "speech provider",
    "reviewer": "reviewer provider",
}

ENV_VARS = {
    "reasoner": "DEEPSEEK_API_KEY",
    "speech": "ELEVENLABS_API_KEY",
    "reviewer": "GEMINI_API_KEY",
}


class CredentialCache:
    """Bounded, TTL-expiring record of credential validity.

    Keys are stored as SHA-256 digests, never in clear text.
    """

    def __init__(self, ttl: float | None = None, max_entries: int | None = None, clock=time.monotonic):
        config = get_config()
        self.ttl = ttl if ttl is not None else config.get("credential_cache_ttl", 300)
        self.max_entries = max_entries if max_entries is not None else config.get("credential_cache_size", 64)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[bool, float]] = OrderedDict()

    @staticmethod
    def _digest(credential: str) -> str:
        return hashlib.sha256(credential.encode("utf-8")).hexdigest()

    def get(self, credential: str) -> bool | None:
        """Return the cached validity, or None when unknown or expired."""
        key = self._digest(credential)
        entry = self._entries.get(key)
        if entry is None:
            return None
        is_valid, stamped = entry
        if self._clock() - stamped >= self.ttl:
            del self._entries[key]
            return None
        return is_valid

    def set(self, credential: str, is_valid: bool) -> None:
        key = self._digest(credential)
        self._entries[key] = (is_valid, self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def check_format(provider: str, credential: str) -> bool:
    return bool(FORMAT_RULES[provider].match(credential))


def validate_credential(
    credential: str | None,
    provider: str = "reasoner",
    cache: CredentialCache | None = None,
) -> str:
    """Return the credential if it is usable, else raise a CredentialError.

    Raises CredentialMissing for empty keys, CredentialRejected for keys the
    cache remembers as rejected, and CredentialInvalidFormat for keys that
    fail the provider's format rule.
    """
    name = PROVIDER_NAMES[provider]
    if not credential:
        raise CredentialMissing(f"A {name} API key is required. Please set it in the settings.", provider)

    if cache is not None:
        cached = cache.get(credential)
        if cached is False:
            raise CredentialRejected(f"Invalid {name} API key. Please check it in the settings.", provider)
        if cached is True:
            return credential

    if not check_format(provider, credential):
        if cache is not None:
            cache.set(credential, False)
        raise CredentialInvalidFormat(f"Invalid {name} API key format.", provider)

    return credential


def validate_credentials(credentials: dict[str, str | None], require_reasoner: bool = True) -> dict[str, str | None]:
    """Validate a provider → key mapping. Optional providers may be absent or empty."""
    unknown = set(credentials) - set(PROVIDERS)
    if unknown:
        raise CredentialInvalidFormat(f"Unknown credential providers: {sorted(unknown)}")

    validated = {}
    for provider in PROVIDERS:
        value = credentials.get(provider)
        if provider == "reasoner" and require_reasoner:
            validated[provider] = validate_credential(value, provider)
        elif value:
            validated[provider] = validate_credential(value, provider)
        else:
            validated[provider] = None
    return validated


def load_env_credentials() -> dict[str, str | None]:
    return {provider: os.getenv(var) or None for provider, var in ENV_VARS.items()}
