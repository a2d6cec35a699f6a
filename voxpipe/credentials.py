"""
API key lookup for cloud transcription.

Each provider's key comes from the environment / .env first, then from
settings.json. Documented placeholder values count as unset.
"""

from typing import Callable, Optional

from .cache import CachedValue
from .errors import CredentialMissing
from .types import ConfigSnapshot


PLACEHOLDER_KEYS = {
    "openai": "your_openai_api_key_here",
    "groq": "your_groq_api_key_here",
}

MISSING_KEY_MESSAGES = {
    "openai": "OpenAI API key not found. Please set your API key in the .env file or settings.",
    "groq": "Groq API key not found. Please set your API key in the .env file or settings.",
}


def is_valid_api_key(key: Optional[str], provider: str = "openai") -> bool:
    """Whether key is set and isn't the provider's placeholder literal."""
    if not key or not key.strip():
        return False
    placeholder = PLACEHOLDER_KEYS.get(provider, PLACEHOLDER_KEYS["openai"])
    return key != placeholder


def mask_key(key: Optional[str]) -> str:
    """Short preview of a key for log lines."""
    if not key:
        return "(none)"
    return f"{key[:8]}..."


class CredentialStore:
    """
    Per-provider API key cache.

    Usage:
        credentials = CredentialStore(config.snapshot)
        key = credentials.get_api_key("groq")
    """

    def __init__(self, config_fn: Callable[[], ConfigSnapshot]):
        self._config_fn = config_fn
        self._cache: CachedValue[Optional[str]] = CachedValue()

    def get_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        """
        Key for provider (the configured cloud provider when None).

        Returns:
            The key, or None for a custom endpoint without one

        Raises:
            CredentialMissing: openai/groq have no usable key
        """
        config = self._config_fn()
        provider = provider or config.cloud_provider or "openai"
        return self._cache.get(provider, lambda: self._lookup(provider, config))

    def invalidate(self) -> None:
        self._cache.invalidate()

    def _lookup(self, provider: str, config: ConfigSnapshot) -> Optional[str]:
        if provider == "custom":
            key = (config.env_api_keys.get("custom") or "").strip()
            if not key:
                key = (config.stored_api_keys.get("custom") or "").strip()
            print(f"[Cloud] Custom endpoint key: {mask_key(key)}")
            # Custom endpoints may not require auth
            return key or None

        lookup_provider = provider if provider in PLACEHOLDER_KEYS else "openai"

        key = config.env_api_keys.get(lookup_provider)
        if not is_valid_api_key(key, lookup_provider):
            key = config.stored_api_keys.get(lookup_provider)
        if not is_valid_api_key(key, lookup_provider):
            raise CredentialMissing(MISSING_KEY_MESSAGES[lookup_provider])
        return key
