"""
Transcription endpoint resolution.

Custom providers point at an arbitrary base URL, which is only honored when
it uses HTTPS. Known providers always use their built-in base. The result is
cached against (provider, base_url) so a settings change takes effect on the
next request.
"""

import re
from typing import Callable, Optional
from urllib.parse import urlparse

from .cache import CachedValue
from .types import ConfigSnapshot


OPENAI_BASE = "https://api.openai.com/v1"
GROQ_BASE = "https://api.groq.com/openai/v1"
TRANSCRIPTION_PATH = "/audio/transcriptions"
DEFAULT_TRANSCRIPTION_ENDPOINT = OPENAI_BASE + TRANSCRIPTION_PATH

PROVIDER_BASES = {
    "openai": OPENAI_BASE,
    "groq": GROQ_BASE,
}

_FULL_PATH_RE = re.compile(r"/audio/(transcriptions|translations)$", re.IGNORECASE)


def normalize_base_url(url: Optional[str]) -> str:
    """Trim whitespace and trailing slashes. Empty input gives ""."""
    if not url:
        return ""
    return url.strip().rstrip("/")


def is_secure_endpoint(url: str) -> bool:
    """Whether url is an https URL with a host."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() == "https" and bool(parsed.netloc)


def build_api_url(base: str, path: str) -> str:
    """Join a normalized base and an absolute path."""
    return normalize_base_url(base) + "/" + path.lstrip("/")


class EndpointResolver:
    """
    Resolves the transcription URL from current configuration.

    Usage:
        resolver = EndpointResolver(config.snapshot)
        url = resolver.resolve()
    """

    def __init__(self, config_fn: Callable[[], ConfigSnapshot]):
        self._config_fn = config_fn
        self._cache: CachedValue[str] = CachedValue()

    def resolve(self) -> str:
        """
        Current transcription endpoint. Never raises.

        Invalid or insecure custom URLs (and any internal failure) resolve
        to the default OpenAI endpoint, which is cached like any other result.
        """
        config = self._config_fn()
        provider = config.cloud_provider or "openai"
        base_url = config.cloud_base_url or ""
        key = (provider, base_url)

        cached = self._cache.peek(key)
        if cached is not None:
            return cached

        try:
            endpoint = self._compute(provider, base_url)
        except Exception as e:
            print(f"[Endpoint] Resolution failed, using default: {e}")
            endpoint = DEFAULT_TRANSCRIPTION_ENDPOINT

        self._cache.set(key, endpoint)
        return endpoint

    def invalidate(self) -> None:
        self._cache.invalidate()

    def _compute(self, provider: str, base_url: str) -> str:
        is_custom = provider == "custom"

        if is_custom:
            base = base_url.strip() or OPENAI_BASE
        else:
            base = PROVIDER_BASES.get(provider, OPENAI_BASE)

        normalized = normalize_base_url(base)
        if not normalized:
            return DEFAULT_TRANSCRIPTION_ENDPOINT

        # Known providers are already HTTPS
        if is_custom and not is_secure_endpoint(normalized):
            print(f"[Endpoint] HTTPS required, falling back to default (got {normalized})")
            return DEFAULT_TRANSCRIPTION_ENDPOINT

        if _FULL_PATH_RE.search(normalized):
            return normalized
        return build_api_url(normalized, TRANSCRIPTION_PATH)
