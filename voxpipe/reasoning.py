"""
Reasoning-model cleanup of raw transcripts.

The post-processor decides whether to send text to a reasoning model and
always degrades to the trimmed raw transcript on any failure. The
chat-completion service is the concrete model client (OpenAI and OpenRouter
over requests, Groq through its SDK).
"""

import threading
import time
from typing import Callable, Optional

import requests

from .cache import CachedValue
from .credentials import is_valid_api_key
from .errors import VoxpipeError
from .types import ConfigSnapshot


REASONING_CACHE_TTL = 30.0  # seconds

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


# Persistent session for connection reuse
_http_session = requests.Session()

# Groq client with thread-safe initialization
_groq_client = None
_groq_client_key = None
_groq_lock = threading.Lock()


def _get_groq_client(api_key: str):
    """Lazy-load Groq client with API key. Thread-safe, recreates on key change."""
    global _groq_client, _groq_client_key

    # Fast path: client exists with same key
    if _groq_client is not None and _groq_client_key == api_key:
        return _groq_client

    with _groq_lock:
        # Double-check after acquiring lock
        if _groq_client is not None and _groq_client_key == api_key:
            return _groq_client

        from groq import Groq
        _groq_client = Groq(api_key=api_key)
        _groq_client_key = api_key

    return _groq_client


DEFAULT_SYSTEM_PROMPT = """You are a dictation assistant that cleans up speech-to-text output while preserving the speaker's voice and exact meaning.

Clean up:
- Remove pure filler sounds: "um", "uh", "er", "ah", "hmm"
- Fix obvious transcription errors and typos
- Handle self-corrections: use the correction, not the mistake
  Example: "Tuesday, no wait, Friday" -> "Friday"
- Fix grammar and add proper punctuation

Preserve:
- The speaker's meaning and intent
- Natural speaking style and all substantive content

Return only the cleaned text."""


class ReasoningError(VoxpipeError):
    """The reasoning model call failed."""


class ChatCompletionReasoningService:
    """
    Sends transcripts to an OpenAI-compatible chat-completions API.

    Provider "auto" picks OpenRouter for vendor-prefixed model ids
    ("anthropic/claude-..."), otherwise the first of OpenAI / Groq with a key.
    """

    def __init__(
        self,
        config_fn: Callable[[], ConfigSnapshot],
        http: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ):
        self._config_fn = config_fn
        self._http = http or _http_session
        self.timeout = timeout

    @staticmethod
    def _api_key(config: ConfigSnapshot, provider: str) -> Optional[str]:
        for source in (config.env_api_keys, config.stored_api_keys):
            key = source.get(provider)
            if is_valid_api_key(key, provider):
                return key
        return None

    def resolve_provider(self, config: ConfigSnapshot, model: str = "") -> Optional[str]:
        """Provider to call for model, or None if no key is configured."""
        provider = (config.reasoning_provider or "auto").lower()
        if provider != "auto":
            return provider if self._api_key(config, provider) else None

        if "/" in (model or "") and self._api_key(config, "openrouter"):
            return "openrouter"
        for candidate in ("openai", "groq", "openrouter"):
            if self._api_key(config, candidate):
                return candidate
        return None

    def is_available(self) -> bool:
        config = self._config_fn()
        return self.resolve_provider(config, config.reasoning_model) is not None

    def process_text(self, text: str, model: str, agent_name: Optional[str] = None) -> str:
        """
        Clean up text with model.

        Raises:
            ReasoningError: No provider configured or the call failed
        """
        config = self._config_fn()
        provider = self.resolve_provider(config, model)
        if provider is None:
            raise ReasoningError("No reasoning provider configured")

        system_prompt = DEFAULT_SYSTEM_PROMPT
        if agent_name:
            system_prompt += (
                f'\n\nThe user may address you as "{agent_name}". '
                "Treat text addressed to you as an instruction about the dictation, "
                "and leave your name out of the output."
            )

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": text},
        ]
        api_key = self._api_key(config, provider)

        if provider == "groq":
            return self._call_groq(api_key, model, messages)
        url = OPENROUTER_CHAT_URL if provider == "openrouter" else OPENAI_CHAT_URL
        return self._call_http(url, api_key, model, messages)

    def _call_groq(self, api_key: str, model: str, messages) -> str:
        try:
            client = _get_groq_client(api_key)
            completion = client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=0.3,
                max_completion_tokens=2000,
            )
        except Exception as e:
            raise ReasoningError(f"Groq error: {e}") from e
        return completion.choices[0].message.content or ""

    def _call_http(self, url: str, api_key: str, model: str, messages) -> str:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        data = {
            "model": model,
            "messages": messages,
            "temperature": 0.3,
            "max_tokens": 2000,
        }
        try:
            response = self._http.post(url, headers=headers, json=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise ReasoningError(f"Network error: {e}") from e

        if response.status_code != 200:
            raise ReasoningError(f"API error: {response.status_code} {response.text[:200]}")

        try:
            result = response.json()
            return result["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ReasoningError(f"Unexpected response: {e}") from e


class ReasoningPostProcessor:
    """
    Optional reasoning pass over every successful transcript.

    Availability is cached for REASONING_CACHE_TTL seconds against the
    use_reasoning_model preference; a failed availability probe caches False.
    """

    def __init__(
        self,
        config_fn: Callable[[], ConfigSnapshot],
        service=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config_fn = config_fn
        self.service = service if service is not None else ChatCompletionReasoningService(config_fn)
        self._availability: CachedValue[bool] = CachedValue(ttl=REASONING_CACHE_TTL, clock=clock)

    def is_available(self) -> bool:
        config = self._config_fn()
        preference = config.use_reasoning_model
        return self._availability.get(preference, lambda: self._probe(preference))

    def _probe(self, enabled: bool) -> bool:
        if not enabled:
            return False
        try:
            available = bool(self.service.is_available())
        except Exception as e:
            print(f"[Reasoning] Availability check failed: {e}")
            return False
        print(f"[Reasoning] Available: {available}")
        return available

    def process(self, text: Optional[str], source: str) -> str:
        """
        Clean up a raw transcript.

        Args:
            text: Raw transcript
            source: Which path produced it (for logging)

        Returns:
            Reasoned text, or the trimmed raw text when reasoning is off or fails
        """
        normalized = text.strip() if isinstance(text, str) else ""

        config = self._config_fn()
        model = config.reasoning_model
        if not model:
            return normalized

        if not self.is_available():
            return normalized

        start = time.perf_counter()
        try:
            result = self.service.process_text(normalized, model, config.agent_name or None)
        except Exception as e:
            print(f"[Reasoning] Failed ({source}), using raw text: {e}")
            return normalized

        elapsed = time.perf_counter() - start
        print(f"[Reasoning] {model} ({source}) -> {elapsed:.2f}s")
        return result
