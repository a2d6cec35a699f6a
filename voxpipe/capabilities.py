"""
Per-model capability table for cloud transcription.

Decides which provider a model belongs to, whether its responses can be
streamed, and whether it accepts re-encoded WAV uploads. Newer gpt-4o
transcription models need the original codec, so they never get WAV.
"""

from dataclasses import dataclass
from typing import List, Optional


# Providers whose API supports streamed transcription
STREAMING_PROVIDERS = {"openai"}

# Provider-appropriate defaults when the stored model doesn't match
DEFAULT_MODELS = {
    "openai": "gpt-4o-mini-transcribe",
    "groq": "whisper-large-v3-turbo",
}
CUSTOM_DEFAULT_MODEL = "whisper-1"


@dataclass(frozen=True)
class ModelCapability:
    """What a model (or model family) supports."""
    name: str
    provider: str
    streams: bool
    accepts_wav: bool
    family: bool = False    # Match by prefix (dated snapshots, variants)


MODEL_CAPABILITIES: List[ModelCapability] = [
    ModelCapability("whisper-1", "openai", streams=False, accepts_wav=True),
    ModelCapability("gpt-4o-transcribe", "openai", streams=True, accepts_wav=False),
    ModelCapability("gpt-4o-transcribe-diarize", "openai", streams=True, accepts_wav=False),
    ModelCapability("gpt-4o-mini-transcribe", "openai", streams=True, accepts_wav=False, family=True),
    # Any other gpt-4o model: original codec only, no streaming
    ModelCapability("gpt-4o", "openai", streams=False, accepts_wav=False, family=True),
    ModelCapability("whisper-large-v3", "groq", streams=False, accepts_wav=True, family=True),
]


def lookup(model: str) -> Optional[ModelCapability]:
    """
    Find the capability entry for a model name.

    Exact names win over families; among families the longest prefix wins.
    """
    name = (model or "").strip()
    if not name:
        return None

    for cap in MODEL_CAPABILITIES:
        if cap.name == name:
            return cap

    families = [c for c in MODEL_CAPABILITIES if c.family and name.startswith(c.name)]
    if not families:
        return None
    return max(families, key=lambda c: len(c.name))


def should_stream(model: str, provider: str) -> bool:
    """Whether a request for this model/provider should ask for a streamed response."""
    if provider not in STREAMING_PROVIDERS:
        return False
    cap = lookup(model)
    return cap is not None and cap.streams


def accepts_wav(model: str) -> bool:
    """Whether this model accepts re-encoded WAV audio. Unknown models do."""
    # Vendor-prefixed ids on custom endpoints (openai/gpt-4o-...) too
    if "gpt-4o" in (model or ""):
        return False
    cap = lookup(model)
    return cap is None or cap.accepts_wav


def resolve_model(provider: str, preferred: str) -> str:
    """
    Pick the model to send for a cloud provider.

    Custom endpoints take whatever is configured. Known providers only take
    models from their own families, so a stale setting from another provider
    falls back to the provider default.
    """
    model = (preferred or "").strip()

    if provider == "custom":
        return model or CUSTOM_DEFAULT_MODEL

    if model:
        cap = lookup(model)
        if cap is not None and cap.provider == provider:
            return model

    return DEFAULT_MODELS.get(provider, DEFAULT_MODELS["openai"])
