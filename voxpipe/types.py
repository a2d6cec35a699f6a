"""
Shared type definitions for voxpipe.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class SessionState(str, Enum):
    """Recording controller state."""
    IDLE = "idle"
    RECORDING = "recording"
    PROCESSING = "processing"


class ResultSource(str, Enum):
    """Which path produced a transcription."""
    LOCAL = "local"                     # Local engine A (whisper)
    LOCAL_ALT = "local-alt"             # Local engine B (parakeet)
    CLOUD = "cloud"
    CLOUD_FALLBACK = "cloud-fallback"   # Local failed, cloud succeeded
    LOCAL_FALLBACK = "local-fallback"   # Cloud failed, local succeeded


@dataclass(frozen=True)
class VADSnapshot:
    """Voice activity state after one analysis tick."""
    level: float = 0.0                  # Smoothed level, 0-1
    peak: float = 0.0                   # Highest smoothed level this session
    voice_detected: bool = False        # Latched on first active tick
    is_voice_active: bool = False       # Instantaneous predicate
    speech_duration: float = 0.0        # Seconds, interval-based
    last_voice_at: Optional[float] = None


@dataclass(frozen=True)
class TranscriptionRequest:
    """Everything needed for one transcription call."""
    audio: bytes
    mime_type: str
    provider: str
    model: str
    language: Optional[str] = None
    prompt: Optional[str] = None
    stream: bool = False


@dataclass
class Timings:
    """Per-stage durations in milliseconds."""
    conversion_ms: Optional[int] = None
    transcription_ms: Optional[int] = None
    reasoning_ms: Optional[int] = None


@dataclass
class TranscriptionResult:
    """Final outcome of one pipeline run."""
    success: bool
    text: Optional[str] = None
    source: Optional[ResultSource] = None
    timings: Timings = field(default_factory=Timings)

    def __post_init__(self) -> None:
        if not self.success and self.text is not None:
            raise ValueError("A failed transcription result cannot carry text")


@dataclass(frozen=True)
class EngineOptions:
    """Options passed to a local engine."""
    model: str
    language: Optional[str] = None
    initial_prompt: Optional[str] = None


@dataclass
class LocalEngineResult:
    """Raw response from a local engine."""
    success: bool
    text: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    conversion_ms: Optional[int] = None  # Decode + resample time


@dataclass(frozen=True)
class ErrorNotice:
    """User-facing error title/description pair."""
    title: str
    description: str


@dataclass(frozen=True)
class ConfigSnapshot:
    """
    Immutable snapshot of configuration.
    Read once per operation so a settings change mid-call can't cause inconsistency.
    """
    # Microphone
    prefer_builtin_mic: bool = True
    selected_mic_device: str = ""
    capture_sample_rate: int = 0        # 0 = device default

    # Local engines
    use_local_engine: bool = False
    local_provider: str = "whisper"     # "whisper" | "nvidia"
    whisper_model: str = "base"
    parakeet_model: str = "parakeet-tdt-0.6b-v3"
    preferred_language: str = "auto"

    # Fallback
    allow_cloud_fallback: bool = False
    allow_local_fallback: bool = False
    fallback_whisper_model: str = "base"

    # Cloud
    cloud_provider: str = "openai"      # "openai" | "groq" | "custom"
    cloud_model: str = ""
    cloud_base_url: str = ""
    request_timeout: float = 120.0

    # Reasoning
    reasoning_model: str = ""
    reasoning_provider: str = "auto"
    use_reasoning_model: bool = False
    agent_name: str = ""

    # Dictionary
    custom_dictionary: List[str] = field(default_factory=list)

    # API keys, keyed by provider
    env_api_keys: Dict[str, str] = field(default_factory=dict)
    stored_api_keys: Dict[str, str] = field(default_factory=dict)

    @property
    def language(self) -> Optional[str]:
        """Preferred language, or None for auto-detection."""
        language = (self.preferred_language or "").strip()
        if not language or language == "auto":
            return None
        return language

    def dictionary_prompt(self) -> Optional[str]:
        """Join the custom dictionary into one recognition hint."""
        terms = [str(t) for t in self.custom_dictionary if str(t).strip()]
        if not terms:
            return None
        return ", ".join(terms)
