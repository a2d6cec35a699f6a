"""
On-device transcription engines.

Each engine holds its own model weights and provides a consistent
interface: encoded audio in, LocalEngineResult out. Engines report
"No audio detected" through the result message, never by raising.
"""

from abc import ABC, abstractmethod

from ..types import EngineOptions, LocalEngineResult


class LocalEngine(ABC):
    """
    Base class for local transcription engines.

    Subclasses must implement:
    - transcribe(): Encoded audio bytes to text
    - shutdown(): Free model weights
    """

    name: str = "base"

    @abstractmethod
    def transcribe(self, audio: bytes, options: EngineOptions) -> LocalEngineResult:
        """
        Transcribe encoded audio.

        Args:
            audio: Encoded recording (any soundfile-readable container)
            options: Model, language and dictionary prompt

        Returns:
            LocalEngineResult; success=False with a message on failure
        """
        pass

    def shutdown(self) -> None:
        """Unload model weights."""
        pass
