"""
Error taxonomy and user-facing messages.

NoAudioDetected is an expected outcome, not a failure: it is delivered on its
own channel and never triggers a fallback.
"""

from typing import Optional

from .types import ErrorNotice


NO_AUDIO_MESSAGE = "No audio detected"


class VoxpipeError(Exception):
    """Base class for all pipeline errors."""


class DeviceError(VoxpipeError):
    """Microphone could not be opened."""
    title = "Recording Error"


class PermissionDenied(DeviceError):
    title = "Microphone Access Denied"
    description = "Please grant microphone permission in your system settings and try again."


class DeviceNotFound(DeviceError):
    title = "No Microphone Found"
    description = "No microphone was detected. Please connect a microphone and try again."


class DeviceBusy(DeviceError):
    title = "Microphone In Use"
    description = (
        "The microphone is being used by another application. "
        "Please close other apps and try again."
    )


class NoAudioDetected(VoxpipeError):
    """Recording held no usable speech."""

    def __init__(self, message: str = NO_AUDIO_MESSAGE):
        super().__init__(message)


class CredentialMissing(VoxpipeError):
    """No usable API key for the selected provider."""


class TranscriptionError(VoxpipeError):
    """A transcription path failed."""


class TranscriptionEmpty(TranscriptionError):
    """Backend answered but returned no text."""


class NetworkOrAPIError(TranscriptionError):
    """Transport failure or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(TranscriptionError):
    """Response body could not be decoded."""


class LocalEngineError(TranscriptionError):
    """A local engine reported failure."""


class PipelineFallbackExhausted(TranscriptionError):
    """Primary path and its fallback both failed."""

    def __init__(self, message: str, primary: Exception, fallback: Exception):
        super().__init__(message)
        self.primary = primary
        self.fallback = fallback


# PortAudio / OS error text fragments, checked in order
_PERMISSION_MARKERS = ("permission", "not permitted", "access denied", "not authorized")
_NOT_FOUND_MARKERS = (
    "invalid device",
    "no default input device",
    "no input device",
    "device not found",
    "error querying device",
    "no such device",
)
_BUSY_MARKERS = ("device unavailable", "busy", "in use", "-9985")


def classify_device_error(exc: BaseException) -> DeviceError:
    """
    Map a capture failure onto the device error classes.

    Args:
        exc: Exception raised while opening the stream

    Returns:
        A DeviceError subclass instance (generic DeviceError if unclassified)
    """
    if isinstance(exc, DeviceError):
        return exc
    if isinstance(exc, PermissionError):
        return PermissionDenied(str(exc))

    text = str(exc).lower()
    if any(marker in text for marker in _PERMISSION_MARKERS):
        return PermissionDenied(str(exc))
    if any(marker in text for marker in _NOT_FOUND_MARKERS):
        return DeviceNotFound(str(exc))
    if any(marker in text for marker in _BUSY_MARKERS):
        return DeviceBusy(str(exc))
    return DeviceError(str(exc))


def describe_device_error(exc: BaseException) -> ErrorNotice:
    """User-facing title/description for a capture failure."""
    error = classify_device_error(exc)
    description = getattr(error, "description", None)
    if description is None:
        description = f"Failed to access microphone: {error}"
    return ErrorNotice(title=error.title, description=description)
