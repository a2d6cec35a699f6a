"""
Live microphone stream.

Wraps a sounddevice InputStream and fans each captured block out to
listeners (the capture buffer and the VAD analyser). Listeners run on the
PortAudio callback thread, so they must be quick and must not block.
"""

import threading
from typing import Callable, List, Optional

import numpy as np

from .devices import MicDevice
from .errors import classify_device_error


DEFAULT_BLOCKSIZE = 1024
FALLBACK_SAMPLE_RATE = 48000

BlockListener = Callable[[np.ndarray], None]


class MicrophoneStream:
    """
    One open microphone, mono float32.

    Thread-safe: listeners can be added/removed from any thread while the
    callback is running.

    Usage:
        stream = MicrophoneStream(device).open()
        stream.add_listener(blocks.append)
        ...
        stream.stop()
    """

    def __init__(
        self,
        device: Optional[MicDevice] = None,
        sample_rate: int = 0,
        blocksize: int = DEFAULT_BLOCKSIZE,
    ):
        self.device = device
        self.blocksize = blocksize
        self._requested_rate = sample_rate
        self.sample_rate: int = 0
        self._stream = None
        self._listeners: List[BlockListener] = []
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def label(self) -> str:
        return self.device.name if self.device else "System default"

    @property
    def active(self) -> bool:
        return self._stream is not None and not self._stopped

    def open(self) -> "MicrophoneStream":
        """
        Open and start the input stream.

        Raises:
            DeviceError subclass describing why the microphone is unavailable
        """
        import sounddevice as sd

        try:
            self.sample_rate = self._resolve_sample_rate(sd)
            stream = sd.InputStream(
                device=self.device.index if self.device else None,
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=self.blocksize,
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:
            raise classify_device_error(e) from e

        self._stream = stream
        print(f"[Audio] Recording from '{self.label}' at {self.sample_rate} Hz")
        return self

    def _resolve_sample_rate(self, sd) -> int:
        if self._requested_rate:
            return int(self._requested_rate)
        if self.device and self.device.default_samplerate:
            return int(self.device.default_samplerate)
        try:
            info = sd.query_devices(kind="input")
            return int(info["default_samplerate"])
        except Exception:
            return FALLBACK_SAMPLE_RATE

    def add_listener(self, listener: BlockListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: BlockListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Called by sounddevice for each audio block."""
        if status:
            print(f"[Audio] Callback status: {status}")

        block = indata.copy().flatten()
        self.push(block)

    def push(self, block: np.ndarray) -> None:
        """Deliver one block to every listener."""
        with self._lock:
            if self._stopped:
                return
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(block)
            except Exception as e:
                print(f"[Audio] Listener error: {e}")

    def stop(self) -> bool:
        """
        Stop capture and release the device. Idempotent.

        Returns:
            True if this call released the stream
        """
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
            self._listeners.clear()
            stream = self._stream
            self._stream = None

        # Close outside the lock to avoid deadlock with the audio callback
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                print(f"[Audio] Error closing stream: {e}")
        return True


def open_microphone(device: Optional[MicDevice], sample_rate: int = 0) -> MicrophoneStream:
    """Open a live stream on device (None = system default)."""
    return MicrophoneStream(device, sample_rate=sample_rate).open()
