"""
Typed single-subscriber event channels.

The controller exposes one Channel per signal (state change, error,
transcription complete, VAD tick, no audio). Connecting replaces any
previous handler. Handler exceptions are logged so a broken subscriber
can't take down the audio or pipeline threads.
"""

import threading
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class Channel(Generic[T]):
    """
    One-to-one signal.

    Usage:
        channel: Channel[str] = Channel("error")
        channel.connect(print)
        channel.emit("hello")
    """

    def __init__(self, name: str):
        self.name = name
        self._handler: Optional[Callable[[T], None]] = None
        self._lock = threading.Lock()

    def connect(self, handler: Optional[Callable[[T], None]]) -> None:
        """Set the subscriber (None disconnects)."""
        with self._lock:
            self._handler = handler

    def disconnect(self) -> None:
        self.connect(None)

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._handler is not None

    def emit(self, value: T) -> None:
        """Deliver value to the subscriber, if any."""
        with self._lock:
            handler = self._handler
        if handler is None:
            return
        try:
            handler(value)
        except Exception as e:
            print(f"[Events] {self.name} handler error: {e}")
