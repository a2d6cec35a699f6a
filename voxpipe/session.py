"""
Recording lifecycle.

A RecordingSession is one capture from start() to its stop/cancel
resolution. The RecordingController owns at most one session at a time and
drives the state machine:

    idle -> recording -> processing -> idle
    recording -> idle   (no usable speech; no_audio fires)
    recording -> idle   (cancelled)

Finalization runs on a background worker so stop() returns immediately.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np

from .capture import open_microphone
from .devices import select_input_device
from .dispatcher import TranscriptionDispatcher
from .encoder import encode_capture
from .errors import NoAudioDetected, describe_device_error
from .events import Channel
from .history import TranscriptionStore
from .metrics import (
    MetricsWriter,
    log_no_audio,
    log_recording_started,
    log_recording_stopped,
)
from .output import paste_text
from .types import (
    ConfigSnapshot,
    ErrorNotice,
    SessionState,
    TranscriptionResult,
    VADSnapshot,
)
from .vad import VoiceActivityDetector


CAPTURE_MIME_TYPE = "audio/flac"


@dataclass
class RecordingSession:
    """
    One capture: the live stream plus the blocks it produced.

    The stream is released exactly once, whichever exit path gets there first.
    """
    stream: object
    started_at: float
    sample_rate: int
    mime_type: str = CAPTURE_MIME_TYPE
    stopped_at: Optional[float] = None
    closed: bool = False

    blocks: List[np.ndarray] = field(default_factory=list)
    _released: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def append(self, block: np.ndarray) -> None:
        """Stream listener: buffer one captured block."""
        with self._lock:
            if not self.closed:
                self.blocks.append(block)

    def take_blocks(self) -> List[np.ndarray]:
        with self._lock:
            blocks, self.blocks = self.blocks, []
            return blocks

    def discard(self) -> None:
        with self._lock:
            self.closed = True
            self.blocks = []

    @property
    def duration(self) -> Optional[float]:
        if self.stopped_at is None:
            return None
        return self.stopped_at - self.started_at

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """
        Stop the underlying stream.

        Returns:
            True if this call released it, False if already released
        """
        with self._lock:
            if self._released:
                return False
            self._released = True
        try:
            self.stream.stop()
        except Exception as e:
            print(f"[Audio] Error releasing stream: {e}")
        return True


class RecordingController:
    """
    Start/stop/cancel recording and run finished recordings through the
    transcription pipeline.

    Thread-safe: all public methods can be called from any thread.

    Usage:
        controller = RecordingController(config.snapshot, dispatcher)
        controller.transcription_complete.connect(on_result)
        controller.start()
        # ... user speaks ...
        controller.stop()
    """

    def __init__(
        self,
        config_fn: Callable[[], ConfigSnapshot],
        dispatcher: TranscriptionDispatcher,
        open_stream: Callable = open_microphone,
        select_device: Callable = select_input_device,
        detector_factory: Callable[[], VoiceActivityDetector] = VoiceActivityDetector,
        paste: Optional[Callable[[str], None]] = paste_text,
        store: Optional[TranscriptionStore] = None,
        metrics: Optional[MetricsWriter] = None,
        schedule: Optional[Callable[[Callable[[], None]], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._config_fn = config_fn
        self.dispatcher = dispatcher
        self._open_stream = open_stream
        self._select_device = select_device
        self._detector_factory = detector_factory
        self._paste = paste
        self.store = store
        self.metrics = metrics
        self._schedule = schedule or self._spawn_worker
        self._clock = clock

        # Signals
        self.state_changed: Channel[SessionState] = Channel("state_changed")
        self.error: Channel[ErrorNotice] = Channel("error")
        self.transcription_complete: Channel[TranscriptionResult] = Channel("transcription_complete")
        self.vad_tick: Channel[VADSnapshot] = Channel("vad_tick")
        self.no_audio: Channel[None] = Channel("no_audio")

        # State
        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._session: Optional[RecordingSession] = None
        self._detector: Optional[VoiceActivityDetector] = None
        self._stop_requested = False
        self._worker: Optional[threading.Thread] = None

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.RECORDING

    @property
    def is_processing(self) -> bool:
        return self.state == SessionState.PROCESSING

    @property
    def session(self) -> Optional[RecordingSession]:
        with self._lock:
            return self._session

    def vad_snapshot(self) -> Optional[VADSnapshot]:
        with self._lock:
            return self._detector.snapshot() if self._detector else None

    def _set_state(self, state: SessionState) -> None:
        """Must be called with lock held; caller emits state_changed."""
        self._state = state

    def _spawn_worker(self, fn: Callable[[], None]) -> None:
        worker = threading.Thread(target=fn, daemon=True)
        self._worker = worker
        worker.start()

    def start(self) -> bool:
        """
        Open the microphone and begin recording.

        Returns:
            True if recording started; False if busy or the device failed
            (device failures are reported on the error channel)
        """
        with self._lock:
            if self._state != SessionState.IDLE:
                return False

            config = self._config_fn()
            try:
                device = self._select_device(config)
                stream = self._open_stream(device, config.capture_sample_rate)
            except Exception as e:
                notice = describe_device_error(e)
                print(f"[Audio] Failed to start recording: {e}")
                failure = notice
            else:
                failure = None
                session = RecordingSession(
                    stream=stream,
                    started_at=self._clock(),
                    sample_rate=getattr(stream, "sample_rate", 0),
                )
                detector = None
                try:
                    stream.add_listener(session.append)
                    detector = self._detector_factory()
                    detector.ticks.connect(self.vad_tick.emit)
                    detector.start(stream)
                except Exception as e:
                    print(f"[Audio] Failed to start recording: {e}")
                    failure = describe_device_error(e)
                    if detector is not None:
                        detector.stop()
                        detector.ticks.disconnect()
                    session.release()

            if failure is None:
                self._session = session
                self._detector = detector
                self._stop_requested = False
                self._set_state(SessionState.RECORDING)

        if failure is not None:
            self.error.emit(failure)
            return False

        label = getattr(stream, "label", "microphone")
        print(f"[Session] Recording started ({label})")
        if self.metrics:
            log_recording_started(self.metrics, label, session.sample_rate)
        self.state_changed.emit(SessionState.RECORDING)
        return True

    def stop(self) -> bool:
        """
        End capture and schedule finalization.

        Returns:
            True if a stop was requested, False if not recording
        """
        with self._lock:
            if self._state != SessionState.RECORDING or self._stop_requested:
                return False

            self._stop_requested = True
            session = self._session
            session.stopped_at = self._clock()
            # No more blocks into the buffer; the VAD stays attached until finalize
            session.stream.remove_listener(session.append)

        self._schedule(lambda: self._finalize(session))
        return True

    def cancel(self) -> bool:
        """
        Abandon the current recording without transcribing.

        Works until finalization has started, including after stop().

        Returns:
            True if a recording was cancelled
        """
        with self._lock:
            if self._state != SessionState.RECORDING:
                return False

            session = self._session
            detector = self._detector
            if detector is not None:
                detector.stop()
                detector.ticks.disconnect()
            session.discard()

            self._session = None
            self._detector = None
            self._stop_requested = False
            self._set_state(SessionState.IDLE)

        session.release()
        print("[Session] Recording cancelled")
        self.state_changed.emit(SessionState.IDLE)
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the background finalize worker.

        Returns:
            True if no worker is running when this returns
        """
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _finalize(self, session: RecordingSession) -> None:
        """Decide whether the recording is worth transcribing, then run the pipeline."""
        with self._lock:
            if session is not self._session or session.closed:
                # Cancelled before we got here
                session.release()
                return

            detector = self._detector
            vad = detector.stop()
            detector.ticks.disconnect()
            valid = detector.has_valid_audio_content()

            session.closed = True
            blocks = session.take_blocks()
            self._detector = None
            self._stop_requested = False

            if valid:
                self._set_state(SessionState.PROCESSING)
            else:
                self._session = None
                self._set_state(SessionState.IDLE)

        session.release()

        duration = session.duration
        print(
            f"[Session] Recording stopped: {len(blocks)} blocks, "
            f"{duration if duration is not None else 0:.2f}s"
        )
        if self.metrics:
            log_recording_stopped(self.metrics, duration, len(blocks), vad)

        if not valid:
            print(
                f"[VAD] Skipping transcription: voice={vad.voice_detected}, "
                f"speech={vad.speech_duration:.2f}s, peak={vad.peak:.3f}"
            )
            if self.metrics:
                log_no_audio(self.metrics, vad)
            self.state_changed.emit(SessionState.IDLE)
            self.no_audio.emit(None)
            return

        self.state_changed.emit(SessionState.PROCESSING)
        try:
            self._process(session, blocks)
        finally:
            with self._lock:
                if self._session is session:
                    self._session = None
                self._set_state(SessionState.IDLE)
            self.state_changed.emit(SessionState.IDLE)

    def _process(self, session: RecordingSession, blocks: List[np.ndarray]) -> None:
        try:
            audio, mime_type = encode_capture(blocks, session.sample_rate)
            result = self.dispatcher.dispatch(audio, mime_type, session.duration)
        except NoAudioDetected:
            print("[Session] No audio detected by engine")
            self.no_audio.emit(None)
            return
        except Exception as e:
            print(f"[Session] Transcription failed: {e}")
            self.error.emit(ErrorNotice(
                title="Transcription Error",
                description=f"Transcription failed: {e}",
            ))
            return

        self._deliver(result)

    def _deliver(self, result: TranscriptionResult) -> None:
        """Hand a successful result to subscribers, paste and history."""
        self.transcription_complete.emit(result)

        if self._paste is not None:
            try:
                self._paste(result.text)
            except Exception as e:
                print(f"[Session] Paste failed: {e}")
                self.error.emit(ErrorNotice(
                    title="Paste Error",
                    description=f"Failed to paste text. Please check accessibility permissions. {e}",
                ))

        if self.store is not None:
            try:
                self.store.save(result.text, source=result.source.value if result.source else None)
            except Exception as e:
                print(f"[Session] Failed to save transcription: {e}")

    def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel any recording and wait for in-flight processing."""
        self.cancel()
        self.wait(timeout)
