"""
Real-time voice activity detection.

A SpectrumAnalyser listens to the live stream and produces byte-scaled
frequency levels the same way a Web Audio AnalyserNode does. The detector
samples it on a fixed interval, smooths an RMS level, tracks the peak and
accumulates speech time. The resulting snapshot is the only gate between a
finished recording and a transcription request.
"""

import threading
import time
from typing import Callable, Optional, Sequence

import numpy as np

from .events import Channel
from .types import VADSnapshot


# Detection parameters
VOICE_THRESHOLD = 0.04          # Smoothed RMS level (0-1) that counts as voice
MIN_SPEECH_DURATION = 0.5       # Seconds of voice required to transcribe
ANALYSIS_INTERVAL_MS = 50       # Sampling period
ANALYSIS_INTERVAL = ANALYSIS_INTERVAL_MS / 1000
FFT_SIZE = 2048

# Analyser parameters
SMOOTHING_TIME_CONSTANT = 0.3
MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0

# Level smoothing: level = level * LEVEL_DECAY + rms * (1 - LEVEL_DECAY)
LEVEL_DECAY = 0.7


class SpectrumAnalyser:
    """
    Sliding-window FFT over the most recent FFT_SIZE samples.

    feed() is called from the audio callback thread, frequency_levels()
    from the VAD timer thread.
    """

    def __init__(
        self,
        fft_size: int = FFT_SIZE,
        smoothing: float = SMOOTHING_TIME_CONSTANT,
        min_decibels: float = MIN_DECIBELS,
        max_decibels: float = MAX_DECIBELS,
    ):
        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_decibels = min_decibels
        self.max_decibels = max_decibels

        self._window = np.blackman(fft_size).astype(np.float32)
        self._samples = np.zeros(fft_size, dtype=np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)
        self._lock = threading.Lock()
        self.released = False

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def feed(self, block: np.ndarray) -> None:
        """Append samples, keeping only the last fft_size."""
        block = np.asarray(block, dtype=np.float32).reshape(-1)
        if block.size == 0:
            return

        with self._lock:
            if self.released:
                return
            if block.size >= self.fft_size:
                self._samples = block[-self.fft_size:].copy()
            else:
                self._samples = np.concatenate((self._samples[block.size:], block))

    def frequency_levels(self) -> np.ndarray:
        """
        Current spectrum as fft_size/2 levels in [0, 1].

        Magnitudes are time-smoothed across calls, converted to dB and
        mapped from [min_decibels, max_decibels] onto 0-255 byte steps.
        """
        with self._lock:
            if self.released:
                return np.zeros(self.bin_count, dtype=np.float64)
            samples = self._samples.copy()

            spectrum = np.fft.rfft(samples * self._window)[: self.bin_count]
            magnitude = np.abs(spectrum) / self.fft_size
            self._smoothed = self.smoothing * self._smoothed + (1 - self.smoothing) * magnitude
            smoothed = self._smoothed.copy()

        with np.errstate(divide="ignore"):
            decibels = 20 * np.log10(smoothed)

        scale = 255.0 / (self.max_decibels - self.min_decibels)
        byte_levels = np.floor(scale * (decibels - self.min_decibels))
        byte_levels = np.clip(np.nan_to_num(byte_levels, neginf=0.0), 0, 255)
        return byte_levels / 255.0

    def release(self) -> None:
        with self._lock:
            self.released = True
            self._samples = np.zeros(self.fft_size, dtype=np.float32)
            self._smoothed = np.zeros(self.bin_count, dtype=np.float64)


class VoiceActivityDetector:
    """
    Samples an analyser every ANALYSIS_INTERVAL and tracks voice activity.

    Speech time is counted in whole ticks: each active tick adds exactly one
    interval, regardless of how late the timer fired.

    Usage:
        vad = VoiceActivityDetector()
        vad.ticks.connect(on_level)
        vad.start(stream)
        ...
        snapshot = vad.stop()
        if vad.has_valid_audio_content(): ...
    """

    def __init__(
        self,
        interval_ms: int = ANALYSIS_INTERVAL_MS,
        threshold: float = VOICE_THRESHOLD,
        min_speech_duration: float = MIN_SPEECH_DURATION,
        clock: Callable[[], float] = time.time,
        analyser_factory: Callable[[], SpectrumAnalyser] = SpectrumAnalyser,
    ):
        self.interval_ms = interval_ms
        self.threshold = threshold
        self.min_speech_duration = min_speech_duration
        self._clock = clock
        self._analyser_factory = analyser_factory

        self.ticks: Channel[VADSnapshot] = Channel("vad_tick")

        self._lock = threading.RLock()
        self._stream = None
        self.analyser: Optional[SpectrumAnalyser] = None
        self._halt = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._running = False
        self._reset()

    @property
    def interval(self) -> float:
        return self.interval_ms / 1000

    @property
    def running(self) -> bool:
        return self._running

    def _reset(self) -> None:
        self.level = 0.0
        self.peak = 0.0
        self.voice_detected = False
        self.is_voice_active = False
        self._voice_ticks = 0
        self.last_voice_at: Optional[float] = None

    @property
    def speech_duration(self) -> float:
        return self._voice_ticks * self.interval_ms / 1000

    def snapshot(self) -> VADSnapshot:
        with self._lock:
            return VADSnapshot(
                level=self.level,
                peak=self.peak,
                voice_detected=self.voice_detected,
                is_voice_active=self.is_voice_active,
                speech_duration=self.speech_duration,
                last_voice_at=self.last_voice_at,
            )

    def start(self, stream, timer: bool = True) -> None:
        """
        Reset state, attach an analyser to stream and begin sampling.

        Args:
            stream: Live stream with add_listener/remove_listener
            timer: Start the periodic sampler (tests drive tick() directly)
        """
        self.stop()

        with self._lock:
            self._reset()
            try:
                self.analyser = self._analyser_factory()
                self._stream = stream
                stream.add_listener(self.analyser.feed)
            except Exception as e:
                print(f"[VAD] Failed to start monitoring: {e}")
                self.analyser = None
                self._stream = None
                return

            self._running = True
            self._halt = threading.Event()
            if timer:
                self._timer = threading.Thread(
                    target=self._sample_loop,
                    args=(self._halt,),
                    daemon=True,
                )
                self._timer.start()

        print(f"[VAD] Monitoring started (threshold {self.threshold})")

    def _sample_loop(self, halt: threading.Event) -> None:
        while not halt.wait(self.interval):
            try:
                self.tick()
            except Exception as e:
                print(f"[VAD] Analysis error: {e}")

    def tick(self, levels: Optional[Sequence[float]] = None) -> VADSnapshot:
        """
        Run one analysis step.

        Args:
            levels: Frequency levels in [0, 1]; read from the analyser when None

        Returns:
            Snapshot after this step
        """
        with self._lock:
            if levels is None:
                if not self._running or self.analyser is None:
                    return self.snapshot()
                levels = self.analyser.frequency_levels()

            values = np.asarray(levels, dtype=np.float64)
            rms = float(np.sqrt(np.mean(values * values))) if values.size else 0.0

            self.level = self.level * LEVEL_DECAY + rms * (1 - LEVEL_DECAY)
            if self.level > self.peak:
                self.peak = self.level

            self.is_voice_active = self.level > self.threshold
            if self.is_voice_active:
                self.last_voice_at = self._clock()
                if not self.voice_detected:
                    self.voice_detected = True
                    print(f"[VAD] Voice activity detected (level {self.level:.3f})")
                self._voice_ticks += 1

            snapshot = self.snapshot()

        self.ticks.emit(snapshot)
        return snapshot

    def stop(self) -> VADSnapshot:
        """
        Halt sampling, detach and release the analyser. Idempotent.

        Returns:
            Final snapshot (unchanged on repeated calls)
        """
        with self._lock:
            if not self._running:
                return self.snapshot()

            self._running = False
            self._halt.set()
            timer = self._timer
            self._timer = None

            stream = self._stream
            analyser = self.analyser
            self._stream = None
            self.analyser = None

            if stream is not None and analyser is not None:
                try:
                    stream.remove_listener(analyser.feed)
                except Exception as e:
                    print(f"[VAD] Error disconnecting analyser: {e}")
            if analyser is not None:
                analyser.release()

            snapshot = self.snapshot()

        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=1.0)

        print(
            f"[VAD] Monitoring stopped: peak={snapshot.peak:.3f}, "
            f"voice={snapshot.voice_detected}, speech={snapshot.speech_duration:.2f}s"
        )
        return snapshot

    def has_valid_audio_content(self) -> bool:
        """Whether the session held enough speech to be worth transcribing."""
        with self._lock:
            return (
                self.voice_detected
                and self.speech_duration >= self.min_speech_duration
                and self.peak > self.threshold
            )
