"""
Tests for voice activity detection.

Covers the smoothing/peak/latch logic, the speech-duration gate and the
teardown of the analyser and sampler.
"""

import time

import numpy as np
import pytest


LOUD = np.ones(1024)
SILENT = np.zeros(1024)


class TestVoiceActivityDetector:
    """Tests for VoiceActivityDetector.tick and the validity gate."""

    def test_silence_is_not_valid(self):
        """A recording of pure silence never passes the gate."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        for _ in range(40):
            vad.tick(SILENT)

        snapshot = vad.snapshot()
        assert snapshot.level == 0.0
        assert snapshot.peak == 0.0
        assert snapshot.voice_detected is False
        assert snapshot.speech_duration == 0.0
        assert vad.has_valid_audio_content() is False

    def test_level_smoothing(self):
        """Level follows level*0.7 + rms*0.3."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        first = vad.tick(LOUD)
        second = vad.tick(LOUD)

        assert first.level == pytest.approx(0.3)
        assert second.level == pytest.approx(0.3 * 0.7 + 0.3)
        assert second.peak == pytest.approx(second.level)

    def test_voice_detected_latches(self):
        """voice_detected stays True after the level falls below threshold."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        vad.tick(LOUD)
        for _ in range(30):
            snapshot = vad.tick(SILENT)

        assert snapshot.is_voice_active is False
        assert snapshot.voice_detected is True
        assert snapshot.peak == pytest.approx(0.3)

    def test_speech_duration_counts_intervals(self):
        """Each active tick adds exactly one analysis interval."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        for _ in range(7):
            vad.tick(LOUD)

        assert vad.snapshot().speech_duration == pytest.approx(0.35)

    def test_minimum_speech_boundary(self):
        """Nine active ticks (0.45s) fail; ten (exactly 0.5s) pass."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        for _ in range(9):
            vad.tick(LOUD)
        assert vad.has_valid_audio_content() is False

        vad.tick(LOUD)
        assert vad.snapshot().speech_duration == 0.5
        assert vad.has_valid_audio_content() is True

    def test_peak_equal_to_threshold_is_not_valid(self):
        """The peak must strictly exceed the threshold."""
        from voxpipe.vad import VoiceActivityDetector, VOICE_THRESHOLD

        vad = VoiceActivityDetector()
        vad.voice_detected = True
        vad._voice_ticks = 20
        vad.peak = VOICE_THRESHOLD

        assert vad.has_valid_audio_content() is False

        vad.peak = VOICE_THRESHOLD + 0.001
        assert vad.has_valid_audio_content() is True

    def test_last_voice_timestamp(self):
        """last_voice_at records the clock on active ticks only."""
        from voxpipe.vad import VoiceActivityDetector

        clock = iter([100.0, 101.0])
        vad = VoiceActivityDetector(clock=lambda: next(clock))

        vad.tick(SILENT)
        assert vad.snapshot().last_voice_at is None

        vad.tick(LOUD)
        assert vad.snapshot().last_voice_at == 100.0

    def test_ticks_channel_receives_snapshots(self):
        """Every tick is published on the ticks channel."""
        from voxpipe.vad import VoiceActivityDetector

        received = []
        vad = VoiceActivityDetector()
        vad.ticks.connect(received.append)

        vad.tick(LOUD)
        vad.tick(SILENT)

        assert len(received) == 2
        assert received[0].is_voice_active is True


class TestDetectorLifecycle:
    """Tests for start/stop and resource teardown."""

    def test_stop_without_start(self):
        """stop() is safe on a detector that never started."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        snapshot = vad.stop()

        assert snapshot.voice_detected is False
        assert vad.running is False

    def test_stop_is_idempotent(self, fake_stream):
        """A second stop returns the same snapshot and touches nothing."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        vad.start(fake_stream, timer=False)
        vad.tick(LOUD)

        first = vad.stop()
        second = vad.stop()

        assert first == second
        assert len(fake_stream.removed) == 1
        assert fake_stream.listeners == []

    def test_teardown_order(self, fake_stream):
        """Sampling halts before the analyser is detached, and it's released last."""
        from voxpipe.vad import SpectrumAnalyser, VoiceActivityDetector

        events = []
        vad = None

        class RecordingAnalyser(SpectrumAnalyser):
            def release(self):
                events.append("release")
                super().release()

        original_remove = fake_stream.remove_listener

        def remove_listener(listener):
            events.append(("remove", vad._halt.is_set(), vad.running))
            original_remove(listener)

        fake_stream.remove_listener = remove_listener

        vad = VoiceActivityDetector(analyser_factory=RecordingAnalyser)
        vad.start(fake_stream, timer=False)
        vad.stop()

        assert events == [("remove", True, False), "release"]

    def test_start_resets_state(self, fake_stream):
        """Starting a new session clears the previous one's stats."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        vad.start(fake_stream, timer=False)
        for _ in range(12):
            vad.tick(LOUD)
        vad.stop()

        vad.start(fake_stream, timer=False)
        snapshot = vad.snapshot()
        vad.stop()

        assert snapshot.voice_detected is False
        assert snapshot.peak == 0.0
        assert snapshot.speech_duration == 0.0

    def test_tick_after_stop_reads_nothing(self, fake_stream):
        """Timer ticks that race with stop() don't touch a released analyser."""
        from voxpipe.vad import VoiceActivityDetector

        vad = VoiceActivityDetector()
        vad.start(fake_stream, timer=False)
        before = vad.stop()

        assert vad.tick() == before

    def test_timer_samples_analyser(self, fake_stream):
        """With the sampler running, the analyser is read on each interval."""
        from voxpipe.vad import SpectrumAnalyser, VoiceActivityDetector

        class LoudAnalyser(SpectrumAnalyser):
            def frequency_levels(self):
                return np.ones(self.bin_count)

        vad = VoiceActivityDetector(analyser_factory=LoudAnalyser)
        vad.start(fake_stream)

        deadline = time.time() + 3.0
        while time.time() < deadline and not vad.snapshot().voice_detected:
            time.sleep(0.05)

        snapshot = vad.stop()
        assert snapshot.voice_detected is True
        assert vad.running is False


class TestSpectrumAnalyser:
    """Tests for the analyser's frequency levels."""

    def test_silence_gives_zero_levels(self):
        from voxpipe.vad import SpectrumAnalyser, FFT_SIZE

        analyser = SpectrumAnalyser()
        analyser.feed(np.zeros(4096, dtype=np.float32))
        levels = analyser.frequency_levels()

        assert levels.shape == (FFT_SIZE // 2,)
        assert np.all(levels == 0.0)

    def test_tone_produces_levels(self, tone):
        """A full-scale tone saturates its bin; levels stay in [0, 1]."""
        from voxpipe.vad import SpectrumAnalyser

        analyser = SpectrumAnalyser()
        analyser.feed(tone(seconds=0.2, freq=1000.0, amplitude=1.0))
        levels = analyser.frequency_levels()

        assert levels.max() == 1.0
        assert levels.min() >= 0.0

    def test_keeps_latest_window(self):
        """Short blocks slide into the window; old samples drop out."""
        from voxpipe.vad import SpectrumAnalyser

        analyser = SpectrumAnalyser(fft_size=8)
        analyser.feed(np.arange(6, dtype=np.float32))
        analyser.feed(np.array([10, 11, 12], dtype=np.float32))

        assert analyser._samples.tolist() == [1, 2, 3, 4, 5, 10, 11, 12]

    def test_released_analyser_is_silent(self, tone):
        from voxpipe.vad import SpectrumAnalyser

        analyser = SpectrumAnalyser()
        analyser.feed(tone(seconds=0.2, amplitude=1.0))
        analyser.release()
        analyser.feed(tone(seconds=0.2, amplitude=1.0))

        assert np.all(analyser.frequency_levels() == 0.0)
