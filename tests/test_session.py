"""
Tests for the recording controller state machine.

The microphone is a FakeStream and the VAD is driven tick by tick, so every
ordering (stop/cancel races included) is deterministic.
"""

from unittest.mock import Mock

import numpy as np
import pytest


LOUD = np.ones(1024)


def create_controller(make_config, stream, **overrides):
    """Controller with fake hardware. Returns (controller, detectors, dispatcher)."""
    from voxpipe.session import RecordingController
    from voxpipe.types import ResultSource, TranscriptionResult
    from voxpipe.vad import VoiceActivityDetector

    detectors = []

    class ManualDetector(VoiceActivityDetector):
        def start(self, stream, timer=False):
            super().start(stream, timer=False)

    def detector_factory():
        detector = ManualDetector()
        detectors.append(detector)
        return detector

    dispatcher = Mock()
    dispatcher.dispatch.return_value = TranscriptionResult(
        success=True, text="Hello", source=ResultSource.CLOUD
    )

    config = make_config()
    kwargs = dict(
        open_stream=lambda device, rate: stream,
        select_device=lambda cfg: None,
        detector_factory=detector_factory,
        paste=Mock(),
        store=Mock(),
        schedule=lambda fn: fn(),
    )
    kwargs.update(overrides)
    controller = RecordingController(lambda: config, dispatcher, **kwargs)
    return controller, detectors, dispatcher


def speak(controller, detectors, stream, tone, ticks=12):
    """Feed a tone and enough loud ticks to pass the VAD gate."""
    stream.push(tone(seconds=0.5))
    for _ in range(ticks):
        detectors[-1].tick(LOUD)


class TestRecordingController:
    """Tests for start/stop and the happy path."""

    def test_start(self, make_config, fake_stream):
        from voxpipe.types import SessionState

        controller, detectors, _ = create_controller(make_config, fake_stream)
        states = []
        controller.state_changed.connect(states.append)

        assert controller.start() is True
        assert controller.state == SessionState.RECORDING
        assert controller.is_recording is True
        assert states == [SessionState.RECORDING]
        assert detectors[0].running is True

    def test_start_while_recording(self, make_config, fake_stream):
        controller, _, _ = create_controller(make_config, fake_stream)

        controller.start()
        assert controller.start() is False

    def test_stop_and_cancel_when_idle(self, make_config, fake_stream):
        controller, _, _ = create_controller(make_config, fake_stream)

        assert controller.stop() is False
        assert controller.cancel() is False

    def test_transcribes_speech(self, make_config, fake_stream, tone):
        from voxpipe.types import SessionState

        clock = Mock(side_effect=[10.0, 12.5])
        controller, detectors, dispatcher = create_controller(make_config, fake_stream, clock=clock)
        states, results = [], []
        controller.state_changed.connect(states.append)
        controller.transcription_complete.connect(results.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        assert controller.stop() is True

        assert states == [SessionState.RECORDING, SessionState.PROCESSING, SessionState.IDLE]
        assert [r.text for r in results] == ["Hello"]

        audio, mime, duration = dispatcher.dispatch.call_args[0]
        assert audio[:4] == b"fLaC"
        assert mime == "audio/flac"
        assert duration == 2.5

        controller._paste.assert_called_once_with("Hello")
        controller.store.save.assert_called_once_with("Hello", source="cloud")
        assert fake_stream.stop_calls == 1
        assert controller.session is None
        assert controller.state == SessionState.IDLE

    def test_stop_twice(self, make_config, fake_stream):
        scheduled = []
        controller, _, _ = create_controller(make_config, fake_stream, schedule=scheduled.append)

        controller.start()
        assert controller.stop() is True
        assert controller.stop() is False
        assert len(scheduled) == 1

    def test_stop_detaches_buffer(self, make_config, fake_stream, tone):
        """Blocks arriving after stop() aren't part of the recording."""
        scheduled = []
        controller, _, _ = create_controller(make_config, fake_stream, schedule=scheduled.append)

        controller.start()
        fake_stream.push(tone(seconds=0.1))
        controller.stop()
        fake_stream.push(tone(seconds=0.1))

        assert len(controller.session.blocks) == 1

    def test_vad_ticks_forwarded(self, make_config, fake_stream):
        controller, detectors, _ = create_controller(make_config, fake_stream)
        ticks = []
        controller.vad_tick.connect(ticks.append)

        controller.start()
        detectors[0].tick(LOUD)

        assert len(ticks) == 1
        assert controller.vad_snapshot().voice_detected is True

    def test_real_worker(self, make_config, fake_stream, tone):
        """With the default scheduler, finalization runs on a worker thread."""
        from voxpipe.types import SessionState

        controller, detectors, dispatcher = create_controller(
            make_config, fake_stream, schedule=None
        )
        results = []
        controller.transcription_complete.connect(results.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()

        assert controller.wait(5.0) is True
        assert controller.state == SessionState.IDLE
        assert len(results) == 1


class TestNoAudio:
    """Recordings that fail the VAD gate."""

    def test_silence_skips_transcription(self, make_config, fake_stream, tone):
        from voxpipe.types import SessionState

        metrics = Mock()
        controller, detectors, dispatcher = create_controller(make_config, fake_stream, metrics=metrics)
        states, no_audio = [], []
        controller.state_changed.connect(states.append)
        controller.no_audio.connect(no_audio.append)

        controller.start()
        fake_stream.push(tone(seconds=0.5, amplitude=0.0))
        for _ in range(20):
            detectors[0].tick(np.zeros(1024))
        controller.stop()

        assert no_audio == [None]
        assert states == [SessionState.RECORDING, SessionState.IDLE]
        dispatcher.dispatch.assert_not_called()
        assert fake_stream.stop_calls == 1

        events = [c[0][0] for c in metrics.log.call_args_list]
        assert events == ["recording_started", "recording_stopped", "no_audio"]

    def test_too_little_speech(self, make_config, fake_stream, tone):
        """Nine active ticks (0.45s) is not enough."""
        controller, detectors, dispatcher = create_controller(make_config, fake_stream)
        no_audio = []
        controller.no_audio.connect(no_audio.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone, ticks=9)
        controller.stop()

        assert no_audio == [None]
        dispatcher.dispatch.assert_not_called()

    def test_engine_reports_no_audio(self, make_config, fake_stream, tone):
        from voxpipe.errors import NoAudioDetected

        controller, detectors, dispatcher = create_controller(make_config, fake_stream)
        dispatcher.dispatch.side_effect = NoAudioDetected()
        no_audio, errors = [], []
        controller.no_audio.connect(no_audio.append)
        controller.error.connect(errors.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()

        assert no_audio == [None]
        assert errors == []


class TestCancel:
    """Cancellation, including the stop/cancel race."""

    def test_cancel_while_recording(self, make_config, fake_stream, tone):
        from voxpipe.types import SessionState

        controller, detectors, dispatcher = create_controller(make_config, fake_stream)
        states = []
        controller.state_changed.connect(states.append)

        controller.start()
        session = controller.session
        speak(controller, detectors, fake_stream, tone)

        assert controller.cancel() is True
        assert states == [SessionState.RECORDING, SessionState.IDLE]
        assert session.blocks == []
        assert session.released is True
        assert fake_stream.stop_calls == 1
        assert detectors[0].running is False
        dispatcher.dispatch.assert_not_called()

    def test_cancel_after_stop_wins(self, make_config, fake_stream, tone):
        """A cancel landing before the finalize worker runs discards the audio."""
        scheduled = []
        controller, detectors, dispatcher = create_controller(
            make_config, fake_stream, schedule=scheduled.append
        )
        no_audio, results = [], []
        controller.no_audio.connect(no_audio.append)
        controller.transcription_complete.connect(results.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()
        assert controller.cancel() is True

        scheduled[0]()

        dispatcher.dispatch.assert_not_called()
        assert no_audio == []
        assert results == []
        assert fake_stream.stop_calls == 1

    def test_can_record_again_after_cancel(self, make_config, stream_factory):
        streams = [stream_factory(), stream_factory()]
        opened = iter(streams)
        controller, detectors, _ = create_controller(
            make_config, None, open_stream=lambda device, rate: next(opened)
        )

        controller.start()
        controller.cancel()
        assert controller.start() is True
        assert controller.session.stream is streams[1]
        assert len(detectors) == 2


class TestErrors:
    """Failures surfaced on the error channel."""

    def test_permission_denied(self, make_config):
        from voxpipe.types import SessionState

        def open_stream(device, rate):
            raise PermissionError("not allowed")

        controller, _, _ = create_controller(make_config, None, open_stream=open_stream)
        errors = []
        controller.error.connect(errors.append)

        assert controller.start() is False
        assert errors[0].title == "Microphone Access Denied"
        assert controller.state == SessionState.IDLE

    def test_generic_device_error(self, make_config):
        def open_stream(device, rate):
            raise RuntimeError("boom")

        controller, _, _ = create_controller(make_config, None, open_stream=open_stream)
        errors = []
        controller.error.connect(errors.append)

        controller.start()

        assert errors[0].title == "Recording Error"
        assert errors[0].description == "Failed to access microphone: boom"

    def test_setup_failure_releases_stream(self, make_config):
        """A failure after the stream opens still closes the microphone."""
        from voxpipe.types import SessionState

        stream = Mock(sample_rate=16000, label="Fake Mic")
        stream.add_listener.side_effect = RuntimeError("boom")
        controller, detectors, _ = create_controller(make_config, stream)
        errors = []
        controller.error.connect(errors.append)

        assert controller.start() is False

        stream.stop.assert_called_once()
        assert detectors == []
        assert errors[0].title == "Recording Error"
        assert controller.state == SessionState.IDLE
        assert controller.session is None

    def test_detector_failure_releases_stream(self, make_config, fake_stream):
        def detector_factory():
            raise RuntimeError("no analyser")

        controller, _, _ = create_controller(make_config, fake_stream, detector_factory=detector_factory)
        errors = []
        controller.error.connect(errors.append)

        assert controller.start() is False
        assert fake_stream.stop_calls == 1
        assert errors[0].description == "Failed to access microphone: no analyser"
        assert controller.start() is False
        assert fake_stream.stop_calls == 2

    def test_transcription_error(self, make_config, fake_stream, tone):
        from voxpipe.errors import TranscriptionError
        from voxpipe.types import SessionState

        controller, detectors, dispatcher = create_controller(make_config, fake_stream)
        dispatcher.dispatch.side_effect = TranscriptionError("boom")
        errors, results = [], []
        controller.error.connect(errors.append)
        controller.transcription_complete.connect(results.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()

        assert errors[0].title == "Transcription Error"
        assert errors[0].description == "Transcription failed: boom"
        assert results == []
        assert controller.state == SessionState.IDLE

    def test_paste_error(self, make_config, fake_stream, tone):
        """A paste failure is reported but the text still reaches history."""
        from voxpipe.output import OutputError

        paste = Mock(side_effect=OutputError("not authorized"))
        controller, detectors, _ = create_controller(make_config, fake_stream, paste=paste)
        errors = []
        controller.error.connect(errors.append)

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()

        assert errors[0].title == "Paste Error"
        assert errors[0].description == (
            "Failed to paste text. Please check accessibility permissions. not authorized"
        )
        controller.store.save.assert_called_once()

    def test_start_while_processing(self, make_config, fake_stream, tone):
        attempts = []
        controller, detectors, dispatcher = create_controller(make_config, fake_stream)
        original = dispatcher.dispatch.return_value

        def dispatch(*args):
            attempts.append(controller.start())
            return original

        dispatcher.dispatch.side_effect = dispatch

        controller.start()
        speak(controller, detectors, fake_stream, tone)
        controller.stop()

        assert attempts == [False]


class TestRecordingSession:
    """Tests for RecordingSession."""

    def test_release_once(self, fake_stream):
        from voxpipe.session import RecordingSession

        session = RecordingSession(stream=fake_stream, started_at=0.0, sample_rate=16000)

        assert session.release() is True
        assert session.release() is False
        assert fake_stream.stop_calls == 1

    def test_closed_session_ignores_blocks(self, fake_stream):
        from voxpipe.session import RecordingSession

        session = RecordingSession(stream=fake_stream, started_at=0.0, sample_rate=16000)
        session.append(np.zeros(4))
        session.discard()
        session.append(np.zeros(4))

        assert session.blocks == []
        assert session.duration is None

    def test_duration(self, fake_stream):
        from voxpipe.session import RecordingSession

        session = RecordingSession(stream=fake_stream, started_at=1.0, sample_rate=16000)
        session.stopped_at = 3.5

        assert session.duration == pytest.approx(2.5)
