"""
Main entry point for voxpipe.

Run with: python -m voxpipe

Press Enter to start recording and Enter again to stop. Ctrl+C cancels a
recording in progress, or quits when idle.
"""

import sys

from . import __version__
from .cloud import CloudTranscriber
from .config import Config
from .dispatcher import PARAKEET, WHISPER, TranscriptionDispatcher
from .history import TranscriptionStore
from .metrics import get_metrics
from .output import notify
from .providers.parakeet import ParakeetEngine
from .providers.whisper import WhisperEngine
from .reasoning import ReasoningPostProcessor
from .session import RecordingController
from .types import ErrorNotice, ResultSource, SessionState, TranscriptionResult, VADSnapshot


FALLBACK_SOURCES = {ResultSource.CLOUD_FALLBACK, ResultSource.LOCAL_FALLBACK}


def build_controller(config: Config, metrics=None) -> RecordingController:
    """Wire the pipeline together from configuration."""
    engines = {
        WHISPER: WhisperEngine(),
        PARAKEET: ParakeetEngine(),
    }
    dispatcher = TranscriptionDispatcher(
        config_fn=config.snapshot,
        cloud=CloudTranscriber(config.snapshot),
        engines=engines,
        reasoning=ReasoningPostProcessor(config.snapshot),
        metrics=metrics,
    )
    return RecordingController(
        config.snapshot,
        dispatcher,
        store=TranscriptionStore(config.history_file),
        metrics=metrics,
    )


def _print_level(snapshot: VADSnapshot) -> None:
    bar = "#" * min(40, int(snapshot.level * 200))
    marker = "*" if snapshot.is_voice_active else " "
    sys.stdout.write(f"\r  {marker} [{bar:<40}] {snapshot.speech_duration:4.1f}s")
    sys.stdout.flush()


def _on_state(state: SessionState) -> None:
    if state == SessionState.RECORDING:
        print("\nRecording... press Enter to stop, Ctrl+C to cancel.")
    elif state == SessionState.PROCESSING:
        print("\nTranscribing...")
    else:
        print("\nReady. Press Enter to record.")


def _on_error(notice: ErrorNotice) -> None:
    print(f"\n[{notice.title}] {notice.description}")
    notify(notice.description, title=notice.title)


def _on_result(result: TranscriptionResult) -> None:
    print(f"\n>>> {result.text}")
    if result.source in FALLBACK_SOURCES:
        print(f"    (used fallback: {result.source.value})")


def _on_no_audio(_: None) -> None:
    print("\nNo audio detected. Try speaking closer to the microphone.")


def _on_enter(controller: RecordingController) -> None:
    """Toggle recording on Enter."""
    if controller.is_recording:
        if not controller.stop():
            print("Stopping...")
    elif controller.is_processing:
        print("Still transcribing, please wait.")
    else:
        controller.start()


def main() -> int:
    """Main entry point."""
    print(f"voxpipe v{__version__} starting...")

    config = Config.load()
    snapshot = config.snapshot()
    if snapshot.use_local_engine:
        print(f"  Engine: local ({snapshot.local_provider})")
    else:
        print(f"  Engine: cloud ({snapshot.cloud_provider})")

    metrics = get_metrics(config.metrics_file)
    controller = build_controller(config, metrics)

    controller.state_changed.connect(_on_state)
    controller.error.connect(_on_error)
    controller.transcription_complete.connect(_on_result)
    controller.vad_tick.connect(_print_level)
    controller.no_audio.connect(_on_no_audio)

    print("Ready. Press Enter to record.")
    try:
        while True:
            try:
                input()
            except EOFError:
                break
            except KeyboardInterrupt:
                if controller.cancel():
                    continue
                raise

            _on_enter(controller)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        controller.shutdown()
        for engine in controller.dispatcher.engines.values():
            engine.shutdown()
        controller.dispatcher.cloud.shutdown()
        metrics.shutdown()

    return 0


if __name__ == "__main__":
    sys.exit(main())
