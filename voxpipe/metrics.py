"""
Thread-safe metrics logging with batched writes.

Usage:
    metrics = MetricsWriter(config.metrics_file)
    metrics.log("pipeline_timing", mode="cloud", round_trip_ms=812)
"""

import json
import time
import threading
from queue import Queue, Empty
from pathlib import Path
from typing import Any, Dict, List, Optional

from .types import Timings, VADSnapshot


class MetricsWriter:
    """
    Thread-safe metrics writer with atomic appends.
    Uses a queue to batch writes from multiple threads.
    """

    def __init__(self, metrics_file: Path):
        self.metrics_file = metrics_file
        self._queue: "Queue[dict]" = Queue()
        self._shutdown = threading.Event()
        self._writer_thread = threading.Thread(target=self._writer_loop, daemon=True)
        self._writer_thread.start()

    def log(self, event: str, **kwargs: Any) -> None:
        """
        Queue a metric for writing. Non-blocking.

        Args:
            event: Event name (e.g., "recording_started", "pipeline_timing")
            **kwargs: Additional fields to log
        """
        entry = {
            "ts": time.time(),
            "event": event,
            **kwargs
        }
        self._queue.put(entry)

    def _writer_loop(self) -> None:
        """Background thread that batches and writes metrics."""
        while not self._shutdown.is_set():
            try:
                # Wait for first entry
                entries = [self._queue.get(timeout=1.0)]

                # Drain queue (batch writes)
                while True:
                    try:
                        entries.append(self._queue.get_nowait())
                    except Empty:
                        break

                self._write_entries(entries)

            except Empty:
                continue
            except Exception as e:
                print(f"MetricsWriter error: {e}")

    def _write_entries(self, entries: List[dict]) -> None:
        """Write entries to file."""
        try:
            self.metrics_file.parent.mkdir(parents=True, exist_ok=True)

            with open(self.metrics_file, "a") as f:
                for entry in entries:
                    f.write(json.dumps(entry) + "\n")
        except Exception as e:
            print(f"Failed to write metrics: {e}")

    def flush(self) -> None:
        """Flush any pending metrics to disk."""
        entries = []
        while True:
            try:
                entries.append(self._queue.get_nowait())
            except Empty:
                break

        if entries:
            self._write_entries(entries)

    def shutdown(self) -> None:
        """Shutdown the writer thread gracefully."""
        self._shutdown.set()
        self._writer_thread.join(timeout=2.0)
        self.flush()


# Global instance (initialized lazily)
_metrics: Optional[MetricsWriter] = None


def get_metrics(metrics_file: Path) -> MetricsWriter:
    """Get or create the global metrics writer."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsWriter(metrics_file)
    return _metrics


# Typed helper functions for consistent event logging

def log_recording_started(
    metrics: MetricsWriter,
    device: str,
    sample_rate: int,
) -> None:
    """Log recording_started event."""
    metrics.log("recording_started", device=device, sample_rate=sample_rate)


def log_recording_stopped(
    metrics: MetricsWriter,
    duration_seconds: Optional[float],
    blocks: int,
    vad: VADSnapshot,
) -> None:
    """Log recording_stopped event with final VAD stats."""
    metrics.log(
        "recording_stopped",
        duration_seconds=duration_seconds,
        blocks=blocks,
        peak_level=round(vad.peak, 4),
        voice_detected=vad.voice_detected,
        speech_duration=vad.speech_duration,
    )


def log_no_audio(metrics: MetricsWriter, vad: VADSnapshot) -> None:
    """Log no_audio event."""
    metrics.log(
        "no_audio",
        peak_level=round(vad.peak, 4),
        voice_detected=vad.voice_detected,
        speech_duration=vad.speech_duration,
    )


def log_pipeline_timing(
    metrics: MetricsWriter,
    mode: str,
    model: str,
    source: str,
    timings: Timings,
    round_trip_ms: int,
    audio_duration_ms: Optional[int],
    audio_size_bytes: int,
    audio_format: str,
    output_text_length: int,
) -> None:
    """Log pipeline_timing event."""
    fields: Dict[str, Any] = {
        "mode": mode,
        "model": model,
        "source": source,
        "audio_duration_ms": audio_duration_ms,
        "transcription_ms": timings.transcription_ms,
        "reasoning_ms": timings.reasoning_ms,
        "round_trip_ms": round_trip_ms,
        "audio_size_bytes": audio_size_bytes,
        "audio_format": audio_format,
        "output_text_length": output_text_length,
    }
    if mode.startswith("local"):
        fields["conversion_ms"] = timings.conversion_ms
    metrics.log("pipeline_timing", **fields)


def log_pipeline_failed(metrics: MetricsWriter, error_at_ms: int, error: str) -> None:
    """Log pipeline_failed event."""
    metrics.log("pipeline_failed", error_at_ms=error_at_ms, error=error[:500])
