"""
Persistent transcription history.

Each saved transcription is one JSON line in ~/.voxpipe/history.jsonl.
"""

import json
import threading
import time
from pathlib import Path
from typing import List, Optional


class TranscriptionStore:
    """
    Append-only JSONL history.

    Usage:
        store = TranscriptionStore(config.history_file)
        store.save("Hello world", source="cloud")
        store.recent(5)
    """

    def __init__(self, history_file: Path):
        self.history_file = Path(history_file)
        self._lock = threading.Lock()

    def save(self, text: str, source: Optional[str] = None) -> None:
        """
        Append a transcription.

        Raises:
            OSError: History file couldn't be written
        """
        if not text or not text.strip():
            return

        entry = {"ts": time.time(), "text": text.strip()}
        if source:
            entry["source"] = source

        with self._lock:
            self.history_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.history_file, "a") as f:
                f.write(json.dumps(entry) + "\n")

    def recent(self, limit: int = 10) -> List[dict]:
        """Most recent entries, oldest first. Unreadable lines are skipped."""
        with self._lock:
            if not self.history_file.exists():
                return []
            with open(self.history_file) as f:
                lines = f.readlines()

        entries = []
        for line in lines[-limit:]:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries
