"""
Shared fixtures: fake live streams and configuration snapshots.
"""

import numpy as np
import pytest


class FakeStream:
    """Stands in for MicrophoneStream without touching audio hardware."""

    def __init__(self, sample_rate: int = 16000, label: str = "Fake Mic"):
        self.sample_rate = sample_rate
        self.label = label
        self.listeners = []
        self.removed = []
        self.stop_calls = 0

    def add_listener(self, listener):
        if listener not in self.listeners:
            self.listeners.append(listener)

    def remove_listener(self, listener):
        self.removed.append(listener)
        if listener in self.listeners:
            self.listeners.remove(listener)

    def push(self, block):
        for listener in list(self.listeners):
            listener(block)

    def stop(self):
        self.stop_calls += 1
        self.listeners.clear()
        return True


def sine(seconds: float = 0.5, rate: int = 16000, freq: float = 440.0, amplitude: float = 0.5):
    t = np.arange(int(seconds * rate), dtype=np.float32) / rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


@pytest.fixture
def fake_stream():
    return FakeStream()


@pytest.fixture
def stream_factory():
    """Returns the FakeStream class for tests that need several streams."""
    return FakeStream


@pytest.fixture
def tone():
    """Sine generator: tone(seconds, rate, freq, amplitude)."""
    return sine


@pytest.fixture
def make_config():
    """Build a ConfigSnapshot with overrides."""
    from voxpipe.types import ConfigSnapshot

    def _make(**overrides):
        values = {
            "env_api_keys": {"openai": "sk-test-openai"},
            "stored_api_keys": {},
        }
        values.update(overrides)
        return ConfigSnapshot(**values)

    return _make
