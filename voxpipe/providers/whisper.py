"""
faster-whisper engine for local transcription.

Models are loaded on first use and kept per model name, so the fallback
model and the primary model can coexist.
"""

import gc
import threading
import time
from typing import Dict

import numpy as np

from . import LocalEngine
from ..encoder import render_mono
from ..errors import NO_AUDIO_MESSAGE
from ..types import EngineOptions, LocalEngineResult


class WhisperEngine(LocalEngine):
    """
    Local transcription using faster-whisper.

    Thread-safe via lock (one inference at a time per engine).
    """

    name = "whisper"

    def __init__(self, device: str = "auto", compute_type: str = "default"):
        self.device = device
        self.compute_type = compute_type
        self._models: Dict[str, object] = {}
        self._lock = threading.Lock()

    def _get_model(self, model_name: str):
        """Load (or reuse) a WhisperModel. Must be called with lock held."""
        model = self._models.get(model_name)
        if model is None:
            from faster_whisper import WhisperModel

            print(f"[{self.name}] Loading model '{model_name}'...")
            model = WhisperModel(model_name, device=self.device, compute_type=self.compute_type)
            self._models[model_name] = model
            print(f"[{self.name}] Model '{model_name}' loaded")
        return model

    def transcribe(self, audio: bytes, options: EngineOptions) -> LocalEngineResult:
        start = time.perf_counter()
        try:
            samples = render_mono(audio)
        except Exception as e:
            return LocalEngineResult(success=False, message=f"Could not decode audio: {e}", error=str(e))

        conversion_ms = int((time.perf_counter() - start) * 1000)

        if samples.size == 0 or not np.any(samples):
            return LocalEngineResult(success=False, message=NO_AUDIO_MESSAGE)

        with self._lock:
            try:
                model = self._get_model(options.model)
                segments, _info = model.transcribe(
                    samples,
                    language=options.language,
                    initial_prompt=options.initial_prompt,
                )
                text = "".join(segment.text for segment in segments).strip()
            except Exception as e:
                print(f"[{self.name}] Transcription error: {e}")
                return LocalEngineResult(success=False, message=str(e), error=type(e).__name__)

        if not text:
            return LocalEngineResult(success=False, message=NO_AUDIO_MESSAGE)
        return LocalEngineResult(success=True, text=text, conversion_ms=conversion_ms)

    def shutdown(self) -> None:
        with self._lock:
            self._models.clear()
        gc.collect()
        print(f"[{self.name}] Shutdown")
