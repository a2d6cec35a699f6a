"""
Parakeet MLX engine for local transcription.

Uses Apple Silicon optimizations via MLX framework.
"""

import gc
import threading
import time

import numpy as np

from . import LocalEngine
from ..encoder import render_mono
from ..errors import NO_AUDIO_MESSAGE
from ..types import EngineOptions, LocalEngineResult


MODEL_REPO_PREFIX = "mlx-community/"


class ParakeetEngine(LocalEngine):
    """
    Local transcription using a Parakeet MLX model.

    The model is loaded on first use and kept in memory; switching model
    names reloads it. Thread-safe via lock (MLX models aren't thread-safe).
    """

    name = "parakeet"

    def __init__(self):
        self.model = None
        self.model_name = None
        self._lock = threading.Lock()
        self._transcription_count = 0
        self._CACHE_CLEAR_INTERVAL = 10  # Clear MLX cache every N transcriptions

    def _load(self, model_name: str) -> None:
        """Load model weights. Must be called with lock held."""
        from parakeet_mlx import from_pretrained

        repo = model_name if "/" in model_name else MODEL_REPO_PREFIX + model_name
        print(f"[{self.name}] Loading model {repo}...")
        self.model = from_pretrained(repo)
        self.model_name = model_name
        print(f"[{self.name}] Initialized")

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
                import mlx.core as mx
                from parakeet_mlx.audio import get_logmel

                if self.model is None or self.model_name != options.model:
                    self._load(options.model)

                audio_mx = mx.array(samples.astype(np.float32))
                mel = get_logmel(audio_mx, self.model.preprocessor_config)
                alignments = self.model.generate(mel)
                text = "".join(seg.text for seg in alignments).strip()

                # Clean up to prevent memory accumulation
                del audio_mx
                del mel
                del alignments

                self._transcription_count += 1
                if self._transcription_count >= self._CACHE_CLEAR_INTERVAL:
                    self._transcription_count = 0
                    if hasattr(mx, "clear_cache"):
                        mx.clear_cache()
                    elif hasattr(mx, "metal") and hasattr(mx.metal, "clear_cache"):
                        mx.metal.clear_cache()

            except Exception as e:
                print(f"[{self.name}] Transcription error: {e}")
                return LocalEngineResult(success=False, message=str(e), error=type(e).__name__)

        if not text:
            return LocalEngineResult(success=False, message=NO_AUDIO_MESSAGE)
        return LocalEngineResult(success=True, text=text, conversion_ms=conversion_ms)

    def shutdown(self) -> None:
        """Unload model weights."""
        with self._lock:
            self.model = None
            self.model_name = None

        gc.collect()
        print(f"[{self.name}] Shutdown")
