"""
Transcription dispatch with fallback chaining.

Routes a finished recording to local engine A (whisper), local engine B
(parakeet) or the cloud API, runs the reasoning pass on the raw text and
applies the configured fallback direction once:

    local fails  + allow_cloud_fallback  -> cloud   (source "cloud-fallback")
    cloud fails  + allow_local_fallback  -> whisper (source "local-fallback")

"No audio detected" from a local engine is an outcome, not a failure: it
propagates as NoAudioDetected and never triggers a fallback.
"""

import time
from typing import Callable, Dict, Optional

from .cloud import CloudTranscriber
from .errors import (
    NO_AUDIO_MESSAGE,
    LocalEngineError,
    NoAudioDetected,
    PipelineFallbackExhausted,
)
from .metrics import MetricsWriter, log_pipeline_failed, log_pipeline_timing
from .providers import LocalEngine
from .reasoning import ReasoningPostProcessor
from .types import (
    ConfigSnapshot,
    EngineOptions,
    ResultSource,
    Timings,
    TranscriptionResult,
)


WHISPER = "whisper"
PARAKEET = "nvidia"

ENGINE_LABELS = {
    WHISPER: "Local Whisper",
    PARAKEET: "Parakeet",
}


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class TranscriptionDispatcher:
    """
    Runs one recording through the configured transcription path.

    Usage:
        dispatcher = TranscriptionDispatcher(config.snapshot, cloud, engines, reasoning)
        result = dispatcher.dispatch(audio_bytes, "audio/flac", duration_seconds=3.1)
    """

    def __init__(
        self,
        config_fn: Callable[[], ConfigSnapshot],
        cloud: CloudTranscriber,
        engines: Dict[str, LocalEngine],
        reasoning: ReasoningPostProcessor,
        metrics: Optional[MetricsWriter] = None,
    ):
        self._config_fn = config_fn
        self.cloud = cloud
        self.engines = engines
        self.reasoning = reasoning
        self.metrics = metrics

    def dispatch(
        self,
        audio: bytes,
        mime_type: str,
        duration_seconds: Optional[float] = None,
    ) -> TranscriptionResult:
        """
        Transcribe one recording.

        Returns:
            Successful TranscriptionResult

        Raises:
            NoAudioDetected: Local engine found no speech
            TranscriptionError: Primary path failed (and fallback, if attempted)
            CredentialMissing: Cloud key missing and no fallback applied
        """
        config = self._config_fn()
        pipeline_start = time.perf_counter()

        if config.use_local_engine:
            engine_key = PARAKEET if config.local_provider == PARAKEET else WHISPER
            mode = f"local-{engine_key}"
            model = config.parakeet_model if engine_key == PARAKEET else config.whisper_model
        else:
            engine_key = None
            mode = "cloud"
            model = self.cloud.current_model()

        try:
            if engine_key is not None:
                result = self._process_local(engine_key, audio, mime_type, config, duration_seconds)
            else:
                result = self._process_cloud(audio, mime_type, config, duration_seconds)
        except Exception as e:
            error_at_ms = _elapsed_ms(pipeline_start)
            print(f"[Pipeline] Failed after {error_at_ms}ms: {e}")
            if self.metrics:
                log_pipeline_failed(self.metrics, error_at_ms, str(e))
            raise

        round_trip_ms = _elapsed_ms(pipeline_start)
        print(
            f"[Pipeline] {mode}/{model} -> {result.source.value} in {round_trip_ms}ms "
            f"(transcription {result.timings.transcription_ms}ms, "
            f"reasoning {result.timings.reasoning_ms}ms)"
        )
        if self.metrics:
            log_pipeline_timing(
                self.metrics,
                mode=mode,
                model=model,
                source=result.source.value,
                timings=result.timings,
                round_trip_ms=round_trip_ms,
                audio_duration_ms=int(duration_seconds * 1000) if duration_seconds else None,
                audio_size_bytes=len(audio),
                audio_format=mime_type,
                output_text_length=len(result.text or ""),
            )
        return result

    def _run_engine(self, engine_key: str, audio: bytes, options: EngineOptions, timings: Timings) -> str:
        """
        Call a local engine and normalize its result.

        Returns:
            Raw transcript

        Raises:
            NoAudioDetected: Engine reported no audio
            LocalEngineError: Any other engine failure
        """
        label = ENGINE_LABELS[engine_key]
        engine = self.engines.get(engine_key)
        if engine is None:
            raise LocalEngineError(f"{label} engine is not installed")

        start = time.perf_counter()
        try:
            result = engine.transcribe(audio, options)
        except Exception as e:
            raise LocalEngineError(str(e)) from e
        timings.transcription_ms = _elapsed_ms(start)
        timings.conversion_ms = result.conversion_ms

        if result.success and result.text:
            return result.text
        if not result.success and result.message == NO_AUDIO_MESSAGE:
            raise NoAudioDetected()
        raise LocalEngineError(result.message or result.error or f"{label} transcription failed")

    def _reason(self, raw: str, source: ResultSource, timings: Timings) -> str:
        start = time.perf_counter()
        text = self.reasoning.process(raw, source.value)
        timings.reasoning_ms = _elapsed_ms(start)
        return text or raw.strip()

    def _process_local(
        self,
        engine_key: str,
        audio: bytes,
        mime_type: str,
        config: ConfigSnapshot,
        duration_seconds: Optional[float],
    ) -> TranscriptionResult:
        label = ENGINE_LABELS[engine_key]
        timings = Timings()

        if engine_key == PARAKEET:
            source = ResultSource.LOCAL_ALT
            options = EngineOptions(model=config.parakeet_model, language=config.language)
        else:
            source = ResultSource.LOCAL
            options = EngineOptions(
                model=config.whisper_model,
                language=config.language,
                initial_prompt=config.dictionary_prompt(),
            )

        try:
            raw = self._run_engine(engine_key, audio, options, timings)
            text = self._reason(raw, source, timings)
            return TranscriptionResult(success=True, text=text, source=source, timings=timings)
        except NoAudioDetected:
            raise
        except Exception as e:
            if not (config.allow_cloud_fallback and config.use_local_engine):
                raise LocalEngineError(f"{label} failed: {e}") from e

            print(f"[Pipeline] {label} failed ({e}), trying cloud fallback")
            try:
                fallback = self._process_cloud(
                    audio, mime_type, config, duration_seconds, allow_fallback=False
                )
            except Exception as fallback_error:
                raise PipelineFallbackExhausted(
                    f"{label} failed: {e}. Cloud fallback also failed: {fallback_error}",
                    primary=e,
                    fallback=fallback_error,
                ) from fallback_error

            fallback.source = ResultSource.CLOUD_FALLBACK
            return fallback

    def _process_cloud(
        self,
        audio: bytes,
        mime_type: str,
        config: ConfigSnapshot,
        duration_seconds: Optional[float],
        allow_fallback: bool = True,
    ) -> TranscriptionResult:
        timings = Timings()

        try:
            start = time.perf_counter()
            raw = self.cloud.transcribe(audio, mime_type, duration_seconds)
            timings.transcription_ms = _elapsed_ms(start)
            text = self._reason(raw, ResultSource.CLOUD, timings)
            return TranscriptionResult(success=True, text=text, source=ResultSource.CLOUD, timings=timings)
        except Exception as e:
            if not (allow_fallback and config.allow_local_fallback and not config.use_local_engine):
                raise

            print(f"[Pipeline] Cloud transcription failed ({e}), trying local fallback")
            fallback_timings = Timings()
            try:
                options = EngineOptions(
                    model=config.fallback_whisper_model,
                    language=config.language,
                )
                raw = self._run_engine(WHISPER, audio, options, fallback_timings)
                text = self._reason(raw, ResultSource.LOCAL_FALLBACK, fallback_timings)
            except Exception as fallback_error:
                raise PipelineFallbackExhausted(
                    f"Cloud API failed: {e}. Local fallback also failed: {fallback_error}",
                    primary=e,
                    fallback=fallback_error,
                ) from fallback_error

            return TranscriptionResult(
                success=True,
                text=text,
                source=ResultSource.LOCAL_FALLBACK,
                timings=fallback_timings,
            )
