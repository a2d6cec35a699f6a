"""
Cloud transcription over an OpenAI-compatible HTTP API.

Serves OpenAI, Groq and custom endpoints. Fetching the API key and
re-encoding the audio run concurrently before the upload. Responses are
either plain JSON ({"text": ...}) or a server-sent event stream.
"""

import json
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Tuple

import requests

from .capabilities import resolve_model, should_stream
from .credentials import CredentialStore, mask_key
from .encoder import optimize_audio, should_optimize
from .endpoints import EndpointResolver
from .errors import NetworkOrAPIError, ParseError, TranscriptionEmpty
from .streaming import read_transcription_stream
from .types import ConfigSnapshot, TranscriptionRequest


EMPTY_RESULT_MESSAGE = (
    "No text transcribed - audio may be too short, silent, or in an unsupported format"
)

# Checked in order; first substring match wins
_EXTENSIONS = (
    ("webm", "webm"),
    ("ogg", "ogg"),
    ("mp4", "mp4"),
    ("mpeg", "mp3"),
    ("wav", "wav"),
    ("flac", "flac"),
)


def upload_extension(mime_type: Optional[str]) -> str:
    """File extension the API uses to detect the upload's codec."""
    mime = (mime_type or "").lower()
    for marker, extension in _EXTENSIONS:
        if marker in mime:
            return extension
    return "webm"


class CloudTranscriber:
    """
    Sends one recording to the configured cloud provider.

    Usage:
        cloud = CloudTranscriber(config.snapshot)
        text = cloud.transcribe(audio_bytes, "audio/flac", duration_seconds=4.2)
    """

    def __init__(
        self,
        config_fn: Callable[[], ConfigSnapshot],
        credentials: Optional[CredentialStore] = None,
        endpoints: Optional[EndpointResolver] = None,
        http: Optional[requests.Session] = None,
    ):
        self._config_fn = config_fn
        self.credentials = credentials or CredentialStore(config_fn)
        self.endpoints = endpoints or EndpointResolver(config_fn)
        # Persistent session for connection reuse
        self._http = http or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="voxpipe-cloud")

    def current_model(self) -> str:
        config = self._config_fn()
        return resolve_model(config.cloud_provider or "openai", config.cloud_model)

    def build_request(
        self,
        audio: bytes,
        mime_type: str,
        duration_seconds: Optional[float] = None,
    ) -> Tuple[TranscriptionRequest, Optional[str]]:
        """
        Resolve model/options and prepare the upload.

        Returns:
            (request, api_key)

        Raises:
            CredentialMissing: No usable key for openai/groq
        """
        config = self._config_fn()
        provider = config.cloud_provider or "openai"
        model = resolve_model(provider, config.cloud_model)

        optimize = should_optimize(len(audio), model, duration_seconds)

        key_future = self._executor.submit(self.credentials.get_api_key, provider)
        audio_future = (
            self._executor.submit(optimize_audio, audio, mime_type) if optimize else None
        )

        # Both futures settle before any error surfaces
        upload, upload_mime = audio_future.result() if audio_future else (audio, mime_type)
        api_key = key_future.result()

        request = TranscriptionRequest(
            audio=upload,
            mime_type=upload_mime or "audio/webm",
            provider=provider,
            model=model,
            language=config.language,
            prompt=config.dictionary_prompt(),
            stream=should_stream(model, provider),
        )
        return request, api_key

    def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        duration_seconds: Optional[float] = None,
    ) -> str:
        """
        Transcribe audio and return the raw (unprocessed) text.

        Raises:
            CredentialMissing: No usable API key
            NetworkOrAPIError: Transport failure or non-2xx status
            ParseError: Non-streamed body isn't JSON
            TranscriptionEmpty: Response held no text
        """
        request, api_key = self.build_request(audio, mime_type, duration_seconds)
        return self.send(request, api_key)

    def send(self, request: TranscriptionRequest, api_key: Optional[str]) -> str:
        """POST a prepared request and extract the transcript."""
        config = self._config_fn()
        endpoint = self.endpoints.resolve()

        extension = upload_extension(request.mime_type)
        files = {"file": (f"audio.{extension}", request.audio, request.mime_type)}
        data = {"model": request.model}
        if request.language:
            data["language"] = request.language
        if request.prompt:
            data["prompt"] = request.prompt
        if request.stream:
            data["stream"] = "true"

        # Custom endpoints may not need auth
        headers = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        print(
            f"[Cloud] POST {endpoint} model={request.model} provider={request.provider} "
            f"stream={request.stream} bytes={len(request.audio)} key={mask_key(api_key)}"
        )

        start = time.perf_counter()
        try:
            response = self._http.post(
                endpoint,
                headers=headers,
                files=files,
                data=data,
                timeout=config.request_timeout,
                stream=request.stream,
            )
        except requests.RequestException as e:
            raise NetworkOrAPIError(f"Network error: {e}") from e

        if not response.ok:
            error_text = response.text
            print(f"[Cloud] API error {response.status_code}: {error_text[:500]}")
            raise NetworkOrAPIError(
                f"API Error: {response.status_code} {error_text}",
                status_code=response.status_code,
            )

        content_type = response.headers.get("content-type", "")
        try:
            if request.stream and "text/event-stream" in content_type:
                text = read_transcription_stream(response.iter_content(chunk_size=None))
            else:
                text = self._parse_json_body(response.text)
        except requests.RequestException as e:
            raise NetworkOrAPIError(f"Network error: {e}") from e

        elapsed = time.perf_counter() - start
        if not text or not text.strip():
            print(f"[Cloud] Empty transcription ({request.mime_type}, {len(request.audio)} bytes)")
            raise TranscriptionEmpty(EMPTY_RESULT_MESSAGE)

        print(f"[Cloud] {request.model} -> {elapsed:.2f}s, {len(text)} chars")
        return text

    @staticmethod
    def _parse_json_body(raw: str) -> str:
        try:
            result = json.loads(raw)
        except json.JSONDecodeError as e:
            print(f"[Cloud] Failed to parse response: {raw[:500]}")
            raise ParseError(f"Failed to parse API response: {e}") from e

        if not isinstance(result, dict):
            return ""
        text = result.get("text")
        return text if isinstance(text, str) else ""

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
        self._http.close()
