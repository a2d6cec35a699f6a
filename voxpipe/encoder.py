"""
Audio re-encoding for cloud upload.

Large recordings for WAV-capable models are decoded, rendered to 16 kHz mono
and re-encoded as 16-bit PCM WAV to cut upload time. Everything here is best
effort: if anything fails the original bytes are sent unchanged.
"""

import io
import struct
from math import gcd
from typing import Optional, Tuple

import numpy as np


TARGET_SAMPLE_RATE = 16000
OPTIMIZE_MIN_BYTES = 1024 * 1024
SHORT_CLIP_DURATION_SECONDS = 2.5

WAV_MIME_TYPE = "audio/wav"


def encode_wav(samples: np.ndarray, sample_rate: int = TARGET_SAMPLE_RATE) -> bytes:
    """
    Encode mono float samples as a 16-bit PCM WAV file.

    Samples are clamped to [-1, 1]; negatives scale by 0x8000 and positives
    by 0x7FFF, then truncate toward zero.

    Args:
        samples: Mono audio, float
        sample_rate: Sample rate written to the header

    Returns:
        44-byte header followed by 2 bytes per sample
    """
    data = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)
    scaled = np.where(data < 0, data * 0x8000, data * 0x7FFF)
    pcm = np.trunc(scaled).astype("<i2")

    data_size = pcm.size * 2
    header = b"".join((
        b"RIFF",
        struct.pack("<I", 36 + data_size),
        b"WAVE",
        b"fmt ",
        struct.pack("<I", 16),              # fmt chunk size
        struct.pack("<H", 1),               # PCM
        struct.pack("<H", 1),               # mono
        struct.pack("<I", sample_rate),
        struct.pack("<I", sample_rate * 2), # byte rate
        struct.pack("<H", 2),               # block align
        struct.pack("<H", 16),              # bits per sample
        b"data",
        struct.pack("<I", data_size),
    ))
    return header + pcm.tobytes()


def decode_audio(data: bytes) -> Tuple[np.ndarray, int]:
    """
    Decode any container soundfile understands into mono float32.

    Returns:
        (samples, sample_rate)
    """
    import soundfile as sf

    audio, sample_rate = sf.read(io.BytesIO(data), dtype="float32", always_2d=True)
    mono = audio.mean(axis=1).astype(np.float32)
    return mono, int(sample_rate)


def resample(samples: np.ndarray, source_rate: int, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Polyphase resample to target_rate; output length is floor(duration * target_rate)."""
    if source_rate == target_rate or samples.size == 0:
        return samples.astype(np.float32)

    from scipy.signal import resample_poly

    divisor = gcd(int(source_rate), int(target_rate))
    up = int(target_rate) // divisor
    down = int(source_rate) // divisor
    rendered = resample_poly(samples, up, down).astype(np.float32)

    length = int(samples.size * target_rate // source_rate)
    return rendered[:length]


def render_mono(data: bytes, target_rate: int = TARGET_SAMPLE_RATE) -> np.ndarray:
    """Decode data and render it at target_rate, mono."""
    samples, sample_rate = decode_audio(data)
    return resample(samples, sample_rate, target_rate)


def audio_duration(data: bytes) -> Optional[float]:
    """Duration in seconds, or None if the container can't be read."""
    import soundfile as sf

    try:
        info = sf.info(io.BytesIO(data))
        return float(info.duration)
    except Exception:
        return None


def should_optimize(size_bytes: int, model: str, duration_seconds: Optional[float] = None) -> bool:
    """
    Whether an upload is worth re-encoding.

    Args:
        size_bytes: Encoded recording size
        model: Cloud model (must accept WAV)
        duration_seconds: Recording length if known; short clips are sent as-is
    """
    from .capabilities import accepts_wav

    if not accepts_wav(model):
        return False
    if duration_seconds is not None and 0 < duration_seconds < SHORT_CLIP_DURATION_SECONDS:
        return False
    return size_bytes > OPTIMIZE_MIN_BYTES


def optimize_audio(data: bytes, mime_type: str) -> Tuple[bytes, str]:
    """
    Re-encode to 16 kHz mono WAV.

    Returns:
        (bytes, mime_type); the original pair if anything fails
    """
    try:
        rendered = render_mono(data, TARGET_SAMPLE_RATE)
        wav = encode_wav(rendered, TARGET_SAMPLE_RATE)
        print(f"[Audio] Optimized upload {len(data)} -> {len(wav)} bytes")
        return wav, WAV_MIME_TYPE
    except Exception as e:
        print(f"[Audio] Optimization failed, sending original: {e}")
        return data, mime_type


def encode_capture(blocks, sample_rate: int) -> Tuple[bytes, str]:
    """
    Encode captured float32 blocks as FLAC for upload / local engines.

    Returns:
        (bytes, mime_type)
    """
    import soundfile as sf

    samples = np.concatenate(blocks) if blocks else np.zeros(0, dtype=np.float32)
    samples = np.clip(samples, -1.0, 1.0)
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="FLAC", subtype="PCM_16")
    return buffer.getvalue(), "audio/flac"
