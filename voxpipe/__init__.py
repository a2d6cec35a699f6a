"""
voxpipe - Voice capture and transcription pipeline.

This package provides:
- Microphone selection and live capture
- Real-time voice activity detection that gates transcription
- Transcription via local engines or a cloud API, with fallback chaining
- Incremental parsing of streamed transcription responses
- Optional reasoning-model cleanup of the raw transcript

Main entry point: python -m voxpipe
"""

__version__ = "1.0.0"
