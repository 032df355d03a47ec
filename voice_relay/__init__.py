"""Live audio capture, chunked transcription, translation and voiceover pipeline."""

from .capture import MediaCaptureSession
from .config import PipelineConfig
from .pipeline import LiveTranslationAgent
from .transcription import ChunkedTranscriber, StreamingTranscription
from .translation import SegmentTranslator
from .tts import VoiceSynthesizer

__all__ = [
    "ChunkedTranscriber",
    "LiveTranslationAgent",
    "MediaCaptureSession",
    "PipelineConfig",
    "SegmentTranslator",
    "StreamingTranscription",
    "VoiceSynthesizer",
]
