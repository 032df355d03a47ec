from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .types import TTSSettings


@dataclass
class CaptureConfig:
    """Configuration for microphone capture."""

    sample_rate: int = 44100
    channels: int = 1
    block_seconds: float = 0.1  # ~100ms chunks keep the UI responsive
    tick_interval: float = 0.05
    device: Optional[str] = None
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


@dataclass
class TranscriptionConfig:
    """Configuration for chunked speech-to-text."""

    provider: str = "openai"
    model: str = "whisper-1"
    language: Optional[str] = None  # None lets the provider detect the language
    window_seconds: float = 3.0
    batch_window_seconds: float = 30.0
    max_in_flight: int = 4
    max_upload_bytes: int = 25 * 1024 * 1024
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"
    whisper_model_size: str = "base"
    device: Optional[str] = None


@dataclass
class TranslationConfig:
    """Configuration for text translation."""

    enabled: bool = True
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    temperature: float = 0.3
    source_language: str = "auto"
    target_language: str = "fr"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"
    timeout: float = 60.0


@dataclass
class TTSConfig:
    """Configuration for text-to-speech synthesis."""

    settings: TTSSettings = field(default_factory=TTSSettings)
    openai_model: str = "tts-1"
    api_base: Optional[str] = None
    api_key_env: Optional[str] = "OPENAI_API_KEY"
    google_api_key_env: str = "GOOGLE_API_KEY"
    google_gender: str = "NEUTRAL"
    timeout: float = 60.0
    voiceover_delay_seconds: float = 0.0


@dataclass
class PipelineConfig:
    """Top level configuration for the relay agent."""

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    transcription: TranscriptionConfig = field(default_factory=TranscriptionConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    tts: TTSConfig = field(default_factory=TTSConfig)
    output_root: Path = Path("artifacts")
    overwrite: bool = True
    speak_segments: bool = False
    build_voiceover: bool = True
    align_voiceover: bool = False  # also lay clips on a timeline matching the capture
