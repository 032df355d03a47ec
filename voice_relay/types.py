from __future__ import annotations

import io
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import soundfile as sf

MIME_OGG_OPUS = "audio/ogg;codecs=opus"
MIME_WAV = "audio/wav"

FORMAT_MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "opus": "audio/ogg",
}


class RecorderState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class AudioChunk:
    """One fragment of 16-bit little-endian PCM delivered by the input device."""

    index: int
    data: bytes
    captured_at: float

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class RecordingSnapshot:
    state: RecorderState
    is_recording: bool
    is_paused: bool
    duration_ms: float
    size_bytes: int


@dataclass(frozen=True)
class AudioRecording:
    """A finished capture: every chunk concatenated in capture order."""

    id: str
    data: bytes
    mime_type: str
    sample_rate: int
    channels: int
    duration_ms: float
    created_at: datetime
    title: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return "ogg" if self.mime_type.startswith("audio/ogg") else "wav"

    def samples(self) -> np.ndarray:
        return np.frombuffer(self.data, dtype="<i2").reshape(-1, self.channels)

    def encoded(self) -> bytes:
        """Render the PCM into the container named by ``mime_type``."""
        buffer = io.BytesIO()
        if self.extension == "ogg":
            sf.write(buffer, self.samples(), self.sample_rate, format="OGG", subtype="OPUS")
        else:
            sf.write(buffer, self.samples(), self.sample_rate, format="WAV", subtype="PCM_16")
        return buffer.getvalue()


@dataclass(frozen=True)
class TranscriptSegment:
    """Speech-to-text result for one capture window."""

    sequence_index: int
    text: str
    start_ms: int
    end_ms: int
    source_language: Optional[str] = None
    window_index: int = 0

    @property
    def effective_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class TranslatedSegment(TranscriptSegment):
    translated_text: str = ""
    target_language: str = ""

    @property
    def effective_text(self) -> str:
        if self.translated_text and self.translated_text.strip():
            return self.translated_text
        return self.text


@dataclass(frozen=True)
class TTSSettings:
    """Provider-agnostic synthesis settings."""

    provider: str = "openai"
    voice: str = "alloy"
    language: str = "fr"
    speed: float = 1.0
    format: str = "mp3"


@dataclass(frozen=True)
class SynthesisResult:
    audio: bytes
    mime_type: str


@dataclass(frozen=True)
class VoiceoverAsset:
    """Per-segment synthesized audio concatenated into one object."""

    audio: bytes
    format: str
    segment_indices: Tuple[int, ...] = ()

    @property
    def mime_type(self) -> str:
        return FORMAT_MIME_TYPES.get(self.format, "audio/mpeg")

    @property
    def size(self) -> int:
        return len(self.audio)

    def save(self, output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.audio)
        return output_path


@dataclass
class StoredRecording:
    """Metadata persisted for a saved recording."""

    id: str
    title: str
    file_path: str
    duration_ms: float
    size: int
    mime_type: str
    created_at: str
    transcript: Optional[str] = None


@dataclass
class PipelineArtifacts:
    """Paths to the generated artifacts for a pipeline run."""

    run_dir: Path
    recording_path: Optional[Path] = None
    transcript_json: Optional[Path] = None
    transcript_text: Optional[Path] = None
    subtitles_path: Optional[Path] = None
    voiceover_path: Optional[Path] = None
    dub_track_path: Optional[Path] = None
    recording_id: Optional[str] = None
    device_error: Optional[str] = None
    segments: list = field(default_factory=list)
