from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Mapping, Optional

import numpy as np
import soundfile as sf
from pydub import AudioSegment

from .types import TranscriptSegment

logger = logging.getLogger(__name__)

SAMPLE_WIDTH = 2  # int16 PCM


def frame_size(channels: int) -> int:
    return SAMPLE_WIDTH * channels


def frames_to_ms(frames: int, sample_rate: int) -> int:
    return int(frames * 1000 // sample_rate)


def encode_wav(pcm: bytes, sample_rate: int, channels: int) -> bytes:
    samples = np.frombuffer(pcm, dtype="<i2").reshape(-1, channels)
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


@dataclass(frozen=True)
class AudioWindow:
    """A bounded time slice of PCM audio transcribed as one unit."""

    index: int
    pcm: bytes
    sample_rate: int
    channels: int
    start_ms: int
    end_ms: int

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    def wav(self) -> bytes:
        return encode_wav(self.pcm, self.sample_rate, self.channels)


def split_windows(pcm: bytes, sample_rate: int, channels: int, window_seconds: float) -> Iterator[AudioWindow]:
    """Cut PCM into consecutive windows of ``window_seconds``; the last may be shorter."""

    step = frame_size(channels)
    window_frames = max(1, int(round(sample_rate * window_seconds)))
    total_frames = len(pcm) // step
    for index, start in enumerate(range(0, total_frames, window_frames)):
        end = min(start + window_frames, total_frames)
        yield AudioWindow(
            index=index,
            pcm=pcm[start * step : end * step],
            sample_rate=sample_rate,
            channels=channels,
            start_ms=frames_to_ms(start, sample_rate),
            end_ms=frames_to_ms(end, sample_rate),
        )


def decode_media(media_path: Path, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Decode any audio or video file ffmpeg understands into int16 PCM."""

    logger.info("Decoding audio from %s", media_path)
    segment = AudioSegment.from_file(str(media_path))
    segment = segment.set_frame_rate(sample_rate).set_channels(channels).set_sample_width(SAMPLE_WIDTH)
    return segment.raw_data


def build_dub_track(
    segments: Iterable[TranscriptSegment],
    clips: Mapping[int, bytes],
    duration_ms: int,
    output_path: Path,
    sample_rate_hint: Optional[int] = None,
) -> Path:
    """Lay each synthesized clip at its segment's start time on a silent track.

    ``clips`` maps ``sequence_index`` to encoded audio bytes.
    """

    segments = list(segments)
    if not segments:
        raise ValueError("No segments provided for dub track assembly.")

    output_path.parent.mkdir(parents=True, exist_ok=True)

    decoded = {}
    sample_rate = sample_rate_hint
    for segment in segments:
        payload = clips.get(segment.sequence_index)
        if not payload:
            logger.warning("Skipping segment without TTS audio: %s", segment.sequence_index)
            continue
        clip = AudioSegment.from_file(io.BytesIO(payload))
        sample_rate = sample_rate or clip.frame_rate
        decoded[segment.sequence_index] = clip

    if sample_rate is None:
        sample_rate = 24000

    base_track = AudioSegment.silent(duration=duration_ms + 500, frame_rate=sample_rate)
    for segment in segments:
        clip = decoded.get(segment.sequence_index)
        if clip is None:
            continue
        if clip.frame_rate != sample_rate:
            clip = clip.set_frame_rate(sample_rate)
        base_track = base_track.overlay(clip, position=max(0, segment.start_ms))

    finalized = base_track[:duration_ms]
    audio_format = output_path.suffix.lstrip(".") or "wav"
    finalized.export(str(output_path), format=audio_format)
    logger.info("Created dubbed audio track at %s", output_path)
    return output_path
