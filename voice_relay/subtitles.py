from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Iterable

import srt

from .types import TranscriptSegment, TranslatedSegment


def write_bilingual_srt(segments: Iterable[TranscriptSegment], output_path: Path, translated_first: bool = True) -> Path:
    subtitles = []
    for idx, segment in enumerate(segments, start=1):
        lines = [segment.text]
        if isinstance(segment, TranslatedSegment) and segment.translated_text and segment.translated_text != segment.text:
            lines = [segment.translated_text, segment.text] if translated_first else [segment.text, segment.translated_text]
        subtitle = srt.Subtitle(
            index=idx,
            start=dt.timedelta(milliseconds=segment.start_ms),
            end=dt.timedelta(milliseconds=segment.end_ms),
            content="\n".join(lines),
        )
        subtitles.append(subtitle)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(srt.compose(subtitles), encoding="utf-8")
    return output_path


def write_transcript_text(segments: Iterable[TranscriptSegment], output_path: Path, translated: bool = False) -> Path:
    lines = [segment.effective_text if translated else segment.text for segment in segments]
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return output_path
