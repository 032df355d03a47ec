from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from .types import AudioRecording, StoredRecording

logger = logging.getLogger(__name__)


class RecordingStore:
    def save(self, recording: AudioRecording, transcript: Optional[str] = None) -> str:
        raise NotImplementedError

    def list(self) -> List[StoredRecording]:
        raise NotImplementedError

    def get(self, recording_id: str) -> Optional[StoredRecording]:
        raise NotImplementedError

    def delete(self, recording_id: str) -> bool:
        raise NotImplementedError


class FileRecordingStore(RecordingStore):
    """Keeps encoded recordings in a directory with a JSON index beside them."""

    index_name = "recordings.json"

    def __init__(self, root: Path):
        self.root = root
        self.index_path = root / self.index_name

    def _load(self) -> List[StoredRecording]:
        if not self.index_path.exists():
            return []
        payload = json.loads(self.index_path.read_text(encoding="utf-8"))
        return [StoredRecording(**entry) for entry in payload]

    def _write(self, entries: List[StoredRecording]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        payload = [asdict(entry) for entry in entries]
        self.index_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def save(self, recording: AudioRecording, transcript: Optional[str] = None) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        audio_path = self.root / f"{recording.id}.{recording.extension}"
        audio_path.write_bytes(recording.encoded())
        entry = StoredRecording(
            id=recording.id,
            title=recording.title or f"Recording {recording.created_at:%Y-%m-%d %H:%M}",
            file_path=audio_path.name,
            duration_ms=recording.duration_ms,
            size=recording.size,
            mime_type=recording.mime_type,
            created_at=recording.created_at.isoformat(),
            transcript=transcript,
        )
        entries = [existing for existing in self._load() if existing.id != recording.id]
        entries.append(entry)
        self._write(entries)
        logger.info("Stored recording %s at %s", recording.id, audio_path)
        return recording.id

    def list(self) -> List[StoredRecording]:
        return sorted(self._load(), key=lambda entry: entry.created_at, reverse=True)

    def get(self, recording_id: str) -> Optional[StoredRecording]:
        for entry in self._load():
            if entry.id == recording_id:
                return entry
        return None

    def delete(self, recording_id: str) -> bool:
        entries = self._load()
        remaining = [entry for entry in entries if entry.id != recording_id]
        if len(remaining) == len(entries):
            return False
        for entry in entries:
            if entry.id == recording_id:
                (self.root / entry.file_path).unlink(missing_ok=True)
        self._write(remaining)
        logger.info("Deleted recording %s", recording_id)
        return True
