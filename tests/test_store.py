"""Tests for the file-backed recording store."""

import json
from datetime import datetime

import soundfile as sf

from voice_relay.store import FileRecordingStore
from voice_relay.types import MIME_WAV, AudioRecording


def _recording(recording_id, created_at, title=None):
    return AudioRecording(
        id=recording_id,
        data=b"\x01\x00" * 1600,
        mime_type=MIME_WAV,
        sample_rate=16000,
        channels=1,
        duration_ms=100.0,
        created_at=created_at,
        title=title,
    )


def test_save_writes_audio_and_index(tmp_path):
    store = FileRecordingStore(tmp_path)
    recording_id = store.save(_recording("a1", datetime(2024, 5, 1, 9, 30)), transcript="hello")

    entry = store.get(recording_id)
    assert entry.title == "Recording 2024-05-01 09:30"
    assert entry.transcript == "hello"
    assert entry.size == 3200
    data, rate = sf.read(str(tmp_path / entry.file_path), dtype="int16")
    assert rate == 16000 and len(data) == 1600
    assert json.loads((tmp_path / "recordings.json").read_text(encoding="utf-8"))[0]["id"] == "a1"


def test_list_is_newest_first(tmp_path):
    store = FileRecordingStore(tmp_path)
    store.save(_recording("old", datetime(2024, 1, 1)))
    store.save(_recording("new", datetime(2024, 6, 1), title="Standup"))
    assert [entry.id for entry in store.list()] == ["new", "old"]
    assert store.list()[0].title == "Standup"


def test_save_replaces_same_id(tmp_path):
    store = FileRecordingStore(tmp_path)
    store.save(_recording("a1", datetime(2024, 1, 1)), transcript="first")
    store.save(_recording("a1", datetime(2024, 1, 1)), transcript="second")
    assert len(store.list()) == 1
    assert store.get("a1").transcript == "second"


def test_delete_removes_entry_and_file(tmp_path):
    store = FileRecordingStore(tmp_path)
    store.save(_recording("a1", datetime(2024, 1, 1)))
    audio = tmp_path / store.get("a1").file_path
    assert store.delete("a1") is True
    assert not audio.exists()
    assert store.get("a1") is None
    assert store.delete("a1") is False


def test_empty_store(tmp_path):
    store = FileRecordingStore(tmp_path / "missing")
    assert store.list() == []
    assert store.get("nope") is None
