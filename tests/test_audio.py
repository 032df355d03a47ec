"""Tests for PCM window helpers."""

import io

import soundfile as sf

from voice_relay.audio import AudioWindow, frames_to_ms, split_windows


def test_split_windows_covers_all_frames():
    pcm = b"\x01\x00" * 16000 * 7
    windows = list(split_windows(pcm, 16000, 1, 3.0))
    assert [w.index for w in windows] == [0, 1, 2]
    assert [(w.start_ms, w.end_ms) for w in windows] == [(0, 3000), (3000, 6000), (6000, 7000)]
    assert b"".join(w.pcm for w in windows) == pcm


def test_split_windows_stereo_frames():
    pcm = b"\x01\x00\x02\x00" * 8000
    windows = list(split_windows(pcm, 8000, 2, 0.5))
    assert len(windows) == 2
    assert all(len(w.pcm) == 4000 * 4 for w in windows)


def test_split_windows_empty():
    assert list(split_windows(b"", 16000, 1, 3.0)) == []


def test_frames_to_ms_floors():
    assert frames_to_ms(141120, 44100) == 3200
    assert frames_to_ms(1, 44100) == 0


def test_window_wav_is_readable():
    window = AudioWindow(index=0, pcm=b"\x10\x00" * 160, sample_rate=16000, channels=1, start_ms=0, end_ms=10)
    data, rate = sf.read(io.BytesIO(window.wav()), dtype="int16")
    assert rate == 16000
    assert len(data) == 160
    assert window.duration_ms == 10
