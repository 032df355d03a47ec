"""End-to-end tests for the live translation agent with fake providers."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeInputDevice, FakeSpeechToText, FakeTTS
from voice_relay.config import CaptureConfig, PipelineConfig, TranscriptionConfig, TranslationConfig, TTSConfig
from voice_relay.pipeline import LiveTranslationAgent
from voice_relay.store import FileRecordingStore
from voice_relay.translation import SegmentTranslator
from voice_relay.tts import VoiceSynthesizer


class UpperTranslator(SegmentTranslator):
    provider_name = "upper"

    def __init__(self):
        self.calls = []

    async def _translate_text(self, text, source_lang, target_lang):
        self.calls.append((text, source_lang, target_lang))
        return text.upper()


def _config(tmp_path, **overrides):
    options = dict(
        capture=CaptureConfig(tick_interval=10.0),
        transcription=TranscriptionConfig(window_seconds=3.0, max_in_flight=4),
        translation=TranslationConfig(target_language="fr"),
        output_root=tmp_path / "runs",
    )
    options.update(overrides)
    return PipelineConfig(**options)


def _agent(tmp_path, device, stt, player=None, store=None, **overrides):
    config = _config(tmp_path, **overrides)
    tts = FakeTTS()
    synthesizer = VoiceSynthesizer(config.tts, providers={"openai": tts}, player=player)
    agent = LiveTranslationAgent(
        config=config,
        device=device,
        stt=stt,
        translator=UpperTranslator(),
        synthesizer=synthesizer,
        store=store,
    )
    return agent, tts


async def _run_live(agent, device, blocks, fail=None):
    stop_event = asyncio.Event()
    task = asyncio.create_task(agent.record(stop_event=stop_event, run_name="demo"))
    while not device.opened:
        await asyncio.sleep(0)
    device.push_blocks(blocks)
    if fail is not None:
        device.fail(fail)
    else:
        stop_event.set()
    return await task


def test_record_writes_all_artifacts(tmp_path):
    device = FakeInputDevice()
    store = FileRecordingStore(tmp_path / "library")
    agent, tts = _agent(tmp_path, device, FakeSpeechToText(script=["hello", "world"]), store=store)

    artifacts = asyncio.run(_run_live(agent, device, 32))

    assert [s.effective_text for s in artifacts.segments] == ["HELLO", "WORLD"]
    assert [s.sequence_index for s in artifacts.segments] == [0, 1]
    assert artifacts.recording_path.exists()
    assert artifacts.transcript_text.read_text(encoding="utf-8") == "HELLO\nWORLD\n"
    payload = json.loads(artifacts.transcript_json.read_text(encoding="utf-8"))
    assert payload[1] == {
        "sequence_index": 1,
        "start_ms": 3000,
        "end_ms": 3200,
        "text": "world",
        "source_language": None,
        "translated_text": "WORLD",
        "target_language": "fr",
    }
    assert artifacts.subtitles_path.exists()
    assert artifacts.voiceover_path.read_bytes() == b"<HELLO><WORLD>"
    assert tts.calls == ["HELLO", "WORLD"]
    assert store.get(artifacts.recording_id).transcript == "hello world"
    assert artifacts.device_error is None


def test_record_speaks_segments_as_they_arrive(tmp_path):
    device = FakeInputDevice()
    player = MagicMock()
    player.play = AsyncMock()
    agent, _ = _agent(
        tmp_path, device, FakeSpeechToText(script=["one", "two"]), player=player,
        speak_segments=True, build_voiceover=False,
    )

    artifacts = asyncio.run(_run_live(agent, device, 60))

    assert [call.args[0] for call in player.play.await_args_list] == [b"<ONE>", b"<TWO>"]
    assert artifacts.voiceover_path is None


def test_device_loss_keeps_partial_results(tmp_path):
    device = FakeInputDevice()
    agent, _ = _agent(tmp_path, device, FakeSpeechToText(script=["partial"]))

    artifacts = asyncio.run(_run_live(agent, device, 3, fail=RuntimeError("unplugged")))

    assert "unplugged" in artifacts.device_error
    assert [s.text for s in artifacts.segments] == ["partial"]
    assert [(s.start_ms, s.end_ms) for s in artifacts.segments] == [(0, 300)]
    assert artifacts.recording_path.exists()


def test_silent_recording_skips_voiceover(tmp_path):
    device = FakeInputDevice()
    agent, tts = _agent(tmp_path, device, FakeSpeechToText(script=["", ""]))

    artifacts = asyncio.run(_run_live(agent, device, 32))

    assert artifacts.segments == []
    assert artifacts.subtitles_path is None
    assert artifacts.voiceover_path is None
    assert tts.calls == []


def test_process_file_without_translation(tmp_path):
    media = tmp_path / "talk.wav"
    media.write_bytes(b"fake")
    config = _config(
        tmp_path,
        transcription=TranscriptionConfig(batch_window_seconds=2.0),
        translation=TranslationConfig(enabled=False),
        build_voiceover=False,
    )
    agent = LiveTranslationAgent(
        config=config,
        stt=FakeSpeechToText(script=["first", "second"]),
        synthesizer=VoiceSynthesizer(config.tts, providers={"openai": FakeTTS()}),
    )
    pcm = b"\x01\x00" * 16000 * 4
    with patch("voice_relay.transcription.decode_media", return_value=pcm):
        artifacts = asyncio.run(agent.process_file(media, run_name="talk"))

    assert agent.translator is None
    assert artifacts.recording_path is None
    assert artifacts.transcript_text.read_text(encoding="utf-8") == "first\nsecond\n"
    assert artifacts.run_dir == (tmp_path / "runs" / "talk").resolve()


def test_process_file_missing_media(tmp_path):
    agent, _ = _agent(tmp_path, FakeInputDevice(), FakeSpeechToText())
    with pytest.raises(FileNotFoundError):
        asyncio.run(agent.process_file(tmp_path / "absent.mp3"))


def test_existing_run_without_overwrite(tmp_path):
    (tmp_path / "runs" / "demo").mkdir(parents=True)
    device = FakeInputDevice()
    agent, _ = _agent(tmp_path, device, FakeSpeechToText(), overwrite=False)
    with pytest.raises(FileExistsError):
        asyncio.run(_run_live(agent, device, 1))


def test_playback_failure_does_not_lose_the_run(tmp_path):
    """A broken output device only skips spoken playback; artifacts are still written."""
    device = FakeInputDevice()
    player = MagicMock()
    player.play = AsyncMock(side_effect=RuntimeError("sounddevice is required for playback: PortAudio library not found"))
    agent, _ = _agent(
        tmp_path, device, FakeSpeechToText(script=["hello", "world"]), player=player, speak_segments=True,
    )

    artifacts = asyncio.run(_run_live(agent, device, 32))

    assert player.play.await_count == 2
    assert [s.effective_text for s in artifacts.segments] == ["HELLO", "WORLD"]
    assert artifacts.recording_path.exists()
    assert artifacts.transcript_text.read_text(encoding="utf-8") == "HELLO\nWORLD\n"
    assert artifacts.subtitles_path.exists()
    assert artifacts.voiceover_path.read_bytes() == b"<HELLO><WORLD>"
