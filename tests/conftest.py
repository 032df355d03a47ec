"""Shared fakes and fixtures for voice_relay tests."""

import asyncio

import pytest

from voice_relay.capture import AudioInputDevice
from voice_relay.config import CaptureConfig, TranscriptionConfig
from voice_relay.transcription import BaseSpeechToText
from voice_relay.tts import BaseTTS
from voice_relay.types import FORMAT_MIME_TYPES, SynthesisResult

SAMPLE_RATE = 44100
BLOCK_FRAMES = 4410  # 100ms at 44.1kHz
BLOCK_BYTES = BLOCK_FRAMES * 2


class FakeClock:
    def __init__(self, start=100.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeInputDevice(AudioInputDevice):
    """Input device driven by the test instead of PortAudio."""

    def __init__(self, sample_rate=SAMPLE_RATE, channels=1, open_error=None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.open_error = open_error
        self.on_data = None
        self.on_error = None
        self.opened = False
        self.closed = False

    async def open(self, on_data, on_error):
        if self.open_error is not None:
            raise self.open_error
        self.on_data = on_data
        self.on_error = on_error
        self.opened = True

    async def close(self):
        self.closed = True

    def push(self, data):
        self.on_data(data)

    def push_blocks(self, count, fill=b"\x01\x00"):
        for _ in range(count):
            self.push(fill * BLOCK_FRAMES)

    def fail(self, exc):
        self.on_error(exc)


class FakeSpeechToText(BaseSpeechToText):
    """Returns scripted text per call; entries may be exceptions or (delay, text) pairs."""

    def __init__(self, script=None, default="hello"):
        self.script = list(script or [])
        self.default = default
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def transcribe(self, audio, filename, language=None):
        self.calls.append((filename, len(audio), language))
        item = self.script.pop(0) if self.script else self.default
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if isinstance(item, tuple):
                delay, item = item
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            return item
        finally:
            self.in_flight -= 1


class FakeTTS(BaseTTS):
    """Echoes the text back as audio bytes."""

    name = "openai"

    def __init__(self, error=None, audio=None):
        self.error = error
        self.audio = audio
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def synthesize(self, text, settings):
        self.calls.append(text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            audio = self.audio if self.audio is not None else f"<{text}>".encode("utf-8")
            return SynthesisResult(audio=audio, mime_type=FORMAT_MIME_TYPES[settings.format])
        finally:
            self.in_flight -= 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def device():
    return FakeInputDevice()


@pytest.fixture
def capture_config():
    return CaptureConfig(tick_interval=10.0)


@pytest.fixture
def transcription_config():
    return TranscriptionConfig(window_seconds=3.0, batch_window_seconds=3.0, max_in_flight=4)
