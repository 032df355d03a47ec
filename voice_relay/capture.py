from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

import soundfile as sf

from .config import CaptureConfig
from .errors import DeviceUnavailable, InvalidState
from .types import MIME_OGG_OPUS, MIME_WAV, AudioChunk, AudioRecording, RecorderState, RecordingSnapshot

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
ErrorCallback = Callable[[Exception], None]


OPUS_SAMPLE_RATES = (8000, 12000, 16000, 24000, 48000)


def negotiate_mime_type(sample_rate: int = 48000) -> str:
    """Prefer Opus in an Ogg container, fall back to WAV when libsndfile lacks it."""
    if sample_rate not in OPUS_SAMPLE_RATES:
        return MIME_WAV
    try:
        if "OPUS" in sf.available_subtypes("OGG"):
            return MIME_OGG_OPUS
    except (KeyError, ValueError) as exc:
        logger.debug("Could not query OGG subtypes: %s", exc)
    return MIME_WAV


class AudioInputDevice:
    """Minimal interface of a hardware input the capture session drives."""

    sample_rate: int
    channels: int

    async def open(self, on_data: DataCallback, on_error: ErrorCallback) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError


class SoundDeviceInput(AudioInputDevice):
    """Microphone input backed by a PortAudio ``RawInputStream``."""

    def __init__(self, config: CaptureConfig):
        self.config = config
        self.sample_rate = config.sample_rate
        self.channels = config.channels
        self._stream = None
        self._closing = False

    async def open(self, on_data: DataCallback, on_error: ErrorCallback) -> None:
        try:
            import sounddevice as sd  # type: ignore
        except (ImportError, OSError) as exc:
            raise DeviceUnavailable(f"sounddevice is not usable: {exc}") from exc

        loop = asyncio.get_running_loop()
        self._closing = False

        def _callback(indata, frames, time_info, status) -> None:  # noqa: ARG001
            if status:
                logger.debug("Input stream status: %s", status)
            loop.call_soon_threadsafe(on_data, bytes(indata))

        def _finished() -> None:
            if not self._closing:
                loop.call_soon_threadsafe(on_error, DeviceUnavailable("Audio input stream ended unexpectedly"))

        logger.debug(
            "Opening input device %s (echo_cancellation=%s, noise_suppression=%s, auto_gain=%s)",
            self.config.device or "default",
            self.config.echo_cancellation,
            self.config.noise_suppression,
            self.config.auto_gain_control,
        )
        try:
            self._stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=max(1, int(self.sample_rate * self.config.block_seconds)),
                device=self.config.device,
                callback=_callback,
                finished_callback=_finished,
            )
            self._stream.start()
        except Exception as exc:
            self._stream = None
            raise DeviceUnavailable(f"Unable to access the microphone: {exc}") from exc

    async def close(self) -> None:
        self._closing = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        # stop() waits for pending buffers to drain
        await asyncio.to_thread(self._shutdown, stream)

    @staticmethod
    def _shutdown(stream) -> None:
        try:
            stream.stop()
        finally:
            stream.close()


class MediaCaptureSession:
    """Drives one capture lifecycle: idle -> recording <-> paused -> stopped."""

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        device: Optional[AudioInputDevice] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CaptureConfig()
        self.device = device or SoundDeviceInput(self.config)
        self._clock = clock
        self.state = RecorderState.IDLE
        self.mime_type: Optional[str] = None
        self.recording: Optional[AudioRecording] = None
        self.device_error: Optional[DeviceUnavailable] = None
        self._chunks: List[AudioChunk] = []
        self._started_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0
        self._final_duration: Optional[float] = None
        self._ticker: Optional[asyncio.Task] = None
        self._release_task: Optional[asyncio.Task] = None
        self._state_listeners: List[Callable[[RecordingSnapshot], None]] = []
        self._chunk_listeners: List[Callable[[AudioChunk], None]] = []
        self._stop_listeners: List[Callable[[AudioRecording], None]] = []
        self._error_listeners: List[Callable[[Exception], None]] = []

    @property
    def sample_rate(self) -> int:
        return self.device.sample_rate

    @property
    def channels(self) -> int:
        return self.device.channels

    def add_state_listener(self, callback: Callable[[RecordingSnapshot], None]) -> None:
        self._state_listeners.append(callback)

    def add_chunk_listener(self, callback: Callable[[AudioChunk], None]) -> None:
        self._chunk_listeners.append(callback)

    def add_stop_listener(self, callback: Callable[[AudioRecording], None]) -> None:
        self._stop_listeners.append(callback)

    def add_error_listener(self, callback: Callable[[Exception], None]) -> None:
        self._error_listeners.append(callback)

    async def start(self) -> None:
        if self.state is not RecorderState.IDLE:
            raise InvalidState(f"Cannot start a capture session that is {self.state.value}")
        self.mime_type = negotiate_mime_type(self.sample_rate)
        try:
            await self.device.open(self._on_data, self._on_device_error)
        except DeviceUnavailable:
            raise
        except Exception as exc:
            raise DeviceUnavailable(str(exc)) from exc

        self._chunks = []
        self._started_at = self._clock()
        self._paused_total = 0.0
        self._paused_at = None
        self.state = RecorderState.RECORDING
        logger.info("Recording started (%s, %s Hz)", self.mime_type, self.sample_rate)
        self._ticker = asyncio.create_task(self._tick())
        self._publish_state()

    def pause(self) -> None:
        if self.state is not RecorderState.RECORDING:
            raise InvalidState(f"Cannot pause while {self.state.value}")
        self._paused_at = self._clock()
        self.state = RecorderState.PAUSED
        logger.debug("Recording paused")
        self._publish_state()

    def resume(self) -> None:
        if self.state is not RecorderState.PAUSED:
            raise InvalidState(f"Cannot resume while {self.state.value}")
        self._paused_total += self._clock() - self._paused_at
        self._paused_at = None
        self.state = RecorderState.RECORDING
        logger.debug("Recording resumed")
        self._publish_state()

    async def stop(self) -> AudioRecording:
        if self.state not in (RecorderState.RECORDING, RecorderState.PAUSED):
            raise InvalidState(f"Cannot stop while {self.state.value}")
        recording = self._finalize()
        await self._release_device()
        return recording

    async def wait_released(self) -> None:
        """Wait until the input device has been closed after a device error."""
        if self._release_task is not None:
            await self._release_task

    def get_state(self) -> RecordingSnapshot:
        return RecordingSnapshot(
            state=self.state,
            is_recording=self.state is RecorderState.RECORDING,
            is_paused=self.state is RecorderState.PAUSED,
            duration_ms=self.duration_ms(),
            size_bytes=sum(chunk.size for chunk in self._chunks),
        )

    def duration_ms(self) -> float:
        if self._final_duration is not None:
            return self._final_duration
        if self._started_at is None:
            return 0.0
        if self.state is RecorderState.PAUSED and self._paused_at is not None:
            elapsed = self._paused_at - self._started_at - self._paused_total
        else:
            elapsed = self._clock() - self._started_at - self._paused_total
        return max(0.0, elapsed * 1000.0)

    def _on_data(self, data: bytes) -> None:
        if self.state is not RecorderState.RECORDING or not data:
            return
        chunk = AudioChunk(index=len(self._chunks), data=data, captured_at=self._clock())
        self._chunks.append(chunk)
        for callback in list(self._chunk_listeners):
            self._notify(callback, chunk)
        self._publish_state()

    def _on_device_error(self, exc: Exception) -> None:
        if self.state not in (RecorderState.RECORDING, RecorderState.PAUSED):
            return
        logger.error("Audio input lost during recording: %s", exc)
        self.device_error = exc if isinstance(exc, DeviceUnavailable) else DeviceUnavailable(str(exc))
        self._finalize()
        self._release_task = asyncio.get_running_loop().create_task(self._release_device())
        for callback in list(self._error_listeners):
            self._notify(callback, self.device_error)

    def _finalize(self) -> AudioRecording:
        self._final_duration = self.duration_ms()
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        self.state = RecorderState.STOPPED

        self.recording = AudioRecording(
            id=uuid.uuid4().hex,
            data=b"".join(chunk.data for chunk in self._chunks),
            mime_type=self.mime_type or MIME_WAV,
            sample_rate=self.sample_rate,
            channels=self.channels,
            duration_ms=self._final_duration,
            created_at=datetime.now(),
        )
        logger.info(
            "Recording stopped: %s chunks, %s, %s",
            len(self._chunks),
            format_duration(self.recording.duration_ms),
            format_size(self.recording.size),
        )
        self._publish_state()
        for callback in list(self._stop_listeners):
            self._notify(callback, self.recording)
        return self.recording

    async def _release_device(self) -> None:
        try:
            await self.device.close()
        except Exception as exc:
            logger.warning("Error while releasing the input device: %s", exc)

    async def _tick(self) -> None:
        while self.state in (RecorderState.RECORDING, RecorderState.PAUSED):
            await asyncio.sleep(self.config.tick_interval)
            if self.state is RecorderState.RECORDING:
                self._publish_state()

    def _publish_state(self) -> None:
        snapshot = self.get_state()
        for callback in list(self._state_listeners):
            self._notify(callback, snapshot)

    @staticmethod
    def _notify(callback, payload) -> None:
        try:
            callback(payload)
        except Exception as exc:  # listeners must not break capture
            logger.warning("Capture listener %r failed: %s", callback, exc)


def format_duration(ms: float) -> str:
    if not isinstance(ms, (int, float)) or math.isnan(ms) or ms < 0:
        return "00:00"
    seconds = int(ms // 1000)
    minutes, remaining = divmod(seconds, 60)
    return f"{minutes:02d}:{remaining:02d}"


def format_size(size: int) -> str:
    if not isinstance(size, (int, float)) or math.isnan(size) or size <= 0:
        return "0 B"
    units = ["B", "KB", "MB"]
    value = float(size)
    power = 0
    while value >= 1024 and power < len(units) - 1:
        value /= 1024
        power += 1
    return f"{value:.1f} {units[power]}"


def save_recording(recording: AudioRecording, output_path: Optional[Path] = None) -> Path:
    output_path = output_path or Path(f"recording-{recording.id}.{recording.extension}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(recording.encoded())
    logger.info("Saved recording %s to %s", recording.id, output_path)
    return output_path
