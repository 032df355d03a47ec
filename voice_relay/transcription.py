from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import AsyncIterator, Callable, Dict, List, Optional, Set, Tuple

from openai import AsyncOpenAI

from .audio import AudioWindow, decode_media, frame_size, frames_to_ms, split_windows
from .config import TranscriptionConfig
from .errors import ChunkTranscriptionFailed, InvalidState
from .types import AudioChunk, AudioRecording, TranscriptSegment

logger = logging.getLogger(__name__)


class BaseSpeechToText:
    async def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        raise NotImplementedError


class OpenAISpeechToText(BaseSpeechToText):
    """Speech-to-text through the OpenAI transcription endpoint."""

    def __init__(self, config: TranscriptionConfig, client: Optional[AsyncOpenAI] = None):
        self.config = config
        if client is not None and config.api_base:
            logger.warning("Ignoring provided OpenAI client because custom api_base was supplied.")
            client = None
        kwargs = {}
        if config.api_base:
            kwargs["base_url"] = config.api_base
        if config.api_key_env:
            api_key = os.getenv(config.api_key_env)
            if api_key:
                kwargs["api_key"] = api_key
        self.client = client or AsyncOpenAI(**kwargs)

    async def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        kwargs = {}
        if language and language != "auto":
            kwargs["language"] = language
        response = await self.client.audio.transcriptions.create(
            model=self.config.model,
            file=(filename, audio),
            **kwargs,
        )
        return (response.text or "").strip()


class LocalWhisperSpeechToText(BaseSpeechToText):
    """Runs an openai-whisper model on this machine."""

    def __init__(self, config: TranscriptionConfig):
        self.config = config
        self._model = None

    def _load_model(self):
        if self._model is not None:
            return self._model
        try:
            import whisper  # type: ignore
        except ImportError as exc:
            raise RuntimeError("openai-whisper package is required for the local whisper provider.") from exc
        logger.info(
            "Loading Whisper model '%s' on device '%s'...", self.config.whisper_model_size, self.config.device or "default"
        )
        self._model = whisper.load_model(self.config.whisper_model_size, device=self.config.device)
        logger.info("Whisper model loaded successfully")
        return self._model

    async def transcribe(self, audio: bytes, filename: str, language: Optional[str] = None) -> str:
        return await asyncio.to_thread(self._transcribe_sync, audio, filename, language)

    def _transcribe_sync(self, audio: bytes, filename: str, language: Optional[str]) -> str:
        model = self._load_model()
        suffix = Path(filename).suffix or ".wav"
        handle = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
        try:
            with handle:
                handle.write(audio)
            result = model.transcribe(
                handle.name,
                language=None if language in (None, "auto") else language,
                task="transcribe",
                condition_on_previous_text=False,
                word_timestamps=False,
            )
        finally:
            os.unlink(handle.name)
        return (result.get("text") or "").strip()


def build_speech_to_text(config: TranscriptionConfig, client: Optional[AsyncOpenAI] = None) -> BaseSpeechToText:
    provider = (config.provider or "openai").lower()
    if provider == "openai":
        return OpenAISpeechToText(config=config, client=client)
    if provider == "whisper":
        return LocalWhisperSpeechToText(config=config)
    raise ValueError(f"Unsupported transcription provider: {config.provider}")


class SegmentSequencer:
    """Releases window results in capture order with dense sequence indices.

    Windows may resolve in any order. A window is released only once every
    earlier window has resolved; blank results are dropped without consuming
    a sequence index.
    """

    def __init__(self, language: Optional[str] = None):
        self.language = language
        self._pending: Dict[int, Tuple[AudioWindow, str]] = {}
        self._next_window = 0
        self._next_sequence = 0

    @property
    def released_windows(self) -> int:
        return self._next_window

    def add(self, window: AudioWindow, text: str) -> List[TranscriptSegment]:
        self._pending[window.index] = (window, text)
        released: List[TranscriptSegment] = []
        while self._next_window in self._pending:
            ready, ready_text = self._pending.pop(self._next_window)
            self._next_window += 1
            ready_text = (ready_text or "").strip()
            if not ready_text:
                logger.debug("Dropping blank transcript for window %s", ready.index)
                continue
            released.append(
                TranscriptSegment(
                    sequence_index=self._next_sequence,
                    text=ready_text,
                    start_ms=ready.start_ms,
                    end_ms=ready.end_ms,
                    source_language=self.language,
                    window_index=ready.index,
                )
            )
            self._next_sequence += 1
        return released


class ChunkedTranscriber:
    """Transcribes audio window by window through a speech-to-text provider."""

    def __init__(self, config: Optional[TranscriptionConfig] = None, stt: Optional[BaseSpeechToText] = None):
        self.config = config or TranscriptionConfig()
        self.stt = stt or build_speech_to_text(self.config)

    async def transcribe_window(self, window: AudioWindow, language: Optional[str] = None) -> str:
        """Return the window's text, or an empty string if the call fails."""
        try:
            payload = window.wav()
            if len(payload) > self.config.max_upload_bytes:
                raise ChunkTranscriptionFailed(
                    f"window is {len(payload)} bytes, above the {self.config.max_upload_bytes} byte upload limit"
                )
            text = await self.stt.transcribe(payload, f"window_{window.index:05d}.wav", language)
        except Exception as exc:
            logger.warning("Transcription of window %s (%s-%s ms) failed: %s", window.index, window.start_ms, window.end_ms, exc)
            return ""
        logger.debug("Window %03d: %s-%s ms %s", window.index, window.start_ms, window.end_ms, text)
        return (text or "").strip()

    async def transcribe_pcm(
        self, pcm: bytes, sample_rate: int, channels: int, language: Optional[str] = None
    ) -> AsyncIterator[TranscriptSegment]:
        """Transcribe finished audio in fixed windows, yielding segments in capture order."""

        language = language if language is not None else self.config.language
        windows = list(split_windows(pcm, sample_rate, channels, self.config.batch_window_seconds))
        logger.info("Transcribing %s windows of up to %.0fs", len(windows), self.config.batch_window_seconds)
        semaphore = asyncio.Semaphore(max(1, self.config.max_in_flight))
        sequencer = SegmentSequencer(language)

        async def _run(window: AudioWindow) -> Tuple[AudioWindow, str]:
            async with semaphore:
                return window, await self.transcribe_window(window, language)

        tasks = [asyncio.create_task(_run(window)) for window in windows]
        try:
            for next_done in asyncio.as_completed(tasks):
                window, text = await next_done
                for segment in sequencer.add(window, text):
                    yield segment
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    def transcribe_recording(
        self, recording: AudioRecording, language: Optional[str] = None
    ) -> AsyncIterator[TranscriptSegment]:
        return self.transcribe_pcm(recording.data, recording.sample_rate, recording.channels, language)

    async def transcribe_file(self, media_path: Path, language: Optional[str] = None) -> List[TranscriptSegment]:
        pcm = await asyncio.to_thread(decode_media, media_path)
        return [segment async for segment in self.transcribe_pcm(pcm, 16000, 1, language)]

    async def transcribe_text(self, recording: AudioRecording, language: Optional[str] = None) -> str:
        parts = [segment.text async for segment in self.transcribe_recording(recording, language)]
        return " ".join(parts)

    def stream(self, language: Optional[str] = None) -> "StreamingTranscription":
        return StreamingTranscription(self, language=language)


class StreamingTranscription:
    """Live transcription of a capture session in fixed windows.

    Windows are dispatched as soon as they fill, with at most
    ``max_in_flight`` provider calls at once. Segments are emitted in capture
    order. Stopping the capture flushes the final partial window; calls
    already in flight are allowed to finish.
    """

    def __init__(self, transcriber: ChunkedTranscriber, language: Optional[str] = None):
        self.transcriber = transcriber
        self.config = transcriber.config
        self.language = language if language is not None else self.config.language
        self.sample_rate = 0
        self.channels = 0
        self._window_bytes = 0
        self._buffer = bytearray()
        self._frames_dispatched = 0
        self._dispatched = 0
        self._resolved = 0
        self._semaphore = asyncio.Semaphore(max(1, self.config.max_in_flight))
        self._sequencer = SegmentSequencer(self.language)
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[TranscriptSegment], None]] = []
        self._segments: List[TranscriptSegment] = []
        self._attached = False
        self._consumed = False
        self._capture_done = False
        self._finished = False
        self._closed = False

    def attach(self, session) -> None:
        """Subscribe to a ``MediaCaptureSession``'s chunks and stop event."""
        self.bind(session.sample_rate, session.channels)
        session.add_chunk_listener(self.feed)
        session.add_stop_listener(lambda _recording: self.finish_capture())

    def bind(self, sample_rate: int, channels: int) -> None:
        if self._attached:
            raise InvalidState("A streaming transcription can only be attached once")
        self._attached = True
        self.sample_rate = sample_rate
        self.channels = channels
        window_frames = max(1, int(round(sample_rate * self.config.window_seconds)))
        self._window_bytes = window_frames * frame_size(channels)

    def add_segment_listener(self, callback: Callable[[TranscriptSegment], None]) -> None:
        self._listeners.append(callback)

    def get_segments(self) -> List[TranscriptSegment]:
        return list(self._segments)

    @property
    def windows_dispatched(self) -> int:
        return self._dispatched

    def feed(self, chunk: AudioChunk) -> None:
        if not self._attached:
            raise InvalidState("Streaming transcription is not attached to a capture source")
        if self._capture_done or self._closed:
            return
        self._buffer.extend(chunk.data)
        while len(self._buffer) >= self._window_bytes:
            pcm = bytes(self._buffer[: self._window_bytes])
            del self._buffer[: self._window_bytes]
            self._dispatch(pcm)

    def finish_capture(self) -> None:
        if self._capture_done:
            return
        if self._buffer and not self._closed:
            self._dispatch(bytes(self._buffer))
        self._buffer.clear()
        self._capture_done = True
        logger.info("Capture finished; %s windows dispatched", self._dispatched)
        self._maybe_finish()

    def close(self) -> None:
        """Stop emitting. Calls still in flight complete and are discarded."""
        if self._closed:
            return
        self._closed = True
        self._capture_done = True
        self._buffer.clear()
        self._signal_end()

    async def segments(self) -> AsyncIterator[TranscriptSegment]:
        if self._consumed:
            raise InvalidState("Streaming transcription segments can only be consumed once")
        self._consumed = True
        while True:
            segment = await self._queue.get()
            if segment is None:
                return
            yield segment

    async def wait_closed(self) -> List[TranscriptSegment]:
        pending = [task for task in self._tasks if not task.done()]
        while pending:
            await asyncio.gather(*pending, return_exceptions=True)
            pending = [task for task in self._tasks if not task.done()]
        return self.get_segments()

    def _dispatch(self, pcm: bytes) -> None:
        frames = len(pcm) // frame_size(self.channels)
        window = AudioWindow(
            index=self._dispatched,
            pcm=pcm,
            sample_rate=self.sample_rate,
            channels=self.channels,
            start_ms=frames_to_ms(self._frames_dispatched, self.sample_rate),
            end_ms=frames_to_ms(self._frames_dispatched + frames, self.sample_rate),
        )
        self._frames_dispatched += frames
        self._dispatched += 1
        task = asyncio.get_running_loop().create_task(self._run(window))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, window: AudioWindow) -> None:
        try:
            async with self._semaphore:
                text = await self.transcriber.transcribe_window(window, self.language)
        except asyncio.CancelledError:
            logger.warning("Transcription of window %s was cancelled", window.index)
            self._resolve(window, "")
            raise
        self._resolve(window, text)

    def _resolve(self, window: AudioWindow, text: str) -> None:
        self._resolved += 1
        if self._closed:
            logger.debug("Discarding window %s result after close", window.index)
            return
        for segment in self._sequencer.add(window, text):
            self._emit(segment)
        self._maybe_finish()

    def _emit(self, segment: TranscriptSegment) -> None:
        self._segments.append(segment)
        self._queue.put_nowait(segment)
        for callback in list(self._listeners):
            try:
                callback(segment)
            except Exception as exc:  # a broken listener must not stall the stream
                logger.warning("Segment listener %r failed: %s", callback, exc)

    def _maybe_finish(self) -> None:
        if self._capture_done and self._resolved == self._dispatched:
            self._signal_end()

    def _signal_end(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(None)
