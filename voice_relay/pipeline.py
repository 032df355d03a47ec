from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from openai import AsyncOpenAI

from .audio import build_dub_track
from .capture import AudioInputDevice, MediaCaptureSession, save_recording
from .config import PipelineConfig
from .errors import NoContent
from .store import RecordingStore
from .subtitles import write_bilingual_srt, write_transcript_text
from .transcription import BaseSpeechToText, ChunkedTranscriber, build_speech_to_text
from .translation import SegmentTranslator, build_translator
from .tts import VoiceSynthesizer, assemble_voiceover
from .types import AudioRecording, PipelineArtifacts, RecorderState, TranscriptSegment, TranslatedSegment

logger = logging.getLogger(__name__)


class LiveTranslationAgent:
    """Orchestrates capture, chunked transcription, translation and voiceover."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        client: Optional[AsyncOpenAI] = None,
        device: Optional[AudioInputDevice] = None,
        stt: Optional[BaseSpeechToText] = None,
        translator: Optional[SegmentTranslator] = None,
        synthesizer: Optional[VoiceSynthesizer] = None,
        store: Optional[RecordingStore] = None,
    ):
        self.config = config or PipelineConfig()
        needs_client = self._requires_openai_client(stt_injected=stt is not None, translator_injected=translator is not None)
        self.client = client or (AsyncOpenAI() if needs_client else None)
        self.device = device
        self.transcriber = ChunkedTranscriber(
            self.config.transcription,
            stt=stt or build_speech_to_text(self.config.transcription, client=self.client),
        )
        self.translator = translator
        if self.translator is None and self.config.translation.enabled:
            self.translator = build_translator(self.config.translation, client=self.client)
        self.synthesizer = synthesizer or VoiceSynthesizer(self.config.tts, client=self.client)
        self.store = store

    async def record(
        self,
        duration_seconds: Optional[float] = None,
        stop_event: Optional[asyncio.Event] = None,
        run_name: Optional[str] = None,
    ) -> PipelineArtifacts:
        """Capture live audio until ``stop_event`` is set or ``duration_seconds`` elapse."""

        session = MediaCaptureSession(self.config.capture, device=self.device)
        stream = self.transcriber.stream()
        stream.attach(session)
        stop_event = stop_event or asyncio.Event()
        session.add_error_listener(lambda _exc: stop_event.set())
        translated: List[TranscriptSegment] = []

        async def _consume() -> None:
            async for segment in stream.segments():
                item = await self._translate(segment)
                translated.append(item)
                logger.info("[%s] %s", segment.sequence_index, item.effective_text)
                if self.config.speak_segments:
                    await self._speak(item)

        logger.info("Step 1/3: Recording with live transcription...")
        await session.start()
        consumer = asyncio.create_task(_consume())
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=duration_seconds)
        except asyncio.TimeoutError:
            pass
        finally:
            if session.state in (RecorderState.RECORDING, RecorderState.PAUSED):
                await session.stop()

        logger.info("Step 2/3: Waiting for %s pending transcription windows...", stream.windows_dispatched)
        await consumer
        await session.wait_released()

        logger.info("Step 3/3: Writing artifacts...")
        artifacts = await self._finalize_run(
            run_name or self._default_run_name("live"), session.recording, translated
        )
        if session.device_error is not None:
            artifacts.device_error = str(session.device_error)
            logger.error("Recording ended early because the input device was lost: %s", session.device_error)
        return artifacts

    async def process_file(self, media_path: Path, run_name: Optional[str] = None) -> PipelineArtifacts:
        media_path = media_path.resolve()
        if not media_path.exists():
            raise FileNotFoundError(media_path)

        logger.info("Step 1/3: Transcribing %s...", media_path)
        segments = await self.transcriber.transcribe_file(media_path)

        logger.info("Step 2/3: Translating %s transcript segments...", len(segments))
        translated = [await self._translate(segment) for segment in segments]

        logger.info("Step 3/3: Writing artifacts...")
        return await self._finalize_run(run_name or self._default_run_name(media_path.stem), None, translated)

    async def aclose(self) -> None:
        if self.translator is not None:
            await self.translator.aclose()
        await self.synthesizer.aclose()

    async def _translate(self, segment: TranscriptSegment) -> TranscriptSegment:
        if self.translator is None:
            return segment
        source = self.config.translation.source_language
        return await self.translator.translate_segment(
            segment,
            self.config.translation.target_language,
            None if source == "auto" else source,
        )

    async def _speak(self, segment: TranscriptSegment) -> None:
        try:
            await self.synthesizer.play_immediate(segment.effective_text)
        except Exception as exc:
            logger.warning("Could not speak segment %s: %s", segment.sequence_index, exc)

    async def _finalize_run(
        self, run_name: str, recording: Optional[AudioRecording], segments: List[TranscriptSegment]
    ) -> PipelineArtifacts:
        run_dir = self.config.output_root.resolve() / run_name
        if run_dir.exists() and not self.config.overwrite:
            raise FileExistsError(f"{run_dir} already exists and overwrite=False")
        run_dir.mkdir(parents=True, exist_ok=True)
        artifacts = PipelineArtifacts(run_dir=run_dir, segments=list(segments))

        if recording is not None and recording.size:
            artifacts.recording_path = save_recording(
                recording, run_dir / "audio" / f"{run_name}.{recording.extension}"
            )
            if self.store is not None:
                transcript = " ".join(segment.text for segment in segments) or None
                artifacts.recording_id = self.store.save(recording, transcript=transcript)

        artifacts.transcript_json = self._write_transcript_json(segments, run_dir / "transcript" / f"{run_name}.json")
        artifacts.transcript_text = write_transcript_text(
            segments, run_dir / "transcript" / f"{run_name}.txt", translated=self.translator is not None
        )
        if segments:
            artifacts.subtitles_path = write_bilingual_srt(segments, run_dir / "subtitles" / f"{run_name}.srt")

        if self.config.build_voiceover and segments:
            await self._write_voiceover(run_name, run_dir, recording, segments, artifacts)

        logger.info("Run completed. Artifacts: %s", run_dir)
        return artifacts

    async def _write_voiceover(
        self,
        run_name: str,
        run_dir: Path,
        recording: Optional[AudioRecording],
        segments: List[TranscriptSegment],
        artifacts: PipelineArtifacts,
    ) -> None:
        settings = self.config.tts.settings
        results = await self.synthesizer.synthesize_segments(segments, settings)
        try:
            asset = assemble_voiceover(results, settings.format)
        except NoContent as exc:
            logger.warning("Skipping voiceover: %s", exc)
            return
        artifacts.voiceover_path = asset.save(run_dir / "voiceover" / f"{run_name}.{settings.format}")

        if self.config.align_voiceover:
            duration_ms = int(recording.duration_ms) if recording is not None else max(s.end_ms for s in segments)
            artifacts.dub_track_path = build_dub_track(
                segments=[segment for segment, _ in results],
                clips={segment.sequence_index: result.audio for segment, result in results},
                duration_ms=duration_ms,
                output_path=run_dir / "voiceover" / f"{run_name}_aligned.wav",
            )

    def _write_transcript_json(self, segments: List[TranscriptSegment], output_path: Path) -> Path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [
            {
                "sequence_index": segment.sequence_index,
                "start_ms": segment.start_ms,
                "end_ms": segment.end_ms,
                "text": segment.text,
                "source_language": segment.source_language,
                "translated_text": segment.translated_text if isinstance(segment, TranslatedSegment) else None,
                "target_language": segment.target_language if isinstance(segment, TranslatedSegment) else None,
            }
            for segment in segments
        ]
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        return output_path

    def _default_run_name(self, stem: str) -> str:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        return f"{stem}_{timestamp}"

    def _requires_openai_client(self, stt_injected: bool, translator_injected: bool) -> bool:
        transcription_provider = (self.config.transcription.provider or "openai").lower()
        translation_provider = (self.config.translation.provider or "openai").lower()
        uses_stt = not stt_injected and transcription_provider == "openai"
        uses_translation = not translator_injected and self.config.translation.enabled and translation_provider == "openai"
        return uses_stt or uses_translation
