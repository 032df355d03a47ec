from __future__ import annotations

import asyncio
import base64
import io
import logging
import os
from typing import Dict, Iterable, List, Optional, Tuple

import httpx
from openai import AsyncOpenAI
from pydub import AudioSegment

from .config import TTSConfig
from .errors import EmptyInput, NoContent, ProviderError
from .playback import AudioPlayer
from .types import FORMAT_MIME_TYPES, SynthesisResult, TranscriptSegment, TTSSettings, VoiceoverAsset
from .voices import validate_settings

logger = logging.getLogger(__name__)

FORMAT_SUFFIXES = {"mp3": ".mp3", "wav": ".wav", "opus": ".ogg"}


class BaseTTS:
    name = "base"

    async def synthesize(self, text: str, settings: TTSSettings) -> SynthesisResult:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


class OpenAITTS(BaseTTS):
    """Use OpenAI's speech endpoint."""

    name = "openai"

    def __init__(self, config: TTSConfig, client: Optional[AsyncOpenAI] = None):
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

    async def synthesize(self, text: str, settings: TTSSettings) -> SynthesisResult:
        response = await self.client.audio.speech.create(
            model=self.config.openai_model,
            voice=settings.voice,
            input=text,
            response_format=settings.format,
            speed=settings.speed,
        )
        return SynthesisResult(audio=response.content, mime_type=FORMAT_MIME_TYPES[settings.format])


class GoogleTTS(BaseTTS):
    """Google Cloud Text-to-Speech over its REST API."""

    name = "google"
    endpoint = "https://texttospeech.googleapis.com/v1/text:synthesize"
    encodings = {"wav": "LINEAR16", "opus": "OGG_OPUS", "mp3": "MP3"}

    def __init__(self, config: TTSConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_key = os.getenv(config.google_api_key_env)
        if not self.api_key:
            raise RuntimeError(
                f"Google API key not found. Please set environment variable '{config.google_api_key_env}'."
            )
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def synthesize(self, text: str, settings: TTSSettings) -> SynthesisResult:
        language_code = "-".join(settings.voice.split("-")[:2])
        payload = {
            "input": {"text": text},
            "voice": {"languageCode": language_code, "name": settings.voice, "ssmlGender": self.config.google_gender},
            "audioConfig": {"audioEncoding": self.encodings[settings.format], "speakingRate": settings.speed},
        }
        response = await self.client.post(self.endpoint, params={"key": self.api_key}, json=payload)
        if response.status_code == 403:
            raise ProviderError(self.name, f"access denied, check that the Text-to-Speech API is enabled: {response.text}")
        if response.status_code >= 400:
            raise ProviderError(self.name, f"HTTP {response.status_code}: {response.text}")
        content = response.json().get("audioContent")
        if not content:
            raise ProviderError(self.name, "no audio content received")
        return SynthesisResult(audio=base64.b64decode(content), mime_type=FORMAT_MIME_TYPES[settings.format])

    async def aclose(self) -> None:
        await self.client.aclose()


class EdgeTTS(BaseTTS):
    """Use Microsoft Edge neural voices without requiring Azure credentials."""

    name = "edge"

    def __init__(self, config: TTSConfig):
        try:
            import edge_tts  # type: ignore
        except ImportError as exc:
            raise RuntimeError("edge-tts package is required for Edge TTS provider.") from exc
        self.edge_tts = edge_tts
        self.config = config

    @staticmethod
    def rate_for_speed(speed: float) -> str:
        return f"{round((speed - 1.0) * 100):+d}%"

    async def synthesize(self, text: str, settings: TTSSettings) -> SynthesisResult:
        communicate = self.edge_tts.Communicate(
            text=text,
            voice=settings.voice,
            rate=self.rate_for_speed(settings.speed),
        )
        buffer = io.BytesIO()
        async for chunk in communicate.stream():
            if chunk["type"] == "audio":
                buffer.write(chunk["data"])
        audio = buffer.getvalue()
        if settings.format != "mp3" and audio:
            audio = await asyncio.to_thread(self._transcode, audio, settings.format)
        return SynthesisResult(audio=audio, mime_type=FORMAT_MIME_TYPES[settings.format])

    @staticmethod
    def _transcode(mp3: bytes, audio_format: str) -> bytes:
        clip = AudioSegment.from_file(io.BytesIO(mp3), format="mp3")
        out = io.BytesIO()
        if audio_format == "opus":
            clip.export(out, format="ogg", codec="libopus")
        else:
            clip.export(out, format=audio_format)
        return out.getvalue()


def build_tts(provider: str, config: TTSConfig, client: Optional[AsyncOpenAI] = None) -> BaseTTS:
    provider = (provider or "openai").lower()
    if provider == "openai":
        return OpenAITTS(config=config, client=client)
    if provider == "google":
        return GoogleTTS(config=config)
    if provider == "edge":
        return EdgeTTS(config=config)
    raise ValueError(f"Unsupported TTS provider: {provider}")


def assemble_voiceover(results: List[Tuple[TranscriptSegment, SynthesisResult]], audio_format: str) -> VoiceoverAsset:
    """Concatenate synthesized clips in the order given."""
    if not results:
        raise NoContent("No audio content was generated")
    return VoiceoverAsset(
        audio=b"".join(result.audio for _, result in results),
        format=audio_format,
        segment_indices=tuple(segment.sequence_index for segment, _ in results),
    )


class VoiceSynthesizer:
    """Turns text into audio with the provider named in the settings."""

    def __init__(
        self,
        config: Optional[TTSConfig] = None,
        providers: Optional[Dict[str, BaseTTS]] = None,
        player: Optional[AudioPlayer] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.config = config or TTSConfig()
        self.player = player or AudioPlayer()
        self._providers: Dict[str, BaseTTS] = dict(providers or {})
        self._client = client

    def provider(self, name: str) -> BaseTTS:
        if name not in self._providers:
            self._providers[name] = build_tts(name, self.config, client=self._client)
        return self._providers[name]

    async def synthesize(self, text: str, settings: Optional[TTSSettings] = None) -> SynthesisResult:
        settings = settings or self.config.settings
        if not text or not text.strip():
            raise EmptyInput("Text to synthesize is empty")
        validate_settings(settings)
        try:
            provider = self.provider(settings.provider)
            result = await provider.synthesize(text, settings)
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("TTS generation failed (%s): %s", settings.provider, exc)
            raise ProviderError(settings.provider, str(exc)) from exc
        if not result.audio:
            raise ProviderError(settings.provider, "no audio content received")
        return result

    async def play_immediate(self, text: str, settings: Optional[TTSSettings] = None) -> None:
        settings = settings or self.config.settings
        result = await self.synthesize(text, settings)
        await self.player.play(result.audio, suffix=FORMAT_SUFFIXES[settings.format])

    async def synthesize_segments(
        self, segments: Iterable[TranscriptSegment], settings: Optional[TTSSettings] = None
    ) -> List[Tuple[TranscriptSegment, SynthesisResult]]:
        """Synthesize segments one after another in the order given, skipping blank ones."""

        settings = settings or self.config.settings
        results: List[Tuple[TranscriptSegment, SynthesisResult]] = []
        for segment in segments:
            text = segment.effective_text
            if not text or not text.strip():
                logger.debug("Skipping blank segment %s", segment.sequence_index)
                continue
            if results and self.config.voiceover_delay_seconds > 0:
                await asyncio.sleep(self.config.voiceover_delay_seconds)
            results.append((segment, await self.synthesize(text, settings)))
            count = len(results)
            if count == 1 or count % 10 == 0:
                logger.info("TTS progress (%s): %s segments synthesized", settings.provider, count)
        return results

    async def synthesize_voiceover(
        self, segments: Iterable[TranscriptSegment], settings: Optional[TTSSettings] = None
    ) -> VoiceoverAsset:
        settings = settings or self.config.settings
        results = await self.synthesize_segments(segments, settings)
        return assemble_voiceover(results, settings.format)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
