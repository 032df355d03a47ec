from __future__ import annotations

import logging
import os
from typing import AsyncIterator, Iterable, Optional

import httpx
from openai import AsyncOpenAI

from .config import TranslationConfig
from .errors import TranslationFailed
from .types import TranscriptSegment, TranslatedSegment

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "fr": "French",
    "en": "English",
    "es": "Spanish",
    "ar": "Arabic",
    "de": "German",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
    "ja": "Japanese",
    "ko": "Korean",
    "zh": "Chinese",
    "hi": "Hindi",
}

SYSTEM_PROMPT = "You are a professional translation assistant."


def language_name(code: Optional[str]) -> str:
    if not code:
        return "the detected language"
    return LANGUAGE_NAMES.get(code.lower().split("-")[0], code)


def build_prompt(text: str, source_lang: Optional[str], target_lang: str) -> str:
    source = "the source language" if source_lang in (None, "", "auto") else language_name(source_lang)
    return (
        f"Translate the following spoken text from {source} into {language_name(target_lang)}. "
        "Keep the meaning and tone, and reply with the translation only.\n\n" + text.strip()
    )


class SegmentTranslator:
    """Best-effort translation of transcript segments, one provider call each.

    ``translate`` never raises: any failure returns the original text.
    """

    provider_name = "base"

    async def _translate_text(self, text: str, source_lang: Optional[str], target_lang: str) -> str:
        raise NotImplementedError

    async def translate(self, text: str, source_lang: Optional[str], target_lang: str) -> str:
        if not text or not text.strip():
            return text
        if source_lang and source_lang != "auto" and source_lang.lower() == target_lang.lower():
            return text
        try:
            translated = await self._translate_text(text, source_lang, target_lang)
            if not translated or not translated.strip():
                raise TranslationFailed("empty translation returned")
        except Exception as exc:
            logger.warning("%s translation failed, keeping original text: %s", self.provider_name, exc)
            return text
        logger.debug("Translation result: %s -> %s", text, translated)
        return translated.strip()

    async def translate_segment(
        self, segment: TranscriptSegment, target_lang: str, source_lang: Optional[str] = None
    ) -> TranslatedSegment:
        source = source_lang or segment.source_language
        translated = await self.translate(segment.text, source, target_lang)
        return TranslatedSegment(
            sequence_index=segment.sequence_index,
            text=segment.text,
            start_ms=segment.start_ms,
            end_ms=segment.end_ms,
            source_language=segment.source_language,
            window_index=segment.window_index,
            translated_text=translated,
            target_language=target_lang,
        )

    async def translate_segments(
        self, segments: Iterable[TranscriptSegment], target_lang: str, source_lang: Optional[str] = None
    ) -> AsyncIterator[TranslatedSegment]:
        for segment in segments:
            yield await self.translate_segment(segment, target_lang, source_lang)

    async def aclose(self) -> None:
        return None


class OpenAITranslator(SegmentTranslator):
    """Translate through an OpenAI-compatible chat completions API."""

    provider_name = "OpenAI"

    def __init__(self, config: TranslationConfig, client: Optional[AsyncOpenAI] = None):
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

    async def _translate_text(self, text: str, source_lang: Optional[str], target_lang: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(text, source_lang, target_lang)},
            ],
            temperature=self.config.temperature,
        )
        return response.choices[0].message.content or ""


class DeepSeekTranslator(SegmentTranslator):
    """Translate via the DeepSeek REST API."""

    provider_name = "DeepSeek"

    def __init__(self, config: TranslationConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_key = os.getenv(config.api_key_env or "DEEPSEEK_API_KEY")
        if not self.api_key:
            raise RuntimeError(
                f"DeepSeek API key not found. Please set environment variable '{config.api_key_env or 'DEEPSEEK_API_KEY'}'."
            )
        self.base_url = (config.api_base or "https://api.deepseek.com").rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def _translate_text(self, text: str, source_lang: Optional[str], target_lang: str) -> str:
        url = f"{self.base_url}/v1/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload = {
            "model": self.config.model or "deepseek-chat",
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(text, source_lang, target_lang)},
            ],
            "temperature": self.config.temperature,
        }
        response = await self.client.post(url, headers=headers, json=payload)
        if response.status_code >= 400:
            raise TranslationFailed(f"HTTP {response.status_code}: {response.text}")
        data = response.json()
        return data["choices"][0]["message"]["content"]

    async def aclose(self) -> None:
        await self.client.aclose()


def build_translator(config: TranslationConfig, client: Optional[AsyncOpenAI] = None) -> SegmentTranslator:
    provider = (config.provider or "openai").lower()
    if provider == "openai":
        return OpenAITranslator(config=config, client=client)
    if provider == "deepseek":
        return DeepSeekTranslator(config=config)
    raise ValueError(f"Unsupported translation provider: {config.provider}")
