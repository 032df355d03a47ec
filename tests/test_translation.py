"""Tests for best-effort segment translation."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from voice_relay.config import TranslationConfig
from voice_relay.translation import (
    DeepSeekTranslator,
    OpenAITranslator,
    build_prompt,
    build_translator,
)
from voice_relay.types import TranscriptSegment, TranslatedSegment


def _openai_translator(content=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create = AsyncMock(side_effect=error)
    else:
        message = MagicMock(content=content)
        client.chat.completions.create = AsyncMock(return_value=MagicMock(choices=[MagicMock(message=message)]))
    return OpenAITranslator(TranslationConfig(), client=client), client


def test_translate_returns_stripped_content():
    translator, client = _openai_translator(content="  Bonjour le monde \n")
    assert asyncio.run(translator.translate("Hello world", "en", "fr")) == "Bonjour le monde"
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == 0.3
    assert "into French" in kwargs["messages"][1]["content"]


def test_failure_falls_back_to_original_text():
    """A provider error never surfaces; the source text is kept."""
    translator, _ = _openai_translator(error=RuntimeError("rate limited"))
    assert asyncio.run(translator.translate("Hello", "en", "fr")) == "Hello"


def test_empty_translation_falls_back():
    translator, _ = _openai_translator(content="   ")
    assert asyncio.run(translator.translate("Hello", "en", "fr")) == "Hello"


@pytest.mark.parametrize("text", ["", "   "])
def test_blank_text_skips_provider(text):
    translator, client = _openai_translator(content="x")
    assert asyncio.run(translator.translate(text, "en", "fr")) == text
    client.chat.completions.create.assert_not_awaited()


def test_same_language_skips_provider():
    translator, client = _openai_translator(content="x")
    assert asyncio.run(translator.translate("Bonjour", "FR", "fr")) == "Bonjour"
    client.chat.completions.create.assert_not_awaited()


def test_translate_segment_keeps_timing():
    translator, _ = _openai_translator(content="Hola")
    segment = TranscriptSegment(sequence_index=4, text="Hello", start_ms=3000, end_ms=6000, source_language="en", window_index=5)
    result = asyncio.run(translator.translate_segment(segment, "es"))
    assert isinstance(result, TranslatedSegment)
    assert (result.sequence_index, result.start_ms, result.end_ms, result.window_index) == (4, 3000, 6000, 5)
    assert result.text == "Hello"
    assert result.translated_text == "Hola"
    assert result.target_language == "es"
    assert result.effective_text == "Hola"


def test_translate_segments_preserves_order():
    translator, client = _openai_translator(content="ok")
    segments = [TranscriptSegment(sequence_index=i, text=f"s{i}", start_ms=i, end_ms=i + 1) for i in range(3)]

    async def scenario():
        return [s async for s in translator.translate_segments(segments, "de")]

    assert [s.sequence_index for s in asyncio.run(scenario())] == [0, 1, 2]
    assert client.chat.completions.create.await_count == 3


def test_prompt_mentions_source_when_known():
    assert "from Spanish into English" in build_prompt("hola", "es", "en")
    assert "from the source language" in build_prompt("hola", "auto", "en")


def _deepseek(handler, monkeypatch):
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-test")
    config = TranslationConfig(provider="deepseek", model="deepseek-chat", api_key_env="DEEPSEEK_API_KEY")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeepSeekTranslator(config, client=client)


def test_deepseek_posts_chat_completion(monkeypatch):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "Salut"}}]})

    translator = _deepseek(handler, monkeypatch)

    async def scenario():
        try:
            return await translator.translate("Hi", "en", "fr")
        finally:
            await translator.aclose()

    assert asyncio.run(scenario()) == "Salut"
    assert seen["url"] == "https://api.deepseek.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "deepseek-chat"


def test_deepseek_http_error_keeps_original(monkeypatch):
    translator = _deepseek(lambda request: httpx.Response(500, text="upstream down"), monkeypatch)

    async def scenario():
        try:
            return await translator.translate("Hi", "en", "fr")
        finally:
            await translator.aclose()

    assert asyncio.run(scenario()) == "Hi"


def test_deepseek_requires_api_key(monkeypatch):
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="DEEPSEEK_API_KEY"):
        DeepSeekTranslator(TranslationConfig(provider="deepseek", api_key_env="DEEPSEEK_API_KEY"))


def test_unknown_translation_provider():
    with pytest.raises(ValueError, match="Unsupported translation provider"):
        build_translator(TranslationConfig(provider="babelfish"))
