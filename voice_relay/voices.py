"""Voice catalogs per TTS provider and language, and settings reconciliation."""

from __future__ import annotations

import logging
from dataclasses import replace
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .errors import InvalidSettings, InvalidVoice
from .types import TTSSettings

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "google", "edge")
FORMATS = ("mp3", "wav", "opus")
MIN_SPEED = 0.25
MAX_SPEED = 4.0

_OPENAI_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

_GOOGLE_VOICES = {
    "fr": ("fr-FR-Wavenet-A", "fr-FR-Wavenet-B", "fr-FR-Wavenet-C", "fr-FR-Wavenet-D"),
    "en": ("en-US-Wavenet-A", "en-US-Wavenet-B", "en-US-Wavenet-C", "en-US-Wavenet-D"),
    "es": ("es-ES-Wavenet-A", "es-ES-Wavenet-B", "es-ES-Wavenet-C", "es-ES-Wavenet-D"),
    "ar": ("ar-XA-Wavenet-A", "ar-XA-Wavenet-B", "ar-XA-Wavenet-C"),
    "de": ("de-DE-Wavenet-A", "de-DE-Wavenet-B", "de-DE-Wavenet-C", "de-DE-Wavenet-D"),
    "it": ("it-IT-Wavenet-A", "it-IT-Wavenet-B", "it-IT-Wavenet-C", "it-IT-Wavenet-D"),
    "pt": ("pt-BR-Wavenet-A", "pt-BR-Wavenet-B", "pt-BR-Wavenet-C"),
    "ru": ("ru-RU-Wavenet-A", "ru-RU-Wavenet-B", "ru-RU-Wavenet-C", "ru-RU-Wavenet-D"),
    "ja": ("ja-JP-Wavenet-A", "ja-JP-Wavenet-B", "ja-JP-Wavenet-C", "ja-JP-Wavenet-D"),
    "ko": ("ko-KR-Wavenet-A", "ko-KR-Wavenet-B", "ko-KR-Wavenet-C"),
    "zh": ("cmn-CN-Wavenet-A", "cmn-CN-Wavenet-B", "cmn-CN-Wavenet-C", "cmn-CN-Wavenet-D"),
    "hi": ("hi-IN-Wavenet-A", "hi-IN-Wavenet-B", "hi-IN-Wavenet-C", "hi-IN-Wavenet-D"),
}

# Microsoft neural voices reachable through edge-tts without Azure credentials
_EDGE_VOICES = {
    "fr": ("fr-FR-DeniseNeural", "fr-FR-HenriNeural", "fr-FR-EloiseNeural", "fr-CA-SylvieNeural"),
    "en": ("en-US-JennyNeural", "en-US-GuyNeural", "en-US-AriaNeural", "en-US-DavisNeural"),
    "es": ("es-ES-ElviraNeural", "es-ES-AlvaroNeural", "es-MX-DaliaNeural", "es-MX-JorgeNeural"),
    "ar": ("ar-SA-ZariyahNeural", "ar-SA-HamedNeural", "ar-EG-SalmaNeural", "ar-EG-ShakirNeural"),
    "de": ("de-DE-KatjaNeural", "de-DE-ConradNeural", "de-DE-AmalaNeural", "de-DE-KillianNeural"),
    "it": ("it-IT-ElsaNeural", "it-IT-DiegoNeural", "it-IT-IsabellaNeural"),
    "pt": ("pt-BR-FranciscaNeural", "pt-BR-AntonioNeural", "pt-PT-RaquelNeural", "pt-PT-DuarteNeural"),
    "ru": ("ru-RU-SvetlanaNeural", "ru-RU-DmitryNeural"),
    "ja": ("ja-JP-NanamiNeural", "ja-JP-KeitaNeural"),
    "ko": ("ko-KR-SunHiNeural", "ko-KR-InJoonNeural"),
    "zh": ("zh-CN-XiaoxiaoNeural", "zh-CN-YunxiNeural", "zh-CN-YunjianNeural", "zh-CN-XiaoyiNeural"),
    "hi": ("hi-IN-SwaraNeural", "hi-IN-MadhurNeural"),
}

LANGUAGES = tuple(_GOOGLE_VOICES)


def _build_catalog() -> Mapping[Tuple[str, str], Tuple[str, ...]]:
    entries = {}
    for language in LANGUAGES:
        entries[("openai", language)] = _OPENAI_VOICES
        entries[("google", language)] = _GOOGLE_VOICES[language]
        entries[("edge", language)] = _EDGE_VOICES[language]
    return MappingProxyType(entries)


VOICE_CATALOG = _build_catalog()

DEFAULT_VOICE = "alloy"

PREVIEW_TEXTS = MappingProxyType(
    {
        "fr": "Bonjour, ceci est un aperçu de cette voix.",
        "en": "Hello, this is a preview of this voice.",
        "es": "Hola, esta es una vista previa de esta voz.",
        "ar": "مرحبا، هذه معاينة لهذا الصوت.",
        "de": "Hallo, das ist eine Vorschau dieser Stimme.",
        "it": "Ciao, questa è un'anteprima di questa voce.",
        "pt": "Olá, esta é uma prévia desta voz.",
        "ru": "Привет, это предварительный просмотр этого голоса.",
        "ja": "こんにちは、これはこの声のプレビューです。",
        "ko": "안녕하세요, 이것은 이 음성의 미리보기입니다.",
        "zh": "你好，这是这个声音的预览。",
        "hi": "नमस्ते, यह इस आवाज़ का पूर्वावलोकन है।",
    }
)


def normalize_language(language: Optional[str]) -> str:
    return (language or "").lower().split("-")[0]


def available_voices(provider: str, language: str) -> Tuple[str, ...]:
    return VOICE_CATALOG.get(((provider or "").lower(), normalize_language(language)), ())


def is_valid_voice(provider: str, language: str, voice: str) -> bool:
    return voice in available_voices(provider, language)


def reconcile_settings(
    settings: TTSSettings, provider: Optional[str] = None, language: Optional[str] = None
) -> TTSSettings:
    """Return settings for a new provider and/or language with a voice that exists there.

    A provider change always selects the new catalog's first voice. A language
    change keeps the current voice when the new language offers it, otherwise
    falls back to the first voice listed for that language.
    """

    new_provider = (provider or settings.provider).lower()
    new_language = language or settings.language
    voices = available_voices(new_provider, new_language)
    voice = settings.voice
    if new_provider != settings.provider or voice not in voices:
        voice = voices[0] if voices else DEFAULT_VOICE
    if voice != settings.voice:
        logger.debug("Voice reset from %s to %s for %s/%s", settings.voice, voice, new_provider, new_language)
    return replace(settings, provider=new_provider, language=new_language, voice=voice)


def validate_settings(settings: TTSSettings) -> None:
    if settings.provider not in PROVIDERS:
        raise InvalidVoice(f"Unknown TTS provider: {settings.provider}")
    if not is_valid_voice(settings.provider, settings.language, settings.voice):
        raise InvalidVoice(
            f"Voice '{settings.voice}' is not available for {settings.provider}/{settings.language}"
        )
    if not MIN_SPEED <= settings.speed <= MAX_SPEED:
        raise InvalidSettings(f"Speed must be between {MIN_SPEED} and {MAX_SPEED}, got {settings.speed}")
    if settings.format not in FORMATS:
        raise InvalidSettings(f"Unsupported audio format: {settings.format}")


def preview_text(language: str) -> str:
    return PREVIEW_TEXTS.get(normalize_language(language), PREVIEW_TEXTS["en"])
