import argparse
import asyncio
import logging
import signal
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from voice_relay import LiveTranslationAgent, PipelineConfig, VoiceSynthesizer
from voice_relay.config import CaptureConfig, TranscriptionConfig, TranslationConfig, TTSConfig
from voice_relay.types import TTSSettings
from voice_relay.voices import PROVIDERS, available_voices, preview_text, reconcile_settings


def add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--target-lang", type=str, default="fr", help="Language to translate into and speak.")
    parser.add_argument("--tts-provider", type=str, choices=list(PROVIDERS), default="openai", help="TTS backend to use.")
    parser.add_argument("--tts-voice", type=str, help="Voice name; defaults to the first voice for the provider and language.")
    parser.add_argument("--tts-format", type=str, choices=["mp3", "wav", "opus"], default="mp3", help="Audio format for synthesized speech.")
    parser.add_argument("--speed", type=float, default=1.0, help="Speaking rate between 0.25 and 4.0.")
    parser.add_argument("--tts-api-base", type=str, help="Custom base URL for the OpenAI TTS API (optional).")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, WARNING, ERROR).")


def add_pipeline_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--run-name", type=str, help="Optional name for this run.")
    parser.add_argument("--output-dir", type=Path, default=Path("artifacts"), help="Directory to store generated artifacts.")
    parser.add_argument("--no-overwrite", action="store_true", help="Fail if a run with the same name exists.")
    parser.add_argument("--source-lang", type=str, default="auto", help="Spoken language, or 'auto' to detect.")
    parser.add_argument("--stt-provider", type=str, choices=["openai", "whisper"], default="openai", help="Speech-to-text backend.")
    parser.add_argument("--stt-model", type=str, default="whisper-1", help="Model name for the OpenAI transcription API.")
    parser.add_argument("--whisper-model", type=str, default="base", help="Local Whisper model size (tiny/base/small/medium/large).")
    parser.add_argument("--window-seconds", type=float, default=3.0, help="Length of each live transcription window.")
    parser.add_argument("--max-in-flight", type=int, default=4, help="Maximum concurrent transcription calls.")
    parser.add_argument("--no-translate", action="store_true", help="Keep the transcript in its original language.")
    parser.add_argument("--translation-provider", type=str, choices=["openai", "deepseek"], default="openai", help="Translation backend to use.")
    parser.add_argument("--translation-model", type=str, default="gpt-4o-mini", help="Model name for translation provider.")
    parser.add_argument("--translation-api-base", type=str, help="Custom base URL for translation API (optional).")
    parser.add_argument("--translation-api-key-env", type=str, help="Environment variable containing translation API key.")
    parser.add_argument("--temperature", type=float, default=0.3, help="Temperature for the translation model.")
    parser.add_argument("--no-voiceover", action="store_true", help="Do not synthesize the full voiceover.")
    parser.add_argument("--aligned", action="store_true", help="Also write a voiceover aligned to segment start times.")
    parser.add_argument("--voiceover-delay", type=float, default=0.0, help="Seconds to wait between TTS calls.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Capture or load speech, transcribe it, translate it and speak it back.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    record = subparsers.add_parser("record", help="Record from the microphone with live transcription.")
    record.add_argument("--duration", type=float, help="Stop after this many seconds (default: until Ctrl+C).")
    record.add_argument("--device", type=str, help="Input device name or index.")
    record.add_argument("--speak", action="store_true", help="Speak each translated segment as it arrives.")
    add_pipeline_args(record)
    add_common_args(record)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe and translate an audio or video file.")
    transcribe.add_argument("media", type=Path, help="Path to the source audio or video file.")
    add_pipeline_args(transcribe)
    add_common_args(transcribe)

    speak = subparsers.add_parser("speak", help="Synthesize text and play it or save it.")
    speak.add_argument("text", type=str, nargs="?", help="Text to speak.")
    speak.add_argument("--preview", action="store_true", help="Speak the preview sentence for the target language.")
    speak.add_argument("--save", type=Path, help="Write the audio to this path instead of playing it.")
    speak.add_argument("--list-voices", action="store_true", help="List voices for the provider and language.")
    add_common_args(speak)

    return parser.parse_args()


def build_settings(args: argparse.Namespace) -> TTSSettings:
    settings = reconcile_settings(
        TTSSettings(speed=args.speed, format=args.tts_format),
        provider=args.tts_provider,
        language=args.target_lang,
    )
    if args.tts_voice:
        settings = replace(settings, voice=args.tts_voice)
    return settings


def build_tts_config(args: argparse.Namespace) -> TTSConfig:
    return TTSConfig(
        settings=build_settings(args),
        api_base=args.tts_api_base,
        voiceover_delay_seconds=getattr(args, "voiceover_delay", 0.0),
    )


def build_config(args: argparse.Namespace) -> PipelineConfig:
    capture = CaptureConfig(device=getattr(args, "device", None))
    transcription = TranscriptionConfig(
        provider=args.stt_provider,
        model=args.stt_model,
        language=None if args.source_lang == "auto" else args.source_lang,
        window_seconds=args.window_seconds,
        max_in_flight=args.max_in_flight,
        whisper_model_size=args.whisper_model,
    )

    translation_model = args.translation_model
    if args.translation_provider == "deepseek" and translation_model == "gpt-4o-mini":
        translation_model = "deepseek-chat"
    translation_api_key_env = args.translation_api_key_env
    if not translation_api_key_env:
        translation_api_key_env = "OPENAI_API_KEY" if args.translation_provider == "openai" else "DEEPSEEK_API_KEY"

    translation = TranslationConfig(
        enabled=not args.no_translate,
        provider=args.translation_provider,
        model=translation_model,
        temperature=args.temperature,
        source_language=args.source_lang,
        target_language=args.target_lang,
        api_base=args.translation_api_base,
        api_key_env=translation_api_key_env,
    )

    return PipelineConfig(
        capture=capture,
        transcription=transcription,
        translation=translation,
        tts=build_tts_config(args),
        output_root=args.output_dir,
        overwrite=not args.no_overwrite,
        speak_segments=getattr(args, "speak", False),
        build_voiceover=not args.no_voiceover,
        align_voiceover=args.aligned,
    )


async def run_speak(args: argparse.Namespace) -> None:
    settings = build_settings(args)
    if args.list_voices:
        for voice in available_voices(settings.provider, settings.language):
            print(voice)
        return
    text = preview_text(settings.language) if args.preview or not args.text else args.text
    synthesizer = VoiceSynthesizer(build_tts_config(args))
    try:
        if args.save:
            result = await synthesizer.synthesize(text, settings)
            args.save.parent.mkdir(parents=True, exist_ok=True)
            args.save.write_bytes(result.audio)
            logging.info("Saved speech to %s", args.save)
        else:
            await synthesizer.play_immediate(text, settings)
    finally:
        await synthesizer.aclose()


async def run_pipeline(args: argparse.Namespace) -> None:
    agent = LiveTranslationAgent(config=build_config(args))
    try:
        if args.command == "record":
            stop_event = asyncio.Event()
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, stop_event.set)
            logging.info("Recording... press Ctrl+C to stop.")
            artifacts = await agent.record(duration_seconds=args.duration, stop_event=stop_event, run_name=args.run_name)
        else:
            artifacts = await agent.process_file(args.media, run_name=args.run_name)
    finally:
        await agent.aclose()

    logging.info("Run directory: %s", artifacts.run_dir)
    logging.info("Recording: %s", artifacts.recording_path)
    logging.info("Transcript: %s", artifacts.transcript_text)
    logging.info("Subtitles: %s", artifacts.subtitles_path)
    logging.info("Voiceover: %s", artifacts.voiceover_path)


def main() -> None:
    args = parse_args()
    load_dotenv()
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    if args.command == "speak":
        asyncio.run(run_speak(args))
    else:
        asyncio.run(run_pipeline(args))


if __name__ == "__main__":
    main()
