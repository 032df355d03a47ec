class VoiceRelayError(Exception):
    """Base class for all pipeline errors."""


class DeviceUnavailable(VoiceRelayError):
    """The audio input device could not be opened or was lost."""


class InvalidState(VoiceRelayError, RuntimeError):
    """A capture or transcription operation was called out of order."""


class ChunkTranscriptionFailed(VoiceRelayError):
    """A single window could not be transcribed. Always recovered locally."""


class TranslationFailed(VoiceRelayError):
    """A translation call failed. Always recovered locally."""


class ProviderError(VoiceRelayError):
    """A text-to-speech provider call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} TTS error: {message}")
        self.provider = provider


class InvalidVoice(VoiceRelayError, ValueError):
    pass


class InvalidSettings(VoiceRelayError, ValueError):
    pass


class EmptyInput(VoiceRelayError, ValueError):
    pass


class NoContent(VoiceRelayError, ValueError):
    pass
