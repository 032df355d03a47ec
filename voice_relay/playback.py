from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path

import numpy as np
from pydub import AudioSegment

logger = logging.getLogger(__name__)


class AudioPlayer:
    """Plays encoded audio on the default output device.

    The audio is staged in a temporary file that is removed as soon as
    playback ends, fails or is cancelled.
    """

    def __init__(self, poll_interval: float = 0.05):
        self.poll_interval = poll_interval

    async def play(self, audio: bytes, suffix: str = ".mp3") -> None:
        handle = tempfile.NamedTemporaryFile(prefix="voice_relay_", suffix=suffix, delete=False)
        path = Path(handle.name)
        try:
            with handle:
                handle.write(audio)
            await self._play_file(path)
        finally:
            path.unlink(missing_ok=True)
            logger.debug("Released playback file %s", path)

    async def _play_file(self, path: Path) -> None:
        try:
            import sounddevice as sd  # type: ignore
        except (ImportError, OSError) as exc:
            raise RuntimeError(f"sounddevice is required for playback: {exc}") from exc

        clip = await asyncio.to_thread(AudioSegment.from_file, str(path))
        samples = np.array(clip.get_array_of_samples()).reshape(-1, clip.channels)
        sd.play(samples, clip.frame_rate)
        try:
            while sd.get_stream().active:
                await asyncio.sleep(self.poll_interval)
        finally:
            sd.stop()
