"""
Local audio asset read as a sequence of raw byte chunks.
"""

import asyncio
import os
import wave
from typing import Any, AsyncIterator, Dict

from .errors import MediaUnavailableError
from .logging_config import get_logger

logger = get_logger(__name__)


class WavFileMediaSource:
    """Streams a WAV file (header included) from start to end."""

    def __init__(self, path: str, chunk_size: int = 8192):
        self.path = path
        self.chunk_size = chunk_size

    def exists(self) -> bool:
        return os.path.isfile(self.path) and os.access(self.path, os.R_OK)

    def ensure_available(self) -> None:
        if not self.exists():
            raise MediaUnavailableError(f"Audio file not found: {self.path}")

    def describe(self) -> Dict[str, Any]:
        """WAV header details for startup logging; empty when the file is not a readable WAV."""
        try:
            with wave.open(self.path, "rb") as wav:
                frames = wav.getnframes()
                rate = wav.getframerate()
                return {
                    "channels": wav.getnchannels(),
                    "sample_rate": rate,
                    "sample_width": wav.getsampwidth(),
                    "duration_sec": round(frames / rate, 2) if rate else None,
                    "size_bytes": os.path.getsize(self.path),
                }
        except (wave.Error, EOFError, OSError) as e:
            logger.debug("Audio file is not a readable WAV", path=self.path, error=str(e))
            return {}

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        """Yield the file in `chunk_size` pieces, reading each one only when asked for."""
        self.ensure_available()
        f = await asyncio.to_thread(open, self.path, "rb")
        try:
            while True:
                chunk = await asyncio.to_thread(f.read, self.chunk_size)
                if not chunk:
                    return
                yield chunk
        finally:
            f.close()
