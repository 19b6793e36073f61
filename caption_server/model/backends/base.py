"""Backend interface for transcription providers."""

from pathlib import Path
from typing import Protocol


class TranscriptionBackend(Protocol):
    """Turns an encoded audio container on disk into raw text."""

    name: str

    async def transcribe(self, audio_path: Path) -> str:
        """Transcribe the container at ``audio_path``.

        Raises TranscriptionError when the provider call fails.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release provider resources."""
        raise NotImplementedError
