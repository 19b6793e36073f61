"""Hosted Whisper backend (Groq OpenAI-compatible API)."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from caption_server.errors import TranscriptionError

LOGGER = logging.getLogger("caption_server.model_backend")


class GroqTranscriptionBackend:
    """Posts one WAV container per job to ``/audio/transcriptions``."""

    name = "groq"

    def __init__(
        self,
        api_key: str,
        model: str,
        language: str,
        prompt: str,
        base_url: str,
        timeout_sec: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.model = model
        self.language = language
        self.prompt = prompt
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=httpx.Timeout(timeout_sec),
            transport=transport,
        )
        LOGGER.info(
            "groq backend initialized model=%s language=%s", model, language
        )

    async def transcribe(self, audio_path: Path) -> str:
        audio_bytes = await asyncio.to_thread(audio_path.read_bytes)
        files = {"file": (audio_path.name, audio_bytes, "audio/wav")}
        data = {
            "model": self.model,
            "language": self.language,
            "response_format": "text",
            "prompt": self.prompt,
        }
        try:
            response = await self._client.post(
                "/audio/transcriptions", files=files, data=data
            )
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Groq request failed: {exc}") from exc

        if not response.is_success:
            raise TranscriptionError(
                f"Groq API error: {response.status_code} - {response.text[:500]}"
            )
        return response.text

    async def close(self) -> None:
        await self._client.aclose()
