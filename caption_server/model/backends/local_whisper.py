"""Local Whisper CLI backend; one subprocess per job."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List

from caption_server.backend.component.wav_container import discard_file
from caption_server.errors import ErrorCode, TranscriptionError

LOGGER = logging.getLogger("caption_server.model_backend")


class WhisperCliBackend:
    """Runs the ``whisper`` command line tool and reads its ``.txt`` output."""

    name = "local-whisper"

    def __init__(
        self,
        output_dir: Path,
        model: str = "tiny",
        language: str = "en",
        executable: str = "whisper",
    ) -> None:
        self.output_dir = Path(output_dir)
        self.model = model
        self.language = language
        self.executable = executable
        LOGGER.info(
            "local whisper backend initialized executable=%s model=%s language=%s",
            executable,
            model,
            language,
        )

    def command(self, audio_path: Path) -> List[str]:
        return [
            self.executable,
            str(audio_path),
            "--model",
            self.model,
            "--output_format",
            "txt",
            "--output_dir",
            str(self.output_dir),
            "--language",
            self.language,
            "--task",
            "transcribe",
        ]

    def output_path(self, audio_path: Path) -> Path:
        return self.output_dir / f"{audio_path.stem}.txt"

    async def transcribe(self, audio_path: Path) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(audio_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscriptionError(
                f"cannot start {self.executable}: {exc}",
                code=ErrorCode.PROVIDER_UNAVAILABLE,
            ) from exc

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            diagnostics = (stderr or b"").decode("utf-8", errors="replace").strip()
            raise TranscriptionError(
                f"Whisper exited with code {process.returncode}: {diagnostics}"
            )

        txt_path = self.output_path(audio_path)
        try:
            transcript = await asyncio.to_thread(
                txt_path.read_text, encoding="utf-8", errors="replace"
            )
        except FileNotFoundError:
            LOGGER.debug("Whisper produced no output for %s", audio_path.name)
            return ""
        discard_file(txt_path)
        return transcript

    async def close(self) -> None:
        return None
