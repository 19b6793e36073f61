"""Backend registry for transcription providers."""

from pathlib import Path
from typing import Type, Union

from caption_server.config.default.model import PROVIDER_GROQ, PROVIDER_LOCAL_WHISPER
from caption_server.config.loader import ServerConfig
from caption_server.model.backends.base import TranscriptionBackend
from caption_server.model.backends.groq import GroqTranscriptionBackend
from caption_server.model.backends.local_whisper import WhisperCliBackend
from caption_server.utils.logger import LOGGER

BackendClass = Union[Type[GroqTranscriptionBackend], Type[WhisperCliBackend]]


def get_backend(name: str) -> BackendClass:
    """Resolve a backend implementation by name."""
    normalized = (name or PROVIDER_GROQ).strip().lower()
    if normalized in {"groq", "remote", "api"}:
        return GroqTranscriptionBackend
    if normalized in {"local-whisper", "local_whisper", "local", "whisper"}:
        return WhisperCliBackend
    raise ValueError(f"Unknown transcription provider: {name}")


def select_backend(config: ServerConfig, work_dir: Path) -> TranscriptionBackend:
    """Pick the provider once for the lifetime of the process.

    A remote provider without a credential falls back to the local CLI.
    """
    backend_cls = get_backend(config.provider)
    if backend_cls is GroqTranscriptionBackend:
        if config.groq_api_key:
            return GroqTranscriptionBackend(
                api_key=config.groq_api_key,
                model=config.groq_model,
                language=config.groq_language,
                prompt=config.groq_prompt,
                base_url=config.groq_base_url,
                timeout_sec=config.groq_timeout_sec,
            )
        LOGGER.warning(
            "Provider %s configured without an API key; using %s instead",
            PROVIDER_GROQ,
            PROVIDER_LOCAL_WHISPER,
        )
    return WhisperCliBackend(
        output_dir=work_dir,
        model=config.local_model,
        language=config.local_language,
        executable=config.local_executable,
    )


__all__ = ["TranscriptionBackend", "get_backend", "select_backend"]
