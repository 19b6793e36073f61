"""Default values for transcription provider configuration."""

from typing import Dict

PROVIDER_GROQ = "groq"
PROVIDER_LOCAL_WHISPER = "local-whisper"

DEFAULT_PROVIDER = PROVIDER_GROQ
DEFAULT_LANGUAGE = "en"

DEFAULT_LOCAL_EXECUTABLE = "whisper"
DEFAULT_LOCAL_MODEL = "tiny"

DEFAULT_GROQ_MODEL = "whisper-large-v3-turbo"
DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_GROQ_TIMEOUT_SEC = 60.0
DEFAULT_GROQ_PROMPT = (
    "Transcribe only the words actually spoken. "
    "Do not add filler phrases, greetings, or sign-offs that are not in the audio."
)

ENV_PROVIDER = "TRANSCRIPTION_PROVIDER"
ENV_GROQ_API_KEY = "GROQ_API_KEY"

MODEL_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "transcription": {
        "provider": "provider",
        "buffer_duration_sec": "buffer_duration_sec",
        "queue_capacity": "queue_capacity",
        "job_timeout_sec": "job_timeout_sec",
        "work_dir": "work_dir",
    },
    "local_whisper": {
        "executable": "local_executable",
        "model": "local_model",
        "language": "local_language",
    },
    "groq": {
        "api_key": "groq_api_key",
        "model": "groq_model",
        "language": "groq_language",
        "base_url": "groq_base_url",
        "prompt": "groq_prompt",
        "timeout_sec": "groq_timeout_sec",
    },
}


__all__ = [
    "PROVIDER_GROQ",
    "PROVIDER_LOCAL_WHISPER",
    "DEFAULT_PROVIDER",
    "DEFAULT_LANGUAGE",
    "DEFAULT_LOCAL_EXECUTABLE",
    "DEFAULT_LOCAL_MODEL",
    "DEFAULT_GROQ_MODEL",
    "DEFAULT_GROQ_BASE_URL",
    "DEFAULT_GROQ_TIMEOUT_SEC",
    "DEFAULT_GROQ_PROMPT",
    "ENV_PROVIDER",
    "ENV_GROQ_API_KEY",
    "MODEL_SECTION_MAP",
]
