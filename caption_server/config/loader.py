import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from caption_server import PROJECT_ROOT
from caption_server.config.default import (
    DEFAULT_BUFFER_DURATION_SEC,
    DEFAULT_CHANNEL_COUNT,
    DEFAULT_ENERGY_THRESHOLD,
    DEFAULT_GROQ_BASE_URL,
    DEFAULT_GROQ_MODEL,
    DEFAULT_GROQ_PROMPT,
    DEFAULT_GROQ_TIMEOUT_SEC,
    DEFAULT_HOST,
    DEFAULT_JOB_TIMEOUT_SEC,
    DEFAULT_LANGUAGE,
    DEFAULT_LOCAL_EXECUTABLE,
    DEFAULT_LOCAL_MODEL,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_PORT,
    DEFAULT_PROVIDER,
    DEFAULT_QUEUE_CAPACITY,
    DEFAULT_SAMPLE_RATE,
    DEFAULT_TRANSCRIPT_LOG_FILE,
    DEFAULT_TRANSCRIPTS_DIR,
    DEFAULT_WORK_DIR,
    ENV_GROQ_API_KEY,
    ENV_PROVIDER,
    MODEL_SECTION_MAP,
    SERVER_SECTION_MAP,
)


@dataclass
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    provider: str = DEFAULT_PROVIDER
    buffer_duration_sec: float = DEFAULT_BUFFER_DURATION_SEC
    queue_capacity: int = DEFAULT_QUEUE_CAPACITY
    job_timeout_sec: float = DEFAULT_JOB_TIMEOUT_SEC
    work_dir: Optional[str] = DEFAULT_WORK_DIR
    energy_threshold: float = DEFAULT_ENERGY_THRESHOLD
    default_sample_rate: int = DEFAULT_SAMPLE_RATE
    default_channel_count: int = DEFAULT_CHANNEL_COUNT
    local_executable: str = DEFAULT_LOCAL_EXECUTABLE
    local_model: str = DEFAULT_LOCAL_MODEL
    local_language: str = DEFAULT_LANGUAGE
    groq_api_key: str = ""
    groq_model: str = DEFAULT_GROQ_MODEL
    groq_language: str = DEFAULT_LANGUAGE
    groq_base_url: str = DEFAULT_GROQ_BASE_URL
    groq_prompt: str = DEFAULT_GROQ_PROMPT
    groq_timeout_sec: float = DEFAULT_GROQ_TIMEOUT_SEC
    transcripts_dir: str = DEFAULT_TRANSCRIPTS_DIR
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = DEFAULT_LOG_FILE
    transcript_log_file: Optional[str] = DEFAULT_TRANSCRIPT_LOG_FILE


DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "server.yaml"

SECTION_MAP: Dict[str, Dict[str, str]] = dict(MODEL_SECTION_MAP)
SECTION_MAP.update(SERVER_SECTION_MAP)


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ServerConfig:
    """Load configuration from YAML, then apply environment overrides."""
    cfg = ServerConfig()
    data = _read_yaml(config_path or DEFAULT_CONFIG_PATH)
    if data:
        _apply_sections(cfg, data)
    _apply_environment(cfg, os.environ if environ is None else environ)
    return cfg


def _read_yaml(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if not path or not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        return data
    return None


def _apply_sections(cfg: ServerConfig, raw: Dict[str, Any]) -> None:
    field_names = {f.name for f in fields(ServerConfig)}
    for section, mapping in SECTION_MAP.items():
        data = raw.get(section)
        if not isinstance(data, dict):
            continue
        for key, attr in mapping.items():
            if key in data and data[key] is not None:
                setattr(cfg, attr, data[key])

    for key, value in raw.items():
        if key in SECTION_MAP:
            continue
        if key in field_names and value is not None:
            setattr(cfg, key, value)


def _apply_environment(cfg: ServerConfig, environ: Mapping[str, str]) -> None:
    provider = (environ.get(ENV_PROVIDER) or "").strip()
    if provider:
        cfg.provider = provider
    api_key = (environ.get(ENV_GROQ_API_KEY) or "").strip()
    if api_key and not cfg.groq_api_key:
        cfg.groq_api_key = api_key


__all__ = [
    "ServerConfig",
    "DEFAULT_CONFIG_PATH",
    "load_config",
]
