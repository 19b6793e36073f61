"""Default values for server/runtime configuration."""

from typing import Dict

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_BUFFER_DURATION_SEC = 5.0
DEFAULT_QUEUE_CAPACITY = 3
DEFAULT_JOB_TIMEOUT_SEC = 120.0
DEFAULT_WORK_DIR = None
DEFAULT_ENERGY_THRESHOLD = 50.0
DEFAULT_SAMPLE_RATE = 48000
DEFAULT_CHANNEL_COUNT = 1
DEFAULT_TRANSCRIPTS_DIR = "transcripts"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = None
DEFAULT_TRANSCRIPT_LOG_FILE = None

SERVER_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "server": {
        "host": "host",
        "port": "port",
    },
    "vad": {
        "energy_threshold": "energy_threshold",
    },
    "storage": {
        "transcripts_dir": "transcripts_dir",
        "directory": "transcripts_dir",
    },
    "logging": {
        "level": "log_level",
        "file": "log_file",
        "transcript_file": "transcript_log_file",
    },
}

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_BUFFER_DURATION_SEC",
    "DEFAULT_QUEUE_CAPACITY",
    "DEFAULT_JOB_TIMEOUT_SEC",
    "DEFAULT_WORK_DIR",
    "DEFAULT_ENERGY_THRESHOLD",
    "DEFAULT_SAMPLE_RATE",
    "DEFAULT_CHANNEL_COUNT",
    "DEFAULT_TRANSCRIPTS_DIR",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_LOG_FILE",
    "DEFAULT_TRANSCRIPT_LOG_FILE",
    "SERVER_SECTION_MAP",
]
