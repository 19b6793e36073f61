import argparse
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from caption_server.backend.runtime.runtime import ApplicationRuntime
from caption_server.backend.transport.ws_server import build_ws_app
from caption_server.config import DEFAULT_CONFIG_PATH, ServerConfig, load_config
from caption_server.errors import CaptionError
from caption_server.utils.logger import LOGGER, configure_logging


def serve(config: ServerConfig) -> None:
    """Build the runtime and run the HTTP/WebSocket server until interrupted."""
    runtime = ApplicationRuntime(config)
    app = build_ws_app(runtime)
    LOGGER.info(
        "Caption server listening on %s:%s (provider=%s)",
        config.host,
        config.port,
        runtime.backend.name,
    )
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower() if config.log_level else "info",
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live room captioning server")
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to YAML config (default search: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--host", default=None, help="Interface to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to bind")
    parser.add_argument(
        "--provider",
        default=None,
        help="Transcription provider: groq or local-whisper",
    )
    parser.add_argument(
        "--buffer-duration",
        type=float,
        default=None,
        help="Seconds of audio buffered per peer before a segment is flushed",
    )
    parser.add_argument(
        "--queue-capacity",
        type=int,
        default=None,
        help="Pending transcription jobs kept before the oldest is dropped",
    )
    parser.add_argument(
        "--job-timeout",
        type=float,
        default=None,
        help="Seconds a single provider call may take (<=0 disables)",
    )
    parser.add_argument(
        "--energy-threshold",
        type=float,
        default=None,
        help="Mean absolute int16 amplitude a segment must exceed to be transcribed",
    )
    parser.add_argument(
        "--transcripts-dir",
        default=None,
        help="Directory for per-room YAML transcript sessions",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO); overrides config",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional log file path; overrides config",
    )
    return parser.parse_args(argv)


def configure_from_args(args: argparse.Namespace) -> ServerConfig:
    config_arg_path = Path(args.config).expanduser() if args.config else None
    effective_config_path = config_arg_path or DEFAULT_CONFIG_PATH
    config = load_config(effective_config_path)

    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.provider is not None:
        config.provider = args.provider
    if args.buffer_duration is not None:
        config.buffer_duration_sec = args.buffer_duration
    if args.queue_capacity is not None:
        config.queue_capacity = args.queue_capacity
    if args.job_timeout is not None:
        config.job_timeout_sec = args.job_timeout
    if args.energy_threshold is not None:
        config.energy_threshold = args.energy_threshold
    if args.transcripts_dir is not None:
        config.transcripts_dir = args.transcripts_dir
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file

    configure_logging(config.log_level, config.log_file, config.transcript_log_file)
    if effective_config_path.exists():
        LOGGER.info("Loaded server config from %s", effective_config_path)
    else:
        LOGGER.info(
            "Server config file not found at %s; using defaults/CLI overrides",
            effective_config_path,
        )
    return config


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    config = configure_from_args(args)
    try:
        serve(config)
    except CaptionError as exc:
        LOGGER.error("Failed to start caption server: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
