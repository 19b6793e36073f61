"""Application wiring for the caption server."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from caption_server.backend.application.room_coordinator import (
    Broadcaster,
    RoomCoordinator,
)
from caption_server.backend.application.session_store import SessionStore
from caption_server.backend.component.vad_gate import VoiceActivityGate
from caption_server.backend.runtime.metrics import Metrics
from caption_server.config.loader import ServerConfig
from caption_server.errors import CaptionError, ErrorCode
from caption_server.model.backends import select_backend
from caption_server.model.backends.base import TranscriptionBackend
from caption_server.utils.logger import LOGGER


def _ensure_directory(path: Path, purpose: str) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CaptionError(
            ErrorCode.STORAGE_UNAVAILABLE, f"cannot create {purpose} {path}: {exc}"
        ) from exc
    return path


class ApplicationRuntime:  # pylint: disable=too-many-instance-attributes
    """Builds and owns application-layer dependencies."""

    def __init__(
        self,
        config: ServerConfig,
        backend: Optional[TranscriptionBackend] = None,
        broadcaster: Optional[Broadcaster] = None,
    ) -> None:
        self.config = config
        self.metrics = Metrics()
        self.work_dir = _ensure_directory(
            Path(config.work_dir).expanduser()
            if config.work_dir
            else Path(tempfile.gettempdir()) / "caption-audio",
            "work directory",
        )
        self.transcripts_dir = _ensure_directory(
            Path(config.transcripts_dir).expanduser(), "transcripts directory"
        )
        self.gate = VoiceActivityGate(config.energy_threshold)
        self.backend = backend or select_backend(config, self.work_dir)
        self.session_store = SessionStore(self.transcripts_dir)
        self.coordinator = RoomCoordinator(
            session_store=self.session_store,
            backend=self.backend,
            gate=self.gate,
            work_dir=self.work_dir,
            buffer_duration_sec=config.buffer_duration_sec,
            queue_capacity=config.queue_capacity,
            job_timeout_sec=config.job_timeout_sec,
            default_sample_rate=config.default_sample_rate,
            default_channel_count=config.default_channel_count,
            broadcaster=broadcaster,
            metrics=self.metrics,
        )
        LOGGER.info(
            "Runtime ready provider=%s transcripts=%s work_dir=%s",
            self.backend.name,
            self.transcripts_dir,
            self.work_dir,
        )

    def health_snapshot(self) -> Dict[str, Any]:
        return {
            "provider": self.backend.name,
            "peers": self.coordinator.peer_count,
            "rooms": self.session_store.open_rooms(),
            "queue_depth": len(self.coordinator.queue),
            "in_flight": self.coordinator.queue.in_flight,
        }
