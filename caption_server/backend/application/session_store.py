"""Per-room transcript session files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from caption_server.utils.logger import LOGGER


def _sanitize_room_id(value: str) -> str:
    sanitized = []
    for ch in value:
        if (ch.isascii() and ch.isalnum()) or ch in ("-", "_"):
            sanitized.append(ch)
        else:
            sanitized.append("_")
        if len(sanitized) >= 80:
            break
    result = "".join(sanitized).strip("_")
    return result or "room"


def isoformat_ms(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a ``Z`` suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def session_file_name(room_id: str, started_at: datetime) -> str:
    stamp = isoformat_ms(started_at).replace(":", "-").replace(".", "-")
    return f"{_sanitize_room_id(room_id)}_{stamp}.yaml"


@dataclass(frozen=True)
class TranscriptEntry:
    timestamp: datetime
    user_id: str
    text: str

    def to_document(self) -> Dict[str, str]:
        return {
            "timestamp": isoformat_ms(self.timestamp),
            "userId": self.user_id,
            "text": self.text,
        }


@dataclass
class RoomSession:
    room_id: str
    file_path: Path
    started_at: datetime
    ended_at: Optional[datetime] = None
    transcriptions: List[TranscriptEntry] = field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "room": self.room_id,
            "startedAt": isoformat_ms(self.started_at),
        }
        if self.ended_at is not None:
            document["endedAt"] = isoformat_ms(self.ended_at)
        document["transcriptions"] = [
            entry.to_document() for entry in self.transcriptions
        ]
        return document


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStore:
    """Keeps at most one open session per room and mirrors it to a YAML file.

    Every mutation rewrites the whole document through a temp file and
    ``os.replace`` so readers never see a partial snapshot.
    """

    def __init__(
        self, directory: Path, clock: Callable[[], datetime] = _utcnow
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._sessions: Dict[str, RoomSession] = {}

    def get(self, room_id: str) -> Optional[RoomSession]:
        return self._sessions.get(room_id)

    def open_rooms(self) -> List[str]:
        return list(self._sessions)

    def open(self, room_id: str) -> RoomSession:
        existing = self._sessions.get(room_id)
        if existing is not None:
            return existing
        started_at = self._clock()
        path = self.directory / session_file_name(room_id, started_at)
        suffix = 1
        while path.exists():
            path = path.with_name(
                f"{session_file_name(room_id, started_at)[:-5]}-{suffix}.yaml"
            )
            suffix += 1
        session = RoomSession(room_id=room_id, file_path=path, started_at=started_at)
        self._write(session)
        self._sessions[room_id] = session
        LOGGER.info("Started session for room %s: %s", room_id, path.name)
        return session

    def append(
        self,
        room_id: str,
        user_id: str,
        text: str,
        timestamp: Optional[datetime] = None,
    ) -> Optional[TranscriptEntry]:
        session = self._sessions.get(room_id)
        if session is None:
            LOGGER.debug("No open session for room %s; transcript not stored", room_id)
            return None
        entry = TranscriptEntry(
            timestamp=timestamp or self._clock(), user_id=user_id, text=text
        )
        session.transcriptions.append(entry)
        self._write(session)
        return entry

    def close(self, room_id: str) -> Optional[RoomSession]:
        session = self._sessions.pop(room_id, None)
        if session is None:
            return None
        session.ended_at = self._clock()
        self._write(session)
        LOGGER.info(
            "Ended session for room %s entries=%d",
            room_id,
            len(session.transcriptions),
        )
        return session

    def close_all(self) -> None:
        for room_id in list(self._sessions):
            self.close(room_id)

    def _write(self, session: RoomSession) -> None:
        tmp_path = session.file_path.with_name(session.file_path.name + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(
                session.to_document(),
                fh,
                sort_keys=False,
                allow_unicode=True,
            )
        os.replace(tmp_path, session.file_path)


def load_session_document(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


__all__ = [
    "RoomSession",
    "SessionStore",
    "TranscriptEntry",
    "isoformat_ms",
    "load_session_document",
    "session_file_name",
]
