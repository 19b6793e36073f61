"""Owns peers, room sessions and the transcription queue."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

from caption_server.backend.application.session_store import SessionStore
from caption_server.backend.component.peer_audio import (
    AudioFrame,
    AudioSegment,
    PeerAudioSession,
    PeerConnection,
)
from caption_server.backend.component.transcription_queue import (
    TranscriptionJob,
    TranscriptionQueue,
    TranscriptionQueueHooks,
)
from caption_server.backend.component.vad_gate import VoiceActivityGate
from caption_server.backend.runtime.metrics import Metrics
from caption_server.errors import CaptionError, ErrorCode
from caption_server.model.backends.base import TranscriptionBackend
from caption_server.utils import audio
from caption_server.utils.logger import LOGGER, TRANSCRIPT_LOGGER


class Broadcaster(Protocol):
    async def publish(self, room_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Deliver ``payload`` to every member of ``room_id``."""
        raise NotImplementedError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RoomCoordinator:  # pylint: disable=too-many-instance-attributes
    """Single owner of all per-peer, per-room and queue state.

    A room has peers iff at least one live PeerAudioSession records its id.
    The room's transcript session opens on the first peer and closes when the
    last one is removed.
    """

    def __init__(
        self,
        session_store: SessionStore,
        backend: TranscriptionBackend,
        gate: VoiceActivityGate,
        work_dir: Path,
        buffer_duration_sec: float = 5.0,
        queue_capacity: int = 3,
        job_timeout_sec: float = 0.0,
        default_sample_rate: int = 48000,
        default_channel_count: int = 1,
        broadcaster: Optional[Broadcaster] = None,
        metrics: Optional[Metrics] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_store = session_store
        self.backend = backend
        self.gate = gate
        self.buffer_duration_sec = buffer_duration_sec
        self.default_sample_rate = default_sample_rate
        self.default_channel_count = default_channel_count
        self.broadcaster = broadcaster
        self.metrics = metrics or Metrics()
        self._clock = clock
        self._peers: Dict[str, PeerAudioSession] = {}
        self._connections: Dict[str, PeerConnection] = {}
        hooks = TranscriptionQueueHooks(
            on_transcript=self._on_transcript,
            on_enqueued=lambda _job: self.metrics.record_enqueued(),
            on_dropped=lambda _job: self.metrics.record_dropped(),
            on_gated=lambda _job: self.metrics.record_job_gated(),
            on_filtered=lambda _job: self.metrics.record_filtered(),
            on_failed=self._on_job_failed,
            on_completed=lambda _job, latency: self.metrics.record_transcript(latency),
        )
        self.queue = TranscriptionQueue(
            backend=backend,
            gate=gate,
            work_dir=work_dir,
            capacity=queue_capacity,
            job_timeout_sec=job_timeout_sec,
            hooks=hooks,
        )

    # lifecycle

    def start(self) -> None:
        self.queue.start()

    async def shutdown(self) -> None:
        for peer_id in list(self._peers):
            self.remove_peer(peer_id)
        await self.queue.stop()
        self.session_store.close_all()
        await self.backend.close()

    # presence

    def room_has_peers(self, room_id: str) -> bool:
        return any(peer.room_id == room_id for peer in self._peers.values())

    def peers_in_room(self, room_id: str) -> List[str]:
        return [
            peer_id for peer_id, peer in self._peers.items() if peer.room_id == room_id
        ]

    def peer(self, peer_id: str) -> Optional[PeerAudioSession]:
        return self._peers.get(peer_id)

    def connection(self, peer_id: str) -> Optional[PeerConnection]:
        return self._connections.get(peer_id)

    @property
    def peer_count(self) -> int:
        return len(self._peers)

    def add_peer(
        self,
        peer_id: str,
        room_id: str,
        user_id: Optional[str] = None,
        resource: Any = None,
    ) -> PeerConnection:
        """Register a peer with an audio track and return its connection."""
        if not room_id:
            raise CaptionError(ErrorCode.ROOM_ID_REQUIRED)
        if peer_id in self._peers:
            raise CaptionError(ErrorCode.PEER_ALREADY_ACTIVE)

        if not self.room_has_peers(room_id):
            if self.session_store.get(room_id) is None:
                self.metrics.session_opened()
            self.session_store.open(room_id)

        self._peers[peer_id] = PeerAudioSession(
            peer_id=peer_id,
            room_id=room_id,
            user_id=user_id or peer_id,
            buffer_duration_sec=self.buffer_duration_sec,
            sample_rate=self.default_sample_rate,
            channel_count=self.default_channel_count,
        )
        connection = PeerConnection(
            peer_id,
            on_frame=partial(self._on_frame, peer_id),
            on_terminal=partial(self.remove_peer, peer_id),
            resource=resource,
        )
        connection.connect()
        self._connections[peer_id] = connection
        self.metrics.peer_added()
        LOGGER.info(
            "Audio track registered peer_id=%s user=%s room=%s",
            peer_id,
            user_id or peer_id,
            room_id,
        )
        return connection

    def remove_peer(self, peer_id: str) -> bool:
        """Tear down a peer; returns False when it was already gone."""
        session = self._peers.get(peer_id)
        if session is None:
            return False
        connection = self._connections.pop(peer_id, None)
        if connection is not None:
            connection.close()
        del self._peers[peer_id]
        self.metrics.peer_removed()
        LOGGER.info("Removed peer %s from room %s", peer_id, session.room_id)

        if not self.room_has_peers(session.room_id):
            if self.session_store.close(session.room_id) is not None:
                self.metrics.session_closed()
        return True

    # audio intake

    def handle_frame(
        self,
        peer_id: str,
        samples: audio.PCMInput,
        sample_rate: int,
        channel_count: int = 1,
    ) -> Optional[TranscriptionJob]:
        """Buffer one frame; never awaits. Returns the job when one was queued."""
        session = self._peers.get(peer_id)
        if session is None:
            return None
        segment = session.append(samples, sample_rate, channel_count)
        if segment is None:
            return None
        return self._submit(session, segment)

    def _on_frame(self, peer_id: str, frame: AudioFrame) -> None:
        self.handle_frame(peer_id, frame.samples, frame.sample_rate, frame.channel_count)

    def _submit(
        self, session: PeerAudioSession, segment: AudioSegment
    ) -> Optional[TranscriptionJob]:
        decision = self.gate.evaluate(segment.pcm)
        if not decision.accepted:
            LOGGER.debug(
                "Discarding silent segment peer_id=%s duration=%.2fs amplitude=%.1f",
                session.peer_id,
                segment.duration_sec,
                decision.mean_amplitude,
            )
            self.metrics.record_segment_gated()
            return None
        job = TranscriptionJob(
            peer_id=session.peer_id,
            room_id=session.room_id,
            user_id=session.user_id,
            pcm=segment.pcm,
            sample_rate=segment.sample_rate,
            channel_count=segment.channel_count,
        )
        self.queue.enqueue(job)
        return job

    # results

    async def _on_transcript(self, job: TranscriptionJob, text: str) -> None:
        timestamp = self._clock()
        self.session_store.append(job.room_id, job.user_id, text, timestamp)
        LOGGER.info(
            "Transcript accepted room=%s user=%s chars=%d",
            job.room_id,
            job.user_id,
            len(text),
        )
        TRANSCRIPT_LOGGER.info("[%s] %s: %s", job.room_id, job.user_id, text)
        if self.broadcaster is None:
            return
        await self.broadcaster.publish(
            job.room_id,
            "transcription",
            {
                "userId": job.user_id,
                "text": text,
                "timestamp": int(timestamp.timestamp() * 1000),
            },
        )

    def _on_job_failed(self, job: TranscriptionJob, exc: Exception) -> None:
        code = exc.code.value if isinstance(exc, CaptionError) else "unexpected"
        self.metrics.record_error(code)


__all__ = ["Broadcaster", "RoomCoordinator"]
