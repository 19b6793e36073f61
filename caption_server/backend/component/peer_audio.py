"""Per-peer audio buffering and connection state."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Union

from caption_server.utils import audio
from caption_server.utils.logger import LOGGER


@dataclass(frozen=True)
class AudioSegment:
    """A flushed buffer handed to the gate."""

    pcm: bytes
    sample_rate: int
    channel_count: int
    duration_sec: float


@dataclass
class PeerAudioSession:
    """Accumulates PCM16 frames for one peer and flushes on a duration threshold."""

    peer_id: str
    room_id: str
    user_id: str
    buffer_duration_sec: float
    sample_rate: int = 48000
    channel_count: int = 1
    frames: int = 0
    _chunks: List[bytes] = field(default_factory=list, repr=False)

    def append(
        self,
        samples: audio.PCMInput,
        sample_rate: int,
        channel_count: int = 1,
    ) -> Optional[AudioSegment]:
        """Buffer one frame; return the flushed segment once the threshold is reached."""
        chunk = audio.pcm16_bytes(samples)
        if not chunk:
            return None
        self._chunks.append(chunk)
        self.sample_rate = sample_rate
        self.channel_count = channel_count
        # Integer frame count; a float sum of 20 ms frames drifts below the threshold.
        self.frames += audio.sample_count(len(chunk)) // max(channel_count, 1)
        if self.frames >= round(self.buffer_duration_sec * sample_rate):
            return self.flush()
        return None

    def flush(self) -> Optional[AudioSegment]:
        chunks, duration = self._chunks, self.duration_sec
        self._chunks = []
        self.frames = 0
        if not chunks:
            return None
        return AudioSegment(
            pcm=b"".join(chunks),
            sample_rate=self.sample_rate,
            channel_count=self.channel_count,
            duration_sec=duration,
        )

    @property
    def duration_sec(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate

    @property
    def buffered_bytes(self) -> int:
        return sum(len(chunk) for chunk in self._chunks)


class PeerState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


# Transport states that end a peer.
TERMINAL_TRANSPORT_STATES = frozenset({"disconnected", "failed", "closed"})


@dataclass(frozen=True)
class AudioFrame:
    samples: Union[bytes, Any]
    sample_rate: int
    channel_count: int = 1


@dataclass(frozen=True)
class StateChange:
    state: str


PeerEvent = Union[AudioFrame, StateChange]


class PeerConnection:
    """Connection state machine fed through a single inbound event channel.

    ``IDLE -> CONNECTING -> CONNECTED -> CLOSED``. Audio frames are only
    forwarded while CONNECTED; the first frame received while CONNECTING
    promotes the connection. A terminal transport state or the end of the
    channel invokes ``on_terminal`` once.
    """

    def __init__(
        self,
        peer_id: str,
        on_frame: Callable[[AudioFrame], None],
        on_terminal: Callable[[], None],
        resource: Any = None,
    ) -> None:
        self.peer_id = peer_id
        self.state = PeerState.IDLE
        self.events: "asyncio.Queue[Optional[PeerEvent]]" = asyncio.Queue()
        self._on_frame = on_frame
        self._on_terminal = on_terminal
        self._resource = resource
        self._terminal_reported = False
        self._release_task: Optional["asyncio.Future[Any]"] = None

    def connect(self) -> None:
        if self.state is PeerState.IDLE:
            self.state = PeerState.CONNECTING

    def post(self, event: PeerEvent) -> None:
        if self.state is PeerState.CLOSED:
            return
        self.events.put_nowait(event)

    def end(self) -> None:
        """Signal that no more events will arrive."""
        self.events.put_nowait(None)

    async def run(self) -> None:
        self.connect()
        while self.state is not PeerState.CLOSED:
            event = await self.events.get()
            if event is None:
                self._report_terminal()
                break
            self.dispatch(event)

    def dispatch(self, event: PeerEvent) -> None:
        if self.state is PeerState.CLOSED:
            return
        if isinstance(event, StateChange):
            LOGGER.info(
                "Connection state for peer_id=%s: %s", self.peer_id, event.state
            )
            if event.state == "connected":
                self.state = PeerState.CONNECTED
            elif event.state in TERMINAL_TRANSPORT_STATES:
                self._report_terminal()
            return
        if self.state is PeerState.CONNECTING:
            self.state = PeerState.CONNECTED
        if self.state is PeerState.CONNECTED:
            self._on_frame(event)

    def close(self) -> None:
        """Stop intake and release the underlying connection resource."""
        if self.state is PeerState.CLOSED:
            return
        self.state = PeerState.CLOSED
        self._terminal_reported = True
        self.events.put_nowait(None)
        resource, self._resource = self._resource, None
        if resource is None:
            return
        try:
            result = resource.close()
            if inspect.isawaitable(result):
                self._release_task = asyncio.ensure_future(result)
                self._release_task.add_done_callback(self._log_release_failure)
        except Exception:
            LOGGER.exception("Failed to release connection for peer_id=%s", self.peer_id)

    def _log_release_failure(self, task: "asyncio.Future[Any]") -> None:
        if task.cancelled() or task.exception() is None:
            return
        LOGGER.error(
            "Failed to release connection for peer_id=%s",
            self.peer_id,
            exc_info=task.exception(),
        )

    def _report_terminal(self) -> None:
        if self._terminal_reported:
            return
        self._terminal_reported = True
        self._on_terminal()


__all__ = [
    "AudioFrame",
    "AudioSegment",
    "PeerAudioSession",
    "PeerConnection",
    "PeerEvent",
    "PeerState",
    "StateChange",
    "TERMINAL_TRANSPORT_STATES",
]
