import asyncio
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from caption_server.backend.application.room_coordinator import RoomCoordinator
from caption_server.backend.application.session_store import (
    SessionStore,
    load_session_document,
)
from caption_server.backend.component.peer_audio import (
    AudioFrame,
    PeerConnection,
    PeerState,
    StateChange,
)
from caption_server.backend.component.vad_gate import VoiceActivityGate
from caption_server.backend.component.wav_container import decode_wav
from caption_server.errors import CaptionError, ErrorCode, TranscriptionError
from helpers import FakeBackend, FakeBroadcaster, loud_frame, silent_frame

START = datetime(2024, 3, 5, 9, 0, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self) -> None:
        self.now = START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def _coordinator(tmp_path, backend, broadcaster=None, clock=None):
    clock = clock or _Clock()
    store = SessionStore(tmp_path / "transcripts", clock=clock)
    work_dir = tmp_path / "work"
    work_dir.mkdir(exist_ok=True)
    return RoomCoordinator(
        session_store=store,
        backend=backend,
        gate=VoiceActivityGate(50.0),
        work_dir=work_dir,
        buffer_duration_sec=0.5,
        queue_capacity=3,
        default_sample_rate=16000,
        broadcaster=broadcaster,
        clock=clock,
    )


def test_add_peer_validates_inputs(tmp_path):
    """Test empty room ids and duplicate peers are rejected."""

    async def scenario():
        coordinator = _coordinator(tmp_path, FakeBackend())
        with pytest.raises(CaptionError) as missing_room:
            coordinator.add_peer("p1", "")
        coordinator.add_peer("p1", "standup")
        with pytest.raises(CaptionError) as duplicate:
            coordinator.add_peer("p1", "standup")
        return missing_room.value.code, duplicate.value.code

    codes = asyncio.run(scenario())
    assert codes == (ErrorCode.ROOM_ID_REQUIRED, ErrorCode.PEER_ALREADY_ACTIVE)


def test_session_lifecycle_follows_room_presence(tmp_path):
    """Test a room session opens on first peer and closes on last removal."""

    async def scenario():
        coordinator = _coordinator(tmp_path, FakeBackend())
        coordinator.add_peer("p1", "standup", "alice")
        coordinator.add_peer("p2", "standup", "bob")
        session = coordinator.session_store.get("standup")

        assert coordinator.room_has_peers("standup")
        assert sorted(coordinator.peers_in_room("standup")) == ["p1", "p2"]
        assert coordinator.remove_peer("p1") is True
        assert coordinator.session_store.get("standup") is session
        assert coordinator.remove_peer("p2") is True
        assert coordinator.remove_peer("p2") is False
        return coordinator, session

    coordinator, session = asyncio.run(scenario())
    assert coordinator.session_store.get("standup") is None
    assert "endedAt" in load_session_document(session.file_path)
    snapshot = coordinator.metrics.snapshot()
    assert snapshot["active_peers"] == 0
    assert snapshot["open_room_sessions"] == 0


def test_standup_transcript_is_stored_and_broadcast(tmp_path):
    """Test speech from one peer lands in the room file and is broadcast."""
    broadcaster = FakeBroadcaster()
    clock = _Clock()

    async def scenario():
        backend = FakeBackend(responses=["  Deploy is green. "])
        coordinator = _coordinator(tmp_path, backend, broadcaster, clock)
        coordinator.start()
        coordinator.add_peer("p1", "standup", "alice")
        coordinator.add_peer("p2", "standup", "bob")
        session = coordinator.session_store.get("standup")

        assert coordinator.handle_frame("p1", loud_frame(4000), 16000) is None
        job = coordinator.handle_frame("p1", loud_frame(4000), 16000)
        assert job is not None
        await coordinator.queue.join()
        await coordinator.shutdown()
        return backend, session, coordinator

    backend, session, coordinator = asyncio.run(scenario())

    assert backend.closed is True
    document = load_session_document(session.file_path)
    assert document["transcriptions"] == [
        {
            "timestamp": "2024-03-05T09:00:00.000Z",
            "userId": "alice",
            "text": "Deploy is green.",
        }
    ]
    assert "endedAt" in document
    assert broadcaster.events == [
        (
            "standup",
            "transcription",
            {
                "userId": "alice",
                "text": "Deploy is green.",
                "timestamp": int(START.timestamp() * 1000),
            },
        )
    ]
    assert coordinator.metrics.snapshot()["transcripts"] == 1


def test_silent_segments_never_reach_queue(tmp_path):
    """Test gated segments are discarded before enqueue."""

    async def scenario():
        backend = FakeBackend()
        coordinator = _coordinator(tmp_path, backend)
        coordinator.add_peer("p1", "standup")
        result = coordinator.handle_frame("p1", silent_frame(8000), 16000)
        return coordinator, result

    coordinator, result = asyncio.run(scenario())
    assert result is None
    assert len(coordinator.queue) == 0
    assert coordinator.metrics.snapshot()["segments_gated"] == 1


def test_frames_for_unknown_peer_are_ignored(tmp_path):
    """Test frames after removal are dropped."""

    async def scenario():
        coordinator = _coordinator(tmp_path, FakeBackend())
        return coordinator.handle_frame("ghost", loud_frame(8000), 16000)

    assert asyncio.run(scenario()) is None


def test_rejoin_after_empty_room_opens_new_file(tmp_path):
    """Test a room emptied and rejoined writes to a separate session file."""
    clock = _Clock()

    async def scenario():
        coordinator = _coordinator(tmp_path, FakeBackend(), clock=clock)
        coordinator.add_peer("p1", "standup", "alice")
        first = coordinator.session_store.get("standup").file_path
        coordinator.remove_peer("p1")
        clock.advance(120)
        coordinator.add_peer("p1", "standup", "alice")
        second = coordinator.session_store.get("standup").file_path
        return first, second

    first, second = asyncio.run(scenario())
    assert first != second
    assert sorted(p.name for p in (tmp_path / "transcripts").iterdir()) == sorted(
        [first.name, second.name]
    )


def test_failed_jobs_are_counted_by_code(tmp_path):
    """Test provider failures show up in metrics by error code."""

    async def scenario():
        backend = FakeBackend(responses=[TranscriptionError("boom")])
        coordinator = _coordinator(tmp_path, backend)
        coordinator.start()
        coordinator.add_peer("p1", "standup")
        coordinator.handle_frame("p1", loud_frame(8000), 16000)
        await coordinator.queue.join()
        await coordinator.shutdown()
        return coordinator

    coordinator = asyncio.run(scenario())
    rendered = coordinator.metrics.render()
    assert 'error_count{code="ERR2001"} 1' in rendered


def test_terminal_connection_state_removes_peer(tmp_path):
    """Test a failed transport tears the peer down through its connection."""
    resource = MagicMock()

    async def scenario():
        coordinator = _coordinator(tmp_path, FakeBackend())
        connection = coordinator.add_peer("p1", "standup", resource=resource)
        runner = asyncio.create_task(connection.run())
        connection.post(StateChange("connected"))
        connection.post(StateChange("failed"))
        await runner
        return coordinator, connection

    coordinator, connection = asyncio.run(scenario())
    assert coordinator.peer("p1") is None
    assert connection.state is PeerState.CLOSED
    resource.close.assert_called_once()


def test_peer_connection_forwards_frames_once_connected():
    """Test frames promote CONNECTING and terminal is reported once."""
    frames = []
    terminal = MagicMock()

    async def scenario():
        connection = PeerConnection("p1", on_frame=frames.append, on_terminal=terminal)
        idle_frame = AudioFrame(b"\x01\x00", 16000)
        connection.dispatch(idle_frame)
        assert connection.state is PeerState.IDLE

        connection.connect()
        connection.dispatch(AudioFrame(b"\x02\x00", 16000))
        assert connection.state is PeerState.CONNECTED
        connection.dispatch(StateChange("disconnected"))
        connection.dispatch(StateChange("closed"))
        connection.close()
        connection.post(AudioFrame(b"\x03\x00", 16000))
        return connection

    connection = asyncio.run(scenario())
    assert [frame.samples for frame in frames] == [b"\x02\x00"]
    terminal.assert_called_once_with()
    assert connection.state is PeerState.CLOSED


class _CapturingBackend(FakeBackend):
    def __init__(self, responses=None) -> None:
        super().__init__(responses=responses)
        self.containers = []

    async def transcribe(self, audio_path):
        self.containers.append(decode_wav(audio_path.read_bytes()))
        return await super().transcribe(audio_path)


def test_standup_silence_then_speech_at_48k(tmp_path):
    """Test a silent flush is dropped and the following speech is transcribed."""
    broadcaster = FakeBroadcaster()
    frame_samples = 6000  # 0.125 s at 48 kHz

    async def scenario():
        backend = _CapturingBackend(responses=["hello world"])
        store = SessionStore(tmp_path / "transcripts", clock=_Clock())
        work_dir = tmp_path / "work"
        work_dir.mkdir()
        coordinator = RoomCoordinator(
            session_store=store,
            backend=backend,
            gate=VoiceActivityGate(50.0),
            work_dir=work_dir,
            buffer_duration_sec=5.0,
            broadcaster=broadcaster,
            clock=_Clock(),
        )
        coordinator.start()
        coordinator.add_peer("A", "standup")
        session = store.get("standup")

        silent_jobs = [
            coordinator.handle_frame("A", silent_frame(frame_samples), 48000)
            for _ in range(42)
        ]
        assert not any(silent_jobs)
        assert len(coordinator.queue) == 0

        speech_jobs = [
            coordinator.handle_frame(
                "A", loud_frame(frame_samples, amplitude=80), 48000
            )
            for _ in range(40)
        ]
        await coordinator.queue.join()
        await coordinator.queue.stop()
        return backend, session, [job for job in speech_jobs if job is not None]

    backend, session, jobs = asyncio.run(scenario())

    assert len(jobs) == 1
    assert len(backend.containers) == 1
    _pcm, sample_rate, channel_count = backend.containers[0]
    assert (sample_rate, channel_count) == (48000, 1)
    document = load_session_document(session.file_path)
    assert document["transcriptions"] == [
        {"timestamp": "2024-03-05T09:00:00.000Z", "userId": "A", "text": "hello world"}
    ]
    assert [event[2]["text"] for event in broadcaster.events] == ["hello world"]


def test_async_resource_close_failure_is_logged(caplog):
    """Test a failing awaitable close is awaited and its error logged."""

    class _Resource:
        async def close(self):
            raise ConnectionError("transport already gone")

    async def scenario():
        connection = PeerConnection(
            "p1",
            on_frame=lambda frame: None,
            on_terminal=lambda: None,
            resource=_Resource(),
        )
        connection.close()
        for _ in range(3):
            await asyncio.sleep(0)
        return connection

    with caplog.at_level(logging.ERROR, logger="caption_server"):
        connection = asyncio.run(scenario())

    assert connection.state is PeerState.CLOSED
    failures = [
        record
        for record in caplog.records
        if record.getMessage() == "Failed to release connection for peer_id=p1"
    ]
    assert len(failures) == 1
    assert isinstance(failures[0].exc_info[1], ConnectionError)
