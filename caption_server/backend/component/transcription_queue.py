"""Bounded transcription queue with a single draining worker."""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from caption_server.backend.component.vad_gate import VoiceActivityGate
from caption_server.backend.component.wav_container import discard_file, write_temp_wav
from caption_server.errors import ErrorCode, TranscriptionError
from caption_server.model.backends.base import TranscriptionBackend
from caption_server.model.filters import clean_transcript
from caption_server.utils.logger import LOGGER, clear_peer_id, set_peer_id


@dataclass(frozen=True)
class TranscriptionJob:
    peer_id: str
    room_id: str
    user_id: str
    pcm: bytes
    sample_rate: int
    channel_count: int
    sequence: int = 0


def _noop_job(_: TranscriptionJob) -> None:
    return None


def _noop_failure(_: TranscriptionJob, __: Exception) -> None:
    return None


def _noop_latency(_: TranscriptionJob, __: float) -> None:
    return None


async def _noop_transcript(_: TranscriptionJob, __: str) -> None:
    return None


@dataclass(frozen=True)
class TranscriptionQueueHooks:
    on_transcript: Callable[[TranscriptionJob, str], Awaitable[None]] = _noop_transcript
    on_enqueued: Callable[[TranscriptionJob], None] = _noop_job
    on_dropped: Callable[[TranscriptionJob], None] = _noop_job
    on_gated: Callable[[TranscriptionJob], None] = _noop_job
    on_filtered: Callable[[TranscriptionJob], None] = _noop_job
    on_failed: Callable[[TranscriptionJob, Exception], None] = _noop_failure
    on_completed: Callable[[TranscriptionJob, float], None] = _noop_latency


class TranscriptionQueue:
    """Drop-oldest FIFO drained by exactly one worker task.

    At most one provider call is in flight at any time. The worker goes
    straight to the next job after each completion, whatever its outcome.
    """

    def __init__(
        self,
        backend: TranscriptionBackend,
        gate: VoiceActivityGate,
        work_dir: Path,
        capacity: int = 3,
        job_timeout_sec: float = 0.0,
        hooks: TranscriptionQueueHooks | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.backend = backend
        self.gate = gate
        self.work_dir = Path(work_dir)
        self.capacity = capacity
        self.job_timeout_sec = job_timeout_sec
        self._hooks = hooks or TranscriptionQueueHooks()
        self._jobs: "deque[TranscriptionJob]" = deque()
        self._sequence = itertools.count(1)
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._in_flight = 0
        self._worker: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def pending(self) -> List[TranscriptionJob]:
        return list(self._jobs)

    def enqueue(self, job: TranscriptionJob) -> Optional[TranscriptionJob]:
        """Admit a job, evicting and returning the oldest one when full."""
        evicted = None
        if len(self._jobs) >= self.capacity:
            evicted = self._jobs.popleft()
            LOGGER.info(
                "Queue full, dropping oldest chunk peer_id=%s seq=%d",
                evicted.peer_id,
                evicted.sequence,
            )
            self._hooks.on_dropped(evicted)
        job = replace(job, sequence=next(self._sequence))
        self._jobs.append(job)
        self._idle.clear()
        self._wakeup.set()
        self._hooks.on_enqueued(job)
        LOGGER.debug(
            "Queued transcription peer_id=%s room=%s seq=%d bytes=%d depth=%d",
            job.peer_id,
            job.room_id,
            job.sequence,
            len(job.pcm),
            len(self._jobs),
        )
        return evicted

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(
                self._drain(), name="transcription-worker"
            )

    async def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass

    async def join(self) -> None:
        """Wait until the queue is empty and nothing is in flight."""
        await self._idle.wait()

    async def _drain(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            while self._jobs:
                job = self._jobs.popleft()
                await self._process(job)
            if not self._jobs and self._in_flight == 0:
                self._idle.set()

    async def _process(self, job: TranscriptionJob) -> None:
        token = set_peer_id(job.peer_id)
        self._in_flight += 1
        audio_path: Optional[Path] = None
        started = time.perf_counter()
        try:
            audio_path = write_temp_wav(
                self.work_dir,
                f"{job.peer_id}-{job.sequence}-{int(time.time() * 1000)}",
                job.pcm,
                job.sample_rate,
                job.channel_count,
            )
            if not self.gate.accepts(job.pcm):
                LOGGER.debug("Skipping silent job seq=%d", job.sequence)
                self._hooks.on_gated(job)
                return
            raw_text = await self._call_backend(audio_path)
            text = clean_transcript(raw_text)
            if not text:
                self._hooks.on_filtered(job)
                return
            await self._hooks.on_transcript(job, text)
            self._hooks.on_completed(job, time.perf_counter() - started)
        except TranscriptionError as exc:
            LOGGER.warning(
                "Transcription failed seq=%d provider=%s: %s",
                job.sequence,
                self.backend.name,
                exc,
            )
            self._hooks.on_failed(job, exc)
        except Exception as exc:
            LOGGER.exception("Unexpected failure processing seq=%d", job.sequence)
            self._hooks.on_failed(job, exc)
        finally:
            self._in_flight -= 1
            if audio_path is not None:
                await asyncio.to_thread(discard_file, audio_path)
            clear_peer_id(token)

    async def _call_backend(self, audio_path: Path) -> str:
        if self.job_timeout_sec <= 0:
            return await self.backend.transcribe(audio_path)
        try:
            return await asyncio.wait_for(
                self.backend.transcribe(audio_path), self.job_timeout_sec
            )
        except asyncio.TimeoutError:
            raise TranscriptionError(
                f"provider did not answer within {self.job_timeout_sec:.1f}s",
                code=ErrorCode.TRANSCRIPTION_TIMEOUT,
            ) from None


__all__ = [
    "TranscriptionJob",
    "TranscriptionQueue",
    "TranscriptionQueueHooks",
]
