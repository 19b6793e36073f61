"""Shared fakes for caption server tests."""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Tuple

import numpy as np


def loud_frame(samples: int, amplitude: int = 1000) -> bytes:
    return np.full(samples, amplitude, dtype=np.int16).tobytes()


def silent_frame(samples: int) -> bytes:
    return np.zeros(samples, dtype=np.int16).tobytes()


class FakeBackend:
    """Scripted provider that records calls and concurrency."""

    name = "fake"

    def __init__(self, responses=None, delays=None) -> None:
        self.responses: List[Any] = list(responses or [])
        self.delays: List[float] = list(delays or [])
        self.calls: List[Path] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def transcribe(self, audio_path: Path) -> str:
        assert audio_path.exists()
        self.calls.append(audio_path)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            delay = self.delays.pop(0) if self.delays else 0.0
            await asyncio.sleep(delay)
            result = self.responses.pop(0) if self.responses else "hello"
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


class FakeBroadcaster:
    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []

    async def publish(self, room_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((room_id, event, payload))
