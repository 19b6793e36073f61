"""WebSocket bridge delivering decoded PCM frames per peer."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Set

from fastapi import FastAPI, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from caption_server.backend.component.peer_audio import AudioFrame, StateChange
from caption_server.backend.runtime.runtime import ApplicationRuntime
from caption_server.errors import CaptionError, ErrorCode, http_payload_for
from caption_server.utils.logger import clear_peer_id, set_peer_id

LOGGER = logging.getLogger("caption_server.ws_server")


class RoomHub:
    """Tracks room membership of open sockets and fans events out to them."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[WebSocket]] = {}

    def join(self, room_id: str, websocket: WebSocket) -> None:
        self._rooms.setdefault(room_id, set()).add(websocket)

    def leave(self, room_id: str, websocket: WebSocket) -> None:
        members = self._rooms.get(room_id)
        if not members:
            return
        members.discard(websocket)
        if not members:
            self._rooms.pop(room_id, None)

    def members(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    async def publish(self, room_id: str, event: str, payload: Dict[str, Any]) -> None:
        message = {"type": event, **payload}
        for websocket in list(self._rooms.get(room_id, ())):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                LOGGER.debug("Dropping closed socket from room %s", room_id)
                self.leave(room_id, websocket)
            except Exception:
                LOGGER.warning(
                    "Dropping socket from room %s after send failure",
                    room_id,
                    exc_info=True,
                )
                self.leave(room_id, websocket)


class StreamStartRequest(BaseModel):
    """First message on a room stream."""

    peer_id: Optional[str] = None
    user_id: Optional[str] = None
    sample_rate: Optional[int] = Field(default=None, gt=0)
    channel_count: Optional[int] = Field(default=None, gt=0)


def build_ws_app(runtime: ApplicationRuntime, hub: Optional[RoomHub] = None) -> FastAPI:
    hub = hub or RoomHub()
    coordinator = runtime.coordinator
    coordinator.broadcaster = hub

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        coordinator.start()
        try:
            yield
        finally:
            await coordinator.shutdown()

    app = FastAPI(lifespan=lifespan)
    app.state.hub = hub

    @app.get("/metrics")
    def metrics_endpoint() -> Response:
        return Response(content=runtime.metrics.render(), media_type="text/plain")

    @app.get("/health")
    def health_endpoint() -> JSONResponse:
        return JSONResponse({"status": "ok", **runtime.health_snapshot()})

    @app.get("/say")
    async def say(
        text: Optional[str] = Query(default=None),
        room: str = Query(default="default"),
    ) -> Response:
        if not text:
            return JSONResponse(
                http_payload_for(ErrorCode.TEXT_REQUIRED), status_code=400
            )
        await hub.publish(room, "tts-text", {"text": text})
        return Response(content=f'Sent "{text}" to room {room}', media_type="text/plain")

    @app.websocket("/ws/rooms/{room_id}")
    async def room_stream(websocket: WebSocket, room_id: str) -> None:
        await websocket.accept()
        try:
            start = StreamStartRequest.model_validate(await websocket.receive_json())
        except WebSocketDisconnect:
            return
        except (json.JSONDecodeError, KeyError, ValidationError):
            await websocket.close(code=1003)
            return

        peer_id = start.peer_id or uuid.uuid4().hex
        user_id = start.user_id or peer_id
        sample_rate = start.sample_rate or coordinator.default_sample_rate
        channel_count = start.channel_count or coordinator.default_channel_count

        try:
            connection = coordinator.add_peer(peer_id, room_id, user_id)
        except CaptionError as exc:
            await websocket.send_json(
                {"type": "error", **http_payload_for(exc.code, exc.detail)}
            )
            await websocket.close(code=4400)
            return

        token = set_peer_id(peer_id)
        consumer: Optional["asyncio.Task[None]"] = None
        try:
            hub.join(room_id, websocket)
            LOGGER.info("Client %s joined room %s", peer_id, room_id)
            await websocket.send_json(
                {
                    "type": "joined",
                    "peer_id": peer_id,
                    "user_id": user_id,
                    "room": room_id,
                    "sample_rate": sample_rate,
                    "channel_count": channel_count,
                }
            )
            consumer = asyncio.create_task(connection.run())
            connection.post(StateChange("connected"))
            while True:
                message = await websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    connection.post(StateChange("disconnected"))
                    break
                if message.get("bytes"):
                    connection.post(
                        AudioFrame(message["bytes"], sample_rate, channel_count)
                    )
                    continue
                if message.get("text"):
                    try:
                        data = json.loads(message["text"])
                    except json.JSONDecodeError:
                        continue
                    if isinstance(data, dict) and data.get("type") == "end":
                        connection.post(StateChange("closed"))
                        break
        except WebSocketDisconnect:
            connection.post(StateChange("disconnected"))
        except Exception:
            LOGGER.exception(http_payload_for(ErrorCode.STREAM_UNEXPECTED)["message"])
        finally:
            hub.leave(room_id, websocket)
            connection.end()
            if consumer is not None:
                await consumer
            coordinator.remove_peer(peer_id)
            clear_peer_id(token)
        try:
            await websocket.close()
        except RuntimeError:
            pass

    return app


__all__ = ["RoomHub", "StreamStartRequest", "build_ws_app"]
