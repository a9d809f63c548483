from __future__ import annotations

from typing import Awaitable

from fastapi import APIRouter, HTTPException

from ..errors import IntentRejected
from ..schemas import (
    ConnectRequest,
    HostMessageResult,
    HostMessageSent,
    JoinRoomRequest,
    ModeRequest,
    SendMessageRequest,
    SessionSnapshot,
    Settings,
    SettingsUpdate,
)
from ..session.controller import SessionController


async def _run_intent(intent: Awaitable[None]) -> None:
    try:
        await intent
    except IntentRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def create_http_router(controller: SessionController) -> APIRouter:
    router = APIRouter()

    def snapshot() -> SessionSnapshot:
        return SessionSnapshot.from_state(controller.state)

    @router.get("/api/state", response_model=SessionSnapshot)
    async def get_state() -> SessionSnapshot:
        return snapshot()

    @router.get("/api/settings", response_model=Settings)
    async def get_settings() -> Settings:
        return controller.settings.load()

    @router.put("/api/settings", response_model=Settings)
    async def put_settings(req: SettingsUpdate) -> Settings:
        return await controller.update_settings(req)

    @router.post("/api/connect", response_model=SessionSnapshot)
    async def connect(req: ConnectRequest) -> SessionSnapshot:
        await _run_intent(controller.connect(req.serverUrl))
        return snapshot()

    @router.post("/api/disconnect", response_model=SessionSnapshot)
    async def disconnect() -> SessionSnapshot:
        await controller.disconnect()
        return snapshot()

    @router.post("/api/rooms", response_model=SessionSnapshot)
    async def create_room() -> SessionSnapshot:
        await _run_intent(controller.create_room())
        return snapshot()

    @router.post("/api/rooms/join", response_model=SessionSnapshot)
    async def join_room(req: JoinRoomRequest) -> SessionSnapshot:
        await _run_intent(controller.join_room(req.roomId))
        return snapshot()

    @router.post("/api/rooms/leave", response_model=SessionSnapshot)
    async def leave_room() -> SessionSnapshot:
        await _run_intent(controller.leave_room())
        return snapshot()

    @router.post("/api/messages", response_model=SessionSnapshot)
    async def send_message(req: SendMessageRequest) -> SessionSnapshot:
        await _run_intent(controller.send_message(req.message))
        return snapshot()

    @router.post("/api/character/sync", response_model=SessionSnapshot)
    async def sync_character() -> SessionSnapshot:
        await _run_intent(controller.sync_character())
        return snapshot()

    @router.put("/api/mode", response_model=SessionSnapshot)
    async def set_mode(req: ModeRequest) -> SessionSnapshot:
        await controller.set_mode(req.rolePlayMode)
        return snapshot()

    @router.post("/api/host/message-sent", response_model=HostMessageResult)
    async def host_message_sent(req: HostMessageSent) -> HostMessageResult:
        try:
            suppressed = await controller.intercept_host_message(req.message)
        except IntentRejected as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return HostMessageResult(suppressed=suppressed)

    return router
