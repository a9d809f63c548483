from __future__ import annotations

import uuid

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..commands.parser import parse_intent_input
from ..commands.router import IntentRouter
from ..schemas import BridgeEvent, IntentMessage, SessionSnapshot
from ..services.connection_manager import ConnectionManager
from ..session.controller import SessionController


async def send_state(ws: WebSocket, controller: SessionController) -> None:
    snapshot = SessionSnapshot.from_state(controller.state)
    await ws.send_json(BridgeEvent(type="state", data=snapshot.model_dump()).model_dump())


def create_websocket_endpoint(
    controller: SessionController,
    connections: ConnectionManager,
):
    router = IntentRouter(controller)

    async def websocket_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        client_id = str(uuid.uuid4())
        connections.attach(client_id, ws)
        await send_state(ws, controller)

        try:
            while True:
                raw = await ws.receive_json()
                try:
                    msg = IntentMessage.model_validate(raw)
                except ValidationError:
                    continue
                if msg.type != "intent" or msg.input is None:
                    continue
                parsed = parse_intent_input(msg.input)
                try:
                    result = await router.dispatch(parsed)
                    for reply in result.replies:
                        await ws.send_json(reply.model_dump())
                except ValueError as exc:
                    await ws.send_json(
                        BridgeEvent(
                            type="error",
                            data={"message": str(exc)},
                        ).model_dump()
                    )
        except WebSocketDisconnect:
            connections.detach(client_id)

    return websocket_endpoint
