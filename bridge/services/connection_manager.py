from __future__ import annotations

from typing import Dict, List

from fastapi import WebSocket

from ..schemas import BridgeEvent


class ConnectionManager:
    """Track UI websocket clients watching this bridge."""

    def __init__(self) -> None:
        self._connections: Dict[str, WebSocket] = {}

    def attach(self, client_id: str, ws: WebSocket) -> None:
        self._connections[client_id] = ws

    def detach(self, client_id: str) -> None:
        self._connections.pop(client_id, None)

    def get_all_client_ids(self) -> List[str]:
        return list(self._connections.keys())

    async def send(self, client_id: str, message: Dict[str, object]) -> None:
        ws = self._connections.get(client_id)
        if not ws:
            return
        try:
            await ws.send_json(message)
        except RuntimeError:
            # Connection cleanup happens on disconnect.
            pass

    async def broadcast(self, event: BridgeEvent) -> None:
        payload = event.model_dump()
        for client_id in self.get_all_client_ids():
            await self.send(client_id, payload)
