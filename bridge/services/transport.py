from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from loguru import logger
from pydantic import ValidationError

from ..errors import ProtocolError, TransportError
from ..schemas import Envelope


EnvelopeHandler = Callable[[Envelope], Awaitable[None]]
CloseHandler = Callable[[], Awaitable[None]]
Connector = Callable[[str], Awaitable[Any]]


async def _default_connector(address: str) -> Any:
    return await websockets.connect(address, ping_interval=30, ping_timeout=10)


class TransportLink:
    """Own the single relay connection and hand decoded envelopes upstream.

    Reconnecting is never automatic. Events from a connection that has
    since been replaced or dropped are ignored.
    """

    def __init__(
        self,
        on_envelope: EnvelopeHandler,
        on_close: CloseHandler,
        connector: Optional[Connector] = None,
    ) -> None:
        self._on_envelope = on_envelope
        self._on_close = on_close
        self._connector = connector or _default_connector
        self._ws: Any = None
        self._connecting = False
        self._attempt = 0
        self._reader: Optional[asyncio.Task[None]] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def busy(self) -> bool:
        return self._connecting or self._ws is not None

    async def connect(self, address: str) -> bool:
        """Open the connection.

        Returns False when one is already open or opening, or when
        `disconnect` abandoned this attempt before the handshake finished.
        """
        if self.busy:
            logger.warning(f"relay_connect_ignored | address={address} | reason=already connecting or open")
            return False
        self._connecting = True
        self._attempt += 1
        attempt = self._attempt
        logger.info(f"relay_connecting | address={address}")
        try:
            ws = await self._connector(address)
        except (OSError, ValueError, asyncio.TimeoutError, WebSocketException) as exc:
            if attempt != self._attempt:
                logger.info(f"relay_connect_abandoned | address={address} | error={exc}")
                return False
            logger.error(f"relay_connect_failed | address={address} | error={exc}")
            raise TransportError(f"Could not connect to {address}: {exc}") from exc
        finally:
            if attempt == self._attempt:
                self._connecting = False
        if attempt != self._attempt:
            # Disconnected while the handshake was in flight.
            logger.info(f"relay_connect_abandoned | address={address}")
            await self._close_quietly(ws)
            return False
        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws))
        logger.info(f"relay_connected | address={address}")
        return True

    async def disconnect(self) -> None:
        """Close the open connection, or abandon one still being opened."""
        self._attempt += 1
        if self._connecting:
            self._connecting = False
            logger.info("relay_connect_cancelled | requested by user")
        ws, self._ws = self._ws, None
        self._reader = None
        if ws is None:
            return
        logger.info("relay_disconnect | requested by user")
        await self._close_quietly(ws)

    async def _close_quietly(self, ws: Any) -> None:
        try:
            await ws.close()
        except (OSError, WebSocketException) as exc:
            logger.warning(f"relay_close_failed | error={exc}")

    async def send(self, type: str, payload: Dict[str, Any]) -> bool:
        """Transmit one envelope. Returns False when not connected."""
        ws = self._ws
        if ws is None:
            logger.warning(f"relay_send_dropped | type={type} | reason=not connected")
            return False
        envelope = Envelope(type=type, payload=payload)
        try:
            await ws.send(json.dumps(envelope.model_dump()))
        except ConnectionClosed:
            logger.warning(f"relay_send_dropped | type={type} | reason=connection closed")
            return False
        logger.debug(f"relay_send | type={type}")
        return True

    async def on_message(self, raw: Any) -> None:
        """Decode one frame and dispatch it. Malformed frames are logged and dropped."""
        try:
            data = json.loads(raw)
            envelope = Envelope.model_validate(data)
        except (TypeError, ValueError, ValidationError) as exc:
            logger.warning(f"relay_envelope_dropped | error={exc}")
            return
        try:
            await self._on_envelope(envelope)
        except ProtocolError as exc:
            logger.warning(f"relay_payload_dropped | type={envelope.type} | error={exc}")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                if self._ws is not ws:
                    break
                await self.on_message(raw)
        except ConnectionClosed as exc:
            logger.warning(f"relay_connection_lost | error={exc}")
        finally:
            if self._ws is ws:
                self._ws = None
                self._reader = None
                logger.info("relay_closed")
                await self._on_close()
