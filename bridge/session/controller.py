from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from ..config import SettingsRepository
from ..errors import GenerationError, IntentRejected, ProtocolError, TransportError
from ..models import ChatEntry, ConnectionStatus, Mode, PendingTurn, SessionState
from ..schemas import (
    BridgeEvent,
    CharacterSynced,
    ChatEntryData,
    Envelope,
    GenerateResponse,
    PartnerJoined,
    PartnerMessage,
    RelayError,
    RoomAck,
    SessionSnapshot,
    Settings,
    SettingsUpdate,
)
from ..services.host import CharacterStore, ChatLog, TextGenerator
from ..services.transport import Connector, TransportLink
from .composer import MessageComposer
from .coordinator import DualGenerationCoordinator
from .room import RoomSession


Listener = Callable[[BridgeEvent], Awaitable[None]]
RelayHandler = Callable[[Dict[str, Any]], Awaitable[None]]
PayloadT = TypeVar("PayloadT", bound=BaseModel)


def parse_payload(model: Type[PayloadT], payload: Dict[str, Any]) -> PayloadT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ProtocolError(f"Invalid {model.__name__} payload: {exc}") from exc


class SessionController:
    """Own the session state and route relay events and local intents.

    Relay events arrive one at a time from the transport reader and are
    fully handled, generation included, before the next one is read.
    """

    def __init__(
        self,
        settings: SettingsRepository,
        characters: CharacterStore,
        generator: TextGenerator,
        chat_log: ChatLog,
        connector: Optional[Connector] = None,
    ) -> None:
        self.settings = settings
        self.chat_log = chat_log
        self._state = SessionState(mode=settings.load().mode)
        self._listeners: List[Listener] = []
        self._partner_timer: Optional[asyncio.Task[None]] = None

        self.link = TransportLink(self.handle_envelope, self._on_transport_closed, connector)
        self.rooms = RoomSession(self.link, characters, self.get_state)
        self.composer = MessageComposer(self.link, characters, self.get_state)
        self.coordinator = DualGenerationCoordinator(characters, generator, chat_log)
        chat_log.subscribe(self._emit_entry)

        self._handlers: Dict[str, RelayHandler] = {
            "room_created": self._handle_room_created,
            "room_joined": self._handle_room_joined,
            "partner_joined": self._handle_partner_joined,
            "partner_left": self._handle_partner_left,
            "character_synced": self._handle_character_synced,
            "waiting_for_partner": self._handle_waiting_for_partner,
            "generate_response": self._handle_generate_response,
            "partner_message": self._handle_partner_message,
            "error": self._handle_error,
        }

    # State and UI notifications

    def get_state(self) -> SessionState:
        return self._state

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def _emit(self, event: BridgeEvent) -> None:
        for listener in list(self._listeners):
            await listener(event)

    async def _set_state(self, state: SessionState) -> None:
        self._state = state
        await self._emit(
            BridgeEvent(type="state", data=SessionSnapshot.from_state(state).model_dump())
        )

    async def _emit_entry(self, entry: ChatEntry) -> None:
        await self._emit(BridgeEvent(type="entry", data=ChatEntryData.from_entry(entry).model_dump()))

    async def notify(self, level: str, text: str) -> None:
        await self._emit(BridgeEvent(type="notice", data={"level": level, "text": text}))

    # Connection intents

    async def connect(self, address: Optional[str] = None) -> None:
        url = (address or self.settings.load().serverUrl).strip()
        if not url:
            raise IntentRejected("Configure the relay server address first.")
        if self.link.busy:
            await self.notify("warning", "Already connected or connecting.")
            return
        await self._set_state(replace(self._state, connection_status=ConnectionStatus.CONNECTING))
        try:
            opened = await self.link.connect(url)
        except TransportError as exc:
            await self._set_state(self._state.torn_down())
            await self.notify("error", str(exc))
            return
        if opened:
            if address:
                self.settings.update(serverUrl=url)
            await self._set_state(replace(self._state, connection_status=ConnectionStatus.CONNECTED))
            await self.notify("success", "Connected to relay.")

    async def auto_connect(self) -> bool:
        """Startup hook. Connects only when enabled with a stored address."""
        settings = self.settings.load()
        if not (settings.enabled and settings.serverUrl.strip()):
            logger.info("relay_auto_connect_skipped | reason=disabled or no address")
            return False
        await self.connect()
        return True

    async def disconnect(self) -> None:
        self._cancel_partner_timer()
        await self.link.disconnect()
        await self._set_state(self._state.torn_down())
        await self.notify("info", "Disconnected.")

    async def toggle_connection(self) -> None:
        if self.link.busy:
            await self.disconnect()
        else:
            await self.connect()

    async def _on_transport_closed(self) -> None:
        self._cancel_partner_timer()
        await self._set_state(self._state.torn_down())
        await self.notify("warning", "Connection to relay lost.")

    # Room intents

    async def create_room(self) -> None:
        await self._set_state(await self.rooms.create())

    async def join_room(self, code: Optional[str]) -> None:
        await self._set_state(await self.rooms.join(code))

    async def leave_room(self) -> None:
        in_room = self._state.in_room
        state = await self.rooms.leave()
        self._cancel_partner_timer()
        await self._set_state(state)
        await self.notify("info", "Left the room." if in_room else "Room request cancelled.")

    async def sync_character(self) -> None:
        await self.rooms.sync_character()
        await self.notify("success", "Character synced.")

    # Messaging intents

    async def send_message(self, text: Optional[str]) -> None:
        composition = await self.composer.send(text)
        await self._set_state(composition.state)
        if composition.pending is not None:
            self._arm_partner_timer(composition.pending)
            await self.notify("info", "Waiting for partner...")
        if composition.entries:
            await self.chat_log.append(composition.entries)

    async def intercept_host_message(self, text: str) -> bool:
        """Host chat hook. True means the host must not commit the message itself."""
        if not self.composer.intercepts_host_messages(self.settings.load().enabled):
            return False
        await self.send_message(text)
        return True

    # Settings intents

    async def set_mode(self, role_play: bool) -> None:
        settings = self.settings.update(rolePlayMode=role_play)
        if settings.mode is not self._state.mode:
            logger.info(f"mode_changed | mode={settings.mode.value}")
            await self._set_state(replace(self._state, mode=settings.mode))

    async def update_settings(self, update: SettingsUpdate) -> Settings:
        settings = self.settings.update(**update.model_dump())
        if settings.mode is not self._state.mode:
            await self._set_state(replace(self._state, mode=settings.mode))
        return settings

    # Partner timeout

    def _arm_partner_timer(self, turn: PendingTurn) -> None:
        self._cancel_partner_timer()
        timeout = self.settings.load().partnerTimeout
        if timeout <= 0:
            return
        self._partner_timer = asyncio.create_task(self._expire_pending_turn(turn, timeout))

    def _cancel_partner_timer(self) -> None:
        if self._partner_timer and not self._partner_timer.done():
            self._partner_timer.cancel()
        self._partner_timer = None

    async def _expire_pending_turn(self, turn: PendingTurn, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self._state.pending_turn is not turn:
            return
        self._partner_timer = None
        logger.warning(f"partner_timeout | room={turn.room_code} | after={timeout}s")
        await self._set_state(self._state.without_pending_turn())
        await self.notify("warning", "Partner did not respond. Send again to retry.")

    # Relay events

    async def handle_envelope(self, envelope: Envelope) -> None:
        handler = self._handlers.get(envelope.type)
        if not handler:
            logger.warning(f"relay_unknown_type | type={envelope.type}")
            return
        await handler(envelope.payload)

    async def _enter_room(self, payload: Dict[str, Any], created: bool) -> None:
        ack = parse_payload(RoomAck, payload)
        if not self._state.connected:
            logger.warning(f"room_ack_dropped | room={ack.roomId} | reason=not connected")
            return
        if self._state.pending_request is None:
            await self.rooms.release_unrequested(ack)
            return
        await self._set_state(self.rooms.acknowledge(ack))
        room = self._state.room_code
        await self.notify("success", f"Room created: {room}" if created else f"Joined room {room}")
        await self.rooms.sync_character(automatic=True)

    async def _handle_room_created(self, payload: Dict[str, Any]) -> None:
        await self._enter_room(payload, created=True)

    async def _handle_room_joined(self, payload: Dict[str, Any]) -> None:
        await self._enter_room(payload, created=False)

    async def _handle_partner_joined(self, payload: Dict[str, Any]) -> None:
        joined = parse_payload(PartnerJoined, payload)
        if not self._state.in_room:
            logger.warning("partner_joined_dropped | reason=not in a room")
            return
        logger.info(f"partner_joined | room={self._state.room_code} | partner={joined.partnerId}")
        await self._set_state(self.rooms.partner_joined())
        await self.notify("info", "Partner joined the room.")
        # The side already in the room pushes first so the newcomer is not left waiting.
        await self.rooms.sync_character(automatic=True)

    async def _handle_partner_left(self, payload: Dict[str, Any]) -> None:
        if not self._state.in_room:
            return
        logger.info(f"partner_left | room={self._state.room_code}")
        self._cancel_partner_timer()
        await self._set_state(self.rooms.partner_left())
        await self.notify("info", "Partner left the room.")

    async def _handle_character_synced(self, payload: Dict[str, Any]) -> None:
        synced = parse_payload(CharacterSynced, payload)
        if not self._state.in_room:
            logger.warning("character_synced_dropped | reason=not in a room")
            return
        logger.info(f"character_synced_in | room={self._state.room_code} | name={synced.characterData.name}")
        await self._set_state(self.rooms.character_synced(synced))

    async def _handle_waiting_for_partner(self, payload: Dict[str, Any]) -> None:
        if self._state.pending_turn is None:
            logger.debug("waiting_for_partner_ignored | reason=no pending turn")
            return
        if not self._state.waiting_for_partner:
            await self._set_state(replace(self._state, waiting_for_partner=True))
        await self.notify("info", "Waiting for partner...")

    async def _handle_generate_response(self, payload: Dict[str, Any]) -> None:
        event = parse_payload(GenerateResponse, payload)
        room_code = self._state.room_code
        if room_code is None:
            logger.warning("generate_response_dropped | reason=not in a room")
            return
        self._cancel_partner_timer()
        await self._set_state(self._state.without_pending_turn())
        if self._state.mode is not Mode.COLLABORATIVE:
            logger.info(f"generate_response_ignored | room={room_code} | mode={self._state.mode.value}")
            return
        try:
            await self.coordinator.run(event, room_code, lambda: self._state.room_code)
        except GenerationError as exc:
            logger.error(f"dual_generation_failed | room={room_code} | error={exc}")
            await self.notify("error", str(exc))

    async def _handle_partner_message(self, payload: Dict[str, Any]) -> None:
        message = parse_payload(PartnerMessage, payload)
        if not self._state.in_room:
            logger.warning("partner_message_dropped | reason=not in a room")
            return
        await self.chat_log.append([self.composer.render_partner_message(message)])

    async def _handle_error(self, payload: Dict[str, Any]) -> None:
        error = parse_payload(RelayError, payload)
        logger.warning(f"relay_error | message={error.message}")
        if self._state.pending_request:
            await self._set_state(replace(self._state, pending_request=None))
        await self.notify("error", error.message)
