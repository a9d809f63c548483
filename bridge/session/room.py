from __future__ import annotations

from dataclasses import replace
from typing import Callable, Optional, Tuple

from loguru import logger

from ..errors import IntentRejected
from ..models import Mode, PeerCharacter, SessionState
from ..schemas import CharacterData, CharacterSynced, RoomAck
from ..services.host import CharacterStore
from ..services.transport import TransportLink


ROOM_CODE_LENGTH = 6


def normalize_room_code(code: Optional[str]) -> str:
    cleaned = (code or "").strip().upper()
    if len(cleaned) != ROOM_CODE_LENGTH or not cleaned.isalnum():
        raise IntentRejected("Room code must be 6 letters or digits.")
    return cleaned


class RoomSession:
    """Room membership, partner presence and the character sync exchange.

    Requests go out through the transport link. Acknowledgments and
    partner events come back as pure state transforms which the
    controller applies.
    """

    def __init__(
        self,
        link: TransportLink,
        characters: CharacterStore,
        state: Callable[[], SessionState],
    ) -> None:
        self.link = link
        self.characters = characters
        self._state = state

    def _require_roomless(self) -> None:
        state = self._state()
        if not state.connected:
            raise IntentRejected("Not connected to the relay.")
        if state.in_room:
            raise IntentRejected(f"Already in room {state.room_code}. Leave it first.")
        if state.pending_request:
            raise IntentRejected("A room request is already in progress.")

    async def _send_or_reject(self, type: str, payload: dict) -> None:
        if not await self.link.send(type, payload):
            raise IntentRejected("Not connected to the relay.")

    async def create(self) -> SessionState:
        self._require_roomless()
        await self._send_or_reject("create_room", {})
        return replace(self._state(), pending_request="create_room")

    async def join(self, code: Optional[str]) -> SessionState:
        room_code = normalize_room_code(code)
        self._require_roomless()
        await self._send_or_reject("join_room", {"roomId": room_code})
        return replace(self._state(), pending_request="join_room")

    async def leave(self) -> SessionState:
        state = self._state()
        if not state.in_room:
            if state.pending_request:
                # The relay never answered; give up on the request locally.
                logger.info(f"room_request_abandoned | request={state.pending_request}")
                return replace(state, pending_request=None)
            raise IntentRejected("Not in a room.")
        # Fire and forget: local state is cleared whether or not the relay answers.
        await self.link.send("leave_room", {"roomId": state.room_code})
        logger.info(f"room_left | room={state.room_code}")
        return self._state().without_room()

    async def release_unrequested(self, ack: RoomAck) -> None:
        """Answer an ack nobody is waiting for by leaving that room on the relay."""
        room_code = ack.roomId.strip().upper()
        logger.warning(f"room_ack_unsolicited | room={room_code}")
        if room_code != self._state().room_code:
            await self.link.send("leave_room", {"roomId": room_code})

    def acknowledge(self, ack: RoomAck) -> SessionState:
        state = self._state()
        room_code = ack.roomId.strip().upper()
        logger.info(f"room_entered | room={room_code}")
        return replace(
            state.without_room(),
            room_code=room_code,
        )

    def partner_joined(self) -> SessionState:
        return replace(self._state(), partner_present=True)

    def partner_left(self) -> SessionState:
        return self._state().without_partner()

    def character_synced(self, synced: CharacterSynced) -> SessionState:
        # Wholesale replacement, never a merge with the previous sheet.
        return replace(
            self._state(),
            partner_present=True,
            partner_character=synced.characterData.to_character(),
        )

    def local_sheet(self, mode: Mode) -> Optional[Tuple[str, PeerCharacter]]:
        selected = self.characters.selected_character()
        if mode is Mode.ROLE_PLAY:
            return selected
        persona = self.characters.persona()
        return (selected[0] if selected else ""), persona.as_character()

    async def sync_character(self, automatic: bool = False) -> bool:
        """Push this side's sheet. Automatic syncs skip quietly when there is nothing to push."""
        state = self._state()
        if not state.in_room:
            if automatic:
                return False
            raise IntentRejected("Join a room before syncing.")
        sheet = self.local_sheet(state.mode)
        if sheet is None:
            if automatic:
                logger.info(f"character_sync_skipped | room={state.room_code} | reason=no character selected")
                return False
            raise IntentRejected("No character selected.")
        character_id, character = sheet
        sent = await self.link.send(
            "sync_character",
            {
                "characterId": character_id,
                "characterData": CharacterData.from_character(character).model_dump(),
            },
        )
        if sent:
            logger.info(f"character_synced_out | room={state.room_code} | name={character.name}")
        elif not automatic:
            raise IntentRejected("Not connected to the relay.")
        return sent
