from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

from loguru import logger

from ..errors import IntentRejected
from ..models import ChatEntry, Mode, PendingTurn, SessionState
from ..schemas import PartnerMessage, PersonaData
from ..services.host import CharacterStore
from ..services.transport import TransportLink


DIRECTION_TEMPLATE = "[Direction for {name}: {message}]"
PARTNER_FALLBACK_NAME = "Partner"


@dataclass
class Composition:
    state: SessionState
    entries: List[ChatEntry] = field(default_factory=list)
    pending: Optional[PendingTurn] = None


def wrap_direction(name: str, message: str) -> str:
    return DIRECTION_TEMPLATE.format(name=name, message=message)


class MessageComposer:
    """Decide what a local send turns into for the current mode."""

    def __init__(
        self,
        link: TransportLink,
        characters: CharacterStore,
        state: Callable[[], SessionState],
    ) -> None:
        self.link = link
        self.characters = characters
        self._state = state

    def intercepts_host_messages(self, enabled: bool) -> bool:
        """Whether a message typed into the host chat belongs to a collaborative turn."""
        state = self._state()
        return enabled and state.in_room and state.mode is Mode.COLLABORATIVE

    async def send(self, text: Optional[str]) -> Composition:
        message = (text or "").strip()
        if not message:
            raise IntentRejected("Message is empty.")
        state = self._state()
        if not state.connected:
            raise IntentRejected("Not connected to the relay.")
        if not state.in_room:
            raise IntentRejected("Join a room first.")
        if state.mode is Mode.ROLE_PLAY:
            return await self._send_role_play(message)
        return await self._send_collaborative(message)

    async def _send_collaborative(self, message: str) -> Composition:
        persona = self.characters.persona()
        selected = self.characters.selected_character()
        sent = await self.link.send(
            "send_message",
            {
                "message": message,
                "characterId": selected[0] if selected else None,
                "persona": PersonaData.from_persona(persona).model_dump(),
            },
        )
        if not sent:
            raise IntentRejected("Not connected to the relay.")
        state = self._state()
        if state.pending_turn is not None:
            logger.info(f"pending_turn_replaced | room={state.room_code}")
        # Single slot: a newer local half overwrites the older one.
        turn = PendingTurn(message=message, room_code=state.room_code or "")
        logger.info(f"collab_turn_sent | room={turn.room_code}")
        return Composition(
            state=replace(state, pending_turn=turn, waiting_for_partner=True),
            pending=turn,
        )

    async def _send_role_play(self, message: str) -> Composition:
        partner = self._state().partner_character
        name = partner.name if partner else PARTNER_FALLBACK_NAME
        persona = self.characters.persona()
        sent = await self.link.send(
            "roleplay_message",
            {
                "message": wrap_direction(name, message),
                "characterName": name,
                "isRoleResponse": True,
                "persona": PersonaData.from_persona(persona).model_dump(),
            },
        )
        if not sent:
            raise IntentRejected("Not connected to the relay.")
        logger.info(f"roleplay_sent | character={name}")
        entry = ChatEntry(name=name, text=message, metadata={"ghostwritten": True})
        return Composition(state=self._state(), entries=[entry])

    def render_partner_message(self, payload: PartnerMessage) -> ChatEntry:
        name = payload.characterName or PARTNER_FALLBACK_NAME
        metadata = {}
        if payload.persona is not None:
            metadata["persona"] = payload.persona.model_dump()
        if payload.isRoleResponse:
            return ChatEntry(name=name, text=payload.message, kind="direction", metadata=metadata)
        return ChatEntry(name=name, text=payload.message, metadata=metadata)
