from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class ConnectionStatus(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Mode(Enum):
    COLLABORATIVE = "collaborative"
    ROLE_PLAY = "roleplay"


@dataclass(frozen=True)
class PeerCharacter:
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    first_message: str = ""
    example_messages: str = ""


@dataclass(frozen=True)
class Persona:
    name: str = "User"
    description: str = ""

    def as_character(self) -> PeerCharacter:
        return PeerCharacter(name=self.name, description=self.description)


@dataclass(frozen=True)
class PendingTurn:
    """Local half of a collaborative turn waiting for the partner's half."""

    message: str
    room_code: str
    created_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class SessionState:
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    room_code: Optional[str] = None
    partner_present: bool = False
    partner_character: Optional[PeerCharacter] = None
    mode: Mode = Mode.COLLABORATIVE
    pending_turn: Optional[PendingTurn] = None
    waiting_for_partner: bool = False
    pending_request: Optional[str] = None

    @property
    def pending_local_message(self) -> Optional[str]:
        return self.pending_turn.message if self.pending_turn else None

    @property
    def connected(self) -> bool:
        return self.connection_status is ConnectionStatus.CONNECTED

    @property
    def in_room(self) -> bool:
        return self.room_code is not None

    def torn_down(self) -> "SessionState":
        """Defaults for everything except the locally chosen mode."""
        return SessionState(mode=self.mode)

    def without_room(self) -> "SessionState":
        return replace(
            self,
            room_code=None,
            partner_present=False,
            partner_character=None,
            pending_turn=None,
            waiting_for_partner=False,
            pending_request=None,
        )

    def without_partner(self) -> "SessionState":
        return replace(
            self,
            partner_present=False,
            partner_character=None,
            pending_turn=None,
            waiting_for_partner=False,
        )

    def without_pending_turn(self) -> "SessionState":
        return replace(self, pending_turn=None, waiting_for_partner=False)


@dataclass
class ChatEntry:
    name: str
    text: str
    is_user: bool = False
    kind: str = "message"
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
