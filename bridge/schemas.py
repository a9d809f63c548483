from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from .models import ChatEntry, Mode, PeerCharacter, Persona, SessionState


# Relay wire format


class Envelope(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class CharacterData(BaseModel):
    name: str
    description: str = ""
    personality: str = ""
    scenario: str = ""
    firstMessage: str = ""
    exampleMessages: str = ""

    @classmethod
    def from_character(cls, character: PeerCharacter) -> "CharacterData":
        return cls(
            name=character.name,
            description=character.description,
            personality=character.personality,
            scenario=character.scenario,
            firstMessage=character.first_message,
            exampleMessages=character.example_messages,
        )

    def to_character(self) -> PeerCharacter:
        return PeerCharacter(
            name=self.name,
            description=self.description,
            personality=self.personality,
            scenario=self.scenario,
            first_message=self.firstMessage,
            example_messages=self.exampleMessages,
        )


class PersonaData(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_persona(cls, persona: Persona) -> "PersonaData":
        return cls(name=persona.name, description=persona.description)


class RoomAck(BaseModel):
    roomId: str


class PartnerJoined(BaseModel):
    partnerId: Optional[str] = None


class CharacterSynced(BaseModel):
    ownerId: Optional[str] = None
    characterData: CharacterData


class DualInput(BaseModel):
    message: str
    persona: Optional[PersonaData] = None


class GenerateResponse(BaseModel):
    userA: DualInput
    userB: DualInput


class PartnerMessage(BaseModel):
    message: str
    characterName: Optional[str] = None
    isRoleResponse: bool = False
    persona: Optional[PersonaData] = None


class RelayError(BaseModel):
    message: str = "Unknown relay error"


# Local UI surface


class BridgeEvent(BaseModel):
    type: str
    data: Dict[str, Any]


class SessionSnapshot(BaseModel):
    connectionStatus: str
    roomCode: Optional[str]
    partnerPresent: bool
    partnerCharacter: Optional[CharacterData]
    mode: str
    pendingLocalMessage: Optional[str]
    waitingForPartner: bool

    @classmethod
    def from_state(cls, state: SessionState) -> "SessionSnapshot":
        partner = state.partner_character
        return cls(
            connectionStatus=state.connection_status.value,
            roomCode=state.room_code,
            partnerPresent=state.partner_present,
            partnerCharacter=CharacterData.from_character(partner) if partner else None,
            mode=state.mode.value,
            pendingLocalMessage=state.pending_local_message,
            waitingForPartner=state.waiting_for_partner,
        )


class ChatEntryData(BaseModel):
    name: str
    text: str
    isUser: bool
    kind: str
    metadata: Dict[str, Any]
    timestamp: float

    @classmethod
    def from_entry(cls, entry: ChatEntry) -> "ChatEntryData":
        return cls(
            name=entry.name,
            text=entry.text,
            isUser=entry.is_user,
            kind=entry.kind,
            metadata=entry.metadata,
            timestamp=entry.timestamp,
        )


class Settings(BaseModel):
    enabled: bool = False
    serverUrl: str = ""
    rolePlayMode: bool = False
    partnerTimeout: float = 120.0

    @property
    def mode(self) -> Mode:
        return Mode.ROLE_PLAY if self.rolePlayMode else Mode.COLLABORATIVE


class SettingsUpdate(BaseModel):
    enabled: Optional[bool] = None
    serverUrl: Optional[str] = None
    rolePlayMode: Optional[bool] = None
    partnerTimeout: Optional[float] = None


class ConnectRequest(BaseModel):
    serverUrl: Optional[str] = None


class JoinRoomRequest(BaseModel):
    roomId: str


class SendMessageRequest(BaseModel):
    message: str


class ModeRequest(BaseModel):
    rolePlayMode: bool


class HostMessageSent(BaseModel):
    message: str


class HostMessageResult(BaseModel):
    suppressed: bool


class IntentMessage(BaseModel):
    type: str
    input: Optional[str] = None
