from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from loguru import logger

from ..errors import GenerationError
from ..models import ChatEntry, PeerCharacter
from ..schemas import DualInput, GenerateResponse
from ..services.host import CharacterStore, ChatLog, TextGenerator


@dataclass(frozen=True)
class PromptPair:
    system_prompt: str
    user_prompt: str
    character_name: str


def build_system_prompt(character: PeerCharacter) -> str:
    lines: List[str] = [f"You are {character.name}."]
    if character.description:
        lines.append(f"Description: {character.description}")
    if character.personality:
        lines.append(f"Personality: {character.personality}")
    if character.scenario:
        lines.append(f"Scenario: {character.scenario}")
    return "\n".join(lines)


def _persona_name(side: DualInput, fallback: str) -> str:
    if side.persona and side.persona.name:
        return side.persona.name
    return fallback


def _fragment(side: DualInput, fallback: str) -> str:
    header = _persona_name(side, fallback)
    if side.persona and side.persona.description:
        header = f"{header} ({side.persona.description})"
    return f"[{header}]\n{side.message}"


def build_user_prompt(event: GenerateResponse, character_name: str) -> str:
    """Two fragments, always A then B, so both peers build the same text."""
    return "\n\n".join(
        [
            _fragment(event.userA, "User A"),
            _fragment(event.userB, "User B"),
            f"Reply as {character_name} to both of them.",
        ]
    )


class DualGenerationCoordinator:
    """Turn a generate_response pair into one generated reply on the local host."""

    def __init__(
        self,
        characters: CharacterStore,
        generator: TextGenerator,
        chat_log: ChatLog,
    ) -> None:
        self.characters = characters
        self.generator = generator
        self.chat_log = chat_log

    def build_prompts(self, event: GenerateResponse) -> PromptPair:
        selected = self.characters.selected_character()
        if selected is None:
            raise GenerationError("Select a character on the host before generating.")
        _, character = selected
        return PromptPair(
            system_prompt=build_system_prompt(character),
            user_prompt=build_user_prompt(event, character.name),
            character_name=character.name,
        )

    async def run(
        self,
        event: GenerateResponse,
        room_code: str,
        current_room: Callable[[], Optional[str]],
    ) -> bool:
        """Generate and commit the reply. Returns False when the result went stale."""
        prompts = self.build_prompts(event)
        logger.info(f"dual_generation_start | room={room_code}")
        text = await self.generator.generate_raw(
            prompts.user_prompt, prompts.system_prompt, prefill=""
        )
        if current_room() != room_code:
            logger.warning(f"dual_generation_stale | requested_room={room_code} | current_room={current_room()}")
            return False

        provenance = {
            "userA": event.userA.message,
            "userB": event.userB.message,
            "room": room_code,
        }
        entries = [
            ChatEntry(
                name=_persona_name(event.userA, "User A"),
                text=event.userA.message,
                is_user=True,
            ),
            ChatEntry(
                name=_persona_name(event.userB, "User B"),
                text=event.userB.message,
                is_user=True,
            ),
            ChatEntry(
                name=prompts.character_name,
                text=text,
                kind="generated",
                metadata={"dualInputs": provenance},
            ),
        ]
        await self.chat_log.append(entries)
        logger.info(f"dual_generation_done | room={room_code} | chars={len(text)}")
        return True
