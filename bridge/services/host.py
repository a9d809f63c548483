from __future__ import annotations

import json
import os
from dataclasses import asdict
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from ..errors import GenerationError
from ..models import ChatEntry, PeerCharacter, Persona
from .persistence import PersistenceWorker


class CharacterStore(Protocol):
    def selected_character(self) -> Optional[Tuple[str, PeerCharacter]]: ...

    def persona(self) -> Persona: ...


class TextGenerator(Protocol):
    async def generate_raw(
        self, prompt: str, system_prompt: str, prefill: str = ""
    ) -> str: ...


class FileCharacterStore:
    """Read-only view of the host's characters and the user's persona.

    The file is re-read on every lookup so edits made by the host show
    up on the next sync without a restart.
    """

    def __init__(self, characters_file: Path) -> None:
        self.characters_file = characters_file

    def _read(self) -> Dict[str, Any]:
        if not self.characters_file.exists():
            return {}
        try:
            with open(self.characters_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning(f"characters_unreadable | path={self.characters_file} | error={exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def selected_character(self) -> Optional[Tuple[str, PeerCharacter]]:
        data = self._read()
        selected = data.get("selected")
        if not selected:
            return None
        for c in data.get("characters", []):
            if c.get("id") != selected:
                continue
            return selected, PeerCharacter(
                name=c.get("name") or selected,
                description=c.get("description", ""),
                personality=c.get("personality", ""),
                scenario=c.get("scenario", ""),
                first_message=c.get("firstMessage", ""),
                example_messages=c.get("exampleMessages", ""),
            )
        return None

    def persona(self) -> Persona:
        raw = self._read().get("persona") or {}
        return Persona(
            name=raw.get("name") or "User",
            description=raw.get("description") or "",
        )


@lru_cache(maxsize=4)
def get_chat_model(model: Optional[str] = None) -> Optional[ChatOpenAI]:
    """Return a cached ChatOpenAI client configured from the environment.

    Env vars:
      - OPENAI_API_KEY (required)
      - OPENAI_MODEL (optional; default: gpt-4o-mini)
      - OPENAI_TEMPERATURE (optional; default: 1)
    """
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        logger.error("OPENAI_API_KEY not set; cannot initialize chat model")
        return None
    mdl = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    try:
        temperature = float(os.getenv("OPENAI_TEMPERATURE", "1"))
    except ValueError:
        temperature = 1.0
    logger.debug(f"Initializing chat model={mdl} temperature={temperature}")
    return ChatOpenAI(model=mdl, temperature=temperature, api_key=api_key)


class ChatModelGenerator:
    """Raw generation through a LangChain chat model."""

    def __init__(self, chat: Optional[ChatOpenAI] = None) -> None:
        self._chat = chat

    async def generate_raw(
        self, prompt: str, system_prompt: str, prefill: str = ""
    ) -> str:
        chat = self._chat or get_chat_model()
        if chat is None:
            raise GenerationError("No generation backend configured (set OPENAI_API_KEY).")
        messages: List[BaseMessage] = [
            SystemMessage(content=system_prompt),
            HumanMessage(content=prompt),
        ]
        if prefill:
            messages.append(AIMessage(content=prefill))
        try:
            resp = await chat.ainvoke(messages)
        except Exception as exc:
            raise GenerationError(f"Generation failed: {exc}") from exc
        text = resp.content if isinstance(resp.content, str) else ""
        text = (prefill + text).strip()
        if not text:
            raise GenerationError("Generation returned an empty reply.")
        return text


EntryListener = Callable[[ChatEntry], Awaitable[None]]


class ChatLog:
    """The host conversation log: commit entries, emit them, persist them."""

    def __init__(self, persistence: Optional[PersistenceWorker] = None) -> None:
        self.persistence = persistence
        self.entries: List[ChatEntry] = []
        self._listeners: List[EntryListener] = []
        if persistence:
            for raw in persistence.repository.read_entries():
                try:
                    self.entries.append(ChatEntry(**raw))
                except TypeError:
                    continue

    def subscribe(self, listener: EntryListener) -> None:
        self._listeners.append(listener)

    async def append(self, entries: List[ChatEntry]) -> None:
        self.entries.extend(entries)
        if self.persistence:
            self.persistence.schedule_save([asdict(e) for e in self.entries])
        for entry in entries:
            for listener in self._listeners:
                await listener(entry)
