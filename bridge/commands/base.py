from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from ..schemas import BridgeEvent
from ..session.controller import SessionController


@dataclass(frozen=True)
class IntentInput:
    action: str
    args: List[str] = field(default_factory=list)
    verb: Optional[str] = None


@dataclass
class IntentResult:
    replies: List[BridgeEvent] = field(default_factory=list)


class IntentHandler(Protocol):
    async def __call__(
        self,
        controller: SessionController,
        intent: IntentInput,
    ) -> IntentResult: ...
