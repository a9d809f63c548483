from __future__ import annotations

from typing import Dict

from ..schemas import BridgeEvent, SessionSnapshot
from ..session.controller import SessionController
from .base import IntentHandler, IntentInput, IntentResult


MODE_ALIASES = {
    "rp": True,
    "roleplay": True,
    "collab": False,
    "collaborative": False,
}


class IntentRouter:
    """Map parsed chat-box intents to controller operations."""

    def __init__(self, controller: SessionController) -> None:
        self.controller = controller
        self._handlers: Dict[str, IntentHandler] = {
            "noop": noop_handler,
            "send": send_handler,
            "connect": connect_handler,
            "disconnect": disconnect_handler,
            "create": create_handler,
            "join": join_handler,
            "leave": leave_handler,
            "sync": sync_handler,
            "mode": mode_handler,
        }

    async def dispatch(self, intent: IntentInput) -> IntentResult:
        handler = self._handlers.get(intent.action)
        if not handler:
            return IntentResult(
                replies=[
                    BridgeEvent(
                        type="error",
                        data={"message": f"Unknown command: /{intent.verb or intent.action}"},
                    )
                ]
            )
        return await handler(self.controller, intent)


def _state_reply(controller: SessionController) -> BridgeEvent:
    return BridgeEvent(
        type="state",
        data=SessionSnapshot.from_state(controller.state).model_dump(),
    )


async def noop_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    return IntentResult()


async def send_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.send_message(" ".join(intent.args))
    return IntentResult()


async def connect_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.connect(intent.args[0] if intent.args else None)
    return IntentResult(replies=[_state_reply(controller)])


async def disconnect_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.disconnect()
    return IntentResult(replies=[_state_reply(controller)])


async def create_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.create_room()
    return IntentResult()


async def join_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    if not intent.args:
        raise ValueError("Usage: /join CODE")
    await controller.join_room(intent.args[0])
    return IntentResult()


async def leave_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.leave_room()
    return IntentResult()


async def sync_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    await controller.sync_character()
    return IntentResult()


async def mode_handler(controller: SessionController, intent: IntentInput) -> IntentResult:
    choice = intent.args[0].lower() if intent.args else ""
    if choice not in MODE_ALIASES:
        raise ValueError("Usage: /mode rp|collab")
    await controller.set_mode(MODE_ALIASES[choice])
    return IntentResult(replies=[_state_reply(controller)])
