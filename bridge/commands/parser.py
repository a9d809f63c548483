from __future__ import annotations

from .base import IntentInput


SLASH_VERBS = {"connect", "disconnect", "create", "join", "leave", "sync", "mode"}


def parse_intent_input(text: str) -> IntentInput:
    cleaned = (text or "").strip()
    if not cleaned:
        return IntentInput(action="noop")
    if not cleaned.startswith("/"):
        return IntentInput(action="send", args=[cleaned])

    parts = cleaned[1:].strip().split(None, 1)  # Split on first space only
    if not parts:
        return IntentInput(action="unknown", verb="")
    verb = parts[0].lower()
    remaining = parts[1].strip() if len(parts) > 1 else ""
    if verb not in SLASH_VERBS:
        return IntentInput(action="unknown", verb=verb)
    return IntentInput(action=verb, args=remaining.split() if remaining else [])
