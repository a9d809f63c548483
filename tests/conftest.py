import asyncio
import inspect
import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from bridge.config import SettingsRepository  # noqa: E402
from bridge.errors import GenerationError  # noqa: E402
from bridge.models import PeerCharacter, Persona  # noqa: E402
from bridge.services.host import ChatLog  # noqa: E402
from bridge.session.controller import SessionController  # noqa: E402


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "asyncio: run test inside a dedicated asyncio event loop without pytest-asyncio.",
    )


def finish_pending_tasks(loop):
    """Cancel what the test left running (reader loops, timers, saves) and let it unwind."""
    pending = asyncio.all_tasks(loop)
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        loop = asyncio.new_event_loop()
        try:
            argnames = pyfuncitem._fixtureinfo.argnames
            kwargs = {name: pyfuncitem.funcargs[name] for name in argnames}
            loop.run_until_complete(pyfuncitem.obj(**kwargs))
        finally:
            finish_pending_tasks(loop)
            loop.close()
        return True
    return None


class FakeSocket:
    """Stands in for a websockets client connection."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._inbox = None

    @property
    def inbox(self):
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self.inbox.put_nowait(None)

    def drop(self):
        self.inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item

    def sent_types(self):
        return [m["type"] for m in self.sent]

    def last(self, type):
        matches = [m for m in self.sent if m["type"] == type]
        return matches[-1] if matches else None


class StubCharacterStore:
    def __init__(self):
        self.selected = (
            "seraphina",
            PeerCharacter(
                name="Seraphina",
                description="A forest guardian",
                personality="Gentle but firm",
                scenario="A glade at dusk",
            ),
        )
        self.user = Persona(name="Alice", description="A curious traveler")

    def selected_character(self):
        return self.selected

    def persona(self):
        return self.user


class StubGenerator:
    def __init__(self):
        self.calls = []
        self.reply = "Welcome, both of you."
        self.error = None
        self.before_return = None

    async def generate_raw(self, prompt, system_prompt, prefill=""):
        self.calls.append({"prompt": prompt, "system_prompt": system_prompt, "prefill": prefill})
        if self.before_return:
            await self.before_return()
        if self.error:
            raise GenerationError(self.error)
        return self.reply


@pytest.fixture()
def socket():
    return FakeSocket()


@pytest.fixture()
def store():
    return StubCharacterStore()


@pytest.fixture()
def generator():
    return StubGenerator()


@pytest.fixture()
def chat_log():
    return ChatLog()


@pytest.fixture()
def settings_repo(tmp_path):
    return SettingsRepository(tmp_path / "settings.json")


@pytest.fixture()
def controller(settings_repo, store, generator, chat_log, socket):
    async def connector(address):
        return socket

    ctrl = SessionController(settings_repo, store, generator, chat_log, connector=connector)
    ctrl.events = []

    async def record(event):
        ctrl.events.append(event)

    ctrl.subscribe(record)
    return ctrl


@pytest.fixture()
def relay(controller):
    """Feed raw relay frames through the transport link."""

    async def deliver(type, payload=None):
        await controller.link.on_message(json.dumps({"type": type, "payload": payload or {}}))

    return deliver


@pytest.fixture()
def enter_room(controller, relay):
    async def enter(code="ABC123"):
        await controller.connect("ws://relay.test")
        await controller.create_room()
        await relay("room_created", {"roomId": code})

    return enter
