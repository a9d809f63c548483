import asyncio
import json

import pytest

from bridge.errors import ProtocolError, TransportError
from bridge.services.transport import TransportLink


class Recorder:
    def __init__(self):
        self.envelopes = []
        self.closes = 0

    async def on_envelope(self, envelope):
        if envelope.type == "explode":
            raise ProtocolError("bad payload")
        self.envelopes.append(envelope)

    async def on_close(self):
        self.closes += 1


@pytest.fixture()
def recorder():
    return Recorder()


@pytest.fixture()
def link(recorder, socket):
    async def connector(address):
        return socket

    return TransportLink(recorder.on_envelope, recorder.on_close, connector)


async def _spin():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio()
async def test_send_while_disconnected_reports_not_connected(link, socket):
    assert await link.send("create_room", {}) is False
    assert socket.sent == []


@pytest.mark.asyncio()
async def test_send_wraps_type_and_payload(link, socket):
    await link.connect("ws://relay.test")
    assert await link.send("join_room", {"roomId": "ABC123"}) is True
    assert socket.sent == [{"type": "join_room", "payload": {"roomId": "ABC123"}}]


@pytest.mark.asyncio()
async def test_second_connect_is_ignored(link):
    assert await link.connect("ws://relay.test") is True
    assert await link.connect("ws://relay.test") is False


@pytest.mark.asyncio()
async def test_connect_failure_raises_transport_error(recorder):
    async def refuse(address):
        raise ConnectionRefusedError("nope")

    link = TransportLink(recorder.on_envelope, recorder.on_close, refuse)
    with pytest.raises(TransportError):
        await link.connect("ws://relay.test")
    assert link.busy is False


@pytest.mark.asyncio()
async def test_malformed_frames_are_dropped(link, recorder):
    await link.on_message("not json")
    await link.on_message(json.dumps(["no", "envelope"]))
    await link.on_message(json.dumps({"payload": {}}))
    await link.on_message(json.dumps({"type": "x", "payload": "not a dict"}))
    await link.on_message(json.dumps({"type": "explode", "payload": {}}))
    assert recorder.envelopes == []


@pytest.mark.asyncio()
async def test_frames_from_socket_are_dispatched_in_order(link, recorder, socket):
    await link.connect("ws://relay.test")
    socket.inbox.put_nowait(json.dumps({"type": "first", "payload": {}}))
    socket.inbox.put_nowait(json.dumps({"type": "second"}))
    await _spin()
    assert [e.type for e in recorder.envelopes] == ["first", "second"]


@pytest.mark.asyncio()
async def test_remote_close_notifies_once(link, recorder, socket):
    await link.connect("ws://relay.test")
    socket.drop()
    await _spin()
    assert recorder.closes == 1
    assert link.is_open is False


@pytest.mark.asyncio()
async def test_user_disconnect_does_not_report_close(link, recorder, socket):
    await link.connect("ws://relay.test")
    await link.disconnect()
    await _spin()
    assert socket.closed is True
    assert recorder.closes == 0
    assert await link.send("create_room", {}) is False


@pytest.mark.asyncio()
async def test_frames_from_stale_connection_are_ignored(link, recorder, socket):
    await link.connect("ws://relay.test")
    await link.disconnect()
    socket.inbox.put_nowait(json.dumps({"type": "late", "payload": {}}))
    await _spin()
    assert recorder.envelopes == []


@pytest.mark.asyncio()
async def test_disconnect_during_handshake_abandons_connection(recorder, socket):
    gate = asyncio.Event()

    async def slow(address):
        await gate.wait()
        return socket

    link = TransportLink(recorder.on_envelope, recorder.on_close, slow)
    attempt = asyncio.create_task(link.connect("ws://relay.test"))
    await _spin()
    assert link.busy is True

    await link.disconnect()
    assert link.busy is False
    gate.set()
    assert await attempt is False
    assert link.is_open is False
    assert socket.closed is True
    assert recorder.closes == 0


@pytest.mark.asyncio()
async def test_failure_of_abandoned_handshake_is_not_raised(recorder):
    gate = asyncio.Event()

    async def slow_refuse(address):
        await gate.wait()
        raise ConnectionRefusedError("nope")

    link = TransportLink(recorder.on_envelope, recorder.on_close, slow_refuse)
    attempt = asyncio.create_task(link.connect("ws://relay.test"))
    await _spin()
    await link.disconnect()
    gate.set()
    assert await attempt is False
    assert link.busy is False


def test_leftover_reader_is_unwound_before_loop_closes(recorder):
    from conftest import FakeSocket, finish_pending_tasks

    socket = FakeSocket()

    async def connector(address):
        return socket

    link = TransportLink(recorder.on_envelope, recorder.on_close, connector)
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(link.connect("ws://relay.test"))
        reader = link._reader
        assert not reader.done()
        finish_pending_tasks(loop)
        assert reader.done()
        assert asyncio.all_tasks(loop) == set()
    finally:
        loop.close()
