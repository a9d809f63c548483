import pytest

from bridge.errors import IntentRejected
from bridge.models import ConnectionStatus, PeerCharacter
from bridge.session.room import normalize_room_code


def test_room_code_is_canonicalized_to_uppercase():
    assert normalize_room_code("  abc123 ") == "ABC123"


@pytest.mark.parametrize("code", ["", "ABC12", "ABC1234", "ABC-12", None])
def test_invalid_room_codes_are_rejected(code):
    with pytest.raises(IntentRejected):
        normalize_room_code(code)


@pytest.mark.asyncio()
async def test_create_room_waits_for_ack(controller, relay, socket):
    await controller.connect("ws://relay.test")
    await controller.create_room()
    assert socket.last("create_room") == {"type": "create_room", "payload": {}}
    assert controller.state.room_code is None

    await relay("room_created", {"roomId": "ABC123"})
    assert controller.state.room_code == "ABC123"
    assert controller.state.connection_status is ConnectionStatus.CONNECTED


@pytest.mark.asyncio()
async def test_join_then_ack_sets_room_code(controller, relay, socket):
    await controller.connect("ws://relay.test")
    await controller.join_room("qwe456")
    assert socket.last("join_room")["payload"] == {"roomId": "QWE456"}

    await relay("room_joined", {"roomId": "QWE456"})
    assert controller.state.room_code == "QWE456"
    assert controller.state.connected


@pytest.mark.asyncio()
async def test_join_with_bad_code_sends_nothing(controller, socket):
    await controller.connect("ws://relay.test")
    with pytest.raises(IntentRejected):
        await controller.join_room("abc")
    assert "join_room" not in socket.sent_types()


@pytest.mark.asyncio()
async def test_create_while_disconnected_is_rejected(controller, socket):
    with pytest.raises(IntentRejected):
        await controller.create_room()
    assert socket.sent == []


@pytest.mark.asyncio()
async def test_second_room_request_is_rejected_until_ack(controller):
    await controller.connect("ws://relay.test")
    await controller.create_room()
    with pytest.raises(IntentRejected):
        await controller.join_room("ABC123")


@pytest.mark.asyncio()
async def test_room_ack_pushes_local_sheet(enter_room, socket):
    await enter_room()
    sync = socket.last("sync_character")
    assert sync is not None
    assert sync["payload"]["characterId"] == "seraphina"
    # Collaborative mode pushes the persona.
    assert sync["payload"]["characterData"]["name"] == "Alice"


@pytest.mark.asyncio()
async def test_role_play_room_ack_pushes_character_sheet(controller, enter_room, socket):
    await controller.set_mode(True)
    await enter_room()
    data = socket.last("sync_character")["payload"]["characterData"]
    assert data["name"] == "Seraphina"
    assert data["scenario"] == "A glade at dusk"


@pytest.mark.asyncio()
async def test_role_play_sync_without_character_is_rejected(controller, enter_room, store, socket):
    await controller.set_mode(True)
    store.selected = None
    await enter_room()
    assert "sync_character" not in socket.sent_types()
    with pytest.raises(IntentRejected):
        await controller.sync_character()


@pytest.mark.asyncio()
async def test_leave_clears_room_without_waiting_for_relay(controller, enter_room, relay, socket):
    await enter_room()
    await relay("character_synced", {"ownerId": "p2", "characterData": {"name": "Bob"}})
    await controller.leave_room()
    assert socket.last("leave_room")["payload"] == {"roomId": "ABC123"}
    assert controller.state.room_code is None
    assert controller.state.partner_character is None
    assert controller.state.connected


@pytest.mark.asyncio()
async def test_partner_joined_marks_presence_and_resyncs(controller, enter_room, relay, socket):
    await enter_room()
    syncs_before = socket.sent_types().count("sync_character")
    await relay("partner_joined", {"partnerId": "p2"})
    assert controller.state.partner_present is True
    assert socket.sent_types().count("sync_character") == syncs_before + 1


@pytest.mark.asyncio()
async def test_partner_left_keeps_room(controller, enter_room, relay):
    await enter_room()
    await relay("partner_joined", {"partnerId": "p2"})
    await relay("character_synced", {"ownerId": "p2", "characterData": {"name": "Bob"}})
    await relay("partner_left")
    assert controller.state.room_code == "ABC123"
    assert controller.state.partner_present is False
    assert controller.state.partner_character is None


@pytest.mark.asyncio()
async def test_character_synced_replaces_instead_of_merging(controller, enter_room, relay):
    await enter_room()
    await relay(
        "character_synced",
        {"ownerId": "p2", "characterData": {"name": "Bob", "description": "tall", "personality": "loud"}},
    )
    await relay("character_synced", {"ownerId": "p2", "characterData": {"name": "Robert"}})
    assert controller.state.partner_character == PeerCharacter(name="Robert")


@pytest.mark.asyncio()
async def test_malformed_character_sync_leaves_state_unchanged(controller, enter_room, relay):
    await enter_room()
    await relay("character_synced", {"ownerId": "p2", "characterData": {"name": "Bob"}})
    await relay("character_synced", {"ownerId": "p2", "characterData": {"description": "no name"}})
    assert controller.state.partner_character.name == "Bob"


@pytest.mark.asyncio()
async def test_relay_error_clears_outstanding_request(controller, relay):
    await controller.connect("ws://relay.test")
    await controller.join_room("ABC123")
    await relay("error", {"message": "Room not found"})
    assert controller.state.pending_request is None
    notices = [e.data for e in controller.events if e.type == "notice"]
    assert {"level": "error", "text": "Room not found"} in notices
    await controller.join_room("DEF456")


@pytest.mark.asyncio()
async def test_leave_abandons_unanswered_room_request(controller, socket):
    await controller.connect("ws://relay.test")
    await controller.join_room("ABC123")
    await controller.leave_room()
    assert controller.state.pending_request is None
    assert "leave_room" not in socket.sent_types()
    notices = [e.data for e in controller.events if e.type == "notice"]
    assert {"level": "info", "text": "Room request cancelled."} in notices

    await controller.join_room("DEF456")
    assert socket.last("join_room")["payload"] == {"roomId": "DEF456"}


@pytest.mark.asyncio()
async def test_late_ack_for_abandoned_request_leaves_that_room(controller, relay, socket):
    await controller.connect("ws://relay.test")
    await controller.join_room("ABC123")
    await controller.leave_room()
    await relay("room_joined", {"roomId": "abc123"})
    assert controller.state.room_code is None
    assert socket.last("leave_room")["payload"] == {"roomId": "ABC123"}
    assert "sync_character" not in socket.sent_types()


@pytest.mark.asyncio()
async def test_leave_with_nothing_outstanding_is_rejected(controller):
    await controller.connect("ws://relay.test")
    with pytest.raises(IntentRejected):
        await controller.leave_room()
