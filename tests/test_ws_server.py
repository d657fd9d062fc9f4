import asyncio
import json

import pytest

from netlabs.ws_protocol import WsMessage, WsMessageType
from netlabs.ws_server import (
    ChatServer,
    ChatState,
    handle_client_message,
    handle_command,
)


def drain(queue):
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class FakeWebSocket:
    remote_address = ("127.0.0.1", 50000)

    def __init__(self):
        self.incoming = asyncio.Queue()
        self.sent = []

    async def send(self, frame):
        self.sent.append(frame)

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        while (frame := await self.incoming.get()) is not None:
            yield frame


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


def test_add_user_registers_and_announces():
    state = ChatState()
    queue = state.subscribe()
    session_id = state.add_user("alice", ("127.0.0.1", 1234))
    assert len(session_id) == 36
    assert state.users() == ["alice"]
    announced = drain(queue)
    assert len(announced) == 1
    assert announced[0].type is WsMessageType.NOTIFICATION
    assert "alice" in announced[0].content


def test_add_user_rejects_duplicates_and_invalid_names():
    state = ChatState()
    state.add_user("alice")
    with pytest.raises(ValueError):
        state.add_user("alice")
    with pytest.raises(ValueError):
        state.add_user("alice bob")
    with pytest.raises(ValueError):
        state.add_user("")
    with pytest.raises(ValueError):
        state.add_user("A" * 51)
    assert state.users() == ["alice"]
    assert state.connection_count == 1


def test_remove_user_broadcasts_disconnection():
    state = ChatState()
    session_id = state.add_user("alice")
    queue = state.subscribe()
    assert state.remove_user("alice") == session_id
    messages = drain(queue)
    assert [m.type for m in messages] == [WsMessageType.DISCONNECTION]
    assert messages[0].user == "alice"
    assert state.remove_user("alice") is None
    assert drain(queue) == []


def test_statistics_track_connections():
    state = ChatState()
    state.add_user("alice")
    state.add_user("bob")
    state.remove_user("alice")
    assert state.statistics() == {
        "utilisateurs_connectes": 1,
        "total_connexions": 2,
        "utilisateurs": ["bob"],
    }


def test_unsubscribed_queue_receives_nothing():
    state = ChatState()
    queue = state.subscribe()
    state.unsubscribe(queue)
    state.broadcast(WsMessage.ping())
    assert queue.empty()


def test_command_users_lists_names():
    state = ChatState()
    state.add_user("alice")
    state.add_user("bob")
    queue = state.subscribe()
    assert handle_command(state, "/users") is True
    [message] = drain(queue)
    assert message.type is WsMessageType.NOTIFICATION
    assert "alice" in message.content and "bob" in message.content
    assert "(2)" in message.content


def test_command_stats_carries_statistics_json():
    state = ChatState()
    state.add_user("alice")
    queue = state.subscribe()
    assert handle_command(state, "/stats") is True
    [message] = drain(queue)
    body = message.content.split("\n", 1)[1]
    assert json.loads(body) == state.statistics()


def test_command_ping_help_quit_and_unknown():
    state = ChatState()
    queue = state.subscribe()
    assert handle_command(state, "/ping") is True
    assert handle_command(state, "/help") is True
    assert handle_command(state, "/nope extra") is True
    assert handle_command(state, "/quit") is False
    messages = drain(queue)
    assert [m.type for m in messages] == [
        WsMessageType.PING,
        WsMessageType.NOTIFICATION,
        WsMessageType.NOTIFICATION,
    ]
    assert "/users" in messages[1].content
    assert "/nope" in messages[2].content


def test_chat_message_is_broadcast_under_sender_name():
    state = ChatState()
    queue = state.subscribe()
    incoming = WsMessage.chat("someone_else", "hello there")
    assert handle_client_message(state, "alice", incoming) is True
    [message] = drain(queue)
    assert message.type is WsMessageType.CHAT
    assert message.user == "alice"
    assert message.content == "hello there"


def test_chat_slash_content_runs_command():
    state = ChatState()
    queue = state.subscribe()
    assert handle_client_message(state, "alice", WsMessage.chat("alice", "/quit")) is False
    assert handle_client_message(state, "alice", WsMessage.chat("alice", "/ping")) is True
    assert [m.type for m in drain(queue)] == [WsMessageType.PING]


def test_binary_message_keeps_data_and_filename():
    state = ChatState()
    queue = state.subscribe()
    incoming = WsMessage.binary("x", b"\x01\x02\x03", "photo.png")
    assert handle_client_message(state, "bob", incoming) is True
    [message] = drain(queue)
    assert message.type is WsMessageType.BINARY
    assert message.user == "bob"
    assert message.binary_data == b"\x01\x02\x03"
    assert message.filename == "photo.png"
    assert message.metadata["taille"] == 3


def test_user_list_ping_and_disconnection():
    state = ChatState()
    state.add_user("alice")
    queue = state.subscribe()
    assert handle_client_message(state, "alice", WsMessage.user_list_request()) is True
    ping = WsMessage.ping()
    assert handle_client_message(state, "alice", ping) is True
    assert handle_client_message(state, "alice", WsMessage.disconnection("alice")) is False
    listing, pong = drain(queue)
    assert listing.type is WsMessageType.USER_LIST
    assert listing.metadata == ["alice"]
    assert pong.type is WsMessageType.PONG
    assert pong.metadata == str(ping.id)


@pytest.mark.asyncio
async def test_connection_without_hello_is_rejected():
    server = ChatServer()
    ws = FakeWebSocket()
    await ws.incoming.put(WsMessage.chat("alice", "hi").to_frame())
    await asyncio.wait_for(server.handle_connection(ws), 2.0)
    assert len(ws.sent) == 1
    assert WsMessage.from_frame(ws.sent[0]).type is WsMessageType.NOTIFICATION
    assert server.state.users() == []
    assert server.state.connection_count == 0


@pytest.mark.asyncio
async def test_duplicate_user_is_rejected():
    server = ChatServer()
    server.state.add_user("alice")
    ws = FakeWebSocket()
    await ws.incoming.put(WsMessage.connection("alice").to_frame())
    await asyncio.wait_for(server.handle_connection(ws), 2.0)
    [reply] = [WsMessage.from_frame(f) for f in ws.sent]
    assert reply.type is WsMessageType.NOTIFICATION
    assert "alice" in reply.content
    assert server.state.connection_count == 1


@pytest.mark.asyncio
async def test_closed_before_hello_returns_quietly():
    server = ChatServer()
    ws = FakeWebSocket()
    await ws.incoming.put(None)
    await asyncio.wait_for(server.handle_connection(ws), 2.0)
    assert ws.sent == []
    assert server.state.users() == []


@pytest.mark.asyncio
async def test_session_relays_broadcasts_and_cleans_up():
    server = ChatServer()
    ws = FakeWebSocket()
    task = asyncio.create_task(server.handle_connection(ws))
    await ws.incoming.put(WsMessage.connection("alice").to_frame())
    await wait_until(lambda: server.state.users() == ["alice"] and len(ws.sent) >= 1)

    welcome = WsMessage.from_frame(ws.sent[0])
    assert welcome.type is WsMessageType.NOTIFICATION
    assert "alice" in welcome.content

    server.state.broadcast(WsMessage.chat("alice", "own message"))
    server.state.broadcast(WsMessage.chat("bob", "from bob"))
    await wait_until(lambda: len(ws.sent) >= 2)
    relayed = WsMessage.from_frame(ws.sent[1])
    assert relayed.user == "bob"
    assert relayed.content == "from bob"

    await ws.incoming.put(None)
    await asyncio.wait_for(task, 2.0)
    assert server.state.users() == []
    assert server.state.statistics()["total_connexions"] == 1
    assert all(WsMessage.from_frame(f).content != "own message" for f in ws.sent)


@pytest.mark.asyncio
async def test_session_ends_on_quit_command():
    server = ChatServer()
    ws = FakeWebSocket()
    await ws.incoming.put(WsMessage.connection("carol").to_frame())
    await ws.incoming.put(WsMessage.chat("carol", "/quit").to_frame())
    await asyncio.wait_for(server.handle_connection(ws), 2.0)
    assert server.state.users() == []
    assert server.state.connection_count == 1