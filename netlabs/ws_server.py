"""WebSocket chat server that relays messages to every connected client."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from contextlib import suppress
from typing import Any, Sequence

from websockets.exceptions import ConnectionClosed

try:
    from websockets.asyncio.server import serve as _ws_serve
except ImportError:  # older releases only ship the legacy server
    from websockets.server import serve as _ws_serve

from netlabs.ws_protocol import WsMessage, WsMessageType, new_session_id, validate_username

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9001
QUEUE_CAPACITY = 1000

HELP_TEXT = (
    "Available WebSocket commands:\n"
    "/help - Show this help\n"
    "/users - List connected users\n"
    "/stats - Server statistics\n"
    "/ping - Test the connection\n"
    "/quit - Disconnect"
)


def _format_address(address: Any) -> str:
    if isinstance(address, (tuple, list)) and len(address) >= 2:
        host, port = address[0], address[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(address)


class ChatState:
    """Connected users, the broadcast channel and the connection counter."""

    def __init__(self) -> None:
        self._users: dict[str, str] = {}
        self._subscribers: list[asyncio.Queue] = []
        self.connection_count = 0

    def add_user(self, name: str, address: Any = None) -> str:
        """Register a user and return its session id; raise ValueError if refused."""
        validate_username(name)
        if name in self._users:
            raise ValueError(f"User '{name}' is already connected")
        session_id = new_session_id()
        self._users[name] = session_id
        self.connection_count += 1
        self.broadcast(WsMessage.notification(
            f"{name} joined the chat ({len(self._users)} users connected)"
        ))
        print(f"User '{name}' connected from {_format_address(address)} (session: {session_id})")
        return session_id

    def remove_user(self, name: str) -> str | None:
        """Forget a user, announce it, and return its session id (None if unknown)."""
        session_id = self._users.pop(name, None)
        if session_id is not None:
            self.broadcast(WsMessage.disconnection(name))
            print(f"User '{name}' disconnected (session: {session_id})")
        return session_id

    def users(self) -> list[str]:
        """Names of the connected users, in connection order."""
        return list(self._users)

    def broadcast(self, message: WsMessage) -> None:
        """Deliver a message to every subscriber; full queues drop it."""
        for queue in list(self._subscribers):
            with suppress(asyncio.QueueFull):
                queue.put_nowait(message)

    def subscribe(self) -> asyncio.Queue:
        """Return a new queue that receives every later broadcast."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=QUEUE_CAPACITY)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with suppress(ValueError):
            self._subscribers.remove(queue)

    def statistics(self) -> dict[str, Any]:
        return {
            "utilisateurs_connectes": len(self._users),
            "total_connexions": self.connection_count,
            "utilisateurs": self.users(),
        }


def handle_command(state: ChatState, command: str) -> bool:
    """Carry out a slash command; return False when the client asks to leave."""
    parts = command.split()
    name = parts[0] if parts else command
    if name == "/help":
        state.broadcast(WsMessage.notification(HELP_TEXT))
    elif name == "/users":
        users = state.users()
        state.broadcast(WsMessage.notification(
            f"Connected users ({len(users)}):\n" + "\n• ".join(users)
        ))
    elif name == "/stats":
        stats = json.dumps(state.statistics(), indent=2, ensure_ascii=False)
        state.broadcast(WsMessage.notification(f"Server statistics:\n{stats}"))
    elif name == "/ping":
        state.broadcast(WsMessage.ping())
    elif name == "/quit":
        return False
    else:
        state.broadcast(WsMessage.notification(
            f"Unknown command: {name}. Type /help for help."
        ))
    return True


def handle_client_message(state: ChatState, username: str, message: WsMessage) -> bool:
    """Act on one message from an authenticated user; False means disconnect."""
    kind = message.type
    if kind is WsMessageType.CHAT:
        if message.content is not None:
            if message.content.startswith("/"):
                return handle_command(state, message.content)
            state.broadcast(WsMessage.chat(username, message.content))
    elif kind is WsMessageType.BINARY:
        if message.binary_data is not None:
            state.broadcast(WsMessage.binary(username, message.binary_data, message.filename))
    elif kind is WsMessageType.USER_LIST_REQUEST:
        state.broadcast(WsMessage.user_list(state.users()))
    elif kind is WsMessageType.PING:
        state.broadcast(WsMessage.pong(message.id))
    elif kind is WsMessageType.DISCONNECTION:
        print(f"Voluntary disconnection of {username}")
        return False
    else:
        print(f"Unsupported message from {username}: {kind.value}")
    return True


async def _forward(websocket, name: str, queue: asyncio.Queue) -> None:
    """Send broadcasts to one client, skipping its own non-system messages."""
    while True:
        message: WsMessage = await queue.get()
        if message.user == name and message.type is not WsMessageType.NOTIFICATION:
            continue
        try:
            await websocket.send(message.to_frame())
        except (ConnectionClosed, ConnectionError, OSError):
            return


class ChatServer:
    """Accepts WebSocket clients and relays their chat through a shared state."""

    def __init__(self) -> None:
        self.state = ChatState()

    async def _reject(self, websocket, text: str) -> None:
        with suppress(ConnectionClosed, ConnectionError, OSError):
            await websocket.send(WsMessage.notification(text).to_frame())

    async def handle_connection(self, websocket) -> None:
        """Authenticate one client, then relay its messages until it leaves."""
        address = _format_address(getattr(websocket, "remote_address", None))
        frames = aiter(websocket)
        try:
            first = await anext(frames)
        except StopAsyncIteration:
            print("Connection closed before authentication")
            return
        except ConnectionClosed as exc:
            print(f"Error while receiving the first message: {exc}", file=sys.stderr)
            return

        try:
            hello = WsMessage.from_frame(first)
        except (ValueError, TypeError):
            print(f"WebSocket connection closed for {address}")
            return
        if hello.type is not WsMessageType.CONNECTION:
            await self._reject(websocket, "Connection required before sending messages")
            return
        if hello.user is None:
            await self._reject(websocket, "Username required to connect")
            return
        name = hello.user
        try:
            session_id = self.state.add_user(name, address)
        except ValueError as exc:
            await self._reject(websocket, f"Connection error: {exc}")
            return

        queue = self.state.subscribe()
        forwarder: asyncio.Task | None = None
        try:
            await websocket.send(WsMessage.notification(
                f"Welcome {name}! You are connected to the WebSocket chat."
            ).to_frame())
            print(f"User '{name}' authenticated (session: {session_id})")
            forwarder = asyncio.create_task(_forward(websocket, name, queue))
            try:
                async for frame in frames:
                    try:
                        message = WsMessage.from_frame(frame)
                    except (ValueError, TypeError):
                        continue
                    if not handle_client_message(self.state, name, message):
                        break
            except ConnectionClosed as exc:
                print(f"WebSocket error for {name}: {exc}", file=sys.stderr)
        except (ConnectionClosed, ConnectionError, OSError) as exc:
            print(f"WebSocket error for {name}: {exc}", file=sys.stderr)
        finally:
            if forwarder is not None:
                forwarder.cancel()
                with suppress(asyncio.CancelledError):
                    await forwarder
            self.state.unsubscribe(queue)
            self.state.remove_user(name)
            print(f"WebSocket connection closed for {address}")

    async def serve(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Accept clients until cancelled."""
        async with _ws_serve(self.handle_connection, host, port):
            print(f"WebSocket server started on {host}:{port}")
            print(f"Connect via: ws://{host.replace('0.0.0.0', '127.0.0.1')}:{port}")
            print("Waiting for connections...")
            await asyncio.get_running_loop().create_future()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Real-time WebSocket chat server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    print("Starting WebSocket chat server...")
    try:
        asyncio.run(ChatServer().serve(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())