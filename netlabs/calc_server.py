"""TCP server for the remote calculation protocol."""

from __future__ import annotations

import argparse
import asyncio
import struct
import sys
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from netlabs.calc_protocol import (
    ErrorCode,
    MathOperation,
    OperationType,
    ProtocolError,
    ProtocolMessage,
    compute,
    format_number,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8081
SERVER_NAME = "Remote calculation server"
SERVER_VERSION = "1.0.0"

_LENGTH = struct.Struct(">I")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _format_address(address: Any) -> str:
    if isinstance(address, (tuple, list)) and len(address) >= 2:
        host, port = address[0], address[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(address)


@dataclass
class _Session:
    session_id: str
    address: str
    calculations: int = 0
    connected_at: datetime = field(default_factory=_now)


@dataclass
class ServerState:
    """Active sessions and global counters shared by all clients."""

    sessions: dict[str, _Session] = field(default_factory=dict)
    total_connections: int = 0
    total_calculations: int = 0
    started_at: datetime = field(default_factory=_now)

    def add_session(self, session_id: str, address: Any) -> None:
        """Register a session; raise ValueError if the id is already active."""
        if session_id in self.sessions:
            raise ValueError(f"Session '{session_id}' already active")
        formatted = _format_address(address)
        self.sessions[session_id] = _Session(session_id, formatted)
        self.total_connections += 1
        print(f"New session '{session_id}' created for {formatted}")

    def remove_session(self, session_id: str) -> _Session | None:
        """Forget a session and return it, or None if it was not active."""
        session = self.sessions.pop(session_id, None)
        if session is not None:
            print(
                f"Session '{session_id}' closed "
                f"(calculations performed: {session.calculations})"
            )
        return session

    def record_calculation(self, session_id: str) -> None:
        """Count one successful calculation for an active session."""
        session = self.sessions.get(session_id)
        if session is not None:
            session.calculations += 1
            self.total_calculations += 1

    def _uptime_seconds(self) -> int:
        return int((_now() - self.started_at).total_seconds())

    def server_info(self) -> dict[str, Any]:
        return {
            "nom": SERVER_NAME,
            "version": SERVER_VERSION,
            "temps_demarrage": _iso(self.started_at),
            "temps_fonctionnement_secondes": self._uptime_seconds(),
            "sessions_actives": len(self.sessions),
            "operations_supportees": [op.value for op in MathOperation],
            "protocole": "TCP with JSON messages",
            "format_message": "Size prefix (4 bytes) + JSON",
        }

    def statistics(self) -> dict[str, Any]:
        now = _now()
        sessions = [
            {
                "session_id": s.session_id,
                "adresse": s.address,
                "calculs_effectues": s.calculations,
                "temps_connexion": _iso(s.connected_at),
                "duree_connexion_secondes": int((now - s.connected_at).total_seconds()),
            }
            for s in self.sessions.values()
        ]
        average = (
            self.total_calculations / self.total_connections
            if self.total_connections > 0
            else 0.0
        )
        return {
            "total_connexions": self.total_connections,
            "total_calculs": self.total_calculations,
            "sessions_actives": len(self.sessions),
            "sessions": sessions,
            "moyenne_calculs_par_session": average,
            "temps_demarrage": _iso(self.started_at),
            "temps_fonctionnement": f"{self._uptime_seconds()}s",
        }


async def _send(writer, message: ProtocolMessage) -> None:
    writer.write(message.to_bytes())
    await writer.drain()


async def _read_frame(reader: asyncio.StreamReader) -> bytes | None:
    """Read one length-prefixed frame; None if the stream ended cleanly first."""
    try:
        header = await reader.readexactly(_LENGTH.size)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            return None
        raise
    (size,) = _LENGTH.unpack(header)
    return header + await reader.readexactly(size)


class CalcServer:
    """Authenticates clients by session id and answers their requests."""

    connect_timeout: float = 30.0
    idle_timeout: float = 300.0

    def __init__(self) -> None:
        self.state = ServerState()

    def handle_message(self, session_id: str, message: ProtocolMessage) -> ProtocolMessage | None:
        """Return the reply to a message, or None when the client disconnects."""
        kind = message.type
        if kind is OperationType.CALCULATION:
            request = message.request
            if request is None:
                return ProtocolMessage.error(
                    ErrorCode.INVALID_PARAMETERS, "Invalid calculation request"
                )
            print(f"Calculation requested by {session_id}: {request}")
            try:
                result = compute(request)
            except ValueError as exc:
                return ProtocolMessage.error(ErrorCode.INVALID_PARAMETERS, str(exc))
            self.state.record_calculation(session_id)
            print(f"Result sent to {session_id}: {format_number(result)}")
            return ProtocolMessage.calc_result(
                message.id, result, f"{request} = {format_number(result)}"
            )
        if kind is OperationType.SERVER_INFO:
            return ProtocolMessage.server_info_response(self.state.server_info())
        if kind is OperationType.STATISTICS:
            return ProtocolMessage.stats_response(self.state.statistics())
        if kind is OperationType.PING:
            return ProtocolMessage.pong(message.id)
        if kind is OperationType.DISCONNECT:
            print(f"Voluntary disconnection of session {session_id}")
            return None
        return ProtocolMessage.error(
            ErrorCode.INVALID_OPERATION, f"Unsupported operation: {kind.value}"
        )

    async def handle_client(self, reader: asyncio.StreamReader, writer) -> None:
        """Run the handshake and then the request loop for one client."""
        address = _format_address(writer.get_extra_info("peername"))
        session_id: str | None = None
        try:
            try:
                frame = await asyncio.wait_for(_read_frame(reader), self.connect_timeout)
            except (TimeoutError, asyncio.IncompleteReadError, ConnectionError, OSError):
                frame = None
            if frame is None:
                print(f"Timeout or connection error for {address}")
                return
            try:
                message, _ = ProtocolMessage.from_bytes(frame)
            except ProtocolError:
                await _send(writer, ProtocolMessage.error(
                    ErrorCode.MALFORMED_MESSAGE, "Malformed message"))
                return
            if message.type is not OperationType.CONNECT:
                await _send(writer, ProtocolMessage.error(
                    ErrorCode.NOT_AUTHENTICATED, "Connection required before sending requests"))
                return
            if message.session_id is None:
                await _send(writer, ProtocolMessage.error(
                    ErrorCode.INVALID_SESSION, "Session ID required to connect"))
                return
            try:
                self.state.add_session(message.session_id, address)
            except ValueError as exc:
                await _send(writer, ProtocolMessage.error(ErrorCode.INVALID_SESSION, str(exc)))
                return
            session_id = message.session_id
            await _send(writer, ProtocolMessage.connect_ok(
                f"Connection successful! Session: {session_id}"))
            await self._session_loop(reader, writer, session_id, address)
        finally:
            if session_id is not None:
                self.state.remove_session(session_id)
            writer.close()
            with suppress(ConnectionError, OSError):
                await writer.wait_closed()

    async def _session_loop(self, reader, writer, session_id: str, address: str) -> None:
        while True:
            try:
                header = await asyncio.wait_for(
                    reader.readexactly(_LENGTH.size), self.idle_timeout
                )
            except TimeoutError:
                try:
                    await _send(writer, ProtocolMessage.ping())
                except (ConnectionError, OSError):
                    print(f"Session {session_id} no longer responds")
                    return
                continue
            except asyncio.IncompleteReadError:
                print(f"Client {address} (session: {session_id}) closed the connection")
                return
            except (ConnectionError, OSError) as exc:
                print(f"Read error for session {session_id}: {exc}", file=sys.stderr)
                return
            (size,) = _LENGTH.unpack(header)
            try:
                body = await reader.readexactly(size)
            except (asyncio.IncompleteReadError, ConnectionError, OSError):
                print(f"Client {address} (session: {session_id}) closed the connection")
                return
            try:
                message, _ = ProtocolMessage.from_bytes(header + body)
            except ProtocolError as exc:
                print(f"Ignoring malformed message from {session_id}: {exc}", file=sys.stderr)
                continue
            reply = self.handle_message(session_id, message)
            if reply is None:
                return
            await _send(writer, reply)

    async def _on_connect(self, reader, writer) -> None:
        peer = _format_address(writer.get_extra_info("peername"))
        print(f"New TCP connection from {peer}")
        try:
            await self.handle_client(reader, writer)
        except Exception as exc:  # one client's failure must not stop the server
            print(f"Error with client {peer}: {exc}", file=sys.stderr)

    async def serve(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Accept clients until cancelled."""
        server = await asyncio.start_server(self._on_connect, host, port)
        print(f"Remote calculation server started on {host}:{port}")
        print("Supported operations: " + ", ".join(op.value for op in MathOperation))
        print("Waiting for client connections...")
        async with server:
            await server.serve_forever()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Remote calculation server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    print("Starting remote calculation server...")
    try:
        asyncio.run(CalcServer().serve(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())