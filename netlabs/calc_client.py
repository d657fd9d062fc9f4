"""Interactive client for the remote calculation protocol."""

from __future__ import annotations

import argparse
import asyncio
import json
import struct
import sys
import uuid
from contextlib import suppress
from typing import Any, Iterator, Sequence, TextIO

from netlabs.calc_protocol import (
    CalcRequest,
    MathOperation,
    OperationType,
    ProtocolError,
    ProtocolMessage,
    format_number,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8081
DEFAULT_TIMEOUT = 10.0
READ_SIZE = 1024
MAX_SESSION_ID_BYTES = 50

_LENGTH = struct.Struct(">I")

_BINARY_COMMANDS: dict[str, tuple[MathOperation, str]] = {
    "addition": (MathOperation.ADDITION, "Usage: addition <number1> <number2>"),
    "add": (MathOperation.ADDITION, "Usage: addition <number1> <number2>"),
    "soustraction": (MathOperation.SUBTRACTION, "Usage: soustraction <number1> <number2>"),
    "sub": (MathOperation.SUBTRACTION, "Usage: soustraction <number1> <number2>"),
    "multiplication": (MathOperation.MULTIPLICATION, "Usage: multiplication <number1> <number2>"),
    "mul": (MathOperation.MULTIPLICATION, "Usage: multiplication <number1> <number2>"),
    "division": (MathOperation.DIVISION, "Usage: division <number1> <number2>"),
    "div": (MathOperation.DIVISION, "Usage: division <number1> <number2>"),
    "puissance": (MathOperation.POWER, "Usage: puissance <base> <exponent>"),
    "pow": (MathOperation.POWER, "Usage: puissance <base> <exponent>"),
}

_UNARY_COMMANDS: dict[str, tuple[MathOperation, str]] = {
    "racine": (MathOperation.SQUARE_ROOT, "Usage: racine <number>"),
    "sqrt": (MathOperation.SQUARE_ROOT, "Usage: racine <number>"),
    "factorielle": (MathOperation.FACTORIAL, "Usage: factorielle <integer>"),
    "fact": (MathOperation.FACTORIAL, "Usage: factorielle <integer>"),
    "fibonacci": (MathOperation.FIBONACCI, "Usage: fibonacci <position>"),
    "fib": (MathOperation.FIBONACCI, "Usage: fibonacci <position>"),
}

_HELP = """
=== Calculation session started ===
Remote calculation server connected!
Available operations:
  • addition <a> <b>       - Sum of two numbers
  • soustraction <a> <b>   - Difference of two numbers
  • multiplication <a> <b> - Product of two numbers
  • division <a> <b>       - Quotient of two numbers
  • puissance <a> <b>      - Power (a^b)
  • racine <a>             - Square root
  • factorielle <n>        - Factorial of an integer
  • fibonacci <n>          - Nth Fibonacci number
  • info                   - Server information
  • stats                  - Server statistics
  • ping                   - Connection test
  • quit                   - Leave
=====================================
"""


class CommandError(ValueError):
    """Raised when a command carries an operand that is not a number."""


def _number(text: str) -> float:
    try:
        return float(text)
    except ValueError as exc:
        raise CommandError(f"invalid number: {text!r}") from exc


def parse_command(session_id: str, line: str) -> ProtocolMessage | None:
    """Turn a command line into a message, or None if there is nothing to send."""
    parts = line.split()
    if not parts:
        return None
    name = parts[0].lower()
    if name in _BINARY_COMMANDS:
        operation, usage = _BINARY_COMMANDS[name]
        if len(parts) != 3:
            print(usage)
            return None
        request = CalcRequest(operation, _number(parts[1]), _number(parts[2]))
        return ProtocolMessage.calc_request(session_id, request)
    if name in _UNARY_COMMANDS:
        operation, usage = _UNARY_COMMANDS[name]
        if len(parts) != 2:
            print(usage)
            return None
        request = CalcRequest(operation, _number(parts[1]), None)
        return ProtocolMessage.calc_request(session_id, request)
    if name == "info":
        return ProtocolMessage.server_info_request(session_id)
    if name == "stats":
        return ProtocolMessage.stats_request(session_id)
    if name == "ping":
        return ProtocolMessage.ping()
    print(f"Unknown command: {parts[0]}. Type 'quit' to leave.")
    return None


def _scalar(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def _json_lines(value: Any, level: int) -> Iterator[str]:
    pad = "  " * level
    if isinstance(value, dict):
        for key in sorted(value):
            item = value[key]
            if isinstance(item, (dict, list)):
                yield f"{pad}{key}:"
                yield from _json_lines(item, level + 1)
            else:
                yield f"{pad}{key}: {_scalar(item)}"
    elif isinstance(value, list):
        for index, item in enumerate(value):
            yield f"{pad}[{index}] {_scalar(item)}"
    else:
        yield f"{pad}{_scalar(value)}"


def format_json(value: Any, indent: int = 0) -> str:
    """Render a JSON value as indented 'key: value' lines, keys in sorted order."""
    return "\n".join(_json_lines(value, indent))


def describe_response(message: ProtocolMessage) -> str | None:
    """Return the text to show for a server reply, or None if there is none."""
    kind = message.type
    if kind is OperationType.CALCULATION_RESULT:
        if message.result is None:
            return "Invalid calculation result"
        text = f"Result: {format_number(message.result)}"
        if message.content is not None:
            text += f"\nDetails: {message.content}"
        return text
    if kind is OperationType.SERVER_INFO_RESPONSE:
        if message.data is None:
            return None
        return (
            "\n=== Server information ===\n"
            f"{format_json(message.data)}\n"
            "==============================\n"
        )
    if kind is OperationType.STATISTICS_RESPONSE:
        if message.data is None:
            return None
        return (
            "\n=== Server statistics ===\n"
            f"{format_json(message.data)}\n"
            "==============================\n"
        )
    if kind is OperationType.PONG:
        return "Pong received - connection active"
    if kind is OperationType.ERROR:
        data = message.data
        if isinstance(data, dict):
            code, description = data.get("code"), data.get("description")
            if isinstance(code, str) and isinstance(description, str):
                return f"ERROR [{code}]: {description}"
        return f"ERROR: {message.content or 'Unknown error'}"
    return f"Unhandled response: {kind.value}"


def ask_session_id(input_stream: TextIO | None = None) -> str:
    """Read a session id; an empty answer gives a generated one."""
    source = sys.stdin if input_stream is None else input_stream
    while True:
        print(
            "Enter your session ID (or press Enter for an automatic ID): ",
            end="",
            flush=True,
        )
        session_id = source.readline().strip()
        if not session_id:
            return f"client_{str(uuid.uuid4())[:8]}"
        if len(session_id.encode("utf-8")) > MAX_SESSION_ID_BYTES:
            print(f"The session ID cannot exceed {MAX_SESSION_ID_BYTES} characters.")
            continue
        return session_id


class CalcClient:
    """An authenticated session with the calculation server."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session_id: str,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.session_id = session_id
        self.connected = False
        self._buffer = bytearray()

    @classmethod
    async def connect(
        cls,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        session_id: str = "",
    ) -> "CalcClient":
        """Open a session; raise ConnectionError if the server refuses it."""
        print(f"Connecting to calculation server {host}:{port}...")
        reader, writer = await asyncio.open_connection(host, port)
        client = cls(reader, writer, session_id)
        try:
            await client.send(ProtocolMessage.connect(session_id))
            print("Connection message sent, waiting for confirmation...")
            try:
                reply = await client.receive(DEFAULT_TIMEOUT)
            except TimeoutError as exc:
                raise ConnectionError("Timeout during connection") from exc
            except ProtocolError as exc:
                raise ConnectionError(f"Parse error: {exc}") from exc
            if reply is None:
                raise ConnectionError("Connection closed by the server")
            if reply.type is OperationType.ERROR:
                detail = reply.content
                if detail is None and isinstance(reply.data, dict):
                    detail = reply.data.get("description")
                raise ConnectionError(f"Connection error: {detail or 'Unknown error'}")
            if reply.type is not OperationType.CONNECT_OK:
                raise ConnectionError("Unexpected reply from the server")
        except BaseException:
            await client._close()
            raise
        print("Connection successful!")
        if reply.content is not None:
            print(reply.content)
        client.connected = True
        return client

    async def __aenter__(self) -> "CalcClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self._close()

    async def _close(self) -> None:
        self.connected = False
        self.writer.close()
        with suppress(ConnectionError, OSError):
            await self.writer.wait_closed()

    async def send(self, message: ProtocolMessage) -> None:
        self.writer.write(message.to_bytes())
        await self.writer.drain()

    async def receive(self, timeout: float = DEFAULT_TIMEOUT) -> ProtocolMessage | None:
        """Wait for the next message; None if the server closed the connection.

        Raises TimeoutError when nothing complete arrives in time.
        """

        async def next_frame() -> ProtocolMessage | None:
            while True:
                if len(self._buffer) >= _LENGTH.size:
                    (size,) = _LENGTH.unpack_from(self._buffer)
                    end = _LENGTH.size + size
                    if len(self._buffer) >= end:
                        frame = bytes(self._buffer[:end])
                        del self._buffer[:end]
                        message, _ = ProtocolMessage.from_bytes(frame)
                        return message
                chunk = await self.reader.read(READ_SIZE)
                if not chunk:
                    return None
                self._buffer += chunk

        return await asyncio.wait_for(next_frame(), timeout)

    async def run(self, input_stream: TextIO | None = None) -> list[ProtocolMessage]:
        """Send each command read from ``input_stream``; return the replies received."""
        if not self.connected:
            raise ConnectionError("Not connected to the server")
        source = sys.stdin if input_stream is None else input_stream
        replies: list[ProtocolMessage] = []
        print(_HELP)
        try:
            while True:
                print("calc> ", end="", flush=True)
                line = await asyncio.to_thread(source.readline)
                if not line:
                    break
                command = line.strip()
                if not command:
                    continue
                if command.lower() == "quit":
                    print("Disconnecting...")
                    with suppress(ConnectionError, OSError):
                        await self.send(ProtocolMessage.disconnect(self.session_id))
                    break
                message = parse_command(self.session_id, command)
                if message is None:
                    continue
                try:
                    await self.send(message)
                except (ConnectionError, OSError):
                    print("Send error", file=sys.stderr)
                    break
                try:
                    reply = await self.receive(DEFAULT_TIMEOUT)
                except TimeoutError:
                    print("Timeout - no answer from the server")
                    continue
                except ProtocolError as exc:
                    print(f"Cannot parse the reply: {exc}", file=sys.stderr)
                    continue
                except (ConnectionError, OSError) as exc:
                    print(f"Read error: {exc}", file=sys.stderr)
                    break
                if reply is None:
                    print("Connection closed by the server")
                    break
                replies.append(reply)
                text = describe_response(reply)
                if text is not None:
                    print(text)
        finally:
            self.connected = False
        return replies


async def _run(host: str, port: int, session_id: str) -> int:
    try:
        client = await CalcClient.connect(host, port, session_id)
    except (ConnectionError, OSError) as exc:
        print(f"Cannot connect: {exc}", file=sys.stderr)
        return 1
    async with client:
        try:
            await client.run()
        except (CommandError, ConnectionError, OSError) as exc:
            print(f"Error during session: {exc}", file=sys.stderr)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Remote calculation client.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--session-id", default=None)
    args = parser.parse_args(argv)
    print("=== Remote calculation client ===")
    session_id = args.session_id if args.session_id else ask_session_id()
    try:
        status = asyncio.run(_run(args.host, args.port, session_id))
    except KeyboardInterrupt:
        status = 0
    if status == 0:
        print("Session ended. Goodbye!")
    return status


if __name__ == "__main__":
    sys.exit(main())