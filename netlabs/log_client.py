"""A TCP client that sends tagged lines to the logging server."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from contextlib import suppress
from typing import Sequence, TextIO

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


class LogClient:
    """A connection to the logging server, tagging messages with its local port."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.port: int = writer.get_extra_info("sockname")[1]

    @classmethod
    async def connect(cls, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> "LogClient":
        reader, writer = await asyncio.open_connection(host, port)
        return cls(reader, writer)

    async def __aenter__(self) -> "LogClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def send_message(self, content: str) -> None:
        self.writer.write(f"[Client:{self.port}] {content}\n".encode("utf-8"))
        await self.writer.drain()

    async def send_burst(self, count: int, start_time: float | None = None, delay: float = 0.01) -> None:
        """Send ``count`` numbered messages, ``delay`` seconds apart."""
        start = time.monotonic() if start_time is None else start_time
        for index in range(1, count + 1):
            elapsed_ms = int((time.monotonic() - start) * 1000)
            await self.send_message(f"Message rapide {index} - {elapsed_ms}ms")
            await asyncio.sleep(delay)

    async def interactive(self, stream: TextIO | None = None) -> None:
        """Send every line read from ``stream`` until it ends."""
        source = sys.stdin if stream is None else stream
        print("Type your messages (Ctrl+C to quit):")
        while True:
            print("> ", end="", flush=True)
            line = await asyncio.to_thread(source.readline)
            if not line:
                break
            await self.send_message(line.strip())

    async def close(self) -> None:
        self.writer.close()
        with suppress(ConnectionError, OSError):
            await self.writer.wait_closed()


async def _run(host: str, port: int) -> None:
    async with await LogClient.connect(host, port) as client:
        print(f"Connected from port {client.port}!")
        print("Sending a burst of messages to test concurrency...")
        await client.send_burst(10, time.monotonic(), 0.01)
        print("Messages sent!")
        await client.interactive()
        print("Disconnecting...")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Logging server client.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    try:
        asyncio.run(_run(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())