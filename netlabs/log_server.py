"""A TCP server that timestamps every received line into a log file."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Sequence

DEFAULT_LOG_PATH = "logs/server.log"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def format_log_entry(message: str, now: datetime | None = None) -> str:
    """Return the log line for a message, stamped with the UTC time."""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return f"[{now.strftime('%Y-%m-%d %H:%M:%S')} UTC] {message}\n"


class LogServer:
    """Appends each non-empty line from each client to a shared log file."""

    def __init__(self, log_path: str | Path = DEFAULT_LOG_PATH) -> None:
        self.log_path = Path(log_path)
        self._lock = asyncio.Lock()

    def _append(self, entry: str) -> None:
        with self.log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(entry)
            log_file.flush()

    async def handle_client(self, reader: asyncio.StreamReader, writer) -> None:
        """Read lines until the client closes, logging each non-empty one."""
        try:
            while raw := await reader.readline():
                message = raw.decode("utf-8").strip()
                if not message:
                    continue
                entry = format_log_entry(message)
                async with self._lock:
                    self._append(entry)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _on_connect(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        print(f"New connection from {peer}")
        try:
            await self.handle_client(reader, writer)
        except Exception as exc:  # one client's failure must not stop the server
            print(f"Error while handling client {peer}: {exc}", file=sys.stderr)

    async def serve(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Accept clients until cancelled."""
        self.log_path.open("a", encoding="utf-8").close()
        server = await asyncio.start_server(self._on_connect, host, port)
        print(f"Logging server started on {host}:{port}")
        async with server:
            await server.serve_forever()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Concurrent logging server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--log-file", default=DEFAULT_LOG_PATH)
    args = parser.parse_args(argv)
    try:
        asyncio.run(LogServer(args.log_file).serve(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())