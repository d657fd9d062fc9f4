"""A UDP DNS client that resolves names to IPv4 addresses."""

from __future__ import annotations

import argparse
import asyncio
import random
import sys
from typing import Sequence, TextIO

from netlabs.dns import DNS_TYPE_A, DnsError, DnsMessage

DEFAULT_SERVER = "127.0.0.1:8053"
DEFAULT_TIMEOUT = 5.0
MAX_DATAGRAM = 512

RCODE_OK = 0
RCODE_NXDOMAIN = 3
RCODE_NOT_IMPLEMENTED = 4

TEST_DOMAINS = (
    "exemple.com",
    "test.local",
    "serveur.esgi",
    "www.exemple.com",
    "inexistant.com",
)


def _parse_server(server: str | tuple[str, int]) -> tuple[str, int]:
    if isinstance(server, tuple):
        host, port = server
        return host, int(port)
    host, sep, port_text = server.rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise ValueError(f"invalid server address: {server!r}")
    port = int(port_text)
    if port > 0xFFFF:
        raise ValueError(f"invalid server port: {port}")
    return host.strip("[]"), port


def extract_ipv4(response: DnsMessage, request_id: int) -> str | None:
    """Return the first IPv4 address answered for ``request_id``, or None."""
    if response.header.ident != request_id:
        print(
            f"WARNING: wrong response ID (expected: {request_id}, "
            f"received: {response.header.ident})"
        )
        return None

    rcode = response.header.rcode
    if rcode == RCODE_NXDOMAIN:
        print("Domain does not exist (NXDOMAIN)")
        return None
    if rcode == RCODE_NOT_IMPLEMENTED:
        print("Query type not supported by the server")
        return None
    if rcode != RCODE_OK:
        print(f"DNS server error (code: {rcode})")
        return None

    if not response.answers:
        print("No answer found")
        return None
    for answer in response.answers:
        if answer.rtype == DNS_TYPE_A and len(answer.rdata) == 4:
            ip = ".".join(str(octet) for octet in answer.rdata)
            print(f"{answer.name} -> {ip} (TTL: {answer.ttl}s)")
            return ip
    print("No IPv4 answer found")
    return None


class _ReplyProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.replies: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr) -> None:
        self.replies.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.replies.put_nowait(exc)


class DnsClient:
    """Sends A queries to one DNS server and waits for the replies."""

    def __init__(
        self,
        server: str | tuple[str, int] = DEFAULT_SERVER,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.server = _parse_server(server)
        self.timeout = timeout

    async def resolve(self, domain: str) -> str | None:
        """Resolve ``domain`` to a dotted IPv4 address, or None if it cannot be."""
        print(f"\nResolving '{domain}'...")
        request_id = random.randint(0, 0xFFFF)
        request = DnsMessage.query(request_id, domain, DNS_TYPE_A).to_bytes()

        loop = asyncio.get_running_loop()
        local = ("::", 0) if ":" in self.server[0] else ("0.0.0.0", 0)
        transport, protocol = await loop.create_datagram_endpoint(
            _ReplyProtocol, local_addr=local
        )
        try:
            print(f"Sending request (ID: {request_id}, {len(request)} bytes)")
            transport.sendto(request, self.server)
            try:
                item = await asyncio.wait_for(protocol.replies.get(), self.timeout)
            except TimeoutError:
                print("Timeout - no answer from the DNS server")
                return None
            if isinstance(item, Exception):
                print(f"Receive error: {item}", file=sys.stderr)
                raise item
            data, addr = item
            data = data[:MAX_DATAGRAM]
            print(f"Response received from {addr[0]}:{addr[1]} ({len(data)} bytes)")
            try:
                response = DnsMessage.from_bytes(data)
            except DnsError as exc:
                print(f"Cannot parse DNS response: {exc}", file=sys.stderr)
                return None
            return extract_ipv4(response, request_id)
        finally:
            transport.close()

    async def interactive(self, input_stream: TextIO | None = None) -> list[tuple[str, str | None]]:
        """Resolve each name read from ``input_stream`` until 'quit', 'exit' or end of input."""
        source = sys.stdin if input_stream is None else input_stream
        results: list[tuple[str, str | None]] = []
        print("\n=== Interactive DNS client ===")
        print("Type a domain name to resolve, or 'quit' to leave.")
        print("Configured examples: exemple.com, test.local, serveur.esgi\n")
        while True:
            print("Domain to resolve: ", end="", flush=True)
            line = await asyncio.to_thread(source.readline)
            if not line:
                break
            domain = line.strip()
            if not domain:
                continue
            if domain.lower() in ("quit", "exit"):
                print("Goodbye!")
                break
            try:
                ip = await self.resolve(domain)
            except OSError as exc:
                print(f"Error: {exc}", file=sys.stderr)
                ip = None
            if ip is None:
                print(f"Cannot resolve '{domain}'")
            else:
                print(f"Resolution succeeded: {domain} -> {ip}")
            results.append((domain, ip))
        return results


async def _run(server: str, timeout: float) -> None:
    client = DnsClient(server, timeout)
    print(f"DNS client using server {client.server[0]}:{client.server[1]}")
    print("\n=== Automatic tests ===")
    for domain in TEST_DOMAINS:
        try:
            await client.resolve(domain)
        except OSError as exc:
            print(f"Error: {exc}", file=sys.stderr)
        await asyncio.sleep(0.5)
    await client.interactive()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Simple DNS client.")
    parser.add_argument("--server", default=DEFAULT_SERVER)
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT)
    args = parser.parse_args(argv)
    print("Starting DNS client...")
    try:
        asyncio.run(_run(args.server, args.timeout))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())