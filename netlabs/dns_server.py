"""A small UDP DNS server answering A queries from a fixed table."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Mapping, Sequence

from netlabs.dns import DNS_TYPE_A, DnsAnswer, DnsError, DnsMessage

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8053
DEFAULT_TTL = 300
RCODE_NXDOMAIN = 0x0003
RCODE_NOT_IMPLEMENTED = 0x0004

DEFAULT_DOMAINS: dict[str, tuple[int, int, int, int]] = {
    "exemple.com": (192, 168, 1, 100),
    "test.local": (127, 0, 0, 1),
    "serveur.esgi": (10, 0, 0, 50),
    "www.exemple.com": (192, 168, 1, 101),
}


def _format_ip(ip: Sequence[int]) -> str:
    return ".".join(str(octet) for octet in ip)


class DnsServer:
    """Resolves names from an in-memory table of IPv4 addresses."""

    def __init__(self, domains: Mapping[str, Sequence[int]] | None = None) -> None:
        source = DEFAULT_DOMAINS if domains is None else domains
        self.domains = {name: tuple(ip) for name, ip in source.items()}

    def handle_request(self, data: bytes) -> bytes | None:
        """Build the wire response to a request, or None if it cannot be parsed."""
        try:
            query = DnsMessage.from_bytes(data)
        except DnsError as exc:
            print(f"Cannot parse DNS request: {exc}", file=sys.stderr)
            return None

        print(f"Request ID: {query.header.ident}")
        response = DnsMessage.response_to(query)

        for question in query.questions:
            print(f"Question: {question.qname} (type: {question.qtype})")
            if question.qtype != DNS_TYPE_A:
                print(f"Unsupported query type: {question.qtype}")
                response.header.flags |= RCODE_NOT_IMPLEMENTED
                continue
            ip = self.domains.get(question.qname)
            if ip is None:
                print(f"Unknown domain: {question.qname}")
                response.header.flags |= RCODE_NXDOMAIN
                continue
            response.answers.append(DnsAnswer.a_record(question.qname, ip, DEFAULT_TTL))
            response.header.ancount += 1
            print(f"Answer: {question.qname} -> {_format_ip(ip)}")

        return response.to_bytes()

    async def serve(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
        """Listen for UDP requests until cancelled."""
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DnsProtocol(self), local_addr=(host, port)
        )
        print(f"DNS server listening on {host}:{port}")
        print("Configured domains:")
        for name, ip in self.domains.items():
            print(f"   {name} -> {_format_ip(ip)}")
        try:
            await asyncio.Future()
        finally:
            transport.close()


class _DnsProtocol(asyncio.DatagramProtocol):
    def __init__(self, server: DnsServer) -> None:
        self._server = server
        self._transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport) -> None:
        self._transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        print(f"Request from {addr[0]}:{addr[1]} ({len(data)} bytes)")
        reply = self._server.handle_request(data)
        if reply is not None and self._transport is not None:
            self._transport.sendto(reply, addr)
            print(f"Response sent to {addr[0]}:{addr[1]} ({len(reply)} bytes)")

    def error_received(self, exc: Exception) -> None:
        print(f"Receive error: {exc}", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Simple DNS server.")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    args = parser.parse_args(argv)
    print("Starting simple DNS server...")
    try:
        asyncio.run(DnsServer().serve(args.host, args.port))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())