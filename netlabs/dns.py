"""DNS message encoding and decoding for a small subset of RFC 1035."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import Sequence

DNS_TYPE_A = 1
DNS_TYPE_AAAA = 28
DNS_TYPE_CNAME = 5
DNS_CLASS_IN = 1

HEADER_SIZE = 12
FLAG_RESPONSE = 0x8000
FLAG_RECURSION_DESIRED = 0x0100
RCODE_MASK = 0x000F

_HEADER = struct.Struct(">6H")
_QUESTION_TAIL = struct.Struct(">HH")
_ANSWER_TAIL = struct.Struct(">HHIH")


class DnsError(ValueError):
    """Raised when a DNS message cannot be decoded."""


def encode_domain_name(domain: str) -> bytes:
    """Encode a dotted name as length-prefixed labels ending with a zero byte."""
    encoded = bytearray()
    for label in domain.split("."):
        if label:
            raw = label.encode("utf-8")
            encoded.append(len(raw) & 0xFF)
            encoded += raw
    encoded.append(0)
    return bytes(encoded)


def decode_domain_name(data: bytes, offset: int) -> tuple[str, int]:
    """Decode a name starting at ``offset``; return it and the position after it."""
    labels: list[str] = []
    pos = offset
    while True:
        if pos >= len(data):
            raise DnsError("insufficient data for domain name")
        length = data[pos]
        pos += 1
        if length == 0:
            break
        if pos + length > len(data):
            raise DnsError("insufficient data for domain label")
        labels.append(data[pos:pos + length].decode("utf-8", errors="replace"))
        pos += length
    return ".".join(labels), pos


@dataclass
class DnsHeader:
    """The fixed twelve-byte DNS header."""

    ident: int
    flags: int = 0
    qdcount: int = 0
    ancount: int = 0
    nscount: int = 0
    arcount: int = 0

    @classmethod
    def new(cls, ident: int, is_response: bool = False) -> "DnsHeader":
        """Build a header with recursion desired, marked as a response if asked."""
        flags = FLAG_RECURSION_DESIRED
        if is_response:
            flags |= FLAG_RESPONSE
        return cls(ident, flags)

    @property
    def rcode(self) -> int:
        return self.flags & RCODE_MASK

    def to_bytes(self) -> bytes:
        return _HEADER.pack(
            self.ident, self.flags, self.qdcount,
            self.ancount, self.nscount, self.arcount,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "DnsHeader":
        if len(data) < HEADER_SIZE:
            raise DnsError("insufficient data for header")
        return cls(*_HEADER.unpack_from(data))


@dataclass
class DnsQuestion:
    """A question entry: name, type and class."""

    qname: str
    qtype: int = DNS_TYPE_A
    qclass: int = DNS_CLASS_IN

    def to_bytes(self) -> bytes:
        return encode_domain_name(self.qname) + _QUESTION_TAIL.pack(self.qtype, self.qclass)


@dataclass
class DnsAnswer:
    """A resource record in the answer section."""

    name: str
    rtype: int
    rclass: int
    ttl: int
    rdlength: int
    rdata: bytes

    @classmethod
    def a_record(cls, domain: str, ip: Sequence[int], ttl: int) -> "DnsAnswer":
        """Build an IPv4 address record."""
        rdata = bytes(ip)
        return cls(domain, DNS_TYPE_A, DNS_CLASS_IN, ttl, 4, rdata)

    def to_bytes(self) -> bytes:
        return (
            encode_domain_name(self.name)
            + _ANSWER_TAIL.pack(self.rtype, self.rclass, self.ttl, self.rdlength)
            + bytes(self.rdata)
        )


@dataclass
class DnsMessage:
    """A complete DNS message with questions and answers."""

    header: DnsHeader
    questions: list[DnsQuestion] = field(default_factory=list)
    answers: list[DnsAnswer] = field(default_factory=list)

    @classmethod
    def query(cls, ident: int, domain: str, qtype: int = DNS_TYPE_A) -> "DnsMessage":
        header = DnsHeader.new(ident, is_response=False)
        header.qdcount = 1
        return cls(header, [DnsQuestion(domain, qtype)])

    @classmethod
    def response_to(cls, query: "DnsMessage") -> "DnsMessage":
        header = DnsHeader.new(query.header.ident, is_response=True)
        header.qdcount = query.header.qdcount
        questions = [DnsQuestion(q.qname, q.qtype, q.qclass) for q in query.questions]
        return cls(header, questions)

    def to_bytes(self) -> bytes:
        parts = [self.header.to_bytes()]
        parts.extend(q.to_bytes() for q in self.questions)
        parts.extend(a.to_bytes() for a in self.answers)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "DnsMessage":
        if len(data) < HEADER_SIZE:
            raise DnsError("insufficient data for header")
        header = DnsHeader.from_bytes(data[:HEADER_SIZE])
        pos = HEADER_SIZE

        questions: list[DnsQuestion] = []
        for _ in range(header.qdcount):
            if pos >= len(data):
                raise DnsError("insufficient data for questions")
            name, pos = decode_domain_name(data, pos)
            if pos + _QUESTION_TAIL.size > len(data):
                raise DnsError("insufficient data for question type/class")
            qtype, qclass = _QUESTION_TAIL.unpack_from(data, pos)
            pos += _QUESTION_TAIL.size
            questions.append(DnsQuestion(name, qtype, qclass))

        answers: list[DnsAnswer] = []
        for _ in range(header.ancount):
            if pos >= len(data):
                break
            name, pos = decode_domain_name(data, pos)
            if pos + _ANSWER_TAIL.size > len(data):
                break
            rtype, rclass, ttl, rdlength = _ANSWER_TAIL.unpack_from(data, pos)
            pos += _ANSWER_TAIL.size
            if pos + rdlength > len(data):
                break
            rdata = bytes(data[pos:pos + rdlength])
            pos += rdlength
            answers.append(DnsAnswer(name, rtype, rclass, ttl, rdlength, rdata))

        return cls(header, questions, answers)