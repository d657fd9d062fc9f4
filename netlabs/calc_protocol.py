"""Length-prefixed JSON protocol for the remote calculation service."""

from __future__ import annotations

import json
import math
import re
import struct
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, StrEnum
from typing import Any

FACTORIAL_LIMIT = 170
FIBONACCI_LIMIT = 78

_LENGTH = struct.Struct(">I")
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")


class ProtocolError(ValueError):
    """Raised when bytes or JSON cannot be decoded into a protocol message."""


class OperationType(Enum):
    """Kinds of protocol messages; values are their names on the wire."""

    CONNECT = "Connexion"
    CONNECT_OK = "ConnexionOk"
    CALCULATION = "Calcul"
    CALCULATION_RESULT = "ResultatCalcul"
    SERVER_INFO = "InfoServeur"
    SERVER_INFO_RESPONSE = "ReponseInfoServeur"
    STATISTICS = "Statistiques"
    STATISTICS_RESPONSE = "ReponseStatistiques"
    ERROR = "Erreur"
    PING = "Ping"
    PONG = "Pong"
    DISCONNECT = "Deconnexion"


class MathOperation(Enum):
    """Supported calculations; values are their names on the wire."""

    ADDITION = "Addition"
    SUBTRACTION = "Soustraction"
    MULTIPLICATION = "Multiplication"
    DIVISION = "Division"
    POWER = "Puissance"
    SQUARE_ROOT = "Racine"
    FACTORIAL = "Factorielle"
    FIBONACCI = "Fibonacci"


class ErrorCode(StrEnum):
    """Error codes carried in error messages."""

    INVALID_SESSION = "INVALID_SESSION"
    INVALID_OPERATION = "INVALID_OPERATION"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    DIVISION_BY_ZERO = "DIVISION_BY_ZERO"
    MATH_OVERFLOW = "MATH_OVERFLOW"
    MALFORMED_MESSAGE = "MALFORMED_MESSAGE"
    NOT_AUTHENTICATED = "NOT_AUTHENTICATED"
    SERVER_OVERLOADED = "SERVER_OVERLOADED"


BINARY_OPERATIONS = frozenset({
    MathOperation.ADDITION,
    MathOperation.SUBTRACTION,
    MathOperation.MULTIPLICATION,
    MathOperation.DIVISION,
    MathOperation.POWER,
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_number(value: float) -> str:
    """Format a float the short way: 8.0 as '8', 2.5 as '2.5'."""
    if math.isfinite(value) and value.is_integer():
        return str(int(value))
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return repr(value)


def _debug_number(value: float) -> str:
    if math.isfinite(value) and value.is_integer() and abs(value) < 1e16:
        return f"{int(value)}.0"
    return format_number(value)


def _finite_or_none(value: float | None) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return value


@dataclass
class CalcRequest:
    """A calculation: an operation with one or two operands."""

    operation: MathOperation
    operand1: float
    operand2: float | None = None

    def __str__(self) -> str:
        second = "None" if self.operand2 is None else f"Some({_debug_number(self.operand2)})"
        return f"{self.operation.value}({format_number(self.operand1)}, {second})"

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "operande1": _finite_or_none(self.operand1),
            "operande2": _finite_or_none(self.operand2),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "CalcRequest":
        if not isinstance(payload, dict):
            raise ProtocolError("calculation request must be a JSON object")
        try:
            second = payload.get("operande2")
            return cls(
                operation=MathOperation(payload["operation"]),
                operand1=float(payload["operande1"]),
                operand2=None if second is None else float(second),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProtocolError(f"invalid calculation request: {exc}") from exc


def _powf(base: float, exponent: float) -> float:
    try:
        return math.pow(base, exponent)
    except OverflowError:
        odd = math.isfinite(exponent) and abs(math.fmod(exponent, 2.0)) == 1.0
        return -math.inf if base < 0 and odd else math.inf
    except ValueError:
        if base == 0:
            odd = abs(math.fmod(exponent, 2.0)) == 1.0
            return -math.inf if math.copysign(1.0, base) < 0 and odd else math.inf
        return math.nan


def _as_natural(value: float, name: str, limit: int) -> int:
    if value < 0 or not math.isfinite(value) or not value.is_integer():
        raise ValueError(f"{name} requires a non-negative integer")
    if value > limit:
        raise ValueError(f"{name} too large (limit: {limit})")
    return int(value)


def compute(request: CalcRequest) -> float:
    """Carry out a calculation; raise ValueError when it cannot be done."""
    op = request.operation
    a = request.operand1
    if op in BINARY_OPERATIONS:
        b = request.operand2
        if b is None:
            raise ValueError(f"Operation {op.value} requires 2 operands")
        if op is MathOperation.ADDITION:
            return a + b
        if op is MathOperation.SUBTRACTION:
            return a - b
        if op is MathOperation.MULTIPLICATION:
            return a * b
        if op is MathOperation.DIVISION:
            if b == 0.0:
                raise ValueError("Division by zero")
            return a / b
        return _powf(a, b)
    if op is MathOperation.SQUARE_ROOT:
        if a < 0.0:
            raise ValueError("Square root of a negative number")
        return math.sqrt(a)
    if op is MathOperation.FACTORIAL:
        n = _as_natural(a, "Factorial", FACTORIAL_LIMIT)
        return math.prod(range(1, n + 1), start=1.0)
    n = _as_natural(a, "Fibonacci", FIBONACCI_LIMIT)
    if n <= 1:
        return float(n)
    previous, current = 0.0, 1.0
    for _ in range(2, n + 1):
        previous, current = current, previous + current
    return current


@dataclass
class ProtocolMessage:
    """One protocol message, sent as a 4-byte big-endian length then JSON."""

    type: OperationType
    session_id: str | None = None
    request: CalcRequest | None = None
    result: float | None = None
    content: str | None = None
    data: Any = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def connect(cls, session_id: str) -> "ProtocolMessage":
        return cls(OperationType.CONNECT, session_id=session_id)

    @classmethod
    def connect_ok(cls, welcome: str) -> "ProtocolMessage":
        return cls(OperationType.CONNECT_OK, content=welcome)

    @classmethod
    def calc_request(cls, session_id: str, request: CalcRequest) -> "ProtocolMessage":
        return cls(OperationType.CALCULATION, session_id=session_id, request=request)

    @classmethod
    def calc_result(
        cls, request_id: uuid.UUID, result: float, details: str | None = None
    ) -> "ProtocolMessage":
        """Build a result carrying the id of the request it answers."""
        return cls(
            OperationType.CALCULATION_RESULT, result=result, content=details, id=request_id
        )

    @classmethod
    def server_info_request(cls, session_id: str) -> "ProtocolMessage":
        return cls(OperationType.SERVER_INFO, session_id=session_id)

    @classmethod
    def server_info_response(cls, info: Any) -> "ProtocolMessage":
        return cls(OperationType.SERVER_INFO_RESPONSE, data=info)

    @classmethod
    def stats_request(cls, session_id: str) -> "ProtocolMessage":
        return cls(OperationType.STATISTICS, session_id=session_id)

    @classmethod
    def stats_response(cls, stats: Any) -> "ProtocolMessage":
        return cls(OperationType.STATISTICS_RESPONSE, data=stats)

    @classmethod
    def error(cls, code: str, description: str) -> "ProtocolMessage":
        return cls(OperationType.ERROR, data={"code": str(code), "description": description})

    @classmethod
    def ping(cls) -> "ProtocolMessage":
        return cls(OperationType.PING)

    @classmethod
    def pong(cls, ping_id: uuid.UUID) -> "ProtocolMessage":
        return cls(OperationType.PONG, data=str(ping_id))

    @classmethod
    def disconnect(cls, session_id: str) -> "ProtocolMessage":
        return cls(OperationType.DISCONNECT, session_id=session_id)

    def to_json(self) -> str:
        timestamp = self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        payload = {
            "id": str(self.id),
            "type_operation": self.type.value,
            "session_id": self.session_id,
            "requete_calcul": None if self.request is None else self.request.to_dict(),
            "resultat": _finite_or_none(self.result),
            "contenu": self.content,
            "donnees": self.data,
            "timestamp": timestamp,
        }
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"), allow_nan=False)

    @classmethod
    def from_json(cls, text: str) -> "ProtocolMessage":
        """Parse a message; raise ProtocolError if it is not a valid message."""
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ProtocolError("message must be a JSON object")
        try:
            raw_request = payload.get("requete_calcul")
            raw_result = payload.get("resultat")
            raw_stamp = payload["timestamp"]
            if not isinstance(raw_stamp, str):
                raise TypeError("timestamp must be a string")
            return cls(
                type=OperationType(payload["type_operation"]),
                session_id=payload.get("session_id"),
                request=None if raw_request is None else CalcRequest.from_dict(raw_request),
                result=None if raw_result is None else float(raw_result),
                content=payload.get("contenu"),
                data=payload.get("donnees"),
                id=uuid.UUID(payload["id"]),
                timestamp=datetime.fromisoformat(_EXCESS_FRACTION.sub(r"\1", raw_stamp)),
            )
        except ProtocolError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ProtocolError(f"invalid message: {exc}") from exc

    def to_bytes(self) -> bytes:
        body = self.to_json().encode("utf-8")
        return _LENGTH.pack(len(body)) + body

    @classmethod
    def from_bytes(cls, data: bytes) -> tuple["ProtocolMessage", int]:
        """Decode one framed message; return it and the number of bytes consumed."""
        if len(data) < _LENGTH.size:
            raise ProtocolError("insufficient data for the size prefix")
        (size,) = _LENGTH.unpack_from(data)
        end = _LENGTH.size + size
        if len(data) < end:
            raise ProtocolError("insufficient data for the message")
        try:
            text = bytes(data[_LENGTH.size:end]).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"message is not valid UTF-8: {exc}") from exc
        return cls.from_json(text), end

    def __str__(self) -> str:
        stamp = self.timestamp.strftime("%H:%M:%S")
        kind = self.type
        if kind is OperationType.CALCULATION:
            if self.request is None:
                return f"[{stamp}] Invalid calculation"
            return f"[{stamp}] Calcul: {self.request}"
        if kind is OperationType.CALCULATION_RESULT:
            value = 0.0 if self.result is None else self.result
            return f"[{stamp}] Result: {format_number(value)}"
        if kind is OperationType.ERROR:
            return f"[{stamp}] ERROR: {self.content or 'Unknown error'}"
        return f"[{stamp}] {kind.value}"