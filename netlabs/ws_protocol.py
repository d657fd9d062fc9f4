"""Message format for the real-time WebSocket chat."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

MAX_USERNAME_BYTES = 50
META_FILENAME = "nom_fichier"
META_SIZE = "taille"


class WsMessageType(Enum):
    """Kinds of chat messages; values are their names on the wire."""

    CHAT = "Chat"
    BINARY = "Binaire"
    CONNECTION = "Connexion"
    DISCONNECTION = "Deconnexion"
    NOTIFICATION = "Notification"
    USER_LIST_REQUEST = "DemandeUtilisateurs"
    USER_LIST = "ListeUtilisateurs"
    PING = "Ping"
    PONG = "Pong"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def validate_username(name: str) -> None:
    """Raise ValueError if ``name`` is empty, too long or contains a space."""
    if not name:
        raise ValueError("username cannot be empty")
    if len(name.encode("utf-8")) > MAX_USERNAME_BYTES:
        raise ValueError(f"username cannot exceed {MAX_USERNAME_BYTES} characters")
    if " " in name:
        raise ValueError("username cannot contain spaces")


def new_session_id() -> str:
    """Return a fresh random session identifier."""
    return str(uuid.uuid4())


@dataclass
class WsMessage:
    """One chat message, serialised as JSON over text or binary frames."""

    type: WsMessageType
    user: str | None = None
    content: str | None = None
    binary_data: bytes | None = None
    metadata: Any = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def chat(cls, user: str, content: str) -> "WsMessage":
        return cls(WsMessageType.CHAT, user=user, content=content)

    @classmethod
    def binary(cls, user: str, data: bytes, filename: str | None = None) -> "WsMessage":
        metadata: dict[str, Any] = {}
        if filename is not None:
            metadata[META_FILENAME] = filename
        metadata[META_SIZE] = len(data)
        return cls(WsMessageType.BINARY, user=user, binary_data=bytes(data), metadata=metadata)

    @classmethod
    def connection(cls, user: str) -> "WsMessage":
        return cls(WsMessageType.CONNECTION, user=user)

    @classmethod
    def disconnection(cls, user: str) -> "WsMessage":
        return cls(WsMessageType.DISCONNECTION, user=user, content=f"{user} left the chat")

    @classmethod
    def notification(cls, content: str) -> "WsMessage":
        return cls(WsMessageType.NOTIFICATION, content=content)

    @classmethod
    def user_list_request(cls) -> "WsMessage":
        return cls(WsMessageType.USER_LIST_REQUEST)

    @classmethod
    def user_list(cls, users: list[str]) -> "WsMessage":
        return cls(WsMessageType.USER_LIST, metadata=list(users))

    @classmethod
    def ping(cls) -> "WsMessage":
        return cls(WsMessageType.PING)

    @classmethod
    def pong(cls, ping_id: uuid.UUID) -> "WsMessage":
        return cls(WsMessageType.PONG, metadata=str(ping_id))

    @property
    def filename(self) -> str | None:
        """The file name carried in the metadata, if any."""
        if isinstance(self.metadata, dict):
            name = self.metadata.get(META_FILENAME)
            if isinstance(name, str):
                return name
        return None

    def to_json(self) -> str:
        timestamp = self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        payload = {
            "id": str(self.id),
            "type_message": self.type.value,
            "utilisateur": self.user,
            "contenu": self.content,
            "donnees_binaires": None if self.binary_data is None else list(self.binary_data),
            "metadonnees": self.metadata,
            "timestamp": timestamp,
        }
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_json(cls, text: str) -> "WsMessage":
        """Parse a message; raise ValueError if the JSON is not a valid message."""
        payload = json.loads(text)
        if not isinstance(payload, dict):
            raise ValueError("message must be a JSON object")
        try:
            raw_data = payload.get("donnees_binaires")
            return cls(
                type=WsMessageType(payload["type_message"]),
                user=payload.get("utilisateur"),
                content=payload.get("contenu"),
                binary_data=None if raw_data is None else bytes(raw_data),
                metadata=payload.get("metadonnees"),
                id=uuid.UUID(payload["id"]),
                timestamp=datetime.fromisoformat(payload["timestamp"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"invalid message: {exc}") from exc

    def is_binary(self) -> bool:
        return self.type is WsMessageType.BINARY or self.binary_data is not None

    def to_frame(self) -> str | bytes:
        """Return bytes for a binary frame or str for a text frame."""
        text = self.to_json()
        return text.encode("utf-8") if self.is_binary() else text

    @classmethod
    def from_frame(cls, frame: str | bytes | bytearray | memoryview) -> "WsMessage":
        if isinstance(frame, str):
            return cls.from_json(frame)
        if isinstance(frame, (bytes, bytearray, memoryview)):
            return cls.from_json(bytes(frame).decode("utf-8"))
        raise TypeError(f"unsupported WebSocket frame type: {type(frame).__name__}")

    def __str__(self) -> str:
        stamp = self.timestamp.strftime("%H:%M:%S")
        kind = self.type
        if kind is WsMessageType.CHAT:
            return f"[{stamp}] {self.user or 'Anonymous'}: {self.content or ''}"
        if kind is WsMessageType.BINARY:
            size = len(self.binary_data) if self.binary_data is not None else 0
            name = self.filename or "file"
            return f"[{stamp}] {self.user or 'Anonymous'} sent a file: {name} ({size} bytes)"
        if kind is WsMessageType.CONNECTION:
            return f"[{stamp}] {self.user or 'Unknown'} connected"
        if kind is WsMessageType.DISCONNECTION:
            return f"[{stamp}] {self.content or 'A user disconnected'}"
        if kind is WsMessageType.NOTIFICATION:
            return f"[{stamp}] SYSTEM: {self.content or 'Notification'}"
        if kind is WsMessageType.USER_LIST:
            return f"[{stamp}] Connected users"
        return f"[{stamp}] {kind.value}"