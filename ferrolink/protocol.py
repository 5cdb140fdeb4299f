"""Wire protocol shared by the agent and the client.

Every message is one line of compact JSON. Messages without fields are sent
as a bare string (``"Ping"``); all others as an object with a single key
naming the message and holding its fields.
"""

from __future__ import annotations

import json
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1
_U8_MAX = 2**8 - 1


class ProtocolError(ValueError):
    """Raised when a line cannot be decoded into a protocol message."""


# --- field validation -------------------------------------------------------


def _object(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise ProtocolError(f"invalid type for {what}: expected an object")
    return value


def _field(obj: dict, name: str) -> Any:
    try:
        return obj[name]
    except KeyError:
        raise ProtocolError(f"missing field `{name}`") from None


def _uint(value: Any, name: str, maximum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"invalid type for `{name}`: expected an unsigned integer")
    if not 0 <= value <= maximum:
        raise ProtocolError(f"invalid value for `{name}`: {value} is out of range")
    return value


def _float(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolError(f"invalid type for `{name}`: expected a number")
    return float(value)


def _string(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"invalid type for `{name}`: expected a string")
    return value


def _optional_string(value: Any, name: str) -> str | None:
    return None if value is None else _string(value, name)


def _boolean(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise ProtocolError(f"invalid type for `{name}`: expected a boolean")
    return value


def _uuid(value: Any, name: str) -> uuid.UUID:
    text = _string(value, name)
    try:
        return uuid.UUID(text)
    except ValueError:
        raise ProtocolError(f"invalid value for `{name}`: {text!r} is not a UUID") from None


def _byte_list(value: Any, name: str) -> bytes:
    if not isinstance(value, list):
        raise ProtocolError(f"invalid type for `{name}`: expected a sequence of bytes")
    return bytes(_uint(item, name, _U8_MAX) for item in value)


def _encode_float(value: float) -> float | None:
    # Non-finite values have no JSON form; they are written as null.
    return value if math.isfinite(value) else None


# --- metrics ----------------------------------------------------------------


@dataclass
class MemoryInfo:
    """Memory usage of the monitored machine."""

    total_bytes: int
    used_bytes: int
    available_bytes: int
    usage_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_bytes": self.total_bytes,
            "used_bytes": self.used_bytes,
            "available_bytes": self.available_bytes,
            "usage_percent": _encode_float(self.usage_percent),
        }

    @classmethod
    def from_dict(cls, value: Any) -> MemoryInfo:
        obj = _object(value, "MemoryInfo")
        return cls(
            total_bytes=_uint(_field(obj, "total_bytes"), "total_bytes", _U64_MAX),
            used_bytes=_uint(_field(obj, "used_bytes"), "used_bytes", _U64_MAX),
            available_bytes=_uint(
                _field(obj, "available_bytes"), "available_bytes", _U64_MAX
            ),
            usage_percent=_float(_field(obj, "usage_percent"), "usage_percent"),
        )


@dataclass
class DiskInfo:
    """Usage of one mounted disk."""

    name: str
    mount_point: str
    total_bytes: int
    used_bytes: int
    available_bytes: int
    usage_percent: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mount_point": self.mount_point,
            "total_bytes": self.total_bytes,
            "used_bytes": self.used_bytes,
            "available_bytes": self.available_bytes,
            "usage_percent": _encode_float(self.usage_percent),
        }

    @classmethod
    def from_dict(cls, value: Any) -> DiskInfo:
        obj = _object(value, "DiskInfo")
        return cls(
            name=_string(_field(obj, "name"), "name"),
            mount_point=_string(_field(obj, "mount_point"), "mount_point"),
            total_bytes=_uint(_field(obj, "total_bytes"), "total_bytes", _U64_MAX),
            used_bytes=_uint(_field(obj, "used_bytes"), "used_bytes", _U64_MAX),
            available_bytes=_uint(
                _field(obj, "available_bytes"), "available_bytes", _U64_MAX
            ),
            usage_percent=_float(_field(obj, "usage_percent"), "usage_percent"),
        )


@dataclass
class SystemMetrics:
    """A snapshot of CPU, memory and disk usage."""

    cpu_usage_percent: float
    memory: MemoryInfo
    disks: list[DiskInfo] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpu_usage_percent": _encode_float(self.cpu_usage_percent),
            "memory": self.memory.to_dict(),
            "disks": [disk.to_dict() for disk in self.disks],
        }

    @classmethod
    def from_dict(cls, value: Any) -> SystemMetrics:
        obj = _object(value, "SystemMetrics")
        disks = _field(obj, "disks")
        if not isinstance(disks, list):
            raise ProtocolError("invalid type for `disks`: expected a sequence")
        return cls(
            cpu_usage_percent=_float(
                _field(obj, "cpu_usage_percent"), "cpu_usage_percent"
            ),
            memory=MemoryInfo.from_dict(_field(obj, "memory")),
            disks=[DiskInfo.from_dict(disk) for disk in disks],
        )


# --- messages ---------------------------------------------------------------


@dataclass(frozen=True)
class Ping:
    """Liveness probe sent by the client."""

    TAG: ClassVar[str] = "Ping"
    UNIT: ClassVar[bool] = True


@dataclass(frozen=True)
class Pong:
    """Answer to a ping."""

    TAG: ClassVar[str] = "Pong"
    UNIT: ClassVar[bool] = True


@dataclass(frozen=True)
class GetSystemMetrics:
    """Request for a system metrics snapshot."""

    TAG: ClassVar[str] = "GetSystemMetrics"
    UNIT: ClassVar[bool] = True


@dataclass(frozen=True)
class SystemMetricsReport:
    """A system metrics snapshot sent by the agent."""

    TAG: ClassVar[str] = "SystemMetrics"
    UNIT: ClassVar[bool] = False

    metrics: SystemMetrics

    def _payload(self) -> Any:
        return self.metrics.to_dict()

    @classmethod
    def _from_payload(cls, payload: Any) -> SystemMetricsReport:
        return cls(SystemMetrics.from_dict(payload))


@dataclass(frozen=True)
class StartFileTransfer:
    """Announces a file upload."""

    TAG: ClassVar[str] = "StartFileTransfer"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID
    filename: str
    total_size: int
    chunk_size: int

    def _payload(self) -> Any:
        return {
            "transfer_id": str(self.transfer_id),
            "filename": self.filename,
            "total_size": self.total_size,
            "chunk_size": self.chunk_size,
        }

    @classmethod
    def _from_payload(cls, payload: Any) -> StartFileTransfer:
        obj = _object(payload, cls.TAG)
        return cls(
            transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"),
            filename=_string(_field(obj, "filename"), "filename"),
            total_size=_uint(_field(obj, "total_size"), "total_size", _U64_MAX),
            chunk_size=_uint(_field(obj, "chunk_size"), "chunk_size", _U32_MAX),
        )


@dataclass(frozen=True)
class FileTransferReady:
    """The agent is ready to receive chunks of a transfer."""

    TAG: ClassVar[str] = "FileTransferReady"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID

    def _payload(self) -> Any:
        return {"transfer_id": str(self.transfer_id)}

    @classmethod
    def _from_payload(cls, payload: Any) -> FileTransferReady:
        obj = _object(payload, cls.TAG)
        return cls(transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"))


@dataclass(frozen=True)
class FileChunk:
    """One chunk of file data."""

    TAG: ClassVar[str] = "FileChunk"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID
    chunk_number: int
    data: bytes
    is_last_chunk: bool

    def _payload(self) -> Any:
        return {
            "transfer_id": str(self.transfer_id),
            "chunk_number": self.chunk_number,
            "data": list(self.data),
            "is_last_chunk": self.is_last_chunk,
        }

    @classmethod
    def _from_payload(cls, payload: Any) -> FileChunk:
        obj = _object(payload, cls.TAG)
        return cls(
            transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"),
            chunk_number=_uint(_field(obj, "chunk_number"), "chunk_number", _U32_MAX),
            data=_byte_list(_field(obj, "data"), "data"),
            is_last_chunk=_boolean(_field(obj, "is_last_chunk"), "is_last_chunk"),
        )


@dataclass(frozen=True)
class ChunkReceived:
    """Acknowledges one chunk."""

    TAG: ClassVar[str] = "ChunkReceived"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID
    chunk_number: int

    def _payload(self) -> Any:
        return {"transfer_id": str(self.transfer_id), "chunk_number": self.chunk_number}

    @classmethod
    def _from_payload(cls, payload: Any) -> ChunkReceived:
        obj = _object(payload, cls.TAG)
        return cls(
            transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"),
            chunk_number=_uint(_field(obj, "chunk_number"), "chunk_number", _U32_MAX),
        )


@dataclass(frozen=True)
class CompleteFileTransfer:
    """Asks the agent to finish a transfer."""

    TAG: ClassVar[str] = "CompleteFileTransfer"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID

    def _payload(self) -> Any:
        return {"transfer_id": str(self.transfer_id)}

    @classmethod
    def _from_payload(cls, payload: Any) -> CompleteFileTransfer:
        obj = _object(payload, cls.TAG)
        return cls(transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"))


@dataclass(frozen=True)
class FileTransferComplete:
    """Outcome of a transfer."""

    TAG: ClassVar[str] = "FileTransferComplete"
    UNIT: ClassVar[bool] = False

    transfer_id: uuid.UUID
    success: bool
    error: str | None = None

    def _payload(self) -> Any:
        return {
            "transfer_id": str(self.transfer_id),
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def _from_payload(cls, payload: Any) -> FileTransferComplete:
        obj = _object(payload, cls.TAG)
        return cls(
            transfer_id=_uuid(_field(obj, "transfer_id"), "transfer_id"),
            success=_boolean(_field(obj, "success"), "success"),
            error=_optional_string(obj.get("error"), "error"),
        )


Message = Union[
    Ping,
    Pong,
    GetSystemMetrics,
    SystemMetricsReport,
    StartFileTransfer,
    FileTransferReady,
    FileChunk,
    ChunkReceived,
    CompleteFileTransfer,
    FileTransferComplete,
]

_MESSAGE_TYPES: dict[str, type] = {
    cls.TAG: cls
    for cls in (
        Ping,
        Pong,
        GetSystemMetrics,
        SystemMetricsReport,
        StartFileTransfer,
        FileTransferReady,
        FileChunk,
        ChunkReceived,
        CompleteFileTransfer,
        FileTransferComplete,
    )
}


def encode_message(message: Message) -> str:
    """Return the compact JSON form of a message, without a trailing newline."""
    cls = _MESSAGE_TYPES.get(getattr(type(message), "TAG", ""))
    if cls is not type(message):
        raise TypeError(f"not a protocol message: {message!r}")
    value: Any = cls.TAG if cls.UNIT else {cls.TAG: message._payload()}
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def decode_message(text: str | bytes) -> Message:
    """Parse one line of JSON into a message, raising ProtocolError if it is invalid."""
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"invalid UTF-8: {exc}") from exc
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc

    if isinstance(value, str):
        cls = _lookup(value)
        if not cls.UNIT:
            raise ProtocolError(f"message `{value}` requires fields")
        return cls()
    if isinstance(value, dict) and len(value) == 1:
        ((tag, payload),) = value.items()
        cls = _lookup(tag)
        if cls.UNIT:
            if payload is not None:
                raise ProtocolError(f"message `{tag}` takes no fields")
            return cls()
        return cls._from_payload(payload)
    raise ProtocolError("expected a message name or an object with a single key")


def _lookup(tag: str) -> type:
    try:
        return _MESSAGE_TYPES[tag]
    except KeyError:
        raise ProtocolError(f"unknown message `{tag}`") from None


def expected_chunk_count(total_size: int, chunk_size: int) -> int:
    """Number of chunks needed to carry total_size bytes in chunk_size pieces."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_size < 0:
        raise ValueError("total_size must not be negative")
    return -(-total_size // chunk_size)