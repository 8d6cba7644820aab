"""Protocol definitions for embedding worker communication.

Messages are single-line JSON objects exchanged over the worker process's
stdin (host -> worker) and stdout (worker -> host). Every embed request
carries an id that is echoed back in its response, so responses may
arrive in any order.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..exceptions import DimensionMismatchError, WorkerError


class MessageType(str, Enum):
    """Types of messages exchanged with the worker."""

    EMBED = "embed"  # host -> worker: embed one text
    SHUTDOWN = "shutdown"  # host -> worker: exit after cleanup
    READY = "ready"  # worker -> host: model loaded
    RESULT = "embed_result"  # worker -> host: embedding for a request id
    ERROR = "error"  # worker -> host: failure, with id if request-specific


class ProtocolError(ValueError):
    """Malformed message on the worker pipe."""

    pass


class ErrorKind(str, Enum):
    """Machine-readable category carried by ERROR messages."""

    GENERIC = "generic"
    DIMENSION_MISMATCH = "dimension_mismatch"  # carries expected and actual


def _decode(line: str | bytes) -> dict[str, Any]:
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON message: {e}") from e
    if not isinstance(obj, dict):
        raise ProtocolError(f"Expected JSON object, got {type(obj).__name__}")
    return obj


def _message_type(obj: dict[str, Any]) -> MessageType:
    try:
        return MessageType(obj["type"])
    except (KeyError, ValueError) as e:
        raise ProtocolError(f"Unknown message type: {obj.get('type')!r}") from e


@dataclass
class WorkerRequest:
    """Request sent from host to worker."""

    type: MessageType
    id: str = ""
    text: str = ""

    @classmethod
    def embed(cls, request_id: str, text: str) -> "WorkerRequest":
        return cls(type=MessageType.EMBED, id=request_id, text=text)

    @classmethod
    def shutdown(cls) -> "WorkerRequest":
        return cls(type=MessageType.SHUTDOWN)

    def to_json(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        if self.type is MessageType.SHUTDOWN:
            return json.dumps({"type": self.type.value})
        return json.dumps({"type": self.type.value, "id": self.id, "text": self.text})

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkerRequest":
        """Deserialize from JSON."""
        obj = _decode(data)
        msg_type = _message_type(obj)
        if msg_type not in (MessageType.EMBED, MessageType.SHUTDOWN):
            raise ProtocolError(f"Not a request message: {msg_type.value}")
        if msg_type is MessageType.EMBED and not isinstance(obj.get("text"), str):
            raise ProtocolError("Embed request is missing 'text'")
        return cls(type=msg_type, id=str(obj.get("id", "")), text=obj.get("text", ""))


@dataclass
class WorkerResponse:
    """Message sent from worker to host."""

    type: MessageType
    id: str | None = None
    embedding: list[float] = field(default_factory=list)
    error: str | None = None
    dimensions: int | None = None  # reported with READY
    time_ms: float = 0.0
    kind: ErrorKind = ErrorKind.GENERIC
    expected: int | None = None
    actual: int | None = None

    @property
    def is_error(self) -> bool:
        return self.type is MessageType.ERROR

    def to_exception(self) -> Exception:
        """Rebuild the typed exception an ERROR message describes."""
        if self.kind is ErrorKind.DIMENSION_MISMATCH and self.expected is not None and self.actual is not None:
            return DimensionMismatchError(self.expected, self.actual)
        return WorkerError(self.error or "Worker reported an unknown error")

    def to_json(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        obj: dict[str, Any] = {"type": self.type.value}
        if self.type is MessageType.READY:
            obj["dimensions"] = self.dimensions
        elif self.type is MessageType.RESULT:
            obj.update(id=self.id, embedding=self.embedding, time_ms=self.time_ms)
        else:
            obj.update(id=self.id, message=self.error, kind=self.kind.value)
            if self.kind is ErrorKind.DIMENSION_MISMATCH:
                obj.update(expected=self.expected, actual=self.actual)
        return json.dumps(obj)

    @classmethod
    def from_json(cls, data: str | bytes) -> "WorkerResponse":
        """Deserialize from JSON."""
        obj = _decode(data)
        msg_type = _message_type(obj)
        if msg_type not in (MessageType.READY, MessageType.RESULT, MessageType.ERROR):
            raise ProtocolError(f"Not a response message: {msg_type.value}")
        request_id = obj.get("id")
        try:
            kind = ErrorKind(obj.get("kind", ErrorKind.GENERIC.value))
        except ValueError:
            kind = ErrorKind.GENERIC
        return cls(
            type=msg_type,
            id=str(request_id) if request_id is not None else None,
            embedding=obj.get("embedding") or [],
            error=obj.get("message"),
            dimensions=obj.get("dimensions"),
            time_ms=obj.get("time_ms", 0.0),
            kind=kind,
            expected=obj.get("expected"),
            actual=obj.get("actual"),
        )

    @classmethod
    def ready(cls, dimensions: int) -> "WorkerResponse":
        """Create a readiness notification."""
        return cls(type=MessageType.READY, dimensions=dimensions)

    @classmethod
    def result(cls, request_id: str, embedding: list[float], time_ms: float = 0.0) -> "WorkerResponse":
        """Create a successful embed response."""
        return cls(type=MessageType.RESULT, id=request_id, embedding=embedding, time_ms=time_ms)

    @classmethod
    def create_error(cls, message: str, request_id: str | None = None) -> "WorkerResponse":
        """Create an error response. Without an id it reports a worker-level failure."""
        return cls(type=MessageType.ERROR, id=request_id, error=message)

    @classmethod
    def dimension_mismatch(
        cls, error: DimensionMismatchError, request_id: str | None = None, prefix: str = ""
    ) -> "WorkerResponse":
        """Create an error response that the host re-raises as DimensionMismatchError."""
        return cls(
            type=MessageType.ERROR,
            id=request_id,
            error=f"{prefix}{error}",
            kind=ErrorKind.DIMENSION_MISMATCH,
            expected=error.expected,
            actual=error.actual,
        )


# Pipe protocol constants
MESSAGE_DELIMITER = b"\n"  # json.dumps escapes newlines inside strings
MAX_MESSAGE_SIZE = 16 * 1024 * 1024  # 16MB max line (very long input texts)
WORKER_MODULE = "embedkit.worker.server"
