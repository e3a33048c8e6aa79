"""
Control-Plane Protocol

Communication between the daemon and control clients.
Uses line-delimited JSON over a Unix domain socket.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import json
import uuid

from ..core.exceptions import ProtocolError


class Command(str, Enum):
    """Control commands."""

    # Daemon control
    PING = "ping"
    SHUTDOWN = "shutdown"

    # Task queries
    LIST = "list"
    STATUS = "status"

    # Task control
    SUBMIT = "submit"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class ResponseKind(str, Enum):
    ACK = "ack"
    ERROR = "error"
    SNAPSHOT = "snapshot"


@dataclass
class Request:
    """Control request."""
    command: str
    params: Dict[str, Any] = field(default_factory=dict)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])

    def to_json(self) -> str:
        return json.dumps({
            "command": self.command,
            "params": self.params,
            "request_id": self.request_id,
        })

    @classmethod
    def from_json(cls, data: str) -> "Request":
        """
        Raises:
            ProtocolError: not a JSON object with a command
        """
        try:
            obj = json.loads(data)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON: {e}")
        if not isinstance(obj, dict) or not isinstance(obj.get("command"), str):
            raise ProtocolError("Request must be an object with a command")
        params = obj.get("params") or {}
        if not isinstance(params, dict):
            raise ProtocolError("params must be an object")
        return cls(
            command=obj["command"],
            params=params,
            request_id=str(obj.get("request_id") or str(uuid.uuid4())[:8]),
        )


@dataclass
class Response:
    """Control response: Ack, Error{reason} or Snapshot{tasks}."""
    kind: ResponseKind
    data: Any = None
    error: Optional[str] = None
    request_id: str = ""

    @property
    def ok(self) -> bool:
        return self.kind != ResponseKind.ERROR

    def to_json(self) -> str:
        return json.dumps({
            "kind": self.kind.value,
            "data": self.data,
            "error": self.error,
            "request_id": self.request_id,
        })

    @classmethod
    def from_json(cls, data: str) -> "Response":
        """
        Raises:
            ProtocolError: malformed response
        """
        try:
            obj = json.loads(data)
            kind = ResponseKind(obj["kind"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed response: {e}")
        return cls(
            kind=kind,
            data=obj.get("data"),
            error=obj.get("error"),
            request_id=obj.get("request_id", ""),
        )

    @classmethod
    def ack(cls, data: Any = None, request_id: str = "") -> "Response":
        return cls(ResponseKind.ACK, data=data, request_id=request_id)

    @classmethod
    def err(cls, error: str, request_id: str = "") -> "Response":
        return cls(ResponseKind.ERROR, error=error, request_id=request_id)

    @classmethod
    def snapshot(cls, tasks: List[dict], request_id: str = "") -> "Response":
        return cls(ResponseKind.SNAPSHOT, data={"tasks": tasks}, request_id=request_id)


def parse_ids(params: Dict[str, Any]) -> List[int]:
    """
    Task ids of a Pause/Resume/Stop request.

    Raises:
        ProtocolError: ids missing or not integers
    """
    ids = params.get("ids")
    if not isinstance(ids, list) or not ids:
        raise ProtocolError("ids must be a non-empty list")
    try:
        return [int(i) for i in ids]
    except (TypeError, ValueError):
        raise ProtocolError(f"Invalid task ids: {ids}")


# Message framing: each message is a line of JSON terminated by newline
MESSAGE_DELIMITER = b"\n"
ENCODING = "utf-8"
MAX_MESSAGE_SIZE = 10 * 1024 * 1024  # 10MB max message size


def encode_message(msg: str) -> bytes:
    """Encode a message for transmission."""
    return msg.encode(ENCODING) + MESSAGE_DELIMITER


def decode_message(data: bytes) -> str:
    """Decode a received message."""
    try:
        return data.rstrip(MESSAGE_DELIMITER).decode(ENCODING)
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Invalid encoding: {e}")
