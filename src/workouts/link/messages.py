"""Link messages and the flat wire codec.

On the wire every message is a flat string-keyed map of primitives:

    {"request": "schedule", "requestId": 7}
    {"reply": "schedule", "requestId": 7, "dayName": "Today", "todayItems": "[...]"}
    {"event": "metrics", "heartRate": 142.0, ...}

The tag key (``request`` / ``reply`` / ``event``) names the kind; every other
key is a parameter.  List-valued parameters are carried as JSON strings by
the payload schemas in ``payloads``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from src.workouts.errors import SerializationError

Primitive = Union[str, int, float, bool]

# Message kinds
SCHEDULE = "schedule"
ACTIVITIES = "activities"
START_ACTIVITY = "startActivity"
METRICS = "metrics"
ENDED = "ended"
FAILED = "failed"
CONTEXT = "context"
COMMAND = "command"

REQUEST_KEY = "request"
REPLY_KEY = "reply"
EVENT_KEY = "event"
REQUEST_ID_KEY = "requestId"

_RESERVED = frozenset({REQUEST_KEY, REPLY_KEY, EVENT_KEY, REQUEST_ID_KEY})


@dataclass(frozen=True)
class Request:
    kind: str
    params: dict[str, Primitive] = field(default_factory=dict)
    request_id: int = 0


@dataclass(frozen=True)
class Reply:
    kind: str
    payload: dict[str, Primitive] = field(default_factory=dict)
    request_id: int = 0


@dataclass(frozen=True)
class Event:
    kind: str
    params: dict[str, Primitive] = field(default_factory=dict)


LinkMessage = Union[Request, Reply, Event]


def _is_primitive(value: Any) -> bool:
    return isinstance(value, (str, int, float, bool))


def _check_params(params: Mapping[str, Any]) -> dict[str, Primitive]:
    checked: dict[str, Primitive] = {}
    for key, value in params.items():
        if not isinstance(key, str):
            raise SerializationError(f"Non-string key {key!r}")
        if key in _RESERVED:
            raise SerializationError(f"Parameter name {key!r} is reserved")
        if not _is_primitive(value):
            raise SerializationError(
                f"Parameter {key!r} must be a primitive, got {type(value).__name__}"
            )
        checked[key] = value
    return checked


def encode(message: LinkMessage) -> dict[str, Primitive]:
    """Flatten ``message`` into its wire map.

    Raises:
        SerializationError: A parameter is not a primitive or uses a reserved name.
    """
    if isinstance(message, Request):
        return {REQUEST_KEY: message.kind, REQUEST_ID_KEY: message.request_id, **_check_params(message.params)}
    if isinstance(message, Reply):
        return {REPLY_KEY: message.kind, REQUEST_ID_KEY: message.request_id, **_check_params(message.payload)}
    if isinstance(message, Event):
        return {EVENT_KEY: message.kind, **_check_params(message.params)}
    raise SerializationError(f"Not a link message: {message!r}")


def decode(data: Any) -> LinkMessage:
    """Parse a wire map back into a message.

    Raises:
        SerializationError: The map is malformed (no tag, several tags,
            non-primitive values, bad request id).
    """
    if not isinstance(data, Mapping):
        raise SerializationError(f"Expected a mapping, got {type(data).__name__}")

    tags = [key for key in (REQUEST_KEY, REPLY_KEY, EVENT_KEY) if key in data]
    if len(tags) != 1:
        raise SerializationError(f"Expected exactly one message tag, found {tags or 'none'}")
    tag = tags[0]
    kind = data[tag]
    if not isinstance(kind, str) or not kind:
        raise SerializationError(f"Message kind must be a non-empty string, got {kind!r}")

    rest = {k: v for k, v in data.items() if k not in _RESERVED}
    params = _check_params(rest)

    if tag == EVENT_KEY:
        return Event(kind=kind, params=params)

    request_id = data.get(REQUEST_ID_KEY, 0)
    if isinstance(request_id, bool) or not isinstance(request_id, int):
        raise SerializationError(f"requestId must be an integer, got {request_id!r}")
    if tag == REQUEST_KEY:
        return Request(kind=kind, params=params, request_id=request_id)
    return Reply(kind=kind, payload=params, request_id=request_id)
