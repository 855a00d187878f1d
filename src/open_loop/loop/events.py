"""
Typed host events consumed by the loop.

Raw event payloads from the host are validated once, here, and turned
into one of a closed set of dataclasses. Payloads are accepted either
flat ({"type": ..., "id": ...}) or in the event-bus form where the data
sits under "properties".
"""

from dataclasses import dataclass
from typing import Any, Optional, Union

from open_loop.errors import EventValidationError

SESSION_CREATED = "session.created"
SESSION_UPDATED = "session.updated"
MESSAGE_UPDATED = "message.updated"
MESSAGE_PART_UPDATED = "message.part.updated"
SESSION_IDLE = "session.idle"


@dataclass(frozen=True)
class SessionCreated:
    session_id: str


@dataclass(frozen=True)
class SessionUpdated:
    session_id: str


@dataclass(frozen=True)
class MessageUpdated:
    """A message was created or changed. Carries the role of its author."""
    message_id: str
    role: str
    session_id: Optional[str] = None


@dataclass(frozen=True)
class TextPartUpdated:
    """A text part of a message changed.

    Parts belong to user and assistant messages alike; the tracker only
    keeps text from messages it knows to be the assistant's.
    """
    text: str
    session_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass(frozen=True)
class SessionIdle:
    """The session has no further pending work this turn."""
    session_id: Optional[str] = None


LoopEvent = Union[SessionCreated, SessionUpdated, MessageUpdated, TextPartUpdated, SessionIdle]


def parse_event(raw: Any) -> Optional[LoopEvent]:
    """Validate a raw host event.

    Returns:
        The typed event, or None for event types the loop does not consume
        and for events that carry nothing usable (e.g. a non-text part).

    Raises:
        EventValidationError: the payload of a consumed event type is malformed
    """
    if not isinstance(raw, dict):
        raise EventValidationError(f"Event must be an object, got {type(raw).__name__}")

    event_type = raw.get("type")
    if not isinstance(event_type, str):
        raise EventValidationError("Event is missing a string 'type'")

    payload = raw.get("properties", raw)
    if not isinstance(payload, dict):
        raise EventValidationError(f"{event_type}: 'properties' must be an object")

    if event_type in (SESSION_CREATED, SESSION_UPDATED):
        session_id = _session_id(event_type, payload)
        if not session_id:
            return None
        if event_type == SESSION_CREATED:
            return SessionCreated(session_id)
        return SessionUpdated(session_id)

    if event_type == MESSAGE_PART_UPDATED:
        part = payload.get("part", payload)
        if not isinstance(part, dict):
            raise EventValidationError(f"{event_type}: 'part' must be an object")
        if part.get("type") != "text":
            return None
        text = part.get("text")
        if text is None or text == "":
            return None
        if not isinstance(text, str):
            raise EventValidationError(f"{event_type}: 'text' must be a string")
        return TextPartUpdated(
            text=text,
            session_id=_optional_str(event_type, part, "sessionID"),
            message_id=_optional_str(event_type, part, "messageID"),
        )

    if event_type == MESSAGE_UPDATED:
        info = payload.get("info", payload)
        if not isinstance(info, dict):
            raise EventValidationError(f"{event_type}: 'info' must be an object")
        message_id = _optional_str(event_type, info, "id")
        role = _optional_str(event_type, info, "role")
        if not message_id or not role:
            return None
        return MessageUpdated(message_id, role, _optional_str(event_type, info, "sessionID"))

    if event_type == SESSION_IDLE:
        return SessionIdle(_optional_str(event_type, payload, "sessionID"))

    return None


def _session_id(event_type: str, payload: dict) -> Optional[str]:
    info = payload.get("info", payload)
    if not isinstance(info, dict):
        raise EventValidationError(f"{event_type}: 'info' must be an object")
    session_id = info.get("id", payload.get("sessionID"))
    if session_id is None:
        return None
    if not isinstance(session_id, str):
        raise EventValidationError(f"{event_type}: session id must be a string")
    return session_id


def _optional_str(event_type: str, data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise EventValidationError(f"{event_type}: '{key}' must be a string")
    return value
