"""
Tracks the current session and the latest assistant output.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from .events import MessageUpdated, SessionCreated, SessionUpdated, TextPartUpdated

logger = logging.getLogger(__name__)

ASSISTANT_ROLE = "assistant"


@dataclass
class SessionTracker:
    """Most recently observed session id and assistant text.

    Updated in place by lifecycle and content events; read by the
    controller (completion check) and by start (session resolution).

    Text parts that name their message are only kept once that message
    is known to be the assistant's. The prompt the loop submits comes
    back as a user message and must never count as assistant output.
    """

    current_session_id: str = ""
    last_assistant_text: str = ""
    message_roles: dict[str, str] = field(default_factory=dict)

    def on_session(self, event: Union[SessionCreated, SessionUpdated]) -> None:
        if event.session_id != self.current_session_id:
            logger.debug(f"Tracking session {event.session_id}")
        self.current_session_id = event.session_id

    def on_message(self, event: MessageUpdated) -> None:
        self.message_roles[event.message_id] = event.role

    def on_text_part(self, event: TextPartUpdated) -> None:
        if event.message_id is not None:
            role = self.message_roles.get(event.message_id)
            if role != ASSISTANT_ROLE:
                logger.debug(
                    f"Ignoring text of message {event.message_id} (role: {role or 'unknown'})"
                )
                return
        self.last_assistant_text = event.text

    def resolve_session_id(self, fallback: Optional[str] = None) -> str:
        """The tracked session id, else the fallback, else an empty string."""
        return self.current_session_id or fallback or ""
