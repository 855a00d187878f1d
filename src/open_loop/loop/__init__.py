"""
Idle-driven "keep going until done" loop.

The loop resends a task prompt each time the agent session goes idle,
until the agent outputs <promise>TOKEN</promise> or the iteration cap
is reached.
"""

from .control import TOOL_DEFINITIONS, ControlInterface
from .controller import (
    LoopController,
    PromptSubmitter,
    SubmitPolicy,
    build_iteration_header,
    build_iteration_message,
)
from .events import (
    LoopEvent,
    MessageUpdated,
    SessionCreated,
    SessionIdle,
    SessionUpdated,
    TextPartUpdated,
    parse_event,
)
from .models import LoopOutcome, LoopResult, LoopState
from .promise_detector import DetectionResult, PromiseDetector
from .session_tracker import SessionTracker
from .state_store import StateStore

__all__ = [
    "ControlInterface",
    "DetectionResult",
    "LoopController",
    "LoopEvent",
    "LoopOutcome",
    "LoopResult",
    "LoopState",
    "MessageUpdated",
    "PromiseDetector",
    "PromptSubmitter",
    "SessionCreated",
    "SessionIdle",
    "SessionTracker",
    "SessionUpdated",
    "StateStore",
    "SubmitPolicy",
    "TOOL_DEFINITIONS",
    "TextPartUpdated",
    "build_iteration_header",
    "build_iteration_message",
    "parse_event",
]
