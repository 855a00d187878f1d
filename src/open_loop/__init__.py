"""
open-loop: keep an agent session working on a task until it says it is done.

This package provides:
- A persisted loop state per workspace
- Idle-triggered resubmission of the task prompt
- Completion detection via <promise>TOKEN</promise> tags
- start / cancel / status tools for the host
- An OpenCode server client for running the loop from the command line

Quick Start:
    from open_loop import OpenLoop, OpenCodeClient, OpenCodeSubmitter

    client = OpenCodeClient("http://127.0.0.1:4096")
    loop = OpenLoop(".", OpenCodeSubmitter(client))

    await loop.call_tool("openloop-start", {"prompt": "Make the tests pass"}, session_id="ses_1")
    for event in client.iter_events():
        await loop.dispatch(event)
"""

__version__ = "0.1.0"

from open_loop.config import Config, LoopSettings, load_settings
from open_loop.errors import (
    ConfigurationError,
    CorruptStateError,
    EventValidationError,
    LoopConflictError,
    OpenLoopError,
    SubmissionError,
    ToolArgumentError,
)
from open_loop.loop import (
    ControlInterface,
    LoopController,
    LoopOutcome,
    LoopResult,
    LoopState,
    PromiseDetector,
    PromptSubmitter,
    SessionTracker,
    StateStore,
)
from open_loop.opencode import OpenCodeClient, OpenCodeSubmitter
from open_loop.runtime import OpenLoop

__all__ = [
    "__version__",
    # Runtime
    "OpenLoop",
    # Loop components
    "ControlInterface",
    "LoopController",
    "LoopOutcome",
    "LoopResult",
    "LoopState",
    "PromiseDetector",
    "PromptSubmitter",
    "SessionTracker",
    "StateStore",
    # Host client
    "OpenCodeClient",
    "OpenCodeSubmitter",
    # Configuration
    "Config",
    "LoopSettings",
    "load_settings",
    # Errors
    "ConfigurationError",
    "CorruptStateError",
    "EventValidationError",
    "LoopConflictError",
    "OpenLoopError",
    "SubmissionError",
    "ToolArgumentError",
]
