"""
Start, cancel and status operations for the loop.

These are exposed to the host as tools (openloop-start, openloop-cancel,
openloop-status). Each returns a human-readable string; failures are
reported in that string rather than raised.
"""

import logging
from typing import Any, Optional

from open_loop.config import LoopSettings
from open_loop.errors import (
    ConfigurationError,
    CorruptStateError,
    LoopConflictError,
    ToolArgumentError,
)

from .controller import RULE, LoopController
from .models import LoopState

logger = logging.getLogger(__name__)

TOOL_START = "openloop-start"
TOOL_CANCEL = "openloop-cancel"
TOOL_STATUS = "openloop-status"

TOOL_DEFINITIONS = [
    {
        "name": TOOL_START,
        "description": (
            "Start an OpenLoop - a self-referential loop that re-sends the same prompt "
            "each time the session goes idle. The loop continues until you output "
            "<promise>COMPLETION_TEXT</promise> or max iterations is reached. Use this "
            'for iterative tasks like "fix all errors", "make tests pass", etc.'
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "The task prompt to iterate on",
                },
                "maxIterations": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Maximum iterations (0 = unlimited, default: 0)",
                },
                "completionPromise": {
                    "type": "string",
                    "description": (
                        "Text that signals completion when wrapped in <promise> tags "
                        "(default: DONE)"
                    ),
                },
            },
            "required": ["prompt"],
        },
    },
    {
        "name": TOOL_CANCEL,
        "description": "Cancel the active OpenLoop",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": TOOL_STATUS,
        "description": "Check the status of the current OpenLoop",
        "parameters": {"type": "object", "properties": {}},
    },
]


def _preview(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


class ControlInterface:
    """Externally invokable loop operations for one workspace."""

    def __init__(self, controller: LoopController, settings: Optional[LoopSettings] = None):
        self.controller = controller
        self.settings = settings or LoopSettings()

    @property
    def store(self):
        return self.controller.store

    async def start(
        self,
        prompt: str,
        max_iterations: Optional[int] = None,
        completion_promise: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """Create a new loop. The first resubmission happens on the next idle.

        Args:
            prompt: Task text resent on every iteration
            max_iterations: Cap on resubmissions (0 = unlimited)
            completion_promise: Token expected inside <promise> tags
            session_id: Ambient session id used when none has been tracked
        """
        async with self.controller.lock:
            try:
                state = self._create(prompt, max_iterations, completion_promise, session_id)
            except LoopConflictError as e:
                return (
                    f"❌ OpenLoop already active (iteration {e.iteration}). "
                    f"Use {TOOL_CANCEL} to stop it first."
                )
            except ConfigurationError:
                return "❌ Could not determine session ID. Please try again."
            except ToolArgumentError as e:
                return f"❌ {e}"
            except CorruptStateError as e:
                return f"❌ {e}. Remove it or cancel the loop to reset."
            except OSError as e:
                logger.error(f"Could not save loop state: {e}")
                return f"❌ Could not save loop state: {e}"

        logger.info(
            f"OpenLoop started for session {state.session_id} "
            f"(max iterations: {state.max_iterations or 'unlimited'})"
        )
        promise = f"<promise>{state.completion_promise}</promise>"
        return "\n".join([
            "",
            "🔄 OpenLoop Started!",
            RULE,
            "",
            f'Prompt: "{_preview(state.prompt, 100)}"',
            "",
            f"Max Iterations: {state.max_iterations if state.has_cap else 'Unlimited'}",
            f"Completion: {promise}",
            "",
            "The loop will start on your next idle. Work on the task now!",
            f"When complete, output: {promise}",
            "",
            RULE,
        ])

    def _create(
        self,
        prompt: str,
        max_iterations: Optional[int],
        completion_promise: Optional[str],
        session_id: Optional[str],
    ) -> LoopState:
        existing = self.store.load()
        if existing is not None and existing.active:
            raise LoopConflictError(existing.iteration)

        resolved = self.controller.tracker.resolve_session_id(session_id)
        if not resolved:
            raise ConfigurationError("No session id available")

        if not isinstance(prompt, str) or not prompt.strip():
            raise ToolArgumentError("prompt must be a non-empty string")
        if max_iterations is None:
            max_iterations = self.settings.max_iterations
        # JSON hosts may send whole numbers as floats
        if isinstance(max_iterations, float) and max_iterations.is_integer():
            max_iterations = int(max_iterations)
        if isinstance(max_iterations, bool) or not isinstance(max_iterations, int) \
                or max_iterations < 0:
            raise ToolArgumentError("maxIterations must be a non-negative integer")
        if completion_promise is None:
            completion_promise = self.settings.completion_promise
        if not isinstance(completion_promise, str):
            raise ToolArgumentError("completionPromise must be a string")

        state = LoopState(
            session_id=resolved,
            prompt=prompt,
            completion_promise=completion_promise,
            max_iterations=max_iterations,
        )
        self.store.save(state)
        return state

    async def cancel(self) -> str:
        """Stop the active loop, if any. Safe to call repeatedly."""
        async with self.controller.lock:
            state: Optional[LoopState] = None
            corrupt: Optional[CorruptStateError] = None
            try:
                state = self.store.load()
            except CorruptStateError as e:
                corrupt = e
            if corrupt is None and (state is None or not state.active):
                return "ℹ️ No active OpenLoop to cancel."
            try:
                self.store.clear()
            except OSError as e:
                logger.error(f"Could not remove loop state: {e}")
                return f"❌ Could not remove loop state: {e}"

        if corrupt is not None:
            logger.warning(f"Cleared corrupt loop state: {corrupt}")
            return "🛑 OpenLoop Cancelled (state file was corrupt and has been removed)."

        logger.info(f"OpenLoop cancelled after {state.iteration} iteration(s)")
        return "\n".join([
            "",
            "🛑 OpenLoop Cancelled",
            RULE,
            "",
            f"Completed iterations: {state.iteration}",
            f'Original prompt: "{_preview(state.prompt, 50)}"',
            "",
            RULE,
        ])

    async def status(self) -> str:
        """Describe the active loop without changing it."""
        async with self.controller.lock:
            try:
                state = self.store.load()
            except CorruptStateError as e:
                return f"❌ {e}"
        if state is None or not state.active:
            return "ℹ️ No active OpenLoop."

        return "\n".join([
            "",
            "📊 OpenLoop Status",
            RULE,
            "",
            "Active: Yes",
            f"Iteration: {state.iteration_label()}",
            f"Running for: {state.elapsed_minutes()} minutes",
            f"Completion: <promise>{state.completion_promise}</promise>",
            "",
            f'Prompt: "{_preview(state.prompt, 80)}"',
            "",
            RULE,
        ])

    async def call_tool(
        self,
        name: str,
        args: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> str:
        """Dispatch a host tool call by name.

        Args:
            name: One of the TOOL_DEFINITIONS names
            args: Tool arguments as sent by the host
            session_id: Session id from the host's tool context, if any
        """
        args = args or {}
        if name == TOOL_START:
            if "prompt" not in args:
                return "❌ Missing required argument: prompt"
            return await self.start(
                prompt=args["prompt"],
                max_iterations=args.get("maxIterations"),
                completion_promise=args.get("completionPromise"),
                session_id=session_id,
            )
        if name == TOOL_CANCEL:
            return await self.cancel()
        if name == TOOL_STATUS:
            return await self.status()
        return f"❌ Unknown tool: {name}"
