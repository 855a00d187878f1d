"""
Per-workspace wiring of the loop components.

One OpenLoop instance is created per workspace session. It owns the
state store, the session tracker, the controller (and with it the lock
that serialises every state mutation) and the control operations.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Union

from open_loop.config import LoopSettings
from open_loop.errors import EventValidationError
from open_loop.loop.control import TOOL_DEFINITIONS, ControlInterface
from open_loop.loop.controller import LoopController, PromptSubmitter, SubmitPolicy
from open_loop.loop.events import parse_event
from open_loop.loop.models import LoopResult
from open_loop.loop.session_tracker import SessionTracker
from open_loop.loop.state_store import StateStore

logger = logging.getLogger(__name__)


class OpenLoop:
    """The loop plugin for a single workspace.

    Example:
        loop = OpenLoop(workspace, OpenCodeSubmitter(client), settings)
        await loop.dispatch({"type": "session.created", "id": "ses_1"})
        print(await loop.call_tool("openloop-start", {"prompt": "Fix bugs"}))
        await loop.dispatch({"type": "session.idle"})
    """

    tools = TOOL_DEFINITIONS

    def __init__(
        self,
        directory: Union[str, Path],
        submitter: PromptSubmitter,
        settings: Optional[LoopSettings] = None,
    ):
        self.directory = Path(directory)
        self.settings = settings or LoopSettings()

        self.store = StateStore(
            self.directory,
            state_file=self.settings.state_file,
            strict=self.settings.strict_state,
        )
        self.tracker = SessionTracker()
        self.controller = LoopController(
            store=self.store,
            submitter=submitter,
            tracker=self.tracker,
            policy=SubmitPolicy(
                max_attempts=self.settings.submit_max_attempts,
                backoff_seconds=self.settings.submit_backoff_seconds,
                backoff_multiplier=self.settings.submit_backoff_multiplier,
            ),
        )
        self.control = ControlInterface(self.controller, self.settings)

    async def dispatch(self, raw_event: Any) -> Optional[LoopResult]:
        """Validate a raw host event and hand it to the controller.

        Malformed events are logged and dropped.
        """
        try:
            event = parse_event(raw_event)
        except EventValidationError as e:
            logger.warning(f"Dropping malformed event: {e}")
            return None
        if event is None:
            return None
        return await self.controller.handle_event(event)

    async def call_tool(
        self,
        name: str,
        args: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> str:
        return await self.control.call_tool(name, args, session_id=session_id)
