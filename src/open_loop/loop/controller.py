"""
Idle-triggered loop controller.

Each time the session goes idle the controller decides whether the loop
is finished (completion promise found, or iteration cap reached) or
whether the original prompt should be sent again:

    no state / inactive   -> NOOP
    iteration >= max      -> CAP_REACHED   (state cleared)
    promise in last text  -> COMPLETED     (state cleared)
    otherwise             -> CONTINUE      (iteration + 1, prompt resent)
    submission failed     -> ABORTED       (state cleared, not retried)
    state write failed    -> ABORTED       (nothing submitted)

All state mutations for a workspace go through the controller's lock,
which the control operations share.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from open_loop.errors import CorruptStateError, SubmissionError

from .events import (
    LoopEvent,
    MessageUpdated,
    SessionCreated,
    SessionIdle,
    SessionUpdated,
    TextPartUpdated,
)
from .models import LoopOutcome, LoopResult, LoopState
from .promise_detector import PromiseDetector
from .session_tracker import SessionTracker
from .state_store import StateStore

logger = logging.getLogger(__name__)

RULE = "═══════════════════════════════════════════════════════════"


class PromptSubmitter(ABC):
    """Outbound capability that enqueues a new turn in a session."""

    @abstractmethod
    async def submit(self, session_id: str, text: str) -> None:
        """Send text to the session. Raises on failure."""


@dataclass
class SubmitPolicy:
    """Retry policy for prompt submission.

    The default of a single attempt aborts the loop on the first failure.
    """

    max_attempts: int = 1
    backoff_seconds: float = 2.0
    backoff_multiplier: float = 2.0


def build_iteration_header(state: LoopState) -> str:
    """Header prepended to the prompt on every resubmission."""
    promise = f"<promise>{state.completion_promise}</promise>"
    return "\n".join([
        "",
        RULE,
        f"🔄 OpenLoop - Iteration {state.iteration_label()}",
        RULE,
        "",
        f"COMPLETION: Output {promise} when task is TRULY complete.",
        "",
        "RULES:",
        "  • Only output the promise when the statement is 100% true",
        "  • Do NOT lie to exit the loop",
        "  • Your previous work is in the files - build on it",
        "  • Check git status/diff to see what changed",
        "",
        RULE,
        "",
    ])


def build_iteration_message(state: LoopState) -> str:
    return build_iteration_header(state) + state.prompt


class LoopController:
    """Drives one workspace's loop from idle notifications.

    Example:
        controller = LoopController(StateStore(workspace), submitter)
        await controller.handle_event(SessionCreated("ses_1"))
        await controller.handle_event(TextPartUpdated("working..."))
        result = await controller.handle_event(SessionIdle())
        if result.outcome is LoopOutcome.CONTINUE:
            ...
    """

    def __init__(
        self,
        store: StateStore,
        submitter: PromptSubmitter,
        tracker: Optional[SessionTracker] = None,
        policy: Optional[SubmitPolicy] = None,
    ):
        self.store = store
        self.submitter = submitter
        self.tracker = tracker or SessionTracker()
        self.policy = policy or SubmitPolicy()
        self.lock = asyncio.Lock()

    async def handle_event(self, event: LoopEvent) -> Optional[LoopResult]:
        """Route a validated host event.

        Returns:
            LoopResult for idle notifications, None for tracker updates
        """
        if isinstance(event, (SessionCreated, SessionUpdated)):
            self.tracker.on_session(event)
            return None
        if isinstance(event, MessageUpdated):
            self.tracker.on_message(event)
            return None
        if isinstance(event, TextPartUpdated):
            self.tracker.on_text_part(event)
            return None
        if isinstance(event, SessionIdle):
            return await self.on_idle()
        raise TypeError(f"Unsupported event: {event!r}")

    async def on_idle(self) -> LoopResult:
        """Run one decision cycle."""
        async with self.lock:
            return await self._cycle()

    async def _cycle(self) -> LoopResult:
        try:
            state = self.store.load()
        except CorruptStateError as e:
            logger.error(f"❌ OpenLoop: {e}")
            return LoopResult(outcome=LoopOutcome.NOOP, error=str(e), message=f"❌ OpenLoop: {e}")
        if state is None or not state.active:
            return LoopResult(outcome=LoopOutcome.NOOP)

        if state.cap_reached:
            error = self._clear()
            logger.warning(f"🛑 OpenLoop: Max iterations ({state.max_iterations}) reached.")
            logger.warning("   Task may not be complete. Review the work and restart if needed.")
            return LoopResult(
                outcome=LoopOutcome.CAP_REACHED,
                iteration=state.iteration,
                error=error,
                message=(
                    f"🛑 OpenLoop: Max iterations ({state.max_iterations}) reached. "
                    f"Task may not be complete. Review the work and restart if needed."
                ),
            )

        detector = PromiseDetector(state.completion_promise)
        detection = detector.detect(self.tracker.last_assistant_text)
        if detection.found:
            error = self._clear()
            logger.info(
                f"✅ OpenLoop: Completion detected! <promise>{detection.promise_text}</promise>"
            )
            logger.info(f"   Finished after {state.iteration} iteration(s).")
            return LoopResult(
                outcome=LoopOutcome.COMPLETED,
                iteration=state.iteration,
                promise_text=detection.promise_text,
                error=error,
                message=(
                    f"✅ OpenLoop: Completion detected! "
                    f"Finished after {state.iteration} iteration(s)."
                ),
            )

        other = PromiseDetector.extract_first(self.tracker.last_assistant_text)
        if other is not None:
            logger.debug(
                f"Promise tag found but content {other!r} does not match "
                f"{state.completion_promise!r}"
            )

        state.iteration += 1
        try:
            self.store.save(state)
        except OSError as e:
            logger.error(f"❌ OpenLoop: Could not save loop state: {e}")
            return LoopResult(
                outcome=LoopOutcome.ABORTED,
                iteration=state.iteration - 1,
                error=str(e),
                message=f"❌ OpenLoop: Could not save loop state: {e}",
            )

        logger.info(f"🔄 OpenLoop: Starting iteration {state.iteration}...")
        try:
            await self._submit(state.session_id, build_iteration_message(state))
        except SubmissionError as e:
            logger.error(f"❌ OpenLoop: Failed to send prompt: {e.cause}")
            self._clear()
            return LoopResult(
                outcome=LoopOutcome.ABORTED,
                iteration=state.iteration,
                error=str(e),
                message=f"❌ OpenLoop: Failed to send prompt: {e.cause}",
            )

        return LoopResult(
            outcome=LoopOutcome.CONTINUE,
            iteration=state.iteration,
            message=f"🔄 OpenLoop: Iteration {state.iteration_label()} sent.",
        )

    def _clear(self) -> Optional[str]:
        """Remove the state record. Returns the error text if that failed."""
        try:
            self.store.clear()
        except OSError as e:
            logger.error(f"❌ OpenLoop: Could not clear loop state at {self.store.path}: {e}")
            return str(e)
        return None

    async def _submit(self, session_id: str, text: str) -> None:
        """Submit with the configured retry policy.

        Raises:
            SubmissionError: every attempt failed
        """
        delay = self.policy.backoff_seconds
        attempt = 0
        while True:
            attempt += 1
            try:
                await self.submitter.submit(session_id, text)
                return
            except Exception as e:
                if attempt >= self.policy.max_attempts:
                    raise SubmissionError(session_id, attempt, e) from e
                logger.warning(
                    f"Prompt submission attempt {attempt}/{self.policy.max_attempts} "
                    f"failed: {e}; retrying in {delay:.1f}s"
                )
            await asyncio.sleep(delay)
            delay *= self.policy.backoff_multiplier
