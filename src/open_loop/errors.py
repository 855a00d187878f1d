"""
Exception types raised by the OpenLoop controller.

Every error is converted into a user-visible message at the boundary
where it occurs; none of these are meant to escape to the host.
"""

from pathlib import Path
from typing import Optional


class OpenLoopError(Exception):
    """Base class for all OpenLoop errors."""


class ConfigurationError(OpenLoopError):
    """Raised when a loop cannot be configured (e.g. no session id)."""


class LoopConflictError(OpenLoopError):
    """Raised when a loop is started while another one is active."""

    def __init__(self, iteration: int):
        self.iteration = iteration
        super().__init__(f"OpenLoop already active (iteration {iteration})")


class SubmissionError(OpenLoopError):
    """Raised when the prompt could not be delivered to the session."""

    def __init__(self, session_id: str, attempts: int, cause: Exception):
        self.session_id = session_id
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Failed to send prompt to session {session_id} "
            f"after {attempts} attempt(s): {cause}"
        )


class CorruptStateError(OpenLoopError):
    """Raised in strict mode when the state file exists but cannot be parsed."""

    def __init__(self, path: Path, reason: Optional[str] = None):
        self.path = path
        self.reason = reason
        message = f"Corrupt loop state file: {path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class EventValidationError(OpenLoopError, ValueError):
    """Raised when a known event type carries a malformed payload."""


class ToolArgumentError(OpenLoopError, ValueError):
    """Raised when a control tool is called with invalid arguments."""
