"""
Data models for the OpenLoop controller.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing "Z" for UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class LoopState:
    """The persisted record describing an in-progress loop."""

    session_id: str
    prompt: str
    completion_promise: str
    max_iterations: int = 0  # 0 = unlimited
    iteration: int = 0
    active: bool = True
    started_at: datetime = field(default_factory=utc_now)

    @property
    def has_cap(self) -> bool:
        return self.max_iterations > 0

    @property
    def cap_reached(self) -> bool:
        return self.has_cap and self.iteration >= self.max_iterations

    def iteration_label(self) -> str:
        """Current iteration, with the cap when one is set ("3 / 10")."""
        if self.has_cap:
            return f"{self.iteration} / {self.max_iterations}"
        return str(self.iteration)

    def elapsed_minutes(self, now: Optional[datetime] = None) -> int:
        now = now or utc_now()
        return int((now - self.started_at).total_seconds() // 60)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk JSON form."""
        return {
            "active": self.active,
            "sessionId": self.session_id,
            "prompt": self.prompt,
            "iteration": self.iteration,
            "maxIterations": self.max_iterations,
            "completionPromise": self.completion_promise,
            "startedAt": self.started_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoopState":
        """Create from the on-disk JSON form.

        Raises:
            KeyError: a required field is missing
            TypeError, ValueError: a field has the wrong type or value
        """
        if not isinstance(data, dict):
            raise TypeError(f"expected an object, got {type(data).__name__}")

        active = data["active"]
        session_id = data["sessionId"]
        prompt = data["prompt"]
        iteration = data["iteration"]
        max_iterations = data["maxIterations"]
        completion_promise = data["completionPromise"]
        started_at = data["startedAt"]

        if not isinstance(active, bool):
            raise TypeError("active must be a boolean")
        for name, value in (
            ("sessionId", session_id),
            ("prompt", prompt),
            ("completionPromise", completion_promise),
            ("startedAt", started_at),
        ):
            if not isinstance(value, str):
                raise TypeError(f"{name} must be a string")
        for name, value in (("iteration", iteration), ("maxIterations", max_iterations)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be an integer")
            if value < 0:
                raise ValueError(f"{name} must be >= 0")

        return cls(
            active=active,
            session_id=session_id,
            prompt=prompt,
            iteration=iteration,
            max_iterations=max_iterations,
            completion_promise=completion_promise,
            started_at=parse_timestamp(started_at),
        )


class LoopOutcome(Enum):
    """What an idle trigger did."""
    NOOP = "noop"
    CONTINUE = "continue"
    COMPLETED = "completed"
    CAP_REACHED = "cap_reached"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopOutcome.COMPLETED, LoopOutcome.CAP_REACHED, LoopOutcome.ABORTED)


@dataclass
class LoopResult:
    """Result of a single idle-triggered decision."""

    outcome: LoopOutcome
    iteration: int = 0
    message: str = ""
    promise_text: Optional[str] = None
    error: Optional[str] = None

    @property
    def summary(self) -> str:
        """Brief summary for logging."""
        text = f"[{self.outcome.value.upper()}] iteration {self.iteration}"
        if self.error:
            text += f": {self.error}"
        return text
