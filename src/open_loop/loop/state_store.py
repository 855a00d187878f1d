"""
JSON file persistence for loop state.

A workspace holds at most one loop record. Its absence is the canonical
"no active loop" signal, so terminal transitions delete the file instead
of flagging it inactive.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from open_loop.errors import CorruptStateError

from .models import LoopState

logger = logging.getLogger(__name__)

STATE_FILE = ".opencode/open-loop.state.json"


class StateStore:
    """Single-record store for the loop state of one workspace.

    Example:
        store = StateStore("/path/to/workspace")
        store.save(LoopState(session_id="ses_1", prompt="Fix bugs", completion_promise="DONE"))

        state = store.load()
        if state and state.active:
            ...

        store.clear()
    """

    def __init__(
        self,
        directory: Union[str, Path],
        state_file: str = STATE_FILE,
        strict: bool = False,
    ):
        """Initialize the store.

        Args:
            directory: Workspace root
            state_file: Path of the record, relative to the workspace
            strict: Raise CorruptStateError instead of returning None
                when the record exists but cannot be parsed
        """
        self.directory = Path(directory)
        self.path = self.directory / state_file
        self.strict = strict

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[LoopState]:
        """Load the loop state.

        Returns:
            LoopState if a well-formed record exists, None otherwise
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            return self._corrupt(str(e))

        try:
            return LoopState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            reason = f"missing field {e}" if isinstance(e, KeyError) else str(e)
            return self._corrupt(reason)

    def _corrupt(self, reason: str) -> None:
        if self.strict:
            raise CorruptStateError(self.path, reason)
        logger.warning(f"Ignoring corrupt loop state at {self.path}: {reason}")
        return None

    def save(self, state: LoopState) -> None:
        """Persist the full record, replacing any previous one."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

        logger.debug(
            f"Saved loop state for session {state.session_id}: "
            f"iteration {state.iteration_label()}"
        )

    def clear(self) -> bool:
        """Remove the record.

        Returns:
            True if a record was removed, False if there was none
        """
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Cleared loop state at {self.path}")
        return True
