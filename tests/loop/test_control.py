"""
Tests for the start / cancel / status operations.
"""

import os
import shutil
import sys
import tempfile
import unittest
from datetime import timedelta
from unittest import mock

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", "src"))

from open_loop.config import LoopSettings
from open_loop.loop.control import TOOL_DEFINITIONS, ControlInterface
from open_loop.loop.controller import LoopController, PromptSubmitter
from open_loop.loop.events import SessionCreated
from open_loop.loop.models import LoopOutcome, LoopState, utc_now
from open_loop.loop.state_store import StateStore


class NullSubmitter(PromptSubmitter):

    def __init__(self):
        self.calls = []

    async def submit(self, session_id: str, text: str) -> None:
        self.calls.append((session_id, text))


class ControlTestCase(unittest.IsolatedAsyncioTestCase):
    """Base case with a temp workspace and a control interface."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = StateStore(self.temp_dir)
        self.submitter = NullSubmitter()
        self.controller = LoopController(self.store, self.submitter)
        self.controller.tracker.on_session(SessionCreated("ses_1"))
        self.control = ControlInterface(self.controller)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)


class TestStart(ControlTestCase):
    """Test creating a loop."""

    async def test_start_with_defaults(self):
        """Test start with only a prompt."""
        message = await self.control.start("Fix bugs")

        self.assertIn("OpenLoop Started!", message)
        self.assertIn('Prompt: "Fix bugs"', message)
        self.assertIn("Max Iterations: Unlimited", message)
        self.assertIn("Completion: <promise>DONE</promise>", message)

        state = self.store.load()
        self.assertTrue(state.active)
        self.assertEqual(state.session_id, "ses_1")
        self.assertEqual(state.prompt, "Fix bugs")
        self.assertEqual(state.iteration, 0)
        self.assertEqual(state.max_iterations, 0)
        self.assertEqual(state.completion_promise, "DONE")
        self.assertLess(utc_now() - state.started_at, timedelta(minutes=1))

    async def test_start_does_not_submit(self):
        """Test that start waits for the next idle."""
        await self.control.start("Fix bugs")

        self.assertEqual(self.submitter.calls, [])

    async def test_start_with_options(self):
        """Test start with a cap and a custom promise."""
        message = await self.control.start(
            "Make tests pass", max_iterations=20, completion_promise="GREEN"
        )

        self.assertIn("Max Iterations: 20", message)
        self.assertIn("When complete, output: <promise>GREEN</promise>", message)
        state = self.store.load()
        self.assertEqual(state.max_iterations, 20)
        self.assertEqual(state.completion_promise, "GREEN")

    async def test_defaults_from_settings(self):
        """Test that omitted arguments come from settings."""
        control = ControlInterface(
            self.controller, LoopSettings(max_iterations=7, completion_promise="FIN")
        )

        await control.start("Fix bugs")

        state = self.store.load()
        self.assertEqual(state.max_iterations, 7)
        self.assertEqual(state.completion_promise, "FIN")

    async def test_long_prompt_is_truncated(self):
        """Test the prompt preview is truncated."""
        prompt = "x" * 150

        message = await self.control.start(prompt)

        self.assertIn('Prompt: "' + "x" * 100 + '..."', message)
        self.assertEqual(self.store.load().prompt, prompt)

    async def test_conflict_leaves_state_untouched(self):
        """Test that start refuses while a loop is active."""
        self.store.save(LoopState(
            session_id="ses_1", prompt="First", completion_promise="DONE", iteration=4,
        ))

        message = await self.control.start("Second")

        self.assertIn("already active (iteration 4)", message)
        state = self.store.load()
        self.assertEqual(state.iteration, 4)
        self.assertEqual(state.prompt, "First")

    async def test_inactive_record_can_be_replaced(self):
        """Test that an inactive record does not block start."""
        self.store.save(LoopState(
            session_id="ses_1", prompt="Old", completion_promise="DONE", active=False,
        ))

        message = await self.control.start("New")

        self.assertIn("OpenLoop Started!", message)
        self.assertEqual(self.store.load().prompt, "New")

    async def test_no_session_id(self):
        """Test start without any session id."""
        self.controller.tracker.current_session_id = ""

        message = await self.control.start("Fix bugs")

        self.assertIn("Could not determine session ID", message)
        self.assertFalse(self.store.exists())

    async def test_session_id_fallback(self):
        """Test that the ambient session id is used when none is tracked."""
        self.controller.tracker.current_session_id = ""

        await self.control.start("Fix bugs", session_id="ses_ctx")

        self.assertEqual(self.store.load().session_id, "ses_ctx")

    async def test_invalid_arguments(self):
        """Test that bad arguments are reported, not raised."""
        for kwargs in (
            {"prompt": ""},
            {"prompt": "x", "max_iterations": -1},
            {"prompt": "x", "max_iterations": "5"},
            {"prompt": "x", "max_iterations": 2.5},
            {"prompt": "x", "completion_promise": 3},
        ):
            with self.subTest(kwargs=kwargs):
                message = await self.control.start(**kwargs)
                self.assertTrue(message.startswith("❌"))
                self.assertFalse(self.store.exists())

    async def test_integral_float_is_accepted(self):
        """Test that a whole-number float cap is accepted."""
        await self.control.start("Fix bugs", max_iterations=3.0)

        self.assertEqual(self.store.load().max_iterations, 3)

    async def test_start_reports_save_failure(self):
        """Test that a failed save is reported in the message."""
        with mock.patch.object(self.store, "save", side_effect=OSError("disk full")), \
                self.assertLogs("open_loop.loop.control", level="ERROR"):
            message = await self.control.start("Fix bugs")

        self.assertIn("Could not save loop state: disk full", message)
        self.assertFalse(self.store.exists())


class TestCancel(ControlTestCase):
    """Test cancelling a loop."""

    async def test_cancel_without_loop(self):
        """Test cancel with no loop."""
        message = await self.control.cancel()

        self.assertEqual(message, "ℹ️ No active OpenLoop to cancel.")

    async def test_cancel_is_idempotent(self):
        """Test that a second cancel is a harmless no-op."""
        self.store.save(LoopState(
            session_id="ses_1", prompt="Fix bugs", completion_promise="DONE", iteration=3,
        ))

        first = await self.control.cancel()
        second = await self.control.cancel()

        self.assertIn("OpenLoop Cancelled", first)
        self.assertIn("Completed iterations: 3", first)
        self.assertIn('Original prompt: "Fix bugs"', first)
        self.assertEqual(second, "ℹ️ No active OpenLoop to cancel.")
        self.assertFalse(self.store.exists())

    async def test_cancel_stops_further_iterations(self):
        """Test that idle after cancel does nothing."""
        await self.control.start("Fix bugs")
        await self.control.cancel()

        result = await self.controller.on_idle()

        self.assertIs(result.outcome, LoopOutcome.NOOP)
        self.assertEqual(self.submitter.calls, [])

    async def test_cancel_clears_corrupt_state_in_strict_mode(self):
        """Test that cancel removes a corrupt record."""
        self.store.strict = True
        self.store.path.parent.mkdir(parents=True, exist_ok=True)
        self.store.path.write_text("{")

        message = await self.control.cancel()

        self.assertIn("corrupt", message)
        self.assertFalse(self.store.exists())

    async def test_cancel_reports_clear_failure(self):
        """Test that a failed removal is reported in the message."""
        await self.control.start("Fix bugs")

        with mock.patch.object(self.store, "clear", side_effect=OSError("read-only")), \
                self.assertLogs("open_loop.loop.control", level="ERROR"):
            message = await self.control.cancel()

        self.assertIn("Could not remove loop state", message)
        self.assertTrue(self.store.exists())


class TestStatus(ControlTestCase):
    """Test reporting the loop."""

    async def test_scenario_d_no_state(self):
        """Test status with no loop."""
        message = await self.control.status()

        self.assertEqual(message, "ℹ️ No active OpenLoop.")

    async def test_status_reports_loop(self):
        """Test status of an active loop."""
        self.store.save(LoopState(
            session_id="ses_1",
            prompt="Fix every failing test in the repository",
            completion_promise="DONE",
            max_iterations=10,
            iteration=2,
            started_at=utc_now() - timedelta(minutes=12, seconds=30),
        ))

        message = await self.control.status()

        self.assertIn("Iteration: 2 / 10", message)
        self.assertIn("Running for: 12 minutes", message)
        self.assertIn("Completion: <promise>DONE</promise>", message)
        self.assertIn('Prompt: "Fix every failing test in the repository"', message)

    async def test_status_is_read_only(self):
        """Test that status does not change the record."""
        state = LoopState(session_id="ses_1", prompt="p", completion_promise="DONE", iteration=1)
        self.store.save(state)

        await self.control.status()

        self.assertEqual(self.store.load(), state)

    async def test_status_with_corrupt_state(self):
        """Test status reports a corrupt record in strict mode."""
        self.store.path.parent.mkdir(parents=True, exist_ok=True)
        self.store.path.write_text("{")

        with self.assertLogs("open_loop.loop.state_store", level="WARNING"):
            message = await self.control.status()

        self.assertEqual(message, "ℹ️ No active OpenLoop.")


class TestToolDispatch(ControlTestCase):
    """Test dispatch of host tool calls."""

    def test_tool_definitions(self):
        """Test the tool names and schemas."""
        names = [tool["name"] for tool in TOOL_DEFINITIONS]

        self.assertEqual(names, ["openloop-start", "openloop-cancel", "openloop-status"])
        self.assertEqual(TOOL_DEFINITIONS[0]["parameters"]["required"], ["prompt"])

    async def test_start_tool(self):
        """Test the start tool with host arguments."""
        message = await self.control.call_tool(
            "openloop-start",
            {"prompt": "Fix bugs", "maxIterations": 5, "completionPromise": "OK"},
        )

        self.assertIn("Max Iterations: 5", message)
        self.assertEqual(self.store.load().completion_promise, "OK")

    async def test_start_tool_requires_prompt(self):
        """Test the start tool without a prompt."""
        message = await self.control.call_tool("openloop-start", {})

        self.assertIn("Missing required argument: prompt", message)

    async def test_status_and_cancel_tools(self):
        """Test the status and cancel tools."""
        await self.control.call_tool("openloop-start", {"prompt": "Fix bugs"})

        self.assertIn("Active: Yes", await self.control.call_tool("openloop-status"))
        self.assertIn("OpenLoop Cancelled", await self.control.call_tool("openloop-cancel"))

    async def test_unknown_tool(self):
        """Test an unknown tool name."""
        message = await self.control.call_tool("openloop-restart")

        self.assertIn("Unknown tool", message)


if __name__ == "__main__":
    unittest.main()
