"""
HTTP client for an OpenCode server.

Provides the two host capabilities the loop needs when it runs outside
the editor process: delivering a prompt to a session, and following the
server's event stream (Server-Sent Events on /event).
"""

import asyncio
import json
import logging
from typing import Any, Iterator, Optional

import requests

from open_loop.loop.controller import PromptSubmitter

logger = logging.getLogger(__name__)


class OpenCodeClient:
    """
    Minimal client for the OpenCode server API.
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:4096",
        timeout: Optional[float] = 600.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        # Use a persistent session for connection pooling
        self.session = session or requests.Session()

    def prompt(self, session_id: str, text: str) -> dict[str, Any]:
        """
        Enqueue a new user turn in a session.

        Args:
            session_id: The target session
            text: The message text

        Returns:
            The decoded server response (empty dict if the body is empty)

        Raises:
            requests.exceptions.RequestException: on connection or HTTP errors
        """
        url = f"{self.base_url}/session/{session_id}/message"
        body = {"parts": [{"type": "text", "text": text}]}

        response = self.session.post(url, json=body, timeout=self.timeout)
        response.raise_for_status()

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            logger.debug(f"Non-JSON response from {url}")
            return {}

    def iter_events(self) -> Iterator[dict[str, Any]]:
        """
        Follow the server's event stream.

        Yields:
            Each event payload decoded from its "data:" lines. Payloads that
            are not valid JSON are logged and skipped.
        """
        url = f"{self.base_url}/event"
        with self.session.get(
            url,
            stream=True,
            headers={"Accept": "text/event-stream"},
            timeout=(10, None),
        ) as response:
            response.raise_for_status()
            data_lines: list[str] = []
            for line in response.iter_lines(decode_unicode=True):
                if line is None:
                    continue
                if line == "":
                    if data_lines:
                        event = _decode("\n".join(data_lines))
                        data_lines = []
                        if event is not None:
                            yield event
                    continue
                if line.startswith(":"):
                    continue  # comment / keep-alive
                if line.startswith("data:"):
                    data_lines.append(line[5:].lstrip(" "))
            if data_lines:
                event = _decode("\n".join(data_lines))
                if event is not None:
                    yield event

    def close(self) -> None:
        self.session.close()


def _decode(data: str) -> Optional[dict[str, Any]]:
    try:
        event = json.loads(data)
    except ValueError:
        logger.warning(f"Skipping malformed event data: {data[:200]}")
        return None
    if not isinstance(event, dict):
        logger.warning(f"Skipping non-object event: {data[:200]}")
        return None
    return event


class OpenCodeSubmitter(PromptSubmitter):
    """Submits prompts through an OpenCodeClient without blocking the event loop."""

    def __init__(self, client: OpenCodeClient):
        self.client = client

    async def submit(self, session_id: str, text: str) -> None:
        # Run in thread pool since the HTTP call is blocking
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.client.prompt, session_id, text)
