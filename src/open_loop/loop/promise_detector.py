"""
Promise detection for loop completion.

Detects the completion promise in the most recent assistant output to
determine when the loop has finished its task.

Only the first <promise> tag in the text is considered. The tag itself
is matched case-insensitively, but its content must equal the configured
promise exactly after surrounding whitespace is trimmed.
"""

import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class DetectionResult:
    """Result of promise detection."""
    found: bool
    promise_text: Optional[str] = None
    position: Optional[int] = None  # Start position of the tag in the text


class PromiseDetector:
    """Detects a completion promise wrapped in <promise> tags.

    Example:
        detector = PromiseDetector(promise="DONE")
        result = detector.detect("All done <promise>DONE</promise>")
        assert result.found
        assert result.promise_text == "DONE"
    """

    PROMISE_PATTERN = re.compile(
        r'<promise>\s*(.*?)\s*</promise>',
        re.IGNORECASE | re.DOTALL
    )

    def __init__(self, promise: str):
        """Initialize the promise detector.

        Args:
            promise: The exact text expected inside the tag
        """
        self.promise = promise

    def detect(self, text: str) -> DetectionResult:
        """Check whether the first promise tag in the text carries the promise.

        Args:
            text: The assistant output to scan

        Returns:
            DetectionResult with found=True and the matched literal if the
            first tag's trimmed content equals the promise.
        """
        if not text:
            return DetectionResult(found=False)

        match = self.PROMISE_PATTERN.search(text)
        if match is None:
            return DetectionResult(found=False)

        content = match.group(1).strip()
        if content != self.promise:
            return DetectionResult(found=False)

        return DetectionResult(
            found=True,
            promise_text=content,
            position=match.start(),
        )

    @classmethod
    def extract_first(cls, text: str) -> Optional[str]:
        """Return the trimmed content of the first promise tag, if any."""
        if not text:
            return None
        match = cls.PROMISE_PATTERN.search(text)
        if match is None:
            return None
        return match.group(1).strip()
