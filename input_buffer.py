"""Line-buffered character input for the `in` instruction."""

from __future__ import annotations

import logging
from collections import deque
from typing import IO, Any

DEFAULT_PROMPT = "> "


class InputBuffer:
    """FIFO of pending character codes, refilled one line at a time.

    `source` is any object with `readline()` returning bytes or str; an empty
    result means end of stream. The prompt is written to `prompt_out` (if given)
    before each blocking read.
    """

    source: Any
    prompt_out: IO[bytes] | None
    prompt: str
    pending: deque[int]
    exhausted: bool

    def __init__(self, source: Any, prompt_out: IO[bytes] | None = None, prompt: str = DEFAULT_PROMPT) -> None:
        """Create an empty buffer reading from `source`."""
        self.source = source
        self.prompt_out = prompt_out
        self.prompt = prompt
        self.pending = deque()
        self.exhausted = False

    def feed(self, line: bytes | str) -> None:
        """Queue every character of `line`, terminator included."""
        data = line.encode("utf-8") if isinstance(line, str) else bytes(line)
        self.pending.extend(data)
        logging.debug("[IN] queued %d chars", len(data))

    def _refill(self) -> None:
        if self.prompt_out is not None and self.prompt:
            self.prompt_out.write(self.prompt.encode("utf-8"))
            self.prompt_out.flush()
        line = self.source.readline()
        if not line:
            self.exhausted = True
            logging.debug("[IN] end of stream")
            return
        self.feed(line)

    def next_character(self) -> int | None:
        """Return the next character code, blocking on a line read when empty.

        Returns None once the source is exhausted.
        """
        if not self.pending and not self.exhausted:
            self._refill()
        if not self.pending:
            return None
        return self.pending.popleft()
