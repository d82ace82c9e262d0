"""Bounded capture of check output."""

from buildbouncer.runner.classify import normalize_newlines

TAIL_BUFFER_BYTES = 128 * 1024


class TailBuffer:
    """Keeps only the most recent max_bytes bytes written to it.

    Writes never fail and never block; older bytes are discarded as new
    ones arrive.
    """

    def __init__(self, max_bytes: int = TAIL_BUFFER_BYTES):
        self.max_bytes = max_bytes
        self._data = bytearray()

    def write(self, chunk: bytes) -> int:
        """Append chunk, dropping the oldest bytes past the cap.

        Returns:
            Number of bytes accepted, which is always len(chunk)
        """
        if self.max_bytes <= 0:
            return len(chunk)

        if len(chunk) >= self.max_bytes:
            self._data[:] = chunk[-self.max_bytes:]
            return len(chunk)

        excess = len(self._data) + len(chunk) - self.max_bytes
        if excess > 0:
            del self._data[:excess]
        self._data += chunk
        return len(chunk)

    def __len__(self) -> int:
        return len(self._data)

    def getvalue(self) -> bytes:
        return bytes(self._data)

    def text(self) -> str:
        """Buffered bytes decoded as UTF-8, undecodable bytes replaced."""
        return self._data.decode("utf-8", errors="replace")


def tail_lines(text: str, n: int) -> str:
    """Return the last n lines of text, ignoring trailing blank lines.

    Line endings are normalized to LF first. A line is blank when it is
    empty after stripping whitespace.

    Args:
        text: Output to cut
        n: Number of lines wanted; zero or less yields ""

    Returns:
        The selected lines joined by LF, without a trailing newline
    """
    if n <= 0:
        return ""

    lines = normalize_newlines(text).split("\n")
    while lines and not lines[-1].strip():
        lines.pop()

    return "\n".join(lines[-n:])
