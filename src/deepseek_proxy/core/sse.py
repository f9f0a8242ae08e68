"""Server-sent event framing helpers."""

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
DONE_EVENT = f"{DATA_PREFIX}{DONE_SENTINEL}\n\n"


def format_event(payload: str) -> str:
    """Frame ``payload`` as one ``data:`` event."""
    return f"{DATA_PREFIX}{payload}\n\n"


def frame_line(line: str) -> str:
    """Frame a raw upstream line for the downstream.

    ``data:`` lines keep their prefix; anything else is wrapped so the
    client still receives a well-formed event.
    """
    if line.startswith(DATA_PREFIX):
        return f"{line}\n\n"
    return format_event(line)


class SSELineBuffer:
    """Reassembles newline-terminated lines from arbitrary text chunks."""

    def __init__(self) -> None:
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: str) -> list[str]:
        """Add a chunk and return every line it completed, in order.

        The trailing fragment after the last newline is kept until a later
        chunk terminates it.
        """
        self._pending += chunk
        *lines, self._pending = self._pending.split("\n")
        return [line[:-1] if line.endswith("\r") else line for line in lines]

    def flush(self) -> str:
        """Return and clear whatever partial line is still buffered."""
        rest, self._pending = self._pending, ""
        return rest

    def clear(self) -> None:
        self._pending = ""
