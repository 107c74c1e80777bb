"""Line chunker for drained shell output."""

from __future__ import annotations

from typing import Callable


class LineChunker:
    """Accumulates decoded output and cuts it into chunks.

    Characters are appended one at a time. Every ``"\\n"`` closes the
    current chunk and hands it to ``emit``; whatever is left over stays
    buffered until :meth:`flush` is called (the drain loop does that as
    soon as the stream has nothing more ready, so prompts and partial
    writes still reach the consumer).

    A chunker is private to one drain loop and is not thread-safe on its
    own; callers serialize access with the per-stream lock.
    """

    def __init__(self, emit: Callable[[str], None]) -> None:
        self._emit = emit
        self._buffer: list[str] = []
        self._total_chunks: int = 0

    def feed(self, text: str) -> None:
        """Append text, emitting a chunk at each newline."""
        for ch in text:
            self._buffer.append(ch)
            if ch == "\n":
                self.flush()

    def flush(self) -> None:
        """Emit the buffered partial chunk, if any."""
        if not self._buffer:
            return
        chunk = "".join(self._buffer)
        self._buffer.clear()
        self._total_chunks += 1
        self._emit(chunk)

    @property
    def pending(self) -> str:
        """Text buffered since the last emitted chunk."""
        return "".join(self._buffer)

    @property
    def total_chunks(self) -> int:
        """Number of chunks emitted so far."""
        return self._total_chunks
