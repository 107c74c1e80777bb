"""Output wire: decouples shell sessions from the transport.

Sessions push :class:`OutputChunk` objects into a :class:`Sink`. The
transport (or a local console) implements the sink, or subscribes to a
:class:`Wire` and forwards what it receives.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable


@dataclass(frozen=True)
class OutputChunk:
    """One unit of forwarded interpreter output."""

    text: str
    is_error: bool = False  # True when read from stderr (or a session notice)


@runtime_checkable
class Sink(Protocol):
    """Anything that accepts output chunks.

    ``send`` must return quickly; buffering and backpressure are the
    transport's job.
    """

    def send(self, chunk: OutputChunk) -> None: ...


class CallbackSink:
    """Adapts a plain callable to the :class:`Sink` protocol."""

    def __init__(self, callback: Callable[[OutputChunk], None]) -> None:
        self._callback = callback

    def send(self, chunk: OutputChunk) -> None:
        self._callback(chunk)


class Wire:
    """Async message bus: session -> transport subscribers.

    Single-producer, multi-consumer broadcast. Must be used from the
    event loop thread; sessions already deliver chunks there.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue[OutputChunk | None]] = []
        self._closed: bool = False

    def send(self, chunk: OutputChunk) -> None:
        """Send a chunk to all subscribers.

        Silently drops chunks after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.put_nowait(chunk)

    def send_output(self, text: str, is_error: bool = False) -> None:
        self.send(OutputChunk(text=text, is_error=is_error))

    def subscribe(self) -> asyncio.Queue[OutputChunk | None]:
        """Subscribe to chunks. Returns a queue to read from."""
        q: asyncio.Queue[OutputChunk | None] = asyncio.Queue()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        """Unsubscribe from chunks."""
        if q in self._subscribers:
            self._subscribers.remove(q)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Signal all subscribers that the wire is closing."""
        if self._closed:
            return
        self._closed = True
        for q in self._subscribers:
            q.put_nowait(None)
