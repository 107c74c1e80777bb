"""Tests for shellrelay.relay.wire (OutputChunk, Sink, CallbackSink, Wire)."""

from __future__ import annotations

import asyncio
import dataclasses

import pytest

from shellrelay.relay.wire import CallbackSink, OutputChunk, Sink, Wire


# ---------------------------------------------------------------------------
# OutputChunk
# ---------------------------------------------------------------------------


class TestOutputChunk:
    def test_defaults(self) -> None:
        chunk = OutputChunk("dir\n")
        assert chunk.text == "dir\n"
        assert chunk.is_error is False

    def test_error_flag(self) -> None:
        chunk = OutputChunk("denied\n", is_error=True)
        assert chunk.is_error is True

    def test_frozen(self) -> None:
        chunk = OutputChunk("x")
        with pytest.raises(dataclasses.FrozenInstanceError):
            chunk.text = "y"  # type: ignore[misc]

    def test_equality(self) -> None:
        assert OutputChunk("a", True) == OutputChunk("a", is_error=True)
        assert OutputChunk("a") != OutputChunk("a", is_error=True)


# ---------------------------------------------------------------------------
# Sink protocol / CallbackSink
# ---------------------------------------------------------------------------


class TestSinkProtocol:
    def test_wire_is_sink(self) -> None:
        assert isinstance(Wire(), Sink)

    def test_callback_sink_is_sink(self) -> None:
        assert isinstance(CallbackSink(lambda chunk: None), Sink)

    def test_callback_sink_forwards(self) -> None:
        received: list[OutputChunk] = []
        sink = CallbackSink(received.append)
        sink.send(OutputChunk("hello\n"))
        sink.send(OutputChunk("oops\n", is_error=True))
        assert received == [OutputChunk("hello\n"), OutputChunk("oops\n", True)]


# ---------------------------------------------------------------------------
# Wire: basic send/subscribe
# ---------------------------------------------------------------------------


class TestWire:
    def test_send_to_subscriber(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.send(OutputChunk("hi\n"))
        assert q.get_nowait() == OutputChunk("hi\n")

    def test_send_to_multiple_subscribers(self) -> None:
        wire = Wire()
        q1 = wire.subscribe()
        q2 = wire.subscribe()
        wire.send_output("err\n", is_error=True)
        e1 = q1.get_nowait()
        e2 = q2.get_nowait()
        assert e1 == e2 == OutputChunk("err\n", is_error=True)

    def test_order_preserved(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        for i in range(5):
            wire.send_output(f"line {i}\n")
        assert [q.get_nowait().text for _ in range(5)] == [  # type: ignore[union-attr]
            f"line {i}\n" for i in range(5)
        ]

    def test_unsubscribe(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.unsubscribe(q)
        wire.send_output("x")
        assert q.empty()

    def test_unsubscribe_nonexistent_is_safe(self) -> None:
        wire = Wire()
        q: asyncio.Queue[OutputChunk | None] = asyncio.Queue()
        wire.unsubscribe(q)  # Should not raise


# ---------------------------------------------------------------------------
# Wire: closed-state guard
# ---------------------------------------------------------------------------


class TestWireClosedGuard:
    def test_close_sends_none_sentinel(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        assert q.get_nowait() is None
        assert wire.closed is True

    def test_send_after_close_is_dropped(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        q.get_nowait()  # drain sentinel
        wire.send_output("too late\n")
        assert q.empty()

    def test_close_idempotent(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        wire.close()
        wire.close()
        assert q.get_nowait() is None
        assert q.empty()

    async def test_consumer_stops_on_sentinel(self) -> None:
        wire = Wire()
        q = wire.subscribe()
        received: list[str] = []

        async def consume() -> None:
            while True:
                chunk = await q.get()
                if chunk is None:
                    break
                received.append(chunk.text)

        task = asyncio.create_task(consume())
        wire.send_output("a\n")
        wire.send_output("b\n")
        wire.close()
        await asyncio.wait_for(task, timeout=1.0)
        assert received == ["a\n", "b\n"]
