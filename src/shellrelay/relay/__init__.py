"""Output relay: chunk type, sink protocol and the in-process wire."""

from shellrelay.relay.wire import CallbackSink, OutputChunk, Sink, Wire

__all__ = [
    "CallbackSink",
    "OutputChunk",
    "Sink",
    "Wire",
]
