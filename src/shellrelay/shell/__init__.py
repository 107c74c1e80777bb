"""Shell session management: a supervised interpreter relayed to a sink.

The interpreter runs as a child process with redirected streams. Its
output is drained on background threads, chunked per line and handed to
a sink; unexpected exits are announced and the interpreter is respawned.
"""

from shellrelay.shell.buffer import LineChunker
from shellrelay.shell.errors import (
    DisposedStream,
    SessionDisposedError,
    ShellSessionError,
    SpawnError,
    TerminationFailure,
    UnexpectedClosure,
)
from shellrelay.shell.session import SessionState, ShellSession

__all__ = [
    "DisposedStream",
    "LineChunker",
    "SessionDisposedError",
    "SessionState",
    "ShellSession",
    "ShellSessionError",
    "SpawnError",
    "TerminationFailure",
    "UnexpectedClosure",
]
