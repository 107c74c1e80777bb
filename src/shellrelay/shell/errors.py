"""Exceptions raised by shell sessions."""

from __future__ import annotations


class ShellSessionError(Exception):
    """Base class for shell session failures."""


class SpawnError(ShellSessionError):
    """The interpreter process could not be created."""


class SessionDisposedError(ShellSessionError):
    """The session was disposed and cannot be started again."""


class UnexpectedClosure(ShellSessionError):
    """The interpreter or one of its streams ended while the session was live."""


class DisposedStream(ShellSessionError):
    """A read hit a stream that was already released by a deliberate shutdown."""


class TerminationFailure(ShellSessionError):
    """Killing the interpreter during disposal failed."""
