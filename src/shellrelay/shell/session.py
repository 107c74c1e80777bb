"""Shell session: a supervised command interpreter with redirected streams."""

from __future__ import annotations

import asyncio
import codecs
import enum
import errno
import logging
import os
import select
import signal
import subprocess
import threading
import uuid
from typing import IO

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shellrelay.config import ShellConfig
from shellrelay.relay.wire import OutputChunk, Sink
from shellrelay.shell.buffer import LineChunker
from shellrelay.shell.errors import (
    DisposedStream,
    SessionDisposedError,
    SpawnError,
    TerminationFailure,
    UnexpectedClosure,
)

logger = logging.getLogger(__name__)

NEW_SESSION_NOTICE = f"{os.linesep}>> New Session created{os.linesep}"
UNEXPECTED_CLOSE_NOTICE = f"{os.linesep}>> Session unexpectedly closed{os.linesep}"
RESTART_FAILED_NOTICE = f"{os.linesep}>> Session could not be restarted{os.linesep}"
RESPAWN_LIMIT_NOTICE = f"{os.linesep}>> Session respawn limit reached{os.linesep}"

# Only defined on Windows.
_CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class SessionState(enum.Enum):
    """Lifecycle states for a shell session."""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"  # Interpreter died on its own, respawn pending or refused
    DISPOSED = "disposed"


class ShellSession:
    """A long-lived interpreter whose output is relayed to a sink.

    Wraps one child process with:
    - stdin/stdout/stderr pipes, no console window, cwd at the system root
    - two drain loops (stdout, stderr) on the loop's default executor
    - line chunking with prompt-friendly flushing of partial output
    - automatic respawn when the interpreter exits unexpectedly
    - idempotent disposal that kills the whole process group

    The ``reading`` flag is the only state written from the drain threads.
    It is checked and flipped under ``_reading_lock`` together with the
    process generation, so exactly one drain of the current process can
    claim an unexpected closure.
    """

    def __init__(
        self,
        sink: Sink,
        config: ShellConfig | None = None,
        title: str = "shell",
    ) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.title = title
        self._sink = sink
        self._config = config or ShellConfig()

        self._proc: subprocess.Popen | None = None
        self._state = SessionState.UNINITIALIZED
        self._generation = 0
        self._respawns = 0
        self._reading = False
        self._reading_lock = threading.Lock()
        # Keyed by is_error; shared across process generations.
        self._stream_locks = {False: threading.Lock(), True: threading.Lock()}
        self._drain_tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def reading(self) -> bool:
        with self._reading_lock:
            return self._reading

    @property
    def alive(self) -> bool:
        proc = self._proc
        return proc is not None and proc.poll() is None

    @property
    def pid(self) -> int | None:
        proc = self._proc
        return proc.pid if proc is not None else None

    @property
    def respawn_count(self) -> int:
        """Automatic respawns since the last successfully submitted command."""
        return self._respawns

    async def start(self) -> None:
        """Spawn the interpreter and start draining its output.

        Does nothing while a live interpreter exists.

        Raises:
            SpawnError: The interpreter binary could not be launched.
            SessionDisposedError: The session was already disposed.
        """
        self._spawn()

    async def execute_command(self, command: str) -> bool:
        """Write ``command`` plus a line terminator to the interpreter.

        Starts the interpreter first when none is running.

        Returns:
            False if no interpreter could be obtained or the write failed.
        """
        if not self.alive:
            try:
                await self.start()
            except (SpawnError, SessionDisposedError) as e:
                logger.warning("Shell session %s cannot run command: %s", self.id, e)
                return False

        proc = self._proc
        if proc is None or proc.stdin is None:
            return False

        data = (command + self._config.newline).encode(
            self._config.encoding, errors="replace"
        )
        try:
            _write_all(proc.stdin, data)
            proc.stdin.flush()
        except (OSError, ValueError) as e:
            logger.warning("Shell session %s: write to stdin failed: %s", self.id, e)
            return False

        self._respawns = 0
        return True

    def dispose(self) -> None:
        """Kill the interpreter and stop relaying. Safe to call repeatedly."""
        with self._reading_lock:
            if self._state is SessionState.DISPOSED:
                return
            self._reading = False
            self._state = SessionState.DISPOSED
            proc = self._proc
            self._proc = None

        if proc is not None:
            self._shutdown_process(proc)
        logger.info("Shell session %s disposed", self.id)

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until every drain loop has finished.

        Only returns once the interpreter is gone, so call it after
        :meth:`dispose`. A descendant that left the process group can keep a
        pipe open indefinitely; pass ``timeout`` to stop waiting after that
        many seconds. Returns ``False`` if drains were still running then.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        # A finishing drain may respawn and register new drains.
        while True:
            pending = {task for task in self._drain_tasks if not task.done()}
            if not pending:
                return True
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning(
                    "Shell session %s: %d drain(s) still running after %.1fs",
                    self.id,
                    len(pending),
                    timeout,
                )
                return False
            await asyncio.wait(pending, timeout=remaining)

    async def __aenter__(self) -> ShellSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.dispose()
        await self.wait_closed()

    # ------------------------------------------------------------------
    # Lifecycle internals
    # ------------------------------------------------------------------

    def _spawn(self) -> None:
        with self._reading_lock:
            if self._state is SessionState.DISPOSED:
                raise SessionDisposedError(f"Shell session {self.id} is disposed")
            if self._proc is not None and self._proc.poll() is None:
                return
            stale = self._proc
            self._proc = None
            self._state = SessionState.STARTING

        # A dead handle from a previous generation
        if stale is not None:
            self._shutdown_process(stale)

        loop = asyncio.get_running_loop()
        self._loop = loop
        command = self._config.resolved_command()
        cwd = self._config.resolved_cwd()

        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                cwd=cwd,
                creationflags=_CREATE_NO_WINDOW,
                start_new_session=os.name != "nt",  # own process group
            )
        except (OSError, ValueError) as e:
            with self._reading_lock:
                if self._state is SessionState.STARTING:
                    self._state = SessionState.CRASHED
            raise SpawnError(f"Failed to launch {' '.join(command)}: {e}") from e

        with self._reading_lock:
            disposed = self._state is SessionState.DISPOSED
            if not disposed:
                self._proc = proc
                self._generation += 1
                generation = self._generation
                self._reading = True
                self._state = SessionState.RUNNING
        if disposed:
            self._shutdown_process(proc)
            raise SessionDisposedError(f"Shell session {self.id} is disposed")

        logger.info(
            "Shell session %s (%s) started: pid=%d gen=%d cmd=%s cwd=%s",
            self.id,
            self.title,
            proc.pid,
            generation,
            " ".join(command),
            cwd,
        )

        for is_error in (False, True):
            task = loop.create_task(self._run_drain(proc, generation, is_error))
            self._drain_tasks.add(task)
            task.add_done_callback(self._drain_tasks.discard)

        self._deliver(OutputChunk(NEW_SESSION_NOTICE))

    async def _recover(self, proc: subprocess.Popen) -> None:
        """Announce an unexpected closure and bring up a fresh interpreter."""
        # A caller may already have replaced the dead process via start().
        with self._reading_lock:
            owned = self._proc is proc
            if owned:
                self._proc = None
        if not owned:
            logger.debug(
                "Shell session %s: pid %s already replaced, skipping respawn",
                self.id,
                proc.pid,
            )
            return

        self._deliver(OutputChunk(UNEXPECTED_CLOSE_NOTICE, is_error=True))
        self._shutdown_process(proc)

        limit = self._config.max_respawns
        if limit is not None and self._respawns >= limit:
            logger.error(
                "Shell session %s: respawn limit (%d) reached, giving up", self.id, limit
            )
            self._deliver(OutputChunk(RESPAWN_LIMIT_NOTICE, is_error=True))
            return

        self._respawns += 1
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(SpawnError),
                stop=stop_after_attempt(self._config.spawn_attempts),
                wait=wait_exponential(
                    multiplier=0.5, max=self._config.spawn_backoff_max
                ),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    self._spawn()
        except SessionDisposedError:
            logger.debug("Shell session %s disposed during respawn", self.id)
        except SpawnError as e:
            logger.error("Shell session %s could not be restarted: %s", self.id, e)
            self._deliver(OutputChunk(RESTART_FAILED_NOTICE, is_error=True))

    def _claim_closure(self, generation: int) -> bool:
        """Atomically turn an end-of-data into an unexpected closure.

        True for exactly one drain of the current process, and only when
        the session was not deliberately torn down.
        """
        with self._reading_lock:
            if self._reading and generation == self._generation:
                self._reading = False
                self._state = SessionState.CRASHED
                return True
            return False

    def _shutdown_process(self, proc: subprocess.Popen) -> None:
        """Kill (if needed) and reap a process we no longer own."""
        try:
            self._terminate(proc)
        except TerminationFailure as e:
            logger.debug("Shell session %s: %s", self.id, e)

        if proc.stdin is not None:
            try:
                proc.stdin.close()
            except OSError as e:
                logger.debug("Shell session %s: closing stdin failed: %s", self.id, e)

        # Wait for process to be reaped (avoids zombies)
        try:
            proc.wait(timeout=self._config.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Shell session %s: pid %d did not exit after kill", self.id, proc.pid
            )

    def _terminate(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        try:
            if os.name == "nt":
                proc.kill()
            else:
                os.killpg(proc.pid, signal.SIGKILL)
            logger.info("Killed shell session %s (pid=%d)", self.id, proc.pid)
        except ProcessLookupError as e:
            raise TerminationFailure(f"process {proc.pid} already gone") from e
        except OSError as e:
            raise TerminationFailure(f"kill of pid {proc.pid} failed: {e}") from e

    # ------------------------------------------------------------------
    # Drain loops
    # ------------------------------------------------------------------

    async def _run_drain(
        self, proc: subprocess.Popen, generation: int, is_error: bool
    ) -> None:
        loop = asyncio.get_running_loop()
        name = "stderr" if is_error else "stdout"
        try:
            await loop.run_in_executor(None, self._drain, proc, generation, is_error)
        except DisposedStream as e:
            logger.debug("Shell session %s %s drain stopped: %s", self.id, name, e)
        except UnexpectedClosure as e:
            logger.warning("Shell session %s closed unexpectedly: %s", self.id, e)
            await self._recover(proc)
        except Exception:
            logger.exception("Shell session %s %s drain failed", self.id, name)

    def _drain(self, proc: subprocess.Popen, generation: int, is_error: bool) -> None:
        """Blocking read loop for one stream; runs on an executor thread."""
        stream = proc.stderr if is_error else proc.stdout
        name = "stderr" if is_error else "stdout"
        if stream is None:
            raise DisposedStream(f"{name} is not redirected")

        decoder = codecs.getincrementaldecoder(self._config.encoding)(errors="replace")
        chunker = LineChunker(
            lambda text: self._emit_threadsafe(OutputChunk(text, is_error=is_error))
        )
        lock = self._stream_locks[is_error]

        try:
            while True:
                data = self._read(stream)
                if not data:
                    break
                with lock:
                    chunker.feed(decoder.decode(data))
                    if not _has_pending(stream):
                        chunker.flush()

            with lock:
                chunker.feed(decoder.decode(b"", final=True))
                chunker.flush()
        finally:
            try:
                stream.close()
            except OSError as e:
                logger.debug("Shell session %s: closing %s failed: %s", self.id, name, e)

        if self._claim_closure(generation):
            raise UnexpectedClosure(f"{name} of pid {proc.pid} reached end of data")

    def _read(self, stream: IO[bytes]) -> bytes:
        try:
            return stream.read(self._config.read_size) or b""
        except ValueError as e:
            # I/O operation on closed file
            raise DisposedStream(str(e)) from e
        except OSError as e:
            if e.errno == errno.EBADF:
                raise DisposedStream(str(e)) from e
            logger.debug("Shell session %s: read failed, treating as EOF: %s", self.id, e)
            return b""

    # ------------------------------------------------------------------
    # Sink delivery
    # ------------------------------------------------------------------

    def _emit_threadsafe(self, chunk: OutputChunk) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._deliver, chunk)
        except RuntimeError:
            logger.debug("Shell session %s: event loop closed, chunk dropped", self.id)

    def _deliver(self, chunk: OutputChunk) -> None:
        """Hand a chunk to the sink. Runs on the event loop thread."""
        if self._state is SessionState.DISPOSED:
            return
        try:
            self._sink.send(chunk)
        except Exception:
            logger.exception("Sink rejected chunk from shell session %s", self.id)


def _has_pending(stream: IO[bytes]) -> bool:
    """Whether more bytes can be read from ``stream`` without blocking."""
    if os.name == "nt":
        # select() only supports sockets there
        return False
    try:
        ready, _, _ = select.select([stream], [], [], 0)
    except (OSError, ValueError):
        return False
    return bool(ready)


def _write_all(stream: IO[bytes], data: bytes) -> None:
    # Unbuffered pipes may accept a partial write.
    view = memoryview(data)
    while view:
        view = view[stream.write(view) :]
