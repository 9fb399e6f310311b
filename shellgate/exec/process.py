"""Subprocess lifecycle for approved commands."""

import asyncio
import codecs
import os
import signal
import time
from typing import Callable

from loguru import logger

from shellgate.exec.types import (
    TERMINAL_STATES,
    ProcessResult,
    ProcessSnapshot,
    ProcessState,
)

OutputCallback = Callable[[str], None]

DEFAULT_FALLBACK_SHELL = "sh"

_READ_CHUNK = 4096
_DRAIN_GRACE_SECONDS = 2.0


def default_shell() -> str:
    """Preferred interpreter: $SHELL, else bash."""
    return os.environ.get("SHELL") or "bash"


def _signal_name(returncode: int) -> str:
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class ProcessRunner:
    """
    Runs one shell command as a subprocess.

    State machine: created -> spawning -> running -> exited | killed,
    or spawning -> spawn-failed. Exactly one terminal state is reached.

    Output is streamed to ``on_stdout``/``on_stderr`` as it arrives and
    buffered for the final result. The runner owns its buffers; callers
    only see snapshots and the final ``ProcessResult``.
    """

    def __init__(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        shell: str | None = None,
        fallback_shell: str | None = DEFAULT_FALLBACK_SHELL,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ):
        self.command = command
        self.cwd = cwd
        self.env = env
        self.shell = shell or default_shell()
        self.fallback_shell = fallback_shell
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr

        self._state: ProcessState = "created"
        self._process: asyncio.subprocess.Process | None = None
        self._readers: list[asyncio.Task] = []
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._stdin_closed = False
        self._exit_code: int | None = None
        self._signal: str | None = None
        self._error: str | None = None
        self._timed_out = False
        self._started_at: float | None = None
        self._result: ProcessResult | None = None

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    def snapshot(self) -> ProcessSnapshot:
        """Read-only view of the current state and buffers."""
        return ProcessSnapshot(
            pid=self.pid,
            state=self._state,
            stdout="".join(self._stdout),
            stderr="".join(self._stderr),
            exit_code=self._exit_code,
            signal=self._signal,
        )

    async def start(self) -> bool:
        """
        Spawn the process, falling back to ``fallback_shell`` once if the
        preferred shell binary is missing.

        Returns False (state ``spawn-failed``) when no interpreter could be started.
        """
        if self._state != "created":
            raise RuntimeError(f"Process already started (state={self._state})")

        self._state = "spawning"
        self._started_at = time.monotonic()

        if self.cwd and not os.path.isdir(self.cwd):
            self._fail(f"Working directory does not exist: {self.cwd}")
            return False

        env = None
        if self.env:
            env = os.environ.copy()
            env.update(self.env)

        shells = [self.shell]
        if self.fallback_shell and self.fallback_shell != self.shell:
            shells.append(self.fallback_shell)

        last_error: OSError | None = None
        for index, shell in enumerate(shells):
            try:
                self._process = await asyncio.create_subprocess_exec(
                    shell, "-c", self.command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.cwd,
                    env=env,
                    start_new_session=os.name == "posix",
                )
                break
            except FileNotFoundError as e:
                last_error = e
                if index + 1 < len(shells):
                    logger.debug(f"Shell {shell!r} not found, falling back to {shells[index + 1]!r}")
            except OSError as e:
                last_error = e
                break

        if self._process is None:
            self._fail(f"Failed to spawn shell: {last_error}")
            return False

        self._state = "running"
        logger.debug(f"Spawned pid {self._process.pid}: {self.command[:80]}")

        self._readers = [
            asyncio.create_task(self._pump(self._process.stdout, self._stdout, self._on_stdout)),
            asyncio.create_task(self._pump(self._process.stderr, self._stderr, self._on_stderr)),
        ]
        return True

    async def _pump(
        self,
        stream: asyncio.StreamReader,
        buffer: list[str],
        callback: OutputCallback | None,
    ) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await stream.read(_READ_CHUNK)
            if not data:
                break
            self._emit(decoder.decode(data), buffer, callback)
        self._emit(decoder.decode(b"", final=True), buffer, callback)

    def _emit(self, text: str, buffer: list[str], callback: OutputCallback | None) -> None:
        if not text:
            return
        buffer.append(text)
        if callback:
            try:
                callback(text)
            except Exception as e:
                logger.warning(f"Output callback failed: {e}")

    def _fail(self, message: str) -> None:
        self._state = "spawn-failed"
        self._error = message
        logger.warning(message)

    async def write(self, data: str | bytes) -> bool:
        """
        Write to the process's stdin.

        Returns False instead of raising when stdin is closed or the
        process is gone.
        """
        process = self._process
        if (
            process is None
            or process.stdin is None
            or self._stdin_closed
            or self._state in TERMINAL_STATES
            or process.returncode is not None
        ):
            logger.debug("Dropping write to closed stdin")
            return False

        if isinstance(data, str):
            data = data.encode("utf-8")

        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed by process: {e}")
            self._stdin_closed = True
            return False
        return True

    def close_stdin(self) -> None:
        """Signal EOF on stdin. Idempotent."""
        if self._stdin_closed or self._process is None or self._process.stdin is None:
            return
        self._stdin_closed = True
        try:
            self._process.stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin already closed: {e}")

    def kill(self) -> bool:
        """
        Request termination. Idempotent; a no-op once the process has
        reached a terminal state or exited on its own.

        Returns True if a kill signal was sent.
        """
        process = self._process
        if self._state in TERMINAL_STATES or process is None or process.returncode is not None:
            return False

        self._state = "killed"
        try:
            if os.name == "posix":
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
        logger.debug(f"Killed pid {process.pid}")
        return True

    async def wait(self, timeout: float | None = None) -> ProcessResult:
        """
        Wait for the process to close and return the final result.

        On timeout the process is killed and ``timed_out`` is set.
        """
        if self._result is not None:
            return self._result

        if self._state == "spawn-failed":
            return self._finish()

        process = self._process
        if process is None:
            raise RuntimeError("Process not started")

        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            self._timed_out = True
            self.kill()
            await process.wait()
        except asyncio.CancelledError:
            self.kill()
            try:
                await process.wait()
            finally:
                for task in self._readers:
                    task.cancel()
                await asyncio.gather(*self._readers, return_exceptions=True)
            raise

        if self._readers:
            _, pending = await asyncio.wait(self._readers, timeout=_DRAIN_GRACE_SECONDS)
            for task in pending:
                task.cancel()

        returncode = process.returncode
        if returncode is not None and returncode < 0:
            self._signal = _signal_name(returncode)
            self._exit_code = None
        else:
            self._exit_code = returncode

        if self._state != "killed":
            self._state = "exited"

        return self._finish()

    async def run(self, timeout: float | None = None) -> ProcessResult:
        """Start, close stdin, and wait for the result."""
        if not await self.start():
            return self._finish()
        self.close_stdin()
        return await self.wait(timeout)

    def _finish(self) -> ProcessResult:
        duration_ms = 0
        if self._started_at is not None:
            duration_ms = int((time.monotonic() - self._started_at) * 1000)

        self._result = ProcessResult(
            state=self._state,
            exit_code=self._exit_code,
            signal=self._signal,
            stdout="".join(self._stdout),
            stderr="".join(self._stderr),
            error=self._error,
            timed_out=self._timed_out,
            duration_ms=duration_ms,
        )
        return self._result
