# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Process handle for a vault server with an asynchronous exit watcher."""

import asyncio
import logging
from typing import Optional

from .command import ServerCommand
from .completion import CompletionSignal
from .server_log import ServerLogSink

_LOG = logging.getLogger(__name__)

# Vault can print long JSON lines at trace level
_STREAM_LIMIT = 1024 * 1024


class ProcessExitedError(Exception):
    """Raised when the server exited while it was expected to keep running."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode


class ServerProcess:
    """Owns one launched server process and its completion signal.

    start() schedules a watcher task that launches the process, forwards its
    output to the log sink and completes the signal with the exit code (or
    with the OSError if the launch failed).

    Example:
        proc = ServerProcess(command, sink)
        proc.start()
        if await proc.wait(timeout=0.5):
            raise proc.exit_error()
        ...
        proc.kill()
        await proc.wait(timeout=1.0)
    """

    def __init__(self, command: ServerCommand, sink: ServerLogSink) -> None:
        self._command = command
        self._sink = sink
        self._completion = CompletionSignal()
        # Set once the spawn call returned, whether or not it succeeded
        self._launched = asyncio.Event()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None

    @property
    def command(self) -> ServerCommand:
        return self._command

    @property
    def completion(self) -> CompletionSignal:
        return self._completion

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        """The OS process, None until the launch has succeeded."""
        return self._process

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def started(self) -> bool:
        return self._watcher is not None

    @property
    def exited(self) -> bool:
        return self._completion.done()

    def start(self) -> None:
        """Schedule the watcher task.

        Raises:
            RuntimeError: If already started.
        """
        if self._watcher is not None:
            raise RuntimeError("Server process already started")

        self._watcher = asyncio.get_running_loop().create_task(
            self._watch(), name=f"vault-watcher-{self._command.port}"
        )

    async def _watch(self) -> None:
        # Launching and waiting must happen in this same task. Splitting them
        # across tasks can lose the exit status on some platforms.
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._command.env,
                limit=_STREAM_LIMIT,
            )
        except OSError as e:
            _LOG.debug("Failed to launch %s: %s", self._command.binary, e)
            self._completion.set_exception(e)
            return
        finally:
            self._launched.set()

        _LOG.info(
            "Launched %s on %s (pid %d)",
            self._command.binary,
            self._command.bind_address,
            self._process.pid,
        )

        try:
            await asyncio.gather(
                self._pump(self._process.stdout),
                self._pump(self._process.stderr),
            )
            returncode = await self._process.wait()
        except Exception as e:
            _LOG.error("Lost track of vault pid %d: %s", self._process.pid, e)
            self._completion.set_exception(e)
            return

        _LOG.info("Vault pid %d exited with code %d", self._process.pid, returncode)
        self._completion.set_result(returncode)

    async def _pump(self, stream: Optional[asyncio.StreamReader]) -> None:
        if stream is None:
            return
        while line := await stream.readline():
            self._sink.write_line(line.decode("utf-8", errors="replace"))

    async def wait_launched(self, timeout: Optional[float]) -> bool:
        """Wait until the spawn attempt has finished.

        After this returns True, `process` is either the running (or exited)
        process or None because the launch failed.

        Returns:
            True once the spawn attempt finished, False on timeout or if
            start() was never called.
        """
        if self._watcher is None:
            return False
        if self._launched.is_set():
            return True
        try:
            await asyncio.wait_for(self._launched.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def wait(self, timeout: Optional[float]) -> bool:
        """Wait for the process to exit.

        Returns:
            True if it exited (or failed to launch), False on timeout.
        """
        return await self._completion.wait(timeout)

    def kill(self) -> bool:
        """Send SIGKILL.

        Returns:
            False if the process already exited or was never launched.

        Raises:
            OSError: If the signal could not be delivered for another reason.
        """
        if self._process is None or self._process.returncode is not None:
            return False
        try:
            self._process.kill()
        except ProcessLookupError:
            return False
        return True

    def exit_error(self) -> BaseException:
        """Describe why the process is gone.

        Returns:
            The launch error, or a ProcessExitedError with the exit code.

        Raises:
            RuntimeError: If the process has not exited.
        """
        error = self._completion.exception()
        if error is not None:
            return error
        returncode = self._completion.result()
        return ProcessExitedError(
            f"{self._command.binary} exited with code {returncode} "
            f"while starting on {self._command.bind_address}",
            returncode=returncode,
        )
