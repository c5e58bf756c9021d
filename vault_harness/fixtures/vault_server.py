# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Vault dev-server fixture for integration tests.

Launches `vault server -dev` on a reserved loopback port with a generated
root token, waits until the server reports itself initialized and hands out
an authenticated VaultClient. The server is killed and its ports released
when the fixture stops.

The vault binary is taken from the VAULT_BINARY environment variable, or
looked up on PATH as "vault".
"""

import asyncio
import logging
import random
import sys
import uuid
from typing import Optional

from vault_tools.api.client import VaultClient, VaultConfig
from vault_tools.cli.wrapper import default_binary
from vault_tools.freeport import PortReserver, default_reserver
from vault_tools.wait import test_multiplier, wait_for_result

from ..command import ServerCommand, build_dev_server_command
from ..process import ProcessExitedError, ServerProcess
from ..server_log import ServerLogFormatter, ServerLogSink, server_logger

_LOG = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 11
DEFAULT_START_TIMEOUT = 0.5
DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_READY_INTERVAL = 0.05
DEFAULT_STOP_TIMEOUT = 1.0
DEFAULT_MAX_BACKOFF = 2.0


class VaultFixtureError(RuntimeError):
    """Base class for vault fixture failures."""


class VaultStartError(VaultFixtureError):
    """Raised when vault could not be started within the attempt budget."""


class VaultStopError(VaultFixtureError):
    """Raised when vault could not be confirmed stopped."""


class VaultServerFixture:
    """Fixture running a throwaway Vault dev server.

    Each attempt reserves a fresh port and generates a fresh root token. A
    launch that fails (the binary cannot be run, the process exits within
    the start timeout, or the API never reports initialized) is retried
    after a random delay until the attempt budget is used up. Ports from
    failed attempts stay reserved until stop().

    Example:
        vault = VaultServerFixture()
        await vault.start()
        try:
            vault.client.write_secret("secret/foo", {"bar": "baz"})
        finally:
            await vault.stop()

        # Or as a context manager
        async with VaultServerFixture() as vault:
            print(vault.http_address)

        # Single attempt, the caller deals with port conflicts
        vault = VaultServerFixture.delayed()
        await vault.start()
    """

    def __init__(
        self,
        binary: Optional[str] = None,
        *,
        reserver: Optional[PortReserver] = None,
        rng: Optional[random.Random] = None,
        attempts: int = DEFAULT_ATTEMPTS,
        start_timeout: Optional[float] = None,
        ready_timeout: Optional[float] = None,
        ready_interval: float = DEFAULT_READY_INTERVAL,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        show_server_logs: bool = False,
    ) -> None:
        """Initialize the fixture. Nothing is reserved or launched yet.

        Args:
            binary: vault executable. Defaults to VAULT_BINARY or "vault".
            reserver: Port reservation source. Defaults to the process-wide
                reserver.
            rng: Random source for root tokens and retry delays.
            attempts: Launch attempts before giving up.
            start_timeout: Time a fresh process must survive before its API
                is polled. Defaults to 0.5s times test_multiplier().
            ready_timeout: Time the API gets to report initialized.
                Defaults to 5s times test_multiplier().
            ready_interval: Delay between readiness polls in seconds.
            stop_timeout: Time the process gets to exit after SIGKILL.
            max_backoff: Upper bound of the random delay between attempts.
            show_server_logs: If True, print server output to stderr.
        """
        if attempts < 1:
            raise ValueError(f"attempts must be positive, got {attempts}")

        multiplier = test_multiplier()
        self._binary = binary or default_binary()
        self._reserver = reserver or default_reserver()
        self._rng = rng or random.Random()
        self._attempts = attempts
        self._start_timeout = (
            start_timeout if start_timeout is not None else DEFAULT_START_TIMEOUT * multiplier
        )
        self._ready_timeout = (
            ready_timeout if ready_timeout is not None else DEFAULT_READY_TIMEOUT * multiplier
        )
        self._ready_interval = ready_interval
        self._stop_timeout = stop_timeout
        self._max_backoff = max_backoff
        self._show_server_logs = show_server_logs

        self._delayed = False
        self._started = False
        self._ports: list[int] = []
        self._command: Optional[ServerCommand] = None
        self._config: Optional[VaultConfig] = None
        self._client: Optional[VaultClient] = None
        self._sink: Optional[ServerLogSink] = None
        self._process: Optional[ServerProcess] = None
        self._log_handler: Optional[logging.Handler] = None
        self._log_target: Optional[logging.Logger] = None

    @classmethod
    async def create(cls, binary: Optional[str] = None, **kwargs) -> "VaultServerFixture":
        """Construct a fixture and start it with retries.

        Raises:
            VaultStartError: If every attempt failed. All reserved ports
                have been released by then.
        """
        fixture = cls(binary, **kwargs)
        await fixture.start()
        return fixture

    @classmethod
    def delayed(cls, binary: Optional[str] = None, **kwargs) -> "VaultServerFixture":
        """Construct a fixture whose port and token are fixed up front.

        start() then makes a single attempt and raises its error. It is the
        caller's responsibility to deal with port conflicts, and to call
        stop() to release the port.
        """
        fixture = cls(binary, **kwargs)
        fixture._delayed = True
        fixture._prepare(fixture._reserve_port())
        return fixture

    def _reserve_port(self) -> int:
        port = self._reserver.acquire(1)[0]
        self._ports.append(port)
        return port

    def _new_token(self) -> str:
        return str(uuid.UUID(int=self._rng.getrandbits(128), version=4))

    def _prepare(self, port: int) -> None:
        """Build command, client and config for one attempt on port."""
        token = self._new_token()
        command = build_dev_server_command(self._binary, port, token)

        client = VaultClient(command.http_address, max_retries=0)
        client.set_token(token)
        if self._client is not None:
            self._client.close()

        self._command = command
        self._client = client
        self._config = VaultConfig(enabled=True, token=token, addr=command.http_address)
        self._sink = ServerLogSink(server_logger(port), secrets=[token])

        if self._show_server_logs:
            self._attach_log_handler(self._sink.logger)

    async def start(self) -> None:
        """Launch vault and wait until its API reports initialized.

        Raises:
            RuntimeError: If the fixture was already started.
            VaultStartError: If every attempt failed (retrying mode).
            Exception: The attempt's own error (delayed mode): an OSError
                from the launch, ProcessExitedError, or the last readiness
                poll error.
        """
        if self._started:
            raise RuntimeError("Vault fixture already started")
        self._started = True

        if self._delayed:
            await self._launch()
        else:
            await self._start_with_retry()

        _LOG.info("Vault fixture started at %s", self.http_address)

    async def _start_with_retry(self) -> None:
        for remaining in reversed(range(self._attempts)):
            port = self._reserve_port()
            self._prepare(port)
            try:
                await self._launch()
            except Exception as e:
                await self._discard_process()
                if remaining == 0:
                    self._release_resources()
                    raise VaultStartError(
                        f"Failed to start vault after {self._attempts} attempts: {e}"
                    ) from e

                delay = self._rng.uniform(0, self._max_backoff)
                _LOG.warning(
                    "Vault failed to start on port %d: %s. Retrying in %.2fs "
                    "(%d attempts left)",
                    port,
                    e,
                    delay,
                    remaining,
                )
                await asyncio.sleep(delay)
            else:
                return

    async def _launch(self) -> None:
        """Run one attempt: launch, survive the start timeout, get ready."""
        assert self._command is not None and self._sink is not None

        self._process = ServerProcess(self._command, self._sink)
        self._process.start()

        if await self._process.wait(self._start_timeout):
            raise self._process.exit_error()

        await wait_for_result(
            self._check_initialized,
            timeout=self._ready_timeout,
            interval=self._ready_interval,
            description=f"vault at {self._command.http_address} to initialize",
            fatal_errors=(ProcessExitedError, OSError),
        )

    async def _check_initialized(self) -> bool:
        assert self._process is not None
        if self._process.exited:
            raise self._process.exit_error()
        # A server that accepts but never answers must not outlive the deadline
        return await asyncio.to_thread(
            self.client.init_status, timeout=self._ready_timeout or None
        )

    async def _discard_process(self) -> None:
        """Kill the process of a failed attempt, without raising."""
        proc, self._process = self._process, None
        if proc is None:
            return

        await proc.wait_launched(self._stop_timeout)
        try:
            proc.kill()
        except OSError as e:
            _LOG.warning("Failed to kill vault pid %s: %s", proc.pid, e)
            return

        if not await proc.wait(self._stop_timeout):
            _LOG.warning(
                "Vault pid %s did not exit within %.1fs", proc.pid, self._stop_timeout
            )

    async def stop(self) -> None:
        """Kill vault and release every port the fixture reserved.

        Meant to be called once. Ports are released even if stopping fails.

        Raises:
            VaultStopError: If the kill signal failed for a reason other
                than the process having exited, or the process did not
                launch or exit within the stop timeout.
        """
        proc = self._process
        try:
            if proc is None or not proc.started:
                return

            # start() may have been cancelled while the watcher was still
            # spawning the process. Wait for the spawn to settle before
            # deciding there is nothing to kill.
            if not await proc.wait_launched(self._stop_timeout):
                raise VaultStopError(
                    f"Timed out waiting for {proc.command.binary} to launch"
                )
            if proc.process is None:
                return

            kill_error: Optional[OSError] = None
            try:
                if not proc.kill():
                    _LOG.info("Vault pid %s already exited", proc.pid)
                    return
            except OSError as e:
                _LOG.error("Failed to kill vault pid %s: %s", proc.pid, e)
                kill_error = e

            if not await proc.wait(self._stop_timeout):
                raise VaultStopError(
                    f"Timed out waiting for vault pid {proc.pid} to terminate"
                ) from kill_error
            if kill_error is not None:
                raise VaultStopError(
                    f"Failed to kill vault pid {proc.pid}: {kill_error}"
                ) from kill_error
        finally:
            self._process = None
            self._release_resources()
            _LOG.info("Vault fixture stopped")

    def _release_resources(self) -> None:
        try:
            if self._ports:
                ports, self._ports = self._ports, []
                self._reserver.release(ports)
        finally:
            if self._client is not None:
                self._client.close()
            self._detach_log_handler()

    def _attach_log_handler(self, logger: logging.Logger) -> None:
        self._detach_log_handler()

        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(ServerLogFormatter())
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        # Prevent propagation to root logger to avoid duplicate output
        logger.propagate = False

        self._log_handler = handler
        self._log_target = logger

    def _detach_log_handler(self) -> None:
        if self._log_handler is None or self._log_target is None:
            return
        self._log_target.removeHandler(self._log_handler)
        self._log_target.setLevel(logging.NOTSET)
        self._log_target.propagate = True
        self._log_handler = None
        self._log_target = None

    def _prepared(self) -> ServerCommand:
        if self._command is None:
            raise RuntimeError("Vault fixture not started")
        return self._command

    @property
    def port(self) -> int:
        """Port of the current (or last) attempt."""
        return self._prepared().port

    @property
    def ports(self) -> tuple[int, ...]:
        """All ports currently held by the fixture."""
        return tuple(self._ports)

    @property
    def bind_address(self) -> str:
        """Listen address, e.g. "127.0.0.1:20123"."""
        return self._prepared().bind_address

    @property
    def http_address(self) -> str:
        """API address, e.g. "http://127.0.0.1:20123"."""
        return self._prepared().http_address

    @property
    def root_token(self) -> str:
        self._prepared()
        assert self._config is not None
        return self._config.token

    @property
    def config(self) -> VaultConfig:
        self._prepared()
        assert self._config is not None
        return self._config

    @property
    def client(self) -> VaultClient:
        """VaultClient authenticated with the root token.

        Raises:
            RuntimeError: If the fixture is not started.
        """
        self._prepared()
        assert self._client is not None
        return self._client

    @property
    def process(self) -> Optional[ServerProcess]:
        return self._process

    async def __aenter__(self) -> "VaultServerFixture":
        try:
            await self.start()
        except BaseException:
            await self.stop()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
