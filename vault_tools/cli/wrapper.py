# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Vault CLI wrapper.

Locates the vault binary and runs one-shot commands such as `vault version`.
Long-running dev servers are handled by vault_harness instead.
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from typing import Optional

_LOG = logging.getLogger(__name__)

# Environment variable that points at the vault binary to use
VAULT_BINARY_ENV = "VAULT_BINARY"

# Client settings of the developer's own Vault that must not reach test servers
_SCRUBBED_ENV = ("VAULT_ADDR", "VAULT_TOKEN", "VAULT_NAMESPACE")

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")


class VaultCliError(Exception):
    """Raised when a vault command fails."""

    def __init__(self, message: str, returncode: int = 1, output: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.output = output


@dataclass
class CliResult:
    """Result of a vault command."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined and cleaned output."""
        return strip_ansi(self.stdout + self.stderr)


def strip_ansi(text: str) -> str:
    """Strip ANSI escape codes from text."""
    return _ANSI_ESCAPE.sub("", text)


def cli_environment() -> dict[str, str]:
    """Build the environment for vault child processes.

    Copies the current environment, drops the caller's own Vault client
    settings and makes sure HOME is set (vault stores its token helper
    state there).
    """
    env = os.environ.copy()
    for name in _SCRUBBED_ENV:
        env.pop(name, None)
    if "HOME" not in env:
        env["HOME"] = tempfile.gettempdir()
    return env


def default_binary() -> str:
    """Name or path of the vault binary, honoring VAULT_BINARY."""
    return os.environ.get(VAULT_BINARY_ENV) or "vault"


class VaultCli:
    """Wrapper for the vault command line.

    Can use vault from:
    1. Explicit path
    2. VAULT_BINARY environment variable
    3. System PATH

    Usage:
        cli = VaultCli()
        print(cli.version())
    """

    def __init__(self, vault_path: Optional[str] = None):
        """Initialize the CLI wrapper.

        Args:
            vault_path: Explicit path to the vault executable.
        """
        self._vault_path = self._resolve_vault_path(vault_path)
        _LOG.debug("Using vault at: %s", self._vault_path)

    def _resolve_vault_path(self, explicit_path: Optional[str]) -> str:
        candidate = explicit_path or os.environ.get(VAULT_BINARY_ENV)
        if candidate:
            if os.path.isfile(candidate):
                return candidate
            found = shutil.which(candidate)
            if found:
                return found
            raise VaultCliError(f"Vault binary not found at: {candidate}")

        system_path = shutil.which("vault")
        if system_path:
            return system_path

        raise VaultCliError(
            "vault not found. Install it from https://developer.hashicorp.com/vault/install "
            f"or set {VAULT_BINARY_ENV}"
        )

    @property
    def path(self) -> str:
        """Path to the vault executable."""
        return self._vault_path

    def run(
        self,
        args: list[str],
        timeout: float = 60.0,
        check: bool = False,
    ) -> CliResult:
        """Run a vault command.

        Args:
            args: Command arguments (without 'vault' prefix).
            timeout: Command timeout in seconds.
            check: If True, raise VaultCliError on non-zero exit.

        Returns:
            CliResult with command output.

        Raises:
            VaultCliError: If the command cannot be run, times out, or
                check=True and it fails.
        """
        cmd = [self._vault_path] + args
        _LOG.info("Running: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=cli_environment(),
            )
        except subprocess.TimeoutExpired as e:
            raise VaultCliError(
                f"Command timed out after {timeout}s: {' '.join(args)}"
            ) from e
        except OSError as e:
            raise VaultCliError(f"Failed to run {self._vault_path}: {e}") from e

        cli_result = CliResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=result.returncode,
        )

        if check and not cli_result.success:
            raise VaultCliError(
                f"Command failed: {' '.join(args)}\n{cli_result.output}",
                returncode=cli_result.returncode,
                output=cli_result.output,
            )

        return cli_result

    def version(self, timeout: float = 10.0) -> str:
        """Get the raw output of `vault version`.

        Raises:
            VaultCliError: If the command fails.
        """
        return self.run(["version"], timeout=timeout, check=True).stdout


def vault_version(vault_path: Optional[str] = None) -> str:
    """Return the output of `vault version`.

    Raises:
        VaultCliError: If vault cannot be found or the command fails.
    """
    return VaultCli(vault_path).version()
