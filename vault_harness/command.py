# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Builds the command line for a Vault dev-mode server."""

from dataclasses import dataclass, field

from vault_tools.cli.wrapper import cli_environment

LOOPBACK_HOST = "127.0.0.1"


@dataclass(frozen=True)
class ServerCommand:
    """An unstarted vault server invocation."""

    argv: list[str] = field(repr=False)
    env: dict[str, str] = field(repr=False)
    port: int
    bind_address: str
    http_address: str

    @property
    def binary(self) -> str:
        return self.argv[0]


def build_dev_server_command(binary: str, port: int, token: str) -> ServerCommand:
    """Describe a dev-mode vault server listening on the loopback port.

    The token is pre-seeded as the root token, so no unseal or login step
    is needed before the server can be used.

    Args:
        binary: Name or path of the vault executable.
        port: Loopback port to listen on.
        token: Root token ID.

    Returns:
        The command, not yet started.
    """
    bind_address = f"{LOOPBACK_HOST}:{port}"
    argv = [
        binary,
        "server",
        "-dev",
        f"-dev-listen-address={bind_address}",
        f"-dev-root-token-id={token}",
    ]
    return ServerCommand(
        argv=argv,
        env=cli_environment(),
        port=port,
        bind_address=bind_address,
        http_address=f"http://{bind_address}",
    )
