# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Vault CLI wrapper module."""

from .wrapper import CliResult, VaultCli, VaultCliError, cli_environment, vault_version

__all__ = ["CliResult", "VaultCli", "VaultCliError", "cli_environment", "vault_version"]
