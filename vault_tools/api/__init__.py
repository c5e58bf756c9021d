# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Vault HTTP API module."""

from .client import VaultApiError, VaultClient, VaultConfig

__all__ = ["VaultApiError", "VaultClient", "VaultConfig"]
