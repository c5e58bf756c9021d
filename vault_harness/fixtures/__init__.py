# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Test fixtures for integration tests."""

from .base import Fixture
from .vault_server import (
    VaultFixtureError,
    VaultServerFixture,
    VaultStartError,
    VaultStopError,
)

__all__ = [
    "Fixture",
    "VaultFixtureError",
    "VaultServerFixture",
    "VaultStartError",
    "VaultStopError",
]
