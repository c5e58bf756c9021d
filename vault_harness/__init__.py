# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Integration test harness for code that talks to Vault.

This package launches throwaway Vault dev servers for tests. The only
prerequisite is a vault binary on $PATH (or in VAULT_BINARY).

Example usage:
    from vault_harness import VaultServerFixture

    class MyTest(unittest.IsolatedAsyncioTestCase):
        async def asyncSetUp(self):
            self.vault = await VaultServerFixture.create()
            self.addAsyncCleanup(self.vault.stop)

        async def test_secret(self):
            self.vault.client.write_secret("secret/foo", {"bar": "baz"})

    # Or with pytest-asyncio:
    @pytest.fixture
    async def vault():
        async with VaultServerFixture() as fixture:
            yield fixture
"""

from .fixtures.base import Fixture
from .fixtures.vault_server import (
    VaultFixtureError,
    VaultServerFixture,
    VaultStartError,
    VaultStopError,
)
from .process import ProcessExitedError

__all__ = [
    "Fixture",
    "ProcessExitedError",
    "VaultFixtureError",
    "VaultServerFixture",
    "VaultStartError",
    "VaultStopError",
]
