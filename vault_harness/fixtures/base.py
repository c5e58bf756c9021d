# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Base fixture protocol for integration tests.

Fixtures are test infrastructure components that can be started and
stopped. Each fixture type defines what it provides once started.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Fixture(Protocol):
    """Protocol for test fixtures.

    Example:
        async with VaultServerFixture() as vault:
            ...

        # Or manual lifecycle
        vault = VaultServerFixture()
        await vault.start()
        try:
            ...
        finally:
            await vault.stop()
    """

    async def start(self) -> None:
        """Start the fixture and allocate resources.

        Raises:
            RuntimeError: If the fixture cannot be started.
        """
        ...

    async def stop(self) -> None:
        """Stop the fixture and release resources, also after a failed start."""
        ...

    async def __aenter__(self) -> "Fixture":
        ...

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        ...
