# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Bounded polling helpers for tests that wait on external services."""

import asyncio
import logging
import os
from typing import Awaitable, Callable, Optional

_LOG = logging.getLogger(__name__)

# Overrides the timeout multiplier (e.g. "2.5")
MULTIPLIER_ENV = "VAULT_TEST_MULTIPLIER"

# Multiplier used when running under CI without an explicit override
CI_MULTIPLIER = 3.0


class NotReadyError(Exception):
    """Raised when a polled condition stayed false until the deadline."""


def test_multiplier() -> float:
    """Factor applied to default timeouts.

    Slow CI machines get more time than a developer laptop.
    """
    override = os.environ.get(MULTIPLIER_ENV)
    if override:
        try:
            value = float(override)
        except ValueError:
            _LOG.warning("Ignoring invalid %s=%r", MULTIPLIER_ENV, override)
        else:
            if value > 0:
                return value
            _LOG.warning("Ignoring non-positive %s=%r", MULTIPLIER_ENV, override)

    if os.environ.get("CI"):
        return CI_MULTIPLIER
    return 1.0


# Keep pytest from collecting the helper as a test.
test_multiplier.__test__ = False  # type: ignore[attr-defined]


async def wait_for_result(
    check: Callable[[], Awaitable[bool]],
    timeout: float,
    interval: float = 0.05,
    description: str = "condition",
    fatal_errors: tuple[type[Exception], ...] = (),
) -> None:
    """Poll check until it returns True.

    An exception raised by check means "not ready yet". A False result is
    recorded as NotReadyError. Once the deadline passes, the most recent
    error is raised, so the caller always sees why the wait failed.

    Each call to check is cut off at the remaining time (but is given at
    least one interval), so a check that hangs cannot hold the wait past
    the deadline.

    Args:
        check: Async callable returning True once the condition holds.
        timeout: Overall time budget in seconds.
        interval: Delay between attempts in seconds.
        description: Used in log and error messages.
        fatal_errors: Exception types that end the wait immediately.

    Raises:
        Exception: The last error seen before the deadline, or the first
            error of a fatal_errors type.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = 0
    last_error: Optional[Exception] = None

    while True:
        attempts += 1
        budget = max(deadline - loop.time(), interval)
        try:
            ready = await asyncio.wait_for(check(), timeout=budget)
        except asyncio.TimeoutError:
            # Checked first: TimeoutError is an OSError subclass
            last_error = NotReadyError(
                f"{description} not satisfied: check did not finish within {budget:.2f}s"
            )
        except fatal_errors:
            raise
        except Exception as e:
            last_error = e
        else:
            if ready:
                _LOG.debug("%s satisfied after %d attempts", description, attempts)
                return
            last_error = NotReadyError(f"{description} not satisfied")

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    _LOG.debug(
        "Gave up waiting for %s after %d attempts: %s", description, attempts, last_error
    )
    assert last_error is not None
    raise last_error
