# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""One-shot completion signal shared by a process watcher and its readers."""

import asyncio
from typing import Any, Optional

_UNSET = object()


class CompletionSignal:
    """Single-write, multi-read notification.

    The writer calls set_result() or set_exception() exactly once. Any
    number of readers can wait() on it; waiting never consumes the value.

    Example:
        signal = CompletionSignal()
        ...
        if await signal.wait(timeout=1.0):
            returncode = signal.result()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._value: Any = _UNSET
        self._exception: Optional[BaseException] = None

    def done(self) -> bool:
        return self._event.is_set()

    def set_result(self, value: Any) -> None:
        """Complete the signal with a value.

        Raises:
            RuntimeError: If the signal has already been completed.
        """
        self._check_unset()
        self._value = value
        self._event.set()

    def set_exception(self, exc: BaseException) -> None:
        """Complete the signal with an error.

        Raises:
            RuntimeError: If the signal has already been completed.
        """
        self._check_unset()
        self._exception = exc
        self._event.set()

    def _check_unset(self) -> None:
        if self._event.is_set():
            raise RuntimeError("Completion signal already set")

    def result(self) -> Any:
        """Get the completed value, raising the stored exception if any.

        Raises:
            RuntimeError: If the signal has not completed yet.
        """
        if not self._event.is_set():
            raise RuntimeError("Completion signal not set")
        if self._exception is not None:
            raise self._exception
        return self._value

    def exception(self) -> Optional[BaseException]:
        """Get the stored exception, or None if completed with a value."""
        if not self._event.is_set():
            raise RuntimeError("Completion signal not set")
        return self._exception

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for completion.

        Args:
            timeout: Maximum time to wait in seconds, None for no limit.

        Returns:
            True if the signal completed, False on timeout.
        """
        if self._event.is_set():
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True
