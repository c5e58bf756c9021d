# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Provisional port reservation for tests that launch network servers.

Ports handed out by a PortReserver are exclusive within the process until
they are released. Across processes, exclusivity is best effort: each
reserver starts scanning at a random offset and only hands out ports that
can be bound at the time of the call, so a collision with another test
process is rare and shows up as a bind failure the caller can retry.
"""

import logging
import random
import socket
import threading
from typing import Iterable, Optional

_LOG = logging.getLogger(__name__)

DEFAULT_LOW_PORT = 20000
DEFAULT_HIGH_PORT = 29999


class PortExhaustedError(Exception):
    """Raised when no more free ports are available in the range."""

    def __init__(self, message: str, requested: int = 0):
        super().__init__(message)
        self.requested = requested


def _can_bind(host: str, port: int) -> bool:
    """Check whether a TCP port can currently be bound on host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind((host, port))
        except OSError:
            return False
    return True


class PortReserver:
    """Hands out ports from a fixed range and takes them back.

    Usage:
        reserver = PortReserver()
        ports = reserver.acquire(2)
        try:
            ...
        finally:
            reserver.release(ports)
    """

    def __init__(
        self,
        low: int = DEFAULT_LOW_PORT,
        high: int = DEFAULT_HIGH_PORT,
        host: str = "127.0.0.1",
        rng: Optional[random.Random] = None,
    ):
        """Initialize the reserver.

        Args:
            low: First port of the range (inclusive).
            high: Last port of the range (inclusive).
            host: Address used to probe whether a port is bindable.
            rng: Random source for the initial scan offset.
        """
        if not 0 < low <= high <= 65535:
            raise ValueError(f"Invalid port range: {low}-{high}")

        self._low = low
        self._high = high
        self._host = host
        self._lock = threading.Lock()
        self._reserved: set[int] = set()

        rng = rng or random.Random()
        self._cursor = rng.randint(0, high - low)

    @property
    def size(self) -> int:
        """Number of ports in the range."""
        return self._high - self._low + 1

    @property
    def reserved(self) -> list[int]:
        """Sorted snapshot of the currently reserved ports."""
        with self._lock:
            return sorted(self._reserved)

    def acquire(self, count: int) -> list[int]:
        """Reserve count ports.

        Args:
            count: Number of ports to reserve.

        Returns:
            List of reserved ports, in the order they were found.

        Raises:
            ValueError: If count is less than one.
            PortExhaustedError: If the range has too few free ports.
        """
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")

        ports: list[int] = []
        with self._lock:
            for _ in range(self.size):
                if len(ports) == count:
                    break

                port = self._low + self._cursor
                self._cursor = (self._cursor + 1) % self.size

                if port in self._reserved:
                    continue
                if not _can_bind(self._host, port):
                    _LOG.debug("Port %d is in use, skipping", port)
                    continue

                self._reserved.add(port)
                ports.append(port)

            if len(ports) < count:
                self._reserved.difference_update(ports)
                raise PortExhaustedError(
                    f"Could only find {len(ports)} of {count} free ports "
                    f"in {self._low}-{self._high}",
                    requested=count,
                )

        _LOG.debug("Reserved ports %s", ports)
        return ports

    def release(self, ports: Iterable[int]) -> None:
        """Return previously reserved ports.

        Args:
            ports: Ports obtained from acquire().

        Raises:
            ValueError: If a port is not currently reserved. Nothing is
                released in that case.
        """
        ports = list(ports)
        with self._lock:
            unknown = [p for p in ports if p not in self._reserved]
            if unknown or len(set(ports)) != len(ports):
                raise ValueError(f"Ports not reserved (or released twice): {ports}")
            self._reserved.difference_update(ports)

        _LOG.debug("Released ports %s", ports)


_DEFAULT_RESERVER = PortReserver()


def default_reserver() -> PortReserver:
    """Get the process-wide reserver."""
    return _DEFAULT_RESERVER


def acquire(count: int) -> list[int]:
    """Reserve ports from the process-wide reserver."""
    return _DEFAULT_RESERVER.acquire(count)


def release(ports: Iterable[int]) -> None:
    """Return ports to the process-wide reserver."""
    _DEFAULT_RESERVER.release(ports)
