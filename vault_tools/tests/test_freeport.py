# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Unit tests for port reservation."""

import random
import socket
import threading
import unittest
from unittest.mock import patch

from vault_tools.freeport import PortExhaustedError, PortReserver, _can_bind


class TestPortReserver(unittest.TestCase):
    """Tests for PortReserver."""

    def setUp(self):
        # Keep results independent of what else runs on this machine
        patcher = patch("vault_tools.freeport._can_bind", return_value=True)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_acquire_is_exclusive(self):
        """Test acquired ports are unique and reserved."""
        reserver = PortReserver(low=21000, high=21099, rng=random.Random(1))
        first = reserver.acquire(3)
        second = reserver.acquire(3)

        self.assertEqual(len(first), 3)
        self.assertEqual(len(second), 3)
        self.assertFalse(set(first) & set(second))
        self.assertEqual(reserver.reserved, sorted(first + second))

    def test_ports_are_in_range(self):
        """Test ports come from the configured range."""
        reserver = PortReserver(low=21100, high=21109, rng=random.Random(2))
        for port in reserver.acquire(5):
            self.assertGreaterEqual(port, 21100)
            self.assertLessEqual(port, 21109)

    def test_release_makes_ports_available(self):
        """Test released ports can be acquired again."""
        reserver = PortReserver(low=21200, high=21201, rng=random.Random(3))
        ports = reserver.acquire(2)
        with self.assertRaises(PortExhaustedError):
            reserver.acquire(1)

        reserver.release(ports)
        self.assertEqual(reserver.reserved, [])
        self.assertEqual(len(reserver.acquire(2)), 2)

    def test_exhausted_request_reserves_nothing(self):
        """Test an unsatisfiable request leaves the pool unchanged."""
        reserver = PortReserver(low=21300, high=21302, rng=random.Random(4))
        with self.assertRaises(PortExhaustedError) as ctx:
            reserver.acquire(4)
        self.assertEqual(ctx.exception.requested, 4)
        self.assertEqual(reserver.reserved, [])

    def test_double_release_raises(self):
        """Test releasing a port twice raises."""
        reserver = PortReserver(low=21400, high=21409, rng=random.Random(5))
        ports = reserver.acquire(2)
        reserver.release(ports)

        with self.assertRaises(ValueError):
            reserver.release(ports)

    def test_release_unknown_port_releases_nothing(self):
        """Test a bad release leaves valid ports reserved."""
        reserver = PortReserver(low=21500, high=21509, rng=random.Random(6))
        ports = reserver.acquire(1)

        with self.assertRaises(ValueError):
            reserver.release(ports + [1])
        self.assertEqual(reserver.reserved, ports)

    def test_skips_ports_in_use(self):
        """Test ports that cannot be bound are skipped."""
        reserver = PortReserver(low=21650, high=21651, rng=random.Random(7))
        with patch("vault_tools.freeport._can_bind", side_effect=lambda h, p: p != 21650):
            self.assertEqual(reserver.acquire(1), [21651])

    def test_can_bind_detects_listener(self):
        """Test the bind probe sees a listening socket."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            s.listen()
            busy = s.getsockname()[1]
            self.assertFalse(_can_bind("127.0.0.1", busy))

    def test_invalid_arguments(self):
        """Test invalid ranges and counts raise ValueError."""
        with self.assertRaises(ValueError):
            PortReserver(low=100, high=50)
        with self.assertRaises(ValueError):
            PortReserver(low=21600, high=21609).acquire(0)

    def test_concurrent_acquire_never_overlaps(self):
        """Test threads never receive the same port."""
        reserver = PortReserver(low=21700, high=21899, rng=random.Random(8))
        results: list[list[int]] = []
        lock = threading.Lock()

        def worker():
            ports = reserver.acquire(5)
            with lock:
                results.append(ports)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        all_ports = [p for ports in results for p in ports]
        self.assertEqual(len(all_ports), 40)
        self.assertEqual(len(set(all_ports)), 40)


if __name__ == "__main__":
    unittest.main()
