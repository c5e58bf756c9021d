# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Unit tests for CompletionSignal."""

import asyncio
import unittest

from vault_harness.completion import CompletionSignal


class TestCompletionSignal(unittest.IsolatedAsyncioTestCase):
    """Tests for CompletionSignal."""

    async def test_wait_times_out(self):
        """Test wait() returns False when nothing completes."""
        signal = CompletionSignal()
        self.assertFalse(await signal.wait(0.01))
        self.assertFalse(signal.done())
        with self.assertRaises(RuntimeError):
            signal.result()

    async def test_result_seen_by_all_readers(self):
        """Test every waiter sees the same result."""
        signal = CompletionSignal()

        readers = [asyncio.create_task(signal.wait(1.0)) for _ in range(3)]
        await asyncio.sleep(0)
        signal.set_result(0)

        self.assertEqual(await asyncio.gather(*readers), [True, True, True])
        self.assertEqual(signal.result(), 0)
        # Reading does not consume the value
        self.assertTrue(await signal.wait(0))
        self.assertEqual(signal.result(), 0)

    async def test_exception(self):
        """Test a stored exception is raised by result()."""
        signal = CompletionSignal()
        signal.set_exception(FileNotFoundError("vault"))

        self.assertTrue(await signal.wait(0))
        self.assertIsInstance(signal.exception(), FileNotFoundError)
        with self.assertRaises(FileNotFoundError):
            signal.result()

    async def test_second_write_rejected(self):
        """Test the signal can only be completed once."""
        signal = CompletionSignal()
        signal.set_result(1)

        with self.assertRaises(RuntimeError):
            signal.set_result(2)
        with self.assertRaises(RuntimeError):
            signal.set_exception(OSError("late"))
        self.assertEqual(signal.result(), 1)


if __name__ == "__main__":
    unittest.main()
