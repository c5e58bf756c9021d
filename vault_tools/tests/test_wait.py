# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Unit tests for bounded polling helpers."""

import asyncio
import os
import unittest
from unittest.mock import patch

from vault_tools.api.client import VaultApiError
from vault_tools.wait import NotReadyError, test_multiplier, wait_for_result


class TestMultiplier(unittest.TestCase):
    """Tests for test_multiplier()."""

    def test_default(self):
        """Test the multiplier is 1 by default."""
        with patch.dict(os.environ, {}, clear=True):
            self.assertEqual(test_multiplier(), 1.0)

    def test_ci(self):
        """Test CI gets the larger multiplier."""
        with patch.dict(os.environ, {"CI": "true"}, clear=True):
            self.assertEqual(test_multiplier(), 3.0)

    def test_override(self):
        """Test the environment override wins over CI."""
        with patch.dict(os.environ, {"CI": "true", "VAULT_TEST_MULTIPLIER": "2.5"}, clear=True):
            self.assertEqual(test_multiplier(), 2.5)

    def test_invalid_override_ignored(self):
        """Test unusable overrides fall back to the default."""
        with patch.dict(os.environ, {"VAULT_TEST_MULTIPLIER": "fast"}, clear=True):
            self.assertEqual(test_multiplier(), 1.0)
        with patch.dict(os.environ, {"VAULT_TEST_MULTIPLIER": "-1"}, clear=True):
            self.assertEqual(test_multiplier(), 1.0)


class TestWaitForResult(unittest.IsolatedAsyncioTestCase):
    """Tests for wait_for_result()."""

    async def test_succeeds_after_errors(self):
        """Test errors are retried until the check passes."""
        calls = []

        async def check():
            calls.append(1)
            if len(calls) < 3:
                raise VaultApiError("connection refused")
            return True

        await wait_for_result(check, timeout=5.0, interval=0.001)
        self.assertEqual(len(calls), 3)

    async def test_raises_most_recent_error(self):
        """Test the last error is raised at the deadline."""
        calls = []

        async def check():
            calls.append(1)
            raise VaultApiError(f"failure {len(calls)}")

        with self.assertRaises(VaultApiError) as ctx:
            await wait_for_result(check, timeout=0.05, interval=0.001)

        self.assertEqual(str(ctx.exception), f"failure {len(calls)}")

    async def test_false_result_becomes_not_ready(self):
        """Test a False result is reported as NotReadyError."""
        async def check():
            return False

        with self.assertRaises(NotReadyError) as ctx:
            await wait_for_result(check, timeout=0.02, interval=0.001, description="vault init")
        self.assertIn("vault init", str(ctx.exception))

    async def test_not_ready_after_error_reports_not_ready(self):
        """Test a later False result replaces an earlier error."""
        results = [VaultApiError("refused")]

        async def check():
            if results:
                raise results.pop()
            return False

        with self.assertRaises(NotReadyError):
            await wait_for_result(check, timeout=0.05, interval=0.001)

    async def test_fatal_error_ends_wait(self):
        """Test fatal errors are raised without retrying."""
        calls = []

        async def check():
            calls.append(1)
            raise FileNotFoundError("vault")

        with self.assertRaises(FileNotFoundError):
            await wait_for_result(
                check, timeout=5.0, interval=0.001, fatal_errors=(OSError,)
            )
        self.assertEqual(calls, [1])

    async def test_hanging_check_is_cut_off_at_deadline(self):
        """Test a check that never returns cannot outlast the timeout."""

        async def check():
            await asyncio.sleep(60)
            return True

        loop = asyncio.get_running_loop()
        began = loop.time()
        with self.assertRaises(NotReadyError) as ctx:
            await wait_for_result(check, timeout=0.2, interval=0.01, description="vault init")

        self.assertLess(loop.time() - began, 2.0)
        self.assertIn("did not finish", str(ctx.exception))

    async def test_cut_off_check_is_not_a_fatal_os_error(self):
        """Test a cut-off check reports NotReadyError even when OSError is fatal."""

        async def check():
            await asyncio.sleep(60)
            return True

        with self.assertRaises(NotReadyError):
            await wait_for_result(check, timeout=0.1, interval=0.01, fatal_errors=(OSError,))

    async def test_checks_at_least_once(self):
        """Test a zero timeout still runs the check."""
        calls = []

        async def check():
            calls.append(1)
            return True

        await wait_for_result(check, timeout=0.0)
        self.assertEqual(calls, [1])


if __name__ == "__main__":
    unittest.main()
