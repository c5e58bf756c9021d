#!/usr/bin/env python3
# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Run a throwaway Vault dev server the same way the test fixture does.

Handy for poking at a test setup by hand. The server is killed on Ctrl-C.

Usage:
    python -m vault_harness.scripts.run_test_vault
    python -m vault_harness.scripts.run_test_vault --show-token -v
"""

import argparse
import asyncio
import logging
import sys

from vault_harness.fixtures.vault_server import VaultServerFixture, VaultStartError
from vault_tools.cli.wrapper import VaultCliError, vault_version


async def _serve(args: argparse.Namespace) -> int:
    try:
        vault = await VaultServerFixture.create(
            args.binary,
            attempts=args.attempts,
            show_server_logs=args.server_logs,
        )
    except VaultStartError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"export VAULT_ADDR={vault.http_address}")
    if args.show_token:
        print(f"export VAULT_TOKEN={vault.root_token}")
    print("Press Ctrl-C to stop", flush=True)

    try:
        await asyncio.Event().wait()
    finally:
        await vault.stop()
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Run a throwaway Vault dev server for manual testing"
    )
    parser.add_argument(
        "--binary",
        help="vault executable (default: $VAULT_BINARY or vault on PATH)",
    )
    parser.add_argument(
        "--attempts",
        type=int,
        default=11,
        help="Launch attempts before giving up (default: 11)",
    )
    parser.add_argument(
        "--show-token",
        action="store_true",
        help="Also print the root token",
    )
    parser.add_argument(
        "--server-logs",
        action="store_true",
        help="Print vault server output",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the vault version and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    if args.version:
        try:
            print(vault_version(args.binary), end="")
        except VaultCliError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        sys.exit(0)

    try:
        sys.exit(asyncio.run(_serve(args)))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
