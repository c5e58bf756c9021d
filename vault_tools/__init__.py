# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT

"""Building blocks for tests that run against a Vault server."""
