# Copyright Offene Werkstatt Wädenswil
# SPDX-License-Identifier: MIT
