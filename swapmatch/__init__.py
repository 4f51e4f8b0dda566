# SPDX-FileCopyrightText: 2026 Andrew Grimberg <tykeal@bardicgrove.org>
# SPDX-License-Identifier: Apache-2.0
"""Swap matching engine: targeting graph, eligibility and auctions."""

__version__ = "0.1.0"
