# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Constant-product pool arithmetic shared by the DEX adapters.

All amounts are integers in the token's smallest unit. Outputs use integer division,
so a quote never overstates what a pool pays out.
"""

from __future__ import annotations

import math
import unittest
from dataclasses import dataclass
from typing import List, Tuple

# 0.3% swap fee, expressed in thousandths
FEE_NUMERATOR = 997
FEE_DENOMINATOR = 1000
DEFAULT_FEE_RATE = 0.003


@dataclass
class QuoteRecord:
    venue_name: str
    venue_address: str
    expected_output: int
    quoted_price: float


def amm_output(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """Output of an exact-input swap against a pool charging a 0.3% fee."""
    if reserve_in == 0 or reserve_out == 0:
        return 0
    amount_in_with_fee = amount_in * FEE_NUMERATOR
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * FEE_DENOMINATOR + amount_in_with_fee
    if denominator == 0:
        return 0
    return numerator // denominator


def feeless_output(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    if reserve_in == 0 or reserve_out == 0:
        return 0
    denominator = reserve_in + amount_in
    if denominator == 0:
        return 0
    return amount_in * reserve_out // denominator


def multi_hop_output(amount_in: int, hops: List[Tuple[int, int]]) -> int:
    """Apply :func:`amm_output` once per ``(reserve_in, reserve_out)`` hop, in order."""
    amount = amount_in
    for reserve_in, reserve_out in hops:
        amount = amm_output(amount, reserve_in, reserve_out)
    return amount


def apply_slippage(amount: int, slippage: float) -> int:
    """Smallest acceptable amount after tolerating ``slippage`` (a fraction in [0, 1))."""
    if not 0 <= slippage < 1:
        raise ValueError(f"slippage must be in [0, 1): {slippage}")
    return math.floor(amount * (1 - slippage))


def price_impact(amount_in: int, reserve_in: int, reserve_out: int) -> float:
    """Percent difference between the spot-price output and the pool's actual output."""
    if reserve_in == 0 or reserve_out == 0 or amount_in == 0:
        return 0.0
    expected = reserve_out / reserve_in * amount_in
    actual = amm_output(amount_in, reserve_in, reserve_out)
    return abs(expected - actual) / expected * 100


def spot_price(reserve_in: int, reserve_out: int) -> float:
    if reserve_in == 0:
        return 0.0
    return reserve_out / reserve_in


class Test(unittest.TestCase):
    def test_quote(self):
        self.assertEqual(amm_output(1_000_000, 1_000_000_000, 2_000_000_000), 1_992_013)

    def test_zero_reserves(self):
        self.assertEqual(amm_output(1_000, 0, 1_000), 0)
        self.assertEqual(amm_output(1_000, 1_000, 0), 0)
        self.assertEqual(feeless_output(1_000, 0, 1_000), 0)
        self.assertEqual(price_impact(1_000, 0, 1_000), 0.0)

    def test_bounds_and_monotonicity(self):
        reserve_in, reserve_out = 5_000_000, 7_000_000
        previous = 0
        for amount_in in [0, 1, 10, 1_000, 99_999, 5_000_000, 10**12, 10**20]:
            out = amm_output(amount_in, reserve_in, reserve_out)
            self.assertGreaterEqual(out, 0)
            self.assertLess(out, reserve_out)
            self.assertGreaterEqual(out, previous)
            previous = out

    def test_multi_hop(self):
        first = amm_output(1_000_000, 1_000_000_000, 2_000_000_000)
        self.assertEqual(
            multi_hop_output(
                1_000_000, [(1_000_000_000, 2_000_000_000), (3_000_000_000, 1_000_000_000)]
            ),
            amm_output(first, 3_000_000_000, 1_000_000_000),
        )
        self.assertEqual(multi_hop_output(1_000, []), 1_000)

    def test_slippage(self):
        self.assertEqual(apply_slippage(120, 0.02), 117)
        self.assertEqual(apply_slippage(120, 0), 120)
        with self.assertRaises(ValueError):
            apply_slippage(120, 1)

    def test_price_impact(self):
        impact = price_impact(1_000_000, 1_000_000_000, 2_000_000_000)
        self.assertAlmostEqual(impact, (2_000_000 - 1_992_013) / 2_000_000 * 100)

    def test_feeless(self):
        self.assertEqual(feeless_output(100, 1_000, 2_000), 181)


if __name__ == "__main__":
    unittest.main()
