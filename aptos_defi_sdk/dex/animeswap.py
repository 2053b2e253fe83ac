# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
AnimeSwap adapter. Swaps take a token path, so routes through an intermediate token
are supported with :meth:`AnimeSwap.find_best_path`.
"""

from __future__ import annotations

import asyncio
import logging
import unittest
import unittest.mock
from typing import Any, Dict, List, Optional, Tuple

from ..async_client import ClientConfig, RestClient
from ..contract import ContractCall, ContractWriteResult, WriteOptions
from ..wallet import Wallet
from . import ANIMESWAP, APT, USDC, USDT
from .amm import multi_hop_output
from .base import DexAdapter, _amount, _token

logger = logging.getLogger(__name__)


class AnimeSwap(DexAdapter):
    name = "AnimeSwap"
    description = "Multi-chain DEX with anime theme"
    default_address = ANIMESWAP
    pool_resource = "swap::TokenPairReserve"
    reserve_fields = ("reserve_a", "reserve_b")
    swap_module = "router"
    swap_function = "swap_exact_tokens_for_tokens"
    liquidity_module = "router"
    events_resource = "swap::Events"
    event_fields = ["swap_events", "mint_events", "burn_events"]
    poll_interval_secs = 3

    min_swap_amount: Optional[int] = 1_000_000_000
    min_liquidity_amount: Optional[int] = 500_000_000
    tracked_tokens: Optional[List[str]] = None

    def swap_call(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        min_amount_out: int,
        recipient: str,
    ) -> ContractCall:
        return self.path_swap_call([from_token, to_token], amount_in, min_amount_out)

    def path_swap_call(
        self, path: List[str], amount_in: int, min_amount_out: int
    ) -> ContractCall:
        if len(path) < 2:
            raise ValueError("Path must contain at least 2 tokens")
        return ContractCall(
            self.address,
            self.swap_module,
            self.swap_function,
            list(path),
            [amount_in, min_amount_out],
        )

    async def swap_exact_tokens_for_tokens(
        self,
        wallet: Wallet,
        path: List[str],
        amount_in: int,
        min_amount_out: int,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        call = self.path_swap_call(path, amount_in, min_amount_out)
        return await self.contract.write(wallet, call, options)

    async def find_best_path(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        intermediate_tokens: List[str],
    ) -> Tuple[List[str], int]:
        """
        The direct path or a path through one of ``intermediate_tokens``, whichever
        pays out more. Pairs without a pool are skipped.
        """
        best_path = [from_token, to_token]
        best_output = 0
        candidates = [[from_token, to_token]] + [
            [from_token, token, to_token] for token in intermediate_tokens
        ]
        for path in candidates:
            try:
                hops = await asyncio.gather(
                    *[self.get_reserves(a, b) for a, b in zip(path, path[1:])]
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug("no route through %s: %s", path, e)
                continue
            output = multi_hop_output(amount_in, list(hops))
            if output > best_output:
                best_path, best_output = path, output
        return best_path, best_output

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        data = event.get("data") or {}
        if field == "swap_events":
            if self.min_swap_amount is not None:
                key = "amount0_in" if "amount0_in" in data else "amount1_in"
                amount = _amount(data, key)
                if amount is not None and amount < self.min_swap_amount:
                    return False
            if self.tracked_tokens is not None and "token0" in data and "token1" in data:
                tokens = {_token(data, "token0"), _token(data, "token1")}
                if not tokens.intersection(self.tracked_tokens):
                    return False
            return True
        if field == "mint_events" and self.min_liquidity_amount is not None:
            amount = _amount(data, "amount0")
            if amount is not None and amount < self.min_liquidity_amount:
                return False
        return True


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = AnimeSwap(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def test_best_path_through_intermediate(self):
        pools = {
            f"<{APT}, {USDT}>": ("1000", "1000"),
            f"<{APT}, {USDC}>": ("1000000", "1000000"),
            f"<{USDC}, {USDT}>": ("1000000", "1000000"),
        }

        async def get_resource(address, resource_type):
            for suffix, (x, y) in pools.items():
                if resource_type.endswith(suffix):
                    return {"data": {"reserve_a": x, "reserve_b": y}}
            return None

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            side_effect=get_resource,
        ):
            path, output = await self.dex.find_best_path(APT, USDT, 10_000, [USDC, "0x9::x::X"])
        self.assertEqual(path, [APT, USDC, USDT])
        self.assertEqual(
            output,
            multi_hop_output(10_000, [(1_000_000, 1_000_000), (1_000_000, 1_000_000)]),
        )

    def test_path_validation(self):
        with self.assertRaises(ValueError):
            self.dex.path_swap_call([APT], 1, 1)
        call = self.dex.swap_call(APT, USDC, 10, 9, "0x1")
        self.assertEqual(call.function_name, "swap_exact_tokens_for_tokens")
        self.assertEqual(call.type_arguments, [APT, USDC])

    def test_event_filter(self):
        self.assertFalse(
            self.dex.event_filter("swap_events", {"data": {"amount0_in": "5"}})
        )
        self.assertTrue(
            self.dex.event_filter("swap_events", {"data": {"amount1_in": "2000000000"}})
        )
        self.assertFalse(self.dex.event_filter("mint_events", {"data": {"amount0": "1"}}))
        self.assertTrue(self.dex.event_filter("burn_events", {"data": {}}))
        self.dex.tracked_tokens = [USDC]
        self.assertFalse(
            self.dex.event_filter(
                "swap_events",
                {"data": {"amount0_in": "2000000000", "token0": APT, "token1": USDT}},
            )
        )


if __name__ == "__main__":
    unittest.main()
