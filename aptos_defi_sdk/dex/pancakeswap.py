# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
PancakeSwap adapter. Router calls take a recipient and a deadline.
"""

from __future__ import annotations

import unittest
import unittest.mock
from typing import Any, Dict, List, Optional, Tuple

from ..async_client import ClientConfig, RestClient
from ..contract import ContractCall, ContractWriteResult, WriteOptions
from ..wallet import Wallet
from . import APT, CAKE, PANCAKESWAP, USDC
from .base import DexAdapter, _amount, _token, deadline


class PancakeSwap(DexAdapter):
    name = "PancakeSwap"
    description = "Multi-chain DEX with CAKE token"
    default_address = PANCAKESWAP
    pool_resource = "swap::TokenPairReserve"
    reserve_fields = ("reserve0", "reserve1")
    swap_module = "router"
    swap_function = "swap_exact_tokens_for_tokens"
    liquidity_module = "router"
    events_resource = "swap::PairEventHolder"
    event_fields = ["swap_events", "mint_events", "burn_events", "sync_events"]
    poll_interval_secs = 3

    min_swap_amount: Optional[int] = 1_000_000_000
    include_cake_pairs: bool = True
    tracked_pairs: Optional[List[Tuple[str, str]]] = None

    def swap_call(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        min_amount_out: int,
        recipient: str,
    ) -> ContractCall:
        return self.path_swap_call(
            [from_token, to_token], amount_in, min_amount_out, recipient, deadline()
        )

    def path_swap_call(
        self,
        path: List[str],
        amount_in: int,
        min_amount_out: int,
        recipient: str,
        swap_deadline: int,
    ) -> ContractCall:
        if len(path) < 2:
            raise ValueError("Path must contain at least 2 tokens")
        return ContractCall(
            self.address,
            self.swap_module,
            self.swap_function,
            list(path),
            [amount_in, min_amount_out, recipient, swap_deadline],
        )

    def liquidity_call(
        self,
        token_a: str,
        token_b: str,
        amount_a: int,
        amount_b: int,
        min_amount_a: int,
        min_amount_b: int,
        recipient: str,
    ) -> ContractCall:
        return ContractCall(
            self.address,
            self.liquidity_module,
            "add_liquidity",
            [token_a, token_b],
            [amount_a, amount_b, min_amount_a, min_amount_b, recipient, deadline()],
        )

    def remove_liquidity_call(
        self,
        token_a: str,
        token_b: str,
        liquidity: int,
        min_amount_a: int,
        min_amount_b: int,
        recipient: str,
    ) -> ContractCall:
        return ContractCall(
            self.address,
            self.liquidity_module,
            "remove_liquidity",
            [token_a, token_b],
            [liquidity, min_amount_a, min_amount_b, recipient, deadline()],
        )

    async def swap_exact_tokens_for_tokens(
        self,
        wallet: Wallet,
        amount_in: int,
        min_amount_out: int,
        path: List[str],
        recipient: str,
        swap_deadline: int,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        call = self.path_swap_call(
            path, amount_in, min_amount_out, recipient, swap_deadline
        )
        return await self.contract.write(wallet, call, options)

    async def get_cake_price(self) -> float:
        """APT per CAKE at the pool's spot price."""
        return await self.get_price(CAKE, APT)

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        if field != "swap_events":
            return True
        data = event.get("data") or {}
        if (
            self.min_swap_amount is not None
            and "amount0_in" in data
            and "amount1_in" in data
        ):
            amount0 = _amount(data, "amount0_in") or 0
            amount1 = _amount(data, "amount1_in") or 0
            if amount0 < self.min_swap_amount and amount1 < self.min_swap_amount:
                return False
        token0, token1 = _token(data, "token0"), _token(data, "token1")
        if self.include_cake_pairs and ("CakeOFT" in token0 or "CakeOFT" in token1):
            return True
        if self.tracked_pairs is not None and "token0" in data and "token1" in data:
            return any(
                {token0, token1} == {pair_a, pair_b} for pair_a, pair_b in self.tracked_pairs
            )
        return True


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = PancakeSwap(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    def test_swap_call_has_deadline(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.dex.base.time.time", return_value=1_700_000_000.5
        ):
            call = self.dex.swap_call(APT, USDC, 100, 90, "0x2")
        self.assertEqual(call.arguments, [100, 90, "0x2", 1_700_000_300])
        self.assertEqual(call.type_arguments, [APT, USDC])

    async def test_reserves(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value={"data": {"reserve0": "400", "reserve1": "100"}},
        ):
            self.assertEqual(await self.dex.get_cake_price(), 0.25)

    def test_event_filter(self):
        small = {"data": {"amount0_in": "1", "amount1_in": "2"}}
        self.assertFalse(self.dex.event_filter("swap_events", small))
        large = {"data": {"amount0_in": "1", "amount1_in": "2000000000"}}
        self.assertTrue(self.dex.event_filter("swap_events", large))
        self.dex.tracked_pairs = [(USDC, APT)]
        self.assertTrue(
            self.dex.event_filter(
                "swap_events",
                {"data": {"amount0_in": "2000000000", "amount1_in": "0", "token0": APT, "token1": USDC}},
            )
        )
        self.assertFalse(
            self.dex.event_filter(
                "swap_events",
                {"data": {"amount0_in": "2000000000", "amount1_in": "0", "token0": APT, "token1": "0x3::t::T"}},
            )
        )
        self.assertTrue(
            self.dex.event_filter(
                "swap_events",
                {"data": {"amount0_in": "2000000000", "amount1_in": "0", "token0": CAKE, "token1": "0x3::t::T"}},
            )
        )
        self.assertTrue(self.dex.event_filter("sync_events", {"data": {}}))


if __name__ == "__main__":
    unittest.main()
