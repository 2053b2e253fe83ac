# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Cellana adapter with LP farming.
"""

from __future__ import annotations

import unittest
import unittest.mock
from typing import Any, Dict, List, Optional

from ..async_client import ClientConfig, RestClient
from ..contract import ContractCall, ContractWriteResult, WriteOptions
from ..wallet import Wallet
from . import APT, CELL, CELLANA, USDC
from .base import DexAdapter, _amount, _token

# 1 CELL with 8 decimals
CELL_UNIT = 100_000_000


class Cellana(DexAdapter):
    name = "Cellana"
    description = "DEX with CELL token and farming"
    default_address = CELLANA
    pool_resource = "liquidity_pool::Pool"
    reserve_fields = ("reserve_x", "reserve_y")
    swap_module = "router"
    swap_function = "swap"
    liquidity_module = "liquidity_pool"
    events_resource = "liquidity_pool::Events"
    event_fields = ["swap_events", "liquidity_events", "cell_farming_events"]
    poll_interval_secs = 2

    monitor_cell_pairs: bool = True
    min_swap_amount: int = 1_000_000_000
    monitor_farming: bool = True
    tracked_tokens: List[str] = []

    async def get_cell_price(self) -> float:
        """APT received for one CELL."""
        quote = await self.get_quote(CELL, APT, CELL_UNIT)
        return quote.expected_output / CELL_UNIT

    async def stake_lp(
        self,
        wallet: Wallet,
        pool_id: int,
        amount: int,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        call = ContractCall(self.address, "farming", "stake", [], [pool_id, amount])
        return await self.contract.write(wallet, call, options)

    async def harvest_rewards(
        self, wallet: Wallet, pool_id: int, options: Optional[WriteOptions] = None
    ) -> ContractWriteResult:
        call = ContractCall(self.address, "farming", "harvest", [], [pool_id])
        return await self.contract.write(wallet, call, options)

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        if field == "cell_farming_events":
            return self.monitor_farming
        if field != "swap_events":
            return True
        data = event.get("data") or {}
        amount = _amount(data, "amount_in")
        if amount is not None and amount < self.min_swap_amount:
            return False
        coin_x, coin_y = _token(data, "coin_x"), _token(data, "coin_y")
        if self.monitor_cell_pairs and ("cell_coin" in coin_x or "cell_coin" in coin_y):
            return True
        if self.tracked_tokens and "coin_x" in data and "coin_y" in data:
            return coin_x in self.tracked_tokens or coin_y in self.tracked_tokens
        return True


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = Cellana(self.client)
        self.wallet = Wallet.generate()

    async def asyncTearDown(self):
        await self.client.close()

    def test_swap_call(self):
        call = self.dex.swap_call(APT, USDC, 10, 9, "0x1")
        self.assertEqual(call.function_id(), f"{CELLANA}::router::swap")
        self.assertEqual(call.arguments, [10, 9])

    async def test_farming_calls(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0xabc"),
        ) as write:
            result = await self.dex.stake_lp(self.wallet, 3, 1_000)
            await self.dex.harvest_rewards(self.wallet, 3)
        self.assertEqual(result.transaction_hash, "0xabc")
        stake_call = write.call_args_list[0].args[1]
        self.assertEqual(stake_call.function_id(), f"{CELLANA}::farming::stake")
        self.assertEqual(stake_call.arguments, [3, 1_000])
        harvest_call = write.call_args_list[1].args[1]
        self.assertEqual(harvest_call.arguments, [3])

    def test_event_filter(self):
        self.assertFalse(self.dex.event_filter("swap_events", {"data": {"amount_in": "1"}}))
        self.assertTrue(
            self.dex.event_filter(
                "swap_events", {"data": {"amount_in": "2000000000", "coin_x": CELL}}
            )
        )
        self.dex.tracked_tokens = [USDC]
        self.assertFalse(
            self.dex.event_filter(
                "swap_events",
                {"data": {"amount_in": "2000000000", "coin_x": APT, "coin_y": "0x3::t::T"}},
            )
        )
        self.dex.monitor_farming = False
        self.assertFalse(self.dex.event_filter("cell_farming_events", {"data": {}}))
        self.assertTrue(self.dex.event_filter("liquidity_events", {"data": {}}))


if __name__ == "__main__":
    unittest.main()
