# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Thala adapter, including THL staking events.
"""

from __future__ import annotations

import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..async_client import ClientConfig, RestClient
from ..contract import ContractCall
from ..event import EventData
from . import APT, THALA, THL
from .base import DexAdapter, _amount, _token

# 1 THL with 8 decimals
THL_UNIT = 100_000_000
MIN_SWAP_AMOUNT = 5_000_000_000


@dataclass
class ThalaStakingEvent:
    user: str
    # stake, unstake or claim
    action: str
    amount: int
    thl_amount: int
    block_height: Optional[int]


class Thala(DexAdapter):
    name = "Thala"
    description = "DeFi protocol with THL token and staking"
    default_address = THALA
    pool_resource = "amm::Pool"
    reserve_fields = ("reserve_x", "reserve_y")
    swap_module = "router"
    swap_function = "swap_exact_input"
    exact_output_function = "swap_exact_output"
    liquidity_module = "amm"
    events_resource = "amm::Events"
    event_fields = ["swap_events", "mint_events", "burn_events", "staking_events"]
    poll_interval_secs = 2

    min_swap_amount = MIN_SWAP_AMOUNT

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
            [liquidity, min_amount_a, min_amount_b],
        )

    async def get_thl_price(self) -> float:
        """APT received for one THL."""
        quote = await self.get_quote(THL, APT, THL_UNIT)
        return quote.expected_output / THL_UNIT

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        if field != "swap_events":
            return True
        data = event.get("data") or {}
        if "thl_coin" in _token(data, "coin_x") or "thl_coin" in _token(data, "coin_y"):
            return True
        return (_amount(data, "amount_in") or 0) > self.min_swap_amount


def parse_staking_event(event: EventData) -> Optional[ThalaStakingEvent]:
    if "Staking" not in event.event_type:
        return None
    data = event.event_data
    return ThalaStakingEvent(
        user=_token(data, "user"),
        action=_token(data, "action"),
        amount=_amount(data, "amount") or 0,
        thl_amount=_amount(data, "thl_amount") or 0,
        block_height=event.block_height,
    )


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = Thala(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def test_thl_price(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value={"data": {"reserve_x": "100000000000", "reserve_y": "50000000000"}},
        ) as get_resource:
            price = await self.dex.get_thl_price()
        get_resource.assert_called_once_with(
            THALA, f"{THALA}::amm::Pool<{THL}, {APT}>"
        )
        self.assertAlmostEqual(price, 0.498, places=3)

    def test_remove_liquidity_call(self):
        call = self.dex.remove_liquidity_call(THL, APT, 10, 4, 5, "0x1")
        self.assertEqual(call.function_id(), f"{THALA}::amm::remove_liquidity")
        self.assertEqual(call.arguments, [10, 4, 5])

    def test_event_filter(self):
        self.assertTrue(
            self.dex.event_filter(
                "swap_events", {"data": {"coin_x": THL, "amount_in": "1"}}
            )
        )
        self.assertFalse(
            self.dex.event_filter("swap_events", {"data": {"amount_in": "5000000000"}})
        )
        self.assertTrue(
            self.dex.event_filter("swap_events", {"data": {"amount_in": "5000000001"}})
        )
        self.assertTrue(self.dex.event_filter("staking_events", {"data": {}}))

    def test_parse_staking_event(self):
        event = EventData(
            f"{THALA}::staking::StakingEvent",
            {"user": "0x2", "action": "stake", "amount": "10", "thl_amount": "3"},
            7,
            block_height=12,
        )
        parsed = parse_staking_event(event)
        self.assertEqual(parsed.action, "stake")
        self.assertEqual(parsed.thl_amount, 3)
        self.assertEqual(parsed.block_height, 12)


if __name__ == "__main__":
    unittest.main()
