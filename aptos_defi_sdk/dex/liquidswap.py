# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Liquidswap (Pontem Network) adapter.
"""

from __future__ import annotations

import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..async_client import ClientConfig, RestClient
from ..event import EventData
from . import APT, LIQUIDSWAP, USDC
from .base import DexAdapter, PoolNotFound, _amount, _token

MIN_SWAP_AMOUNT = 1_000_000_000
MIN_LIQUIDITY_AMOUNT = 500_000_000


@dataclass
class LiquidswapSwapEvent:
    sender: str
    amount_in: int
    amount_out: int
    coin_x: str
    coin_y: str


@dataclass
class LiquidswapAddLiquidityEvent:
    provider: str
    amount_x: int
    amount_y: int
    liquidity_minted: int
    coin_x: str
    coin_y: str


class Liquidswap(DexAdapter):
    name = "Liquidswap"
    description = "Pontem Network - Largest DEX on Aptos"
    default_address = LIQUIDSWAP
    pool_resource = "liquidity_pool::LiquidityPool"
    reserve_fields = ("coin_x_reserve", "coin_y_reserve")
    swap_module = "router"
    swap_function = "swap_exact_input"
    exact_output_function = "swap_exact_output"
    liquidity_module = "liquidity_pool"
    events_resource = "liquidity_pool::EventsStore"
    event_fields = [
        "swap_events",
        "add_liquidity_events",
        "remove_liquidity_events",
        "flash_swap_events",
    ]
    poll_interval_secs = 2

    min_swap_amount = MIN_SWAP_AMOUNT
    min_liquidity_amount = MIN_LIQUIDITY_AMOUNT

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        data = event.get("data") or {}
        if field == "swap_events":
            return (_amount(data, "amount_in") or 0) > self.min_swap_amount
        if field == "add_liquidity_events":
            return (_amount(data, "amount_x") or 0) > self.min_liquidity_amount or (
                _amount(data, "amount_y") or 0
            ) > self.min_liquidity_amount
        return True


def parse_swap_event(event: EventData) -> Optional[LiquidswapSwapEvent]:
    if "SwapEvent" not in event.event_type:
        return None
    data = event.event_data
    return LiquidswapSwapEvent(
        sender=_token(data, "sender"),
        amount_in=_amount(data, "amount_in") or 0,
        amount_out=_amount(data, "amount_out") or 0,
        coin_x=_token(data, "coin_x"),
        coin_y=_token(data, "coin_y"),
    )


def parse_add_liquidity_event(
    event: EventData,
) -> Optional[LiquidswapAddLiquidityEvent]:
    if "AddLiquidityEvent" not in event.event_type:
        return None
    data = event.event_data
    return LiquidswapAddLiquidityEvent(
        provider=_token(data, "provider"),
        amount_x=_amount(data, "amount_x") or 0,
        amount_y=_amount(data, "amount_y") or 0,
        liquidity_minted=_amount(data, "liquidity_minted") or 0,
        coin_x=_token(data, "coin_x"),
        coin_y=_token(data, "coin_y"),
    )


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = Liquidswap(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def test_quote_reads_pool_reserves(self):
        pool = {
            "type": f"{LIQUIDSWAP}::liquidity_pool::LiquidityPool<{APT}, {USDC}>",
            "data": {"coin_x_reserve": "1000000000", "coin_y_reserve": "2000000000"},
        }
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value=pool,
        ) as get_resource:
            quote = await self.dex.get_quote(APT, USDC, 1_000_000)
        get_resource.assert_called_once_with(
            LIQUIDSWAP, f"{LIQUIDSWAP}::liquidity_pool::LiquidityPool<{APT}, {USDC}>"
        )
        self.assertEqual(quote.venue_name, "Liquidswap")
        self.assertEqual(quote.expected_output, 1_992_013)
        self.assertAlmostEqual(quote.quoted_price, 1.992013)

    async def test_reversed_pool(self):
        async def get_resource(address, resource_type):
            if resource_type.endswith(f"<{USDC}, {APT}>"):
                return {"data": {"coin_x_reserve": "30", "coin_y_reserve": "10"}}
            return None

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            side_effect=get_resource,
        ):
            self.assertEqual(await self.dex.get_reserves(APT, USDC), (10, 30))
            self.assertEqual(await self.dex.get_price(APT, USDC), 3.0)
            self.assertEqual(await self.dex.get_liquidity(APT, USDC), 40)

    async def test_missing_pool(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value=None,
        ):
            with self.assertRaises(PoolNotFound):
                await self.dex.get_reserves(APT, USDC)

    def test_swap_call(self):
        call = self.dex.swap_call(APT, USDC, 100, 95, "0x1")
        self.assertEqual(call.function_id(), f"{LIQUIDSWAP}::router::swap_exact_input")
        self.assertEqual(call.type_arguments, [APT, USDC])
        self.assertEqual(call.arguments, [100, 95])
        liquidity = self.dex.liquidity_call(APT, USDC, 100, 200, 99, 199, "0x1")
        self.assertEqual(liquidity.module_name, "liquidity_pool")
        self.assertEqual(liquidity.arguments, [100, 200, 99, 199])

    def test_event_filter(self):
        self.assertTrue(
            self.dex.event_filter("swap_events", {"data": {"amount_in": "1000000001"}})
        )
        self.assertFalse(
            self.dex.event_filter("swap_events", {"data": {"amount_in": "1000000000"}})
        )
        self.assertFalse(self.dex.event_filter("swap_events", {"data": {}}))
        self.assertTrue(
            self.dex.event_filter(
                "add_liquidity_events", {"data": {"amount_x": "1", "amount_y": "500000001"}}
            )
        )
        self.assertFalse(
            self.dex.event_filter(
                "add_liquidity_events", {"data": {"amount_x": "1", "amount_y": "2"}}
            )
        )
        self.assertTrue(self.dex.event_filter("flash_swap_events", {"data": {}}))

    def test_parse_events(self):
        swap = EventData(
            f"{LIQUIDSWAP}::liquidity_pool::SwapEvent<{APT}, {USDC}>",
            {"sender": "0x2", "amount_in": "10", "amount_out": "20"},
            1,
        )
        parsed = parse_swap_event(swap)
        self.assertEqual(parsed.amount_out, 20)
        self.assertIsNone(parse_add_liquidity_event(swap))


if __name__ == "__main__":
    unittest.main()
