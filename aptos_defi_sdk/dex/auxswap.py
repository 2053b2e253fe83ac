# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Aux Exchange adapter. Aux pools quote without the 0.3% fee adjustment.
"""

from __future__ import annotations

import unittest
import unittest.mock
from typing import Any, Dict, Optional

from ..async_client import ClientConfig, RestClient
from ..contract import ContractCall, ContractWriteResult, WriteOptions
from ..wallet import Wallet
from . import APT, AUX, USDC
from .amm import feeless_output
from .base import DexAdapter, _amount

MIN_SWAP_AMOUNT = 5_000_000_000


class AuxExchange(DexAdapter):
    name = "AuxExchange"
    description = "Orderbook-based DEX with AMM"
    default_address = AUX
    is_amm = False
    pool_resource = "amm::Pool"
    reserve_fields = ("coin_a_reserve", "coin_b_reserve")
    swap_module = "amm"
    swap_function = "swap_exact_input"
    liquidity_module = "amm"
    events_resource = "amm::PoolEvents"
    event_fields = ["swap_events", "add_liquidity_events", "remove_liquidity_events"]
    poll_interval_secs = 1

    min_swap_amount = MIN_SWAP_AMOUNT

    def quote_output(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        return feeless_output(amount_in, reserve_in, reserve_out)

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

    async def add_liquidity(
        self,
        wallet: Wallet,
        token_a: str,
        token_b: str,
        amount_a: int,
        amount_b: int,
        slippage: Optional[float] = None,
        options: Optional[WriteOptions] = None,
        min_lp_amount: int = 0,
    ) -> ContractWriteResult:
        """Aux bounds the minted LP tokens rather than each deposited amount."""
        call = ContractCall(
            self.address,
            self.liquidity_module,
            "add_liquidity",
            [token_a, token_b],
            [amount_a, amount_b, min_lp_amount],
        )
        return await self.contract.write(wallet, call, options)

    async def swap_exact_output(
        self,
        wallet: Wallet,
        from_token: str,
        to_token: str,
        amount_out: int,
        max_amount_in: int,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        call = ContractCall(
            self.address,
            self.swap_module,
            "swap_exact_output",
            [from_token, to_token],
            [max_amount_in, amount_out],
        )
        return await self.contract.write(wallet, call, options)

    async def get_user_liquidity(
        self, user_address: str, token_a: str, token_b: str
    ) -> Optional[Dict[str, Any]]:
        return await self.contract.get_contract_resource(
            user_address, f"{self.address}::amm::LPToken<{token_a}, {token_b}>"
        )

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        if field != "swap_events":
            return True
        data = event.get("data") or {}
        return (_amount(data, "amount_in") or 0) > self.min_swap_amount


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.dex = AuxExchange(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def test_feeless_quote(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value={"data": {"coin_a_reserve": "1000", "coin_b_reserve": "2000"}},
        ):
            quote = await self.dex.get_quote(APT, USDC, 100)
        self.assertEqual(quote.expected_output, 181)
        self.assertEqual(quote.venue_name, "AuxExchange")

    async def test_exact_output_argument_order(self):
        wallet = Wallet.generate()
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0x1"),
        ) as write:
            await self.dex.swap_exact_output(wallet, APT, USDC, 50, 70)
        call = write.call_args.args[1]
        self.assertEqual(call.function_id(), f"{AUX}::amm::swap_exact_output")
        self.assertEqual(call.arguments, [70, 50])

    def test_event_filter(self):
        self.assertFalse(self.dex.event_filter("swap_events", {"data": {"amount_in": "10"}}))
        self.assertTrue(
            self.dex.event_filter("swap_events", {"data": {"amount_in": "6000000000"}})
        )
        self.assertTrue(self.dex.event_filter("add_liquidity_events", {"data": {}}))


if __name__ == "__main__":
    unittest.main()
