# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Common shape of a DEX venue adapter.

An adapter knows three things about its venue: where pool resources live and which
fields hold the reserves, which entry functions swap and provide liquidity, and which
event handles to watch. Everything else, quoting, slippage and event streaming, is
shared here.

Subclasses override class attributes for the simple differences and a handful of
methods (:meth:`DexAdapter.swap_call`, :meth:`DexAdapter.liquidity_call`,
:meth:`DexAdapter.event_filter`) where the venue's entry functions or filters differ.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
import unittest
import unittest.mock
from typing import Any, Dict, List, Optional, Tuple

from ..async_client import ClientConfig, RestClient
from ..contract import Contract, ContractCall, ContractWriteResult, WriteOptions
from ..event import BroadcastChannel, EventData, EventPoller
from ..wallet import Wallet
from .amm import DEFAULT_FEE_RATE, QuoteRecord, amm_output, apply_slippage, spot_price

logger = logging.getLogger(__name__)

# seconds a swap with a deadline argument stays valid
SWAP_DEADLINE_SECS = 300


class PoolNotFound(Exception):
    """The venue has no pool for the token pair"""

    def __init__(self, venue: str, token_a: str, token_b: str):
        super().__init__(f"{venue} has no pool for {token_a} / {token_b}")
        self.venue = venue
        self.token_a = token_a
        self.token_b = token_b


class DexAdapter:
    name: str = ""
    description: str = ""
    default_address: str = ""
    supports_liquidity: bool = True
    supports_swap: bool = True
    is_amm: bool = True
    fee_rate: float = DEFAULT_FEE_RATE

    # <address>::<pool_resource><token_a, token_b>
    pool_resource: str = "liquidity_pool::LiquidityPool"
    reserve_fields: Tuple[str, str] = ("coin_x_reserve", "coin_y_reserve")

    swap_module: str = "router"
    swap_function: str = "swap_exact_input"
    exact_output_function: Optional[str] = None
    liquidity_module: str = "router"

    # <address>::<events_resource>/<field>
    events_resource: str = "events::EventsStore"
    event_fields: List[str] = []
    poll_interval_secs: float = 2

    client: RestClient
    contract: Contract
    address: str

    def __init__(self, client: RestClient, address: Optional[str] = None):
        self.client = client
        self.contract = Contract(client)
        self.address = address or self.default_address

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"

    #
    # Pools and quotes
    #

    def pool_type(self, token_a: str, token_b: str) -> str:
        return f"{self.address}::{self.pool_resource}<{token_a}, {token_b}>"

    def pool_owner(self, token_a: str, token_b: str) -> str:
        """Account that stores the pool resource."""
        return self.address

    async def get_pool_info(
        self, token_a: str, token_b: str
    ) -> Optional[Dict[str, Any]]:
        """Raw pool resource data for the ordered pair, or None."""
        return await self.contract.get_contract_resource(
            self.pool_owner(token_a, token_b), self.pool_type(token_a, token_b)
        )

    async def get_reserves(self, token_a: str, token_b: str) -> Tuple[int, int]:
        """
        Current reserves as ``(reserve of token_a, reserve of token_b)``. Pools are
        looked up in both type-argument orders.

        :raises PoolNotFound: If neither order has a pool.
        """
        pool = await self.get_pool_info(token_a, token_b)
        if pool is not None:
            return self.reserves_of(pool)
        pool = await self.get_pool_info(token_b, token_a)
        if pool is not None:
            reserve_b, reserve_a = self.reserves_of(pool)
            return reserve_a, reserve_b
        raise PoolNotFound(self.name, token_a, token_b)

    def reserves_of(self, pool: Dict[str, Any]) -> Tuple[int, int]:
        field_a, field_b = self.reserve_fields
        return _amount(pool, field_a) or 0, _amount(pool, field_b) or 0

    def quote_output(self, amount_in: int, reserve_in: int, reserve_out: int) -> int:
        return amm_output(amount_in, reserve_in, reserve_out)

    async def get_price(self, token_a: str, token_b: str) -> float:
        """Spot price of ``token_a`` in units of ``token_b``."""
        reserve_a, reserve_b = await self.get_reserves(token_a, token_b)
        return spot_price(reserve_a, reserve_b)

    async def get_quote(
        self, from_token: str, to_token: str, amount_in: int
    ) -> QuoteRecord:
        reserve_in, reserve_out = await self.get_reserves(from_token, to_token)
        expected_output = self.quote_output(amount_in, reserve_in, reserve_out)
        return QuoteRecord(
            venue_name=self.name,
            venue_address=self.address,
            expected_output=expected_output,
            quoted_price=expected_output / amount_in if amount_in else 0.0,
        )

    async def get_liquidity(self, token_a: str, token_b: str) -> int:
        reserve_a, reserve_b = await self.get_reserves(token_a, token_b)
        return reserve_a + reserve_b

    #
    # Writes
    #

    def swap_call(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        min_amount_out: int,
        recipient: str,
    ) -> ContractCall:
        return ContractCall(
            self.address,
            self.swap_module,
            self.swap_function,
            [from_token, to_token],
            [amount_in, min_amount_out],
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
            [amount_a, amount_b, min_amount_a, min_amount_b],
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
            [liquidity],
        )

    async def swap_exact_input(
        self,
        wallet: Wallet,
        from_token: str,
        to_token: str,
        amount_in: int,
        min_amount_out: int,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        if not self.supports_swap:
            raise NotImplementedError(f"{self.name} does not support swaps")
        call = self.swap_call(
            from_token, to_token, amount_in, min_amount_out, wallet.address()
        )
        logger.info(
            "%s swap %d %s -> %s (min %d)",
            self.name,
            amount_in,
            from_token,
            to_token,
            min_amount_out,
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
        if self.exact_output_function is None:
            raise NotImplementedError(f"{self.name} does not support exact output swaps")
        call = ContractCall(
            self.address,
            self.swap_module,
            self.exact_output_function,
            [from_token, to_token],
            [amount_out, max_amount_in],
        )
        return await self.contract.write(wallet, call, options)

    async def add_liquidity(
        self,
        wallet: Wallet,
        token_a: str,
        token_b: str,
        amount_a: int,
        amount_b: int,
        slippage: Optional[float] = None,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        if not self.supports_liquidity:
            raise NotImplementedError(f"{self.name} does not support liquidity")
        if slippage is None:
            slippage = self.client.client_config.default_slippage
        call = self.liquidity_call(
            token_a,
            token_b,
            amount_a,
            amount_b,
            apply_slippage(amount_a, slippage),
            apply_slippage(amount_b, slippage),
            wallet.address(),
        )
        return await self.contract.write(wallet, call, options)

    async def remove_liquidity(
        self,
        wallet: Wallet,
        token_a: str,
        token_b: str,
        liquidity: int,
        min_amount_a: int = 0,
        min_amount_b: int = 0,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        if not self.supports_liquidity:
            raise NotImplementedError(f"{self.name} does not support liquidity")
        call = self.remove_liquidity_call(
            token_a, token_b, liquidity, min_amount_a, min_amount_b, wallet.address()
        )
        return await self.contract.write(wallet, call, options)

    #
    # Events
    #

    def event_handle(self, field: str) -> str:
        return f"{self.address}::{self.events_resource}/{field}"

    def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
        """Whether an event of handle ``field`` is worth publishing."""
        return True

    async def get_recent_events(
        self, field: str = "swap_events", limit: Optional[int] = None
    ) -> List[EventData]:
        """The most recent page of one event handle, unfiltered."""
        events = await self.client.get_account_events(
            self.address,
            self.event_handle(field),
            limit or self.client.client_config.event_batch_size,
        )
        return [EventData.from_event(event) for event in events]

    async def listen_events(
        self,
        channel: BroadcastChannel,
        shutdown: Optional[asyncio.Event] = None,
        interval_secs: Optional[float] = None,
    ):
        """
        Poll every event handle of the venue and publish the events that pass
        :meth:`event_filter` into ``channel`` as :class:`EventData`. Each handle gets its
        own poller and cursor. Returns once ``shutdown`` is set or when cancelled.
        """
        config = self.client.client_config
        if interval_secs is None:
            interval_secs = config.listener_poll_interval_secs or self.poll_interval_secs
        shutdown = shutdown or asyncio.Event()

        def publish(event: Dict[str, Any]):
            channel.send(EventData.from_event(event))

        pollers = [
            EventPoller(
                self.client,
                self.address,
                self.event_handle(field),
                interval_secs,
                config.event_batch_size,
                functools.partial(self.event_filter, field),
                shutdown,
            )
            for field in self.event_fields
        ]
        if not pollers:
            await shutdown.wait()
            return
        logger.info("listening to %d %s event handles", len(pollers), self.name)
        await asyncio.gather(*[poller.run(publish) for poller in pollers])


def deadline(now: Optional[float] = None) -> int:
    if now is None:
        now = time.time()
    return int(now) + SWAP_DEADLINE_SECS


def _amount(data: Dict[str, Any], key: str) -> Optional[int]:
    """Integer value of ``data[key]``; None if absent or not numeric."""
    value = data.get(key)
    # Coin<T> fields serialize as {"value": "..."}
    if isinstance(value, dict):
        value = value.get("value")
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _token(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


class Test(unittest.IsolatedAsyncioTestCase):
    class Venue(DexAdapter):
        name = "Venue"
        default_address = "0x42"
        events_resource = "pool::Events"
        event_fields = ["swap_events", "mint_events"]

        def event_filter(self, field: str, event: Dict[str, Any]) -> bool:
            return field != "mint_events"

    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1",
            ClientConfig(http2=False, listener_poll_interval_secs=0.01),
        )
        self.venue = Test.Venue(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def test_listener_publishes_filtered_events_once(self):
        handles: List[str] = []

        async def get_events(address, event_handle, limit, start):
            handles.append(event_handle)
            return [
                {"type": "0x42::pool::Event", "sequence_number": "0", "data": {}},
                {"type": "0x42::pool::Event", "sequence_number": "1", "data": {}},
            ]

        channel = BroadcastChannel(10)
        subscription = channel.subscribe()
        shutdown = asyncio.Event()
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            side_effect=get_events,
        ):
            task = asyncio.create_task(self.venue.listen_events(channel, shutdown))
            first = await subscription.recv()
            second = await subscription.recv()
            await asyncio.sleep(0.05)
            shutdown.set()
            await asyncio.wait_for(task, 1)

        self.assertEqual((first.sequence_number, second.sequence_number), (0, 1))
        self.assertEqual(len(subscription), 0)
        self.assertIn("0x42::pool::Events/swap_events", handles)
        self.assertIn("0x42::pool::Events/mint_events", handles)

    async def test_write_calls(self):
        wallet = Wallet.generate()
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0x1"),
        ) as write:
            await self.venue.add_liquidity(wallet, "0x1::a::A", "0x1::b::B", 1000, 200, 0.01)
            await self.venue.remove_liquidity(wallet, "0x1::a::A", "0x1::b::B", 50)
        add_call = write.call_args_list[0].args[1]
        self.assertEqual(add_call.arguments, [1000, 200, 990, 198])
        remove_call = write.call_args_list[1].args[1]
        self.assertEqual(remove_call.function_id(), "0x42::router::remove_liquidity")
        with self.assertRaises(NotImplementedError):
            await self.venue.swap_exact_output(wallet, "0x1::a::A", "0x1::b::B", 1, 2)

    def test_deadline(self):
        self.assertEqual(deadline(1000.9), 1300)

    def test_reserves_of_coin_fields(self):
        pool = {"coin_x_reserve": {"value": "1500"}, "coin_y_reserve": "30"}
        self.assertEqual(self.venue.reserves_of(pool), (1500, 30))
        self.assertEqual(self.venue.reserves_of({"coin_x_reserve": {}}), (0, 0))
