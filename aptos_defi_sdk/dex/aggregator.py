# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Routes swaps to the venue that pays out the most and fans in venue event streams.

Quotes are requested from every adapter concurrently. Venues that fail to quote, for
example because they have no pool for the pair, are left out; when none can quote,
:class:`NoRouteError` is raised.

Examples:
    Swap 1 APT into USDC on the best venue with 1% slippage::

        aggregator = DexAggregator(client)
        best = await aggregator.find_best_swap(APT, USDC, 100_000_000)
        result = await aggregator.exe_best_swap(wallet, APT, USDC, 100_000_000, 0.01)

    Follow swaps on every venue::

        shutdown = asyncio.Event()
        aggregator.start_event_listeners(shutdown)
        async for event in aggregator.subscribe("Liquidswap"):
            print(event.event_type, event.event_data)
"""

from __future__ import annotations

import asyncio
import logging
import time
import unittest
import unittest.mock
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..async_client import ClientConfig, RestClient
from ..contract import Contract, ContractWriteResult, WriteOptions
from ..event import BroadcastChannel, EventData, Subscription
from ..wallet import Wallet
from . import APT, THL, USDC, USDT, WORMHOLE_USDC, coin_address
from .amm import QuoteRecord, apply_slippage, price_impact
from .animeswap import AnimeSwap
from .auxswap import AuxExchange
from .base import DexAdapter, _amount
from .cellana import Cellana
from .liquidswap import Liquidswap
from .pancakeswap import PancakeSwap
from .thala import Thala

logger = logging.getLogger(__name__)

# amount of the token priced against the native coin
PRICE_PROBE_AMOUNT = 1_000_000
LIQUIDITY_BASE_TOKENS = [APT, USDC, USDT, WORMHOLE_USDC]
POPULAR_PAIRS = [(USDC, APT), (USDT, APT), (THL, APT)]
COMPARISON_VENUES = ["Liquidswap", "Thala", "PancakeSwap"]
# seconds before a crashed venue listener is restarted
LISTENER_RESTART_DELAY = 5

ADAPTERS = [Liquidswap, AuxExchange, AnimeSwap, Thala, PancakeSwap, Cellana]


class NoRouteError(Exception):
    """No venue could quote the requested swap"""

    def __init__(self, message: str = "No suitable DEX found for this trade"):
        super().__init__(message)


@dataclass
class DexInfo:
    name: str
    address: str
    description: str
    supports_liquidity: bool
    supports_swap: bool
    is_amm: bool


@dataclass
class TokenPrice:
    dex: str
    token_address: str
    base_token: str
    price: float
    liquidity: int
    timestamp: int


@dataclass
class LiquidityPool:
    dex: str
    token_a: str
    token_b: str
    liquidity: int
    reserve_a: int
    reserve_b: int
    fee_rate: float


@dataclass
class TokenMetadata:
    address: str
    name: str
    symbol: str
    decimals: int
    supply: int


@dataclass
class DexPrice:
    dex: str
    price: float
    amount_out: int


@dataclass
class TokenPriceComparison:
    token_a: str
    token_b: str
    prices: List[DexPrice] = field(default_factory=list)


@dataclass
class DexLiquidity:
    dex: str
    token_a: str
    token_b: str
    reserve_a: int
    reserve_b: int
    total_liquidity: int


class DexEventMonitor:
    """One broadcast channel per venue, fed by that venue's listener."""

    channels: Dict[str, BroadcastChannel]
    tasks: List[asyncio.Task]

    def __init__(self, venue_names: List[str], capacity: int = 1000):
        self.channels = {name: BroadcastChannel(capacity) for name in venue_names}
        self.tasks = []

    def subscribe_to_dex(self, dex_name: str) -> Optional[Subscription]:
        channel = self.channels.get(dex_name)
        return None if channel is None else channel.subscribe()

    def get_all_receivers(self) -> List[Tuple[str, Subscription]]:
        return [(name, channel.subscribe()) for name, channel in self.channels.items()]

    def publish_to_dex(self, dex_name: str, event: EventData) -> int:
        """
        :raises KeyError: If ``dex_name`` has no channel.
        """
        channel = self.channels.get(dex_name)
        if channel is None:
            raise KeyError(f"DEX {dex_name} not found")
        return channel.send(event)

    def start_monitoring_all_dexes(
        self, adapters: List[DexAdapter], shutdown: asyncio.Event
    ) -> List[asyncio.Task]:
        for adapter in adapters:
            channel = self.channels.get(adapter.name)
            if channel is None:
                continue
            self.tasks.append(
                asyncio.create_task(_supervise(adapter, channel, shutdown))
            )
        return self.tasks

    async def stop(self, shutdown: asyncio.Event):
        shutdown.set()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        for channel in self.channels.values():
            channel.close()


async def _supervise(
    adapter: DexAdapter, channel: BroadcastChannel, shutdown: asyncio.Event
):
    """Keep a venue listener running until shutdown, restarting it if it crashes."""
    while not shutdown.is_set():
        try:
            await adapter.listen_events(channel, shutdown)
        except asyncio.CancelledError:
            return
        except Exception as e:
            logging.error(e, exc_info=True)
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=LISTENER_RESTART_DELAY)
            except asyncio.TimeoutError:
                pass


class DexAggregator:
    client: RestClient
    contract: Contract
    adapters: Dict[str, DexAdapter]
    monitor: Optional[DexEventMonitor]
    shutdown: Optional[asyncio.Event]

    def __init__(
        self, client: RestClient, adapters: Optional[List[DexAdapter]] = None
    ):
        self.client = client
        self.contract = Contract(client)
        if adapters is None:
            adapters = [adapter(client) for adapter in ADAPTERS]
        self.adapters = {adapter.name: adapter for adapter in adapters}
        self.monitor = None
        self.shutdown = None

    def adapter(self, name: str) -> DexAdapter:
        try:
            return self.adapters[name]
        except KeyError:
            raise KeyError(f"DEX {name} not found") from None

    #
    # Quotes and swaps
    #

    async def compare_all_dex_prices(
        self, from_token: str, to_token: str, amount_in: int
    ) -> List[QuoteRecord]:
        """Every venue's quote, best output first."""
        adapters = list(self.adapters.values())
        results = await asyncio.gather(
            *[adapter.get_quote(from_token, to_token, amount_in) for adapter in adapters],
            return_exceptions=True,
        )
        quotes = []
        for adapter, result in zip(adapters, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.debug("%s cannot quote: %s", adapter.name, result)
                continue
            quotes.append(result)
        quotes.sort(key=lambda quote: quote.expected_output, reverse=True)
        return quotes

    async def find_best_swap(
        self, from_token: str, to_token: str, amount_in: int
    ) -> QuoteRecord:
        """
        :raises NoRouteError: If no venue returned a quote.
        """
        quotes = await self.compare_all_dex_prices(from_token, to_token, amount_in)
        if not quotes:
            raise NoRouteError()
        return quotes[0]

    async def exe_best_swap(
        self,
        wallet: Wallet,
        from_token: str,
        to_token: str,
        amount_in: int,
        slippage: Optional[float] = None,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        """
        Swap on the venue with the best quote, accepting at most ``slippage`` less
        than quoted. The venue's deadline, where it takes one, is now plus 300 s.
        """
        if slippage is None:
            slippage = self.client.client_config.default_slippage
        best = await self.find_best_swap(from_token, to_token, amount_in)
        min_amount_out = apply_slippage(best.expected_output, slippage)
        logger.info(
            "best route for %s -> %s is %s: %d (min %d)",
            from_token,
            to_token,
            best.venue_name,
            best.expected_output,
            min_amount_out,
        )
        return await self.adapter(best.venue_name).swap_exact_input(
            wallet, from_token, to_token, amount_in, min_amount_out, options
        )

    def get_supported_dexes(self) -> List[DexInfo]:
        return [
            DexInfo(
                name=adapter.name,
                address=adapter.address,
                description=adapter.description,
                supports_liquidity=adapter.supports_liquidity,
                supports_swap=adapter.supports_swap,
                is_amm=adapter.is_amm,
            )
            for adapter in self.adapters.values()
        ]

    #
    # Prices and pools
    #

    async def get_token_price(self, token_address: str) -> List[TokenPrice]:
        """Price of ``token_address`` in the native coin on every venue, highest first."""

        async def price_on(adapter: DexAdapter) -> TokenPrice:
            quote = await adapter.get_quote(token_address, APT, PRICE_PROBE_AMOUNT)
            try:
                liquidity = await adapter.get_liquidity(token_address, APT)
            except asyncio.CancelledError:
                raise
            except Exception:
                liquidity = 0
            return TokenPrice(
                dex=adapter.name,
                token_address=token_address,
                base_token=APT,
                price=quote.quoted_price,
                liquidity=liquidity,
                timestamp=int(time.time()),
            )

        results = await asyncio.gather(
            *[price_on(adapter) for adapter in self.adapters.values()],
            return_exceptions=True,
        )
        prices = [result for result in results if isinstance(result, TokenPrice)]
        prices.sort(key=lambda price: price.price, reverse=True)
        return prices

    async def find_token_liquidity_pools(self, token_address: str) -> List[LiquidityPool]:
        """Pools pairing the token with a common base token, deepest first."""
        candidates = [
            (adapter, base_token)
            for base_token in LIQUIDITY_BASE_TOKENS
            if base_token != token_address
            for adapter in self.adapters.values()
        ]
        results = await asyncio.gather(
            *[
                adapter.get_reserves(token_address, base_token)
                for adapter, base_token in candidates
            ],
            return_exceptions=True,
        )
        pools = []
        for (adapter, base_token), result in zip(candidates, results):
            if isinstance(result, BaseException):
                continue
            reserve_a, reserve_b = result
            liquidity = reserve_a + reserve_b
            if liquidity > 0:
                pools.append(
                    LiquidityPool(
                        dex=adapter.name,
                        token_a=token_address,
                        token_b=base_token,
                        liquidity=liquidity,
                        reserve_a=reserve_a,
                        reserve_b=reserve_b,
                        fee_rate=adapter.fee_rate,
                    )
                )
        pools.sort(key=lambda pool: pool.liquidity, reverse=True)
        return pools

    async def get_token_metadata(self, token_address: str) -> TokenMetadata:
        """Coin info of a coin type; placeholder values when it cannot be read."""
        try:
            info = await self.contract.get_contract_resource(
                coin_address(token_address), f"0x1::coin::CoinInfo<{token_address}>"
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("no coin info for %s: %s", token_address, e)
            info = None
        if info is None:
            return TokenMetadata(token_address, "Unknown", "UNKNOWN", 8, 0)
        supply = 0
        vec = (info.get("supply") or {}).get("vec") or []
        if vec and isinstance(vec[0], dict):
            supply = _amount(vec[0], "value") or 0
        return TokenMetadata(
            address=token_address,
            name=info.get("name", ""),
            symbol=info.get("symbol", ""),
            decimals=_amount(info, "decimals") or 0,
            supply=supply,
        )

    async def get_top_prices_comparison(self) -> List[TokenPriceComparison]:
        """Popular pairs quoted on the major venues; pairs with one quote are dropped."""
        venues = [self.adapters[name] for name in COMPARISON_VENUES if name in self.adapters]
        comparisons = []
        for token_a, token_b in POPULAR_PAIRS:
            results = await asyncio.gather(
                *[
                    adapter.get_quote(token_a, token_b, PRICE_PROBE_AMOUNT)
                    for adapter in venues
                ],
                return_exceptions=True,
            )
            prices = [
                DexPrice(result.venue_name, result.quoted_price, result.expected_output)
                for result in results
                if isinstance(result, QuoteRecord)
            ]
            if len(prices) > 1:
                comparisons.append(TokenPriceComparison(token_a, token_b, prices))
        return comparisons

    #
    # Events
    #

    def start_event_listeners(
        self, shutdown: Optional[asyncio.Event] = None
    ) -> DexEventMonitor:
        """
        Start one supervised listener per venue. Each venue publishes into its own
        channel; listeners stop when ``shutdown`` is set.
        """
        if self.monitor is not None:
            return self.monitor
        self.shutdown = shutdown or asyncio.Event()
        self.monitor = DexEventMonitor(
            list(self.adapters), self.client.client_config.channel_capacity
        )
        self.monitor.start_monitoring_all_dexes(list(self.adapters.values()), self.shutdown)
        return self.monitor

    def subscribe(self, dex_name: str) -> Subscription:
        """
        :raises KeyError: If listeners are not started or the venue is unknown.
        """
        if self.monitor is None:
            raise KeyError("event listeners are not started")
        subscription = self.monitor.subscribe_to_dex(dex_name)
        if subscription is None:
            raise KeyError(f"DEX {dex_name} not found")
        return subscription

    async def stop_event_listeners(self):
        if self.monitor is None:
            return
        await self.monitor.stop(self.shutdown)
        self.monitor = None


class DexAnalytics:
    @staticmethod
    async def analyze_dex_volume_distribution(
        aggregator: DexAggregator,
    ) -> Dict[str, int]:
        """Swap input volume over each venue's latest page of swap events."""

        async def volume(adapter: DexAdapter) -> int:
            events = await adapter.get_recent_events("swap_events")
            return sum(_amount(event.event_data, "amount_in") or 0 for event in events)

        adapters = list(aggregator.adapters.values())
        results = await asyncio.gather(
            *[volume(adapter) for adapter in adapters], return_exceptions=True
        )
        volumes = {}
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logger.warning("failed to get volume for %s: %s", adapter.name, result)
                continue
            volumes[adapter.name] = result
        return volumes

    @staticmethod
    async def get_liquidity_depth(
        aggregator: DexAggregator, token_a: str, token_b: str
    ) -> List[DexLiquidity]:
        adapters = list(aggregator.adapters.values())
        results = await asyncio.gather(
            *[adapter.get_reserves(token_a, token_b) for adapter in adapters],
            return_exceptions=True,
        )
        depth = [
            DexLiquidity(
                adapter.name, token_a, token_b, result[0], result[1], sum(result)
            )
            for adapter, result in zip(adapters, results)
            if not isinstance(result, BaseException)
        ]
        depth.sort(key=lambda entry: entry.total_liquidity, reverse=True)
        return depth


class DexUtils:
    @staticmethod
    def calculate_price_impact(amount_in: int, reserve_in: int, reserve_out: int) -> float:
        return price_impact(amount_in, reserve_in, reserve_out)

    @staticmethod
    def calculate_optimal_slippage(impact: float) -> float:
        """Suggested slippage, in percent, for a given price impact in percent."""
        if impact < 0.1:
            return 0.5
        if impact < 1.0:
            return 1.0
        return 2.0

    @staticmethod
    def format_token_amount(amount: int, decimals: int) -> str:
        whole, fractional = divmod(amount, 10**decimals)
        if fractional == 0:
            return str(whole)
        return f"{whole}.{fractional:0{decimals}d}"

    @staticmethod
    async def validate_token_pair(
        aggregator: DexAggregator, token_a: str, token_b: str
    ) -> List[str]:
        """Names of the venues with a pool for the pair."""
        adapters = list(aggregator.adapters.values())
        results = await asyncio.gather(
            *[adapter.get_reserves(token_a, token_b) for adapter in adapters],
            return_exceptions=True,
        )
        return [
            adapter.name
            for adapter, result in zip(adapters, results)
            if not isinstance(result, BaseException)
        ]


class Test(unittest.IsolatedAsyncioTestCase):
    class Venue(DexAdapter):
        def __init__(self, client: RestClient, name: str, output: Optional[int]):
            super().__init__(client, f"0x{len(name):x}")
            self.name = name
            self.output = output

        async def get_quote(self, from_token, to_token, amount_in) -> QuoteRecord:
            if self.output is None:
                raise RuntimeError("no pool")
            return QuoteRecord(
                self.name, self.address, self.output, self.output / amount_in
            )

    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )

    async def asyncTearDown(self):
        await self.client.close()

    def aggregator(self, outputs: Dict[str, Optional[int]]) -> DexAggregator:
        return DexAggregator(
            self.client,
            [Test.Venue(self.client, name, output) for name, output in outputs.items()],
        )

    async def test_best_quote_and_min_out(self):
        aggregator = self.aggregator({"A": 100, "B": 120, "C": 110, "D": None})
        best = await aggregator.find_best_swap(APT, USDC, 1_000)
        self.assertEqual(best.venue_name, "B")
        self.assertEqual(best.expected_output, 120)

        wallet = Wallet.generate()
        with unittest.mock.patch(
            "aptos_defi_sdk.dex.base.DexAdapter.swap_exact_input",
            return_value=ContractWriteResult(True, "0xswap"),
        ) as swap:
            result = await aggregator.exe_best_swap(wallet, APT, USDC, 1_000, 0.02)
        self.assertEqual(result.transaction_hash, "0xswap")
        swap.assert_called_once_with(wallet, APT, USDC, 1_000, 117, None)

        quotes = await aggregator.compare_all_dex_prices(APT, USDC, 1_000)
        self.assertEqual([quote.venue_name for quote in quotes], ["B", "C", "A"])

    async def test_no_route(self):
        aggregator = self.aggregator({"A": None, "B": None})
        with self.assertRaises(NoRouteError) as error:
            await aggregator.find_best_swap(APT, USDC, 1_000)
        self.assertEqual(str(error.exception), "No suitable DEX found for this trade")

    def test_supported_dexes(self):
        aggregator = DexAggregator(self.client)
        dexes = {info.name: info for info in aggregator.get_supported_dexes()}
        self.assertEqual(len(dexes), 6)
        self.assertFalse(dexes["AuxExchange"].is_amm)
        self.assertTrue(dexes["Liquidswap"].is_amm)
        self.assertEqual(
            dexes["Liquidswap"].description, "Pontem Network - Largest DEX on Aptos"
        )

    async def test_token_metadata(self):
        aggregator = DexAggregator(self.client)
        info = {
            "data": {
                "name": "USD Coin",
                "symbol": "USDC",
                "decimals": 6,
                "supply": {"vec": [{"value": "12345"}]},
            }
        }
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value=info,
        ) as get_resource:
            metadata = await aggregator.get_token_metadata(USDC)
        self.assertEqual(get_resource.call_args.args[0], USDC.split("::")[0])
        self.assertEqual((metadata.symbol, metadata.decimals, metadata.supply), ("USDC", 6, 12345))

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value=None,
        ):
            metadata = await aggregator.get_token_metadata(USDC)
        self.assertEqual(metadata, TokenMetadata(USDC, "Unknown", "UNKNOWN", 8, 0))

    async def test_liquidity_pools(self):
        aggregator = DexAggregator(self.client, [Liquidswap(self.client)])

        async def get_resource(address, resource_type):
            if resource_type.endswith(f"<{THL}, {APT}>"):
                return {"data": {"coin_x_reserve": "10", "coin_y_reserve": "20"}}
            if resource_type.endswith(f"<{THL}, {USDC}>"):
                return {"data": {"coin_x_reserve": "100", "coin_y_reserve": "200"}}
            if resource_type.endswith(f"<{THL}, {USDT}>"):
                return {"data": {"coin_x_reserve": "0", "coin_y_reserve": "0"}}
            return None

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            side_effect=get_resource,
        ):
            pools = await aggregator.find_token_liquidity_pools(THL)
        self.assertEqual([pool.token_b for pool in pools], [USDC, APT])
        self.assertEqual(pools[0].liquidity, 300)
        self.assertEqual(pools[0].fee_rate, 0.003)

    async def test_top_prices_comparison(self):
        aggregator = self.aggregator({"Liquidswap": 10, "Thala": 12, "PancakeSwap": None})
        comparisons = await aggregator.get_top_prices_comparison()
        self.assertEqual(len(comparisons), 3)
        self.assertEqual([p.dex for p in comparisons[0].prices], ["Liquidswap", "Thala"])

        single = self.aggregator({"Liquidswap": 10, "Cellana": 12})
        self.assertEqual(await single.get_top_prices_comparison(), [])

    async def test_event_monitor(self):
        monitor = DexEventMonitor(["Liquidswap"], capacity=2)
        subscription = monitor.subscribe_to_dex("Liquidswap")
        self.assertIsNone(monitor.subscribe_to_dex("Nope"))
        monitor.publish_to_dex("Liquidswap", EventData("t", {}, 1))
        self.assertEqual((await subscription.recv()).sequence_number, 1)
        with self.assertRaises(KeyError):
            monitor.publish_to_dex("Nope", EventData("t", {}, 1))

    async def test_listeners_stop_on_shutdown(self):
        aggregator = self.aggregator({"A": 1})
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            return_value=[],
        ):
            shutdown = asyncio.Event()
            aggregator.start_event_listeners(shutdown)
            self.assertIsNotNone(aggregator.subscribe("A"))
            with self.assertRaises(KeyError):
                aggregator.subscribe("Z")
            await asyncio.wait_for(aggregator.stop_event_listeners(), 1)
        self.assertIsNone(aggregator.monitor)

    def test_utils(self):
        self.assertEqual(DexUtils.format_token_amount(150_000_000, 8), "1.50000000")
        self.assertEqual(DexUtils.format_token_amount(200_000_000, 8), "2")
        self.assertEqual(DexUtils.format_token_amount(5, 3), "0.005")
        self.assertEqual(DexUtils.calculate_optimal_slippage(0.05), 0.5)
        self.assertEqual(DexUtils.calculate_optimal_slippage(0.5), 1.0)
        self.assertEqual(DexUtils.calculate_optimal_slippage(3), 2.0)
        self.assertEqual(DexUtils.calculate_price_impact(10, 0, 10), 0.0)


if __name__ == "__main__":
    unittest.main()
