# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Coin management and discovery.

:class:`TokenManager` wraps the framework's ``0x1::managed_coin`` entry functions to
initialize, register, mint and burn a coin type, and reads a coin's ``CoinInfo``.

:class:`TokenSearchManager` finds coins without an indexer. It looks for them among the
``CoinInfo`` resources of well known publishers and among the pool types of every
supported venue, then prices them through the :class:`DexAggregator`.

Examples:
    Publish-side workflow for a coin defined in ``0xcafe::moon_coin``::

        manager = TokenManager(client)
        coin = "0xcafe::moon_coin::MoonCoin"
        await manager.create_token(publisher, coin, "Moon Coin", "MOON", 6)
        await manager.register_token(holder, coin)
        await manager.mint_token(publisher, coin, holder.address(), 1_000_000)

    Look up coins by symbol::

        results = await TokenSearchManager(client).get_token_by_symbol("usdc")
        for token in results:
            print(token.symbol, token.address, token.decimals)
"""

import asyncio
import logging
import unittest
import unittest.mock
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .async_client import ClientConfig, RestClient
from .contract import Contract, ContractCall, ContractWriteResult, ValidationError
from .dex import (
    ANIMESWAP,
    APT,
    AUX,
    CELLANA,
    LIQUIDSWAP,
    PANCAKESWAP,
    THALA,
    USDC,
    USDT,
    WORMHOLE_USDC,
    coin_address,
)
from .dex.aggregator import DexAggregator
from .dex.liquidswap import Liquidswap
from .transactions import TransactionArgument
from .wallet import Wallet

logger = logging.getLogger(__name__)

COIN_INFO = "0x1::coin::CoinInfo<"
MANAGED_COIN = "managed_coin"
VERIFIED_SYMBOLS = ["APT", "USDC", "USDT", "THL", "CAKE", "CELL"]
# Accounts whose CoinInfo resources are scanned by symbol searches
COIN_PUBLISHERS = [
    "0x1",
    "0x3",
    coin_address(USDC),
    coin_address(USDT),
    coin_address(WORMHOLE_USDC),
]
POOL_VENUES = [LIQUIDSWAP, THALA, PANCAKESWAP, ANIMESWAP, AUX, CELLANA]
POOL_MARKERS = ["::liquidity_pool::", "::Pool<", "::LiquidityPool<", "::TokenPairReserve<"]
TOP_TOKEN_LIMIT = 10
DEFAULT_DECIMALS = 8


@dataclass
class TokenSearchResult:
    symbol: str
    address: str
    name: str
    decimals: int
    verified: bool


@dataclass
class TopToken:
    symbol: str
    address: str
    name: str
    price: float
    # Combined reserves of the token's pool against the native coin
    liquidity: int


@dataclass
class TradePair:
    token_a: str
    token_b: str
    dexes: List[str] = field(default_factory=list)
    total_liquidity: int = 0


def build_standard_token_type(creator: str, module: str, name: str) -> str:
    return f"{creator}::{module}::{name}"


def parse_token_type(token_type: str) -> Optional[Tuple[str, str, str]]:
    """``(address, module, name)`` of a non generic coin type, otherwise None."""
    parts = token_type.split("::")
    if len(parts) != 3 or not all(parts):
        return None
    return parts[0], parts[1], parts[2]


def is_valid_token_address(address: str) -> bool:
    return address.startswith("0x") and len(address) == 66


def is_verified_token(symbol: str) -> bool:
    return symbol.upper() in VERIFIED_SYMBOLS


def type_arguments(struct_type: str) -> List[str]:
    """Top level type arguments of a generic struct type, nested generics intact."""
    start = struct_type.find("<")
    if start < 0 or not struct_type.endswith(">"):
        return []
    args = []
    depth = 0
    current = ""
    for char in struct_type[start + 1 : -1]:
        if char == "," and depth == 0:
            args.append(current.strip())
            current = ""
            continue
        if char == "<":
            depth += 1
        elif char == ">":
            depth -= 1
        current += char
    if current.strip():
        args.append(current.strip())
    return args


def is_pool_type(resource_type: str) -> bool:
    return any(marker in resource_type for marker in POOL_MARKERS)


def _coin_types(args: List[str]) -> List[str]:
    # curve markers such as liquidswap's Uncorrelated are not coins
    return [arg for arg in args if parse_token_type(arg) and "::curves::" not in arg]


def _decimals(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class TokenManager:
    """Entry function wrappers around ``0x1::managed_coin`` plus coin info reads."""

    client: RestClient
    contract: Contract

    def __init__(self, client: RestClient):
        self.client = client
        self.contract = Contract(client)

    @staticmethod
    def create_token_call(
        coin_type: str, name: str, symbol: str, decimals: int, monitor_supply: bool
    ) -> ContractCall:
        return ContractCall(
            "0x1",
            MANAGED_COIN,
            "initialize",
            [coin_type],
            [
                TransactionArgument.string(name),
                TransactionArgument.string(symbol),
                TransactionArgument.u8(decimals),
                TransactionArgument.bool(monitor_supply),
            ],
        )

    async def create_token(
        self,
        publisher: Wallet,
        coin_type: str,
        name: str,
        symbol: str,
        decimals: int,
        monitor_supply: bool = True,
    ) -> ContractWriteResult:
        """
        Initialize ``coin_type``. The publisher must own the module declaring it.

        :raises ValidationError: If ``decimals`` does not fit in a u8.
        """
        if not 0 <= decimals <= 255:
            raise ValidationError(f"decimals must fit in a u8, got {decimals}")
        call = TokenManager.create_token_call(
            coin_type, name, symbol, decimals, monitor_supply
        )
        return await self.contract.write(publisher, call)

    @staticmethod
    def register_token_call(coin_type: str) -> ContractCall:
        return ContractCall("0x1", MANAGED_COIN, "register", [coin_type], [])

    async def register_token(
        self, holder: Wallet, coin_type: str
    ) -> ContractWriteResult:
        """Create the holder's ``CoinStore`` so that it can receive ``coin_type``."""
        return await self.contract.write(
            holder, TokenManager.register_token_call(coin_type)
        )

    @staticmethod
    def mint_token_call(coin_type: str, recipient: str, amount: int) -> ContractCall:
        return ContractCall(
            "0x1", MANAGED_COIN, "mint", [coin_type], [recipient, amount]
        )

    async def mint_token(
        self, publisher: Wallet, coin_type: str, recipient: str, amount: int
    ) -> ContractWriteResult:
        return await self.contract.write(
            publisher, TokenManager.mint_token_call(coin_type, recipient, amount)
        )

    @staticmethod
    def burn_token_call(coin_type: str, amount: int) -> ContractCall:
        return ContractCall("0x1", MANAGED_COIN, "burn", [coin_type], [amount])

    async def burn_token(
        self, publisher: Wallet, coin_type: str, amount: int
    ) -> ContractWriteResult:
        return await self.contract.write(
            publisher, TokenManager.burn_token_call(coin_type, amount)
        )

    async def get_token_metadata(self, coin_type: str) -> Optional[Dict[str, Any]]:
        """The coin's ``CoinInfo`` data, or None if the coin is not initialized."""
        return await self.contract.get_contract_resource(
            coin_address(coin_type), f"{COIN_INFO}{coin_type}>"
        )

    async def get_token_balance(self, address: str, coin_type: str) -> int:
        return await self.client.get_account_balance(address, coin_type)


class TokenSearchManager:
    client: RestClient
    aggregator: DexAggregator

    def __init__(self, client: RestClient, aggregator: Optional[DexAggregator] = None):
        self.client = client
        self.aggregator = aggregator or DexAggregator(client)

    async def _resources(self, addresses: List[str]) -> List[Dict[str, Any]]:
        """Resources of every address; unreadable accounts are skipped."""
        results = await asyncio.gather(
            *[self.client.get_account_resources(address) for address in addresses],
            return_exceptions=True,
        )
        resources = []
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                logger.debug("cannot read resources of %s: %s", address, result)
                continue
            resources.extend(result or [])
        return resources

    async def get_token_by_symbol(self, symbol: str) -> List[TokenSearchResult]:
        """
        Coins whose symbol contains ``symbol``, case insensitive, sorted by symbol and
        unique by coin type.
        """
        search = symbol.upper()
        found: Dict[str, TokenSearchResult] = {}

        for resource in await self._resources(COIN_PUBLISHERS):
            resource_type = resource.get("type", "")
            if not resource_type.startswith(COIN_INFO):
                continue
            data = resource.get("data") or {}
            coin_symbol = data.get("symbol") or ""
            if search not in coin_symbol.upper():
                continue
            coin_type = resource_type[len(COIN_INFO) : -1]
            found.setdefault(
                coin_type,
                TokenSearchResult(
                    symbol=coin_symbol,
                    address=coin_type,
                    name=data.get("name") or "",
                    decimals=_decimals(data.get("decimals")),
                    verified=is_verified_token(coin_symbol),
                ),
            )

        candidates = []
        for resource in await self._resources(POOL_VENUES):
            resource_type = resource.get("type", "")
            if not is_pool_type(resource_type):
                continue
            for coin_type in _coin_types(type_arguments(resource_type)):
                name = coin_type.split("::")[2]
                if search in name.upper() and coin_type not in found:
                    if coin_type not in candidates:
                        candidates.append(coin_type)

        metadata = await asyncio.gather(
            *[self.aggregator.get_token_metadata(coin_type) for coin_type in candidates]
        )
        for coin_type, info in zip(candidates, metadata):
            name = coin_type.split("::")[2]
            if info.symbol == "UNKNOWN":
                found[coin_type] = TokenSearchResult(
                    name, coin_type, f"{name} Token", DEFAULT_DECIMALS, is_verified_token(name)
                )
            else:
                found[coin_type] = TokenSearchResult(
                    info.symbol,
                    coin_type,
                    info.name,
                    info.decimals,
                    is_verified_token(info.symbol),
                )

        return sorted(found.values(), key=lambda token: (token.symbol, token.address))

    async def get_top_token_vec(self) -> List[TopToken]:
        """
        Coins paired with the native coin on Liquidswap, deepest pool first, at most
        ten of them.
        """
        liquidswap = Liquidswap(self.client)
        pools: Dict[str, int] = {}
        for resource in await self._resources([liquidswap.address]):
            resource_type = resource.get("type", "")
            if "::liquidity_pool::LiquidityPool<" not in resource_type:
                continue
            coins = _coin_types(type_arguments(resource_type))
            if APT not in coins:
                continue
            reserve_x, reserve_y = liquidswap.reserves_of(resource.get("data") or {})
            for coin_type in coins:
                if coin_type != APT:
                    pools[coin_type] = max(pools.get(coin_type, 0), reserve_x + reserve_y)

        ranked = sorted(pools.items(), key=lambda item: item[1], reverse=True)
        ranked = ranked[:TOP_TOKEN_LIMIT]
        prices = await asyncio.gather(
            *[self.aggregator.get_token_price(coin_type) for coin_type, _ in ranked]
        )
        top_tokens = []
        for (coin_type, liquidity), price in zip(ranked, prices):
            symbol = coin_type.split("::")[2]
            top_tokens.append(
                TopToken(
                    symbol=symbol,
                    address=coin_type,
                    name=f"{symbol} Token",
                    price=price[0].price if price else 0.0,
                    liquidity=liquidity,
                )
            )
        return top_tokens

    async def get_token_trading_pairs(self, token_address: str) -> List[TradePair]:
        """Pairs of the token with the common base tokens, venues merged per pair."""
        pairs: Dict[Tuple[str, str], TradePair] = {}
        for pool in await self.aggregator.find_token_liquidity_pools(token_address):
            pair = pairs.setdefault(
                (pool.token_a, pool.token_b), TradePair(pool.token_a, pool.token_b)
            )
            pair.dexes.append(pool.dex)
            pair.total_liquidity += pool.liquidity
        return sorted(pairs.values(), key=lambda pair: pair.total_liquidity, reverse=True)


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.wallet = Wallet.generate()

    async def asyncTearDown(self):
        await self.client.close()

    def test_token_types(self):
        self.assertEqual(
            build_standard_token_type("0x123", "moon_coin", "MoonCoin"),
            "0x123::moon_coin::MoonCoin",
        )
        self.assertEqual(parse_token_type(APT), ("0x1", "aptos_coin", "AptosCoin"))
        self.assertIsNone(parse_token_type("0x1::coin"))
        self.assertTrue(is_valid_token_address(coin_address(USDC)))
        self.assertFalse(is_valid_token_address("invalid_address"))
        self.assertTrue(is_verified_token("usdc"))
        pool_type = (
            f"{LIQUIDSWAP}::liquidity_pool::LiquidityPool"
            f"<{APT}, 0x2::a::W<0x3::b::C, 0x4::c::D>, 0x5::curves::Uncorrelated>"
        )
        self.assertEqual(
            type_arguments(pool_type),
            [APT, "0x2::a::W<0x3::b::C, 0x4::c::D>", "0x5::curves::Uncorrelated"],
        )
        self.assertEqual(type_arguments(APT), [])

    async def test_managed_coin_calls(self):
        manager = TokenManager(self.client)
        coin = "0xcafe::moon_coin::MoonCoin"
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0xabc"),
        ) as write:
            await manager.create_token(self.wallet, coin, "Moon Coin", "MOON", 6)
            await manager.register_token(self.wallet, coin)
            await manager.mint_token(self.wallet, coin, "0xb0b", 1_000)
            result = await manager.burn_token(self.wallet, coin, 10)

        self.assertTrue(result.success)
        calls = [call.args[1] for call in write.call_args_list]
        self.assertEqual(
            [call.function_id() for call in calls],
            [
                "0x1::managed_coin::initialize",
                "0x1::managed_coin::register",
                "0x1::managed_coin::mint",
                "0x1::managed_coin::burn",
            ],
        )
        self.assertTrue(all(call.type_arguments == [coin] for call in calls))
        self.assertEqual(calls[0].arguments[2], TransactionArgument.u8(6))
        self.assertEqual(calls[2].arguments, ["0xb0b", 1_000])
        self.assertEqual(calls[3].arguments, [10])
        for call in calls:
            call.to_entry_function()

        with self.assertRaises(ValidationError):
            await manager.create_token(self.wallet, coin, "Moon Coin", "MOON", 256)

    async def test_metadata_is_read_at_publisher(self):
        manager = TokenManager(self.client)
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value={"type": "t", "data": {"symbol": "USDC", "decimals": 6}},
        ) as get_resource:
            info = await manager.get_token_metadata(USDC)
        self.assertEqual(info["decimals"], 6)
        self.assertEqual(
            get_resource.call_args.args, (coin_address(USDC), f"{COIN_INFO}{USDC}>")
        )

    async def test_search_by_symbol(self):
        moon = "0xcafe::moon::MOONUSDC"

        async def get_resources(address, ledger_version=None):
            if address == coin_address(USDC):
                return [
                    {
                        "type": f"{COIN_INFO}{USDC}>",
                        "data": {"symbol": "USDC", "name": "USD Coin", "decimals": 6},
                    },
                    {"type": "0x1::account::Account", "data": {}},
                ]
            if address == LIQUIDSWAP:
                return [
                    {
                        "type": f"{LIQUIDSWAP}::liquidity_pool::LiquidityPool"
                        f"<{USDC}, {moon}, {LIQUIDSWAP}::curves::Uncorrelated>",
                        "data": {},
                    }
                ]
            if address == AUX:
                raise RuntimeError("node down")
            return None

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resources",
            side_effect=get_resources,
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value=None,
        ):
            results = await TokenSearchManager(self.client).get_token_by_symbol("usdc")

        self.assertEqual([token.address for token in results], [moon, USDC])
        self.assertEqual(results[0].name, "MOONUSDC Token")
        self.assertEqual(results[0].decimals, 8)
        self.assertFalse(results[0].verified)
        self.assertEqual((results[1].decimals, results[1].verified), (6, True))

    async def test_top_tokens(self):
        gold = "0xcafe::gold::GOLD"
        silver = "0xcafe::silver::SILVER"
        curve = f"{LIQUIDSWAP}::curves::Uncorrelated"

        def pool(coin: str, reserve: str) -> Dict[str, Any]:
            return {
                "type": f"{LIQUIDSWAP}::liquidity_pool::LiquidityPool<{coin}, {APT}, {curve}>",
                "data": {
                    "coin_x_reserve": {"value": reserve},
                    "coin_y_reserve": {"value": reserve},
                },
            }

        resources = [pool(silver, "10"), pool(gold, "500"), {"type": "0x1::x::Y", "data": {}}]
        aggregator = DexAggregator(self.client)
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resources",
            return_value=resources,
        ), unittest.mock.patch.object(
            aggregator, "get_token_price", return_value=[]
        ) as get_price:
            top = await TokenSearchManager(self.client, aggregator).get_top_token_vec()

        self.assertEqual([token.symbol for token in top], ["GOLD", "SILVER"])
        self.assertEqual(top[0].liquidity, 1000)
        self.assertEqual(top[0].price, 0.0)
        self.assertEqual(get_price.await_count, 2)

    async def test_trading_pairs(self):
        from .dex.aggregator import LiquidityPool

        pools = [
            LiquidityPool("Liquidswap", "0xa::a::A", APT, 100, 50, 50, 0.003),
            LiquidityPool("Thala", "0xa::a::A", APT, 300, 150, 150, 0.003),
            LiquidityPool("Liquidswap", "0xa::a::A", USDC, 50, 25, 25, 0.003),
        ]
        aggregator = DexAggregator(self.client)
        with unittest.mock.patch.object(
            aggregator, "find_token_liquidity_pools", return_value=pools
        ):
            pairs = await TokenSearchManager(
                self.client, aggregator
            ).get_token_trading_pairs("0xa::a::A")

        self.assertEqual(len(pairs), 2)
        self.assertEqual(pairs[0].dexes, ["Liquidswap", "Thala"])
        self.assertEqual(pairs[0].total_liquidity, 400)
        self.assertEqual(pairs[1].token_b, USDC)


if __name__ == "__main__":
    unittest.main()
