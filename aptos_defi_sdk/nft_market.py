# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
NFT marketplace aggregator: find the cheapest listing of a token across venues, buy it,
and list tokens on one or more venues.

Each venue is described by a :class:`Marketplace`: the resource types that hold its
listings, which fields carry the price and the seller, and the entry functions used to
buy and list. Listings are read straight from the venue account's resources.
"""

from __future__ import annotations

import asyncio
import logging
import unittest
import unittest.mock
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .async_client import APTOS_COIN, ClientConfig, RestClient
from .contract import Contract, ContractCall, ContractWriteResult, WriteOptions
from .dex import AUX, PANCAKESWAP
from .wallet import Wallet

logger = logging.getLogger(__name__)

#
# Venue addresses
#

TOPAZ = "0x2c7bccf7b31baf770fdbcc768d9e9cb3d87805e255355df5db32ac9a669010a2"
SOUFFL3 = "0xf6994988bd40261af9431cd6dd3fcf765569719e66322c7a05cc78a89cd366d4"
BLUEMOVE = "0xd1fd99c1944b84d1670a2536417e997864ad12303d19eac725891691b04d614e"
MERCATO = "0xe11c12ec495f3989c35e1c6a0af414451223305b579291fc8f3d9d0575a23c26"
AUX_EXCHANGE = AUX
PANCAKE_SWAP_NFT = PANCAKESWAP
TRADEPORT = "0xe11c12ec495f3989c35e1c6a0af414451223305b579291fc8f3d9d0575a23c27"
WAPAL = "0x584b50b999c78ade62f8359c91b5165ff390338d45f8e55969a04e65d76258c9"

PRICE_FIELDS = ("price", "list_price", "amount")
SELLER_FIELDS = ("seller", "owner")


@dataclass
class Marketplace:
    name: str
    address: str
    # a resource holds listings if its type contains one of these
    type_markers: Tuple[str, ...]
    price_fields: Tuple[str, ...] = PRICE_FIELDS
    seller_fields: Tuple[str, ...] = SELLER_FIELDS
    time_field: Optional[str] = None
    # (module, function, argument names)
    purchase: Tuple[str, str, Tuple[str, ...]] = ("market", "buy", ("token_id", "price"))
    listing: Optional[Tuple[str, str]] = None


MARKETPLACES = [
    Marketplace(
        "Topaz",
        TOPAZ,
        ("::listings::",),
        purchase=("marketplace", "purchase", ("token_id", "seller", "price")),
        listing=("marketplace", "list"),
    ),
    Marketplace(
        "Souffl3",
        SOUFFL3,
        ("::market::", "::listing::"),
        purchase=("market", "buy", ("token_id", "price")),
        listing=("market", "list"),
    ),
    Marketplace(
        "BlueMove",
        BLUEMOVE,
        ("::Marketplace",),
        purchase=("marketplace", "buy_token", ("token_id", "price")),
        listing=("marketplace", "list_token"),
    ),
    Marketplace(
        "Mercato",
        MERCATO,
        ("::market",),
        purchase=("market", "purchase", ("token_id", "price")),
    ),
    Marketplace(
        "AUX",
        AUX_EXCHANGE,
        ("::amm::", "::clob::"),
        purchase=("nft_market", "buy", ("token_id", "price")),
    ),
    Marketplace(
        "PancakeSwap",
        PANCAKE_SWAP_NFT,
        ("::nft_market",),
        purchase=("nft_market", "purchase", ("token_id", "price")),
    ),
    Marketplace(
        "Tradeport",
        TRADEPORT,
        ("::marketplace", "::listing"),
        price_fields=("price", "list_price", "buy_now_price"),
        seller_fields=("seller", "owner", "creator"),
        time_field="created_at",
        purchase=("marketplace", "purchase", ("token_id", "seller", "price")),
        listing=("marketplace", "list_token"),
    ),
    Marketplace(
        "Wapal",
        WAPAL,
        ("::wapal", "::market"),
        price_fields=("price", "amount", "sale_price"),
        seller_fields=("seller", "owner", "current_owner"),
        time_field="list_time",
        purchase=("market", "buy_nft", ("token_id", "price")),
        listing=("market", "list_nft"),
    ),
]


class UnsupportedMarketplace(Exception):
    pass


@dataclass
class NFTListing:
    token_id: str
    price: int
    # type of the resource the listing was read from
    marketplace: str
    seller: str
    listing_time: int = 0
    currency: str = APTOS_COIN
    marketplace_name: str = ""


@dataclass
class NFTOrderBook:
    token_id: str
    listings: List[NFTListing] = field(default_factory=list)
    best_offer: Optional[int] = None
    floor_price: Optional[int] = None


@dataclass
class NFTPurchaseResult:
    success: bool
    transaction_hash: str
    marketplace: str
    total_cost: int
    gas_used: int


def _first(data: Dict[str, Any], fields: Tuple[str, ...]) -> Any:
    for name in fields:
        if data.get(name) is not None:
            return data[name]
    return None


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def extract_listing(
    resource: Dict[str, Any], token_id: str, marketplace: Marketplace
) -> Optional[NFTListing]:
    """A listing from one resource, or None when it carries no positive price."""
    data = resource.get("data")
    if not isinstance(data, dict):
        return None
    price = _to_int(_first(data, marketplace.price_fields))
    if price <= 0:
        return None
    seller = _first(data, marketplace.seller_fields)
    listing_time = 0
    if marketplace.time_field is not None:
        listing_time = _to_int(data.get(marketplace.time_field))
    return NFTListing(
        token_id=token_id,
        price=price,
        marketplace=resource.get("type", ""),
        seller=seller if isinstance(seller, str) else "",
        listing_time=listing_time,
        marketplace_name=marketplace.name,
    )


class NFTMarketplaceAggregator:
    client: RestClient
    contract: Contract
    marketplaces: Dict[str, Marketplace]

    def __init__(
        self, client: RestClient, marketplaces: Optional[List[Marketplace]] = None
    ):
        self.client = client
        self.contract = Contract(client)
        self.marketplaces = {
            market.name: market for market in (marketplaces or MARKETPLACES)
        }

    def marketplace(self, name: str) -> Marketplace:
        market = self.marketplaces.get(name)
        if market is None:
            raise UnsupportedMarketplace(f"Unsupported marketplace: {name}")
        return market

    #
    # Listings
    #

    async def get_marketplace_listings(
        self, market: Marketplace, token_id: str
    ) -> List[NFTListing]:
        resources = await self.client.get_account_resources(market.address) or []
        listings = []
        for resource in resources:
            resource_type = resource.get("type", "")
            if not any(marker in resource_type for marker in market.type_markers):
                continue
            listing = extract_listing(resource, token_id, market)
            if listing is not None:
                listings.append(listing)
        return listings

    async def search_nft_listings(self, token_id: str) -> List[NFTListing]:
        """Listings on every venue, cheapest first. Unreachable venues are skipped."""
        markets = list(self.marketplaces.values())
        results = await asyncio.gather(
            *[self.get_marketplace_listings(market, token_id) for market in markets],
            return_exceptions=True,
        )
        listings: List[NFTListing] = []
        for market, result in zip(markets, results):
            if isinstance(result, BaseException):
                logger.warning("failed to read %s listings: %s", market.name, result)
                continue
            listings.extend(result)
        listings.sort(key=lambda listing: listing.price)
        return listings

    async def get_best_price(self, token_id: str) -> Optional[NFTListing]:
        listings = await self.search_nft_listings(token_id)
        if not listings:
            return None
        return min(listings, key=lambda listing: listing.price)

    async def get_order_book(self, token_id: str) -> NFTOrderBook:
        listings = await self.search_nft_listings(token_id)
        floor_price = listings[0].price if listings else None
        return NFTOrderBook(token_id, listings, None, floor_price)

    #
    # Purchases and listing
    #

    def build_purchase_call(self, listing: NFTListing) -> ContractCall:
        market = self.marketplace(listing.marketplace_name)
        module, function, argument_names = market.purchase
        values = {
            "token_id": listing.token_id,
            "seller": listing.seller,
            "price": listing.price,
        }
        return ContractCall(
            market.address,
            module,
            function,
            [],
            [values[name] for name in argument_names],
        )

    def build_listing_call(self, token_id: str, price: int, market_name: str) -> ContractCall:
        market = self.marketplaces.get(market_name)
        if market is None or market.listing is None:
            raise UnsupportedMarketplace(f"Unsupported marketplace for listing: {market_name}")
        module, function = market.listing
        return ContractCall(market.address, module, function, [], [token_id, price])

    async def purchase_nft(
        self,
        wallet: Wallet,
        listing: NFTListing,
        options: Optional[WriteOptions] = None,
    ) -> NFTPurchaseResult:
        result = await self.contract.write(wallet, self.build_purchase_call(listing), options)
        return _purchase_result(result, listing.marketplace_name, listing.price)

    async def list_nft_on_market(
        self,
        wallet: Wallet,
        token_id: str,
        price: int,
        market_name: str,
        options: Optional[WriteOptions] = None,
    ) -> NFTPurchaseResult:
        call = self.build_listing_call(token_id, price, market_name)
        result = await self.contract.write(wallet, call, options)
        return _purchase_result(result, market_name, 0)

    async def list_nft_on_markets(
        self,
        wallet: Wallet,
        token_id: str,
        price: int,
        market_names: List[str],
    ) -> List[NFTPurchaseResult]:
        """List on each venue in turn; venues that fail are logged and skipped."""
        results = []
        for market_name in market_names:
            try:
                results.append(
                    await self.list_nft_on_market(wallet, token_id, price, market_name)
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("listing %s on %s failed: %s", token_id, market_name, e)
        return results

    #
    # Status
    #

    async def verify_delisted(self, token_id: str) -> bool:
        return not await self.search_nft_listings(token_id)

    async def get_listing_status(self, token_id: str) -> Dict[str, bool]:
        """Whether the token is listed, per venue name."""
        listings = await self.search_nft_listings(token_id)
        listed = {listing.marketplace_name for listing in listings}
        return {name: name in listed for name in self.marketplaces}


def _purchase_result(
    result: ContractWriteResult, marketplace: str, total_cost: int
) -> NFTPurchaseResult:
    return NFTPurchaseResult(
        success=result.success,
        transaction_hash=result.transaction_hash,
        marketplace=marketplace,
        total_cost=total_cost,
        gas_used=result.gas_used,
    )


class Test(unittest.IsolatedAsyncioTestCase):
    RESOURCES = {
        TOPAZ: [
            {"type": f"{TOPAZ}::listings::Listing", "data": {"price": "500", "seller": "0xa"}},
            {"type": f"{TOPAZ}::listings::Listing", "data": {"price": "0", "seller": "0xb"}},
            {"type": f"{TOPAZ}::config::Config", "data": {"price": "1"}},
        ],
        WAPAL: [
            {
                "type": f"{WAPAL}::market::Listing",
                "data": {"sale_price": "300", "current_owner": "0xc", "list_time": "99"},
            }
        ],
        TRADEPORT: [
            {"type": f"{TRADEPORT}::listing::Listing", "data": {"buy_now_price": "400"}}
        ],
    }

    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.aggregator = NFTMarketplaceAggregator(self.client)

    async def asyncTearDown(self):
        await self.client.close()

    async def get_resources(self, address, ledger_version=None):
        if address == BLUEMOVE:
            raise RuntimeError("unreachable")
        return self.RESOURCES.get(address, [])

    async def test_search_sorted_and_filtered(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resources",
            side_effect=self.get_resources,
        ):
            listings = await self.aggregator.search_nft_listings("0xtoken")
            best = await self.aggregator.get_best_price("0xtoken")
            status = await self.aggregator.get_listing_status("0xtoken")

        self.assertEqual([listing.price for listing in listings], [300, 400, 500])
        self.assertEqual(listings[0].seller, "0xc")
        self.assertEqual(listings[0].listing_time, 99)
        self.assertEqual(listings[0].marketplace_name, "Wapal")
        self.assertEqual(best.price, 300)
        self.assertTrue(status["Topaz"])
        self.assertFalse(status["Mercato"])
        self.assertEqual(len(status), 8)

    async def test_delisted(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resources",
            return_value=[],
        ):
            self.assertTrue(await self.aggregator.verify_delisted("0xtoken"))
            self.assertIsNone(await self.aggregator.get_best_price("0xtoken"))

    def test_purchase_call_argument_order(self):
        topaz = NFTListing("token", 500, "t", "0xa", marketplace_name="Topaz")
        call = self.aggregator.build_purchase_call(topaz)
        self.assertEqual(call.function_id(), f"{TOPAZ}::marketplace::purchase")
        self.assertEqual(call.arguments, ["token", "0xa", 500])

        wapal = NFTListing("token", 300, "t", "0xc", marketplace_name="Wapal")
        call = self.aggregator.build_purchase_call(wapal)
        self.assertEqual(call.function_id(), f"{WAPAL}::market::buy_nft")
        self.assertEqual(call.arguments, ["token", 300])

        with self.assertRaises(UnsupportedMarketplace):
            self.aggregator.build_purchase_call(
                NFTListing("token", 1, "t", "", marketplace_name="Nowhere")
            )

    async def test_list_on_markets_skips_unsupported(self):
        wallet = Wallet.generate()
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0xlist", 12),
        ) as write:
            results = await self.aggregator.list_nft_on_markets(
                wallet, "token", 1_000, ["Topaz", "Mercato", "BlueMove"]
            )
        self.assertEqual([result.marketplace for result in results], ["Topaz", "BlueMove"])
        self.assertEqual(results[0].gas_used, 12)
        self.assertEqual(write.call_count, 2)
        self.assertEqual(
            write.call_args_list[1].args[1].function_id(),
            f"{BLUEMOVE}::marketplace::list_token",
        )

    async def test_purchase(self):
        wallet = Wallet.generate()
        listing = NFTListing("token", 700, "t", "0xa", marketplace_name="Souffl3")
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0xbuy", 30),
        ):
            result = await self.aggregator.purchase_nft(wallet, listing)
        self.assertEqual(result, NFTPurchaseResult(True, "0xbuy", "Souffl3", 700, 30))


if __name__ == "__main__":
    unittest.main()
