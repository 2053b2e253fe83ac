# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Find a token's listings on every NFT marketplace and print the cheapest.

Examples:
    Search for one token id::

        python -m examples.nft_floor 0x1::collection::token
"""

import asyncio
import sys

from aptos_defi_sdk.async_client import RestClient
from aptos_defi_sdk.nft_market import NFTMarketplaceAggregator

from .common import CLIENT_CONFIG, NODE_URL


async def main(token_id: str):
    async with RestClient(NODE_URL, CLIENT_CONFIG) as rest_client:
        aggregator = NFTMarketplaceAggregator(rest_client)

        print(f"\n=== Listings of {token_id} ===")
        for listing in await aggregator.search_nft_listings(token_id):
            print(f"{listing.marketplace_name:>12}: {listing.price} from {listing.seller}")

        best = await aggregator.get_best_price(token_id)
        if best is None:
            print("Not listed anywhere")
        else:
            print(f"\nBest price: {best.price} on {best.marketplace_name}")

        print("\n=== Listing status ===")
        status = await aggregator.get_listing_status(token_id)
        for name, listed in status.items():
            print(f"{name:>12}: {'listed' if listed else '-'}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1]))
