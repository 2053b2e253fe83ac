# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Compare swap quotes across every supported DEX, then swap on the best venue if a
private key is configured.

Examples:
    Quote 1 APT to USDC::

        python -m examples.dex_quotes

    Quote and swap::

        APTOS_PRIVATE_KEY=... python -m examples.dex_quotes
"""

import asyncio

from aptos_defi_sdk.async_client import RestClient
from aptos_defi_sdk.dex import APT, USDC
from aptos_defi_sdk.dex.aggregator import DexAggregator, DexUtils, NoRouteError
from aptos_defi_sdk.wallet import Wallet

from .common import CLIENT_CONFIG, NODE_URL, PRIVATE_KEY

AMOUNT_IN = 100_000_000


async def main():
    async with RestClient(NODE_URL, CLIENT_CONFIG) as rest_client:
        aggregator = DexAggregator(rest_client)

        print("\n=== Quotes for 1 APT -> USDC ===")
        quotes = await aggregator.compare_all_dex_prices(APT, USDC, AMOUNT_IN)
        for quote in quotes:
            print(
                f"{quote.venue_name:>12}: {DexUtils.format_token_amount(quote.expected_output, 6)}"
            )
        if not quotes:
            print("No venue could quote this pair")
            return

        print("\n=== APT price per venue ===")
        for price in await aggregator.get_token_price(APT):
            print(f"{price.dex:>12}: {price.price}")

        if PRIVATE_KEY is None:
            return

        print("\n=== Best route swap ===")
        with Wallet.from_private_key_hex(PRIVATE_KEY) as wallet:
            try:
                result = await aggregator.exe_best_swap(wallet, APT, USDC, AMOUNT_IN, 0.01)
            except NoRouteError as e:
                print(e)
                return
        print(f"success: {result.success}, hash: {result.transaction_hash}")


if __name__ == "__main__":
    asyncio.run(main())
