# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Aptos DeFi SDK - an async Python client for DeFi workflows on the Aptos blockchain.

The SDK reads chain state over the full node REST API, signs transactions locally with
an Ed25519 key and drives higher level workflows built on contract calls.

Core Features:
- **REST Client**: Accounts, resources, modules, blocks, transactions, events, tables
  and view functions (:mod:`aptos_defi_sdk.async_client`)
- **Wallet**: PKCS#8 Ed25519 keys, signing and address derivation
  (:mod:`aptos_defi_sdk.wallet`)
- **Transactions**: BCS encoding, local signing, submission and confirmation
  (:mod:`aptos_defi_sdk.transaction_builder`)
- **Contracts**: A uniform read, write and simulate facade
  (:mod:`aptos_defi_sdk.contract`)
- **Batching**: Bounded parallel writes with locally allocated sequence numbers and
  dependent call sequences (:mod:`aptos_defi_sdk.multicall`,
  :mod:`aptos_defi_sdk.sequence_number`)
- **Coins**: Managed coin initialize, register, mint and burn, plus symbol search and
  trading pair discovery (:mod:`aptos_defi_sdk.token_manager`)
- **Events**: Cursor based polling and per-venue broadcast channels
  (:mod:`aptos_defi_sdk.event`)
- **DEX Aggregation**: Quotes, best-route swaps and liquidity across Liquidswap, Thala,
  PancakeSwap, AnimeSwap, Aux and Cellana (:mod:`aptos_defi_sdk.dex`)
- **NFT Marketplaces**: Cross-venue listing search, purchase and listing
  (:mod:`aptos_defi_sdk.nft_market`)
- **Trade Analysis**: Spent and received tokens, direction, pools and venues of a
  committed transaction (:mod:`aptos_defi_sdk.trade_analyzer`)

Quick Start:
    Best-route swap::

        import asyncio
        from aptos_defi_sdk.async_client import RestClient
        from aptos_defi_sdk.dex import APT, USDC
        from aptos_defi_sdk.dex.aggregator import DexAggregator
        from aptos_defi_sdk.wallet import Wallet

        async def main():
            async with RestClient.for_network("mainnet") as client:
                with Wallet.from_private_key_hex(open("key.txt").read().strip()) as wallet:
                    result = await DexAggregator(client).exe_best_swap(
                        wallet, APT, USDC, 100_000_000, slippage=0.01
                    )
                    print(result.transaction_hash)

        asyncio.run(main())

License:
    Apache License 2.0
"""
