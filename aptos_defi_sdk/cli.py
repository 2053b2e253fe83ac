# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Command-line access to the SDK's read paths and to best-route swaps.

Supported Commands:
- chain-info: Print the node's ledger information
- balance: Print an account's coin balance
- quote: Compare every venue's quote for a swap
- swap: Swap on the venue with the best quote
- nft-listings: Print a token's listings across NFT marketplaces, cheapest first
- analyze-tx: Decode a committed transaction into a trade summary

Examples:
    Compare quotes on mainnet::

        aptos-defi quote \
            --network mainnet \
            --from-token 0x1::aptos_coin::AptosCoin \
            --to-token 0x5e156f1207d0ebfa19a9eeff00d62a282278fb8719f4fab3a586a0a2c0fffbea::coin::T \
            --amount 100000000

    Swap with a key file holding the hex encoded PKCS#8 private key::

        aptos-defi swap \
            --network mainnet \
            --private-key-path ./key.txt \
            --from-token 0x1::aptos_coin::AptosCoin \
            --to-token 0x5e156f1207d0ebfa19a9eeff00d62a282278fb8719f4fab3a586a0a2c0fffbea::coin::T \
            --amount 100000000 \
            --slippage 0.01
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import unittest
import unittest.mock
from dataclasses import asdict
from typing import Any, List, Optional

from .async_client import APTOS_COIN, ClientConfig, Network, RestClient
from .dex.aggregator import DexAggregator
from .nft_market import NFTMarketplaceAggregator
from .trade_analyzer import TransactionInfo
from .wallet import Wallet

COMMANDS = ["chain-info", "balance", "quote", "swap", "nft-listings", "analyze-tx"]


def load_wallet(private_key_path: str) -> Wallet:
    with open(private_key_path) as f:
        return Wallet.from_private_key_hex(f.read().strip())


def _print(value: Any):
    print(json.dumps(value, indent=2, default=str))


def summarize_transaction(txn: TransactionInfo) -> dict:
    return {
        "hash": txn.hash,
        "version": txn.version,
        "success": txn.success,
        "sender": txn.get_sender(),
        "direction": txn.get_direction(),
        "spent": txn.get_spent_token_decimal(),
        "received": txn.get_received_token_decimal(),
        "pools": txn.get_liquidity_pool_addresses(),
        "dexes": txn.get_dex_names(),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Aptos DeFi CLI")
    parser.add_argument(
        "command", type=str, help="The command to execute", choices=COMMANDS
    )
    parser.add_argument(
        "--network",
        help="mainnet, testnet or devnet",
        type=Network.from_str,
        default=Network.MAINNET,
    )
    parser.add_argument(
        "--rest-api",
        help="Full node REST API endpoint URL, overrides --network",
        type=str,
    )
    parser.add_argument("--address", help="Account address", type=str)
    parser.add_argument(
        "--coin-type", help="Coin type for balance", type=str, default=APTOS_COIN
    )
    parser.add_argument("--from-token", help="Token to sell", type=str)
    parser.add_argument("--to-token", help="Token to buy", type=str)
    parser.add_argument("--amount", help="Amount in base units", type=int)
    parser.add_argument("--slippage", help="Accepted slippage, e.g. 0.005", type=float)
    parser.add_argument(
        "--private-key-path",
        help="Path to file containing the signer's hex encoded private key",
        type=str,
    )
    parser.add_argument("--token-id", help="NFT token id", type=str)
    parser.add_argument("--txn-hash", help="Transaction hash", type=str)
    parser.add_argument("--verbose", help="Enable debug logging", action="store_true")
    return parser


def _require(parser: argparse.ArgumentParser, parsed_args: argparse.Namespace, *names: str):
    for name in names:
        if getattr(parsed_args, name) is None:
            parser.error(f"Missing required argument '--{name.replace('_', '-')}'")


async def main(args: List[str], client: Optional[RestClient] = None):
    parser = build_parser()
    parsed_args = parser.parse_args(args)
    logging.basicConfig(level=logging.DEBUG if parsed_args.verbose else logging.WARNING)

    if parsed_args.command == "balance":
        _require(parser, parsed_args, "address")
    elif parsed_args.command == "quote":
        _require(parser, parsed_args, "from_token", "to_token", "amount")
    elif parsed_args.command == "swap":
        _require(parser, parsed_args, "from_token", "to_token", "amount", "private_key_path")
    elif parsed_args.command == "nft-listings":
        _require(parser, parsed_args, "token_id")
    elif parsed_args.command == "analyze-tx":
        _require(parser, parsed_args, "txn_hash")

    wallet = None
    if parsed_args.command == "swap":
        try:
            wallet = load_wallet(parsed_args.private_key_path)
        except FileNotFoundError:
            parser.error(f"Private key file not found: {parsed_args.private_key_path}")
        except Exception as e:
            parser.error(f"Failed to load private key: {e}")

    if client is None:
        if parsed_args.rest_api:
            client = RestClient(parsed_args.rest_api)
        else:
            client = RestClient.for_network(parsed_args.network)

    async with client:
        if parsed_args.command == "chain-info":
            _print(await client.get_chain_info())
        elif parsed_args.command == "balance":
            balance = await client.get_account_balance(
                parsed_args.address, parsed_args.coin_type
            )
            _print({"address": parsed_args.address, "balance": balance})
        elif parsed_args.command == "quote":
            quotes = await DexAggregator(client).compare_all_dex_prices(
                parsed_args.from_token, parsed_args.to_token, parsed_args.amount
            )
            _print([asdict(quote) for quote in quotes])
        elif parsed_args.command == "swap":
            with wallet:
                result = await DexAggregator(client).exe_best_swap(
                    wallet,
                    parsed_args.from_token,
                    parsed_args.to_token,
                    parsed_args.amount,
                    parsed_args.slippage,
                )
            _print(result.to_dict())
        elif parsed_args.command == "nft-listings":
            listings = await NFTMarketplaceAggregator(client).search_nft_listings(
                parsed_args.token_id
            )
            _print([asdict(listing) for listing in listings])
        elif parsed_args.command == "analyze-tx":
            txn = TransactionInfo(await client.get_transaction_by_hash(parsed_args.txn_hash))
            _print(summarize_transaction(txn))


def run():
    asyncio.run(main(sys.argv[1:]))


class Test(unittest.IsolatedAsyncioTestCase):
    async def test_missing_argument(self):
        with unittest.mock.patch("sys.stderr"):
            with self.assertRaises(SystemExit):
                await main(["quote", "--from-token", APTOS_COIN])

    def test_network_parsing(self):
        parsed = build_parser().parse_args(["chain-info", "--network", "testnet"])
        self.assertEqual(parsed.network, Network.TESTNET)

    async def test_balance(self):
        client = RestClient(Network.DEVNET.url, ClientConfig(http2=False))
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_balance",
            return_value=1_000,
        ), unittest.mock.patch("builtins.print") as printed:
            await main(["balance", "--address", "0x1"], client)
        self.assertEqual(
            json.loads(printed.call_args.args[0]), {"address": "0x1", "balance": 1_000}
        )

    async def test_analyze_tx(self):
        raw = {
            "type": "user_transaction",
            "version": "7",
            "hash": "0xabc",
            "success": True,
            "sender": "0xtrader",
            "payload": {"function": "0x1::coin::transfer", "arguments": ["0xb", "1"]},
            "events": [],
        }
        client = RestClient(Network.DEVNET.url, ClientConfig(http2=False))
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_transaction_by_hash",
            return_value=raw,
        ), unittest.mock.patch("builtins.print") as printed:
            await main(["analyze-tx", "--txn-hash", "0xabc"], client)
        summary = json.loads(printed.call_args.args[0])
        self.assertEqual(summary["direction"], "TRANSFER")
        self.assertEqual(summary["version"], 7)
        self.assertIsNone(summary["spent"])


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1:]))
