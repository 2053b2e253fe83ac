# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Decode an account's recent transactions into trades.

Examples:
    Print the last 25 transactions of an account::

        python -m examples.trade_history 0x1
"""

import asyncio
import sys

from aptos_defi_sdk.async_client import RestClient
from aptos_defi_sdk.trade_analyzer import Direction, Trade

from .common import CLIENT_CONFIG, NODE_URL


async def main(address: str):
    async with RestClient(NODE_URL, CLIENT_CONFIG) as rest_client:
        transactions = await Trade(rest_client).get_address_transactions(address, 25)

        print(f"\n=== Trades of {address} ===")
        for txn in transactions:
            direction = txn.get_direction()
            if direction == Direction.TRANSFER:
                transfer = txn.get_transfer_info()
                if transfer is not None:
                    print(f"{txn.version}: sent {transfer.amount} to {transfer.recipient}")
                continue
            spent = txn.get_spent_token_decimal()
            received = txn.get_received_token_decimal()
            print(
                f"{txn.version}: {direction} {spent} -> {received} via {txn.get_dex_names()}"
            )


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1]))
