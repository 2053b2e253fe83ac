# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Block and ledger helpers on top of the node's block endpoints.
"""

from __future__ import annotations

import unittest
import unittest.mock
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .async_client import ClientConfig, RestClient

# bytes, rough size of block metadata and of one transaction
BASE_BLOCK_SIZE = 500
TRANSACTION_SIZE = 100


@dataclass
class BlockInfo:
    block_height: int
    block_hash: str
    first_version: int
    last_version: int
    # microseconds since the epoch
    timestamp: int
    transaction_count: int = 0
    transactions: Optional[List[Dict[str, Any]]] = field(default=None, repr=False)

    @staticmethod
    def from_block(block: Dict[str, Any]) -> BlockInfo:
        transactions = block.get("transactions")
        return BlockInfo(
            block_height=_to_int(block.get("block_height")),
            block_hash=block.get("block_hash", ""),
            first_version=_to_int(block.get("first_version")),
            last_version=_to_int(block.get("last_version")),
            timestamp=_to_int(block.get("block_timestamp")),
            transaction_count=len(transactions) if transactions else 0,
            transactions=transactions,
        )

    def timestamp_seconds(self) -> float:
        return self.timestamp / 1_000_000

    def timestamp_millis(self) -> int:
        return self.timestamp // 1000

    def block_time_seconds(self) -> Optional[float]:
        if self.timestamp > 0:
            return self.timestamp_seconds()
        return None

    def tps(self) -> Optional[float]:
        """Transactions per second of ledger time up to this block."""
        if self.timestamp <= 0:
            return None
        return self.transaction_count / self.timestamp_seconds()

    def has_transactions(self) -> bool:
        return self.transaction_count > 0

    def transaction_version_range(self) -> Tuple[int, int]:
        return (self.first_version, self.last_version)

    def estimated_size(self) -> int:
        return BASE_BLOCK_SIZE + self.transaction_count * TRANSACTION_SIZE


async def get_latest_block(
    client: RestClient, with_transactions: bool = False
) -> BlockInfo:
    height = await client.get_chain_height()
    return BlockInfo.from_block(
        await client.get_block_by_height(height, with_transactions)
    )


async def get_block_info_by_height(
    client: RestClient, block_height: int, with_transactions: bool = False
) -> BlockInfo:
    return BlockInfo.from_block(
        await client.get_block_by_height(block_height, with_transactions)
    )


async def get_block_info_by_version(
    client: RestClient, version: int, with_transactions: bool = False
) -> BlockInfo:
    return BlockInfo.from_block(
        await client.get_block_by_version(version, with_transactions)
    )


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class Test(unittest.IsolatedAsyncioTestCase):
    BLOCK = {
        "block_height": "100",
        "block_hash": "0xbeef",
        "block_timestamp": "2000000",
        "first_version": "500",
        "last_version": "503",
        "transactions": [{}, {}, {}, {}],
    }

    def test_derived_values(self):
        block = BlockInfo.from_block(self.BLOCK)
        self.assertEqual(block.block_height, 100)
        self.assertEqual(block.timestamp_seconds(), 2.0)
        self.assertEqual(block.timestamp_millis(), 2000)
        self.assertEqual(block.tps(), 2.0)
        self.assertEqual(block.transaction_version_range(), (500, 503))
        self.assertEqual(block.estimated_size(), 900)
        self.assertTrue(block.has_transactions())

    def test_empty_block(self):
        block = BlockInfo.from_block({"block_height": "1", "block_timestamp": "0"})
        self.assertIsNone(block.tps())
        self.assertIsNone(block.block_time_seconds())
        self.assertFalse(block.has_transactions())

    async def test_latest_block(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_chain_height", return_value=100
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_block_by_height",
            return_value=self.BLOCK,
        ) as get_block:
            block = await get_latest_block(client, True)
        get_block.assert_called_once_with(100, True)
        self.assertEqual(block.transaction_count, 4)
        await client.close()


if __name__ == "__main__":
    unittest.main()
