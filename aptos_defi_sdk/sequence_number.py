# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Sequence number allocation for concurrent submissions from one account.

The node only reports the sequence number of the last committed transaction, so
writers that run side by side would all read the same value. A
:class:`SequenceNumberAllocator` reads it once and hands out consecutive numbers under
a lock. It also keeps at most ``maximum_in_flight`` of them uncommitted, waiting for
the chain to catch up before handing out more.

Examples:
    Submit several payloads without waiting for each one::

        allocator = SequenceNumberAllocator(client, wallet.address())
        for payload in payloads:
            sequence_number = await allocator.next_sequence_number()
            await builder.submit_entry_function(wallet, payload, sequence_number)
        await allocator.synchronize()
"""

from __future__ import annotations

import asyncio
import logging
import unittest
import unittest.mock
from typing import Callable, Optional

from .async_client import ClientConfig, RestClient

logger = logging.getLogger(__name__)

# Mempool limit of uncommitted transactions per account
DEFAULT_MAXIMUM_IN_FLIGHT = 100


class SequenceNumberAllocator:
    """Hands out consecutive sequence numbers for one account.

    Only one allocator should be used per account at a time, and the account should
    not submit through any other path while it is in use.
    """

    client: RestClient
    address: str
    maximum_in_flight: int
    maximum_wait_time: float
    sleep_time: float

    _lock: Optional[asyncio.Lock]
    _initialized: bool
    _current_number: int
    _committed_number: int

    def __init__(
        self,
        client: RestClient,
        address: str,
        maximum_in_flight: int = DEFAULT_MAXIMUM_IN_FLIGHT,
        maximum_wait_time: float = 30,
        sleep_time: float = 0.01,
    ):
        self.client = client
        self.address = address
        self.maximum_in_flight = maximum_in_flight
        self.maximum_wait_time = maximum_wait_time
        self.sleep_time = sleep_time
        self._lock = None
        self._initialized = False
        self._current_number = 0
        self._committed_number = 0

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def next_sequence_number(self, block: bool = True) -> Optional[int]:
        """
        The next unused sequence number.

        :param block: Wait for a slot when ``maximum_in_flight`` numbers are still
            uncommitted. When False, return None instead.
        """
        async with self.lock:
            if not self._initialized:
                await self._initialize()
            if self._saturated():
                await self._update()
                if self._saturated():
                    if not block:
                        return None
                    await self._wait_until(lambda allocator: allocator._saturated())
            next_number = self._current_number
            self._current_number += 1
        return next_number

    async def synchronize(self):
        """Wait until every handed out number is committed, or resync on timeout."""
        async with self.lock:
            await self._update()
            await self._wait_until(
                lambda allocator: allocator._committed_number != allocator._current_number
            )

    def _saturated(self) -> bool:
        return self._current_number - self._committed_number >= self.maximum_in_flight

    async def _initialize(self):
        self._initialized = True
        self._current_number = await self.client.get_account_sequence_number(
            self.address
        )
        self._committed_number = self._current_number

    async def _update(self) -> int:
        self._committed_number = await self.client.get_account_sequence_number(
            self.address
        )
        return self._committed_number

    async def _wait_until(self, pending: Callable[[SequenceNumberAllocator], bool]):
        start_time = await self.client.current_timestamp()
        while pending(self):
            if await self.client.current_timestamp() - start_time > self.maximum_wait_time:
                # Numbers that never reached the chain are abandoned
                logger.warning(
                    "waited over %s seconds for %s to commit, resyncing",
                    self.maximum_wait_time,
                    self.address,
                )
                await self._initialize()
                return
            await asyncio.sleep(self.sleep_time)
            await self._update()


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )

    async def asyncTearDown(self):
        await self.client.close()

    async def test_consecutive_numbers(self):
        allocator = SequenceNumberAllocator(self.client, "0xf", maximum_in_flight=3)
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=7,
        ) as lookup:
            numbers = await asyncio.gather(
                *[allocator.next_sequence_number() for _ in range(3)]
            )
            self.assertEqual(sorted(numbers), [7, 8, 9])
            self.assertEqual(lookup.await_count, 1)
            self.assertIsNone(await allocator.next_sequence_number(block=False))

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=9,
        ):
            self.assertEqual(await allocator.next_sequence_number(block=False), 10)

    async def test_synchronize(self):
        allocator = SequenceNumberAllocator(self.client, "0xf")
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=0,
        ):
            for _ in range(4):
                await allocator.next_sequence_number()

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=4,
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.current_timestamp",
            return_value=1.0,
        ):
            await allocator.synchronize()
        self.assertEqual(allocator._committed_number, 4)
        self.assertEqual(allocator._current_number, 4)

    async def test_resync_after_timeout(self):
        allocator = SequenceNumberAllocator(
            self.client, "0xf", maximum_wait_time=1, sleep_time=0
        )
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=2,
        ):
            await allocator.next_sequence_number()
            await allocator.next_sequence_number()
            with unittest.mock.patch(
                "aptos_defi_sdk.async_client.RestClient.current_timestamp",
                side_effect=[0.0, 0.5, 5.0],
            ):
                await allocator.synchronize()
            self.assertEqual(await allocator.next_sequence_number(), 2)


if __name__ == "__main__":
    unittest.main()
