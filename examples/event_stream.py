# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Stream swap events from every DEX for a minute.

Each venue publishes into its own broadcast channel. A subscriber that falls behind
skips to the newest events instead of blocking the listener.

Examples:
    Watch Liquidswap and Thala::

        python -m examples.event_stream
"""

import asyncio

from aptos_defi_sdk.async_client import RestClient
from aptos_defi_sdk.dex.aggregator import DexAggregator
from aptos_defi_sdk.event import ChannelClosed, ChannelLagged, Subscription

from .common import CLIENT_CONFIG, NODE_URL

DURATION_SECS = 60


async def consume(name: str, subscription: Subscription):
    while True:
        try:
            event = await subscription.recv()
        except ChannelLagged as e:
            print(f"{name}: skipped {e.skipped} events")
            continue
        except ChannelClosed:
            return
        print(f"{name} #{event.sequence_number}: {event.event_type}")


async def main():
    async with RestClient(NODE_URL, CLIENT_CONFIG) as rest_client:
        aggregator = DexAggregator(rest_client)
        aggregator.start_event_listeners()
        consumers = [
            asyncio.create_task(consume(name, aggregator.subscribe(name)))
            for name in ["Liquidswap", "Thala"]
        ]
        await asyncio.sleep(DURATION_SECS)
        await aggregator.stop_event_listeners()
        await asyncio.gather(*consumers, return_exceptions=True)


if __name__ == "__main__":
    asyncio.run(main())
