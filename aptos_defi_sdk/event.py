# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Event streams: records, cursors, broadcast channels and supervised pollers.

Events of one stream carry strictly increasing sequence numbers. An
:class:`EventCursor` remembers the last delivered one so that overlapping pages are
never delivered twice and the stream never rewinds. Each :class:`EventPoller` run owns
its own cursor.

Delivered events are fanned out through a :class:`BroadcastChannel`. Every subscriber
has a bounded buffer; a subscriber that falls behind loses its oldest items and its
next :meth:`Subscription.recv` raises :class:`ChannelLagged` with the number of
skipped items before resuming with what is still buffered.

Examples:
    Stream deposits of an account into a channel::

        channel = BroadcastChannel(capacity=1000)
        subscription = channel.subscribe()
        shutdown = asyncio.Event()

        poller = EventPoller(
            client,
            "0x1",
            "0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>/deposit_events",
            interval_secs=2,
            shutdown=shutdown,
        )
        task = asyncio.create_task(poller.run(channel.send))

        async for event in subscription:
            print(event["sequence_number"], event["data"])
"""

from __future__ import annotations

import asyncio
import collections
import inspect
import logging
import unittest
import unittest.mock
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from .async_client import ClientConfig, RestClient

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL_CAPACITY = 1000
DEFAULT_EVENT_BATCH = 100
DEFAULT_SUBSCRIPTION_CAPACITY = 100


class ChannelLagged(Exception):
    """The subscriber fell behind and ``skipped`` items were dropped"""

    skipped: int

    def __init__(self, skipped: int):
        super().__init__(f"subscriber lagged behind by {skipped} items")
        self.skipped = skipped


class ChannelClosed(Exception):
    """The channel was closed and every buffered item has been received"""


class BroadcastChannel:
    """Bounded multi-subscriber channel; a slow subscriber never blocks the sender."""

    capacity: int
    _subscribers: List[Subscription]
    _closed: bool

    def __init__(self, capacity: int = DEFAULT_CHANNEL_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be a positive integer")
        self.capacity = capacity
        self._subscribers = []
        self._closed = False

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.capacity)
        if self._closed:
            subscription._close()
        else:
            self._subscribers.append(subscription)
        return subscription

    def send(self, item: Any) -> int:
        """Deliver to every current subscriber; returns how many received it."""
        if self._closed:
            raise ChannelClosed("send on a closed channel")
        for subscription in self._subscribers:
            subscription._push(item)
        return len(self._subscribers)

    @property
    def receiver_count(self) -> int:
        return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        self._closed = True
        for subscription in self._subscribers:
            subscription._close()
        self._subscribers = []

    def _remove(self, subscription: Subscription):
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)


class Subscription:
    _channel: BroadcastChannel
    _capacity: int
    _buffer: Deque[Any]
    _skipped: int
    _ready: Optional[asyncio.Event]
    _closed: bool

    def __init__(self, channel: BroadcastChannel, capacity: int):
        self._channel = channel
        self._capacity = capacity
        self._buffer = collections.deque()
        self._skipped = 0
        # created on first wait so it binds to the loop that awaits it
        self._ready = None
        self._closed = False

    def _push(self, item: Any):
        if len(self._buffer) >= self._capacity:
            self._buffer.popleft()
            self._skipped += 1
        self._buffer.append(item)
        self._wake()

    def _close(self):
        self._closed = True
        self._wake()

    def _wake(self):
        if self._ready is not None:
            self._ready.set()

    def __len__(self) -> int:
        return len(self._buffer)

    async def recv(self) -> Any:
        """
        Next buffered item, waiting if there is none.

        :raises ChannelLagged: Once after items were dropped, before the oldest
            remaining item is returned.
        :raises ChannelClosed: When the channel is closed and drained.
        """
        while True:
            if self._skipped:
                skipped, self._skipped = self._skipped, 0
                raise ChannelLagged(skipped)
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise ChannelClosed()
            if self._ready is None:
                self._ready = asyncio.Event()
            self._ready.clear()
            await self._ready.wait()

    def try_recv(self) -> Optional[Any]:
        """Next buffered item or None, never waits. Lag is reported as with recv."""
        if self._skipped:
            skipped, self._skipped = self._skipped, 0
            raise ChannelLagged(skipped)
        if self._buffer:
            return self._buffer.popleft()
        return None

    def unsubscribe(self):
        self._channel._remove(self)
        self._close()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Any:
        while True:
            try:
                return await self.recv()
            except ChannelLagged as e:
                logger.warning("%s, skipping to the latest", e)
            except ChannelClosed:
                raise StopAsyncIteration


@dataclass
class EventData:
    event_type: str
    event_data: Dict[str, Any]
    sequence_number: int
    transaction_hash: Optional[str] = None
    block_height: Optional[int] = None
    guid: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def from_event(
        event: Dict[str, Any],
        transaction_hash: Optional[str] = None,
        block_height: Optional[int] = None,
    ) -> EventData:
        """
        :raises ValueError: If the event carries no numeric sequence number.
        """
        try:
            sequence_number = int(event["sequence_number"])
        except (KeyError, TypeError, ValueError):
            raise ValueError("Invalid sequence number") from None
        return EventData(
            event_type=event.get("type", ""),
            event_data=event.get("data") or {},
            sequence_number=sequence_number,
            transaction_hash=transaction_hash or event.get("transaction_hash"),
            block_height=block_height,
            guid=event.get("guid") or {},
        )


class EventCursor:
    """Last delivered sequence number of one event stream."""

    last: Optional[int]

    def __init__(self, last: Optional[int] = None):
        self.last = last

    def next_start(self) -> Optional[int]:
        return None if self.last is None else self.last + 1

    def advance(self, events: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Keep the events newer than the cursor, in order, and move the cursor to the
        newest of them. Events without a numeric sequence number are dropped.
        """
        fresh = []
        for event in events:
            try:
                sequence_number = int(event["sequence_number"])
            except (KeyError, TypeError, ValueError):
                continue
            if self.last is None or sequence_number > self.last:
                fresh.append(event)
                self.last = sequence_number
        return fresh


Callback = Callable[[Any], Any]


async def _call(callback: Callback, value: Any):
    result = callback(value)
    if inspect.isawaitable(result):
        await result


class EventPoller:
    """Polls one event handle and delivers each new event exactly once.

    :meth:`run` loops until the ``shutdown`` event is set or its task is cancelled.
    Fetch failures, and exceptions raised by the callbacks, never end the loop. An
    event whose callback raises is reported and the rest of its page still follows.
    """

    client: RestClient
    address: str
    event_handle: str
    interval_secs: float
    batch_size: int
    event_filter: Optional[Callable[[Dict[str, Any]], bool]]
    shutdown: asyncio.Event

    def __init__(
        self,
        client: RestClient,
        address: str,
        event_handle: str,
        interval_secs: float = 2,
        batch_size: int = DEFAULT_EVENT_BATCH,
        event_filter: Optional[Callable[[Dict[str, Any]], bool]] = None,
        shutdown: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.address = address
        self.event_handle = event_handle
        self.interval_secs = interval_secs
        self.batch_size = batch_size
        self.event_filter = event_filter
        self.shutdown = shutdown or asyncio.Event()

    async def poll_once(self, cursor: EventCursor) -> List[Dict[str, Any]]:
        """One fetch; returns the events past the cursor that pass the filter."""
        events = await self.client.get_account_events(
            self.address, self.event_handle, self.batch_size, cursor.next_start()
        )
        fresh = cursor.advance(events or [])
        if self.event_filter is None:
            return fresh
        return [event for event in fresh if self.event_filter(event)]

    async def run(
        self,
        on_event: Callback,
        on_error: Optional[Callback] = None,
        cursor: Optional[EventCursor] = None,
    ):
        cursor = cursor or EventCursor()
        try:
            while not self.shutdown.is_set():
                try:
                    events = await self.poll_once(cursor)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(
                        "event poll %s/%s failed: %s", self.address, self.event_handle, e
                    )
                    await self._report(on_error, e)
                    events = []
                # the cursor is already past the page, so every event gets its turn
                for event in events:
                    try:
                        await _call(on_event, event)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.warning(
                            "event %s of %s/%s not handled: %s",
                            event.get("sequence_number"),
                            self.address,
                            self.event_handle,
                            e,
                        )
                        await self._report(on_error, e)
                await self._sleep()
        except asyncio.CancelledError:
            return

    async def _report(self, on_error: Optional[Callback], error: Exception):
        if on_error is None:
            return
        try:
            await _call(on_error, error)
        except asyncio.CancelledError:
            raise
        except Exception as callback_error:
            logger.error(callback_error, exc_info=True)

    async def _sleep(self):
        # wake early on shutdown
        try:
            await asyncio.wait_for(self.shutdown.wait(), timeout=self.interval_secs)
        except asyncio.TimeoutError:
            pass


class EventHandler:
    """Streams an event handle into a broadcast channel as :class:`EventData`."""

    @staticmethod
    async def start_event_stream(
        client: RestClient,
        address: str,
        event_handle: str,
        channel: BroadcastChannel,
        shutdown: Optional[asyncio.Event] = None,
        interval_secs: float = 2,
        with_block_height: bool = False,
    ):
        poller = EventPoller(
            client,
            address,
            event_handle,
            interval_secs,
            client.client_config.event_batch_size,
            shutdown=shutdown,
        )

        async def publish(event: Dict[str, Any]):
            block_height = None
            if with_block_height:
                block_height = await client.get_chain_height()
            channel.send(EventData.from_event(event, block_height=block_height))

        await poller.run(publish)

    @staticmethod
    def filter_events(
        events: List[EventData], filters: Dict[str, Any]
    ) -> List[EventData]:
        """Events whose data matches every ``key: value`` of ``filters``."""
        return [
            event
            for event in events
            if all(
                key in event.event_data and event.event_data[key] == value
                for key, value in filters.items()
            )
        ]

    @staticmethod
    def event_aggregator(
        events: List[EventData], group_by: str
    ) -> Dict[str, List[EventData]]:
        grouped: Dict[str, List[EventData]] = {}
        for event in events:
            key = event.event_data.get(group_by)
            if isinstance(key, str):
                grouped.setdefault(key, []).append(event)
        return grouped


class EventSubscriptionManager:
    """Named broadcast channels, one per event key."""

    _channels: Dict[str, BroadcastChannel]

    def __init__(self, capacity: int = DEFAULT_SUBSCRIPTION_CAPACITY):
        self.capacity = capacity
        self._channels = {}

    def subscribe(self, event_key: str) -> Subscription:
        channel = self._channels.get(event_key)
        if channel is None:
            channel = BroadcastChannel(self.capacity)
            self._channels[event_key] = channel
        return channel.subscribe()

    def publish_event(self, event_key: str, event: EventData) -> int:
        """
        :raises KeyError: If nobody ever subscribed to ``event_key``.
        """
        channel = self._channels.get(event_key)
        if channel is None:
            raise KeyError(f"No subscribers for event key: {event_key}")
        return channel.send(event)

    def publish_from_raw_event(
        self,
        event_key: str,
        event: Dict[str, Any],
        transaction_hash: Optional[str] = None,
        block_height: Optional[int] = None,
    ) -> int:
        return self.publish_event(
            event_key, EventData.from_event(event, transaction_hash, block_height)
        )

    def close(self):
        for channel in self._channels.values():
            channel.close()
        self._channels = {}


class EventUtils:
    @staticmethod
    def create_event_data_from_event(
        event: Dict[str, Any],
        transaction_hash: Optional[str] = None,
        block_height: Optional[int] = None,
    ) -> EventData:
        return EventData.from_event(event, transaction_hash, block_height)

    @staticmethod
    def extract_event_field(event: EventData, field_name: str) -> Optional[Any]:
        return event.event_data.get(field_name)

    @staticmethod
    def is_event_type(event: EventData, expected_type: str) -> bool:
        return event.event_type == expected_type

    @staticmethod
    def process_events_batch(
        events: List[EventData], processor: Callable[[EventData], Any]
    ) -> int:
        """Run ``processor`` over every event; failures are logged. Returns the failures."""
        failures = 0
        for event in events:
            try:
                processor(event)
            except Exception as e:
                failures += 1
                logger.warning("error processing event %s: %s", event.sequence_number, e)
        return failures


def _event(sequence_number: int, **data) -> Dict[str, Any]:
    return {
        "guid": {"creation_number": "2", "account_address": "0x1"},
        "sequence_number": str(sequence_number),
        "type": "0x1::coin::DepositEvent",
        "data": data,
    }


class Test(unittest.IsolatedAsyncioTestCase):
    def test_cursor_never_rewinds(self):
        cursor = EventCursor()
        first = cursor.advance([_event(5), _event(6), _event(7)])
        self.assertEqual([e["sequence_number"] for e in first], ["5", "6", "7"])
        self.assertEqual(cursor.last, 7)
        second = cursor.advance([_event(6), _event(7), _event(8), _event(9)])
        self.assertEqual([e["sequence_number"] for e in second], ["8", "9"])
        self.assertEqual(cursor.advance([_event(3)]), [])
        self.assertEqual(cursor.last, 9)
        self.assertEqual(cursor.next_start(), 10)

    async def test_poller_delivers_each_event_once(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        pages = [
            [_event(5), _event(6), _event(7)],
            [_event(6), _event(7), _event(8), _event(9)],
        ]
        shutdown = asyncio.Event()
        delivered: List[int] = []

        async def fetch(*args, **kwargs):
            if not pages:
                shutdown.set()
                return []
            return pages.pop(0)

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            side_effect=fetch,
        ) as get_events:
            poller = EventPoller(
                client, "0x1", "2", interval_secs=0, shutdown=shutdown
            )
            await poller.run(lambda e: delivered.append(int(e["sequence_number"])))

        self.assertEqual(delivered, [5, 6, 7, 8, 9])
        self.assertEqual(get_events.call_args_list[0].args, ("0x1", "2", 100, None))
        self.assertEqual(get_events.call_args_list[1].args, ("0x1", "2", 100, 8))
        await client.close()

    async def test_poller_reports_errors_and_continues(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        shutdown = asyncio.Event()
        errors: List[Exception] = []
        delivered: List[Dict[str, Any]] = []
        responses: List[Any] = [RuntimeError("node down"), [_event(1, amount="5")]]

        async def fetch(*args, **kwargs):
            if not responses:
                shutdown.set()
                return []
            response = responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            side_effect=fetch,
        ):
            poller = EventPoller(client, "0x1", "2", interval_secs=0, shutdown=shutdown)
            await poller.run(delivered.append, errors.append)

        self.assertEqual(len(errors), 1)
        self.assertEqual(delivered[0]["data"], {"amount": "5"})
        await client.close()

    async def test_failing_callback_keeps_rest_of_page(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        shutdown = asyncio.Event()
        pages = [[_event(1), _event(2), _event(3)]]
        delivered: List[int] = []
        errors: List[Exception] = []

        async def fetch(*args, **kwargs):
            if not pages:
                shutdown.set()
                return []
            return pages.pop(0)

        def handle(event: Dict[str, Any]):
            if event["sequence_number"] == "1":
                raise ValueError("cannot handle 1")
            delivered.append(int(event["sequence_number"]))

        def fail_to_report(error: Exception):
            errors.append(error)
            raise RuntimeError("reporting failed too")

        cursor = EventCursor()
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            side_effect=fetch,
        ), self.assertLogs("aptos_defi_sdk.event", level="ERROR"):
            poller = EventPoller(client, "0x1", "2", interval_secs=0, shutdown=shutdown)
            await poller.run(handle, fail_to_report, cursor)

        self.assertEqual(delivered, [2, 3])
        self.assertEqual([str(e) for e in errors], ["cannot handle 1"])
        self.assertEqual(cursor.last, 3)
        await client.close()

    async def test_lagging_subscriber_skips_to_latest(self):
        channel = BroadcastChannel(capacity=2)
        fast = channel.subscribe()
        slow = channel.subscribe()
        for i in range(5):
            self.assertEqual(channel.send(i), 2)
            if i < 2:
                self.assertEqual(await fast.recv(), i)
        with self.assertRaises(ChannelLagged) as cm:
            await slow.recv()
        self.assertEqual(cm.exception.skipped, 3)
        self.assertEqual(await slow.recv(), 3)
        self.assertEqual(await slow.recv(), 4)

    async def test_closed_channel_ends_iteration(self):
        channel = BroadcastChannel(capacity=10)
        subscription = channel.subscribe()
        channel.send("a")
        channel.send("b")
        channel.close()
        self.assertEqual([item async for item in subscription], ["a", "b"])
        with self.assertRaises(ChannelClosed):
            channel.send("c")

    async def test_recv_waits_for_send(self):
        channel = BroadcastChannel()
        subscription = channel.subscribe()
        self.assertIsNone(subscription._ready)
        receiver = asyncio.create_task(subscription.recv())
        await asyncio.sleep(0)
        self.assertIsNotNone(subscription._ready)
        channel.send("hello")
        self.assertEqual(await receiver, "hello")

    def test_subscription_manager(self):
        manager = EventSubscriptionManager()
        with self.assertRaises(KeyError):
            manager.publish_event("swap", EventData("t", {}, 1))
        subscription = manager.subscribe("swap")
        self.assertEqual(manager.publish_from_raw_event("swap", _event(4)), 1)
        self.assertEqual(subscription.try_recv().sequence_number, 4)
        with self.assertRaises(ValueError):
            EventData.from_event({"sequence_number": "x"})

    def test_utils(self):
        events = [
            EventData("a::b::Swap", {"pool": "p1", "amount": "1"}, 1),
            EventData("a::b::Swap", {"pool": "p2", "amount": "2"}, 2),
            EventData("a::b::Swap", {"pool": "p1", "amount": "3"}, 3),
        ]
        self.assertEqual(len(EventHandler.filter_events(events, {"pool": "p1"})), 2)
        grouped = EventHandler.event_aggregator(events, "pool")
        self.assertEqual(sorted(grouped), ["p1", "p2"])
        self.assertEqual(EventUtils.extract_event_field(events[1], "amount"), "2")
        self.assertTrue(EventUtils.is_event_type(events[0], "a::b::Swap"))

        def fail_on_two(event: EventData):
            if event.sequence_number == 2:
                raise ValueError("bad")

        self.assertEqual(EventUtils.process_events_batch(events, fail_on_two), 1)


if __name__ == "__main__":
    unittest.main()
