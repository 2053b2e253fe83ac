# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Decode confirmed transactions into trades.

:class:`TransactionInfo` wraps the JSON the node returns for a committed transaction and
answers questions about it: which token was spent and which received in a swap, the
trade direction, which pools and venues were involved, and what state it changed.
Venues name their swap event fields differently, so every lookup walks a list of
``(amount field, token field)`` pairs in priority order.

:class:`Trade` fetches account history and filters it by counterparty.
"""

from __future__ import annotations

import logging
import unittest
import unittest.mock
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .async_client import APTOS_COIN, ClientConfig, RestClient
from .contract import Contract, ContractCall, ContractWriteResult
from .wallet import Wallet

logger = logging.getLogger(__name__)

# Swap event fields holding what the trader gave up, highest priority first.
INPUT_FIELDS = [
    ("amount_in", "from_token"),
    ("amount_x_in", "token_x"),
    ("amount0_in", "token0"),
    ("input_amount", "input_token"),
    ("amount", "coin_type"),
]
OUTPUT_FIELDS = [
    ("amount_out", "to_token"),
    ("amount_y_out", "token_y"),
    ("amount1_out", "token1"),
    ("output_amount", "output_token"),
    ("amount", "coin_type"),
]
TOKEN_KEYS = ["inner", "value", "address", "token"]
POOL_FIELDS = [
    "pool_address",
    "pool",
    "pair",
    "liquidity_pool",
    "address",
    "contract_address",
    "dex_address",
]
DEX_FIELDS = ["dex", "exchange", "platform", "protocol"]

# The coin whose trades against the native coin count as BUY or SELL.
FLAGGED_COIN = "EchoCoin002"
ECHO_COIN = (
    "0xe4ccb6d39136469f376242c31b34d10515c8eaaa38092f804db8e08a8f53c5b2"
    "::assets_v1::EchoCoin002"
)
USDT_FA = "0x357b0b74bc833e95a115ad22604854d6b0fca151cecd94111770e5d6ffc9dc2b"
BRIDGED_FA = "0x2ebb2ccac5e027a87fa0e2e5f656a3a4238d6a48d93ec9b610d570fc0aa0df12"
USDC_FA_PREFIX = "0x9da434d9b873b5159e8eeed70202ad22dc075867a7793234fbc981b63e119"

# (substring of the payload function or event type, venue name)
DEX_MARKERS = [
    ("panora", "Panora Exchange"),
    ("pancake", "PancakeSwap"),
    ("hyperion", "Hyperion"),
    ("tapp", "Tapp Exchange"),
    ("cellana", "Cellana Finance"),
]
# (pool address prefix, venue name), used when nothing else names a venue
POOL_PREFIXES = [
    ("0x1c3206", "Panora Exchange"),
    ("0x2788f4", "Hyperion"),
    ("0x85d333", "Tapp Exchange"),
    ("0xd18e39", "Cellana Finance"),
]


class Direction:
    BUY = "BUY"
    SELL = "SELL"
    SWAP = "SWAP"
    TRANSFER = "TRANSFER"


@dataclass
class TransferInfo:
    sender: str
    recipient: str
    amount: int
    token_type: str


@dataclass
class ResourceChanges:
    resources_modified: int = 0
    resources_deleted: int = 0
    table_items_modified: int = 0
    table_items_deleted: int = 0


@dataclass
class TokenBalance:
    token: str
    spent: int
    received: int
    decimals: int

    @property
    def net(self) -> int:
        return self.received - self.spent


def parse_amount(value: Any) -> Optional[int]:
    """u64 amounts arrive as decimal strings or JSON numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str):
        try:
            amount = int(value)
        except ValueError:
            return None
        return amount if amount >= 0 else None
    return None


def extract_token(value: Any) -> Optional[str]:
    """
    Resolve a token field to a type string. Object metadata is unwrapped through its
    ``inner``, ``value``, ``address`` or ``token`` field; ``0xa`` is the native coin.
    """
    if isinstance(value, str):
        return APTOS_COIN if value == "0xa" else value
    if isinstance(value, dict):
        for key in TOKEN_KEYS:
            if key in value:
                token = extract_token(value[key])
                if token is not None:
                    return token
    return None


def token_decimals(token: str) -> Optional[int]:
    """Decimals of the tokens this module recognises, None otherwise."""
    if FLAGGED_COIN in token or USDC_FA_PREFIX in token or USDT_FA in token:
        return 6
    if "aptos_coin" in token or token == "0xa" or BRIDGED_FA in token:
        return 8
    return None


def guess_decimals(amount: int) -> int:
    """Decimals implied by an amount's trailing zeros and magnitude."""
    digits = str(amount)
    if len(digits) > 6 and digits.endswith("000000"):
        return 6
    if len(digits) > 8 and digits.endswith("00000000"):
        return 8
    if 10_000_000 < amount < 100_000_000_000:
        return 8
    return 6


def to_decimal(token: str, amount: int) -> float:
    decimals = token_decimals(token)
    if decimals is None:
        decimals = guess_decimals(amount)
    return amount / 10**decimals


def infer_token_from_event_type(event_type: str) -> Optional[str]:
    if "aptos_coin" in event_type:
        return APTOS_COIN
    if "usdt" in event_type or "USDt" in event_type:
        return "0x1::usdt::USDT"
    if FLAGGED_COIN in event_type:
        return ECHO_COIN
    for address in (BRIDGED_FA, USDT_FA):
        if address in event_type:
            return address
    return None


def _pairs_from(data: Dict[str, Any], fields: List[Tuple[str, str]]) -> List[Tuple[str, int]]:
    pairs = []
    for amount_field, token_field in fields:
        if amount_field not in data or token_field not in data:
            continue
        amount = parse_amount(data[amount_field])
        token = extract_token(data[token_field])
        if amount is not None and token is not None:
            pairs.append((token, amount))
    return pairs


class TransactionInfo:
    """A committed transaction as returned by ``/transactions/by_hash``."""

    raw: Dict[str, Any]

    def __init__(self, raw: Dict[str, Any]):
        self.raw = raw

    def __repr__(self) -> str:
        return f"TransactionInfo(version={self.version}, hash={self.hash})"

    @property
    def version(self) -> int:
        return int(self.raw.get("version", 0))

    @property
    def hash(self) -> str:
        return self.raw.get("hash", "")

    @property
    def success(self) -> bool:
        return bool(self.raw.get("success", False))

    @property
    def vm_status(self) -> str:
        return self.raw.get("vm_status", "")

    @property
    def transaction_type(self) -> str:
        return self.raw.get("type", "")

    @property
    def events(self) -> List[Dict[str, Any]]:
        return self.raw.get("events") or []

    @property
    def changes(self) -> List[Dict[str, Any]]:
        return self.raw.get("changes") or []

    @property
    def payload(self) -> Dict[str, Any]:
        return self.raw.get("payload") or {}

    def get_timestamp(self) -> int:
        """Microseconds since the epoch."""
        return parse_amount(self.raw.get("timestamp", "0")) or 0

    def get_gas_used(self) -> int:
        return parse_amount(self.raw.get("gas_used", "0")) or 0

    def is_user_transaction(self) -> bool:
        return self.transaction_type == "user_transaction"

    def get_sender(self) -> Optional[str]:
        if self.transaction_type in ("user_transaction", "pending_transaction"):
            return self.raw.get("sender")
        return None

    #
    # Swaps
    #

    def _last_swap_pair(self, fields: List[Tuple[str, str]]) -> Optional[Tuple[str, int]]:
        if not self.success:
            return None
        for event in reversed(self.events):
            if "Swap" not in event.get("type", ""):
                continue
            data = event.get("data")
            if not isinstance(data, dict):
                continue
            for token, amount in _pairs_from(data, fields):
                if amount > 0:
                    return token, amount
        return None

    def get_spent_token(self) -> Optional[Tuple[str, int]]:
        """Token and raw amount given up in the last swap, None if there was none."""
        return self._last_swap_pair(INPUT_FIELDS)

    def get_received_token(self) -> Optional[Tuple[str, int]]:
        return self._last_swap_pair(OUTPUT_FIELDS)

    def get_spent_token_decimal(self) -> Optional[Tuple[str, float]]:
        spent = self.get_spent_token()
        if spent is None:
            return None
        token, amount = spent
        return token, to_decimal(token, amount)

    def get_received_token_decimal(self) -> Optional[Tuple[str, float]]:
        received = self.get_received_token()
        if received is None:
            return None
        token, amount = received
        return token, to_decimal(token, amount)

    def get_direction(self) -> str:
        spent = self.get_spent_token()
        received = self.get_received_token()
        if spent is None or received is None:
            return Direction.TRANSFER
        spent_token, received_token = spent[0], received[0]
        if FLAGGED_COIN in spent_token and "aptos_coin" in received_token:
            return Direction.BUY
        if "aptos_coin" in spent_token and FLAGGED_COIN in received_token:
            return Direction.SELL
        return Direction.SWAP

    def calculate_all_token_balances(self) -> Dict[str, TokenBalance]:
        """
        Per-token totals over every event: swap legs plus fungible asset withdrawals and
        deposits whose token can be told from the event type.
        """
        spent: Dict[str, int] = {}
        received: Dict[str, int] = {}
        for event in self.events:
            event_type = event.get("type", "")
            data = event.get("data")
            if not isinstance(data, dict):
                continue
            if "Swap" in event_type:
                # the bare (amount, coin_type) pair is ambiguous across a whole transaction
                for token, amount in _pairs_from(data, INPUT_FIELDS[:-1]):
                    spent[token] = spent.get(token, 0) + amount
                for token, amount in _pairs_from(data, OUTPUT_FIELDS[:-1]):
                    received[token] = received.get(token, 0) + amount
            if "fungible_asset::Withdraw" in event_type or "fungible_asset::Deposit" in event_type:
                amount = parse_amount(data.get("amount"))
                token = infer_token_from_event_type(event_type)
                if amount is None or token is None:
                    continue
                totals = spent if "Withdraw" in event_type else received
                totals[token] = totals.get(token, 0) + amount

        balances = {}
        for token in sorted(set(spent) | set(received)):
            decimals = token_decimals(token)
            balances[token] = TokenBalance(
                token,
                spent.get(token, 0),
                received.get(token, 0),
                8 if decimals is None else decimals,
            )
        return balances

    #
    # Venues
    #

    def get_liquidity_pool_addresses(self) -> List[str]:
        addresses = set()
        for event in self.events:
            event_type = event.get("type", "")
            if "Pool" not in event_type and "Swap" not in event_type:
                continue
            guid = event.get("guid") or {}
            if guid.get("account_address"):
                addresses.add(guid["account_address"])
            data = event.get("data")
            if isinstance(data, dict):
                for field in POOL_FIELDS:
                    if isinstance(data.get(field), str):
                        addresses.add(data[field])
                        break
        return sorted(addresses)

    def get_dex_names(self) -> List[str]:
        names = set()
        if self.is_user_transaction():
            function = self.payload.get("function", "")
            names.update(name for marker, name in DEX_MARKERS if marker in function)
        for event in self.events:
            event_type = event.get("type", "")
            names.update(name for marker, name in DEX_MARKERS if marker in event_type)
            data = event.get("data")
            if isinstance(data, dict):
                names.update(
                    data[field] for field in DEX_FIELDS if isinstance(data.get(field), str)
                )
        if not names:
            for pool in self.get_liquidity_pool_addresses():
                for prefix, name in POOL_PREFIXES:
                    if prefix in pool:
                        names.add(name)
                        break
        return sorted(names)

    #
    # Transfers and state
    #

    def get_transfer_info(self) -> Optional[TransferInfo]:
        if not self.is_user_transaction():
            return None
        if not self.payload.get("function", "").endswith("::coin::transfer"):
            return None
        arguments = self.payload.get("arguments") or []
        if len(arguments) < 2 or not isinstance(arguments[0], str):
            return None
        amount = parse_amount(arguments[1])
        if amount is None:
            return None
        type_arguments = self.payload.get("type_arguments") or []
        token_type = type_arguments[0] if type_arguments else APTOS_COIN
        return TransferInfo(self.get_sender() or "", arguments[0], amount, token_type)

    def get_events_by_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event_type in event.get("type", "")]

    def analyze_resource_changes(self) -> ResourceChanges:
        changes = ResourceChanges()
        for change in self.changes:
            change_type = change.get("type")
            if change_type == "write_resource" and change.get("data") is not None:
                changes.resources_modified += 1
            elif change_type == "write_table_item":
                changes.table_items_modified += 1
            elif change_type == "delete_resource":
                changes.resources_deleted += 1
            elif change_type == "delete_table_item":
                changes.table_items_deleted += 1
        return changes

    def involves_address(self, address: str) -> bool:
        """Sent by ``address`` or naming it as a payload argument."""
        sender = self.get_sender()
        if sender is None:
            return False
        if sender == address:
            return True
        return address in (self.payload.get("arguments") or [])

    def is_transfer_from_to(self, sender: str, recipient: str) -> bool:
        if self.get_sender() != sender:
            return False
        if not self.payload.get("function", "").endswith("::coin::transfer"):
            return False
        arguments = self.payload.get("arguments") or []
        return bool(arguments) and arguments[0] == recipient


class Trade:
    """Account history helpers."""

    client: RestClient

    def __init__(self, client: RestClient):
        self.client = client

    async def get_transaction(self, txn_hash: str) -> TransactionInfo:
        return TransactionInfo(await self.client.get_transaction_by_hash(txn_hash))

    async def get_address_transactions(
        self, address: str, limit: Optional[int] = None, start: Optional[int] = None
    ) -> List[TransactionInfo]:
        transactions = await self.client.get_account_transactions(address, limit, start)
        return [TransactionInfo(txn) for txn in transactions]

    async def get_transactions_involving_both_addresses(
        self,
        address_a: str,
        address_b: str,
        limit: Optional[int] = None,
        start: Optional[int] = None,
    ) -> List[TransactionInfo]:
        """Transactions sent by ``address_a`` that involve ``address_b``."""
        transactions = await self.get_address_transactions(address_a, limit, start)
        return [txn for txn in transactions if txn.involves_address(address_b)]

    async def get_transactions_by_recipient_sender(
        self,
        recipient: str,
        sender: str,
        limit: Optional[int] = None,
        start: Optional[int] = None,
    ) -> List[TransactionInfo]:
        """Coin transfers from ``sender`` to ``recipient``, read from the sender's history."""
        transactions = await self.get_address_transactions(sender, limit, start)
        return [txn for txn in transactions if txn.is_transfer_from_to(sender, recipient)]


class BatchTradeHandle:
    contract: Contract

    def __init__(self, contract: Contract):
        self.contract = contract

    async def process_batch(
        self, wallet: Wallet, calls: List[ContractCall], concurrency: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        return await self.contract.batch_write(wallet, calls, concurrency)

    async def batch_get_resources(
        self, addresses: List[str], resource_types: List[str]
    ) -> Dict[str, Dict[str, Optional[Dict[str, Any]]]]:
        return {
            address: await self.contract.batch_get_resources(address, resource_types)
            for address in addresses
        }


def _swap_txn(from_token: str, to_token: str, **extra: Any) -> Dict[str, Any]:
    swap = {
        "guid": {"creation_number": "3", "account_address": "0xpool"},
        "sequence_number": "0",
        "type": "0xdex::router::SwapEvent",
        "data": {
            "amount_in": "250000000",
            "from_token": from_token,
            "amount_out": "1500000",
            "to_token": to_token,
        },
    }
    txn = {
        "type": "user_transaction",
        "version": "42",
        "hash": "0xfeed",
        "success": True,
        "vm_status": "Executed successfully",
        "gas_used": "77",
        "timestamp": "1700000000000000",
        "sender": "0xtrader",
        "payload": {
            "function": "0xdex::router::swap",
            "type_arguments": [],
            "arguments": [],
        },
        "events": [swap],
        "changes": [],
    }
    txn.update(extra)
    return txn


class Test(unittest.IsolatedAsyncioTestCase):
    def test_direction(self):
        buy = TransactionInfo(_swap_txn(ECHO_COIN, APTOS_COIN))
        self.assertEqual(buy.get_direction(), Direction.BUY)
        sell = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN))
        self.assertEqual(sell.get_direction(), Direction.SELL)
        swap = TransactionInfo(_swap_txn("0x3::a::A", "0x3::b::B"))
        self.assertEqual(swap.get_direction(), Direction.SWAP)
        transfer = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN, events=[]))
        self.assertEqual(transfer.get_direction(), Direction.TRANSFER)
        failed = TransactionInfo(_swap_txn(ECHO_COIN, APTOS_COIN, success=False))
        self.assertEqual(failed.get_direction(), Direction.TRANSFER)

    def test_spent_and_received(self):
        txn = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN))
        self.assertEqual(txn.get_spent_token(), (APTOS_COIN, 250_000_000))
        self.assertEqual(txn.get_received_token(), (ECHO_COIN, 1_500_000))
        self.assertEqual(txn.get_spent_token_decimal(), (APTOS_COIN, 2.5))
        self.assertEqual(txn.get_received_token_decimal(), (ECHO_COIN, 1.5))

    def test_nested_token_and_fallback_fields(self):
        event = {
            "guid": {"creation_number": "1", "account_address": "0xd18e39abc"},
            "type": "0xd18e39abc::liquidity_pool::SwapEvent",
            "data": {
                "amount_in": "0",
                "from_token": "0x3::zero::Z",
                "amount_x_in": "500",
                "token_x": {"inner": "0xa"},
                "amount_y_out": 700,
                "token_y": {"value": {"address": "0x3::y::Y"}},
            },
        }
        txn = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN, events=[event]))
        self.assertEqual(txn.get_spent_token(), (APTOS_COIN, 500))
        self.assertEqual(txn.get_received_token(), ("0x3::y::Y", 700))
        self.assertEqual(txn.get_liquidity_pool_addresses(), ["0xd18e39abc"])
        self.assertEqual(txn.get_dex_names(), ["Cellana Finance"])

    def test_pools_and_dex_names(self):
        events = [
            {
                "guid": {"account_address": "0xb"},
                "type": "0xpancake::swap::SwapEvent",
                "data": {"pair": "0xpair", "amount_in": "1", "from_token": "0x1"},
            },
            {
                "guid": {"account_address": "0xb"},
                "type": "0xpancake::swap::PoolCreated",
                "data": {"protocol": "Custom"},
            },
            {"guid": {"account_address": "0xc"}, "type": "0x1::coin::DepositEvent", "data": {}},
        ]
        txn = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN, events=events))
        self.assertEqual(txn.get_liquidity_pool_addresses(), ["0xb", "0xpair"])
        self.assertEqual(txn.get_dex_names(), ["Custom", "PancakeSwap"])
        self.assertEqual(len(txn.get_events_by_type("PoolCreated")), 1)

    def test_token_balances(self):
        events = [
            _swap_txn(APTOS_COIN, ECHO_COIN)["events"][0],
            {
                "type": "0x1::fungible_asset::Withdraw<0x1::aptos_coin::AptosCoin>",
                "data": {"amount": "50000000"},
            },
            {
                "type": f"0x1::fungible_asset::Deposit<{USDT_FA}>",
                "data": {"amount": "9"},
            },
        ]
        balances = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN, events=events))
        balances = balances.calculate_all_token_balances()
        self.assertEqual(balances[APTOS_COIN].spent, 300_000_000)
        self.assertEqual(balances[APTOS_COIN].decimals, 8)
        self.assertEqual(balances[ECHO_COIN].net, 1_500_000)
        self.assertEqual(balances[ECHO_COIN].decimals, 6)
        self.assertEqual(balances[USDT_FA].received, 9)

    def test_transfer_info_and_addresses(self):
        raw = _swap_txn(
            APTOS_COIN,
            ECHO_COIN,
            payload={
                "function": "0x1::coin::transfer",
                "type_arguments": [],
                "arguments": ["0xbob", "1000"],
            },
        )
        txn = TransactionInfo(raw)
        self.assertEqual(
            txn.get_transfer_info(), TransferInfo("0xtrader", "0xbob", 1000, APTOS_COIN)
        )
        self.assertTrue(txn.involves_address("0xbob"))
        self.assertTrue(txn.involves_address("0xtrader"))
        self.assertFalse(txn.involves_address("0xcarol"))
        self.assertTrue(txn.is_transfer_from_to("0xtrader", "0xbob"))
        self.assertFalse(txn.is_transfer_from_to("0xbob", "0xtrader"))

        genesis = TransactionInfo({"type": "genesis_transaction", "payload": raw["payload"]})
        self.assertIsNone(genesis.get_transfer_info())
        self.assertFalse(genesis.involves_address("0xbob"))

    def test_resource_changes(self):
        changes = [
            {"type": "write_resource", "data": {"type": "0x1::account::Account"}},
            {"type": "write_resource"},
            {"type": "write_table_item"},
            {"type": "delete_resource"},
            {"type": "delete_table_item"},
            {"type": "write_module"},
        ]
        txn = TransactionInfo(_swap_txn(APTOS_COIN, ECHO_COIN, changes=changes))
        self.assertEqual(txn.analyze_resource_changes(), ResourceChanges(1, 1, 1, 1))

    def test_decimal_guess(self):
        self.assertEqual(guess_decimals(5_000_000), 6)
        self.assertEqual(guess_decimals(123_456_789), 8)
        self.assertEqual(guess_decimals(42), 6)
        self.assertEqual(to_decimal("0x3::u::U", 123_456_789), 1.23456789)

    async def test_history_filters(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        payment = _swap_txn(
            APTOS_COIN,
            ECHO_COIN,
            sender="0xalice",
            payload={"function": "0x1::coin::transfer", "arguments": ["0xbob", "5"]},
        )
        other = _swap_txn(APTOS_COIN, ECHO_COIN, sender="0xalice")
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_transactions",
            return_value=[payment, other],
        ) as history:
            trade = Trade(client)
            both = await trade.get_transactions_involving_both_addresses(
                "0xalice", "0xbob", 10
            )
            paid = await trade.get_transactions_by_recipient_sender("0xbob", "0xalice")
        await client.close()

        self.assertEqual(len(both), 1)
        self.assertEqual(len(paid), 1)
        self.assertEqual(paid[0].get_transfer_info().amount, 5)
        history.assert_called_with("0xalice", None, None)

    async def test_batch_handle(self):
        client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        handle = BatchTradeHandle(Contract(client))
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0x1"),
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=0,
        ):
            results = await handle.process_batch(
                Wallet.generate(), [ContractCall("0x1", "m", "f")], 2
            )
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            return_value={"type": "t", "data": {"value": "1"}},
        ):
            resources = await handle.batch_get_resources(["0xa", "0xb"], ["t"])
        await client.close()

        self.assertTrue(results[0]["success"])
        self.assertEqual(resources["0xb"], {"t": {"value": "1"}})


if __name__ == "__main__":
    unittest.main()
