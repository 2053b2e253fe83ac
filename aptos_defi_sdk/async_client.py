# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Asynchronous REST client for Aptos full nodes.

:class:`RestClient` is a thin, stateless facade over the node's JSON API. Each method
maps to one REST resource, returns the decoded JSON, and raises :class:`ApiError` on
any non-success status. Per-resource lookups (a single resource or module, or the
resource and module lists of an account) are the exception: a 404 there means the
item does not exist and the method returns ``None``.

The base URL is fixed at construction, either from a :class:`Network` or explicitly.

Examples:
    Query an account::

        client = RestClient.for_network(Network.MAINNET)
        info = await client.get_account_info("0x1")
        coin_store = await client.get_account_resource(
            "0x1", "0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>"
        )
        if coin_store is None:
            print("no coin store")
        await client.close()

    Wait for a transaction::

        pending = await client.submit_transaction(signed_envelope)
        txn = await client.waiting_transaction(pending["hash"], timeout_secs=30)

Error Handling:
    - ApiError: non-success HTTP status, carrying the server text and status code
    - AccountNotFound: account info requested for an address with no account
    - DecodeError: the node answered with something that is not JSON
    - TransactionTimeout: a submitted transaction was not confirmed in time
    - TransactionFailed: a transaction was confirmed but did not succeed
"""

from __future__ import annotations

import asyncio
import logging
import time
import unittest
import unittest.mock
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import httpx

from .metadata import Metadata

logger = logging.getLogger(__name__)

APTOS_COIN = "0x1::aptos_coin::AptosCoin"
DEFAULT_PAGE_SIZE = 25


class Network(Enum):
    MAINNET = "https://fullnode.mainnet.aptoslabs.com/v1"
    TESTNET = "https://fullnode.testnet.aptoslabs.com/v1"
    DEVNET = "https://fullnode.devnet.aptoslabs.com/v1"

    @property
    def url(self) -> str:
        return self.value

    @staticmethod
    def from_str(name: str) -> Network:
        try:
            return Network[name.upper()]
        except KeyError:
            raise ValueError(
                f"Unknown network {name}, expected mainnet, testnet or devnet"
            ) from None


@dataclass
class ClientConfig:
    """Defaults for transaction construction, confirmation and higher level workflows.

    Transaction Parameters:
        expiration_ttl: seconds until a built transaction expires (default: 30)
        gas_unit_price: octas per gas unit (default: 100)
        max_gas_amount: gas limit per transaction (default: 2000)
        transaction_wait_in_seconds: confirmation timeout (default: 30)
        transaction_poll_interval: seconds between confirmation lookups (default: 0.5)
        gas_price_multiplier: factor applied to the node's gas estimate by
            :meth:`RestClient.get_gas_price` (default: 1)

    Workflow Parameters:
        batch_concurrency: concurrent writes in a parallel batch (default: 4)
        default_slippage: slippage fraction used when none is given (default: 0.005)
        listener_poll_interval_secs: overrides every venue's event poll cadence
        event_batch_size: events fetched per poll (default: 100)
        channel_capacity: buffered items per broadcast subscriber (default: 1000)

    Network Parameters:
        http2: enable HTTP/2 (default: True)
        api_key: optional bearer token
    """

    expiration_ttl: int = 30
    gas_unit_price: int = 100
    max_gas_amount: int = 2000
    transaction_wait_in_seconds: float = 30
    transaction_poll_interval: float = 0.5
    gas_price_multiplier: int = 1
    batch_concurrency: int = 4
    default_slippage: float = 0.005
    listener_poll_interval_secs: Optional[float] = None
    event_batch_size: int = 100
    channel_capacity: int = 1000
    http2: bool = True
    api_key: Optional[str] = None

    def __post_init__(self):
        if self.batch_concurrency < 1:
            raise ValueError("batch_concurrency must be a positive integer")
        if not 0 <= self.default_slippage < 1:
            raise ValueError("default_slippage must be in [0, 1)")


class RestClient:
    """Async facade over the Aptos full node REST API.

    The client holds no mutable state besides the cached chain id, so one instance can
    be shared by any number of tasks.
    """

    _chain_id: Optional[int]
    client: httpx.AsyncClient
    client_config: ClientConfig
    base_url: str

    def __init__(
        self,
        base_url: str,
        client_config: Optional[ClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_config = client_config or ClientConfig()
        # Default limits
        limits = httpx.Limits()
        # Default timeouts but do not set a pool timeout, since the idea is that jobs will wait as
        # long as progress is being made.
        timeout = httpx.Timeout(60.0, pool=None)
        headers = {Metadata.APTOS_HEADER: Metadata.get_aptos_header_val()}
        self.client = httpx.AsyncClient(
            http2=self.client_config.http2,
            limits=limits,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )
        self._chain_id = None
        if self.client_config.api_key:
            self.client.headers["Authorization"] = f"Bearer {self.client_config.api_key}"

    @staticmethod
    def for_network(
        network: Union[Network, str], client_config: Optional[ClientConfig] = None
    ) -> RestClient:
        if isinstance(network, str):
            network = Network.from_str(network)
        return RestClient(network.url, client_config)

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self) -> RestClient:
        return self

    async def __aexit__(self, *args):
        await self.close()

    #
    # Ledger accessors
    #

    async def get_chain_info(self) -> Dict[str, Any]:
        """
        Ledger information of the node.

        :return: ``chain_id``, ``epoch``, ``ledger_version``, ``ledger_timestamp``,
            ``node_role`` and ``block_height`` among others
        """
        response = await self.client.get(self.base_url)
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def chain_id(self) -> int:
        """Chain id, read once and cached."""
        if not self._chain_id:
            info = await self.get_chain_info()
            self._chain_id = int(info["chain_id"])
        return self._chain_id

    async def get_chain_height(self) -> int:
        """Current block height."""
        info = await self.get_chain_info()
        return int(info.get("block_height", 0))

    async def get_ledger_version(self) -> int:
        info = await self.get_chain_info()
        return int(info.get("ledger_version", 0))

    async def current_timestamp(self) -> float:
        """Ledger timestamp in seconds."""
        info = await self.get_chain_info()
        return float(info["ledger_timestamp"]) / 1_000_000

    #
    # Account accessors
    #

    async def get_account_info(self, address: str) -> Dict[str, str]:
        """
        Fetch the sequence number and authentication key of an account.

        :param address: Address of the account, with a '0x' prefix.
        :return: ``{"sequence_number": ..., "authentication_key": ...}``
        :raises AccountNotFound: If no account exists at the address.
        """
        response = await self._get(endpoint=f"accounts/{address}")
        if response.status_code == 404:
            raise AccountNotFound(f"Account not found: {address}", address)
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_account_sequence_number(self, address: str) -> int:
        info = await self.get_account_info(address)
        return int(info["sequence_number"])

    async def account_exists(self, address: str) -> bool:
        try:
            await self.get_account_info(address)
        except AccountNotFound:
            return False
        return True

    async def get_account_resources(
        self, address: str, ledger_version: Optional[int] = None
    ) -> Optional[List[Dict[str, Any]]]:
        """
        All resources stored under an account.

        :return: List of ``{"type": ..., "data": ...}``, or None if the account is absent.
        """
        response = await self._get(
            endpoint=f"accounts/{address}/resources",
            params={"ledger_version": ledger_version},
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_account_resource(
        self,
        address: str,
        resource_type: str,
        ledger_version: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        A single resource, e.g. ``0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>``.

        :return: ``{"type": ..., "data": ...}``, or None if the resource does not exist.
        """
        response = await self._get(
            endpoint=f"accounts/{address}/resource/{resource_type}",
            params={"ledger_version": ledger_version},
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_account_modules(
        self,
        address: str,
        limit: Optional[int] = None,
        start: Optional[str] = None,
    ) -> Optional[List[Dict[str, Any]]]:
        response = await self._get(
            endpoint=f"accounts/{address}/modules",
            params={"limit": limit, "start": start},
        )
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_account_module(
        self, address: str, module_name: str
    ) -> Optional[Dict[str, Any]]:
        """
        A single module with its bytecode and ABI.

        :return: ``{"bytecode": ..., "abi": ...}``, or None if the module does not exist.
        """
        response = await self._get(endpoint=f"accounts/{address}/module/{module_name}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_account_balance(
        self, address: str, coin_type: str = APTOS_COIN
    ) -> int:
        """Coin balance read from the account's CoinStore; 0 when there is none."""
        resource = await self.get_account_resource(
            address, f"0x1::coin::CoinStore<{coin_type}>"
        )
        if resource is None:
            return 0
        value = resource.get("data", {}).get("coin", {}).get("value", 0)
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    async def get_apt_balance(self, address: str) -> float:
        """Native coin balance in APT rather than octas."""
        return await self.get_account_balance(address) / 100_000_000

    #
    # Transactions
    #

    async def submit_transaction(self, signed_transaction: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a signed JSON transaction.

        :param signed_transaction: The envelope built by the transaction pipeline.
        :return: The pending transaction, including its ``hash``.
        """
        response = await self._post(
            endpoint="transactions",
            headers={"Content-Type": "application/json"},
            data=_submission_body(signed_transaction),
        )
        if response.status_code >= 400:
            raise ApiError(
                f"transaction submit failed: {response.text}", response.status_code
            )
        return _json(response)

    async def simulate_transaction(
        self, signed_transaction: Dict[str, Any]
    ) -> List[Dict[str, Any]]:
        """
        Ask the node to simulate a transaction. The signature must not be valid for the
        node to accept it, so callers normally pass a zeroed signature.
        """
        response = await self._post(
            endpoint="transactions/simulate",
            headers={"Content-Type": "application/json"},
            data=_submission_body(signed_transaction),
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def get_transaction_by_hash(self, txn_hash: str) -> Dict[str, Any]:
        response = await self._get(endpoint=f"transactions/by_hash/{txn_hash}")
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def get_transaction_by_version(self, version: int) -> Dict[str, Any]:
        response = await self._get(endpoint=f"transactions/by_version/{version}")
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def is_transaction_successful(self, txn_hash: str) -> bool:
        txn = await self.get_transaction_by_hash(txn_hash)
        return bool(txn.get("success", False))

    async def get_account_transactions(
        self,
        address: str,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        start: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Committed transactions sent by an account.

        :param limit: Page size, 25 by default.
        :param start: Account sequence number to start from. Defaults to the latest.
        """
        response = await self._get(
            endpoint=f"accounts/{address}/transactions",
            params={"limit": limit, "start": start},
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def waiting_transaction(
        self, txn_hash: str, timeout_secs: Optional[float] = None
    ) -> Dict[str, Any]:
        """
        Poll until the transaction is committed or the timeout elapses.

        Any failed lookup, a 404 for a transaction the node has not indexed yet or a
        transient transport error, is treated as "not yet" and polled again. A timeout
        of zero raises immediately without a lookup.

        :param timeout_secs: Defaults to ``transaction_wait_in_seconds``.
        :return: The committed transaction.
        :raises TransactionTimeout: If the deadline passes first.
        """
        if timeout_secs is None:
            timeout_secs = self.client_config.transaction_wait_in_seconds
        deadline = time.monotonic() + timeout_secs

        while time.monotonic() < deadline:
            try:
                txn = await self.get_transaction_by_hash(txn_hash)
                if txn.get("type") != "pending_transaction":
                    return txn
            except (ApiError, DecodeError, httpx.HTTPError) as e:
                logger.debug("transaction %s not available yet: %s", txn_hash, e)
            await asyncio.sleep(self.client_config.transaction_poll_interval)

        raise TransactionTimeout(txn_hash, timeout_secs)

    #
    # Events
    #

    async def get_account_events(
        self,
        address: str,
        event_handle: str,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        start: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Events of one stream of an account.

        :param event_handle: Either ``<struct>/<field>``, e.g.
            ``0x1::coin::CoinStore<0x1::aptos_coin::AptosCoin>/deposit_events``, or a
            creation number.
        :param start: First sequence number to return. Defaults to the most recent page.
        """
        response = await self._get(
            endpoint=f"accounts/{address}/events/{event_handle}",
            params={"limit": limit, "start": start},
        )
        if response.status_code >= 400:
            raise ApiError(f"{response.text} - {address}", response.status_code)
        return _json(response)

    async def get_events_by_creation_number(
        self,
        address: str,
        creation_number: int,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        start: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.get_account_events(address, str(creation_number), limit, start)

    #
    # Blocks
    #

    async def get_block_by_height(
        self, block_height: int, with_transactions: bool = False
    ) -> Dict[str, Any]:
        response = await self._get(
            endpoint=f"blocks/by_height/{block_height}",
            params={"with_transactions": _bool_param(with_transactions)},
        )
        if response.status_code >= 400:
            raise ApiError(f"{response.text}", response.status_code)
        return _json(response)

    async def get_block_by_version(
        self, version: int, with_transactions: bool = False
    ) -> Dict[str, Any]:
        response = await self._get(
            endpoint=f"blocks/by_version/{version}",
            params={"with_transactions": _bool_param(with_transactions)},
        )
        if response.status_code >= 400:
            raise ApiError(f"{response.text}", response.status_code)
        return _json(response)

    #
    # Tables, views and gas
    #

    async def get_table_item(
        self,
        handle: str,
        key_type: str,
        value_type: str,
        key: Any,
        ledger_version: Optional[int] = None,
    ) -> Any:
        """
        Read one entry of a Move table.

        :param key_type: Move type of the key, e.g. "address".
        :param value_type: Move type of the value, e.g. "u128".
        """
        response = await self._post(
            endpoint=f"tables/{handle}/item",
            data={
                "key_type": key_type,
                "value_type": value_type,
                "key": key,
            },
            params={"ledger_version": ledger_version},
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def view(
        self,
        function: str,
        type_arguments: List[str],
        arguments: List[Any],
        ledger_version: Optional[int] = None,
    ) -> List[Any]:
        """
        Execute a view function.

        :param function: ``<address>::<module>::<function>``
        :return: The ordered list of return values.
        :raises ApiError: With the server's message unchanged, e.g. for an unknown function.
        """
        response = await self._post(
            endpoint="view",
            params={"ledger_version": ledger_version},
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            data={
                "function": function,
                "type_arguments": type_arguments,
                "arguments": arguments,
            },
        )
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def estimate_gas_price(self) -> Dict[str, int]:
        """
        The node's gas estimate: ``gas_estimate`` plus the optional
        ``deprioritized_gas_estimate`` and ``prioritized_gas_estimate``.
        """
        response = await self._get(endpoint="estimate_gas_price")
        if response.status_code >= 400:
            raise ApiError(response.text, response.status_code)
        return _json(response)

    async def get_gas_price(self) -> int:
        """``gas_estimate`` scaled by ``ClientConfig.gas_price_multiplier``."""
        estimation = await self.estimate_gas_price()
        return int(estimation["gas_estimate"]) * self.client_config.gas_price_multiplier

    async def _post(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
    ) -> httpx.Response:
        # format params:
        params = {} if params is None else params
        params = {key: val for key, val in params.items() if val is not None}
        return await self.client.post(
            url=f"{self.base_url}/{endpoint}",
            params=params,
            headers=headers,
            json=data,
        )

    async def _get(
        self, endpoint: str, params: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        # format params:
        params = {} if params is None else params
        params = {key: val for key, val in params.items() if val is not None}
        return await self.client.get(
            url=f"{self.base_url}/{endpoint}",
            params=params,
        )


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise DecodeError(f"Malformed response from {response.url}: {e}") from e


def _bool_param(value: bool) -> str:
    return "true" if value else "false"


def _submission_body(signed_transaction: Dict[str, Any]) -> Dict[str, Any]:
    """The node expects the raw fields and ``signature`` at the top level."""
    if "transaction" not in signed_transaction:
        return signed_transaction
    body = dict(signed_transaction["transaction"])
    body["signature"] = signed_transaction["signature"]
    return body


class ApiError(Exception):
    """The API returned a non-success status code, e.g., >= 400"""

    status_code: int

    def __init__(self, message: str, status_code: int):
        # Call the base class constructor with the parameters it needs
        super().__init__(message)
        self.status_code = status_code


class AccountNotFound(Exception):
    """The account was not found"""

    account: str

    def __init__(self, message: str, account: str):
        super().__init__(message)
        self.account = account


class DecodeError(Exception):
    """The node returned a body that could not be decoded"""


class TransactionTimeout(Exception):
    """A submitted transaction was not confirmed before the deadline"""

    txn_hash: str
    timeout_secs: float

    def __init__(self, txn_hash: str, timeout_secs: float):
        super().__init__(f"Transaction timeout tx:{txn_hash}\ntime:{timeout_secs}")
        self.txn_hash = txn_hash
        self.timeout_secs = timeout_secs


class TransactionFailed(Exception):
    """A transaction was committed but its execution did not succeed"""

    txn_hash: str
    vm_status: str

    def __init__(self, vm_status: str, txn_hash: str):
        super().__init__(vm_status)
        self.vm_status = vm_status
        self.txn_hash = txn_hash


def _mock_client(handler, config: Optional[ClientConfig] = None) -> RestClient:
    return RestClient(
        Network.DEVNET.url,
        config or ClientConfig(http2=False),
        transport=httpx.MockTransport(handler),
    )


class Test(unittest.IsolatedAsyncioTestCase):
    async def test_chain_info_and_cached_chain_id(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(
                200,
                json={
                    "chain_id": 2,
                    "epoch": "10",
                    "ledger_version": "1000",
                    "ledger_timestamp": "1700000000000000",
                    "node_role": "full_node",
                    "block_height": "500",
                },
            )

        client = _mock_client(handler)
        self.assertEqual(await client.chain_id(), 2)
        self.assertEqual(await client.chain_id(), 2)
        self.assertEqual(len(calls), 1)
        self.assertEqual(await client.get_chain_height(), 500)
        self.assertEqual(await client.get_ledger_version(), 1000)
        await client.close()

    async def test_absent_resource_is_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"message": "Resource not found"})

        client = _mock_client(handler)
        self.assertIsNone(await client.get_account_resource("0x1", "0x1::a::B"))
        self.assertIsNone(await client.get_account_module("0x1", "missing"))
        self.assertEqual(await client.get_account_balance("0x1"), 0)
        with self.assertRaises(AccountNotFound):
            await client.get_account_info("0x1")
        self.assertFalse(await client.account_exists("0x1"))
        await client.close()

    async def test_view_error_is_surfaced_unchanged(self):
        body = '{"message":"Function not found: 0x1::nope::nothing","error_code":"invalid_input"}'

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text=body)

        client = _mock_client(handler)
        with self.assertRaises(ApiError) as cm:
            await client.view("0x1::nope::nothing", [], [])
        self.assertEqual(str(cm.exception), body)
        self.assertEqual(cm.exception.status_code, 400)
        await client.close()

    async def test_malformed_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        client = _mock_client(handler)
        with self.assertRaises(DecodeError):
            await client.get_chain_info()
        await client.close()

    async def test_params_and_gas_multiplier(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen[request.url.path] = dict(request.url.params)
            if request.url.path.endswith("estimate_gas_price"):
                return httpx.Response(200, json={"gas_estimate": 100})
            return httpx.Response(200, json=[])

        client = _mock_client(handler, ClientConfig(http2=False, gas_price_multiplier=3))
        await client.get_account_transactions("0x1")
        self.assertEqual(seen["/v1/accounts/0x1/transactions"], {"limit": "25"})
        await client.get_account_events("0x1", "7", limit=100, start=5)
        self.assertEqual(
            seen["/v1/accounts/0x1/events/7"], {"limit": "100", "start": "5"}
        )
        self.assertEqual(await client.get_gas_price(), 300)
        await client.close()

    async def test_submission_body_is_flattened(self):
        envelope = {
            "transaction": {"sender": "0x1", "sequence_number": "0"},
            "signature": {"type": "ed25519_signature"},
        }
        self.assertEqual(
            _submission_body(envelope),
            {
                "sender": "0x1",
                "sequence_number": "0",
                "signature": {"type": "ed25519_signature"},
            },
        )

    async def test_waiting_transaction_returns_committed(self):
        responses = iter(
            [
                httpx.Response(404, json={"message": "not found"}),
                httpx.Response(200, json={"type": "pending_transaction", "hash": "0x1"}),
                httpx.Response(
                    200, json={"type": "user_transaction", "hash": "0x1", "success": True}
                ),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            return next(responses)

        client = _mock_client(
            handler, ClientConfig(http2=False, transaction_poll_interval=0.01)
        )
        txn = await client.waiting_transaction("0x1", timeout_secs=5)
        self.assertEqual(txn["type"], "user_transaction")
        await client.close()

    async def test_waiting_transaction_zero_timeout_skips_lookup(self):
        patcher = unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_transaction_by_hash"
        )
        lookup = patcher.start()
        client = RestClient(Network.DEVNET.url, ClientConfig(http2=False))
        with self.assertRaises(TransactionTimeout):
            await client.waiting_transaction("0xabc", timeout_secs=0)
        lookup.assert_not_called()
        patcher.stop()
        await client.close()

    async def test_waiting_transaction_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="unavailable")

        client = _mock_client(handler)
        start = time.monotonic()
        with self.assertRaises(TransactionTimeout) as cm:
            await client.waiting_transaction("0xABC123", timeout_secs=2)
        self.assertGreaterEqual(time.monotonic() - start, 2)
        self.assertIn("0xABC123", str(cm.exception))
        self.assertIn("2", str(cm.exception))
        self.assertEqual(cm.exception.timeout_secs, 2)
        await client.close()

    def test_network_urls(self):
        self.assertTrue(Network.MAINNET.url.endswith("mainnet.aptoslabs.com/v1"))
        self.assertEqual(Network.from_str("Testnet"), Network.TESTNET)
        with self.assertRaises(ValueError):
            Network.from_str("localnet")


if __name__ == "__main__":
    unittest.main()
