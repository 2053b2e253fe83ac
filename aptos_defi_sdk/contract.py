# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Contract facade: one call shape for reading and writing Move modules.

A :class:`ContractCall` names ``module_address::module_name::function_name`` plus its
type arguments and arguments. Reads go through the node's view endpoint and never
raise; writes go through the transaction pipeline and wait for confirmation.

Examples:
    Read a balance through a view function::

        contract = Contract(client)
        result = await contract.read(
            ContractCall(
                "0x1", "coin", "balance", ["0x1::aptos_coin::AptosCoin"], ["0x1"]
            )
        )
        if result.success:
            print(result.data[0])

    Write::

        result = await contract.write(
            wallet,
            ContractCall("0x1", "aptos_account", "transfer", [], ["0x2", 1_000]),
        )
        print(result.transaction_hash, result.success)
"""

from __future__ import annotations

import asyncio
import logging
import unittest
import unittest.mock
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .async_client import ClientConfig, RestClient, TransactionTimeout
from .event import EventPoller
from .transaction_builder import TransactionBuilder, retry_failed_call
from .transactions import EntryFunction, SignedTransaction
from .wallet import Wallet

logger = logging.getLogger(__name__)

COIN_STORE = "0x1::coin::CoinStore"
COIN = "0x1::coin"
TRANSFER = "transfer"
BALANCE = "balance"
REGISTER = "register"

CONFIRMATION_TIMEOUT = "Transaction confirmation timeout"
# gas reported when the node cannot simulate
STUB_GAS_ESTIMATE = 1000


class ValidationError(Exception):
    """A contract call failed a local precondition; nothing was sent"""


@dataclass
class ContractCall:
    module_address: str
    module_name: str
    function_name: str
    type_arguments: List[str] = field(default_factory=list)
    arguments: List[Any] = field(default_factory=list)

    def function_id(self) -> str:
        return f"{self.module_address}::{self.module_name}::{self.function_name}"

    def validate(self):
        if not self.module_address:
            raise ValidationError("module_address must not be empty")
        if not self.module_address.startswith("0x"):
            raise ValidationError(
                f"module_address must start with 0x: {self.module_address}"
            )
        if not self.module_name:
            raise ValidationError("module_name must not be empty")
        if not self.function_name:
            raise ValidationError("function_name must not be empty")

    def to_entry_function(self) -> EntryFunction:
        self.validate()
        try:
            return EntryFunction.natural(
                f"{self.module_address}::{self.module_name}",
                self.function_name,
                self.type_arguments,
                self.arguments,
            )
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Cannot encode {self.function_id()}: {e}") from e

    def with_arguments(self, *extra: Any) -> ContractCall:
        return ContractCall(
            self.module_address,
            self.module_name,
            self.function_name,
            list(self.type_arguments),
            list(self.arguments) + list(extra),
        )


@dataclass
class ContractReadResult:
    success: bool
    data: Optional[List[Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ContractWriteResult:
    success: bool
    transaction_hash: str = ""
    gas_used: int = 0
    events: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class WriteOptions:
    """Per-call overrides; None falls back to the client's configuration."""

    sequence_number: Optional[int] = None
    expiration_secs: Optional[int] = None
    max_gas_amount: Optional[int] = None
    gas_unit_price: Optional[int] = None
    timeout_secs: Optional[float] = None


@dataclass
class SimulationResult:
    success: bool
    gas_used: int
    vm_status: str
    # False when the figures are a local stub rather than the node's answer
    simulated: bool = True


class Contract:
    client: RestClient
    builder: TransactionBuilder

    def __init__(self, client: RestClient):
        self.client = client
        self.builder = TransactionBuilder(client)

    async def read(self, call: ContractCall) -> ContractReadResult:
        try:
            data = await self.client.view(
                call.function_id(), call.type_arguments, call.arguments
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            return ContractReadResult(False, None, str(e))
        return ContractReadResult(True, data, None)

    async def write(
        self,
        wallet: Wallet,
        call: ContractCall,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        """
        Submit ``call`` and wait for it to be committed.

        :raises ValidationError: Before any request when the call is malformed.
        :raises ApiError: When building or submitting fails.
        :return: ``success=False`` with the hash when confirmation times out or the
            transaction was committed without success.
        """
        options = options or WriteOptions()
        payload = call.to_entry_function()
        txn_hash = await self.builder.submit_entry_function(
            wallet,
            payload,
            options.sequence_number,
            options.expiration_secs,
            options.max_gas_amount,
            options.gas_unit_price,
        )
        try:
            txn = await self.builder.waiting_transaction(txn_hash, options.timeout_secs)
        except TransactionTimeout:
            return ContractWriteResult(False, txn_hash, 0, [], CONFIRMATION_TIMEOUT)

        success = bool(txn.get("success", False))
        return ContractWriteResult(
            success=success,
            transaction_hash=txn.get("hash", txn_hash),
            gas_used=_to_int(txn.get("gas_used")),
            events=[
                {
                    "type": event.get("type"),
                    "data": event.get("data"),
                    "sequence_number": event.get("sequence_number"),
                }
                for event in txn.get("events", [])
            ],
            error=None if success else txn.get("vm_status"),
        )

    async def batch_read(self, calls: List[ContractCall]) -> List[ContractReadResult]:
        """Sequential reads; every call gets its own result."""
        results = []
        for call in calls:
            results.append(await self.read(call))
        return results

    async def batch_write(
        self,
        wallet: Wallet,
        calls: List[ContractCall],
        concurrency: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        from .multicall import Multicall

        return await Multicall(self).parallel_execute(wallet, calls, concurrency)

    async def batch_get_resources(
        self, address: str, resource_types: List[str]
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        """Fetch resources in parallel; absent or failed ones map to None."""
        responses = await asyncio.gather(
            *[
                self.client.get_account_resource(address, resource_type)
                for resource_type in resource_types
            ],
            return_exceptions=True,
        )
        resources: Dict[str, Optional[Dict[str, Any]]] = {}
        for resource_type, response in zip(resource_types, responses):
            if isinstance(response, BaseException):
                logger.warning(
                    "failed to fetch %s of %s: %s", resource_type, address, response
                )
                resources[resource_type] = None
            else:
                resources[resource_type] = None if response is None else response["data"]
        return resources

    async def get_contract_resource(
        self, address: str, resource_type: str
    ) -> Optional[Dict[str, Any]]:
        resource = await self.client.get_account_resource(address, resource_type)
        return None if resource is None else resource["data"]

    async def get_state_snapshot(
        self, address: str, resource_types: List[str]
    ) -> Dict[str, Optional[Dict[str, Any]]]:
        return await self.batch_get_resources(address, resource_types)

    async def simulate(
        self, call: ContractCall, wallet: Optional[Wallet] = None
    ) -> SimulationResult:
        """
        Best effort: asks the node to simulate with an invalid signature when a wallet is
        given, and falls back to a stub estimate otherwise or on any failure.
        """
        payload = call.to_entry_function()
        if wallet is None:
            return SimulationResult(True, STUB_GAS_ESTIMATE, "Executed successfully", False)
        try:
            raw = await self.builder.create_raw_transaction(wallet, payload)
            unsigned = SignedTransaction(raw, wallet.public_key_bytes(), b"\x00" * 64)
            outcome = (await self.client.simulate_transaction(unsigned.to_json()))[0]
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("simulation of %s unavailable: %s", call.function_id(), e)
            return SimulationResult(True, STUB_GAS_ESTIMATE, "Executed successfully", False)
        return SimulationResult(
            bool(outcome.get("success", False)),
            _to_int(outcome.get("gas_used")),
            outcome.get("vm_status", ""),
        )

    async def get_abi(self, address: str, module_name: str) -> Optional[Dict[str, Any]]:
        module = await self.client.get_account_module(address, module_name)
        if module is None:
            return None
        return module.get("abi")

    async def listen_events(
        self,
        address: str,
        event_handle: str,
        callback: Callable[[Any], Any],
        interval_secs: float = 2,
        error_callback: Optional[Callable[[Exception], Any]] = None,
        shutdown: Optional[asyncio.Event] = None,
    ):
        """Deliver the ``data`` of every new event until cancelled or shut down."""
        poller = self._poller(address, event_handle, interval_secs, shutdown)
        await poller.run(lambda event: callback(event.get("data")), error_callback)

    async def listen_events_full(
        self,
        address: str,
        event_handle: str,
        callback: Callable[[Dict[str, Any]], Any],
        interval_secs: float = 2,
        error_callback: Optional[Callable[[Exception], Any]] = None,
        shutdown: Optional[asyncio.Event] = None,
    ):
        """Like :meth:`listen_events` but delivers the whole event record."""
        poller = self._poller(address, event_handle, interval_secs, shutdown)
        await poller.run(callback, error_callback)

    def _poller(
        self,
        address: str,
        event_handle: str,
        interval_secs: float,
        shutdown: Optional[asyncio.Event],
    ) -> EventPoller:
        return EventPoller(
            self.client,
            address,
            event_handle,
            interval_secs,
            self.client.client_config.event_batch_size,
            shutdown=shutdown,
        )

    async def retry_failed_call(
        self,
        wallet: Wallet,
        call: ContractCall,
        max_retries: int = 3,
        delay_secs: float = 1.0,
        options: Optional[WriteOptions] = None,
    ) -> ContractWriteResult:
        return await retry_failed_call(
            lambda: self.write(wallet, call, options), max_retries, delay_secs
        )


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1",
            ClientConfig(http2=False, transaction_poll_interval=0.01),
        )
        self.client._chain_id = 4
        self.contract = Contract(self.client)
        self.wallet = Wallet.generate()

    async def asyncTearDown(self):
        await self.client.close()

    def test_validation(self):
        with self.assertRaises(ValidationError):
            ContractCall("1234", "coin", "transfer").validate()
        with self.assertRaises(ValidationError):
            ContractCall("", "coin", "transfer").validate()
        with self.assertRaises(ValidationError):
            ContractCall("0x1", "", "transfer").validate()
        with self.assertRaises(ValidationError):
            ContractCall("0x1", "coin", "").validate()
        ContractCall("0x1", "coin", "transfer").validate()

    async def test_read_never_raises(self):
        from .async_client import ApiError

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.view",
            side_effect=ApiError("Function not found", 400),
        ):
            result = await self.contract.read(ContractCall("0x1", "nope", "nothing"))
        self.assertFalse(result.success)
        self.assertIsNone(result.data)
        self.assertEqual(result.error, "Function not found")

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.view", return_value=["100"]
        ) as view:
            result = await self.contract.read(
                ContractCall("0x1", "coin", "balance", ["0x1::aptos_coin::AptosCoin"], ["0x1"])
            )
        view.assert_called_once_with(
            "0x1::coin::balance", ["0x1::aptos_coin::AptosCoin"], ["0x1"]
        )
        self.assertEqual(result, ContractReadResult(True, ["100"], None))

    async def test_batch_read_keeps_failures(self):
        from .async_client import ApiError

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.view",
            side_effect=[["1"], ApiError("boom", 500), ["3"]],
        ):
            results = await self.contract.batch_read(
                [ContractCall("0x1", "m", "f")] * 3
            )
        self.assertEqual([r.success for r in results], [True, False, True])

    async def test_write_rejects_invalid_call_before_io(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.submit_transaction"
        ) as submit:
            with self.assertRaises(ValidationError):
                await self.contract.write(self.wallet, ContractCall("1", "m", "f"))
        submit.assert_not_called()

    async def test_write_success(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.submit_transaction",
            return_value={"hash": "0xabc"},
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_transaction_by_hash",
            return_value={
                "type": "user_transaction",
                "hash": "0xabc",
                "success": True,
                "gas_used": "12",
                "vm_status": "Executed successfully",
                "events": [{"type": "0x1::coin::WithdrawEvent", "data": {}, "sequence_number": "1"}],
            },
        ):
            result = await self.contract.write(
                self.wallet,
                ContractCall("0x1", "aptos_account", "transfer", [], ["0x2", 5]),
                WriteOptions(sequence_number=0),
            )
        self.assertTrue(result.success)
        self.assertEqual(result.transaction_hash, "0xabc")
        self.assertEqual(result.gas_used, 12)
        self.assertEqual(result.events[0]["type"], "0x1::coin::WithdrawEvent")
        self.assertIsNone(result.error)

    async def test_write_confirmation_timeout(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.submit_transaction",
            return_value={"hash": "0xabc"},
        ):
            result = await self.contract.write(
                self.wallet,
                ContractCall("0x1", "aptos_account", "transfer", [], ["0x2", 5]),
                WriteOptions(sequence_number=0, timeout_secs=0),
            )
        self.assertFalse(result.success)
        self.assertEqual(result.transaction_hash, "0xabc")
        self.assertEqual(result.error, "Transaction confirmation timeout")

    async def test_snapshot_maps_failures_to_none(self):
        from .async_client import ApiError

        async def resource(address, resource_type):
            if resource_type == "0x1::a::Missing":
                return None
            if resource_type == "0x1::a::Broken":
                raise ApiError("internal", 500)
            return {"type": resource_type, "data": {"value": "1"}}

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_resource",
            side_effect=resource,
        ):
            snapshot = await self.contract.get_state_snapshot(
                "0x1", ["0x1::a::Present", "0x1::a::Missing", "0x1::a::Broken"]
            )
        self.assertEqual(
            snapshot,
            {
                "0x1::a::Present": {"value": "1"},
                "0x1::a::Missing": None,
                "0x1::a::Broken": None,
            },
        )

    async def test_simulate_and_abi(self):
        stub = await self.contract.simulate(ContractCall("0x1", "m", "f"))
        self.assertFalse(stub.simulated)
        self.assertEqual(stub.gas_used, STUB_GAS_ESTIMATE)

        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_module",
            return_value={"bytecode": "0x", "abi": {"name": "coin"}},
        ):
            self.assertEqual(await self.contract.get_abi("0x1", "coin"), {"name": "coin"})
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_module",
            return_value=None,
        ):
            self.assertIsNone(await self.contract.get_abi("0x1", "missing"))

    async def test_listen_events_delivers_data(self):
        shutdown = asyncio.Event()
        pages = [
            [
                {"sequence_number": "1", "type": "t", "data": {"amount": "1"}},
                {"sequence_number": "2", "type": "t", "data": {"amount": "2"}},
            ]
        ]

        async def fetch(*args, **kwargs):
            if not pages:
                shutdown.set()
                return []
            return pages.pop(0)

        received = []
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_events",
            side_effect=fetch,
        ):
            await self.contract.listen_events(
                "0x1", "2", received.append, interval_secs=0, shutdown=shutdown
            )
        self.assertEqual(received, [{"amount": "1"}, {"amount": "2"}])


if __name__ == "__main__":
    unittest.main()
