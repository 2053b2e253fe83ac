# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Transaction pipeline: build, sign, submit and confirm user transactions.

Each submission follows the same steps:

1. **Build**: the sender's sequence number is fetched from the node unless supplied,
   the expiration is ``int(time.time()) + expiration_secs`` and the chain id is read
   once from the ledger info.
2. **Sign**: the wallet signs ``SHA3_256("APTOS::RawTransaction") || BCS(raw)``.
3. **Submit**: the signed JSON envelope is posted and the node answers with a hash.
4. **Confirm** (optional): the hash is polled until the transaction is committed or
   the deadline passes.

Per-call overrides fall back to the :class:`ClientConfig` of the client: 30 seconds
of expiration, 2000 gas units at 100 octas each and a 30 second confirmation wait.

Examples:
    Transfer native coins and wait for the result::

        builder = TransactionBuilder(client)
        txn_hash = await builder.create_sign_submit_transfer_tx(wallet, "0x2", 1_000)
        txn = await builder.waiting_transaction(txn_hash)

    Call an arbitrary entry function::

        payload = EntryFunction.natural(
            "0x1::aptos_account", "transfer", [], ["0x2", 1_000]
        )
        txn = await builder.submit_and_wait(wallet, payload)
"""

import asyncio
import logging
import time
import typing
import unittest
import unittest.mock
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .account_address import AccountAddress
from .async_client import (
    APTOS_COIN,
    ClientConfig,
    RestClient,
    TransactionFailed,
    TransactionTimeout,
)
from .transactions import (
    EntryFunction,
    RawTransaction,
    SignedTransaction,
    TransactionPayload,
)
from .wallet import Wallet

logger = logging.getLogger(__name__)

OCTAS_PER_APT = 100_000_000
OPTIMAL_GAS_FACTOR = 1.1


class RetriesExhausted(Exception):
    """Every attempt of a retried call failed"""

    retries: int
    last_error: Optional[str]

    def __init__(self, retries: int, last_error: Optional[str] = None):
        message = f"failed after {retries} retries"
        if last_error:
            message += f": {last_error}"
        super().__init__(message)
        self.retries = retries
        self.last_error = last_error


class TransactionBuilder:
    """Assembles, signs and submits transactions through a :class:`RestClient`.

    The builder keeps no state of its own; the chain id cache lives on the client.
    """

    client: RestClient

    def __init__(self, client: RestClient):
        self.client = client

    @property
    def client_config(self) -> ClientConfig:
        return self.client.client_config

    async def create_raw_transaction(
        self,
        sender: Wallet,
        payload: typing.Union[EntryFunction, TransactionPayload],
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> RawTransaction:
        config = self.client_config
        sender_address = sender.account_address()
        if sequence_number is None:
            sequence_number = await self.client.get_account_sequence_number(
                str(sender_address)
            )
        if expiration_secs is None:
            expiration_secs = config.expiration_ttl
        if not isinstance(payload, TransactionPayload):
            payload = TransactionPayload(payload)

        return RawTransaction(
            sender_address,
            sequence_number,
            payload,
            config.max_gas_amount if max_gas_amount is None else max_gas_amount,
            config.gas_unit_price if gas_unit_price is None else gas_unit_price,
            int(time.time()) + expiration_secs,
            await self.client.chain_id(),
        )

    #
    # Convenience builders
    #

    async def create_transfer_tx(
        self,
        sender: Wallet,
        recipient: str,
        amount: int,
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> RawTransaction:
        """Native coin transfer through ``0x1::coin::transfer``."""
        return await self.create_token_transfer_tx(
            sender,
            recipient,
            APTOS_COIN,
            amount,
            sequence_number,
            expiration_secs,
            max_gas_amount,
            gas_unit_price,
        )

    async def create_token_transfer_tx(
        self,
        sender: Wallet,
        recipient: str,
        token_type: str,
        amount: int,
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> RawTransaction:
        payload = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            [token_type],
            [AccountAddress.from_str(recipient), int(amount)],
        )
        return await self.create_raw_transaction(
            sender,
            payload,
            sequence_number,
            expiration_secs,
            max_gas_amount,
            gas_unit_price,
        )

    async def create_call_contract_tx(
        self,
        sender: Wallet,
        module_address: str,
        module_name: str,
        function_name: str,
        type_arguments: List[str],
        arguments: List[Any],
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> RawTransaction:
        payload = EntryFunction.natural(
            f"{module_address}::{module_name}",
            function_name,
            type_arguments,
            arguments,
        )
        return await self.create_raw_transaction(
            sender,
            payload,
            sequence_number,
            expiration_secs,
            max_gas_amount,
            gas_unit_price,
        )

    def create_signed_transaction_tx(
        self, wallet: Wallet, raw_transaction: RawTransaction
    ) -> SignedTransaction:
        return raw_transaction.sign(wallet)

    async def create_sign_submit_transfer_tx(
        self,
        wallet: Wallet,
        recipient: str,
        amount: int,
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> str:
        """Build, sign and submit a native coin transfer; returns the hash."""
        raw_transaction = await self.create_transfer_tx(
            wallet,
            recipient,
            amount,
            sequence_number,
            expiration_secs,
            max_gas_amount,
            gas_unit_price,
        )
        return await self.submit_transaction(
            self.create_signed_transaction_tx(wallet, raw_transaction)
        )

    #
    # Submission and confirmation
    #

    async def submit_transaction(self, signed_transaction: SignedTransaction) -> str:
        pending = await self.client.submit_transaction(signed_transaction.to_json())
        return pending["hash"]

    async def submit_entry_function(
        self,
        wallet: Wallet,
        payload: EntryFunction,
        sequence_number: Optional[int] = None,
        expiration_secs: Optional[int] = None,
        max_gas_amount: Optional[int] = None,
        gas_unit_price: Optional[int] = None,
    ) -> str:
        raw_transaction = await self.create_raw_transaction(
            wallet,
            payload,
            sequence_number,
            expiration_secs,
            max_gas_amount,
            gas_unit_price,
        )
        return await self.submit_transaction(raw_transaction.sign(wallet))

    async def waiting_transaction(
        self, txn_hash: str, timeout_secs: Optional[float] = None
    ) -> Dict[str, Any]:
        return await self.client.waiting_transaction(txn_hash, timeout_secs)

    async def submit_and_wait(
        self,
        wallet: Wallet,
        payload: EntryFunction,
        timeout_secs: Optional[float] = None,
        **overrides,
    ) -> Dict[str, Any]:
        """
        Submit an entry function and wait for it to be committed.

        :raises TransactionTimeout: If it is not committed within ``timeout_secs``.
        :raises TransactionFailed: If it was committed but did not succeed.
        """
        txn_hash = await self.submit_entry_function(wallet, payload, **overrides)
        txn = await self.waiting_transaction(txn_hash, timeout_secs)
        if not txn.get("success", False):
            raise TransactionFailed(txn.get("vm_status", "unknown"), txn_hash)
        return txn

    async def retry_failed_call(
        self,
        fn: Callable[[], Awaitable[Any]],
        max_retries: int = 3,
        delay_secs: float = 1.0,
    ) -> Any:
        return await retry_failed_call(fn, max_retries, delay_secs)


async def retry_failed_call(
    fn: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    delay_secs: float = 1.0,
) -> Any:
    """
    Await ``fn()`` up to ``max_retries`` times, sleeping ``delay_secs`` in between.

    A raised exception counts as a failure, and so does a result whose ``success``
    field (attribute or key) is false.

    :raises RetriesExhausted: When no attempt succeeded.
    """
    last_error: Optional[str] = None
    for attempt in range(max_retries):
        try:
            result = await fn()
            if _is_success(result):
                return result
            last_error = _error_of(result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = str(e)
        logger.debug("attempt %d of %d failed: %s", attempt + 1, max_retries, last_error)
        if attempt + 1 < max_retries:
            await asyncio.sleep(delay_secs)
    raise RetriesExhausted(max_retries, last_error)


def _is_success(result: Any) -> bool:
    if isinstance(result, dict):
        return bool(result.get("success", True))
    return bool(getattr(result, "success", True))


def _error_of(result: Any) -> Optional[str]:
    if isinstance(result, dict):
        return result.get("error")
    return getattr(result, "error", None)


async def optimal_gas_price(client: RestClient) -> int:
    """The node's gas price with a 10% margin."""
    return int(await client.get_gas_price() * OPTIMAL_GAS_FACTOR)


def estimate_transaction_cost(gas_units: int, gas_price: int) -> float:
    """Fee in APT for ``gas_units`` at ``gas_price`` octas per unit."""
    return gas_units * gas_price / OCTAS_PER_APT


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1",
            ClientConfig(http2=False, transaction_poll_interval=0.01),
        )
        self.builder = TransactionBuilder(self.client)
        self.wallet = Wallet.generate()
        self.client._chain_id = 4

    async def asyncTearDown(self):
        await self.client.close()

    async def test_sequence_auto_resolution(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_info",
            return_value={"sequence_number": "7", "authentication_key": "0x00"},
        ) as account_info, unittest.mock.patch(
            "aptos_defi_sdk.transaction_builder.time.time", return_value=1_700_000_000.4
        ):
            raw = await self.builder.create_transfer_tx(
                self.wallet, "0x2", 1, None, 30, 2000, 100
            )
        account_info.assert_called_once_with(self.wallet.address())
        value = raw.to_json()
        self.assertEqual(value["sequence_number"], "7")
        self.assertEqual(value["expiration_timestamp_secs"], str(1_700_000_030))
        self.assertEqual(value["max_gas_amount"], "2000")
        self.assertEqual(value["gas_unit_price"], "100")
        self.assertEqual(raw.chain_id, 4)
        self.assertEqual(value["payload"]["arguments"][1], "1")

    async def test_supplied_sequence_skips_lookup(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_info"
        ) as account_info:
            raw = await self.builder.create_call_contract_tx(
                self.wallet, "0x1", "aptos_account", "transfer", [], ["0x2", 5], 3
            )
        account_info.assert_not_called()
        self.assertEqual(raw.sequence_number, 3)
        self.assertEqual(raw.max_gas_amount, 2000)
        self.assertEqual(raw.gas_unit_price, 100)

    async def test_submit_signs_envelope(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.submit_transaction",
            return_value={"hash": "0xfeed"},
        ) as submit:
            txn_hash = await self.builder.create_sign_submit_transfer_tx(
                self.wallet, "0x2", 10, sequence_number=0
            )
        self.assertEqual(txn_hash, "0xfeed")
        envelope = submit.call_args[0][0]
        self.assertEqual(envelope["transaction"]["sender"], self.wallet.address())
        self.assertEqual(envelope["signature"]["type"], "ed25519_signature")

    async def test_submit_and_wait_failure(self):
        payload = EntryFunction.natural("0x1::aptos_account", "transfer", [], ["0x2", 1])
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.submit_transaction",
            return_value={"hash": "0xbad"},
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_transaction_by_hash",
            return_value={
                "type": "user_transaction",
                "success": False,
                "vm_status": "Move abort: EINSUFFICIENT_BALANCE",
            },
        ):
            with self.assertRaises(TransactionFailed) as cm:
                await self.builder.submit_and_wait(
                    self.wallet, payload, sequence_number=0
                )
        self.assertEqual(str(cm.exception), "Move abort: EINSUFFICIENT_BALANCE")
        self.assertEqual(cm.exception.txn_hash, "0xbad")

    async def test_waiting_transaction_zero_timeout(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_transaction_by_hash"
        ) as lookup:
            with self.assertRaises(TransactionTimeout):
                await self.builder.waiting_transaction("0x1", 0)
        lookup.assert_not_called()

    async def test_retry_succeeds_after_failures(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                return {"success": False, "error": "busy"}
            return {"success": True}

        result = await retry_failed_call(flaky, max_retries=3, delay_secs=0)
        self.assertTrue(result["success"])
        self.assertEqual(len(attempts), 3)

    async def test_retry_exhausted(self):
        async def broken():
            raise ValueError("boom")

        with self.assertRaises(RetriesExhausted) as cm:
            await self.builder.retry_failed_call(broken, max_retries=2, delay_secs=0)
        self.assertIn("failed after 2 retries", str(cm.exception))
        self.assertEqual(cm.exception.last_error, "boom")

    async def test_gas_helpers(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.estimate_gas_price",
            return_value={"gas_estimate": 100},
        ):
            self.assertEqual(await optimal_gas_price(self.client), 110)
        self.assertAlmostEqual(estimate_transaction_cost(2000, 100), 0.002)


if __name__ == "__main__":
    unittest.main()
