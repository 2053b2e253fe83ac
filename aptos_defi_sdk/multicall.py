# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Batch dispatcher for contract calls.

* :meth:`Multicall.parallel_execute` writes many independent calls with at most
  ``concurrency`` of them in flight, keeping results in input order. A failing call
  becomes a ``{"success": False, "error": ...}`` entry; the batch always completes.
  Every call is given its own consecutive sequence number.
* :meth:`Multicall.execute_sequence` writes calls one after the other, optionally
  feeding a field of the previous result into the next call's arguments. The first
  failure ends the sequence.
* :meth:`Multicall.conditional_execute` writes only if a read succeeds.

Results are plain dictionaries so they can be filtered and summarised with
:class:`MulticallUtils`.
"""

import asyncio
import logging
import unittest
import unittest.mock
from typing import Any, Dict, List, Optional, Tuple

from .async_client import ClientConfig, RestClient
from .contract import (
    Contract,
    ContractCall,
    ContractReadResult,
    ContractWriteResult,
    WriteOptions,
)
from .sequence_number import SequenceNumberAllocator
from .wallet import Wallet

logger = logging.getLogger(__name__)


class Multicall:
    contract: Contract

    def __init__(self, contract: Contract):
        self.contract = contract

    async def aggregate_read(self, calls: List[ContractCall]) -> List[Dict[str, Any]]:
        return [result.to_dict() for result in await self.contract.batch_read(calls)]

    async def parallel_execute(
        self,
        wallet: Wallet,
        calls: List[ContractCall],
        concurrency: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if concurrency is None:
            concurrency = self.contract.client.client_config.batch_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be a positive integer")
        semaphore = asyncio.Semaphore(concurrency)
        allocator = SequenceNumberAllocator(self.contract.client, wallet.address())

        async def execute(call: ContractCall) -> Dict[str, Any]:
            async with semaphore:
                try:
                    sequence_number = await allocator.next_sequence_number()
                    result = await self.contract.write(
                        wallet, call, WriteOptions(sequence_number=sequence_number)
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning("batch call %s failed: %s", call.function_id(), e)
                    return {"success": False, "error": str(e)}
                return result.to_dict()

        return await asyncio.gather(*[execute(call) for call in calls])

    async def execute_sequence(
        self,
        wallet: Wallet,
        steps: List[Tuple[ContractCall, Optional[str]]],
    ) -> List[Dict[str, Any]]:
        """
        Run ``(call, dependency_field)`` steps in order.

        When ``dependency_field`` is set and the previous result has that field, its
        value is appended to the call's arguments. A step that raises or reports
        ``success=False`` is the last one recorded.
        """
        results: List[Dict[str, Any]] = []
        previous: Optional[Dict[str, Any]] = None
        for call, dependency in steps:
            if dependency is not None and previous is not None and dependency in previous:
                call = call.with_arguments(previous[dependency])
            try:
                result = (await self.contract.write(wallet, call)).to_dict()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                results.append({"success": False, "error": str(e)})
                break
            results.append(result)
            if not result["success"]:
                break
            previous = result
        return results

    async def conditional_execute(
        self,
        wallet: Wallet,
        condition_call: ContractCall,
        execute_call: ContractCall,
    ) -> Optional[Dict[str, Any]]:
        """The write result if the condition read succeeds, otherwise None."""
        condition = await self.contract.read(condition_call)
        if not condition.success:
            return None
        return (await self.contract.write(wallet, execute_call)).to_dict()


class MulticallUtils:
    @staticmethod
    def create_multicall_calls(
        base_calls: List[ContractCall], common_args: List[Any]
    ) -> List[ContractCall]:
        return [call.with_arguments(*common_args) for call in base_calls]

    @staticmethod
    def analyze_multicall_results(results: List[Dict[str, Any]]) -> Dict[str, int]:
        success = sum(1 for result in results if result.get("success") is True)
        failed = sum(1 for result in results if result.get("success") is False)
        return {"total": len(results), "success": success, "failed": failed}

    @staticmethod
    def filter_successful_results(
        results: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        return [result for result in results if result.get("success") is True]

    @staticmethod
    def extract_transaction_hashes(results: List[Dict[str, Any]]) -> List[str]:
        return [
            result["transaction_hash"]
            for result in results
            if result.get("success") is True and result.get("transaction_hash")
        ]


class Test(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.client = RestClient(
            "https://fullnode.devnet.aptoslabs.com/v1", ClientConfig(http2=False)
        )
        self.multicall = Multicall(Contract(self.client))
        self.wallet = Wallet.generate()

    async def asyncTearDown(self):
        await self.client.close()

    async def test_parallel_respects_concurrency_and_order(self):
        in_flight = 0
        peak = 0

        async def write(wallet, call, options=None):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            if call.function_name == "f3":
                raise RuntimeError("rejected")
            return ContractWriteResult(True, f"0x{call.function_name}")

        calls = [ContractCall("0x1", "m", f"f{i}") for i in range(10)]
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write", side_effect=write
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=0,
        ):
            results = await self.multicall.parallel_execute(self.wallet, calls, 3)

        self.assertLessEqual(peak, 3)
        self.assertEqual(len(results), 10)
        self.assertEqual(results[0]["transaction_hash"], "0xf0")
        self.assertEqual(results[3], {"success": False, "error": "rejected"})
        self.assertEqual(
            MulticallUtils.analyze_multicall_results(results),
            {"total": 10, "success": 9, "failed": 1},
        )
        self.assertEqual(len(MulticallUtils.extract_transaction_hashes(results)), 9)

    async def test_parallel_assigns_consecutive_sequence_numbers(self):
        submitted: List[int] = []

        async def write(wallet, call, options=None):
            submitted.append(options.sequence_number)
            await asyncio.sleep(0)
            return ContractWriteResult(True, f"0x{options.sequence_number}")

        calls = [ContractCall("0x1", "m", f"f{i}") for i in range(4)]
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write", side_effect=write
        ), unittest.mock.patch(
            "aptos_defi_sdk.async_client.RestClient.get_account_sequence_number",
            return_value=7,
        ) as lookup:
            results = await self.multicall.parallel_execute(self.wallet, calls, 4)

        self.assertEqual(sorted(submitted), [7, 8, 9, 10])
        self.assertEqual(lookup.await_count, 1)
        self.assertEqual(len(set(MulticallUtils.extract_transaction_hashes(results))), 4)

    async def test_sequence_aborts_on_failure(self):
        seen: List[ContractCall] = []

        async def write(wallet, call, options=None):
            seen.append(call)
            if call.function_name == "third":
                return ContractWriteResult(False, "0x3", error="Move abort")
            return ContractWriteResult(True, f"0x{len(seen)}")

        steps = [
            (ContractCall("0x1", "m", "first"), None),
            (ContractCall("0x1", "m", "second"), "transaction_hash"),
            (ContractCall("0x1", "m", "third"), None),
            (ContractCall("0x1", "m", "fourth"), None),
        ]
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write", side_effect=write
        ):
            results = await self.multicall.execute_sequence(self.wallet, steps)

        self.assertEqual(len(results), 3)
        self.assertEqual([r["success"] for r in results], [True, True, False])
        self.assertEqual(seen[1].arguments, ["0x1"])
        self.assertEqual(len(seen), 3)

    async def test_conditional(self):
        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.read",
            return_value=ContractReadResult(False, None, "nope"),
        ), unittest.mock.patch("aptos_defi_sdk.contract.Contract.write") as write:
            result = await self.multicall.conditional_execute(
                self.wallet, ContractCall("0x1", "m", "check"), ContractCall("0x1", "m", "do")
            )
        self.assertIsNone(result)
        write.assert_not_called()

        with unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.read",
            return_value=ContractReadResult(True, [True]),
        ), unittest.mock.patch(
            "aptos_defi_sdk.contract.Contract.write",
            return_value=ContractWriteResult(True, "0xdo"),
        ):
            result = await self.multicall.conditional_execute(
                self.wallet, ContractCall("0x1", "m", "check"), ContractCall("0x1", "m", "do")
            )
        self.assertEqual(result["transaction_hash"], "0xdo")

    def test_utils(self):
        calls = MulticallUtils.create_multicall_calls(
            [ContractCall("0x1", "m", "a", [], ["x"]), ContractCall("0x1", "m", "b")],
            ["0x2"],
        )
        self.assertEqual(calls[0].arguments, ["x", "0x2"])
        self.assertEqual(calls[1].arguments, ["0x2"])
        results = [{"success": True}, {"success": False}, {"error": "x"}]
        self.assertEqual(MulticallUtils.filter_successful_results(results), [{"success": True}])


if __name__ == "__main__":
    unittest.main()
