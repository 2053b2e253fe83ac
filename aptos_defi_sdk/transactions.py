# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Raw transactions, entry-function payloads and the signed JSON envelope.

A :class:`RawTransaction` is built once per submission attempt and never modified.
Its signing message is ``SHA3_256("APTOS::RawTransaction") || BCS(raw)`` with the
fields in this fixed order: sender, sequence_number, payload, max_gas_amount,
gas_unit_price, expiration_timestamp_secs, chain_id.

Arguments of an entry function are :class:`TransactionArgument` values, a value plus
the BCS encoder for its Move type. Plain Python values are accepted too and mapped by
:func:`infer_argument`:

============================  ==================
Python value                  Move type
============================  ==================
``bool``                      ``bool``
``int``                       ``u64``
``bytes``                     ``vector<u8>``
``AccountAddress``/``"0x.."`` ``address``
digit-only ``str``            ``u64``
other ``str``                 ``0x1::string::String``
``list``                      ``vector<T>``
============================  ==================

Use the explicit constructors (``TransactionArgument.u128(...)`` and so on) whenever
the target function expects a different width.
"""

from __future__ import annotations

import hashlib
import typing
import unittest
from typing import Any, Callable, Dict, List, Optional

from .account_address import AccountAddress, ParseAddressError
from .bcs import MAX_U64, MAX_U128, Deserializer, Serializer
from .type_tag import TypeTag

RAW_TRANSACTION_SALT = b"APTOS::RawTransaction"

# u64 and wider are rendered as decimal strings in the JSON API
_STRING_ENCODED = ("u64", "u128", "u256")


class TransactionArgument:
    value: Any
    encoder: Callable[[Serializer, Any], None]
    move_type: Optional[str]

    def __init__(
        self,
        value: Any,
        encoder: Callable[[Serializer, Any], None],
        move_type: Optional[str] = None,
    ):
        self.value = value
        self.encoder = encoder
        self.move_type = move_type

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransactionArgument):
            return NotImplemented
        return self.encode() == other.encode()

    def __repr__(self):
        return f"TransactionArgument({self.move_type}: {self.value!r})"

    def encode(self) -> bytes:
        ser = Serializer()
        self.encoder(ser, self.value)
        return ser.output()

    def to_json(self) -> Any:
        """Rendering used in the JSON form of a payload."""
        if self.move_type in _STRING_ENCODED:
            return str(self.value)
        if self.move_type == "address":
            return str(self.value)
        if self.move_type == "vector<u8>":
            return f"0x{bytes(self.value).hex()}"
        if self.move_type is not None and self.move_type.startswith("vector<"):
            return [element.to_json() for element in self.value]
        if self.move_type is None:
            return f"0x{self.encode().hex()}"
        return self.value

    @staticmethod
    def u8(value: int) -> TransactionArgument:
        return TransactionArgument(value, Serializer.u8, "u8")

    @staticmethod
    def u16(value: int) -> TransactionArgument:
        return TransactionArgument(value, Serializer.u16, "u16")

    @staticmethod
    def u32(value: int) -> TransactionArgument:
        return TransactionArgument(value, Serializer.u32, "u32")

    @staticmethod
    def u64(value: int) -> TransactionArgument:
        return TransactionArgument(int(value), Serializer.u64, "u64")

    @staticmethod
    def u128(value: int) -> TransactionArgument:
        return TransactionArgument(int(value), Serializer.u128, "u128")

    @staticmethod
    def u256(value: int) -> TransactionArgument:
        return TransactionArgument(int(value), Serializer.u256, "u256")

    @staticmethod
    def bool(value: bool) -> TransactionArgument:
        return TransactionArgument(value, Serializer.bool, "bool")

    @staticmethod
    def address(value: typing.Union[str, AccountAddress]) -> TransactionArgument:
        if isinstance(value, str):
            value = AccountAddress.from_str(value)
        return TransactionArgument(value, Serializer.struct, "address")

    @staticmethod
    def string(value: str) -> TransactionArgument:
        return TransactionArgument(value, Serializer.str, "0x1::string::String")

    @staticmethod
    def bytes(value: bytes) -> TransactionArgument:
        return TransactionArgument(value, Serializer.to_bytes, "vector<u8>")

    @staticmethod
    def vector(values: List[Any]) -> TransactionArgument:
        elements = [infer_argument(value) for value in values]
        inner = elements[0].move_type if elements else "u8"
        return TransactionArgument(elements, _encode_vector, f"vector<{inner}>")


def _encode_vector(serializer: Serializer, elements: List[TransactionArgument]):
    serializer.uleb128(len(elements))
    for element in elements:
        serializer.fixed_bytes(element.encode())


def infer_argument(value: Any) -> TransactionArgument:
    """Map a plain Python value to a typed argument."""
    if isinstance(value, TransactionArgument):
        return value
    # bool before int, bool is an int subclass
    if isinstance(value, bool):
        return TransactionArgument.bool(value)
    if isinstance(value, int):
        return TransactionArgument.u64(value)
    if isinstance(value, (bytes, bytearray)):
        return TransactionArgument.bytes(bytes(value))
    if isinstance(value, AccountAddress):
        return TransactionArgument.address(value)
    if isinstance(value, str):
        if value.startswith("0x") and 2 < len(value) <= 66:
            try:
                return TransactionArgument.address(AccountAddress.from_str(value))
            except ParseAddressError:
                return TransactionArgument.string(value)
        if value.isdigit():
            number = int(value)
            if number <= MAX_U64:
                return TransactionArgument.u64(number)
            if number <= MAX_U128:
                return TransactionArgument.u128(number)
            return TransactionArgument.u256(number)
        return TransactionArgument.string(value)
    if isinstance(value, (list, tuple)):
        return TransactionArgument.vector(list(value))
    raise TypeError(f"Unsupported argument type {type(value).__name__}: {value!r}")


class ModuleId:
    address: AccountAddress
    name: str

    def __init__(self, address: AccountAddress, name: str):
        self.address = address
        self.name = name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModuleId):
            return NotImplemented
        return self.address == other.address and self.name == other.name

    def __str__(self) -> str:
        return f"{self.address}::{self.name}"

    @staticmethod
    def from_str(module_id: str) -> ModuleId:
        split = module_id.split("::")
        if len(split) != 2:
            raise ValueError(f"Expected <address>::<module>, got {module_id}")
        return ModuleId(AccountAddress.from_str(split[0]), split[1])

    @staticmethod
    def deserialize(deserializer: Deserializer) -> ModuleId:
        addr = AccountAddress.deserialize(deserializer)
        name = deserializer.str()
        return ModuleId(addr, name)

    def serialize(self, serializer: Serializer):
        self.address.serialize(serializer)
        serializer.str(self.name)


class EntryFunction:
    module: ModuleId
    function: str
    ty_args: List[TypeTag]
    args: List[TransactionArgument]

    def __init__(
        self,
        module: ModuleId,
        function: str,
        ty_args: List[TypeTag],
        args: List[TransactionArgument],
    ):
        self.module = module
        self.function = function
        self.ty_args = ty_args
        self.args = args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EntryFunction):
            return NotImplemented
        return (
            self.module == other.module
            and self.function == other.function
            and self.ty_args == other.ty_args
            and [arg.encode() for arg in self.args]
            == [arg.encode() for arg in other.args]
        )

    def __str__(self):
        return f"{self.module}::{self.function}<{self.ty_args}>({self.args})"

    @staticmethod
    def natural(
        module: str,
        function: str,
        ty_args: List[typing.Union[TypeTag, str]],
        args: List[Any],
    ) -> EntryFunction:
        """
        Build from string identifiers, e.g.
        ``EntryFunction.natural("0x1::coin", "transfer", ["0x1::aptos_coin::AptosCoin"], ["0x2", 1])``.
        """
        module_id = ModuleId.from_str(module)
        type_tags = [
            tag if isinstance(tag, TypeTag) else TypeTag.from_str(tag) for tag in ty_args
        ]
        arguments = [infer_argument(arg) for arg in args]
        return EntryFunction(module_id, function, type_tags, arguments)

    def function_id(self) -> str:
        return f"{self.module}::{self.function}"

    def to_json(self) -> Dict[str, Any]:
        return {
            "type": "entry_function_payload",
            "function": self.function_id(),
            "type_arguments": [str(tag) for tag in self.ty_args],
            "arguments": [arg.to_json() for arg in self.args],
        }

    @staticmethod
    def deserialize(deserializer: Deserializer) -> EntryFunction:
        module = ModuleId.deserialize(deserializer)
        function = deserializer.str()
        ty_args = deserializer.sequence(TypeTag.deserialize)
        raw_args = deserializer.sequence(Deserializer.to_bytes)
        # Argument types are not recoverable from BCS, keep the encoded form
        args = [TransactionArgument(arg, Serializer.fixed_bytes) for arg in raw_args]
        return EntryFunction(module, function, ty_args, args)

    def serialize(self, serializer: Serializer):
        self.module.serialize(serializer)
        serializer.str(self.function)
        serializer.sequence(self.ty_args, Serializer.struct)
        serializer.uleb128(len(self.args))
        for arg in self.args:
            serializer.to_bytes(arg.encode())


class TransactionPayload:
    SCRIPT: int = 0
    MODULE_BUNDLE: int = 1
    ENTRY_FUNCTION: int = 2

    variant: int
    value: EntryFunction

    def __init__(self, payload: EntryFunction):
        if not isinstance(payload, EntryFunction):
            raise TypeError("Only entry function payloads are supported")
        self.variant = TransactionPayload.ENTRY_FUNCTION
        self.value = payload

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TransactionPayload):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __str__(self):
        return self.value.__str__()

    def to_json(self) -> Dict[str, Any]:
        return self.value.to_json()

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TransactionPayload:
        variant = deserializer.uleb128()
        if variant != TransactionPayload.ENTRY_FUNCTION:
            raise ValueError(f"Unsupported transaction payload variant {variant}")
        return TransactionPayload(EntryFunction.deserialize(deserializer))

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        self.value.serialize(serializer)


class RawTransaction:
    # Sender's address
    sender: AccountAddress
    # Sequence number of this transaction. This must match the sequence number in the
    # sender's account at the time of execution.
    sequence_number: int
    # The transaction payload, e.g., a script to execute.
    payload: TransactionPayload
    # Maximum total gas to spend for this transaction
    max_gas_amount: int
    # Price to be paid per gas unit.
    gas_unit_price: int
    # Expiration timestamp for this transaction, represented as seconds from the Unix
    # Epoch.
    expiration_timestamp_secs: int
    # Chain ID of the Aptos network this transaction is intended for.
    chain_id: int

    def __init__(
        self,
        sender: AccountAddress,
        sequence_number: int,
        payload: TransactionPayload,
        max_gas_amount: int,
        gas_unit_price: int,
        expiration_timestamp_secs: int,
        chain_id: int,
    ):
        self.sender = sender
        self.sequence_number = sequence_number
        self.payload = payload
        self.max_gas_amount = max_gas_amount
        self.gas_unit_price = gas_unit_price
        self.expiration_timestamp_secs = expiration_timestamp_secs
        self.chain_id = chain_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawTransaction):
            return NotImplemented
        return self.to_bytes() == other.to_bytes()

    def __str__(self):
        return f"""RawTransaction:
    sender: {self.sender}
    sequence_number: {self.sequence_number}
    payload: {self.payload}
    max_gas_amount: {self.max_gas_amount}
    gas_unit_price: {self.gas_unit_price}
    expiration_timestamp_secs: {self.expiration_timestamp_secs}
    chain_id: {self.chain_id}
"""

    def prehash(self) -> bytes:
        hasher = hashlib.sha3_256()
        hasher.update(RAW_TRANSACTION_SALT)
        return hasher.digest()

    def keyed(self) -> bytes:
        """The exact bytes handed to the signer."""
        return self.prehash() + self.to_bytes()

    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    def sign(self, wallet) -> SignedTransaction:
        signature = wallet.sign(self.keyed())
        return SignedTransaction(self, wallet.public_key_bytes(), signature)

    def to_json(self, with_chain_id: bool = False) -> Dict[str, Any]:
        """JSON form accepted by the node; integers are decimal strings."""
        value: Dict[str, Any] = {
            "sender": str(self.sender),
            "sequence_number": str(self.sequence_number),
            "max_gas_amount": str(self.max_gas_amount),
            "gas_unit_price": str(self.gas_unit_price),
            "expiration_timestamp_secs": str(self.expiration_timestamp_secs),
            "payload": self.payload.to_json(),
        }
        if with_chain_id:
            value["chain_id"] = self.chain_id
        return value

    @staticmethod
    def from_bytes(data: bytes) -> RawTransaction:
        return RawTransaction.deserialize(Deserializer(data))

    @staticmethod
    def deserialize(deserializer: Deserializer) -> RawTransaction:
        return RawTransaction(
            AccountAddress.deserialize(deserializer),
            deserializer.u64(),
            TransactionPayload.deserialize(deserializer),
            deserializer.u64(),
            deserializer.u64(),
            deserializer.u64(),
            deserializer.u8(),
        )

    def serialize(self, serializer: Serializer):
        self.sender.serialize(serializer)
        serializer.u64(self.sequence_number)
        self.payload.serialize(serializer)
        serializer.u64(self.max_gas_amount)
        serializer.u64(self.gas_unit_price)
        serializer.u64(self.expiration_timestamp_secs)
        serializer.u8(self.chain_id)


class SignedTransaction:
    transaction: RawTransaction
    public_key: bytes
    signature: bytes

    def __init__(self, transaction: RawTransaction, public_key: bytes, signature: bytes):
        self.transaction = transaction
        self.public_key = public_key
        self.signature = signature

    def __str__(self) -> str:
        return f"Transaction: {self.transaction}Signature: 0x{self.signature.hex()}"

    def verify(self) -> bool:
        from .wallet import Wallet

        return Wallet.verify_with_public_key(
            self.public_key, self.transaction.keyed(), self.signature
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "transaction": self.transaction.to_json(),
            "signature": {
                "type": "ed25519_signature",
                "public_key": f"0x{self.public_key.hex()}",
                "signature": f"0x{self.signature.hex()}",
            },
        }


class Test(unittest.TestCase):
    def _raw(self, sender: AccountAddress) -> RawTransaction:
        payload = EntryFunction.natural(
            "0x1::coin",
            "transfer",
            ["0x1::aptos_coin::AptosCoin"],
            ["0x2", 1],
        )
        return RawTransaction(
            sender, 7, TransactionPayload(payload), 2000, 100, 1_700_000_030, 4
        )

    def test_field_order(self):
        raw = self._raw(AccountAddress.from_str("0x1"))
        der = Deserializer(raw.to_bytes())
        self.assertEqual(AccountAddress.deserialize(der), AccountAddress.from_str("0x1"))
        self.assertEqual(der.u64(), 7)
        TransactionPayload.deserialize(der)
        self.assertEqual(der.u64(), 2000)
        self.assertEqual(der.u64(), 100)
        self.assertEqual(der.u64(), 1_700_000_030)
        self.assertEqual(der.u8(), 4)
        self.assertEqual(der.remaining(), 0)

    def test_keyed_prefix(self):
        raw = self._raw(AccountAddress.from_str("0x1"))
        self.assertEqual(
            raw.keyed()[:32], hashlib.sha3_256(b"APTOS::RawTransaction").digest()
        )

    def test_sign_decode_resign_is_deterministic(self):
        from .wallet import Wallet

        wallet = Wallet.generate()
        raw = self._raw(wallet.account_address())
        signed = raw.sign(wallet)
        self.assertTrue(signed.verify())

        decoded = RawTransaction.from_bytes(raw.to_bytes())
        self.assertEqual(decoded, raw)
        self.assertEqual(decoded.sign(wallet).signature, signed.signature)

    def test_json_form(self):
        raw = self._raw(AccountAddress.from_str("0x1"))
        value = raw.to_json()
        self.assertEqual(value["sequence_number"], "7")
        self.assertEqual(value["max_gas_amount"], "2000")
        self.assertNotIn("chain_id", value)
        self.assertEqual(raw.to_json(with_chain_id=True)["chain_id"], 4)
        payload = value["payload"]
        self.assertEqual(payload["type"], "entry_function_payload")
        self.assertTrue(payload["function"].endswith("::coin::transfer"))
        self.assertEqual(payload["arguments"][1], "1")

    def test_argument_inference(self):
        self.assertEqual(infer_argument(True).move_type, "bool")
        self.assertEqual(infer_argument(5).move_type, "u64")
        self.assertEqual(infer_argument("5").move_type, "u64")
        self.assertEqual(infer_argument(str(MAX_U64 + 1)).move_type, "u128")
        self.assertEqual(infer_argument("0x1").move_type, "address")
        self.assertEqual(infer_argument("hello").move_type, "0x1::string::String")
        self.assertEqual(infer_argument(b"\x01\x02").to_json(), "0x0102")
        vector = infer_argument(["1", "2"])
        self.assertEqual(vector.move_type, "vector<u64>")
        self.assertEqual(vector.to_json(), ["1", "2"])
        self.assertEqual(vector.encode()[0], 2)
        with self.assertRaises(TypeError):
            infer_argument(1.5)

    def test_explicit_widths(self):
        self.assertEqual(TransactionArgument.u8(1).encode(), b"\x01")
        self.assertEqual(len(TransactionArgument.u128(1).encode()), 16)
        self.assertEqual(TransactionArgument.u128(1).to_json(), "1")
        self.assertEqual(TransactionArgument.u16(1).to_json(), 1)

    def test_envelope_shape(self):
        from .wallet import Wallet

        wallet = Wallet.generate()
        envelope = self._raw(wallet.account_address()).sign(wallet).to_json()
        self.assertEqual(envelope["signature"]["type"], "ed25519_signature")
        self.assertEqual(
            envelope["signature"]["public_key"], f"0x{wallet.public_key_hex()}"
        )
        self.assertEqual(len(bytes.fromhex(envelope["signature"]["signature"][2:])), 64)


if __name__ == "__main__":
    unittest.main()
