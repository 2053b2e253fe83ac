# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Move type tags as they appear in the ``type_arguments`` of an entry function.

Contract calls carry their type arguments as plain strings such as
``0x1::aptos_coin::AptosCoin`` or
``0x190d...::curves::Uncorrelated``. Signing needs their BCS form, so this module
parses those strings into :class:`TypeTag` values. Primitive types, ``vector<T>``
and arbitrarily nested generic structs are supported.
"""

from __future__ import annotations

import typing
import unittest
from typing import List, Tuple

from .account_address import AccountAddress
from .bcs import Deserializer, Serializer


class TypeTagParseError(Exception):
    """A type argument string is not a well formed Move type."""


class TypeTag:
    BOOL: int = 0
    U8: int = 1
    U64: int = 2
    U128: int = 3
    ACCOUNT_ADDRESS: int = 4
    SIGNER: int = 5
    VECTOR: int = 6
    STRUCT: int = 7
    U16: int = 8
    U32: int = 9
    U256: int = 10

    PRIMITIVES = {
        "bool": BOOL,
        "u8": U8,
        "u16": U16,
        "u32": U32,
        "u64": U64,
        "u128": U128,
        "u256": U256,
        "address": ACCOUNT_ADDRESS,
        "signer": SIGNER,
    }

    variant: int
    # StructTag for STRUCT, the element TypeTag for VECTOR, None otherwise
    value: typing.Any

    def __init__(self, variant: int, value: typing.Any = None):
        self.variant = variant
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TypeTag):
            return NotImplemented
        return self.variant == other.variant and self.value == other.value

    def __str__(self):
        if self.variant == TypeTag.STRUCT:
            return str(self.value)
        if self.variant == TypeTag.VECTOR:
            return f"vector<{self.value}>"
        for name, variant in TypeTag.PRIMITIVES.items():
            if variant == self.variant:
                return name
        return f"<unknown {self.variant}>"

    def __repr__(self):
        return self.__str__()

    @staticmethod
    def from_str(type_tag: str) -> TypeTag:
        tag, index = _parse(type_tag.replace(" ", ""), 0)
        if index != len(type_tag.replace(" ", "")):
            raise TypeTagParseError(f"Trailing characters in type tag: {type_tag}")
        return tag

    @staticmethod
    def deserialize(deserializer: Deserializer) -> TypeTag:
        variant = deserializer.uleb128()
        if variant == TypeTag.STRUCT:
            return TypeTag(variant, StructTag.deserialize(deserializer))
        if variant == TypeTag.VECTOR:
            return TypeTag(variant, TypeTag.deserialize(deserializer))
        if variant in TypeTag.PRIMITIVES.values():
            return TypeTag(variant)
        raise TypeTagParseError(f"Unknown type tag variant {variant}")

    def serialize(self, serializer: Serializer):
        serializer.uleb128(self.variant)
        if self.value is not None:
            serializer.struct(self.value)


class StructTag:
    address: AccountAddress
    module: str
    name: str
    type_args: List[TypeTag]

    def __init__(self, address, module, name, type_args):
        self.address = address
        self.module = module
        self.name = name
        self.type_args = type_args

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StructTag):
            return NotImplemented
        return (
            self.address == other.address
            and self.module == other.module
            and self.name == other.name
            and self.type_args == other.type_args
        )

    def __str__(self) -> str:
        value = f"{self.address}::{self.module}::{self.name}"
        if len(self.type_args) > 0:
            value += "<" + ", ".join(str(arg) for arg in self.type_args) + ">"
        return value

    @staticmethod
    def from_str(type_tag: str) -> StructTag:
        tag = TypeTag.from_str(type_tag)
        if tag.variant != TypeTag.STRUCT:
            raise TypeTagParseError(f"{type_tag} is not a struct type")
        return tag.value

    @staticmethod
    def deserialize(deserializer: Deserializer) -> StructTag:
        address = deserializer.struct(AccountAddress)
        module = deserializer.str()
        name = deserializer.str()
        type_args = deserializer.sequence(TypeTag.deserialize)
        return StructTag(address, module, name, type_args)

    def serialize(self, serializer: Serializer):
        self.address.serialize(serializer)
        serializer.str(self.module)
        serializer.str(self.name)
        serializer.sequence(self.type_args, Serializer.struct)


def _parse(type_tag: str, index: int) -> Tuple[TypeTag, int]:
    start = index
    while index < len(type_tag) and type_tag[index] not in "<>,":
        index += 1
    name = type_tag[start:index]
    if not name:
        raise TypeTagParseError(f"Empty type name at offset {start} in {type_tag}")

    inner: List[TypeTag] = []
    if index < len(type_tag) and type_tag[index] == "<":
        index += 1
        while True:
            tag, index = _parse(type_tag, index)
            inner.append(tag)
            if index >= len(type_tag):
                raise TypeTagParseError(f"Unterminated generic in {type_tag}")
            if type_tag[index] == ",":
                index += 1
                continue
            if type_tag[index] == ">":
                index += 1
                break
            raise TypeTagParseError(f"Unexpected character in {type_tag}")

    if name == "vector":
        if len(inner) != 1:
            raise TypeTagParseError(f"vector takes one type argument: {type_tag}")
        return TypeTag(TypeTag.VECTOR, inner[0]), index
    if name in TypeTag.PRIMITIVES:
        if inner:
            raise TypeTagParseError(f"{name} takes no type arguments")
        return TypeTag(TypeTag.PRIMITIVES[name]), index

    split = name.split("::")
    if len(split) != 3:
        raise TypeTagParseError(f"Expected address::module::name, got {name}")
    try:
        address = AccountAddress.from_str(split[0])
    except Exception as e:
        raise TypeTagParseError(f"Invalid address in {name}") from e
    return TypeTag(TypeTag.STRUCT, StructTag(address, split[1], split[2], inner)), index


class Test(unittest.TestCase):
    def test_nested_structs(self):
        composite = "0x1::pool::Pool<0x1::aptos_coin::AptosCoin, vector<u8>>"
        derived = StructTag.from_str(composite)
        self.assertEqual(derived.module, "pool")
        self.assertEqual(len(derived.type_args), 2)
        self.assertEqual(str(derived.type_args[1]), "vector<u8>")

        ser = Serializer()
        derived.serialize(ser)
        self.assertEqual(StructTag.deserialize(Deserializer(ser.output())), derived)

    def test_primitive(self):
        self.assertEqual(TypeTag.from_str("u64"), TypeTag(TypeTag.U64))

    def test_malformed(self):
        with self.assertRaises(TypeTagParseError):
            TypeTag.from_str("0x1::coin")
        with self.assertRaises(TypeTagParseError):
            TypeTag.from_str("0x1::coin::Coin<u8")
        with self.assertRaises(TypeTagParseError):
            TypeTag.from_str("vector<u8, u64>")


if __name__ == "__main__":
    unittest.main()
