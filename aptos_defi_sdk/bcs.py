# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Binary Canonical Serialization (BCS) used to produce transaction signing bytes.

Only the encodings a raw transaction needs are implemented: fixed width unsigned
integers, booleans, ULEB128 lengths, byte vectors, strings, sequences and nested
structures exposing ``serialize`` / ``deserialize``. See https://github.com/diem/bcs.

Examples:
    Encode and decode a small struct::

        ser = Serializer()
        ser.str("swap")
        ser.u64(1_000_000)

        der = Deserializer(ser.output())
        assert der.str() == "swap"
        assert der.u64() == 1_000_000
"""
from __future__ import annotations

import typing
import unittest
from typing import List

from typing_extensions import Protocol

MAX_U8 = 2**8 - 1
MAX_U16 = 2**16 - 1
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1
MAX_U128 = 2**128 - 1
MAX_U256 = 2**256 - 1

# ULEB128 lengths are capped at u32
MAX_ULEB128 = MAX_U32


class Serializable(Protocol):
    """Anything that can write itself into a :class:`Serializer`."""

    def serialize(self, serializer: Serializer):
        ...


Encoder = typing.Callable[["Serializer", typing.Any], None]
Decoder = typing.Callable[["Deserializer"], typing.Any]


class Deserializer:
    """Reads BCS values from a byte buffer, front to back."""

    _data: bytes
    _offset: int

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._offset = 0

    def remaining(self) -> int:
        return len(self._data) - self._offset

    def bool(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise ValueError(f"Unexpected boolean value: {value}")
        return value == 1

    def to_bytes(self) -> bytes:
        return self._take(self.uleb128())

    def fixed_bytes(self, length: int) -> bytes:
        return self._take(length)

    def sequence(self, value_decoder: Decoder) -> List[typing.Any]:
        return [value_decoder(self) for _ in range(self.uleb128())]

    def str(self) -> str:
        return self.to_bytes().decode()

    def struct(self, struct: typing.Any) -> typing.Any:
        return struct.deserialize(self)

    def u8(self) -> int:
        return self._uint(8)

    def u16(self) -> int:
        return self._uint(16)

    def u32(self) -> int:
        return self._uint(32)

    def u64(self) -> int:
        return self._uint(64)

    def u128(self) -> int:
        return self._uint(128)

    def u256(self) -> int:
        return self._uint(256)

    def uleb128(self) -> int:
        value = 0
        for shift in range(0, 35, 7):
            byte = self.u8()
            value |= (byte & 0x7F) << shift
            if not byte & 0x80:
                break
        else:
            raise ValueError("uleb128 value does not terminate within 5 bytes")
        if value > MAX_ULEB128:
            raise ValueError(f"uleb128 value {value} does not fit in u32")
        return value

    def _take(self, length: int) -> bytes:
        end = self._offset + length
        if end > len(self._data):
            raise ValueError(
                f"Unexpected end of input. Requested: {length}, found: {self.remaining()}"
            )
        value = self._data[self._offset : end]
        self._offset = end
        return value

    def _uint(self, bits: int) -> int:
        return int.from_bytes(self._take(bits // 8), "little")


class Serializer:
    """Accumulates BCS encoded values."""

    _buffer: bytearray

    def __init__(self):
        self._buffer = bytearray()

    def output(self) -> bytes:
        return bytes(self._buffer)

    def bool(self, value: bool):
        self.u8(1 if value else 0)

    def to_bytes(self, value: bytes):
        """Length prefixed byte vector."""
        self.uleb128(len(value))
        self._buffer += value

    def fixed_bytes(self, value: bytes):
        """Raw bytes without a length prefix, e.g. a 32 byte address."""
        self._buffer += value

    @staticmethod
    def sequence_serializer(value_encoder: Encoder) -> Encoder:
        return lambda self, values: self.sequence(values, value_encoder)

    def sequence(self, values: typing.List[typing.Any], value_encoder: Encoder):
        self.uleb128(len(values))
        for value in values:
            value_encoder(self, value)

    def str(self, value: str):
        self.to_bytes(value.encode())

    def struct(self, value: Serializable):
        value.serialize(self)

    def u8(self, value: int):
        self._uint(value, 8)

    def u16(self, value: int):
        self._uint(value, 16)

    def u32(self, value: int):
        self._uint(value, 32)

    def u64(self, value: int):
        self._uint(value, 64)

    def u128(self, value: int):
        self._uint(value, 128)

    def u256(self, value: int):
        self._uint(value, 256)

    def uleb128(self, value: int):
        if not 0 <= value <= MAX_ULEB128:
            raise ValueError(f"Cannot encode {value} into uleb128")
        while True:
            byte = value & 0x7F
            value >>= 7
            if value == 0:
                self._buffer.append(byte)
                return
            # continuation bit
            self._buffer.append(byte | 0x80)

    def _uint(self, value: int, bits: int):
        if not 0 <= value < 1 << bits:
            raise ValueError(f"Cannot encode {value} into u{bits}")
        self._buffer += value.to_bytes(bits // 8, "little")


def encode(value: typing.Any, value_encoder: Encoder) -> bytes:
    """Bytes of a single value."""
    ser = Serializer()
    value_encoder(ser, value)
    return ser.output()


class Test(unittest.TestCase):
    def test_u64_little_endian(self):
        ser = Serializer()
        ser.u64(7)
        self.assertEqual(ser.output(), b"\x07" + b"\x00" * 7)
        self.assertEqual(Deserializer(ser.output()).u64(), 7)

    def test_uleb128_multi_byte(self):
        ser = Serializer()
        ser.uleb128(300)
        self.assertEqual(ser.output(), b"\xac\x02")
        self.assertEqual(Deserializer(ser.output()).uleb128(), 300)
        self.assertEqual(encode(0, Serializer.uleb128), b"\x00")
        self.assertEqual(encode(MAX_U32, Serializer.uleb128), b"\xff\xff\xff\xff\x0f")

    def test_sequence_of_strings(self):
        in_value = ["0x1::aptos_coin::AptosCoin", "", "router"]

        ser = Serializer()
        ser.sequence(in_value, Serializer.str)
        der = Deserializer(ser.output())

        self.assertEqual(der.sequence(Deserializer.str), in_value)
        self.assertEqual(der.remaining(), 0)

    def test_overflow_rejected(self):
        ser = Serializer()
        with self.assertRaises(ValueError):
            ser.u8(256)
        with self.assertRaises(ValueError):
            ser.u64(-1)
        with self.assertRaises(ValueError):
            ser.uleb128(MAX_U32 + 1)
        with self.assertRaises(ValueError):
            Deserializer(b"\x80\x80\x80\x80\x80\x01").uleb128()

    def test_truncated_input(self):
        with self.assertRaises(ValueError):
            Deserializer(b"\x01\x02").u64()

    def test_bool(self):
        self.assertEqual(encode(True, Serializer.bool), b"\x01")
        with self.assertRaises(ValueError):
            Deserializer(b"\x02").bool()


if __name__ == "__main__":
    unittest.main()
