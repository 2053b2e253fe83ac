# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
32-byte account addresses.

Addresses are always rendered in long form: ``0x`` followed by 64 lowercase hex
characters, 66 characters in total. Parsing is relaxed and accepts short forms such
as ``0x1`` or ``0xa``, which are left padded with zeros.

An ed25519 account address is derived from its public key as
``SHA3_256(public_key || 0x00)``, the trailing byte being the single-key ed25519
authentication scheme identifier.
"""

from __future__ import annotations

import hashlib
import unittest

from .bcs import Deserializer, Serializer


class AuthKeyScheme:
    Ed25519: bytes = b"\x00"
    MultiEd25519: bytes = b"\x01"


class ParseAddressError(Exception):
    """The input could not be interpreted as an account address."""


class AccountAddress:
    address: bytes
    LENGTH: int = 32

    def __init__(self, address: bytes):
        self.address = address

        if len(address) != AccountAddress.LENGTH:
            raise ParseAddressError("Expected address of length 32")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountAddress):
            return NotImplemented
        return self.address == other.address

    def __hash__(self) -> int:
        return hash(self.address)

    def __str__(self):
        return f"0x{self.address.hex()}"

    def __repr__(self):
        return self.__str__()

    def is_special(self) -> bool:
        """Addresses 0x0 through 0xf are reserved for the framework."""
        return all(b == 0 for b in self.address[:-1]) and self.address[-1] < 0b10000

    @staticmethod
    def is_valid(address: str) -> bool:
        """True for a strict long-form address: ``0x`` plus 64 hex characters."""
        if len(address) != AccountAddress.LENGTH * 2 + 2 or not address.startswith(
            "0x"
        ):
            return False
        try:
            bytes.fromhex(address[2:])
        except ValueError:
            return False
        return True

    @staticmethod
    def from_str(address: str) -> AccountAddress:
        """Parse ``0x`` prefixed hex, padding short forms to 32 bytes.

        :raises ParseAddressError: on a missing prefix, bad length or non-hex input
        """
        if not address.startswith("0x"):
            raise ParseAddressError("Hex string must start with a leading 0x.")

        addr = address[2:]
        if len(addr) < 1:
            raise ParseAddressError(
                "Hex string is too short, must be 1 to 64 chars long, excluding the "
                "leading 0x."
            )
        if len(addr) > 64:
            raise ParseAddressError(
                "Hex string is too long, must be 1 to 64 chars long, excluding the "
                "leading 0x."
            )

        addr = addr.rjust(AccountAddress.LENGTH * 2, "0")
        try:
            return AccountAddress(bytes.fromhex(addr))
        except ValueError as e:
            raise ParseAddressError(f"Invalid hex in address {address}") from e

    @staticmethod
    def from_ed25519_public_key(public_key: bytes) -> AccountAddress:
        hasher = hashlib.sha3_256()
        hasher.update(public_key)
        hasher.update(AuthKeyScheme.Ed25519)
        return AccountAddress(hasher.digest())

    @staticmethod
    def deserialize(deserializer: Deserializer) -> AccountAddress:
        return AccountAddress(deserializer.fixed_bytes(AccountAddress.LENGTH))

    def serialize(self, serializer: Serializer):
        serializer.fixed_bytes(self.address)


def normalize(address: str) -> str:
    """Long-form rendering of any accepted address string."""
    return str(AccountAddress.from_str(address))


class Test(unittest.TestCase):
    def test_short_form_is_padded(self):
        addr = AccountAddress.from_str("0x1")
        self.assertEqual(
            str(addr),
            "0x0000000000000000000000000000000000000000000000000000000000000001",
        )
        self.assertTrue(addr.is_special())
        self.assertEqual(len(str(addr)), 66)

    def test_long_form_round_trip(self):
        value = "0xca843279e3427144cead5e4d5999a3d0ca843279e3427144cead5e4d5999a3d0"
        self.assertEqual(str(AccountAddress.from_str(value)), value)
        self.assertTrue(AccountAddress.is_valid(value))
        self.assertFalse(AccountAddress.from_str(value).is_special())

    def test_invalid_inputs(self):
        with self.assertRaises(ParseAddressError):
            AccountAddress.from_str("1234")
        with self.assertRaises(ParseAddressError):
            AccountAddress.from_str("0x")
        with self.assertRaises(ParseAddressError):
            AccountAddress.from_str("0xzz")
        with self.assertRaises(ParseAddressError):
            AccountAddress.from_str("0x" + "1" * 65)
        self.assertFalse(AccountAddress.is_valid("0x1"))

    def test_ed25519_derivation(self):
        public_key = bytes(range(32))
        expected = hashlib.sha3_256(public_key + b"\x00").hexdigest()
        self.assertEqual(
            str(AccountAddress.from_ed25519_public_key(public_key)), f"0x{expected}"
        )

    def test_serialization(self):
        addr = AccountAddress.from_str("0xa")
        ser = Serializer()
        addr.serialize(ser)
        self.assertEqual(len(ser.output()), 32)
        self.assertEqual(AccountAddress.deserialize(Deserializer(ser.output())), addr)


if __name__ == "__main__":
    unittest.main()
