# Copyright © Aptos Foundation
# SPDX-License-Identifier: Apache-2.0

"""
Single ed25519 keypair wallet.

The private key is held as a PKCS#8 DER buffer, the interchange format most key
tooling produces. The buffer is the only secret the wallet keeps: the signing key is
reconstructed from it for every operation, so zeroing the buffer in :meth:`Wallet.clear`
leaves nothing usable behind.

PKCS#8 parsing and generation use ``cryptography``; signing and verification use
PyNaCl, matching the rest of the SDK.

Examples:
    Generate, sign and export::

        wallet = Wallet.generate()
        signature = wallet.sign(b"message")
        assert wallet.verify(b"message", signature)

        restored = Wallet.from_private_key_hex(wallet.private_key_hex())
        assert restored.address() == wallet.address()
"""

from __future__ import annotations

import base64
import binascii
import unittest

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    load_der_private_key,
)
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .account_address import AccountAddress


class SignatureError(Exception):
    """Key material could not be loaded, or signing failed."""


class Wallet:
    """Owns one ed25519 keypair and signs on its behalf.

    Instances are not mutated after construction except by :meth:`clear`, so a
    single wallet can be shared between concurrent tasks.
    """

    _keypair: bytearray
    _cleared: bool

    def __init__(self, pkcs8_bytes: bytes):
        _seed_from_pkcs8(pkcs8_bytes)
        self._keypair = bytearray(pkcs8_bytes)
        self._cleared = False

    def __del__(self):
        # attribute may be missing if __init__ raised
        if getattr(self, "_keypair", None) is not None:
            self.clear()

    def __enter__(self) -> Wallet:
        return self

    def __exit__(self, *args):
        self.clear()

    @staticmethod
    def generate() -> Wallet:
        pkcs8 = Ed25519PrivateKey.generate().private_bytes(
            Encoding.DER, PrivateFormat.PKCS8, NoEncryption()
        )
        return Wallet(pkcs8)

    @staticmethod
    def from_pkcs8_bytes(pkcs8_bytes: bytes) -> Wallet:
        return Wallet(pkcs8_bytes)

    @staticmethod
    def from_private_key_hex(private_key_hex: str) -> Wallet:
        value = private_key_hex[2:] if private_key_hex.startswith("0x") else private_key_hex
        try:
            pkcs8_bytes = bytes.fromhex(value)
        except ValueError as e:
            raise SignatureError(f"Invalid hex: {e}") from e
        return Wallet(pkcs8_bytes)

    @staticmethod
    def from_private_key_base64(private_key_base64: str) -> Wallet:
        try:
            pkcs8_bytes = base64.b64decode(private_key_base64, validate=True)
        except binascii.Error as e:
            raise SignatureError(f"Invalid base64: {e}") from e
        return Wallet(pkcs8_bytes)

    def _key_bytes(self) -> bytes:
        if self._cleared:
            raise SignatureError("Wallet has been cleared")
        return bytes(self._keypair)

    def _signing_key(self) -> SigningKey:
        return SigningKey(_seed_from_pkcs8(self._key_bytes()))

    def public_key_bytes(self) -> bytes:
        return bytes(self._signing_key().verify_key)

    def public_key_hex(self) -> str:
        return self.public_key_bytes().hex()

    def account_address(self) -> AccountAddress:
        return AccountAddress.from_ed25519_public_key(self.public_key_bytes())

    def address(self) -> str:
        """``0x`` + hex(SHA3_256(public_key || 0x00)), always 66 characters."""
        return str(self.account_address())

    def sign(self, message: bytes) -> bytes:
        try:
            return self._signing_key().sign(message).signature
        except SignatureError:
            raise
        except Exception as e:
            raise SignatureError(f"Failed to sign: {e}") from e

    def verify(self, message: bytes, signature: bytes) -> bool:
        return Wallet.verify_with_public_key(self.public_key_bytes(), message, signature)

    @staticmethod
    def verify_with_public_key(
        public_key: bytes, message: bytes, signature: bytes
    ) -> bool:
        try:
            VerifyKey(public_key).verify(message, signature)
        except (BadSignatureError, ValueError, TypeError):
            return False
        return True

    def private_key_hex(self) -> str:
        return self._key_bytes().hex()

    def private_key_base64(self) -> str:
        return base64.b64encode(self._key_bytes()).decode()

    def export_keypair(self) -> bytes:
        return self._key_bytes()

    def clear(self):
        """Overwrite the key buffer with zeros; the wallet is unusable afterwards."""
        for i in range(len(self._keypair)):
            self._keypair[i] = 0
        self._cleared = True

    def __str__(self) -> str:
        if self._cleared:
            return "Wallet(cleared)"
        return f"Wallet({self.address()})"


def _seed_from_pkcs8(pkcs8_bytes: bytes) -> bytes:
    try:
        key = load_der_private_key(pkcs8_bytes, password=None)
    except (ValueError, TypeError) as e:
        raise SignatureError(f"Invalid PKCS8 format: {e}") from e
    if not isinstance(key, Ed25519PrivateKey):
        raise SignatureError("PKCS8 key is not an ed25519 key")
    return key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())


class Test(unittest.TestCase):
    def test_sign_and_verify(self):
        wallet = Wallet.generate()
        message = b"test message"
        signature = wallet.sign(message)
        self.assertEqual(len(signature), 64)
        self.assertTrue(wallet.verify(message, signature))
        self.assertTrue(
            Wallet.verify_with_public_key(wallet.public_key_bytes(), message, signature)
        )
        self.assertFalse(wallet.verify(b"other message", signature))
        self.assertFalse(Wallet.generate().verify(message, signature))

    def test_address_derivation(self):
        import hashlib

        wallet = Wallet.generate()
        expected = hashlib.sha3_256(wallet.public_key_bytes() + b"\x00").hexdigest()
        self.assertEqual(wallet.address(), f"0x{expected}")
        self.assertEqual(len(wallet.address()), 66)
        self.assertEqual(len(wallet.public_key_bytes()), 32)

    def test_hex_and_base64_round_trip(self):
        wallet = Wallet.generate()
        from_hex = Wallet.from_private_key_hex(wallet.private_key_hex())
        from_b64 = Wallet.from_private_key_base64(wallet.private_key_base64())
        self.assertEqual(from_hex.export_keypair(), wallet.export_keypair())
        self.assertEqual(from_b64.export_keypair(), wallet.export_keypair())
        self.assertEqual(from_hex.address(), wallet.address())

    def test_deterministic_signature(self):
        wallet = Wallet.generate()
        self.assertEqual(wallet.sign(b"abc"), wallet.sign(b"abc"))

    def test_invalid_key_material(self):
        with self.assertRaises(SignatureError):
            Wallet.from_private_key_hex("zz")
        with self.assertRaises(SignatureError):
            Wallet.from_private_key_hex("00" * 48)
        with self.assertRaises(SignatureError):
            Wallet.from_private_key_base64("not base64!")

    def test_clear_zeroes_buffer(self):
        wallet = Wallet.generate()
        wallet.clear()
        self.assertTrue(all(b == 0 for b in wallet._keypair))
        with self.assertRaises(SignatureError):
            wallet.sign(b"abc")
        for export in (
            wallet.private_key_hex,
            wallet.private_key_base64,
            wallet.export_keypair,
            wallet.public_key_bytes,
        ):
            with self.assertRaises(SignatureError):
                export()
        self.assertEqual(str(wallet), "Wallet(cleared)")


if __name__ == "__main__":
    unittest.main()
