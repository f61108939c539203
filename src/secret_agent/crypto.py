"""
Passphrase-based authenticated encryption for stored secret values.

Blob format: [version 1B][salt 16B][nonce 12B][ciphertext + GCM tag 16B]

The passphrase is stretched with scrypt (memory-hard) using a fresh salt per
call, then AES-256-GCM encrypts the payload under a fresh nonce. Encrypting
the same plaintext twice never yields the same blob.

Never log plaintext, passphrases or derived keys.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import DecryptionError, EncryptionError

FORMAT_VERSION = 1
SALT_SIZE = 16
NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256

# scrypt cost: 2**15 * 8 * 128 bytes = 32 MiB per derivation
SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1

_HEADER_SIZE = 1 + SALT_SIZE + NONCE_SIZE


def derive_key(passphrase: str, salt: bytes) -> bytes:
    """Derive a 32-byte AES key from a passphrase with scrypt.

    Args:
        passphrase: Master key / passphrase text.
        salt: Random per-blob salt.

    Returns:
        32-byte derived key.
    """
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(plaintext: bytes, passphrase: str) -> bytes:
    """Encrypt plaintext under a passphrase.

    Raises:
        EncryptionError: Empty passphrase or a failure in the KDF/cipher.
    """
    if not passphrase:
        raise EncryptionError("passphrase cannot be empty")

    salt = os.urandom(SALT_SIZE)
    nonce = os.urandom(NONCE_SIZE)
    try:
        key = derive_key(passphrase, salt)
        ct = AESGCM(key).encrypt(nonce, plaintext, None)
    except (ValueError, TypeError, MemoryError) as e:
        raise EncryptionError(str(e)) from e

    return bytes([FORMAT_VERSION]) + salt + nonce + ct


def decrypt(blob: bytes, passphrase: str) -> bytes:
    """Decrypt a blob produced by encrypt().

    The GCM tag is verified before any plaintext is returned.

    Raises:
        DecryptionError: Wrong passphrase, truncated, tampered or unknown-format blob.
    """
    _min = _HEADER_SIZE + TAG_SIZE
    if len(blob) < _min:
        raise DecryptionError(
            f"ciphertext too short: {len(blob)} bytes (minimum {_min})"
        )
    if blob[0] != FORMAT_VERSION:
        raise DecryptionError(f"unsupported ciphertext version: {blob[0]}")

    salt = blob[1:1 + SALT_SIZE]
    nonce = blob[1 + SALT_SIZE:_HEADER_SIZE]
    ct = blob[_HEADER_SIZE:]

    try:
        key = derive_key(passphrase, salt)
        return AESGCM(key).decrypt(nonce, ct, None)
    except InvalidTag:
        raise DecryptionError("wrong passphrase or corrupted data") from None
    except (ValueError, TypeError, MemoryError) as e:
        raise DecryptionError(str(e)) from e
