"""
Key Encryption
==============
Private keys are stored encrypted with AES-256-GCM.

Each encryption uses a fresh random nonce, and GCM's tag authenticates
the ciphertext: a tampered record or the wrong ENCRYPTION_KEY makes
decryption fail with KeyDecryptionError instead of returning garbage
key material.

Stored format (hex, colon separated). New records use a 12-byte nonce;
older records written with a 16-byte nonce still decrypt:
    nonce:tag:ciphertext
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from trader.errors import KeyDecryptionError

NONCE_SIZE = 12
TAG_SIZE = 16


class KeyCipher:
    """
    Usage:
        cipher = KeyCipher(settings.encryption_key)
        blob = cipher.encrypt("0xabc...")
        pk = cipher.decrypt(blob)
    """

    def __init__(self, key_hex: str):
        try:
            key = bytes.fromhex(key_hex or "")
        except ValueError:
            raise ValueError("ENCRYPTION_KEY must be hex encoded")
        if len(key) != 32:
            raise ValueError("ENCRYPTION_KEY must be 32 bytes (64 hex characters)")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str) -> str:
        try:
            nonce_hex, tag_hex, ct_hex = blob.split(":")
            nonce = bytes.fromhex(nonce_hex)
            sealed = bytes.fromhex(ct_hex) + bytes.fromhex(tag_hex)
            return self._aead.decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, ValueError, AttributeError) as e:
            # ValueError covers bad hex, a wrong field count and invalid nonce sizes
            raise KeyDecryptionError("Stored key could not be decrypted") from e
