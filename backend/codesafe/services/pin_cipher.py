"""
CodeSafe Backend — PIN Encryption
===================================

What:  Encrypts note PINs for storage and checks supplied PINs against them.
How:   AES-256-GCM. The key is derived with HKDF-SHA256 from the configured
       PIN_ENCRYPTION_KEY, so any string of key material works. The note code
       is bound in as associated data, so a ciphertext copied onto another
       note never decrypts.

Stored format:
    base64url( nonce(12) || ciphertext || tag(16) )
"""

import base64
import binascii
import hmac
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from codesafe.config import settings

logger = logging.getLogger(__name__)

NONCE_LEN = 12
TAG_LEN = 16
KEY_INFO = b"codesafe-note-pin-v1"


class PinDecryptionError(Exception):
    """Stored PIN ciphertext is malformed or was made with another key."""


def derive_key(key_material: str) -> bytes:
    if not key_material:
        raise ValueError("PIN encryption key material is empty")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=KEY_INFO,
    )
    return hkdf.derive(key_material.encode("utf-8"))


class PinCipher:
    def __init__(self, key_material: str):
        self._aead = AESGCM(derive_key(key_material))

    def encrypt(self, pin: str, code: str) -> str:
        nonce = os.urandom(NONCE_LEN)
        ct = self._aead.encrypt(nonce, pin.encode("utf-8"), code.encode("utf-8"))
        return base64.urlsafe_b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: str, code: str) -> str:
        try:
            blob = base64.urlsafe_b64decode(token.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError) as e:
            raise PinDecryptionError("PIN ciphertext is not valid base64") from e
        if len(blob) < NONCE_LEN + TAG_LEN:
            raise PinDecryptionError("PIN ciphertext is truncated")
        try:
            plain = self._aead.decrypt(blob[:NONCE_LEN], blob[NONCE_LEN:], code.encode("utf-8"))
        except InvalidTag as e:
            raise PinDecryptionError("PIN ciphertext failed authentication") from e
        return plain.decode("utf-8")

    def matches(self, token: str, pin: str, code: str) -> bool:
        """
        True when `pin` is the PIN encrypted in `token`.

        A token that cannot be decrypted never matches. That is logged,
        since it means the key changed or the row was tampered with.
        """
        try:
            stored = self.decrypt(token, code)
        except PinDecryptionError as e:
            logger.warning("Stored PIN could not be decrypted: %s", e)
            return False
        return hmac.compare_digest(stored.encode("utf-8"), pin.encode("utf-8"))


pin_cipher = PinCipher(settings.pin_encryption_key)
