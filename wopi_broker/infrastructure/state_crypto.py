"""
Symmetric encryption for the WOPI state blob.
AES-256-GCM with a key derived from the server secret.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..domain.exceptions import StateDecodeError

logger = logging.getLogger(__name__)

DELIMITER = "|"
VERSION = "v1"
NONCE_SIZE = 12


class StateCrypto:
    """
    Encrypts strings into "<ciphertext>|<nonce>|v1".

    Ciphertext and nonce are standard base64; the trailing part is the
    format tag. Decryption authenticates the ciphertext and raises
    StateDecodeError on any failure.
    """

    def __init__(self, secret: str, info: bytes = b"wopi-state"):
        if not secret:
            raise ValueError("A server secret is required for state encryption")
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=info,
        )
        self._aead = AESGCM(hkdf.derive(secret.encode("utf-8")))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), VERSION.encode())
        return DELIMITER.join([
            base64.b64encode(ciphertext).decode("ascii"),
            base64.b64encode(nonce).decode("ascii"),
            VERSION,
        ])

    def decrypt(self, payload: str) -> str:
        parts = payload.split(DELIMITER)
        if len(parts) != 3:
            raise StateDecodeError("Malformed state payload", details={"parts": len(parts)})
        encoded_ciphertext, encoded_nonce, version = parts
        if version != VERSION:
            raise StateDecodeError(f"Unsupported state version: {version}")

        try:
            ciphertext = base64.b64decode(encoded_ciphertext, validate=True)
            nonce = base64.b64decode(encoded_nonce, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StateDecodeError(f"Invalid state encoding: {e}") from e

        if len(nonce) != NONCE_SIZE:
            raise StateDecodeError("Invalid state nonce")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, version.encode())
        except InvalidTag as e:
            logger.warning("State blob failed authentication")
            raise StateDecodeError("State authentication failed") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise StateDecodeError("State payload is not text") from e
