"""Fernet field encryption for vitals, messages and queued payloads at rest.

Measurements, notification text, emergency contacts and queued write
payloads are encrypted before they reach SQLite. Ids, timestamps and
classification metadata stay in clear columns so they can be indexed.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable values with a Fernet key.

    Usage::

        encryptor = FieldEncryptor(key=FieldEncryptor.generate_key())
        token = encryptor.encrypt({"heart_rate": 72})
        encryptor.decrypt(token)  # {"heart_rate": 72}
    """

    def __init__(self, key: str) -> None:
        """
        Raises:
            EncryptionError: If the key is empty or not a valid Fernet key.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode())
        except ValueError as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    def encrypt(self, data: Any) -> str:
        """Serialize ``data`` to compact JSON and return a Fernet token ('' for None)."""
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":"), default=str).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a token produced by :meth:`encrypt` (None for '')."""
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except ValueError as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")
