"""Fernet-based field encryption for analysis payloads at rest.

Raw inference payloads and variant detail fields are encrypted before
they reach SQLite. Lab metric rows stay unencrypted so metric history can
be queried by name without decrypting every analysis.

Older keys can be supplied for rotation: new tokens are always written
with the primary key, and any listed key can still decrypt.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _load_key(key: str) -> Fernet:
    if not key or not key.strip():
        raise EncryptionError("Encryption key must not be empty")
    try:
        return Fernet(key.strip().encode())
    except ValueError as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable values.

    Usage::

        encryptor = FieldEncryptor(key="...")
        token = encryptor.encrypt({"redness_percentage": 12.5})
        encryptor.decrypt(token)  # {"redness_percentage": 12.5}
    """

    def __init__(self, key: str, previous_keys: Iterable[str] = ()) -> None:
        """Initialize with a primary Fernet key and optional retired keys.

        Raises:
            EncryptionError: If any key is empty or invalid.
        """
        fernets = [_load_key(key)] + [_load_key(k) for k in previous_keys if k]
        self._fernet = MultiFernet(fernets)
        self._rotating = len(fernets) > 1

    @property
    def rotating(self) -> bool:
        """True when retired keys are configured."""
        return self._rotating

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value to a token string ("" for None)."""
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Value is not JSON-serializable: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a token string back to a Python object (None for "")."""
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        try:
            return json.loads(plaintext)
        except json.JSONDecodeError as exc:
            raise EncryptionError(f"Decrypted payload is not JSON: {exc}") from exc

    def rotate(self, token: str) -> str:
        """Re-encrypt a token under the primary key."""
        if not token or not self._rotating:
            return token
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: token not readable by any key") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded Fernet key."""
        return Fernet.generate_key().decode("utf-8")
