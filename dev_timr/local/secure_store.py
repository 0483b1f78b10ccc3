"""
Encrypted JSON storage.

Stores JSON documents encrypted with AES-256-GCM under a key derived from
machine-scoped factors (OS user, hostname, application salt). Anyone who
knows those factors can derive the key, so this protects against casual
disk inspection and leaked backups, not against a local attacker.

On-disk envelope:

    {"v": 1, "iv": "<hex>", "tag": "<hex>", "data": "<hex>"}

Reads never raise for missing or corrupt files: a document that fails
authenticated decryption is reported as absent.
"""

from __future__ import annotations

import getpass
import hashlib
import json
import logging
import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import IntegrityError, StorageIOError
from .file_ops import read_text, remove_file, write_text_atomic

logger = logging.getLogger(__name__)

ENVELOPE_VERSION = 1
APP_SALT = "dev-timr-secret-v1"
NONCE_BYTES = 12
TAG_BYTES = 16

_ENVELOPE_KEYS = ("iv", "tag", "data")


@dataclass(frozen=True)
class EncryptedBlob:
    """Versioned AES-GCM envelope."""

    version: int
    iv: bytes
    auth_tag: bytes
    ciphertext: bytes

    def to_dict(self) -> dict[str, Any]:
        return {
            "v": self.version,
            "iv": self.iv.hex(),
            "tag": self.auth_tag.hex(),
            "data": self.ciphertext.hex(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @staticmethod
    def looks_like_envelope(data: Any) -> bool:
        """True if a parsed document is shaped like an envelope (valid or not)."""
        return isinstance(data, dict) and "v" in data and any(k in data for k in _ENVELOPE_KEYS)

    @classmethod
    def from_dict(cls, data: Any) -> EncryptedBlob:
        """Validate and build an envelope.

        Raises:
            ValueError: If the structure is malformed or the version unknown
        """
        if not cls.looks_like_envelope(data):
            raise ValueError("not an encrypted envelope")
        if data["v"] != ENVELOPE_VERSION:
            raise ValueError(f"unsupported envelope version: {data['v']!r}")
        for key in _ENVELOPE_KEYS:
            if not isinstance(data.get(key), str):
                raise ValueError(f"envelope field {key!r} missing or not a string")

        blob = cls(
            version=data["v"],
            iv=bytes.fromhex(data["iv"]),
            auth_tag=bytes.fromhex(data["tag"]),
            ciphertext=bytes.fromhex(data["data"]),
        )
        if len(blob.auth_tag) != TAG_BYTES or not blob.iv:
            raise ValueError("envelope iv/tag have the wrong length")
        return blob


def _os_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return os.environ.get("USER") or os.environ.get("USERNAME") or "user"


def derive_machine_key(user: str | None = None, host: str | None = None, salt: str = APP_SALT) -> bytes:
    """Derive the 256-bit key from OS user, hostname and the app salt."""
    factors = ":".join([user or _os_user(), host or socket.gethostname(), salt])
    return hashlib.sha256(factors.encode("utf-8")).digest()


def canonical_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class SecureStore:
    """Encrypts JSON documents to disk and reads them back.

    Example:
        >>> store = SecureStore()
        >>> await store.write(path, {"token": "..."})
        >>> await store.read_or_migrate(path)
        {'token': '...'}
    """

    def __init__(self, key: bytes | None = None):
        """Initialize the store.

        Args:
            key: 32-byte key; derived from machine factors when omitted
        """
        self._key = key if key is not None else derive_machine_key()
        if len(self._key) != 32:
            raise ValueError("SecureStore key must be 32 bytes")
        self._aead = AESGCM(self._key)

    def encrypt(self, data: Any) -> EncryptedBlob:
        """Encrypt a JSON-serializable object with a fresh nonce."""
        iv = os.urandom(NONCE_BYTES)
        sealed = self._aead.encrypt(iv, canonical_json(data).encode("utf-8"), None)
        return EncryptedBlob(
            version=ENVELOPE_VERSION,
            iv=iv,
            auth_tag=sealed[-TAG_BYTES:],
            ciphertext=sealed[:-TAG_BYTES],
        )

    def decrypt(self, blob: EncryptedBlob) -> Any | None:
        """Decrypt an envelope.

        Returns:
            The original object, or None if authentication or parsing fails
        """
        try:
            plaintext = self._aead.decrypt(blob.iv, blob.ciphertext + blob.auth_tag, None)
            return json.loads(plaintext.decode("utf-8"))
        except (InvalidTag, ValueError, UnicodeDecodeError):
            return None

    async def write(self, path: Path, data: Any) -> None:
        """Encrypt and atomically write a document (mode 0600).

        Raises:
            StorageIOError: If the file cannot be written
        """
        await write_text_atomic(path, self.encrypt(data).to_json(), private=True)

    async def read_or_migrate(self, path: Path) -> Any | None:
        """Read a document, upgrading legacy plaintext JSON in place.

        Returns:
            The decrypted (or migrated) document, or None when the file is
            missing, unreadable, corrupt or fails authentication
        """
        try:
            content = await read_text(path)
        except StorageIOError as e:
            logger.warning(f"Treating {path} as absent: {e.message}")
            return None
        if content is None or not content.strip():
            return None

        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            self._log_integrity(path, f"not valid JSON ({e.msg})")
            return None

        if EncryptedBlob.looks_like_envelope(parsed):
            try:
                blob = EncryptedBlob.from_dict(parsed)
            except ValueError as e:
                self._log_integrity(path, str(e))
                return None
            data = self.decrypt(blob)
            if data is None:
                self._log_integrity(path, "authenticated decryption failed")
            return data

        if not isinstance(parsed, (dict, list)):
            self._log_integrity(path, "unexpected document type")
            return None

        # Legacy plaintext: upgrade once, transparently
        try:
            await self.write(path, parsed)
            logger.info(f"Migrated plaintext {path.name} to encrypted storage")
        except StorageIOError as e:
            logger.warning(f"Could not re-encrypt legacy file {path}: {e.message}")
        return parsed

    async def clear(self, path: Path) -> bool:
        """Delete a stored document. Returns True if a file was removed."""
        return await remove_file(path)

    @staticmethod
    def _log_integrity(path: Path, reason: str) -> None:
        logger.warning(IntegrityError(str(path), reason).message)
