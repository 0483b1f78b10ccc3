"""
Local, offline-first storage.

Key classes:
- SecureStore: AES-GCM encrypted JSON documents with legacy migration
- LocalLedger: per-repository ledger of finalized sessions
"""

from .file_ops import file_exists, read_text, remove_file, write_text_atomic
from .ledger import LedgerDocument, LedgerStats, LocalLedger, aggregate_durations, ensure_gitignore
from .secure_store import EncryptedBlob, SecureStore, derive_machine_key

__all__ = [
    "SecureStore",
    "EncryptedBlob",
    "derive_machine_key",
    "LocalLedger",
    "LedgerDocument",
    "LedgerStats",
    "ensure_gitignore",
    "aggregate_durations",
    # Low-level file operations
    "read_text",
    "write_text_atomic",
    "file_exists",
    "remove_file",
]
