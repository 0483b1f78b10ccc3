"""
File operations for local storage.

Provides atomic read/write operations with:
- Atomic writes using temp file + rename
- Owner-only permissions (0600) on every file written
- "Missing" reported as None rather than raised
"""

import os
import tempfile
from pathlib import Path

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError

PRIVATE_FILE_MODE = 0o600
PRIVATE_DIR_MODE = 0o700


async def ensure_directory(path: Path, private: bool = False) -> None:
    """Ensure directory exists, creating if necessary.

    Args:
        path: Directory path to ensure exists
        private: Restrict a newly created directory to its owner
    """
    try:
        existed = await aiofiles.os.path.isdir(path)
        await aiofiles.os.makedirs(path, exist_ok=True)
        if private and not existed:
            os.chmod(path, PRIVATE_DIR_MODE)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_text(path: Path) -> str | None:
    """Read a text file.

    Args:
        path: Path to read

    Returns:
        File content, or None if the file doesn't exist
    """
    try:
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as e:
        raise StorageIOError("read", str(path), e) from e


async def write_text_atomic(path: Path, content: str, private: bool = True) -> None:
    """Write a text file atomically using temp file + rename.

    The temp file is created in the target directory so the rename never
    crosses filesystems, and its mode is set before any content lands.

    Args:
        path: Target path
        content: Text to write
        private: Restrict the file (0600) and any directory created for it
            (0700) to its owner
    """
    await ensure_directory(path.parent, private=private)

    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=".tmp_",
        suffix=path.suffix or ".tmp",
    )
    try:
        os.close(fd)
        if private:
            os.chmod(temp_path, PRIVATE_FILE_MODE)
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(content)
            await f.flush()
            os.fsync(f.fileno())

        # Atomic rename
        await aiofiles.os.replace(temp_path, path)
    except Exception as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write", str(path), e) from e


async def file_exists(path: Path) -> bool:
    """Check if a file exists.

    Args:
        path: Path to check

    Returns:
        True if file exists
    """
    try:
        return await aiofiles.os.path.exists(path)
    except OSError:
        return False


async def remove_file(path: Path) -> bool:
    """Remove a file if it exists.

    Args:
        path: Path to remove

    Returns:
        True if file was removed, False if it didn't exist
    """
    try:
        await aiofiles.os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError("remove", str(path), e) from e
