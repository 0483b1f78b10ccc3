"""
Repository identity from the git ``origin`` remote.

Sessions are attributed to ``owner/name`` parsed from the remote URL, so
the same repository cloned in two places shares one remote record.
Supports both HTTPS and SSH formats:

- https://github.com/owner/repo.git
- git@github.com:owner/repo.git
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .exceptions import StorageIOError
from .local.file_ops import read_text

logger = logging.getLogger(__name__)

_SSH_URL = re.compile(r"git@[\w.-]+:(.+)/(.+)$")
_HTTPS_URL = re.compile(r"https?://[\w.@:-]+/(.+)/(.+)$")
_ORIGIN_SECTION = re.compile(r'\[remote "origin"\][^\[]*?url\s*=\s*(.+)')


@dataclass(frozen=True)
class RepoInfo:
    """Owner and name of a hosted repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {"owner": self.owner, "repo": self.name, "fullName": self.full_name}

    @classmethod
    def from_full_name(cls, full_name: str) -> RepoInfo | None:
        """Parse ``owner/repo``."""
        parts = full_name.strip().split("/")
        if len(parts) != 2 or not all(parts):
            return None
        return cls(owner=parts[0], name=parts[1])


def parse_git_url(url: str | None) -> RepoInfo | None:
    """Extract owner and repository name from a remote URL."""
    if not url:
        return None
    url = url.strip()
    if url.endswith(".git"):
        url = url[: -len(".git")]

    for pattern in (_SSH_URL, _HTTPS_URL):
        match = pattern.match(url)
        if match:
            return RepoInfo(owner=match.group(1), name=match.group(2))
    return None


async def _git(cwd: Path, *args: str) -> str | None:
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        stdout, _ = await proc.communicate()
    except OSError as e:
        logger.debug(f"git unavailable: {e}")
        return None
    if proc.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip() or None


async def get_origin_url(cwd: Path | None = None) -> str | None:
    """Origin URL via ``git config``, falling back to reading ``.git/config``."""
    cwd = cwd or Path.cwd()
    url = await _git(cwd, "config", "--get", "remote.origin.url")
    if url:
        return url

    try:
        content = await read_text(cwd / ".git" / "config")
    except StorageIOError:
        return None
    if content is None:
        return None
    match = _ORIGIN_SECTION.search(content)
    return match.group(1).strip() if match else None


async def get_repo_info(cwd: Path | None = None) -> RepoInfo | None:
    """Repository identity of ``cwd``, or None outside a git checkout."""
    return parse_git_url(await get_origin_url(cwd))
