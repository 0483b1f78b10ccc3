"""
Interactive GitHub login for dev-timr.

Runs the GitHub device flow: shows a one-time code, opens the verification
page, waits for authorization and stores the resulting credential through
CredentialManager.

Usage:
    # From command line:
    python -m dev_timr.identity.login

    # Force re-login (different account):
    python -m dev_timr.identity.login --force

    # Programmatic:
    from dev_timr.identity.login import login
    record = await login(manager)
"""

from __future__ import annotations

import asyncio
import logging
import platform
import shutil
import subprocess
import sys
import time
import webbrowser
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from ..config import TimrConfig, load_config
from ..exceptions import DeviceFlowError, IdentityServiceError, TimrError
from ..local.secure_store import SecureStore
from .credentials import CredentialManager
from .service import HttpIdentityService, IdentityService
from .types import CredentialRecord, CredentialState, DeviceCode, LogoutResult

if TYPE_CHECKING:
    from ..sync.remote import RemoteSessionStore

logger = logging.getLogger(__name__)

Printer = Callable[[str], None]
Confirm = Callable[[str], bool]


def build_credential_manager(
    config: TimrConfig,
    service: IdentityService | None = None,
    store: SecureStore | None = None,
) -> CredentialManager:
    """Wire a CredentialManager from configuration."""
    return CredentialManager(
        config.auth_file,
        store or SecureStore(),
        service or HttpIdentityService(config),
        refresh_window_hours=config.refresh_window_hours,
        poll_max_attempts=config.poll_max_attempts,
    )


def _is_wsl() -> bool:
    """Detect if running inside WSL."""
    return "microsoft" in platform.release().lower()


def open_browser(url: str) -> None:
    """Open URL in browser, with WSL2 support. Failures are ignored."""
    try:
        if _is_wsl() and shutil.which("wslview"):
            subprocess.Popen(["wslview", url], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            return
        webbrowser.open(url)
    except (OSError, webbrowser.Error) as e:
        logger.debug(f"Could not open browser: {e}")


def ask_yes_no(question: str) -> bool:
    answer = input(f"{question} [y/N] ").strip().lower()
    return answer in ("y", "yes")


async def login(
    manager: CredentialManager,
    force: bool = False,
    confirm: Confirm | None = None,
    launch_browser: bool = True,
    remote: RemoteSessionStore | None = None,
    out: Printer = print,
) -> CredentialRecord | None:
    """Run the interactive device-flow login.

    Args:
        manager: Credential manager to store the result
        force: Log out and sign in again without asking
        confirm: Yes/no prompt used when already logged in (stdin by default)
        launch_browser: Open the verification page automatically
        remote: When given, the user profile row is upserted after login
        out: Line printer

    Returns:
        The stored credential, or the existing one when the user declined
        to sign in again

    Raises:
        DeviceFlowError: If the user denied access or the code expired
        IdentityServiceError: If GitHub or the identity service failed
    """
    existing = await manager.load()
    if existing is not None:
        ask = confirm or ask_yes_no
        if not force and not ask("You are already logged in. Log out and sign in again?"):
            out("Already logged in.")
            return existing
        await manager.logout()

    def show_code(device: DeviceCode) -> None:
        out(f"First copy your one-time code: {device.user_code}")
        out(f"Then visit: {device.verification_uri}")
        if launch_browser:
            open_browser(device.verification_uri)
        out("Waiting for authentication...")

    record = await manager.login(on_code=show_code)
    out(f"Successfully logged in as @{record.identity_user.handle}!")

    if remote is not None:
        try:
            await remote.upsert_user_profile(record)
        except TimrError as e:
            logger.warning(f"Failed to create user profile: {e.message}")

    out("Your sessions will now be synced to the cloud.")
    return record


async def logout(manager: CredentialManager, out: Printer = print) -> LogoutResult:
    """Log out: revoke remotely when reachable, always delete locally."""
    result = await manager.logout()
    if result.server_revoked:
        out("Logged out. Session token revoked.")
    else:
        out("Logged out locally. The session token could not be revoked server-side.")
    return result


async def show_status(manager: CredentialManager, out: Printer = print) -> CredentialState:
    """Display the currently authenticated user."""
    record = await manager.load()
    state = manager.state_of(record)
    if record is None:
        out("Not authenticated. Run `dev-timr login` to sign in.")
        return state

    remaining = record.seconds_remaining(time.time())
    out(f"User:    @{record.identity_user.handle}")
    if record.identity_user.email:
        out(f"Email:   {record.identity_user.email}")
    if state == CredentialState.EXPIRED:
        out("Expires: EXPIRED")
        out("Run `dev-timr sync` to refresh, or `dev-timr login` to sign in again.")
    else:
        out(f"Expires: in {int(remaining // 3600)} hours")
    out(f"Token:   {manager.path}")
    return state


async def _run(args, config: TimrConfig) -> int:
    manager = build_credential_manager(config)
    try:
        if args.status:
            await show_status(manager)
        elif args.logout:
            await logout(manager)
        else:
            await login(manager, force=args.force, launch_browser=not args.no_browser)
        return 0
    except (DeviceFlowError, IdentityServiceError) as e:
        print(f"Login failed: {e.message}", file=sys.stderr)
        return 1
    finally:
        await manager.service.close()


def main(argv: list[str] | None = None, run: Callable[..., Awaitable[int]] = _run) -> None:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="dev-timr - GitHub login",
        epilog="Authenticates with the GitHub device flow.",
    )
    parser.add_argument("--force", action="store_true", help="Sign in again even if already logged in")
    parser.add_argument("--status", action="store_true", help="Show current authentication status")
    parser.add_argument("--logout", action="store_true", help="Revoke and delete the stored credential")
    parser.add_argument("--no-browser", action="store_true", help="Do not open the verification page")

    args = parser.parse_args(argv)

    try:
        config = load_config()
        if not args.status:
            config.require_configured()
        sys.exit(asyncio.run(run(args, config)))
    except TimrError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(1)


if __name__ == "__main__":
    main()
