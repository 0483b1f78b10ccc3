"""
dev-timr command line.

Usage:
    dev-timr run [--task NAME | --continue] -- npm run dev
    dev-timr login [--force] [--no-browser]
    dev-timr logout
    dev-timr status
    dev-timr sync
    dev-timr stats [--me] [--local] [--repo owner/repo]
    dev-timr migrate [--yes]
    dev-timr setup --supabase-url URL --anon-key KEY --client-id ID
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from . import __version__
from .config import TimrConfig, load_config, save_settings
from .exceptions import ConfigurationError, InputValidationError, TimrError
from .http import JsonHttpClient
from .identity import login as login_flow
from .identity.credentials import CredentialManager
from .identity.service import HttpIdentityService
from .local.ledger import LocalLedger
from .local.secure_store import SecureStore
from .logging_utils import configure_logging
from .repo import RepoInfo, get_repo_info
from .runner import run_tracked
from .session.engine import SessionEngine
from .session.recorder import SessionRecorder
from .status import StatusReporter
from .sync.migrate import migrate_local_sessions
from .sync.queue import DurableQueue
from .sync.remote import RemoteSessionStore
from .sync.stats import StatsService

logger = logging.getLogger(__name__)


def format_duration(ms: int | None) -> str:
    """``1h 5m``, ``12m`` or ``0m``."""
    if not ms:
        return "0m"
    hours, rest = divmod(int(ms), 3_600_000)
    minutes = rest // 60_000
    return f"{hours}h {minutes}m" if hours else f"{minutes}m"


def format_clock(ms: int) -> str:
    """``1h 2m 3s``."""
    hours, rest = divmod(int(ms), 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    return f"{hours}h {minutes}m {rest // 1000}s"


@dataclass
class AppContext:
    """Every component wired for one working directory."""

    config: TimrConfig
    store: SecureStore
    ledger: LocalLedger
    queue: DurableQueue
    credentials: CredentialManager
    remote: RemoteSessionStore
    recorder: SessionRecorder
    stats: StatsService
    repo: RepoInfo | None
    http: JsonHttpClient

    async def close(self) -> None:
        await self.credentials.wait_for_refresh()
        await self.http.close()


async def build_context(
    config: TimrConfig,
    cwd: Path | None = None,
    repo: RepoInfo | None = None,
    store: SecureStore | None = None,
) -> AppContext:
    """Wire storage, identity and sync components."""
    cwd = cwd or Path.cwd()
    store = store or SecureStore()
    http = JsonHttpClient(timeout_seconds=config.request_timeout_seconds)
    repo = repo or await get_repo_info(cwd)

    ledger = LocalLedger(config.ledger_path(cwd), store)
    queue = DurableQueue(config.queue_file, store, max_attempts=config.max_sync_attempts)
    credentials = login_flow.build_credential_manager(config, HttpIdentityService(config, http), store)
    remote = RemoteSessionStore(config, http)
    # Without remote configuration everything stays local
    sync_repo = repo if config.is_configured() else None
    recorder = SessionRecorder(ledger, queue, credentials, remote, sync_repo)
    stats = StatsService(ledger, queue, remote, credentials, sync_repo)

    return AppContext(config, store, ledger, queue, credentials, remote, recorder, stats, repo, http)


async def cmd_run(ctx: AppContext, args: argparse.Namespace) -> int:
    task_name = args.task
    if not task_name and args.continue_task:
        task_name = await ctx.ledger.last_task_name()

    if await ctx.queue.count():
        try:
            await ctx.recorder.sync_pending()
        except TimrError as e:
            logger.warning(f"Queued sessions not synced: {e.message}")

    engine = SessionEngine(recorder=ctx.recorder)
    print(f"Starting dev-timr for: {' '.join(args.command)}")
    if task_name:
        print(f"Task: {task_name}")

    code = await run_tracked(args.command, engine, task_name=task_name)

    session = engine.last_session
    if session is not None:
        print(f"\nSession ended: {format_clock(session.duration_ms)}")
        outcome = engine.last_outcome
        if outcome is not None and outcome.cloud_synced:
            print("Synced to cloud.")
        elif outcome is not None and outcome.queued:
            print("Saved locally; queued for sync.")
        else:
            print("Saved locally.")
    return code


async def cmd_login(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.config.require_configured()
    await login_flow.login(
        ctx.credentials,
        force=args.force,
        launch_browser=not args.no_browser,
        remote=ctx.remote,
    )
    return 0


async def cmd_logout(ctx: AppContext, args: argparse.Namespace) -> int:
    await login_flow.logout(ctx.credentials)
    return 0


async def cmd_status(ctx: AppContext, args: argparse.Namespace) -> int:
    await login_flow.show_status(ctx.credentials)

    reporter = StatusReporter(SessionEngine(), ctx.stats, ctx.credentials)
    await reporter.refresh(force_local=True)
    snapshot = reporter.snapshot()
    queue_stats = await ctx.queue.stats()

    print(f"Repo:    {ctx.repo.full_name if ctx.repo else '(not a git repository)'}")
    print(f"Today:   {format_duration(snapshot['todayMs'])}")
    print(f"Total:   {format_duration(snapshot['totalMs'])}")
    print(f"Queued:  {queue_stats.count} session(s), {queue_stats.total_attempts} failed attempt(s)")
    print(f"Mode:    {'offline' if snapshot['offline'] else 'online'}")
    return 0


async def cmd_sync(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.config.require_configured()
    if not await ctx.queue.count():
        print("Nothing to sync.")
        return 0

    summary = await ctx.recorder.sync_pending()
    if summary is None:
        print("Not logged in. Run `dev-timr login` first.")
        return 1

    print(
        f"Attempted: {summary.attempted}  Synced: {summary.synced}  "
        f"Retained: {summary.retained}  Dropped: {summary.dropped}"
    )
    if summary.remaining:
        print(f"Still queued: {summary.remaining} session(s)")
    for entry in summary.dropped_entries:
        print(f"  Gave up on session {entry.client_id}: {entry.last_error}", file=sys.stderr)
    if summary.requires_reauth:
        print("Authentication required. Run `dev-timr login`.", file=sys.stderr)
        return 1
    return 0


async def cmd_stats(ctx: AppContext, args: argparse.Namespace) -> int:
    stats_service = ctx.stats
    repo = ctx.repo
    if args.repo:
        repo = RepoInfo.from_full_name(args.repo)
        if repo is None:
            raise InputValidationError("repo", 'use the "owner/repo" format')
        stats_service = StatsService(ctx.ledger, ctx.queue, ctx.remote, ctx.credentials, repo)

    if repo is None:
        print("Not in a git repository. Use --repo owner/repo.", file=sys.stderr)
        return 1

    report = await stats_service.get_stats(force_local=args.local, personal_only=args.me)
    print(f"Repository: {repo.full_name} ({report.source})")
    print(f"Today:      {format_duration(report.stats.today_ms)}")
    print(f"This week:  {format_duration(report.stats.week_ms)}")
    print(f"This month: {format_duration(report.stats.month_ms)}")
    print(f"All time:   {format_duration(report.stats.total_ms)}")
    if report.includes_paused_time:
        print("Cloud totals span each session start to end, paused time included.")
    if report.queued_count:
        print(f"Queued:     {report.queued_count} session(s) awaiting sync")

    if report.source == "local":
        breakdown = await ctx.ledger.task_breakdown()
        if breakdown:
            print("\nBy task:")
            for name, ms in breakdown:
                print(f"  {name:<30} {format_duration(ms):>10}")
    return 0


async def cmd_migrate(ctx: AppContext, args: argparse.Namespace) -> int:
    ctx.config.require_configured()
    credential = await ctx.credentials.get_valid_credential()
    if credential is None:
        print("You must be logged in to migrate data. Run `dev-timr login` first.", file=sys.stderr)
        return 1
    if ctx.repo is None:
        print("Current directory is not a git repository.", file=sys.stderr)
        return 1

    sessions = await ctx.ledger.sessions()
    if not sessions:
        print("No local sessions found to migrate.")
        return 0

    print(f"Repository: {ctx.repo.full_name}")
    print(f"Found {len(sessions)} local sessions to migrate.")
    if not args.yes and not login_flow.ask_yes_no("Start migration?"):
        print("Migration cancelled.")
        return 0

    summary = await migrate_local_sessions(ctx.ledger, ctx.remote, credential, ctx.repo)
    print(f"Synced: {summary.synced}  Already present: {summary.skipped}  Failed: {summary.failed}")
    print(f"Your local file ({ctx.config.ledger_filename}) was kept as a backup.")
    return 1 if summary.requires_reauth else 0


async def cmd_setup(ctx: AppContext, args: argparse.Namespace) -> int:
    config = save_settings(
        ctx.config,
        {
            "supabase_url": args.supabase_url,
            "supabase_anon_key": args.anon_key,
            "github_client_id": args.client_id,
        },
    )
    if config.is_configured():
        print(f"Configuration saved to {config.settings_file}")
        return 0
    print(f"Still missing: {', '.join(config.missing())}", file=sys.stderr)
    return 1


COMMANDS = {
    "run": cmd_run,
    "login": cmd_login,
    "logout": cmd_logout,
    "status": cmd_status,
    "sync": cmd_sync,
    "stats": cmd_stats,
    "migrate": cmd_migrate,
    "setup": cmd_setup,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dev-timr", description="Track active development time per repository.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More log output (-vv for debug)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Run a command and track time while it runs")
    run.add_argument("--task", "-t", help="Task name for this session")
    run.add_argument("--continue", dest="continue_task", action="store_true", help="Reuse the last task name")
    run.add_argument("command", nargs=argparse.REMAINDER, help='Command to run (e.g. "npm run dev")')

    login = sub.add_parser("login", help="Sign in with GitHub")
    login.add_argument("--force", action="store_true", help="Sign in again even if already logged in")
    login.add_argument("--no-browser", action="store_true", help="Do not open the verification page")

    sub.add_parser("logout", help="Revoke and delete the stored credential")
    sub.add_parser("status", help="Show login, queue and local totals")
    sub.add_parser("sync", help="Retry delivery of queued sessions")

    stats = sub.add_parser("stats", help="Show time totals for this repository")
    stats.add_argument("--me", "-m", action="store_true", help="Only my sessions")
    stats.add_argument("--local", action="store_true", help="Use the local ledger only")
    stats.add_argument("--repo", "-r", help="Repository as owner/repo")

    migrate = sub.add_parser("migrate", help="Upload local sessions to the cloud")
    migrate.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    setup = sub.add_parser("setup", help="Save remote configuration to settings.yaml")
    setup.add_argument("--supabase-url")
    setup.add_argument("--anon-key")
    setup.add_argument("--client-id")

    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    config = load_config()
    ctx = await build_context(config)
    try:
        return await COMMANDS[args.cmd](ctx, args)
    finally:
        await ctx.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "run":
        if args.command and args.command[0] == "--":
            args.command = args.command[1:]
        if not args.command:
            parser.error('no command provided. Usage: dev-timr run "npm run dev"')

    level = logging.WARNING - 10 * min(args.verbose, 2)
    configure_logging(level=level, json_output=args.json_logs or None)

    try:
        sys.exit(asyncio.run(_dispatch(args)))
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(2)
    except TimrError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(130)


if __name__ == "__main__":
    main()
