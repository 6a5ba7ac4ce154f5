"""
Command line front end.

Starts sessions and polls ``tick`` until they complete, printing progress:

    media-offload --media-root ./uploads migrate
    media-offload --media-root ./uploads --public-base-url https://example.com/uploads optimize
    media-offload --media-root ./uploads status
    media-offload --media-root ./uploads enqueue --priority high
    media-offload --media-root ./uploads queue-run
    media-offload --media-root ./uploads verify
    media-offload --media-root ./uploads restore --all

Credentials come from ``--config`` (YAML) or ``MEDIA_OFFLOAD_*`` environment
variables. Session records, the queue database and statistics live in
``--state-dir``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from . import __version__
from .assets.directory import DirectoryAssetRepository
from .assets.types import JobKind, SelectionCriteria
from .clients.cdn_storage import CdnStorageClient
from .clients.optimizer import ImageOptimizerClient
from .config import OffloadConfig
from .eligibility.criteria import EligibilityFilter
from .exceptions import EligibilityEmptyError, OffloadError
from .logging_utils import configure_structured_logging
from .orchestrator.controller import SessionController
from .orchestrator.pipelines import MigrationPipeline, OptimizationPipeline
from .orchestrator.processor import BatchProcessor
from .orchestrator.retry import RetryConfig
from .orchestrator.stats import StatsAggregator
from .orchestrator.sync import RemoteSync, SyncStatus
from .queue.store import OptimizationQueue, QueueConfig
from .queue.types import QueuePriority
from .queue.worker import QueueWorker
from .sessions.store import SessionStore
from .sessions.types import ProgressReport
from .storage.file_ops import ensure_directory
from .storage.local import FileKeyValueStore

DEFAULT_STATE_DIR = ".media-offload"


@dataclass
class Runtime:
    """Wired-up components for one CLI invocation."""

    controller: SessionController
    worker: QueueWorker
    queue: OptimizationQueue
    stats: StatsAggregator
    sync: RemoteSync


@asynccontextmanager
async def open_runtime(
    config: OffloadConfig,
    media_root: Path,
    state_dir: Path,
    public_base_url: str | None = None,
) -> AsyncIterator[Runtime]:
    """Build every component over file-backed state and close them afterwards."""
    repository = DirectoryAssetRepository(
        media_root,
        manifest_path=state_dir / "manifest.json",
        public_base_url=public_base_url,
    )
    sessions_kv = FileKeyValueStore(state_dir / "sessions")
    stats = StatsAggregator(FileKeyValueStore(state_dir / "stats"))
    queue = OptimizationQueue(QueueConfig(db_path=state_dir / "queue.db"))
    storage_client = CdnStorageClient(config.storage)
    optimizer_client = ImageOptimizerClient(config.optimizer)

    await ensure_directory(state_dir)
    await queue.initialize()
    try:
        eligibility = EligibilityFilter(config.criteria)
        optimization = OptimizationPipeline(optimizer_client, repository, config.orchestrator)
        processor = BatchProcessor(
            store=SessionStore(sessions_kv, config.orchestrator),
            repository=repository,
            eligibility=eligibility,
            pipelines={
                JobKind.MIGRATION: MigrationPipeline(storage_client, repository, config.orchestrator),
                JobKind.OPTIMIZATION: optimization,
            },
            config=config.orchestrator,
            stats=stats,
            queue=queue,
        )
        retry = RetryConfig.from_orchestrator(config.orchestrator)
        worker = QueueWorker(queue, repository, eligibility, optimization, retry=retry, stats=stats)
        sync = RemoteSync(storage_client, repository, retry)
        yield Runtime(SessionController(processor, queue), worker, queue, stats, sync)
    finally:
        await storage_client.close()
        await optimizer_client.close()
        await queue.close()


def _print_progress(report: ProgressReport) -> None:
    print(
        f"[{report.session_id}] {report.processed}/{report.total} ({report.percent}%) "
        f"ok={report.successful} failed={report.failed} status={report.status.value}"
    )
    for entry in report.recent:
        line = f"    {entry.get('state', '?'):<9} {entry.get('name')}: {entry.get('action', '')}"
        if entry.get("error"):
            line += f" ({entry['error']})"
        print(line)


async def _run_session(runtime: Runtime, kind: JobKind, args: argparse.Namespace) -> int:
    criteria = SelectionCriteria(path_prefix=args.prefix, limit=args.limit)
    try:
        handle = await runtime.controller.start(kind, criteria)
    except EligibilityEmptyError as e:
        print(e.message)
        return 0

    print(f"{handle.message} (session {handle.session_id})")
    if args.no_wait:
        return 0

    try:
        while True:
            report = await runtime.controller.tick(handle.session_id)
            _print_progress(report)
            if report.completed or report.status.is_terminal:
                break
            await asyncio.sleep(args.interval)
    except (KeyboardInterrupt, asyncio.CancelledError):
        await runtime.controller.cancel(handle.session_id)
        print(f"\nCancelled session {handle.session_id}")
        return 130

    if report.message:
        print(report.message)
    for error in report.errors:
        print(f"  error: {error}", file=sys.stderr)
    return 0 if report.failed == 0 else 1


async def _status(runtime: Runtime, args: argparse.Namespace) -> int:
    if args.session_id:
        reports = [await runtime.controller.progress(args.session_id)]
    else:
        reports = await runtime.controller.list_sessions()
    if args.json:
        print(json.dumps([r.to_dict() for r in reports], indent=2))
        return 0
    if not reports:
        print("No active sessions")
    for report in reports:
        print(
            f"{report.session_id}  {report.kind.value:<12} {report.status.value:<9} "
            f"{report.processed}/{report.total} ({report.percent}%)"
        )
    return 0


async def _restore(runtime: Runtime, args: argparse.Namespace) -> int:
    if not args.all and not args.asset_ids:
        print("Name the assets to restore, or pass --all", file=sys.stderr)
        return 2
    report = await runtime.sync.restore_all(None if args.all else args.asset_ids, delete_remote=args.delete_remote)
    print(f"Restored {report.successful} of {report.total} asset(s)")
    for asset_id, error in report.errors.items():
        print(f"  error: {asset_id}: {error}", file=sys.stderr)
    return 0 if report.failed == 0 else 1


async def _verify(runtime: Runtime, args: argparse.Namespace) -> int:
    report = await runtime.sync.verify()
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        for check in report.checks:
            line = f"{check.status.value:<14} {check.asset_id}"
            if check.error:
                line += f" ({check.error})"
            print(line)
        counts = report.counts()
        print(f"{report.total} offloaded, {counts['synced']} in sync")
    return 0 if all(check.status is SyncStatus.SYNCED for check in report.checks) else 1


async def _dispatch(args: argparse.Namespace) -> int:
    config = OffloadConfig.from_file(args.config) if args.config else OffloadConfig.from_env()
    async with open_runtime(config, args.media_root, args.state_dir, args.public_base_url) as runtime:
        if args.command == "migrate":
            return await _run_session(runtime, JobKind.MIGRATION, args)
        if args.command == "optimize":
            return await _run_session(runtime, JobKind.OPTIMIZATION, args)
        if args.command == "status":
            return await _status(runtime, args)
        if args.command == "cancel":
            if await runtime.controller.cancel(args.session_id):
                print(f"Session {args.session_id} cancelled")
                return 0
            print(f"Session not found: {args.session_id}", file=sys.stderr)
            return 1
        if args.command == "diagnose":
            tally = await runtime.controller.diagnose(JobKind(args.kind))
            print(json.dumps(tally, indent=2, sort_keys=True))
            return 0
        if args.command == "enqueue":
            added = await runtime.controller.enqueue_backlog(QueuePriority(args.priority))
            print(f"Queued {added} asset(s) at {args.priority} priority")
            return 0
        if args.command == "queue-run":
            result = await runtime.worker.run(max_batches=args.max_batches)
            print(json.dumps({"run": result.to_dict(), "queue": await runtime.queue.counts()}, indent=2))
            return 0 if result.failed == 0 else 1
        if args.command == "restore":
            return await _restore(runtime, args)
        if args.command == "verify":
            return await _verify(runtime, args)
        if args.command == "stats":
            print(json.dumps(await runtime.stats.snapshot(), indent=2))
            return 0
        if args.command == "sweep":
            removed = await runtime.controller.sweep_expired()
            stale = await runtime.queue.fail_stale(args.stale_after)
            print(f"Removed {removed} expired session(s), failed {stale} stale queue entr(ies)")
            return 0
    raise AssertionError(f"unhandled command {args.command}")  # pragma: no cover


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="media-offload",
        description="Offload media to a CDN and optimize images in resumable batches",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--media-root", type=Path, required=True, help="Directory holding the media files")
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=Path(DEFAULT_STATE_DIR),
        help=f"Where sessions, queue and stats are kept (default: {DEFAULT_STATE_DIR})",
    )
    parser.add_argument("--public-base-url", help="Public URL of the media root, needed for optimization")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines")

    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("migrate", "Upload eligible files to CDN storage"),
        ("optimize", "Optimize eligible images"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--limit", type=int, help="Process at most this many files")
        cmd.add_argument("--prefix", help="Only files whose path starts with this prefix")
        cmd.add_argument("--interval", type=float, default=1.0, help="Seconds between ticks")
        cmd.add_argument("--no-wait", action="store_true", help="Start the session and exit")

    status = sub.add_parser("status", help="Show session progress")
    status.add_argument("session_id", nargs="?")
    status.add_argument("--json", action="store_true")

    cancel = sub.add_parser("cancel", help="Cancel a running session")
    cancel.add_argument("session_id")

    diagnose = sub.add_parser("diagnose", help="Count candidates per eligibility reason")
    diagnose.add_argument("kind", choices=[k.value for k in JobKind])

    enqueue = sub.add_parser("enqueue", help="Queue eligible images for background optimization")
    enqueue.add_argument("--priority", choices=[p.value for p in QueuePriority], default="normal")

    queue_run = sub.add_parser("queue-run", help="Drain the optimization queue")
    queue_run.add_argument("--max-batches", type=int)

    restore = sub.add_parser("restore", help="Download offloaded files back to the media root")
    restore.add_argument("asset_ids", nargs="*", metavar="ASSET_ID")
    restore.add_argument("--all", action="store_true", help="Restore every offloaded file")
    restore.add_argument("--delete-remote", action="store_true", help="Delete the remote copies afterwards")

    verify = sub.add_parser("verify", help="Check that offloaded files are still served remotely")
    verify.add_argument("--json", action="store_true")

    sub.add_parser("stats", help="Show offload and optimization totals")

    sweep = sub.add_parser("sweep", help="Remove expired sessions and fail abandoned queue entries")
    sweep.add_argument("--stale-after", type=float, default=3600.0, help="Seconds before a claim is abandoned")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_structured_logging(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        logger_name="media_offload",
        json_output=args.log_json,
    )

    try:
        code = asyncio.run(_dispatch(args))
    except OffloadError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nCancelled.")
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
