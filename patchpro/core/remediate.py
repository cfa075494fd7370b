from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from patchpro.core import feed as feed_mod
from patchpro.core import storage
from patchpro.core.config import Settings
from patchpro.core.dispatcher import Dispatcher
from patchpro.core.executor import Executor
from patchpro.core.forge import ForgeClient
from patchpro.core.models import Job, RunSummary
from patchpro.core.packages import PackageClassifier
from patchpro.core.planner import NoAction, build_job
from patchpro.core.toolchain import GoToolchain
from patchpro.core.utils import utc_now
from patchpro.core.workspace import WorkspaceManager
from patchpro.reporting.report import ReportSink, render_report
from patchpro.reporting.slack import SlackNotifier

logger = logging.getLogger(__name__)


def load_inputs(feed_paths: Sequence[Path], repo_map_path: Path) -> Tuple[feed_mod.Feed, Dict[str, str], List[str]]:
    """Read and merge the feeds and read the repository map.

    Raises ``FeedError`` when any file is unreadable; the run must not start.
    """
    merged: feed_mod.Feed = {}
    skipped: List[str] = []
    for path in feed_paths:
        feed, bad = feed_mod.load_feed(path)
        merged = feed_mod.merge_feeds(merged, feed)
        skipped.extend(bad)
    repo_map = feed_mod.load_repo_map(repo_map_path)
    return merged, repo_map, skipped


def iter_jobs(
    feed: feed_mod.Feed,
    repo_map: Dict[str, str],
    settings: Settings,
    skipped: Optional[List[str]] = None,
    today: Optional[date] = None,
) -> Iterator[Job]:
    """Yield one Job per feed entry that maps to a repository and needs work."""
    skipped = skipped if skipped is not None else []
    issue_number = settings.issue_start
    for key in sorted(feed):
        if key not in repo_map:
            logger.warning("Skipping %s: no repository mapping", key)
            skipped.append(key)
            continue
        url, branch = feed_mod.split_repo_url(repo_map[key])
        result = build_job(feed[key], url, branch, issue_number, today=today, due_days=settings.due_days)
        if isinstance(result, NoAction):
            logger.info("Skipping %s: %s", key, result.reason)
            continue
        issue_number += 1
        yield result


def mapped_urls(feed: feed_mod.Feed, repo_map: Dict[str, str]) -> List[str]:
    return [feed_mod.split_repo_url(repo_map[key])[0] for key in feed if key in repo_map]


def build_executor(settings: Settings, sink: ReportSink, log_dir: Optional[Path] = None) -> Executor:
    cache_dir = None if settings.ephemeral_workspaces else settings.cache_dir
    return Executor(
        workspaces=WorkspaceManager(
            cache_dir=cache_dir,
            token_for=lambda url: settings.credentials_for(url).token,
        ),
        toolchain=GoToolchain(timeout=settings.command_timeout),
        forge=ForgeClient(settings),
        sink=sink,
        classifier=PackageClassifier().with_deny(settings.system_packages),
        branch_prefix=settings.branch_prefix,
        bot_name=settings.bot_name,
        bot_email=settings.bot_email,
        report_noop=settings.report_noop,
        log_dir=log_dir,
    )


def perform_run(
    feed_paths: Sequence[Path],
    repo_map_path: Path,
    settings: Settings,
    executor: Optional[Executor] = None,
    notifier: Optional[SlackNotifier] = None,
    notify: bool = True,
    run_id: Optional[str] = None,
) -> RunSummary:
    """Remediate every mapped repository in the feed and store the run under runs/."""
    feed, repo_map, skipped = load_inputs(feed_paths, repo_map_path)
    settings.check_credentials(mapped_urls(feed, repo_map))

    run_id = run_id or storage.create_run_id()
    started = utc_now()
    snapshot = storage.store_feed_snapshot(run_id, feed)
    logger.info("Run %s: %d repositories in feed, snapshot at %s", run_id, len(feed), snapshot)

    sink = executor.sink if executor is not None else ReportSink()
    executor = executor or build_executor(settings, sink, log_dir=storage.get_log_dir(run_id))
    dispatcher = Dispatcher(executor.run, sink, max_workers=settings.max_workers)
    stats = dispatcher.dispatch(iter_jobs(feed, repo_map, settings, skipped))

    summary = RunSummary(
        run_id=run_id,
        started_at=started,
        finished_at=utc_now(),
        workers=settings.max_workers,
        jobs_submitted=stats.submitted,
        skipped=sorted(set(skipped)),
        items=sink.items(),
    )
    storage.store_run(summary)

    if notify:
        notifier = notifier or SlackNotifier(settings.slack_token, settings.slack_channel)
        notifier.send(render_report(summary.items))
    return summary


def print_plan(jobs: List[Job]) -> None:
    """Pretty-print planned jobs in a simple table."""
    headers = ["Repository", "Branch", "Issue", "Due", "Package", "Version", "CVE"]
    rows = []
    for job in jobs:
        for m in job.modules:
            rows.append([
                job.slug,
                job.default_branch,
                job.issue_number,
                job.due_date.isoformat(),
                m.path,
                m.target_version,
                ",".join(m.cve_ids),
            ])

    col_widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            col_widths[i] = max(col_widths[i], len(str(cell)))

    def fmt_row(values):
        return " | ".join(str(v).ljust(col_widths[i]) for i, v in enumerate(values))

    print(fmt_row(headers))
    print("-+-".join("-" * w for w in col_widths))
    for row in rows:
        print(fmt_row(row))
