from __future__ import annotations

import os
from pathlib import Path
from datetime import datetime, timezone
from uuid import uuid4

from patchpro.core.feed import Feed, dump_feed
from patchpro.core.models import RunSummary
from patchpro.core.utils import ensure_dir, read_json, write_json

BASE_DIR = Path(__file__).resolve().parents[2]
RUNS_DIR = Path(os.getenv("PATCHPRO_RUNS_DIR", str(BASE_DIR / "runs")))


def create_run_id() -> str:
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return f"run-{ts}-{uuid4().hex[:8]}"


def get_run_dir(run_id: str, create: bool = False) -> Path | None:
    run_dir = RUNS_DIR / run_id
    if create:
        ensure_dir(run_dir)
    return run_dir if run_dir.exists() else None


def get_log_dir(run_id: str) -> Path:
    log_dir = RUNS_DIR / run_id / "logs"
    ensure_dir(log_dir)
    return log_dir


def store_feed_snapshot(run_id: str, feed: Feed) -> Path:
    run_dir = get_run_dir(run_id, create=True)
    path = run_dir / "feed.json"
    write_json(path, dump_feed(feed))
    return path


def store_run(summary: RunSummary) -> Path:
    run_dir = get_run_dir(summary.run_id, create=True)
    path = run_dir / "summary.json"
    write_json(path, summary.model_dump())
    return path


def list_runs() -> list[dict]:
    ensure_dir(RUNS_DIR)
    items = []
    for d in sorted(RUNS_DIR.iterdir(), reverse=True):
        if not d.is_dir() or not d.name.startswith("run-"):
            continue
        meta = load_run(d.name)
        if meta:
            statuses: dict[str, int] = {}
            for item in meta.get("items", []):
                statuses[item["status"]] = statuses.get(item["status"], 0) + 1
            items.append({
                "run_id": d.name,
                "finished_at": meta.get("finished_at"),
                "jobs": meta.get("jobs_submitted", 0),
                "statuses": statuses,
            })
    return items


def load_run(run_id: str) -> dict | None:
    path = RUNS_DIR / run_id / "summary.json"
    if not path.exists():
        return None
    return read_json(path)


def load_feed_snapshot(run_id: str) -> dict | None:
    path = RUNS_DIR / run_id / "feed.json"
    if not path.exists():
        return None
    return read_json(path)
