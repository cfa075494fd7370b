"""Loading and merging the vulnerability feed and the repository map."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from pydantic import ValidationError

from patchpro.core.models import Finding, RepoFeed

logger = logging.getLogger(__name__)

BRANCH_MARKER = "/tree/"
DEFAULT_BRANCH = "master"

Feed = Dict[str, RepoFeed]


class FeedError(ValueError):
    pass


def _read_mapping(path: Path, what: str) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FeedError(f"Cannot read {what} {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise FeedError(f"{what.capitalize()} {path} must be a JSON object")
    return data


def parse_feed(data: dict) -> Tuple[Feed, List[str]]:
    """Validate each repository entry on its own; bad entries are skipped."""
    feed: Feed = {}
    skipped: List[str] = []
    for key, entry in data.items():
        try:
            feed[key] = RepoFeed.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping malformed feed entry %s: %s", key, exc.errors()[0].get("msg"))
            skipped.append(key)
    return feed, skipped


def load_feed(path: Path) -> Tuple[Feed, List[str]]:
    return parse_feed(_read_mapping(path, "feed"))


def load_repo_map(path: Path) -> Dict[str, str]:
    data = _read_mapping(path, "repository map")
    repo_map = {}
    for key, url in data.items():
        if isinstance(url, str) and url.strip():
            repo_map[key] = url.strip()
        else:
            logger.warning("Ignoring repository map entry %s: not a URL", key)
    return repo_map


def split_repo_url(value: str) -> Tuple[str, str]:
    """Split ``https://host/owner/repo/tree/<branch>`` into a clone URL and branch."""
    url, branch = value.strip(), DEFAULT_BRANCH
    if BRANCH_MARKER in url:
        url, _, rest = url.partition(BRANCH_MARKER)
        branch = rest.strip("/") or DEFAULT_BRANCH
    return normalize_clone_url(url), branch


def normalize_clone_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if url.startswith("git@") and ":" in url:
        host, _, path = url[len("git@"):].partition(":")
        url = f"https://{host}/{path}"
    elif "://" not in url:
        url = f"https://{url}"
    if not url.endswith(".git"):
        url += ".git"
    return url


def merge_feeds(base: Feed, update: Feed) -> Feed:
    """Combine two feeds, de-duplicating findings by (CVE, package).

    The later of the two due dates is kept.
    """
    merged: Feed = {}
    for key in sorted(set(base) | set(update)):
        entries = [e for e in (base.get(key), update.get(key)) if e is not None]
        seen = set()
        findings: List[Finding] = []
        for entry in entries:
            for finding in entry.findings:
                marker = (finding.cve_id, finding.package)
                if marker not in seen:
                    seen.add(marker)
                    findings.append(finding)
        due_dates = [e.due_date for e in entries if e.due_date]
        merged[key] = RepoFeed(due_date=max(due_dates) if due_dates else None, findings=findings)
    return merged


def dump_feed(feed: Feed) -> dict:
    return {key: feed[key].model_dump(by_alias=True) for key in sorted(feed)}
