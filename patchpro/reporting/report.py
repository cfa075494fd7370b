"""Per-run collection of remediation outcomes."""

from __future__ import annotations

import threading
from typing import Iterable, List

from patchpro.core.models import ReportItem

STATUS_LABELS = {
    "pr_created": "PR created",
    "pr_failed": "Failed to create PR",
    "failed": "Failed",
    "up_to_date": "Already up to date",
}


class ReportSink:
    """Append-only, thread-safe store of report items shared by all workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[ReportItem] = []

    def add(self, item: ReportItem) -> None:
        with self._lock:
            self._items.append(item)

    def items(self) -> List[ReportItem]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def describe_status(item: ReportItem) -> str:
    label = STATUS_LABELS.get(item.status, item.status)
    if item.status == "failed" and item.stage:
        label = f"{label} at {item.stage}"
    if item.error:
        label = f"{label}: {item.error}"
    return label


def render_report(items: Iterable[ReportItem], title: str = "PatchPro Report") -> str:
    items = list(items)
    if not items:
        return "No repositories processed."

    lines = [f"### {title}", ""]
    for item in sorted(items, key=lambda i: i.repo_url):
        lines.append(f"*Repository*: {item.repo_url}")
        lines.append(f"*CVEs Fixed*: {', '.join(item.cve_ids)}")
        lines.append(f"*Status*: {describe_status(item)}")
        if item.pr_url:
            lines.append(f"*PR URL*: {item.pr_url}")
        lines.append("")
    return "\n".join(lines)
