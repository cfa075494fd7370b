"""Turn a repository's raw findings into an upgrade plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set, Union

from patchpro.core import versions
from patchpro.core.models import Finding, Job, ModuleFix, RepoFeed

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "master"
DEFAULT_DUE_DAYS = 21


@dataclass(frozen=True)
class NoAction:
    """Nothing actionable for a repository. Not an error."""

    repo_url: str
    reason: str = "no parseable remediation"


def to_module_fixes(findings: Iterable[Finding]) -> List[ModuleFix]:
    """Merge findings per package, keeping the highest fixed version.

    Findings whose remediation text does not parse are dropped.
    """
    targets: Dict[str, str] = {}
    cves: Dict[str, Set[str]] = {}

    for finding in findings:
        fixed = versions.parse_threshold(finding.remediation)
        if not fixed:
            logger.debug("Dropping %s on %s: unparseable remediation %r",
                         finding.cve_id, finding.package, finding.remediation)
            continue
        current = targets.get(finding.package)
        if current is None or versions.compare_versions(fixed, current) > 0:
            targets[finding.package] = fixed
        cves.setdefault(finding.package, set()).add(finding.cve_id)

    return [
        ModuleFix(path=path, target_version=targets[path], cve_ids=tuple(sorted(cves[path])))
        for path in sorted(targets)
    ]


def parse_due_date(value: Optional[str], today: date, due_days: int = DEFAULT_DUE_DAYS) -> date:
    if value:
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").date()
        except ValueError:
            logger.warning("Ignoring malformed due date %r", value)
    return today + timedelta(days=due_days)


def build_job(
    feed: RepoFeed,
    repo_url: str,
    branch: str,
    issue_number: int,
    today: Optional[date] = None,
    due_days: int = DEFAULT_DUE_DAYS,
) -> Union[Job, NoAction]:
    modules = to_module_fixes(feed.findings)
    if not modules:
        return NoAction(repo_url=repo_url)

    today = today or date.today()
    return Job(
        repo_url=repo_url,
        # Branches are pushed to the repository they were cloned from.
        upstream_url=repo_url,
        default_branch=branch or DEFAULT_BRANCH,
        issue_number=issue_number,
        due_date=parse_due_date(feed.due_date, today, due_days),
        modules=tuple(modules),
    )
