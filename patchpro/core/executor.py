"""Remediation of a single repository.

One ``Executor.run`` call drives a Job through a fixed sequence of stages::

    ACQUIRE_WORKSPACE -> CHECKOUT_BRANCH -> APPLY_PATCH -> NOOP
                                                        -> VALIDATE -> FAIL
                                                                    -> COMMIT_PUSH -> OPEN_PR -> DONE

Any error before OPEN_PR ends the job in FAIL. NOOP (the patch changed
nothing) ends quietly. A failed pull-request call still ends in DONE, with
the failure recorded in the job's report item. Every terminal stage except
NOOP adds exactly one item to the report sink.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from patchpro.core.forge import ForgeError
from patchpro.core.models import Job, ModuleFix, ReportItem
from patchpro.core.packages import PackageClassifier
from patchpro.core.utils import CommandError
from patchpro.core.workspace import Workspace, WorkspaceError
from patchpro.reporting.report import ReportSink

logger = logging.getLogger(__name__)

PR_TITLE = "fix: remediate CVEs automatically"
COMMIT_SUBJECT = "chore: fix CVEs"
TABLE_HEADER = "### CVEs fixed\n\n| Package | New version | CVEs |\n|---|---|---|"
MANUAL_NOTICE = "No module dependencies were upgraded. System library updates require manual remediation."
OUTPUT_LIMIT = 4000


class Stage(str, Enum):
    ACQUIRE_WORKSPACE = "acquire_workspace"
    CHECKOUT_BRANCH = "checkout_branch"
    APPLY_PATCH = "apply_patch"
    NOOP = "noop"
    VALIDATE = "validate"
    FAIL = "fail"
    COMMIT_PUSH = "commit_push"
    OPEN_PR = "open_pr"
    DONE = "done"


@dataclass(frozen=True)
class ExecutionResult:
    job: Job
    stage: Stage
    branch: str
    report: Optional[ReportItem] = None
    failed_at: Optional[Stage] = None

    @property
    def ok(self) -> bool:
        return self.stage is not Stage.FAIL


def branch_name(prefix: str, today: date) -> str:
    return f"{prefix}{today:%Y-%m-%d}"


def _tail(text: Optional[str], limit: int = OUTPUT_LIMIT) -> Optional[str]:
    if not text:
        return None
    return text if len(text) <= limit else "..." + text[-limit:]


def render_pr_body(modules: List[ModuleFix], classifier: PackageClassifier) -> str:
    upgraded = [m for m in modules if classifier.is_upgradeable(m.path)]
    manual = [m for m in modules if not classifier.is_upgradeable(m.path)]

    if upgraded:
        rows = [f"| {m.path} | {m.target_version} | {', '.join(m.cve_ids)} |" for m in upgraded]
        body = "\n".join([TABLE_HEADER, *rows])
    else:
        body = MANUAL_NOTICE

    if manual:
        lines = [f"- {m.path} >= {m.target_version} ({', '.join(m.cve_ids)})" for m in manual]
        body += "\n\n### Manual remediation required\n\n" + "\n".join(lines)
    return body + "\n"


def render_commit_message(modules: List[ModuleFix], classifier: PackageClassifier, name: str, email: str) -> str:
    lines = [
        f"Upgrade {m.path} to {m.target_version} ({', '.join(m.cve_ids)})"
        for m in modules
        if classifier.is_upgradeable(m.path)
    ]
    body = "\n".join(lines) or "Reconcile module dependencies"
    return f"{COMMIT_SUBJECT}\n\n{body}\n\nSigned-off-by: {name} <{email}>\n"


class Executor:
    def __init__(
        self,
        workspaces,
        toolchain,
        forge,
        sink: ReportSink,
        classifier: Optional[PackageClassifier] = None,
        branch_prefix: str = "patchpro/",
        bot_name: str = "patchpro-bot",
        bot_email: str = "patchpro-bot@users.noreply.github.com",
        report_noop: bool = False,
        log_dir: Optional[Path] = None,
        today: Callable[[], date] = date.today,
    ):
        self.workspaces = workspaces
        self.toolchain = toolchain
        self.forge = forge
        self.sink = sink
        self.classifier = classifier or PackageClassifier()
        self.branch_prefix = branch_prefix
        self.bot_name = bot_name
        self.bot_email = bot_email
        self.report_noop = report_noop
        self.log_dir = log_dir
        self.today = today

    def run(self, job: Job) -> ExecutionResult:
        branch = branch_name(self.branch_prefix, self.today())
        log_file = self._log_file(job)
        stage = Stage.ACQUIRE_WORKSPACE
        logger.info("[%s] %s: %d module(s), branch %s", job.slug, stage.value, len(job.modules), branch)

        try:
            with self.workspaces.acquire(job.repo_url, job.default_branch) as ws:
                stage = self._enter(job, Stage.CHECKOUT_BRANCH)
                ws.checkout_branch(branch)

                stage = self._enter(job, Stage.APPLY_PATCH)
                self._apply_patch(ws, job, log_file)

                if not ws.has_changes():
                    return self._noop(job, branch)

                stage = self._enter(job, Stage.VALIDATE)
                self.toolchain.validate(ws.path, log_file)

                stage = self._enter(job, Stage.COMMIT_PUSH)
                message = render_commit_message(list(job.modules), self.classifier, self.bot_name, self.bot_email)
                sha = ws.commit(message, self.bot_name, self.bot_email)
                logger.info("[%s] Committed %s, pushing %s", job.slug, sha[:12], branch)
                ws.push(branch)
        except (WorkspaceError, CommandError) as exc:
            return self._fail(job, branch, stage, exc)

        return self._open_pr(job, branch)

    def _enter(self, job: Job, stage: Stage) -> Stage:
        logger.info("[%s] %s", job.slug, stage.value)
        return stage

    def _log_file(self, job: Job) -> Optional[Path]:
        if self.log_dir is None:
            return None
        return self.log_dir / f"{job.slug}-{job.issue_number}.log"

    def _apply_patch(self, ws: Workspace, job: Job, log_file: Optional[Path]) -> None:
        try:
            for fix in job.modules:
                if not self.classifier.is_upgradeable(fix.path):
                    logger.info("[%s] Skipping system package %s: manual remediation required", job.slug, fix.path)
                    continue
                self.toolchain.upgrade(ws.path, fix, log_file)
            self.toolchain.reconcile(ws.path, log_file)
        except CommandError:
            logger.warning("[%s] Patch failed, discarding checkout", job.slug)
            try:
                ws.discard()
            except WorkspaceError as discard_exc:
                logger.error("[%s] Could not discard checkout: %s", job.slug, discard_exc)
            raise

    def _noop(self, job: Job, branch: str) -> ExecutionResult:
        logger.info("[%s] No changes applied, repository already up to date", job.slug)
        item = None
        if self.report_noop:
            item = ReportItem(repo_url=job.repo_url, cve_ids=job.cve_ids, status="up_to_date")
            self.sink.add(item)
        return ExecutionResult(job, Stage.NOOP, branch, item)

    def _fail(self, job: Job, branch: str, stage: Stage, exc: Union[WorkspaceError, CommandError]) -> ExecutionResult:
        logger.error("[%s] Failed at %s: %s", job.slug, stage.value, exc)
        item = ReportItem(
            repo_url=job.repo_url,
            cve_ids=job.cve_ids,
            status="failed",
            stage=stage.value,
            error=str(exc),
            output=_tail(getattr(exc, "output", None)),
        )
        self.sink.add(item)
        return ExecutionResult(job, Stage.FAIL, branch, item, failed_at=stage)

    def _open_pr(self, job: Job, branch: str) -> ExecutionResult:
        self._enter(job, Stage.OPEN_PR)
        body = render_pr_body(list(job.modules), self.classifier)
        try:
            pr_url = self.forge.create_pull_request(job.upstream_url, job.default_branch, branch, PR_TITLE, body)
        except ForgeError as exc:
            logger.error("[%s] Failed to create PR: %s", job.slug, exc)
            item = ReportItem(
                repo_url=job.repo_url,
                cve_ids=job.cve_ids,
                status="pr_failed",
                stage=Stage.OPEN_PR.value,
                error=str(exc),
            )
        else:
            logger.info("[%s] PR created: %s", job.slug, pr_url)
            item = ReportItem(repo_url=job.repo_url, cve_ids=job.cve_ids, status="pr_created", pr_url=pr_url)
        self.sink.add(item)
        return ExecutionResult(job, Stage.DONE, branch, item)
