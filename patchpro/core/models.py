from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Finding(BaseModel):
    model_config = ConfigDict(frozen=True)

    cve_id: str
    package: str
    remediation: str = ""


class RepoFeed(BaseModel):
    """One repository's entry in the vulnerability feed."""

    model_config = ConfigDict(populate_by_name=True)

    due_date: Optional[str] = Field(default=None, alias="DueDate")
    findings: List[Finding] = Field(default_factory=list, alias="CVEsData")


class ModuleFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    target_version: str
    cve_ids: Tuple[str, ...]


class Job(BaseModel):
    """Remediation plan for a single repository."""

    model_config = ConfigDict(frozen=True)

    repo_url: str
    upstream_url: str
    default_branch: str
    issue_number: int
    due_date: date
    modules: Tuple[ModuleFix, ...]

    @property
    def slug(self) -> str:
        return self.repo_url.rstrip("/").split("/")[-1].removesuffix(".git")

    @property
    def cve_ids(self) -> List[str]:
        return sorted({cve for module in self.modules for cve in module.cve_ids})


ReportStatus = Literal["pr_created", "pr_failed", "failed", "up_to_date"]


class ReportItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    repo_url: str
    cve_ids: List[str] = []
    status: ReportStatus
    pr_url: Optional[str] = None
    stage: Optional[str] = None
    error: Optional[str] = None
    output: Optional[str] = None


class RunSummary(BaseModel):
    run_id: str
    started_at: str
    finished_at: str
    workers: int
    jobs_submitted: int
    skipped: List[str] = []
    items: List[ReportItem] = []
