from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from pathlib import Path

import pytest

from patchpro.core.config import Settings
from patchpro.core.models import Job, ModuleFix
from patchpro.core.utils import CommandError
from patchpro.core.workspace import WorkspaceError


def make_job(repo_url="https://github.com/acme/api.git", issue_number=1000, modules=None, branch="master"):
    if modules is None:
        modules = [ModuleFix(path="golang.org/x/net", target_version="0.12.0", cve_ids=("CVE-2023-1001",))]
    return Job(
        repo_url=repo_url,
        upstream_url=repo_url,
        default_branch=branch,
        issue_number=issue_number,
        due_date=date(2024, 5, 22),
        modules=tuple(modules),
    )


class FakeWorkspace:
    def __init__(self, path: Path, changes: bool = True, fail_push: bool = False):
        self.path = path
        self.changes = changes
        self.fail_push = fail_push
        self.calls = []
        self.commit_message = None

    def checkout_branch(self, name):
        self.calls.append(("checkout_branch", name))

    def has_changes(self):
        return self.changes

    def discard(self):
        self.calls.append(("discard",))

    def commit(self, message, name, email):
        self.calls.append(("commit", name, email))
        self.commit_message = message
        return "0123456789abcdef0123"

    def push(self, branch):
        self.calls.append(("push", branch))
        if self.fail_push:
            raise WorkspaceError("git push failed: permission denied")
        return True


class FakeWorkspaces:
    def __init__(self, workspace: FakeWorkspace, fail_acquire: bool = False):
        self.workspace = workspace
        self.fail_acquire = fail_acquire
        self.acquired = []

    @contextmanager
    def acquire(self, url, branch):
        self.acquired.append((url, branch))
        if self.fail_acquire:
            raise WorkspaceError("git clone failed: repository not found")
        yield self.workspace


class FakeToolchain:
    def __init__(self, fail_upgrade=None, fail_validate=False):
        self.fail_upgrade = fail_upgrade
        self.fail_validate = fail_validate
        self.calls = []

    def upgrade(self, root, fix, log_file=None):
        self.calls.append(("upgrade", fix.path, fix.target_version, log_file))
        if fix.path == self.fail_upgrade:
            raise CommandError(f"Command failed (1): go get {fix.path}", "go: module not found")

    def reconcile(self, root, log_file=None):
        self.calls.append(("reconcile",))

    def validate(self, root, log_file=None):
        self.calls.append(("validate",))
        if self.fail_validate:
            raise CommandError("go test ./... failed", "--- FAIL: TestServer")


class FakeForge:
    def __init__(self, error=None, pr_url="https://github.com/acme/api/pull/7"):
        self.error = error
        self.pr_url = pr_url
        self.calls = []

    def create_pull_request(self, repo_url, base_branch, head_branch, title, body):
        self.calls.append((repo_url, base_branch, head_branch, title, body))
        if self.error is not None:
            raise self.error
        return self.pr_url


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        github_token="ghp-test",
        enterprise_host="github.ibm.com",
        enterprise_token="ent-test",
        cache_dir=tmp_path / "cache",
    )
