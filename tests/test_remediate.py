import json
from datetime import date

import pytest
from conftest import FakeForge, FakeToolchain, FakeWorkspace, FakeWorkspaces

from patchpro.core import remediate, storage
from patchpro.core.config import ConfigError
from patchpro.core.executor import Executor
from patchpro.core.models import RepoFeed
from patchpro.reporting.report import ReportSink


class FakeNotifier:
    def __init__(self):
        self.sent = []

    def send(self, text):
        self.sent.append(text)
        return True


def _write_inputs(tmp_path):
    feed_path = tmp_path / "feed.json"
    feed_path.write_text(json.dumps({
        "web": {
            "CVEsData": [{"cve_id": "CVE-2", "package": "golang.org/x/text", "remediation": ">= 0.3.8"}],
        },
        "api": {
            "DueDate": "2024-06-30",
            "CVEsData": [
                {"cve_id": "CVE-1", "package": "golang.org/x/net", "remediation": ">= 0.17.0"},
                {"cve_id": "CVE-3", "package": "glibc", "remediation": "needs at-least 2, 2.17-325.el7"},
            ],
        },
        "docs": {"CVEsData": [{"cve_id": "CVE-4", "package": "golang.org/x/net", "remediation": "see advisory"}]},
        "orphan": {"CVEsData": [{"cve_id": "CVE-5", "package": "golang.org/x/net", "remediation": ">= 0.17.0"}]},
    }), encoding="utf-8")

    map_path = tmp_path / "repos.json"
    map_path.write_text(json.dumps({
        "api": "https://github.com/acme/api",
        "web": "https://github.com/acme/web/tree/main",
        "docs": "https://github.com/acme/docs",
    }), encoding="utf-8")
    return feed_path, map_path


def test_iter_jobs_numbers_issues_in_key_order(tmp_path, settings):
    feed_path, map_path = _write_inputs(tmp_path)
    feed, repo_map, skipped = remediate.load_inputs([feed_path], map_path)

    jobs = list(remediate.iter_jobs(feed, repo_map, settings, skipped, today=date(2024, 5, 1)))

    assert [(j.slug, j.issue_number, j.default_branch) for j in jobs] == [
        ("api", 1000, "master"),
        ("web", 1001, "main"),
    ]
    assert jobs[0].due_date == date(2024, 6, 30)
    assert jobs[1].due_date == date(2024, 5, 22)
    assert skipped == ["orphan"]


def test_load_inputs_merges_feeds(tmp_path):
    feed_path, map_path = _write_inputs(tmp_path)
    extra = tmp_path / "extra.json"
    extra.write_text(json.dumps({
        "api": {"DueDate": "2024-07-15", "CVEsData": [
            {"cve_id": "CVE-1", "package": "golang.org/x/net", "remediation": ">= 0.17.0"},
            {"cve_id": "CVE-9", "package": "golang.org/x/net", "remediation": ">= 0.19.0"},
        ]},
    }), encoding="utf-8")

    feed, _, _ = remediate.load_inputs([feed_path, extra], map_path)

    assert isinstance(feed["api"], RepoFeed)
    assert feed["api"].due_date == "2024-07-15"
    assert [f.cve_id for f in feed["api"].findings] == ["CVE-1", "CVE-3", "CVE-9"]


def test_perform_run_stores_and_notifies(monkeypatch, tmp_path, settings):
    monkeypatch.setattr(storage, "RUNS_DIR", tmp_path / "runs")
    feed_path, map_path = _write_inputs(tmp_path)
    forge = FakeForge()
    executor = Executor(
        workspaces=FakeWorkspaces(FakeWorkspace(tmp_path)),
        toolchain=FakeToolchain(),
        forge=forge,
        sink=ReportSink(),
    )
    notifier = FakeNotifier()

    summary = remediate.perform_run([feed_path], map_path, settings, executor=executor, notifier=notifier)

    assert summary.jobs_submitted == 2
    assert sorted(i.repo_url for i in summary.items) == [
        "https://github.com/acme/api.git",
        "https://github.com/acme/web.git",
    ]
    assert all(i.status == "pr_created" for i in summary.items)
    assert summary.skipped == ["orphan"]
    assert storage.load_run(summary.run_id)["jobs_submitted"] == 2
    assert storage.load_feed_snapshot(summary.run_id)["api"]["DueDate"] == "2024-06-30"
    assert "*Repository*: https://github.com/acme/api.git" in notifier.sent[0]


def test_perform_run_without_notification(monkeypatch, tmp_path, settings):
    monkeypatch.setattr(storage, "RUNS_DIR", tmp_path / "runs")
    feed_path, map_path = _write_inputs(tmp_path)
    executor = Executor(
        workspaces=FakeWorkspaces(FakeWorkspace(tmp_path, changes=False)),
        toolchain=FakeToolchain(),
        forge=FakeForge(),
        sink=ReportSink(),
    )
    notifier = FakeNotifier()

    summary = remediate.perform_run(
        [feed_path], map_path, settings, executor=executor, notifier=notifier, notify=False, run_id="run-fixed"
    )

    assert summary.run_id == "run-fixed"
    assert summary.items == []
    assert notifier.sent == []


def test_perform_run_requires_tokens(monkeypatch, tmp_path, settings):
    monkeypatch.setattr(storage, "RUNS_DIR", tmp_path / "runs")
    feed_path, map_path = _write_inputs(tmp_path)
    settings = settings.model_copy(update={"github_token": ""})

    with pytest.raises(ConfigError, match="github.com"):
        remediate.perform_run([feed_path], map_path, settings, notifier=FakeNotifier())

    assert not (tmp_path / "runs").exists()


def test_print_plan(capsys, tmp_path, settings):
    feed_path, map_path = _write_inputs(tmp_path)
    feed, repo_map, _ = remediate.load_inputs([feed_path], map_path)

    remediate.print_plan(list(remediate.iter_jobs(feed, repo_map, settings)))

    out = capsys.readouterr().out
    assert out.splitlines()[0].startswith("Repository")
    assert "golang.org/x/net" in out
    assert "2.17-325.el7" in out
