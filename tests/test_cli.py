import json

from typer.testing import CliRunner

from patchpro import cli
from patchpro.core import storage
from patchpro.core.config import ConfigError
from patchpro.core.models import ReportItem, RunSummary

runner = CliRunner()


def _inputs(tmp_path, unmapped=True):
    feed_path = tmp_path / "feed.json"
    feed = {
        "api": {"CVEsData": [
            {"cve_id": "CVE-1", "package": "golang.org/x/net", "remediation": ">= 0.17.0"},
        ]},
    }
    if unmapped:
        feed["lost"] = {"CVEsData": [
            {"cve_id": "CVE-2", "package": "golang.org/x/net", "remediation": ">= 0.17.0"},
        ]}
    feed_path.write_text(json.dumps(feed), encoding="utf-8")
    map_path = tmp_path / "repos.json"
    map_path.write_text(json.dumps({"api": "https://github.com/acme/api/tree/develop"}), encoding="utf-8")
    env_file = tmp_path / "test.env"
    env_file.write_text("PATCHPRO_ISSUE_START=2000\n", encoding="utf-8")
    return feed_path, map_path, env_file


def test_plan_json(tmp_path):
    feed_path, map_path, env_file = _inputs(tmp_path, unmapped=False)

    result = runner.invoke(cli.app, [
        "plan", "--feed", str(feed_path), "--repo-map", str(map_path), "--format", "json", "--env-file", str(env_file),
    ])

    assert result.exit_code == 0, result.output
    jobs = json.loads(result.stdout)
    assert len(jobs) == 1
    assert jobs[0]["repo_url"] == "https://github.com/acme/api.git"
    assert jobs[0]["default_branch"] == "develop"
    assert jobs[0]["issue_number"] == 2000
    assert jobs[0]["modules"][0]["target_version"] == "0.17.0"


def test_plan_table_lists_skipped(tmp_path):
    feed_path, map_path, env_file = _inputs(tmp_path)

    result = runner.invoke(cli.app, [
        "plan", "--feed", str(feed_path), "--repo-map", str(map_path), "--env-file", str(env_file),
    ])

    assert result.exit_code == 0, result.output
    assert "golang.org/x/net" in result.stdout
    assert "Skipped: lost" in result.stdout


def test_plan_unreadable_feed(tmp_path):
    _, map_path, env_file = _inputs(tmp_path)

    result = runner.invoke(cli.app, [
        "plan", "--feed", str(tmp_path / "nope.json"), "--repo-map", str(map_path), "--env-file", str(env_file),
    ])

    assert result.exit_code == 1


def test_run_prints_outcomes(monkeypatch, tmp_path):
    feed_path, map_path, env_file = _inputs(tmp_path)
    captured = {}

    def fake_perform_run(feed_paths, repo_map_path, settings, notify=True):
        captured.update(feeds=feed_paths, workers=settings.max_workers, notify=notify)
        return RunSummary(
            run_id="run-20240501-100000-abcdef12",
            started_at="2024-05-01T10:00:00Z",
            finished_at="2024-05-01T10:01:00Z",
            workers=settings.max_workers,
            jobs_submitted=1,
            items=[ReportItem(
                repo_url="https://github.com/acme/api.git",
                cve_ids=["CVE-1"],
                status="pr_created",
                pr_url="https://github.com/acme/api/pull/9",
            )],
        )

    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    monkeypatch.setattr(cli.remediate, "perform_run", fake_perform_run)

    result = runner.invoke(cli.app, [
        "run", "--feed", str(feed_path), "--repo-map", str(map_path),
        "--workers", "2", "--no-notify", "--env-file", str(env_file),
    ])

    assert result.exit_code == 0, result.output
    assert captured == {"feeds": [feed_path], "workers": 2, "notify": False}
    assert "https://github.com/acme/api.git: PR created (https://github.com/acme/api/pull/9)" in result.stdout
    assert "Run saved: run-20240501-100000-abcdef12" in result.stdout


def test_run_config_error_exits(monkeypatch, tmp_path):
    feed_path, map_path, env_file = _inputs(tmp_path)

    def fake_perform_run(*args, **kwargs):
        raise ConfigError("No forge token configured for: github.com")

    monkeypatch.setattr(cli, "setup_logging", lambda level: None)
    monkeypatch.setattr(cli.remediate, "perform_run", fake_perform_run)

    result = runner.invoke(cli.app, [
        "run", "--feed", str(feed_path), "--repo-map", str(map_path), "--env-file", str(env_file),
    ])

    assert result.exit_code == 1


def test_runs_and_show(monkeypatch, tmp_path):
    monkeypatch.setattr(storage, "RUNS_DIR", tmp_path / "runs")

    result = runner.invoke(cli.app, ["runs"])
    assert "No runs stored." in result.stdout

    storage.store_run(RunSummary(
        run_id="run-20240501-100000-abcdef12",
        started_at="2024-05-01T10:00:00Z",
        finished_at="2024-05-01T10:01:00Z",
        workers=4,
        jobs_submitted=1,
        items=[ReportItem(repo_url="https://github.com/acme/api.git", status="failed")],
    ))

    result = runner.invoke(cli.app, ["runs"])
    assert "run-20240501-100000-abcdef12  jobs=1  failed=1" in result.stdout

    result = runner.invoke(cli.app, ["show", "run-20240501-100000-abcdef12"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["items"][0]["status"] == "failed"

    result = runner.invoke(cli.app, ["show", "run-missing"])
    assert result.exit_code == 1
