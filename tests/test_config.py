import pytest

from patchpro.core.config import ConfigError, Settings, url_host


def test_credentials_for_public_and_enterprise_hosts(settings):
    public = settings.credentials_for("https://github.com/acme/api.git")
    assert (public.host, public.api_base, public.token) == ("github.com", "https://api.github.com", "ghp-test")

    enterprise = settings.credentials_for("https://GitHub.ibm.com/acme/api.git")
    assert (enterprise.host, enterprise.api_base, enterprise.token) == (
        "github.ibm.com",
        "https://github.ibm.com/api/v3",
        "ent-test",
    )


def test_check_credentials_lists_hosts_without_token():
    settings = Settings(_env_file=None, github_token="ghp-test", enterprise_host="github.ibm.com")

    settings.check_credentials(["https://github.com/acme/api.git"])
    with pytest.raises(ConfigError, match="github.ibm.com"):
        settings.check_credentials(["https://github.com/acme/api.git", "https://github.ibm.com/acme/web.git"])


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("PATCHPRO_MAX_WORKERS", "8")
    monkeypatch.setenv("PATCHPRO_REPORT_NOOP", "true")
    monkeypatch.setenv("PATCHPRO_SYSTEM_PACKAGES", '["busybox"]')

    settings = Settings(_env_file=None)

    assert settings.max_workers == 8
    assert settings.report_noop is True
    assert settings.system_packages == ["busybox"]
    assert settings.issue_start == 1000


def test_settings_from_env_file(tmp_path):
    env_file = tmp_path / "patchpro.env"
    env_file.write_text("PATCHPRO_GITHUB_TOKEN=from-file\nPATCHPRO_DUE_DAYS=14\n", encoding="utf-8")

    settings = Settings(_env_file=env_file)

    assert settings.github_token == "from-file"
    assert settings.due_days == 14


def test_url_host():
    assert url_host("https://github.com/acme/api.git") == "github.com"
    assert url_host("git@github.ibm.com:acme/api.git") == "github.ibm.com"
