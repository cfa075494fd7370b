"""Runtime configuration loaded from the environment and an optional ``.env``."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict

from patchpro.core.utils import get_cache_dir

PUBLIC_HOST = "github.com"
PUBLIC_API = "https://api.github.com"


class ConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class HostCredentials:
    host: str
    api_base: str
    token: str


def url_host(url: str) -> str:
    if "://" not in url and "@" in url:
        # scp-like git@host:owner/repo.git
        return url.split("@", 1)[1].split(":", 1)[0].lower()
    return (urlparse(url).hostname or "").lower()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PATCHPRO_",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Forge credentials ────────────────────────────────────────────────
    github_token: str = ""
    enterprise_host: str = ""
    enterprise_token: str = ""

    # ── Notifier ─────────────────────────────────────────────────────────
    slack_token: str = ""
    slack_channel: str = ""

    # ── Workspaces ───────────────────────────────────────────────────────
    cache_dir: Path = get_cache_dir() / "repos"
    ephemeral_workspaces: bool = False

    # ── Execution ────────────────────────────────────────────────────────
    max_workers: int = 4
    branch_prefix: str = "patchpro/"
    bot_name: str = "patchpro-bot"
    bot_email: str = "patchpro-bot@users.noreply.github.com"
    command_timeout: int = 600
    report_noop: bool = False
    system_packages: List[str] = []

    # ── Planning ─────────────────────────────────────────────────────────
    issue_start: int = 1000
    due_days: int = 21

    log_level: str = "INFO"

    def credentials_for(self, url: str) -> HostCredentials:
        host = url_host(url)
        if self.enterprise_host and host == self.enterprise_host.lower():
            return HostCredentials(host, f"https://{host}/api/v3", self.enterprise_token)
        return HostCredentials(host or PUBLIC_HOST, PUBLIC_API, self.github_token)

    def check_credentials(self, urls: Iterable[str]) -> None:
        """Fail fast when any repository host has no token configured."""
        missing = sorted({c.host for c in map(self.credentials_for, urls) if not c.token.strip()})
        if missing:
            raise ConfigError(f"No forge token configured for: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    return Settings()


def load_settings(env_file: Optional[Path] = None) -> Settings:
    if env_file is None:
        return get_settings()
    return Settings(_env_file=env_file)
