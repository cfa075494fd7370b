"""Pull-request creation against GitHub and GitHub Enterprise."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import requests

from patchpro.core.config import Settings

logger = logging.getLogger(__name__)


class ForgeError(RuntimeError):
    pass


def split_owner_repo(url: str) -> Tuple[str, str]:
    """``https://host/owner/repo.git`` -> ``("owner", "repo")``."""
    parts = url.rstrip("/").removesuffix(".git").replace(":", "/").split("/")
    if len(parts) < 2 or not parts[-1] or not parts[-2]:
        raise ForgeError(f"Cannot determine owner/repo from {url}")
    return parts[-2], parts[-1]


class ForgeClient:
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None, timeout: int = 30):
        self.settings = settings
        self.session = session or requests.Session()
        self.timeout = timeout

    def create_pull_request(
        self,
        repo_url: str,
        base_branch: str,
        head_branch: str,
        title: str,
        body: str,
    ) -> str:
        """Open a pull request and return its HTML URL."""
        owner, repo = split_owner_repo(repo_url)
        creds = self.settings.credentials_for(repo_url)
        url = f"{creds.api_base}/repos/{owner}/{repo}/pulls"
        logger.info("Creating PR for %s/%s (base %s, head %s)", owner, repo, base_branch, head_branch)

        try:
            resp = self.session.post(
                url,
                json={"title": title, "body": body, "head": head_branch, "base": base_branch},
                headers={
                    "Authorization": f"token {creds.token}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise ForgeError(f"PR request failed: {exc}") from exc

        if resp.status_code != 201:
            raise ForgeError(f"PR creation failed ({resp.status_code}): {resp.text}")

        try:
            return resp.json()["html_url"]
        except (ValueError, KeyError) as exc:
            raise ForgeError("PR response missing html_url") from exc
