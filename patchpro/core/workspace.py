"""Local checkouts of remediated repositories.

A workspace is keyed by host, owner and repository name. Checkouts either
persist under a cache directory between runs or live in a temporary
directory for the duration of one job. In both modes only one job may hold
a key at a time, and a cached checkout is reused only for its own origin.
"""

from __future__ import annotations

import base64
import logging
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

import git

from patchpro.core.utils import ensure_dir

logger = logging.getLogger(__name__)

UP_TO_DATE_MARKERS = ("everything up-to-date", "already up to date", "already up-to-date")


class WorkspaceError(RuntimeError):
    pass


def git_auth_env(token: str) -> Dict[str, str]:
    """Environment that makes git send a basic-auth header for HTTPS remotes.

    Keeps the token out of remote URLs, ``.git/config`` and process args.
    """
    if not token:
        return {"GIT_TERMINAL_PROMPT": "0"}
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return {
        "GIT_TERMINAL_PROMPT": "0",
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    }


def _describe(exc: git.GitCommandError) -> str:
    return (exc.stderr or exc.stdout or str(exc)).strip()


def workspace_key(url: str) -> str:
    """``https://host/owner/repo.git`` -> ``host/owner/repo``.

    Repositories that share a name under different owners get distinct keys.
    """
    path = url.split("://", 1)[-1].split("@", 1)[-1].replace(":", "/")
    parts = [p for p in path.removesuffix(".git").split("/") if p]
    if not parts:
        raise WorkspaceError(f"Cannot derive a workspace from {url!r}")
    return "/".join(parts[-3:])


class SlugLocks:
    """One lock per workspace key, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(key, threading.Lock())

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        if not lock.acquire(blocking=False):
            logger.info("Waiting for workspace %s held by another job", key)
            lock.acquire()
        try:
            yield
        finally:
            lock.release()


class Workspace:
    def __init__(self, path: Path, repo: git.Repo, base_branch: str, auth_env: Dict[str, str]):
        self.path = path
        self.repo = repo
        self.base_branch = base_branch
        self._auth_env = auth_env

    def _git(self, command: str, *args, auth: bool = False, **kwargs) -> str:
        method = getattr(self.repo.git, command)
        try:
            if auth:
                with self.repo.git.custom_environment(**self._auth_env):
                    return method(*args, **kwargs)
            return method(*args, **kwargs)
        except git.GitCommandError as exc:
            raise WorkspaceError(f"git {command} failed: {_describe(exc)}") from exc

    def refresh(self) -> None:
        """Reset the checkout to the remote tip of the base branch."""
        self._git("fetch", "origin", self.base_branch, auth=True, depth=1, force=True)
        self._git("checkout", "-f", "-B", self.base_branch, "FETCH_HEAD")
        self._git("clean", "-fdx")

    def checkout_branch(self, name: str) -> None:
        # -B resets a same-named branch left over from an earlier run today.
        self._git("checkout", "-B", name)

    def has_changes(self) -> bool:
        return self.repo.is_dirty(untracked_files=True)

    def discard(self) -> None:
        self._git("reset", "--hard")
        self._git("clean", "-fdx")
        self._git("checkout", "-f", self.base_branch)

    def commit(self, message: str, name: str, email: str) -> str:
        self._git("add", A=True)
        identity = {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
        }
        try:
            with self.repo.git.custom_environment(**identity):
                self.repo.git.commit("-m", message)
        except git.GitCommandError as exc:
            raise WorkspaceError(f"git commit failed: {_describe(exc)}") from exc
        return self.repo.head.commit.hexsha

    def push(self, branch: str) -> bool:
        """Push ``branch`` to origin. Returns False if the remote was already current.

        The dated branch belongs to the bot, so a rerun on the same day
        replaces what an earlier run pushed under that name.
        """
        refspec = f"+refs/heads/{branch}:refs/heads/{branch}"
        try:
            with self.repo.git.custom_environment(**self._auth_env):
                _, _, stderr = self.repo.git.push("origin", refspec, with_extended_output=True)
        except git.GitCommandError as exc:
            detail = _describe(exc)
            if any(marker in detail.lower() for marker in UP_TO_DATE_MARKERS):
                logger.info("Branch %s already up to date on origin", branch)
                return False
            raise WorkspaceError(f"git push failed: {detail}") from exc
        if any(marker in (stderr or "").lower() for marker in UP_TO_DATE_MARKERS):
            logger.info("Branch %s already up to date on origin", branch)
            return False
        return True

    def origin_url(self) -> Optional[str]:
        for remote in self.repo.remotes:
            if remote.name == "origin":
                return remote.url
        return None


class WorkspaceManager:
    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        token_for: Callable[[str], str] = lambda url: "",
        locks: Optional[SlugLocks] = None,
    ):
        # cache_dir None means a fresh temporary clone per job.
        self.cache_dir = cache_dir
        self.token_for = token_for
        self.locks = locks or SlugLocks()

    @contextmanager
    def acquire(self, url: str, branch: str) -> Iterator[Workspace]:
        key = workspace_key(url)
        with self.locks.hold(key):
            if self.cache_dir is None:
                name = key.rsplit("/", 1)[-1]
                tmp = Path(tempfile.mkdtemp(prefix=f"patchpro-{name}-"))
                try:
                    yield self._open(tmp / name, url, branch)
                finally:
                    shutil.rmtree(tmp, ignore_errors=True)
            else:
                path = self.cache_dir / key
                ensure_dir(path.parent)
                yield self._open(path, url, branch)

    def _open(self, path: Path, url: str, branch: str) -> Workspace:
        auth_env = git_auth_env(self.token_for(url))
        workspace = self._reuse(path, url, branch, auth_env)
        if workspace is not None:
            return workspace

        logger.info("Cloning %s (branch %s) into %s", url, branch, path)
        try:
            repo = git.Repo.clone_from(url, str(path), env=auth_env, branch=branch, depth=1)
        except git.GitCommandError as exc:
            raise WorkspaceError(f"git clone failed: {_describe(exc)}") from exc
        return Workspace(path, repo, branch, auth_env)

    def _reuse(self, path: Path, url: str, branch: str, auth_env: Dict[str, str]) -> Optional[Workspace]:
        """Refresh a cached checkout of ``url``; anything else at ``path`` is removed."""
        if not path.exists():
            return None
        if (path / ".git").is_dir():
            try:
                workspace = Workspace(path, git.Repo(path), branch, auth_env)
            except git.InvalidGitRepositoryError:
                logger.warning("Discarding corrupt workspace %s", path)
            else:
                if workspace.origin_url() == url:
                    logger.info("Refreshing workspace %s (branch %s)", path, branch)
                    workspace.refresh()
                    return workspace
                logger.warning("Discarding workspace %s: origin is not %s", path, url)
        shutil.rmtree(path)
        return None
