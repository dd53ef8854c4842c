"""Repository Reconciler - fork-aware git state checks and upstream sync.

Tracked checkouts are forks: ``origin`` points at the user's fork and a
designated upstream remote (``upstream`` by default) at the source of truth.

* ``check_state`` is read-only and never touches the network. It compares the
  local branch with the *locally cached* upstream ref, so its numbers are only
  as fresh as the last ``sync``.
* ``sync`` fetches the upstream remote and converges the current branch onto
  it: fast-forward when that is possible and the tree is clean, otherwise a
  destructive ``reset --hard`` + ``clean -fd``.
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from core.errors import CommandError, DaemonError, RepositoryError
from core.logging import get_logger
from core.process import run_command
from models.state import RepositoryFacts

logger = get_logger(__name__)

# Never block on a credential prompt from a daemon
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class SyncStrategy(str, Enum):
    """How a sync converged the branch."""
    FAST_FORWARD = "fast-forward"
    RESET = "reset"


class RepositoryReconciler:
    """Git operations for tracked repositories, implemented over the git CLI."""

    def __init__(
        self,
        remote: str = "upstream",
        upstream_branch: str = "main",
        command_timeout: float = 120.0,
    ):
        self.remote = remote
        self.upstream_branch = upstream_branch
        self.command_timeout = command_timeout
        # One sync per checkout at a time; concurrent runs collide on index.lock
        self._sync_locks: Dict[str, asyncio.Lock] = {}

    async def _git(self, repo_path: str, *args: str, check: bool = True):
        return await run_command(
            ["git", "-C", repo_path, *args],
            env=GIT_ENV,
            check=check,
            timeout=self.command_timeout,
        )

    # =========================================================================
    # READ PATH (no network)
    # =========================================================================

    async def check_state(self, repo_path: str) -> RepositoryFacts:
        """Report branch, local modifications and commits behind upstream.

        ``commits_behind_upstream`` is relative to the last fetch. When the
        upstream ref has never been fetched (or the remote is not configured)
        it is reported as 0.
        """
        await self._verify_repo(repo_path)
        branch = await self.current_branch(repo_path)
        dirty = await self.has_local_changes(repo_path)
        behind = await self._commits_behind(repo_path, branch)

        return RepositoryFacts(
            name=Path(repo_path.rstrip("/")).name or repo_path,
            path=repo_path,
            current_branch=branch,
            commits_behind_upstream=behind,
            has_local_changes=dirty,
        )

    async def _verify_repo(self, repo_path: str) -> None:
        result = await self._git(repo_path, "rev-parse", "--git-dir", check=False)
        if not result.ok:
            raise RepositoryError(repo_path, "not a git repository")

    async def current_branch(self, repo_path: str) -> str:
        try:
            result = await self._git(repo_path, "rev-parse", "--abbrev-ref", "HEAD")
        except CommandError as e:
            raise RepositoryError(repo_path, f"failed to get current branch: {e}") from e
        branch = result.stdout.strip()
        if not branch:
            raise RepositoryError(repo_path, "empty branch name")
        return branch

    async def has_local_changes(self, repo_path: str) -> bool:
        """True for any modified, staged, deleted or untracked file."""
        try:
            result = await self._git(repo_path, "status", "--porcelain")
        except CommandError as e:
            raise RepositoryError(repo_path, f"failed to check status: {e}") from e
        return result.stdout.strip() != ""

    async def _commits_behind(self, repo_path: str, branch: str) -> int:
        upstream_ref = f"{self.remote}/{self.upstream_branch}"
        result = await self._git(repo_path, "rev-list", "--count", f"{branch}..{upstream_ref}", check=False)
        if not result.ok:
            # Reported the same as "up to date"
            logger.debug("Upstream ref not available, reporting 0 behind",
                         repository=repo_path, ref=upstream_ref)
            return 0
        try:
            return int(result.stdout.strip())
        except ValueError as e:
            raise RepositoryError(repo_path, f"failed to parse commit count: {result.stdout!r}") from e

    # =========================================================================
    # SYNC (network + working tree changes)
    # =========================================================================

    async def sync(self, repo_path: str) -> SyncStrategy:
        """Fetch the upstream remote and converge the current branch onto it.

        A sync already running on the same checkout is waited for first.
        """
        lock = self._sync_locks.setdefault(str(Path(repo_path).resolve()), asyncio.Lock())
        async with lock:
            return await self._sync(repo_path)

    async def _sync(self, repo_path: str) -> SyncStrategy:
        logger.info("Starting repository sync", repository=repo_path, remote=self.remote)
        await self._verify_repo(repo_path)

        branch = await self.current_branch(repo_path)
        target = f"{self.remote}/{branch}"

        await self._ensure_remote(repo_path)
        await self._fetch(repo_path)

        if await self.has_local_changes(repo_path):
            # Local modifications always take the destructive path
            logger.warning("Repository has local changes, resetting to upstream",
                           repository=repo_path, target=target)
            await self._reset_hard(repo_path, target)
            strategy = SyncStrategy.RESET
        else:
            try:
                await self._git(repo_path, "merge", "--ff-only", target)
                strategy = SyncStrategy.FAST_FORWARD
            except CommandError as e:
                logger.warning("Fast-forward merge failed, falling back to hard reset",
                               repository=repo_path, target=target, error=e.stderr)
                await self._reset_hard(repo_path, target)
                strategy = SyncStrategy.RESET

        logger.info("Repository sync completed", repository=repo_path, branch=branch, strategy=strategy.value)
        return strategy

    async def sync_all(self, repositories: Dict[str, str]) -> Dict[str, SyncStrategy]:
        """Sync every repository; failures are collected, not short-circuited."""
        results: Dict[str, SyncStrategy] = {}
        errors: List[str] = []
        for name, path in repositories.items():
            try:
                results[name] = await self.sync(path)
            except (DaemonError, OSError) as e:
                logger.error("Repository sync failed", repository=name, error=str(e))
                errors.append(f"{name}: {e}")

        if errors:
            raise DaemonError(f"failed to sync repositories: {'; '.join(errors)}")
        return results

    async def _ensure_remote(self, repo_path: str) -> None:
        result = await self._git(repo_path, "remote", "get-url", self.remote, check=False)
        if not result.ok:
            raise RepositoryError(
                repo_path,
                f"{self.remote} remote not configured (use: git remote add {self.remote} <url>)",
            )

    async def _fetch(self, repo_path: str) -> None:
        try:
            await self._git(repo_path, "fetch", self.remote)
        except CommandError as e:
            raise RepositoryError(repo_path, f"failed to fetch {self.remote}: {e}") from e

    async def _reset_hard(self, repo_path: str, target: str) -> None:
        try:
            await self._git(repo_path, "reset", "--hard", target)
            await self._git(repo_path, "clean", "-fd")
        except CommandError as e:
            raise RepositoryError(repo_path, f"failed to reset to {target}: {e}") from e

    async def head_revision(self, repo_path: str) -> Optional[str]:
        """Current HEAD commit hash, or None when it cannot be resolved."""
        result = await self._git(repo_path, "rev-parse", "HEAD", check=False)
        return result.stdout.strip() if result.ok else None
