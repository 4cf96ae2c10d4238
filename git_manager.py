"""
Git integration for genplan.

WHAT THIS FILE DOES:
-------------------
Runs the handful of git commands the execution engine needs: detect a
repository, create or switch to a feature branch, stage and commit exactly
the files a plan touched, and optionally push.

Every command is a plain `git` subprocess with an argument list (never a
shell string), run in the project root. Each call is wrapped in
asyncio.to_thread() so it is one awaited step of the engine's loop; calls are
never issued concurrently.

A non-zero exit raises VersionControlError. The engine records those errors
and keeps going: a failed commit never undoes written files.
"""

import asyncio
import logging
import re
import subprocess
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Optional

from config import GitConfig
from errors import VersionControlError
from schemas import GitStatus

logger = logging.getLogger(__name__)


TRACKING_PATTERN = re.compile(r"\[(?:ahead (?P<ahead>\d+))?(?:, )?(?:behind (?P<behind>\d+))?\]")


class GitManager:
    """
    Thin async wrapper over the git command line.

    Usage:
        git = GitManager(Path("."), config.git)
        if await git.is_git_repository():
            await git.create_branch("genplan-login-form")
            await git.commit("Add login form py", ["src/login.py"])
    """

    def __init__(self, project_root: Path, git_config: Optional[GitConfig] = None):
        self.project_root = Path(project_root)
        self.config = git_config or GitConfig()

    # =========================================================================
    # COMMAND EXECUTION
    # =========================================================================

    def _run_sync(self, args: list[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            ["git", *args],
            cwd=str(self.project_root),
            capture_output=True,
            text=True,
        )

    async def _run(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess:
        """
        Run one git command.

        Args:
            args: Arguments after "git"
            check: Raise VersionControlError on a non-zero exit

        Returns:
            The completed process
        """
        logger.debug(f"git {' '.join(args)}")
        result = await asyncio.to_thread(self._run_sync, args)

        if check and result.returncode != 0:
            raise VersionControlError(args, result.returncode, result.stderr)

        return result

    # =========================================================================
    # STATUS
    # =========================================================================

    async def is_git_repository(self) -> bool:
        """True if the project root is inside a git work tree."""
        try:
            result = await self._run(["rev-parse", "--is-inside-work-tree"], check=False)
        except FileNotFoundError:
            logger.warning("git executable not found")
            return False
        return result.returncode == 0 and result.stdout.strip() == "true"

    async def get_current_branch(self) -> str:
        """Current branch name, or "HEAD" when detached."""
        result = await self._run(["branch", "--show-current"])
        return result.stdout.strip() or "HEAD"

    async def get_status(self) -> GitStatus:
        """
        Summarize the repository.

        Returns:
            GitStatus with is_git_repo=False (and nothing else set) outside a
            repository
        """
        if not await self.is_git_repository():
            return GitStatus(is_git_repo=False)

        current_branch = await self.get_current_branch()

        remote_name = None
        remote_url = None
        remotes = await self._run(["remote", "-v"], check=False)
        first_remote = remotes.stdout.strip().splitlines()[:1]
        if first_remote:
            name, _, rest = first_remote[0].partition("\t")
            remote_name = name.strip()
            remote_url = rest.split(" ")[0] if rest else None

        status = await self._run(["status", "--porcelain=v1", "--branch"])
        lines = status.stdout.splitlines()
        branch_line = next((line for line in lines if line.startswith("##")), "")
        changes = [line for line in lines if line and not line.startswith("##")]

        ahead = behind = 0
        match = TRACKING_PATTERN.search(branch_line)
        if match:
            ahead = int(match.group("ahead") or 0)
            behind = int(match.group("behind") or 0)

        return GitStatus(
            is_git_repo=True,
            current_branch=current_branch,
            has_remote=remote_name is not None,
            remote_name=remote_name,
            remote_url=remote_url,
            has_uncommitted_changes=bool(changes),
            ahead=ahead,
            behind=behind,
        )

    async def get_diff(self, file: Optional[str] = None) -> str:
        """Unstaged diff of the work tree, or of one file."""
        args = ["diff"]
        if file:
            args.extend(["--", file])
        result = await self._run(args)
        return result.stdout

    # =========================================================================
    # BRANCHES
    # =========================================================================

    async def branch_exists(self, branch_name: str) -> bool:
        result = await self._run(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}"],
            check=False,
        )
        return result.returncode == 0

    async def create_branch(self, branch_name: str) -> str:
        """
        Switch to branch_name, creating it from HEAD if it does not exist.

        Returns:
            The branch name
        """
        if await self.branch_exists(branch_name):
            await self._run(["checkout", branch_name])
            logger.info(f"Switched to existing branch {branch_name}")
        else:
            await self._run(["checkout", "-b", branch_name])
            logger.info(f"Created branch {branch_name}")
        return branch_name

    async def create_backup_branch(self) -> str:
        """Point a timestamped branch at HEAD without switching to it."""
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        backup_branch = f"{self.config.branch_prefix}backup-{timestamp}"
        await self._run(["branch", backup_branch])
        return backup_branch

    # =========================================================================
    # COMMITS
    # =========================================================================

    async def stage_files(self, files: list[str]) -> None:
        """Stage exactly the given paths (additions, edits and removals)."""
        if not files:
            return
        await self._run(["add", "--all", "--", *files])

    async def commit(self, message: str, files: Optional[list[str]] = None) -> str:
        """
        Commit with the configured prefix.

        Args:
            message: Message without prefix
            files: Paths to stage first

        Returns:
            The full commit message
        """
        if files:
            await self.stage_files(files)

        prefix = self.config.commit_message_prefix
        full_message = f"{prefix} {message}" if prefix else message
        await self._run(["commit", "-m", full_message])
        logger.info(f"Committed: {full_message}")
        return full_message

    async def push(self, remote: Optional[str] = None, branch: Optional[str] = None) -> None:
        """Push branch to remote; defaults to the current branch on origin with upstream tracking."""
        if remote and branch:
            args = ["push", remote, branch]
        elif remote:
            args = ["push", remote]
        else:
            args = ["push", "--set-upstream", "origin", await self.get_current_branch()]
        await self._run(args)

    def generate_commit_message(self, feature: str, files: list[str], any_created: bool) -> str:
        """
        Commit message (without prefix) for a generation.

        Example:
            generate_commit_message("login form", ["a.py", "b.py"], True)
            -> "Add login form py"
        """
        file_types = {PurePosixPath(f).suffix.lower().lstrip(".") or "config" for f in files}
        action = "Add" if any_created else "Update"

        if len(file_types) == 1:
            type_text = next(iter(file_types))
        else:
            type_text = "components"

        return f"{action} {feature} {type_text}"
