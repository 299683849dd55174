"""
Git collaborator.

The machine never touches a repository while deciding a transition. The
accept transition queues a merge effect that the engine runs through this
interface after the handler returns; a False from any step rolls the
transition back.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger(__name__)

PATCH_BRANCH = "collab/patch"


@runtime_checkable
class GitCollaborator(Protocol):
    """Operations the machine needs from a working copy."""

    def apply_patch(self, diff: str) -> bool:
        ...

    def merge_to_mainline(self) -> bool:
        ...

    def push(self) -> bool:
        ...


def merge_patch(git: GitCollaborator, diff: str) -> bool:
    """Apply, merge and push a diff; stops at the first failing step."""
    return git.apply_patch(diff) and git.merge_to_mainline() and git.push()


class GitRepository:
    """GitCollaborator backed by the git CLI in a local working copy.

    Diffs are applied on a scratch branch cut from the mainline, committed,
    then merged. A failed merge is aborted and a failed push resets the
    mainline to where it was before the merge.
    """

    def __init__(
        self,
        path: Union[str, Path],
        mainline: str = "main",
        remote: Optional[str] = "origin",
        git_binary: str = "git",
    ):
        self.path = Path(path)
        self.mainline = mainline
        self.remote = remote
        self.git_binary = git_binary
        self._pre_merge_head: Optional[str] = None

    def _run(self, *args: str, input_text: Optional[str] = None) -> subprocess.CompletedProcess:
        cmd: List[str] = [self.git_binary, *args]
        logger.debug("Running %s in %s", " ".join(cmd), self.path)
        return subprocess.run(
            cmd,
            cwd=self.path,
            input=input_text,
            capture_output=True,
            text=True,
            check=False,
        )

    def _ok(self, step: str, *args: str, input_text: Optional[str] = None) -> bool:
        try:
            completed = self._run(*args, input_text=input_text)
        except OSError as e:
            logger.error(f"git {step} could not start: {e}")
            return False
        if completed.returncode != 0:
            logger.warning(f"git {step} failed: {completed.stderr.strip()}")
            return False
        return True

    def _head(self) -> Optional[str]:
        try:
            completed = self._run("rev-parse", "HEAD")
        except OSError:
            return None
        return completed.stdout.strip() if completed.returncode == 0 else None

    def apply_patch(self, diff: str) -> bool:
        if not self._ok("checkout", "checkout", "-B", PATCH_BRANCH, self.mainline):
            return False
        if not self._ok("apply", "apply", "--index", "-", input_text=diff):
            self._ok("reset", "reset", "--hard")
            return False
        return self._ok("commit", "commit", "--allow-empty", "-m", "Apply accepted patch")

    def merge_to_mainline(self) -> bool:
        if not self._ok("checkout", "checkout", self.mainline):
            return False
        self._pre_merge_head = self._head()
        if not self._ok("merge", "merge", "--no-ff", "--no-edit", PATCH_BRANCH):
            self._ok("merge --abort", "merge", "--abort")
            return False
        return True

    def push(self) -> bool:
        if not self.remote:
            return True
        if self._ok("push", "push", self.remote, self.mainline):
            return True
        if self._pre_merge_head:
            logger.info(f"Resetting {self.mainline} to {self._pre_merge_head[:12]} after failed push")
            self._ok("reset", "reset", "--hard", self._pre_merge_head)
        return False

    def checkout_patch(self, patch_id: int, commit: str, diff: str) -> bool:
        """Create ``patch/<id>`` at the patch's source commit and apply its diff."""
        branch = f"patch/{patch_id}"
        if not self._ok("checkout", "checkout", "-B", branch, commit):
            return False
        return self._ok("apply", "apply", "-", input_text=diff)


def git_from_settings(settings) -> Optional[GitRepository]:
    """Working copy configured via COLLAB_GIT_REPO_PATH, if any."""
    if not settings.git_repo_path:
        return None
    return GitRepository(
        settings.git_repo_path,
        mainline=settings.git_mainline,
        remote=settings.git_remote or None,
    )
