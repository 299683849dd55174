"""Test configuration and fixtures."""

import subprocess
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from collab_machine.config import Settings
from collab_machine.machine import Machine, canonical_message, create_machine, generate_keypair, sign
from collab_machine.machine.signing import KeyPair

TS = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

SAMPLE_DIFF = """\
--- a/README.md
+++ b/README.md
@@ -1 +1 @@
-hello
+hello, world
"""


class FakeGit:
    """Records collaborator calls; ``fail_at`` names the step that returns False."""

    def __init__(self, fail_at: Optional[str] = None):
        self.fail_at = fail_at
        self.calls: List[Tuple[str, ...]] = []

    def _step(self, name: str, *args: str) -> bool:
        self.calls.append((name, *args))
        return name != self.fail_at

    def apply_patch(self, diff: str) -> bool:
        return self._step("apply_patch", diff)

    def merge_to_mainline(self) -> bool:
        return self._step("merge_to_mainline")

    def push(self) -> bool:
        return self._step("push")

    @property
    def steps(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def maintainer() -> KeyPair:
    return generate_keypair()


@pytest.fixture
def author() -> KeyPair:
    return generate_keypair()


@pytest.fixture
def stranger() -> KeyPair:
    return generate_keypair()


@pytest.fixture
def settings(maintainer: KeyPair) -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(
        _env_file=None,
        machine_id="test-machine",
        maintainer=maintainer.public_key,
    )


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def machine(settings: Settings, fake_git: FakeGit) -> Machine:
    """A bootstrapped machine wired to a recording git collaborator."""
    return create_machine(settings, git=fake_git)


@pytest.fixture
def issue_args(settings: Settings) -> Callable[..., Dict[str, Any]]:
    """Factory for signed create-issue arguments."""

    def make(
        keys: KeyPair,
        issue_id: str = "issue-1",
        title: str = "Crash on start",
        body: str = "Steps to reproduce: run it.",
        machine_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        message = canonical_message(machine_id or settings.machine_id, issue_id, title, body)
        return {
            "id": issue_id,
            "author": keys.public_key,
            "title": title,
            "body": body,
            "signature": sign(keys.secret_key, message),
        }

    return make


@pytest.fixture
def patch_args() -> Dict[str, Any]:
    return {
        "title": "Greet the world",
        "body": "Makes the README friendlier.",
        "diff": SAMPLE_DIFF,
        "commit": "abc1234",
    }


def run_git(path, *args) -> str:
    return subprocess.run(["git", *args], cwd=path, capture_output=True, text=True, check=True).stdout


@pytest.fixture
def repo(tmp_path):
    """A working copy on ``main`` with one committed README."""
    run_git(tmp_path, "init", "-q")
    run_git(tmp_path, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(tmp_path, "config", "user.email", "machine@example.com")
    run_git(tmp_path, "config", "user.name", "Collab Machine")
    (tmp_path / "README.md").write_text("hello\n")
    run_git(tmp_path, "add", "README.md")
    run_git(tmp_path, "commit", "-q", "-m", "Initial commit")
    return tmp_path


@pytest.fixture
def diff(repo):
    """A diff turning the README greeting into ``hello, world``."""
    (repo / "README.md").write_text("hello, world\n")
    text = run_git(repo, "diff")
    run_git(repo, "checkout", "--", "README.md")
    return text
