"""Shared fixtures: in-memory commit graphs and throwaway git repositories."""

import hashlib
import os
import shutil
import subprocess
from pathlib import Path

import pytest

from repo_snapshot import Commit, CommitId, RawRef, RepositorySnapshot


def cid(label: str) -> CommitId:
    """Stable 40-hex commit id for a readable label."""
    return CommitId(hashlib.sha1(label.encode()).hexdigest())


class GraphBuilder:
    """Builds a commit table from labels: ``g.add("C", "B")`` makes C a child of B.

    Commits get increasing committer timestamps in the order they are added,
    unless ``at=`` is given.
    """

    def __init__(self):
        self.commits: dict[CommitId, Commit] = {}
        self._clock = 1_000

    def add(self, label, *parents, at=None, author="Someone <someone@example.com>"):
        self._clock += 10
        commit = Commit(
            id=cid(label),
            parent_ids=tuple(cid(p) for p in parents),
            author=author,
            committer=author,
            committed_at=self._clock if at is None else at,
        )
        self.commits[commit.id] = commit
        return commit.id

    def chain(self, labels, parent=None):
        """Add a line of commits, each a child of the previous one."""
        for label in labels:
            self.add(label, *([parent] if parent else []))
            parent = label
        return cid(labels[-1])

    def snapshot(self, refs=(), **kwargs) -> RepositorySnapshot:
        raw = [RawRef(name, cid(target), upstream) for name, target, upstream in refs]
        return RepositorySnapshot.from_commits(self.commits.values(), raw, **kwargs)


@pytest.fixture
def graph():
    return GraphBuilder()


# ── real repositories ────────────────────────────────────────────────────
requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


class GitRepo:
    """A scratch repository driven through the git CLI."""

    def __init__(self, path: Path):
        self.path = path
        self._clock = 1_700_000_000

    def git(self, *args) -> str:
        self._clock += 60
        env = dict(
            os.environ,
            GIT_AUTHOR_DATE=f"{self._clock} +0000",
            GIT_COMMITTER_DATE=f"{self._clock} +0000",
        )
        result = subprocess.run(
            ["git", *args], cwd=self.path, env=env, capture_output=True, text=True, check=True
        )
        return result.stdout.strip()

    def commit(self, message: str, author: str | None = None) -> str:
        args = ["commit", "--allow-empty", "-q", "-m", message]
        if author:
            args += ["--author", author]
        self.git(*args)
        return self.git("rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_DIR", raising=False)
    path = tmp_path / "repo"
    path.mkdir()
    repo = GitRepo(path)
    repo.git("init", "-q")
    repo.git("symbolic-ref", "HEAD", "refs/heads/main")
    repo.git("config", "user.name", "Test User")
    repo.git("config", "user.email", "test@example.com")
    repo.git("config", "commit.gpgsign", "false")
    return repo
