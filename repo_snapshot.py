"""
repo_snapshot.py – a read-only view of a repository's refs and commit graph.

Everything is read up front through the ``git`` executable and then held in
memory for the rest of the run:

    from repo_snapshot import GitRepository, read_snapshot
    snapshot = read_snapshot(GitRepository("path/to/repo"))
    snapshot.commits[snapshot.head].parent_ids

Commits live in one flat table keyed by id; nothing else holds a copy.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Iterable, Iterator, NamedTuple, NewType, Sequence

from git_tree_errors import InternalInvariantViolation, RepositoryError

logger = logging.getLogger(__name__)

CommitId = NewType("CommitId", str)

HEAD = "HEAD"

# sha1 or sha256 object names
_OBJECT_ID = re.compile(r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$")

# git log output: fields split by US, records terminated by RS
_LOG_FORMAT = "--format=%H%x1f%P%x1f%an <%ae>%x1f%cn <%ce>%x1f%ct%x1e"
_FIELD_SEP = "\x1f"
_RECORD_SEP = "\x1e"

_REF_FORMAT = (
    "--format=%(objectname)%00%(objecttype)%00%(*objectname)%00"
    "%(*objecttype)%00%(refname)%00%(upstream)"
)
_REF_NAMESPACES = ("refs/heads", "refs/remotes", "refs/tags")


class Commit(NamedTuple):
    """A commit as read from the repository. Never mutated."""

    id: CommitId
    parent_ids: tuple[CommitId, ...] = ()
    author: str = ""  # "Name <email>"
    committer: str = ""
    committed_at: int = 0  # committer timestamp, seconds since the epoch

    @property
    def is_root(self) -> bool:
        return not self.parent_ids

    @property
    def is_merge(self) -> bool:
        return len(self.parent_ids) >= 2


class RawRef(NamedTuple):
    """A ref exactly as enumerated: full name, the commit it peels to, upstream."""

    name: str  # "HEAD" or a full name such as "refs/remotes/origin/main"
    target: CommitId
    upstream: str = ""  # full name of the configured upstream, if any


def parse_commit_id(text: str) -> CommitId:
    """Validate *text* as a full object name and return it as a :data:`CommitId`."""
    value = text.strip().lower()
    if not _OBJECT_ID.match(value):
        raise RepositoryError(f"malformed object name {text!r}")
    return CommitId(value)


class RepositorySnapshot:
    """Refs and commits of one repository, frozen at the time they were read."""

    def __init__(
        self,
        refs: Iterable[RawRef],
        commits: Iterable[Commit],
        *,
        head_branch: str | None = None,
        remotes: Sequence[str] = (),
        remote_urls: dict[str, str] | None = None,
        username: str | None = None,
    ) -> None:
        self.refs: tuple[RawRef, ...] = tuple(refs)
        self.commits: dict[CommitId, Commit] = {c.id: c for c in commits}
        self.head_branch = head_branch
        self.remotes: tuple[str, ...] = tuple(remotes)
        self.remote_urls: dict[str, str] = dict(remote_urls or {})
        self.username = username

    @classmethod
    def from_commits(
        cls,
        commits: Iterable[Commit],
        refs: Iterable[RawRef] = (),
        **kwargs,
    ) -> RepositorySnapshot:
        """Build a snapshot from commits already in memory."""
        return cls(refs, commits, **kwargs)

    def __contains__(self, commit_id: object) -> bool:
        return commit_id in self.commits

    def __len__(self) -> int:
        return len(self.commits)

    def commit(self, commit_id: CommitId) -> Commit:
        try:
            return self.commits[commit_id]
        except KeyError:
            raise InternalInvariantViolation(
                f"commit {commit_id} is not in the repository snapshot"
            ) from None

    @property
    def head(self) -> CommitId:
        for ref in self.refs:
            if ref.name == HEAD:
                return ref.target
        raise InternalInvariantViolation("snapshot has no HEAD ref")


def _describe_failure(cmd: Sequence[str], result: subprocess.CompletedProcess) -> str:
    detail = (result.stderr or result.stdout or "").strip().splitlines()
    reason = detail[-1] if detail else f"exit status {result.returncode}"
    return f"`{' '.join(cmd)}` failed: {reason}"


class GitRepository:
    """Runs read-only git commands against the repository at *path*."""

    def __init__(self, path: str | Path = ".", git: str = "git") -> None:
        self.path = Path(path)
        self.git = git

    def _run(
        self, *args: str, check: bool = True, stdin: str | None = None
    ) -> subprocess.CompletedProcess:
        cmd = [self.git, "-C", str(self.path), *args]
        logger.debug("running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError:
            raise RepositoryError(f"{self.git} not found") from None
        except OSError as exc:
            raise RepositoryError(f"cannot run {self.git}: {exc.strerror or exc}") from None
        if check and result.returncode != 0:
            raise RepositoryError(_describe_failure(cmd, result))
        return result

    def head(self) -> CommitId:
        result = self._run("rev-parse", "--verify", "-q", "HEAD^{commit}", check=False)
        if result.returncode != 0:
            # also the case for a freshly initialised repository
            raise RepositoryError("HEAD does not point at a commit")
        return parse_commit_id(result.stdout)

    def head_branch(self) -> str | None:
        """Full name of the branch HEAD is on, or None when detached."""
        result = self._run("symbolic-ref", "-q", "HEAD", check=False)
        name = result.stdout.strip()
        return name if result.returncode == 0 and name else None

    def refs(self) -> list[RawRef]:
        out = self._run("for-each-ref", _REF_FORMAT, *_REF_NAMESPACES).stdout
        refs: list[RawRef] = []
        for line in out.splitlines():
            if not line:
                continue
            fields = line.split("\0")
            if len(fields) != 6:
                raise RepositoryError(f"unreadable ref line {line!r}")
            obj, obj_type, peeled, peeled_type, name, upstream = fields
            if name.startswith("refs/remotes/") and name.endswith("/HEAD"):
                continue  # symbolic alias of another remote branch
            target_type = peeled_type or obj_type
            if target_type != "commit":
                if name.startswith("refs/tags/"):
                    logger.debug("skipping tag %s pointing at a %s", name, target_type)
                    continue
                raise RepositoryError(f"{name} points at a {target_type}, not a commit")
            refs.append(RawRef(name, parse_commit_id(peeled or obj), upstream))
        return refs

    def remotes(self) -> list[str]:
        return self._run("remote").stdout.split()

    def remote_urls(self) -> dict[str, str]:
        result = self._run(
            "config", "--get-regexp", r"^remote\..*\.url$", check=False
        )
        urls: dict[str, str] = {}
        for line in result.stdout.splitlines():
            key, _, url = line.partition(" ")
            remote = key[len("remote.") : -len(".url")]
            if remote:
                urls.setdefault(remote, url.strip())
        return urls

    def config_value(self, key: str) -> str | None:
        result = self._run("config", "--get", key, check=False)
        value = result.stdout.strip()
        return value if result.returncode == 0 and value else None

    def commits(self, tips: Iterable[CommitId]) -> Iterator[Commit]:
        """Yield the commits at *tips* and all their ancestors."""
        revs = "\n".join(dict.fromkeys(tips))
        if not revs:
            return
        args = ["log", "--no-color", "--no-show-signature", _LOG_FORMAT, "--stdin"]
        out = self._run(*args, stdin=revs + "\n").stdout
        for record in out.split(_RECORD_SEP):
            record = record.strip("\n")
            if record:
                yield _parse_commit(record)


def _parse_commit(record: str) -> Commit:
    fields = record.split(_FIELD_SEP)
    if len(fields) != 5:
        raise RepositoryError(f"unreadable commit record {record[:80]!r}")
    sha, parents, author, committer, timestamp = fields
    try:
        committed_at = int(timestamp)
    except ValueError:
        raise RepositoryError(f"bad commit timestamp {timestamp!r} on {sha}") from None
    return Commit(
        id=parse_commit_id(sha),
        parent_ids=tuple(parse_commit_id(p) for p in parents.split()),
        author=author,
        committer=committer,
        committed_at=committed_at,
    )


def read_snapshot(repo: GitRepository, *, username: str | None = None) -> RepositorySnapshot:
    """Read refs, remotes and the commit graph behind every branch and HEAD.

    Tags and other refs are kept by name only; their commits are loaded when
    some branch or HEAD reaches them.

    *username* is stored as given; when None the ``tree.user`` git config
    value is used, if set.
    """
    head = repo.head()
    refs = [RawRef(HEAD, head), *repo.refs()]

    branch_refs = [
        r for r in refs if r.name == HEAD or r.name.startswith(("refs/heads/", "refs/remotes/"))
    ]
    commits = {c.id: c for c in repo.commits(r.target for r in branch_refs)}

    for ref in branch_refs:
        if ref.target not in commits:
            raise RepositoryError(f"{ref.name} points at missing commit {ref.target}")

    if username is None:
        username = repo.config_value("tree.user")

    logger.debug("snapshot: %d refs, %d commits", len(refs), len(commits))
    return RepositorySnapshot(
        refs,
        commits.values(),
        head_branch=repo.head_branch(),
        remotes=repo.remotes(),
        remote_urls=repo.remote_urls(),
        username=username,
    )
