"""
ref_classifier.py – sort refs into HEAD / local / remote / tag and decide,
per remote, whether its branches belong to the invoking user.

Ownership is one pure function, :func:`remote_ownership`, with a fixed list
of outcomes (:class:`OwnershipReason`) so each (remote, username) case can be
checked on its own.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterable, NamedTuple, Sequence

from git_tree_errors import RepositoryError
from repo_snapshot import HEAD, CommitId, RawRef, RepositorySnapshot

logger = logging.getLogger(__name__)

__all__ = [
    "RefOrigin",
    "Ref",
    "OwnershipReason",
    "Ownership",
    "Classification",
    "classify_ref",
    "identity_matches",
    "url_owner_matches",
    "branch_named_after",
    "remote_ownership",
    "classify_refs",
]

_LOCAL_PREFIX = "refs/heads/"
_REMOTE_PREFIX = "refs/remotes/"
_TAG_PREFIX = "refs/tags/"

# "Name <email>"
_IDENTITY = re.compile(r"^(?P<name>.*?)\s*<(?P<email>[^>]*)>\s*$")


class RefOrigin(Enum):
    HEAD = "head"
    LOCAL = "local"
    REMOTE = "remote"
    TAG = "tag"


class Ref(NamedTuple):
    """A classified ref. ``name`` is the short name (``main``, ``origin/main``)."""

    name: str
    target: CommitId
    origin: RefOrigin
    remote: str | None = None  # only for REMOTE refs
    branch: str | None = None  # branch part of a LOCAL or REMOTE ref, HEAD's branch
    upstream: str | None = None  # short name of a LOCAL ref's upstream


class OwnershipReason(Enum):
    NO_USERNAME = "no username configured"
    REMOTE_NAME = "remote is named after the user"
    URL_OWNER = "remote URL is under the user"
    BRANCH_NAMES = "every branch is named after the user"
    TIP_AUTHOR = "every branch tip was authored by the user"
    AMBIGUOUS = "no branch tips to judge by"
    NO_MATCH = "nothing ties the remote to the user"


_OWNED_REASONS = frozenset(
    {
        OwnershipReason.REMOTE_NAME,
        OwnershipReason.URL_OWNER,
        OwnershipReason.BRANCH_NAMES,
        OwnershipReason.TIP_AUTHOR,
    }
)


class Ownership(NamedTuple):
    owned: bool
    reason: OwnershipReason

    @classmethod
    def because(cls, reason: OwnershipReason) -> Ownership:
        return cls(reason in _OWNED_REASONS, reason)


class Classification(NamedTuple):
    """Output of :func:`classify_refs`; consumed by the candidate selector."""

    refs: tuple[Ref, ...]
    ownership: dict[str, Ownership]  # remote name -> decision

    def of(self, origin: RefOrigin) -> list[Ref]:
        return [r for r in self.refs if r.origin is origin]

    def is_owned(self, remote: str) -> bool:
        decision = self.ownership.get(remote)
        return decision is not None and decision.owned


# ── ref names ────────────────────────────────────────────────────────────
def _split_remote_ref(short: str, remotes: Sequence[str]) -> tuple[str, str]:
    """Split ``origin/feature/x`` into remote and branch, longest remote first."""
    for remote in sorted(remotes, key=len, reverse=True):
        if short.startswith(remote + "/"):
            return remote, short[len(remote) + 1 :]
    remote, _, branch = short.partition("/")
    return remote, branch


def _shorten(full_name: str) -> str:
    for prefix in (_LOCAL_PREFIX, _REMOTE_PREFIX, _TAG_PREFIX):
        if full_name.startswith(prefix):
            return full_name[len(prefix) :]
    return full_name


def classify_ref(
    raw: RawRef, remotes: Sequence[str] = (), head_branch: str | None = None
) -> Ref | None:
    """Classify one ref. Returns None for namespaces git-tree does not look at.

    *head_branch* is the full name of the branch HEAD is on, if any.
    """
    name = raw.name
    if name == HEAD:
        branch = _shorten(head_branch) if head_branch else None
        return Ref(HEAD, raw.target, RefOrigin.HEAD, branch=branch)

    if name.startswith(_LOCAL_PREFIX):
        short = name[len(_LOCAL_PREFIX) :]
        if not short:
            raise RepositoryError(f"malformed branch ref {name!r}")
        upstream = _shorten(raw.upstream) if raw.upstream else None
        return Ref(short, raw.target, RefOrigin.LOCAL, branch=short, upstream=upstream)

    if name.startswith(_REMOTE_PREFIX):
        short = name[len(_REMOTE_PREFIX) :]
        remote, branch = _split_remote_ref(short, remotes)
        if not remote or not branch:
            raise RepositoryError(f"malformed remote-tracking ref {name!r}")
        return Ref(short, raw.target, RefOrigin.REMOTE, remote=remote, branch=branch)

    if name.startswith(_TAG_PREFIX):
        short = name[len(_TAG_PREFIX) :]
        if not short:
            raise RepositoryError(f"malformed tag ref {name!r}")
        return Ref(short, raw.target, RefOrigin.TAG)

    logger.debug("ignoring ref %s", name)
    return None


# ── ownership heuristics ─────────────────────────────────────────────────
def identity_matches(identity: str, username: str) -> bool:
    """True when *identity* ("Name <email>") names *username*.

    Matches the full name, the full email, or the email's local part, ignoring
    case.
    """
    wanted = username.strip().casefold()
    if not wanted:
        return False
    match = _IDENTITY.match(identity)
    if not match:
        return identity.strip().casefold() == wanted
    name = match["name"].strip().casefold()
    email = match["email"].strip().casefold()
    return wanted in (name, email, email.partition("@")[0])


def _url_path_segments(url: str) -> list[str]:
    if "://" in url:
        path = url.split("://", 1)[1]
        path = path.partition("/")[2]  # drop user@host:port
    elif re.match(r"^[^/:]+:", url) and not re.match(r"^[A-Za-z]:[\\/]", url):
        path = url.partition(":")[2]  # scp-like git@host:owner/repo
    else:
        path = url
    return [s for s in re.split(r"[\\/]+", path) if s]


def url_owner_matches(url: str, username: str) -> bool:
    """True when a non-final path segment of *url* equals *username*."""
    wanted = username.strip().casefold()
    segments = _url_path_segments(url.strip())
    return bool(wanted) and any(s.casefold() == wanted for s in segments[:-1])


def branch_named_after(branch: str, username: str) -> bool:
    """True for ``alice/...`` and ``users/alice/...`` when *username* is alice."""
    wanted = username.strip().casefold()
    parts = branch.casefold().split("/")
    if not wanted or len(parts) < 2:
        return False
    return parts[0] == wanted or (len(parts) > 2 and parts[:2] == ["users", wanted])


def remote_ownership(
    remote: str,
    username: str | None,
    url: str | None = None,
    tip_identities: Iterable[str] = (),
    branch_names: Iterable[str] = (),
) -> Ownership:
    """Decide whether *remote* belongs to *username*.

    *tip_identities* are the author identities of the remote's branch tips
    and *branch_names* the names of those branches, remote prefix removed.
    Anything that cannot be decided either way is treated as foreign.
    """
    if not username or not username.strip():
        return Ownership.because(OwnershipReason.NO_USERNAME)
    if remote.casefold() == username.strip().casefold():
        return Ownership.because(OwnershipReason.REMOTE_NAME)
    if url and url_owner_matches(url, username):
        return Ownership.because(OwnershipReason.URL_OWNER)
    names = list(branch_names)
    if names and all(branch_named_after(n, username) for n in names):
        return Ownership.because(OwnershipReason.BRANCH_NAMES)
    identities = list(tip_identities)
    if not identities:
        return Ownership.because(OwnershipReason.AMBIGUOUS)
    if all(identity_matches(i, username) for i in identities):
        return Ownership.because(OwnershipReason.TIP_AUTHOR)
    return Ownership.because(OwnershipReason.NO_MATCH)


def classify_refs(
    snapshot: RepositorySnapshot, username: str | None = None
) -> Classification:
    """Classify every ref in *snapshot* and decide ownership for each remote.

    *username* defaults to the one stored on the snapshot.
    """
    if username is None:
        username = snapshot.username

    refs: list[Ref] = []
    for raw in snapshot.refs:
        ref = classify_ref(raw, snapshot.remotes, snapshot.head_branch)
        if ref is not None:
            refs.append(ref)

    refs_by_remote: dict[str, list[Ref]] = {}
    for remote in snapshot.remotes:
        refs_by_remote.setdefault(remote, [])
    for ref in refs:
        if ref.origin is RefOrigin.REMOTE:
            refs_by_remote.setdefault(ref.remote, []).append(ref)

    ownership: dict[str, Ownership] = {}
    for remote, remote_refs in refs_by_remote.items():
        identities = [snapshot.commit(r.target).author for r in remote_refs]
        decision = remote_ownership(
            remote,
            username,
            snapshot.remote_urls.get(remote),
            identities,
            [r.branch for r in remote_refs if r.branch != HEAD],
        )
        if decision.reason is OwnershipReason.AMBIGUOUS:
            logger.info("cannot attribute remote %s; treating it as foreign", remote)
        logger.debug(
            "remote %s: %s (%s)",
            remote,
            "owned" if decision.owned else "foreign",
            decision.reason.value,
        )
        ownership[remote] = decision

    return Classification(tuple(refs), ownership)
