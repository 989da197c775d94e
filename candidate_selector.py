"""Pick the tip commits that have to show up in the graph."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator

from git_tree_errors import InternalInvariantViolation
from ref_classifier import Classification, Ref, RefOrigin
from repo_snapshot import CommitId

logger = logging.getLogger(__name__)


class CandidateSet:
    """Ordered, duplicate-free tips plus the ref names that point at each one."""

    def __init__(self, sources: dict[CommitId, tuple[str, ...]]) -> None:
        self._sources = dict(sources)
        self.tips: tuple[CommitId, ...] = tuple(self._sources)

    @classmethod
    def from_refs(cls, refs: Iterable[Ref]) -> CandidateSet:
        sources: dict[CommitId, list[str]] = {}
        for ref in refs:
            label = ref.name
            if ref.origin is RefOrigin.HEAD and ref.branch:
                label = f"HEAD -> {ref.branch}"
            names = sources.setdefault(ref.target, [])
            if label not in names:
                names.append(label)
        return cls({tip: tuple(names) for tip, names in sources.items()})

    def refs_at(self, tip: CommitId) -> tuple[str, ...]:
        return self._sources.get(tip, ())

    def __iter__(self) -> Iterator[CommitId]:
        return iter(self.tips)

    def __len__(self) -> int:
        return len(self.tips)

    def __contains__(self, tip: object) -> bool:
        return tip in self._sources

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CandidateSet):
            return NotImplemented
        return self._sources == other._sources and self.tips == other.tips

    def __repr__(self) -> str:
        return f"CandidateSet({list(self.tips)!r})"


def _tracked_by_local(ref: Ref, locals_: list[Ref]) -> bool:
    return any(
        ref.name == local.upstream or ref.branch == local.branch for local in locals_
    )


def select_candidates(
    classification: Classification, *, include_upstreams: bool = False
) -> CandidateSet:
    """Apply the selection rules, in order:

    1. HEAD is always a candidate.
    2. Every local branch is a candidate.
    3. Remote branches are candidates when their remote is owned. Tags never are.
    4. If nothing else was selected (detached HEAD, no branches, no owned
       remote), HEAD alone is.

    With *include_upstreams*, a remote branch that a local branch tracks, or
    that shares a local branch's name, is selected whatever its remote.
    """
    heads = classification.of(RefOrigin.HEAD)
    locals_ = sorted(classification.of(RefOrigin.LOCAL), key=lambda r: r.name)
    remotes = sorted(classification.of(RefOrigin.REMOTE), key=lambda r: r.name)

    chosen: list[Ref] = [*heads, *locals_]
    for ref in remotes:
        if classification.is_owned(ref.remote):
            chosen.append(ref)
        elif include_upstreams and _tracked_by_local(ref, locals_):
            logger.debug("selecting %s as the upstream of a local branch", ref.name)
            chosen.append(ref)

    if not chosen:
        # rule 1 already guarantees HEAD, so this is a snapshot without one
        raise InternalInvariantViolation("no HEAD ref to select")

    candidates = CandidateSet.from_refs(chosen)
    logger.debug("%d candidate tips from %d refs", len(candidates), len(chosen))
    return candidates
