"""
range_solver.py – compute the arguments ``git log --graph`` needs to show a
set of tip commits and how they connect, without the rest of history.

git log draws every commit reachable from an include and not reachable from
an exclude. Given candidate tips, the includes are the tips themselves and
the excludes are the parents of the boundary set: the pairwise merge-bases
of the tips. Shared history older than the oldest merge-base is cut off.
A commit with a merge-base in its history is visible, and any other parent
of a visible commit is excluded too, so side branches merged in from below
the merge-base stop at the merge instead of running down to their fork.

All traversal state lives in side tables keyed by commit id; the graph is
only ever read.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from itertools import combinations
from typing import Iterable, Mapping, NamedTuple, Sequence

from git_tree_errors import InternalInvariantViolation
from repo_snapshot import Commit, CommitId

logger = logging.getLogger(__name__)

Graph = Mapping[CommitId, Commit]

# commit -> {candidate index: shortest number of parent edges from that candidate}
Depths = dict[CommitId, dict[int, int]]


class RevisionRange(NamedTuple):
    included: tuple[CommitId, ...] = ()
    excluded: tuple[CommitId, ...] = ()

    def log_args(self) -> list[str]:
        """Revision arguments in git's syntax: ``tip ... ^hidden ...``."""
        return [*self.included, *(f"^{c}" for c in self.excluded)]


class RangeAnalysis(NamedTuple):
    """Everything the solver worked out, for reporting and tests."""

    candidates: tuple[CommitId, ...]
    depths: Depths
    boundary: tuple[CommitId, ...]
    range: RevisionRange

    def coverage(self, commit_id: CommitId) -> frozenset[CommitId]:
        """Candidates that have *commit_id* in their history."""
        return frozenset(self.candidates[i] for i in self.depths.get(commit_id, ()))

    @property
    def convergence_points(self) -> frozenset[CommitId]:
        tips = set(self.candidates)
        return frozenset(c for c, reach in self.depths.items() if len(reach) >= 2 or c in tips)


# ── walks ────────────────────────────────────────────────────────────────
def ancestor_depths(graph: Graph, candidates: Sequence[CommitId]) -> Depths:
    """Breadth-first walk from each candidate, recording the shortest distance.

    A commit is expanded at most once per candidate, so the work is bounded
    by ``len(candidates)`` times the number of reachable commits.
    """
    depths: Depths = {}
    missing: set[CommitId] = set()
    for index, tip in enumerate(candidates):
        depths.setdefault(tip, {})[index] = 0
        queue = deque([(tip, 0)])
        while queue:
            commit_id, depth = queue.popleft()
            for parent in graph[commit_id].parent_ids:
                if parent not in graph:
                    missing.add(parent)  # shallow clone boundary
                    continue
                reach = depths.setdefault(parent, {})
                if index not in reach:
                    reach[index] = depth + 1
                    queue.append((parent, depth + 1))
    if missing:
        logger.debug("%d parent commits are not in the snapshot", len(missing))
    return depths


def _children(graph: Graph, commits: Iterable[CommitId]) -> dict[CommitId, list[CommitId]]:
    children: dict[CommitId, list[CommitId]] = defaultdict(list)
    for commit_id in commits:
        for parent in graph[commit_id].parent_ids:
            if parent in graph:
                children[parent].append(commit_id)
    return children


def _closure(starts: Iterable[CommitId], step) -> set[CommitId]:
    seen = set(starts)
    stack = list(seen)
    while stack:
        for nxt in step(stack.pop()):
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return seen


# ── merge-bases ──────────────────────────────────────────────────────────
def _pairwise_merge_bases(
    graph: Graph, depths: Depths, children: Mapping[CommitId, list[CommitId]]
) -> dict[tuple[int, int], CommitId]:
    """Best merge-base for every pair of candidate indices that has one.

    A common ancestor is a merge-base when none of its children is also a
    common ancestor. Among several merge-bases (criss-cross merges) the one
    with the lowest combined depth wins, then the most recently committed,
    then the smallest id.
    """
    best: dict[tuple[int, int], tuple[int, int, CommitId]] = {}
    for commit_id, reach in depths.items():
        if len(reach) < 2:
            continue
        child_reach = [depths[c] for c in children.get(commit_id, ())]
        # a child seen by the same candidates already covers every pair here
        if any(len(r) == len(reach) for r in child_reach):
            continue
        committed_at = graph[commit_id].committed_at
        for a, b in combinations(sorted(reach), 2):
            if any(a in r and b in r for r in child_reach):
                continue
            key = (reach[a] + reach[b], -committed_at, commit_id)
            if (a, b) not in best or key < best[(a, b)]:
                best[(a, b)] = key
    return {pair: key[2] for pair, key in best.items()}


def merge_base(graph: Graph, a: CommitId, b: CommitId) -> CommitId | None:
    """Nearest common ancestor of *a* and *b*, or None for unrelated histories."""
    for tip in (a, b):
        if tip not in graph:
            raise InternalInvariantViolation(f"commit {tip} is not in the graph")
    if a == b:
        return a
    depths = ancestor_depths(graph, (a, b))
    children = _children(graph, depths)
    return _pairwise_merge_bases(graph, depths, children).get((0, 1))


# ── the solver ───────────────────────────────────────────────────────────
def analyze_range(graph: Graph, candidates: Iterable[CommitId]) -> RangeAnalysis:
    """Work out the include/exclude lists that show *candidates* in *graph*."""
    tips = tuple(dict.fromkeys(candidates))
    for tip in tips:
        if tip not in graph:
            raise InternalInvariantViolation(f"candidate {tip} is not in the graph")
    if not tips:
        return RangeAnalysis((), {}, (), RevisionRange())

    depths = ancestor_depths(graph, tips)
    children = _children(graph, depths)
    bases = _pairwise_merge_bases(graph, depths, children)

    boundary = tuple(
        dict.fromkeys(
            bases[pair] for pair in combinations(range(len(tips)), 2) if pair in bases
        )
    )
    if len(tips) > 1 and not boundary:
        logger.info("candidates share no history; showing all of it")

    # visible: a merge-base is in the commit's history
    visible = _closure(boundary, lambda c: children.get(c, ()))
    # excluding anything a tip or a merge-base descends from would hide it
    protected = _closure((*tips, *boundary), lambda c: children.get(c, ()))

    # parents of the merge-bases first, then side branches merged into a
    # visible line below its merge-base
    excluded: list[CommitId] = []
    for commit_id in (*boundary, *(c for c in depths if c in visible)):
        for parent in graph[commit_id].parent_ids:
            if (
                parent in depths
                and parent not in visible
                and parent not in protected
                and parent not in excluded
            ):
                excluded.append(parent)

    # an exclude sitting behind another exclude hides nothing new
    behind = _closure(
        (p for e in excluded for p in graph[e].parent_ids if p in graph),
        lambda c: (p for p in graph[c].parent_ids if p in graph),
    )
    excluded = [e for e in excluded if e not in behind]

    hidden = behind.union(excluded)
    if hidden.intersection(tips):
        raise InternalInvariantViolation("computed range hides a candidate")

    logger.debug(
        "%d tips, %d commits walked, %d merge-bases, %d excludes",
        len(tips),
        len(depths),
        len(boundary),
        len(excluded),
    )
    return RangeAnalysis(tips, depths, boundary, RevisionRange(tips, tuple(excluded)))


def solve_range(graph: Graph, candidates: Iterable[CommitId]) -> RevisionRange:
    return analyze_range(graph, candidates).range
