"""Tests for the include/exclude range computation."""

from itertools import combinations

import pytest

from conftest import cid
from git_tree_errors import InternalInvariantViolation
from range_solver import (
    RevisionRange,
    analyze_range,
    ancestor_depths,
    merge_base,
    solve_range,
)


def reach(commits, starts):
    seen, stack = set(), list(starts)
    while stack:
        commit_id = stack.pop()
        if commit_id in seen:
            continue
        seen.add(commit_id)
        stack.extend(commits[commit_id].parent_ids)
    return seen


def rendered(commits, revisions: RevisionRange):
    """What git log would show for *revisions*."""
    return reach(commits, revisions.included) - reach(commits, revisions.excluded)


def ids(*labels):
    return {cid(label) for label in labels}


@pytest.fixture
def diamond(graph):
    graph.add("R")
    graph.add("X", "R")
    graph.add("Y", "R")
    graph.add("M", "X", "Y")
    return graph


class TestScenarios:
    def test_linear_history_single_tip(self, graph):
        tip = graph.chain(["A", "B", "C"])

        result = solve_range(graph.commits, [tip])

        assert result == RevisionRange((cid("C"),), ())

    def test_diamond_branches_meet_at_root(self, diamond):
        analysis = analyze_range(diamond.commits, [cid("X"), cid("Y")])

        assert analysis.boundary == (cid("R"),)
        assert analysis.range.included == (cid("X"), cid("Y"))
        assert analysis.range.excluded == ()
        assert rendered(diamond.commits, analysis.range) == ids("X", "Y", "R")

    def test_deep_shared_history_is_cut_at_merge_base(self, graph):
        shared = [f"S{i}" for i in range(501)]
        base = graph.chain(shared)
        graph.chain(["T1a", "T1b"], parent="S500")
        graph.chain(["T2a"], parent="S500")

        analysis = analyze_range(graph.commits, [cid("T1b"), cid("T2a")])

        assert analysis.boundary == (base,)
        assert analysis.range.excluded == (cid("S499"),)
        assert rendered(graph.commits, analysis.range) == ids("S500", "T1a", "T1b", "T2a")

    def test_candidate_that_is_ancestor_of_another(self, graph):
        graph.chain(["A", "B", "C", "D"])

        result = solve_range(graph.commits, [cid("D"), cid("B")])

        assert result.included == (cid("D"), cid("B"))
        assert result.excluded == (cid("A"),)
        assert rendered(graph.commits, result) == ids("B", "C", "D")


class TestEdgeCases:
    def test_no_candidates(self, graph):
        graph.add("A")
        assert solve_range(graph.commits, []) == RevisionRange()

    def test_single_candidate_never_excludes(self, diamond):
        for tip in ("R", "X", "Y", "M"):
            assert solve_range(diamond.commits, [cid(tip)]).excluded == ()

    def test_duplicate_candidates_are_collapsed(self, diamond):
        once = solve_range(diamond.commits, [cid("X"), cid("Y")])
        twice = solve_range(diamond.commits, [cid("X"), cid("Y"), cid("X")])

        assert twice == once

    def test_disjoint_histories_show_everything(self, graph):
        graph.chain(["A1", "A2", "A3"])
        graph.chain(["B1", "B2"])

        analysis = analyze_range(graph.commits, [cid("A3"), cid("B2")])

        assert analysis.boundary == ()
        assert analysis.range.excluded == ()
        assert rendered(graph.commits, analysis.range) == ids("A1", "A2", "A3", "B1", "B2")

    def test_missing_candidate_is_an_internal_error(self, graph):
        graph.add("A")
        with pytest.raises(InternalInvariantViolation):
            solve_range(graph.commits, [cid("nope")])

    def test_parent_missing_from_graph_is_tolerated(self, graph):
        graph.add("B", "gone")
        graph.add("C", "B")

        assert solve_range(graph.commits, [cid("C")]) == RevisionRange((cid("C"),), ())

    def test_exclusion_never_hides_an_older_candidate(self, graph):
        graph.chain(["W", "Z", "P", "M"])
        graph.add("X", "M")
        graph.add("Y", "M")

        result = solve_range(graph.commits, [cid("X"), cid("Y"), cid("Z")])

        # P is M's parent, but Z sits behind it
        assert result.excluded == (cid("W"),)
        assert rendered(graph.commits, result) == ids("X", "Y", "M", "P", "Z")

    def test_exclude_behind_another_exclude_is_dropped(self, graph):
        graph.add("R")
        graph.add("P2", "R")
        graph.add("P1", "P2")
        graph.add("B", "P1", "P2")
        graph.add("X", "B")
        graph.add("Y", "B")

        result = solve_range(graph.commits, [cid("X"), cid("Y")])

        assert result.excluded == (cid("P1"),)
        assert rendered(graph.commits, result) == ids("X", "Y", "B")

    def test_side_branch_merged_from_below_the_merge_base_is_cut(self, graph):
        graph.chain(["m1", "m2", "m3", "m4", "m5"])
        graph.chain(["f1", "f2"], parent="m2")
        graph.add("m6", "m5", "f2")
        graph.add("g1", "m4")

        result = solve_range(graph.commits, [cid("m6"), cid("g1")])

        assert result.excluded == (cid("m3"), cid("f2"))
        assert rendered(graph.commits, result) == ids("m4", "m5", "m6", "g1")

    def test_merged_side_branch_is_kept_when_it_is_a_candidate(self, graph):
        graph.chain(["m1", "m2", "m3", "m4", "m5"])
        graph.chain(["f1", "f2"], parent="m2")
        graph.add("m6", "m5", "f2")
        graph.add("g1", "m4")

        result = solve_range(graph.commits, [cid("m6"), cid("g1"), cid("f2")])

        assert cid("f2") in rendered(graph.commits, result)
        assert cid("f2") not in result.excluded

    def test_log_args_syntax(self):
        revisions = RevisionRange(("aaa", "bbb"), ("ccc",))
        assert revisions.log_args() == ["aaa", "bbb", "^ccc"]


class TestMergeBase:
    def test_unrelated_commits(self, graph):
        graph.add("A")
        graph.add("B")
        assert merge_base(graph.commits, cid("A"), cid("B")) is None

    def test_same_commit(self, graph):
        graph.add("A")
        assert merge_base(graph.commits, cid("A"), cid("A")) == cid("A")

    def test_ancestor(self, graph):
        graph.chain(["A", "B", "C"])
        assert merge_base(graph.commits, cid("C"), cid("B")) == cid("B")

    def test_criss_cross_prefers_most_recent(self, graph):
        graph.add("R")
        graph.add("A1", "R", at=2_000)
        graph.add("B1", "R", at=3_000)
        graph.add("M1", "A1", "B1")
        graph.add("M2", "B1", "A1")
        graph.add("X", "M1")
        graph.add("Y", "M2")

        assert merge_base(graph.commits, cid("X"), cid("Y")) == cid("B1")

        result = solve_range(graph.commits, [cid("X"), cid("Y")])
        # A1 is merged into M1 from outside B1's history
        assert result.excluded == (cid("A1"),)
        assert rendered(graph.commits, result) == ids("X", "Y", "M1", "M2", "B1")

    def test_lower_combined_depth_beats_recency(self, graph):
        graph.add("R")
        graph.add("A1", "R", at=2_000)
        graph.add("B1", "R", at=9_000)
        graph.add("B2", "B1")
        graph.add("M1", "A1", "B2")
        graph.add("M2", "B1", "A1")
        graph.add("X", "M1")
        graph.add("Y", "M2")

        assert merge_base(graph.commits, cid("X"), cid("Y")) == cid("A1")

    def test_depths_are_shortest_paths(self, diamond):
        depths = ancestor_depths(diamond.commits, [cid("M")])
        assert depths[cid("M")] == {0: 0}
        assert depths[cid("X")] == {0: 1}
        assert depths[cid("R")] == {0: 2}


@pytest.fixture
def branchy(graph):
    """main with two feature branches, one merged back, and a side root."""
    graph.chain(["m1", "m2", "m3", "m4", "m5"])
    graph.chain(["f1", "f2"], parent="m2")
    graph.add("m6", "m5", "f2")
    graph.chain(["g1", "g2", "g3"], parent="m4")
    graph.chain(["h1", "h2"], parent="g1")
    graph.add("m7", "m6")
    graph.chain(["o1", "o2"])
    return graph


class TestProperties:
    TIPS = ["m7", "f2", "g3", "h2", "m3", "o2", "m1"]

    def candidate_sets(self):
        for size in (1, 2, 3):
            for labels in combinations(self.TIPS, size):
                yield [cid(label) for label in labels]

    def test_every_candidate_is_shown(self, branchy):
        for tips in self.candidate_sets():
            result = solve_range(branchy.commits, tips)
            shown = rendered(branchy.commits, result)
            assert set(tips) <= shown, tips

    def test_every_exclusion_hides_something(self, branchy):
        for tips in self.candidate_sets():
            result = solve_range(branchy.commits, tips)
            shown = rendered(branchy.commits, result)
            for excluded in result.excluded:
                fewer = RevisionRange(
                    result.included, tuple(e for e in result.excluded if e != excluded)
                )
                assert rendered(branchy.commits, fewer) > shown, (tips, excluded)

    def test_merge_bases_stay_visible(self, branchy):
        for tips in self.candidate_sets():
            analysis = analyze_range(branchy.commits, tips)
            assert set(analysis.boundary) <= rendered(branchy.commits, analysis.range)

    def test_duplicates_do_not_change_the_range(self, branchy):
        for tips in self.candidate_sets():
            assert solve_range(branchy.commits, tips + tips[:1]) == solve_range(
                branchy.commits, tips
            )

    def test_convergence_points(self, diamond):
        analysis = analyze_range(diamond.commits, [cid("X"), cid("Y")])
        assert analysis.convergence_points == ids("X", "Y", "R")
        assert analysis.coverage(cid("R")) == ids("X", "Y")
