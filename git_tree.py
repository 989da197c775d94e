#!/usr/bin/env -S uv run
# /// script
# dependencies = ["rich"]
# ///
"""
git_tree.py – ``git log --graph`` for just the branches you are working on.

Picks the interesting tips (HEAD, local branches, branches on remotes you
own), works out where their histories meet, and hands git log the includes
and excludes that show those tips and the merges/forks between them, but
not the years of shared history underneath.

Usage:
    git-tree                          # default one-line format
    git-tree -u alice                 # also show remotes that belong to alice
    git-tree -d -- --oneline --color  # print the computed range, then log
"""

from __future__ import annotations

import argparse
import logging
import subprocess
import sys
from pathlib import Path
from typing import Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from candidate_selector import CandidateSet, select_candidates
from git_tree_errors import GitTreeError, RepositoryError
from range_solver import RangeAnalysis, RevisionRange, analyze_range
from ref_classifier import classify_refs
from repo_snapshot import GitRepository, read_snapshot

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

DEFAULT_LOG_ARGS = ("--format=%C(auto)%h %d %<(50,trunc)%s",)


def split_passthrough(argv: Sequence[str]) -> tuple[list[str], list[str]]:
    """Split *argv* at the first ``--``: our options, then git log's."""
    argv = list(argv)
    if "--" in argv:
        cut = argv.index("--")
        return argv[:cut], argv[cut + 1 :]
    return argv, []


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="git-tree",
        description="Run git log --graph over the commits worth looking at.",
        epilog="Arguments after -- are passed to git log unchanged.",
    )
    parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Print the candidate tips and the computed range before the log",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log git invocations and decisions to stderr",
    )
    parser.add_argument(
        "-u",
        "--user",
        metavar="NAME",
        help="Treat remotes belonging to NAME as yours (default: git config tree.user)",
    )
    parser.add_argument(
        "--upstreams",
        action="store_true",
        help="Also show the remote branches your local branches track",
    )
    parser.add_argument(
        "-C",
        dest="directory",
        default=".",
        metavar="PATH",
        help="Run as if started in PATH (default: current directory)",
    )
    parser.add_argument("--git", default="git", help="git executable to use")
    return parser.parse_args(argv)


def build_log_command(
    revisions: RevisionRange,
    passthrough: Sequence[str] = (),
    *,
    git: str = "git",
    directory: str | Path | None = None,
) -> list[str]:
    cmd = [git]
    if directory is not None:
        cmd += ["-C", str(directory)]
    cmd += ["log", "--graph", *revisions.log_args()]
    cmd += list(passthrough) if passthrough else list(DEFAULT_LOG_ARGS)
    return cmd


def print_debug_report(
    candidates: CandidateSet, analysis: RangeAnalysis, out: Console = console
) -> None:
    """Dump the candidate tips and the exact include/exclude lists."""
    table = Table(title="Candidate tips", box=box.SIMPLE_HEAD, header_style="bold cyan")
    table.add_column("Commit", style="yellow", no_wrap=True)
    table.add_column("Refs")
    for tip in candidates:
        table.add_row(tip, escape(", ".join(candidates.refs_at(tip))))
    out.print(table)

    revisions = analysis.range
    for label, ids in (
        ("Boundary", analysis.boundary),
        ("Includes", revisions.included),
        ("Excludes", revisions.excluded),
    ):
        out.print(f"{label}: {' '.join(ids) or '(none)'}", highlight=False, soft_wrap=True)


def run(argv: Sequence[str]) -> int:
    own, passthrough = split_passthrough(argv)
    args = parse_args(own)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    repo = GitRepository(args.directory, git=args.git)
    snapshot = read_snapshot(repo, username=args.user)
    classification = classify_refs(snapshot)
    candidates = select_candidates(classification, include_upstreams=args.upstreams)
    analysis = analyze_range(snapshot.commits, candidates)

    if args.debug:
        print_debug_report(candidates, analysis)

    cmd = build_log_command(
        analysis.range, passthrough, git=args.git, directory=args.directory
    )
    logger.debug("running %s", " ".join(cmd))
    # flush rich output so it lands before git's
    sys.stdout.flush()
    try:
        return subprocess.run(cmd).returncode
    except FileNotFoundError:
        raise RepositoryError(f"{args.git} not found") from None
    except OSError as exc:
        raise RepositoryError(f"cannot run {args.git}: {exc.strerror or exc}") from None


def main() -> None:
    try:
        code = run(sys.argv[1:])
    except GitTreeError as exc:
        err_console.print(f"[bold red]error:[/] {escape(str(exc))}", highlight=False)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
