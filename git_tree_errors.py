"""Errors raised by git-tree. Every one of them is fatal for the run."""


class GitTreeError(Exception):
    """Base class; ``main()`` turns these into a one-line diagnostic."""


class RepositoryError(GitTreeError):
    """The repository could not be read, or git returned something corrupt."""


class InternalInvariantViolation(GitTreeError):
    """A commit that must be in the snapshot is missing. Indicates a bug."""
