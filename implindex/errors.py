"""Exception types raised by implindex."""

from __future__ import annotations


class ImplIndexError(Exception):
    """Base class for implindex errors."""


class MalformedShard(ImplIndexError, ValueError):
    """A shard failed shape validation and must be dropped as a whole."""

    def __init__(self, library_id: str, issues: list) -> None:
        self.library_id = library_id
        self.issues = list(issues)
        first = self.issues[0].message if self.issues else "invalid shard"
        label = library_id or "<empty library id>"
        super().__init__(f"Malformed shard from {label}: {first} ({len(self.issues)} issue(s))")


class ShardLoadError(ImplIndexError):
    """A shard file could not be read or decoded."""

    def __init__(self, path, reason: str) -> None:
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Cannot load shard file {self.path}: {reason}")
