"""implindex — page-scoped aggregation of trait implementor shards."""

__version__ = "0.1.0"
