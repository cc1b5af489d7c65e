"""Shard payloads — the contract between the doc generator and the registry.

This package provides:
1. Schema — JSON Schema for the per-library descriptor payload
2. Validator — coded issues, and conversion into typed records
3. Loader — reading rustdoc implementor scripts and canonical shard files
"""

SHARD_FORMAT_VERSION = "1.0.0"
