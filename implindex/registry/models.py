"""Registry data models — implementation records, shards, and notifications."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping


@dataclass(frozen=True)
class ImplementationRecord:
    """One `impl Trait for Type` entry contributed by a library.

    Equality and hashing only look at the identity fields, so two records
    describing the same implementation compare equal even when their
    constraint text, synthetic flag, or passthrough data differ.
    """

    # Identity
    trait_id: str
    target_type_id: str
    library_id: str
    source_text: str = ""  # Opaque rendered signature

    # Payload
    constraint_text: str = field(default="", compare=False)
    is_synthetic: bool = field(default=False, compare=False)
    extra: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )

    @property
    def identity(self) -> tuple[str, str, str, str]:
        return (self.trait_id, self.target_type_id, self.library_id, self.source_text)

    @property
    def sort_key(self) -> tuple[str, str, str]:
        # source_text breaks ties between two impls of the same type
        return (self.library_id, self.target_type_id, self.source_text)

    @property
    def payload_key(self) -> tuple[str, bool, str]:
        # Total order over the non-identity fields; picks the survivor when identities collide
        extra = json.dumps(_plain(self.extra), sort_keys=True, default=str)
        return (self.constraint_text, self.is_synthetic, extra)


@dataclass(frozen=True)
class Shard:
    """A single library's validated contribution. Never mutated after parsing."""

    library_id: str
    records: tuple[ImplementationRecord, ...] = ()

    @property
    def trait_ids(self) -> frozenset[str]:
        return frozenset(r.trait_id for r in self.records)


class UpdateKind(Enum):
    SNAPSHOT = "snapshot"  # Full bucket, delivered on attach
    DELTA = "delta"  # Records added by one submission


@dataclass(frozen=True)
class BucketUpdate:
    """What a consumer receives on each notification."""

    kind: UpdateKind
    trait_id: str
    records: tuple[ImplementationRecord, ...]  # Snapshot contents, or the delta
    bucket: tuple[ImplementationRecord, ...]  # Full bucket after the merge

    @property
    def is_snapshot(self) -> bool:
        return self.kind is UpdateKind.SNAPSHOT


Consumer = Callable[[BucketUpdate], Any]


@dataclass
class Listing:
    """A bucket split the way rustdoc renders it: explicit impls, then auto impls."""

    implementors: list[ImplementationRecord] = field(default_factory=list)
    synthetic: list[ImplementationRecord] = field(default_factory=list)

    @property
    def total_count(self) -> int:
        return len(self.implementors) + len(self.synthetic)


def split_listing(records) -> Listing:
    """Partition records into explicit and synthetic impls, keeping their order."""
    listing = Listing()
    for record in records:
        if record.is_synthetic:
            listing.synthetic.append(record)
        else:
            listing.implementors.append(record)
    return listing


def freeze(value):
    """Deep read-only copy of passthrough data: mappings become proxies, lists tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def _plain(value):
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    if isinstance(value, frozenset):
        return sorted((_plain(v) for v in value), key=repr)
    return value
