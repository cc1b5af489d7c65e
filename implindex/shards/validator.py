"""Shard validator — shape checks at the submission boundary.

Every payload is validated before it may touch a bucket. Issues carry a
machine-readable code and a path into the payload (e.g. ``[2].target``).
Any ERROR rejects the whole shard; warnings and infos are advisory.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from implindex.errors import MalformedShard
from implindex.registry.models import ImplementationRecord, Shard, freeze
from implindex.shards.schema import OPTIONAL_DESCRIPTOR_FIELDS

_KNOWN_FIELDS = {"trait", "target", *OPTIONAL_DESCRIPTOR_FIELDS}


class Severity(Enum):
    ERROR = "error"  # Shard is dropped
    WARNING = "warning"  # Merged, but the listing will look odd
    INFO = "info"


@dataclass
class ShardIssue:
    """A single issue found in a shard payload."""

    severity: Severity
    code: str
    message: str
    path: str = ""


@dataclass
class ShardValidationResult:
    """Result of validating one library's payload."""

    library_id: str
    issues: list[ShardIssue] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not any(i.severity == Severity.ERROR for i in self.issues)

    @property
    def errors(self) -> list[ShardIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[ShardIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    def summary(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        return f"[{status}] {len(self.errors)} error(s), {len(self.warnings)} warning(s)"


def validate_shard(library_id, descriptors) -> ShardValidationResult:
    """Validate a library id and its descriptor list.

    Args:
        library_id: The contributing library. Must be a non-empty string.
        descriptors: Ordered sequence of descriptor mappings.

    Returns:
        ShardValidationResult with all issues found.
    """
    result = ShardValidationResult(library_id=library_id if isinstance(library_id, str) else "")

    if not isinstance(library_id, str) or not library_id.strip():
        result.issues.append(
            ShardIssue(
                severity=Severity.ERROR,
                code="LIBRARY_ID_MISSING",
                message="Shard must name a non-empty library id.",
            )
        )

    if not _is_sequence(descriptors):
        result.issues.append(
            ShardIssue(
                severity=Severity.ERROR,
                code="PAYLOAD_NOT_SEQUENCE",
                message=f"Shard payload must be a list of descriptors, got {type(descriptors).__name__}.",
            )
        )
        return result

    seen: set[tuple] = set()
    for i, descriptor in enumerate(descriptors):
        path = f"[{i}]"
        if not isinstance(descriptor, Mapping):
            result.issues.append(
                ShardIssue(
                    severity=Severity.ERROR,
                    code="DESCRIPTOR_NOT_MAPPING",
                    message=f"Descriptor must be a mapping, got {type(descriptor).__name__}.",
                    path=path,
                )
            )
            continue
        _check_identity_fields(descriptor, path, result)
        _check_optional_fields(descriptor, path, result)

        key = (descriptor.get("trait"), descriptor.get("target"), descriptor.get("text", ""))
        if all(isinstance(k, str) for k in key):
            if key in seen:
                result.issues.append(
                    ShardIssue(
                        severity=Severity.INFO,
                        code="DUPLICATE_IN_SHARD",
                        message=f"{key[1]} is listed twice for {key[0]}; only one is kept.",
                        path=path,
                    )
                )
            seen.add(key)

    return result


def parse_shard(library_id, descriptors) -> Shard:
    """Validate a payload and convert it into a typed, immutable Shard.

    Raises:
        MalformedShard: if validation reports any error.
    """
    result = validate_shard(library_id, descriptors)
    if not result.passed:
        raise MalformedShard(result.library_id, result.errors)

    records = tuple(_to_record(library_id, d) for d in descriptors)
    return Shard(library_id=library_id, records=records)


def _is_sequence(value) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _check_identity_fields(descriptor: Mapping, path: str, result: ShardValidationResult):
    for name, code in (("trait", "TRAIT_MISSING"), ("target", "TARGET_MISSING")):
        value = descriptor.get(name)
        if not isinstance(value, str) or not value.strip():
            result.issues.append(
                ShardIssue(
                    severity=Severity.ERROR,
                    code=code,
                    message=f"Descriptor must carry a non-empty '{name}' string.",
                    path=f"{path}.{name}",
                )
            )


def _check_optional_fields(descriptor: Mapping, path: str, result: ShardValidationResult):
    for name, expected in OPTIONAL_DESCRIPTOR_FIELDS.items():
        if name in descriptor and not isinstance(descriptor[name], expected):
            result.issues.append(
                ShardIssue(
                    severity=Severity.ERROR,
                    code="FIELD_TYPE",
                    message=(
                        f"'{name}' must be of type {expected.__name__}, "
                        f"got {type(descriptor[name]).__name__}."
                    ),
                    path=f"{path}.{name}",
                )
            )

    if not descriptor.get("text"):
        result.issues.append(
            ShardIssue(
                severity=Severity.WARNING,
                code="SOURCE_TEXT_MISSING",
                message="Descriptor has no rendered signature; the listing entry will be blank.",
                path=f"{path}.text",
            )
        )


def _to_record(library_id: str, descriptor: Mapping) -> ImplementationRecord:
    extra = {k: v for k, v in descriptor.items() if k not in _KNOWN_FIELDS}
    return ImplementationRecord(
        trait_id=descriptor["trait"],
        target_type_id=descriptor["target"],
        library_id=library_id,
        source_text=descriptor.get("text", ""),
        constraint_text=descriptor.get("where", ""),
        is_synthetic=descriptor.get("synthetic", False),
        extra=freeze(extra),
    )
