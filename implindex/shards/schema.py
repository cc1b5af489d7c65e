"""JSON Schema for the shard payload contract.

A shard file maps library ids to an ordered list of implementation
descriptors. The validator enforces the same required fields and types; this
schema is the exportable form of that contract.
"""

from implindex.shards import SHARD_FORMAT_VERSION

REQUIRED_DESCRIPTOR_FIELDS = ("trait", "target")

# Optional fields and the Python type each must have when present.
OPTIONAL_DESCRIPTOR_FIELDS: dict[str, type] = {
    "text": str,
    "where": str,
    "synthetic": bool,
}

DESCRIPTOR_SCHEMA: dict = {
    "type": "object",
    "required": list(REQUIRED_DESCRIPTOR_FIELDS),
    "additionalProperties": True,
    "properties": {
        "trait": {
            "type": "string",
            "minLength": 1,
            "description": "Fully qualified trait path, e.g. 'core::borrow::Borrow'.",
        },
        "target": {
            "type": "string",
            "minLength": 1,
            "description": "Fully qualified implementing type, e.g. 'smallvec::SmallVec'.",
        },
        "text": {
            "type": "string",
            "description": "Rendered impl signature. Opaque to the registry.",
        },
        "where": {
            "type": "string",
            "description": "Rendered where-clause. Opaque, may be empty.",
        },
        "synthetic": {
            "type": "boolean",
            "description": "True for compiler-derived (auto trait) impls.",
        },
    },
}

SHARD_PAYLOAD_SCHEMA: dict = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": f"https://implindex.dev/schema/shard/v{SHARD_FORMAT_VERSION}",
    "title": "Implementor Shard Payload",
    "description": (
        "Mapping from library id to the implementations that library "
        "contributes. Unknown descriptor keys are passed through to the renderer."
    ),
    "type": "object",
    "propertyNames": {"minLength": 1},
    "additionalProperties": {
        "type": "array",
        "items": DESCRIPTOR_SCHEMA,
    },
}


def get_schema() -> dict:
    """Return the shard payload JSON Schema."""
    return SHARD_PAYLOAD_SCHEMA
