"""Shard loader — read shard files from disk into canonical payloads.

Two formats are understood:

* rustdoc implementor scripts (``implementors/<path>/trait.<Name>.js``),
  one file per trait, one ``implementors["<lib>"] = [...];`` line per library;
* canonical shard files (``.json``/``.yaml``/``.yml``) that already hold a
  ``{library_id: [descriptor, ...]}`` mapping.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import yaml

from implindex.diagnostics import SHARD_LOAD_FAILED
from implindex.errors import ShardLoadError

SKIP_DIRS = {".git", "__pycache__", "node_modules", ".venv", "venv", ".tox", ".pytest_cache"}

SHARD_SUFFIXES = {".js", ".json", ".yaml", ".yml"}

_ASSIGNMENT_RE = re.compile(r'^implementors\["(?P<library>[^"]*)"\]\s*=\s*(?P<payload>\[.*\]);\s*$', re.MULTILINE)
_WHERE_MARKER = '<span class="where'


def trait_id_from_path(path: str | Path) -> str:
    """Derive the trait path from a rustdoc implementor file location.

    ``docs/implementors/core/borrow/trait.Borrow.js`` -> ``core::borrow::Borrow``
    """
    path = Path(path)
    name = path.name
    if not name.startswith("trait.") or not name.endswith(".js"):
        raise ShardLoadError(path, "not a rustdoc trait implementor file")
    trait_name = name[len("trait."):-len(".js")]

    parts = list(path.parent.parts)
    if "implementors" in parts:
        idx = len(parts) - 1 - parts[::-1].index("implementors")
        modules = parts[idx + 1:]
    else:
        modules = []
    return "::".join([*modules, trait_name])


def parse_rustdoc_implementors(text: str, trait_id: str) -> dict[str, list[dict]]:
    """Convert a rustdoc implementor script into a canonical payload mapping."""
    implementors: dict[str, list[dict]] = {}
    for match in _ASSIGNMENT_RE.finditer(text):
        try:
            entries = json.loads(match.group("payload"))
        except json.JSONDecodeError as e:
            raise ShardLoadError(trait_id, f"bad JSON for {match.group('library')}: {e}") from e
        library = match.group("library")
        implementors[library] = [_descriptor_from_rustdoc(trait_id, entry) for entry in entries]
    return implementors


def _descriptor_from_rustdoc(trait_id: str, entry) -> dict:
    if not isinstance(entry, dict):
        # Leave it for the validator to reject.
        return entry
    descriptor = {k: v for k, v in entry.items() if k != "text"}
    types = entry.get("types") or [""]
    html = entry.get("text", "")
    signature, constraint = html, ""
    if isinstance(html, str) and _WHERE_MARKER in html:
        idx = html.index(_WHERE_MARKER)
        signature, constraint = html[:idx].rstrip(), html[idx:]
    descriptor.update(
        trait=trait_id,
        target=types[0] if isinstance(types, list) else "",
        text=signature,
        where=constraint,
    )
    return descriptor


def load_shard_file(path: str | Path) -> dict:
    """Read one shard file and return its ``{library_id: descriptors}`` mapping."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ShardLoadError(path, str(e)) from e

    if path.suffix == ".js":
        implementors = parse_rustdoc_implementors(text, trait_id_from_path(path))
        if not implementors:
            raise ShardLoadError(path, "no implementors assignments found")
        return implementors

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ShardLoadError(path, f"invalid YAML/JSON: {e}") from e
    if not isinstance(data, dict):
        raise ShardLoadError(path, "top level must be a mapping of library ids")
    return data


def discover_shard_files(root: str | Path) -> list[Path]:
    """Return shard files at or below ``root``, sorted by path."""
    root = Path(root)
    if root.is_file():
        return [root]
    files = []
    for item in root.rglob("*"):
        if item.is_file() and item.suffix in SHARD_SUFFIXES:
            if not any(part in SKIP_DIRS for part in item.parts):
                files.append(item)
    return sorted(files)


def load_into(session, paths) -> int:
    """Feed every shard file under ``paths`` into a page session.

    Unreadable files are recorded as diagnostics and skipped.
    Returns the number of files successfully loaded.
    """
    loaded = 0
    for root in paths:
        for path in discover_shard_files(root):
            try:
                implementors = load_shard_file(path)
            except ShardLoadError as e:
                session.diagnostics.record(SHARD_LOAD_FAILED, str(e), details={"path": str(path)})
                continue
            session.register_implementors(implementors)
            loaded += 1
    return loaded
