"""Page session — the lifecycle wrapper around one page view's registry.

Shard scripts may finish loading before the page has created its registry.
The session is the entry point both sides are handed: submissions made
before :meth:`PageSession.initialize` wait in a pending queue and are merged,
in arrival order, as soon as the registry exists.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from implindex.diagnostics import MALFORMED_SHARD, DiagnosticLog
from implindex.registry.models import Consumer, ImplementationRecord
from implindex.registry.page_registry import Registry, Subscription

logger = logging.getLogger(__name__)


class PageSession:
    """Page-scoped state: one registry plus the pre-initialization queue."""

    def __init__(self, diagnostics: DiagnosticLog | None = None):
        self.diagnostics = diagnostics or DiagnosticLog()
        self._registry: Registry | None = None
        self._pending: list[tuple[Any, Any]] = []

    @property
    def registry(self) -> Registry | None:
        return self._registry

    @property
    def is_initialized(self) -> bool:
        return self._registry is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def submit(self, library_id, descriptors) -> None:
        """Entry point for a loaded shard: one library's descriptors."""
        if self._registry is None:
            logger.debug("Registry not initialized; queueing shard from %s", library_id)
            self._pending.append((library_id, descriptors))
            return
        self._registry.submit(library_id, descriptors)

    def register_implementors(self, implementors: Mapping) -> None:
        """Entry point for a loaded shard file: ``{library_id: descriptors}``."""
        if not isinstance(implementors, Mapping):
            self.diagnostics.record(
                MALFORMED_SHARD,
                f"Implementor payload must be a mapping of library ids, got {type(implementors).__name__}",
            )
            return
        for library_id, descriptors in implementors.items():
            self.submit(library_id, descriptors)

    def initialize(self) -> Registry:
        """Create the registry (once) and drain the pending queue into it."""
        if self._registry is not None:
            return self._registry

        self._registry = Registry(self.diagnostics)
        pending, self._pending = self._pending, []
        if pending:
            logger.debug("Draining %d pending shard(s)", len(pending))
        for library_id, descriptors in pending:
            self._registry.submit(library_id, descriptors)
        return self._registry

    def attach(self, trait_id: str, consumer: Consumer) -> Subscription:
        """Attach a renderer; initializes the session if it is not yet."""
        return self.initialize().attach(trait_id, consumer)

    def query(self, trait_id: str) -> tuple[ImplementationRecord, ...]:
        if self._registry is None:
            return ()
        return self._registry.query(trait_id)

    def teardown(self) -> None:
        """Discard all page-scoped state, as on navigation."""
        if self._registry is not None:
            self._registry.close()
        self._registry = None
        self._pending.clear()
