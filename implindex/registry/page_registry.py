"""Page-scoped implementor registry.

Merges library shards into per-trait buckets and streams the result to
attached consumers. All operations run synchronously to completion; there is
no locking because nothing here is shared across threads.
"""

from __future__ import annotations

import logging
from collections import deque

from implindex.diagnostics import CONSUMER_CALLBACK_FAILURE, MALFORMED_SHARD, DiagnosticLog
from implindex.errors import MalformedShard
from implindex.registry.models import (
    BucketUpdate,
    Consumer,
    ImplementationRecord,
    Shard,
    UpdateKind,
)
from implindex.shards.validator import parse_shard

logger = logging.getLogger(__name__)


class Subscription:
    """Detach handle returned by :meth:`Registry.attach`.

    Calling the handle (or :meth:`detach`) stops all further deliveries,
    including ones queued behind the notification currently in flight.
    """

    def __init__(self, registry: "Registry", trait_id: str, consumer: Consumer):
        self.trait_id = trait_id
        self.consumer = consumer
        self.active = True
        self._registry = registry

    def detach(self) -> None:
        if not self.active:
            return
        self.active = False
        self._registry._remove(self)

    __call__ = detach


class Registry:
    """Trait id -> merged, deduplicated, sorted implementation records."""

    def __init__(self, diagnostics: DiagnosticLog | None = None):
        self.diagnostics = diagnostics or DiagnosticLog()
        self._buckets: dict[str, list[ImplementationRecord]] = {}
        self._identities: dict[str, dict[tuple, ImplementationRecord]] = {}
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._deferred: deque[Shard] = deque()
        self._merging = False
        self._closed = False

    # ── Submission ───────────────────────────────────────────────────

    def submit(self, library_id, descriptors) -> None:
        """Merge one library's payload. Malformed payloads are dropped whole.

        A submit issued from inside a consumer callback is queued and merged
        after the current merge has finished notifying.
        """
        try:
            shard = parse_shard(library_id, descriptors)
        except MalformedShard as e:
            self.diagnostics.record(
                MALFORMED_SHARD,
                str(e),
                library_id=e.library_id,
                details={"issues": [{"code": i.code, "path": i.path} for i in e.issues]},
            )
            return

        if self._merging:
            logger.debug("Deferring shard from %s until the current merge completes", library_id)
            self._deferred.append(shard)
            return

        self._merging = True
        try:
            self._merge(shard)
            self._drain_deferred()
        finally:
            self._merging = False

    def _drain_deferred(self) -> None:
        while self._deferred:
            self._merge(self._deferred.popleft())

    def _merge(self, shard: Shard) -> None:
        added: dict[str, dict[tuple, ImplementationRecord]] = {}
        for record in shard.records:
            seen = self._identities.setdefault(record.trait_id, {})
            existing = seen.get(record.identity)
            if existing is not None:
                if record.payload_key >= existing.payload_key:
                    logger.debug(
                        "Duplicate impl of %s for %s from %s ignored",
                        record.trait_id, record.target_type_id, record.library_id,
                    )
                    continue
                # Same impl, different payload: the smaller payload wins whatever the arrival order.
                bucket = self._buckets[record.trait_id]
                bucket[bucket.index(existing)] = record
            else:
                self._buckets.setdefault(record.trait_id, []).append(record)
            seen[record.identity] = record
            added.setdefault(record.trait_id, {})[record.identity] = record

        if not added:
            logger.debug("Shard from %s added no new records", shard.library_id)
            return

        # Sort every touched bucket and freeze the audience before delivering
        # anything, so a consumer attached mid-fan-out sees each record once.
        deliveries = []
        for trait_id in sorted(added):
            bucket = self._buckets[trait_id]
            bucket.sort(key=_sort_key)
            update = BucketUpdate(
                kind=UpdateKind.DELTA,
                trait_id=trait_id,
                records=tuple(sorted(added[trait_id].values(), key=_sort_key)),
                bucket=tuple(bucket),
            )
            deliveries.append((update, list(self._subscriptions.get(trait_id, ()))))

        for update, subscriptions in deliveries:
            for sub in subscriptions:
                if sub.active:
                    self._deliver(sub, update)

    # ── Consumers ────────────────────────────────────────────────────

    def attach(self, trait_id: str, consumer: Consumer) -> Subscription:
        """Register ``consumer`` and hand it the current snapshot before returning."""
        sub = Subscription(self, trait_id, consumer)
        if self._closed:
            sub.active = False
        else:
            self._subscriptions.setdefault(trait_id, []).append(sub)

        snapshot = self.query(trait_id)
        update = BucketUpdate(kind=UpdateKind.SNAPSHOT, trait_id=trait_id, records=snapshot, bucket=snapshot)
        if self._merging:
            self._deliver(sub, update)
            return sub

        # Submits made by the snapshot handler wait until it has returned.
        self._merging = True
        try:
            self._deliver(sub, update)
            self._drain_deferred()
        finally:
            self._merging = False
        return sub

    def _deliver(self, sub: Subscription, update: BucketUpdate) -> None:
        try:
            sub.consumer(update)
        except Exception as e:
            self.diagnostics.record(
                CONSUMER_CALLBACK_FAILURE,
                f"Consumer for {update.trait_id} raised on {update.kind.value}: {e!r}",
                trait_id=update.trait_id,
                details={"kind": update.kind.value, "error": repr(e)},
            )

    def _remove(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.trait_id, [])
        if sub in subs:
            subs.remove(sub)
        if not subs:
            self._subscriptions.pop(sub.trait_id, None)

    def close(self) -> None:
        """Deactivate every subscription. Used on page teardown."""
        for subs in self._subscriptions.values():
            for sub in subs:
                sub.active = False
        self._subscriptions.clear()
        self._closed = True

    # ── Reads ────────────────────────────────────────────────────────

    def query(self, trait_id: str) -> tuple[ImplementationRecord, ...]:
        """Current bucket for ``trait_id``; empty if nothing has been merged."""
        return tuple(self._buckets.get(trait_id, ()))

    def trait_ids(self) -> list[str]:
        return sorted(t for t, bucket in self._buckets.items() if bucket)

    def libraries(self) -> list[str]:
        return sorted({r.library_id for bucket in self._buckets.values() for r in bucket})

    def consumer_count(self, trait_id: str) -> int:
        return len(self._subscriptions.get(trait_id, ()))


def _sort_key(record: ImplementationRecord) -> tuple[str, str, str]:
    return record.sort_key
