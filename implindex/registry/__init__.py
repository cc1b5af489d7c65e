"""Registry — the page-scoped merge point for implementor shards.

The registry provides:
- Merging: fold library shards into per-trait buckets, deduplicated
- Ordering: buckets re-sorted after every merge, independent of arrival order
- Streaming: snapshot-on-attach, then deltas to attached consumers
- Buffering: a page session queues submissions that arrive before init
"""
