"""Tests for the page-scoped implementor registry."""

import itertools

import pytest

from implindex.diagnostics import CONSUMER_CALLBACK_FAILURE, MALFORMED_SHARD, DiagnosticLog
from implindex.registry.models import UpdateKind
from implindex.registry.page_registry import Registry


def _impl(trait: str, target: str, text: str = "", **extra) -> dict:
    descriptor = {"trait": trait, "target": target, "text": text or f"impl {trait} for {target}"}
    descriptor.update(extra)
    return descriptor


def _pairs(records) -> list[tuple[str, str]]:
    return [(r.library_id, r.target_type_id) for r in records]


# --- Merge & dedup ---


def test_query_empty_registry():
    reg = Registry()
    assert reg.query("Eq") == ()
    assert reg.trait_ids() == []


def test_snapshot_after_submissions_sorted_by_library():
    reg = Registry()
    reg.submit("libB", [_impl("Eq", "Bar")])
    reg.submit("libA", [_impl("Eq", "Foo")])

    received = []
    reg.attach("Eq", received.append)

    assert len(received) == 1
    assert received[0].kind == UpdateKind.SNAPSHOT
    assert _pairs(received[0].records) == [("libA", "Foo"), ("libB", "Bar")]


def test_resubmission_is_idempotent():
    reg = Registry()
    reg.submit("libA", [_impl("Eq", "Foo")])
    reg.submit("libB", [_impl("Eq", "Bar")])

    received = []
    reg.attach("Eq", received.append)
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert len(reg.query("Eq")) == 2
    assert len(received) == 1  # no empty delta for a no-op merge


def test_duplicate_within_one_shard_kept_once():
    reg = Registry()
    reg.submit("libA", [_impl("Eq", "Foo"), _impl("Eq", "Foo")])
    assert len(reg.query("Eq")) == 1


def test_same_target_different_signature_kept_separately():
    reg = Registry()
    reg.submit("libA", [_impl("From", "Foo", "impl From<u8> for Foo"), _impl("From", "Foo", "impl From<u16> for Foo")])
    assert [r.source_text for r in reg.query("From")] == ["impl From<u16> for Foo", "impl From<u8> for Foo"]


def test_shard_splits_across_traits():
    reg = Registry()
    reg.submit("libA", [_impl("Eq", "Foo"), _impl("Ord", "Foo"), _impl("Eq", "Bar")])

    assert _pairs(reg.query("Eq")) == [("libA", "Bar"), ("libA", "Foo")]
    assert _pairs(reg.query("Ord")) == [("libA", "Foo")]
    assert reg.trait_ids() == ["Eq", "Ord"]
    assert reg.libraries() == ["libA"]


def test_order_independence_across_permutations():
    shards = [
        ("xcb", [_impl("Borrow", "xcb::StrBuf"), _impl("Borrow", "xcb::HostBuf"), _impl("BitOr", "xcb::EventMask")]),
        ("smallvec", [_impl("Borrow", "smallvec::SmallVec")]),
        ("bytes", [_impl("Unpin", "bytes::Chain", synthetic=True), _impl("Borrow", "bytes::Bytes")]),
        ("xcb", [_impl("Borrow", "xcb::StrBuf")]),
    ]

    results = set()
    for order in itertools.permutations(shards):
        reg = Registry()
        for library_id, descriptors in order:
            reg.submit(library_id, descriptors)
        results.add(tuple((t, reg.query(t)) for t in reg.trait_ids()))

    assert len(results) == 1
    final = dict(results.pop())
    assert _pairs(final["Borrow"]) == [
        ("bytes", "bytes::Bytes"),
        ("smallvec", "smallvec::SmallVec"),
        ("xcb", "xcb::HostBuf"),
        ("xcb", "xcb::StrBuf"),
    ]


def test_records_carry_passthrough_fields():
    reg = Registry()
    types = ["smallvec::SmallVec"]
    reg.submit("smallvec", [_impl("Borrow", "smallvec::SmallVec", synthetic=False, where="", types=types)])
    types.append("mutated")

    record = reg.query("Borrow")[0]
    assert record.extra["types"] == ("smallvec::SmallVec",)
    assert record.is_synthetic is False


# --- Malformed shards ---


def test_empty_library_id_rejected_with_one_diagnostic():
    diagnostics = DiagnosticLog()
    reg = Registry(diagnostics)
    reg.submit("libA", [_impl("Eq", "Foo")])

    reg.submit("", [_impl("Eq", "Bar"), _impl("Ord", "Bar")])

    assert _pairs(reg.query("Eq")) == [("libA", "Foo")]
    assert reg.query("Ord") == ()
    assert diagnostics.count() == 1
    assert diagnostics.events()[0].code == MALFORMED_SHARD


def test_one_bad_record_drops_whole_shard():
    diagnostics = DiagnosticLog()
    reg = Registry(diagnostics)

    reg.submit("libA", [_impl("Eq", "Foo"), {"trait": "Eq"}])

    assert reg.query("Eq") == ()
    assert diagnostics.count(MALFORMED_SHARD) == 1
    issues = diagnostics.events()[0].details["issues"]
    assert {"code": "TARGET_MISSING", "path": "[1].target"} in issues


def test_malformed_shard_does_not_notify():
    reg = Registry()
    received = []
    reg.attach("Eq", received.append)

    reg.submit("libA", [{"target": "Foo"}])

    assert len(received) == 1


# --- Attach / detach ---


def test_attach_before_submissions_gets_empty_snapshot_then_delta():
    reg = Registry()
    received = []
    reg.attach("Ord", received.append)

    assert len(received) == 1
    assert received[0].is_snapshot
    assert received[0].records == ()

    reg.submit("libA", [_impl("Ord", "Foo")])

    assert len(received) == 2
    assert received[1].kind == UpdateKind.DELTA
    assert _pairs(received[1].records) == [("libA", "Foo")]


def test_delta_contains_only_new_records_and_full_bucket():
    reg = Registry()
    reg.submit("libB", [_impl("Eq", "Bar")])
    received = []
    reg.attach("Eq", received.append)

    reg.submit("libA", [_impl("Eq", "Foo"), _impl("Eq", "Baz")])

    delta = received[-1]
    assert _pairs(delta.records) == [("libA", "Baz"), ("libA", "Foo")]
    assert _pairs(delta.bucket) == [("libA", "Baz"), ("libA", "Foo"), ("libB", "Bar")]


def test_consumer_not_notified_for_other_traits():
    reg = Registry()
    received = []
    reg.attach("Eq", received.append)
    reg.submit("libA", [_impl("Ord", "Foo")])
    assert len(received) == 1


def test_detach_stops_notifications():
    reg = Registry()
    received = []
    detach = reg.attach("Eq", received.append)

    detach()
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert len(received) == 1
    assert reg.consumer_count("Eq") == 0


def test_detach_twice_is_harmless():
    reg = Registry()
    sub = reg.attach("Eq", lambda update: None)
    sub.detach()
    sub.detach()
    assert not sub.active


def test_detach_from_another_consumer_mid_fanout():
    reg = Registry()
    second = []
    handles = {}

    def first(update):
        if not update.is_snapshot:
            handles["second"]()

    reg.attach("Eq", first)
    handles["second"] = reg.attach("Eq", second.append)

    reg.submit("libA", [_impl("Eq", "Foo")])

    assert len(second) == 1  # only the snapshot


def test_every_record_delivered_exactly_once():
    reg = Registry()
    seen = []
    reg.submit("libA", [_impl("Eq", "Foo")])

    reg.attach("Eq", lambda update: seen.extend(update.records))
    reg.submit("libB", [_impl("Eq", "Bar")])
    reg.submit("libA", [_impl("Eq", "Foo"), _impl("Eq", "Qux")])

    assert sorted(_pairs(seen)) == sorted(_pairs(reg.query("Eq")))
    assert len(seen) == 3


def test_attach_during_fanout_sees_records_once():
    reg = Registry()
    late = []

    def early(update):
        if not update.is_snapshot and not late:
            reg.attach("Ord", lambda u: late.extend(u.records))

    reg.attach("Eq", early)
    reg.submit("libA", [_impl("Eq", "Foo"), _impl("Ord", "Foo")])

    assert _pairs(late) == [("libA", "Foo")]


# --- Callback failures & re-entrancy ---


def test_failing_consumer_is_isolated():
    diagnostics = DiagnosticLog()
    reg = Registry(diagnostics)
    received = []

    def broken(update):
        if not update.is_snapshot:
            raise RuntimeError("render failed")

    reg.attach("Eq", broken)
    reg.attach("Eq", received.append)
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert len(received) == 2
    assert len(reg.query("Eq")) == 1
    events = diagnostics.events(code=CONSUMER_CALLBACK_FAILURE)
    assert len(events) == 1
    assert events[0].trait_id == "Eq"


def test_failing_snapshot_still_attaches():
    diagnostics = DiagnosticLog()
    reg = Registry(diagnostics)
    calls = []

    def flaky(update):
        calls.append(update)
        if update.is_snapshot:
            raise ValueError("not ready")

    reg.attach("Eq", flaky)
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert len(calls) == 2
    assert diagnostics.count(CONSUMER_CALLBACK_FAILURE) == 1


def test_submit_from_callback_is_deferred():
    reg = Registry()
    order = []

    def consumer(update):
        order.append(_pairs(update.records))
        if ("libA", "Foo") in _pairs(update.records):
            reg.submit("libB", [_impl("Eq", "Bar")])
            order.append("submitted")

    reg.attach("Eq", consumer)
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert order == [[], [("libA", "Foo")], "submitted", [("libB", "Bar")]]
    assert len(reg.query("Eq")) == 2


def test_close_deactivates_consumers():
    reg = Registry()
    received = []
    sub = reg.attach("Eq", received.append)

    reg.close()
    reg.submit("libA", [_impl("Eq", "Foo")])

    assert not sub.active
    assert len(received) == 1

    later = []
    reg.attach("Eq", later.append)
    assert _pairs(later[0].records) == [("libA", "Foo")]


def test_submit_from_snapshot_callback_waits_for_handler():
    reg = Registry()
    log = []

    def consumer(update):
        log.append(("enter", update.kind.value))
        if update.is_snapshot:
            reg.submit("libA", [_impl("Eq", "Foo")])
        log.append(("exit", update.kind.value))

    reg.attach("Eq", consumer)

    assert log == [("enter", "snapshot"), ("exit", "snapshot"), ("enter", "delta"), ("exit", "delta")]
    assert _pairs(reg.query("Eq")) == [("libA", "Foo")]


# --- Conflicting payloads & passthrough data ---


def _payloads(records) -> list[tuple]:
    return [(r.identity, r.constraint_text, r.is_synthetic, r.payload_key[2]) for r in records]


def test_conflicting_payloads_resolved_independent_of_order():
    plain = ("libA", [_impl("Eq", "Foo", where="", synthetic=False)])
    bounded = ("libA", [_impl("Eq", "Foo", where="where T: Eq", synthetic=True, types=["Foo"])])
    other = ("libB", [_impl("Eq", "Bar")])

    results = set()
    for order in itertools.permutations([plain, bounded, other]):
        reg = Registry()
        for library_id, descriptors in order:
            reg.submit(library_id, descriptors)
        results.add(tuple(_payloads(reg.query("Eq"))))

    assert len(results) == 1
    foo, bar = results.pop()
    assert foo[0] == ("Eq", "Foo", "libA", "impl Eq for Foo")
    assert foo[1:3] == ("", False)
    assert bar[0][2] == "libB"


def test_replacing_payload_is_delivered_as_delta():
    reg = Registry()
    received = []
    reg.attach("Eq", received.append)

    reg.submit("libA", [_impl("Eq", "Foo", where="where T: Eq", synthetic=True)])
    reg.submit("libA", [_impl("Eq", "Foo", where="", synthetic=False)])
    reg.submit("libA", [_impl("Eq", "Foo", where="where T: Eq", synthetic=True)])

    assert len(received) == 3
    replaced = received[2]
    assert [(r.constraint_text, r.is_synthetic) for r in replaced.records] == [("", False)]
    assert len(replaced.bucket) == 1
    assert reg.query("Eq")[0].constraint_text == ""


def test_conflict_within_one_shard_delivers_one_record():
    reg = Registry()
    received = []
    reg.attach("Eq", received.append)

    reg.submit("libA", [_impl("Eq", "Foo", synthetic=True), _impl("Eq", "Foo", synthetic=False)])

    assert [r.is_synthetic for r in received[1].records] == [False]
    assert len(reg.query("Eq")) == 1


def test_passthrough_data_is_read_only_in_snapshots():
    reg = Registry()
    reg.submit("smallvec", [_impl("Borrow", "smallvec::SmallVec", types=["smallvec::SmallVec"], meta={"path": ["a"]})])

    record = reg.query("Borrow")[0]
    with pytest.raises(AttributeError):
        record.extra["types"].append("mutated")
    with pytest.raises(TypeError):
        record.extra["meta"]["path"] = ["b"]

    again = reg.query("Borrow")[0]
    assert again.extra["types"] == ("smallvec::SmallVec",)
    assert again.extra["meta"]["path"] == ("a",)
