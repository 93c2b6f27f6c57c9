from __future__ import annotations

import threading

import pytest

from telemetry_link.commands import Command, Direction
from telemetry_link.errors import DuplicateField
from telemetry_link.samples import Kind, Sample
from telemetry_link.store import Comment, PendingQueue, Record, Store


def test_elapsed_is_none_before_first_record(clock) -> None:
    store = Store(clock=clock)
    assert store.elapsed() is None
    assert store.start_time is None

    store.append_comment("before start")
    assert store.elapsed() is None


def test_first_record_latches_start_time(clock) -> None:
    store = Store(clock=clock)
    first = store.append_record([Sample.of(Kind.DISTANCE, 5)])
    assert first.elapsed_ms == 0
    assert store.start_time == int(clock.now * 1000)

    clock.advance(0.25)
    second = store.append_record([Sample.of(Kind.DISTANCE, 6)])
    assert second.elapsed_ms == 250
    assert store.elapsed() == 250


def test_duplicate_discriminant_rejected_without_mutation(clock) -> None:
    store = Store(clock=clock)
    queue = PendingQueue()
    store.attach_queue(queue)

    with pytest.raises(DuplicateField):
        store.append_record(
            [Sample.of(Kind.COLOR, 1, 2), Sample.of(Kind.COLOR, 3, 4)]
        )

    assert len(store) == 0
    assert len(queue) == 0
    assert store.start_time is None


def test_update_totals_first_call_only_arms() -> None:
    store = Store()
    store.update_totals(1.0, 2.0)
    assert store.totals == (0.0, 0.0)
    store.update_totals(3.0, 4.0)
    assert store.totals == (3.0, 4.0)


def test_driven_distance_is_rewritten_cumulatively(clock) -> None:
    store = Store(clock=clock)
    store.update_totals(1.0, 2.0)
    store.update_totals(3.0, 4.0)

    record = store.append_record(
        [Sample.of(Kind.DRIVEN_DISTANCE, 0.5, 0.5), Sample.of(Kind.DISTANCE, 7)]
    )

    assert record.samples[0] == Sample.of(Kind.DRIVEN_DISTANCE, 3.5, 4.5)
    assert record.samples[1] == Sample.of(Kind.DISTANCE, 7)
    assert store.entry(0) == record


def test_records_are_pushed_to_attached_queue(clock) -> None:
    store = Store(clock=clock)
    store.append_record([Sample.of(Kind.DISTANCE, 1)])

    queue = PendingQueue()
    store.attach_queue(queue)
    record = store.append_record([Sample.of(Kind.DISTANCE, 2)])
    store.append_comment("not queued")

    assert queue.snapshot() == [record]

    store.detach_queue()
    store.append_record([Sample.of(Kind.DISTANCE, 3)])
    assert len(queue) == 1


def test_replay_does_not_rewrite_or_queue(clock) -> None:
    store = Store(clock=clock)
    store.update_totals(0.0, 0.0)
    store.update_totals(10.0, 10.0)
    queue = PendingQueue()
    store.attach_queue(queue)

    incoming = Record(1500, (Sample.of(Kind.DRIVEN_DISTANCE, 1.0, 1.0),))
    store.replay(incoming)
    store.replay(Comment("remote note"))

    assert store.snapshot() == [incoming, Comment("remote note")]
    assert len(queue) == 0
    assert store.elapsed() == 1500


def test_replay_rejects_duplicate_discriminant(clock) -> None:
    store = Store(clock=clock)
    incoming = Record(0, (Sample.of(Kind.COLOR, 1, 2), Sample.of(Kind.COLOR, 3, 4)))

    with pytest.raises(DuplicateField):
        store.replay(incoming)

    assert len(store) == 0
    assert store.start_time is None


def test_out_of_range_sample_never_reaches_store(clock) -> None:
    store = Store(clock=clock)
    queue = PendingQueue()
    store.attach_queue(queue)

    with pytest.raises(ValueError):
        store.append_record([Sample.of(Kind.DISTANCE, 40000)])

    assert len(store) == 0
    assert len(queue) == 0


def test_add_command_and_session_name() -> None:
    store = Store()
    assert store.session_name() == "data_"

    store.add_command(Command.turn(90))
    store.add_command(Command.turn_one_wheel(45, Direction.LEFT))
    store.add_command(Command.turn_radius(200, 30))

    assert store.session_name() == "data_Turn(90)_TurnOneWheel(45,Left)_TurnRadius(200,30)"
    assert store.snapshot()[0] == Comment("Turn(90)")
    assert len(store) == 3


def test_clear_resets_everything(clock) -> None:
    store = Store(clock=clock)
    store.add_command(Command.drive_dist(100))
    store.update_totals(1.0, 1.0)
    store.update_totals(1.0, 1.0)
    store.append_record([Sample.of(Kind.DISTANCE, 1)])

    store.clear()

    assert len(store) == 0
    assert store.elapsed() is None
    assert store.totals == (0.0, 0.0)
    assert store.session_name() == "data_"

    # accumulator must be re-armed after clear
    store.update_totals(5.0, 5.0)
    assert store.totals == (0.0, 0.0)


def test_drain_prefix(clock) -> None:
    store = Store(clock=clock)
    for i in range(5):
        store.append_record([Sample.of(Kind.DISTANCE, i)])

    store.drain_prefix(2)
    assert [e.samples[0].values[0] for e in store.snapshot()] == [2, 3, 4]

    store.drain_prefix(3)
    assert len(store) == 3

    store.drain_prefix(0)
    assert len(store) == 3


def test_pending_queue_discards_only_sent_entries() -> None:
    queue = PendingQueue()
    queue.push(Comment("a"))
    queue.push(Comment("b"))
    sent = queue.snapshot()
    queue.push(Comment("c"))

    queue.discard(len(sent))

    assert queue.snapshot() == [Comment("c")]


def test_concurrent_appends(clock) -> None:
    store = Store(clock=clock)
    queue = PendingQueue()
    store.attach_queue(queue)

    def worker() -> None:
        for i in range(200):
            store.append_record([Sample.of(Kind.DISTANCE, i)])

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 800
    assert queue.snapshot() == store.snapshot()
