"""
Unit tests for flush planning (ordering, coalescing, grouping).
"""

from call_sync.coordinator import AppendOp, UpdateOp, UpdateTarget
from call_sync.coordinator.grouping import group_appends, plan_flush, sort_operations


def upd(rng, values, row_index=0, t=0.0, section="S"):
    return UpdateOp(
        sink_key="k", target=UpdateTarget(section, rng, row_index), values=values, enqueued_at=t
    )


def app(rows, t=0.0, section="S"):
    return AppendOp(sink_key="k", section=section, rows=tuple(rows), enqueued_at=t)


def test_sort_puts_updates_first_then_by_enqueue_time():
    a1, a2 = app([["a1"]], t=1), app([["a2"]], t=0.5)
    u1, u2 = upd("A1:A1", ["u1"], t=3), upd("A2:A2", ["u2"], t=2)

    assert sort_operations([a1, u1, a2, u2]) == [u2, u1, a2, a1]


def test_sort_is_stable_for_equal_timestamps():
    a, b, c = app([["a"]], t=1), app([["b"]], t=1), app([["c"]], t=1)
    assert sort_operations([a, b, c]) == [a, b, c]


def test_plan_flush_last_write_wins_per_row_index():
    ops = [
        upd("A2:C4", ["old-2"], row_index=2, t=1),
        upd("A2:C4", ["r0"], row_index=0, t=2),
        upd("A2:C4", ["new-2"], row_index=2, t=3),
    ]
    updates, appends = plan_flush(ops)

    assert appends == []
    (group,) = updates
    assert group.target.range == "A2:C4"
    assert group.rows == [["r0"], ["new-2"]]
    # every contributing op is kept so a throttled group can be replayed whole
    assert len(group.ops) == 3


def test_plan_flush_separates_ranges_and_sections():
    updates, _ = plan_flush(
        [upd("E2:K2", ["x"], section="A"), upd("E2:K2", ["y"], section="B"), upd("E3:K3", ["z"])]
    )
    assert [(g.target.section, g.target.range) for g in updates] == [
        ("A", "E2:K2"),
        ("B", "E2:K2"),
        ("S", "E3:K3"),
    ]


def test_group_appends_concatenates_rows_in_order():
    groups = group_appends([app([["1"], ["2"]]), app([["x"]], section="T"), app([["3"]])])

    assert [(g.section, g.rows) for g in groups] == [("S", [["1"], ["2"], ["3"]]), ("T", [["x"]])]
    assert len(groups[0].ops) == 2


def test_group_appends_skips_empty_ops():
    assert group_appends([app([])]) == []


def test_update_groups_follow_latest_write():
    """A status block rewritten after an error block on the same row is sent last."""
    status_1 = upd("E2:K2", ["ringing"], t=1)
    error = upd("G2:K2", ["boom"], t=2)
    status_2 = upd("E2:K2", ["completed"], t=3)

    updates, _ = plan_flush([status_1, error, status_2])

    assert [(g.target.range, g.rows) for g in updates] == [
        ("G2:K2", [["boom"]]),
        ("E2:K2", [["completed"]]),
    ]


def test_error_after_status_is_sent_last():
    updates, _ = plan_flush([upd("E2:K2", ["completed"], t=1), upd("G2:K2", ["boom"], t=2)])
    assert [g.target.range for g in updates] == ["E2:K2", "G2:K2"]
