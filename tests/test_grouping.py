from __future__ import annotations

from b2c_trace_interpreter.grouping import group_into_flows, records_for_flow, split_by_auth_restarts

from builders import BASE, step_record


def _mixed():
    return [
        step_record(5000, "Event:API", 2, correlation_id="c1"),
        step_record(1000, "Event:AUTH", 1, correlation_id="c2"),
        step_record(0, "Event:AUTH", 1, correlation_id="c1"),
        step_record(3000, "Event:API", 2, correlation_id="c2"),
    ]


def test_groups_by_correlation_id_ordered_by_start():
    flows = group_into_flows(_mixed())
    assert [f.id for f in flows] == ["c1", "c2"]
    c1 = flows[0]
    assert c1.correlation_id == "c1"
    assert c1.log_ids == ["c1-r0", "c1-r5000"]
    assert (c1.end_time - c1.start_time).total_seconds() == 5
    assert c1.start_time == BASE
    assert c1.policy_id == "B2C_1A_DEV_SignUpSignIn_EN"


def test_flow_ids_are_stable():
    records = _mixed()
    assert [f.id for f in group_into_flows(records)] == [f.id for f in group_into_flows(list(reversed(records)))]


def test_records_for_flow_selects_and_orders():
    records = _mixed()
    c2 = group_into_flows(records)[1]
    assert [r.id for r in records_for_flow(records, c2)] == ["c2-r1000", "c2-r3000"]


def test_auth_restart_split_is_opt_in():
    records = [
        step_record(0, "Event:AUTH", 1),
        step_record(1000, "Event:API", 2),
        step_record(60000, "Event:AUTH", 1),
        step_record(61000, "Event:API", 2),
    ]
    assert [f.id for f in group_into_flows(records)] == ["corr-1"]
    split = group_into_flows(records, split_on_auth_restart=True)
    assert [f.id for f in split] == ["corr-1", "corr-1-2"]
    assert split[1].log_ids == ["corr-1-r60000", "corr-1-r61000"]
    assert [len(s) for s in split_by_auth_restarts(records)] == [2, 2]
