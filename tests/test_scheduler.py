import asyncio

import pytest

from b2c_trace_interpreter import scheduler as scheduler_module
from b2c_trace_interpreter.analyzer import analyze_flow
from b2c_trace_interpreter.grouping import group_into_flows
from b2c_trace_interpreter.scheduler import FlowAnalysisScheduler, analyze_all_flows

from builders import settings, step_record

pytestmark = pytest.mark.asyncio


def _records():
    return [
        step_record(0, "Event:AUTH", 1, correlation_id="c1"),
        step_record(10, "Event:AUTH", 1, correlation_id="c2"),
        step_record(20, "Event:AUTH", 1, correlation_id="c3"),
    ]


async def test_all_flows_are_analyzed_and_published():
    records = _records()
    flows = group_into_flows(records)
    cache = {}
    published = []
    await analyze_all_flows(
        records,
        flows,
        cache=cache,
        on_flow_analyzed=lambda flow_id, result: published.append(flow_id),
        settings=settings(),
    )
    assert sorted(cache) == ["c1", "c2", "c3"]
    assert sorted(published) == ["c1", "c2", "c3"]
    assert cache["c1"].flow.step_count == 1


async def test_cached_flows_are_not_reanalyzed():
    records = _records()
    flows = group_into_flows(records)
    existing = analyze_flow(records, flows[0], settings=settings())
    cache = {"c1": existing}
    published = []
    await analyze_all_flows(
        records, flows, cache=cache, on_flow_analyzed=lambda f, r: published.append(f), settings=settings()
    )
    assert cache["c1"] is existing
    assert sorted(published) == ["c2", "c3"]


async def test_cancelled_before_start_writes_nothing():
    records = _records()
    event = asyncio.Event()
    event.set()
    cache = {}
    await analyze_all_flows(records, group_into_flows(records), cache=cache, cancel_event=event, settings=settings())
    assert cache == {}


async def test_cancellation_mid_batch_stops_publishing():
    records = _records()
    event = asyncio.Event()
    cache = {}

    def _cancel_after_first(flow_id, result):
        event.set()

    await analyze_all_flows(
        records,
        group_into_flows(records),
        cache=cache,
        on_flow_analyzed=_cancel_after_first,
        cancel_event=event,
        settings=settings(),
    )
    assert list(cache) == ["c1"]


async def test_failing_flow_is_skipped(monkeypatch):
    records = _records()

    def _analyze(flow_records, flow, settings=None):
        if flow.id == "c2":
            raise ValueError("malformed")
        return analyze_flow(flow_records, flow, settings=settings)

    monkeypatch.setattr(scheduler_module, "analyze_flow", _analyze)
    cache = {}
    await analyze_all_flows(records, group_into_flows(records), cache=cache, settings=settings())
    assert sorted(cache) == ["c1", "c3"]


async def test_scheduler_start_resets_and_serves_on_demand():
    records = _records()
    flows = group_into_flows(records)
    sched = FlowAnalysisScheduler(cache={"stale": None}, settings=settings())
    await sched.start(records, flows)
    assert "stale" not in sched.cache
    assert sched.get("c2") is not None

    sched.reset()
    assert sched.get("c1") is None
    result = sched.get_or_analyze(flows[0])
    assert result.flow.id == "c1"
    assert sched.get_or_analyze(flows[0]) is result


async def test_failing_callback_does_not_stop_other_flows():
    records = _records()
    published = []

    def _callback(flow_id, result):
        if flow_id == "c1":
            raise RuntimeError("ui gone")
        published.append(flow_id)

    cache = {}
    await analyze_all_flows(
        records, group_into_flows(records), cache=cache, on_flow_analyzed=_callback, settings=settings()
    )
    assert sorted(cache) == ["c1", "c2", "c3"]
    assert sorted(published) == ["c2", "c3"]


async def test_on_demand_analysis_requires_records():
    flows = group_into_flows(_records())
    sched = FlowAnalysisScheduler(cache={}, settings=settings())
    with pytest.raises(RuntimeError, match="No records loaded"):
        sched.get_or_analyze(flows[0])
    assert sched.cache == {}

    result = sched.get_or_analyze(flows[0], records=_records())
    assert result.flow.step_count == 1
    assert sched.get("c1") is result
