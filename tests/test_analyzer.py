from __future__ import annotations

from b2c_trace_interpreter.analyzer import analyze_flow, enrich_user_flow, interpret_flow
from b2c_trace_interpreter.grouping import group_into_flows
from b2c_trace_interpreter.interpretation.node_utils import iter_steps, step_data
from b2c_trace_interpreter.models.telemetry import ExceptionInfo, FatalExceptionClip
from b2c_trace_interpreter.models.trace import FlowNode
from b2c_trace_interpreter.post_processors import TracePostProcessor

from builders import POLICY, action, entries, record, sb, settings, step_record


def _journey():
    return [
        step_record(0, "Event:AUTH", 1),
        step_record(
            2000,
            "Event:API",
            2,
            action("SubJourneyDispatchActionHandler", recorder=entries(("SubJourney", "MfaSub"))),
        ),
        step_record(2100, "Event:API", 1, action("SubJourneyExitActionHandler")),
        step_record(
            3000,
            "Event:API",
            3,
            action(
                "SendClaimsHandler",
                statebag={
                    "CTP": sb("JwtIssuer:3"),
                    "Complex-CLMS": {"email": "ada@example.com", "objectId": "oid-1"},
                },
            ),
        ),
    ]


def test_interpret_flow_runs_post_processors_and_builds_map():
    trace = interpret_flow(_journey(), settings=settings())
    durations = [step_data(s).duration for s in iter_steps(trace.root)]
    assert durations == [2000, 100, 900, None]
    assert f"{POLICY}-Step3" in trace.execution_map
    assert trace.post_processing_errors == []


class _Broken(TracePostProcessor):
    name = "broken"

    def process(self, root: FlowNode) -> None:
        raise RuntimeError("bad tree")


def test_interpret_flow_collects_post_processing_errors():
    trace = interpret_flow(_journey(), settings=settings(), post_processors=[_Broken()])
    assert trace.post_processing_errors == ["broken: bad tree"]
    assert trace.execution_map


def test_analyze_flow_enriches_user_flow():
    records = _journey()
    flow = group_into_flows(records)[0]
    analysis = analyze_flow(records, flow, settings=settings())
    enriched = analysis.flow
    assert enriched.step_count == 4
    assert enriched.completed
    assert not enriched.has_errors
    assert not enriched.cancelled
    assert enriched.sub_journeys == ["MfaSub"]
    assert enriched.user_email == "ada@example.com"
    assert enriched.user_object_id == "oid-1"
    assert flow.step_count == 0


def test_enrich_flags_errors_and_cancellation():
    records = [
        step_record(
            0,
            "Event:SELFASSERTED",
            1,
            action(
                "SelfAssertedAttributeProviderActionHandler",
                ok=False,
                exception=ExceptionInfo(message="AADB2C90091: user cancelled"),
            ),
        ),
    ]
    flow = group_into_flows(records)[0]
    enriched = enrich_user_flow(flow, interpret_flow(records, settings=settings()))
    assert enriched.has_errors
    assert enriched.cancelled
    assert not enriched.completed
    assert enriched.user_email is None


def test_fatal_root_counts_as_error():
    records = [record(0, "Event:AUTH", FatalExceptionClip(exception=ExceptionInfo(message="down")))]
    flow = group_into_flows(records)[0]
    enriched = analyze_flow(records, flow, settings=settings()).flow
    assert enriched.has_errors
    assert enriched.step_count == 0
