from __future__ import annotations

from b2c_trace_interpreter.interpretation.interpreter import interpret_records
from b2c_trace_interpreter.interpretation.node_utils import iter_steps, step_data
from b2c_trace_interpreter.models.trace import FlowNode, FlowNodeType
from b2c_trace_interpreter.post_processors import (
    HrdSelectionResolver,
    StepDurationPostProcessor,
    TracePostProcessor,
    run_post_processors,
)

from builders import action, entries, predicate, record, sb, settings, step_record, values


def _trace(*records):
    return interpret_records(list(records), settings=settings())


def _hrd_trace(next_profile: str, *, tage: str = "SomeTAGE", same_step_profile: str = ""):
    hrd = entries(
        (
            "HomeRealmDiscovery",
            values(("TechnicalProfileEnabled", "AExch"), ("TechnicalProfileEnabled", "BExch")),
        )
    )
    selection = {"TAGE": sb(tage)} if tage else {}
    same_step = (
        action("ClaimsExchangeActionHandler", recorder=entries(("InitiatingClaimsExchange", same_step_profile)))
        if same_step_profile
        else []
    )
    return _trace(
        step_record(0, "Event:AUTH", 1, predicate("HomeRealmDiscoveryHandler", ok=False, recorder=hrd)),
        record(3000, "Event:ClaimsExchange", *action("ClaimsExchangeSelectHandler", statebag=selection), *same_step),
        step_record(
            5000,
            "Event:API",
            2,
            action("ClaimsExchangeActionHandler", recorder=entries(("InitiatingClaimsExchange", next_profile))),
        ),
    )


def test_step_durations_in_execution_order():
    trace = _trace(
        step_record(0, "Event:AUTH", 1),
        step_record(1500, "Event:API", 2),
        step_record(4000, "Event:API", 3),
    )
    StepDurationPostProcessor().process(trace.root)
    assert [step_data(s).duration for s in iter_steps(trace.root)] == [1500, 2500, None]


def test_hrd_selection_resolved_from_next_step():
    trace = _hrd_trace("AExch")
    HrdSelectionResolver().process(trace.root)
    step = next(iter_steps(trace.root))
    assert step_data(step).selected_option == "AExch"
    hrd = [c for c in step.children if c.type == FlowNodeType.HOME_REALM_DISCOVERY][0]
    assert hrd.data.selected_option == "AExch"


def test_hrd_selection_left_unresolved_without_match():
    trace = _hrd_trace("Unrelated-TP")
    HrdSelectionResolver().process(trace.root)
    assert step_data(next(iter_steps(trace.root))).selected_option == "SomeTAGE"


def test_hrd_selection_prefers_profile_run_in_the_same_step():
    trace = _hrd_trace("AExch", same_step_profile="BExch")
    HrdSelectionResolver().process(trace.root)
    step = next(iter_steps(trace.root))
    assert step_data(step).selected_option == "BExch"
    hrd = [c for c in step.children if c.type == FlowNodeType.HOME_REALM_DISCOVERY][0]
    assert hrd.data.selected_option == "BExch"


def test_hrd_selection_resolved_when_no_raw_selection_was_recorded():
    trace = _hrd_trace("AExch", tage="")
    step = next(iter_steps(trace.root))
    assert step_data(step).selected_option is None
    HrdSelectionResolver().process(trace.root)
    assert step_data(step).selected_option == "AExch"


class _Exploding(TracePostProcessor):
    name = "exploding"

    def process(self, root: FlowNode) -> None:
        raise ValueError("nope")


def test_failing_processor_is_reported_and_others_still_run():
    trace = _trace(step_record(0, "Event:AUTH", 1), step_record(2000, "Event:API", 2))
    errors = run_post_processors(trace.root, [_Exploding(), StepDurationPostProcessor()])
    assert errors == ["exploding: nope"]
    assert step_data(next(iter_steps(trace.root))).duration == 2000
