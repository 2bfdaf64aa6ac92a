"""Public facade for trace interpretation.

This module provides the stable entry points for turning normalized log
records into interpreted traces. Interpretation itself lives in the
`interpretation` package; this facade chains it with the post-processors,
the execution map and flow enrichment.

Public Functions:
    interpret_flow: Interpret records, run post-processors, build execution map
    enrich_user_flow: Copy a flow with fields derived from its trace
    analyze_flow: interpret_flow + enrich_user_flow for one grouped flow
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Sequence

from .config import Settings
from .execution_map import build_execution_map
from .grouping import records_for_flow
from .interpretation.interpreter import interpret_records
from .interpretation.node_utils import iter_steps, step_data, walk
from .models.telemetry import LogRecord
from .models.trace import (
    FlowAnalysisResult,
    RootData,
    StepResult,
    SubJourneyData,
    TraceResult,
    UserFlow,
)
from .post_processors import TracePostProcessor, run_post_processors

__all__ = ["interpret_flow", "enrich_user_flow", "analyze_flow"]


def interpret_flow(
    records: Sequence[LogRecord],
    *,
    settings: Optional[Settings] = None,
    post_processors: Optional[Sequence[TracePostProcessor]] = None,
) -> TraceResult:
    """Interpret one flow's records into a complete trace.

    Args:
        records: The flow's log records, in any order.
        settings: Overrides the cached application settings.
        post_processors: Processors to run instead of the default
            duration and HRD-selection passes.

    Returns:
        TraceResult with post-processed tree and execution map. Failures of
        individual post-processors are listed in `post_processing_errors`.
    """
    trace = interpret_records(records, settings=settings)
    trace.post_processing_errors = run_post_processors(trace.root, post_processors)
    trace.execution_map = build_execution_map(trace.root)
    return trace


def _claim_text(claims: Dict[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = claims.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def enrich_user_flow(flow: UserFlow, trace: TraceResult) -> UserFlow:
    steps = [step_data(node) for node in iter_steps(trace.root)]
    root_failed = isinstance(trace.root.data, RootData) and trace.root.data.result == StepResult.ERROR
    sub_journeys = [
        node.data.journey_id for node in walk(trace.root) if isinstance(node.data, SubJourneyData)
    ]
    return flow.model_copy(
        update={
            "step_count": len(steps),
            "completed": any(s.is_final for s in steps),
            "has_errors": root_failed or any(s.result == StepResult.ERROR for s in steps),
            "cancelled": any(s.interaction_result == "Cancelled" for s in steps),
            "sub_journeys": list(dict.fromkeys(sub_journeys)),
            "user_email": _claim_text(trace.final_claims, "signInName", "email"),
            "user_object_id": _claim_text(trace.final_claims, "objectId"),
        }
    )


def analyze_flow(
    records: Iterable[LogRecord],
    flow: UserFlow,
    *,
    settings: Optional[Settings] = None,
) -> FlowAnalysisResult:
    trace = interpret_flow(records_for_flow(records, flow), settings=settings)
    return FlowAnalysisResult(trace=trace, flow=enrich_user_flow(flow, trace))
