"""Interpretation state container for the clip state machine.

`InterpretationContext` holds all mutable state of one interpreter run. The
interpreter mutates it while walking clips; the tree builder and node helpers
receive it explicitly instead of reaching into module state.

State Fields:
    flow_key: Stable key used to derive node uids (the flow's correlation id)
    root: Root flow node of the trace
    journey_stack: Root journey plus any sub-journeys currently entered
    active_step / active_parent: Open Step node and the node that owns it
    active_declared: False while a Step opened at a transition boundary waits
        for its declared step order
    statebag / claims: Accumulated, last-write-wins interpreter state
    pending: Predicate or Action awaiting its HandlerResult in the current record
    last_declared_ms: (journey, step) -> epoch ms of the last declaration
    boundary_pending: True after a Transition boundary closed the active Step
        and before the next Step opens
    provisional_options: True when the active step's options came from an
        enablement record and may still be replaced by a triggered exchange
    halted / fatal_error: Set once a FatalException is seen
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..models.telemetry import LogRecord
from ..models.trace import FlowNode

__all__ = ["InterpretationContext", "JourneyFrame", "PendingHandler"]


@dataclass
class JourneyFrame:
    journey_id: str
    node: FlowNode
    step_index: int = 0


@dataclass
class PendingHandler:
    kind: str
    handler: str


@dataclass
class InterpretationContext:
    flow_key: str
    root: FlowNode
    journey_stack: List[JourneyFrame]
    dedup_threshold_ms: int
    active_step: Optional[FlowNode] = None
    active_parent: Optional[FlowNode] = None
    active_declared: bool = True
    statebag: Dict[str, Any] = field(default_factory=dict)
    claims: Dict[str, Any] = field(default_factory=dict)
    pending: Optional[PendingHandler] = None
    last_declared_ms: Dict[Tuple[str, int], int] = field(default_factory=dict)
    provisional_options: bool = False
    current_record: Optional[LogRecord] = None
    current_timestamp: Optional[datetime] = None
    current_event_instance: Optional[str] = None
    last_transition_event: Optional[str] = None
    boundary_pending: bool = False
    node_sequence: int = 0
    step_sequence: int = 0
    session_count: int = 0
    warnings: List[str] = field(default_factory=list)
    halted: bool = False
    fatal_error: Optional[str] = None

    @property
    def frame(self) -> JourneyFrame:
        return self.journey_stack[-1]

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)
