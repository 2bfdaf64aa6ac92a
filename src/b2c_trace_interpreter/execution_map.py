"""Per-node execution status derived from an interpreted tree.

The map is rebuilt from the tree every time rather than updated
incrementally, so it always agrees with the tree it was built from. Keys are
node graph ids: repeated visits of the same orchestration step, or the same
technical profile used by several steps, share one entry whose status is the
result of the latest visit in execution order.

Status rules:
    Step: the step's own result
    TechnicalProfile / ClaimsTransformation / HomeRealmDiscovery /
    DisplayControl / SendClaims: the result of the owning step
    SubJourney: the result of the last step inside it (Success when empty)
"""
from __future__ import annotations

from collections import Counter
from typing import Dict, Optional

from .interpretation.node_utils import iter_steps, step_data
from .models.trace import FlowNode, FlowNodeType, NodeExecutionStatus, StepResult

__all__ = ["build_execution_map", "execution_stats"]


def _record(
    result: Dict[str, NodeExecutionStatus],
    node: FlowNode,
    status: StepResult,
    step_index: int,
) -> None:
    entry = result.get(node.id)
    if entry is None:
        entry = NodeExecutionStatus(status=status)
        result[node.id] = entry
    entry.status = status
    entry.visit_count += 1
    if step_index not in entry.step_indices:
        entry.step_indices.append(step_index)


def _visit(
    node: FlowNode,
    owning_status: Optional[StepResult],
    owning_step: int,
    result: Dict[str, NodeExecutionStatus],
) -> None:
    for child in node.children:
        if child.type == FlowNodeType.STEP:
            data = step_data(child)
            _record(result, child, data.result, data.step_index)
            _visit(child, data.result, data.step_index, result)
        elif child.type == FlowNodeType.SUB_JOURNEY:
            steps = list(iter_steps(child))
            status = step_data(steps[-1]).result if steps else StepResult.SUCCESS
            _record(result, child, status, owning_step)
            _visit(child, None, owning_step, result)
        else:
            _record(result, child, owning_status or StepResult.SUCCESS, owning_step)
            _visit(child, owning_status, owning_step, result)


def build_execution_map(root: FlowNode) -> Dict[str, NodeExecutionStatus]:
    result: Dict[str, NodeExecutionStatus] = {}
    _visit(root, None, 0, result)
    return result


def execution_stats(execution_map: Dict[str, NodeExecutionStatus]) -> Dict[str, int]:
    """Summary counts: unique nodes, total visits and nodes per status."""
    statuses = Counter(entry.status.value for entry in execution_map.values())
    stats = {
        "unique_nodes": len(execution_map),
        "total_visits": sum(entry.visit_count for entry in execution_map.values()),
    }
    for status in StepResult:
        stats[status.value] = statuses.get(status.value, 0)
    return stats
