"""Flow node construction with snapshot semantics.

Every node gets a deterministic uid and a deep copy of the interpreter's
claims and statebag at creation time. Nothing here keeps a reference to
interpreter state, so later mutations never leak into existing snapshots.
"""
from __future__ import annotations

import copy
from typing import Optional

from ..models.trace import FlowNode, FlowNodeContext, FlowNodeType, NodeData
from .id_utils import node_uid
from .interpretation_context import InterpretationContext

__all__ = ["snapshot", "create_node", "attach_child", "refresh_snapshot"]


def snapshot(ctx: InterpretationContext) -> FlowNodeContext:
    record = ctx.current_record
    return FlowNodeContext(
        timestamp=ctx.current_timestamp,
        log_id=record.id if record else None,
        event_instance=ctx.current_event_instance,
        claims=copy.deepcopy(ctx.claims),
        statebag=copy.deepcopy(ctx.statebag),
    )


def create_node(
    ctx: InterpretationContext,
    *,
    node_id: str,
    name: str,
    node_type: FlowNodeType,
    data: NodeData,
    step: int,
) -> FlowNode:
    ctx.node_sequence += 1
    return FlowNode(
        id=node_id,
        uid=node_uid(ctx.flow_key, node_id, ctx.node_sequence),
        name=name,
        type=node_type,
        triggered_at_step=step,
        last_step=step,
        context=snapshot(ctx),
        data=data,
    )


def attach_child(
    ctx: InterpretationContext,
    parent: FlowNode,
    *,
    node_id: str,
    name: str,
    node_type: FlowNodeType,
    data: NodeData,
    step: Optional[int] = None,
) -> FlowNode:
    """Create a node and append it to `parent`, returning the new node."""
    node = create_node(
        ctx,
        node_id=node_id,
        name=name,
        node_type=node_type,
        data=data,
        step=parent.last_step if step is None else step,
    )
    parent.children.append(node)
    return node


def refresh_snapshot(ctx: InterpretationContext, node: FlowNode) -> None:
    node.context = snapshot(ctx)
