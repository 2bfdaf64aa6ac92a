"""Traversal helpers over flow node trees.

Public Functions:
    walk: Depth-first pre-order iteration over a tree
    iter_steps: Step nodes in depth-first order (execution order)
    find_child: First direct child of a type with a given id
    technical_profile_names: Technical profile ids recorded under a node
    step_data: Typed accessor for a Step node's data
"""
from __future__ import annotations

from typing import Iterator, List, Optional

from ..models.trace import FlowNode, FlowNodeType, StepData, TechnicalProfileData

__all__ = ["walk", "iter_steps", "find_child", "technical_profile_names", "step_data"]


def walk(node: FlowNode) -> Iterator[FlowNode]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def iter_steps(root: FlowNode) -> Iterator[FlowNode]:
    for node in walk(root):
        if node.type == FlowNodeType.STEP:
            yield node


def find_child(node: FlowNode, node_type: FlowNodeType, node_id: str) -> Optional[FlowNode]:
    for child in node.children:
        if child.type == node_type and child.id == node_id:
            return child
    return None


def technical_profile_names(node: FlowNode) -> List[str]:
    """Technical profile ids of the node's technical-profile descendants, in order."""
    names: List[str] = []
    for child in walk(node):
        if child is node:
            continue
        if isinstance(child.data, TechnicalProfileData) and child.data.technical_profile_id not in names:
            names.append(child.data.technical_profile_id)
    return names


def step_data(node: FlowNode) -> StepData:
    if not isinstance(node.data, StepData):
        raise TypeError(f"node {node.id} is a {node.type.value} node, not a Step")
    return node.data
