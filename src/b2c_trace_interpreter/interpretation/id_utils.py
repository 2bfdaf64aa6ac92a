"""Deterministic flow node ID generation using UUIDv5.

Node uids are derived from the flow id, the node's graph identity and its
creation sequence within the flow, so interpreting the same records twice
yields identical trees.

Constants:
    NODE_NAMESPACE: UUIDv5 namespace derived from DNS namespace + seed string
        "b2c-trace-interpreter-node". Changing it changes every node uid.

ID Format:
    Node uid: UUIDv5(NODE_NAMESPACE, f"{flow_key}:{node_id}:{sequence}")
"""
from __future__ import annotations

from uuid import NAMESPACE_DNS, uuid5

NODE_NAMESPACE = uuid5(NAMESPACE_DNS, "b2c-trace-interpreter-node")
ROW_NAMESPACE = uuid5(NAMESPACE_DNS, "b2c-trace-interpreter-row")

__all__ = [
    "NODE_NAMESPACE",
    "ROW_NAMESPACE",
    "fallback_row_id",
    "node_uid",
    "step_node_id",
    "sub_journey_node_id",
]


def node_uid(flow_key: str, node_id: str, sequence: int) -> str:
    return str(uuid5(NODE_NAMESPACE, f"{flow_key}:{node_id}:{sequence}"))


def step_node_id(journey_id: str, step_index: int) -> str:
    """Graph identity of an orchestration step, shared across repeated visits."""
    return f"{journey_id}-Step{step_index}"


def sub_journey_node_id(journey_id: str) -> str:
    return f"SubJourney-{journey_id}"


def fallback_row_id(index: int, timestamp: str, message: str) -> str:
    """Stable id for a telemetry row that arrived without one."""
    return str(uuid5(ROW_NAMESPACE, f"{index}:{timestamp}:{message}"))
