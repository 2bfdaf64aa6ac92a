"""Flow grouping: partition log records into user flows.

Records are grouped by correlation id and each group is sorted by timestamp.
Flow ids are derived from the correlation id, so they are stable across runs
for the same input. Optionally a correlation group can be split at every
repeated `Event:AUTH` record, for telemetry where one correlation id spans
several sign-in attempts.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Sequence

from .interpretation.keys import EVENT_AUTH
from .models.telemetry import LogRecord
from .models.trace import UserFlow

__all__ = ["group_into_flows", "records_for_flow", "split_by_auth_restarts"]


def split_by_auth_restarts(records: Sequence[LogRecord]) -> List[List[LogRecord]]:
    """Split time-ordered records so each segment holds at most one Event:AUTH record."""
    segments: List[List[LogRecord]] = []
    current: List[LogRecord] = []
    seen_auth = False
    for record in records:
        is_auth = record.event_instance() == EVENT_AUTH
        if is_auth and seen_auth and current:
            segments.append(current)
            current = []
            seen_auth = False
        current.append(record)
        seen_auth = seen_auth or is_auth
    if current:
        segments.append(current)
    return segments


def _build_flow(flow_id: str, correlation_id: str, records: Sequence[LogRecord]) -> UserFlow:
    return UserFlow(
        id=flow_id,
        correlation_id=correlation_id,
        policy_id=records[0].policy_id,
        start_time=records[0].timestamp,
        end_time=records[-1].timestamp,
        log_ids=[r.id for r in records],
    )


def group_into_flows(records: Iterable[LogRecord], *, split_on_auth_restart: bool = False) -> List[UserFlow]:
    """Group records into flows ordered by start time.

    Args:
        records: Normalized log records, in any order.
        split_on_auth_restart: Start a new flow at each repeated Event:AUTH
            record within a correlation id.

    Returns:
        Flows sorted by (start_time, id). With splitting, segments after the
        first get ids suffixed `-2`, `-3`, ...
    """
    ordered = sorted(records, key=lambda r: r.timestamp)
    groups: Dict[str, List[LogRecord]] = {}
    for record in ordered:
        groups.setdefault(record.correlation_id, []).append(record)

    flows: List[UserFlow] = []
    for correlation_id, members in groups.items():
        segments = split_by_auth_restarts(members) if split_on_auth_restart else [members]
        for index, segment in enumerate(segments):
            flow_id = correlation_id if index == 0 else f"{correlation_id}-{index + 1}"
            flows.append(_build_flow(flow_id, correlation_id, segment))
    flows.sort(key=lambda f: (f.start_time, f.id))
    return flows


def records_for_flow(records: Iterable[LogRecord], flow: UserFlow) -> List[LogRecord]:
    wanted = set(flow.log_ids)
    return sorted((r for r in records if r.id in wanted), key=lambda r: r.timestamp)
