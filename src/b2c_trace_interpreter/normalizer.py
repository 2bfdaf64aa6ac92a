"""Record normalization: telemetry rows to typed log records.

Rows returned by the telemetry query API are mapped by column name, fragments
of a single oversized log entry are reassembled, and each payload is decoded
into a list of clips. Nothing in this module raises on malformed input: a
payload that cannot be decoded yields an empty clip list and keeps its raw
text, a row without an id receives a stable fallback id, and an unparseable
timestamp falls back to the epoch.

Reassembly:
    Rows are partitioned by operation id (falling back to correlation id and
    finally the row id) and ordered by timestamp within each partition. A row
    whose trimmed text opens with `[` starts an entry; following rows are
    appended verbatim until a row ending with `]` closes it. The composite
    record id is the fragment ids joined with `:`; timestamp, role instance
    and dimensions come from the opening row. An entry still open at the end
    of its partition, or interrupted by another opening row, is flushed as a
    self-contained record, as is a continuation row with no open entry.

Public Functions:
    rows_from_table: Map a query table (or raw row dicts) to RawLogRow
    aggregate_fragments: Reassemble fragmented rows
    parse_payload: Decode payload text into clips
    parse_clip: Decode one raw clip object
    to_log_record: Build a LogRecord from a reassembled entry
    normalize_rows / normalize_table: Full pipeline, sorted by timestamp
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .interpretation.id_utils import fallback_row_id
from .interpretation.time_utils import EPOCH, parse_timestamp
from .models.telemetry import (
    ActionClip,
    Clip,
    CustomDimensions,
    ExceptionInfo,
    FatalExceptionClip,
    HandlerResultClip,
    HeadersClip,
    LogRecord,
    PredicateClip,
    QueryTable,
    RawLogRow,
    RecorderEntry,
    TransitionClip,
    UnknownClip,
)

logger = logging.getLogger(__name__)

__all__ = [
    "AggregatedEntry",
    "rows_from_table",
    "parse_custom_dimensions",
    "aggregate_fragments",
    "exception_from_raw",
    "parse_payload",
    "parse_clip",
    "to_log_record",
    "normalize_rows",
    "normalize_table",
]

_COLUMN_ALIASES: Dict[str, Sequence[str]] = {
    "id": ("id", "itemId"),
    "timestamp": ("timestamp",),
    "message": ("traceMessage", "message"),
    "cloudRoleInstance": ("cloudRoleInstance", "cloud_RoleInstance"),
    "customDimensions": ("customDimensions",),
    "operationId": ("operationId", "operation_Id"),
    "operationName": ("operationName", "operation_Name"),
}

_DIMENSION_ALIASES: Dict[str, Sequence[str]] = {
    "correlationId": ("CorrelationId", "correlationId", "operation_Id"),
    "eventName": ("EventName", "eventName"),
    "tenant": ("TenantId", "Tenant", "tenant"),
    "userJourney": ("PolicyId", "UserJourney", "userJourney", "policyId"),
    "version": ("Version", "version"),
}


@dataclass
class AggregatedEntry:
    """A complete log entry assembled from one or more raw rows."""

    ids: List[str]
    start: RawLogRow
    parts: List[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return ":".join(self.ids)

    @property
    def message(self) -> str:
        return "".join(self.parts)


def _first_present(source: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    for key in aliases:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def parse_custom_dimensions(value: Any) -> CustomDimensions:
    """Parse the side-channel record from a JSON string or mapping.

    Unparseable input yields empty dimensions.
    """
    raw = value
    if isinstance(raw, str):
        if not raw.strip():
            return CustomDimensions()
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.debug("customDimensions is not valid JSON; ignoring")
            return CustomDimensions()
    if not isinstance(raw, Mapping):
        return CustomDimensions()
    return CustomDimensions(
        **{name: _as_str(_first_present(raw, aliases)) for name, aliases in _DIMENSION_ALIASES.items()}
    )


def rows_from_table(table: Union[QueryTable, Mapping[str, Any], Iterable[Mapping[str, Any]]]) -> List[RawLogRow]:
    """Map a query result table, or an iterable of row objects, to raw rows.

    Columns are matched by name with aliases (`traceMessage` wins over
    `message`). Rows without an id receive a deterministic fallback id.
    """
    if isinstance(table, Mapping):
        table = QueryTable.model_validate(table)
    if isinstance(table, QueryTable):
        names = [c.name for c in table.columns]
        records: List[Mapping[str, Any]] = [dict(zip(names, row)) for row in table.rows]
    else:
        records = [r for r in table if isinstance(r, Mapping)]

    rows: List[RawLogRow] = []
    for index, record in enumerate(records):
        picked = {name: _first_present(record, aliases) for name, aliases in _COLUMN_ALIASES.items()}
        timestamp = _as_str(picked["timestamp"]) or ""
        message = _as_str(picked["message"]) or ""
        row_id = _as_str(picked["id"]) or fallback_row_id(index, timestamp, message)
        rows.append(
            RawLogRow(
                id=row_id,
                timestamp=timestamp,
                message=message,
                cloudRoleInstance=_as_str(picked["cloudRoleInstance"]),
                operationId=_as_str(picked["operationId"]),
                operationName=_as_str(picked["operationName"]),
                customDimensions=parse_custom_dimensions(picked["customDimensions"]),
            )
        )
    return rows


def _row_time(row: RawLogRow) -> datetime:
    return parse_timestamp(row.timestamp) or EPOCH


def _partition_key(row: RawLogRow) -> str:
    return row.operationId or row.customDimensions.correlationId or row.id


def aggregate_fragments(rows: Sequence[RawLogRow]) -> List[AggregatedEntry]:
    """Reassemble rows split across several telemetry entries.

    Entries are returned in timestamp order of their opening row.
    """
    partitions: Dict[str, List[tuple[int, RawLogRow]]] = {}
    for index, row in enumerate(rows):
        partitions.setdefault(_partition_key(row), []).append((index, row))

    collected: List[tuple[datetime, int, AggregatedEntry]] = []

    def _emit(entry: AggregatedEntry, order: int) -> None:
        collected.append((_row_time(entry.start), order, entry))

    for members in partitions.values():
        members.sort(key=lambda pair: (_row_time(pair[1]), pair[0]))
        pending: Optional[AggregatedEntry] = None
        pending_order = 0
        for index, row in members:
            text = row.message.strip()
            if text.startswith("["):
                if pending is not None:
                    logger.debug("Unterminated fragment %s flushed as self-contained", pending.id)
                    _emit(pending, pending_order)
                pending = AggregatedEntry(ids=[row.id], start=row, parts=[row.message])
                pending_order = index
                if text.endswith("]"):
                    _emit(pending, pending_order)
                    pending = None
            elif pending is not None:
                pending.ids.append(row.id)
                pending.parts.append(row.message)
                if text.endswith("]"):
                    _emit(pending, pending_order)
                    pending = None
            else:
                _emit(AggregatedEntry(ids=[row.id], start=row, parts=[row.message]), index)
        if pending is not None:
            logger.debug("Fragment %s never closed; flushed as self-contained", pending.id)
            _emit(pending, pending_order)

    collected.sort(key=lambda item: (item[0], item[1]))
    return [entry for _, _, entry in collected]


def exception_from_raw(raw: Any) -> Optional[ExceptionInfo]:
    """Parse an `{Message, HResult, Data, Exception}` object (or plain text)."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return ExceptionInfo(message=raw or "Unknown error")
    if not isinstance(raw, Mapping):
        return ExceptionInfo(message=str(raw))
    data = raw.get("Data")
    return ExceptionInfo(
        message=_as_str(raw.get("Message")) or "Unknown error",
        h_result=_as_str(raw.get("HResult")),
        data=dict(data) if isinstance(data, Mapping) else None,
        inner=exception_from_raw(raw.get("Exception")),
    )


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def _parse_headers(content: Any) -> Clip:
    c = content if isinstance(content, Mapping) else {}
    return HeadersClip(
        user_journey_recorder_endpoint=_as_str(c.get("UserJourneyRecorderEndpoint")),
        correlation_id=_as_str(c.get("CorrelationId")),
        event_instance=_as_str(c.get("EventInstance")),
        tenant_id=_as_str(c.get("TenantId")),
        policy_id=_as_str(c.get("PolicyId")),
    )


def _parse_transition(content: Any) -> Clip:
    c = content if isinstance(content, Mapping) else {}
    return TransitionClip(
        event_name=_as_str(c.get("EventName")) or "",
        state_name=_as_str(c.get("StateName")) or "",
    )


def _handler_name(content: Any) -> str:
    if isinstance(content, Mapping):
        return _as_str(content.get("Handler") or content.get("Name")) or ""
    return _as_str(content) or ""


def _parse_predicate(content: Any) -> Clip:
    return PredicateClip(handler=_handler_name(content))


def _parse_action(content: Any) -> Clip:
    return ActionClip(handler=_handler_name(content))


def _parse_handler_result(content: Any) -> Clip:
    if not isinstance(content, Mapping):
        logger.debug("HandlerResult content is not an object; treating as failed result")
        return HandlerResultClip(result=False)
    statebag = content.get("Statebag")
    record = content.get("RecorderRecord")
    values = record.get("Values") if isinstance(record, Mapping) else None
    entries = [
        RecorderEntry(key=str(v.get("Key")), value=v.get("Value"))
        for v in (values if isinstance(values, list) else [])
        if isinstance(v, Mapping) and v.get("Key") is not None
    ]
    return HandlerResultClip(
        result=_parse_bool(content.get("Result")),
        predicate_result=_as_str(content.get("PredicateResult")),
        statebag=dict(statebag) if isinstance(statebag, Mapping) else {},
        recorder_record=entries,
        exception=exception_from_raw(content.get("Exception")),
    )


def _parse_fatal(content: Any) -> Clip:
    if isinstance(content, Mapping) and "Exception" in content:
        exc = exception_from_raw(content.get("Exception"))
        time = _as_str(content.get("Time"))
    else:
        exc = exception_from_raw(content)
        time = None
    return FatalExceptionClip(exception=exc or ExceptionInfo(message="Unknown error"), time=time)


_CLIP_PARSERS: Dict[str, Callable[[Any], Clip]] = {
    "Headers": _parse_headers,
    "Transition": _parse_transition,
    "Predicate": _parse_predicate,
    "Action": _parse_action,
    "HandlerResult": _parse_handler_result,
    "FatalException": _parse_fatal,
    "Exception": _parse_fatal,
}


def parse_clip(item: Any) -> Optional[Clip]:
    """Decode one `{"Kind": ..., "Content": ...}` object; None if not a clip."""
    if not isinstance(item, Mapping) or "Kind" not in item:
        return None
    kind = _as_str(item.get("Kind")) or ""
    content = item.get("Content")
    parser = _CLIP_PARSERS.get(kind)
    if parser is None:
        return UnknownClip(raw_kind=kind, content=content)
    return parser(content)


def parse_payload(text: str) -> List[Clip]:
    """Decode a payload into clips; malformed or non-list payloads give []."""
    if not text or not text.strip():
        return []
    try:
        raw = json.loads(text)
    except (ValueError, TypeError) as e:
        logger.debug("Payload is not valid JSON (%s); keeping raw text only", e)
        return []
    if not isinstance(raw, list):
        logger.debug("Payload JSON is %s, expected a list of clips", type(raw).__name__)
        return []
    clips: List[Clip] = []
    for item in raw:
        clip = parse_clip(item)
        if clip is not None:
            clips.append(clip)
    return clips


def to_log_record(entry: AggregatedEntry) -> LogRecord:
    start = entry.start
    timestamp = parse_timestamp(start.timestamp)
    if timestamp is None:
        logger.debug("Record %s has unparseable timestamp %r; using epoch", entry.id, start.timestamp)
        timestamp = EPOCH
    text = entry.message
    clips = parse_payload(text)
    headers = next((c for c in clips if isinstance(c, HeadersClip)), None)
    dims = start.customDimensions
    correlation_id = (
        dims.correlationId
        or (headers.correlation_id if headers else None)
        or entry.ids[0]
    )
    policy_id = dims.userJourney or (headers.policy_id if headers else None) or "Unknown"
    return LogRecord(
        id=entry.id,
        timestamp=timestamp,
        policy_id=policy_id,
        correlation_id=correlation_id,
        cloud_role_instance=start.cloudRoleInstance,
        raw_ids=list(entry.ids),
        clips=clips,
        payload_text=text,
        custom_dimensions=dims,
    )


def normalize_rows(rows: Sequence[RawLogRow]) -> List[LogRecord]:
    """Reassemble, decode and sort raw rows into log records."""
    records = [to_log_record(entry) for entry in aggregate_fragments(rows)]
    records.sort(key=lambda r: r.timestamp)
    return records


def normalize_table(table: Union[QueryTable, Mapping[str, Any], Iterable[Mapping[str, Any]]]) -> List[LogRecord]:
    return normalize_rows(rows_from_table(table))
