"""Pydantic models for representing raw identity-provider telemetry.

These models provide a typed structure for the rows returned by the telemetry
query API and for the clips decoded from each row's payload. Raw-source models
keep the source's camelCase field names; normalized models use snake_case.

Clip variants are discriminated on `kind`; any raw kind outside the known set
is represented by `UnknownClip` so the interpreter can warn and move on.
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class QueryColumn(BaseModel):
    """A single column declaration of a query result table."""

    name: str
    type: Optional[str] = None


class QueryTable(BaseModel):
    """Tabular query result: column declarations plus positional rows."""

    name: Optional[str] = None
    columns: List[QueryColumn] = Field(default_factory=list)
    rows: List[List[Any]] = Field(default_factory=list)


class CustomDimensions(BaseModel):
    """Side-channel key/value record attached to each telemetry row."""

    correlationId: Optional[str] = None
    eventName: Optional[str] = None
    tenant: Optional[str] = None
    userJourney: Optional[str] = None
    version: Optional[str] = None


class RawLogRow(BaseModel):
    """One row of the telemetry table, possibly a fragment of a larger entry."""

    id: str
    timestamp: str
    message: str = ""
    cloudRoleInstance: Optional[str] = None
    operationId: Optional[str] = None
    operationName: Optional[str] = None
    customDimensions: CustomDimensions = Field(default_factory=CustomDimensions)


class RecorderEntry(BaseModel):
    """Key/value pair from a handler result's recorder record."""

    key: str
    value: Any = None


class ExceptionInfo(BaseModel):
    """Exception details carried by handler results and fatal clips."""

    message: str
    h_result: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    inner: Optional["ExceptionInfo"] = None


class HeadersClip(BaseModel):
    kind: Literal["Headers"] = "Headers"
    user_journey_recorder_endpoint: Optional[str] = None
    correlation_id: Optional[str] = None
    event_instance: Optional[str] = None
    tenant_id: Optional[str] = None
    policy_id: Optional[str] = None


class TransitionClip(BaseModel):
    kind: Literal["Transition"] = "Transition"
    event_name: str = ""
    state_name: str = ""


class PredicateClip(BaseModel):
    kind: Literal["Predicate"] = "Predicate"
    handler: str


class ActionClip(BaseModel):
    kind: Literal["Action"] = "Action"
    handler: str


class HandlerResultClip(BaseModel):
    kind: Literal["HandlerResult"] = "HandlerResult"
    result: bool = False
    predicate_result: Optional[str] = None
    statebag: Dict[str, Any] = Field(default_factory=dict)
    recorder_record: List[RecorderEntry] = Field(default_factory=list)
    exception: Optional[ExceptionInfo] = None


class FatalExceptionClip(BaseModel):
    kind: Literal["FatalException"] = "FatalException"
    exception: ExceptionInfo
    time: Optional[str] = None


class UnknownClip(BaseModel):
    kind: Literal["Unknown"] = "Unknown"
    raw_kind: str = ""
    content: Any = None


Clip = Annotated[
    Union[
        HeadersClip,
        TransitionClip,
        PredicateClip,
        ActionClip,
        HandlerResultClip,
        FatalExceptionClip,
        UnknownClip,
    ],
    Field(discriminator="kind"),
]


class LogRecord(BaseModel):
    """A reassembled, normalized log entry ready for interpretation.

    `payload_text` is kept verbatim for display even when `clips` is empty
    because the payload could not be decoded.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    policy_id: str
    correlation_id: str
    cloud_role_instance: Optional[str] = None
    raw_ids: List[str] = Field(default_factory=list)
    clips: List[Clip] = Field(default_factory=list)
    payload_text: str = ""
    custom_dimensions: CustomDimensions = Field(default_factory=CustomDimensions)

    def headers(self) -> Optional[HeadersClip]:
        for clip in self.clips:
            if isinstance(clip, HeadersClip):
                return clip
        return None

    def event_instance(self) -> Optional[str]:
        h = self.headers()
        return h.event_instance if h else None
