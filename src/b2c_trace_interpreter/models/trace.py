"""Internal models for reconstructed journey traces.

The interpreter produces a tree of `FlowNode` objects rooted at the main
journey. Each node carries a typed `data` payload discriminated on `type` and
a `FlowNodeContext` snapshot of claims and statebag taken when the node was
created (or when a step adopted its declared order). Snapshots are copies:
later mutation of interpreter state never changes a snapshot already taken.

Node `id` is the graph identity of what was executed (shared by repeated
visits of the same orchestration step or technical profile), while `uid` is
unique per node and deterministic for identical input.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class FlowNodeType(str, Enum):
    ROOT = "Root"
    SUB_JOURNEY = "SubJourney"
    STEP = "Step"
    TECHNICAL_PROFILE = "TechnicalProfile"
    CLAIMS_TRANSFORMATION = "ClaimsTransformation"
    HOME_REALM_DISCOVERY = "HomeRealmDiscovery"
    DISPLAY_CONTROL = "DisplayControl"
    SEND_CLAIMS = "SendClaims"


class StepResult(str, Enum):
    SUCCESS = "Success"
    ERROR = "Error"
    SKIPPED = "Skipped"
    PENDING_INPUT = "PendingInput"


class EventType(str, Enum):
    AUTH = "AUTH"
    API = "API"
    SELFASSERTED = "SELFASSERTED"
    CLAIMS_EXCHANGE = "ClaimsExchange"


class FlowNodeContext(BaseModel):
    """Claims/statebag snapshot plus the originating log and timestamp."""

    timestamp: Optional[datetime] = None
    log_id: Optional[str] = None
    event_instance: Optional[str] = None
    claims: Dict[str, Any] = Field(default_factory=dict)
    statebag: Dict[str, Any] = Field(default_factory=dict)


class ClaimsTransformationDetail(BaseModel):
    id: str
    input_claims: List[Dict[str, Any]] = Field(default_factory=list)
    input_parameters: List[Dict[str, Any]] = Field(default_factory=list)
    output_claims: List[Dict[str, Any]] = Field(default_factory=list)


class RootData(BaseModel):
    type: Literal[FlowNodeType.ROOT] = FlowNodeType.ROOT
    policy_id: str
    result: Optional[StepResult] = None
    error_message: Optional[str] = None
    error_h_result: Optional[str] = None


class SubJourneyData(BaseModel):
    type: Literal[FlowNodeType.SUB_JOURNEY] = FlowNodeType.SUB_JOURNEY
    journey_id: str
    invoked_by_step: Optional[int] = None


class StepData(BaseModel):
    """Everything known about one visit of an orchestration step."""

    type: Literal[FlowNodeType.STEP] = FlowNodeType.STEP
    step_index: int
    sequence: int = 0
    journey_id: str
    event_type: EventType = EventType.API
    result: StepResult = StepResult.SUCCESS
    technical_profiles: List[str] = Field(default_factory=list)
    claims_transformations: List[str] = Field(default_factory=list)
    claims_transformation_details: List[ClaimsTransformationDetail] = Field(default_factory=list)
    selectable_options: List[str] = Field(default_factory=list)
    selected_option: Optional[str] = None
    duration: Optional[int] = None
    action_handler: Optional[str] = None
    transition_event: Optional[str] = None
    error_message: Optional[str] = None
    error_h_result: Optional[str] = None
    is_interactive: bool = False
    is_final: bool = False
    interaction_result: Optional[str] = None
    sub_journey_id: Optional[str] = None
    log_id: Optional[str] = None


class TechnicalProfileData(BaseModel):
    type: Literal[FlowNodeType.TECHNICAL_PROFILE] = FlowNodeType.TECHNICAL_PROFILE
    technical_profile_id: str
    provider_type: Optional[str] = None
    protocol_type: Optional[str] = None
    is_validation: bool = False


class ClaimsTransformationData(BaseModel):
    type: Literal[FlowNodeType.CLAIMS_TRANSFORMATION] = FlowNodeType.CLAIMS_TRANSFORMATION
    claims_transformation_id: str
    input_claims: List[Dict[str, Any]] = Field(default_factory=list)
    input_parameters: List[Dict[str, Any]] = Field(default_factory=list)
    output_claims: List[Dict[str, Any]] = Field(default_factory=list)


class HomeRealmDiscoveryData(BaseModel):
    type: Literal[FlowNodeType.HOME_REALM_DISCOVERY] = FlowNodeType.HOME_REALM_DISCOVERY
    selectable_options: List[str] = Field(default_factory=list)
    selected_option: Optional[str] = None


class DisplayControlData(BaseModel):
    type: Literal[FlowNodeType.DISPLAY_CONTROL] = FlowNodeType.DISPLAY_CONTROL
    display_control_id: str
    action: Optional[str] = None
    result_code: Optional[str] = None


class SendClaimsData(BaseModel):
    type: Literal[FlowNodeType.SEND_CLAIMS] = FlowNodeType.SEND_CLAIMS
    technical_profile_id: Optional[str] = None
    handler: str


NodeData = Annotated[
    Union[
        RootData,
        SubJourneyData,
        StepData,
        TechnicalProfileData,
        ClaimsTransformationData,
        HomeRealmDiscoveryData,
        DisplayControlData,
        SendClaimsData,
    ],
    Field(discriminator="type"),
]


class FlowNode(BaseModel):
    id: str
    uid: str
    name: str
    type: FlowNodeType
    triggered_at_step: int = 0
    last_step: int = 0
    context: FlowNodeContext = Field(default_factory=FlowNodeContext)
    data: NodeData
    children: List["FlowNode"] = Field(default_factory=list)


class UserFlow(BaseModel):
    """A correlated group of log records representing one user journey."""

    id: str
    correlation_id: str
    policy_id: str
    start_time: datetime
    end_time: datetime
    log_ids: List[str] = Field(default_factory=list)
    step_count: int = 0
    completed: bool = False
    has_errors: bool = False
    cancelled: bool = False
    sub_journeys: List[str] = Field(default_factory=list)
    user_email: Optional[str] = None
    user_object_id: Optional[str] = None


class NodeExecutionStatus(BaseModel):
    status: StepResult
    visit_count: int = 0
    step_indices: List[int] = Field(default_factory=list)


class TraceResult(BaseModel):
    """Outcome of interpreting one flow."""

    root: FlowNode
    execution_map: Dict[str, NodeExecutionStatus] = Field(default_factory=dict)
    final_statebag: Dict[str, Any] = Field(default_factory=dict)
    final_claims: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    fatal_error: Optional[str] = None
    session_count: int = 0
    post_processing_errors: List[str] = Field(default_factory=list)


class FlowAnalysisResult(BaseModel):
    """Cache entry written by the scheduler for a completed flow."""

    trace: TraceResult
    flow: UserFlow
