"""Record and clip builders shared by the interpreter-level tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from b2c_trace_interpreter.config import Settings
from b2c_trace_interpreter.models.telemetry import (
    ActionClip,
    ExceptionInfo,
    HandlerResultClip,
    HeadersClip,
    LogRecord,
    PredicateClip,
    RecorderEntry,
    TransitionClip,
)

BASE = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
POLICY = "B2C_1A_DEV_SignUpSignIn_EN"
CORRELATION = "corr-1"


def settings(**overrides: Any) -> Settings:
    return Settings(**overrides)


def record(
    offset_ms: int,
    event: str,
    *clips: Any,
    record_id: Optional[str] = None,
    correlation_id: str = CORRELATION,
    policy_id: str = POLICY,
) -> LogRecord:
    return LogRecord(
        id=record_id or f"{correlation_id}-r{offset_ms}",
        timestamp=BASE + timedelta(milliseconds=offset_ms),
        policy_id=policy_id,
        correlation_id=correlation_id,
        clips=[
            HeadersClip(event_instance=event, correlation_id=correlation_id, policy_id=policy_id),
            *clips,
        ],
    )


def sb(value: Any, key: str = "") -> Dict[str, Any]:
    """Statebag entry in its wire shape."""
    return {"c": "2024-05-01T12:00:00Z", "k": key, "v": value, "p": True}


def entries(*pairs: Any) -> List[RecorderEntry]:
    return [RecorderEntry(key=k, value=v) for k, v in pairs]


def values(*pairs: Any) -> Dict[str, Any]:
    """Nested recorder value: `{"Values": [{"Key", "Value"}, ...]}`."""
    return {"Values": [{"Key": k, "Value": v} for k, v in pairs]}


def result(
    ok: bool = True,
    *,
    statebag: Optional[Dict[str, Any]] = None,
    recorder: Optional[List[RecorderEntry]] = None,
    exception: Optional[ExceptionInfo] = None,
) -> HandlerResultClip:
    return HandlerResultClip(
        result=ok,
        statebag=statebag or {},
        recorder_record=recorder or [],
        exception=exception,
    )


def orch(step: int, **kwargs: Any) -> List[Any]:
    statebag = {"ORCH_CS": sb(step, "ORCH_CS")}
    statebag.update(kwargs.pop("statebag", {}))
    return [ActionClip(handler="Web.TPEngine.OrchestrationManager"), result(True, statebag=statebag, **kwargs)]


def action(handler: str, ok: bool = True, **kwargs: Any) -> List[Any]:
    return [ActionClip(handler=handler), result(ok, **kwargs)]


def predicate(handler: str, ok: bool = True, **kwargs: Any) -> List[Any]:
    return [PredicateClip(handler=handler), result(ok, **kwargs)]


def transition(event_name: str) -> TransitionClip:
    return TransitionClip(event_name=event_name, state_name="Initial")


def step_record(offset_ms: int, event: str, step: int, *extra: List[Any], **kwargs: Any) -> LogRecord:
    """A record declaring `step` followed by extra clip groups."""
    clips: List[Any] = list(orch(step))
    for group in extra:
        clips.extend(group)
    return record(offset_ms, event, *clips, **kwargs)
