"""Pure extraction helpers over a single handler result.

Recorder records nest key/value lists: an entry's value is either a scalar, an
object, or an object with its own `Values` list of `{Key, Value}` pairs. The
helpers here flatten those shapes into the facts the interpreter needs and
never mutate the clip.

Public Functions:
    statebag_delta: Unwrapped statebag entries set by the result
    claims_delta: Claims carried in the `Complex-CLMS` statebag entry
    current_technical_profile: Technical profile parsed from `CTP`
    initiated_exchanges: Technical profiles started by the result
    enabled_technical_profiles: Profiles listed under `EnabledForUserJourneysTrue`
    hrd_options: Options offered by a home realm discovery record
    validation_profiles: Validation technical profiles of a self-asserted submit
    claims_transformations: Claims transformations with their inputs/outputs
    sub_journey_id: Sub-journey named by the result
    journey_completed: True when the result signals the journey finished
    display_control_action: (control id, action, result code) of a display control call
    error_info: Exception carried by the result or its validation record
    is_cancellation: True when an exception is the user-cancelled error
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..models.telemetry import ExceptionInfo, HandlerResultClip
from ..models.trace import ClaimsTransformationDetail
from ..normalizer import exception_from_raw
from . import keys as k


@dataclass(frozen=True)
class TechnicalProfileRef:
    id: str
    provider_type: Optional[str] = None
    protocol_type: Optional[str] = None


def _nested(value: Any) -> Iterator[Tuple[str, Any]]:
    if isinstance(value, dict):
        values = value.get("Values")
        if isinstance(values, list):
            for item in values:
                if isinstance(item, dict) and item.get("Key") is not None:
                    yield str(item.get("Key")), item.get("Value")


def _values(clip: HandlerResultClip, key: str) -> List[Any]:
    return [e.value for e in clip.recorder_record if e.key == key]


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def statebag_delta(clip: HandlerResultClip) -> Dict[str, Any]:
    return {
        key: k.statebag_value(raw)
        for key, raw in clip.statebag.items()
        if key not in (k.COMPLEX_CLAIMS, k.COMPLEX_ITEMS)
    }


def claims_delta(clip: HandlerResultClip) -> Dict[str, Any]:
    raw = k.statebag_value(clip.statebag.get(k.COMPLEX_CLAIMS))
    return dict(raw) if isinstance(raw, dict) else {}


def current_technical_profile(clip: HandlerResultClip) -> Optional[str]:
    raw = clip.statebag.get(k.CURRENT_TECHNICAL_PROFILE)
    if raw is None:
        return None
    return k.technical_profile_from_ctp(k.statebag_value(raw))


def _exchange_ref(value: Any) -> Optional[TechnicalProfileRef]:
    if isinstance(value, dict):
        tp = _text(value.get("TechnicalProfileId")) or _text(value.get("TechnicalProfile"))
        if not tp:
            return None
        return TechnicalProfileRef(
            id=tp,
            provider_type=_text(value.get("ProtocolProviderType")),
            protocol_type=_text(value.get("ProtocolType")),
        )
    tp = _text(value)
    return TechnicalProfileRef(id=tp) if tp else None


def initiated_exchanges(clip: HandlerResultClip) -> List[TechnicalProfileRef]:
    """Technical profiles started by this result, front-end and backend."""
    refs: List[TechnicalProfileRef] = []
    for value in _values(clip, k.INITIATING_CLAIMS_EXCHANGE):
        ref = _exchange_ref(value)
        if ref:
            refs.append(ref)
    for value in _values(clip, k.GETTING_CLAIMS):
        backend: List[Any] = [v for key, v in _nested(value) if key == k.INITIATING_BACKEND_CLAIMS_EXCHANGE]
        if isinstance(value, dict) and k.INITIATING_BACKEND_CLAIMS_EXCHANGE in value:
            backend.append(value[k.INITIATING_BACKEND_CLAIMS_EXCHANGE])
        for item in backend:
            ref = _exchange_ref(item)
            if ref:
                refs.append(ref)
    seen: Dict[str, TechnicalProfileRef] = {}
    for ref in refs:
        seen.setdefault(ref.id, ref)
    return list(seen.values())


def _enabled_profiles(value: Any) -> List[str]:
    found: List[Optional[str]] = []
    for key, inner in _nested(value):
        if key != k.TECHNICAL_PROFILE_ENABLED:
            continue
        if isinstance(inner, dict):
            if inner.get("EnabledResult") is False:
                continue
            found.append(_text(inner.get("TechnicalProfile")) or _text(inner.get("TechnicalProfileId")))
        else:
            found.append(_text(inner))
    return k.unique(found)


def enabled_technical_profiles(clip: HandlerResultClip) -> List[str]:
    found: List[str] = []
    for value in _values(clip, k.ENABLED_FOR_USER_JOURNEYS_TRUE):
        found.extend(_enabled_profiles(value))
    return k.unique(found)


def hrd_options(clip: HandlerResultClip) -> List[str]:
    found: List[str] = []
    for value in _values(clip, k.HOME_REALM_DISCOVERY):
        found.extend(_enabled_profiles(value))
    return k.unique(found)


def validation_profiles(clip: HandlerResultClip) -> List[str]:
    found: List[Optional[str]] = []
    for value in _values(clip, k.VALIDATION) + _values(clip, k.VALIDATION_TECHNICAL_PROFILE):
        if isinstance(value, dict) and "Values" not in value:
            found.append(_text(value.get("TechnicalProfileId")) or _text(value.get("TechnicalProfile")))
            continue
        if not isinstance(value, dict):
            found.append(_text(value))
            continue
        for key, inner in _nested(value):
            if key != k.VALIDATION_TECHNICAL_PROFILE:
                continue
            if isinstance(inner, dict):
                found.append(_text(inner.get("TechnicalProfileId")) or _text(inner.get("Id")))
            else:
                found.append(_text(inner))
    return k.unique(found)


def _claim_pair(value: Any, type_key: str) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return {"type": value.get(type_key), "value": value.get("Value")}
    return None


def _transformation_detail(value: Any) -> Optional[ClaimsTransformationDetail]:
    if isinstance(value, str):
        return ClaimsTransformationDetail(id=value) if value else None
    if not isinstance(value, dict):
        return None
    ct_id: Optional[str] = _text(value.get("Id"))
    inputs: List[Dict[str, Any]] = []
    params: List[Dict[str, Any]] = []
    outputs: List[Dict[str, Any]] = []
    for key, inner in _nested(value):
        if key == "Id":
            ct_id = _text(inner) or ct_id
        elif key == "InputClaim":
            pair = _claim_pair(inner, "PolicyClaimType")
            if pair:
                inputs.append(pair)
        elif key == "InputParameter":
            pair = _claim_pair(inner, "ParameterType")
            if pair:
                params.append(pair)
        elif key == k.RESULT:
            pair = _claim_pair(inner, "PolicyClaimType")
            if pair:
                outputs.append(pair)
    if not ct_id:
        return None
    return ClaimsTransformationDetail(
        id=ct_id, input_claims=inputs, input_parameters=params, output_claims=outputs
    )


def claims_transformations(clip: HandlerResultClip) -> List[ClaimsTransformationDetail]:
    raw: List[Any] = list(_values(clip, k.CLAIMS_TRANSFORMATION))
    for value in _values(clip, k.OUTPUT_CLAIMS_TRANSFORMATION):
        raw.extend(v for key, v in _nested(value) if key == k.CLAIMS_TRANSFORMATION)
    for value in _values(clip, k.GETTING_CLAIMS):
        raw.extend(
            v
            for key, v in _nested(value)
            if key in (k.INITIATING_OUTPUT_CLAIMS_TRANSFORMATION, k.INITIATING_INPUT_CLAIMS_TRANSFORMATION)
        )
    details: List[ClaimsTransformationDetail] = []
    for value in raw:
        detail = _transformation_detail(value)
        if detail is not None:
            details.append(detail)
    return details


def sub_journey_id(clip: HandlerResultClip) -> Optional[str]:
    for key in (k.SUB_JOURNEY, k.SUB_JOURNEY_ID):
        for value in _values(clip, key):
            if _text(value):
                return _text(value)
    for value in _values(clip, k.SUB_JOURNEY_INVOKED):
        if isinstance(value, dict):
            found = _text(value.get("SubJourneyId")) or _text(value.get("Id"))
        else:
            found = _text(value)
        if found:
            return found
    return None


def journey_completed(clip: HandlerResultClip) -> bool:
    return any(e.key == k.JOURNEY_COMPLETED for e in clip.recorder_record)


def display_control_action(
    clip: HandlerResultClip,
) -> Optional[Tuple[str, Optional[str], Optional[str]]]:
    """Parse the `"<control>/<action>"` id plus the result code, if present."""
    ident = next((_text(v) for v in _values(clip, k.DISPLAY_CONTROL_ID) if _text(v)), None)
    action: Optional[str] = None
    if ident and "/" in ident:
        ident, action = ident.split("/", 1)
    for value in _values(clip, "DisplayControlAction"):
        if isinstance(value, dict):
            ident = ident or _text(value.get("DisplayControlId")) or _text(value.get("Id"))
            action = action or _text(value.get("Action"))
        elif not action:
            action = _text(value)
    if not ident:
        return None
    code = next((_text(v) for v in _values(clip, k.RESULT) if _text(v)), None)
    return ident, action, code


def error_info(clip: HandlerResultClip) -> Optional[ExceptionInfo]:
    if clip.exception is not None:
        return clip.exception
    for value in _values(clip, k.VALIDATION):
        if isinstance(value, dict) and value.get(k.EXCEPTION) is not None:
            return exception_from_raw(value.get(k.EXCEPTION))
        for key, inner in _nested(value):
            if key == k.EXCEPTION:
                return exception_from_raw(inner)
    for value in _values(clip, k.EXCEPTION):
        return exception_from_raw(value)
    return None


def is_cancellation(exc: Optional[ExceptionInfo]) -> bool:
    while exc is not None:
        if k.USER_CANCELLED_CODE in exc.message or k.USER_CANCELLED_CODE in (exc.h_result or ""):
            return True
        if exc.data and any(k.USER_CANCELLED_CODE in str(v) for v in exc.data.values()):
            return True
        exc = exc.inner
    return False
