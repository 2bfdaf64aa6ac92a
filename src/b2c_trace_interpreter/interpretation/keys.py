"""Statebag and recorder-record keys plus small parsing helpers.

Statebag entries arrive either as plain values or as `{"c", "k", "v", "p"}`
objects whose value is under `v`. The claims bag travels in the statebag
under `Complex-CLMS`.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional

from ..models.trace import EventType

# Statebag keys
CURRENT_TECHNICAL_PROFILE = "CTP"
ORCHESTRATION_CURRENT_STEP = "ORCH_CS"
TARGET_ENTITY = "TAGE"
MACHINE_STATE = "MACHSTATE"
COMPLEX_CLAIMS = "Complex-CLMS"
COMPLEX_ITEMS = "ComplexItems"
PROTOCOL = "PROT"

# Recorder record keys
INITIATING_CLAIMS_EXCHANGE = "InitiatingClaimsExchange"
GETTING_CLAIMS = "GettingClaims"
INITIATING_BACKEND_CLAIMS_EXCHANGE = "InitiatingBackendClaimsExchange"
INITIATING_OUTPUT_CLAIMS_TRANSFORMATION = "InitiatingOutputClaimsTransformation"
INITIATING_INPUT_CLAIMS_TRANSFORMATION = "InitiatingInputClaimsTransformation"
ENABLED_FOR_USER_JOURNEYS_TRUE = "EnabledForUserJourneysTrue"
TECHNICAL_PROFILE_ENABLED = "TechnicalProfileEnabled"
HOME_REALM_DISCOVERY = "HomeRealmDiscovery"
VALIDATION = "Validation"
VALIDATION_TECHNICAL_PROFILE = "ValidationTechnicalProfile"
OUTPUT_CLAIMS_TRANSFORMATION = "OutputClaimsTransformation"
CLAIMS_TRANSFORMATION = "ClaimsTransformation"
SUB_JOURNEY = "SubJourney"
SUB_JOURNEY_ID = "SubJourneyId"
SUB_JOURNEY_INVOKED = "SubJourneyInvoked"
JOURNEY_COMPLETED = "JourneyCompleted"
DISPLAY_CONTROL_ID = "Id"
RESULT = "Result"
EXCEPTION = "Exception"

# Event instances
EVENT_AUTH = "Event:AUTH"
EVENT_API = "Event:API"
EVENT_SELFASSERTED = "Event:SELFASSERTED"
EVENT_CLAIMS_EXCHANGE = "Event:ClaimsExchange"

# Error code raised when the user cancels a self-asserted page.
USER_CANCELLED_CODE = "AADB2C90091"

_EVENT_TYPES = {
    EVENT_AUTH: EventType.AUTH,
    EVENT_SELFASSERTED: EventType.SELFASSERTED,
    EVENT_CLAIMS_EXCHANGE: EventType.CLAIMS_EXCHANGE,
}

_LOCALE_SUFFIX_RE = re.compile(r"_[A-Za-z]{2}$")


def event_type_for(event_instance: Optional[str]) -> EventType:
    return _EVENT_TYPES.get(event_instance or "", EventType.API)


def statebag_value(entry: Any) -> Any:
    """Unwrap a raw statebag entry to its value."""
    if isinstance(entry, dict) and "v" in entry:
        return entry["v"]
    return entry


def technical_profile_from_ctp(value: Any) -> Optional[str]:
    """Parse `CTP` ("<technicalProfile>:<step>") into the technical profile id."""
    if not isinstance(value, str) or not value:
        return None
    if ":" not in value:
        return value
    head = value.rsplit(":", 1)[0]
    return head or None


def parse_step_order(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def journey_display_name(policy_id: str, prefixes: Iterable[str]) -> str:
    """Strip deployment prefixes and a trailing locale suffix from a policy id.

    Example: `B2C_1A_DEV_SignUpSignIn_EN` -> `SignUpSignIn`.
    """
    name = policy_id
    changed = True
    while changed:
        changed = False
        for prefix in prefixes:
            if prefix and name.startswith(prefix) and len(name) > len(prefix):
                name = name[len(prefix):]
                changed = True
    stripped = _LOCALE_SUFFIX_RE.sub("", name)
    return stripped or name


def unique(values: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for v in values:
        if v and v not in seen:
            seen[v] = None
    return list(seen)
