from __future__ import annotations

from datetime import datetime, timezone

from b2c_trace_interpreter.interpretation import extractors as ex
from b2c_trace_interpreter.interpretation.handlers import ORCHESTRATION_MANAGER, handler_short_name, qualify_handler
from b2c_trace_interpreter.interpretation.id_utils import node_uid, step_node_id
from b2c_trace_interpreter.interpretation.keys import (
    event_type_for,
    journey_display_name,
    parse_step_order,
    statebag_value,
    technical_profile_from_ctp,
)
from b2c_trace_interpreter.interpretation.time_utils import elapsed_ms, parse_timestamp, to_epoch_ms
from b2c_trace_interpreter.models.telemetry import ExceptionInfo
from b2c_trace_interpreter.models.trace import EventType

from builders import entries, result, values


def test_parse_timestamp_variants():
    seven = parse_timestamp("2024-05-01T12:00:00.1234567Z")
    assert seven == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)
    naive = parse_timestamp("2024-05-01T12:00:00")
    assert naive.tzinfo is not None
    shifted = parse_timestamp("2024-05-01T14:00:00+02:00")
    assert shifted == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp("garbage") is None
    assert parse_timestamp(None) is None


def test_epoch_ms_is_exact():
    a = parse_timestamp("2024-05-01T12:00:00.001Z")
    b = parse_timestamp("2024-05-01T12:00:00.301Z")
    assert elapsed_ms(a, b) == 300
    assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000


def test_key_helpers():
    assert event_type_for("Event:AUTH") == EventType.AUTH
    assert event_type_for("Event:ClaimsExchange") == EventType.CLAIMS_EXCHANGE
    assert event_type_for("Event:Whatever") == EventType.API
    assert event_type_for(None) == EventType.API
    assert statebag_value({"c": "x", "k": "CTP", "v": "AAD:1", "p": True}) == "AAD:1"
    assert statebag_value("plain") == "plain"
    assert technical_profile_from_ctp("Some:Profile:3") == "Some:Profile"
    assert technical_profile_from_ctp("NoStep") == "NoStep"
    assert parse_step_order(" 4 ") == 4
    assert parse_step_order("x") is None
    assert parse_step_order(True) is None


def test_journey_display_name():
    prefixes = ["B2C_1A_", "DEV_", "PROD_", "TEST_", "GlobalApp_"]
    assert journey_display_name("B2C_1A_DEV_SignUpSignIn_EN", prefixes) == "SignUpSignIn"
    assert journey_display_name("GlobalApp_PasswordReset", prefixes) == "PasswordReset"
    assert journey_display_name("B2C_1A_", prefixes) == "B2C_1A_"


def test_handler_names():
    assert qualify_handler("SendClaimsHandler") == "Web.TPEngine.StateMachineHandlers.SendClaimsHandler"
    assert qualify_handler("OrchestrationManager") == ORCHESTRATION_MANAGER
    assert qualify_handler(ORCHESTRATION_MANAGER) == ORCHESTRATION_MANAGER
    assert handler_short_name("Web.TPEngine.StateMachineHandlers.SendClaimsHandler") == "SendClaimsHandler"


def test_ids_are_deterministic():
    assert step_node_id("B2C_1A_X", 3) == "B2C_1A_X-Step3"
    assert node_uid("flow", "n", 1) == node_uid("flow", "n", 1)
    assert node_uid("flow", "n", 1) != node_uid("flow", "n", 2)


def test_initiated_exchanges_are_deduplicated():
    clip = result(
        recorder=entries(
            ("InitiatingClaimsExchange", {"TechnicalProfileId": "A", "ProtocolType": "OAuth2"}),
            ("GettingClaims", values(("InitiatingBackendClaimsExchange", "B"))),
            ("GettingClaims", {"InitiatingBackendClaimsExchange": "A"}),
        )
    )
    refs = ex.initiated_exchanges(clip)
    assert [r.id for r in refs] == ["A", "B"]
    assert refs[0].protocol_type == "OAuth2"


def test_error_info_from_validation_record():
    clip = result(
        False,
        recorder=entries(("Validation", values(("Exception", {"Message": "Invalid password", "HResult": "0x8"})))),
    )
    info = ex.error_info(clip)
    assert info.message == "Invalid password"
    assert info.h_result == "0x8"


def test_cancellation_detection_walks_inner_exceptions():
    inner = ExceptionInfo(message="code AADB2C90091")
    assert ex.is_cancellation(ExceptionInfo(message="outer", inner=inner))
    assert not ex.is_cancellation(ExceptionInfo(message="other"))
    assert ex.is_cancellation(ExceptionInfo(message="x", data={"code": "AADB2C90091"}))


def test_sub_journey_id_sources():
    assert ex.sub_journey_id(result(recorder=entries(("SubJourneyInvoked", {"SubJourneyId": "Mfa"})))) == "Mfa"
    assert ex.sub_journey_id(result(recorder=entries(("SubJourneyId", "Reset")))) == "Reset"
    assert ex.sub_journey_id(result()) is None
