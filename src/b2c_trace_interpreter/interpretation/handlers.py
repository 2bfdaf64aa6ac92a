"""Handler names emitted by the identity-experience engine.

Predicate and Action clips carry the fully qualified handler name. The sets
below group handlers by the interpretation they receive; a handler outside
every group only contributes its statebag/claims delta.
"""
from __future__ import annotations

HANDLER_NAMESPACE = "Web.TPEngine.StateMachineHandlers."
ORCHESTRATION_MANAGER = "Web.TPEngine.OrchestrationManager"


def _h(name: str) -> str:
    return HANDLER_NAMESPACE + name


# Step invocation
SHOULD_STEP_BE_INVOKED = _h("ShouldOrchestrationStepBeInvokedHandler")
IS_STEP_CONDITION_MET = _h("IsOrchestrationStepConditionMetHandler")

# Claims exchange
CLAIMS_EXCHANGE_ACTION = _h("ClaimsExchangeActionHandler")
CLAIMS_EXCHANGE_REDIRECT = _h("ClaimsExchangeRedirectHandler")
CLAIMS_EXCHANGE_SUBMIT = _h("ClaimsExchangeSubmitHandler")
CLAIMS_EXCHANGE_SELECT = _h("ClaimsExchangeSelectHandler")
IS_PROTOCOL_SERVICE_CALL = _h("IsClaimsExchangeProtocolAServiceCallHandler")
IS_PROTOCOL_REDIRECTION = _h("IsClaimsExchangeProtocolARedirectionHandler")
IS_PROTOCOL_API = _h("IsClaimsExchangeProtocolAnApiHandler")
VALIDATE_API_RESPONSE = _h("ValidateApiResponseHandler")

# Claims transformation
INPUT_CLAIMS_TRANSFORMATION = _h("InputClaimsTransformationHandler")
OUTPUT_CLAIMS_TRANSFORMATION = _h("OutputClaimsTransformationHandler")
PERSISTED_CLAIMS_TRANSFORMATION = _h("PersistedClaimsTransformationHandler")
CLIENT_INPUT_CLAIMS_TRANSFORMATION = _h("ClientInputClaimsTransformationHandler")
CLAIMS_TRANSFORMATION_ACTION = _h("ClaimsTransformationActionHandler")

# Home realm discovery
HOME_REALM_DISCOVERY = _h("HomeRealmDiscoveryHandler")
HOME_REALM_DISCOVERY_ACTION = _h("HomeRealmDiscoveryActionHandler")

# Self-asserted
SELF_ASSERTED_VALIDATION = _h("SelfAssertedMessageValidationHandler")
SELF_ASSERTED_ACTION = _h("SelfAssertedAttributeProviderActionHandler")
SELF_ASSERTED_REDIRECT = _h("SelfAssertedAttributeProviderRedirectHandler")

# Sub-journeys
ENQUEUE_NEW_JOURNEY = _h("EnqueueNewJourneyHandler")
SUB_JOURNEY_DISPATCH = _h("SubJourneyDispatchActionHandler")
SUB_JOURNEY_TRANSFER = _h("SubJourneyTransferActionHandler")
SUB_JOURNEY_EXIT = _h("SubJourneyExitActionHandler")
INVOKE_SUB_JOURNEY = _h("InvokeSubJourney")

# Journey completion
SEND_CLAIMS = _h("SendClaimsHandler")
SEND_CLAIMS_ACTION = _h("SendClaimsActionHandler")
SEND_RELYING_PARTY_RESPONSE = _h("SendRelyingPartyResponseHandler")
SEND_RESPONSE = _h("SendResponseHandler")

# Display controls
IS_DISPLAY_CONTROL_ACTION_REQUEST = _h("IsDisplayControlActionRequestHandler")
SEND_DISPLAY_CONTROL_ACTION_RESPONSE = _h("SendDisplayControlActionResponseHandler")

# Errors
INITIATING_MESSAGE_VALIDATION = _h("InitiatingMessageValidationHandler")
SEND_ERROR = _h("SendErrorHandler")

STEP_INVOCATION_HANDLERS = frozenset({SHOULD_STEP_BE_INVOKED, IS_STEP_CONDITION_MET})

SELF_ASSERTED_HANDLERS = frozenset(
    {SELF_ASSERTED_VALIDATION, SELF_ASSERTED_ACTION, SELF_ASSERTED_REDIRECT}
)

SUB_JOURNEY_ENTRY_HANDLERS = frozenset(
    {ENQUEUE_NEW_JOURNEY, SUB_JOURNEY_DISPATCH, SUB_JOURNEY_TRANSFER, INVOKE_SUB_JOURNEY}
)

COMPLETION_HANDLERS = frozenset(
    {SEND_CLAIMS, SEND_CLAIMS_ACTION, SEND_RELYING_PARTY_RESPONSE, SEND_RESPONSE}
)

DISPLAY_CONTROL_HANDLERS = frozenset(
    {IS_DISPLAY_CONTROL_ACTION_REQUEST, SEND_DISPLAY_CONTROL_ACTION_RESPONSE}
)

ERROR_HANDLERS = frozenset({INITIATING_MESSAGE_VALIDATION, SEND_ERROR})

# Handlers that hand control to the user; the step waits for input afterwards.
INTERACTIVE_HANDLERS = frozenset(
    {SELF_ASSERTED_REDIRECT, CLAIMS_EXCHANGE_REDIRECT, HOME_REALM_DISCOVERY}
)

# Handlers that consume the user's answer to an interactive step.
INPUT_RECEIVED_HANDLERS = frozenset(
    {SELF_ASSERTED_VALIDATION, CLAIMS_EXCHANGE_SUBMIT, CLAIMS_EXCHANGE_SELECT}
)


def handler_short_name(handler: str) -> str:
    """Strip the engine namespace: `...StateMachineHandlers.SendClaimsHandler` -> `SendClaimsHandler`."""
    return handler.rsplit(".", 1)[-1] if handler else handler


def qualify_handler(name: str) -> str:
    """Expand a bare handler name to its fully qualified form."""
    if not name or "." in name:
        return name
    if name == "OrchestrationManager":
        return ORCHESTRATION_MANAGER
    return HANDLER_NAMESPACE + name
