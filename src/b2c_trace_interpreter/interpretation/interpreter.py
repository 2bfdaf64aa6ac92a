"""Clip state machine that rebuilds a journey's execution tree.

The interpreter walks one flow's log records in timestamp order and every
clip inside each record in payload order, maintaining an
`InterpretationContext`. It is synchronous and free of I/O; identical input
always yields an identical tree.

Step boundaries:
    The orchestration manager declares the current step through the `ORCH_CS`
    statebag entry. A declaration that differs from the active step closes it
    and opens a new Step. Re-declaring the active step opens a new visit only
    when more than `DEDUP_THRESHOLD_MS` passed since the previous declaration
    of that journey/step, or when a Transition boundary was crossed in between.
    A Transition that changes the event name closes the active Step wherever
    it sits in its record. The next clip needing a Step opens one lazily, and
    that Step adopts the order of the next declaration. Steps that close with order 0
    (pre-journey initialization) are dropped unless they carry an error.

Error tiers:
    Malformed payloads never reach this module as anything but empty clip
    lists. Non-fatal surprises (orphan handler results, unknown clip kinds,
    unsupported events, failures inside one handler's extraction) become
    warnings and interpretation continues. A FatalException clip marks the
    active Step (or the root) as Error and stops interpretation of the flow.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ..config import Settings, get_settings
from ..models.telemetry import (
    ActionClip,
    Clip,
    ExceptionInfo,
    FatalExceptionClip,
    HandlerResultClip,
    HeadersClip,
    LogRecord,
    PredicateClip,
    TransitionClip,
    UnknownClip,
)
from ..models.trace import (
    ClaimsTransformationData,
    DisplayControlData,
    FlowNode,
    FlowNodeType,
    HomeRealmDiscoveryData,
    RootData,
    SendClaimsData,
    StepData,
    StepResult,
    SubJourneyData,
    TechnicalProfileData,
    TraceResult,
)
from . import extractors as ex
from . import handlers as h
from . import keys as k
from .id_utils import node_uid, step_node_id, sub_journey_node_id
from .interpretation_context import InterpretationContext, JourneyFrame, PendingHandler
from .node_utils import find_child, step_data
from .time_utils import to_epoch_ms
from .tree_builder import attach_child, refresh_snapshot, snapshot

logger = logging.getLogger(__name__)

__all__ = ["TraceInterpreter", "interpret_records"]


class TraceInterpreter:
    """Interpret the records of a single flow into a `TraceResult`."""

    def __init__(self, records: Sequence[LogRecord], *, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.records: List[LogRecord] = sorted(records, key=lambda r: r.timestamp)
        self.ctx: Optional[InterpretationContext] = None

    # ------------------------------------------------------------------ driver
    def run(self) -> TraceResult:
        supported = set(self.settings.SUPPORTED_EVENT_INSTANCES)
        relevant: List[LogRecord] = []
        skipped: List[str] = []
        for record in self.records:
            event = record.event_instance()
            if event is None:
                logger.debug("Record %s has no Headers clip; ignoring", record.id)
                continue
            if event not in supported:
                skipped.append(f"Skipped record {record.id}: unsupported event instance {event}")
                continue
            relevant.append(record)

        first = relevant[0] if relevant else (self.records[0] if self.records else None)
        policy_id = first.policy_id if first else "Unknown"
        flow_key = first.correlation_id if first else policy_id
        root = FlowNode(
            id=policy_id,
            uid=node_uid(flow_key, policy_id, 0),
            name=k.journey_display_name(policy_id, self.settings.JOURNEY_NAME_PREFIXES),
            type=FlowNodeType.ROOT,
            data=RootData(policy_id=policy_id),
        )
        ctx = InterpretationContext(
            flow_key=flow_key,
            root=root,
            journey_stack=[JourneyFrame(journey_id=policy_id, node=root)],
            dedup_threshold_ms=self.settings.DEDUP_THRESHOLD_MS,
        )
        self.ctx = ctx
        for message in skipped:
            ctx.warn(message)
        if first is not None:
            ctx.current_record = first
            ctx.current_timestamp = first.timestamp
            root.context = snapshot(ctx)

        if not relevant:
            ctx.warn("No supported journey events found")
            return self._result()

        for record in relevant:
            if ctx.halted:
                break
            self._process_record(record)
        self._close_active_step()
        return self._result()

    def _result(self) -> TraceResult:
        ctx = self._context()
        return TraceResult(
            root=ctx.root,
            final_statebag=dict(ctx.statebag),
            final_claims=dict(ctx.claims),
            warnings=list(ctx.warnings),
            fatal_error=ctx.fatal_error,
            session_count=ctx.session_count,
        )

    def _context(self) -> InterpretationContext:
        if self.ctx is None:
            raise RuntimeError("interpreter has not been started")
        return self.ctx

    def _process_record(self, record: LogRecord) -> None:
        ctx = self._context()
        ctx.current_record = record
        ctx.current_timestamp = record.timestamp
        ctx.pending = None
        headers = record.headers()
        event = headers.event_instance if headers else None
        if headers and headers.correlation_id and headers.correlation_id != record.correlation_id:
            ctx.warn(
                f"Record {record.id} carries correlation id {headers.correlation_id}, "
                f"expected {record.correlation_id}"
            )
        if event == k.EVENT_AUTH:
            if ctx.session_count > 0:
                self._start_new_session()
            ctx.session_count += 1
        elif ctx.session_count == 0:
            ctx.session_count = 1
        ctx.current_event_instance = event

        for clip in record.clips:
            if ctx.halted:
                break
            if self.settings.DEBUG:
                logger.debug("record=%s clip=%s", record.id, clip.kind)
            self._dispatch(clip)

    def _dispatch(self, clip: Clip) -> None:
        ctx = self._context()
        if isinstance(clip, HeadersClip):
            return
        if isinstance(clip, TransitionClip):
            self._on_transition(clip)
        elif isinstance(clip, (PredicateClip, ActionClip)):
            self._on_handler(clip)
        elif isinstance(clip, HandlerResultClip):
            self._on_handler_result(clip)
        elif isinstance(clip, FatalExceptionClip):
            self._on_fatal(clip)
        elif isinstance(clip, UnknownClip):
            record_id = ctx.current_record.id if ctx.current_record else "?"
            ctx.warn(f"Unsupported clip kind '{clip.raw_kind}' in record {record_id}")

    # ------------------------------------------------------------- sessions
    def _start_new_session(self) -> None:
        ctx = self._context()
        logger.debug("Event:AUTH restart in flow %s; starting a new session", ctx.flow_key)
        self._close_active_step()
        del ctx.journey_stack[1:]
        ctx.frame.step_index = 0
        ctx.last_declared_ms.clear()
        ctx.statebag.clear()
        ctx.claims.clear()
        ctx.pending = None
        ctx.last_transition_event = None
        ctx.boundary_pending = False

    # ----------------------------------------------------------------- steps
    def _open_step(self, order: int, *, declared: bool) -> FlowNode:
        ctx = self._context()
        frame = ctx.frame
        ctx.step_sequence += 1
        record = ctx.current_record
        node = attach_child(
            ctx,
            frame.node,
            node_id=step_node_id(frame.journey_id, order),
            name=f"Step {order}",
            node_type=FlowNodeType.STEP,
            data=StepData(
                step_index=order,
                sequence=ctx.step_sequence,
                journey_id=frame.journey_id,
                event_type=k.event_type_for(ctx.current_event_instance),
                transition_event=ctx.last_transition_event,
                log_id=record.id if record else None,
            ),
            step=order,
        )
        frame.node.last_step = max(frame.node.last_step, order)
        frame.step_index = order
        ctx.active_step = node
        ctx.active_parent = frame.node
        ctx.active_declared = declared
        ctx.provisional_options = False
        ctx.boundary_pending = False
        return node

    def _adopt_order(self, order: int) -> None:
        ctx = self._context()
        step = ctx.active_step
        if step is None:
            return
        frame = ctx.frame
        data = step_data(step)
        data.step_index = order
        step.id = step_node_id(frame.journey_id, order)
        step.name = f"Step {order}"
        step.triggered_at_step = order
        step.last_step = order
        refresh_snapshot(ctx, step)
        frame.node.last_step = max(frame.node.last_step, order)
        frame.step_index = order
        ctx.active_declared = True

    def _reactivate(self, order: int) -> bool:
        """Resume the latest visit of `order` in the current journey, if any."""
        ctx = self._context()
        frame = ctx.frame
        for child in reversed(frame.node.children):
            if child.type == FlowNodeType.STEP and step_data(child).step_index == order:
                ctx.active_step = child
                ctx.active_parent = frame.node
                ctx.active_declared = True
                frame.step_index = order
                return True
        return False

    def _close_active_step(self) -> None:
        ctx = self._context()
        step = ctx.active_step
        parent = ctx.active_parent
        undeclared = not ctx.active_declared
        ctx.active_step = None
        ctx.active_parent = None
        ctx.active_declared = True
        ctx.provisional_options = False
        if step is None or parent is None:
            return
        data = step_data(step)
        if data.result == StepResult.ERROR:
            return
        has_sub_journey = any(c.type == FlowNodeType.SUB_JOURNEY for c in step.children)
        if (data.step_index <= 0 and not has_sub_journey) or (undeclared and _is_empty(step)):
            parent.children = [c for c in parent.children if c is not step]

    def _require_step(self) -> Optional[FlowNode]:
        ctx = self._context()
        if ctx.active_step is None and ctx.boundary_pending:
            self._open_step(ctx.frame.step_index, declared=False)
        return ctx.active_step

    # ----------------------------------------------------------------- clips
    def _on_transition(self, clip: TransitionClip) -> None:
        ctx = self._context()
        previous = ctx.last_transition_event
        ctx.last_transition_event = clip.event_name
        if previous is None or previous == clip.event_name:
            return
        self._close_active_step()
        ctx.boundary_pending = True

    def _on_handler(self, clip: PredicateClip | ActionClip) -> None:
        ctx = self._context()
        kind = "Predicate" if isinstance(clip, PredicateClip) else "Action"
        handler = h.qualify_handler(clip.handler)
        ctx.pending = PendingHandler(kind=kind, handler=handler)
        if kind == "Action" and handler != h.ORCHESTRATION_MANAGER and ctx.active_step is not None:
            step_data(ctx.active_step).action_handler = h.handler_short_name(handler)

    def _on_handler_result(self, clip: HandlerResultClip) -> None:
        ctx = self._context()
        pending = ctx.pending
        ctx.pending = None
        ctx.statebag.update(ex.statebag_delta(clip))
        ctx.claims.update(ex.claims_delta(clip))
        if pending is None:
            record_id = ctx.current_record.id if ctx.current_record else "?"
            ctx.warn(f"HandlerResult without a preceding Predicate or Action in record {record_id}")
            return
        try:
            self._interpret(pending, clip)
        except Exception as e:
            logger.debug("Interpretation of %s failed", pending.handler, exc_info=True)
            ctx.warn(f"Interpreter error in {h.handler_short_name(pending.handler)}: {e}")

    def _on_fatal(self, clip: FatalExceptionClip) -> None:
        ctx = self._context()
        exc = clip.exception
        if ctx.active_step is not None:
            self._mark_error(ctx.active_step, exc)
        else:
            root_data = ctx.root.data
            if isinstance(root_data, RootData):
                root_data.result = StepResult.ERROR
                root_data.error_message = exc.message
                root_data.error_h_result = exc.h_result
        logger.debug("Fatal exception in flow %s: %s", ctx.flow_key, exc.message)
        ctx.fatal_error = exc.message
        ctx.halted = True

    # ------------------------------------------------------- handler results
    def _interpret(self, pending: PendingHandler, clip: HandlerResultClip) -> None:
        ctx = self._context()
        handler = pending.handler
        if handler == h.ORCHESTRATION_MANAGER:
            self._on_orchestration(clip)
            return
        if handler in h.SUB_JOURNEY_ENTRY_HANDLERS:
            self._enter_sub_journey(clip)
            return
        if handler == h.SUB_JOURNEY_EXIT:
            self._exit_sub_journey()
            return
        if handler == h.SEND_ERROR or (handler in h.ERROR_HANDLERS and not clip.result):
            self._on_error_handler(handler, clip)
            return

        step = self._require_step()
        if step is None:
            logger.debug("No open step for %s; state merged only", h.handler_short_name(handler))
        else:
            owner = step
            if handler in h.DISPLAY_CONTROL_HANDLERS:
                owner = self._record_display_control(step, clip) or step
            self._record_technical_profiles(step, clip, owner)
            self._record_options(step, handler, clip)
            self._record_claims_transformations(step, clip, owner)
            if handler in h.SELF_ASSERTED_HANDLERS:
                self._record_validation(step, clip)
            if handler in h.COMPLETION_HANDLERS:
                self._record_completion(step, handler, clip)
            self._apply_outcome(step, pending, clip)
        if ex.journey_completed(clip) and len(ctx.journey_stack) > 1:
            self._exit_sub_journey()

    def _on_orchestration(self, clip: HandlerResultClip) -> None:
        ctx = self._context()
        raw = clip.statebag.get(k.ORCHESTRATION_CURRENT_STEP)
        order = k.parse_step_order(k.statebag_value(raw)) if raw is not None else None
        if order is None:
            if raw is not None:
                ctx.warn(f"Unreadable orchestration step {k.statebag_value(raw)!r}")
            return
        frame = ctx.frame
        key = (frame.journey_id, order)
        now = to_epoch_ms(ctx.current_timestamp) if ctx.current_timestamp else 0
        last = ctx.last_declared_ms.get(key)
        ctx.last_declared_ms[key] = now

        step = ctx.active_step
        within = last is not None and now - last <= ctx.dedup_threshold_ms
        if step is not None and not ctx.active_declared:
            self._adopt_order(order)
        elif (
            step is not None
            and step_data(step).step_index == order
            and not ctx.boundary_pending
            and (last is None or within)
        ):
            pass
        elif step is None and within and not ctx.boundary_pending and self._reactivate(order):
            pass
        else:
            self._close_active_step()
            if order <= 0:
                frame.step_index = order
                ctx.boundary_pending = False
                return
            self._open_step(order, declared=True)

        active = ctx.active_step
        if active is None:
            return
        self._record_technical_profiles(active, clip, active)
        exc = ex.error_info(clip)
        if exc is not None:
            self._mark_error(active, exc)

    def _enter_sub_journey(self, clip: HandlerResultClip) -> None:
        ctx = self._context()
        sub_id = ex.sub_journey_id(clip)
        if not sub_id:
            record_id = ctx.current_record.id if ctx.current_record else "?"
            ctx.warn(f"Sub-journey invocation without a sub-journey id in record {record_id}")
            return
        frame = ctx.frame
        owner = ctx.active_step or frame.node
        if ctx.active_step is not None:
            step_data(ctx.active_step).sub_journey_id = sub_id
        node = attach_child(
            ctx,
            owner,
            node_id=sub_journey_node_id(sub_id),
            name=sub_id,
            node_type=FlowNodeType.SUB_JOURNEY,
            data=SubJourneyData(journey_id=sub_id, invoked_by_step=frame.step_index),
            step=frame.step_index,
        )
        self._close_active_step()
        ctx.journey_stack.append(JourneyFrame(journey_id=sub_id, node=node))

    def _exit_sub_journey(self) -> None:
        ctx = self._context()
        if len(ctx.journey_stack) <= 1:
            ctx.warn("Sub-journey exit without an active sub-journey")
            return
        self._close_active_step()
        ctx.journey_stack.pop()

    def _on_error_handler(self, handler: str, clip: HandlerResultClip) -> None:
        ctx = self._context()
        exc = ex.error_info(clip) or ExceptionInfo(
            message=f"{h.handler_short_name(handler)} reported a failure"
        )
        step = self._require_step()
        if step is None:
            step = self._open_step(ctx.frame.step_index, declared=True)
        self._mark_error(step, exc)

    def _mark_error(self, step: FlowNode, exc: ExceptionInfo) -> None:
        data = step_data(step)
        data.result = StepResult.ERROR
        data.error_message = exc.message
        data.error_h_result = exc.h_result
        data.interaction_result = "Cancelled" if ex.is_cancellation(exc) else "Error"

    def _apply_outcome(self, step: FlowNode, pending: PendingHandler, clip: HandlerResultClip) -> None:
        data = step_data(step)
        handler = pending.handler
        exc = ex.error_info(clip)
        if exc is not None:
            self._mark_error(step, exc)
            return
        if data.result == StepResult.ERROR:
            return
        if handler in h.INTERACTIVE_HANDLERS and (pending.kind == "Predicate" or clip.result):
            data.is_interactive = True
            if data.result == StepResult.SUCCESS:
                data.result = StepResult.PENDING_INPUT
            return
        if pending.kind == "Predicate":
            if handler in h.STEP_INVOCATION_HANDLERS and not clip.result:
                data.result = StepResult.SKIPPED
            return
        if not clip.result:
            self._mark_error(
                step, ExceptionInfo(message=f"{h.handler_short_name(handler)} returned a failed result")
            )
            return
        if data.result == StepResult.SKIPPED:
            data.result = StepResult.SUCCESS
        elif data.result == StepResult.PENDING_INPUT and handler in h.INPUT_RECEIVED_HANDLERS:
            data.result = StepResult.SUCCESS
            data.interaction_result = "Continue"

    # ------------------------------------------------------------ recording
    def _add_technical_profile(
        self,
        step: FlowNode,
        ref: ex.TechnicalProfileRef,
        owner: FlowNode,
        *,
        is_validation: bool = False,
    ) -> FlowNode:
        ctx = self._context()
        data = step_data(step)
        if ref.id not in data.technical_profiles:
            data.technical_profiles.append(ref.id)
        node_id = f"tp-{ref.id}"
        existing = find_child(owner, FlowNodeType.TECHNICAL_PROFILE, node_id)
        if existing is not None:
            tp_data = existing.data
            if isinstance(tp_data, TechnicalProfileData):
                tp_data.provider_type = tp_data.provider_type or ref.provider_type
                tp_data.protocol_type = tp_data.protocol_type or ref.protocol_type
            return existing
        return attach_child(
            ctx,
            owner,
            node_id=node_id,
            name=ref.id,
            node_type=FlowNodeType.TECHNICAL_PROFILE,
            data=TechnicalProfileData(
                technical_profile_id=ref.id,
                provider_type=ref.provider_type,
                protocol_type=ref.protocol_type,
                is_validation=is_validation,
            ),
            step=data.step_index,
        )

    def _record_technical_profiles(self, step: FlowNode, clip: HandlerResultClip, owner: FlowNode) -> None:
        ctx = self._context()
        refs = ex.initiated_exchanges(clip)
        if refs and ctx.provisional_options:
            self._clear_options(step)
        ctp = ex.current_technical_profile(clip)
        if ctp and all(r.id != ctp for r in refs):
            refs.append(ex.TechnicalProfileRef(id=ctp))
        enabled = ex.enabled_technical_profiles(clip)
        if len(enabled) == 1 and all(r.id != enabled[0] for r in refs):
            refs.append(ex.TechnicalProfileRef(id=enabled[0]))
        for ref in refs:
            self._add_technical_profile(step, ref, owner)

    def _clear_options(self, step: FlowNode) -> None:
        ctx = self._context()
        data = step_data(step)
        data.selectable_options = []
        data.is_interactive = False
        step.children = [c for c in step.children if c.type != FlowNodeType.HOME_REALM_DISCOVERY]
        ctx.provisional_options = False

    def _record_options(self, step: FlowNode, handler: str, clip: HandlerResultClip) -> None:
        ctx = self._context()
        data = step_data(step)
        options = ex.hrd_options(clip)
        provisional = False
        if not options:
            enabled = ex.enabled_technical_profiles(clip)
            if len(enabled) > 1 and not ex.initiated_exchanges(clip):
                options = enabled
                provisional = True
        hrd_node = find_child(step, FlowNodeType.HOME_REALM_DISCOVERY, f"{step.id}-HRD")
        if options:
            had_options = bool(data.selectable_options)
            data.selectable_options = k.unique(data.selectable_options + options)
            data.is_interactive = True
            if not provisional:
                ctx.provisional_options = False
            elif not had_options:
                ctx.provisional_options = True
            if hrd_node is None:
                hrd_node = attach_child(
                    ctx,
                    step,
                    node_id=f"{step.id}-HRD",
                    name="HomeRealmDiscovery",
                    node_type=FlowNodeType.HOME_REALM_DISCOVERY,
                    data=HomeRealmDiscoveryData(),
                    step=data.step_index,
                )
            if isinstance(hrd_node.data, HomeRealmDiscoveryData):
                hrd_node.data.selectable_options = list(data.selectable_options)

        selected = ex.statebag_delta(clip).get(k.TARGET_ENTITY)
        if selected and (
            handler in (h.VALIDATE_API_RESPONSE, h.CLAIMS_EXCHANGE_SELECT) or data.selectable_options
        ):
            data.selected_option = str(selected)
            if hrd_node is not None and isinstance(hrd_node.data, HomeRealmDiscoveryData):
                hrd_node.data.selected_option = data.selected_option

    def _record_claims_transformations(self, step: FlowNode, clip: HandlerResultClip, owner: FlowNode) -> None:
        ctx = self._context()
        details = ex.claims_transformations(clip)
        if not details:
            return
        data = step_data(step)
        backend = ex.initiated_exchanges(clip)
        parent = self._add_technical_profile(step, backend[0], owner) if backend else owner
        for detail in details:
            if detail.id not in data.claims_transformations:
                data.claims_transformations.append(detail.id)
                data.claims_transformation_details.append(detail)
            node_id = f"ct-{detail.id}"
            if find_child(parent, FlowNodeType.CLAIMS_TRANSFORMATION, node_id) is None:
                attach_child(
                    ctx,
                    parent,
                    node_id=node_id,
                    name=detail.id,
                    node_type=FlowNodeType.CLAIMS_TRANSFORMATION,
                    data=ClaimsTransformationData(
                        claims_transformation_id=detail.id,
                        input_claims=list(detail.input_claims),
                        input_parameters=list(detail.input_parameters),
                        output_claims=list(detail.output_claims),
                    ),
                    step=data.step_index,
                )

    def _record_validation(self, step: FlowNode, clip: HandlerResultClip) -> None:
        data = step_data(step)
        ctp = ex.current_technical_profile(clip)
        parent = step
        if ctp:
            parent = self._add_technical_profile(step, ex.TechnicalProfileRef(id=ctp), step)
        elif data.technical_profiles:
            parent = find_child(step, FlowNodeType.TECHNICAL_PROFILE, f"tp-{data.technical_profiles[-1]}") or step
        for profile in ex.validation_profiles(clip):
            self._add_technical_profile(step, ex.TechnicalProfileRef(id=profile), parent, is_validation=True)

    def _record_display_control(self, step: FlowNode, clip: HandlerResultClip) -> Optional[FlowNode]:
        ctx = self._context()
        parsed = ex.display_control_action(clip)
        if parsed is None:
            return None
        control_id, action, code = parsed
        node_id = f"dc-{control_id}"
        node = find_child(step, FlowNodeType.DISPLAY_CONTROL, node_id)
        if node is None:
            node = attach_child(
                ctx,
                step,
                node_id=node_id,
                name=control_id,
                node_type=FlowNodeType.DISPLAY_CONTROL,
                data=DisplayControlData(display_control_id=control_id),
                step=step_data(step).step_index,
            )
        if isinstance(node.data, DisplayControlData):
            node.data.action = action or node.data.action
            node.data.result_code = code or node.data.result_code
        return node

    def _record_completion(self, step: FlowNode, handler: str, clip: HandlerResultClip) -> None:
        ctx = self._context()
        data = step_data(step)
        data.is_final = True
        refs = ex.initiated_exchanges(clip)
        enabled = ex.enabled_technical_profiles(clip)
        tp = (
            (refs[0].id if refs else None)
            or (enabled[0] if len(enabled) == 1 else None)
            or ex.current_technical_profile(clip)
        )
        if not tp:
            return
        node_id = f"sendclaims-{tp}"
        if find_child(step, FlowNodeType.SEND_CLAIMS, node_id) is None:
            attach_child(
                ctx,
                step,
                node_id=node_id,
                name=tp,
                node_type=FlowNodeType.SEND_CLAIMS,
                data=SendClaimsData(technical_profile_id=tp, handler=h.handler_short_name(handler)),
                step=data.step_index,
            )


def _is_empty(step: FlowNode) -> bool:
    data = step.data
    if not isinstance(data, StepData):
        return False
    return not (
        step.children
        or data.technical_profiles
        or data.claims_transformations
        or data.selectable_options
        or data.selected_option
        or data.is_final
        or data.result != StepResult.SUCCESS
    )


def interpret_records(records: Sequence[LogRecord], *, settings: Optional[Settings] = None) -> TraceResult:
    """Interpret one flow's records without post-processing."""
    return TraceInterpreter(records, settings=settings).run()
