"""Cooperative background analysis of all flows.

Flows are analyzed as independent asyncio tasks that yield to the event loop
before doing any work, so a UI or CLI can keep responding while results arrive
one by one. A shared cancellation event stops further publishing: a cancelled
run never writes to the cache or calls the callback after the event is set.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .analyzer import analyze_flow
from .config import Settings
from .models.telemetry import LogRecord
from .models.trace import FlowAnalysisResult, UserFlow

logger = logging.getLogger(__name__)

FlowCache = Dict[str, FlowAnalysisResult]
OnFlowAnalyzed = Callable[[str, FlowAnalysisResult], None]

# Process-wide cache keyed by flow id.
FLOW_CACHE: FlowCache = {}


def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


async def analyze_all_flows(
    records: Sequence[LogRecord],
    flows: Iterable[UserFlow],
    *,
    cache: Optional[FlowCache] = None,
    on_flow_analyzed: Optional[OnFlowAnalyzed] = None,
    cancel_event: Optional[asyncio.Event] = None,
    settings: Optional[Settings] = None,
) -> FlowCache:
    """Analyze every flow not already cached.

    Args:
        records: All normalized records; each flow selects its own by id.
        flows: Flows to analyze.
        cache: Target cache, `FLOW_CACHE` when omitted.
        on_flow_analyzed: Called with (flow_id, result) after each cache write.
        cancel_event: When set, pending and in-flight tasks stop publishing.
        settings: Overrides the cached application settings.

    Returns:
        The cache that results were written to.
    """
    target = FLOW_CACHE if cache is None else cache
    by_id = {r.id: r for r in records}

    async def _analyze(flow: UserFlow) -> None:
        await asyncio.sleep(0)
        if _cancelled(cancel_event) or flow.id in target:
            return
        flow_records = [by_id[i] for i in flow.log_ids if i in by_id]
        try:
            result = analyze_flow(flow_records, flow, settings=settings)
        except Exception as e:
            logger.warning("Skipping flow %s: analysis failed: %s", flow.id, e, exc_info=True)
            return
        if _cancelled(cancel_event):
            logger.debug("Discarding result for flow %s: run cancelled", flow.id)
            return
        target[flow.id] = result
        if on_flow_analyzed is None:
            return
        try:
            on_flow_analyzed(flow.id, result)
        except Exception as e:
            logger.warning("on_flow_analyzed failed for flow %s: %s", flow.id, e, exc_info=True)

    await asyncio.gather(*(_analyze(flow) for flow in flows))
    return target


class FlowAnalysisScheduler:
    """Owns one background analysis run at a time plus its cache.

    Starting a new run cancels the previous one and clears the cache. Flows
    requested before the background run reaches them are analyzed on demand;
    the run then skips them because they are already cached.
    """

    def __init__(self, cache: Optional[FlowCache] = None, settings: Optional[Settings] = None):
        self.cache: FlowCache = FLOW_CACHE if cache is None else cache
        self.settings = settings
        self._cancel_event: Optional[asyncio.Event] = None
        self._records: Optional[List[LogRecord]] = None

    @property
    def running(self) -> bool:
        return self._cancel_event is not None and not self._cancel_event.is_set()

    def cancel(self) -> None:
        if self._cancel_event is not None:
            self._cancel_event.set()

    def reset(self) -> None:
        self.cancel()
        self.cache.clear()

    async def start(
        self,
        records: Sequence[LogRecord],
        flows: Iterable[UserFlow],
        on_flow_analyzed: Optional[OnFlowAnalyzed] = None,
    ) -> FlowCache:
        self.reset()
        event = asyncio.Event()
        self._cancel_event = event
        loaded = list(records)
        self._records = loaded
        flows = list(flows)
        logger.info("Analyzing %d flows in background", len(flows))
        return await analyze_all_flows(
            loaded,
            flows,
            cache=self.cache,
            on_flow_analyzed=on_flow_analyzed,
            cancel_event=event,
            settings=self.settings,
        )

    def get(self, flow_id: str) -> Optional[FlowAnalysisResult]:
        return self.cache.get(flow_id)

    def get_or_analyze(
        self, flow: UserFlow, records: Optional[Sequence[LogRecord]] = None
    ) -> FlowAnalysisResult:
        cached = self.cache.get(flow.id)
        if cached is not None:
            return cached
        if records is None:
            records = self._records
        if records is None:
            raise RuntimeError(f"No records loaded for flow {flow.id}; call start() or pass records")
        result = analyze_flow(records, flow, settings=self.settings)
        self.cache[flow.id] = result
        return result
