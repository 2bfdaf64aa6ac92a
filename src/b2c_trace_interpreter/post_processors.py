"""Tree-wide passes that run after interpretation.

Post-processors need knowledge the single forward pass of the interpreter
does not have (for example, the next step's timestamp or technical
profiles). Each processor mutates the tree in place and is run in a fixed
order; a failing processor is logged and reported without stopping the ones
after it.

Processors:
    StepDurationPostProcessor: duration = next step start - this step start,
        in depth-first (execution) order; the last step keeps no duration.
    HrdSelectionResolver: maps an HRD step's raw selection (an exchange id)
        onto one of its selectable options by looking at the technical
        profiles of the step itself, then of the next step.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .interpretation.node_utils import iter_steps, step_data, technical_profile_names
from .interpretation.time_utils import elapsed_ms
from .models.trace import FlowNode, FlowNodeType, HomeRealmDiscoveryData

logger = logging.getLogger(__name__)

__all__ = [
    "TracePostProcessor",
    "StepDurationPostProcessor",
    "HrdSelectionResolver",
    "DEFAULT_POST_PROCESSORS",
    "run_post_processors",
]


class TracePostProcessor(ABC):
    name: str = "post-processor"

    @abstractmethod
    def process(self, root: FlowNode) -> None:
        """Mutate the tree rooted at `root` in place."""


class StepDurationPostProcessor(TracePostProcessor):
    name = "step-duration"

    def process(self, root: FlowNode) -> None:
        steps = list(iter_steps(root))
        for current, following in zip(steps, steps[1:]):
            start = current.context.timestamp
            end = following.context.timestamp
            data = step_data(current)
            if start is None or end is None:
                data.duration = None
                continue
            data.duration = max(0, elapsed_ms(start, end))
        if steps:
            step_data(steps[-1]).duration = None


def _step_profiles(step: FlowNode) -> List[str]:
    names = technical_profile_names(step)
    for tp in step_data(step).technical_profiles:
        if tp not in names:
            names.append(tp)
    return names


class HrdSelectionResolver(TracePostProcessor):
    name = "hrd-selection"

    def process(self, root: FlowNode) -> None:
        steps = list(iter_steps(root))
        for index, step in enumerate(steps):
            data = step_data(step)
            options = data.selectable_options
            if len(options) <= 1 or data.selected_option in options:
                continue
            match = self._match(step, options)
            if match is None and index + 1 < len(steps):
                match = self._match(steps[index + 1], options)
            if match is None:
                logger.debug("HRD selection %s on %s left unresolved", data.selected_option, step.id)
                continue
            data.selected_option = match
            for child in step.children:
                if child.type == FlowNodeType.HOME_REALM_DISCOVERY and isinstance(
                    child.data, HomeRealmDiscoveryData
                ):
                    child.data.selected_option = match

    @staticmethod
    def _match(step: FlowNode, options: Sequence[str]) -> Optional[str]:
        for tp in _step_profiles(step):
            if tp in options:
                return tp
        return None


DEFAULT_POST_PROCESSORS: Sequence[TracePostProcessor] = (
    StepDurationPostProcessor(),
    HrdSelectionResolver(),
)


def run_post_processors(
    root: FlowNode, processors: Optional[Sequence[TracePostProcessor]] = None
) -> List[str]:
    """Run processors in order and return error messages of those that failed."""
    errors: List[str] = []
    for processor in DEFAULT_POST_PROCESSORS if processors is None else processors:
        try:
            processor.process(root)
        except Exception as e:
            logger.warning("Post-processor %s failed: %s", processor.name, e)
            errors.append(f"{processor.name}: {e}")
    return errors
