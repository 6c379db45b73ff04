"""
Handover Decision State Machine

This module turns a vector of predicted link-quality scores into a stable
satellite selection. Two mechanisms suppress ping-pong handovers:

- hysteresis: a candidate must beat the current selection by a margin
- lockout: after a switch no further switch is evaluated for a number of cycles

The switching criterion itself is a pluggable policy so that the pure
score-delta rule and the threshold-or-superiority rule can be selected by
configuration.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional, Sequence

import numpy as np

from .exceptions import ConfigurationError
from .scoring import Candidate

logger = logging.getLogger(__name__)

POLICY_NAMES = ("pure_delta", "threshold_or_superiority")


@dataclass
class HandoverState:
    """Mutable controller state for one run."""
    selected: int
    lockout: int = 0
    handover_count: int = 0

    @property
    def locked(self) -> bool:
        return self.lockout > 0


@dataclass(frozen=True)
class HandoverEvent:
    """A committed change of the active candidate."""
    cycle: int
    previous_id: int
    new_id: int
    delta: float
    previous_name: str = ""
    new_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def best_candidate_index(scores: np.ndarray, candidate_ids: Sequence[int]) -> int:
    """Index of the highest score, ties resolved towards the lowest candidate id."""
    scores = np.asarray(scores, dtype=float)
    maxima = np.flatnonzero(scores == scores.max())
    return int(min(maxima, key=lambda i: candidate_ids[i]))


class SwitchPolicy(ABC):
    """Decides whether an armed controller should switch to the best candidate."""

    name = "policy"

    def __init__(self, hysteresis: float = 2.0):
        if not math.isfinite(hysteresis) or hysteresis < 0:
            raise ConfigurationError(f"Hysteresis must be finite and non-negative, got {hysteresis}")
        self.hysteresis = hysteresis

    @abstractmethod
    def should_switch(self, selected: int, best: int, predicted: np.ndarray) -> bool:
        """
        Args:
            selected: Index of the current selection
            best: Index of the best predicted candidate
            predicted: Predicted scores for all candidates

        Returns:
            True if the controller should hand over to ``best``
        """


class PureDeltaPolicy(SwitchPolicy):
    """Switch only when the best candidate leads by strictly more than the hysteresis."""

    name = "pure_delta"

    def should_switch(self, selected: int, best: int, predicted: np.ndarray) -> bool:
        return best != selected and (predicted[best] - predicted[selected]) > self.hysteresis


class ThresholdOrSuperiorityPolicy(SwitchPolicy):
    """
    Switch when the current link has fallen below an absolute quality floor,
    or when the best candidate leads by more than the hysteresis.
    """

    name = "threshold_or_superiority"

    def __init__(self, hysteresis: float = 2.0, low_threshold: float = 0.0):
        super().__init__(hysteresis)
        if not math.isfinite(low_threshold):
            raise ConfigurationError(f"Low threshold must be finite, got {low_threshold}")
        self.low_threshold = low_threshold

    def should_switch(self, selected: int, best: int, predicted: np.ndarray) -> bool:
        if best == selected:
            return False
        below_floor = predicted[selected] < self.low_threshold
        superior = (predicted[best] - predicted[selected]) > self.hysteresis
        return bool(below_floor or superior)


def create_policy(settings) -> SwitchPolicy:
    """Build the switching policy named in the handover settings."""
    if settings.policy == "pure_delta":
        return PureDeltaPolicy(hysteresis=settings.hysteresis)
    elif settings.policy == "threshold_or_superiority":
        return ThresholdOrSuperiorityPolicy(hysteresis=settings.hysteresis,
                                            low_threshold=settings.low_threshold)
    else:
        raise ConfigurationError(f"Unknown handover policy: {settings.policy}")


class HandoverController:
    """
    Hysteresis/lockout state machine over the candidate set.

    The controller is Locked while ``lockout > 0`` and Armed otherwise. A
    locked controller only counts down; an armed controller consults its
    policy and, on a switch, re-enters Locked for ``lockout_duration`` cycles.
    """

    def __init__(self, candidates: Sequence[Candidate], default_id: int,
                 lockout_duration: int = 5, policy: SwitchPolicy = None):
        if not candidates:
            raise ConfigurationError("Handover controller needs at least one candidate")
        self.candidates = list(candidates)
        self.candidate_ids: List[int] = [c.id for c in self.candidates]
        self._index: Dict[int, int] = {cid: i for i, cid in enumerate(self.candidate_ids)}
        if default_id not in self._index:
            raise ConfigurationError(f"Default selection {default_id} is not a configured candidate")
        if lockout_duration < 0:
            raise ConfigurationError(f"Lockout duration must be non-negative, got {lockout_duration}")

        self.default_id = default_id
        self.lockout_duration = int(lockout_duration)
        self.policy = policy if policy else PureDeltaPolicy()
        self.state = HandoverState(selected=default_id)

    @property
    def selected(self) -> int:
        return self.state.selected

    def evaluate(self, cycle: int, predicted: np.ndarray) -> Optional[HandoverEvent]:
        """
        Advance the state machine by one cycle.

        Args:
            cycle: Cycle index (1-based)
            predicted: Predicted scores in candidate order

        Returns:
            HandoverEvent if a switch occurred, otherwise None
        """
        predicted = np.asarray(predicted, dtype=float)
        if self.state.locked:
            self.state.lockout = max(self.state.lockout - 1, 0)
            return None

        selected = self._index[self.state.selected]
        best = best_candidate_index(predicted, self.candidate_ids)
        if not self.policy.should_switch(selected, best, predicted):
            return None

        event = HandoverEvent(
            cycle=cycle,
            previous_id=self.candidate_ids[selected],
            new_id=self.candidate_ids[best],
            delta=float(predicted[best] - predicted[selected]),
            previous_name=self.candidates[selected].name,
            new_name=self.candidates[best].name,
        )
        self.state.selected = event.new_id
        self.state.lockout = self.lockout_duration
        self.state.handover_count += 1

        logger.info(f"Cycle {cycle:03d}: handover {event.previous_name} -> {event.new_name} "
                    f"(delta score={event.delta:.2f})")
        return event

    def reset(self) -> None:
        self.state = HandoverState(selected=self.default_id)
