"""
Handover Engine

This module orchestrates one control cycle: input validation, scoring,
history update, prediction (with the fixed baseline warm-up) and the
handover decision, and records the outcome in the ledger. The engine is
synchronous and single-threaded; every cycle is committed in full before
the next one begins.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import numpy as np
from tqdm import tqdm

from .config import HandoverConfig
from .exceptions import EstimatorFault, InvalidInput
from .handover import HandoverController, HandoverEvent, create_policy
from .ledger import Ledger
from .predictors import (
    BaselinePredictor,
    FeatureHistory,
    KalmanPredictor,
    ScoreHistory,
    WARMUP_CYCLES,
    create_predictor,
)
from .scoring import MetricVector, ScoringPolicy, create_scorer
from .sources import MetricSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one control cycle."""
    cycle: int
    selected_id: int
    switched: bool
    raw_scores: np.ndarray
    predicted_scores: np.ndarray
    predictor_used: str
    event: Optional[HandoverEvent] = None
    metrics: Optional[Dict[int, MetricVector]] = None


class HandoverEngine:
    """
    Link-quality prediction and handover decision engine.

    Args:
        config: Engine configuration (defaults if omitted)
        model: Trained sequence model, required when the configured
            predictor is ``external``
        scorer: Scoring policy to use instead of the configured one
    """

    def __init__(self, config: HandoverConfig = None, model: Any = None,
                 scorer: ScoringPolicy = None):
        self.config = config if config else HandoverConfig()
        self.candidates = list(self.config.candidates)
        self.candidate_ids = [c.id for c in self.candidates]

        settings = self.config.predictor
        n = len(self.candidates)

        self.combiner = scorer if scorer is not None else create_scorer(self.config.scoring)
        self.baseline = BaselinePredictor(alpha=settings.alpha)
        self.predictor = create_predictor(settings, model=model)
        self.controller = HandoverController(
            self.candidates,
            default_id=self.config.default_candidate,
            lockout_duration=self.config.handover.lockout_duration,
            policy=create_policy(self.config.handover),
        )
        self.history = ScoreHistory(settings.window, n)
        self.features = FeatureHistory(settings.window, n)
        self.ledger = Ledger(self.candidates)
        self.cycle = 0
        self.fallback_count = 0

        logger.info(f"HandoverEngine initialized: {n} candidates, scoring={self.combiner.name}, "
                    f"predictor={self.predictor.name}, "
                    f"policy={self.controller.policy.name}, hysteresis={self.config.handover.hysteresis}, "
                    f"lockout={self.controller.lockout_duration}")

    @property
    def selected(self) -> int:
        return self.controller.selected

    def validate(self, measurements: Mapping[int, MetricVector]) -> List[MetricVector]:
        """
        Check one cycle's measurements before anything is scored.

        Args:
            measurements: Ordered mapping of candidate id to metrics

        Returns:
            Metric vectors in configured candidate order
        """
        ids = list(measurements.keys())
        if ids != self.candidate_ids:
            raise InvalidInput(f"Expected measurements for candidates {self.candidate_ids} "
                               f"in that order, got {ids}")

        metrics = []
        for candidate_id, m in measurements.items():
            if not isinstance(m, MetricVector):
                raise InvalidInput(f"Candidate {candidate_id}: expected MetricVector, got {type(m).__name__}")
            if not m.is_finite():
                raise InvalidInput(f"Candidate {candidate_id}: non-finite metric in {m}")
            if m.delay_ms < 0:
                raise InvalidInput(f"Candidate {candidate_id}: negative delay {m.delay_ms} ms")
            if m.throughput_mbps < 0:
                raise InvalidInput(f"Candidate {candidate_id}: negative throughput {m.throughput_mbps} Mbps")
            metrics.append(m)
        return metrics

    def _predict(self, cycle: int) -> Tuple[np.ndarray, str]:
        """Warm-up baseline for the first cycles, configured predictor afterwards."""
        baseline = self.baseline.predict(self.history, self.features)
        in_warmup = cycle <= WARMUP_CYCLES

        # The Kalman filter tracks every cycle so its state starts at cycle 1
        if in_warmup and not isinstance(self.predictor, KalmanPredictor):
            return baseline, self.baseline.name

        try:
            predicted = self.predictor.predict(self.history, self.features)
        except EstimatorFault as e:
            self.fallback_count += 1
            logger.warning(f"Cycle {cycle:03d}: {self.predictor.name} predictor fault ({e}); "
                           f"using baseline prediction")
            return baseline, self.baseline.name

        if in_warmup:
            return baseline, self.baseline.name
        return predicted, self.predictor.name

    def step(self, measurements: Mapping[int, MetricVector]) -> CycleResult:
        """
        Run one full control cycle.

        Args:
            measurements: Ordered mapping of candidate id to metrics

        Returns:
            CycleResult with selection, switch flag and score vectors
        """
        metrics = self.validate(measurements)
        cycle = self.cycle + 1

        raw_scores = np.asarray(self.combiner.combine(metrics), dtype=float)
        bad = np.flatnonzero(~np.isfinite(raw_scores))
        if bad.size:
            raise InvalidInput(f"Candidate {self.candidate_ids[bad[0]]}: non-finite score "
                               f"{raw_scores[bad[0]]} from finite metrics")

        saved_history = self.history.as_array()
        saved_features = self.features.as_array()
        try:
            self.history.append(raw_scores)
            self.features.append(np.stack([m.as_array() for m in metrics]))
            predicted, predictor_used = self._predict(cycle)
        except Exception:
            # Leave no partially applied cycle behind
            self.history.restore(saved_history)
            self.features.restore(saved_features)
            raise

        event = self.controller.evaluate(cycle, predicted)
        self.cycle = cycle

        result = CycleResult(
            cycle=cycle,
            selected_id=self.controller.selected,
            switched=event is not None,
            raw_scores=raw_scores,
            predicted_scores=np.asarray(predicted, dtype=float),
            predictor_used=predictor_used,
            event=event,
            metrics=dict(measurements),
        )
        self.ledger.record_cycle(result)
        if event is not None:
            self.ledger.record_event(event)

        logger.debug(f"Cycle {cycle:03d}: selected={result.selected_id} scores={np.round(raw_scores, 2)} "
                     f"predicted={np.round(result.predicted_scores, 2)}")
        return result

    def run(self, source: MetricSource, cycles: int = None, progress: bool = False) -> Ledger:
        """
        Drive the engine from a metric source.

        Args:
            source: Supplier of per-cycle measurements
            cycles: Number of cycles to run (configured value if omitted)
            progress: Show a tqdm progress bar

        Returns:
            The engine's ledger
        """
        if cycles is None:
            cycles = self.config.simulation.cycles
        report_every = self.config.simulation.report_every
        names = {c.id: c.name for c in self.candidates}

        logger.info(f"Starting handover run for {cycles} cycles...")
        iterator = range(cycles)
        if progress:
            iterator = tqdm(iterator, desc="Cycles")

        for _ in iterator:
            result = self.step(source.read(self.cycle + 1))
            if report_every and result.cycle % report_every == 0:
                snr = [m.snr_db for m in result.metrics.values()]
                logger.info(f"t={result.cycle:03d} | Active={names[result.selected_id]} | "
                            f"SNR=[{' '.join(f'{s:.1f}' for s in snr)}]")

        logger.info(f"Run complete: {self.cycle} cycles, {self.ledger.handover_count} handovers")
        return self.ledger

    def reset(self) -> None:
        """Explicit restart: clear history, estimator and controller state."""
        self.history.reset()
        self.features.reset()
        self.predictor.reset()
        self.controller.reset()
        self.ledger = Ledger(self.candidates)
        self.cycle = 0
        self.fallback_count = 0
        logger.info("HandoverEngine reset")
