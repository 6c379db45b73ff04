"""
Link Quality Prediction

This module implements the score history buffers and the family of
predictors that forecast a link-quality score per candidate: a baseline
weighted moving average and its trend-extrapolated variant, a scalar
Kalman filter run independently per candidate, and an adapter for
externally trained sequence models.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

import numpy as np

from .exceptions import ConfigurationError, EstimatorFault
from .scoring import METRIC_FIELDS

logger = logging.getLogger(__name__)

# Cycles 1 and 2 always use the baseline predictor
WARMUP_CYCLES = 2

INITIAL_COVARIANCE = 1.0

PREDICTOR_NAMES = ("baseline", "trend", "kalman", "external")

# Score steps averaged into the trend estimate
TREND_SPAN = 3


class _RollingWindow:
    """Fixed-length buffer of the most recent rows, oldest first."""

    def __init__(self, window: int, row_shape: Tuple[int, ...], fill_value: float = 0.0):
        if window < 1:
            raise ConfigurationError(f"History window must be at least 1, got {window}")
        self._row_shape = tuple(row_shape)
        self._fill_value = fill_value
        self._rows = np.full((window,) + self._row_shape, fill_value, dtype=float)

    @property
    def window(self) -> int:
        return self._rows.shape[0]

    def append(self, row) -> None:
        """Append the newest row and drop the oldest."""
        row = np.asarray(row, dtype=float)
        if row.shape != self._row_shape:
            raise ValueError(f"Expected row of shape {self._row_shape}, got {row.shape}")
        self._rows = np.concatenate([self._rows[1:], row[np.newaxis, ...]], axis=0)

    def latest(self) -> np.ndarray:
        return self._rows[-1].copy()

    def mean(self) -> np.ndarray:
        return self._rows.mean(axis=0)

    def as_array(self) -> np.ndarray:
        return self._rows.copy()

    def restore(self, rows: np.ndarray) -> None:
        """Replace the buffer with a snapshot taken by as_array()."""
        rows = np.asarray(rows, dtype=float)
        if rows.shape != self._rows.shape:
            raise ValueError(f"Expected snapshot of shape {self._rows.shape}, got {rows.shape}")
        self._rows = rows.copy()

    def reset(self) -> None:
        self._rows = np.full_like(self._rows, self._fill_value)


class ScoreHistory(_RollingWindow):
    """Ring buffer of the last W score vectors, shape (W, N), zero-filled at start-up."""

    def __init__(self, window: int, n_candidates: int, fill_value: float = 0.0):
        super().__init__(window, (n_candidates,), fill_value)

    @property
    def n_candidates(self) -> int:
        return self._row_shape[0]


class FeatureHistory(_RollingWindow):
    """Ring buffer of the last W metric matrices, shape (W, N, 4)."""

    def __init__(self, window: int, n_candidates: int):
        super().__init__(window, (n_candidates, len(METRIC_FIELDS)))


@dataclass
class EstimatorState:
    """Scalar Kalman state for one candidate."""
    state: float
    covariance: float = INITIAL_COVARIANCE


class Predictor(ABC):
    """Common contract: score history in, one predicted score per candidate out."""

    name = "predictor"

    @abstractmethod
    def predict(self, history: ScoreHistory,
                features: Optional[FeatureHistory] = None) -> np.ndarray:
        """
        Predict the next link-quality score of every candidate.

        Args:
            history: Score history including the current cycle's scores
            features: Metric history aligned with ``history``, if available

        Returns:
            Array of shape (N,) with predicted scores
        """

    def reset(self) -> None:
        """Discard any internal state (explicit restart)."""


class BaselinePredictor(Predictor):
    """
    Weighted blend of the latest score and the window mean.

    predicted = alpha * latest + (1 - alpha) * mean(history)
    """

    name = "baseline"

    def __init__(self, alpha: float = 0.7):
        if not 0.0 <= alpha <= 1.0:
            raise ConfigurationError(f"Baseline alpha must be within [0, 1], got {alpha}")
        self.alpha = alpha

    def predict(self, history: ScoreHistory,
                features: Optional[FeatureHistory] = None) -> np.ndarray:
        return self.alpha * history.latest() + (1.0 - self.alpha) * history.mean()


class TrendPredictor(BaselinePredictor):
    """
    Baseline blend extrapolated along the recent score trend.

    predicted = baseline + horizon * trend * trend_gain

    where trend is the mean first difference over the last TREND_SPAN steps
    of the history (fewer when the window is shorter).
    """

    name = "trend"

    def __init__(self, alpha: float = 0.7, horizon: int = 5, trend_gain: float = 0.02):
        super().__init__(alpha=alpha)
        if horizon < 0:
            raise ConfigurationError(f"Trend horizon must be non-negative, got {horizon}")
        self.horizon = horizon
        self.trend_gain = trend_gain

    def trend(self, history: ScoreHistory) -> np.ndarray:
        rows = history.as_array()[-(TREND_SPAN + 1):]
        if len(rows) < 2:
            return np.zeros(history.n_candidates)
        return np.diff(rows, axis=0).mean(axis=0)

    def predict(self, history: ScoreHistory,
                features: Optional[FeatureHistory] = None) -> np.ndarray:
        baseline = super().predict(history, features)
        return baseline + self.horizon * self.trend(history) * self.trend_gain


class KalmanPredictor(Predictor):
    """
    Scalar random-walk Kalman filter per candidate.

    Each candidate keeps its own EstimatorState across cycles. The state is
    initialised from the first observed score with unit covariance and is
    only reset on restart or after an EstimatorFault.
    """

    name = "kalman"

    def __init__(self, process_noise: float = 0.01, measurement_noise: float = 0.5):
        if process_noise < 0 or not math.isfinite(process_noise):
            raise ConfigurationError(f"Process noise must be finite and non-negative, got {process_noise}")
        if measurement_noise < 0 or not math.isfinite(measurement_noise):
            raise ConfigurationError(
                f"Measurement noise must be finite and non-negative, got {measurement_noise}")
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.states: List[Optional[EstimatorState]] = []
        self.fault_count = 0

    def steady_state_covariance(self) -> float:
        """Fixed point of the covariance recursion."""
        q, r = self.process_noise, self.measurement_noise
        return (-q + math.sqrt(q * q + 4.0 * q * r)) / 2.0

    def step(self, index: int, z: float) -> float:
        """
        Run one predict/update cycle for a candidate.

        Args:
            index: Candidate position
            z: Observed score for this cycle

        Returns:
            Updated state estimate
        """
        estimate = self.states[index]
        if estimate is None:
            estimate = EstimatorState(state=z)
            self.states[index] = estimate

        # Predict (no control input)
        x_pred = estimate.state
        p_pred = estimate.covariance + self.process_noise

        # Update
        innovation_cov = p_pred + self.measurement_noise
        if innovation_cov == 0 or not math.isfinite(innovation_cov):
            raise EstimatorFault(
                f"Degenerate innovation covariance {innovation_cov} for candidate {index}",
                candidate_index=index)
        gain = p_pred / innovation_cov
        x_new = x_pred + gain * (z - x_pred)
        p_new = (1.0 - gain) * p_pred
        if not (math.isfinite(x_new) and math.isfinite(p_new)):
            raise EstimatorFault(f"Non-finite estimate for candidate {index}", candidate_index=index)

        estimate.state = x_new
        estimate.covariance = p_new
        return x_new

    def reset_candidate(self, index: int, z: float) -> None:
        """Reinitialise one candidate to the neutral prior."""
        self.states[index] = EstimatorState(state=z)

    def predict(self, history: ScoreHistory,
                features: Optional[FeatureHistory] = None) -> np.ndarray:
        observed = history.latest()
        if len(self.states) != len(observed):
            self.states = [None] * len(observed)

        predicted = np.empty(len(observed), dtype=float)
        for i, z in enumerate(observed):
            z = float(z)
            try:
                predicted[i] = self.step(i, z)
            except EstimatorFault as e:
                self.fault_count += 1
                logger.warning(f"{e}; resetting estimator to neutral prior")
                self.reset_candidate(i, z)
                predicted[i] = self.step(i, z)
        return predicted

    def reset(self) -> None:
        self.states = []
        self.fault_count = 0


class ExternalPredictor(Predictor):
    """
    Adapter for an externally trained sequence model.

    Objects exposing ``predict(features)`` receive the (W, N, 4) metric window.
    Plain callables are invoked as ``model(scores, features)`` with the (W, N)
    score window and the metric window. Either must return N finite values;
    anything else, including an exception raised by the model, surfaces as
    EstimatorFault.
    """

    name = "external"

    def __init__(self, model: Any):
        if model is None:
            raise ConfigurationError("External predictor requires a model")
        if not (hasattr(model, "predict") or callable(model)):
            raise ConfigurationError("External model must be callable or expose predict()")
        self.model = model

    def predict(self, history: ScoreHistory,
                features: Optional[FeatureHistory] = None) -> np.ndarray:
        feature_window = features.as_array() if features is not None else None
        try:
            if hasattr(self.model, "predict"):
                raw = self.model.predict(feature_window)
            else:
                raw = self.model(history.as_array(), feature_window)
            predicted = np.asarray(raw, dtype=float).reshape(-1)
        except Exception as e:
            raise EstimatorFault(f"External model failed: {e}") from e

        if predicted.shape != (history.n_candidates,):
            raise EstimatorFault(
                f"External model returned {predicted.shape[0]} scores for "
                f"{history.n_candidates} candidates")
        bad = np.flatnonzero(~np.isfinite(predicted))
        if bad.size:
            raise EstimatorFault(f"External model returned non-finite score for candidate {bad[0]}",
                                 candidate_index=int(bad[0]))
        return predicted


def create_predictor(settings, model: Any = None) -> Predictor:
    """
    Build the configured predictor variant.

    Args:
        settings: Predictor settings (name, alpha, trend and noise parameters)
        model: Trained model for the external variant

    Returns:
        Predictor instance
    """
    if settings.name == "baseline":
        return BaselinePredictor(alpha=settings.alpha)
    elif settings.name == "trend":
        return TrendPredictor(alpha=settings.alpha, horizon=settings.horizon,
                              trend_gain=settings.trend_gain)
    elif settings.name == "kalman":
        return KalmanPredictor(process_noise=settings.process_noise,
                               measurement_noise=settings.measurement_noise)
    elif settings.name == "external":
        return ExternalPredictor(model)
    else:
        raise ConfigurationError(f"Unknown predictor: {settings.name}")
