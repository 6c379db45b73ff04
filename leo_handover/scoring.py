"""
Link Quality Scoring

This module defines the per-cycle measurement types (candidates and metric
vectors) and the scoring policies that reduce them to a single link-quality
score (LQS) per candidate: the weighted linear ScoreCombiner over SNR, delay,
Doppler offset and throughput, and a bounded normalised LQS with a BER term.
"""

import math
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional, Sequence

import numpy as np

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SPEED_OF_LIGHT = 299792458.0  # m/s


class MetricField(Enum):
    """Enumeration of the measurement fields carried by a MetricVector."""
    SNR_DB = "snr_db"
    DOPPLER_HZ = "doppler_hz"
    DELAY_MS = "delay_ms"
    THROUGHPUT_MBPS = "throughput_mbps"


METRIC_FIELDS = [field.value for field in MetricField]


@dataclass(frozen=True)
class Candidate:
    """One satellite link eligible for selection."""
    id: int
    name: str
    frequency_hz: float
    bandwidth_hz: float
    orbit_km: Optional[float] = None
    velocity_mps: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def shannon_throughput_mbps(snr_db, bandwidth_hz: float):
    """
    Calculate Shannon capacity for a channel.

    Args:
        snr_db: Signal-to-noise ratio in dB (scalar or array)
        bandwidth_hz: Channel bandwidth in Hz

    Returns:
        Capacity in Mbps
    """
    # C = BW * log2(1 + SNR_linear)
    return bandwidth_hz * np.log2(1.0 + 10 ** (np.asarray(snr_db, dtype=float) / 10.0)) / 1e6


@dataclass(frozen=True)
class MetricVector:
    """Measurements for one candidate in one control cycle."""
    snr_db: float
    doppler_hz: float
    delay_ms: float
    throughput_mbps: float

    @classmethod
    def from_link(cls, snr_db: float, doppler_hz: float, delay_ms: float,
                  bandwidth_hz: float) -> 'MetricVector':
        """Build a metric vector, deriving throughput from SNR and bandwidth."""
        throughput = float(shannon_throughput_mbps(snr_db, bandwidth_hz))
        return cls(float(snr_db), float(doppler_hz), float(delay_ms), throughput)

    def as_array(self) -> np.ndarray:
        return np.array([self.snr_db, self.doppler_hz, self.delay_ms, self.throughput_mbps],
                        dtype=float)

    def is_finite(self) -> bool:
        return all(math.isfinite(value) for value in
                   (self.snr_db, self.doppler_hz, self.delay_ms, self.throughput_mbps))


@dataclass(frozen=True)
class ScoreWeights:
    """Named weights of the linear link-quality score."""
    snr: float = 0.3
    delay: float = 0.2
    doppler: float = 0.1
    throughput: float = 0.4

    def __post_init__(self):
        for name, value in asdict(self).items():
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"Score weight '{name}' must be a finite number, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"Score weight '{name}' must be non-negative, got {value}")

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class ScoringPolicy(ABC):
    """Common contract for reducing metric vectors to link-quality scores."""

    name = "scoring"

    @abstractmethod
    def score(self, metrics: MetricVector) -> float:
        """Score a single candidate's metrics."""

    def combine(self, metrics: Sequence[MetricVector]) -> np.ndarray:
        """
        Score every candidate of one cycle.

        Args:
            metrics: Metric vectors in configured candidate order

        Returns:
            Array of shape (N,) with one score per candidate
        """
        return np.array([self.score(m) for m in metrics], dtype=float)


class ScoreCombiner(ScoringPolicy):
    """
    Reduces metric vectors to link-quality scores.

    The score is a weighted linear combination in which SNR and throughput
    add to the score while delay and the magnitude of the Doppler offset
    subtract from it. Higher is better; the scale is unbounded and only
    used for relative ranking.
    """

    name = "weighted"

    def __init__(self, weights: ScoreWeights = None):
        self.weights = weights if weights else ScoreWeights()
        logger.debug(f"ScoreCombiner weights: {self.weights.to_dict()}")

    def score(self, metrics: MetricVector) -> float:
        w = self.weights
        return (w.snr * metrics.snr_db
                - w.delay * metrics.delay_ms
                - w.doppler * abs(metrics.doppler_hz)
                + w.throughput * metrics.throughput_mbps)


def bit_error_rate(snr_db: float) -> float:
    """
    Estimate BPSK bit error rate from SNR.

    Args:
        snr_db: Signal-to-noise ratio in dB

    Returns:
        BER = 0.5 * erfc(sqrt(SNR_linear))
    """
    with np.errstate(over='ignore'):
        snr_linear = float(np.power(10.0, snr_db / 10.0))
    return 0.5 * math.erfc(math.sqrt(snr_linear))


class NormalizedLQSCombiner(ScoringPolicy):
    """
    Bounded link-quality score in [0, 1].

    SNR is mapped linearly from [snr_floor_db, snr_floor_db + snr_span_db]
    onto [0, 1], the Doppler offset is penalised linearly up to
    doppler_limit_hz, and a BER term rewards clean links:

        LQS = 0.55 * snr_norm + 0.25 * (1 - BER) + 0.20 * doppler_norm

    Delay and throughput do not contribute.
    """

    name = "normalized_lqs"

    def __init__(self, snr_floor_db: float = 8.0, snr_span_db: float = 35.0,
                 doppler_limit_hz: float = 4500.0, snr_weight: float = 0.55,
                 ber_weight: float = 0.25, doppler_weight: float = 0.20):
        if snr_span_db <= 0 or doppler_limit_hz <= 0:
            raise ConfigurationError("SNR span and Doppler limit must be positive")
        self.snr_floor_db = snr_floor_db
        self.snr_span_db = snr_span_db
        self.doppler_limit_hz = doppler_limit_hz
        self.snr_weight = snr_weight
        self.ber_weight = ber_weight
        self.doppler_weight = doppler_weight

    def score(self, metrics: MetricVector) -> float:
        snr_norm = min(1.0, max(0.0, (metrics.snr_db - self.snr_floor_db) / self.snr_span_db))
        doppler_norm = max(0.0, 1.0 - abs(metrics.doppler_hz) / self.doppler_limit_hz)
        ber = bit_error_rate(metrics.snr_db)
        return (self.snr_weight * snr_norm
                + self.ber_weight * (1.0 - ber)
                + self.doppler_weight * doppler_norm)


SCORING_POLICY_NAMES = (ScoreCombiner.name, NormalizedLQSCombiner.name)


def create_scorer(settings) -> ScoringPolicy:
    """
    Build the configured scoring policy.

    Args:
        settings: Scoring settings (policy name and linear weights)

    Returns:
        ScoringPolicy instance
    """
    if settings.policy == ScoreCombiner.name:
        return ScoreCombiner(settings.weights)
    elif settings.policy == NormalizedLQSCombiner.name:
        return NormalizedLQSCombiner()
    else:
        raise ConfigurationError(f"Unknown scoring policy: {settings.policy}")
