"""
LEO Satellite Link Handover Engine

Predicts per-satellite link quality from noisy measurements and decides when
a ground station should hand over between candidate links, using hysteresis
and lockout to avoid ping-pong switching.
"""

__version__ = "1.0.0"
__author__ = "LEO Simulation Framework"

from .exceptions import HandoverError, ConfigurationError, InvalidInput, EstimatorFault
from .scoring import (
    Candidate,
    MetricVector,
    ScoreWeights,
    ScoringPolicy,
    ScoreCombiner,
    NormalizedLQSCombiner,
    create_scorer,
    shannon_throughput_mbps,
)
from .predictors import (
    ScoreHistory,
    FeatureHistory,
    EstimatorState,
    Predictor,
    BaselinePredictor,
    TrendPredictor,
    KalmanPredictor,
    ExternalPredictor,
    create_predictor,
)
from .handover import (
    HandoverState,
    HandoverEvent,
    HandoverController,
    PureDeltaPolicy,
    ThresholdOrSuperiorityPolicy,
)
from .ledger import Ledger
from .config import HandoverConfig
from .sources import MetricSource, SyntheticMetricSource, ReplayMetricSource
from .engine import HandoverEngine, CycleResult

__all__ = [
    'HandoverError',
    'ConfigurationError',
    'InvalidInput',
    'EstimatorFault',
    'Candidate',
    'MetricVector',
    'ScoreWeights',
    'ScoringPolicy',
    'ScoreCombiner',
    'NormalizedLQSCombiner',
    'create_scorer',
    'shannon_throughput_mbps',
    'ScoreHistory',
    'FeatureHistory',
    'EstimatorState',
    'Predictor',
    'BaselinePredictor',
    'TrendPredictor',
    'KalmanPredictor',
    'ExternalPredictor',
    'create_predictor',
    'HandoverState',
    'HandoverEvent',
    'HandoverController',
    'PureDeltaPolicy',
    'ThresholdOrSuperiorityPolicy',
    'Ledger',
    'HandoverConfig',
    'MetricSource',
    'SyntheticMetricSource',
    'ReplayMetricSource',
    'HandoverEngine',
    'CycleResult',
]
