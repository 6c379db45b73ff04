"""
Handover Engine Configuration

Sectioned configuration container for the engine, loaded from a Python
dictionary or a YAML file. All validation happens at construction time so
that configuration errors surface once at start-up as ConfigurationError.
"""

import copy
import math
import logging
from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, List, Optional

import yaml

from .exceptions import ConfigurationError
from .handover import POLICY_NAMES
from .predictors import PREDICTOR_NAMES, WARMUP_CYCLES
from .scoring import SCORING_POLICY_NAMES, Candidate, ScoreWeights

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringSettings:
    """Scoring policy and the weights of the linear score."""
    policy: str = "weighted"
    snr: float = 0.3
    delay: float = 0.2
    doppler: float = 0.1
    throughput: float = 0.4

    @property
    def weights(self) -> ScoreWeights:
        return ScoreWeights(snr=self.snr, delay=self.delay, doppler=self.doppler,
                            throughput=self.throughput)


@dataclass(frozen=True)
class PredictorSettings:
    """Predictor choice and its tuning knobs."""
    name: str = "kalman"
    window: int = 3
    alpha: float = 0.7
    process_noise: float = 0.01
    measurement_noise: float = 0.5
    horizon: int = 5
    trend_gain: float = 0.02

    @property
    def warmup_cycles(self) -> int:
        return WARMUP_CYCLES


@dataclass(frozen=True)
class HandoverSettings:
    """Switching policy, hysteresis and lockout."""
    policy: str = "pure_delta"
    hysteresis: float = 2.0
    lockout_duration: int = 5
    low_threshold: float = 0.0
    default_candidate: Optional[int] = None


@dataclass(frozen=True)
class SimulationSettings:
    """Run-loop parameters used by the CLI and metric simulator."""
    cycles: int = 200
    seed: int = 42
    report_every: int = 20


@dataclass(frozen=True)
class OutputSettings:
    output_dir: str = "handover_data"
    filename_prefix: str = "handover"


def _build_section(cls, section_name: str, values: Dict[str, Any]):
    """Instantiate a settings dataclass, rejecting unknown keys."""
    if values is None:
        values = {}
    if not isinstance(values, dict):
        raise ConfigurationError(f"Section '{section_name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown keys in section '{section_name}': {unknown}")
    try:
        return cls(**values)
    except TypeError as e:
        raise ConfigurationError(f"Invalid section '{section_name}': {e}") from e


class HandoverConfig:
    """Configuration container for the handover engine."""

    def __init__(self, config_dict: Dict[str, Any] = None):
        """Initialize with configuration dictionary or defaults."""
        defaults = self._get_default_config()
        if config_dict is None:
            config_dict = defaults

        unknown = sorted(set(config_dict) - set(defaults))
        if unknown:
            raise ConfigurationError(f"Unknown configuration sections: {unknown}")

        candidate_dicts = config_dict.get('candidates', defaults['candidates'])
        self.candidates = self._build_candidates(candidate_dicts)
        self.scoring = _build_section(ScoringSettings, 'scoring', config_dict.get('scoring'))
        self.predictor = _build_section(PredictorSettings, 'predictor', config_dict.get('predictor'))
        self.handover = _build_section(HandoverSettings, 'handover', config_dict.get('handover'))
        self.simulation = _build_section(SimulationSettings, 'simulation', config_dict.get('simulation'))
        self.output = _build_section(OutputSettings, 'output', config_dict.get('output'))

        self._validate()
        logger.debug(f"Configuration loaded with {len(self.candidates)} candidates, "
                     f"predictor={self.predictor.name}, policy={self.handover.policy}")

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """Get default engine configuration."""
        return {
            'candidates': [
                {'id': 1, 'name': 'SAT-1', 'frequency_hz': 137e6, 'bandwidth_hz': 10e6,
                 'orbit_km': 550.0, 'velocity_mps': 7.6e3},
                {'id': 2, 'name': 'SAT-2', 'frequency_hz': 145e6, 'bandwidth_hz': 10e6,
                 'orbit_km': 600.0, 'velocity_mps': 7.5e3},
                {'id': 3, 'name': 'SAT-3', 'frequency_hz': 435e6, 'bandwidth_hz': 10e6,
                 'orbit_km': 700.0, 'velocity_mps': 7.4e3},
            ],
            'scoring': asdict(ScoringSettings()),
            'predictor': asdict(PredictorSettings()),
            'handover': asdict(HandoverSettings()),
            'simulation': asdict(SimulationSettings()),
            'output': asdict(OutputSettings()),
        }

    @staticmethod
    def _build_candidates(candidate_dicts) -> List[Candidate]:
        if not candidate_dicts:
            raise ConfigurationError("At least one candidate must be configured")
        candidates = []
        for entry in candidate_dicts:
            if isinstance(entry, Candidate):
                candidates.append(entry)
                continue
            candidates.append(_build_section(Candidate, 'candidates', entry))
        return candidates

    def _validate(self) -> None:
        ids = [c.id for c in self.candidates]
        if len(set(ids)) != len(ids):
            raise ConfigurationError(f"Duplicate candidate ids: {ids}")
        for c in self.candidates:
            if not isinstance(c.id, int) or isinstance(c.id, bool):
                raise ConfigurationError(f"Candidate id must be an integer, got {c.id!r}")
            if c.bandwidth_hz <= 0:
                raise ConfigurationError(f"Candidate {c.name} bandwidth must be positive")

        s = self.scoring
        if s.policy not in SCORING_POLICY_NAMES:
            raise ConfigurationError(
                f"Unknown scoring policy '{s.policy}', expected one of {SCORING_POLICY_NAMES}")
        s.weights  # ScoreWeights rejects negative or non-finite values

        p = self.predictor
        if p.name not in PREDICTOR_NAMES:
            raise ConfigurationError(f"Unknown predictor '{p.name}', expected one of {PREDICTOR_NAMES}")
        if not isinstance(p.window, int) or p.window < 1:
            raise ConfigurationError(f"History window must be an integer >= 1, got {p.window}")
        if not 0.0 <= p.alpha <= 1.0:
            raise ConfigurationError(f"Baseline alpha must be within [0, 1], got {p.alpha}")
        for name in ('process_noise', 'measurement_noise'):
            value = getattr(p, name)
            if not math.isfinite(value) or value < 0:
                raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")
        if not isinstance(p.horizon, int) or p.horizon < 0:
            raise ConfigurationError(f"Trend horizon must be an integer >= 0, got {p.horizon}")
        if not math.isfinite(p.trend_gain):
            raise ConfigurationError(f"Trend gain must be finite, got {p.trend_gain}")

        h = self.handover
        if h.policy not in POLICY_NAMES:
            raise ConfigurationError(f"Unknown handover policy '{h.policy}', expected one of {POLICY_NAMES}")
        if not math.isfinite(h.hysteresis) or h.hysteresis < 0:
            raise ConfigurationError(f"Hysteresis must be finite and non-negative, got {h.hysteresis}")
        if not isinstance(h.lockout_duration, int) or h.lockout_duration < 0:
            raise ConfigurationError(f"Lockout duration must be an integer >= 0, got {h.lockout_duration}")
        if h.default_candidate is not None and h.default_candidate not in ids:
            raise ConfigurationError(f"Default candidate {h.default_candidate} is not configured")

        if self.simulation.cycles < 0:
            raise ConfigurationError("Simulation cycles must be non-negative")

    @property
    def candidate_ids(self) -> List[int]:
        return [c.id for c in self.candidates]

    @property
    def default_candidate(self) -> int:
        """Initial selection; the first configured candidate unless set explicitly."""
        if self.handover.default_candidate is not None:
            return self.handover.default_candidate
        return self.candidates[0].id

    def to_dict(self) -> Dict[str, Any]:
        return {
            'candidates': [c.to_dict() for c in self.candidates],
            'scoring': asdict(self.scoring),
            'predictor': asdict(self.predictor),
            'handover': asdict(self.handover),
            'simulation': asdict(self.simulation),
            'output': asdict(self.output),
        }

    def with_overrides(self, **sections: Dict[str, Any]) -> 'HandoverConfig':
        """Return a new configuration with individual section keys replaced."""
        config_dict = copy.deepcopy(self.to_dict())
        for section, values in sections.items():
            if section not in config_dict:
                raise ConfigurationError(f"Unknown configuration section: {section}")
            if section == 'candidates':
                config_dict[section] = values
            else:
                config_dict[section].update(values)
        return HandoverConfig(config_dict)

    @classmethod
    def from_yaml(cls, yaml_path: str) -> 'HandoverConfig':
        """Load configuration from YAML file."""
        with open(yaml_path, 'r') as f:
            config_dict = yaml.safe_load(f)
        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file {yaml_path} must contain a mapping")
        return cls(config_dict)

    def save_yaml(self, yaml_path: str) -> None:
        """Save configuration to YAML file."""
        with open(yaml_path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, indent=2, sort_keys=False)
