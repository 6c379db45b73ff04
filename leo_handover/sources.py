"""
Metric Sources

A metric source supplies one MetricVector per candidate for every control
cycle. The engine depends only on the MetricSource protocol; this module
provides a seeded metric-level simulator for LEO passes and a replay source
for recorded measurement logs.
"""

import logging
from typing import Dict, List, Protocol, Sequence, runtime_checkable

import numpy as np
import pandas as pd

from .exceptions import InvalidInput
from .scoring import Candidate, MetricVector, METRIC_FIELDS, SPEED_OF_LIGHT, shannon_throughput_mbps

logger = logging.getLogger(__name__)

DEFAULT_ORBIT_KM = 550.0
DEFAULT_VELOCITY_MPS = 7.6e3

REPLAY_COLUMNS = ['cycle', 'candidate_id'] + METRIC_FIELDS


@runtime_checkable
class MetricSource(Protocol):
    """Anything that can produce the measurements for a control cycle."""

    def read(self, cycle: int) -> Dict[int, MetricVector]:
        ...


class SyntheticMetricSource:
    """
    Seeded metric-level simulator of LEO links.

    Per cycle and candidate:
    - SNR is drawn around 20 dB with 5 dB standard deviation
    - Doppler offset is a normal draw scaled by v/c * f
    - elevation is uniform in [0.3, 0.7] rad, giving a slant-range delay
    - throughput is the Shannon capacity of the candidate's bandwidth
    """

    def __init__(self, candidates: Sequence[Candidate], seed: int = 42,
                 mean_snr_db: float = 20.0, snr_std_db: float = 5.0):
        self.candidates = list(candidates)
        self.seed = seed
        self.mean_snr_db = mean_snr_db
        self.snr_std_db = snr_std_db
        self.rng = np.random.default_rng(seed)
        logger.info(f"SyntheticMetricSource initialized for {len(self.candidates)} candidates (seed={seed})")

    def reset(self) -> None:
        self.rng = np.random.default_rng(self.seed)

    def _measure(self, candidate: Candidate) -> MetricVector:
        velocity = candidate.velocity_mps if candidate.velocity_mps is not None else DEFAULT_VELOCITY_MPS
        orbit_km = candidate.orbit_km if candidate.orbit_km is not None else DEFAULT_ORBIT_KM

        doppler_hz = self.rng.standard_normal() * velocity / SPEED_OF_LIGHT * candidate.frequency_hz
        snr_db = self.mean_snr_db + self.rng.standard_normal() * self.snr_std_db

        # Slant range from a random elevation over the pass
        elevation_rad = 0.3 + 0.4 * self.rng.random()
        slant_range_m = (orbit_km * 1e3) / np.sin(elevation_rad)
        delay_ms = slant_range_m / SPEED_OF_LIGHT * 1e3

        return MetricVector.from_link(snr_db, doppler_hz, delay_ms, candidate.bandwidth_hz)

    def read(self, cycle: int) -> Dict[int, MetricVector]:
        return {c.id: self._measure(c) for c in self.candidates}

    def generate(self, cycles: int) -> pd.DataFrame:
        """
        Generate a long-format measurement log for replay.

        Args:
            cycles: Number of cycles to generate

        Returns:
            DataFrame with one row per cycle and candidate
        """
        records = []
        for cycle in range(1, cycles + 1):
            for candidate_id, metrics in self.read(cycle).items():
                records.append({
                    'cycle': cycle,
                    'candidate_id': candidate_id,
                    'snr_db': metrics.snr_db,
                    'doppler_hz': metrics.doppler_hz,
                    'delay_ms': metrics.delay_ms,
                    'throughput_mbps': metrics.throughput_mbps,
                })
        return pd.DataFrame(records, columns=REPLAY_COLUMNS)


class ReplayMetricSource:
    """Replays recorded measurements from a long-format DataFrame."""

    def __init__(self, frame: pd.DataFrame):
        missing = [col for col in REPLAY_COLUMNS if col not in frame.columns]
        if missing:
            raise InvalidInput(f"Replay data is missing columns: {missing}")

        self._cycles: Dict[int, Dict[int, MetricVector]] = {}
        for cycle, group in frame.groupby('cycle', sort=True):
            self._cycles[int(cycle)] = {
                int(row.candidate_id): MetricVector(
                    snr_db=float(row.snr_db),
                    doppler_hz=float(row.doppler_hz),
                    delay_ms=float(row.delay_ms),
                    throughput_mbps=float(row.throughput_mbps),
                )
                for row in group.itertuples(index=False)
            }
        logger.info(f"Loaded replay data with {len(self._cycles)} cycles")

    @classmethod
    def from_csv(cls, path: str) -> 'ReplayMetricSource':
        return cls(pd.read_csv(path))

    @property
    def cycles(self) -> List[int]:
        return sorted(self._cycles)

    def __len__(self) -> int:
        return len(self._cycles)

    def read(self, cycle: int) -> Dict[int, MetricVector]:
        if cycle not in self._cycles:
            raise InvalidInput(f"No replay measurements for cycle {cycle}")
        return dict(self._cycles[cycle])
