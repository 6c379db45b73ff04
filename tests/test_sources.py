"""Tests for the simulated and replayed metric sources."""

import numpy as np
import pandas as pd
import pytest

from leo_handover import HandoverConfig, InvalidInput, MetricSource, ReplayMetricSource, SyntheticMetricSource
from leo_handover.scoring import shannon_throughput_mbps


@pytest.fixture
def candidates():
    return HandoverConfig().candidates


class TestSyntheticMetricSource:

    def test_implements_protocol(self, candidates):
        assert isinstance(SyntheticMetricSource(candidates), MetricSource)

    def test_one_vector_per_candidate_in_order(self, candidates):
        measurements = SyntheticMetricSource(candidates).read(1)
        assert list(measurements) == [1, 2, 3]

    def test_same_seed_same_measurements(self, candidates):
        a = SyntheticMetricSource(candidates, seed=11).generate(20)
        b = SyntheticMetricSource(candidates, seed=11).generate(20)
        pd.testing.assert_frame_equal(a, b)

    def test_reset_replays_sequence(self, candidates):
        source = SyntheticMetricSource(candidates, seed=5)
        first = source.read(1)
        source.reset()
        assert source.read(1) == first

    def test_metric_ranges(self, candidates):
        frame = SyntheticMetricSource(candidates, seed=0).generate(200)
        sat1 = frame[frame['candidate_id'] == 1]
        # 550 km orbit seen at 0.3..0.7 rad elevation
        assert sat1['delay_ms'].between(2.8, 6.3).all()
        assert (frame['throughput_mbps'] >= 0).all()
        np.testing.assert_allclose(frame['throughput_mbps'],
                                   shannon_throughput_mbps(frame['snr_db'].values, 10e6))
        assert abs(frame['snr_db'].mean() - 20.0) < 1.5


class TestReplayMetricSource:

    def test_from_csv(self, candidates, tmp_path):
        frame = SyntheticMetricSource(candidates, seed=2).generate(10)
        path = tmp_path / "metrics.csv"
        frame.to_csv(path, index=False)

        source = ReplayMetricSource.from_csv(str(path))
        assert len(source) == 10
        assert source.cycles == list(range(1, 11))
        row = frame.iloc[0]
        replayed = source.read(1)[1]
        assert replayed.snr_db == pytest.approx(row['snr_db'])
        assert replayed.doppler_hz == pytest.approx(row['doppler_hz'])

    def test_missing_columns(self):
        with pytest.raises(InvalidInput):
            ReplayMetricSource(pd.DataFrame({'cycle': [1], 'candidate_id': [1]}))

    def test_unknown_cycle(self, candidates):
        source = ReplayMetricSource(SyntheticMetricSource(candidates).generate(3))
        with pytest.raises(InvalidInput):
            source.read(4)
