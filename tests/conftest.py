"""Shared fixtures for the handover engine tests."""

import pytest

from leo_handover import HandoverConfig, HandoverEngine, MetricVector

CANDIDATES = [
    {'id': 1, 'name': 'SAT-1', 'frequency_hz': 137e6, 'bandwidth_hz': 10e6},
    {'id': 2, 'name': 'SAT-2', 'frequency_hz': 145e6, 'bandwidth_hz': 10e6},
    {'id': 3, 'name': 'SAT-3', 'frequency_hz': 435e6, 'bandwidth_hz': 10e6},
]

# Score equals SNR exactly, so tests can drive the engine with scores
SNR_ONLY_WEIGHTS = {'snr': 1.0, 'delay': 0.0, 'doppler': 0.0, 'throughput': 0.0}


def build_config(predictor="baseline", hysteresis=2.0, lockout=3, window=3,
                 policy="pure_delta", default=None, low_threshold=0.0):
    return HandoverConfig({
        'candidates': CANDIDATES,
        'scoring': SNR_ONLY_WEIGHTS,
        'predictor': {'name': predictor, 'window': window},
        'handover': {
            'policy': policy,
            'hysteresis': hysteresis,
            'lockout_duration': lockout,
            'low_threshold': low_threshold,
            'default_candidate': default,
        },
    })


@pytest.fixture(scope="session")
def make_config():
    return build_config


@pytest.fixture(scope="session")
def make_engine():
    def _make(model=None, **kwargs):
        return HandoverEngine(build_config(**kwargs), model=model)
    return _make


@pytest.fixture(scope="session")
def score_metrics():
    """Turn a list of scores into an ordered measurement mapping."""
    def _metrics(scores, ids=(1, 2, 3)):
        return {cid: MetricVector(snr_db=float(s), doppler_hz=0.0, delay_ms=0.0, throughput_mbps=0.0)
                for cid, s in zip(ids, scores)}
    return _metrics


@pytest.fixture(scope="session")
def run_scores(score_metrics):
    """Feed a sequence of score rows through an engine and return the results."""
    def _run(engine, rows):
        return [engine.step(score_metrics(row)) for row in rows]
    return _run
