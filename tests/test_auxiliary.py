"""Tests for cascade/auxiliary.py -- reversal quality and volatility regime."""

import pytest

from cascade.auxiliary import (
    RQBucket,
    VolatilityRegime,
    bucket_for_quality,
    reversal_quality,
    volatility_regime,
)
from cascade.features import CascadeFeatures


class TestReversalQuality:
    def test_quiet_market(self):
        rq = reversal_quality(CascadeFeatures())
        assert rq.score == 0
        assert rq.bucket == RQBucket.POOR

    def test_maximum(self):
        rq = reversal_quality(CascadeFeatures(lq=9, ret=30, doi_1m=-2.0, doi_3m=-3.0))
        assert rq.score == 5
        assert rq.bucket == RQBucket.EXCELLENT

    @pytest.mark.parametrize("lq,expected", [(5.9, 0), (6, 1), (8, 2)])
    def test_lq_component(self, lq, expected):
        assert reversal_quality(CascadeFeatures(lq=lq)).score == expected

    @pytest.mark.parametrize("doi_1m,doi_3m,expected", [
        (-1.0, 0.0, 2),
        (0.0, -1.5, 2),
        (-0.5, 0.0, 1),
        (0.0, -1.0, 1),
        (-0.49, -0.99, 0),
    ])
    def test_oi_flush_component(self, doi_1m, doi_3m, expected):
        f = CascadeFeatures(doi_1m=doi_1m, doi_3m=doi_3m)
        assert reversal_quality(f).score == expected

    def test_rising_oi_penalised(self):
        f = CascadeFeatures(lq=8, ret=30, doi_1m=0.5, doi_3m=0.1)
        assert reversal_quality(f).score == 1

    def test_floor_at_zero(self):
        f = CascadeFeatures(doi_1m=0.5, doi_3m=0.5)
        assert reversal_quality(f).score == 0

    def test_single_horizon_rising_not_penalised(self):
        f = CascadeFeatures(lq=8, doi_1m=0.5, doi_3m=-1.5)
        assert reversal_quality(f).score == 4


class TestBuckets:
    @pytest.mark.parametrize("score,bucket", [
        (0, RQBucket.POOR),
        (1, RQBucket.POOR),
        (2, RQBucket.OK),
        (3, RQBucket.GOOD),
        (4, RQBucket.EXCELLENT),
        (5, RQBucket.EXCELLENT),
    ])
    def test_bucket(self, score, bucket):
        assert bucket_for_quality(score) == bucket


class TestVolatilityRegime:
    @pytest.mark.parametrize("ret,regime,threshold", [
        (0.0, VolatilityRegime.LOW, 1),
        (24.9, VolatilityRegime.LOW, 1),
        (25.0, VolatilityRegime.MEDIUM, 2),
        (34.9, VolatilityRegime.MEDIUM, 2),
        (35.0, VolatilityRegime.HIGH, 3),
    ])
    def test_regimes(self, ret, regime, threshold):
        assessment = volatility_regime(ret)
        assert assessment.regime == regime
        assert assessment.rq_threshold == threshold
