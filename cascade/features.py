"""
Feature Computor
================
Derives the per-tick cascade features from a symbol's ``WindowStore``:

  LQ      sum(liquidation window) / median(liquidation window)
          -- multiples of the "typical" liquidation flow in the window
  RET     sum(|returns|) / stddev(returns)
          -- realised-volatility concentration, asset-agnostic ratio
  OI      percentage drop of the latest open interest from its prior peak
          (drops only; increases floor at 0)
  dOI_1m  percentage change of open interest vs. the reading nearest to
  dOI_3m  now-60s / now-180s

Every ratio is guarded: a zero denominator or an under-filled window
yields ``0.0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from cascade.stats import abs_sum, median, stddev
from cascade.windows import OISample, WindowStore

DOI_SHORT_LOOKBACK_SECONDS = 60.0
DOI_LONG_LOOKBACK_SECONDS = 180.0


@dataclass(frozen=True)
class CascadeFeatures:
    lq: float = 0.0
    ret: float = 0.0
    oi: float = 0.0
    median_liq: float = 0.0
    doi_1m: float = 0.0
    doi_3m: float = 0.0


def liquidation_ratio(liquidations: Sequence[float]) -> tuple:
    """Return ``(LQ, median_liq)`` for the liquidation window."""
    med = median(liquidations)
    if med <= 0:
        return 0.0, med
    return float(sum(liquidations)) / med, med


def return_concentration(returns: Sequence[float]) -> float:
    sigma = stddev(returns)
    if sigma <= 0:
        return 0.0
    return abs_sum(returns) / sigma


def oi_unwind(samples: Sequence[OISample]) -> float:
    """Percentage drop of the latest reading below the peak of the earlier ones."""
    if len(samples) < 2:
        return 0.0
    values = [s.value for s in samples]
    peak = max(values[:-1])
    if peak <= 0:
        return 0.0
    return max(0.0, (peak - values[-1]) / peak * 100.0)


def _nearest_sample(
    samples: Sequence[OISample], target: float
) -> Optional[OISample]:
    # Linear scan; samples are chronological and the window is <= 300 long.
    best: Optional[OISample] = None
    best_diff = float("inf")
    for sample in samples:
        diff = abs(sample.timestamp - target)
        if diff < best_diff:
            best_diff = diff
            best = sample
    return best


def oi_delta(samples: Sequence[OISample], now: float, seconds_ago: float) -> float:
    """Percent change from the sample nearest ``now - seconds_ago`` to the latest.

    Rounded to two decimals, the precision the reversal-quality thresholds
    are expressed in.
    """
    if not samples:
        return 0.0
    reference = _nearest_sample(samples, now - seconds_ago)
    if reference is None or reference.value == 0:
        return 0.0
    latest = samples[-1].value
    return round((latest - reference.value) / reference.value * 100.0, 2)


def compute_features(store: WindowStore, now: float) -> CascadeFeatures:
    """Compute all features from the current window contents."""
    lq, med = liquidation_ratio(store.liquidations)
    samples = store.open_interest
    return CascadeFeatures(
        lq=lq,
        ret=return_concentration(store.returns),
        oi=oi_unwind(samples),
        median_liq=med,
        doi_1m=oi_delta(samples, now, DOI_SHORT_LOOKBACK_SECONDS),
        doi_3m=oi_delta(samples, now, DOI_LONG_LOOKBACK_SECONDS),
    )
