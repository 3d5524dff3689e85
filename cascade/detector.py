"""
Liquidation Cascade Detector
============================
Per-symbol owner of the window store, feature computor, hysteresis state
machine and auxiliary classifiers.  Every call to :meth:`ingest_tick` runs
the full pipeline in order and publishes a new immutable
:class:`CascadeStatus`.

Concurrency
-----------
Ingestion is serialised by a per-detector lock.  The published status is a
frozen dataclass swapped by reference, so :meth:`get_current_status` never
takes the lock and can never observe a half-written record.

Usage::

    detector = CascadeDetector("BTCUSDT")
    status = detector.ingest_tick(125_000.0, -0.0012, 98_500.0, True)
    if status.auto_block:
        ...
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from cascade.auxiliary import (
    RQBucket,
    VolatilityRegime,
    reversal_quality,
    volatility_regime,
)
from cascade.features import CascadeFeatures, compute_features
from cascade.hysteresis import AlertLevel, HysteresisStateMachine, score_features
from cascade.windows import Clock, WindowStore, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CascadeStatus:
    """Snapshot of one symbol's cascade state after a tick."""

    score: int = 0
    lq: float = 0.0
    ret: float = 0.0
    oi: float = 0.0
    light: AlertLevel = AlertLevel.GREEN
    auto_block: bool = False
    auto_enabled: bool = True
    median_liq: float = 0.0
    doi_1m: float = 0.0
    doi_3m: float = 0.0
    reversal_quality: int = 0
    rq_bucket: RQBucket = RQBucket.POOR
    volatility_regime: VolatilityRegime = VolatilityRegime.LOW
    rq_threshold_adjusted: int = 1

    @classmethod
    def cold_start(cls, auto_enabled: bool = True) -> "CascadeStatus":
        return cls(auto_enabled=auto_enabled)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise using the field names the dashboard and broadcast expect."""
        return {
            "score": self.score,
            "LQ": self.lq,
            "RET": self.ret,
            "OI": self.oi,
            "light": self.light.value,
            "autoBlock": self.auto_block,
            "autoEnabled": self.auto_enabled,
            "medianLiq": self.median_liq,
            "dOI_1m": self.doi_1m,
            "dOI_3m": self.doi_3m,
            "reversal_quality": self.reversal_quality,
            "rq_bucket": self.rq_bucket.value,
            "volatility_regime": self.volatility_regime.value,
            "rq_threshold_adjusted": self.rq_threshold_adjusted,
        }

    def csv_line(self) -> str:
        return ",".join([
            str(self.score),
            f"{self.lq:.1f}",
            f"{self.ret:.1f}",
            f"{self.oi:.1f}",
            self.light.value,
            str(self.auto_block).lower(),
        ])


class CascadeDetector:
    """Stateful cascade classifier for a single symbol.

    Parameters
    ----------
    symbol : str
        Used for logging only.
    auto_enabled : bool
        Whether ``auto_block`` may ever be true.
    clock : callable, optional
        Returns epoch seconds; defaults to ``time.time``.
    """

    def __init__(
        self,
        symbol: str = "",
        auto_enabled: bool = True,
        clock: Optional[Clock] = None,
    ) -> None:
        self.symbol = symbol
        self._clock: Clock = clock or system_clock
        self._windows = WindowStore()
        self._machine = HysteresisStateMachine()
        self._auto_enabled = bool(auto_enabled)
        self._lock = threading.Lock()
        self._status = CascadeStatus.cold_start(self._auto_enabled)

    # ----- public interface ------------------------------------------------

    @property
    def windows(self) -> WindowStore:
        return self._windows

    @property
    def cooling_counter(self) -> int:
        return self._machine.cooling_counter

    def ingest_tick(
        self,
        liq_notional_same_side: float,
        ret_1s: float,
        oi_snapshot: float,
        ret_side_matches_liq: bool,
    ) -> CascadeStatus:
        """Push one tick through windows, features, score and classifiers."""
        with self._lock:
            now = self._clock()
            self._push_samples(liq_notional_same_side, ret_1s, oi_snapshot, now)

            features = compute_features(self._windows, now)
            score = score_features(features, bool(ret_side_matches_liq))
            level = self._machine.update(score)

            status = self._build_status(score, level, features)
            self._status = status
            return status

    def get_current_status(self) -> CascadeStatus:
        """Last published status; the cold-start default before any tick."""
        return self._status

    def set_auto_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._auto_enabled = bool(enabled)
            current = self._status
            self._status = replace(
                current,
                auto_enabled=self._auto_enabled,
                auto_block=self._auto_enabled and current.light.blocks_entries,
            )
        logger.info("CascadeDetector[%s] auto_enabled=%s", self.symbol, enabled)

    def get_auto_enabled(self) -> bool:
        return self._auto_enabled

    # ----- internals -------------------------------------------------------

    def _push_samples(
        self, liq: float, ret: float, oi: float, now: float
    ) -> None:
        # A bad sample would sit in the window for its full capacity.
        if not _is_finite(liq) or liq < 0:
            logger.warning(
                "CascadeDetector[%s] invalid liquidation notional %r -- using 0",
                self.symbol, liq,
            )
            liq = 0.0
        if not _is_finite(ret):
            logger.warning(
                "CascadeDetector[%s] invalid return %r -- using 0", self.symbol, ret
            )
            ret = 0.0

        self._windows.push_liquidation(float(liq))
        self._windows.push_return(float(ret))

        if not _is_finite(oi) or oi < 0:
            logger.warning(
                "CascadeDetector[%s] invalid open interest %r -- sample dropped",
                self.symbol, oi,
            )
            return
        self._windows.push_open_interest(float(oi), now)

    def _build_status(
        self, score: int, level: AlertLevel, features: CascadeFeatures
    ) -> CascadeStatus:
        rq = reversal_quality(features)
        regime = volatility_regime(features.ret)
        return CascadeStatus(
            score=score,
            lq=round(features.lq, 1),
            ret=round(features.ret, 1),
            oi=round(features.oi, 1),
            light=level,
            auto_block=self._auto_enabled and level.blocks_entries,
            auto_enabled=self._auto_enabled,
            median_liq=float(round(features.median_liq)),
            doi_1m=features.doi_1m,
            doi_3m=features.doi_3m,
            reversal_quality=rq.score,
            rq_bucket=rq.bucket,
            volatility_regime=regime.regime,
            rq_threshold_adjusted=regime.rq_threshold,
        )


def _is_finite(value: Any) -> bool:
    try:
        return math.isfinite(value)
    except TypeError:
        return False


