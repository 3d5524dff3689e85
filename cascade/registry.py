"""
Detector Registry
=================
Owns one :class:`CascadeDetector` per actively watched symbol.  Detectors
are created when a symbol is added to monitoring and dropped when it is
removed; there is no lazily created global state.

The registry also produces the cross-symbol aggregate used for the global
entry block and for the metrics line logged by the execution layer.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cascade.auxiliary import VolatilityRegime, volatility_regime
from cascade.detector import CascadeDetector, CascadeStatus
from cascade.ticks import Tick
from cascade.windows import Clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateStatus:
    """Summary across every monitored symbol."""

    block_all: bool = False
    reason: str = ""
    avg_reversal_quality: float = 0.0
    avg_rq_threshold: float = 0.0
    volatility_regime: VolatilityRegime = VolatilityRegime.LOW
    avg_volatility_ret: float = 0.0
    avg_score: float = 0.0
    symbol_count: int = 0
    blocking_symbols: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "blockAll": self.block_all,
            "reason": self.reason,
            "avgReversalQuality": round(self.avg_reversal_quality, 2),
            "avgRqThreshold": round(self.avg_rq_threshold, 2),
            "volatilityRegime": self.volatility_regime.value,
            "avgVolatilityRET": round(self.avg_volatility_ret, 2),
            "avgScore": round(self.avg_score, 2),
            "symbolCount": self.symbol_count,
            "blockingSymbols": list(self.blocking_symbols),
        }


class DetectorRegistry:
    """Map of symbol -> detector with an explicit add / remove lifecycle.

    Parameters
    ----------
    auto_enabled : bool
        Global auto-block flag; applied to new detectors.
    clock : callable, optional
        Shared clock handed to every detector.
    """

    def __init__(
        self, auto_enabled: bool = True, clock: Optional[Clock] = None
    ) -> None:
        self._auto_enabled = bool(auto_enabled)
        self._clock = clock
        self._detectors: Dict[str, CascadeDetector] = {}
        self._lock = threading.Lock()

    # ----- lifecycle -------------------------------------------------------

    def add_symbol(self, symbol: str) -> CascadeDetector:
        with self._lock:
            detector = self._detectors.get(symbol)
            if detector is None:
                detector = CascadeDetector(
                    symbol, auto_enabled=self._auto_enabled, clock=self._clock
                )
                self._detectors[symbol] = detector
                logger.info("Monitoring started for %s", symbol)
            return detector

    def remove_symbol(self, symbol: str) -> bool:
        with self._lock:
            removed = self._detectors.pop(symbol, None) is not None
        if removed:
            logger.info("Monitoring stopped for %s", symbol)
        return removed

    def sync_symbols(self, symbols: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Make the monitored set equal to *symbols*; returns ``(added, removed)``."""
        wanted = list(dict.fromkeys(symbols))
        current = set(self.symbols())
        added = [s for s in wanted if s not in current]
        removed = sorted(current.difference(wanted))
        for symbol in removed:
            self.remove_symbol(symbol)
        for symbol in added:
            self.add_symbol(symbol)
        if added or removed:
            logger.info(
                "Cascade symbols synced  added=%s  removed=%s  total=%d",
                added, removed, len(self),
            )
        return added, removed

    # ----- lookup ----------------------------------------------------------

    def symbols(self) -> List[str]:
        with self._lock:
            return list(self._detectors)

    def get(self, symbol: str) -> Optional[CascadeDetector]:
        with self._lock:
            return self._detectors.get(symbol)

    def __contains__(self, symbol: object) -> bool:
        with self._lock:
            return symbol in self._detectors

    def __len__(self) -> int:
        with self._lock:
            return len(self._detectors)

    # ----- ingestion / status ---------------------------------------------

    def ingest_tick(self, symbol: str, tick: Tick) -> CascadeStatus:
        detector = self.get(symbol)
        if detector is None:
            raise KeyError(f"{symbol} is not monitored")
        return detector.ingest_tick(
            tick.liq_notional_same_side,
            tick.ret_1s,
            tick.oi_snapshot,
            tick.ret_side_matches_liq,
        )

    def get_status(self, symbol: str) -> Optional[CascadeStatus]:
        detector = self.get(symbol)
        return detector.get_current_status() if detector is not None else None

    def get_all_statuses(self) -> Dict[str, CascadeStatus]:
        with self._lock:
            detectors = dict(self._detectors)
        return {sym: det.get_current_status() for sym, det in detectors.items()}

    # ----- auto-block control ---------------------------------------------

    def set_auto_enabled(self, enabled: bool, symbol: Optional[str] = None) -> List[str]:
        """Set the flag for *symbol*, or globally when *symbol* is ``None``.

        Returns the symbols that were updated.
        """
        if symbol is not None:
            detector = self.get(symbol)
            if detector is None:
                raise KeyError(f"{symbol} is not monitored")
            detector.set_auto_enabled(enabled)
            return [symbol]

        with self._lock:
            self._auto_enabled = bool(enabled)
            detectors = dict(self._detectors)
        for det in detectors.values():
            det.set_auto_enabled(enabled)
        logger.info("Cascade auto-block %s globally", "enabled" if enabled else "disabled")
        return list(detectors)

    def get_auto_enabled(self, symbol: Optional[str] = None) -> bool:
        if symbol is None:
            return self._auto_enabled
        detector = self.get(symbol)
        if detector is None:
            raise KeyError(f"{symbol} is not monitored")
        return detector.get_auto_enabled()

    # ----- aggregate ------------------------------------------------------

    def get_aggregate_status(self) -> AggregateStatus:
        statuses = self.get_all_statuses()
        if not statuses:
            return AggregateStatus()

        n = len(statuses)
        blocking = sorted(sym for sym, st in statuses.items() if st.auto_block)
        avg_ret = sum(st.ret for st in statuses.values()) / n

        reason = ""
        if blocking:
            reason = "Cascade risk on " + ", ".join(
                f"{sym} ({statuses[sym].light.value})" for sym in blocking
            )

        return AggregateStatus(
            block_all=bool(blocking),
            reason=reason,
            avg_reversal_quality=sum(st.reversal_quality for st in statuses.values()) / n,
            avg_rq_threshold=sum(st.rq_threshold_adjusted for st in statuses.values()) / n,
            volatility_regime=volatility_regime(avg_ret).regime,
            avg_volatility_ret=avg_ret,
            avg_score=sum(st.score for st in statuses.values()) / n,
            symbol_count=n,
            blocking_symbols=blocking,
        )
