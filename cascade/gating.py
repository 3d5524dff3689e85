"""
Trade Gate
==========
Entry-permission check consumed by the execution layer before it opens or
layers a position.

Rules, per symbol:
  - auto-block disabled            -> always allowed
  - alert level orange or red      -> blocked
  - reversal quality below the regime-adjusted threshold -> blocked
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from cascade.detector import CascadeStatus
from cascade.registry import DetectorRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str
    status: Optional[CascadeStatus] = None


class TradeGate:
    """Reads the latest per-symbol status from a :class:`DetectorRegistry`."""

    def __init__(self, registry: DetectorRegistry) -> None:
        self._registry = registry

    def check_entry(self, symbol: str) -> GateDecision:
        status = self._registry.get_status(symbol)
        if status is None:
            return GateDecision(True, f"{symbol} not monitored")

        if not status.auto_enabled:
            return GateDecision(True, "auto-block disabled", status)

        if status.auto_block:
            decision = GateDecision(
                False,
                f"cascade level {status.light.value} (score {status.score})",
                status,
            )
        elif status.reversal_quality < status.rq_threshold_adjusted:
            decision = GateDecision(
                False,
                f"reversal quality {status.reversal_quality} below "
                f"{status.rq_threshold_adjusted} for {status.volatility_regime.value} volatility",
                status,
            )
        else:
            decision = GateDecision(
                True,
                f"reversal quality {status.reversal_quality}/{status.rq_threshold_adjusted} "
                f"({status.rq_bucket.value})",
                status,
            )

        if not decision.allowed:
            logger.info("Entry blocked for %s: %s", symbol, decision.reason)
        return decision

    def is_blocking(self) -> bool:
        return self._registry.get_aggregate_status().block_all
