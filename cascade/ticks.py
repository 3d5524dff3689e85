"""
Tick records and the per-symbol tick builder.

The builder is the thin adapter between raw market events and the
detector: it accumulates liquidation notional by side between ticks, turns
consecutive prices into a one-second return, and decides whether that
return moves with the dominant liquidation side.

  long liquidations  = forced sells  -> a negative return matches
  short liquidations = forced buys   -> a positive return matches
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

LONG = "long"
SHORT = "short"


@dataclass(frozen=True)
class Tick:
    """One detector input: everything observed since the previous tick."""

    liq_notional_same_side: float
    ret_1s: float
    oi_snapshot: float
    ret_side_matches_liq: bool


class TickBuilder:
    """Accumulates raw events for one symbol and emits a :class:`Tick` per period."""

    def __init__(self, symbol: str) -> None:
        self.symbol = symbol
        self._liq_long = 0.0
        self._liq_short = 0.0
        self._last_price: Optional[float] = None
        self._last_oi: Optional[float] = None

    def record_liquidation(self, side: str, notional: float) -> None:
        """Add a liquidation of *notional* quote value on *side*."""
        try:
            notional = float(notional)
        except (TypeError, ValueError):
            logger.warning("TickBuilder[%s] bad liquidation notional %r", self.symbol, notional)
            return
        if not math.isfinite(notional) or notional <= 0:
            return
        side = str(side).lower()
        if side == LONG:
            self._liq_long += notional
        elif side == SHORT:
            self._liq_short += notional
        else:
            logger.warning("TickBuilder[%s] unknown liquidation side %r", self.symbol, side)

    @property
    def dominant_side(self) -> Optional[str]:
        if self._liq_long == 0 and self._liq_short == 0:
            return None
        return LONG if self._liq_long >= self._liq_short else SHORT

    def build(
        self, price: Optional[float], open_interest: Optional[float]
    ) -> Tick:
        """Close the current period and return its tick.

        Missing readings (``None``) fall back to the last known price and
        open interest, so a failed fetch yields a zero return rather than a
        gap.  Until the first open-interest reading arrives the tick carries
        ``nan``, which the detector drops instead of recording a zero.
        """
        side = self.dominant_side
        if side == LONG:
            notional = self._liq_long
        elif side == SHORT:
            notional = self._liq_short
        else:
            notional = 0.0

        ret = 0.0
        if price is not None and math.isfinite(price) and price > 0:
            prev = self._last_price
            if prev is not None and prev > 0:
                ret = (price - prev) / prev
            self._last_price = price

        if open_interest is not None and math.isfinite(open_interest):
            self._last_oi = open_interest

        matches = (side == LONG and ret < 0) or (side == SHORT and ret > 0)

        self._liq_long = 0.0
        self._liq_short = 0.0

        return Tick(
            liq_notional_same_side=notional,
            ret_1s=ret,
            oi_snapshot=self._last_oi if self._last_oi is not None else math.nan,
            ret_side_matches_liq=matches,
        )
