"""
Score & Hysteresis State Machine
================================
Maps a tick's features to an integer cascade score (0-6) and the score to
one of four alert levels (``green < yellow < orange < red``).

Transitions are asymmetric:
  - escalation to a worse level happens on the tick that justifies it;
  - de-escalation requires ``COOLING_TICKS`` consecutive ticks whose score
    sits at or below the lower band of the level currently held.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict

from cascade.features import CascadeFeatures

logger = logging.getLogger(__name__)

COOLING_TICKS = 6


class AlertLevel(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @property
    def blocks_entries(self) -> bool:
        return self in (AlertLevel.ORANGE, AlertLevel.RED)


_SEVERITY: Dict[AlertLevel, int] = {
    AlertLevel.GREEN: 0,
    AlertLevel.YELLOW: 1,
    AlertLevel.ORANGE: 2,
    AlertLevel.RED: 3,
}

# Lowest score that still justifies holding the level.
LOWER_BANDS: Dict[AlertLevel, int] = {
    AlertLevel.RED: 4,
    AlertLevel.ORANGE: 2,
    AlertLevel.YELLOW: 0,
    AlertLevel.GREEN: 0,
}


def score_features(features: CascadeFeatures, ret_side_matches_liq: bool) -> int:
    """Sum the capped LQ / RET / OI contributions into a 0-6 score."""
    score = 0

    if features.lq >= 8:
        score += 2
    elif features.lq >= 4:
        score += 1

    # Volatility only counts when it moves with the liquidated side.
    if ret_side_matches_liq:
        if features.ret >= 35:
            score += 2
        elif features.ret >= 25:
            score += 1

    if features.oi >= 4:
        score += 2
    elif features.oi >= 2:
        score += 1

    return score


def level_for_score(score: int) -> AlertLevel:
    if score >= 6:
        return AlertLevel.RED
    if score >= 4:
        return AlertLevel.ORANGE
    if score >= 2:
        return AlertLevel.YELLOW
    return AlertLevel.GREEN


class HysteresisStateMachine:
    """Debounced alert level for one symbol.

    Usage::

        machine = HysteresisStateMachine()
        level = machine.update(score)
    """

    def __init__(self, cooling_ticks: int = COOLING_TICKS) -> None:
        self._cooling_ticks = cooling_ticks
        self.level: AlertLevel = AlertLevel.GREEN
        self.cooling_counter: int = 0

    def update(self, score: int) -> AlertLevel:
        """Apply one tick's score and return the (possibly unchanged) level."""
        target = level_for_score(score)

        if target == self.level:
            self.cooling_counter = 0
            return self.level

        if target.severity > self.level.severity:
            self.level = target
            self.cooling_counter = 0
            return self.level

        if score <= LOWER_BANDS[self.level]:
            self.cooling_counter += 1
            if self.cooling_counter >= self._cooling_ticks:
                logger.debug(
                    "Cooling complete after %d ticks: %s -> %s",
                    self.cooling_counter, self.level.value, target.value,
                )
                self.level = target
                self.cooling_counter = 0
        else:
            self.cooling_counter = 0

        return self.level
