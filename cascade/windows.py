"""
Window Store
============
Per-symbol bounded sliding buffers feeding the feature computor:

  - same-side liquidation notional  (60 samples)
  - one-second signed returns       (60 samples)
  - timestamped open interest       (300 samples)

Capacities are sample *counts*.  At one tick per second they approximate
one- and five-minute spans; with irregular arrival the covered time span
varies.  Eviction is handled by ``deque(maxlen=...)`` so a push is O(1) and
never grows past capacity.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque

# Epoch seconds.  Injected so tests can drive the dOI lookback deterministically.
Clock = Callable[[], float]

LIQ_WINDOW_SIZE = 60
RET_WINDOW_SIZE = 60
OI_WINDOW_SIZE = 300


def system_clock() -> float:
    return time.time()


@dataclass(frozen=True)
class OISample:
    """One open-interest reading and its arrival time (epoch seconds)."""

    value: float
    timestamp: float


@dataclass
class WindowStore:
    """Rolling liquidation / return / open-interest buffers for one symbol."""

    liquidations: Deque[float] = field(
        default_factory=lambda: deque(maxlen=LIQ_WINDOW_SIZE)
    )
    returns: Deque[float] = field(
        default_factory=lambda: deque(maxlen=RET_WINDOW_SIZE)
    )
    open_interest: Deque[OISample] = field(
        default_factory=lambda: deque(maxlen=OI_WINDOW_SIZE)
    )

    def push_liquidation(self, notional: float) -> None:
        self.liquidations.append(notional)

    def push_return(self, ret: float) -> None:
        self.returns.append(ret)

    def push_open_interest(self, value: float, timestamp: float) -> None:
        self.open_interest.append(OISample(value=value, timestamp=timestamp))

    def lengths(self) -> tuple:
        """(liquidations, returns, open_interest) sample counts."""
        return len(self.liquidations), len(self.returns), len(self.open_interest)
