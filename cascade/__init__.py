"""
Liquidation Cascade Detector
============================
Per-symbol cascade risk scoring from liquidation notional, return
concentration and open-interest unwind, with a hysteresis alert light
(green / yellow / orange / red) and an automatic entry block.
"""

from cascade.detector import CascadeDetector, CascadeStatus
from cascade.gating import GateDecision, TradeGate
from cascade.hysteresis import AlertLevel
from cascade.registry import AggregateStatus, DetectorRegistry
from cascade.service import CascadeDetectorService
from cascade.ticks import Tick, TickBuilder

__all__ = [
    "AggregateStatus",
    "AlertLevel",
    "CascadeDetector",
    "CascadeDetectorService",
    "CascadeStatus",
    "DetectorRegistry",
    "GateDecision",
    "Tick",
    "TickBuilder",
    "TradeGate",
]
