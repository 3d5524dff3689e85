"""
Statistics Kernel
=================
Median and population standard deviation over the small sliding windows
kept by the cascade detector.  Degenerate input (an empty window) yields
``0.0`` so that downstream ratios collapse to a neutral value instead of
raising or producing ``NaN``.

Dependencies: numpy only.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np


def median(values: Iterable[float]) -> float:
    """Middle value of *values*; mean of the two middle values for even length."""
    arr = np.fromiter(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.median(arr))


def stddev(values: Iterable[float]) -> float:
    """Population standard deviation (divides by N, not N-1)."""
    arr = np.fromiter(values, dtype=float)
    if arr.size == 0:
        return 0.0
    # Identical values: exact zero, not the rounding residue of the mean.
    if np.ptp(arr) == 0:
        return 0.0
    return float(np.std(arr, ddof=0))


def abs_sum(values: Iterable[float]) -> float:
    arr = np.fromiter(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.abs(arr).sum())
