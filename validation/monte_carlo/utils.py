"""Shared helpers for the Monte Carlo engines."""

from typing import Sequence
import warnings

import numpy as np


def percentile(values: Sequence[float], p: float) -> float:
    """Percentile by linear interpolation between order statistics.

    Args:
        values: Sample values (any order)
        p: Percentile, clamped to [0, 100]

    Returns:
        Interpolated value (0.0 for an empty sequence)
    """
    if len(values) == 0:
        warnings.warn("percentile of an empty distribution, returning 0.0")
        return 0.0
    p = min(max(p, 0.0), 100.0)
    return float(np.percentile(np.asarray(values, dtype=float), p))
