"""
ada-trader Strategy: Signal Normalizer

Maps the planner's qualitative confidence to a bounded signal strength.

Mapping: clamped linear rescale from ``floor`` to 1.0. With the default
floor of 0.0 this is a direct pass-through, so confidence 0.75 gives signal
strength 0.75. A floor of 0.6 reproduces the stricter "only conviction above
60% counts" variant while keeping 0 -> 0 and 1 -> 1.
"""

import math


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    return max(lower, min(upper, value))


def signal_strength(confidence: float, floor: float = 0.0) -> float:
    """
    Convert a confidence score into a signal strength in [0, 1].

    Monotone non-decreasing in ``confidence``. NaN and negative inputs map
    to 0, values above 1 map to 1.
    """
    if confidence is None or math.isnan(confidence):
        return 0.0
    if not 0.0 <= floor < 1.0:
        raise ValueError(f"floor must be within [0, 1), got {floor}")
    return clamp((confidence - floor) / (1.0 - floor))
