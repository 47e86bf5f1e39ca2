"""
Outlier-resistant value-to-size scales for marker sizing.

The domain is the 0.1st..99.9th percentile of the valid values, so a handful
of extreme entities cannot flatten every other marker to the same size.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from data_ops.store import SENTINEL_FLOOR

_LOW_QUANTILE = 0.001
_HIGH_QUANTILE = 0.999


def compute_domain(values) -> Optional[tuple[float, float]]:
    """Trimmed [low, high] bounds of the valid values.

    Uses linear interpolation between closest ranks (numpy's default
    quantile method). Non-numeric and sentinel values are ignored.

    Args:
        values: Any iterable of numbers, a mapping of id -> value, or a Series.

    Returns:
        (low, high), or None if no valid value remains.
    """
    if isinstance(values, dict):
        values = list(values.values())
    nums = pd.to_numeric(pd.Series(values, dtype=object), errors="coerce").to_numpy(dtype=float)
    nums = np.sort(nums[nums > SENTINEL_FLOOR])
    if nums.size == 0:
        return None
    low, high = np.quantile(nums, [_LOW_QUANTILE, _HIGH_QUANTILE])
    return float(low), float(high)


@dataclass(frozen=True)
class PowerScale:
    """Clamped power scale ``low..high -> range_low..range_high``."""

    domain_low: float
    domain_high: float
    range_low: float = 0.0
    range_high: float = 1.0
    exponent: float = 1.0

    def __call__(self, value):
        span = self.domain_high - self.domain_low
        if span == 0:
            t = np.full(np.shape(value), 0.5) if np.ndim(value) else 0.5
        else:
            t = np.clip((np.asarray(value, dtype=float) - self.domain_low) / span, 0.0, 1.0)
            t = np.power(t, self.exponent)
        out = self.range_low + (self.range_high - self.range_low) * t
        return float(out) if np.ndim(out) == 0 else out


@dataclass(frozen=True)
class ConstantScale:
    """Scale used when there is no size dimension: every value maps to one size."""

    value: float

    def __call__(self, value=None):
        if value is not None and np.ndim(value):
            return np.full(np.shape(value), float(self.value))
        return float(self.value)


def make_size_scale(
    values=None,
    size_range: Sequence[float] = (0, 1),
    exponent: float = 1,
    default_size: float = 0,
):
    """Build the marker-size scale for a size variable.

    Args:
        values: Values of the driving variable, or None when no size
            dimension is requested.
        size_range: Output (range_low, range_high).
        exponent: Power applied to the normalized value.
        default_size: Constant used when there is nothing to scale.

    Returns:
        A callable number -> number: a PowerScale, or a ConstantScale when
        values is None or holds no valid number.
    """
    if values is None:
        return ConstantScale(default_size)
    domain = compute_domain(values)
    if domain is None:
        return ConstantScale(default_size)
    range_low, range_high = size_range
    return PowerScale(
        domain_low=domain[0],
        domain_high=domain[1],
        range_low=float(range_low),
        range_high=float(range_high),
        exponent=float(exponent),
    )
