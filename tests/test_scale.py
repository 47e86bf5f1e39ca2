"""
Tests for rendering.scale — trimmed domains and marker-size scales.

Run with: python -m pytest tests/test_scale.py
"""

import numpy as np
import pandas as pd
import pytest

from rendering.scale import ConstantScale, PowerScale, compute_domain, make_size_scale


class TestComputeDomain:
    def test_trims_extremes(self):
        low, high = compute_domain(range(1001))
        assert low == pytest.approx(1.0)
        assert high == pytest.approx(999.0)

    def test_ignores_sentinels_and_strings(self):
        low, high = compute_domain([-9999, "n/a", 5, 5, 5])
        assert low == high == 5.0

    def test_accepts_mapping_and_series(self):
        assert compute_domain({"a": 2, "b": 2}) == (2.0, 2.0)
        assert compute_domain(pd.Series({"a": 3.0})) == (3.0, 3.0)

    def test_empty(self):
        assert compute_domain([]) is None
        assert compute_domain([-9999]) is None


class TestPowerScale:
    def test_endpoints(self):
        scale = PowerScale(0, 10, 6, 48)
        assert scale(0) == 6.0
        assert scale(10) == 48.0

    def test_clamps(self):
        scale = PowerScale(0, 10, 6, 48)
        assert scale(-100) == 6.0
        assert scale(1000) == 48.0

    def test_monotonic(self):
        scale = PowerScale(0, 10, 6, 48)
        out = scale(np.linspace(-5, 15, 50))
        assert np.all(np.diff(out) >= 0)

    def test_exponent(self):
        scale = PowerScale(0, 1, 0, 1, exponent=0.5)
        assert scale(0.25) == pytest.approx(0.5)

    def test_degenerate_domain_maps_to_midpoint(self):
        scale = PowerScale(5, 5, 0, 10)
        assert scale(5) == 5.0
        assert scale(100) == 5.0

    def test_returns_python_float_for_scalars(self):
        assert isinstance(PowerScale(0, 1)(0.5), float)


class TestMakeSizeScale:
    def test_constant_without_values(self):
        scale = make_size_scale(None, default_size=10)
        assert isinstance(scale, ConstantScale)
        assert scale(123) == 10.0
        assert scale(None) == 10.0

    def test_constant_when_nothing_valid(self):
        scale = make_size_scale({"a": -9999}, default_size=7)
        assert scale(3) == 7.0

    def test_power_scale_from_values(self):
        scale = make_size_scale(list(range(1001)), size_range=(6, 48))
        assert isinstance(scale, PowerScale)
        assert scale(0) == 6.0
        assert scale(1000) == 48.0
        assert 6.0 < scale(500) < 48.0
