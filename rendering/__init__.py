"""Scales, series composition and the Plotly render adapter."""

from .index import NOT_FOUND, SeriesLocation, locate
from .plotly_renderer import PlotlyRenderer, build_figure
from .scale import ConstantScale, PowerScale, compute_domain, make_size_scale
from .series import Series, compose_series, deep_merge

__all__ = [
    "NOT_FOUND",
    "SeriesLocation",
    "locate",
    "PlotlyRenderer",
    "build_figure",
    "ConstantScale",
    "PowerScale",
    "compute_domain",
    "make_size_scale",
    "Series",
    "compose_series",
    "deep_merge",
]
