"""Interactive scatterplot view over remotely fetched variable columns."""

from .core import ScatterplotProps, ScatterplotView

__all__ = ["ScatterplotProps", "ScatterplotView"]
