"""
Plotly-based renderer for scatterplot views.

Accepts a declarative option dict ``{"series": [Series, ...], "layout": {...}}``
and turns it into a go.Figure. Mirrors the interaction surface a chart
widget exposes to the view:
- on() / emit()       — "ready", "mouseover", "mouseout", "mousemove", "click"
- set_option() / get_option()
- dispatch_action()   — {"type": "highlight"|"downplay", "seriesIndex", "dataIndex"}
- show_loading() / hide_loading()

Positional rows ``[x, y, (z), id]`` exist only here and in the event
payloads this renderer emits; everything upstream works with ScatterPoints.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Mapping
from pathlib import Path
from typing import Callable, Optional

import plotly.graph_objects as go

from .series import Series, deep_merge

logger = logging.getLogger("scatterview")

# Threshold: above this many points per trace, use Scattergl (WebGL)
_GL_THRESHOLD = 100_000

# Explicit layout defaults, independent of any notebook/app theme
_DEFAULT_LAYOUT = dict(
    paper_bgcolor="white",
    plot_bgcolor="white",
    font_color="#2a3f5f",
    autosize=False,
    width=640,
    height=480,
    hovermode="closest",
    margin=dict(t=24, b=48, l=48, r=24),
)

# Keys of a series style that are not plotly trace properties
_NON_TRACE_KEYS = ("type", "kind")

EVENTS = ("ready", "mouseover", "mouseout", "mousemove", "click")


def _scatter_cls(n_points: int):
    """Return go.Scattergl for large datasets, go.Scatter otherwise."""
    return go.Scattergl if n_points > _GL_THRESHOLD else go.Scatter


def as_row(item) -> list:
    """Positional ``[x, y, (z), id]`` form of one series datum."""
    if hasattr(item, "as_row"):
        return item.as_row()
    if isinstance(item, Mapping):
        return list(item.get("value", []))
    return list(item)


def build_trace(series: Series, selected_points: Optional[list[int]] = None):
    """Convert one Series to a plotly scatter trace."""
    rows = [as_row(p) for p in series.data]
    scatter = _scatter_cls(len(rows))
    props = dict(
        x=[r[0] for r in rows],
        y=[r[1] for r in rows],
        customdata=[r[-1] for r in rows],
        name=series.id,
        uid=series.id,
    )
    style = {k: v for k, v in series.style.items() if k not in _NON_TRACE_KEYS}
    trace = scatter(**props)
    try:
        trace.update(style)
    except ValueError as e:
        # Keys outside plotly's Scatter vocabulary (e.g. symbolSize) are dropped
        logger.warning("[Renderer] Dropping style keys plotly does not accept on series '%s'", series.id)
        logger.debug("[Renderer] %s", e)
        trace = scatter(arg={**props, **style}, skip_invalid=True)
    if selected_points:
        trace.update(selectedpoints=selected_points, unselected=dict(marker=dict(opacity=0.3)))
    return trace


def build_figure(option: Mapping, highlighted: Optional[Mapping[int, set]] = None) -> go.Figure:
    """Build a figure from an option dict; series are stacked by ascending z."""
    highlighted = highlighted or {}
    series = [s if isinstance(s, Series) else Series.from_dict(s) for s in option.get("series", [])]
    order = sorted(range(len(series)), key=lambda i: series[i].z)
    traces = [build_trace(series[i], sorted(highlighted.get(i, ()))) for i in order]
    layout = deep_merge(_DEFAULT_LAYOUT, option.get("layout"))
    return go.Figure(data=traces, layout=layout)


class PlotlyRenderer:
    """Stateful Plotly renderer for one scatterplot view."""

    def __init__(self):
        self._figure: Optional[go.Figure] = None
        self._option: dict = {}
        self._handlers: dict[str, list[Callable]] = defaultdict(list)
        self._highlighted: dict[int, set] = {}
        self._ready = False
        self.loading = False

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Callable) -> None:
        """Register ``handler`` for an event name."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'. Use one of {EVENTS}.")
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Callable) -> None:
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def emit(self, event: str, payload=None) -> None:
        """Invoke every handler registered for ``event``."""
        for handler in list(self._handlers.get(event, [])):
            handler(payload)

    def pointer_event(self, event: str, series_index: int, data_index: int) -> dict:
        """Emit a pointer event for a drawn point, as a chart widget would.

        Returns:
            The emitted event dict ``{"type", "seriesIndex", "dataIndex", "data"}``.
        """
        series = self._option.get("series", [])
        item = series[series_index]
        data = item.data if isinstance(item, Series) else item.get("data", [])
        payload = {
            "type": event,
            "seriesIndex": series_index,
            "dataIndex": data_index,
            "data": as_row(data[data_index]),
        }
        self.emit(event, payload)
        return payload

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def set_option(self, option: Mapping, not_merge: bool = False) -> go.Figure:
        """Apply an option dict and rebuild the figure.

        Without ``not_merge``, top-level keys are merged into the current
        option (``series`` is always replaced as a whole).
        """
        if not_merge or not self._option:
            self._option = dict(option)
        else:
            series = option.get("series", self._option.get("series", []))
            rest = {k: v for k, v in option.items() if k != "series"}
            self._option = deep_merge({k: v for k, v in self._option.items() if k != "series"}, rest)
            self._option["series"] = series
        self._highlighted.clear()
        self._figure = build_figure(self._option)
        logger.debug("[Renderer] %d trace(s) drawn", len(self._figure.data))
        if not self._ready:
            self._ready = True
            self.emit("ready", self)
        return self._figure

    def get_option(self) -> dict:
        return dict(self._option)

    def dispatch_action(self, action: Mapping) -> None:
        """Highlight or downplay one point."""
        kind = action.get("type")
        series_index = action.get("seriesIndex", -1)
        data_index = action.get("dataIndex", -1)
        if kind not in ("highlight", "downplay"):
            raise ValueError(f"Unknown action '{kind}'. Use 'highlight' or 'downplay'.")
        n_series = len(self._option.get("series", []))
        if not (0 <= series_index < n_series) or data_index < 0:
            logger.debug("[Renderer] Ignoring %s at (%s, %s)", kind, series_index, data_index)
            return
        points = self._highlighted.setdefault(series_index, set())
        if kind == "highlight":
            points.add(data_index)
        else:
            points.discard(data_index)
        self._figure = build_figure(self._option, self._highlighted)

    def highlighted(self) -> dict[int, set]:
        """Currently highlighted data indices per series index."""
        return {k: set(v) for k, v in self._highlighted.items() if v}

    def show_loading(self) -> None:
        self.loading = True

    def hide_loading(self) -> None:
        self.loading = False

    # ------------------------------------------------------------------
    # Figure access
    # ------------------------------------------------------------------

    def get_figure(self) -> Optional[go.Figure]:
        """Return the current Plotly figure (or None if nothing drawn)."""
        return self._figure

    def export_html(self, filepath: str) -> dict:
        """Write the current figure as a standalone HTML file.

        Returns:
            Result dict with status, filepath, and size_bytes.
        """
        if not filepath.endswith(".html"):
            filepath += ".html"
        path = Path(filepath).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        if self._figure is None or len(self._figure.data) == 0:
            return {"status": "error",
                    "message": "No plot to export. Load data before exporting."}

        self._figure.write_html(str(path), include_plotlyjs="cdn")
        return {
            "status": "success",
            "filepath": str(path),
            "size_bytes": path.stat().st_size,
        }

    def reset(self) -> None:
        self._figure = None
        self._option = {}
        self._highlighted.clear()
