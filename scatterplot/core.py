"""
ScatterplotView — ties fetching, joining, scaling and series composition to
one renderer instance.

Lifecycle:
    view = ScatterplotView(ScatterplotProps(endpoint=..., x_var=..., y_var=...))
    view.mount()            # seed initial data, load what is missing, render
    view.update(x_var=...)  # reload and/or re-render as the props require
    view.close()            # cancel pending hover clears, stop downloads

All network work happens inside FetchCoordinator.ensure(); everything else
is synchronous and reads a snapshot of the VariableStore.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from concurrent.futures import Future
from typing import Any, Callable, Optional

import config
from data_ops.errors import ConfigurationError
from data_ops.fetch import FetchCoordinator
from data_ops.join import join_columns, to_points
from data_ops.store import VariableStore
from rendering.index import NOT_FOUND, SeriesLocation, locate
from rendering.plotly_renderer import PlotlyRenderer
from rendering.scale import make_size_scale
from rendering.series import Series, compose_series, find_series

from .hover import HoverDebouncer
from .logging import LOGGER_NAME, log_error, tagged

logger = logging.getLogger(LOGGER_NAME)

# Props whose change requires new data
_DATA_PROPS = ("endpoint", "collection", "region", "x_var", "y_var", "z_var")
# Props whose change only requires a new composition
_VIEW_PROPS = ("selected", "highlighted", "options", "not_merge")


@dataclasses.dataclass
class ScatterplotProps:
    """Caller-facing settings of one view.

    ``options`` is passed to the renderer as-is, except ``options["series"]``:
    entries with id base/selected/highlighted are merged into those layers,
    any other entry is drawn as an extra series. Style keys use the
    plotly.graph_objects.Scatter vocabulary (``marker.color``, ``mode``,
    ...); keys plotly does not accept are dropped with a warning.
    """

    endpoint: Optional[str] = None
    x_var: Optional[str] = None
    y_var: Optional[str] = None
    z_var: Optional[str] = None
    collection: Optional[str] = None
    region: Optional[str] = None
    selected: list = dataclasses.field(default_factory=list)
    highlighted: list = dataclasses.field(default_factory=list)
    hovered: Optional[str] = None
    options: dict = dataclasses.field(default_factory=dict)
    wide_variables: Optional[dict] = None
    initial_data: Optional[dict] = None
    states: dict = dataclasses.field(default_factory=dict)
    freeze: bool = False
    not_merge: bool = False
    on_ready: Optional[Callable] = None
    on_hover: Optional[Callable] = None
    on_click: Optional[Callable] = None
    on_mouse_move: Optional[Callable] = None
    on_error: Optional[Callable] = None
    on_loading: Optional[Callable] = None
    on_data_loaded: Optional[Callable] = None


def _event_row(event: Optional[Mapping]) -> Optional[list]:
    """Positional row carried by a pointer event (``data`` or ``data.value``)."""
    if not event:
        return None
    data = event.get("data")
    if isinstance(data, Mapping):
        data = data.get("value")
    return list(data) if data else None


class ScatterplotView:
    """One interactive scatterplot over remotely fetched variable columns.

    Args:
        props: Initial settings.
        renderer: Render target; a PlotlyRenderer by default.
        store: Variable cache owned by this view; a new one by default.
        fetcher: url -> body callable passed to FetchCoordinator (tests).
        hover_clear_delay: Seconds before "nothing hovered" is reported.
    """

    def __init__(
        self,
        props: Optional[ScatterplotProps] = None,
        renderer: Optional[PlotlyRenderer] = None,
        store: Optional[VariableStore] = None,
        fetcher: Optional[Callable[[str], Any]] = None,
        hover_clear_delay: Optional[float] = None,
    ):
        self.props = props or ScatterplotProps()
        self.renderer = renderer or PlotlyRenderer()
        self.store = store if store is not None else VariableStore()
        self._fetcher = fetcher
        self._coordinator: Optional[FetchCoordinator] = None
        self._hover = HoverDebouncer(
            config.HOVER_CLEAR_DELAY if hover_clear_delay is None else hover_clear_delay
        )
        self._request_id = 0
        self._renderer_ready = False
        self.series: list[Series] = []
        self.ready = False
        self.loading = False
        self.error_message: Optional[str] = None

        self.renderer.on("ready", self._on_renderer_ready)
        self.renderer.on("mouseover", self._on_hover)
        self.renderer.on("mouseout", self._on_hover)
        self.renderer.on("mousemove", self._on_mouse_move)
        self.renderer.on("click", self._on_click)

    # ---- Lifecycle ----

    def mount(self) -> Optional[Future]:
        """Seed ``initial_data`` (if any), then load missing variables."""
        p = self.props
        if p.initial_data:
            self.store.seed(p.collection, p.initial_data)
        return self.load()

    def update(self, **changes) -> Optional[Future]:
        """Change props, reloading or re-rendering only as needed.

        Returns:
            The load future when data props changed, else None.
        """
        prev = self.props
        self.props = dataclasses.replace(prev, **changes)
        p = self.props
        future = None

        if prev.endpoint != p.endpoint:
            # Cached columns came from the old endpoint
            if self._coordinator is not None:
                self._coordinator.close()
                self._coordinator = None
            self.store.clear()

        if any(getattr(prev, k) != getattr(p, k) for k in _DATA_PROPS):
            future = self.load()
        elif any(getattr(prev, k) != getattr(p, k) for k in _VIEW_PROPS) or (prev.freeze and not p.freeze):
            self.render()

        if prev.hovered != p.hovered:
            if prev.hovered:
                self._toggle_highlight(prev.hovered, show=False)
            if p.hovered:
                self._toggle_highlight(p.hovered, show=True)
        return future

    def close(self) -> None:
        """Tear down: cancel the pending hover clear and queued downloads."""
        self._hover.close()
        if self._coordinator is not None:
            self._coordinator.close()

    # ---- Data ----

    @property
    def coordinator(self) -> FetchCoordinator:
        if self._coordinator is None:
            self._coordinator = FetchCoordinator(
                self.store,
                self.props.endpoint or config.ENDPOINT,
                wide_variables=self.props.wide_variables,
                fetcher=self._fetcher,
            )
        return self._coordinator

    @property
    def requested_variables(self) -> list[str]:
        """Variables the current props need, size variable first."""
        p = self.props
        return [v for v in (p.z_var, p.x_var, p.y_var) if v]

    def load(self) -> Optional[Future]:
        """Fetch whatever the current props need and render when it arrives.

        Raises:
            ConfigurationError: If no endpoint is configured or x/y are unset.
        """
        p = self.props
        if not (p.endpoint or config.ENDPOINT):
            raise ConfigurationError("No endpoint specified for scatterplot")
        if not (p.x_var and p.y_var):
            raise ConfigurationError("Both x_var and y_var are required to join data")

        self._request_id += 1
        request_id = self._request_id
        coordinator = self.coordinator
        cached = not coordinator.missing(self.requested_variables, p.collection)
        future = coordinator.ensure(self.requested_variables, p.collection, p.region)

        if cached and future.done():
            self._on_loaded(request_id, future, fetched=False)
            return future

        if not self.loading:
            self._set_loading(True)
        self.render()

        # Resolves only after the view has applied the result
        applied: Future = Future()

        def _apply(f: Future) -> None:
            try:
                self._on_loaded(request_id, f)
            finally:
                if f.cancelled():
                    applied.cancel()
                elif f.exception() is not None:
                    applied.set_exception(f.exception())
                else:
                    applied.set_result(f.result())

        future.add_done_callback(_apply)
        return applied

    def retry(self) -> Optional[Future]:
        """Clear the error state and load again."""
        self.error_message = None
        return self.load()

    def _on_loaded(self, request_id: int, future: Future, fetched: bool = True) -> None:
        p = self.props
        if request_id != self._request_id or future.cancelled():
            logger.debug("[View] Ignoring superseded load #%d", request_id)
            return

        err = future.exception()
        if err is not None:
            self.error_message = str(err)
            log_error(
                "Scatterplot data failed to load",
                exc=err,
                context={"collection": p.collection, "region": p.region,
                         "variables": self.requested_variables},
            )
            if self.loading:
                self._set_loading(False)
            if p.on_error:
                p.on_error(err)
            return

        self.error_message = None
        data = future.result()
        if fetched:
            logger.info(
                "[View] Loaded %s for '%s'", sorted(data), p.collection, extra=tagged("data_fetched")
            )
            if p.on_data_loaded:
                p.on_data_loaded(data)
        if self.loading:
            self._set_loading(False)
        self.render()
        self._maybe_ready()

    def _set_loading(self, loading: bool) -> None:
        self.loading = loading
        if loading:
            self.renderer.show_loading()
        else:
            self.renderer.hide_loading()
        if self.props.on_loading:
            self.props.on_loading(loading)

    @property
    def data(self) -> dict:
        """Resident variables of the active collection."""
        return self.store.variables(self.props.collection)

    def location_record(self, entity_id: str) -> dict:
        """``{"id": ..., <variable>: value, ...}`` over every resident variable."""
        return {"id": entity_id, **self.store.values_for_id(self.props.collection, entity_id)}

    # ---- Composition ----

    def compose(self) -> list[Series]:
        """Series for the current props; empty while any driving variable is missing."""
        p = self.props
        columns = [self.store.get(p.collection, v) for v in (p.x_var, p.y_var) if v]
        size = self.store.get(p.collection, p.z_var) if p.z_var else None
        overrides = (p.options or {}).get("series")

        if len(columns) < 2 or any(c is None for c in columns) or (p.z_var and size is None):
            return compose_series(None, None)

        values = [c.values for c in columns]
        if size is not None:
            values.append(size.values)
        points = to_points(join_columns(*values), sized=size is not None)
        size_scale = make_size_scale(
            size.values if size is not None else None,
            size_range=config.SIZE_RANGE,
            exponent=config.SIZE_EXPONENT,
            default_size=config.DEFAULT_MARKER_SIZE,
        )
        return compose_series(points, size_scale, p.selected, p.highlighted, overrides)

    def render(self) -> Optional[list[Series]]:
        """Compose and push the option to the renderer (no-op while frozen)."""
        p = self.props
        if p.freeze:
            return None
        self.series = self.compose()
        option = {k: v for k, v in (p.options or {}).items() if k != "series"}
        option["series"] = self.series
        self.renderer.set_option(option, not_merge=p.not_merge)
        return self.series

    def get_option(self) -> dict:
        return self.renderer.get_option()

    def get_data_series(self, series_id: str = "base") -> Optional[Series]:
        return find_series(series_id, self.series)

    def load_state(self, name: str) -> None:
        """Apply a named option preset from ``props.states``.

        Raises:
            KeyError: If no state has that name.
        """
        states = self.props.states or {}
        if name not in states:
            raise KeyError(f"No state found for {name}")
        state = states[name]
        option = state(self) if callable(state) else state
        self.renderer.set_option(option)

    # ---- Interaction ----

    def locate(self, entity_id: str) -> SeriesLocation:
        return locate(entity_id, self.series)

    def _toggle_highlight(self, entity_id: str, show: bool = True) -> None:
        location = self.locate(entity_id)
        if location == NOT_FOUND:
            logger.warning("[View] No point to %s for '%s'", "highlight" if show else "downplay", entity_id)
            return
        self.renderer.dispatch_action({
            "type": "highlight" if show else "downplay",
            "seriesIndex": location.series_index,
            "dataIndex": location.data_index,
        })

    def _on_renderer_ready(self, _renderer) -> None:
        self._renderer_ready = True
        self._maybe_ready()

    def _maybe_ready(self) -> None:
        if self.ready or not self._renderer_ready or self.loading:
            return
        self.ready = True
        if self.props.on_ready:
            self.props.on_ready(self.renderer)

    def _on_hover(self, event: Mapping) -> None:
        if not self.props.on_hover:
            return
        row = _event_row(event)
        record = (
            self.location_record(row[-1])
            if row and event.get("type") == "mouseover"
            else None
        )
        if record:
            self._hover.cancel()
            self.props.on_hover(record, event)
        else:
            self._hover.schedule(lambda: self._clear_hover(event))

    def _clear_hover(self, event: Mapping) -> None:
        if self.props.on_hover:
            self.props.on_hover(None, event)

    def _on_mouse_move(self, event: Mapping) -> None:
        if self.props.on_mouse_move:
            self.props.on_mouse_move(event)

    def _on_click(self, event: Mapping) -> None:
        if not self.props.on_click:
            return
        row = _event_row(event)
        if row:
            self.props.on_click(self.location_record(row[-1]), event)
