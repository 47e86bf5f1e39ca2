"""
Series composition — the layered point collections handed to the renderer.

compose_series() always yields, in order:
  base         every joined point
  selected     points for the selected ids, in selection order
  highlighted  points for the highlighted ids, in highlight order
followed by any caller series whose id is not one of the three.

Caller overrides for the three built-in layers are deep-merged on top of
the defaults: leaves in the override win, untouched sibling keys survive.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from data_ops.join import ScatterPoint

BUILTIN_IDS = ("base", "selected", "highlighted")

# Default style per layer, in plotly.graph_objects.Scatter vocabulary.
# marker.size is filled in per point from the size scale.
_DEFAULT_STYLES = {
    "base": {
        "mode": "markers",
        "marker": {
            "color": "#cccccc",
            "opacity": 0.8,
            "line": {"color": "rgba(0,0,0,0.5)", "width": 1},
        },
        "showlegend": False,
    },
    "selected": {
        "mode": "markers",
        "marker": {
            "color": "#e35a3d",
            "line": {"color": "#ffffff", "width": 2},
        },
        "showlegend": False,
    },
    "highlighted": {
        "mode": "markers",
        "marker": {
            "color": "#ffc107",
            "line": {"color": "rgba(0,0,0,0.8)", "width": 1},
        },
        "showlegend": False,
    },
}

# Drawing order; higher is on top
_DEFAULT_Z = {"base": 2, "highlighted": 3, "selected": 4}
_CUSTOM_Z = 1


def deep_merge(base: Mapping, override: Optional[Mapping]) -> dict:
    """Recursively merge ``override`` into a copy of ``base``.

    Nested mappings are merged key by key; any other value in the override
    (including lists) replaces the base value. Neither input is modified.
    """
    merged = copy.deepcopy(dict(base))
    if not override:
        return merged
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


@dataclass
class Series:
    """One layer of plotted points.

    Attributes:
        id: Series id ("base", "selected", "highlighted" or caller-chosen).
        kind: "base", "selected", "highlighted" or "custom".
        data: Points in this layer.
        style: Trace properties (plotly Scatter keys) for the layer.
        z: Stacking order; higher draws on top.
    """

    id: str
    kind: str
    data: list = field(default_factory=list)
    style: dict = field(default_factory=dict)
    z: int = _CUSTOM_Z

    @classmethod
    def from_dict(cls, spec: Mapping) -> "Series":
        """Wrap a caller-supplied series dict without altering its content."""
        rest = {k: v for k, v in spec.items() if k not in ("id", "kind", "data", "z")}
        return cls(
            id=str(spec.get("id", "")),
            kind=spec.get("kind", "custom"),
            data=list(spec.get("data", [])),
            style=rest,
            z=spec.get("z", _CUSTOM_Z),
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "kind": self.kind, "data": list(self.data), "z": self.z, **self.style}


def find_series(series_id: str, series: Optional[Iterable]) -> Optional[Any]:
    """Return the first series (dict or Series) with the given id, or None."""
    for s in series or []:
        sid = s.get("id") if isinstance(s, Mapping) else getattr(s, "id", None)
        if sid == series_id:
            return s
    return None


def points_for_ids(points: list[ScatterPoint], ids: Iterable[str]) -> list[ScatterPoint]:
    """Points for ``ids`` in ids order; ids without a point are dropped."""
    by_id = {p.id: p for p in points}
    return [by_id[i] for i in ids if i in by_id]


def largest_by_size(points: list[ScatterPoint], num: int = 100) -> list[ScatterPoint]:
    """The ``num`` points with the largest size value, largest first."""
    sized = [p for p in points if p.z is not None]
    return sorted(sized, key=lambda p: p.z, reverse=True)[:num]


def _layer(
    series_id: str,
    data: list[ScatterPoint],
    size_scale: Callable,
    overrides: Optional[Iterable],
) -> Series:
    style = copy.deepcopy(_DEFAULT_STYLES[series_id])
    style["marker"]["size"] = [size_scale(p.z) for p in data]
    spec = {"z": _DEFAULT_Z[series_id], **style}

    override = find_series(series_id, overrides)
    if isinstance(override, Series):
        override = {"z": override.z, **override.style}
    if override:
        # Layer membership is derived from the ids, never from the override
        spec = deep_merge(spec, {k: v for k, v in override.items() if k not in ("id", "kind", "data")})

    z = spec.pop("z")
    return Series(id=series_id, kind=series_id, data=list(data), style=spec, z=z)


def compose_series(
    points: Optional[list[ScatterPoint]],
    size_scale: Callable,
    selected: Optional[Iterable[str]] = None,
    highlighted: Optional[Iterable[str]] = None,
    overrides: Optional[Iterable] = None,
) -> list[Series]:
    """Build the ordered series list for one render pass.

    Args:
        points: Joined points, or None while any driving variable is still
            missing (yields an empty list: the loading signal).
        size_scale: Marker-size function shared by all three layers.
        selected: Ids to draw in the selected layer.
        highlighted: Ids to draw in the highlighted layer.
        overrides: Caller series specs (dicts with an "id"). Specs for
            base/selected/highlighted are merged into those layers; all
            others are appended unchanged.

    Returns:
        List of Series; first three ids are always base, selected, highlighted.
    """
    if points is None:
        return []

    overrides = list(overrides or [])
    layers = [
        _layer("base", list(points), size_scale, overrides),
        _layer("selected", points_for_ids(points, selected or []), size_scale, overrides),
        _layer("highlighted", points_for_ids(points, highlighted or []), size_scale, overrides),
    ]
    extras = [
        s if isinstance(s, Series) else Series.from_dict(s)
        for s in overrides
        if (s.id if isinstance(s, Series) else s.get("id")) not in BUILTIN_IDS
    ]
    return layers + extras
