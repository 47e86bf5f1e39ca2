"""Locate an entity id inside a composed series list."""

from collections.abc import Mapping, Sequence
from typing import NamedTuple


class SeriesLocation(NamedTuple):
    series_index: int
    data_index: int

    @property
    def found(self) -> bool:
        return self.series_index >= 0


NOT_FOUND = SeriesLocation(-1, -1)


def row_id(item):
    """Id of one series datum: a ScatterPoint, a dict with "id", or a
    positional row whose last element is the id."""
    item_id = getattr(item, "id", None)
    if item_id is not None:
        return item_id
    if isinstance(item, Mapping):
        if "id" in item:
            return item["id"]
        item = item.get("value")
    if isinstance(item, Sequence) and not isinstance(item, str) and item:
        return item[-1]
    return None


def locate(entity_id: str, series: list) -> SeriesLocation:
    """Find where ``entity_id`` is drawn, topmost layer first.

    Series are scanned from last to first so an id present in both the
    base and the highlighted layer resolves to the highlighted position.

    Returns:
        SeriesLocation, or NOT_FOUND (-1, -1) when no series contains the id.
    """
    for series_index in range(len(series) - 1, -1, -1):
        data = getattr(series[series_index], "data", None)
        if data is None and isinstance(series[series_index], Mapping):
            data = series[series_index].get("data")
        for data_index, item in enumerate(data or []):
            if row_id(item) == entity_id:
                return SeriesLocation(series_index, data_index)
    return NOT_FOUND
