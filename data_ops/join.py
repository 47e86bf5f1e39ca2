"""
Inner join of variable columns on their shared entity id.

join_columns() is the positional form: each row is ``[v1, ..., vn, id]``.
to_points() lifts rows for an x/y(/z) request into named ScatterPoints,
which is what the rest of the pipeline works with.
"""

from typing import NamedTuple, Optional

import pandas as pd

from .errors import ConfigurationError
from .store import SENTINEL_FLOOR

# Ids that can never name a real entity (blank cell, leaked header)
_INVALID_IDS = ("", "id")


class ScatterPoint(NamedTuple):
    """One joined row of an x/y(/size) request."""

    x: float
    y: float
    id: str
    z: Optional[float] = None

    def as_row(self) -> list:
        """Positional form ``[x, y, (z), id]`` used at the render boundary."""
        if self.z is None:
            return [self.x, self.y, self.id]
        return [self.x, self.y, self.z, self.id]


def _as_numeric(column) -> pd.Series:
    if not isinstance(column, pd.Series):
        column = pd.Series(dict(column), dtype=object)
    series = pd.to_numeric(column, errors="coerce")
    series.index = series.index.astype(str)
    return series[~series.index.duplicated(keep="last")]


def join_columns(*columns) -> list[list]:
    """Inner-join columns on id, keeping only fully valid rows.

    Candidate ids come from the first column, in its order. An id survives
    only if every column has it with a numeric value strictly greater than
    the sentinel floor, and the id is neither blank nor ``"id"``.

    Args:
        *columns: Two or more id -> value mappings (dicts or Series).

    Returns:
        List of rows ``[col1[id], col2[id], ..., id]``.

    Raises:
        ConfigurationError: If fewer than two columns are given.
    """
    if len(columns) < 2:
        raise ConfigurationError("Cannot create scatterplot data with less than two variables")

    series = [_as_numeric(c) for c in columns]
    ids = series[0].index
    frame = pd.DataFrame({i: s.reindex(ids) for i, s in enumerate(series)}, index=ids)

    valid = (frame > SENTINEL_FLOOR).all(axis=1) & ~frame.index.isin(_INVALID_IDS)
    frame = frame[valid]

    return [
        [*(float(v) for v in values), row_id]
        for row_id, values in zip(frame.index, frame.itertuples(index=False, name=None))
    ]


def to_points(rows: list[list], sized: bool = False) -> list[ScatterPoint]:
    """Convert joined ``[x, y, (z), id]`` rows to ScatterPoints."""
    if sized:
        return [ScatterPoint(x=r[0], y=r[1], z=r[2], id=r[3]) for r in rows]
    return [ScatterPoint(x=r[0], y=r[1], id=r[2]) for r in rows]
