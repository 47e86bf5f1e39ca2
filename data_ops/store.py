"""
In-memory variable store.

Variable holds one column of values keyed by entity id, as a pandas Series.
VariableStore is a dict-like container keyed by (collection, variable) that
is owned by a single view instance.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

import numpy as np
import pandas as pd

from .parser import ParsedTable

logger = logging.getLogger("scatterview")

# Values at or below this floor mean "no data"
SENTINEL_FLOOR = -9999


@dataclass
class Variable:
    """A single named column stored in memory.

    Attributes:
        name: Variable name (e.g., "all_avg").
        collection: Logical grouping the ids belong to (e.g., "districts").
        values: Series indexed by entity id. Cells are floats, or raw strings
            where the source cell was not numeric.
    """

    name: str
    collection: str
    values: pd.Series

    def __len__(self) -> int:
        return len(self.values)

    def numeric(self) -> pd.Series:
        """Values as float64 with non-numeric and sentinel cells removed."""
        nums = pd.to_numeric(self.values, errors="coerce")
        return nums[nums > SENTINEL_FLOOR]

    def summary(self) -> dict:
        """Return a compact summary dict for logs and debugging."""
        nums = self.numeric()
        n_valid = len(nums)
        return {
            "name": self.name,
            "collection": self.collection,
            "num_values": len(self.values),
            "num_valid": n_valid,
            "min": float(nums.min()) if n_valid else None,
            "max": float(nums.max()) if n_valid else None,
        }


def _as_series(data, name: str) -> pd.Series:
    if isinstance(data, pd.Series):
        series = data.copy()
        series.name = name
        return series
    return pd.Series(dict(data), dtype=object, name=name)


class VariableStore:
    """In-memory store mapping (collection, variable) to Variable objects."""

    def __init__(self):
        self._entries: dict[tuple[str, str], Variable] = {}
        self._lock = threading.RLock()

    def put(self, collection: str, variable: str, data) -> Variable:
        """Store a column, replacing any existing entry for the same key.

        Args:
            collection: Collection name.
            variable: Variable name.
            data: Mapping of id -> value, or a pandas Series indexed by id.

        Returns:
            The stored Variable.
        """
        entry = Variable(name=variable, collection=collection, values=_as_series(data, variable))
        with self._lock:
            self._entries[(collection, variable)] = entry
        return entry

    def put_wide(self, collection: str, table: ParsedTable, names: Iterable[str]) -> list[Variable]:
        """Fan a wide table out into one Variable per declared column name.

        Position 0 (the id echo) is skipped. A name at position j takes
        cell j of every row; rows too short for j, or with an empty cell,
        are left out of that variable.

        Returns:
            The stored Variables in declaration order.
        """
        stored = []
        for j, name in enumerate(names):
            if j == 0:
                continue
            column = {
                row_id: row[j]
                for row_id, row in table.rows.items()
                if j < len(row) and row[j] != ""
            }
            stored.append(self.put(collection, name, column))
        return stored

    def get(self, collection: str, variable: str) -> Optional[Variable]:
        """Retrieve a Variable, or None if not resident."""
        with self._lock:
            return self._entries.get((collection, variable))

    def has(self, collection: str, variable: str) -> bool:
        """Check if a variable is resident for the collection."""
        with self._lock:
            return (collection, variable) in self._entries

    def remove(self, collection: str, variable: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop((collection, variable), None) is not None

    def invalidate(self, collection: str) -> int:
        """Drop every variable of a collection. Returns the number removed."""
        with self._lock:
            keys = [k for k in self._entries if k[0] == collection]
            for k in keys:
                del self._entries[k]
        if keys:
            logger.debug("[Store] Invalidated %d variable(s) of '%s'", len(keys), collection)
        return len(keys)

    def clear(self) -> None:
        """Remove all entries."""
        with self._lock:
            self._entries.clear()

    def variables(self, collection: str) -> dict[str, Variable]:
        """Snapshot of the resident variables of a collection."""
        with self._lock:
            return {name: v for (coll, name), v in self._entries.items() if coll == collection}

    def values_for_id(self, collection: str, entity_id: str) -> dict:
        """Reverse-join one id back to every resident variable that has it.

        Returns:
            Dict of variable name -> value (floats as Python floats).
        """
        record = {}
        for name, variable in self.variables(collection).items():
            if entity_id in variable.values.index:
                value = variable.values[entity_id]
                record[name] = float(value) if isinstance(value, (float, np.floating)) else value
        return record

    def list_entries(self) -> list[dict]:
        """Return summary dicts for all stored entries."""
        with self._lock:
            return [entry.summary() for entry in self._entries.values()]

    def seed(self, collection: str, data: Mapping[str, Mapping]) -> None:
        """Store several columns at once (e.g. data shipped with the page)."""
        for name, column in data.items():
            self.put(collection, name, column)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
