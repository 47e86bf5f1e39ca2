"""
Delimited-text parser — turns a fetched CSV body into an id-keyed row map.

Two layouts are supported:
  - "narrow": one resource per variable, ``id,<variable>``
  - "wide":   the shared "meta" file, ``id,name,lat,lon,...``

The first row is always the header. Any later row keyed by the literal
token ``id`` is a restated header and is dropped.
"""

import io
import re
from dataclasses import dataclass, field
from typing import Union

import pandas as pd

from .errors import ParseError

SCHEMAS = ("narrow", "wide")

# Header token that marks a restated header row
HEADER_ID = "id"

# "Expected 2 fields in line 3, saw 3" (pandas C tokenizer)
_FIELD_COUNT_RE = re.compile(r"line (\d+), saw (\d+)")
_LINE_RE = re.compile(r"line (\d+)")


@dataclass
class ParsedTable:
    """Result of parsing one resource.

    Attributes:
        header: Header row cells, in file order.
        rows: Mapping of entity id to its value. For "narrow" tables the
            value is a float (or the raw string when not numeric); for
            "wide" tables it is the full row list with the id echoed at
            position 0 so positions line up with ``header``.
        schema: "narrow" or "wide".
    """

    header: list[str]
    rows: dict = field(default_factory=dict)
    schema: str = "narrow"

    def __len__(self) -> int:
        return len(self.rows)


def _decode(text: Union[str, bytes]) -> str:
    if isinstance(text, str):
        return text
    try:
        return text.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(None, None, f"Encoding fault: {e.reason} at byte {e.start}") from e


def _parser_error(exc: Exception) -> ParseError:
    msg = str(exc).strip()
    m = _FIELD_COUNT_RE.search(msg)
    if m:
        return ParseError(int(m.group(1)), int(m.group(2)), msg)
    m = _LINE_RE.search(msg)
    return ParseError(int(m.group(1)) if m else None, None, msg)


def _coerce(cells: pd.DataFrame) -> pd.DataFrame:
    """Numeric cells become floats; anything else keeps its raw string."""
    if cells.empty:
        return cells
    numeric = cells.apply(pd.to_numeric, errors="coerce").astype(float)
    return numeric.astype(object).where(numeric.notna(), cells)


def parse_csv(text: Union[str, bytes], schema: str = "narrow") -> ParsedTable:
    """Parse delimited text into a header + id-keyed rows.

    Args:
        text: Resource body. Bytes are decoded as UTF-8.
        schema: "narrow" (exactly one data column) or "wide".

    Returns:
        ParsedTable with header and rows.

    Raises:
        ParseError: If the tokenizer reports a structural fault (ragged row,
            unterminated quote, empty input), the bytes are not UTF-8, or a
            narrow table does not have exactly two columns.
        ValueError: If schema is unknown.
    """
    if schema not in SCHEMAS:
        raise ValueError(f"Unknown schema '{schema}'. Use one of {SCHEMAS}.")

    body = _decode(text)
    try:
        frame = pd.read_csv(
            io.StringIO(body),
            header=None,
            dtype=str,
            na_filter=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        raise ParseError(None, None, f"Empty input: {e}") from e
    except pd.errors.ParserError as e:
        raise _parser_error(e) from e

    header = [str(h) for h in frame.iloc[0].tolist()]
    if schema == "narrow" and len(header) != 2:
        raise ParseError(1, len(header), f"Expected 2 columns for a narrow table, saw {len(header)}")

    body_rows = frame.iloc[1:]
    ids = body_rows.iloc[:, 0].astype(str)
    values = _coerce(body_rows.iloc[:, 1:])

    rows: dict = {}
    for row_id, cells in zip(ids, values.itertuples(index=False, name=None)):
        if row_id == HEADER_ID:
            continue
        if schema == "narrow":
            rows[row_id] = cells[0]
        else:
            rows[row_id] = [row_id, *cells]

    return ParsedTable(header=header, rows=rows, schema=schema)
