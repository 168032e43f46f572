"""Conversion between dense boards and the sparse wire form of room records.

The record transport drops empty slots, so grids travel as maps keyed by
stringified coordinates (``{"0": {"6": "O"}}``). Everything in here is total:
malformed keys or values are skipped instead of raising.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

Convert = Callable[[Any], Any]


def _index(key: Any, size: int) -> Optional[int]:
    try:
        index = int(key)
    except (TypeError, ValueError):
        return None
    if 0 <= index < size:
        return index
    return None


def _entries(raw: Any) -> Iterator[Tuple[Any, Any]]:
    # Lists come back when the transport sees contiguous integer keys.
    if isinstance(raw, dict):
        yield from raw.items()
    elif isinstance(raw, (list, tuple)):
        yield from enumerate(raw)


def densify_cells(
    raw: Any, size: int, default: Any = None, convert: Optional[Convert] = None
) -> List[Any]:
    """Expand a sparse ``{index: value}`` map into a list of ``size`` cells."""

    cells = [default] * size
    for key, value in _entries(raw):
        index = _index(key, size)
        if index is None or value is None:
            continue
        if convert is not None:
            value = convert(value)
            if value is None:
                continue
        cells[index] = value
    return cells


def densify_grid(
    raw: Any, rows: int, cols: int, default: Any = None, convert: Optional[Convert] = None
) -> List[List[Any]]:
    """Expand a sparse ``{row: {col: value}}`` map into a ``rows x cols`` matrix."""

    grid = [[default] * cols for _ in range(rows)]
    for row_key, row in _entries(raw):
        r = _index(row_key, rows)
        if r is None:
            continue
        grid[r] = densify_cells(row, cols, default, convert)
    return grid


def densify_list(raw: Any, convert: Optional[Convert] = None) -> List[Any]:
    """Order a list-or-map of entries by key, dropping gaps and bad items."""

    if isinstance(raw, dict):
        keyed = []
        for key, value in raw.items():
            try:
                keyed.append((int(key), value))
            except (TypeError, ValueError):
                continue
        values = [value for _, value in sorted(keyed, key=lambda kv: kv[0])]
    elif isinstance(raw, (list, tuple)):
        values = list(raw)
    else:
        return []
    out = []
    for value in values:
        if value is None:
            continue
        if convert is not None:
            value = convert(value)
            if value is None:
                continue
        out.append(value)
    return out


def sparsify_cells(
    cells: Sequence[Any], encode: Optional[Convert] = None
) -> Dict[str, Any]:
    return {
        str(i): (encode(v) if encode else v)
        for i, v in enumerate(cells)
        if v is not None
    }


def sparsify_grid(
    grid: Sequence[Sequence[Any]], encode: Optional[Convert] = None
) -> Dict[str, Dict[str, Any]]:
    out: Dict[str, Dict[str, Any]] = {}
    for r, row in enumerate(grid):
        sparse_row = sparsify_cells(row, encode)
        if sparse_row:
            out[str(r)] = sparse_row
    return out
