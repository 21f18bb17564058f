"""GridStore: sparse raw-value storage with a grow-only extent."""

from __future__ import annotations

from collections.abc import Iterator, Mapping


def _check_cell(x: int, y: int, value: object) -> None:
    if not isinstance(value, str):
        raise TypeError(f"Cell values must be str, got {type(value).__name__}")
    if x < 0 or y < 0:
        raise ValueError(f"Coordinates must be non-negative, got ({x}, {y})")


class GridStore:
    """Sparse mapping of ``(x, y)`` to raw cell strings.

    Values live in a nested ``row -> column -> str`` dict, the same shape as the
    persisted snapshot.  ``max_x`` / ``max_y`` are the number of data columns and
    rows; row and column 0 hold headers and are never stored.
    """

    __slots__ = ("_rows", "_max_x", "_max_y", "_dirty", "_version")

    def __init__(self, max_x: int, max_y: int) -> None:
        if max_x < 0 or max_y < 0:
            raise ValueError(f"Extent must be non-negative, got ({max_x}, {max_y})")
        self._rows: dict[int, dict[int, str]] = {}
        self._max_x = max_x
        self._max_y = max_y
        self._dirty = False
        self._version = 0

    @classmethod
    def from_snapshot(
        cls,
        data: Mapping[str | int, Mapping[str | int, str]],
        max_x: int,
        max_y: int,
    ) -> GridStore:
        """Rebuild a store from a ``row -> column -> raw`` snapshot.

        Keys may be ints or their JSON string form.  The extent is supplied by
        the caller; it is never derived from (or shrunk by) the data.
        """
        store = cls(max_x, max_y)
        store.load_snapshot(data)
        return store

    def load_snapshot(self, data: Mapping[str | int, Mapping[str | int, str]]) -> None:
        """Replace every stored cell with *data*, keeping the extent.

        The store is clean afterwards.
        """
        rows: dict[int, dict[int, str]] = {}
        for row_key, row in data.items():
            y = int(row_key)
            for col_key, value in row.items():
                _check_cell(int(col_key), y, value)
                rows.setdefault(y, {})[int(col_key)] = value
        self._rows = rows
        self._dirty = False
        self._version += 1

    # ------------------------------------------------------------------
    # Extent
    # ------------------------------------------------------------------

    @property
    def max_x(self) -> int:
        return self._max_x

    @property
    def max_y(self) -> int:
        return self._max_y

    @property
    def extent(self) -> tuple[int, int]:
        return (self._max_x, self._max_y)

    def grow_columns(self) -> int:
        """Add one data column; returns the new ``max_x``."""
        self._max_x += 1
        self._version += 1
        return self._max_x

    def grow_rows(self) -> int:
        """Add one data row; returns the new ``max_y``."""
        self._max_y += 1
        self._version += 1
        return self._max_y

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def get(self, x: int, y: int) -> str:
        """Raw value at ``(x, y)``, or ``""`` when nothing is stored there."""
        row = self._rows.get(y)
        if row is None:
            return ""
        return row.get(x, "")

    def set(self, x: int, y: int, value: str) -> None:
        """Overwrite the raw value at ``(x, y)`` and mark the store dirty."""
        _check_cell(x, y, value)
        self._rows.setdefault(y, {})[x] = value
        self._dirty = True
        self._version += 1

    def row(self, y: int) -> Mapping[int, str] | None:
        """The sparse row mapping for *y*, or None if the row was never written."""
        return self._rows.get(y)

    def __contains__(self, coord: object) -> bool:
        if not isinstance(coord, tuple) or len(coord) != 2:
            return False
        x, y = coord
        row = self._rows.get(y)
        return row is not None and x in row

    def __iter__(self) -> Iterator[tuple[int, int]]:
        """Yield the ``(x, y)`` of every stored cell in row-major order."""
        for y in sorted(self._rows):
            for x in sorted(self._rows[y]):
                yield (x, y)

    def __len__(self) -> int:
        return sum(len(row) for row in self._rows.values())

    # ------------------------------------------------------------------
    # Persistence support
    # ------------------------------------------------------------------

    @property
    def dirty(self) -> bool:
        """True when a write happened since the last :meth:`mark_clean`."""
        return self._dirty

    @property
    def version(self) -> int:
        """Counter bumped by every write, extent change and snapshot load."""
        return self._version

    def mark_clean(self) -> None:
        self._dirty = False

    def snapshot(self) -> dict[str, dict[str, str]]:
        """Nested ``row -> column -> raw`` dict with JSON-friendly string keys."""
        return {
            str(y): {str(x): value for x, value in sorted(row.items())}
            for y, row in sorted(self._rows.items())
            if row
        }

    def __repr__(self) -> str:
        return f"<GridStore extent=({self._max_x}, {self._max_y}) cells={len(self)}>"
