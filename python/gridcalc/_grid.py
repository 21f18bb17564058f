"""Grid: host-facing facade over the store, evaluator and snapshot persistence."""

from __future__ import annotations

import logging

from gridcalc._persistence import SnapshotStore, decode_snapshot, encode_snapshot
from gridcalc._store import GridStore
from gridcalc._utils import a1_to_rowcol, column_to_letter
from gridcalc.calc._evaluator import FormulaEvaluator
from gridcalc.calc._protocol import (
    CellValue,
    Coordinate,
    EngineConfig,
    EvaluationResult,
    FormulaParser,
)

logger = logging.getLogger(__name__)


class Grid:
    """A spreadsheet grid of ``columns`` x ``rows`` data cells.

    Row 0 and column 0 are headers (row numbers and column letters).  Cell
    contents are raw strings; ``display`` evaluates formulas on demand.
    Evaluated results are cached until the store changes, whether through
    this facade or directly through :attr:`store`.

    Usage::

        grid = Grid(4, 10)
        grid["A1"] = "5"
        grid["B1"] = "=A1*2"
        grid.display(2, 1)  # 10
    """

    def __init__(
        self,
        columns: int,
        rows: int,
        grid_id: str = "default",
        snapshot_store: SnapshotStore | None = None,
        config: EngineConfig | None = None,
        parser: FormulaParser | None = None,
    ) -> None:
        self._id = grid_id
        self._snapshot_store = snapshot_store
        self._store = GridStore(columns, rows)
        self._config = config if config is not None else EngineConfig()
        self._evaluator = FormulaEvaluator(self._store, parser, self._config)
        self._results: dict[Coordinate, EvaluationResult] = {}
        self._results_version = self._store.version
        if snapshot_store is not None:
            self.load()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def storage_key(self) -> str:
        return f"gridData-{self._id}"

    @property
    def store(self) -> GridStore:
        return self._store

    @property
    def evaluator(self) -> FormulaEvaluator:
        return self._evaluator

    @property
    def extent(self) -> tuple[int, int]:
        return self._store.extent

    # ------------------------------------------------------------------
    # Cell access
    # ------------------------------------------------------------------

    def __getitem__(self, key: str) -> str:
        """``grid['A1']`` -> raw value."""
        row, col = a1_to_rowcol(key)
        return self._store.get(col, row)

    def __setitem__(self, key: str, value: str) -> None:
        """``grid['A1'] = '=B1+1'`` - shorthand for :meth:`set`."""
        row, col = a1_to_rowcol(key)
        self.set(col, row, value)

    def get(self, x: int, y: int) -> str:
        return self._store.get(x, y)

    def set(self, x: int, y: int, value: str) -> None:
        """Store a raw value and persist the snapshot if a store is attached."""
        if x < 1 or y < 1:
            raise ValueError(f"({x}, {y}) is a header cell")
        self._store.set(x, y, value)
        if self._snapshot_store is not None:
            self.save()

    def add_row(self) -> int:
        return self._store.grow_rows()

    def add_column(self) -> int:
        return self._store.grow_columns()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, x: int, y: int) -> EvaluationResult:
        """Structured result for a data cell (literals evaluate to themselves)."""
        if self._store.version != self._results_version:
            # Ranges can read any cell, so any store change drops every result
            self._results.clear()
            self._results_version = self._store.version
        address = Coordinate(x, y)
        cached = self._results.get(address)
        if cached is not None:
            return cached
        result = self._evaluator.evaluate_cell(address)
        self._results[address] = result
        return result

    def display(self, x: int, y: int) -> CellValue:
        """What a renderer shows at ``(x, y)``, headers included."""
        if x == 0 and y == 0:
            return ""
        if x == 0:
            return str(y)
        if y == 0:
            return column_to_letter(x)
        result = self.evaluate(x, y)
        if result.error is not None:
            return self._config.invalid_display
        return result.value

    def display_rows(self, headers: bool = True) -> list[list[CellValue]]:
        """Display values for the whole extent, row by row."""
        first = 0 if headers else 1
        max_x, max_y = self._store.extent
        return [
            [self.display(x, y) for x in range(first, max_x + 1)]
            for y in range(first, max_y + 1)
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write the snapshot under :attr:`storage_key`."""
        if self._snapshot_store is None:
            raise RuntimeError("save requires a snapshot store")
        self._snapshot_store.set(self.storage_key, encode_snapshot(self._store.snapshot()))
        self._store.mark_clean()

    def load(self) -> bool:
        """Replace contents with the stored snapshot, if one exists.

        The current extent is kept.  Returns True when a snapshot was loaded.
        """
        if self._snapshot_store is None:
            raise RuntimeError("load requires a snapshot store")
        text = self._snapshot_store.get(self.storage_key)
        if not text:
            return False
        data = decode_snapshot(text)
        self._store.load_snapshot(data)
        logger.debug("Loaded %d cells for %s", len(self._store), self.storage_key)
        return True

    def __repr__(self) -> str:
        max_x, max_y = self._store.extent
        return f"<Grid {self._id!r} {max_x}x{max_y} cells={len(self._store)}>"
