"""gridcalc - a sparse spreadsheet grid with on-demand formula evaluation.

Usage::

    from gridcalc import Grid

    grid = Grid(columns=3, rows=5)
    grid["A1"] = "=5"
    grid["B1"] = "=A1"
    grid.display(2, 1)       # 5
    grid.evaluate(2, 1)      # EvaluationResult(value=5, error=None)
"""

from gridcalc._grid import Grid
from gridcalc._persistence import JsonFileSnapshotStore, MemorySnapshotStore, SnapshotStore
from gridcalc._store import GridStore
from gridcalc.calc import (
    Coordinate,
    EngineConfig,
    ErrorKind,
    EvaluationContext,
    EvaluationResult,
    ExcelError,
    FormulaEvaluator,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "Coordinate",
    "EngineConfig",
    "ErrorKind",
    "EvaluationContext",
    "EvaluationResult",
    "ExcelError",
    "FormulaEvaluator",
    "Grid",
    "GridStore",
    "JsonFileSnapshotStore",
    "MemorySnapshotStore",
    "SnapshotStore",
]
