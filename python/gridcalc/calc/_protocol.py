"""Coordinate/result dataclasses and the parser callback protocols."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from gridcalc.calc._functions import ExcelError

CellValue = Union[str, int, float, bool]


@dataclass(frozen=True)
class Coordinate:
    """Grid-space position: ``x`` is the column, ``y`` the row (1-based data)."""

    x: int
    y: int

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


@dataclass(frozen=True)
class CellCoord:
    """Parser-space position, 0-indexed (``A1`` is ``row=0, column=0``)."""

    row: int
    column: int

    def to_grid(self) -> Coordinate:
        return Coordinate(self.column + 1, self.row + 1)


@dataclass(frozen=True)
class EvaluationContext:
    """The cell currently being evaluated and how deeply evaluation is nested.

    Passed by value through every evaluator and resolver call, so a nested
    evaluation of another cell never disturbs the caller's self-reference check.
    """

    current: Coordinate
    depth: int = 0

    def nested(self, address: Coordinate) -> EvaluationContext:
        """Fresh context for evaluating *address* one level deeper."""
        return EvaluationContext(current=address, depth=self.depth + 1)

    def deeper(self) -> EvaluationContext:
        """Same cell, one level deeper (used when following formula chains)."""
        return replace(self, depth=self.depth + 1)


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of evaluating a formula.  ``value`` is meaningless when ``error`` is set."""

    value: CellValue
    error: ExcelError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class EngineConfig:
    """Evaluation settings."""

    # nested evaluations before RECURSION_LIMIT; deep stacks also stop on RecursionError
    max_depth: int = field(default_factory=sys.getrecursionlimit)
    invalid_display: str = "INVALID"  # shown for any errored formula
    use_formulas: bool = True  # fall back to the formulas lib for unknown functions


@runtime_checkable
class ReferenceLookup(Protocol):
    """Callbacks a parser uses to read the grid during one evaluation."""

    def cell_value(self, coord: CellCoord) -> str:
        """Raw string at *coord*; raises FormulaError on an invalid reference."""
        ...

    def range_value(self, start: CellCoord, end: CellCoord) -> list[list[CellValue]]:
        """Row-major 2D values of the inclusive rectangle; raises on first error."""
        ...


@runtime_checkable
class FormulaParser(Protocol):
    """Protocol for expression parsers plugged into the evaluator."""

    def parse(self, expression: str, lookup: ReferenceLookup) -> EvaluationResult:
        """Evaluate *expression* (no leading ``=``), reading cells via *lookup*.

        Must return errors as data; never raises.
        """
        ...


def as_display(value: Any) -> str:
    """Stringify a result the way the evaluator inspects it for chaining."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)
