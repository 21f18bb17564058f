"""ReferenceResolver: bounds and self-reference checks for parser lookups."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gridcalc.calc._functions import ExcelError, FormulaError
from gridcalc.calc._protocol import (
    CellCoord,
    CellValue,
    Coordinate,
    EvaluationContext,
)

if TYPE_CHECKING:
    from gridcalc._store import GridStore
    from gridcalc.calc._evaluator import FormulaEvaluator

logger = logging.getLogger(__name__)


class ReferenceResolver:
    """Answers the parser's cell and range lookups against a :class:`GridStore`.

    Every call takes the :class:`EvaluationContext` of the formula being
    evaluated; the resolver keeps no per-evaluation state of its own.
    """

    __slots__ = ("_store", "_evaluator")

    def __init__(self, store: GridStore, evaluator: FormulaEvaluator) -> None:
        self._store = store
        self._evaluator = evaluator

    def resolve_cell(self, target: Coordinate, context: EvaluationContext) -> str:
        """Raw string at *target*.

        Raises FormulaError(OUT_OF_RANGE) beyond the grid extent and
        FormulaError(SELF_REFERENCE) when *target* is the cell being evaluated.
        """
        if target.x > self._store.max_x or target.y > self._store.max_y:
            raise FormulaError(
                ExcelError.OUT_OF_RANGE,
                f"{target} is outside extent {self._store.extent}",
            )
        if target == context.current:
            raise FormulaError(
                ExcelError.SELF_REFERENCE, f"{target} refers to itself",
            )
        return self._store.get(target.x, target.y)

    def resolve_range(
        self,
        start: Coordinate,
        end: Coordinate,
        context: EvaluationContext,
    ) -> list[list[CellValue]]:
        """Values of the inclusive rectangle *start*..*end*, row-major.

        Formula cells are evaluated in a fresh context at their own coordinate.
        The first nested error aborts the whole range.  Rows never written
        come back as rows of ``""``.
        """
        width = end.x - start.x + 1
        fragment: list[list[CellValue]] = []
        for y in range(start.y, end.y + 1):
            row = self._store.row(y)
            if row is None:
                fragment.append([""] * width)
                continue

            col_fragment: list[CellValue] = []
            for x in range(start.x, end.x + 1):
                value: CellValue = row.get(x) or ""
                if value.startswith("="):
                    address = Coordinate(x, y)
                    res = self._evaluator.evaluate(
                        address, value[1:], context.nested(address),
                    )
                    if res.error is not None:
                        logger.debug(
                            "Range %s..%s aborted at %s: %s", start, end, address, res.error,
                        )
                        raise FormulaError(res.error)
                    value = res.value
                col_fragment.append(value)
            fragment.append(col_fragment)
        return fragment


class BoundLookup:
    """:class:`ReferenceLookup` for one evaluation: a resolver plus its context."""

    __slots__ = ("_resolver", "_context")

    def __init__(self, resolver: ReferenceResolver, context: EvaluationContext) -> None:
        self._resolver = resolver
        self._context = context

    @property
    def context(self) -> EvaluationContext:
        return self._context

    def cell_value(self, coord: CellCoord) -> str:
        return self._resolver.resolve_cell(coord.to_grid(), self._context)

    def range_value(self, start: CellCoord, end: CellCoord) -> list[list[CellValue]]:
        return self._resolver.resolve_range(start.to_grid(), end.to_grid(), self._context)
