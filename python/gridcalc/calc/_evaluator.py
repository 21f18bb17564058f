"""FormulaEvaluator: evaluates one cell's formula and follows formula chains.

A formula may resolve to text that is itself a formula (``A1`` holding ``=5``
referenced as ``=A1``); the evaluator keeps re-evaluating at the same address
until a non-formula value or an error comes back.  Every nested evaluation
(chain steps and formula cells inside ranges) counts against
``EngineConfig.max_depth`` (the interpreter recursion limit by default);
indirect cycles end there or at the interpreter's own RecursionError,
whichever comes first.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gridcalc.calc._functions import ExcelError
from gridcalc.calc._parser import ExpressionParser
from gridcalc.calc._protocol import (
    CellValue,
    Coordinate,
    EngineConfig,
    EvaluationContext,
    EvaluationResult,
    FormulaParser,
    as_display,
)
from gridcalc.calc._resolver import BoundLookup, ReferenceResolver

if TYPE_CHECKING:
    from gridcalc._store import GridStore

logger = logging.getLogger(__name__)


class FormulaEvaluator:
    """Evaluates formulas stored in a :class:`GridStore`.

    Usage::

        evaluator = FormulaEvaluator(store)
        result = evaluator.evaluate(Coordinate(2, 1), "A1*2")
        text = evaluator.compute_display(Coordinate(2, 1), store.get(2, 1))
    """

    def __init__(
        self,
        store: GridStore,
        parser: FormulaParser | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._config = config if config is not None else EngineConfig()
        self._parser: FormulaParser = (
            parser if parser is not None
            else ExpressionParser(use_formulas=self._config.use_formulas)
        )
        self._store = store
        self._resolver = ReferenceResolver(store, self)

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def parser(self) -> FormulaParser:
        return self._parser

    @property
    def resolver(self) -> ReferenceResolver:
        return self._resolver

    def evaluate(
        self,
        address: Coordinate,
        expr: str,
        context: EvaluationContext | None = None,
    ) -> EvaluationResult:
        """Evaluate *expr* (no leading ``=``) as the formula of *address*.

        Never raises: reference problems, grammar errors and runaway
        recursion all come back in ``EvaluationResult.error``.
        """
        if context is None:
            context = EvaluationContext(current=address)
        elif context.current != address:
            context = EvaluationContext(current=address, depth=context.depth)

        if context.depth > self._config.max_depth:
            logger.debug("Recursion limit %d hit at %s", self._config.max_depth, address)
            err = ExcelError.RECURSION_LIMIT
            return EvaluationResult(value=err.code, error=err)

        try:
            res = self._parser.parse(expr, BoundLookup(self._resolver, context))
            if res.error is not None:
                return res

            text = as_display(res.value)
            if text == "":
                return res
            if text.startswith("="):
                # formula points to formula
                return self.evaluate(address, text[1:], context.deeper())
            return res
        except RecursionError:
            logger.debug("Python recursion exhausted at %s", address)
            err = ExcelError.RECURSION_LIMIT
            return EvaluationResult(value=err.code, error=err)

    def compute_display(self, address: Coordinate, raw_value: str) -> CellValue:
        """Display value for a raw cell string.

        Literals are returned unchanged; formulas are evaluated and any error
        shows as ``EngineConfig.invalid_display``.
        """
        if not raw_value.startswith("="):
            return raw_value
        res = self.evaluate(address, raw_value[1:])
        if res.error is not None:
            return self._config.invalid_display
        return res.value

    def evaluate_cell(self, address: Coordinate) -> EvaluationResult:
        """Structured result for the cell at *address* as currently stored."""
        raw = self._store.get(address.x, address.y)
        if not raw.startswith("="):
            return EvaluationResult(value=raw)
        return self.evaluate(address, raw[1:])
