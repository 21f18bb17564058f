"""gridcalc.calc - Formula evaluation engine for gridcalc grids."""

from gridcalc.calc._evaluator import FormulaEvaluator
from gridcalc.calc._functions import ErrorKind, ExcelError, FormulaError, FunctionRegistry
from gridcalc.calc._parser import ExpressionParser
from gridcalc.calc._protocol import (
    CellCoord,
    Coordinate,
    EngineConfig,
    EvaluationContext,
    EvaluationResult,
    FormulaParser,
    ReferenceLookup,
)
from gridcalc.calc._resolver import ReferenceResolver

__all__ = [
    "CellCoord",
    "Coordinate",
    "EngineConfig",
    "ErrorKind",
    "EvaluationContext",
    "EvaluationResult",
    "ExcelError",
    "ExpressionParser",
    "FormulaError",
    "FormulaEvaluator",
    "FormulaParser",
    "FunctionRegistry",
    "ReferenceLookup",
    "ReferenceResolver",
]
