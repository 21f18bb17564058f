"""ExpressionParser: recursive descent evaluation of formula bodies.

The parser owns the formula grammar.  It never touches the grid directly:
every cell or range reference goes through the :class:`ReferenceLookup`
handed to :meth:`ExpressionParser.parse`, and errors raised there abort the
whole parse.  Errors produced by the grammar itself (``1/0``, unknown names)
are values that propagate through operators, so ``IFERROR`` can catch them.

When the ``formulas`` library is installed (via ``gridcalc[formulas]``),
expressions calling functions missing from the registry are handed to it.
"""

from __future__ import annotations

import inspect
import logging
import math
import re
from typing import Any

from gridcalc._utils import letter_to_column
from gridcalc.calc._functions import (
    ERROR_AWARE,
    ExcelError,
    FormulaError,
    FunctionRegistry,
    RangeValue,
    first_error,
)
from gridcalc.calc._protocol import CellCoord, EvaluationResult, ReferenceLookup

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# formulas library availability
# ---------------------------------------------------------------------------

_formulas_available: bool | None = None


def _check_formulas() -> bool:
    global _formulas_available
    if _formulas_available is None:
        try:
            import formulas  # noqa: F401

            _formulas_available = True
        except ImportError:
            _formulas_available = False
    return _formulas_available


# ---------------------------------------------------------------------------
# Token patterns
# ---------------------------------------------------------------------------

_CELL_REF_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([0-9]+)$")
_RANGE_REF_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?([0-9]+)\s*:\s*\$?([A-Za-z]{1,3})\$?([0-9]+)$")
_FUNC_CALL_RE = re.compile(r"^([A-Za-z][A-Za-z0-9_.]*)\s*\(")
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")


class _UnknownFunction(Exception):
    """Internal signal: the expression calls a function the registry lacks."""


def to_cell_coord(ref: str) -> CellCoord:
    """Parse A1 text (``$`` allowed) into a 0-indexed :class:`CellCoord`.

    Raises FormulaError(#REF!) for references like ``A0``.
    """
    m = _CELL_REF_RE.match(ref.strip())
    if not m:
        raise FormulaError(ExcelError.REF, f"Invalid reference {ref!r}")
    row = int(m.group(2))
    if row < 1:
        raise FormulaError(ExcelError.REF, f"Invalid reference {ref!r}")
    return CellCoord(row=row - 1, column=letter_to_column(m.group(1)) - 1)


def coerce_cell_value(raw: Any) -> Any:
    """Turn a raw string read from the grid into a grammar value.

    Blank becomes None, numeric text becomes int/float, anything else
    (including chained ``=formula`` text) is kept as-is.
    """
    if not isinstance(raw, str):
        return raw
    if raw == "":
        return None
    text = raw.strip()
    if _NUMBER_RE.match(text):
        if _INT_RE.match(text):
            return int(text)
        return float(text)
    return raw


def normalize_number(value: Any) -> Any:
    """Collapse integral floats to int and map inf/nan to #NUM!."""
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ExcelError.NUM
        if value.is_integer():
            return int(value)
    return value


# ---------------------------------------------------------------------------
# Expression splitting helpers
# ---------------------------------------------------------------------------


def _find_matching_paren(expr: str, start: int) -> int:
    """Index of the ``')'`` matching the ``'('`` at *expr[start]*, or -1."""
    depth = 1
    i = start + 1
    in_string = False
    while i < len(expr):
        ch = expr[i]
        if ch == '"':
            in_string = not in_string
        elif not in_string:
            if ch == '(':
                depth += 1
            elif ch == ')':
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def _match_function_call(expr: str) -> tuple[str, str] | None:
    """If *expr* is exactly ``FUNC(balanced_args)``, return ``(name, args_str)``.

    ``SUM(A1:A5)*2`` is NOT matched (there's trailing content after the
    close-paren).
    """
    m = _FUNC_CALL_RE.match(expr)
    if not m:
        return None
    open_idx = m.end() - 1
    close_idx = _find_matching_paren(expr, open_idx)
    if close_idx >= 0 and close_idx == len(expr) - 1:
        return (m.group(1), expr[open_idx + 1 : close_idx])
    return None


_UNARY_CONTEXT = ('(', ',', '+', '-', '*', '/', '^', '&', '>', '<', '=')


def _find_top_level_split(expr: str) -> tuple[str, str, str] | None:
    """Find the rightmost lowest-precedence binary operator at paren depth 0.

    Precedence (lowest to highest)::

        1. comparison     (>=, <=, <>, >, <, =)
        2. concatenation  (&)
        3. additive       (+, -)
        4. multiplicative (*, /)
        5. exponent       (^)

    Right-to-left scan produces left-to-right associativity.
    Returns ``(left, op, right)`` or ``None``.
    """
    length = len(expr)

    for pass_type in ("cmp", "cat", "add", "mul", "pow"):
        depth = 0
        in_string = False
        i = length - 1
        while i > 0:
            ch = expr[i]

            if ch == '"':
                in_string = not in_string
                i -= 1
                continue
            if in_string:
                i -= 1
                continue

            # Parentheses are inverted for a right-to-left scan
            if ch == ')':
                depth += 1
                i -= 1
                continue
            if ch == '(':
                depth -= 1
                i -= 1
                continue
            if depth != 0:
                i -= 1
                continue

            matched_op: str | None = None
            op_start = i

            if pass_type == "cmp":
                if i >= 1 and expr[i - 1 : i + 1] in (">=", "<=", "<>"):
                    matched_op = expr[i - 1 : i + 1]
                    op_start = i - 1
                elif ch in ('>', '<'):
                    matched_op = ch
                elif ch == '=' and expr[i - 1] not in ('>', '<'):
                    matched_op = ch
            elif pass_type == "cat" and ch == '&':
                matched_op = ch
            elif pass_type == "add" and ch in ('+', '-'):
                matched_op = ch
            elif pass_type == "mul" and ch in ('*', '/'):
                matched_op = ch
            elif pass_type == "pow" and ch == '^':
                matched_op = ch

            if matched_op is not None:
                if op_start <= 0:
                    i -= 1
                    continue
                # A binary operator needs an operand (not another operator) before it
                j = op_start - 1
                while j >= 0 and expr[j] == ' ':
                    j -= 1
                if j < 0 or expr[j] in _UNARY_CONTEXT:
                    i -= 1
                    continue
                # Skip +/- that are part of scientific notation (e.g. 2.5e-1)
                if matched_op in ('+', '-') and j >= 1 and expr[j] in ('e', 'E'):
                    mantissa = _number_tail(expr, j - 1)
                    if mantissa and _NUMBER_RE.match(mantissa + "e1"):
                        i -= 1
                        continue

                left = expr[:op_start].strip()
                right = expr[op_start + len(matched_op) :].strip()
                if left and right:
                    return (left, matched_op, right)

            i -= 1

    return None


def _number_tail(expr: str, end: int) -> str:
    """The run of digits/dots ending at *expr[end]* (mantissa before an ``e``).

    Empty when that run belongs to a reference or name rather than a number.
    """
    start = end + 1
    while start > 0 and (expr[start - 1].isdigit() or expr[start - 1] == '.'):
        start -= 1
    if start > 0 and (expr[start - 1].isalpha() or expr[start - 1] in ('$', '_')):
        return ""
    return expr[start : end + 1]


def _split_top_level_args(args_str: str) -> list[str]:
    """Split on commas at depth 0, respecting strings - returns raw strings."""
    args: list[str] = []
    depth = 0
    in_string = False
    current = ""
    for ch in args_str:
        if ch == '"':
            in_string = not in_string
            current += ch
        elif not in_string:
            if ch == '(':
                depth += 1
                current += ch
            elif ch == ')':
                depth -= 1
                current += ch
            elif ch == ',' and depth == 0:
                args.append(current.strip())
                current = ""
            else:
                current += ch
        else:
            current += ch
    if current.strip() or args:
        args.append(current.strip())
    return args


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------


def _to_number(val: Any) -> float | int | ExcelError:
    if val is None:
        return 0
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return val
    if isinstance(val, str):
        coerced = coerce_cell_value(val)
        if isinstance(coerced, (int, float)):
            return coerced
    return ExcelError.VALUE


def _to_text(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "TRUE" if val else "FALSE"
    return str(normalize_number(val))


def _binary_op(left: Any, op: str, right: Any) -> Any:
    """Evaluate an arithmetic or string binary operation."""
    err = first_error(left, right)
    if err is not None:
        return err
    if isinstance(left, RangeValue) or isinstance(right, RangeValue):
        return ExcelError.VALUE
    if op == '&':
        return _to_text(left) + _to_text(right)
    lnum = _to_number(left)
    rnum = _to_number(right)
    err = first_error(lnum, rnum)
    if err is not None:
        return err
    if op == '+':
        return lnum + rnum
    if op == '-':
        return lnum - rnum
    if op == '*':
        return lnum * rnum
    if op == '/':
        return ExcelError.DIV0 if rnum == 0 else lnum / rnum
    if op == '^':
        if lnum == 0 and rnum < 0:
            return ExcelError.DIV0
        try:
            result = lnum ** rnum
        except OverflowError:
            return ExcelError.NUM
        return ExcelError.NUM if isinstance(result, complex) else result
    return ExcelError.ERROR


def _compare(left: Any, right: Any, op: str) -> Any:
    """Evaluate a comparison operation.

    Numbers compare numerically, text case-insensitively, blanks as 0 or "".
    """
    err = first_error(left, right)
    if err is not None:
        return err
    if isinstance(left, RangeValue) or isinstance(right, RangeValue):
        return ExcelError.VALUE
    if left is None:
        left = 0 if isinstance(right, (int, float)) else ""
    if right is None:
        right = 0 if isinstance(left, (int, float)) else ""
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        lv: Any = left
        rv: Any = right
    else:
        lv = _to_text(left).lower()
        rv = _to_text(right).lower()
    if op == '=':
        return lv == rv
    if op == '<>':
        return lv != rv
    if op == '>':
        return lv > rv
    if op == '<':
        return lv < rv
    if op == '>=':
        return lv >= rv
    if op == '<=':
        return lv <= rv
    return ExcelError.ERROR


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ExpressionParser:
    """Evaluates formula bodies, reading the grid through lookup callbacks.

    Usage::

        parser = ExpressionParser()
        result = parser.parse("SUM(A1:B2)*2", lookup)
        if result.error is None:
            print(result.value)
    """

    def __init__(
        self,
        functions: FunctionRegistry | None = None,
        use_formulas: bool = True,
    ) -> None:
        self._functions = functions if functions is not None else FunctionRegistry()
        self._use_formulas = use_formulas and _check_formulas()
        self._compiled_cache: dict[str, Any] = {}

    @property
    def functions(self) -> FunctionRegistry:
        return self._functions

    def parse(self, expression: str, lookup: ReferenceLookup) -> EvaluationResult:
        """Evaluate *expression* (no leading ``=``); errors come back as data."""
        try:
            try:
                value = self._eval_expr(expression, lookup)
            except _UnknownFunction as exc:
                value = self._fallback(expression, lookup, str(exc))
        except FormulaError as exc:
            return EvaluationResult(value=exc.error.code, error=exc.error)
        except RecursionError:
            logger.debug("Recursion exhausted while parsing %r", expression)
            err = ExcelError.RECURSION_LIMIT
            return EvaluationResult(value=err.code, error=err)
        return self._finish(value)

    @staticmethod
    def _finish(value: Any) -> EvaluationResult:
        if isinstance(value, RangeValue):
            # A bare range is only meaningful as a function argument
            value = value.get(1, 1) if len(value) == 1 else ExcelError.VALUE
        value = normalize_number(value)
        if isinstance(value, ExcelError):
            return EvaluationResult(value=value.code, error=value)
        if value is None:
            return EvaluationResult(value="")
        return EvaluationResult(value=value)

    # ------------------------------------------------------------------
    # Recursive descent
    # ------------------------------------------------------------------

    def _eval_expr(self, expr: str, lookup: ReferenceLookup) -> Any:
        """Recursively evaluate an expression.

        Dispatch order (first match wins):

        0. Error literal (``#DIV/0!`` contains an operator)
        1. Binary/comparison split at top level
        2. Parenthesized sub-expression
        3. Function call
        4. Unary minus / plus, postfix percent
        5. Number, string and boolean literals
        6. Range reference, cell reference
        7. Anything else is an unknown name
        """
        expr = expr.strip()
        if not expr:
            return ExcelError.ERROR
        if expr.startswith('#'):
            # Error literals like #DIV/0! contain operator characters
            literal = ExcelError.from_code(expr)
            if literal is not None:
                return literal

        split = _find_top_level_split(expr)
        if split:
            left_str, op, right_str = split
            left_val = self._eval_expr(left_str, lookup)
            right_val = self._eval_expr(right_str, lookup)
            if op in ('+', '-', '*', '/', '^', '&'):
                return _binary_op(left_val, op, right_val)
            return _compare(left_val, right_val, op)

        if expr.startswith('('):
            close = _find_matching_paren(expr, 0)
            if close == len(expr) - 1:
                return self._eval_expr(expr[1:close], lookup)
            return ExcelError.ERROR

        func = _match_function_call(expr)
        if func:
            return self._eval_function(func[0].upper(), func[1], lookup)

        if expr.startswith('-'):
            val = self._eval_expr(expr[1:], lookup)
            num = _to_number(val) if not isinstance(val, ExcelError) else val
            return -num if isinstance(num, (int, float)) else num
        if expr.startswith('+'):
            return self._eval_expr(expr[1:], lookup)
        if expr.endswith('%'):
            val = _to_number(self._eval_expr(expr[:-1], lookup))
            return val / 100 if isinstance(val, (int, float)) else val

        if _NUMBER_RE.match(expr):
            if _INT_RE.match(expr):
                return int(expr)
            return float(expr)

        if len(expr) >= 2 and expr[0] == '"' and expr[-1] == '"':
            return expr[1:-1].replace('""', '"')

        upper = expr.upper()
        if upper == 'TRUE':
            return True
        if upper == 'FALSE':
            return False
        if _RANGE_REF_RE.match(expr):
            return self._resolve_range(expr, lookup)
        if _CELL_REF_RE.match(expr):
            return coerce_cell_value(lookup.cell_value(to_cell_coord(expr)))

        if _NAME_RE.match(expr):
            logger.debug("Unknown name %r", expr)
            return ExcelError.NAME
        return ExcelError.ERROR

    def _resolve_range(self, expr: str, lookup: ReferenceLookup) -> RangeValue:
        """Resolve ``A1:B3`` through the range hook into a :class:`RangeValue`."""
        start_ref, end_ref = expr.split(":", 1)
        a = to_cell_coord(start_ref)
        b = to_cell_coord(end_ref)
        start = CellCoord(min(a.row, b.row), min(a.column, b.column))
        end = CellCoord(max(a.row, b.row), max(a.column, b.column))
        rows = lookup.range_value(start, end)
        return RangeValue.from_rows(
            [[coerce_cell_value(v) for v in row] for row in rows]
        )

    # ------------------------------------------------------------------
    # Function dispatch
    # ------------------------------------------------------------------

    def _eval_function(self, func_name: str, args_str: str, lookup: ReferenceLookup) -> Any:
        func = self._functions.get(func_name)
        if func is None:
            logger.debug("Unsupported function: %s", func_name)
            if self._use_formulas:
                raise _UnknownFunction(func_name)
            return ExcelError.NAME

        # An omitted argument (``IF(A1,,2)``) is blank
        args = [
            self._eval_expr(a, lookup) if a else None
            for a in _split_top_level_args(args_str)
        ]
        if func_name not in ERROR_AWARE:
            err = first_error(*args)
            if err is not None:
                return err
        try:
            return func(args)
        except ZeroDivisionError:
            return ExcelError.DIV0
        except OverflowError:
            return ExcelError.NUM
        except (ValueError, TypeError) as e:
            logger.debug("Error evaluating %s: %s", func_name, e)
            return ExcelError.VALUE

    # ------------------------------------------------------------------
    # formulas library fallback
    # ------------------------------------------------------------------

    def _fallback(self, expression: str, lookup: ReferenceLookup, func_name: str) -> Any:
        """Evaluate *expression* with the ``formulas`` library.

        The compiled function's parameters are the formula's reference tokens
        (``"A1"``, ``"B1:C3"``); each is resolved through *lookup*, so bounds
        and self-reference checks still apply.
        """
        import formulas as fm
        import numpy as np

        formula = "=" + expression
        compiled = self._compiled_cache.get(formula)
        if compiled is None:
            try:
                result = fm.Parser().ast(formula)
                if result and len(result) > 1:
                    compiled = result[1].compile()
                    self._compiled_cache[formula] = compiled
            except Exception:
                logger.debug("formulas: cannot compile %r", formula)
                return ExcelError.NAME
        if compiled is None:
            return ExcelError.NAME

        try:
            params = list(inspect.signature(compiled).parameters.keys())
        except (ValueError, TypeError):
            params = []

        args: list[Any] = []
        for param in params:
            ref = param.replace("$", "").upper()
            if ":" in ref:
                rng = self._resolve_range(ref, lookup)
                flat = np.array([0 if v is None else v for v in rng.values])
                if rng.n_cols > 1 and flat.size == rng.n_rows * rng.n_cols:
                    flat = flat.reshape(rng.n_rows, rng.n_cols)
                args.append(flat)
            elif _CELL_REF_RE.match(ref):
                val = coerce_cell_value(lookup.cell_value(to_cell_coord(ref)))
                if isinstance(val, (int, float)) and not isinstance(val, bool):
                    args.append(np.float64(val))
                else:
                    args.append(np.float64(0) if val is None else val)
            else:
                logger.debug("formulas: unsupported input %r in %r", param, formula)
                return ExcelError.NAME

        try:
            raw = compiled(*args)
        except Exception as e:
            logger.debug("formulas: error evaluating %r (%s): %s", formula, func_name, e)
            return ExcelError.VALUE
        return self._normalize_formulas_result(raw)

    @staticmethod
    def _normalize_formulas_result(raw: Any) -> Any:
        """Convert a ``formulas`` library result to a plain Python value."""
        if raw is None:
            return None
        if hasattr(raw, 'shape') and hasattr(raw, 'flat'):
            try:
                if raw.size != 1:
                    return ExcelError.VALUE
                raw = raw.flat[0]
            except (ValueError, TypeError, IndexError):
                return ExcelError.VALUE
        if isinstance(raw, str):
            # XlError subclasses str: "#DIV/0!", "#N/A", ...
            if raw.startswith('#'):
                return ExcelError.from_code(str(raw)) or ExcelError.ERROR
            return str(raw)
        if hasattr(raw, 'item'):
            try:
                raw = raw.item()
            except (ValueError, TypeError):
                return ExcelError.VALUE
        if isinstance(raw, (bool, int, float)):
            return raw
        return ExcelError.VALUE
