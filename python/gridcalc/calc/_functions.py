"""Error values, range containers and builtin function implementations."""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass
from typing import Any, Callable


# ---------------------------------------------------------------------------
# ErrorKind / ExcelError: typed error values that propagate through formulas
# ---------------------------------------------------------------------------


class ErrorKind(enum.Enum):
    """Every way an evaluation can fail."""

    # Raised by the grid's reference hooks / evaluator
    OUT_OF_RANGE = "out_of_range"
    SELF_REFERENCE = "self_reference"
    RECURSION_LIMIT = "recursion_limit"
    # Produced inside the expression grammar
    DIV_ZERO = "div_zero"
    NAME = "name"
    VALUE = "value"
    REF = "ref"
    NOT_AVAILABLE = "not_available"
    NUM = "num"
    ERROR = "error"


_CODES: dict[ErrorKind, str] = {
    ErrorKind.OUT_OF_RANGE: "#N/A",
    ErrorKind.SELF_REFERENCE: "#REF!",
    ErrorKind.RECURSION_LIMIT: "#REF!",
    ErrorKind.DIV_ZERO: "#DIV/0!",
    ErrorKind.NAME: "#NAME?",
    ErrorKind.VALUE: "#VALUE!",
    ErrorKind.REF: "#REF!",
    ErrorKind.NOT_AVAILABLE: "#N/A",
    ErrorKind.NUM: "#NUM!",
    ErrorKind.ERROR: "#ERROR!",
}

# Display code -> grammar-level kind (for errors reported by other engines)
_KINDS_BY_CODE: dict[str, ErrorKind] = {
    "#DIV/0!": ErrorKind.DIV_ZERO,
    "#NAME?": ErrorKind.NAME,
    "#VALUE!": ErrorKind.VALUE,
    "#REF!": ErrorKind.REF,
    "#N/A": ErrorKind.NOT_AVAILABLE,
    "#NUM!": ErrorKind.NUM,
    "#ERROR!": ErrorKind.ERROR,
    "#NULL!": ErrorKind.ERROR,
}


class ExcelError:
    """Error value that propagates through formula chains.

    Use ``ExcelError.of(kind)`` to get the cached singleton for each kind.
    Errors compare equal to each other by kind, and to their display code
    string (``ExcelError.DIV0 == "#DIV/0!"``).
    """

    __slots__ = ("kind",)
    _cache: dict[ErrorKind, ExcelError] = {}

    NA: ExcelError
    VALUE: ExcelError
    REF: ExcelError
    DIV0: ExcelError
    NUM: ExcelError
    NAME: ExcelError
    ERROR: ExcelError
    OUT_OF_RANGE: ExcelError
    SELF_REFERENCE: ExcelError
    RECURSION_LIMIT: ExcelError

    def __init__(self, kind: ErrorKind) -> None:
        self.kind = kind

    @classmethod
    def of(cls, kind: ErrorKind) -> ExcelError:
        if kind not in cls._cache:
            cls._cache[kind] = cls(kind)
        return cls._cache[kind]

    @classmethod
    def from_code(cls, code: str) -> ExcelError | None:
        """Map a display code like ``"#DIV/0!"`` to its grammar-level error."""
        kind = _KINDS_BY_CODE.get(code.strip().upper())
        return cls.of(kind) if kind is not None else None

    @property
    def code(self) -> str:
        return _CODES[self.kind]

    def __repr__(self) -> str:
        return f"ExcelError({self.kind.name}, {self.code!r})"

    def __str__(self) -> str:
        return self.code

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExcelError):
            return self.kind is other.kind
        if isinstance(other, str):
            return self.code == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.kind)


# Singletons
ExcelError.NA = ExcelError.of(ErrorKind.NOT_AVAILABLE)
ExcelError.VALUE = ExcelError.of(ErrorKind.VALUE)
ExcelError.REF = ExcelError.of(ErrorKind.REF)
ExcelError.DIV0 = ExcelError.of(ErrorKind.DIV_ZERO)
ExcelError.NUM = ExcelError.of(ErrorKind.NUM)
ExcelError.NAME = ExcelError.of(ErrorKind.NAME)
ExcelError.ERROR = ExcelError.of(ErrorKind.ERROR)
ExcelError.OUT_OF_RANGE = ExcelError.of(ErrorKind.OUT_OF_RANGE)
ExcelError.SELF_REFERENCE = ExcelError.of(ErrorKind.SELF_REFERENCE)
ExcelError.RECURSION_LIMIT = ExcelError.of(ErrorKind.RECURSION_LIMIT)


class FormulaError(Exception):
    """Raised by reference hooks to abort the formula being parsed."""

    def __init__(self, error: ExcelError, message: str = "") -> None:
        super().__init__(message or error.code)
        self.error = error

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


def first_error(*values: Any) -> ExcelError | None:
    """Return the first ExcelError found in *values*, or None."""
    for v in values:
        if isinstance(v, ExcelError):
            return v
    return None


# ---------------------------------------------------------------------------
# RangeValue: shape-aware 2D range container
# ---------------------------------------------------------------------------


@dataclass
class RangeValue:
    """A resolved cell range that preserves 2D shape metadata.

    Iterable and sized so aggregate functions can treat it as a flat list.
    """

    values: list[Any]
    n_rows: int
    n_cols: int

    @classmethod
    def from_rows(cls, rows: list[list[Any]]) -> RangeValue:
        """Flatten row-major nested lists, padding short rows with None."""
        n_cols = max((len(r) for r in rows), default=0)
        values: list[Any] = []
        for r in rows:
            values.extend(r)
            values.extend([None] * (n_cols - len(r)))
        return cls(values=values, n_rows=len(rows), n_cols=n_cols)

    def get(self, row: int, col: int) -> Any:
        """Get value at 1-based (row, col) position."""
        if row < 1 or row > self.n_rows or col < 1 or col > self.n_cols:
            return None
        return self.values[(row - 1) * self.n_cols + (col - 1)]

    def __iter__(self):
        return iter(self.values)

    def __len__(self):
        return len(self.values)


# ---------------------------------------------------------------------------
# Builtin implementations - pure Python, no external deps.
# Each takes a list of resolved argument values.  Raising ValueError or
# TypeError makes the evaluator report #VALUE!.
# ---------------------------------------------------------------------------


def _coerce_numeric(values: list[Any]) -> list[float]:
    """Flatten and coerce values to floats, skipping None/str/errors."""
    result: list[float] = []
    for v in values:
        if isinstance(v, ExcelError):
            continue
        if isinstance(v, RangeValue):
            result.extend(_coerce_numeric(v.values))
        elif isinstance(v, (list, tuple)):
            result.extend(_coerce_numeric(list(v)))
        elif isinstance(v, bool):
            result.append(float(v))
        elif isinstance(v, (int, float)):
            result.append(float(v))
    return result


def _scalar_number(val: Any, func: str) -> float:
    """A single numeric argument; blanks count as zero."""
    if val is None or val == "":
        return 0.0
    if isinstance(val, bool):
        return float(val)
    if isinstance(val, (int, float)):
        return float(val)
    raise ValueError(f"{func}: non-numeric argument {val!r}")


def _arity(args: list[Any], func: str, low: int, high: int | None = None) -> None:
    high = low if high is None else high
    if not low <= len(args) <= high:
        raise ValueError(f"{func} takes {low}-{high} arguments, got {len(args)}")


def _builtin_sum(args: list[Any]) -> float:
    return sum(_coerce_numeric(args))


def _builtin_abs(args: list[Any]) -> float:
    _arity(args, "ABS", 1)
    return abs(_scalar_number(args[0], "ABS"))


def _builtin_round(args: list[Any]) -> float:
    _arity(args, "ROUND", 1, 2)
    digits = int(_scalar_number(args[1], "ROUND")) if len(args) > 1 else 0
    return round(_scalar_number(args[0], "ROUND"), digits)


def _builtin_roundup(args: list[Any]) -> float:
    _arity(args, "ROUNDUP", 1, 2)
    num = _scalar_number(args[0], "ROUNDUP")
    digits = int(_scalar_number(args[1], "ROUNDUP")) if len(args) > 1 else 0
    factor = 10 ** digits
    # Away from zero, like Excel
    return math.copysign(math.ceil(abs(num) * factor) / factor, num)


def _builtin_rounddown(args: list[Any]) -> float:
    _arity(args, "ROUNDDOWN", 1, 2)
    num = _scalar_number(args[0], "ROUNDDOWN")
    digits = int(_scalar_number(args[1], "ROUNDDOWN")) if len(args) > 1 else 0
    factor = 10 ** digits
    return math.trunc(num * factor) / factor


def _builtin_int(args: list[Any]) -> float:
    _arity(args, "INT", 1)
    return float(math.floor(_scalar_number(args[0], "INT")))


def _builtin_mod(args: list[Any]) -> float | ExcelError:
    _arity(args, "MOD", 2)
    n = _scalar_number(args[0], "MOD")
    d = _scalar_number(args[1], "MOD")
    if d == 0:
        return ExcelError.DIV0
    # Result has the sign of the divisor
    return n - d * math.floor(n / d)


def _builtin_power(args: list[Any]) -> float | ExcelError:
    _arity(args, "POWER", 2)
    base = _scalar_number(args[0], "POWER")
    exp = _scalar_number(args[1], "POWER")
    if base == 0 and exp < 0:
        return ExcelError.DIV0
    try:
        result = base ** exp
    except OverflowError:
        return ExcelError.NUM
    if isinstance(result, complex):
        return ExcelError.NUM
    return result


def _builtin_sqrt(args: list[Any]) -> float | ExcelError:
    _arity(args, "SQRT", 1)
    num = _scalar_number(args[0], "SQRT")
    if num < 0:
        return ExcelError.NUM
    return math.sqrt(num)


def _builtin_sign(args: list[Any]) -> float:
    _arity(args, "SIGN", 1)
    num = _scalar_number(args[0], "SIGN")
    if num > 0:
        return 1.0
    if num < 0:
        return -1.0
    return 0.0


def _truthy(val: Any) -> bool:
    if isinstance(val, str):
        upper = val.upper()
        if upper == "TRUE":
            return True
        if upper in ("FALSE", ""):
            return False
        raise ValueError(f"Cannot use {val!r} as a boolean")
    if isinstance(val, (int, float)):
        return val != 0
    return bool(val)


def _builtin_if(args: list[Any]) -> Any:
    _arity(args, "IF", 2, 3)
    if isinstance(args[0], ExcelError):
        return args[0]
    if _truthy(args[0]):
        return args[1]
    return args[2] if len(args) > 2 else False


def _builtin_iferror(args: list[Any]) -> Any:
    _arity(args, "IFERROR", 2)
    if isinstance(args[0], ExcelError):
        return args[1]
    return args[0]


def _builtin_and(args: list[Any]) -> bool | ExcelError:
    if not args:
        raise ValueError("AND requires at least 1 argument")
    err = first_error(*args)
    if err is not None:
        return err
    for a in args:
        if isinstance(a, (RangeValue, list, tuple)):
            if not all(_truthy(x) for x in a if x is not None):
                return False
        elif not _truthy(a):
            return False
    return True


def _builtin_or(args: list[Any]) -> bool | ExcelError:
    if not args:
        raise ValueError("OR requires at least 1 argument")
    err = first_error(*args)
    if err is not None:
        return err
    for a in args:
        if isinstance(a, (RangeValue, list, tuple)):
            if any(_truthy(x) for x in a if x is not None):
                return True
        elif _truthy(a):
            return True
    return False


def _builtin_not(args: list[Any]) -> bool | ExcelError:
    _arity(args, "NOT", 1)
    if isinstance(args[0], ExcelError):
        return args[0]
    return not _truthy(args[0])


def _builtin_count(args: list[Any]) -> float:
    """COUNT - counts numeric values only."""
    return float(len(_coerce_numeric(args)))


def _builtin_counta(args: list[Any]) -> float:
    """COUNTA - counts non-empty values."""
    count = 0
    for v in args:
        if isinstance(v, (RangeValue, list, tuple)):
            count += sum(1 for x in v if x is not None and x != "")
        elif v is not None and v != "":
            count += 1
    return float(count)


def _builtin_min(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    return min(nums) if nums else 0.0


def _builtin_max(args: list[Any]) -> float:
    nums = _coerce_numeric(args)
    return max(nums) if nums else 0.0


def _builtin_average(args: list[Any]) -> float | ExcelError:
    nums = _coerce_numeric(args)
    if not nums:
        return ExcelError.DIV0
    return sum(nums) / len(nums)


# ---------------------------------------------------------------------------
# Text builtins
# ---------------------------------------------------------------------------


def _coerce_string(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "TRUE" if val else "FALSE"
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val)


def _builtin_len(args: list[Any]) -> float:
    _arity(args, "LEN", 1)
    return float(len(_coerce_string(args[0])))


def _builtin_left(args: list[Any]) -> str | ExcelError:
    _arity(args, "LEFT", 1, 2)
    n = int(_scalar_number(args[1], "LEFT")) if len(args) > 1 else 1
    if n < 0:
        return ExcelError.VALUE
    return _coerce_string(args[0])[:n]


def _builtin_right(args: list[Any]) -> str | ExcelError:
    _arity(args, "RIGHT", 1, 2)
    n = int(_scalar_number(args[1], "RIGHT")) if len(args) > 1 else 1
    if n < 0:
        return ExcelError.VALUE
    text = _coerce_string(args[0])
    return text[-n:] if n else ""


def _builtin_mid(args: list[Any]) -> str | ExcelError:
    _arity(args, "MID", 3)
    start = int(_scalar_number(args[1], "MID"))
    length = int(_scalar_number(args[2], "MID"))
    if start < 1 or length < 0:
        return ExcelError.VALUE
    return _coerce_string(args[0])[start - 1:start - 1 + length]


def _builtin_upper(args: list[Any]) -> str:
    _arity(args, "UPPER", 1)
    return _coerce_string(args[0]).upper()


def _builtin_lower(args: list[Any]) -> str:
    _arity(args, "LOWER", 1)
    return _coerce_string(args[0]).lower()


def _builtin_trim(args: list[Any]) -> str:
    _arity(args, "TRIM", 1)
    return " ".join(_coerce_string(args[0]).split())


def _builtin_concatenate(args: list[Any]) -> str:
    parts: list[str] = []
    for a in args:
        if isinstance(a, (RangeValue, list, tuple)):
            parts.extend(_coerce_string(x) for x in a)
        else:
            parts.append(_coerce_string(a))
    return "".join(parts)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_BUILTINS: dict[str, Callable[[list[Any]], Any]] = {
    "SUM": _builtin_sum,
    "ABS": _builtin_abs,
    "ROUND": _builtin_round,
    "ROUNDUP": _builtin_roundup,
    "ROUNDDOWN": _builtin_rounddown,
    "INT": _builtin_int,
    "MOD": _builtin_mod,
    "POWER": _builtin_power,
    "SQRT": _builtin_sqrt,
    "SIGN": _builtin_sign,
    "IF": _builtin_if,
    "IFERROR": _builtin_iferror,
    "AND": _builtin_and,
    "OR": _builtin_or,
    "NOT": _builtin_not,
    "COUNT": _builtin_count,
    "COUNTA": _builtin_counta,
    "MIN": _builtin_min,
    "MAX": _builtin_max,
    "AVERAGE": _builtin_average,
    "LEN": _builtin_len,
    "LEFT": _builtin_left,
    "RIGHT": _builtin_right,
    "MID": _builtin_mid,
    "UPPER": _builtin_upper,
    "LOWER": _builtin_lower,
    "TRIM": _builtin_trim,
    "CONCATENATE": _builtin_concatenate,
}

# Functions that see error arguments instead of having them short-circuit
ERROR_AWARE = frozenset({"IFERROR", "IF", "COUNT", "COUNTA"})


class FunctionRegistry:
    """Registry of callable function implementations.

    Starts with builtins and can be extended with custom functions.
    """

    def __init__(self) -> None:
        self._functions: dict[str, Callable[..., Any]] = dict(_BUILTINS)

    def register(self, name: str, func: Callable[..., Any]) -> None:
        self._functions[name.upper()] = func

    def get(self, name: str) -> Callable[..., Any] | None:
        return self._functions.get(name.upper())

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._functions.keys())
