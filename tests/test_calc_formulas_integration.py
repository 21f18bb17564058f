"""Tests for the formulas library fallback.

Functions outside the builtin registry are handed to the ``formulas``
library, with references still resolved through the grid's lookup hooks.
"""

from __future__ import annotations

import pytest

from gridcalc import EngineConfig, ExcelError, Grid
from gridcalc.calc._parser import _check_formulas

pytest.importorskip("formulas")


class TestFormulasConstantFallback:
    """Non-builtin functions with only literal arguments."""

    def test_pmt(self) -> None:
        grid = Grid(2, 2)
        grid["A1"] = "=PMT(0.05/12,360,200000)"
        res = grid.evaluate(1, 1)
        assert res.error is None, res
        assert abs(res.value - (-1073.6432460242797)) < 0.01  # type: ignore[operator]

    def test_sln(self) -> None:
        grid = Grid(2, 2)
        grid["A1"] = "=SLN(30000,7500,10)"
        assert grid.display(1, 1) == 2250


class TestFormulasCellRefFallback:
    """Non-builtin functions with cell references."""

    def test_vlookup(self) -> None:
        grid = Grid(4, 3)
        grid["B1"] = "1"
        grid["C1"] = "100"
        grid["B2"] = "2"
        grid["C2"] = "200"
        grid["B3"] = "3"
        grid["C3"] = "300"
        grid["A1"] = "2"
        grid["D1"] = "=VLOOKUP(A1,B1:C3,2,FALSE)"
        assert grid.display(4, 1) == 200

    def test_npv(self) -> None:
        grid = Grid(2, 5)
        for row, value in enumerate(["-10000", "3000", "4000", "5000", "6000"], start=1):
            grid.set(1, row, value)
        grid["B1"] = "=NPV(0.1,A1:A5)"
        res = grid.evaluate(2, 1)
        assert res.error is None, res
        assert abs(res.value - 3534.28) < 1.0  # type: ignore[operator]

    def test_reference_checks_still_apply(self) -> None:
        grid = Grid(2, 2)
        grid["A1"] = "=SLN(A1,0,1)"
        assert grid.display(1, 1) == "INVALID"

    def test_out_of_range_reference(self) -> None:
        grid = Grid(2, 2)
        grid["A1"] = "=SLN(C3,0,1)"
        assert grid.display(1, 1) == "INVALID"


class TestFallbackSwitch:
    def test_available(self) -> None:
        assert _check_formulas()

    def test_disabled_fallback_reports_name_error(self) -> None:
        grid = Grid(2, 2, config=EngineConfig(use_formulas=False))
        grid["A1"] = "=PMT(0.05/12,360,200000)"
        assert grid.evaluate(1, 1).error is ExcelError.NAME
