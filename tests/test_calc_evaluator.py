"""Tests for gridcalc.calc FormulaEvaluator."""

from __future__ import annotations

import pytest

from gridcalc._store import GridStore
from gridcalc.calc._evaluator import FormulaEvaluator
from gridcalc.calc._functions import ErrorKind, ExcelError
from gridcalc.calc._protocol import (
    Coordinate,
    EngineConfig,
    EvaluationContext,
    EvaluationResult,
    ReferenceLookup,
)

A1 = Coordinate(1, 1)
B1 = Coordinate(2, 1)
C1 = Coordinate(3, 1)
D1 = Coordinate(4, 1)


def _make_store(cells: dict[Coordinate, str], max_x: int = 4, max_y: int = 4) -> GridStore:
    store = GridStore(max_x, max_y)
    for coord, value in cells.items():
        store.set(coord.x, coord.y, value)
    return store


def _evaluator(cells: dict[Coordinate, str], **config: object) -> FormulaEvaluator:
    return FormulaEvaluator(_make_store(cells), config=EngineConfig(**config))  # type: ignore[arg-type]


def _eval_cell(ev: FormulaEvaluator, address: Coordinate) -> EvaluationResult:
    return ev.evaluate_cell(address)


class RecordingParser:
    """FormulaParser stub returning canned results and recording contexts."""

    def __init__(self, *results: EvaluationResult) -> None:
        self.results = list(results)
        self.seen: list[tuple[str, EvaluationContext]] = []

    def parse(self, expression: str, lookup: ReferenceLookup) -> EvaluationResult:
        self.seen.append((expression, lookup.context))  # type: ignore[attr-defined]
        return self.results.pop(0)


class TestComputeDisplay:
    @pytest.mark.parametrize("raw", ["", "hello", "12", " =A1", "3.5"])
    def test_identity_on_literals(self, raw: str) -> None:
        ev = _evaluator({})
        assert ev.compute_display(A1, raw) == raw

    def test_formula_value(self) -> None:
        ev = _evaluator({A1: "10"})
        assert ev.compute_display(B1, "=A1*2") == 20

    def test_error_shows_sentinel(self) -> None:
        ev = _evaluator({})
        assert ev.compute_display(A1, "=1/0") == "INVALID"

    def test_custom_sentinel(self) -> None:
        ev = _evaluator({}, invalid_display="#ERR")
        assert ev.compute_display(A1, "=A1") == "#ERR"

    def test_structured_result_keeps_kind(self) -> None:
        ev = _evaluator({})
        res = ev.evaluate(A1, "1/0")
        assert res.error is ExcelError.DIV0
        assert not res.ok


class TestFormulaChains:
    def test_formula_pointing_to_formula(self) -> None:
        ev = _evaluator({A1: "=5", B1: "=A1"})
        assert ev.compute_display(B1, "=A1") == 5

    def test_three_step_chain(self) -> None:
        ev = _evaluator({A1: "=5", B1: "=A1", C1: "=B1"})
        assert _eval_cell(ev, C1) == EvaluationResult(value=5)

    def test_chain_to_text(self) -> None:
        ev = _evaluator({A1: '="hi"', B1: "=A1"})
        assert _eval_cell(ev, B1).value == "hi"

    def test_chain_ends_in_error(self) -> None:
        ev = _evaluator({A1: "=1/0", B1: "=A1"})
        assert _eval_cell(ev, B1).error is ExcelError.DIV0

    def test_formula_text_inside_arithmetic_is_value_error(self) -> None:
        # Single references read raw text; only a bare reference is chained
        ev = _evaluator({A1: "=5"})
        assert ev.evaluate(B1, "A1*2").error is ExcelError.VALUE
        assert ev.evaluate(B1, "SUM(A1:A1)*2").value == 10

    def test_chain_back_to_origin_is_self_reference(self) -> None:
        # B1 reads A1's text "=B1", which is then evaluated at B1 itself
        ev = _evaluator({A1: "=B1", B1: "=A1"})
        assert _eval_cell(ev, B1).error is ExcelError.SELF_REFERENCE

    def test_empty_result_returned_as_is(self) -> None:
        ev = _evaluator({})
        assert _eval_cell(_evaluator({B1: "=A1"}), B1) == EvaluationResult(value="")
        assert ev.evaluate(B1, '""').value == ""

    def test_chain_steps_keep_the_original_address(self) -> None:
        parser = RecordingParser(
            EvaluationResult(value="=C1"),
            EvaluationResult(value=7),
        )
        ev = FormulaEvaluator(_make_store({}), parser=parser)
        assert ev.evaluate(B1, "X").value == 7
        assert [expr for expr, _ in parser.seen] == ["X", "C1"]
        assert [ctx.current for _, ctx in parser.seen] == [B1, B1]
        assert [ctx.depth for _, ctx in parser.seen] == [0, 1]


class TestErrors:
    def test_self_reference(self) -> None:
        res = _eval_cell(_evaluator({A1: "=A1+1"}), A1)
        assert res.error is not None
        assert res.error.kind is ErrorKind.SELF_REFERENCE

    def test_out_of_range(self) -> None:
        res = _evaluator({}).evaluate(A1, "Z1")
        assert res.error is ExcelError.OUT_OF_RANGE

    def test_parser_errors_pass_through(self) -> None:
        assert _evaluator({}).evaluate(A1, "NOPE(1)").error is not None
        assert _evaluator({}, use_formulas=False).evaluate(A1, "NOPE(1)").error is ExcelError.NAME

    def test_range_error_short_circuits(self) -> None:
        ev = _evaluator({A1: "1", B1: "=B1", C1: "3"})
        assert ev.evaluate(D1, "SUM(A1:C1)").error is ExcelError.SELF_REFERENCE

    def test_range_including_caller_hits_recursion_limit(self) -> None:
        # Range cells get their own context, so only the recursion guard stops this
        ev = _evaluator({A1: "1", B1: "=SUM(A1:B1)"})
        assert _eval_cell(ev, B1).error is ExcelError.RECURSION_LIMIT

    def test_indirect_cycle_through_ranges(self) -> None:
        ev = _evaluator({A1: "=SUM(B1:B1)", B1: "=SUM(A1:A1)"})
        assert _eval_cell(ev, A1).error is ExcelError.RECURSION_LIMIT

    def test_indirect_cycle_through_chain(self) -> None:
        ev = _evaluator({A1: "=B1", B1: "=C1", C1: "=B1"})
        assert _eval_cell(ev, A1).error is ExcelError.RECURSION_LIMIT

    def test_max_depth_is_configurable(self) -> None:
        cells = {A1: "=1", B1: "=A1", C1: "=B1", D1: "=C1"}
        assert _eval_cell(_evaluator(cells), D1).value == 1
        shallow = _evaluator(cells, max_depth=2)
        assert _eval_cell(shallow, D1).error is ExcelError.RECURSION_LIMIT

    def test_long_running_total(self) -> None:
        cells = {A1: "1"}
        for row in range(2, 41):
            cells[Coordinate(1, row)] = f"=SUM(A{row - 1}:A{row - 1})+1"
        ev = FormulaEvaluator(_make_store(cells, max_y=40))
        assert _eval_cell(ev, Coordinate(1, 40)) == EvaluationResult(value=40)

    def test_long_reference_chain(self) -> None:
        cells = {Coordinate(1, row): f"=A{row + 1}" for row in range(1, 40)}
        cells[Coordinate(1, 40)] = "7"
        ev = FormulaEvaluator(_make_store(cells, max_y=40))
        assert _eval_cell(ev, A1).value == 7


class TestContextIsolation:
    def test_outer_self_reference_survives_nested_range(self) -> None:
        # Evaluating B1 inside the range must not replace A1 as "current"
        ev = _evaluator({B1: "=2"})
        assert ev.evaluate(A1, "SUM(B1:B1)+A1").error is ExcelError.SELF_REFERENCE

    def test_outer_reads_after_nested_range(self) -> None:
        ev = _evaluator({B1: "=2", Coordinate(1, 2): "5"})
        assert ev.evaluate(C1, "SUM(B1:B1)+A2").value == 7

    def test_explicit_context_address_wins(self) -> None:
        parser = RecordingParser(EvaluationResult(value=1))
        ev = FormulaEvaluator(_make_store({}), parser=parser)
        ev.evaluate(B1, "X", EvaluationContext(current=A1, depth=3))
        _, ctx = parser.seen[0]
        assert ctx == EvaluationContext(current=B1, depth=3)


class TestPurity:
    def test_idempotent(self) -> None:
        ev = _evaluator({A1: "4", B1: "=A1*A1", C1: "=SUM(A1:B1)"})
        first = _eval_cell(ev, C1)
        second = _eval_cell(ev, C1)
        assert first == second == EvaluationResult(value=20)

    def test_idempotent_errors(self) -> None:
        ev = _evaluator({A1: "=A1"})
        assert _eval_cell(ev, A1) == _eval_cell(ev, A1)

    def test_raw_values_untouched(self) -> None:
        store = _make_store({A1: "=5", B1: "=A1"})
        FormulaEvaluator(store).evaluate_cell(B1)
        assert store.get(1, 1) == "=5"
        assert store.get(2, 1) == "=A1"

    def test_sees_later_writes(self) -> None:
        store = _make_store({A1: "1", B1: "=A1+1"})
        ev = FormulaEvaluator(store)
        assert ev.evaluate_cell(B1).value == 2
        store.set(1, 1, "10")
        assert ev.evaluate_cell(B1).value == 11

    def test_literal_cell_result(self) -> None:
        assert _eval_cell(_evaluator({A1: "abc"}), A1) == EvaluationResult(value="abc")
