from __future__ import annotations

import pytest

from modalbind.expression import (
    UNDEFINED,
    Evaluator,
    compile_expression,
    format_value,
)
from modalbind.models import EvaluationError, ExpressionError


def test_arithmetic_evaluates() -> None:
    assert compile_expression("2+2").evaluate() == 4
    assert compile_expression("7 / 2").evaluate() == 3.5
    assert compile_expression("6 / 2").evaluate() == 3
    assert compile_expression("-(1 + 2) * 3").evaluate() == -9
    assert compile_expression("7 % 4").evaluate() == 3


def test_assignment_is_rejected_before_parsing() -> None:
    with pytest.raises(ExpressionError, match="expressions cannot assign"):
        compile_expression("x = 1")

    evaluator = Evaluator()
    assert evaluator.evaluate("x = 1", {"x": 0}) is UNDEFINED
    (error,) = evaluator.report_errors()
    assert "expressions cannot assign" in error


def test_comparisons_are_not_mistaken_for_assignment() -> None:
    scope = {"count": 3}
    assert compile_expression("count == 3").evaluate(scope) is True
    assert compile_expression("count != 3").evaluate(scope) is False
    assert compile_expression("count <= 3").evaluate(scope) is True
    assert compile_expression("count >= 4").evaluate(scope) is False
    assert compile_expression("count === '3'").evaluate(scope) is False
    assert compile_expression("count == '3'").evaluate(scope) is True


def test_string_concatenation_and_member_access() -> None:
    scope = {"word": "abc", "cfg": {"name": "left"}, "items": [10, 20]}
    assert compile_expression("'to-' + cfg.name").evaluate(scope) == "to-left"
    assert compile_expression("word.length").evaluate(scope) == 3
    assert compile_expression("items[1]").evaluate(scope) == 20
    assert compile_expression("'n' + 1").evaluate(scope) == "n1"
    assert compile_expression("items[5]").evaluate(scope) is UNDEFINED


def test_logical_operators_return_operands() -> None:
    assert compile_expression("name || 'fallback'").evaluate({}) == "fallback"
    assert compile_expression("a && b").evaluate({"a": 1, "b": "yes"}) == "yes"
    assert compile_expression("flag ? 'on' : 'off'").evaluate({"flag": 0}) == "off"
    assert compile_expression("!flag").evaluate({"flag": ""}) is True


def test_compiled_expressions_are_cached_by_source() -> None:
    assert compile_expression("1 + count") is compile_expression("1 + count")


def test_scope_is_read_only_and_unmodified() -> None:
    scope = {"values": [1, 2]}
    compile_expression("values[0] + values[1]").evaluate(scope)
    assert scope == {"values": [1, 2]}


def test_runtime_failures_raise_evaluation_error() -> None:
    with pytest.raises(EvaluationError, match="division by zero"):
        compile_expression("1 / 0").evaluate()
    with pytest.raises(EvaluationError, match="cannot read property"):
        compile_expression("missing.field").evaluate()


def test_parse_failure_is_expression_error() -> None:
    with pytest.raises(ExpressionError, match="could not parse expression"):
        compile_expression("1 +")


def test_templates_substitute_values() -> None:
    evaluator = Evaluator()
    text = evaluator.substitute_templates(
        "move {{count * 2}} {{direction}}", {"count": 2, "direction": "down"}
    )
    assert text == "move 4 down"
    assert evaluator.report_errors() == []


def test_failed_template_stays_in_place_and_records_error() -> None:
    evaluator = Evaluator()
    text = evaluator.substitute_templates("go {{nowhere}} now", {})
    assert text == "go {{nowhere}} now"
    (error,) = evaluator.report_errors()
    assert "{{nowhere}}" in error
    assert "could not be evaluated" in error


def test_errors_are_limited_and_cleared_after_reporting() -> None:
    evaluator = Evaluator(error_limit=3)
    for index in range(5):
        evaluator.evaluate(f"{index} / 0")
    assert len(evaluator.errors) == 5
    reported = evaluator.report_errors()
    assert len(reported) == 3
    assert reported[0].startswith("Error evaluating 0 / 0")
    assert evaluator.report_errors() == []


def test_substitute_walks_nested_structures() -> None:
    evaluator = Evaluator()
    value = evaluator.substitute(
        {"args": {"to": "{{dir}}", "steps": ["{{n}}", 3]}, "flag": True},
        {"dir": "up", "n": 5},
    )
    assert value == {"args": {"to": "up", "steps": ["5", 3]}, "flag": True}


def test_format_value_matches_template_rendering() -> None:
    assert format_value(True) == "true"
    assert format_value(None) == "null"
    assert format_value(2.0) == "2"
    assert format_value([1, "a"]) == "1,a"


def test_ordering_comparisons_compile_and_evaluate() -> None:
    scope = {"count": 3}
    assert compile_expression("count <= 3").evaluate(scope) is True
    assert compile_expression("count >= 4").evaluate(scope) is False
    with pytest.raises(ExpressionError, match="expressions cannot assign"):
        compile_expression("count = 3")


def test_deeply_nested_expression_is_an_expression_error() -> None:
    source = " + ".join(["1"] * 3000)
    with pytest.raises(ExpressionError, match="nested too deeply"):
        compile_expression(source)

    evaluator = Evaluator()
    assert evaluator.evaluate(source, {}) is UNDEFINED
    assert len(evaluator.report_errors()) == 1
    text = "n = {{" + source + "}}"
    assert evaluator.substitute_templates(text, {}) == text
