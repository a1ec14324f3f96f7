"""
Tests for variable interpolation, durations and the expression evaluator
"""
import pytest

from bizflow.workflow.errors import ExpressionError
from bizflow.workflow.expressions import (evaluate_condition,
                                          evaluate_expression,
                                          get_nested_value, parse_duration,
                                          replace_variables)


def _context(variables=None, step_results=None):
    return {"variables": variables or {}, "stepResults": step_results or {}}


class TestReplaceVariables:
    def test_replaces_nested_paths(self):
        variables = {"client": {"name": "Acme", "email": "ops@acme.test"}}
        assert replace_variables("Hello {{client.name}}", variables) == "Hello Acme"
        assert replace_variables("{{ client.email }}", variables) == "ops@acme.test"

    def test_whole_placeholder_keeps_type(self):
        variables = {"items": [1, 2, 3], "amount": 42}
        assert replace_variables("{{items}}", variables) == [1, 2, 3]
        assert replace_variables("{{amount}}", variables) == 42

    def test_missing_placeholder_left_as_is(self):
        assert replace_variables("Hi {{client.name}}", {}) == "Hi {{client.name}}"
        assert replace_variables("{{missing}}", {"missing": None}) == "{{missing}}"

    def test_recurses_into_dicts_and_lists(self):
        variables = {"id": "c1"}
        value = {"params": {"clientId": "{{id}}"}, "tags": ["{{id}}", "static"]}
        assert replace_variables(value, variables) == {
            "params": {"clientId": "c1"},
            "tags": ["c1", "static"],
        }

    def test_step_results_lookup(self):
        result = replace_variables("{{steps.create.projectId}}", {}, {"create": {"projectId": "proj_1"}})
        assert result == "proj_1"

    def test_list_index_and_booleans(self):
        variables = {"items": [{"id": "a"}, {"id": "b"}], "flag": True}
        assert replace_variables("{{items.1.id}}", variables) == "b"
        assert replace_variables("flag={{flag}}", variables) == "flag=true"

    def test_non_strings_untouched(self):
        assert replace_variables(5, {"x": 1}) == 5
        assert replace_variables(None, {}) is None

    def test_get_nested_value(self):
        obj = {"a": {"b": [10, 20]}}
        assert get_nested_value(obj, "a.b.0") == 10
        assert get_nested_value(obj, "a.c") is None
        assert get_nested_value(obj, "a.b.5") is None


class TestParseDuration:
    @pytest.mark.parametrize("value,expected", [
        ("500ms", 500),
        ("30s", 30_000),
        ("15m", 900_000),
        ("2h", 7_200_000),
        ("3d", 259_200_000),
        (1500, 1500),
    ])
    def test_valid(self, value, expected):
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["5 minutes", "10x", "", "-5s", -1, None, True])
    def test_invalid(self, value):
        with pytest.raises(ExpressionError, match="Invalid duration format"):
            parse_duration(value)


class TestEvaluateExpression:
    def test_arithmetic_and_variables(self):
        context = _context({"amount": 100, "rate": 0.2})
        assert evaluate_expression("amount * rate", context) == 20.0
        assert evaluate_expression("amount > 50 and rate < 1", context) is True

    def test_js_operators(self):
        context = _context({"status": "won", "score": 7, "vip": False})
        assert evaluate_expression("status === 'won' && score >= 5", context) is True
        assert evaluate_expression("status !== 'won' || !vip", context) is True
        assert evaluate_expression("vip === false", context) is True
        assert evaluate_expression("missing === null", _context({"missing": None})) is True

    def test_operators_inside_strings_untouched(self):
        context = _context({"note": "a && b"})
        assert evaluate_expression("note == 'a && b'", context) is True

    def test_member_access_and_length(self):
        context = _context({"client": {"tags": ["vip", "new"], "name": "Acme"}})
        assert evaluate_expression("client.tags.length", context) == 2
        assert evaluate_expression("client.tags.includes('vip')", context) is True
        assert evaluate_expression("client.name.toLowerCase()", context) == "acme"
        assert evaluate_expression("client['name']", context) == "Acme"

    def test_step_results_and_context(self):
        context = {
            "instanceId": "i-1",
            "variables": {},
            "stepResults": {"qualify": {"decision": "qualified"}},
        }
        assert evaluate_expression("steps.qualify.decision == 'qualified'", context) is True
        assert evaluate_expression("context.instanceId", context) == "i-1"

    def test_builds_collections(self):
        context = _context({"price": 10, "qty": 3})
        assert evaluate_expression("{'total': price * qty, 'items': [price, qty]}", context) == {
            "total": 30,
            "items": [10, 3],
        }

    def test_string_concatenation(self):
        assert evaluate_expression("'Invoice #' + number", _context({"number": 7})) == "Invoice #7"

    def test_ternary(self):
        assert evaluate_expression("'big' if amount > 1000 else 'small'", _context({"amount": 5})) == "small"

    @pytest.mark.parametrize("expression", [
        "__import__('os').system('true')",
        "open('/etc/passwd')",
        "client.__class__",
        "(lambda: 1)()",
        "[x for x in items]",
        "2 ** 1000",
        "'a' * 1000000",
        "[0] * (10 ** 9)",
    ])
    def test_rejects_unsafe_constructs(self, expression):
        with pytest.raises(ExpressionError):
            evaluate_expression(expression, _context({"client": {}, "items": [1]}))

    def test_unknown_name(self):
        with pytest.raises(ExpressionError, match="Unknown name"):
            evaluate_expression("nope + 1", _context())

    def test_syntax_error(self):
        with pytest.raises(ExpressionError, match="Invalid expression"):
            evaluate_expression("amount >", _context({"amount": 1}))

    def test_runtime_error_wrapped(self):
        with pytest.raises(ExpressionError, match="failed"):
            evaluate_expression("amount / 0", _context({"amount": 1}))

    def test_null_member_access(self):
        with pytest.raises(ExpressionError, match="of null"):
            evaluate_expression("client.name", _context({"client": None}))

    def test_empty_expression(self):
        with pytest.raises(ExpressionError):
            evaluate_expression("  ", _context())

    def test_small_repetition_allowed(self):
        assert evaluate_expression("'ab' * 3", _context()) == "ababab"
        assert evaluate_expression("3 * [0]", _context()) == [0, 0, 0]
        with pytest.raises(ExpressionError, match="too large"):
            evaluate_expression("name * 20000", _context({"name": "x"}))


class TestEvaluateCondition:
    def test_true_and_false(self):
        context = _context({"amount": 10})
        assert evaluate_condition("amount > 5", context) is True
        assert evaluate_condition("amount > 50", context) is False

    def test_errors_are_false(self):
        assert evaluate_condition("unknown_variable > 1", _context()) is False
        assert evaluate_condition("((", _context()) is False
