"""Tests for assertion operators and the assertion engine."""

import pytest

from flowengine.assertions import extract_actual_value, run_assertion, run_assertions
from flowengine.assertions.operators import (
    OPERATORS,
    as_bounds,
    as_list,
    get_operator,
    values_equal,
)
from flowengine.exceptions import AssertionConfigError
from flowengine.jsonpath import MISSING
from flowengine.models import Assertion, CapturedResponse
from flowengine.template import build_template_context

BODY = {"user": {"name": "Alice", "roles": ["admin", "dev"], "age": 31, "manager": None}}


@pytest.fixture
def response() -> CapturedResponse:
    return CapturedResponse(
        status=200, status_text="OK", headers={"X-Request-Id": "req-1"}, body=BODY
    )


def _assertion(**kwargs) -> Assertion:
    kwargs.setdefault("id", "a1")
    return Assertion(**kwargs)


class TestConversions:
    def test_as_list(self) -> None:
        assert as_list([1, 2]) == [1, 2]
        assert as_list("[1, 2]") == [1, 2]
        assert as_list("a, b ,c") == ["a", "b", "c"]
        assert as_list(None) == []
        assert as_list(5) == [5]

    def test_as_bounds_sorts(self) -> None:
        assert as_bounds([10, 1]) == (1, 10)
        assert as_bounds("5,2") == (2, 5)

    def test_as_bounds_rejects_bad_input(self) -> None:
        with pytest.raises(ValueError):
            as_bounds("1")
        with pytest.raises(ValueError):
            as_bounds(["a", "b"])


class TestOperators:
    def test_equals_across_types(self) -> None:
        assert values_equal(200, "200")
        assert values_equal(True, "true")
        assert values_equal(None, "null")
        assert values_equal([1, 2], "[1, 2]")
        assert values_equal("Alice", "Alice")
        assert not values_equal(200, "abc")
        assert not values_equal(MISSING, None)

    def test_numeric_comparisons(self) -> None:
        assert OPERATORS["greater_than"](5, "3")
        assert OPERATORS["less_than_or_equal"](3, 3)
        assert not OPERATORS["greater_than"]("abc", 1)

    def test_between(self) -> None:
        assert OPERATORS["between"](5, [10, 1])
        assert OPERATORS["not_between"](11, "1,10")

    def test_contains(self) -> None:
        assert OPERATORS["contains"]("hello world", "world")
        assert OPERATORS["contains"]([1, 2], "2")
        assert OPERATORS["not_contains"](["a"], "b")

    def test_contains_all_and_any(self) -> None:
        assert OPERATORS["contains_all"](["a", "b", "c"], "a,c")
        assert not OPERATORS["contains_all"](["a"], "a,c")
        assert OPERATORS["contains_any"](["a"], ["x", "a"])
        assert OPERATORS["not_contains_any"](["a"], ["x", "y"])

    def test_one_of(self) -> None:
        assert OPERATORS["one_of"]("b", "a,b")
        assert OPERATORS["not_one_of"](3, [1, 2])

    def test_string_operators(self) -> None:
        assert OPERATORS["starts_with"]("Bearer x", "Bearer")
        assert OPERATORS["ends_with"]("file.json", ".json")
        assert OPERATORS["matches_regex"]("abc-123", r"\d+$")
        assert not OPERATORS["starts_with"](MISSING, "x")

    def test_presence_operators(self) -> None:
        assert OPERATORS["exists"](None, None)
        assert not OPERATORS["exists"](MISSING, None)
        assert OPERATORS["not_exists"](MISSING, None)
        assert OPERATORS["is_null"](MISSING, None)
        assert OPERATORS["is_null"](None, None)
        assert OPERATORS["is_not_null"](0, None)

    def test_emptiness(self) -> None:
        assert OPERATORS["is_empty"]("", None)
        assert OPERATORS["is_empty"]([], None)
        assert OPERATORS["is_empty"](MISSING, None)
        assert OPERATORS["is_not_empty"]({"a": 1}, None)

    def test_length_operators(self) -> None:
        assert OPERATORS["has_length"]([1, 2, 3], 3)
        assert OPERATORS["length_greater_than"]("abcd", "2")
        assert OPERATORS["length_less_than"]({}, 1)
        assert not OPERATORS["has_length"](5, 1)

    def test_is_type(self) -> None:
        assert OPERATORS["is_type"](3.0, "integer")
        assert OPERATORS["is_type"]([], "array")
        assert not OPERATORS["is_type"](True, "number")
        with pytest.raises(ValueError):
            OPERATORS["is_type"](1, "decimal")

    def test_get_operator_unknown(self) -> None:
        with pytest.raises(ValueError, match="Unknown operator"):
            get_operator("roughly_equals")


class TestExtractActualValue:
    def test_status_code(self, response) -> None:
        assert extract_actual_value(_assertion(), response, BODY, {}, 10) == 200

    def test_header_is_case_insensitive(self, response) -> None:
        assertion = _assertion(assertion_type="header", data_id="x-request-id")
        assert extract_actual_value(assertion, response, BODY, {}, 10) == "req-1"

    def test_missing_header(self, response) -> None:
        assertion = _assertion(assertion_type="header", data_id="x-other")
        assert extract_actual_value(assertion, response, BODY, {}, 10) is MISSING

    def test_pipeline_locator(self, response) -> None:
        assertion = _assertion(assertion_type="json_body", data_id="$.user.roles | count")
        assert extract_actual_value(assertion, response, BODY, {}, 10) == 2

    def test_transformed_source(self, response) -> None:
        assertion = _assertion(
            assertion_type="json_body", data_source="transformed_data", data_id="$.token"
        )
        assert extract_actual_value(assertion, response, BODY, {"token": "t"}, 10) == "t"

    def test_missing_locator(self, response) -> None:
        with pytest.raises(AssertionConfigError):
            extract_actual_value(_assertion(assertion_type="json_body"), response, BODY, {}, 10)


class TestRunAssertion:
    def test_passed_message(self, response) -> None:
        assertion = _assertion(
            assertion_type="json_body", data_id="$.user.name", expected_value="Alice"
        )
        result = run_assertion(assertion, response, BODY, {}, 10)
        assert result.passed
        assert result.message == "Assertion passed: json_body $.user.name equals Alice"
        assert result.actual_value == "Alice"

    def test_failed_message_includes_actual(self, response) -> None:
        assertion = _assertion(
            assertion_type="json_body", data_id="$.user.name", expected_value="Bob"
        )
        result = run_assertion(assertion, response, BODY, {}, 10)
        assert not result.passed
        assert result.message == (
            "Assertion failed: json_body $.user.name equals Bob, actual value: Alice"
        )

    def test_null_value_is_present(self, response) -> None:
        exists = _assertion(assertion_type="json_body", data_id="$.user.manager", operator="exists")
        assert run_assertion(exists, response, BODY, {}, 10).passed
        missing = _assertion(assertion_type="json_body", data_id="$.user.email", operator="exists")
        result = run_assertion(missing, response, BODY, {}, 10)
        assert not result.passed
        assert result.message.endswith("actual value: <missing>")

    def test_config_error_becomes_failed_result(self, response) -> None:
        result = run_assertion(_assertion(assertion_type="json_body"), response, BODY, {}, 10)
        assert not result.passed
        assert result.message.startswith("Assertion error:")
        assert result.error == "A json_body assertion requires a data locator"

    def test_unknown_operator_becomes_failed_result(self, response) -> None:
        result = run_assertion(_assertion(operator="roughly"), response, BODY, {}, 10)
        assert not result.passed
        assert "Unknown operator" in result.error

    def test_template_expected_value(self, response) -> None:
        context = build_template_context(parameters={"expected_name": "Alice"})
        assertion = _assertion(
            assertion_type="json_body",
            data_id="$.user.name",
            expected_value="{{param:expected_name}}",
            is_template_expression=True,
        )
        result = run_assertion(assertion, response, BODY, {}, 10, context)
        assert result.passed
        assert result.expected_value == "Alice"
        assert result.original_expected_value == "{{param:expected_name}}"

    def test_response_time(self, response) -> None:
        assertion = _assertion(
            assertion_type="response_time", operator="less_than", expected_value=1000
        )
        assert run_assertion(assertion, response, BODY, {}, 50).passed


class TestRunAssertions:
    def test_all_run_and_failures_joined(self, response) -> None:
        assertions = [
            _assertion(id="a1", expected_value=201),
            _assertion(id="a2", expected_value=200),
            _assertion(
                id="a3", assertion_type="json_body", data_id="$.user.age",
                operator="greater_than", expected_value=40,
            ),
            _assertion(id="a4", expected_value=500, enabled=False),
        ]
        outcome = run_assertions(assertions, response, BODY, {}, 10)
        assert not outcome.passed
        assert [r.assertion_id for r in outcome.results] == ["a1", "a2", "a3"]
        assert outcome.failure_message.count("; ") == 1
        assert outcome.failure_message.startswith("Assertion failed: status_code equals 201")

    def test_no_assertions_pass(self, response) -> None:
        outcome = run_assertions([], response, BODY, {}, 10)
        assert outcome.passed
        assert outcome.failure_message is None
