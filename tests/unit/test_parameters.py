"""Tests for parameter resolution, flow outputs and environment variables."""

import pytest

from flowengine.environment import (
    MISSING_REQUIRED_VARIABLE,
    SUB_ENVIRONMENT_NOT_FOUND,
    resolve_api_host_overrides,
    resolve_environment_variables,
)
from flowengine.exceptions import EnvironmentResolutionError, ParameterTypeError
from flowengine.models import Environment, FlowDefinition, FlowOutput
from flowengine.outputs import evaluate_outputs
from flowengine.parameters import (
    apply_supplied_values,
    coerce_value,
    find_missing_parameters,
    prepare_parameters,
)
from flowengine.runlog import RunLog
from flowengine.template import build_template_context


def _flow(parameters: list[dict], **settings) -> FlowDefinition:
    return FlowDefinition.model_validate(
        {"flowId": "f", "parameters": parameters, "settings": settings}
    )


@pytest.fixture
def environment() -> Environment:
    return Environment.model_validate(
        {
            "id": 3,
            "name": "Staging",
            "config": {
                "environments": {
                    "eu": {
                        "variables": {"api_key": "k-eu", "region": "eu-west"},
                        "api_hosts": {"1": "https://eu.example.test", "2": ""},
                    },
                    "us": {"variables": {"region": ""}},
                },
                "variable_definitions": {
                    "api_key": {"type": "string", "required": True},
                    "region": {"type": "string", "defaultValue": "global"},
                    "tier": {"type": "string", "defaultValue": "free"},
                },
            },
        }
    )


class TestCoerceValue:
    def test_number(self) -> None:
        assert coerce_value("42", "number") == 42
        assert coerce_value("2.5", "number") == 2.5
        with pytest.raises(ParameterTypeError):
            coerce_value("abc", "number")

    def test_boolean(self) -> None:
        assert coerce_value("yes", "boolean") is True
        assert coerce_value("0", "boolean") is False
        with pytest.raises(ParameterTypeError):
            coerce_value("maybe", "boolean")

    def test_object_and_array(self) -> None:
        assert coerce_value('{"a": 1}', "object") == {"a": 1}
        assert coerce_value("[1, 2]", "array") == [1, 2]
        assert coerce_value("x", "array") == ["x"]
        with pytest.raises(ParameterTypeError):
            coerce_value("[1]", "object")

    def test_string_and_passthrough(self) -> None:
        assert coerce_value(5, "string") == "5"
        assert coerce_value(None, "number") is None
        assert coerce_value("v", None) == "v"


class TestPrepareParameters:
    def test_priority_order(self) -> None:
        flow = _flow(
            [
                {"name": "a", "value": "explicit", "defaultValue": "default"},
                {"name": "b", "defaultValue": "default"},
                {"name": "c", "value": "explicit"},
                {"name": "d", "defaultValue": "default"},
            ],
            linkedEnvironment={"parameterMappings": {"b": "B_VAR", "d": "D_VAR"}},
        )
        values = prepare_parameters(
            flow,
            environment_variables={"B_VAR": "from-env"},
            overrides={"c": "override", "extra": 1},
        )
        assert values == {
            "a": "explicit",
            "b": "from-env",
            "c": "override",
            "d": "default",
            "extra": 1,
        }

    def test_values_converted_to_declared_type(self) -> None:
        flow = _flow([{"name": "n", "type": "number", "defaultValue": "7"}])
        assert prepare_parameters(flow) == {"n": 7}

    def test_failed_conversion_keeps_raw_value(self) -> None:
        run_log = RunLog()
        flow = _flow([{"name": "n", "type": "number"}])
        values = prepare_parameters(flow, overrides={"n": "seven"}, run_log=run_log)
        assert values == {"n": "seven"}
        assert run_log.entries[-1].level == "warning"

    def test_find_missing(self) -> None:
        flow = _flow(
            [
                {"name": "user", "required": True},
                {"name": "token", "required": True, "defaultValue": ""},
                {"name": "opt"},
                {"name": "given", "required": True, "defaultValue": "x"},
            ]
        )
        missing = find_missing_parameters(flow, prepare_parameters(flow))
        assert [p.name for p in missing] == ["user", "token"]

    def test_apply_supplied_values(self) -> None:
        flow = _flow([{"name": "n", "type": "number", "required": True}])
        merged = apply_supplied_values(flow, {"n": None}, {"n": "3", "other": "x"})
        assert merged == {"n": 3, "other": "x"}
        assert find_missing_parameters(flow, merged) == []


class TestEvaluateOutputs:
    def test_static_template_and_cast(self) -> None:
        context = build_template_context(
            responses={"step1-0": {"count": 4}}, parameters={"name": "alice"}
        )
        outputs = [
            FlowOutput(name="static", value="{{param:name}}"),
            FlowOutput(name="greeting", value="hi {{param:name}}", is_template=True),
            FlowOutput(
                name="count", value="{{res:step1-0.$.count}}", is_template=True,
                type="string", cast_to_type=True,
            ),
            FlowOutput(
                name="nested", value={"n": "{{res:step1-0.$.count}}"}, is_template=True
            ),
        ]
        evaluation = evaluate_outputs(outputs, context)
        assert evaluation.values == {
            "static": "{{param:name}}",
            "greeting": "hi alice",
            "count": "4",
            "nested": {"n": 4},
        }
        assert evaluation.errors == {}

    def test_failing_output_is_none_with_error(self) -> None:
        run_log = RunLog()
        outputs = [
            FlowOutput(name="bad", value="{{res:step9-0.$.x}}", is_template=True),
            FlowOutput(name="good", value=1),
        ]
        evaluation = evaluate_outputs(outputs, build_template_context(), run_log)
        assert evaluation.values == {"bad": None, "good": 1}
        assert "step9-0" in evaluation.errors["bad"]
        assert run_log.entries[-1].message.startswith("Error evaluating output 'bad'")

    def test_malformed_output_path_is_captured(self) -> None:
        context = build_template_context(responses={"step1-0": {"items": [1, 2]}})
        outputs = [
            FlowOutput(name="broken", value="{{res:step1-0.$.items[}}", is_template=True),
            FlowOutput(name="sliced", value="{{res:step1-0.$.items[::0]}}", is_template=True),
            FlowOutput(name="first", value="{{res:step1-0.$.items[0]}}", is_template=True),
        ]
        evaluation = evaluate_outputs(outputs, context)
        assert evaluation.values == {"broken": None, "sliced": None, "first": 1}
        assert "Unclosed '['" in evaluation.errors["broken"]
        assert "step cannot be zero" in evaluation.errors["sliced"]


class TestEnvironment:
    def test_values_over_defaults(self, environment) -> None:
        assert environment.id == "3"
        assert resolve_environment_variables(environment, "eu") == {
            "api_key": "k-eu",
            "region": "eu-west",
            "tier": "free",
        }

    def test_unknown_sub_environment(self, environment) -> None:
        with pytest.raises(EnvironmentResolutionError) as exc_info:
            resolve_environment_variables(environment, "apac")
        assert exc_info.value.code == SUB_ENVIRONMENT_NOT_FOUND

    def test_missing_required_variable(self, environment) -> None:
        with pytest.raises(EnvironmentResolutionError) as exc_info:
            resolve_environment_variables(environment, "us")
        assert exc_info.value.code == MISSING_REQUIRED_VARIABLE
        assert "api_key" in str(exc_info.value)

    def test_api_host_overrides(self, environment) -> None:
        assert resolve_api_host_overrides(environment, "eu") == {
            "1": "https://eu.example.test"
        }
        assert resolve_api_host_overrides(environment, "apac") == {}
        assert resolve_api_host_overrides(None, "eu") == {}
