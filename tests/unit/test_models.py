"""Tests for Pydantic models."""

import pytest
from pydantic import ValidationError

from flowengine.models import (
    EndpointDefinition,
    EndpointExecutionState,
    ExecutionPreferences,
    FlowDefinition,
    FlowSettings,
    StepEndpoint,
)


class TestFlowDefinition:
    def test_from_fixture(self, sample_flow_data) -> None:
        flow = FlowDefinition.model_validate(sample_flow_data)
        assert flow.flow_id == "user_journey"
        assert [s.step_id for s in flow.steps] == ["step1", "step2", "step3"]
        assert flow.settings.api_hosts["1"].url == "https://api.example.test"
        assert flow.parameters[0].default_value == "alice"

    def test_camel_case_keys(self) -> None:
        flow = FlowDefinition.model_validate(
            {
                "flowId": "f",
                "steps": [
                    {
                        "step_id": "step1",
                        "clearCookiesBeforeExecution": True,
                        "endpoints": [
                            {
                                "endpoint_id": 12,
                                "api_id": 1,
                                "pathParams": {"id": "1"},
                                "skipDefaultStatusCheck": True,
                            }
                        ],
                    }
                ],
            }
        )
        step = flow.steps[0]
        assert step.clear_cookies_before_execution
        assert step.endpoints[0].endpoint_id == "12"
        assert step.endpoints[0].api_id == "1"
        assert step.endpoints[0].skip_default_status_check

    def test_steps_may_be_missing(self) -> None:
        assert FlowDefinition.model_validate({"steps": None}).steps is None

    def test_endpoint_lookup(self, sample_flow) -> None:
        assert sample_flow.endpoint("login").method == "POST"
        assert sample_flow.endpoint("nope") is None


class TestFlowSettings:
    def test_string_hosts_normalized(self) -> None:
        settings = FlowSettings.model_validate({"api_hosts": {1: "https://a.test"}})
        assert settings.api_hosts["1"].url == "https://a.test"


class TestEndpointDefinition:
    def test_parameter_aliases(self) -> None:
        definition = EndpointDefinition.model_validate(
            {
                "id": 5,
                "path": "/x",
                "parameters": [
                    {"name": "ids", "in": "query", "schema": {"type": "array"}},
                    {"name": "q", "in": "query", "type": "string"},
                ],
            }
        )
        assert definition.id == "5"
        assert definition.parameter("ids").location == "query"
        assert definition.parameter("ids").is_array
        assert not definition.parameter("q").is_array
        assert definition.parameter("missing") is None


class TestExecutionPreferences:
    def test_defaults(self) -> None:
        prefs = ExecutionPreferences()
        assert prefs.stop_on_error
        assert not prefs.parallel_execution
        assert not prefs.server_cookie_handling
        assert prefs.timeout == 30000

    def test_aliases(self) -> None:
        prefs = ExecutionPreferences.model_validate(
            {"parallelExecution": True, "serverCookieHandling": True, "retryCount": 2}
        )
        assert prefs.parallel_execution
        assert prefs.server_cookie_handling
        assert prefs.retry_count == 2

    @pytest.mark.parametrize("field,value", [("timeout", 500), ("timeout", 60001), ("retry_count", 6)])
    def test_bounds(self, field: str, value: int) -> None:
        with pytest.raises(ValidationError):
            ExecutionPreferences(**{field: value})


class TestRuntimeModels:
    def test_endpoint_state_is_frozen(self) -> None:
        state = EndpointExecutionState(status="running")
        with pytest.raises(ValidationError):
            state.status = "completed"

    def test_step_endpoint_defaults(self) -> None:
        endpoint = StepEndpoint(endpoint_id="e", api_id="1")
        assert endpoint.headers == []
        assert endpoint.body is None
        assert not endpoint.skip_default_status_check
