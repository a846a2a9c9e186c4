"""Shared test fixtures for the flow engine."""
import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from flowengine.models import FlowDefinition

# Path to test fixtures
FIXTURES_DIR = Path(__file__).parent / "fixtures"

API_HOST = "https://api.example.test"


class FakeApi:
    """In-memory stand-in for the API the sample flow talks to."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.fail_paths: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path in self.fail_paths:
            return httpx.Response(self.fail_paths[path], json={"error": "boom"})
        if path == "/auth/login" and request.method == "POST":
            body = json.loads(request.content or b"{}")
            if body.get("password") != "secret":
                return httpx.Response(401, json={"error": "bad credentials"})
            return httpx.Response(
                200,
                json={"token": "tok-123", "user_id": 42},
                headers={"Set-Cookie": "session=abc123; Path=/; HttpOnly"},
            )
        if path == "/users/42":
            return httpx.Response(
                200,
                json={"id": 42, "name": "Alice", "roles": ["admin", "dev"]},
                headers={"X-Request-Id": "req-1"},
            )
        if path == "/users/42/orders":
            return httpx.Response(
                200,
                json={
                    "orders": [
                        {"id": 1, "amount": 30, "status": "paid"},
                        {"id": 2, "amount": 12.5, "status": "open"},
                        {"id": 3, "amount": 7.5, "status": "paid"},
                    ]
                },
            )
        if path == "/users/42/profile":
            return httpx.Response(200, text="<p>profile</p>", headers={"Content-Type": "text/html"})
        return httpx.Response(404, json={"error": "not found"})

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def fixtures_dir() -> Path:
    """Path to test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_flow_data() -> dict[str, Any]:
    """Load the sample flow as a dict."""
    with open(FIXTURES_DIR / "user_journey.flow.json") as f:
        return json.load(f)


@pytest.fixture
def sample_flow(sample_flow_data: dict[str, Any]) -> FlowDefinition:
    return FlowDefinition.model_validate(sample_flow_data)


@pytest.fixture
def sample_flow_path(tmp_path: Path, sample_flow_data: dict[str, Any]) -> Path:
    """Write sample flow to a temp directory and return the directory path."""
    flow_path = tmp_path / "user_journey.flow.json"
    with open(flow_path, "w") as f:
        json.dump(sample_flow_data, f)
    return tmp_path


@pytest.fixture
def fake_api() -> FakeApi:
    return FakeApi()


@pytest.fixture
async def http_client(fake_api: FakeApi):
    """httpx client whose requests are answered by the fake API."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_api.handler)) as client:
        yield client
