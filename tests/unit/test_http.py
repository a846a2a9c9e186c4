"""Tests for the direct and proxied HTTP transports."""

import json

import httpx
import pytest

from flowengine.exceptions import RequestTimeoutError, TransportError
from flowengine.executor import parse_response_body
from flowengine.http import DirectTransport, OutgoingRequest, ProxyTransport
from flowengine.models import Cookie

PROXY_URL = "http://proxy.test/api/proxy/request"


class TestDirectTransport:
    async def test_json_body_and_response(self, http_client, fake_api) -> None:
        transport = DirectTransport(http_client)
        response = await transport.send(
            OutgoingRequest(
                method="POST",
                url="https://api.example.test/auth/login",
                body={"username": "alice", "password": "secret"},
            ),
            timeout_ms=5000,
        )
        assert response.status == 200
        assert response.status_text == "OK"
        assert json.loads(response.text)["token"] == "tok-123"
        assert response.content_type == "application/json"
        assert [c.name for c in response.cookies] == ["session"]
        assert response.cookies[0].domain == "api.example.test"
        sent = fake_api.requests[-1]
        assert sent.headers["content-type"] == "application/json"

    async def test_scalar_body_matches_proxy_encoding(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await DirectTransport(client).send(
                OutgoingRequest(method="POST", url="https://api.example.test/n", body=True), 1500
            )
        assert seen[0].content == b"true"
        assert seen[0].headers["content-type"] == "application/json"

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RequestTimeoutError, match="timed out after 1500ms"):
                await DirectTransport(client).send(
                    OutgoingRequest(method="GET", url="https://api.example.test/"), 1500
                )

    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="Network error"):
                await DirectTransport(client).send(
                    OutgoingRequest(method="GET", url="https://api.example.test/"), 1500
                )


class TestProxyTransport:
    async def test_relays_request_and_parses_reply(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "status": 201,
                    "status_text": "Created",
                    "headers": {"Content-Type": "application/json"},
                    "body": {"id": 7},
                    "cookies": [{"name": "sid", "value": "xyz"}],
                },
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            transport = ProxyTransport(client, PROXY_URL)
            response = await transport.send(
                OutgoingRequest(
                    method="POST",
                    url="https://api.example.test/items",
                    body={"name": "x"},
                    cookies=[Cookie(name="session", value="abc", domain="api.example.test")],
                ),
                timeout_ms=2000,
            )

        payload = seen[0]
        assert payload["url"] == "https://api.example.test/items"
        assert payload["body"] == '{"name": "x"}'
        assert payload["headers"]["Content-Type"] == "application/json"
        assert payload["cookies"][0]["name"] == "session"
        assert payload["timeout_ms"] == 2000
        assert response.status == 201
        assert response.content_type == "application/json"
        assert json.loads(response.text) == {"id": 7}
        assert response.cookies[0].domain == "api.example.test"

    async def test_upstream_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(504, json={"detail": "Upstream request timed out"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(RequestTimeoutError):
                await ProxyTransport(client, PROXY_URL).send(
                    OutgoingRequest(method="GET", url="https://api.example.test/"), 3000
                )

    async def test_proxy_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"detail": "Target host is not allowed"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(TransportError, match="Proxy error 403: Target host"):
                await ProxyTransport(client, PROXY_URL).send(
                    OutgoingRequest(method="GET", url="http://127.0.0.1/"), 3000
                )

    @pytest.mark.parametrize("body,sent", [(5, "5"), (True, "true"), (2.5, "2.5")])
    async def test_scalar_body_sent_as_json(self, body, sent: str) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200, json={"status": 200, "status_text": "OK", "headers": {}, "body": ""}
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await ProxyTransport(client, PROXY_URL).send(
                OutgoingRequest(method="POST", url="https://api.example.test/n", body=body), 2000
            )
        assert seen[0]["body"] == sent
        assert seen[0]["headers"]["Content-Type"] == "application/json"

    async def test_null_body_is_empty_text(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "status": 204,
                    "status_text": "No Content",
                    "headers": {"content-type": "text/plain"},
                    "body": None,
                },
            )

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await ProxyTransport(client, PROXY_URL).send(
                OutgoingRequest(method="DELETE", url="https://api.example.test/n"), 2000
            )
        assert response.text == ""
        assert parse_response_body(response) == ""
