"""Proxy server — FastAPI app that relays flow requests to target APIs.

Used when a flow runs with server-side cookie handling: the engine sends each
request here together with the cookies collected so far, and gets back the
response plus every cookie the target set.
"""

from __future__ import annotations

import ipaddress
import json
import os
from contextlib import asynccontextmanager
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any
from urllib.parse import urlsplit

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from flowengine import __version__
from flowengine.cookies import build_cookie_header
from flowengine.logger import get_logger
from flowengine.models import Cookie

log = get_logger(__name__)

ALLOWED_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}
_BLOCKED_SUFFIXES = (".local", ".internal", ".localhost")

# Outbound client, created lazily so tests can swap in a mock transport.
_client: httpx.AsyncClient | None = None


class _RejectAllCookies(DefaultCookiePolicy):
    """Cookies belong to the caller, never to the shared outbound client."""

    def set_ok(self, cookie, request) -> bool:
        return False


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            follow_redirects=True,
            cookies=CookieJar(policy=_RejectAllCookies()),
        )
    return _client


def _allow_private_networks() -> bool:
    return os.environ.get("PROXY_ALLOW_PRIVATE_NETWORKS", "false").lower() == "true"


def _default_timeout() -> float:
    return float(os.environ.get("PROXY_TIMEOUT_S", "30"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Close the outbound client on shutdown."""
    yield
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


app = FastAPI(title="Flow Request Proxy", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request/Response models ---


class ProxyRequest(BaseModel):
    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None
    cookies: list[Cookie] = Field(default_factory=list)
    timeout_ms: int | None = None


class ProxyResponse(BaseModel):
    status: int
    status_text: str
    headers: dict[str, str]
    body: Any = None
    cookies: list[Cookie] = Field(default_factory=list)


# --- Helpers ---


def is_blocked_host(host: str) -> bool:
    """Loopback, private and link-local targets are refused."""
    host = host.strip("[]").lower()
    if host == "localhost" or host.endswith(_BLOCKED_SUFFIXES):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


def validate_target(url: str) -> str:
    """Return the target hostname or raise an HTTP error."""
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid URL: {url}") from exc
    if parts.scheme not in ("http", "https"):
        raise HTTPException(
            status_code=400, detail="Only http and https URLs are allowed"
        )
    host = parts.hostname
    if not host:
        raise HTTPException(status_code=400, detail=f"Invalid URL: {url}")
    if not _allow_private_networks() and is_blocked_host(host):
        raise HTTPException(
            status_code=403, detail=f"Requests to {host} are not allowed"
        )
    return host


def parse_set_cookie(header: str, default_domain: str) -> Cookie | None:
    """Parse one Set-Cookie header value."""
    parts = [p.strip() for p in header.split(";")]
    name, sep, value = parts[0].partition("=")
    if not sep or not name.strip():
        return None
    cookie = Cookie(
        name=name.strip(),
        value=value.strip().strip('"'),
        domain=default_domain,
    )
    for attribute in parts[1:]:
        key, _, attr_value = attribute.partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()
        if key == "domain" and attr_value:
            cookie.domain = attr_value.lstrip(".")
        elif key == "path" and attr_value:
            cookie.path = attr_value
        elif key == "expires":
            cookie.expires = attr_value
        elif key == "max-age":
            try:
                cookie.max_age = int(attr_value)
            except ValueError:
                log.debug("cookie_bad_max_age", cookie=cookie.name, value=attr_value)
        elif key == "secure":
            cookie.secure = True
        elif key == "httponly":
            cookie.http_only = True
        elif key == "samesite":
            cookie.same_site = attr_value
    return cookie


def _response_body(response: httpx.Response) -> Any:
    if "application/json" in response.headers.get("content-type", ""):
        try:
            return response.json()
        except json.JSONDecodeError:
            return response.text
    return response.text


# --- API Endpoints ---


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/proxy/request")
async def proxy_request(req: ProxyRequest) -> ProxyResponse:
    """Forward one request to its target and report the response."""
    method = req.method.upper()
    if method not in ALLOWED_METHODS:
        raise HTTPException(status_code=400, detail=f"Unsupported method: {req.method}")
    host = validate_target(req.url)

    headers = dict(req.headers)
    cookies = [c for c in req.cookies if c.value]
    if cookies:
        headers["Cookie"] = build_cookie_header(cookies)

    timeout = req.timeout_ms / 1000 if req.timeout_ms else _default_timeout()
    try:
        response = await _get_client().request(
            method,
            req.url,
            headers=headers,
            content=req.body,
            timeout=timeout,
        )
    except httpx.TimeoutException as exc:
        log.warning("proxy_timeout", url=req.url)
        raise HTTPException(status_code=504, detail="Upstream request timed out") from exc
    except httpx.HTTPError as exc:
        log.warning("proxy_upstream_failed", url=req.url, error=str(exc))
        raise HTTPException(status_code=502, detail=f"Upstream request failed: {exc}") from exc

    parsed = [
        parse_set_cookie(value, host)
        for value in response.headers.get_list("set-cookie")
    ]
    log.info(
        "proxy_request_forwarded",
        method=method,
        url=req.url,
        status=response.status_code,
    )
    return ProxyResponse(
        status=response.status_code,
        status_text=response.reason_phrase,
        headers={k: v for k, v in response.headers.items() if k != "set-cookie"},
        body=_response_body(response),
        cookies=[c for c in parsed if c is not None],
    )


def main() -> None:
    """Run the proxy server."""
    port = int(os.environ.get("PROXY_PORT", "8002"))
    uvicorn.run(app, host="0.0.0.0", port=port, loop="asyncio")


if __name__ == "__main__":
    main()
