"""Per-run cookie storage keyed by endpoint."""

from __future__ import annotations

from typing import Literal
from urllib.parse import urlsplit

from flowengine.logger import get_logger
from flowengine.models import Cookie

log = get_logger(__name__)

CookieMode = Literal["native", "explicit"]


def domain_matches(cookie_domain: str, host: str) -> bool:
    """RFC 6265 domain match; an empty cookie domain matches any host."""
    domain = cookie_domain.lstrip(".").lower()
    host = host.lower()
    if not domain:
        return True
    return host == domain or host.endswith("." + domain)


def build_cookie_header(cookies: list[Cookie]) -> str:
    return "; ".join(f"{c.name}={c.value}" for c in cookies)


class CookieJar:
    """Cookies observed during a run.

    In ``native`` mode the HTTP client replays cookies itself and the jar only
    mirrors them for display. In ``explicit`` mode (proxied requests) the jar
    supplies cookies for every request: all of them, or only those matching
    the target when ``scope_by_domain`` is set.
    """

    def __init__(self, mode: CookieMode = "native", scope_by_domain: bool = False) -> None:
        self.mode = mode
        self.scope_by_domain = scope_by_domain
        self._by_endpoint: dict[str, list[Cookie]] = {}

    def configure(self, mode: CookieMode, scope_by_domain: bool = False) -> None:
        self.mode = mode
        self.scope_by_domain = scope_by_domain

    def record(self, endpoint_key: str, cookies: list[Cookie]) -> None:
        """Store the cookies one endpoint returned, replacing its earlier entry."""
        if not cookies:
            return
        self._by_endpoint[endpoint_key] = list(cookies)
        log.debug("cookies_recorded", endpoint=endpoint_key, count=len(cookies))

    def all(self) -> list[Cookie]:
        """Every stored cookie; later records win for the same name/domain/path."""
        merged: dict[tuple[str, str, str], Cookie] = {}
        for cookies in self._by_endpoint.values():
            for cookie in cookies:
                key = (cookie.name, cookie.domain.lstrip(".").lower(), cookie.path)
                merged.pop(key, None)
                merged[key] = cookie
        return list(merged.values())

    def by_endpoint(self) -> dict[str, list[Cookie]]:
        return {key: list(cookies) for key, cookies in self._by_endpoint.items()}

    def cookies_for(self, url: str | None = None) -> list[Cookie]:
        """Cookies to attach explicitly to a request for ``url``."""
        if self.mode == "native":
            return []
        cookies = [c for c in self.all() if c.value]
        if not self.scope_by_domain or not url:
            return cookies
        parts = urlsplit(url)
        host = parts.hostname or ""
        path = parts.path or "/"
        return [
            c
            for c in cookies
            if domain_matches(c.domain, host) and path.startswith(c.path or "/")
        ]

    def clear(self) -> None:
        self._by_endpoint.clear()

    def __len__(self) -> int:
        return len(self.all())
