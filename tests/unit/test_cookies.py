"""Tests for the cookie jar and the execution state store."""

from flowengine.cookies import CookieJar, build_cookie_header, domain_matches
from flowengine.models import Cookie, ExecutionStateSnapshot
from flowengine.state import ExecutionStateStore, endpoint_key


def _cookie(name: str, value: str = "v", domain: str = "api.example.test", path: str = "/") -> Cookie:
    return Cookie(name=name, value=value, domain=domain, path=path)


class TestDomainMatching:
    def test_exact_and_subdomain(self) -> None:
        assert domain_matches("example.test", "example.test")
        assert domain_matches(".example.test", "api.example.test")
        assert not domain_matches("example.test", "badexample.test")

    def test_empty_domain_matches_anything(self) -> None:
        assert domain_matches("", "anything.test")

    def test_cookie_header(self) -> None:
        header = build_cookie_header([_cookie("a", "1"), _cookie("b", "2")])
        assert header == "a=1; b=2"


class TestCookieJar:
    def test_native_mode_supplies_nothing(self) -> None:
        jar = CookieJar("native")
        jar.record("step1-0", [_cookie("session")])
        assert jar.cookies_for("https://api.example.test/x") == []
        assert len(jar) == 1

    def test_explicit_mode_replays_everything(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("session", domain="auth.example.test")])
        jar.record("step2-0", [_cookie("pref", domain="other.test")])
        names = [c.name for c in jar.cookies_for("https://api.example.test/users")]
        assert names == ["session", "pref"]

    def test_domain_scoping(self) -> None:
        jar = CookieJar("explicit", scope_by_domain=True)
        jar.record("step1-0", [_cookie("session", domain=".example.test")])
        jar.record("step2-0", [_cookie("pref", domain="other.test")])
        jar.record("step3-0", [_cookie("admin", path="/admin")])
        names = [c.name for c in jar.cookies_for("https://api.example.test/users")]
        assert names == ["session"]

    def test_record_replaces_endpoint_entry(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("a"), _cookie("b")])
        jar.record("step1-0", [_cookie("c")])
        assert [c.name for c in jar.all()] == ["c"]

    def test_empty_record_keeps_previous_cookies(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("a")])
        jar.record("step1-0", [])
        assert [c.name for c in jar.all()] == ["a"]

    def test_later_cookie_wins(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("session", "old")])
        jar.record("step2-0", [_cookie("session", "new")])
        assert [(c.name, c.value) for c in jar.all()] == [("session", "new")]

    def test_cookies_without_value_not_sent(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("cleared", "")])
        assert jar.cookies_for("https://api.example.test/") == []

    def test_clear(self) -> None:
        jar = CookieJar("explicit")
        jar.record("step1-0", [_cookie("a")])
        jar.clear()
        assert len(jar) == 0
        assert jar.by_endpoint() == {}


class TestExecutionStateStore:
    def test_endpoint_key(self) -> None:
        assert endpoint_key("step1", 0) == "step1-0"

    def test_begin_resets_record(self) -> None:
        store = ExecutionStateStore()
        store.update("step1-0", status="failed", error="boom")
        record = store.begin("step1-0")
        assert record.status == "running"
        assert record.error is None

    def test_update_replaces_record(self) -> None:
        store = ExecutionStateStore()
        first = store.begin("step1-0")
        second = store.update("step1-0", status="completed", timing=12)
        assert first.status == "running"
        assert second.status == "completed"
        assert store.get("step1-0") is second

    def test_observer_receives_snapshots(self) -> None:
        snapshots: list[ExecutionStateSnapshot] = []
        store = ExecutionStateStore(on_update=snapshots.append)
        store.begin("step1-0")
        store.update("step1-0", status="completed")
        store.set_progress(150, current_step=0)
        assert [s.endpoints["step1-0"].status for s in snapshots] == [
            "running",
            "completed",
            "completed",
        ]
        assert snapshots[0].endpoints["step1-0"].status == "running"
        assert snapshots[-1].progress == 100

    def test_failed_keys_and_discard(self) -> None:
        store = ExecutionStateStore()
        store.update("step1-0", status="failed")
        store.update("step1-1", status="completed")
        assert store.failed_keys() == ["step1-0"]
        store.discard(["step1-0", "step9-9"])
        assert store.get("step1-0") is None

    def test_reset(self) -> None:
        store = ExecutionStateStore()
        store.begin("step1-0")
        store.set_progress(40, 1)
        store.reset()
        snapshot = store.snapshot()
        assert snapshot.endpoints == {}
        assert snapshot.progress == 0
        assert snapshot.current_step is None
