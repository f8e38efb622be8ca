"""Tests for the rate limiting HTTP integration."""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

from admission_gate.main import rate_limit_exceeded_handler
from admission_gate.rl import (
    AUTHENTICATION,
    METERED,
    UPLOAD,
    EnvironmentFlagBypass,
    Policy,
    RateLimiter,
    RateLimitExceededError,
    RateLimitGuard,
    RateLimitMiddleware,
    RouteBinding,
    StoreFailureMode,
    report_outcome
)


def make_limiter(policy, store, clock):
    return RateLimiter(policy, store, on_store_failure=StoreFailureMode.FAIL_OPEN, clock=clock)


def build_app(bindings, guard=None, trust_forwarded_for=True):
    """Small application guarded by the middleware, with a fake auth layer."""
    app = FastAPI()
    app.state.handler_calls = 0
    app.add_middleware(RateLimitMiddleware, bindings=bindings, trust_forwarded_for=trust_forwarded_for)
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)

    @app.middleware("http")
    async def fake_authentication(request: Request, call_next):
        user = request.headers.get("X-Test-User")
        if user:
            request.state.user_id = user
        return await call_next(request)

    @app.get("/ping")
    async def ping(request: Request):
        request.app.state.handler_calls += 1
        return {"ok": True}

    @app.post("/auth/login")
    async def login(request: Request):
        body = await request.json()
        succeeded = body.get("password") == "correct"
        report_outcome(request, succeeded)
        if not succeeded:
            return JSONResponse(status_code=401, content={"detail": "Invalid credentials"})
        return {"token": "t"}

    @app.post("/auth/login-twice")
    async def login_twice(request: Request):
        first = report_outcome(request, False)
        second = report_outcome(request, False)
        return {"first": first, "second": second}

    @app.post("/generation/daily")
    async def generate(request: Request):
        return {"post": "generated"}

    if guard is not None:
        @app.post("/upload", dependencies=[Depends(guard)])
        async def upload():
            return {"uploaded": True}

    return app


def from_ip(ip, **headers):
    return {"X-Forwarded-For": ip, **headers}


class TestRouteBinding:
    """Test path prefix matching."""

    @pytest.fixture
    def limiter(self, store, clock):
        return make_limiter(METERED, store, clock)

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/generation", True),
            ("/generation/", True),
            ("/generation/daily", True),
            ("/generations", False),
            ("/tone/extract", True),
            ("/tone", False),
            ("/health", False),
        ],
    )
    def test_prefix_matching(self, limiter, path, expected):
        """Test a prefix covers itself and its sub-paths only."""
        binding = RouteBinding(limiter, ("/generation", "/tone/extract/"))
        assert binding.matches(path) is expected

    def test_no_prefixes_matches_everything(self, limiter):
        """Test an unscoped binding applies to every path."""
        assert RouteBinding(limiter).matches("/anything/at/all") is True


class TestRateLimitMiddlewareDispatch:
    """Test middleware dispatch without a full application."""

    @pytest.mark.asyncio
    async def test_skips_unbound_paths(self, store, clock):
        """Test requests outside every binding go straight through."""
        limiter = make_limiter(METERED, store, clock)
        middleware = RateLimitMiddleware(Mock(), bindings=[RouteBinding(limiter, ("/generation",))])
        request = Mock()
        request.url.path = "/health"
        call_next = AsyncMock(return_value="success")

        result = await middleware.dispatch(request, call_next)

        assert result == "success"
        call_next.assert_called_once()
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_disabled_without_bindings(self):
        """Test the middleware is a pass-through with no bindings."""
        middleware = RateLimitMiddleware(Mock())
        request = Mock()
        request.url.path = "/generation"
        call_next = AsyncMock(return_value="success")

        assert await middleware.dispatch(request, call_next) == "success"


class TestGeneralLimiting:
    """Test the middleware against an application."""

    @pytest.fixture
    def limiter(self, store, clock):
        return make_limiter(Policy(name="general", window_seconds=900, max_events=3, message="Too many requests."), store, clock)

    def test_allows_then_rejects(self, limiter):
        """Test the (max+1)th request gets a 429 and never reaches the handler."""
        app = build_app([RouteBinding(limiter)])
        client = TestClient(app)

        for remaining in (2, 1, 0):
            response = client.get("/ping", headers=from_ip("198.51.100.1"))
            assert response.status_code == 200
            assert response.headers["RateLimit-Limit"] == "3"
            assert response.headers["RateLimit-Remaining"] == str(remaining)
            assert response.headers["RateLimit-Reset"] == "900"

        response = client.get("/ping", headers=from_ip("198.51.100.1"))

        assert response.status_code == 429
        assert response.json() == {"detail": "Too many requests.", "error_code": "rate_limit_exceeded"}
        assert response.headers["Retry-After"] == "900"
        assert response.headers["RateLimit-Remaining"] == "0"
        assert app.state.handler_calls == 3

    def test_clients_are_isolated_by_address(self, limiter):
        """Test a throttled address does not affect another one."""
        client = TestClient(build_app([RouteBinding(limiter)]))

        for _ in range(4):
            client.get("/ping", headers=from_ip("198.51.100.1"))

        assert client.get("/ping", headers=from_ip("::ffff:198.51.100.2")).status_code == 200

    def test_ipv4_mapped_address_shares_quota(self, limiter):
        """Test two spellings of one client share one quota."""
        client = TestClient(build_app([RouteBinding(limiter)]))

        client.get("/ping", headers=from_ip("198.51.100.1"))
        client.get("/ping", headers=from_ip("::ffff:198.51.100.1"))
        client.get("/ping", headers=from_ip("198.51.100.1"))

        assert client.get("/ping", headers=from_ip("::ffff:198.51.100.1")).status_code == 429

    def test_forwarded_for_ignored_when_untrusted(self, limiter):
        """Test clients cannot choose their key without a trusted proxy."""
        client = TestClient(build_app([RouteBinding(limiter)], trust_forwarded_for=False))

        for i in range(3):
            assert client.get("/ping", headers=from_ip(f"198.51.100.{i}")).status_code == 200

        assert client.get("/ping", headers=from_ip("198.51.100.99")).status_code == 429

    def test_client_written_hops_do_not_change_the_key(self, limiter):
        """Test rotating a prepended X-Forwarded-For entry cannot escape the limit."""
        app = build_app([RouteBinding(limiter)])
        client = TestClient(app)

        statuses = [
            client.get("/ping", headers=from_ip(f"10.0.0.{i}, 198.51.100.7")).status_code
            for i in range(10)
        ]

        assert statuses == [200, 200, 200] + [429] * 7
        assert app.state.handler_calls == 3

    def test_trusted_hops_select_client_behind_proxy_chain(self, store, clock):
        """Test a two-proxy chain keys by the address the outer proxy recorded."""
        limiter = make_limiter(Policy(name="general", window_seconds=900, max_events=1), store, clock)
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, bindings=[RouteBinding(limiter)], trust_forwarded_for=True, trusted_hops=2)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        client = TestClient(app)

        assert client.get("/ping", headers=from_ip("10.0.0.1, 198.51.100.7, 172.16.0.2")).status_code == 200
        assert client.get("/ping", headers=from_ip("10.0.0.2, 198.51.100.7, 172.16.0.2")).status_code == 429
        assert client.get("/ping", headers=from_ip("198.51.100.8, 172.16.0.2")).status_code == 200

    def test_window_reset_readmits(self, limiter, clock):
        """Test a throttled client is admitted again once its window elapses."""
        client = TestClient(build_app([RouteBinding(limiter)]))
        for _ in range(4):
            client.get("/ping", headers=from_ip("198.51.100.1"))

        clock.advance(900)

        assert client.get("/ping", headers=from_ip("198.51.100.1")).status_code == 200

    def test_environment_bypass(self, store, clock, monkeypatch):
        """Test the development flag disables limiting without counting."""
        policy = Policy(name="general", window_seconds=900, max_events=1, bypass=EnvironmentFlagBypass())
        client = TestClient(build_app([RouteBinding(make_limiter(policy, store, clock))]))
        monkeypatch.setenv("SKIP_RATE_LIMIT", "true")

        for _ in range(5):
            response = client.get("/ping", headers=from_ip("198.51.100.1"))
            assert response.status_code == 200
            assert "RateLimit-Limit" not in response.headers
        assert len(store) == 0

        monkeypatch.setenv("SKIP_RATE_LIMIT", "false")
        assert client.get("/ping", headers=from_ip("198.51.100.1")).status_code == 200
        assert client.get("/ping", headers=from_ip("198.51.100.1")).status_code == 429


class TestAuthenticationLimiting:
    """Test failure-only counting through the HTTP layer."""

    @pytest.fixture
    def client(self, store, clock):
        limiter = make_limiter(AUTHENTICATION, store, clock)
        return TestClient(build_app([RouteBinding(limiter, ("/auth/login",))]))

    def test_failed_logins_block_the_eleventh_attempt(self, client):
        """Test ten failed logins lock out the address, but not others."""
        for _ in range(10):
            response = client.post("/auth/login", json={"password": "wrong"}, headers=from_ip("203.0.113.9"))
            assert response.status_code == 401

        response = client.post("/auth/login", json={"password": "correct"}, headers=from_ip("203.0.113.9"))
        assert response.status_code == 429
        assert response.json()["detail"] == "Too many authentication attempts, please try again later."

        response = client.post("/auth/login", json={"password": "wrong"}, headers=from_ip("198.51.100.4"))
        assert response.status_code == 401

    def test_successful_logins_are_free(self, client):
        """Test successes never consume the authentication quota."""
        for _ in range(25):
            response = client.post("/auth/login", json={"password": "correct"}, headers=from_ip("203.0.113.9"))
            assert response.status_code == 200
            assert response.headers["RateLimit-Remaining"] == "10"

    def test_outcome_settles_once(self, store, clock):
        """Test a handler reporting twice only counts one failure."""
        limiter = make_limiter(AUTHENTICATION, store, clock)
        client = TestClient(build_app([RouteBinding(limiter, ("/auth",))]))

        response = client.post("/auth/login-twice", headers=from_ip("203.0.113.9"))

        assert response.json() == {"first": 1, "second": 0}
        assert store.peek("authentication:ip:203.0.113.9", clock.now, 900)[0] == 1


class TestMeteredLimiting:
    """Test per-identity limiting through the HTTP layer."""

    def test_users_behind_one_ip_are_isolated(self, store, clock):
        """Test one user exhausting quota leaves a colleague on the same IP alone."""
        limiter = make_limiter(METERED, store, clock)
        client = TestClient(build_app([RouteBinding(limiter, ("/generation",))]))
        office_ip = "192.0.2.50"

        for _ in range(20):
            assert client.post("/generation/daily", headers=from_ip(office_ip, **{"X-Test-User": "a"})).status_code == 200

        denied = client.post("/generation/daily", headers=from_ip(office_ip, **{"X-Test-User": "a"}))
        assert denied.status_code == 429
        assert denied.headers["RateLimit-Remaining"] == "0"

        allowed = client.post("/generation/daily", headers=from_ip(office_ip, **{"X-Test-User": "b"}))
        assert allowed.status_code == 200
        assert allowed.headers["RateLimit-Remaining"] == "19"

    def test_tightest_decision_is_reported(self, store, clock):
        """Test stacked limiters report the quota closest to exhaustion."""
        general = make_limiter(Policy(name="general", window_seconds=900, max_events=150), store, clock)
        metered = make_limiter(METERED, store, clock)
        client = TestClient(build_app([RouteBinding(general), RouteBinding(metered, ("/generation",))]))

        response = client.post("/generation/daily", headers=from_ip("192.0.2.50"))

        assert response.headers["RateLimit-Limit"] == "20"
        assert response.headers["RateLimit-Remaining"] == "19"

        ping = client.get("/ping", headers=from_ip("192.0.2.50"))
        assert ping.headers["RateLimit-Limit"] == "150"
        assert ping.headers["RateLimit-Remaining"] == "148"


class TestRateLimitGuard:
    """Test the per-route dependency."""

    def test_guard_sets_headers_and_rejects(self, store, clock):
        """Test the guard reports quota and renders denials as 429."""
        guard = RateLimitGuard(make_limiter(UPLOAD, store, clock), trust_forwarded_for=True)
        client = TestClient(build_app([], guard=guard))

        for remaining in range(14, -1, -1):
            response = client.post("/upload", headers=from_ip("198.51.100.7"))
            assert response.status_code == 200
            assert response.headers["RateLimit-Remaining"] == str(remaining)

        response = client.post("/upload", headers=from_ip("198.51.100.7"))

        assert response.status_code == 429
        assert response.json()["detail"] == "Too many upload requests, please try again later."
        assert response.headers["Retry-After"] == "900"
