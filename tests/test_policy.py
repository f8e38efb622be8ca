"""Tests for rate limiting policies."""

import pytest

from admission_gate.rl import (
    AUTHENTICATION,
    GENERAL,
    METERED,
    UPLOAD,
    CountingMode,
    EnvironmentFlagBypass,
    Policy,
    RequestContext,
    any_bypass,
    by_authenticated_identity,
    by_remote_address,
    default_policies,
    never_bypass
)
from admission_gate.rl.exceptions import RateLimitConfigurationError


class TestPolicyValidation:
    """Test policy invariants."""

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"max_events": 0, "window_seconds": 60}, "max_events"),
            ({"max_events": 1, "window_seconds": 0}, "window_seconds"),
            ({"max_events": 1, "window_seconds": -5}, "window_seconds"),
        ],
    )
    def test_invalid_policy_rejected(self, kwargs, field):
        """Test max_events >= 1 and window_seconds > 0 are enforced."""
        with pytest.raises(RateLimitConfigurationError) as exc_info:
            Policy(name="bad", **kwargs)
        assert exc_info.value.config_field == field

    def test_empty_name_rejected(self):
        """Test a policy needs a name to namespace its keys."""
        with pytest.raises(RateLimitConfigurationError):
            Policy(name="", window_seconds=60, max_events=1)

    def test_policy_is_immutable(self):
        """Test policies cannot be changed after construction."""
        with pytest.raises(AttributeError):
            GENERAL.max_events = 1000

    def test_with_bypass_returns_copy(self):
        """Test swapping the bypass predicate leaves the original alone."""
        bypassing = GENERAL.with_bypass(lambda ctx: True)

        assert bypassing.bypass(RequestContext()) is True
        assert GENERAL.bypass(RequestContext()) is False
        assert bypassing.max_events == GENERAL.max_events


class TestProductPolicies:
    """Test the four product policy tunables."""

    @pytest.mark.parametrize(
        "policy, window, max_events, mode, strategy",
        [
            (GENERAL, 900, 150, CountingMode.ALL_REQUESTS, by_remote_address),
            (AUTHENTICATION, 900, 10, CountingMode.FAILURES_ONLY, by_remote_address),
            (METERED, 3600, 20, CountingMode.ALL_REQUESTS, by_authenticated_identity),
            (UPLOAD, 900, 15, CountingMode.ALL_REQUESTS, by_remote_address),
        ],
    )
    def test_tunables(self, policy, window, max_events, mode, strategy):
        """Test each policy keeps its exact window, limit, mode and key."""
        assert policy.window_seconds == window
        assert policy.max_events == max_events
        assert policy.counting_mode is mode
        assert policy.key_strategy is strategy

    def test_authentication_message(self):
        """Test the authentication policy's denial message."""
        assert AUTHENTICATION.message == "Too many authentication attempts, please try again later."

    def test_default_policies_share_bypass(self):
        """Test the policy table injects one bypass predicate everywhere."""
        bypass = lambda ctx: True  # noqa: E731
        policies = default_policies(bypass)

        assert set(policies) == {"general", "authentication", "metered", "upload"}
        assert all(p.bypass is bypass for p in policies.values())

    def test_default_policies_default_to_never_bypass(self):
        """Test the table is not bypassed unless asked."""
        assert all(p.bypass is never_bypass for p in default_policies().values())


class TestBypassPredicates:
    """Test bypass predicates."""

    def test_environment_flag_read_per_call(self, monkeypatch):
        """Test the flag is evaluated on every call, not cached."""
        bypass = EnvironmentFlagBypass("SKIP_RATE_LIMIT")
        ctx = RequestContext()

        assert bypass(ctx) is False

        monkeypatch.setenv("SKIP_RATE_LIMIT", "true")
        assert bypass(ctx) is True

        monkeypatch.setenv("SKIP_RATE_LIMIT", "false")
        assert bypass(ctx) is False

    @pytest.mark.parametrize("value", ["1", "TRUE", "yes", " on "])
    def test_environment_flag_truthy_values(self, monkeypatch, value):
        """Test common truthy spellings enable the bypass."""
        monkeypatch.setenv("CUSTOM_SKIP", value)
        assert EnvironmentFlagBypass("CUSTOM_SKIP")(RequestContext()) is True

    def test_any_bypass(self):
        """Test predicates combine with OR semantics."""
        is_health = lambda ctx: ctx.path == "/health"  # noqa: E731
        combined = any_bypass(never_bypass, is_health)

        assert combined(RequestContext(path="/health")) is True
        assert combined(RequestContext(path="/generation")) is False
