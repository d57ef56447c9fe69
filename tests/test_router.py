"""Tests for provider ordering."""
import pytest

from selfie_generator.exceptions import (
    DEFAULT_PROVIDER_MISSING,
    DEFAULT_PROVIDER_UNAVAILABLE,
    EXPLICIT_PROVIDER_UNAVAILABLE,
    NO_PROVIDER_AVAILABLE,
    RoutingError,
)
from selfie_generator.models import FallbackPolicy, SelfieConfig
from selfie_generator.router import build_provider_order


def make_config(default_provider: str = "a", enabled: bool = False, order=None) -> SelfieConfig:
    return SelfieConfig(
        default_provider=default_provider,
        fallback=FallbackPolicy(enabled=enabled, order=list(order or [])),
    )


class TestBuildProviderOrder:
    """build_provider_order is pure and returns a de-duplicated list."""

    def test_disabled_fallback_yields_single_provider(self) -> None:
        config = make_config("a", enabled=False, order=["b", "c"])
        assert build_provider_order(None, config, ["a", "b", "c"]) == ["a"]

    def test_default_then_fallback_order(self) -> None:
        config = make_config("a", enabled=True, order=["c", "a", "b", "c"])
        assert build_provider_order(None, config, ["a", "b", "c"]) == ["a", "c", "b"]

    def test_fallback_skips_unavailable_entries(self) -> None:
        config = make_config("a", enabled=True, order=["ghost", "b"])
        assert build_provider_order(None, config, ["a", "b"]) == ["a", "b"]

    def test_empty_fallback_order_uses_remaining_available(self) -> None:
        config = make_config("b", enabled=True)
        assert build_provider_order(None, config, ["a", "b", "c"]) == ["b", "a", "c"]

    def test_explicit_provider_comes_first(self) -> None:
        config = make_config("a", enabled=True, order=["a", "b"])
        assert build_provider_order("b", config, ["a", "b"]) == ["b", "a"]

    def test_explicit_without_fallback(self) -> None:
        config = make_config("a", enabled=False, order=["a"])
        assert build_provider_order("b", config, ["a", "b"]) == ["b"]

    def test_repeated_calls_return_equal_lists(self) -> None:
        config = make_config("a", enabled=True, order=["b"])
        available = ["a", "b"]
        first = build_provider_order(None, config, available)
        second = build_provider_order(None, config, available)
        assert first == second
        assert available == ["a", "b"]
        assert config.fallback.order == ["b"]

    @pytest.mark.parametrize(
        "explicit, default, available, code",
        [
            (None, "a", [], NO_PROVIDER_AVAILABLE),
            ("z", "a", ["a"], EXPLICIT_PROVIDER_UNAVAILABLE),
            (None, "", ["a"], DEFAULT_PROVIDER_MISSING),
            (None, "z", ["a"], DEFAULT_PROVIDER_UNAVAILABLE),
        ],
    )
    def test_routing_errors(self, explicit, default, available, code) -> None:
        with pytest.raises(RoutingError) as exc_info:
            build_provider_order(explicit, make_config(default), available)
        assert exc_info.value.code == code
