"""Tests for provider type inference and registry isolation."""
import asyncio

import pytest

from selfie_generator.ark_client import ArkClient
from selfie_generator.dashscope_client import DashScopeClient
from selfie_generator.exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_FETCH_MISSING,
    PROVIDER_TYPE_UNSUPPORTED,
    ProviderError,
)
from selfie_generator.fal_client import FalClient
from selfie_generator.http_async_client import HttpAsyncClient
from selfie_generator.mock_client import MockClient
from selfie_generator.models import ProviderKind
from selfie_generator.registry import (
    UnavailableProvider,
    available_provider_names,
    create_provider_registry,
    infer_provider_kind,
)


class TestInferProviderKind:
    @pytest.mark.parametrize(
        "name, config, expected",
        [
            ("x", {"type": "volcengine-ark"}, ProviderKind.VOLCENGINE),
            ("x", {"type": "ARK"}, ProviderKind.VOLCENGINE),
            ("x", {"type": "dashscope"}, ProviderKind.ALIYUN),
            ("fal", {}, ProviderKind.FAL),
            ("mock", {}, ProviderKind.MOCK),
            ("x", {"apiKey": "k", "model": "wan2.6-image"}, ProviderKind.ALIYUN),
            ("x", {"apiKey": "k", "model": "m", "baseUrl": "https://dashscope-intl.aliyuncs.com/api/v1"}, ProviderKind.ALIYUN),
            ("x", {"apiKey": "k", "model": "m", "endpoint": "/v1/images/edits"}, ProviderKind.OPENAI_COMPATIBLE),
            ("x", {"apiKey": "k", "model": "m", "endpoint": "/api/v3/images/generations"}, ProviderKind.VOLCENGINE),
            ("x", {"apiKey": "k", "model": "m", "baseUrl": "https://fal.run"}, ProviderKind.FAL),
            ("x", {"apiKey": "k", "model": "m", "baseUrl": "https://api-inference.modelscope.cn/v1"}, ProviderKind.MODELSCOPE),
            ("x", {"submit": {"url": "https://s"}}, ProviderKind.HTTP_ASYNC),
        ],
    )
    def test_inference(self, name, config, expected) -> None:
        assert infer_provider_kind(name, config) == expected

    def test_unknown_explicit_type(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            infer_provider_kind("x", {"type": "midjourney"})
        assert exc_info.value.code == PROVIDER_TYPE_UNSUPPORTED

    def test_uninferable_config(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            infer_provider_kind("custom", {"foo": "bar"})
        assert exc_info.value.code == PROVIDER_CONFIG_INVALID


class TestCreateProviderRegistry:
    """A broken provider config never takes down the registry."""

    def test_empty_config_gives_mock(self) -> None:
        registry = create_provider_registry({})
        assert list(registry) == ["mock"]
        assert isinstance(registry["mock"], MockClient)

    def test_builds_each_adapter(self) -> None:
        registry = create_provider_registry({
            "mock": {},
            "aliyun": {"apiKey": "k", "model": "qwen-image-edit"},
            "ark": {"type": "volcengine", "apiKey": "k", "model": "seedream"},
            "fal": {"apiKey": "k"},
            "tasks": {"type": "http-async", "submit": {"url": "https://s"}, "poll": {"urlTemplate": "https://p/{taskId}"}},
        })
        assert isinstance(registry["mock"], MockClient)
        assert isinstance(registry["aliyun"], DashScopeClient)
        assert isinstance(registry["ark"], ArkClient)
        assert isinstance(registry["fal"], FalClient)
        assert isinstance(registry["tasks"], HttpAsyncClient)
        assert available_provider_names(registry) == ["mock", "aliyun", "ark", "fal", "tasks"]

    def test_invalid_provider_is_isolated(self) -> None:
        registry = create_provider_registry({
            "broken": {"type": "volcengine", "model": "seedream"},
            "mock": {},
        })
        broken = registry["broken"]
        assert isinstance(broken, UnavailableProvider)
        assert broken.available is False
        assert "apiKey" in broken.unavailable_reason
        assert available_provider_names(registry) == ["mock"]

    def test_unsupported_type_is_isolated(self) -> None:
        registry = create_provider_registry({"weird": {"type": "nope"}, "mock": {}})
        assert registry["weird"].code == PROVIDER_TYPE_UNSUPPORTED
        assert available_provider_names(registry) == ["mock"]

    def test_http_client_without_request_is_rejected(self) -> None:
        registry = create_provider_registry({"fal": {"apiKey": "k"}}, http_client=object())
        assert registry["fal"].code == PROVIDER_FETCH_MISSING

    def test_unavailable_provider_raises_recorded_error(self, make_request) -> None:
        provider = UnavailableProvider("broken", "缺少 apiKey")
        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(provider.generate(make_request()))
        assert exc_info.value.code == PROVIDER_CONFIG_INVALID
        assert exc_info.value.transient is False
