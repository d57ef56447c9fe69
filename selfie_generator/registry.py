"""
Provider 注册表 - 根据配置推断 provider 类型并构建适配器

单个 provider 配置错误只会让它自己不可用，不影响其他 provider。
"""

import logging
import re
from typing import Any, Dict, List, Optional

from .ark_client import ArkClient
from .dashscope_client import DashScopeClient
from .exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_TYPE_UNSUPPORTED,
    GeneratorError,
    ProviderError,
)
from .extraction import as_dict, config_string
from .fal_client import FalClient
from .http_async_client import HttpAsyncClient
from .mock_client import MockClient
from .modelscope_client import ModelScopeClient
from .models import GenerateRequest, ImageProvider, PollOptions, ProviderKind, ProviderResult
from .openai_compatible_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)

PROVIDER_TYPE_ALIASES = {
    "mock": ProviderKind.MOCK,
    "volcengine": ProviderKind.VOLCENGINE,
    "volcengine-ark": ProviderKind.VOLCENGINE,
    "ark": ProviderKind.VOLCENGINE,
    "openai-compatible": ProviderKind.OPENAI_COMPATIBLE,
    "aliyun": ProviderKind.ALIYUN,
    "dashscope": ProviderKind.ALIYUN,
    "fal": ProviderKind.FAL,
    "http-async": ProviderKind.HTTP_ASYNC,
    "modelscope": ProviderKind.MODELSCOPE,
}

PROVIDER_CLASSES = {
    ProviderKind.MOCK: MockClient,
    ProviderKind.ALIYUN: DashScopeClient,
    ProviderKind.VOLCENGINE: ArkClient,
    ProviderKind.FAL: FalClient,
    ProviderKind.OPENAI_COMPATIBLE: OpenAICompatibleClient,
    ProviderKind.HTTP_ASYNC: HttpAsyncClient,
    ProviderKind.MODELSCOPE: ModelScopeClient,
}

_ALIYUN_MODEL_RE = re.compile(r"^(wan[\w.-]*image$|qwen-image-edit)")
_ALIYUN_BASE_URL_RE = re.compile(r"dashscope[\w-]*\.aliyuncs\.com")
_ALIYUN_ENDPOINTS = (
    "/services/aigc/multimodal-generation/generation",
    "/services/aigc/image-generation/generation",
)


def infer_provider_kind(name: str, config: Dict[str, Any]) -> ProviderKind:
    """
    推断 provider 类型

    顺序：显式 type -> 名称别名 -> 字段结构（apiKey + model + URL 特征）
    -> submit / poll 子配置 -> 报错

    Args:
        name: provider 名称
        config: provider 配置

    Returns:
        ProviderKind: 推断出的类型

    Raises:
        ProviderError: 显式 type 不支持，或无法推断
    """
    explicit_type = config_string(config, "type")
    if explicit_type:
        kind = PROVIDER_TYPE_ALIASES.get(explicit_type.lower())
        if kind is None:
            raise ProviderError(
                f"不支持的 provider 类型: {explicit_type}",
                code=PROVIDER_TYPE_UNSUPPORTED,
                details={"type": explicit_type, "name": name},
            )
        return kind

    kind = PROVIDER_TYPE_ALIASES.get(name.lower())
    if kind is not None:
        return kind

    api_key = config_string(config, "apiKey", "api_key")
    model = (config_string(config, "model") or "").lower()
    endpoint = (config_string(config, "endpoint") or "").lower()
    base_url = (config_string(config, "baseUrl", "base_url") or "").lower()

    if api_key and model:
        if (
            _ALIYUN_MODEL_RE.search(model)
            or any(path in endpoint for path in _ALIYUN_ENDPOINTS)
            or _ALIYUN_BASE_URL_RE.search(base_url)
        ):
            return ProviderKind.ALIYUN
        if "modelscope" in base_url:
            return ProviderKind.MODELSCOPE
        if "/images/edits" in endpoint:
            return ProviderKind.OPENAI_COMPATIBLE
        if "/images/generations" in endpoint:
            return ProviderKind.VOLCENGINE
        if "fal.run" in base_url:
            return ProviderKind.FAL

    if config.get("submit") or config.get("poll"):
        return ProviderKind.HTTP_ASYNC

    raise ProviderError(
        f"provider {name} 缺少 type 且无法自动推断",
        code=PROVIDER_CONFIG_INVALID,
        details={"name": name},
    )


class UnavailableProvider:
    """构建失败的 provider 占位，调用时抛出记录的错误"""

    available = False

    def __init__(self, name: str, reason: str, code: str = PROVIDER_CONFIG_INVALID):
        self.name = name
        self.unavailable_reason = reason
        self.code = code

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        raise ProviderError(self.unavailable_reason, code=self.code)


def create_provider(name: str, config: Dict[str, Any], http_client: Any = None) -> ImageProvider:
    kind = infer_provider_kind(name, config)
    return PROVIDER_CLASSES[kind](name, config, http_client)


def create_provider_registry(
    providers_config: Optional[Dict[str, Any]] = None,
    http_client: Any = None,
) -> Dict[str, ImageProvider]:
    """
    构建 provider 注册表（不会抛出异常）

    Args:
        providers_config: provider 名称 -> 原始配置
        http_client: 所有 provider 共用的 httpx.AsyncClient（可选）

    Returns:
        provider 名称 -> 适配器；配置为空时只包含 mock
    """
    providers_config = as_dict(providers_config)
    if not providers_config:
        return {"mock": MockClient("mock")}

    registry: Dict[str, ImageProvider] = {}
    for name, raw_config in providers_config.items():
        try:
            registry[name] = create_provider(name, as_dict(raw_config), http_client)
        except GeneratorError as e:
            logger.warning(f"provider {name} 不可用: [{e.code}] {e.message}")
            registry[name] = UnavailableProvider(name, e.message, e.code)

    return registry


def available_provider_names(registry: Dict[str, ImageProvider]) -> List[str]:
    return [name for name, provider in registry.items() if provider.available]
