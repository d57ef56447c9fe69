"""
Provider 路由 - 计算本次生成的 provider 尝试顺序
"""

from typing import List, Optional, Sequence

from .exceptions import (
    DEFAULT_PROVIDER_MISSING,
    DEFAULT_PROVIDER_UNAVAILABLE,
    EXPLICIT_PROVIDER_UNAVAILABLE,
    NO_PROVIDER_AVAILABLE,
    RoutingError,
)
from .models import SelfieConfig


def _unique(items: Sequence[str]) -> List[str]:
    result: List[str] = []
    for item in items:
        if item and item not in result:
            result.append(item)
    return result


def build_provider_order(
    explicit_provider: Optional[str],
    config: SelfieConfig,
    available_providers: Sequence[str],
) -> List[str]:
    """
    计算 provider 尝试顺序（纯函数）

    显式指定的 provider 排第一，否则使用默认 provider；开启降级时追加
    fallback.order 中可用的 provider。fallback.order 为空时追加全部其他可用 provider。

    Args:
        explicit_provider: 调用方显式指定的 provider
        config: 全局配置（只读取 default_provider 与 fallback）
        available_providers: 可用 provider 名称（保持注册顺序）

    Returns:
        去重后的 provider 名称列表

    Raises:
        RoutingError: 无可用 provider，或指定 / 默认 provider 不可用
    """
    if not available_providers:
        raise RoutingError("未找到可用 provider", code=NO_PROVIDER_AVAILABLE)

    available = set(available_providers)
    fallback = config.fallback

    if explicit_provider:
        if explicit_provider not in available:
            raise RoutingError(
                f"显式指定的 provider 不可用: {explicit_provider}",
                code=EXPLICIT_PROVIDER_UNAVAILABLE,
                details={"provider": explicit_provider, "available": list(available_providers)},
            )

        order = [explicit_provider]
        if fallback.enabled:
            order.extend(name for name in fallback.order if name in available)
        return _unique(order)

    default_provider = config.default_provider
    if not default_provider:
        raise RoutingError("未配置默认 provider", code=DEFAULT_PROVIDER_MISSING)

    if default_provider not in available:
        raise RoutingError(
            f"默认 provider 不可用: {default_provider}",
            code=DEFAULT_PROVIDER_UNAVAILABLE,
            details={"provider": default_provider, "available": list(available_providers)},
        )

    order = [default_provider]
    if fallback.enabled:
        fallback_order = fallback.order or [name for name in available_providers if name != default_provider]
        order.extend(name for name in fallback_order if name in available)

    return _unique(order)
