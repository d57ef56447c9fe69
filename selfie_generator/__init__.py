"""
Selfie Generator - 角色自拍生成系统

按角色资源与当前时段构建请求，依次调用配置的图片 provider，
支持单 provider 重试、跨 provider 降级以及失败时的降级文案。
"""

__version__ = "1.0.0"

from .models import (
    SelfieMode,
    ProviderKind,
    FallbackPolicy,
    RetryPolicy,
    SelfieConfig,
    RequestMeta,
    GenerateRequest,
    PollOptions,
    ProviderResult,
    ResolvedTimeState,
    CharacterAssets,
    ImageProvider,
    GenerateSelfieSuccess,
    GenerateSelfieFailure,
    GenerateSelfieResult,
)
from .exceptions import (
    GeneratorError,
    ConfigurationError,
    CharacterError,
    RoutingError,
    ProviderError,
)
from .config import ConfigManager, normalize_config
from .characters import load_character_assets, read_reference_images_base64
from .time_state import resolve_time_state
from .registry import create_provider_registry, infer_provider_kind
from .router import build_provider_order
from .engine import SelfieEngine, generate_selfie, generate_selfie_sync

__all__ = [
    # Enums
    "SelfieMode",
    "ProviderKind",
    # Data Models
    "FallbackPolicy",
    "RetryPolicy",
    "SelfieConfig",
    "RequestMeta",
    "GenerateRequest",
    "PollOptions",
    "ProviderResult",
    "ResolvedTimeState",
    "CharacterAssets",
    "ImageProvider",
    "GenerateSelfieSuccess",
    "GenerateSelfieFailure",
    "GenerateSelfieResult",
    # Exceptions
    "GeneratorError",
    "ConfigurationError",
    "CharacterError",
    "RoutingError",
    "ProviderError",
    # Components
    "ConfigManager",
    "normalize_config",
    "load_character_assets",
    "read_reference_images_base64",
    "resolve_time_state",
    "create_provider_registry",
    "infer_provider_kind",
    "build_provider_order",
    "SelfieEngine",
    "generate_selfie",
    "generate_selfie_sync",
]
