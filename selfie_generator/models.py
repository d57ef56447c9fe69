"""
数据模型定义
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union


class SelfieMode(Enum):
    """自拍模式"""
    DIRECT = "direct"
    MIRROR = "mirror"


class ProviderKind(Enum):
    """provider 类型"""
    MOCK = "mock"
    ALIYUN = "aliyun"
    VOLCENGINE = "volcengine"
    FAL = "fal"
    OPENAI_COMPATIBLE = "openai-compatible"
    HTTP_ASYNC = "http-async"
    MODELSCOPE = "modelscope"


@dataclass
class FallbackPolicy:
    """降级策略"""
    enabled: bool = False
    order: List[str] = field(default_factory=list)


@dataclass
class RetryPolicy:
    """重试策略（按 provider 生效）"""
    max_attempts: int = 2
    backoff_ms: float = 500


@dataclass
class SelfieConfig:
    """全局配置"""
    selected_character: str = "brooke"
    character_root: str = "assets/characters"
    user_character_root: str = ""
    default_provider: str = "mock"
    fallback: FallbackPolicy = field(default_factory=FallbackPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll_interval_ms: float = 1200
    poll_timeout_ms: float = 180000
    degrade_message: str = "图片暂时生成失败，我先陪你聊会儿。"
    providers: Dict[str, Dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class RequestMeta:
    """请求附加信息"""
    state: str
    role_name: str
    event_source: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "state": self.state,
            "roleName": self.role_name,
            "eventSource": self.event_source,
        }


@dataclass(frozen=True)
class GenerateRequest:
    """
    provider 统一请求

    参考图同时提供单个与列表两种形式，兼容只取其一的适配器。
    """
    character_id: str
    prompt: str
    mode: SelfieMode
    reference_path: str
    reference_paths: Tuple[str, ...]
    reference_image_base64: str
    reference_image_base64_list: Tuple[str, ...]
    reference_image_data_url: str
    reference_image_data_urls: Tuple[str, ...]
    time_state: str
    meta: RequestMeta


@dataclass(frozen=True)
class PollOptions:
    """轮询参数（毫秒）"""
    poll_interval_ms: Optional[float] = None
    poll_timeout_ms: Optional[float] = None


@dataclass
class ProviderResult:
    """provider 返回结果"""
    image_url: Optional[str]
    request_id: Optional[str] = None
    message: Optional[str] = None


@dataclass
class ResolvedTimeState:
    """当前时段"""
    key: str
    state: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CharacterAssets:
    """角色资源"""
    id: str
    character_dir: Path
    reference_path: Optional[Path]
    reference_paths: List[Path]
    character_prompt: str
    meta: Dict[str, Any]


class ImageProvider(Protocol):
    """provider 适配器接口"""

    name: str
    available: bool
    unavailable_reason: Optional[str]

    async def generate(
        self,
        request: GenerateRequest,
        poll_options: Optional[PollOptions] = None,
    ) -> ProviderResult:
        ...


@dataclass
class GenerateSelfieSuccess:
    """生成成功"""
    provider: str
    request_id: Optional[str]
    image_url: str
    prompt: str
    mode: SelfieMode
    character_id: str
    time_state: str

    ok = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "provider": self.provider,
            "requestId": self.request_id,
            "imageUrl": self.image_url,
            "prompt": self.prompt,
            "mode": self.mode.value,
            "characterId": self.character_id,
            "timeState": self.time_state,
        }


@dataclass
class GenerateSelfieFailure:
    """生成失败（已降级）"""
    provider: Optional[str]
    request_id: Optional[str]
    message: str
    error: str
    code: Optional[str] = None

    ok = False
    degraded = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": False,
            "degraded": True,
            "provider": self.provider,
            "requestId": self.request_id,
            "message": self.message,
            "error": self.error,
            "code": self.code,
        }


GenerateSelfieResult = Union[GenerateSelfieSuccess, GenerateSelfieFailure]
