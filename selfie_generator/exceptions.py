"""
自定义异常类

所有异常都携带 code / transient / request_id / details 四个字段，
引擎的重试与降级决策只读取这些字段，不依赖子类判断。
"""

from typing import Any, Dict, Optional

# 配置 / 路由
CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
CONFIG_PARSE_ERROR = "CONFIG_PARSE_ERROR"
NO_PROVIDER_AVAILABLE = "NO_PROVIDER_AVAILABLE"
EXPLICIT_PROVIDER_UNAVAILABLE = "EXPLICIT_PROVIDER_UNAVAILABLE"
DEFAULT_PROVIDER_MISSING = "DEFAULT_PROVIDER_MISSING"
DEFAULT_PROVIDER_UNAVAILABLE = "DEFAULT_PROVIDER_UNAVAILABLE"

# 角色资源
CHARACTER_ID_REQUIRED = "CHARACTER_ID_REQUIRED"
CHARACTER_NOT_FOUND = "CHARACTER_NOT_FOUND"
CHARACTER_ASSET_MISSING = "CHARACTER_ASSET_MISSING"
CHARACTER_META_PARSE_ERROR = "CHARACTER_META_PARSE_ERROR"

# Provider
PROVIDER_CONFIG_INVALID = "PROVIDER_CONFIG_INVALID"
PROVIDER_TYPE_UNSUPPORTED = "PROVIDER_TYPE_UNSUPPORTED"
PROVIDER_FETCH_MISSING = "PROVIDER_FETCH_MISSING"
PROVIDER_REQUEST_INVALID = "PROVIDER_REQUEST_INVALID"
PROVIDER_HTTP_FAILED = "PROVIDER_HTTP_FAILED"
PROVIDER_TIMEOUT = "PROVIDER_TIMEOUT"
PROVIDER_SUBMIT_PARSE_ERROR = "PROVIDER_SUBMIT_PARSE_ERROR"
PROVIDER_POLL_PARSE_ERROR = "PROVIDER_POLL_PARSE_ERROR"
PROVIDER_TASK_FAILED = "PROVIDER_TASK_FAILED"
PROVIDER_IMAGE_URL_MISSING = "PROVIDER_IMAGE_URL_MISSING"
PROVIDER_PARSE_ERROR = "PROVIDER_PARSE_ERROR"
PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
PROVIDER_UNKNOWN = "PROVIDER_UNKNOWN"


class GeneratorError(Exception):
    """生成器基础异常"""

    default_code = "GENERATOR_ERROR"

    def __init__(
        self,
        message: str,
        code: str = None,
        transient: bool = False,
        request_id: Optional[str] = None,
        details: Any = None,
    ):
        self.code = code or self.default_code
        self.transient = bool(transient)
        self.request_id = request_id
        self.details = details
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> Dict[str, Any]:
        """转换为可序列化的字典（用于日志）"""
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "transient": self.transient,
            "requestId": self.request_id,
            "details": self.details,
        }


class ConfigurationError(GeneratorError):
    """配置错误"""

    default_code = "CONFIG_ERROR"

    def __init__(self, message: str, field: str = None, **kwargs):
        self.field = field
        super().__init__(message, **kwargs)


class CharacterError(GeneratorError):
    """角色资源错误"""

    default_code = "CHARACTER_ERROR"


class RoutingError(GeneratorError):
    """provider 路由错误"""

    default_code = "ROUTING_ERROR"


class ProviderError(GeneratorError):
    """provider 调用错误"""

    default_code = "PROVIDER_ERROR"
