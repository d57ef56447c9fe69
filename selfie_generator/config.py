"""
配置管理器 - 负责加载和归一化配置

归一化从不失败：缺失或格式错误的字段一律回退到默认值。
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import CONFIG_NOT_FOUND, CONFIG_PARSE_ERROR, ConfigurationError
from .extraction import as_dict, first_present, to_bool, to_finite_number
from .models import FallbackPolicy, RetryPolicy, SelfieConfig

DEFAULT_CONFIG_PATH = Path("config") / "selfie.config.json"

DEFAULT_SELECTED_CHARACTER = "brooke"
DEFAULT_CHARACTER_ROOT = "assets/characters"
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_BACKOFF_MS = 500
DEFAULT_POLL_INTERVAL_MS = 1200
DEFAULT_POLL_TIMEOUT_MS = 180000
DEFAULT_DEGRADE_MESSAGE = "图片暂时生成失败，我先陪你聊会儿。"


def default_user_character_root() -> str:
    """用户角色目录：$SELFIE_HOME/characters，默认 ~/.selfie_generator/characters"""
    home = (os.getenv("SELFIE_HOME") or "").strip() or str(Path.home() / ".selfie_generator")
    return str(Path(home) / "characters")


def _non_empty_string(value: Any, default: str) -> str:
    return value if isinstance(value, str) and value else default


def _positive_number(value: Any, default: float) -> float:
    number = to_finite_number(value)
    return number if number is not None and number > 0 else default


def normalize_fallback(raw: Any) -> FallbackPolicy:
    source = as_dict(raw)
    order = source.get("order")
    return FallbackPolicy(
        enabled=to_bool(source.get("enabled")) is True,
        order=[item for item in order if isinstance(item, str) and item] if isinstance(order, list) else [],
    )


def normalize_retry(raw: Any) -> RetryPolicy:
    source = as_dict(raw)
    max_attempts = to_finite_number(first_present(source, "maxAttempts", "max_attempts"))
    backoff_ms = to_finite_number(first_present(source, "backoffMs", "backoff_ms"))
    return RetryPolicy(
        max_attempts=int(max_attempts) if max_attempts is not None and max_attempts == int(max_attempts) and max_attempts > 0 else DEFAULT_MAX_ATTEMPTS,
        backoff_ms=backoff_ms if backoff_ms is not None and backoff_ms > 0 else DEFAULT_BACKOFF_MS,
    )


def normalize_providers(raw: Any) -> Dict[str, Dict[str, Any]]:
    """只保留字典形式的 provider 配置"""
    return {
        str(name): provider_config
        for name, provider_config in as_dict(raw).items()
        if isinstance(provider_config, dict)
    }


def normalize_config(raw: Any) -> SelfieConfig:
    """
    将原始 JSON 归一化为 SelfieConfig

    顶层字段同时接受 camelCase 与 snake_case。

    Args:
        raw: 原始配置（任意 JSON 值）

    Returns:
        SelfieConfig: 归一化后的配置
    """
    source = as_dict(raw)
    providers = normalize_providers(source.get("providers"))
    first_provider = next(iter(providers), "mock")

    return SelfieConfig(
        selected_character=_non_empty_string(
            first_present(source, "selectedCharacter", "selected_character"), DEFAULT_SELECTED_CHARACTER
        ),
        character_root=_non_empty_string(
            first_present(source, "characterRoot", "character_root"), DEFAULT_CHARACTER_ROOT
        ),
        user_character_root=_non_empty_string(
            first_present(source, "userCharacterRoot", "user_character_root"), default_user_character_root()
        ),
        default_provider=_non_empty_string(
            first_present(source, "defaultProvider", "default_provider"), first_provider
        ),
        fallback=normalize_fallback(source.get("fallback")),
        retry=normalize_retry(source.get("retry")),
        poll_interval_ms=_positive_number(
            first_present(source, "pollIntervalMs", "poll_interval_ms"), DEFAULT_POLL_INTERVAL_MS
        ),
        poll_timeout_ms=_positive_number(
            first_present(source, "pollTimeoutMs", "poll_timeout_ms"), DEFAULT_POLL_TIMEOUT_MS
        ),
        degrade_message=_non_empty_string(
            first_present(source, "degradeMessage", "degrade_message"), DEFAULT_DEGRADE_MESSAGE
        ),
        providers=providers,
    )


class ConfigManager:
    """配置管理器"""

    def __init__(
        self,
        config_path: Optional[Path] = None,
        project_root: Optional[Path] = None,
    ):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径（默认读取环境变量 SELFIE_CONFIG，
                再回退到 <project_root>/config/selfie.config.json）
            project_root: 项目根目录，用于解析相对路径
        """
        self.project_root = project_root or Path.cwd()
        self.config_path = config_path
        self._config: Optional[SelfieConfig] = None

    def resolve_config_path(self) -> Path:
        if self.config_path:
            path = Path(self.config_path)
        elif os.getenv("SELFIE_CONFIG"):
            path = Path(os.environ["SELFIE_CONFIG"])
        else:
            path = DEFAULT_CONFIG_PATH

        if path.is_absolute():
            return path
        return self.project_root / path

    def _load_json(self, path: Path) -> Any:
        """加载JSON文件"""
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw_text = f.read()
        except OSError as e:
            raise ConfigurationError(
                f"无法读取配置文件: {path}",
                field="config_path",
                code=CONFIG_NOT_FOUND,
                details={"configPath": str(path), "cause": str(e)},
            ) from e

        try:
            return json.loads(raw_text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"配置文件 JSON 无法解析: {path}, {e}",
                field="config_path",
                code=CONFIG_PARSE_ERROR,
                details={"configPath": str(path), "cause": str(e)},
            ) from e

    def load_config(self) -> SelfieConfig:
        """加载并归一化配置（结果缓存）"""
        if self._config:
            return self._config

        path = self.resolve_config_path()
        self._config = normalize_config(self._load_json(path))
        self.config_path = path
        return self._config
