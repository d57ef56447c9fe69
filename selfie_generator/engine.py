"""
生成引擎 - 核心协调器

流程：加载配置 -> 加载角色 -> 解析时段 -> 构建注册表 -> 计算 provider 顺序
-> 逐个 provider 重试生成 -> 成功返回图片，全部失败返回降级结果。
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from .characters import image_mime_type, load_character_assets, read_reference_images_base64
from .config import ConfigManager
from .exceptions import (
    PROVIDER_IMAGE_URL_MISSING,
    PROVIDER_NOT_FOUND,
    PROVIDER_UNKNOWN,
    GeneratorError,
    ProviderError,
)
from .extraction import first_present, to_finite_number
from .models import (
    GenerateRequest,
    GenerateSelfieFailure,
    GenerateSelfieResult,
    GenerateSelfieSuccess,
    ImageProvider,
    PollOptions,
    RequestMeta,
    SelfieConfig,
    SelfieMode,
)
from .registry import available_provider_names, create_provider_registry
from .router import build_provider_order
from .time_state import resolve_time_state

logger = logging.getLogger(__name__)

DEFAULT_EVENT_SOURCE = "skill"


def resolve_provider_poll_options(config: SelfieConfig, provider_name: str) -> PollOptions:
    """provider 自身的轮询参数优先，非正数时回退到全局配置"""
    provider_config = config.providers.get(provider_name)
    if not isinstance(provider_config, dict):
        return PollOptions(config.poll_interval_ms, config.poll_timeout_ms)

    interval_ms = to_finite_number(first_present(provider_config, "pollIntervalMs", "poll_interval_ms"))
    timeout_ms = to_finite_number(first_present(provider_config, "pollTimeoutMs", "poll_timeout_ms"))
    return PollOptions(
        poll_interval_ms=interval_ms if interval_ms is not None and interval_ms > 0 else config.poll_interval_ms,
        poll_timeout_ms=timeout_ms if timeout_ms is not None and timeout_ms > 0 else config.poll_timeout_ms,
    )


def _to_mode(mode: Optional[Union[str, SelfieMode]]) -> SelfieMode:
    if mode is None:
        return SelfieMode.DIRECT
    return mode if isinstance(mode, SelfieMode) else SelfieMode(mode)


class SelfieEngine:
    """生成引擎 - 核心协调器"""

    def __init__(
        self,
        config: Optional[SelfieConfig] = None,
        config_manager: Optional[ConfigManager] = None,
        registry: Optional[Dict[str, ImageProvider]] = None,
        http_client=None,
        cwd: Optional[Path] = None,
    ):
        """
        初始化生成引擎

        Args:
            config: 已归一化的配置（提供时不再读取配置文件）
            config_manager: 配置管理器（默认按环境变量 / 默认路径查找）
            registry: 预先构建的 provider 注册表（测试注入用）
            http_client: 传给各 provider 的 httpx.AsyncClient
            cwd: 解析角色目录相对路径的基准目录
        """
        self.config_manager = config_manager or ConfigManager(project_root=cwd)
        self.registry = registry
        self.http_client = http_client
        self.cwd = cwd or Path.cwd()
        self._config = config

    def _load_config(self) -> SelfieConfig:
        if self._config is None:
            self._config = self.config_manager.load_config()
        return self._config

    def _build_request(
        self,
        character_id: str,
        prompt: str,
        mode: SelfieMode,
        event_source: str,
        now: datetime,
        config: SelfieConfig,
    ) -> GenerateRequest:
        character = load_character_assets(
            character_id,
            character_root=config.character_root,
            user_character_root=config.user_character_root or None,
            cwd=self.cwd,
            allow_missing_reference=True,
        )

        reference_paths = [str(path) for path in character.reference_paths]
        base64_list = read_reference_images_base64(character.reference_paths) if reference_paths else []
        data_urls = [
            f"data:{image_mime_type(path)};base64,{encoded}"
            for path, encoded in zip(reference_paths, base64_list)
        ]
        if not reference_paths:
            logger.warning(f"角色缺少参考图，降级为纯提示词生图: {character_id}")

        time_state = resolve_time_state(character.meta.get("timeStates"), now)
        role_name = character.meta.get("name")

        return GenerateRequest(
            character_id=character_id,
            prompt=prompt,
            mode=mode,
            reference_path=reference_paths[0] if reference_paths else "",
            reference_paths=tuple(reference_paths),
            reference_image_base64=base64_list[0] if base64_list else "",
            reference_image_base64_list=tuple(base64_list),
            reference_image_data_url=data_urls[0] if data_urls else "",
            reference_image_data_urls=tuple(data_urls),
            time_state=time_state.key,
            meta=RequestMeta(
                state=time_state.key,
                role_name=role_name if isinstance(role_name, str) and role_name else character_id,
                event_source=event_source,
            ),
        )

    async def _run_provider(
        self,
        provider_name: str,
        provider: ImageProvider,
        request: GenerateRequest,
        config: SelfieConfig,
    ) -> Union[GenerateSelfieSuccess, GeneratorError]:
        """
        对单个 provider 按重试策略尝试生成

        Returns:
            成功结果，或最后一次尝试的错误
        """
        poll_options = resolve_provider_poll_options(config, provider_name)
        max_attempts = config.retry.max_attempts
        last_error: Optional[GeneratorError] = None

        for attempt in range(1, max_attempts + 1):
            logger.info(f"[{provider_name}] 调用 provider ({attempt}/{max_attempts}) 模式={request.mode.value} 时段={request.time_state}")
            logger.debug(f"[{provider_name}] 完整提示词: {request.prompt}")

            try:
                result = await provider.generate(request, poll_options)
                if not result.image_url:
                    raise ProviderError(
                        result.message or f"provider {provider_name} 返回成功但缺少 imageUrl",
                        code=PROVIDER_IMAGE_URL_MISSING,
                        request_id=result.request_id,
                    )

                logger.info(f"[{provider_name}] ✅ 生图成功 request_id={result.request_id}")
                return GenerateSelfieSuccess(
                    provider=provider_name,
                    request_id=result.request_id,
                    image_url=result.image_url,
                    prompt=request.prompt,
                    mode=request.mode,
                    character_id=request.character_id,
                    time_state=request.time_state,
                )
            except GeneratorError as e:
                last_error = e
            except Exception as e:
                logger.exception(f"[{provider_name}] provider 抛出未预期异常")
                last_error = ProviderError(str(e) or type(e).__name__, code=PROVIDER_UNKNOWN)

            can_retry = last_error.transient and attempt < max_attempts
            logger.warning(
                f"[{provider_name}] ⚠️ 尝试失败 ({attempt}/{max_attempts}) "
                f"[{last_error.code}] {last_error.message} 可重试={can_retry}"
            )
            if not can_retry:
                break

            await asyncio.sleep(config.retry.backoff_ms * attempt / 1000)

        return last_error or ProviderError("未知 provider 错误", code=PROVIDER_UNKNOWN)

    async def generate(
        self,
        character_id: Optional[str] = None,
        provider: Optional[str] = None,
        prompt: Optional[str] = None,
        mode: Optional[Union[str, SelfieMode]] = None,
        event_source: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> GenerateSelfieResult:
        """
        生成一张自拍

        Args:
            character_id: 角色ID（默认使用配置中的 selected_character）
            provider: 显式指定的 provider
            prompt: 提示词
            mode: direct / mirror
            event_source: 触发来源，写入请求 meta
            now: 当前时间（用于时段解析）

        Returns:
            GenerateSelfieSuccess 或 GenerateSelfieFailure

        Raises:
            GeneratorError: 配置、角色或路由错误（在首次尝试之前抛出）
        """
        config = self._load_config()
        character_id = character_id or config.selected_character

        request = self._build_request(
            character_id=character_id,
            prompt=prompt or "",
            mode=_to_mode(mode),
            event_source=event_source or DEFAULT_EVENT_SOURCE,
            now=now or datetime.now(),
            config=config,
        )

        registry = self.registry
        if registry is None:
            registry = create_provider_registry(config.providers, self.http_client)
        provider_order: List[str] = build_provider_order(provider, config, available_provider_names(registry))
        logger.info(f"provider 顺序: {' -> '.join(provider_order)}")

        last_error: Optional[GeneratorError] = None
        for provider_name in provider_order:
            adapter = registry.get(provider_name)
            if adapter is None:
                last_error = GeneratorError(f"provider 不存在: {provider_name}", code=PROVIDER_NOT_FOUND)
                continue

            outcome = await self._run_provider(provider_name, adapter, request, config)
            if isinstance(outcome, GenerateSelfieSuccess):
                return outcome

            last_error = outcome
            logger.error(
                f"[{provider_name}] ❌ 生成失败 [{outcome.code}] {outcome.message} "
                f"transient={outcome.transient} request_id={outcome.request_id} details={outcome.details}"
            )

            if provider_name == provider_order[-1] or not config.fallback.enabled:
                break

        return GenerateSelfieFailure(
            provider=provider_order[-1] if provider_order else None,
            request_id=last_error.request_id if last_error else None,
            message=config.degrade_message,
            error=last_error.message if last_error else "unknown",
            code=last_error.code if last_error else None,
        )

    def generate_sync(self, **kwargs) -> GenerateSelfieResult:
        """同步版本的 generate"""
        return asyncio.run(self.generate(**kwargs))


async def generate_selfie(
    config: Optional[SelfieConfig] = None,
    config_path: Optional[Path] = None,
    cwd: Optional[Path] = None,
    registry: Optional[Dict[str, ImageProvider]] = None,
    http_client=None,
    **kwargs,
) -> GenerateSelfieResult:
    """
    便捷入口：构建引擎并生成一次

    其余关键字参数透传给 SelfieEngine.generate。
    """
    engine = SelfieEngine(
        config=config,
        config_manager=ConfigManager(config_path=config_path, project_root=cwd),
        registry=registry,
        http_client=http_client,
        cwd=cwd,
    )
    return await engine.generate(**kwargs)


def generate_selfie_sync(**kwargs) -> GenerateSelfieResult:
    """同步版本的 generate_selfie"""
    return asyncio.run(generate_selfie(**kwargs))
