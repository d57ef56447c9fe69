"""
异步任务轮询 - submit 之后的统一状态机

SUBMITTED -> 等待 poll_interval -> POLLING -> 成功 / 失败 / 继续等待，
整个过程受 poll_timeout 墙钟预算约束（从 submit 时刻算起）。
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from .exceptions import (
    PROVIDER_IMAGE_URL_MISSING,
    PROVIDER_POLL_PARSE_ERROR,
    PROVIDER_TASK_FAILED,
    PROVIDER_TIMEOUT,
    ProviderError,
)
from .extraction import to_finite_number
from .models import PollOptions, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1200
DEFAULT_POLL_TIMEOUT_MS = 180000

DONE_STATUSES = frozenset({"done", "succeeded", "succeed", "success", "completed"})
PENDING_STATUSES = frozenset({
    "pending", "running", "in_queue", "queued", "generating",
    "processing", "created", "in_progress", "waiting",
})
FAILED_STATUSES = frozenset({"failed", "fail", "error", "canceled", "cancelled"})

STATUS_DONE = "done"
STATUS_PENDING = "pending"
STATUS_FAILED = "failed"


def classify_status(status: Optional[str]) -> Optional[str]:
    """状态归一化（大小写不敏感），无法识别返回 None"""
    if not status:
        return None
    normalized = status.strip().lower()
    if normalized in DONE_STATUSES:
        return STATUS_DONE
    if normalized in FAILED_STATUSES:
        return STATUS_FAILED
    if normalized in PENDING_STATUSES:
        return STATUS_PENDING
    return None


def resolve_poll_settings(
    poll_options: Optional[PollOptions],
    config_interval_ms: Optional[float],
    config_timeout_ms: Optional[float],
    default_interval_ms: float = DEFAULT_POLL_INTERVAL_MS,
    default_timeout_ms: float = DEFAULT_POLL_TIMEOUT_MS,
) -> Tuple[float, float]:
    """
    解析轮询参数：运行时参数 > provider 配置 > 适配器默认值

    Returns:
        (interval_ms, timeout_ms)
    """
    runtime_interval = to_finite_number(poll_options.poll_interval_ms) if poll_options else None
    runtime_timeout = to_finite_number(poll_options.poll_timeout_ms) if poll_options else None

    interval_ms = next(
        value for value in (runtime_interval, config_interval_ms, default_interval_ms) if value is not None
    )
    timeout_ms = next(
        value for value in (runtime_timeout, config_timeout_ms, default_timeout_ms) if value is not None
    )
    return max(interval_ms, 0), max(timeout_ms, 0)


async def poll_until_done(
    fetch_status: Callable[[], Awaitable[Any]],
    status_of: Callable[[Any], Optional[str]],
    image_of: Callable[[Any], Optional[str]],
    error_of: Callable[[Any], Optional[str]],
    label: str,
    task_id: str,
    interval_ms: float,
    timeout_ms: float,
    started_at: Optional[float] = None,
    request_id: Optional[str] = None,
    request_id_of: Optional[Callable[[Any], Optional[str]]] = None,
) -> ProviderResult:
    """
    轮询直到任务结束

    Args:
        fetch_status: 发起一次轮询请求，返回响应体
        status_of: 从响应体读取状态字符串
        image_of: 从成功响应中提取图片
        error_of: 从失败响应中提取错误信息
        label: provider 名称
        task_id: 任务ID
        interval_ms: 轮询间隔（毫秒）
        timeout_ms: 总预算（毫秒）
        started_at: submit 时刻（time.monotonic），默认当前时刻
        request_id: submit 阶段得到的 request id
        request_id_of: 从轮询响应更新 request id

    Returns:
        ProviderResult: 成功结果

    Raises:
        ProviderError: 任务失败、状态无法识别、缺少图片或超时
    """
    if started_at is None:
        started_at = time.monotonic()
    budget = timeout_ms / 1000
    polls = 0

    while time.monotonic() - started_at < budget:
        await asyncio.sleep(interval_ms / 1000)
        payload = await fetch_status()
        polls += 1

        if request_id_of is not None:
            request_id = request_id_of(payload) or request_id

        raw_status = status_of(payload)
        state = classify_status(raw_status)

        if state == STATUS_DONE:
            image_url = image_of(payload)
            if not image_url:
                raise ProviderError(
                    f"provider {label} 返回成功但缺少图片",
                    code=PROVIDER_IMAGE_URL_MISSING,
                    request_id=request_id,
                    details={"taskId": task_id, "response": payload},
                )
            logger.debug(f"{label} 任务完成: {task_id}, 轮询 {polls} 次")
            return ProviderResult(image_url=image_url, request_id=request_id)

        if state == STATUS_FAILED:
            raise ProviderError(
                error_of(payload) or f"provider {label} 任务失败: {raw_status}",
                code=PROVIDER_TASK_FAILED,
                request_id=request_id,
                details={"taskId": task_id, "status": raw_status, "response": payload},
            )

        if state is None:
            reason = f"未识别状态: {raw_status}" if raw_status else "poll 响应缺少 status"
            raise ProviderError(
                f"provider {label} {reason}",
                code=PROVIDER_POLL_PARSE_ERROR,
                request_id=request_id,
                details={"taskId": task_id, "response": payload},
            )

        logger.debug(f"{label} 任务 {task_id} 状态 {raw_status}，继续等待")

    raise ProviderError(
        f"provider {label} 轮询超时",
        code=PROVIDER_TIMEOUT,
        transient=True,
        request_id=request_id,
        details={"taskId": task_id, "pollTimeoutMs": timeout_ms},
    )
