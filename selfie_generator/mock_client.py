"""
Mock provider - 不发起网络请求，用于本地调试与重试/降级测试
"""

import asyncio
import logging
import random
import string
import time
from typing import Any, Dict, Optional

from .exceptions import ProviderError
from .extraction import first_present
from .models import GenerateRequest, PollOptions, ProviderResult

logger = logging.getLogger(__name__)

MOCK_SUBMIT_FAILED = "MOCK_SUBMIT_FAILED"
MOCK_POLL_FAILED = "MOCK_POLL_FAILED"

# 每次模拟轮询的等待时间（秒）
PENDING_POLL_DELAY = 0.01

_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(random.choices(_ALPHABET, k=length))


def _non_negative_int(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return max(0, value)
    return default


class MockClient:
    """
    模拟 provider

    支持的配置：
        pendingPolls: 模拟轮询次数（默认 1）
        failSubmitTimes / failPollTimes: 前 N 次调用强制失败（计数递减）
        transient: 强制失败是否可重试（默认 True）
        echoReferenceDataUrl: 直接返回参考图 data URL
    """

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str = "mock", config: Optional[Dict[str, Any]] = None, http_client: Any = None):
        config = config or {}
        self.name = name
        self.pending_polls = _non_negative_int(first_present(config, "pendingPolls", "pending_polls"), 1)
        self.transient = first_present(config, "transient") is not False
        self.echo_reference = bool(first_present(config, "echoReferenceDataUrl", "echo_reference_data_url"))

        self._submit_fail_left = _non_negative_int(first_present(config, "failSubmitTimes", "fail_submit_times"), 0)
        self._poll_fail_left = _non_negative_int(first_present(config, "failPollTimes", "fail_poll_times"), 0)

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        if self._submit_fail_left > 0:
            self._submit_fail_left -= 1
            raise ProviderError(f"{self.name} submit 模拟失败", code=MOCK_SUBMIT_FAILED, transient=self.transient)

        if self._poll_fail_left > 0:
            self._poll_fail_left -= 1
            raise ProviderError(f"{self.name} poll 模拟失败", code=MOCK_POLL_FAILED, transient=self.transient)

        for _ in range(self.pending_polls):
            await asyncio.sleep(PENDING_POLL_DELAY)

        if self.echo_reference:
            image_url = request.reference_image_data_url
        else:
            image_url = f"mock://{self.name}-{int(time.time() * 1000)}-{_random_suffix(6)}/image.png"

        return ProviderResult(image_url=image_url, request_id=f"{self.name}-req-{_random_suffix(8)}")
