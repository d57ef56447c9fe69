"""
通用异步任务客户端 - submit 提交任务，按 URL 模板轮询结果

所有字段路径均可配置，用于对接自建或未内置的异步生成服务。
"""

import logging
import time
from functools import partial
from typing import Any, Dict, Optional
from urllib.parse import quote

from .exceptions import PROVIDER_CONFIG_INVALID, PROVIDER_SUBMIT_PARSE_ERROR, ProviderError
from .extraction import (
    as_dict,
    as_string_dict,
    config_positive_number,
    config_string,
    extract_image_url,
    get_by_path,
    pick_plain_or_base64,
    resolve_image_url,
    to_trimmed_string,
)
from .http_utils import DEFAULT_TIMEOUT_MS, ensure_http_client, send_request
from .models import GenerateRequest, PollOptions, ProviderResult
from .polling import poll_until_done, resolve_poll_settings

logger = logging.getLogger(__name__)

# 配置路径都取不到时，整体扫描响应兜底
extract_task_image = partial(extract_image_url, picker=pick_plain_or_base64)


class HttpAsyncClient:
    """
    通用 submit / poll 客户端

    配置示例：
        {
            "submit": {"url": "https://example.com/tasks", "taskIdPath": "data.id"},
            "poll": {"urlTemplate": "https://example.com/tasks/{taskId}", "statusPath": "data.status"}
        }
    """

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        submit = as_dict(config.get("submit"))
        poll = as_dict(config.get("poll"))

        self.submit_url = config_string(submit, "url")
        self.poll_url_template = config_string(poll, "urlTemplate", "url_template")
        if not self.submit_url or not self.poll_url_template:
            raise ProviderError(
                f"provider {name} 配置不完整（submit.url / poll.urlTemplate）",
                code=PROVIDER_CONFIG_INVALID,
            )

        self.submit_method = (config_string(submit, "method") or "POST").upper()
        self.submit_headers = as_string_dict(submit.get("headers"))
        self.task_id_path = config_string(submit, "taskIdPath", "task_id_path") or "task_id"
        self.submit_request_id_path = config_string(submit, "requestIdPath", "request_id_path") or "request_id"

        self.poll_method = (config_string(poll, "method") or "GET").upper()
        self.poll_headers = as_string_dict(poll.get("headers"))
        self.status_path = config_string(poll, "statusPath", "status_path") or "status"
        self.poll_request_id_path = config_string(poll, "requestIdPath", "request_id_path") or "request_id"
        self.image_url_path = config_string(poll, "imageUrlPath", "image_url_path") or "image_url"
        self.error_path = config_string(poll, "errorPath", "error_path") or "message"

        self.poll_interval_ms = config_positive_number(config, "pollIntervalMs", "poll_interval_ms", None)
        self.poll_timeout_ms = config_positive_number(config, "pollTimeoutMs", "poll_timeout_ms", None)
        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)

    def build_submit_body(self, request: GenerateRequest) -> Dict[str, Any]:
        base64_list = list(request.reference_image_base64_list) or [request.reference_image_base64]
        body: Dict[str, Any] = {
            "prompt": request.prompt,
            "reference_image_base64": base64_list[0] if base64_list else request.reference_image_base64,
            "meta": request.meta.to_dict(),
        }
        if len(base64_list) > 1:
            body["reference_images_base64"] = base64_list
        return body

    def poll_url(self, task_id: str) -> str:
        return self.poll_url_template.replace("{taskId}", quote(task_id, safe=""))

    def _image_of(self, payload: Any) -> Optional[str]:
        return resolve_image_url(payload, (self.image_url_path, "data.image_urls.0"), extract_task_image)

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        started_at = time.monotonic()
        submit_result = await send_request(
            self.http_client,
            self.submit_method,
            self.submit_url,
            self.name,
            timeout_ms=self.timeout_ms,
            headers=self.submit_headers,
            json_body=self.build_submit_body(request),
        )

        task_id = to_trimmed_string(get_by_path(submit_result.body, self.task_id_path))
        request_id = to_trimmed_string(get_by_path(submit_result.body, self.submit_request_id_path))
        if not task_id:
            raise ProviderError(
                f"provider {self.name} submit 响应缺少 task_id",
                code=PROVIDER_SUBMIT_PARSE_ERROR,
                request_id=request_id,
                details={"response": submit_result.body, "taskIdPath": self.task_id_path},
            )

        interval_ms, timeout_ms = resolve_poll_settings(poll_options, self.poll_interval_ms, self.poll_timeout_ms)
        logger.debug(f"{self.name} 任务已提交: {task_id}, 轮询间隔 {interval_ms}ms, 超时 {timeout_ms}ms")

        poll_url = self.poll_url(task_id)

        async def fetch_status():
            result = await send_request(
                self.http_client,
                self.poll_method,
                poll_url,
                self.name,
                timeout_ms=self.timeout_ms,
                headers=self.poll_headers,
            )
            return result.body

        return await poll_until_done(
            fetch_status,
            status_of=lambda payload: to_trimmed_string(get_by_path(payload, self.status_path)),
            image_of=self._image_of,
            error_of=lambda payload: to_trimmed_string(get_by_path(payload, self.error_path)),
            label=self.name,
            task_id=task_id,
            interval_ms=interval_ms,
            timeout_ms=timeout_ms,
            started_at=started_at,
            request_id=request_id,
            request_id_of=lambda payload: to_trimmed_string(get_by_path(payload, self.poll_request_id_path)),
        )
