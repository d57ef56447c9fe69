"""
ModelScope 图片生成客户端 - 异步模式提交任务，轮询 /tasks/{taskId}

参考文档: https://modelscope.cn/docs/model-service/API-Inference/intro
"""

import logging
import math
import time
from functools import partial
from typing import Any, Dict, Optional, Union
from urllib.parse import quote

from .exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_REQUEST_INVALID,
    PROVIDER_SUBMIT_PARSE_ERROR,
    ProviderError,
)
from .extraction import (
    DEFAULT_REQUEST_ID_PATHS,
    as_string_dict,
    build_request_url,
    config_paths,
    config_positive_number,
    config_string,
    extract_image_url,
    first_string_by_paths,
    get_by_path,
    merged_extra_body,
    pick_plain_or_base64,
    resolve_image_url,
    resolve_reference_images,
    to_finite_number,
    to_trimmed_string,
)
from .http_utils import ensure_http_client, send_request
from .models import GenerateRequest, PollOptions, ProviderResult
from .polling import poll_until_done, resolve_poll_settings

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api-inference.modelscope.cn/v1"
DEFAULT_ENDPOINT = "/images/generations"
DEFAULT_POLL_ENDPOINT = "/tasks/{taskId}"
DEFAULT_TASK_TYPE = "image_generation"

DEFAULT_TIMEOUT_MS = 120000
DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_POLL_TIMEOUT_MS = 300000

DEFAULT_RESPONSE_URL_PATHS = (
    "output_images.0",
    "output_images",
    "data.0.url",
    "data.0.b64_json",
    "output.0.url",
    "output.0.b64_json",
)

FAILURE_MESSAGE_PATHS = ("errors.message", "error.message", "message")

REFERENCE_IMAGE_KEYS = ("image_url", "input_image", "image", "images")

extract_modelscope_image = partial(
    extract_image_url,
    direct_keys=("output_images", "url", "image_url", "b64_json", "image_base64"),
    nested_keys=("data", "output", "images", "result", "choices", "message", "content"),
    picker=pick_plain_or_base64,
)


def normalize_loras(value: Any) -> Optional[Union[str, Dict[str, float]]]:
    """loras 支持单个名称，或 名称 -> 权重 的映射（权重必须为有限数值）"""
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict) and value:
        for weight in value.values():
            if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not math.isfinite(weight):
                return None
        return value
    return None


class ModelScopeClient:
    """ModelScope API-Inference 异步图片生成客户端"""

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        """
        初始化 ModelScope 客户端

        Args:
            name: provider 名称
            config: provider 配置
            http_client: 可注入的 httpx.AsyncClient

        Raises:
            ProviderError: 缺少 apiKey / model
        """
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        self.base_url = config_string(config, "baseUrl", "base_url") or DEFAULT_BASE_URL
        endpoint = config_string(config, "endpoint") or DEFAULT_ENDPOINT
        self.api_key = config_string(config, "apiKey", "api_key")
        self.model = config_string(config, "model")

        if not self.api_key:
            raise ProviderError(f"provider {name} 缺少 apiKey", code=PROVIDER_CONFIG_INVALID)
        if not self.model:
            raise ProviderError(f"provider {name} 缺少 model", code=PROVIDER_CONFIG_INVALID)

        self.submit_url = build_request_url(self.base_url, endpoint, "modelscope")
        self.poll_endpoint_template = config_string(config, "pollEndpoint", "poll_endpoint") or DEFAULT_POLL_ENDPOINT
        self.task_type = config_string(config, "taskType", "task_type") or DEFAULT_TASK_TYPE

        self.headers = as_string_dict(config.get("headers"))
        self.poll_headers = {
            **self.headers,
            **as_string_dict(config.get("poll_headers")),
            **as_string_dict(config.get("pollHeaders")),
        }
        self.extra_body = merged_extra_body(config)

        self.negative_prompt = config_string(config, "negativePrompt", "negative_prompt")
        self.size = config_string(config, "size")
        self.seed = to_finite_number(config.get("seed"))
        self.steps = to_finite_number(config.get("steps"))
        self.guidance = to_finite_number(config.get("guidance"))
        self.loras = normalize_loras(config.get("loras"))

        self.task_id_path = config_string(config, "taskIdPath", "task_id_path") or "task_id"
        self.status_path = config_string(config, "statusPath", "status_path") or "task_status"
        self.request_id_paths = config_paths(config, "requestIdPaths", "request_id_paths", DEFAULT_REQUEST_ID_PATHS)
        self.response_url_paths = config_paths(config, "responseUrlPaths", "response_url_paths", DEFAULT_RESPONSE_URL_PATHS)

        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)
        self.poll_interval_ms = config_positive_number(config, "pollIntervalMs", "poll_interval_ms", None)
        self.poll_timeout_ms = config_positive_number(config, "pollTimeoutMs", "poll_timeout_ms", None)

    def build_submit_body(self, request: GenerateRequest) -> Dict[str, Any]:
        """extraBody 中已出现的字段不覆盖"""
        body = dict(self.extra_body)
        body.setdefault("model", self.model)
        body.setdefault("prompt", request.prompt.strip())

        prompt = to_trimmed_string(body.get("prompt"))
        if not prompt:
            raise ProviderError(f"provider {self.name} prompt 不能为空", code=PROVIDER_REQUEST_INVALID)
        body["prompt"] = prompt

        pass_through = {
            "negative_prompt": self.negative_prompt,
            "size": self.size,
            "seed": self.seed,
            "steps": self.steps,
            "guidance": self.guidance,
            "loras": self.loras,
        }
        for key, value in pass_through.items():
            if value is not None and key not in body:
                body[key] = value

        if "image_url" not in body:
            reference_images = resolve_reference_images(body, REFERENCE_IMAGE_KEYS, request)
            if reference_images:
                body["image_url"] = reference_images
        return body

    def poll_url(self, task_id: str) -> str:
        endpoint = self.poll_endpoint_template.replace("{taskId}", quote(task_id, safe=""))
        return build_request_url(self.base_url, endpoint, "modelscope-poll")

    def _image_of(self, payload: Any) -> Optional[str]:
        return resolve_image_url(payload, self.response_url_paths, extract_modelscope_image)

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        body = self.build_submit_body(request)
        started_at = time.monotonic()

        submit_result = await send_request(
            self.http_client,
            "POST",
            self.submit_url,
            self.name,
            timeout_ms=self.timeout_ms,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "X-ModelScope-Async-Mode": "true",
                **self.headers,
            },
            json_body=body,
        )

        task_id = to_trimmed_string(get_by_path(submit_result.body, self.task_id_path))
        request_id = (
            first_string_by_paths(submit_result.body, self.request_id_paths)
            or submit_result.request_id_from_header
        )
        if not task_id:
            raise ProviderError(
                f"provider {self.name} submit 响应缺少 task_id",
                code=PROVIDER_SUBMIT_PARSE_ERROR,
                request_id=request_id,
                details={"response": submit_result.body, "taskIdPath": self.task_id_path},
            )

        interval_ms, timeout_ms = resolve_poll_settings(
            poll_options,
            self.poll_interval_ms,
            self.poll_timeout_ms,
            DEFAULT_POLL_INTERVAL_MS,
            DEFAULT_POLL_TIMEOUT_MS,
        )
        logger.info(f"{self.name} 任务已提交: {task_id}")

        poll_url = self.poll_url(task_id)
        poll_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-ModelScope-Task-Type": self.task_type,
            **self.poll_headers,
        }
        header_request_ids: Dict[str, Optional[str]] = {}

        async def fetch_status():
            result = await send_request(
                self.http_client,
                "GET",
                poll_url,
                self.name,
                timeout_ms=self.timeout_ms,
                headers=poll_headers,
            )
            header_request_ids["last"] = result.request_id_from_header
            return result.body

        return await poll_until_done(
            fetch_status,
            status_of=lambda payload: to_trimmed_string(get_by_path(payload, self.status_path)),
            image_of=self._image_of,
            error_of=lambda payload: first_string_by_paths(payload, FAILURE_MESSAGE_PATHS),
            label=self.name,
            task_id=task_id,
            interval_ms=interval_ms,
            timeout_ms=timeout_ms,
            started_at=started_at,
            request_id=request_id,
            request_id_of=lambda payload: (
                first_string_by_paths(payload, self.request_id_paths) or header_request_ids.get("last")
            ),
        )
