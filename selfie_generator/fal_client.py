"""
fal.run 客户端 - 表单字段名可配置的同步生成接口
"""

import logging
import os
from functools import partial
from typing import Any, Dict, Optional

from .exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_HTTP_FAILED,
    PROVIDER_PARSE_ERROR,
    PROVIDER_REQUEST_INVALID,
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
    first_present,
    first_string_by_paths,
    is_absolute_url,
    merged_extra_body,
    resolve_image_url,
    resolve_reference_images,
    to_finite_number,
    to_optional_string,
)
from .http_utils import DEFAULT_TIMEOUT_MS, HttpResult, ensure_http_client, send_request
from .models import GenerateRequest, PollOptions, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://fal.run"
DEFAULT_ENDPOINT = "/xai/grok-imagine-image/edit"
DEFAULT_RESPONSE_URL_PATHS = ("images.0.url", "data.images.0.url", "output.images.0.url", "image.url")

REQUEST_ID_HEADERS = ("x-fal-request-id", "x-request-id")
REQUEST_FORMATS = ("json", "multipart")

REFERENCE_IMAGE_KEYS = ("image_url", "input_image", "image", "images")

extract_fal_image = partial(
    extract_image_url,
    direct_keys=("url", "image"),
    nested_keys=("images", "data", "output", "result"),
)


def _resolve_endpoint(config: Dict[str, Any]) -> str:
    """endpoint 优先，其次把 model 当作路径，最后使用默认模型"""
    endpoint = config_string(config, "endpoint")
    if endpoint:
        return endpoint

    model = config_string(config, "model")
    if model:
        if is_absolute_url(model):
            return model
        return model if model.startswith("/") else f"/{model}"

    return DEFAULT_ENDPOINT


def normalize_error_message(parsed: Any) -> Optional[str]:
    if not parsed:
        return None
    if isinstance(parsed, str):
        return parsed
    if not isinstance(parsed, dict):
        return None

    for key in ("error", "message", "detail", "reason"):
        direct = to_optional_string(parsed.get(key))
        if direct:
            return direct

    nested = parsed.get("error")
    if isinstance(nested, dict):
        for key in ("message", "detail", "reason"):
            message = to_optional_string(nested.get(key))
            if message:
                return message
    return None


class FalClient:
    """fal.run 图片生成客户端"""

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        """
        初始化 fal 客户端

        Args:
            name: provider 名称
            config: provider 配置（apiKey 可由环境变量 FAL_KEY 提供）
            http_client: 可注入的 httpx.AsyncClient
        """
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        base_url = config_string(config, "baseUrl", "base_url") or DEFAULT_BASE_URL
        self.api_key = config_string(config, "apiKey", "api_key") or (os.getenv("FAL_KEY") or "").strip()
        if not self.api_key:
            raise ProviderError(f"provider {name} 缺少 apiKey（或环境变量 FAL_KEY）", code=PROVIDER_CONFIG_INVALID)

        request_format = (config_string(config, "requestFormat", "request_format") or "json").lower()
        if request_format not in REQUEST_FORMATS:
            raise ProviderError(
                f"provider {name} 不支持的 requestFormat: {request_format}",
                code=PROVIDER_CONFIG_INVALID,
            )

        num_images = to_finite_number(first_present(config, "numImages", "num_images"))

        self.url = build_request_url(base_url, _resolve_endpoint(config), "fal")
        self.request_format = request_format
        self.auth_scheme = config_string(config, "authScheme", "auth_scheme") or "Key"
        self.image_field = config_string(config, "imageField", "image_field") or "image_url"
        self.prompt_field = config_string(config, "promptField", "prompt_field") or "prompt"
        self.num_images = min(8, max(1, int(num_images))) if num_images is not None else 1
        self.aspect_ratio = config_string(config, "aspectRatio", "aspect_ratio")
        self.output_format = config_string(config, "outputFormat", "output_format")
        self.headers = as_string_dict(config.get("headers"))
        self.extra_body = merged_extra_body(config)
        self.response_url_paths = config_paths(config, "responseUrlPaths", "response_url_paths", DEFAULT_RESPONSE_URL_PATHS)
        self.request_id_paths = config_paths(config, "requestIdPaths", "request_id_paths", DEFAULT_REQUEST_ID_PATHS)
        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)

    def build_request_body(self, request: GenerateRequest) -> Dict[str, Any]:
        """已在 extraBody 中出现的字段不覆盖"""
        prompt = request.prompt.strip()
        if not prompt:
            raise ProviderError(f"provider {self.name} prompt 不能为空", code=PROVIDER_REQUEST_INVALID)

        body = dict(self.extra_body)
        body.setdefault(self.prompt_field, prompt)

        reference_images = resolve_reference_images(body, REFERENCE_IMAGE_KEYS, request)
        if self.image_field not in body and reference_images:
            body[self.image_field] = reference_images[0] if len(reference_images) == 1 else reference_images

        body.setdefault("num_images", self.num_images)
        if self.aspect_ratio:
            body.setdefault("aspect_ratio", self.aspect_ratio)
        if self.output_format:
            body.setdefault("output_format", self.output_format)
        return body

    def _raise_business_error(self, result: HttpResult) -> None:
        """没有 images 且带 error / detail 时才视为业务错误（成功结果可能附带 revised_prompt 等字段）"""
        record = result.body
        if not isinstance(record, dict) or "images" in record:
            return
        if "error" not in record and "detail" not in record:
            return
        message = normalize_error_message(record)
        if not message:
            return
        raise ProviderError(
            f"fal 业务错误: {message}",
            code=PROVIDER_HTTP_FAILED,
            transient=False,
            request_id=result.request_id_from_header,
            details={"url": self.url, "body": result.body},
        )

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        body = self.build_request_body(request)
        headers = {"Authorization": f"{self.auth_scheme} {self.api_key}", **self.headers}
        logger.debug(f"{self.name} 请求 {self.url} ({self.request_format})")

        if self.request_format == "multipart":
            result = await send_request(
                self.http_client, "POST", self.url, "fal",
                timeout_ms=self.timeout_ms,
                headers=headers,
                form_data=body,
                request_id_headers=REQUEST_ID_HEADERS,
            )
        else:
            result = await send_request(
                self.http_client, "POST", self.url, "fal",
                timeout_ms=self.timeout_ms,
                headers=headers,
                json_body=body,
                request_id_headers=REQUEST_ID_HEADERS,
            )
        self._raise_business_error(result)

        request_id = first_string_by_paths(result.body, self.request_id_paths) or result.request_id_from_header
        image_url = resolve_image_url(result.body, self.response_url_paths, extract_fal_image)
        if not image_url:
            raise ProviderError(
                f"provider {self.name} 响应中未找到图片 URL",
                code=PROVIDER_PARSE_ERROR,
                request_id=request_id,
                details={"response": result.body, "responseUrlPaths": self.response_url_paths},
            )

        return ProviderResult(image_url=image_url, request_id=request_id)
