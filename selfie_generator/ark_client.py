"""
火山引擎 Ark 图片生成客户端 - /api/v3/images/generations
"""

import logging
from functools import partial
from typing import Any, Dict, Optional

from .exceptions import PROVIDER_CONFIG_INVALID, PROVIDER_HTTP_FAILED, PROVIDER_PARSE_ERROR, ProviderError
from .extraction import (
    DEFAULT_REQUEST_ID_PATHS,
    as_dict,
    as_string_dict,
    build_request_url,
    config_paths,
    config_positive_number,
    config_string,
    extract_image_url,
    first_string_by_paths,
    merged_extra_body,
    pick_plain_or_base64,
    resolve_image_url,
    resolve_reference_images,
    to_bool,
    to_optional_string,
)
from .http_utils import DEFAULT_TIMEOUT_MS, HttpResult, ensure_http_client, send_request
from .models import GenerateRequest, PollOptions, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://ark.cn-beijing.volces.com"
DEFAULT_ENDPOINT = "/api/v3/images/generations"
DEFAULT_RESPONSE_URL_PATHS = ("data.0.url", "data.0.b64_json")

# 单次请求最多携带的参考图数量
MAX_REFERENCE_IMAGES = 14

REFERENCE_IMAGE_KEYS = ("image", "images", "input_image", "image_url")

extract_ark_image = partial(
    extract_image_url,
    direct_keys=("url", "image_url", "b64_json"),
    nested_keys=("data", "output", "images", "result"),
    picker=pick_plain_or_base64,
)


class ArkClient:
    """火山引擎 Ark 图片生成客户端（同步返回）"""

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        base_url = config_string(config, "baseUrl", "base_url") or DEFAULT_BASE_URL
        endpoint = config_string(config, "endpoint") or DEFAULT_ENDPOINT
        self.api_key = config_string(config, "apiKey", "api_key")
        self.model = config_string(config, "model")

        if not self.api_key:
            raise ProviderError(f"provider {name} 缺少 apiKey", code=PROVIDER_CONFIG_INVALID)
        if not self.model:
            raise ProviderError(f"provider {name} 缺少 model", code=PROVIDER_CONFIG_INVALID)

        self.url = build_request_url(base_url, endpoint, "volcengine-ark")
        self.size = config_string(config, "size")
        self.response_format = config_string(config, "responseFormat", "response_format") or "url"
        watermark = to_bool(config.get("watermark"))
        self.watermark = watermark if watermark is not None else False
        self.headers = as_string_dict(config.get("headers"))
        self.extra_body = merged_extra_body(config)
        self.response_url_paths = config_paths(config, "responseUrlPaths", "response_url_paths", DEFAULT_RESPONSE_URL_PATHS)
        self.request_id_paths = config_paths(config, "requestIdPaths", "request_id_paths", DEFAULT_REQUEST_ID_PATHS)
        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)

    def build_request_body(self, request: GenerateRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {**self.extra_body, "model": self.model, "prompt": request.prompt}

        reference_images = resolve_reference_images(body, REFERENCE_IMAGE_KEYS, request)
        if "image" not in body and reference_images:
            limited = reference_images[:MAX_REFERENCE_IMAGES]
            body["image"] = limited[0] if len(limited) == 1 else limited
        body.pop("images", None)

        if self.size and "size" not in body:
            body["size"] = self.size
        body.setdefault("response_format", self.response_format)
        body.setdefault("watermark", self.watermark)
        return body

    def _raise_business_error(self, result: HttpResult) -> None:
        """200 响应体里的 error 对象视为业务错误"""
        error = as_dict(result.body).get("error")
        if not isinstance(error, dict):
            return
        raise ProviderError(
            f"volcengine-ark 业务错误: {to_optional_string(error.get('message')) or 'unknown'}",
            code=PROVIDER_HTTP_FAILED,
            transient=False,
            request_id=result.request_id_from_header,
            details={"url": self.url, "body": result.body},
        )

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        body = self.build_request_body(request)
        logger.debug(f"{self.name} 请求 model={self.model}, response_format={body.get('response_format')}")

        result = await send_request(
            self.http_client,
            "POST",
            self.url,
            "volcengine-ark",
            timeout_ms=self.timeout_ms,
            headers={"Authorization": f"Bearer {self.api_key}", **self.headers},
            json_body=body,
            accept_image=True,
        )
        self._raise_business_error(result)

        request_id = first_string_by_paths(result.body, self.request_id_paths) or result.request_id_from_header
        image_url = resolve_image_url(result.body, self.response_url_paths, extract_ark_image)
        if not image_url:
            raise ProviderError(
                f"provider {self.name} 响应中未找到图片 URL",
                code=PROVIDER_PARSE_ERROR,
                request_id=request_id,
                details={"response": result.body, "responseUrlPaths": self.response_url_paths},
            )

        return ProviderResult(image_url=image_url, request_id=request_id)
