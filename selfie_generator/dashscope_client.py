"""
阿里云 DashScope 客户端 - 多模态生成接口（wan 系列 / qwen-image-edit 系列）

参考文档: https://help.aliyun.com/zh/model-studio/
"""

import logging
import os
import re
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, Optional, Tuple

from .exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_HTTP_FAILED,
    PROVIDER_PARSE_ERROR,
    PROVIDER_REQUEST_INVALID,
    ProviderError,
)
from .extraction import (
    DEFAULT_REQUEST_ID_PATHS,
    as_dict,
    as_string_dict,
    build_request_url,
    config_paths,
    config_positive_number,
    config_string,
    extract_image_url,
    first_present,
    first_string_by_paths,
    merged_extra_body,
    resolve_image_url,
    resolve_reference_images,
    to_bool,
    to_finite_number,
    to_optional_string,
)
from .http_utils import DEFAULT_TIMEOUT_MS, HttpResult, ensure_http_client, send_request
from .models import GenerateRequest, PollOptions, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://dashscope.aliyuncs.com/api/v1"
DEFAULT_ENDPOINT = "/services/aigc/multimodal-generation/generation"

DEFAULT_RESPONSE_URL_PATHS = (
    "output.choices.0.message.content.0.image",
    "output.choices.0.message.content",
    "output.choices.0.message",
    "output.choices",
    "output",
)

MAX_SEED = 2147483647

REFERENCE_IMAGE_KEYS = ("image", "images", "input_image", "image_url", "input")

extract_dashscope_image = partial(
    extract_image_url,
    direct_keys=("image", "url"),
    nested_keys=("content", "message", "choices", "output", "data", "result"),
)


@dataclass(frozen=True)
class ModelCapability:
    """模型支持的可选参数"""
    n_range: Optional[Tuple[int, int]]
    supports_size: bool
    supports_prompt_extend: bool
    disable_interleave: bool = False


# 按顺序匹配，第一条命中即生效；新模型上线时在这里补充
MODEL_CAPABILITIES = (
    (re.compile(r"^qwen-image-edit$", re.IGNORECASE), ModelCapability((1, 1), False, False)),
    (re.compile(r"^qwen-image-edit", re.IGNORECASE), ModelCapability((1, 6), True, True)),
    (re.compile(r"^wan[\w.-]*image$", re.IGNORECASE), ModelCapability((1, 4), True, True, disable_interleave=True)),
)

UNKNOWN_MODEL_CAPABILITY = ModelCapability(None, False, False)


def model_capability(model: str) -> ModelCapability:
    for pattern, capability in MODEL_CAPABILITIES:
        if pattern.search(model):
            return capability
    return UNKNOWN_MODEL_CAPABILITY


def normalize_seed(value: Any) -> Optional[int]:
    """seed 只接受 [0, 2147483647] 范围内的整数"""
    number = to_finite_number(value)
    if number is None or number != int(number):
        return None
    number = int(number)
    if number < 0 or number > MAX_SEED:
        return None
    return number


class DashScopeClient:
    """阿里云 DashScope 多模态生成客户端"""

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        """
        初始化 DashScope 客户端

        Args:
            name: provider 名称
            config: provider 配置（apiKey 可由环境变量 DASHSCOPE_API_KEY 提供）
            http_client: 可注入的 httpx.AsyncClient

        Raises:
            ProviderError: 缺少 apiKey / model
        """
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        base_url = config_string(config, "baseUrl", "base_url") or DEFAULT_BASE_URL
        endpoint = config_string(config, "endpoint") or DEFAULT_ENDPOINT
        self.api_key = config_string(config, "apiKey", "api_key") or (os.getenv("DASHSCOPE_API_KEY") or "").strip()
        self.model = config_string(config, "model")

        if not self.api_key:
            raise ProviderError(
                f"provider {name} 缺少 apiKey（或环境变量 DASHSCOPE_API_KEY）",
                code=PROVIDER_CONFIG_INVALID,
            )
        if not self.model:
            raise ProviderError(f"provider {name} 缺少 model", code=PROVIDER_CONFIG_INVALID)

        n = to_finite_number(config.get("n"))
        self.url = build_request_url(base_url, endpoint, "aliyun")
        self.n = int(n) if n is not None and n > 0 else 1
        self.size = config_string(config, "size")
        self.negative_prompt = config_string(config, "negativePrompt", "negative_prompt")
        self.prompt_extend = to_bool(first_present(config, "promptExtend", "prompt_extend"))
        watermark = to_bool(config.get("watermark"))
        self.watermark = watermark if watermark is not None else False
        self.seed = normalize_seed(config.get("seed"))
        self.headers = as_string_dict(config.get("headers"))
        self.extra_body = merged_extra_body(config)
        self.response_url_paths = config_paths(config, "responseUrlPaths", "response_url_paths", DEFAULT_RESPONSE_URL_PATHS)
        self.request_id_paths = config_paths(config, "requestIdPaths", "request_id_paths", DEFAULT_REQUEST_ID_PATHS)
        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)

    def _build_parameters(self) -> Dict[str, Any]:
        capability = model_capability(self.model)

        n = self.n
        if capability.n_range is not None:
            low, high = capability.n_range
            n = min(high, max(low, n))

        parameters: Dict[str, Any] = {"n": n, "watermark": self.watermark}
        if capability.disable_interleave:
            parameters["enable_interleave"] = False
        if self.negative_prompt:
            parameters["negative_prompt"] = self.negative_prompt
        if self.seed is not None:
            parameters["seed"] = self.seed
        if capability.supports_size and self.size:
            parameters["size"] = self.size
        if capability.supports_prompt_extend:
            parameters["prompt_extend"] = self.prompt_extend if self.prompt_extend is not None else True
        return parameters

    def build_request_body(self, request: GenerateRequest) -> Dict[str, Any]:
        """
        构建请求体

        extraBody 中除 model / input / parameters 以外的字段原样透传，
        extraBody.parameters 作为底，计算出的参数覆盖其上。
        """
        prompt = request.prompt.strip()
        if not prompt:
            raise ProviderError(f"provider {self.name} prompt 不能为空", code=PROVIDER_REQUEST_INVALID)

        reference_images = resolve_reference_images(self.extra_body, REFERENCE_IMAGE_KEYS, request)
        content = [{"image": image} for image in reference_images]
        content.append({"text": prompt})

        body = {
            key: value
            for key, value in self.extra_body.items()
            if key not in ("model", "input", "parameters")
        }
        body["model"] = self.model
        body["input"] = {"messages": [{"role": "user", "content": content}]}
        body["parameters"] = {**as_dict(self.extra_body.get("parameters")), **self._build_parameters()}
        return body

    def _raise_business_error(self, result: HttpResult) -> None:
        """200 响应体里带 code 字段即为业务错误"""
        record = as_dict(result.body)
        error_code = to_optional_string(record.get("code"))
        if not error_code:
            return
        message = to_optional_string(record.get("message")) or error_code
        raise ProviderError(
            f"aliyun 业务错误: {message}",
            code=PROVIDER_HTTP_FAILED,
            transient=False,
            request_id=to_optional_string(record.get("request_id")) or result.request_id_from_header,
            details={"status": result.status_code, "url": self.url, "body": result.body},
        )

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        body = self.build_request_body(request)
        logger.debug(f"{self.name} 请求 model={self.model}, 参考图 {len(body['input']['messages'][0]['content']) - 1} 张")

        result = await send_request(
            self.http_client,
            "POST",
            self.url,
            "aliyun",
            timeout_ms=self.timeout_ms,
            headers={"Authorization": f"Bearer {self.api_key}", **self.headers},
            json_body=body,
        )
        self._raise_business_error(result)

        request_id = first_string_by_paths(result.body, self.request_id_paths) or result.request_id_from_header
        image_url = resolve_image_url(result.body, self.response_url_paths, extract_dashscope_image)
        if not image_url:
            raise ProviderError(
                f"provider {self.name} 响应中未找到图片 URL",
                code=PROVIDER_PARSE_ERROR,
                request_id=request_id,
                details={"response": result.body, "responseUrlPaths": self.response_url_paths},
            )

        return ProviderResult(image_url=image_url, request_id=request_id)
