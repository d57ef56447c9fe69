"""
OpenAI 兼容图片生成客户端 - 通过 chat/completions 接口生成图片

图片以 markdown / data URL / base64 的形式嵌在 assistant 回复里，
由通用提取器从完整响应 JSON 中挖出。
"""

import logging
import os
from functools import partial
from typing import Any, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from .exceptions import (
    PROVIDER_CONFIG_INVALID,
    PROVIDER_HTTP_FAILED,
    PROVIDER_PARSE_ERROR,
    PROVIDER_REQUEST_INVALID,
    PROVIDER_TIMEOUT,
    ProviderError,
)
from .extraction import (
    as_string_dict,
    config_positive_number,
    config_string,
    extract_image_url,
    merged_extra_body,
    pick_chat_image_candidate,
    resolve_reference_images,
    to_trimmed_string,
)
from .http_utils import DEFAULT_TIMEOUT_MS, ensure_http_client
from .models import GenerateRequest, PollOptions, ProviderResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-image-1.5"

REFERENCE_IMAGE_KEYS = ("image_url", "input_image", "image", "images")

# 这些字段用于构建消息，不再透传给接口
CONSUMED_BODY_KEYS = ("prompt", "image", "images", "image_url", "input_image", "mask")

extract_chat_image = partial(
    extract_image_url,
    direct_keys=("b64_json", "url", "image_url", "text", "content"),
    nested_keys=("images", "message", "choices", "output", "data", "result", "delta"),
    picker=pick_chat_image_candidate,
)


def map_sdk_error(error: Exception, provider_name: str) -> ProviderError:
    """
    将 openai SDK 异常映射为 ProviderError

    超时 -> PROVIDER_TIMEOUT；网络错误 -> 可重试的 PROVIDER_HTTP_FAILED；
    状态码错误 -> PROVIDER_HTTP_FAILED（429 / 5xx 可重试）
    """
    if isinstance(error, openai.APITimeoutError):
        return ProviderError(f"{provider_name} 请求超时", code=PROVIDER_TIMEOUT, transient=True)

    if isinstance(error, openai.APIConnectionError):
        cause = error.__cause__
        return ProviderError(
            f"{provider_name} 网络请求失败: {error}",
            code=PROVIDER_HTTP_FAILED,
            transient=True,
            details={"cause": str(cause) if cause else None},
        )

    if isinstance(error, openai.APIStatusError):
        status = error.status_code
        return ProviderError(
            f"{provider_name} HTTP 请求失败: {status} {error.message}",
            code=PROVIDER_HTTP_FAILED,
            transient=status == 429 or status >= 500,
            request_id=error.request_id,
            details={"status": status, "error": error.body},
        )

    return ProviderError(f"{provider_name} 请求失败: {error}", code=PROVIDER_HTTP_FAILED, transient=True)


class OpenAICompatibleClient:
    """OpenAI 兼容 chat/completions 图片生成客户端"""

    available = True
    unavailable_reason: Optional[str] = None

    def __init__(self, name: str, config: Dict[str, Any], http_client: Any = None):
        """
        初始化客户端

        Args:
            name: provider 名称
            config: provider 配置（apiKey / baseUrl 可由 OPENAI_API_KEY / OPENAI_BASE_URL 提供）
            http_client: 可注入的 httpx.AsyncClient（直接交给 AsyncOpenAI）
        """
        self.name = name
        self.http_client = ensure_http_client(http_client, name)

        self.api_key = config_string(config, "apiKey", "api_key") or to_trimmed_string(os.getenv("OPENAI_API_KEY"))
        if not self.api_key:
            raise ProviderError(
                f"provider {name} 缺少 apiKey（或环境变量 OPENAI_API_KEY）",
                code=PROVIDER_CONFIG_INVALID,
            )

        self.base_url = config_string(config, "baseUrl", "base_url") or to_trimmed_string(os.getenv("OPENAI_BASE_URL"))
        self.model = config_string(config, "model") or DEFAULT_MODEL
        self.headers = as_string_dict(config.get("headers"))
        self.extra_body = merged_extra_body(config)
        self.timeout_ms = config_positive_number(config, "timeoutMs", "timeout_ms", DEFAULT_TIMEOUT_MS)

    def _create_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout_ms / 1000,
            max_retries=0,
            default_headers=self.headers or None,
            http_client=self.http_client,
        )

    def build_chat_body(self, request: GenerateRequest) -> Dict[str, Any]:
        """
        构建 chat/completions 请求体

        extraBody 中的 prompt / image 等字段用于构建消息后移除；
        extraBody 显式给出 messages 时直接使用。
        """
        body = dict(self.extra_body)

        prompt = to_trimmed_string(body.get("prompt")) or request.prompt.strip()
        if not prompt:
            raise ProviderError(f"provider {self.name} prompt 不能为空", code=PROVIDER_REQUEST_INVALID)

        body.setdefault("model", self.model)
        body["stream"] = False

        if "messages" not in body:
            content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
            for reference_image in resolve_reference_images(body, REFERENCE_IMAGE_KEYS, request):
                content.append({"type": "image_url", "image_url": {"url": reference_image}})
            body["messages"] = [{"role": "user", "content": content}]

        for key in CONSUMED_BODY_KEYS:
            body.pop(key, None)
        return body

    async def generate(self, request: GenerateRequest, poll_options: Optional[PollOptions] = None) -> ProviderResult:
        body = self.build_chat_body(request)
        model = body.pop("model")
        messages = body.pop("messages")
        body.pop("stream", None)

        logger.debug(f"{self.name} 发送 chat/completions 请求, model={model}, base_url={self.base_url}")

        client = self._create_client()
        try:
            raw = await client.chat.completions.with_raw_response.create(
                model=model,
                messages=messages,
                stream=False,
                extra_body=body or None,
            )
            request_id = raw.headers.get("x-request-id")
            data = raw.http_response.json()
        except openai.OpenAIError as e:
            raise map_sdk_error(e, self.name) from e
        except ValueError as e:
            raise ProviderError(
                f"provider {self.name} 响应不是合法 JSON: {e}",
                code=PROVIDER_PARSE_ERROR,
            ) from e
        finally:
            # 注入的客户端由调用方负责关闭
            if self.http_client is None:
                await client.close()

        image_url = extract_chat_image(data)
        if not image_url:
            raise ProviderError(
                f"provider {self.name} 响应中未找到图片 URL",
                code=PROVIDER_PARSE_ERROR,
                request_id=request_id,
                details={"response": data},
            )

        return ProviderResult(image_url=image_url, request_id=request_id)
