"""
HTTP 工具 - 所有 provider 共用的请求发送与错误映射

传输层是可注入的 httpx.AsyncClient；未注入时每次请求临时创建并关闭。
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .exceptions import (
    PROVIDER_FETCH_MISSING,
    PROVIDER_HTTP_FAILED,
    PROVIDER_TIMEOUT,
    ProviderError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 180000

REQUEST_ID_HEADERS = ("x-request-id",)


@dataclass
class HttpResult:
    """解析后的响应"""
    body: Any
    status_code: int
    request_id_from_header: Optional[str] = None


def ensure_http_client(http_client: Any, provider_name: str) -> Optional[httpx.AsyncClient]:
    """
    校验注入的 HTTP 客户端

    Raises:
        ProviderError: 注入对象没有可调用的 request 方法
    """
    if http_client is not None and not callable(getattr(http_client, "request", None)):
        raise ProviderError(
            f"provider {provider_name} 缺少 HTTP 客户端实现",
            code=PROVIDER_FETCH_MISSING,
        )
    return http_client


def is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


def parse_body(text: str) -> Any:
    """空响应视为空字典，非 JSON 原样返回文本"""
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return text


def header_request_id(response: httpx.Response, header_names: Sequence[str] = REQUEST_ID_HEADERS) -> Optional[str]:
    for header in header_names:
        value = response.headers.get(header)
        if value:
            return value
    return None


async def _send(http_client: Optional[httpx.AsyncClient], method: str, url: str, **kwargs) -> httpx.Response:
    if http_client is not None:
        return await http_client.request(method, url, **kwargs)
    async with httpx.AsyncClient() as client:
        return await client.request(method, url, **kwargs)


async def send_request(
    http_client: Optional[httpx.AsyncClient],
    method: str,
    url: str,
    label: str,
    timeout_ms: float = DEFAULT_TIMEOUT_MS,
    headers: Optional[Dict[str, str]] = None,
    json_body: Any = None,
    form_data: Optional[Dict[str, Any]] = None,
    request_id_headers: Sequence[str] = REQUEST_ID_HEADERS,
    accept_image: bool = False,
) -> HttpResult:
    """
    发送一次 HTTP 请求并解析响应

    Args:
        http_client: 注入的客户端（None 时临时创建）
        method: 请求方法
        url: 请求地址
        label: 日志与错误信息中的 provider 标识
        timeout_ms: 单次请求超时（毫秒）
        headers: 请求头
        json_body: JSON 请求体
        form_data: multipart 表单字段（与 json_body 二选一）
        request_id_headers: 读取 request id 的响应头（按顺序）
        accept_image: 是否接受 image/* 二进制响应（转为 {data:[{b64_json}]}）

    Returns:
        HttpResult: 解析后的响应

    Raises:
        ProviderError: 超时、连接失败或非 2xx 响应
    """
    kwargs: Dict[str, Any] = {
        "headers": headers or {},
        "timeout": timeout_ms / 1000,
    }
    if form_data is not None:
        kwargs["files"] = multipart_fields(form_data)
    elif json_body is not None:
        kwargs["json"] = json_body

    logger.debug(f"{label} 请求: {method} {url}")

    try:
        response = await _send(http_client, method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderError(
            f"{label} 请求超时: {timeout_ms}ms",
            code=PROVIDER_TIMEOUT,
            transient=True,
            details={"url": url, "timeoutMs": timeout_ms},
        ) from e
    except httpx.TransportError as e:
        raise ProviderError(
            f"{label} 请求失败: {e}",
            code=PROVIDER_HTTP_FAILED,
            transient=True,
            details={"url": url},
        ) from e

    request_id = header_request_id(response, request_id_headers)
    content_type = response.headers.get("content-type", "").lower()

    if accept_image and response.is_success and content_type.startswith("image/"):
        encoded = base64.b64encode(response.content).decode("ascii")
        return HttpResult(
            body={"data": [{"b64_json": encoded}]},
            status_code=response.status_code,
            request_id_from_header=request_id,
        )

    body = parse_body(response.text)
    logger.debug(f"{label} 响应状态码: {response.status_code}")

    if not response.is_success:
        raise ProviderError(
            f"{label} HTTP 请求失败: {response.status_code}",
            code=PROVIDER_HTTP_FAILED,
            transient=is_transient_status(response.status_code),
            request_id=request_id,
            details={"status": response.status_code, "url": url, "body": body},
        )

    return HttpResult(body=body, status_code=response.status_code, request_id_from_header=request_id)


def multipart_fields(form_data: Dict[str, Any]) -> List[Tuple[str, Tuple[None, str]]]:
    """
    表单字段转为 httpx 的 files 参数

    文件名为 None 的条目按普通表单字段编码；列表值展开为多个同名字段。
    """
    fields = []
    for key, value in form_data.items():
        items = value if isinstance(value, (list, tuple)) else [value]
        for item in items:
            fields.append((key, (None, _form_value(item))))
    return fields


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)
