"""
通用解析工具 - 从各家 provider 的弱类型 JSON / 文本中提取图片与字段

不同厂商返回图片的位置各不相同（URL、data URL、纯 base64、
嵌在 markdown 文本里），这里按优先级逐层尝试。
"""

import math
import re
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .exceptions import PROVIDER_CONFIG_INVALID, ProviderError

# 递归遍历最大深度
MAX_WALK_DEPTH = 8

# 纯 base64 被识别为图片的最小长度
MIN_RAW_BASE64_LENGTH = 64

# 对话文本中内嵌 base64 的最小连续长度
CHAT_BASE64_RUN_LENGTH = 100

IMAGE_MAGIC_PREFIXES = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)

DEFAULT_DIRECT_KEYS = ("b64_json", "url", "image_url", "image", "output_images")
DEFAULT_NESTED_KEYS = ("images", "content", "message", "choices", "output", "data", "result")

COLLECT_KEYS = (
    "b64_json",
    "url",
    "image_url",
    "input_image",
    "image",
    "images",
    "output_images",
    "text",
    "content",
    "message",
    "choices",
    "output",
    "data",
    "result",
    "delta",
)

_DIGITS_RE = re.compile(r"^\d+$")
_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_DATA_IMAGE_PREFIX_RE = re.compile(r"^data:image/", re.IGNORECASE)
_DATA_IMAGE_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]+$", re.IGNORECASE)
_WRAPPED_DATA_URL_RE = re.compile(r"\((data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]+)\)", re.IGNORECASE)
_WRAPPED_URL_RE = re.compile(r"\((https?://[^\s)]+)\)", re.IGNORECASE)
_DATA_URL_RE = re.compile(r"(data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=]+)", re.IGNORECASE)
_EMBEDDED_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[),.;!?]+$")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# 类型转换
# ---------------------------------------------------------------------------

def as_dict(value: Any) -> Dict[str, Any]:
    """非字典一律视为空字典"""
    return value if isinstance(value, dict) else {}


def as_string_dict(value: Any) -> Dict[str, str]:
    """只保留非空字符串值（用于 headers）"""
    return {
        str(key): raw
        for key, raw in as_dict(value).items()
        if isinstance(raw, str) and raw
    }


def to_optional_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and math.isfinite(value):
        return str(int(value)) if value.is_integer() else str(value)
    return None


def to_trimmed_string(value: Any) -> Optional[str]:
    """转为去空白字符串，空串返回 None"""
    text = to_optional_string(value)
    if text is None:
        return None
    text = text.strip()
    return text or None


def to_finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value if math.isfinite(value) else None


def to_bool(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def to_string_list(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item for item in value if isinstance(item, str) and item]


def first_present(mapping: Dict[str, Any], *keys: str) -> Any:
    """按顺序返回第一个非 None 的键值（兼容 camelCase / snake_case 两种写法）"""
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def dedupe_non_empty_strings(values: Iterable[str]) -> List[str]:
    result: List[str] = []
    seen = set()
    for value in values:
        if not isinstance(value, str):
            continue
        trimmed = value.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        result.append(trimmed)
    return result


# ---------------------------------------------------------------------------
# 路径访问
# ---------------------------------------------------------------------------

def get_by_path(source: Any, dotted_path: Optional[str], default: Any = None) -> Any:
    """
    按点号路径读取嵌套值

    数字段访问列表下标，其余段访问字典键；任何一步未命中都返回 default，
    不会抛出异常。

    Args:
        source: 任意 JSON 值
        dotted_path: 形如 "data.0.url" 的路径
        default: 未命中时的返回值
    """
    if not dotted_path:
        return default

    current = source
    for key in dotted_path.split("."):
        if current is None:
            return default
        if _DIGITS_RE.match(key):
            if not isinstance(current, (list, tuple)):
                return default
            index = int(key)
            if index >= len(current):
                return default
            current = current[index]
        elif isinstance(current, dict):
            if key not in current:
                return default
            current = current[key]
        else:
            return default
    return current


def first_string_by_paths(source: Any, paths: Sequence[str]) -> Optional[str]:
    for dotted_path in paths:
        text = to_trimmed_string(get_by_path(source, dotted_path))
        if text:
            return text
    return None


# ---------------------------------------------------------------------------
# 图片识别
# ---------------------------------------------------------------------------

def is_absolute_url(value: str) -> bool:
    return bool(_ABSOLUTE_URL_RE.match(value))


def is_likely_base64(text: str, min_length: int = 4) -> bool:
    return len(text) >= min_length and len(text) % 4 == 0 and bool(_BASE64_RE.match(text))


def is_data_image_url(value: str) -> bool:
    return bool(_DATA_IMAGE_URL_RE.match(value))


def detect_image_mime(base64_data: str) -> str:
    """根据 base64 开头的魔数判断图片类型，默认 png"""
    for prefix, mime in IMAGE_MAGIC_PREFIXES:
        if base64_data.startswith(prefix):
            return mime
    return "image/png"


def as_image_data_url(base64_data: str) -> str:
    return f"data:{detect_image_mime(base64_data)};base64,{base64_data}"


def _trim_potential_url(text: str) -> str:
    return _TRAILING_PUNCT_RE.sub("", text)


def pick_plain_image(value: str) -> Optional[str]:
    """只接受完整的 http(s) URL 或 data:image URL"""
    text = value.strip()
    if is_absolute_url(text) or _DATA_IMAGE_PREFIX_RE.match(text):
        return text
    return None


def pick_plain_or_base64(value: str, min_length: int = MIN_RAW_BASE64_LENGTH) -> Optional[str]:
    """在 pick_plain_image 基础上接受纯 base64（转换为 data URL）"""
    plain = pick_plain_image(value)
    if plain:
        return plain
    text = value.strip()
    if is_likely_base64(text, min_length):
        return as_image_data_url(text)
    return None


def pick_image_candidate(value: str, min_base64_run: int = MIN_RAW_BASE64_LENGTH) -> Optional[str]:
    """
    从任意文本中挑出图片引用

    依次尝试：整串 URL / data URL、整串 base64、括号包裹的 data URL 或 URL
    （markdown 图片语法）、文本中的 data URL、文本中的 URL、长 base64 片段。

    Args:
        value: 原始文本
        min_base64_run: 文本中 base64 片段的最小连续长度

    Returns:
        图片 URL 或 data URL，未找到返回 None
    """
    text = value.strip()
    if not text:
        return None

    if is_data_image_url(text) or is_absolute_url(text):
        return _trim_potential_url(text)

    if is_likely_base64(text, MIN_RAW_BASE64_LENGTH):
        return as_image_data_url(text)

    match = _WRAPPED_DATA_URL_RE.search(text)
    if match:
        return match.group(1)

    match = _WRAPPED_URL_RE.search(text)
    if match:
        return _trim_potential_url(match.group(1))

    match = _DATA_URL_RE.search(text)
    if match:
        return match.group(1)

    match = _EMBEDDED_URL_RE.search(text)
    if match:
        return _trim_potential_url(match.group(0))

    match = re.search(r"([A-Za-z0-9+/]{%d,}={0,2})" % min_base64_run, text)
    if match:
        normalized = _WHITESPACE_RE.sub("", match.group(1))
        if is_likely_base64(normalized):
            return as_image_data_url(normalized)

    return None


pick_chat_image_candidate = partial(pick_image_candidate, min_base64_run=CHAT_BASE64_RUN_LENGTH)


def collect_image_candidates(
    value: Any,
    result: Optional[List[str]] = None,
    depth: int = 0,
    picker: Callable[[str], Optional[str]] = pick_image_candidate,
) -> List[str]:
    """
    递归收集所有图片候选（去重并保持顺序）

    Args:
        value: 任意 JSON 值
        result: 收集结果（递归时复用）
        depth: 当前深度
        picker: 字符串识别函数

    Returns:
        图片候选列表
    """
    if result is None:
        result = []
    if depth > MAX_WALK_DEPTH or value is None:
        return result

    if isinstance(value, str):
        candidate = picker(value)
        if candidate and candidate not in result:
            result.append(candidate)
    elif isinstance(value, (list, tuple)):
        for item in value:
            collect_image_candidates(item, result, depth + 1, picker)
    elif isinstance(value, dict):
        for key in COLLECT_KEYS:
            collect_image_candidates(value.get(key), result, depth + 1, picker)

    return result


def extract_image_url(
    value: Any,
    direct_keys: Sequence[str] = DEFAULT_DIRECT_KEYS,
    nested_keys: Sequence[str] = DEFAULT_NESTED_KEYS,
    picker: Callable[[str], Optional[str]] = pick_plain_image,
    depth: int = 0,
) -> Optional[str]:
    """
    递归提取第一张图片

    字典先查 direct_keys，再深入 nested_keys；深度超过 MAX_WALK_DEPTH 即停止。
    """
    if depth > MAX_WALK_DEPTH or value is None:
        return None

    if isinstance(value, str):
        return picker(value)

    if isinstance(value, (list, tuple)):
        for item in value:
            found = extract_image_url(item, direct_keys, nested_keys, picker, depth + 1)
            if found:
                return found
        return None

    if isinstance(value, dict):
        for key in list(direct_keys) + list(nested_keys):
            found = extract_image_url(value.get(key), direct_keys, nested_keys, picker, depth + 1)
            if found:
                return found

    return None


def resolve_image_url(
    source: Any,
    paths: Sequence[str],
    extractor: Callable[[Any], Optional[str]],
) -> Optional[str]:
    """先按配置路径逐个尝试，最后整体扫描"""
    for dotted_path in paths:
        image_url = extractor(get_by_path(source, dotted_path))
        if image_url:
            return image_url
    return extractor(source)


def resolve_reference_images(body: Dict[str, Any], keys: Sequence[str], request) -> List[str]:
    """
    确定要发给 provider 的参考图

    extraBody 中显式给出的图片优先，否则使用请求里的参考图 data URL。
    """
    resolved: List[str] = []
    for key in keys:
        collect_image_candidates(body.get(key), resolved)
    if resolved:
        return resolved

    if request.reference_image_data_urls:
        return dedupe_non_empty_strings(request.reference_image_data_urls)
    return dedupe_non_empty_strings([request.reference_image_data_url])


# ---------------------------------------------------------------------------
# URL
# ---------------------------------------------------------------------------

def build_request_url(base_url: Optional[str], endpoint: str, label: str = "provider") -> str:
    """
    拼接请求地址

    endpoint 为绝对地址时直接使用；否则与 base_url 以单个斜杠拼接。
    """
    if is_absolute_url(endpoint):
        return endpoint

    if not base_url:
        raise ProviderError(
            f"{label} 缺少 baseUrl（endpoint 非绝对地址时必填）",
            code=PROVIDER_CONFIG_INVALID,
        )

    return f"{base_url.rstrip('/')}/{endpoint.lstrip('/')}"


# ---------------------------------------------------------------------------
# provider 配置读取
# ---------------------------------------------------------------------------

DEFAULT_REQUEST_ID_PATHS = ("request_id", "requestId", "id")


def config_string(config: Dict[str, Any], *keys: str) -> Optional[str]:
    """读取字符串配置项，空串视为未设置"""
    return to_trimmed_string(first_present(config, *keys))


def config_paths(config: Dict[str, Any], camel_key: str, snake_key: str, defaults: Sequence[str]) -> List[str]:
    paths = to_string_list(first_present(config, camel_key, snake_key))
    return paths or list(defaults)


def config_positive_number(config: Dict[str, Any], camel_key: str, snake_key: str, default: Optional[float]) -> Optional[float]:
    value = to_finite_number(first_present(config, camel_key, snake_key))
    return value if value is not None and value > 0 else default


def merged_extra_body(config: Dict[str, Any]) -> Dict[str, Any]:
    """extra_body 与 extraBody 合并，后者优先"""
    return {**as_dict(config.get("extra_body")), **as_dict(config.get("extraBody"))}
