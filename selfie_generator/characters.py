"""
角色资源加载 - 读取角色目录下的 meta.json、character-prompt.md 与参考图

目录结构：
    <root>/<character_id>/meta.json
    <root>/<character_id>/character-prompt.md
    <root>/<character_id>/images/*.png|jpg|jpeg|webp|gif
"""

import base64
import json
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import (
    CHARACTER_ASSET_MISSING,
    CHARACTER_ID_REQUIRED,
    CHARACTER_META_PARSE_ERROR,
    CHARACTER_NOT_FOUND,
    CharacterError,
)
from .models import CharacterAssets

DEFAULT_CHARACTER_ROOT = "assets/characters"

REQUIRED_FILES = ("meta.json", "character-prompt.md")
REFERENCE_IMAGE_DIR = "images"
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".gif"}


def resolve_character_root(character_root: Union[str, Path], cwd: Optional[Path] = None) -> Path:
    """相对路径相对于 cwd 解析"""
    root = Path(character_root)
    if root.is_absolute():
        return root
    return (cwd or Path.cwd()) / root


def image_mime_type(reference_path: Union[str, Path]) -> str:
    """按扩展名猜测参考图 MIME 类型，无法识别时按 PNG 处理"""
    mime_type, _ = mimetypes.guess_type(str(reference_path))
    if mime_type and mime_type.startswith("image/"):
        return mime_type
    return "image/png"


def _reference_image_paths(character_dir: Path, character_id: str) -> List[Path]:
    image_dir = character_dir / REFERENCE_IMAGE_DIR
    if image_dir.is_dir():
        image_paths = sorted(
            path for path in image_dir.iterdir()
            if path.is_file() and path.suffix.lower() in IMAGE_EXTENSIONS
        )
        if image_paths:
            return image_paths

    raise CharacterError(
        f"角色缺少参考图: {character_id}",
        code=CHARACTER_ASSET_MISSING,
        details={
            "characterId": character_id,
            "imageDir": str(image_dir),
            "expected": f"请创建 {REFERENCE_IMAGE_DIR}/ 目录并放入至少一张图片",
        },
    )


def load_character_assets(
    character_id: Optional[str],
    character_root: Union[str, Path] = DEFAULT_CHARACTER_ROOT,
    user_character_root: Optional[Union[str, Path]] = None,
    cwd: Optional[Path] = None,
    allow_missing_reference: bool = False,
) -> CharacterAssets:
    """
    加载角色资源

    用户角色目录优先于内置目录。

    Args:
        character_id: 角色ID
        character_root: 内置角色根目录
        user_character_root: 用户角色根目录（可选）
        cwd: 解析相对路径的基准目录
        allow_missing_reference: 缺少参考图时是否继续（返回空参考图列表）

    Returns:
        CharacterAssets: 角色资源

    Raises:
        CharacterError: 角色不存在、文件缺失或 meta.json 无法解析
    """
    if not character_id:
        raise CharacterError("必须指定角色ID", code=CHARACTER_ID_REQUIRED)

    candidates: List[Path] = []
    if user_character_root:
        candidates.append(Path(user_character_root) / character_id)
    candidates.append(resolve_character_root(character_root, cwd) / character_id)

    character_dir = next((path for path in candidates if (path / "meta.json").is_file()), None)
    if character_dir is None:
        raise CharacterError(
            f"角色不存在: {character_id}",
            code=CHARACTER_NOT_FOUND,
            details={"characterId": character_id, "searched": [str(path) for path in candidates]},
        )

    for required in REQUIRED_FILES:
        if not (character_dir / required).is_file():
            raise CharacterError(
                f"角色资源缺失: {required}",
                code=CHARACTER_ASSET_MISSING,
                details={"filePath": str(character_dir / required), "label": required},
            )

    try:
        with open(character_dir / "meta.json", "r", encoding="utf-8") as f:
            raw_meta = json.load(f)
    except json.JSONDecodeError as e:
        raise CharacterError(
            f"角色 meta.json 解析失败: {character_id}",
            code=CHARACTER_META_PARSE_ERROR,
            details={"characterId": character_id, "cause": str(e)},
        ) from e
    meta: Dict[str, Any] = raw_meta if isinstance(raw_meta, dict) else {}

    character_prompt = (character_dir / "character-prompt.md").read_text(encoding="utf-8").strip()

    try:
        reference_paths = _reference_image_paths(character_dir, character_id)
    except CharacterError:
        if not allow_missing_reference:
            raise
        reference_paths = []

    return CharacterAssets(
        id=character_id,
        character_dir=character_dir,
        reference_path=reference_paths[0] if reference_paths else None,
        reference_paths=reference_paths,
        character_prompt=character_prompt,
        meta=meta,
    )


def read_reference_images_base64(reference_paths: List[Path]) -> List[str]:
    """
    读取参考图并编码为 base64

    Raises:
        CharacterError: 参考图列表为空
    """
    if not reference_paths:
        raise CharacterError("参考图列表不能为空", code=CHARACTER_ASSET_MISSING)
    return [base64.b64encode(Path(path).read_bytes()).decode("ascii") for path in reference_paths]
