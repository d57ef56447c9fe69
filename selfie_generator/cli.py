"""
命令行接口
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import ConfigManager
from .engine import SelfieEngine
from .exceptions import GeneratorError
from .models import SelfieMode


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None):
    """配置日志"""
    log_level = getattr(logging, level.upper(), logging.INFO)

    # stdout 只输出结果 JSON
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(message)s",
        datefmt="%H:%M:%S",
        handlers=handlers,
    )

    # 降低第三方库的日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="selfie_generator",
        description="角色自拍生成器 - 多 provider 重试与降级",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  # 使用默认配置与默认角色
  python -m selfie_generator --prompt "在咖啡馆窗边自拍"

  # 指定配置文件与 provider
  python -m selfie_generator -c config/selfie.config.json --provider fal

  # 对镜自拍，输出调试日志
  python -m selfie_generator --mode mirror --log-level DEBUG
        """,
    )

    parser.add_argument(
        "-c", "--config",
        help="配置文件路径 (默认: $SELFIE_CONFIG 或 config/selfie.config.json)",
    )

    parser.add_argument(
        "--character",
        help="角色ID（默认使用配置中的 selectedCharacter）",
    )

    parser.add_argument(
        "--provider",
        help="显式指定 provider",
    )

    parser.add_argument(
        "--prompt",
        default="",
        help="生图提示词",
    )

    parser.add_argument(
        "--mode",
        default=SelfieMode.DIRECT.value,
        choices=[mode.value for mode in SelfieMode],
        help="自拍模式 (默认: direct)",
    )

    parser.add_argument(
        "--event-source",
        default="cli",
        help="触发来源 (默认: cli)",
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="日志级别 (默认: INFO)",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """主入口"""
    args = build_parser().parse_args(argv)

    # 配置日志
    setup_logging(level=args.log_level)
    logger = logging.getLogger(__name__)

    try:
        config_manager = ConfigManager(config_path=Path(args.config) if args.config else None)
        engine = SelfieEngine(config_manager=config_manager)

        result = engine.generate_sync(
            character_id=args.character,
            provider=args.provider,
            prompt=args.prompt,
            mode=args.mode,
            event_source=args.event_source,
        )

        # 输出结果
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))

        return 0 if result.ok else 1

    except GeneratorError as e:
        logger.error(f"生成错误: [{e.code}] {e}")
        print(json.dumps({"ok": False, "error": str(e), "code": e.code}, ensure_ascii=False))
        return 1

    except Exception as e:
        logger.exception(f"未知错误: {e}")
        print(json.dumps({"ok": False, "error": str(e)}, ensure_ascii=False))
        return 1


if __name__ == "__main__":
    sys.exit(main())
