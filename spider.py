"""
用户图片订阅源爬虫 - 命令行入口

增量下载用户发布的图片，按 CRC-32C 精确判重、按感知哈希近似判重，
每页处理完成后写检查点，下次运行从检查点继续。
"""
import asyncio
import json
import sys
from typing import List, Optional

from loguru import logger
from pydantic import ValidationError

from cli.commands import create_parser
from cli.handlers import build_config, handle_checkpoint_status, handle_download
from config import LogConfig


def setup_logging(log_config: LogConfig):
    """配置日志：彩色控制台 + 按大小轮转的日志文件"""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=log_config.log_level,
        colorize=True
    )

    log_file = log_config.log_dir / log_config.log_file
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"⚠️  无法创建日志目录 {log_file.parent}，只输出到控制台: {e}")
        return
    logger.add(
        log_file,
        rotation=log_config.rotation,
        retention=log_config.retention,
        encoding="utf-8",
        level="DEBUG"
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """主函数 - 使用子命令模式"""
    parser = create_parser()
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)

    try:
        app_config = build_config(args)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"❌ 配置无效: {e}", file=sys.stderr)
        return 2

    setup_logging(app_config.log)

    print("\n" + "=" * 60)
    print("🕷️  用户图片订阅源爬虫")
    print("=" * 60)

    # 根据子命令执行相应操作
    if args.command == 'download':
        return await handle_download(args, app_config)
    elif args.command == 'checkpoint-status':
        return await handle_checkpoint_status(args, app_config)

    parser.print_help()
    return 2


def run():
    """控制台脚本入口"""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
