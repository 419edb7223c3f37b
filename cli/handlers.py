"""
CLI命令处理函数
"""
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from cli.commands import ALL_OWNERS
from config import Config, ConfigLoader
from core.checkpoint import CheckpointManager, list_checkpointed_owners
from core.downloader import RetryingFetcher
from core.exceptions import CheckpointError
from core.keyed_lock import KeyNotFoundError
from spiders.feed_spider import FeedImageSpider


def build_config(args) -> Config:
    """
    加载配置并应用命令行覆盖项

    Raises:
        pydantic.ValidationError: 覆盖后的配置不合法（如并发数为 0）
    """
    config = ConfigLoader.load(getattr(args, 'config_file', None))
    data = config.model_dump()

    if getattr(args, 'download_dir', None) is not None:
        data['image']['download_dir'] = args.download_dir
    if getattr(args, 'max_parallelism', None) is not None:
        data['crawler']['max_parallelism'] = args.max_parallelism
    if getattr(args, 'max_hamming_distance', None) is not None:
        data['dedup']['max_hamming_distance'] = args.max_hamming_distance
    if getattr(args, 'show_progress', None) is not None:
        data['crawler']['show_progress'] = args.show_progress

    return Config.model_validate(data)


def resolve_owners(owners: List[str], download_dir: Path) -> List[str]:
    """
    展开用户列表

    单个 "all"（不区分大小写）表示下载目录中所有带检查点的用户。
    """
    if len(owners) == 1 and owners[0].lower() == ALL_OWNERS:
        resolved = list_checkpointed_owners(download_dir)
        logger.info(f"📂 找到 {len(resolved)} 个已有检查点的用户")
        return resolved

    # 去重并保持顺序
    return list(dict.fromkeys(owners))


async def handle_download(args, config: Optional[Config] = None) -> int:
    """
    处理 download 子命令

    单个用户失败只记录错误，继续下一个用户。

    Returns:
        退出码：全部成功为 0，下载目录无法创建或有用户失败为 1
    """
    config = config or build_config(args)
    download_dir = Path(config.image.download_dir)
    try:
        download_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.critical(f"❌ 无法创建下载目录 {download_dir}: {e}")
        return 1

    owners = resolve_owners(args.owners, download_dir)
    if not owners:
        logger.warning("⚠️  没有需要下载的用户")
        return 0

    failed: List[str] = []
    async with RetryingFetcher(config.crawler) as fetcher:
        for owner in owners:
            spider = FeedImageSpider(owner, fetcher, config)
            try:
                stats = await spider.crawl()
            except KeyNotFoundError:
                raise
            except CheckpointError as e:
                failed.append(owner)
                logger.error(f"❌ 用户 \"{owner}\" 的检查点已损坏，跳过: {e}")
                continue
            except Exception as e:
                failed.append(owner)
                logger.exception(f"❌ 下载用户 \"{owner}\" 的图片时出错，请稍后重试: {e!r}")
                continue
            print_statistics(stats)

    if failed:
        logger.warning(f"⚠️  {len(failed)} 个用户失败: {', '.join(failed)}")
        return 1
    return 0


def print_statistics(stats: Dict[str, Any]):
    """输出统计信息"""
    print("\n" + "=" * 60)
    print(f"📊 爬取统计: {stats.get('owner', '')}")
    print(f"  页数: {stats['pages']}")
    print(f"  发现图片: {stats['images_found']}")
    print(f"  保存成功: {stats['images_saved']}")
    print(f"  下载失败: {stats['images_failed']}")
    print(f"  去重跳过: {stats['duplicates_skipped']}")
    print(f"  已在磁盘: {stats['already_on_disk']}")
    print(f"  累计重复: {stats['duplicate_count']}")
    print("=" * 60)


async def handle_checkpoint_status(args, config: Optional[Config] = None) -> int:
    """处理 checkpoint-status 子命令"""
    config = config or build_config(args)
    checkpoint = CheckpointManager(
        args.owner,
        download_dir=config.image.download_dir,
        filename=config.image.checkpoint_filename,
    )

    print(f"\n📌 命令: 查看检查点状态")
    print(f"用户: {args.owner}")

    if args.clear:
        if checkpoint.clear_checkpoint():
            print("✅ 检查点已清除")
        else:
            print("ℹ️  没有找到检查点")
        return 0

    if not checkpoint.exists():
        print("ℹ️  没有找到检查点")
        print(f"   路径: {checkpoint.checkpoint_file}")
        return 0

    try:
        data = checkpoint.load()
    except CheckpointError as e:
        print(f"❌ 无法加载检查点数据: {e}")
        return 1

    print("\n" + "=" * 60)
    print("📂 检查点信息:")
    print(f"  路径: {checkpoint.checkpoint_file}")
    print(f"  游标: {data.cursor}")
    print(f"  精确哈希数: {len(data.exact_hashes)}")
    print(f"  感知哈希数: {len(data.perceptual_hashes)}")
    print(f"  近似重复哈希数: {len(data.perceptual_duplicate_hashes)}")
    print(f"  重复图片数: {data.duplicate_count}")
    print("=" * 60)
    return 0
