"""
用户图片订阅源爬虫

按页增量爬取一个用户的 submission，下载其中的图片并去重保存：
- 处理第 N 页的同时预取第 N+1 页
- 每页由固定数量的 worker 并发处理
- 整页处理完成后才写检查点，崩溃最多损失一页进度
"""
import asyncio
import time
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from loguru import logger

from config import Config, config as global_config
from core.checkpoint import Checkpoint, CheckpointManager
from core.crawl_queue import CrawlQueue
from core.deduplicator import (
    Classification,
    DuplicateCounter,
    DuplicateReason,
    ImageDeduplicator,
)
from core.downloader import RetryingFetcher
from core.exceptions import ImageDecodeError
from core.storage import ImageStorage
from parsers.submission_parser import CandidateItem, FeedPage, SubmissionParser


class FeedImageSpider:
    """
    单个用户的爬取循环

    Example:
        async with RetryingFetcher(config.crawler) as fetcher:
            spider = FeedImageSpider("some_user", fetcher, config)
            stats = await spider.crawl()
    """

    def __init__(
        self,
        owner: str,
        fetcher: RetryingFetcher,
        config: Optional[Config] = None,
        deduplicator_options: Optional[Dict[str, Any]] = None,
    ):
        """
        Args:
            owner: 用户名
            fetcher: HTTP 获取器（由调用方管理生命周期）
            config: 配置，默认使用全局配置
            deduplicator_options: 传给 ImageDeduplicator 的额外参数（如自定义哈希函数）
        """
        self.owner = owner
        self.fetcher = fetcher
        self.config = config or global_config
        self.parser = SubmissionParser()
        self.storage = ImageStorage(self.config.image)
        self.checkpoint_manager = CheckpointManager(
            owner,
            download_dir=self.config.image.download_dir,
            filename=self.config.image.checkpoint_filename,
        )
        self.queue = CrawlQueue(
            max_workers=self.config.crawler.max_parallelism,
            show_progress=self.config.crawler.show_progress,
        )
        self._deduplicator_options = deduplicator_options or {}

        self.owner_dir: Optional[Path] = None
        self.deduplicator: Optional[ImageDeduplicator] = None
        self.duplicates = DuplicateCounter()
        self.cursor = 0

        # 统计信息
        self.stats = {
            "pages": 0,
            "images_found": 0,
            "images_saved": 0,
            "images_failed": 0,
            "duplicates_skipped": 0,
            "already_on_disk": 0,
        }

    def feed_url(self, cursor: int) -> str:
        """第 cursor 之后的订阅源地址"""
        feed = self.config.feed
        query = urlencode({
            feed.owner_param: self.owner,
            "after": cursor,
            "size": feed.page_size,
        })
        return f"{feed.api_url}?{query}"

    async def fetch_page(self, cursor: int) -> Optional[FeedPage]:
        """
        获取并解析一页

        Raises:
            FeedError: 请求失败或响应不是 JSON
        """
        logger.info("Getting submissions of {} after {}", self.owner, cursor)
        payload = await self.fetcher.get_json(self.feed_url(cursor))
        return self.parser.parse(payload)

    def prepare(self) -> Checkpoint:
        """
        创建用户目录、加载检查点、扫描已有文件

        Raises:
            StorageError: 用户目录无法创建
            CheckpointError: 检查点损坏
        """
        self.owner_dir = self.storage.owner_dir(self.owner)
        checkpoint = self.checkpoint_manager.load()
        known_stems = self.storage.list_stems(self.owner_dir)

        options = {
            "max_hamming_distance": self.config.dedup.max_hamming_distance,
            "lock_pool_capacity": self.config.dedup.lock_pool_capacity,
        }
        options.update(self._deduplicator_options)
        self.deduplicator = ImageDeduplicator.from_checkpoint(checkpoint, known_stems, **options)
        self.duplicates = DuplicateCounter(checkpoint.duplicate_count)
        self.cursor = checkpoint.cursor
        return checkpoint

    async def crawl(self) -> Dict[str, Any]:
        """
        爬取该用户的全部新内容

        Returns:
            统计信息
        """
        logger.info("Downloading images for user \"{}\"", self.owner)
        self.prepare()
        started = time.monotonic()

        page = await self.fetch_page(self.cursor)
        while page is not None:
            advanced = page.newest_created > self.cursor
            self.cursor = max(self.cursor, page.newest_created)
            self.stats["pages"] += 1
            self.stats["images_found"] += len(page.items)
            logger.info("Detecting duplicates in {} images...", len(page.items))

            # 预取下一页，与本页的处理并行；游标没有前进时再取只会得到同一页
            if advanced:
                next_page = asyncio.create_task(self.fetch_page(self.cursor))
            else:
                logger.warning("Feed of {} did not advance past cursor {}, stopping after this page",
                               self.owner, self.cursor)
                next_page = asyncio.sleep(0, result=None)
            page_result, next_result = await asyncio.gather(
                self.queue.run(page.items, self.process_item, description=self.owner),
                next_page,
                return_exceptions=True,
            )

            if isinstance(page_result, BaseException):
                raise page_result
            self.save_checkpoint()

            elapsed = time.monotonic() - started
            if elapsed > 0:
                logger.info("Average image fetch rate: {:.2f} images/second",
                            self.stats["images_found"] / elapsed)

            if isinstance(next_result, BaseException):
                raise next_result
            page = next_result

        logger.info("All submissions of {} have been downloaded", self.owner)
        logger.success(
            "Finished downloading images for user \"{}\". This user has {} duplicate images.",
            self.owner, self.duplicates.count,
        )
        return self.get_statistics()

    def save_checkpoint(self) -> Checkpoint:
        """写检查点（只在整页处理完成后调用）"""
        checkpoint = self.deduplicator.to_checkpoint(self.cursor, self.duplicates.count)
        return self.checkpoint_manager.save(checkpoint)

    async def process_item(self, item: CandidateItem):
        """
        处理一张图片：下载预览 -> 判重 -> 下载原图 -> 保存

        Raises:
            网络异常会向上抛给队列记录；已接受的判重结果会先回滚
        """
        preview = await self.fetcher.get(item.fetch_url)
        if not preview.ok:
            self.stats["images_failed"] += 1
            logger.error(
                "Skipping download of {} because the preview {} returned status code {}",
                item.source_url, item.fetch_url, preview.status,
            )
            return

        try:
            result = await self.deduplicator.classify(preview.body)
        except ImageDecodeError as e:
            self.stats["images_failed"] += 1
            logger.error("Skipping {} because {} is not a readable image: {}",
                         item.source_url, item.fetch_url, e)
            return

        if result.is_duplicate:
            self._record_duplicate(item, result)
            return

        try:
            saved = await self._save_accepted(item, result, preview)
        except Exception:
            await self.deduplicator.rollback(result)
            self.stats["images_failed"] += 1
            raise

        if not saved:
            await self.deduplicator.rollback(result)
            self.stats["images_failed"] += 1

    async def _save_accepted(self, item: CandidateItem, result: Classification, preview) -> bool:
        if item.preview_url is None:
            response = preview
        else:
            response = await self.fetcher.get(item.source_url)
            if not response.ok:
                logger.error("Failed to download {}, status code {}", item.source_url, response.status)
                return False

        path = await self.storage.save_image(
            self.owner_dir, result.stem, response.body, response.content_type
        )
        self.stats["images_saved"] += 1
        logger.info("Saved {} to {}", item.source_url, path)
        return True

    def _record_duplicate(self, item: CandidateItem, result: Classification):
        self.duplicates.increment()
        if result.reason is DuplicateReason.STEM_ON_DISK:
            self.stats["already_on_disk"] += 1
            logger.debug("Skipping download because {}.* is already present in {}",
                         result.stem, self.owner_dir)
            return

        self.stats["duplicates_skipped"] += 1
        if result.reason is DuplicateReason.EXACT_MATCH:
            logger.debug("Duplicate image ignored because it had the same CRC-32C ({}) "
                         "as a previously-downloaded image: {}", result.exact_hash, item.source_url)
        elif result.reason is DuplicateReason.PERCEPTUAL_MATCH:
            logger.debug("Duplicate image ignored because it had the same perceptual hash ({}) "
                         "as a previously-downloaded image: {}", result.perceptual_hash, item.source_url)
        elif result.reason is DuplicateReason.KNOWN_NEAR_DUPLICATE:
            logger.debug("Duplicate image ignored because it had the same perceptual hash ({}) "
                         "as a previous near-duplicate: {}", result.perceptual_hash, item.source_url)
        else:
            logger.debug("Near-duplicate image ignored because it was within Hamming distance {} "
                         "of a previously-downloaded image with perceptual hash {}: {}",
                         result.distance, result.matched_hash, item.source_url)

    def get_statistics(self) -> Dict[str, Any]:
        """获取统计信息"""
        stats = dict(self.stats)
        stats["owner"] = self.owner
        stats["cursor"] = self.cursor
        stats["duplicate_count"] = self.duplicates.count
        if self.deduplicator is not None:
            stats["dedup"] = self.deduplicator.get_stats()
        return stats
