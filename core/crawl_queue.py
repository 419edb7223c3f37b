"""
异步任务队列模块

一页的图片先全部放入队列，再由固定数量的消费者并发取出处理，
队列取空即退出。单个任务失败只记录，不影响同页的其他任务。
"""
import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger
from tqdm import tqdm

from core.keyed_lock import KeyNotFoundError


class CrawlQueue:
    """
    爬取任务队列

    Example:
        queue = CrawlQueue(max_workers=8)
        await queue.run(items, spider.process_item)
    """

    def __init__(self, max_workers: int = 8, show_progress: bool = False):
        """
        初始化爬取队列

        Args:
            max_workers: 消费者数量，即同时处理的任务数
            show_progress: 是否显示 tqdm 进度条
        """
        if max_workers < 1:
            raise ValueError("max_workers must be greater than 0")
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.queue: asyncio.Queue = asyncio.Queue()

        # 统计信息
        self.stats = {
            'total_tasks': 0,
            'completed_tasks': 0,
            'failed_tasks': 0,
            'active_workers': 0
        }

        # 错误记录
        self.errors = deque(maxlen=100)

    def producer(self, items: List[Any]):
        """
        生产者：把一页的任务全部放入队列

        Args:
            items: 任务列表
        """
        for item in items:
            self.queue.put_nowait(item)
        logger.debug("📦 添加 {} 个任务到队列", len(items))

    async def consumer(
        self,
        worker_func: Callable[[Any], Awaitable[Any]],
        worker_id: int,
        progress=None
    ):
        """
        消费者：从队列取任务并执行，队列为空时退出

        Args:
            worker_func: 工作函数（异步）
            worker_id: 消费者ID（用于日志）
            progress: tqdm 进度条（可选）

        Raises:
            KeyNotFoundError: 锁的获取与释放不配对，属于程序错误，不按单个任务失败处理
        """
        self.stats['active_workers'] += 1
        try:
            while True:
                try:
                    item = self.queue.get_nowait()
                except asyncio.QueueEmpty:
                    break

                try:
                    await worker_func(item)
                    self.stats['completed_tasks'] += 1
                except KeyNotFoundError:
                    raise
                except Exception as e:
                    # 任务执行失败
                    self.stats['failed_tasks'] += 1
                    self.errors.append({
                        'item': str(item)[:200],  # 限制长度
                        'error': repr(e),
                        'worker_id': worker_id
                    })
                    logger.error("❌ 消费者 {} 任务失败: {} - {!r}", worker_id, item, e)
                finally:
                    self.queue.task_done()
                    if progress is not None:
                        progress.update(1)
        finally:
            self.stats['active_workers'] -= 1
        logger.debug("🔒 消费者 {} 退出", worker_id)

    def _drain(self):
        """丢弃队列中剩余的任务"""
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self.queue.task_done()

    async def run(
        self,
        items: List[Any],
        worker_func: Callable[[Any], Awaitable[Any]],
        description: str = "images"
    ) -> Dict[str, Any]:
        """
        运行一页的任务，所有消费者退出后返回

        Args:
            items: 任务列表
            worker_func: 工作函数（异步）
            description: 进度条描述

        Returns:
            统计信息字典

        Raises:
            KeyNotFoundError: 任一消费者遇到程序错误时停止其他消费者并抛出
        """
        # 重置统计
        self.stats = {
            'total_tasks': len(items),
            'completed_tasks': 0,
            'failed_tasks': 0,
            'active_workers': 0
        }
        self.errors.clear()

        if not items:
            return self.stats.copy()

        self.producer(items)

        progress = tqdm(
            total=len(items),
            desc=description,
            unit="img",
            leave=False,
            disable=not self.show_progress
        )
        workers = [
            asyncio.create_task(self.consumer(worker_func, worker_id=i, progress=progress))
            for i in range(min(self.max_workers, len(items)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            self._drain()
            raise
        finally:
            progress.close()

        logger.debug("📊 统计: 总数={}, 成功={}, 失败={}",
                     self.stats['total_tasks'],
                     self.stats['completed_tasks'],
                     self.stats['failed_tasks'])

        if self.errors:
            logger.warning("⚠️  失败任务数: {}", len(self.errors))

        return self.stats.copy()

    def get_stats(self) -> Dict[str, Any]:
        """获取统计信息"""
        return self.stats.copy()

    def get_errors(self) -> List[Dict[str, Any]]:
        """获取错误列表"""
        return list(self.errors)
