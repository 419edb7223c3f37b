"""
CrawlQueue 单元测试
"""
import unittest
import asyncio

from loguru import logger

from core.crawl_queue import CrawlQueue
from core.keyed_lock import KeyedLock, KeyNotFoundError


class TestCrawlQueue(unittest.TestCase):
    """CrawlQueue 测试类"""

    def setUp(self):
        """测试前准备"""
        self.queue = CrawlQueue(max_workers=3)

    def test_init(self):
        """测试初始化"""
        self.assertEqual(self.queue.max_workers, 3)
        self.assertFalse(self.queue.show_progress)
        self.assertEqual(self.queue.stats['total_tasks'], 0)

    def test_invalid_max_workers(self):
        """并发数必须大于 0"""
        with self.assertRaises(ValueError):
            CrawlQueue(max_workers=0)

    def test_producer(self):
        """测试生产者"""
        self.queue.producer([1, 2, 3, 4, 5])
        self.assertEqual(self.queue.queue.qsize(), 5)

    async def async_test_consumer(self):
        """测试消费者"""
        results = []

        async def worker_func(item):
            results.append(item)
            await asyncio.sleep(0.01)

        self.queue.producer([1, 2, 3])

        # 队列取空后退出
        await self.queue.consumer(worker_func, worker_id=0)

        self.assertEqual(results, [1, 2, 3])
        self.assertEqual(self.queue.stats['completed_tasks'], 3)
        self.assertEqual(self.queue.stats['active_workers'], 0)

    def test_consumer(self):
        """同步测试消费者"""
        asyncio.run(self.async_test_consumer())

    def test_run(self):
        """测试完整运行"""
        results = []

        async def worker_func(item):
            await asyncio.sleep(0.01)
            results.append(item * 2)

        stats = asyncio.run(self.queue.run(list(range(10)), worker_func))

        self.assertEqual(sorted(results), [i * 2 for i in range(10)])
        self.assertEqual(stats['total_tasks'], 10)
        self.assertEqual(stats['completed_tasks'], 10)
        self.assertEqual(stats['failed_tasks'], 0)
        self.assertTrue(self.queue.queue.empty())

    def test_run_respects_max_workers(self):
        """同时运行的任务数不超过 max_workers"""
        active = 0
        peak = 0

        async def worker_func(item):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        asyncio.run(self.queue.run(list(range(12)), worker_func))
        self.assertEqual(peak, 3)

    def test_run_empty(self):
        """空任务列表"""
        async def worker_func(item):
            raise AssertionError("should not be called")

        stats = asyncio.run(self.queue.run([], worker_func))
        self.assertEqual(stats['total_tasks'], 0)

    def test_error_handling(self):
        """单个任务失败不影响其他任务"""
        done = []

        async def worker_func(item):
            if item == 2:
                raise RuntimeError("boom")
            done.append(item)

        stats = asyncio.run(self.queue.run([1, 2, 3, 4], worker_func))

        self.assertEqual(sorted(done), [1, 3, 4])
        self.assertEqual(stats['failed_tasks'], 1)
        errors = self.queue.get_errors()
        self.assertEqual(len(errors), 1)
        self.assertIn("boom", errors[0]['error'])

    def test_failure_log_message_formatted(self):
        """失败日志中的占位符被实际的任务和异常替换"""
        messages = []
        sink_id = logger.add(messages.append, format="{message}", level="ERROR")

        async def worker_func(item):
            if item == 2:
                raise RuntimeError("boom")

        try:
            asyncio.run(self.queue.run([1, 2, 3], worker_func))
        finally:
            logger.remove(sink_id)

        failures = [str(m) for m in messages if "任务失败" in m]
        self.assertEqual(len(failures), 1)
        self.assertIn("任务失败: 2 - RuntimeError('boom')", failures[0])
        self.assertNotIn("{}", failures[0])

    def test_run_resets_stats(self):
        """每次运行重新统计"""
        async def worker_func(item):
            pass

        asyncio.run(self.queue.run([1, 2], worker_func))
        stats = asyncio.run(self.queue.run([1], worker_func))
        self.assertEqual(stats['total_tasks'], 1)
        self.assertEqual(stats['completed_tasks'], 1)

    def test_unbalanced_release_is_fatal(self):
        """锁释放不配对是程序错误：run() 直接抛出，不记为单个任务失败"""
        lock = KeyedLock()

        async def worker_func(item):
            if item == 1:
                lock.release(item)
            await asyncio.sleep(0.01)

        with self.assertRaises(KeyNotFoundError):
            asyncio.run(self.queue.run([1, 2, 3, 4, 5, 6], worker_func))

        self.assertEqual(self.queue.stats['failed_tasks'], 0)
        self.assertEqual(self.queue.get_errors(), [])
        self.assertTrue(self.queue.queue.empty())
        self.assertEqual(self.queue.stats['active_workers'], 0)

    def test_get_stats(self):
        """测试获取统计信息"""
        stats = self.queue.get_stats()
        self.assertIn('total_tasks', stats)
        self.assertIn('completed_tasks', stats)
        self.assertIn('failed_tasks', stats)
        self.assertIn('active_workers', stats)


if __name__ == '__main__':
    unittest.main()
