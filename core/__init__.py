"""
核心模块

包含基础组件：
- keyed_lock: 按键互斥锁（锁对象池化复用）
- downloader: 带重试的 HTTP 获取器
- storage: 图片文件存储
- deduplicator: 图片去重器（CRC-32C + 感知哈希）
- checkpoint: 检查点管理器（断点续传）
- crawl_queue: 异步任务队列（固定数量 worker）
"""
from .keyed_lock import KeyedLock, KeyLockHandle, KeyNotFoundError
from .downloader import FetchResponse, RetryingFetcher
from .storage import ImageStorage
from .deduplicator import Classification, DuplicateReason, ImageDeduplicator
from .checkpoint import Checkpoint, CheckpointManager, list_checkpointed_owners
from .crawl_queue import CrawlQueue

__all__ = [
    'KeyedLock',
    'KeyLockHandle',
    'KeyNotFoundError',
    'FetchResponse',
    'RetryingFetcher',
    'ImageStorage',
    'Classification',
    'DuplicateReason',
    'ImageDeduplicator',
    'Checkpoint',
    'CheckpointManager',
    'list_checkpointed_owners',
    'CrawlQueue',
]
