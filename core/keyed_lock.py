"""
按键互斥锁模块

同一个键同一时刻只允许一个持有者，不同键之间互不阻塞。
锁对象在键释放后回收进有限容量的对象池，避免键频繁变化时不断创建新锁。
"""
import asyncio
from typing import Any, Dict, Hashable, List, Tuple


class KeyNotFoundError(LookupError):
    """释放了一个没有被持有的键（调用方缺少对应的 acquire）"""

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Key not found: {key!r}")


class KeyLockHandle:
    """
    已获得的锁句柄

    调用 release() 或作为上下文管理器退出时释放，重复释放无效。
    """

    def __init__(self, owner: "KeyedLock", key: Hashable):
        self._owner = owner
        self.key = key
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        if self._released:
            return
        self._released = True
        self._owner.release(self.key)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.release()


class _HoldContext:
    """KeyedLock.hold() 返回的异步上下文管理器"""

    def __init__(self, owner: "KeyedLock", key: Hashable):
        self._owner = owner
        self._key = key
        self._handle = None

    async def __aenter__(self) -> KeyLockHandle:
        self._handle = await self._owner.acquire(self._key)
        return self._handle

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self._handle.release()


class KeyedLock:
    """
    按键互斥锁

    内部维护 key -> (asyncio.Lock, 持有者计数)：
    - 第一个获取者从对象池取出（或新建）锁，计数置 1
    - 后续获取者计数加 1 并在同一把锁上排队
    - 释放时计数减 1，归零后删除该键并把锁放回对象池（池满则丢弃）

    Example:
        lock = KeyedLock()
        async with lock.hold(crc):
            ...
    """

    def __init__(self, pool_capacity: int = 10):
        """
        Args:
            pool_capacity: 回收锁对象的最大数量
        """
        self._per_key: Dict[Hashable, Tuple[asyncio.Lock, int]] = {}
        self._pool: List[asyncio.Lock] = []
        self._pool_capacity = pool_capacity

    def __len__(self) -> int:
        return len(self._per_key)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._per_key

    @property
    def pool_size(self) -> int:
        return len(self._pool)

    def hold(self, key: Hashable) -> _HoldContext:
        """获取 key 的锁，作用域结束时自动释放"""
        return _HoldContext(self, key)

    async def acquire(self, key: Hashable) -> KeyLockHandle:
        """等待直到没有其他协程持有 key，返回用于释放的句柄"""
        lock = self._checkout(key)
        try:
            await lock.acquire()
        except BaseException:
            # 等待期间被取消：只归还计数，锁并未拿到
            self._checkin(key)
            raise
        return KeyLockHandle(self, key)

    def release(self, key: Hashable):
        """释放 key 的锁"""
        lock, remaining = self._checkin(key)
        lock.release()
        if remaining == 0:
            self._recycle(lock)

    def _checkout(self, key: Hashable) -> asyncio.Lock:
        entry = self._per_key.get(key)
        if entry is not None:
            lock, count = entry
            self._per_key[key] = (lock, count + 1)
            return lock

        lock = self._pool.pop() if self._pool else asyncio.Lock()
        self._per_key[key] = (lock, 1)
        return lock

    def _checkin(self, key: Hashable) -> Tuple[asyncio.Lock, int]:
        entry = self._per_key.get(key)
        if entry is None:
            raise KeyNotFoundError(key)

        lock, count = entry
        count -= 1
        if count == 0:
            del self._per_key[key]
        else:
            self._per_key[key] = (lock, count)
        return lock, count

    def _recycle(self, lock: asyncio.Lock):
        if lock.locked():
            return
        if len(self._pool) < self._pool_capacity:
            self._pool.append(lock)
