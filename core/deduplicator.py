"""
图片去重模块

两级判重：
1. 精确哈希（CRC-32C）：字节完全相同的图片
2. 感知哈希（64 位 DCT pHash）：视觉上相同或汉明距离不超过阈值的图片

共享集合的 "检查后插入" 通过按哈希值加锁保证原子性，
不同哈希值的图片可以完全并行地判重。
"""
import asyncio
import io
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional, Set

import crc32c
import imagehash
from loguru import logger
from PIL import Image, UnidentifiedImageError

from core.checkpoint import Checkpoint
from core.exceptions import ImageDecodeError
from core.keyed_lock import KeyedLock


def exact_hash(data: bytes) -> int:
    """CRC-32C 校验和（u32）"""
    return crc32c.crc32c(data)


def perceptual_hash(data: bytes) -> int:
    """64 位 DCT 感知哈希（u64）"""
    with Image.open(io.BytesIO(data)) as img:
        return int(str(imagehash.phash(img, hash_size=8)), 16)


def hamming_distance(a: int, b: int) -> int:
    """两个哈希值之间不同的位数"""
    return bin(a ^ b).count("1")


def make_stem(perceptual: int, exact: int) -> str:
    """由哈希对生成输出文件名（不含扩展名）"""
    return f"{perceptual}_{exact}"


class DuplicateReason(str, Enum):
    """判定为重复的原因"""
    EXACT_MATCH = "exact-match"
    PERCEPTUAL_MATCH = "perceptual-exact-match"
    KNOWN_NEAR_DUPLICATE = "already-classified-near-duplicate"
    NEAR_DUPLICATE = "near-duplicate"
    STEM_ON_DISK = "stem-already-on-disk"


@dataclass(frozen=True)
class Classification:
    """判重结果"""
    exact_hash: int
    perceptual_hash: Optional[int] = None
    stem: Optional[str] = None
    reason: Optional[DuplicateReason] = None
    matched_hash: Optional[int] = None
    distance: Optional[int] = None

    @property
    def accepted(self) -> bool:
        return self.reason is None

    @property
    def is_duplicate(self) -> bool:
        return self.reason is not None


class DuplicateCounter:
    """重复图片计数（单调递增）"""

    def __init__(self, count: int = 0):
        self._count = count

    @property
    def count(self) -> int:
        return self._count

    def increment(self) -> int:
        self._count += 1
        return self._count


class ImageDeduplicator:
    """
    图片去重索引

    集合只增不减（回滚除外），生命周期为一个用户的一次爬取。
    哈希函数可注入，默认 CRC-32C + pHash + 汉明距离。
    """

    def __init__(
        self,
        max_hamming_distance: int = 0,
        exact_hashes: Iterable[int] = (),
        perceptual_hashes: Iterable[int] = (),
        perceptual_duplicate_hashes: Iterable[int] = (),
        known_stems: Iterable[str] = (),
        lock_pool_capacity: int = 10,
        exact_hasher: Callable[[bytes], int] = exact_hash,
        perceptual_hasher: Callable[[bytes], int] = perceptual_hash,
        distance: Callable[[int, int], int] = hamming_distance,
    ):
        """
        初始化去重器

        Args:
            max_hamming_distance: 近似重复阈值，0 关闭近似扫描
            exact_hashes: 已接受图片的精确哈希
            perceptual_hashes: 已接受图片的感知哈希
            perceptual_duplicate_hashes: 已判定为近似重复的感知哈希
            known_stems: 磁盘上已有文件的文件名（不含扩展名）
            lock_pool_capacity: 按键锁对象池容量
        """
        self.max_hamming_distance = max_hamming_distance
        self.exact_hashes: Set[int] = set(exact_hashes)
        self.perceptual_hashes: Set[int] = set(perceptual_hashes)
        self.perceptual_duplicate_hashes: Set[int] = set(perceptual_duplicate_hashes)
        self.known_stems: Set[str] = set(known_stems)

        self._exact_hasher = exact_hasher
        self._perceptual_hasher = perceptual_hasher
        self._distance = distance

        self.exact_lock = KeyedLock(pool_capacity=lock_pool_capacity)
        self.perceptual_lock = KeyedLock(pool_capacity=lock_pool_capacity)

        self.stats = {
            "total_checked": 0,
            "unique_images": 0,
            "duplicates_found": 0,
            "rolled_back": 0,
            "by_reason": {reason.value: 0 for reason in DuplicateReason},
        }

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: Checkpoint,
        known_stems: Iterable[str] = (),
        **kwargs,
    ) -> "ImageDeduplicator":
        """从检查点恢复去重状态"""
        return cls(
            exact_hashes=checkpoint.exact_hashes,
            perceptual_hashes=checkpoint.perceptual_hashes,
            perceptual_duplicate_hashes=checkpoint.perceptual_duplicate_hashes,
            known_stems=known_stems,
            **kwargs,
        )

    def to_checkpoint(self, cursor: int, duplicate_count: int) -> Checkpoint:
        """导出当前去重状态"""
        return Checkpoint(
            cursor=cursor,
            exact_hashes=set(self.exact_hashes),
            perceptual_hashes=set(self.perceptual_hashes),
            perceptual_duplicate_hashes=set(self.perceptual_duplicate_hashes),
            duplicate_count=duplicate_count,
        )

    async def classify(self, content: bytes) -> Classification:
        """
        判断图片是否需要保存

        Args:
            content: 图片字节（通常是预览图）

        Returns:
            Classification；accepted 为 True 时 stem 为保存用的文件名

        Raises:
            ImageDecodeError: 内容无法解码为图片（精确哈希的临时插入会被撤销）
        """
        self.stats["total_checked"] += 1
        crc = self._exact_hasher(content)

        async with self.exact_lock.hold(crc):
            if crc in self.exact_hashes:
                return self._duplicate(Classification(crc, reason=DuplicateReason.EXACT_MATCH))
            self.exact_hashes.add(crc)

        try:
            phash = await asyncio.to_thread(self._perceptual_hasher, content)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            async with self.exact_lock.hold(crc):
                self.exact_hashes.discard(crc)
            raise ImageDecodeError(f"Cannot compute perceptual hash: {e}") from e

        async with self.perceptual_lock.hold(phash):
            if phash in self.perceptual_hashes:
                return self._duplicate(
                    Classification(crc, phash, reason=DuplicateReason.PERCEPTUAL_MATCH)
                )

            if phash in self.perceptual_duplicate_hashes:
                return self._duplicate(
                    Classification(crc, phash, reason=DuplicateReason.KNOWN_NEAR_DUPLICATE)
                )

            near = self._find_near_duplicate(phash)
            if near is not None:
                matched, distance = near
                self.perceptual_duplicate_hashes.add(phash)
                return self._duplicate(Classification(
                    crc, phash,
                    reason=DuplicateReason.NEAR_DUPLICATE,
                    matched_hash=matched,
                    distance=distance,
                ))

            self.perceptual_hashes.add(phash)
            stem = make_stem(phash, crc)
            if stem in self.known_stems:
                return self._duplicate(
                    Classification(crc, phash, stem=stem, reason=DuplicateReason.STEM_ON_DISK)
                )
            self.known_stems.add(stem)

        self.stats["unique_images"] += 1
        return Classification(crc, phash, stem=stem)

    def _find_near_duplicate(self, phash: int):
        """返回第一个距离不超过阈值的 (哈希, 距离)，不保证最近"""
        if self.max_hamming_distance == 0:
            return None
        for existing in self.perceptual_hashes:
            distance = self._distance(phash, existing)
            if distance <= self.max_hamming_distance:
                return existing, distance
        return None

    def _duplicate(self, result: Classification) -> Classification:
        self.stats["duplicates_found"] += 1
        self.stats["by_reason"][result.reason.value] += 1
        return result

    async def rollback(self, result: Classification):
        """
        撤销一次被接受的判重结果

        图片最终没有保存时调用，使同样的内容在之后可以再次被接受。
        """
        if not result.accepted:
            return

        async with self.exact_lock.hold(result.exact_hash):
            self.exact_hashes.discard(result.exact_hash)

        async with self.perceptual_lock.hold(result.perceptual_hash):
            self.perceptual_hashes.discard(result.perceptual_hash)
            self.known_stems.discard(result.stem)

        self.stats["unique_images"] -= 1
        self.stats["rolled_back"] += 1
        logger.debug("Rolled back signatures of {}", result.stem)

    def get_stats(self) -> Dict:
        """获取去重统计"""
        stats = dict(self.stats)
        stats["by_reason"] = dict(self.stats["by_reason"])
        if stats["total_checked"] > 0:
            stats["duplicate_rate"] = stats["duplicates_found"] / stats["total_checked"]
        else:
            stats["duplicate_rate"] = 0.0
        return stats
