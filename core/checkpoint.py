"""
检查点管理器

每个用户一个 JSON 文件（<download_dir>/<owner>/checkpoint.json），
每处理完一页覆盖写入一次。哈希集合按整数写入 JSON，
64 位哈希不会经过有损的浮点转换。
"""
import json
import os
from pathlib import Path
from typing import List, Optional, Set

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from config import config
from core.exceptions import CheckpointError


class Checkpoint(BaseModel):
    """单个用户的爬取进度"""
    cursor: int = Field(default=0, ge=0, description="已处理的最新创建时间")
    exact_hashes: Set[int] = Field(default_factory=set, description="已接受图片的 CRC-32C")
    perceptual_hashes: Set[int] = Field(default_factory=set, description="已接受图片的感知哈希")
    perceptual_duplicate_hashes: Set[int] = Field(default_factory=set, description="近似重复的感知哈希")
    duplicate_count: int = Field(default=0, ge=0, description="重复图片数")

    @model_validator(mode="after")
    def _check_disjoint(self):
        overlap = self.perceptual_hashes & self.perceptual_duplicate_hashes
        if overlap:
            raise ValueError(
                f"{len(overlap)} perceptual hashes are recorded both as accepted and as near-duplicates"
            )
        return self

    def to_json(self) -> str:
        """序列化（集合排序输出，便于比较）"""
        data = {
            "cursor": self.cursor,
            "exact_hashes": sorted(self.exact_hashes),
            "perceptual_hashes": sorted(self.perceptual_hashes),
            "perceptual_duplicate_hashes": sorted(self.perceptual_duplicate_hashes),
            "duplicate_count": self.duplicate_count,
        }
        return json.dumps(data)

    @classmethod
    def from_json(cls, text: str) -> "Checkpoint":
        """反序列化；数据不合法时抛出 CheckpointError"""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Checkpoint is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise CheckpointError(f"Checkpoint must be a JSON object, got {type(data).__name__}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise CheckpointError(f"Invalid checkpoint: {e}") from e


class CheckpointManager:
    """
    检查点管理器（JSON 文件实现）

    以用户名唯一标识，单写者：只在整页处理完成后由爬取循环调用 save()。
    """

    def __init__(self, owner: str, download_dir: Optional[Path] = None, filename: Optional[str] = None):
        """
        初始化检查点管理器

        Args:
            owner: 用户名
            download_dir: 下载根目录（默认取全局配置）
            filename: 检查点文件名（默认取全局配置）
        """
        self.owner = owner
        self.download_dir = Path(download_dir or config.image.download_dir)
        self.checkpoint_file = self.download_dir / owner / (filename or config.image.checkpoint_filename)
        self._last_cursor: Optional[int] = None

    def exists(self) -> bool:
        """检查点是否存在"""
        return self.checkpoint_file.is_file()

    def load(self) -> Checkpoint:
        """
        加载检查点，不存在时返回空检查点

        Raises:
            CheckpointError: 文件损坏或无法读取
        """
        if not self.exists():
            logger.debug("No checkpoint for {}, starting from scratch", self.owner)
            return Checkpoint()

        try:
            text = self.checkpoint_file.read_text(encoding="utf-8")
        except OSError as e:
            raise CheckpointError(f"Cannot read {self.checkpoint_file}: {e}") from e

        try:
            checkpoint = Checkpoint.from_json(text)
        except CheckpointError as e:
            raise CheckpointError(f"{self.checkpoint_file}: {e}") from e

        self._last_cursor = checkpoint.cursor
        logger.info("Resuming {} from checkpoint cursor {}", self.owner, checkpoint.cursor)
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> Checkpoint:
        """
        覆盖写入检查点（先写临时文件再原子替换）

        游标只增不减：如果已保存的游标更大，则保留已保存的游标。

        Returns:
            实际写入的检查点
        """
        if self._last_cursor is not None and self._last_cursor > checkpoint.cursor:
            logger.warning(
                "Refusing to move cursor of {} backwards ({} -> {})",
                self.owner, self._last_cursor, checkpoint.cursor,
            )
            checkpoint = checkpoint.model_copy(update={"cursor": self._last_cursor})

        self.checkpoint_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.checkpoint_file.with_name(self.checkpoint_file.name + ".tmp")
        tmp.write_text(checkpoint.to_json(), encoding="utf-8")
        os.replace(tmp, self.checkpoint_file)
        self._last_cursor = checkpoint.cursor
        logger.debug("Checkpoint saved for {}: cursor {}", self.owner, checkpoint.cursor)
        return checkpoint

    def clear_checkpoint(self) -> bool:
        """删除检查点"""
        if not self.exists():
            return False
        self.checkpoint_file.unlink()
        logger.info("Checkpoint cleared: {}", self.owner)
        return True


def list_checkpointed_owners(download_dir: Optional[Path] = None, filename: Optional[str] = None) -> List[str]:
    """列出下载目录中带有检查点的用户（用于 "all"）"""
    download_dir = Path(download_dir or config.image.download_dir)
    filename = filename or config.image.checkpoint_filename
    if not download_dir.is_dir():
        return []
    return sorted(
        d.name for d in download_dir.iterdir()
        if d.is_dir() and (d / filename).is_file()
    )
