"""
图片存储模块

每个用户一个目录，每张被接受的图片一个文件：
<download_dir>/<owner>/<stem><ext>，扩展名由响应的 Content-Type 决定。
目录中已有文件的 stem 用于恢复时的 "已在磁盘上" 判断。
"""
import mimetypes
import os
from pathlib import Path
from typing import Optional, Set

import aiofiles
from loguru import logger

from config import ImageConfig, config
from core.exceptions import StorageError

# mimetypes 对部分类型给出的扩展名不常用，这里统一
_PREFERRED_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/pjpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class ImageStorage:
    """图片文件存储"""

    def __init__(self, image_config: Optional[ImageConfig] = None):
        self.config = image_config or config.image
        self.download_dir = Path(self.config.download_dir)
        self.stats = {
            "saved": 0,
            "bytes_written": 0,
        }

    def owner_dir(self, owner: str) -> Path:
        """
        获取（并创建）用户目录

        Raises:
            StorageError: 目录无法创建
        """
        path = self.download_dir / owner
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create directory {path}: {e}") from e
        return path

    def list_stems(self, owner_dir: Path) -> Set[str]:
        """列出目录中已有图片的文件名（不含扩展名）"""
        if not owner_dir.is_dir():
            return set()
        stems = set()
        for path in owner_dir.iterdir():
            if not path.is_file():
                continue
            if path.name == self.config.checkpoint_filename or path.suffix == ".tmp":
                continue
            stems.add(path.stem)
        logger.debug("Found {} existing files in {}", len(stems), owner_dir)
        return stems

    def get_extension(self, content_type: Optional[str]) -> str:
        """根据 Content-Type 获取扩展名，无法识别时使用默认扩展名"""
        if not content_type:
            return self.config.default_extension

        media_type = content_type.split(";", 1)[0].strip().lower()
        if media_type in _PREFERRED_EXTENSIONS:
            return _PREFERRED_EXTENSIONS[media_type]

        ext = mimetypes.guess_extension(media_type)
        return ext or self.config.default_extension

    async def save_image(self, owner_dir: Path, stem: str, data: bytes,
                         content_type: Optional[str] = None) -> Path:
        """
        保存图片

        Args:
            owner_dir: 用户目录
            stem: 文件名（不含扩展名）
            data: 图片字节
            content_type: 响应的 Content-Type

        Returns:
            保存路径

        Raises:
            StorageError: 写入失败
        """
        path = owner_dir / f"{stem}{self.get_extension(content_type)}"
        # 先写临时文件再原子替换：中断的写入不会留下被当成已保存的半个文件
        tmp = path.with_name(path.name + ".tmp")
        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(data)
            os.replace(tmp, path)
        except OSError as e:
            self._discard(tmp)
            raise StorageError(f"Failed to write {path}: {e}") from e
        except BaseException:
            self._discard(tmp)
            raise

        self.stats["saved"] += 1
        self.stats["bytes_written"] += len(data)
        return path

    @staticmethod
    def _discard(tmp: Path):
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove partial file {}", tmp)

    def get_stats(self) -> dict:
        """获取存储统计"""
        return self.stats.copy()
