"""
订阅源响应解析器

把 API 返回的 submission 列表整理成待下载的图片（CandidateItem）。
图片信息有两种结构：
- preview.images[]：{"source": {"url", "width", "height"}, "resolutions": [...]}
- media_metadata：{id: {"e": "Image", "s": {"u", "x", "y"}, "p": [...]}}（相册）
"""
import html
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger


@dataclass(frozen=True)
class CandidateItem:
    """一张待处理的图片"""
    source_url: str
    preview_url: Optional[str] = None

    @property
    def fetch_url(self) -> str:
        """判重时下载的地址：有预览图用预览图，否则用原图"""
        return self.preview_url or self.source_url


@dataclass
class FeedPage:
    """一页订阅源数据"""
    items: List[CandidateItem] = field(default_factory=list)
    newest_created: int = 0
    submission_count: int = 0


def _unescape(url: str) -> str:
    # API 有时返回 HTML 编码的 &amp;
    return html.unescape(url)


def _area(width: Any, height: Any) -> int:
    try:
        return int(width or 0) * int(height or 0)
    except (TypeError, ValueError):
        return 0


class SubmissionParser:
    """submission 列表解析器"""

    def parse(self, payload: Any) -> Optional[FeedPage]:
        """
        解析一页响应

        Args:
            payload: API 返回的 JSON

        Returns:
            FeedPage；没有任何 submission 时返回 None（表示已到末尾）
        """
        submissions = payload.get("data") if isinstance(payload, dict) else None
        if not submissions:
            return None

        page = FeedPage(submission_count=len(submissions))
        for submission in submissions:
            if not isinstance(submission, dict):
                logger.warning("Ignoring malformed submission: {!r}", submission)
                continue

            created = self._created(submission)
            if created is not None:
                page.newest_created = max(page.newest_created, created)

            items = list(self.parse_submission(submission))
            if not items:
                logger.debug("Found no images in post {}", submission.get("url"))
            page.items.extend(items)

        return page

    def parse_submission(self, submission: Dict[str, Any]) -> Iterable[CandidateItem]:
        """解析单个 submission 中的所有图片（结构不对的部分记录警告后跳过）"""
        post_url = submission.get("url")

        preview = self._field(submission, "preview", dict, post_url) or {}
        for image in self._field(preview, "images", list, post_url) or []:
            item = self._parse_preview_image(image, post_url)
            if item is not None:
                yield item

        media_metadata = self._field(submission, "media_metadata", dict, post_url) or {}
        for media in media_metadata.values():
            item = self._parse_media(media, post_url)
            if item is not None:
                yield item

    @staticmethod
    def _field(container: Dict[str, Any], key: str, kind: type, post_url: Optional[str]):
        """取出 container[key]；类型不对时记录警告并返回 None"""
        value = container.get(key)
        if value is None or isinstance(value, kind):
            return value
        logger.warning("Ignoring malformed \"{}\" in post {}: expected {}, got {!r}",
                       key, post_url, kind.__name__, value)
        return None

    def _created(self, submission: Dict[str, Any]) -> Optional[int]:
        created = submission.get("created_utc")
        try:
            return int(float(created))
        except (TypeError, ValueError):
            logger.warning("Submission {} has no valid created_utc", submission.get("id"))
            return None

    def _parse_preview_image(self, image: Any, post_url: Optional[str]) -> Optional[CandidateItem]:
        if not isinstance(image, dict):
            logger.warning("Ignoring malformed preview image in post {}: {!r}", post_url, image)
            return None
        source = self._field(image, "source", dict, post_url) or {}
        previews = [
            (p.get("url"), _area(p.get("width"), p.get("height")))
            for p in self._field(image, "resolutions", list, post_url) or []
            if isinstance(p, dict)
        ]
        return self._build_item(source.get("url"), previews, post_url, image)

    def _parse_media(self, media: Any, post_url: Optional[str]) -> Optional[CandidateItem]:
        if not isinstance(media, dict):
            logger.warning("Ignoring malformed media metadata in post {}: {!r}", post_url, media)
            return None
        source = self._field(media, "s", dict, post_url) or {}
        source_url = source.get("u")
        if source_url and media.get("e") != "Image":
            logger.warning(
                "Rejecting {} from post {} because its media type was {} instead of \"Image\"",
                source_url, post_url, media.get("e"),
            )
            return None
        previews = [
            (p.get("u"), _area(p.get("x"), p.get("y")))
            for p in self._field(media, "p", list, post_url) or []
            if isinstance(p, dict)
        ]
        return self._build_item(source_url, previews, post_url, media)

    def _build_item(self, source_url: Optional[str], previews, post_url: Optional[str],
                    raw: Dict[str, Any]) -> Optional[CandidateItem]:
        if not source_url or not isinstance(source_url, str):
            logger.warning("Rejecting media from post {} because it has no source image: {}", post_url, raw)
            return None
        source_url = _unescape(source_url)

        candidates = [(url, area) for url, area in previews if isinstance(url, str) and url and area > 0]
        if not candidates:
            logger.warning(
                "An image in post {} has no preview, falling back to the source image {}",
                post_url, source_url,
            )
            return CandidateItem(source_url)

        smallest_url, _ = min(candidates, key=lambda c: c[1])
        return CandidateItem(source_url, _unescape(smallest_url))
