"""
异常定义

- SpiderError: 所有爬虫异常的基类
- FeedError: 订阅源页面获取/解析失败（终止当前用户的爬取）
- CheckpointError: 检查点损坏或无法反序列化（终止当前用户的爬取）
- StorageError: 无法创建目录或写入文件
- ImageDecodeError: 图片内容无法解码（仅跳过当前图片）
"""


class SpiderError(Exception):
    """爬虫异常基类"""


class FeedError(SpiderError):
    """订阅源请求失败"""

    def __init__(self, url: str, status: int = None, message: str = ""):
        self.url = url
        self.status = status
        detail = f"HTTP {status}" if status is not None else message
        if status is not None and message:
            detail = f"{detail}: {message}"
        super().__init__(f"Failed to fetch feed page {url} ({detail})")


class CheckpointError(SpiderError):
    """检查点读取失败"""


class StorageError(SpiderError):
    """存储失败"""


class ImageDecodeError(SpiderError):
    """图片解码失败"""
