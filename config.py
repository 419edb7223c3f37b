"""
配置管理模块 - 用户图片订阅源爬虫
统一配置管理，支持环境变量与 JSON 配置文件
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import os
import json
from pathlib import Path
from dotenv import load_dotenv
from loguru import logger

load_dotenv()

# 项目根目录
BASE_DIR = Path(__file__).parent


class FeedConfig(BaseModel):
    """订阅源 API 配置"""
    api_url: str = Field(
        default="https://api.pushshift.io/reddit/search/submission",
        description="订阅源 API 地址"
    )
    owner_param: str = Field(default="author", description="用户名查询参数名")
    page_size: int = Field(default=100, gt=0, description="每页条数")


class CrawlerConfig(BaseModel):
    """爬虫配置"""
    # 并发控制
    max_parallelism: int = Field(default=8, gt=0, description="每页并发 worker 数")
    request_timeout: int = Field(default=30, gt=0, description="请求超时时间（秒）")

    # 重试配置（包含首次请求在内的总次数）
    max_attempts: int = Field(default=3, ge=1, description="5xx 时的最大请求次数")

    # User-Agent配置
    user_agent: Optional[str] = Field(default=None, description="固定 UA（为空时使用 fake_useragent）")
    rotate_user_agent: bool = Field(default=False, description="是否轮换UA")

    show_progress: bool = Field(default=True, description="是否显示进度条")


class DedupConfig(BaseModel):
    """去重配置"""
    max_hamming_distance: int = Field(
        default=4, ge=0, le=64,
        description="近似重复的最大汉明距离，0 表示只比较感知哈希完全相同"
    )
    lock_pool_capacity: int = Field(default=10, ge=0, description="按键锁对象池容量")


class ImageConfig(BaseModel):
    """图片配置"""
    download_dir: Path = Field(default=BASE_DIR / "downloads", description="下载目录")
    default_extension: str = Field(default=".jpg", description="无法识别 Content-Type 时的扩展名")
    checkpoint_filename: str = Field(default="checkpoint.json", description="检查点文件名")


class LogConfig(BaseModel):
    """日志配置"""
    log_level: str = Field(default="INFO", description="日志级别")
    log_dir: Path = Field(default=BASE_DIR / "logs", description="日志目录")
    log_file: str = Field(default="feed_spider.log", description="日志文件名")
    rotation: str = Field(default="100 MB", description="日志轮转大小")
    retention: str = Field(default="30 days", description="日志保留时间")


class Config(BaseModel):
    """全局配置"""
    feed: FeedConfig = Field(default_factory=FeedConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    log: LogConfig = Field(default_factory=LogConfig)


# ============================================================================
# 配置文件加载
# ============================================================================

def load_config_file(config_file: Path) -> Dict[str, Any]:
    """
    加载 JSON 配置文件

    Args:
        config_file: 配置文件路径

    Returns:
        配置字典

    Raises:
        FileNotFoundError: 配置文件不存在
        json.JSONDecodeError: JSON格式错误
    """
    with open(config_file, 'r', encoding='utf-8') as f:
        return json.load(f)


def create_config_from_dict(data: Dict[str, Any]) -> Config:
    """
    从字典创建Config对象

    兼容扁平写法：顶层的 download_dir / max_parallelism /
    max_hamming_distance / log_level 会被归入对应分组。

    Args:
        data: 配置字典

    Returns:
        Config实例
    """
    data = dict(data)
    sections: Dict[str, Dict[str, Any]] = {
        name: dict(data.pop(name, None) or {})
        for name in ("feed", "crawler", "dedup", "image", "log")
    }

    flat_keys = {
        "download_dir": "image",
        "max_parallelism": "crawler",
        "max_hamming_distance": "dedup",
        "log_level": "log",
    }
    for key, section in flat_keys.items():
        if key in data:
            sections[section].setdefault(key, data.pop(key))

    if data:
        logger.warning("Ignoring unknown config keys: {}", ", ".join(sorted(data)))

    return Config(**sections)


class ConfigLoader:
    """配置加载器"""

    @staticmethod
    def load(config_file: Optional[Path] = None) -> Config:
        """
        加载配置

        Args:
            config_file: JSON 配置文件；为空时从环境变量加载

        Returns:
            Config实例
        """
        if config_file is None:
            return load_config_from_env()

        config_file = Path(config_file)
        logger.info("Loading config file: {}", config_file)
        return create_config_from_dict(load_config_file(config_file))


# 从环境变量加载配置
def load_config_from_env() -> Config:
    """从环境变量加载配置"""
    config_data: Dict[str, Dict[str, Any]] = {
        "feed": {},
        "crawler": {
            "max_parallelism": int(os.getenv("MAX_PARALLELISM", "8")),
        },
        "dedup": {
            "max_hamming_distance": int(os.getenv("MAX_HAMMING_DISTANCE", "4")),
        },
        "image": {},
        "log": {
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        },
    }
    if os.getenv("FEED_API_URL"):
        config_data["feed"]["api_url"] = os.getenv("FEED_API_URL")
    if os.getenv("USER_AGENT"):
        config_data["crawler"]["user_agent"] = os.getenv("USER_AGENT")
    if os.getenv("DOWNLOAD_DIR"):
        config_data["image"]["download_dir"] = Path(os.getenv("DOWNLOAD_DIR"))
    return Config(**config_data)


# 全局配置实例（默认从环境变量加载）
config = load_config_from_env()
