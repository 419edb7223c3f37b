"""
HTTP 下载模块

RetryingFetcher 对幂等 GET 请求做有限次重试：
- 5xx 立即重试，总次数不超过 max_attempts（默认 3）
- 其他状态码（包括 4xx 与成功）原样返回
- 重试耗尽时返回最后一次失败的响应，而不是抛异常
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import aiohttp
from fake_useragent import UserAgent
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

from config import CrawlerConfig, config
from core.exceptions import FeedError


@dataclass(frozen=True)
class FetchResponse:
    """一次 GET 请求的结果（响应体已完整读取）"""
    url: str
    status: int
    body: bytes = b""
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status < 600


def _is_server_error(response: FetchResponse) -> bool:
    return response.is_server_error


def _return_last_response(retry_state: RetryCallState):
    """重试耗尽：返回最后一次响应；如果最后一次是异常则继续抛出"""
    outcome = retry_state.outcome
    if outcome.failed:
        raise outcome.exception()
    return outcome.result()


class RetryingFetcher:
    """带重试的 HTTP 获取器"""

    def __init__(self, crawler_config: Optional[CrawlerConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.config = crawler_config or config.crawler
        self.session = session
        self._owns_session = session is None
        self.ua = UserAgent()
        self.stats = {
            "requests": 0,
            "retries": 0,
            "failed": 0,
        }

    async def __aenter__(self):
        """异步上下文管理器入口"""
        await self.init_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()

    async def init_session(self):
        """初始化HTTP会话"""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
            logger.debug("HTTP session initialized")

    async def close(self):
        """关闭会话（只关闭自己创建的会话）"""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None
        logger.debug("Fetch stats: {}", self.stats)

    def get_headers(self) -> Dict[str, str]:
        """获取请求头"""
        if self.config.user_agent:
            user_agent = self.config.user_agent
        elif self.config.rotate_user_agent:
            user_agent = self.ua.random
        else:
            user_agent = self.ua.chrome
        return {
            "User-Agent": user_agent,
            "Accept": "application/json,image/webp,image/apng,image/*,*/*;q=0.8",
        }

    async def get(self, url: str) -> FetchResponse:
        """
        GET 请求，5xx 时重试

        Args:
            url: 请求地址

        Returns:
            FetchResponse；重试耗尽时为最后一次的失败响应

        Raises:
            aiohttp.ClientError / asyncio.TimeoutError: 连接层错误在重试耗尽后抛出
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            retry=(
                retry_if_result(_is_server_error)
                | retry_if_exception_type((aiohttp.ClientConnectionError, asyncio.TimeoutError))
            ),
            before_sleep=self._log_retry,
            retry_error_callback=_return_last_response,
        )
        response = await retrying(self._get_once, url)
        if not response.ok:
            self.stats["failed"] += 1
        return response

    async def get_json(self, url: str) -> Any:
        """
        获取 JSON（订阅源页面）

        Raises:
            FeedError: 状态码非 2xx 或响应不是合法 JSON
        """
        response = await self.get(url)
        if not response.ok:
            raise FeedError(url, status=response.status)
        try:
            return json.loads(response.body)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise FeedError(url, message=f"invalid JSON: {e}") from e

    async def _get_once(self, url: str) -> FetchResponse:
        self.stats["requests"] += 1
        async with self.session.get(url, headers=self.get_headers()) as response:
            body = await response.read()
            return FetchResponse(
                url=url,
                status=response.status,
                body=body,
                content_type=response.headers.get("Content-Type"),
            )

    def _log_retry(self, retry_state: RetryCallState):
        self.stats["retries"] += 1
        url = retry_state.args[0] if retry_state.args else "?"
        outcome = retry_state.outcome
        if outcome.failed:
            reason = repr(outcome.exception())
        else:
            reason = f"HTTP {outcome.result().status}"
        logger.warning("Retrying {} after attempt {} ({})", url, retry_state.attempt_number, reason)

    def get_stats(self) -> Dict[str, int]:
        """获取请求统计"""
        return self.stats.copy()
