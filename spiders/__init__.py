"""
爬虫模块

- FeedImageSpider: 用户图片订阅源爬虫（分页增量 + 预取下一页）
"""
from spiders.feed_spider import FeedImageSpider

__all__ = ['FeedImageSpider']
