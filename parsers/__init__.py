"""
解析器模块

- SubmissionParser: 订阅源 submission 列表解析器
"""
from parsers.submission_parser import CandidateItem, FeedPage, SubmissionParser

__all__ = ['CandidateItem', 'FeedPage', 'SubmissionParser']
