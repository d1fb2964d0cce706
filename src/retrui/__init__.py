"""Retrui - 多源 RSS 新闻聚合服务."""

__version__ = "0.1.0"
