"""
Subject data fetcher package.
"""

from .dataset_fetcher import DatasetFetcher

__all__ = ['DatasetFetcher']
