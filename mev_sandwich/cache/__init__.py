"""In-process metadata caches"""

from mev_sandwich.cache.metadata import MetadataCache

__all__ = ["MetadataCache"]
