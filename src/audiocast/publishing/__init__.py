"""Clients for video hosting platforms."""

from .publishing_base import (
    MetadataPatch,
    PublishClient,
    PublishResult,
    VideoMetadata,
    prepare_metadata,
)
from .publishing_youtube import YouTubePublishClient

__all__ = [
    "MetadataPatch",
    "PublishClient",
    "PublishResult",
    "VideoMetadata",
    "YouTubePublishClient",
    "prepare_metadata",
]
