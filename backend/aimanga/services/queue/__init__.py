"""
请求队列模块

提供图片生成请求的并发控制功能。
"""

from .base import RequestQueue
from .image_queue import ImageRequestQueue

__all__ = [
    "RequestQueue",
    "ImageRequestQueue",
]
