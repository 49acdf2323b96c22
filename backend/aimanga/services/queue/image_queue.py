"""
图片生成请求队列

所有供应商的图片生成调用都经过此队列，限制同时在途的付费请求数量。
"""

import logging
from typing import Optional

from .base import RequestQueue

logger = logging.getLogger(__name__)


class ImageRequestQueue(RequestQueue):
    """图片生成请求队列（单例模式）"""

    _instance: Optional["ImageRequestQueue"] = None

    def __init__(self, max_concurrent: int = 2):
        super().__init__(name="image", max_concurrent=max_concurrent)

    @classmethod
    def get_instance(cls) -> "ImageRequestQueue":
        """
        获取队列单例

        首次调用时根据 settings.image_max_concurrent 初始化。
        """
        if cls._instance is None:
            # 延迟导入避免循环引用
            from ...core.config import settings
            cls._instance = cls(max_concurrent=settings.image_max_concurrent)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """
        重置单例（仅用于测试）
        """
        cls._instance = None
