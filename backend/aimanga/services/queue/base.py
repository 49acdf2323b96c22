"""
请求队列基类

基于 Semaphore 控制同时在途的后端请求数，并统计队列状态。
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class RequestQueue:
    """
    请求队列

    - 最大并发数限制（超出的请求排队等待）
    - 状态统计：活跃数、等待数、已处理数、失败数
    """

    def __init__(self, name: str, max_concurrent: int = 2):
        """
        Args:
            name: 队列名称（用于日志标识）
            max_concurrent: 最大并发数
        """
        if max_concurrent < 1:
            raise ValueError("最大并发数必须大于0")
        self.name = name
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)

        self._active_count = 0
        self._waiting_count = 0
        self._total_processed = 0
        self._total_failed = 0

        logger.info("队列 %s 已初始化: max_concurrent=%d", self.name, max_concurrent)

    @asynccontextmanager
    async def request_slot(self) -> AsyncIterator[None]:
        """
        上下文管理器，自动获取和释放执行槽位

        使用示例：
            async with queue.request_slot():
                await provider.generate_image(...)
        """
        self._waiting_count += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting_count -= 1

        self._active_count += 1
        logger.debug(
            "队列 %s: 获取到槽位 (active=%d, waiting=%d)",
            self.name, self._active_count, self._waiting_count,
        )
        try:
            yield
        except BaseException:
            self._total_failed += 1
            raise
        finally:
            self._active_count -= 1
            self._total_processed += 1
            self._semaphore.release()
            logger.debug(
                "队列 %s: 释放槽位 (active=%d, total=%d)",
                self.name, self._active_count, self._total_processed,
            )

    def get_status(self) -> Dict[str, int]:
        """
        获取队列状态

        Returns:
            包含 active, waiting, max_concurrent, total_processed, total_failed 的字典
        """
        return {
            "active": self._active_count,
            "waiting": self._waiting_count,
            "max_concurrent": self._max_concurrent,
            "total_processed": self._total_processed,
            "total_failed": self._total_failed,
        }

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent
