"""
请求响应缓存

对幂等、无副作用的后端调用（提示词优化等文本请求）进行去重与缓存：
- 按 key 缓存结果，条目在创建后 ttl 秒过期，过期条目在下一次查找时清除
- 同一 key 同一时刻最多只有一个 compute 在执行，并发调用者共享同一个结果
- 命中条目类型与调用者期望不符时视为未命中并清除

图片生成请求不可重放，禁止通过此缓存调用。
"""

import asyncio
import copy
import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from ..core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISS = object()


@dataclass
class CacheEntry:
    """缓存条目（值拷贝，不与调用者共享）"""
    data: Any
    expiry: float
    type_info: type


def request_fingerprint(body: Union[BaseModel, Dict[str, Any], None]) -> str:
    """
    计算请求体指纹

    使用规范化JSON（键排序、紧凑分隔符）的 SHA-256，保证同一请求内容得到同一指纹。
    """
    if isinstance(body, BaseModel):
        payload = body.model_dump(mode="json", by_alias=True, exclude_none=True)
    else:
        payload = body or {}
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_cache_key(base_url: str, endpoint: str, body: Union[BaseModel, Dict[str, Any], None]) -> str:
    """
    缓存键 = base_url + endpoint路径 + 请求体指纹

    endpoint 的查询参数（可能包含 API Key）并入指纹，不以明文出现在键中。
    """
    path, _, query = endpoint.partition("?")
    fingerprint = request_fingerprint(body)
    if query:
        fingerprint = hashlib.sha256(f"{query}_{fingerprint}".encode("utf-8")).hexdigest()
    return f"{base_url.rstrip('/')}{path}_{fingerprint}"


class ResponseCache:
    """
    响应缓存（单例模式）

    使用 asyncio.Lock 保护条目表与进行中请求表，检查-写入在持锁期间完成；
    compute 本身在锁外执行，其他 key 的请求不受影响。
    """

    _instance: Optional["ResponseCache"] = None

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        初始化缓存

        Args:
            default_ttl: 默认有效期（秒），None 时使用配置值
            clock: 时钟函数（测试时可注入）
        """
        self.default_ttl = settings.response_cache_ttl if default_ttl is None else default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self._lock = asyncio.Lock()

        self._hits = 0
        self._misses = 0
        self._shared = 0

    @classmethod
    def get_instance(cls) -> "ResponseCache":
        """获取进程级缓存单例"""
        if cls._instance is None:
            cls._instance = cls()
            logger.info("响应缓存已创建: default_ttl=%.0fs", cls._instance.default_ttl)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """
        重置单例（仅用于测试）
        """
        cls._instance = None

    def _lookup(self, key: str, expected_type: Optional[Type]) -> Any:
        """查找未过期且类型匹配的条目，调用方需持锁"""
        entry = self._entries.get(key)
        if entry is None:
            return _MISS

        if entry.expiry <= self._clock():
            del self._entries[key]
            logger.debug("响应缓存条目已过期并清除: %s", key)
            return _MISS

        if expected_type is not None and not (
            isinstance(entry.data, expected_type) and issubclass(entry.type_info, expected_type)
        ):
            # 存储类型与期望不符，清除后按未命中处理
            del self._entries[key]
            logger.warning(
                "响应缓存类型不匹配，已清除: key=%s stored=%s expected=%s",
                key, entry.type_info.__name__, expected_type.__name__,
            )
            return _MISS

        return entry.data

    async def get(self, key: str, expected_type: Optional[Type] = None) -> Optional[Any]:
        """读取缓存（不触发计算），未命中返回 None"""
        async with self._lock:
            value = self._lookup(key, expected_type)
        return None if value is _MISS else copy.deepcopy(value)

    async def cached_call(
        self,
        key: str,
        compute: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        expected_type: Optional[Type[T]] = None,
    ) -> T:
        """
        带去重的缓存调用

        Args:
            key: 缓存键
            compute: 未命中时执行的协程工厂
            ttl: 有效期（秒），None 使用默认值；0 表示下一次查找即失效
            expected_type: 期望的结果类型，缓存值类型不符时视为未命中

        Returns:
            compute 的结果（或其缓存拷贝）

        Raises:
            compute 抛出的异常会传递给所有等待同一 key 的调用者，且不会写入缓存
        """
        ttl = self.default_ttl if ttl is None else ttl

        while True:
            async with self._lock:
                value = self._lookup(key, expected_type)
                if value is not _MISS:
                    self._hits += 1
                    logger.debug("响应缓存命中: %s", key)
                    return copy.deepcopy(value)

                future = self._inflight.get(key)
                owner = future is None
                if owner:
                    future = asyncio.get_running_loop().create_future()
                    self._inflight[key] = future
                    self._misses += 1
                else:
                    self._shared += 1

            if owner:
                return await self._compute_and_store(key, future, compute, ttl)

            logger.debug("响应缓存: 等待进行中的请求 %s", key)
            try:
                result = await asyncio.shield(future)
            except asyncio.CancelledError:
                if future.cancelled():
                    # 发起者被取消，由当前调用者重新发起
                    continue
                raise
            if expected_type is not None and not isinstance(result, expected_type):
                # 类型不符按未命中处理，重新查找时清除该条目
                logger.warning(
                    "共享结果类型不匹配: key=%s result=%s expected=%s",
                    key, type(result).__name__, expected_type.__name__,
                )
                continue
            return copy.deepcopy(result)

    async def _compute_and_store(
        self,
        key: str,
        future: asyncio.Future,
        compute: Callable[[], Awaitable[T]],
        ttl: float,
    ) -> T:
        try:
            result = await compute()
        except asyncio.CancelledError:
            async with self._lock:
                self._inflight.pop(key, None)
            future.cancel()
            raise
        except Exception as exc:
            async with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            # 标记异常已读取，避免无人等待时输出警告
            future.exception()
            raise

        async with self._lock:
            self._entries[key] = CacheEntry(
                data=copy.deepcopy(result),
                expiry=self._clock() + ttl,
                type_info=type(result),
            )
            self._inflight.pop(key, None)
        future.set_result(result)
        logger.debug("响应缓存写入: key=%s ttl=%.0fs", key, ttl)
        return copy.deepcopy(result)

    async def invalidate(self, key: str) -> bool:
        """删除指定条目，返回是否存在"""
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def purge_expired(self) -> int:
        """清除所有过期条目，返回清除数量"""
        now = self._clock()
        async with self._lock:
            expired = [k for k, entry in self._entries.items() if entry.expiry <= now]
            for k in expired:
                del self._entries[k]
        if expired:
            logger.info("响应缓存清除过期条目: %d", len(expired))
        return len(expired)

    async def clear(self) -> None:
        """清空所有条目（进行中的请求不受影响）"""
        async with self._lock:
            self._entries.clear()
        logger.info("响应缓存已清空")

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        """
        获取缓存状态

        Returns:
            包含 entries, inflight, hits, misses, shared 的字典
        """
        return {
            "entries": len(self._entries),
            "inflight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "shared": self._shared,
        }
