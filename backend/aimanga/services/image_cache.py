"""
图片缓存

内存 + 磁盘两级缓存，存放生成的画格图片：
- 内存层是普通字典，只做快速路径，不作为唯一数据源
- 每次 put 都会以 PNG 写入磁盘缓存目录
- get 先查内存再查磁盘，磁盘命中回填内存
- 每次写盘后检查缓存卷剩余空间，低于下限时清空整个缓存（内存 + 磁盘）并重建目录

生成的图片可以根据元数据重新生成，因此淘汰策略选择简单的整体清空而非 LRU。
"""

import asyncio
import io
import logging
import re
import uuid
from pathlib import Path
from typing import Callable, Dict, Optional

from PIL import Image, UnidentifiedImageError

from ..core.config import settings
from ..exceptions import FileWriteFailedError, InvalidInputError
from .fs_utils import (
    async_exists,
    async_mkdir,
    async_read_bytes,
    async_rmtree,
    async_write_bytes_atomic,
    disk_free_bytes,
)

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# PIL 可直接保存为 PNG 的模式
_PNG_MODES = {"1", "L", "LA", "I", "P", "RGB", "RGBA"}


def encode_png(data: bytes) -> bytes:
    """
    将图片字节统一编码为 PNG

    - 已是 PNG 的原样返回
    - PIL 可识别的其他格式转码为 PNG
    - 无法识别的数据原样返回
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.format == "PNG":
                return data
            if img.mode not in _PNG_MODES:
                img = img.convert("RGBA")
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            return buffer.getvalue()
    except (UnidentifiedImageError, OSError, ValueError):
        logger.debug("无法识别的图片数据，按原样缓存: %d bytes", len(data))
        return data


class ImageCache:
    """
    图片缓存（单例模式）

    所有磁盘读写都在 self._lock 内完成，同一个键上的 get/put 线性一致，
    读者不会看到写了一半的条目（磁盘写入采用临时文件 + 原子替换）。
    """

    _instance: Optional["ImageCache"] = None

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        min_free_bytes: Optional[int] = None,
        size_limit_bytes: Optional[int] = None,
        free_space_fn: Optional[Callable[[Path], int]] = None,
    ):
        """
        初始化缓存

        Args:
            cache_dir: 缓存目录，默认使用配置中的图片缓存目录
            min_free_bytes: 剩余空间下限（默认100MB）
            size_limit_bytes: 容量上限（默认1GB，当前淘汰策略未使用）
            free_space_fn: 剩余空间探测函数（测试时可注入）
        """
        self.cache_dir = Path(cache_dir) if cache_dir else settings.image_cache_dir
        self.min_free_bytes = (
            settings.image_cache_min_free_bytes if min_free_bytes is None else min_free_bytes
        )
        self.size_limit_bytes = (
            settings.image_cache_size_limit_bytes if size_limit_bytes is None else size_limit_bytes
        )
        self._free_space_fn = free_space_fn or disk_free_bytes
        self._memory: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def get_instance(cls) -> "ImageCache":
        """获取进程级图片缓存单例"""
        if cls._instance is None:
            cls._instance = cls()
            logger.info("图片缓存已创建: dir=%s", cls._instance.cache_dir)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """
        重置单例（仅用于测试）
        """
        cls._instance = None

    @staticmethod
    def validate_key(key: str) -> str:
        if not key or not _KEY_PATTERN.match(key):
            raise InvalidInputError(f"无效的缓存键: {key!r}")
        return key

    @staticmethod
    def is_cache_key(ref: str) -> bool:
        """判断引用是缓存键还是文件路径"""
        return bool(ref) and _KEY_PATTERN.match(ref) is not None

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"{self.validate_key(key)}.png"

    async def put(self, key: str, data: bytes) -> Path:
        """
        写入缓存

        Returns:
            磁盘缓存文件路径

        Raises:
            FileWriteFailedError: 写盘失败
        """
        path = self.path_for(key)
        png_data = await asyncio.to_thread(encode_png, data)

        async with self._lock:
            try:
                await async_mkdir(self.cache_dir, parents=True, exist_ok=True)
                await async_write_bytes_atomic(path, png_data)
            except OSError as exc:
                # 内存层不保留写盘失败的键，读取以磁盘为准
                self._memory.pop(key, None)
                logger.error("图片缓存写盘失败: key=%s error=%s", key, exc)
                raise FileWriteFailedError(f"图片缓存写入失败: {key}") from exc
            self._memory[key] = png_data

            logger.debug("图片已缓存: key=%s size=%d", key, len(png_data))
            await self._trim_if_needed()
        return path

    async def store_new(self, data: bytes) -> str:
        """使用新生成的键写入缓存，返回缓存键"""
        key = uuid.uuid4().hex
        await self.put(key, data)
        return key

    async def get(self, key: str) -> Optional[bytes]:
        """读取缓存，先查内存再查磁盘，未命中返回 None"""
        self.validate_key(key)
        cached = self._memory.get(key)
        if cached is not None:
            return cached

        async with self._lock:
            cached = self._memory.get(key)
            if cached is not None:
                return cached

            path = self.path_for(key)
            if not await async_exists(path):
                return None
            try:
                data = await async_read_bytes(path)
            except OSError as exc:
                logger.warning("图片缓存读取失败: key=%s error=%s", key, exc)
                return None
            self._memory[key] = data
            return data

    async def contains(self, key: str) -> bool:
        if key in self._memory:
            return True
        return await async_exists(self.path_for(key))

    async def resolve(self, ref: Optional[str]) -> Optional[bytes]:
        """
        解析画格的图片引用

        引用可以是缓存键，也可以是外部图片文件路径。
        """
        if not ref:
            return None
        if self.is_cache_key(ref):
            return await self.get(ref)
        path = Path(ref)
        if not await async_exists(path):
            return None
        return await async_read_bytes(path)

    async def clear_cache(self) -> None:
        """清空整个缓存（内存 + 磁盘），并重建空目录"""
        async with self._lock:
            await self._clear_unlocked()

    async def _clear_unlocked(self) -> None:
        self._memory.clear()
        await async_rmtree(self.cache_dir, ignore_errors=True)
        await async_mkdir(self.cache_dir, parents=True, exist_ok=True)
        logger.info("图片缓存已清空: %s", self.cache_dir)

    async def _trim_if_needed(self) -> None:
        """剩余空间低于下限时清空整个缓存"""
        try:
            available = await asyncio.to_thread(self._free_space_fn, self.cache_dir)
        except OSError as exc:
            logger.warning("无法获取缓存卷剩余空间: %s", exc)
            return

        if available < self.min_free_bytes:
            logger.warning(
                "缓存卷剩余空间不足 (%d < %d bytes)，清空图片缓存",
                available, self.min_free_bytes,
            )
            await self._clear_unlocked()
