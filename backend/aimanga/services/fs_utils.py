"""文件系统工具：异步 Path I/O（统一基于 asyncio.to_thread，避免阻塞事件循环）。"""

from __future__ import annotations

import asyncio
import os
import shutil
import uuid
from pathlib import Path
from typing import List


async def async_exists(path: Path) -> bool:
    return await asyncio.to_thread(path.exists)


async def async_is_dir(path: Path) -> bool:
    return await asyncio.to_thread(path.is_dir)


async def async_mkdir(path: Path, *, parents: bool = False, exist_ok: bool = False) -> None:
    await asyncio.to_thread(path.mkdir, parents=parents, exist_ok=exist_ok)


async def async_read_bytes(path: Path) -> bytes:
    return await asyncio.to_thread(path.read_bytes)


async def async_read_text(path: Path) -> str:
    return await asyncio.to_thread(path.read_text, encoding="utf-8")


async def async_unlink(path: Path, *, missing_ok: bool = False) -> None:
    await asyncio.to_thread(path.unlink, missing_ok=missing_ok)


async def async_iterdir(path: Path) -> List[Path]:
    return await asyncio.to_thread(lambda: list(path.iterdir()))


async def async_rmtree(path: Path, *, ignore_errors: bool = False) -> None:
    await asyncio.to_thread(shutil.rmtree, path, ignore_errors=ignore_errors)


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """先写临时文件再原子替换，读者不会看到写了一半的文件"""
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp_path.write_bytes(data)
        os.replace(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)


async def async_write_bytes_atomic(path: Path, data: bytes) -> None:
    await asyncio.to_thread(write_bytes_atomic, path, data)


async def async_write_text_atomic(path: Path, text: str) -> None:
    await asyncio.to_thread(write_bytes_atomic, path, text.encode("utf-8"))


def disk_free_bytes(path: Path) -> int:
    """获取路径所在卷的剩余空间（字节）"""
    return shutil.disk_usage(path).free
