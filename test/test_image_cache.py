"""图片缓存：两级读写、PNG 编码、低剩余空间清空"""

import asyncio
import io

import pytest
from PIL import Image

from aimanga.exceptions import FileWriteFailedError, InvalidInputError
from aimanga.services.image_cache import ImageCache, encode_png

from conftest import PLENTY_OF_SPACE, STUB_IMAGE


def jpeg_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 10, 10)).save(buffer, format="JPEG")
    return buffer.getvalue()


def test_put_then_get_from_memory_and_disk(cache_dir):
    async def main():
        cache = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: PLENTY_OF_SPACE)
        path = await cache.put("panel-1", STUB_IMAGE)
        assert path == cache_dir / "panel-1.png"
        assert path.read_bytes() == STUB_IMAGE
        assert await cache.get("panel-1") == STUB_IMAGE

        # 新实例只能从磁盘读取
        fresh = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: PLENTY_OF_SPACE)
        assert await fresh.get("panel-1") == STUB_IMAGE
        assert await fresh.contains("panel-1")
        assert await fresh.get("missing") is None

    asyncio.run(main())


def test_non_png_is_stored_as_png(cache_dir):
    async def main():
        cache = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: PLENTY_OF_SPACE)
        key = await cache.store_new(jpeg_bytes())
        return await cache.get(key)

    data = asyncio.run(main())
    with Image.open(io.BytesIO(data)) as img:
        assert img.format == "PNG"
        assert img.size == (4, 4)


def test_encode_png_keeps_png_and_unknown_bytes():
    buffer = io.BytesIO()
    Image.new("L", (2, 2)).save(buffer, format="PNG")
    png = buffer.getvalue()
    assert encode_png(png) == png
    assert encode_png(STUB_IMAGE) == STUB_IMAGE


def test_low_free_space_wipes_cache(cache_dir):
    free = {"bytes": PLENTY_OF_SPACE}

    async def main():
        cache = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: free["bytes"])
        await cache.put("old", STUB_IMAGE)
        free["bytes"] = 50 * 1024 * 1024
        await cache.put("new", STUB_IMAGE)
        assert await cache.get("old") is None
        assert await cache.get("new") is None

    asyncio.run(main())
    assert cache_dir.is_dir()
    assert list(cache_dir.iterdir()) == []


def test_failed_write_leaves_no_memory_entry(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_bytes(b"")

    async def main():
        cache = ImageCache(cache_dir=blocker / "cache", free_space_fn=lambda _p: PLENTY_OF_SPACE)
        with pytest.raises(FileWriteFailedError):
            await cache.put("k1", STUB_IMAGE)
        assert await cache.get("k1") is None
        assert not await cache.contains("k1")

    asyncio.run(main())


def test_clear_cache(cache_dir):
    async def main():
        cache = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: PLENTY_OF_SPACE)
        await cache.put("a", STUB_IMAGE)
        await cache.clear_cache()
        assert await cache.get("a") is None

    asyncio.run(main())
    assert list(cache_dir.iterdir()) == []


def test_resolve_key_or_path(cache_dir, tmp_path):
    external = tmp_path / "image.png"
    external.write_bytes(b"external")

    async def main():
        cache = ImageCache(cache_dir=cache_dir, free_space_fn=lambda _p: PLENTY_OF_SPACE)
        await cache.put("k1", STUB_IMAGE)
        return (
            await cache.resolve("k1"),
            await cache.resolve(str(external)),
            await cache.resolve(str(tmp_path / "nope.png")),
            await cache.resolve(None),
        )

    assert asyncio.run(main()) == (STUB_IMAGE, b"external", None, None)


@pytest.mark.parametrize("key", ["", "../escape", "a/b", ".hidden"])
def test_invalid_keys_rejected(cache_dir, key):
    cache = ImageCache(cache_dir=cache_dir)
    with pytest.raises(InvalidInputError):
        cache.path_for(key)
