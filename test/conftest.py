"""
测试公共配置

- 将 backend 目录加入模块搜索路径
- 提供临时图片缓存、项目存储与桩供应商
"""

import asyncio
import sys
from pathlib import Path

import pytest

# 添加项目路径
project_root = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(project_root / "backend"))

from aimanga.exceptions import APIError, APIErrorCode  # noqa: E402
from aimanga.services.providers.base import BaseAIProvider, GeneratedImage, ImageMetadata  # noqa: E402

STUB_IMAGE = b"0123456789"

# 足够大的剩余空间，避免触发缓存清空
PLENTY_OF_SPACE = 10 * 1024 ** 3


class StubProvider(BaseAIProvider):
    """
    桩供应商：延迟后返回固定的10字节图片

    提示词包含 fail_markers 中任意一项时抛出服务端错误。
    """

    PROVIDER_TYPE = "stub"
    DISPLAY_NAME = "Stub"

    def __init__(self, image_cache, payload=STUB_IMAGE, delay=0.05, fail_markers=()):
        super().__init__("stub-key", image_cache=image_cache)
        self.payload = payload
        self.delay = delay
        self.fail_markers = tuple(fail_markers)
        self.prompts = []

    async def refine_prompt(self, original, style, context):
        return f"{original} ({style.genre.value})"

    async def generate_image(self, prompt, style, character_guides):
        self.prompts.append(prompt)
        await asyncio.sleep(self.delay)
        if any(marker in prompt for marker in self.fail_markers):
            raise APIError(APIErrorCode.SERVER, "HTTP 500")
        key = await self.image_cache.store_new(self.payload)
        return GeneratedImage(
            image_data=self.payload,
            image_url=key,
            metadata=ImageMetadata(model="stub", width=1, height=1),
            generation_time=self.delay,
        )


@pytest.fixture
def cache_dir(tmp_path):
    return tmp_path / "cache"


@pytest.fixture
def projects_dir(tmp_path):
    return tmp_path / "projects"


@pytest.fixture
def stub_provider_cls():
    return StubProvider


@pytest.fixture
def image_cache(cache_dir):
    from aimanga.services.image_cache import ImageCache
    return ImageCache(cache_dir=cache_dir, free_space_fn=lambda _path: PLENTY_OF_SPACE)


@pytest.fixture
def repository(projects_dir, image_cache):
    from aimanga.repositories import LocalMangaRepository
    return LocalMangaRepository(root=projects_dir, image_cache=image_cache)
