"""
OpenAI 供应商

- 提示词优化：/v1/chat/completions（经响应缓存去重）
- 图片生成：/v1/images/generations（不缓存），下载结果后写入图片缓存
"""

import base64
import binascii
import logging
import time
from typing import Optional, Sequence

from ...core.config import settings
from ...core.credentials import OPENAI_API_KEY
from ...exceptions import ImageProcessingError
from ...models.character import CharacterReference
from ...models.style import MangaStyle
from ..api_client import APIClient
from ..image_cache import ImageCache
from .base import BaseAIProvider, GeneratedImage, ImageMetadata
from .chat_mixin import ChatRefineMixin
from .factory import AIProviderFactory
from .schemas import ImageGenerationRequest, ImageGenerationResponse

logger = logging.getLogger(__name__)


@AIProviderFactory.register("openai", credential_key=OPENAI_API_KEY)
class OpenAIProvider(ChatRefineMixin, BaseAIProvider):
    """OpenAI 供应商（GPT 优化提示词 + DALL-E 生成图片）"""

    DISPLAY_NAME = "OpenAI"
    CHAT_ENDPOINT = "/v1/chat/completions"
    IMAGE_ENDPOINT = "/v1/images/generations"
    IMAGE_WIDTH = 1024
    IMAGE_HEIGHT = 1024

    def __init__(
        self,
        api_key: str,
        api_client: Optional[APIClient] = None,
        image_cache: Optional[ImageCache] = None,
    ):
        super().__init__(api_key, api_client=api_client, image_cache=image_cache)
        self.base_url = settings.openai_base_url
        self.text_model = settings.openai_text_model
        self.image_model = settings.openai_image_model
        self.temperature = settings.refine_temperature
        self.max_tokens = settings.refine_max_tokens

    async def generate_image(
        self,
        prompt: str,
        style: MangaStyle,
        character_guides: Sequence[CharacterReference],
    ) -> GeneratedImage:
        start_time = time.monotonic()

        enhanced_prompt = await self.refine_prompt(
            original=prompt,
            style=style,
            context=self.build_character_context(character_guides),
        )

        request = ImageGenerationRequest(
            prompt=enhanced_prompt,
            model=self.image_model,
            size=f"{self.IMAGE_WIDTH}x{self.IMAGE_HEIGHT}",
            quality="hd",
            n=1,
            style="vivid",
        )
        logger.info("开始生成图片: model=%s", self.image_model)

        response = await self.api_client.post(
            self.IMAGE_ENDPOINT,
            request,
            headers=self.auth_headers(),
            base_url=self.base_url,
            response_model=ImageGenerationResponse,
        )
        if not response.data:
            raise ImageProcessingError("响应中没有图片")

        image_data = await self._fetch_image(response.data[0].url, response.data[0].b64_json)
        cache_key = await self.image_cache.store_new(image_data)

        generation_time = time.monotonic() - start_time
        logger.info("图片生成完成: key=%s size=%d time=%.1fs", cache_key, len(image_data), generation_time)

        return GeneratedImage(
            image_data=image_data,
            image_url=cache_key,
            metadata=ImageMetadata(
                model=self.image_model,
                width=self.IMAGE_WIDTH,
                height=self.IMAGE_HEIGHT,
                # DALL-E 3 不提供可复现的种子
                seed=None,
            ),
            generation_time=generation_time,
        )

    async def _fetch_image(self, url: Optional[str], b64_json: Optional[str]) -> bytes:
        if url:
            return await self.api_client.get_bytes(url)
        if b64_json:
            try:
                return base64.b64decode(b64_json, validate=True)
            except binascii.Error as exc:
                raise ImageProcessingError("无法解码 b64_json 图片数据") from exc
        raise ImageProcessingError("响应中没有图片")
