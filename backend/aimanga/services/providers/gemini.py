"""
Gemini 供应商

API Key 通过查询参数传递；请求/响应使用 contents/parts/text 结构。
图片生成暂不支持。
"""

import logging
from typing import Optional

from ...core.config import settings
from ...core.credentials import GEMINI_API_KEY
from ...models.style import MangaStyle
from ..api_client import APIClient
from ..image_cache import ImageCache
from .base import BaseAIProvider
from .factory import AIProviderFactory
from .prompts import build_refine_system_prompt, build_refine_user_prompt
from .schemas import (
    GeminiContent,
    GeminiGenerateContentRequest,
    GeminiGenerateContentResponse,
    GeminiPart,
)

logger = logging.getLogger(__name__)


@AIProviderFactory.register("gemini", credential_key=GEMINI_API_KEY)
class GeminiProvider(BaseAIProvider):
    """Gemini 供应商"""

    DISPLAY_NAME = "Gemini"

    def __init__(
        self,
        api_key: str,
        api_client: Optional[APIClient] = None,
        image_cache: Optional[ImageCache] = None,
    ):
        super().__init__(api_key, api_client=api_client, image_cache=image_cache)
        self.base_url = settings.gemini_base_url
        self.text_model = settings.gemini_text_model

    def generate_content_endpoint(self) -> str:
        return f"/v1beta/models/{self.text_model}:generateContent?key={self.api_key}"

    async def refine_prompt(self, original: str, style: MangaStyle, context: str) -> str:
        full_prompt = f"{build_refine_system_prompt(style)}\n\n{build_refine_user_prompt(original, context)}"
        request = GeminiGenerateContentRequest(
            contents=[GeminiContent(parts=[GeminiPart(text=full_prompt)])],
        )
        # 端点中包含 API Key，日志只记录模型名
        logger.info("提示词优化请求: provider=gemini model=%s", self.text_model)

        response = await self.api_client.cached_post(
            self.generate_content_endpoint(),
            request,
            GeminiGenerateContentResponse,
            base_url=self.base_url,
        )
        return self.require_text(response.first_text())
