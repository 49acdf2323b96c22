"""
OpenRouter 供应商

目前只代理文本模型，用于提示词优化；图片生成暂不支持。
"""

from typing import Dict, Optional

from ...core.config import settings
from ...core.credentials import OPENROUTER_API_KEY
from ..api_client import APIClient
from ..image_cache import ImageCache
from .base import BaseAIProvider
from .chat_mixin import ChatRefineMixin
from .factory import AIProviderFactory


@AIProviderFactory.register("openrouter", credential_key=OPENROUTER_API_KEY)
class OpenRouterProvider(ChatRefineMixin, BaseAIProvider):
    """OpenRouter 供应商"""

    DISPLAY_NAME = "OpenRouter"
    CHAT_ENDPOINT = "/api/v1/chat/completions"

    def __init__(
        self,
        api_key: str,
        api_client: Optional[APIClient] = None,
        image_cache: Optional[ImageCache] = None,
    ):
        super().__init__(api_key, api_client=api_client, image_cache=image_cache)
        self.base_url = settings.openrouter_base_url
        self.text_model = settings.openrouter_text_model
        self.temperature = settings.refine_temperature
        self.max_tokens = settings.refine_max_tokens

    def auth_headers(self) -> Dict[str, str]:
        # OpenRouter 要求携带来源信息
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.app_name,
        }
