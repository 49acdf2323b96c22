"""
Chat Completions 提示词优化 Mixin

OpenAI 与 OpenRouter 共用同一套请求/响应格式，只在端点、Base URL 与请求头上不同。
"""

import logging
from typing import Dict

from ...models.style import MangaStyle
from .prompts import build_refine_system_prompt, build_refine_user_prompt
from .schemas import ChatCompletionRequest, ChatCompletionResponse, ChatMessage

logger = logging.getLogger(__name__)


class ChatRefineMixin:
    """
    通过 Chat Completions 端点优化提示词

    宿主类需提供：CHAT_ENDPOINT、base_url、text_model、temperature、max_tokens、
    auth_headers()、api_client、require_text()。
    """

    CHAT_ENDPOINT: str = "/v1/chat/completions"

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    async def refine_prompt(self, original: str, style: MangaStyle, context: str) -> str:
        request = ChatCompletionRequest(
            model=self.text_model,
            messages=[
                ChatMessage(role="system", content=build_refine_system_prompt(style)),
                ChatMessage(role="user", content=build_refine_user_prompt(original, context)),
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        logger.info("提示词优化请求: provider=%s model=%s", self.PROVIDER_TYPE, self.text_model)

        response = await self.api_client.cached_post(
            self.CHAT_ENDPOINT,
            request,
            ChatCompletionResponse,
            headers=self.auth_headers(),
            base_url=self.base_url,
        )
        return self.require_text(response.first_text())
