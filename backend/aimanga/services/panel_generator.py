"""
单次画格生成服务

独立于项目编辑器的"输入提示词 -> 生成一张图"流程，用于快速试验风格与角色组合。
"""

import logging
from typing import List, Optional, Type

from ..core.config import settings
from ..core.credentials import CredentialLookup, default_credential_lookup
from ..exceptions import AppError, InvalidInputError, to_app_error
from ..models.character import CharacterReference
from ..models.style import MangaStyle
from ..utils.exception_helpers import log_exception
from .image_cache import ImageCache
from .providers import AIProviderFactory, BaseAIProvider
from .queue import ImageRequestQueue, RequestQueue

logger = logging.getLogger(__name__)


class PanelGeneratorService:
    """单次画格生成"""

    def __init__(
        self,
        factory: Type[AIProviderFactory] = AIProviderFactory,
        credential_lookup: Optional[CredentialLookup] = None,
        provider: Optional[BaseAIProvider] = None,
        image_cache: Optional[ImageCache] = None,
        image_queue: Optional[RequestQueue] = None,
    ):
        self.factory = factory
        self.credential_lookup = credential_lookup or default_credential_lookup()
        self._provider = provider
        self._image_cache = image_cache
        self._image_queue = image_queue
        self.provider_type = (provider.PROVIDER_TYPE if provider else "") or settings.default_provider

        self.current_prompt = ""
        self.selected_style: MangaStyle = MangaStyle.default()
        self.selected_characters: List[CharacterReference] = []

        self.is_generating = False
        self.generation_progress = 0.0
        self.last_generated_image: Optional[bytes] = None
        self.last_image_key: Optional[str] = None
        self.error: Optional[AppError] = None

    @property
    def image_queue(self) -> RequestQueue:
        return self._image_queue or ImageRequestQueue.get_instance()

    def _create_provider(self, provider_type: str) -> BaseAIProvider:
        kwargs = {"image_cache": self._image_cache} if self._image_cache else {}
        return self.factory.create(provider_type, self.credential_lookup, **kwargs)

    def select_provider(self, provider_type: str) -> bool:
        try:
            self._provider = self._create_provider(provider_type)
        except AppError as exc:
            log_exception(exc, "切换供应商", logger, level="warning", provider=provider_type)
            self.error = exc
            return False
        self.provider_type = self._provider.PROVIDER_TYPE
        return True

    def _get_provider(self) -> BaseAIProvider:
        if self._provider is None:
            self._provider = self._create_provider(self.provider_type)
        return self._provider

    async def generate(self) -> bool:
        """
        按当前提示词、风格和角色生成图片

        提示词为空时记录 InvalidInputError，不调用后端。
        """
        if not self.current_prompt.strip():
            self.error = InvalidInputError("请输入提示词")
            return False
        if self.is_generating:
            logger.info("已有生成任务进行中，忽略重复请求")
            return False

        self.is_generating = True
        self.generation_progress = 0.0
        self.error = None
        try:
            provider = self._get_provider()
            async with self.image_queue.request_slot():
                result = await provider.generate_image(
                    self.current_prompt, self.selected_style, list(self.selected_characters)
                )
        except Exception as exc:
            log_exception(exc, "生成图片", logger, provider=self.provider_type)
            self.error = to_app_error(exc)
            return False
        finally:
            self.is_generating = False

        self.last_generated_image = result.image_data
        self.last_image_key = result.image_url
        self.generation_progress = 1.0
        return True

    async def refine(self) -> bool:
        """用供应商优化当前提示词，空提示词时不做任何事"""
        if not self.current_prompt.strip():
            return False
        try:
            provider = self._get_provider()
            refined = await provider.refine_prompt(
                self.current_prompt,
                self.selected_style,
                provider.build_character_context(self.selected_characters),
            )
        except Exception as exc:
            log_exception(exc, "优化提示词", logger, provider=self.provider_type)
            self.error = to_app_error(exc)
            return False

        self.current_prompt = refined
        return True
