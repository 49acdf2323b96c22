"""
AI 供应商工厂

使用注册模式管理供应商，新增后端只需新增实现并注册，调用方无需改动。
"""

import logging
from enum import Enum
from typing import Any, Dict, Type, Union

from ...core.credentials import CredentialLookup
from ...exceptions import InvalidInputError, UnauthorizedError
from .base import BaseAIProvider

logger = logging.getLogger(__name__)


class AIProviderType(str, Enum):
    """内置供应商类型"""
    OPENAI = "openai"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class AIProviderFactory:
    """
    AI 供应商工厂

    使用装饰器注册供应商，通过 provider_type + 凭据查找函数构造实例。

    使用示例:
        @AIProviderFactory.register("openai", credential_key="openai_api_key")
        class OpenAIProvider(BaseAIProvider):
            ...

        provider = AIProviderFactory.create("openai", credential_lookup)
    """

    _providers: Dict[str, Type[BaseAIProvider]] = {}

    @classmethod
    def register(cls, provider_type: str, credential_key: str):
        """
        注册供应商装饰器

        Args:
            provider_type: 供应商类型标识符
            credential_key: 凭据标识（如 "openai_api_key"）
        """
        def decorator(provider_cls: Type[BaseAIProvider]):
            if not issubclass(provider_cls, BaseAIProvider):
                raise TypeError(f"{provider_cls.__name__} 必须继承自 BaseAIProvider")
            cls._providers[provider_type] = provider_cls
            provider_cls.PROVIDER_TYPE = provider_type
            provider_cls.CREDENTIAL_KEY = credential_key
            logger.debug("注册AI供应商: %s -> %s", provider_type, provider_cls.__name__)
            return provider_cls
        return decorator

    @staticmethod
    def _normalize(provider_type: Union[str, AIProviderType]) -> str:
        if isinstance(provider_type, AIProviderType):
            return provider_type.value
        return str(provider_type).strip().lower()

    @classmethod
    def create(
        cls,
        provider_type: Union[str, AIProviderType],
        credential_lookup: CredentialLookup,
        **kwargs: Any,
    ) -> BaseAIProvider:
        """
        构造供应商实例

        构造过程不发起网络请求；凭据缺失时立即失败。

        Args:
            provider_type: 供应商类型标识符
            credential_lookup: 凭据查找函数
            **kwargs: 透传给供应商构造函数（api_client、image_cache 等）

        Raises:
            InvalidInputError: 未注册的供应商类型
            UnauthorizedError: 凭据缺失
        """
        key = cls._normalize(provider_type)
        provider_cls = cls._providers.get(key)
        if provider_cls is None:
            logger.warning("未找到供应商类型: %s", provider_type)
            raise InvalidInputError(f"不支持的供应商类型: {provider_type}")

        api_key = credential_lookup(provider_cls.CREDENTIAL_KEY)
        if not api_key:
            logger.warning("供应商 %s 缺少凭据: %s", key, provider_cls.CREDENTIAL_KEY)
            raise UnauthorizedError(f"未配置 {provider_cls.DISPLAY_NAME or key} 的 API Key")

        return provider_cls(api_key=api_key, **kwargs)

    @classmethod
    def get_supported_types(cls) -> Dict[str, str]:
        """
        获取所有支持的供应商类型

        Returns:
            类型到显示名称的映射
        """
        return {
            provider_type: provider_cls.DISPLAY_NAME or provider_type
            for provider_type, provider_cls in cls._providers.items()
        }

    @classmethod
    def is_supported(cls, provider_type: Union[str, AIProviderType]) -> bool:
        return cls._normalize(provider_type) in cls._providers
