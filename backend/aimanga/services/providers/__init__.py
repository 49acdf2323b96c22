"""
AI 供应商模块

使用工厂模式管理不同的 AI 后端，导入本模块即完成内置供应商注册。
"""

from .base import (
    BaseAIProvider,
    ConsistencyIssue,
    ConsistencyReport,
    GeneratedImage,
    ImageMetadata,
    IssueSeverity,
)
from .factory import AIProviderFactory, AIProviderType
from .openai_provider import OpenAIProvider
from .gemini import GeminiProvider
from .openrouter import OpenRouterProvider

__all__ = [
    "BaseAIProvider",
    "ConsistencyIssue",
    "ConsistencyReport",
    "GeneratedImage",
    "ImageMetadata",
    "IssueSeverity",
    "AIProviderFactory",
    "AIProviderType",
    "OpenAIProvider",
    "GeminiProvider",
    "OpenRouterProvider",
]
