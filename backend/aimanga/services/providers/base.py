"""
AI 供应商基类

定义供应商能力接口，所有具体供应商都需要实现这些方法：
- refine_prompt: 优化画格提示词（必须实现）
- generate_image: 生成画格图片（不支持的供应商抛出 UnsupportedOperationError）
- analyze_character_consistency: 角色一致性分析（未实现时抛出 NotImplementedFeatureError）
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ...exceptions import (
    APIError,
    APIErrorCode,
    NotImplementedFeatureError,
    UnauthorizedError,
    UnsupportedOperationError,
)
from ...models.character import CharacterReference
from ...models.style import MangaStyle
from ..api_client import APIClient
from ..image_cache import ImageCache
from . import prompts


@dataclass
class ImageMetadata:
    """生成图片的元数据"""
    model: str
    width: int
    height: int
    seed: Optional[int] = None  # 可复现种子（部分供应商不提供）
    steps: Optional[int] = None
    guidance_scale: Optional[float] = None


@dataclass
class GeneratedImage:
    """供应商生成结果"""
    image_data: bytes
    image_url: str  # 图片缓存键
    metadata: ImageMetadata
    generation_time: float  # 秒


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ConsistencyIssue:
    description: str
    severity: IssueSeverity
    suggestion: str


@dataclass
class ConsistencyReport:
    """角色一致性分析报告，分数范围 0.0-1.0"""
    overall_score: float
    character_recognition_confidence: float
    style_consistency: float
    issues: List[ConsistencyIssue] = field(default_factory=list)

    def __post_init__(self):
        for name in ("overall_score", "character_recognition_confidence", "style_consistency"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} 必须在 0.0-1.0 之间: {value}")


class BaseAIProvider(ABC):
    """
    AI 供应商抽象基类

    构造时只保存凭据与依赖，不发起任何网络请求，便于单元测试和运行时切换。
    """

    # 供应商标识符，注册时由工厂设置
    PROVIDER_TYPE: str = ""

    # 供应商显示名称
    DISPLAY_NAME: str = ""

    # 凭据标识，注册时由工厂设置
    CREDENTIAL_KEY: str = ""

    def __init__(
        self,
        api_key: str,
        api_client: Optional[APIClient] = None,
        image_cache: Optional[ImageCache] = None,
    ):
        if not api_key:
            raise UnauthorizedError(f"未配置 {self.DISPLAY_NAME or self.PROVIDER_TYPE} 的 API Key")
        self.api_key = api_key
        self._api_client = api_client
        self._image_cache = image_cache

    @property
    def api_client(self) -> APIClient:
        return self._api_client or APIClient.get_instance()

    @property
    def image_cache(self) -> ImageCache:
        return self._image_cache or ImageCache.get_instance()

    @abstractmethod
    async def refine_prompt(self, original: str, style: MangaStyle, context: str) -> str:
        """
        优化提示词

        Args:
            original: 原始提示词
            style: 漫画风格（题材、细节程度）
            context: 上下文（如拼接的角色动作）

        Returns:
            优化后的提示词文本
        """

    async def generate_image(
        self,
        prompt: str,
        style: MangaStyle,
        character_guides: Sequence[CharacterReference],
    ) -> "GeneratedImage":
        """
        生成画格图片

        成功时图片已写入图片缓存，GeneratedImage.image_url 为缓存键。
        """
        raise UnsupportedOperationError("图片生成", self.DISPLAY_NAME)

    async def analyze_character_consistency(self, reference: bytes, candidate: bytes) -> ConsistencyReport:
        """比较角色参考图与画格图片"""
        raise NotImplementedFeatureError("角色一致性分析")

    def supports_image_generation(self) -> bool:
        return type(self).generate_image is not BaseAIProvider.generate_image

    @staticmethod
    def build_character_context(character_guides: Sequence[CharacterReference]) -> str:
        return prompts.build_character_context(character_guides)

    def require_text(self, content: Optional[str]) -> str:
        """校验供应商返回的候选文本，为空时抛出 APIError"""
        if not content or not content.strip():
            raise APIError(APIErrorCode.UNKNOWN, f"{self.DISPLAY_NAME} 提示词优化未返回内容")
        return content.strip()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} provider={self.PROVIDER_TYPE}>"
