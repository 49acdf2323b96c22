"""
漫画风格数据模型

定义画风、分镜、配色、字体等风格参数以及内置风格预设。
"""

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MangaGenre(str, Enum):
    """漫画题材"""
    SHOUNEN = "shounen"  # 少年向：动作/冒险
    SHOUJO = "shoujo"  # 少女向：恋爱
    SEINEN = "seinen"  # 青年向
    KODOMO = "kodomo"  # 儿童向
    JOSEI = "josei"  # 女性向


class DetailLevel(str, Enum):
    """细节程度"""
    MINIMAL = "minimal"
    STANDARD = "standard"
    DETAILED = "detailed"


class InkStyle(str, Enum):
    """墨线风格"""
    TRADITIONAL = "traditional"  # 传统钢笔墨线
    DIGITAL = "digital"  # 干净的数码线条
    SKETCHY = "sketchy"  # 草图感、表现力强


class TonalRange(str, Enum):
    """色调范围"""
    HIGH_CONTRAST = "highContrast"
    BALANCED = "balanced"
    LOW_KEY = "lowKey"


class ArtStyleSettings(BaseModel):
    """画风设置"""
    line_weight: float = Field(default=1.0, ge=0.5, le=3.0, description="线条粗细")
    detail_level: DetailLevel = Field(default=DetailLevel.STANDARD, description="细节程度")
    ink_style: InkStyle = Field(default=InkStyle.DIGITAL, description="墨线风格")
    screen_tone_intensity: float = Field(default=0.5, ge=0.0, le=1.0, description="网点强度")


class PanelSettings(BaseModel):
    """画格排版设置"""
    border_width: float = Field(default=2.0, description="边框宽度")
    gutter_width: float = Field(default=10.0, description="画格间距")
    background_color: str = Field(default="#FFFFFF", description="背景色")
    screentone_pattern: Optional[str] = Field(default=None, description="网点图案（crosshatch、dots等）")


class ColorPalette(BaseModel):
    """配色方案"""
    colors: List[str] = Field(default_factory=list, description="十六进制颜色列表")
    use_monochrome: bool = Field(default=True, description="是否黑白")
    tonal_range: TonalRange = Field(default=TonalRange.BALANCED)


class TypographySettings(BaseModel):
    """字体设置"""
    font_name: str = Field(default="Anime Ace")
    font_size: float = Field(default=12.0)
    character_spacing: float = Field(default=0.0)
    line_spacing: float = Field(default=0.0)


# 预设风格使用固定ID，保证跨进程保存结果稳定
_PRESET_NAMESPACE = uuid.UUID("6f1c1c53-3a4e-4b4f-9d7e-6a1e8a2f5b10")


class MangaStyle(BaseModel):
    """漫画风格"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    genre: MangaGenre = MangaGenre.SHOUNEN
    description: str = ""
    art_style: ArtStyleSettings = Field(default_factory=ArtStyleSettings)
    panel_settings: PanelSettings = Field(default_factory=PanelSettings)
    color_palette: ColorPalette = Field(default_factory=ColorPalette)
    typography: TypographySettings = Field(default_factory=TypographySettings)

    @classmethod
    def presets(cls) -> List["MangaStyle"]:
        """内置风格预设"""
        return [
            cls(
                id=uuid.uuid5(_PRESET_NAMESPACE, "Shounen"),
                name="Shounen",
                genre=MangaGenre.SHOUNEN,
                description="Action packed",
                art_style=ArtStyleSettings(
                    line_weight=1.0,
                    detail_level=DetailLevel.STANDARD,
                    ink_style=InkStyle.DIGITAL,
                    screen_tone_intensity=0.5,
                ),
                panel_settings=PanelSettings(border_width=2, gutter_width=10, background_color="#FFFFFF"),
                color_palette=ColorPalette(use_monochrome=True, tonal_range=TonalRange.HIGH_CONTRAST),
                typography=TypographySettings(font_name="Anime Ace", font_size=12),
            ),
            cls(
                id=uuid.uuid5(_PRESET_NAMESPACE, "Shoujo"),
                name="Shoujo",
                genre=MangaGenre.SHOUJO,
                description="Romance and drama",
                art_style=ArtStyleSettings(
                    line_weight=0.5,
                    detail_level=DetailLevel.DETAILED,
                    ink_style=InkStyle.TRADITIONAL,
                    screen_tone_intensity=0.3,
                ),
                panel_settings=PanelSettings(
                    border_width=1,
                    gutter_width=12,
                    background_color="#FFF0F5",
                    screentone_pattern="dots",
                ),
                color_palette=ColorPalette(use_monochrome=False, tonal_range=TonalRange.BALANCED),
                typography=TypographySettings(font_name="Cookie", font_size=14, character_spacing=1, line_spacing=2),
            ),
        ]

    @classmethod
    def default(cls) -> "MangaStyle":
        return cls.presets()[0]

    @classmethod
    def by_name(cls, name: str) -> Optional["MangaStyle"]:
        """按名称（不区分大小写）查找预设风格"""
        target = name.strip().lower()
        for style in cls.presets():
            if style.name.lower() == target:
                return style
        return None
