"""
数据模型模块

项目、画格、角色与风格的 pydantic 模型。
"""

from .character import Character, CharacterReference, CharacterTraits
from .manga import (
    UNKNOWN_CHARACTER_NAME,
    Collaborator,
    CollaboratorRole,
    DialogueBox,
    DialoguePosition,
    DialogueStyle,
    GenerationStatus,
    GenerationStatusType,
    Manga,
    MangaMetadata,
    Panel,
    PanelLayout,
    ProjectStatus,
)
from .style import (
    ArtStyleSettings,
    ColorPalette,
    DetailLevel,
    InkStyle,
    MangaGenre,
    MangaStyle,
    PanelSettings,
    TonalRange,
    TypographySettings,
)

__all__ = [
    "Character",
    "CharacterReference",
    "CharacterTraits",
    "UNKNOWN_CHARACTER_NAME",
    "Collaborator",
    "CollaboratorRole",
    "DialogueBox",
    "DialoguePosition",
    "DialogueStyle",
    "GenerationStatus",
    "GenerationStatusType",
    "Manga",
    "MangaMetadata",
    "Panel",
    "PanelLayout",
    "ProjectStatus",
    "ArtStyleSettings",
    "ColorPalette",
    "DetailLevel",
    "InkStyle",
    "MangaGenre",
    "MangaStyle",
    "PanelSettings",
    "TonalRange",
    "TypographySettings",
]
