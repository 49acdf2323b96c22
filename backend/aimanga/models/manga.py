"""
漫画项目数据模型

Manga（项目）独占其 Panel 列表；画格只持有图片缓存键/路径，不持有图片字节。
"""

import getpass
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .character import Character, CharacterReference
from .style import MangaGenre, MangaStyle

UNKNOWN_CHARACTER_NAME = "未知角色"
PANELS_PER_PAGE = 4


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationStatusType(str, Enum):
    """画格生成状态类型"""
    PENDING = "pending"  # 尚未尝试生成
    GENERATING = "generating"  # 生成中
    COMPLETED = "completed"  # 已生成
    FAILED = "failed"  # 生成失败（携带原因）
    CACHED = "cached"  # 已有图片，无需再次调用后端


class GenerationStatus(BaseModel):
    """
    画格生成状态

    序列化为 {"type": ..., "payload": ...}，只有 failed 携带 payload（失败原因）。
    实例不可变，状态切换时整体替换。
    """

    model_config = ConfigDict(frozen=True)

    type: GenerationStatusType
    payload: Optional[str] = None

    @model_validator(mode="after")
    def _check_payload(self) -> "GenerationStatus":
        if self.type == GenerationStatusType.FAILED:
            if not self.payload or not self.payload.strip():
                raise ValueError("failed 状态必须携带非空的失败原因")
        elif self.payload is not None:
            raise ValueError(f"{self.type.value} 状态不能携带 payload")
        return self

    @classmethod
    def pending(cls) -> "GenerationStatus":
        return cls(type=GenerationStatusType.PENDING)

    @classmethod
    def generating(cls) -> "GenerationStatus":
        return cls(type=GenerationStatusType.GENERATING)

    @classmethod
    def completed(cls) -> "GenerationStatus":
        return cls(type=GenerationStatusType.COMPLETED)

    @classmethod
    def failed(cls, reason: str) -> "GenerationStatus":
        return cls(type=GenerationStatusType.FAILED, payload=reason)

    @classmethod
    def cached(cls) -> "GenerationStatus":
        return cls(type=GenerationStatusType.CACHED)

    @property
    def reason(self) -> Optional[str]:
        """失败原因（仅 failed 状态有值）"""
        return self.payload if self.type == GenerationStatusType.FAILED else None

    @property
    def is_generating(self) -> bool:
        return self.type == GenerationStatusType.GENERATING

    @property
    def has_image(self) -> bool:
        return self.type in (GenerationStatusType.COMPLETED, GenerationStatusType.CACHED)

    def __str__(self) -> str:
        if self.type == GenerationStatusType.FAILED:
            return f"failed({self.payload})"
        return self.type.value


class PanelLayout(str, Enum):
    """画格版式"""
    FULL_PAGE = "fullPage"
    HALF_PAGE = "halfPage"
    THIRD_PAGE = "thirdPage"
    QUARTER_PAGE = "quarterPage"
    WIDE_STRIP = "wideStrip"


class DialoguePosition(str, Enum):
    """对话框位置（九宫格）"""
    TOP_LEFT = "topLeft"
    TOP_CENTER = "topCenter"
    TOP_RIGHT = "topRight"
    MIDDLE_LEFT = "middleLeft"
    MIDDLE_CENTER = "middleCenter"
    MIDDLE_RIGHT = "middleRight"
    BOTTOM_LEFT = "bottomLeft"
    BOTTOM_CENTER = "bottomCenter"
    BOTTOM_RIGHT = "bottomRight"


class DialogueStyle(str, Enum):
    """对话框样式"""
    SPEECH_BUBBLE = "speechBubble"
    THINK_BUBBLE = "thinkBubble"
    NARRATOR_BOX = "narratorBox"


class DialogueBox(BaseModel):
    """对话框"""
    character: str = ""
    text: str = ""
    position: DialoguePosition = DialoguePosition.TOP_RIGHT
    style: DialogueStyle = DialogueStyle.SPEECH_BUBBLE


class Panel(BaseModel):
    """画格"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    order: int = Field(default=0, ge=0)
    panel_type: PanelLayout = PanelLayout.QUARTER_PAGE

    prompt: str = ""
    generated_image_url: Optional[str] = Field(default=None, description="图片缓存键或文件路径（弱引用）")
    character_guide: List[CharacterReference] = Field(default_factory=list)
    dialogue_box: Optional[DialogueBox] = None
    sound_effect: Optional[str] = None

    generation_status: GenerationStatus = Field(default_factory=GenerationStatus.pending)
    generation_progress: float = Field(default=0.0, ge=0.0, le=1.0)
    estimated_time_remaining: Optional[float] = None

    def update_progress(self, progress: float) -> None:
        """更新进度，限制在 0.0-1.0"""
        self.generation_progress = min(max(progress, 0.0), 1.0)


class ProjectStatus(str, Enum):
    """项目状态"""
    DRAFT = "draft"
    IN_PROGRESS = "inProgress"
    IN_REVIEW = "inReview"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class CollaboratorRole(str, Enum):
    CREATOR = "creator"
    EDITOR = "editor"
    CONTRIBUTOR = "contributor"
    VIEWER = "viewer"


class Collaborator(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    name: str
    email: str = ""
    role: CollaboratorRole = CollaboratorRole.CONTRIBUTOR
    added_date: datetime = Field(default_factory=utc_now)


class MangaMetadata(BaseModel):
    """项目元数据"""
    tags: List[str] = Field(default_factory=list)
    genre: MangaGenre = MangaGenre.SHOUNEN
    target_audience: str = ""
    status: ProjectStatus = ProjectStatus.DRAFT
    notes: str = ""
    collaborators: List[Collaborator] = Field(default_factory=list)
    style: MangaStyle = Field(default_factory=MangaStyle.default)


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "User"


class Manga(BaseModel):
    """漫画项目"""
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    title: str
    description: str = ""
    creator: str = Field(default_factory=_current_user)
    created_date: datetime = Field(default_factory=utc_now)
    modified_date: datetime = Field(default_factory=utc_now)

    panels: List[Panel] = Field(default_factory=list)
    characters: List[Character] = Field(default_factory=list)
    metadata: MangaMetadata = Field(default_factory=MangaMetadata)

    @classmethod
    def new(cls, title: str, style: Optional[MangaStyle] = None, creator: Optional[str] = None) -> "Manga":
        """创建空白项目，题材跟随风格"""
        style = style or MangaStyle.default()
        kwargs = {"creator": creator} if creator else {}
        return cls(
            title=title,
            metadata=MangaMetadata(genre=style.genre, style=style),
            **kwargs,
        )

    @property
    def panel_count(self) -> int:
        return len(self.panels)

    @property
    def total_pages(self) -> int:
        """按每页4格计算总页数"""
        return (self.panel_count + PANELS_PER_PAGE - 1) // PANELS_PER_PAGE

    def index_of_panel(self, panel_id: uuid.UUID) -> Optional[int]:
        for index, panel in enumerate(self.panels):
            if panel.id == panel_id:
                return index
        return None

    def find_panel(self, panel_id: uuid.UUID) -> Optional[Panel]:
        index = self.index_of_panel(panel_id)
        return self.panels[index] if index is not None else None

    def find_character(self, character_id: uuid.UUID) -> Optional[Character]:
        """查找角色，悬空引用返回 None"""
        for character in self.characters:
            if character.id == character_id:
                return character
        return None

    def character_name(self, character_id: uuid.UUID) -> str:
        character = self.find_character(character_id)
        return character.name if character else UNKNOWN_CHARACTER_NAME

    def resequence(self) -> None:
        """重新编号，保证 order 为从0开始的连续整数"""
        for index, panel in enumerate(self.panels):
            panel.order = index

    def touch(self) -> None:
        self.modified_date = utc_now()
