"""
撤销/重做记录

每次结构编辑都记录一条"逆操作"。逆操作是普通的数据记录（不持有编辑器引用），
由编辑器作用到项目上；作用时返回它自身的逆操作，供重做栈使用。
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ..models.manga import Manga, Panel

logger = logging.getLogger(__name__)

DEFAULT_UNDO_LIMIT = 100


@dataclass
class RemovePanelOp:
    """移除指定画格（添加画格的逆操作）"""
    panel_id: uuid.UUID

    def apply(self, manga: Manga) -> Optional["ReinsertPanelOp"]:
        index = manga.index_of_panel(self.panel_id)
        if index is None:
            logger.warning("撤销记录引用的画格不存在: %s", self.panel_id)
            return None
        panel = manga.panels.pop(index)
        manga.resequence()
        return ReinsertPanelOp(panel=copy.deepcopy(panel), index=index)


@dataclass
class ReinsertPanelOp:
    """在原位置重新插入画格（删除画格的逆操作）"""
    panel: Panel
    index: int

    def apply(self, manga: Manga) -> Optional[RemovePanelOp]:
        if manga.index_of_panel(self.panel.id) is not None:
            logger.warning("画格已存在，跳过重新插入: %s", self.panel.id)
            return None
        index = min(max(self.index, 0), len(manga.panels))
        manga.panels.insert(index, copy.deepcopy(self.panel))
        manga.resequence()
        return RemovePanelOp(panel_id=self.panel.id)


@dataclass
class MovePanelsOp:
    """按记录的ID顺序重排画格（重排的逆操作）"""
    panel_ids: List[uuid.UUID] = field(default_factory=list)

    def apply(self, manga: Manga) -> Optional["MovePanelsOp"]:
        by_id = {panel.id: panel for panel in manga.panels}
        if set(by_id) != set(self.panel_ids):
            logger.warning("画格集合已变化，无法恢复顺序")
            return None
        previous = MovePanelsOp(panel_ids=[panel.id for panel in manga.panels])
        manga.panels = [by_id[panel_id] for panel_id in self.panel_ids]
        manga.resequence()
        return previous


@dataclass
class ReplacePanelOp:
    """用记录的画格值替换同ID画格（编辑画格的逆操作）"""
    panel: Panel

    def apply(self, manga: Manga) -> Optional["ReplacePanelOp"]:
        index = manga.index_of_panel(self.panel.id)
        if index is None:
            logger.warning("撤销记录引用的画格不存在: %s", self.panel.id)
            return None
        current = manga.panels[index]
        replacement = copy.deepcopy(self.panel)
        # 生成状态不参与撤销
        replacement.generation_status = current.generation_status
        replacement.generation_progress = current.generation_progress
        replacement.estimated_time_remaining = current.estimated_time_remaining
        replacement.generated_image_url = current.generated_image_url
        manga.panels[index] = replacement
        manga.resequence()
        return ReplacePanelOp(panel=copy.deepcopy(current))


UndoOp = Union[RemovePanelOp, ReinsertPanelOp, MovePanelsOp, ReplacePanelOp]


class UndoStack:
    """
    撤销/重做栈

    只存在于当前编辑会话的内存中，不持久化。新的编辑会清空重做栈。
    """

    def __init__(self, limit: int = DEFAULT_UNDO_LIMIT):
        self.limit = limit
        self._undo: List[UndoOp] = []
        self._redo: List[UndoOp] = []

    def record(self, inverse: UndoOp) -> None:
        self._undo.append(inverse)
        if len(self._undo) > self.limit:
            del self._undo[0]
        self._redo.clear()

    def undo(self, manga: Manga) -> bool:
        return self._transfer(self._undo, self._redo, manga)

    def redo(self, manga: Manga) -> bool:
        return self._transfer(self._redo, self._undo, manga)

    @staticmethod
    def _transfer(source: List[UndoOp], target: List[UndoOp], manga: Manga) -> bool:
        while source:
            inverse = source.pop().apply(manga)
            if inverse is not None:
                target.append(inverse)
                return True
        return False

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def clear(self) -> None:
        self._undo.clear()
        self._redo.clear()
