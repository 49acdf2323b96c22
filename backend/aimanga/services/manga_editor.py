"""
漫画编辑服务（生成编排）

负责一个打开项目的画格列表：
- 画格生成生命周期（状态机、批量生成、失败重试）
- 结构编辑（添加、删除、重排、修改）及撤销/重做
- 角色管理
- 保存与自动保存

生成失败只记录到画格的 failed 状态并通过错误通道通知一次，不会向调用方抛出，
批量生成因此可以越过单个失败继续执行。
"""

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Type

from ..core.config import settings
from ..core.credentials import CredentialLookup, default_credential_lookup
from ..core.state_machine import validate_transition
from ..exceptions import AppError, InvalidInputError, to_app_error
from ..models.character import Character, CharacterTraits
from ..models.manga import GenerationStatus, GenerationStatusType, Manga, Panel, PanelLayout, utc_now
from ..repositories.base import MangaRepository
from ..utils.exception_helpers import log_exception
from .image_cache import ImageCache
from .providers import AIProviderFactory, BaseAIProvider
from .providers.prompts import compose_panel_prompt
from .queue import ImageRequestQueue, RequestQueue
from .undo import MovePanelsOp, ReinsertPanelOp, RemovePanelOp, ReplacePanelOp, UndoStack

logger = logging.getLogger(__name__)

FALLBACK_FAILURE_REASON = "生成失败"


class EditorEventKind(str, Enum):
    PANELS_CHANGED = "panels_changed"  # 画格列表结构变化
    PANEL_UPDATED = "panel_updated"  # 单个画格内容或状态变化
    CHARACTERS_CHANGED = "characters_changed"
    GENERATION_FAILED = "generation_failed"
    SAVED = "saved"
    SAVE_FAILED = "save_failed"


@dataclass
class EditorEvent:
    kind: EditorEventKind
    panel_id: Optional[uuid.UUID] = None
    error: Optional[AppError] = None


EditorListener = Callable[[EditorEvent], None]
ErrorListener = Callable[[AppError], None]


class MangaEditorService:
    """
    漫画编辑服务

    单写者：只有本服务修改所持项目的画格列表；外部通过 snapshot() 读取最新状态副本，
    或通过 subscribe() 接收变更通知。
    """

    def __init__(
        self,
        manga: Manga,
        repository: MangaRepository,
        provider: Optional[BaseAIProvider] = None,
        provider_factory: Type[AIProviderFactory] = AIProviderFactory,
        credential_lookup: Optional[CredentialLookup] = None,
        image_cache: Optional[ImageCache] = None,
        image_queue: Optional[RequestQueue] = None,
    ):
        self.manga = manga
        self.repository = repository
        self.provider_factory = provider_factory
        self.credential_lookup = credential_lookup or default_credential_lookup()
        self._image_cache = image_cache
        self._image_queue = image_queue
        self._provider = provider
        self._selected_provider_type = (provider.PROVIDER_TYPE if provider else "") or settings.default_provider

        self._undo = UndoStack()
        self._in_flight: Set[uuid.UUID] = set()
        # 生成期间被删除的画格，完成后的结果留给撤销恢复的副本
        self._detached: Dict[uuid.UUID, Panel] = {}
        self._is_saving = False
        self._auto_save_task: Optional[asyncio.Task] = None
        self._listeners: List[EditorListener] = []
        self._error_listeners: List[ErrorListener] = []
        self.error: Optional[AppError] = None

        self.manga.resequence()

    # ------------------------------------------------------------------
    # 依赖
    # ------------------------------------------------------------------

    @property
    def image_cache(self) -> ImageCache:
        return self._image_cache or ImageCache.get_instance()

    @property
    def image_queue(self) -> RequestQueue:
        return self._image_queue or ImageRequestQueue.get_instance()

    @property
    def selected_provider_type(self) -> str:
        return self._selected_provider_type

    def _kwargs_for_provider(self) -> dict:
        return {"image_cache": self._image_cache} if self._image_cache else {}

    def _get_provider(self) -> BaseAIProvider:
        """获取当前供应商，首次使用时通过工厂创建"""
        if self._provider is None:
            self._provider = self.provider_factory.create(
                self._selected_provider_type,
                self.credential_lookup,
                **self._kwargs_for_provider(),
            )
        return self._provider

    def set_provider(self, provider_type: str) -> bool:
        """
        切换供应商

        创建失败时记录到 error，保留原供应商。
        """
        try:
            provider = self.provider_factory.create(
                provider_type, self.credential_lookup, **self._kwargs_for_provider()
            )
        except Exception as exc:
            app_error = to_app_error(exc)
            log_exception(app_error, "切换供应商", logger, level="warning", provider=provider_type)
            self._record_error(app_error)
            return False

        self._provider = provider
        self._selected_provider_type = provider.PROVIDER_TYPE
        logger.info("已切换供应商: %s", provider.PROVIDER_TYPE)
        return True

    # ------------------------------------------------------------------
    # 观察者
    # ------------------------------------------------------------------

    def subscribe(self, listener: EditorListener) -> Callable[[], None]:
        """订阅变更通知，返回取消订阅函数"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def subscribe_errors(self, listener: ErrorListener) -> Callable[[], None]:
        """订阅错误通道"""
        self._error_listeners.append(listener)
        return lambda: self._error_listeners.remove(listener) if listener in self._error_listeners else None

    def _notify(self, kind: EditorEventKind, panel_id: Optional[uuid.UUID] = None,
                error: Optional[AppError] = None) -> None:
        event = EditorEvent(kind=kind, panel_id=panel_id, error=error)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                log_exception(exc, "通知编辑器订阅者", logger, level="warning", event=kind.value)

    def _record_error(self, error: AppError) -> None:
        self.error = error
        for listener in list(self._error_listeners):
            try:
                listener(error)
            except Exception as exc:
                log_exception(exc, "通知错误订阅者", logger, level="warning")

    def clear_error(self) -> None:
        self.error = None

    def snapshot(self) -> Manga:
        """返回项目的深拷贝"""
        return self.manga.model_copy(deep=True)

    # ------------------------------------------------------------------
    # 生成
    # ------------------------------------------------------------------

    @staticmethod
    def _set_status(panel: Panel, status: GenerationStatus) -> None:
        validate_transition(panel.generation_status, status)
        panel.generation_status = status

    def is_generating(self, panel_id: uuid.UUID) -> bool:
        return panel_id in self._in_flight

    async def generate_panel(self, panel_id: uuid.UUID) -> None:
        """
        生成单个画格

        - 画格不存在时记录日志并返回
        - 同一画格已在生成中时直接返回，不会重复请求
        - 失败记录为 failed(原因) 并通知错误通道，不向调用方抛出
        """
        panel = self.manga.find_panel(panel_id)
        if panel is None:
            logger.warning("生成画格: 画格不存在 %s", panel_id)
            return
        if panel_id in self._in_flight:
            logger.info("画格正在生成中，忽略重复请求: %s", panel_id)
            return
        self._settle_panel(panel)
        self._detached.pop(panel_id, None)

        self._in_flight.add(panel_id)
        try:
            self._set_status(panel, GenerationStatus.generating())
            panel.update_progress(0.0)
            self._notify(EditorEventKind.PANEL_UPDATED, panel_id)

            try:
                provider = self._get_provider()
                prompt = compose_panel_prompt(panel, self.manga)
                logger.info("开始生成画格: panel=%s provider=%s", panel_id, provider.PROVIDER_TYPE)
                async with self.image_queue.request_slot():
                    result = await provider.generate_image(
                        prompt, self.manga.metadata.style, list(panel.character_guide)
                    )
            except asyncio.CancelledError:
                self._fail_panel(panel_id, panel, AppError("生成已取消"))
                raise
            except Exception as exc:
                app_error = to_app_error(exc)
                log_exception(exc, "生成画格", logger, panel_id=panel_id)
                self._fail_panel(panel_id, panel, app_error)
                return

            target = self._live_or_detached(panel_id, panel)
            target.generated_image_url = result.image_url
            self._set_status(target, GenerationStatus.completed())
            target.update_progress(1.0)
            target.estimated_time_remaining = None
            logger.info("画格生成完成: panel=%s time=%.1fs", panel_id, result.generation_time)
            self._notify(EditorEventKind.PANEL_UPDATED, panel_id)
        finally:
            self._in_flight.discard(panel_id)

    def _fail_panel(self, panel_id: uuid.UUID, panel: Panel, error: AppError) -> None:
        target = self._live_or_detached(panel_id, panel)
        reason = (error.description or "").strip() or FALLBACK_FAILURE_REASON
        if target.generation_status.is_generating:
            self._set_status(target, GenerationStatus.failed(reason))
        target.estimated_time_remaining = None
        self._record_error(error)
        self._notify(EditorEventKind.GENERATION_FAILED, panel_id, error)

    def _live_or_detached(self, panel_id: uuid.UUID, panel: Panel) -> Panel:
        target = self.manga.find_panel(panel_id)
        if target is None:
            self._detached[panel_id] = panel
            return panel
        return target

    def _settle_panel(self, panel: Panel) -> None:
        """
        收敛无人负责的 generating 状态

        撤销/恢复插回的画格副本可能停留在 generating，而对应的生成早已结束：
        有结束时的结果则沿用，否则回到 pending。
        """
        if panel.id in self._in_flight or not panel.generation_status.is_generating:
            return
        outcome = self._detached.pop(panel.id, None)
        if outcome is not None and not outcome.generation_status.is_generating:
            panel.generation_status = outcome.generation_status
            panel.generation_progress = outcome.generation_progress
            panel.generated_image_url = outcome.generated_image_url
        else:
            panel.generation_status = GenerationStatus.pending()
            panel.generation_progress = 0.0
        panel.estimated_time_remaining = None
        logger.info("画格生成状态已收敛: panel=%s status=%s", panel.id, panel.generation_status)

    def _settle_panels(self) -> None:
        for panel in self.manga.panels:
            self._settle_panel(panel)

    async def generate_batch(self, panel_ids: Iterable[uuid.UUID]) -> None:
        """按给定顺序逐个生成，单个失败不影响后续画格"""
        ids = list(panel_ids)
        logger.info("批量生成画格: count=%d", len(ids))
        for panel_id in ids:
            await self.generate_panel(panel_id)

    async def regenerate_panel(self, panel_id: uuid.UUID) -> None:
        await self.generate_panel(panel_id)

    async def retry_failed(self) -> None:
        """按画格顺序重新生成所有失败的画格"""
        failed_ids = [
            panel.id for panel in self.manga.panels
            if panel.generation_status.type == GenerationStatusType.FAILED
        ]
        await self.generate_batch(failed_ids)

    async def panel_image(self, panel_id: uuid.UUID) -> Optional[bytes]:
        """读取画格图片字节（缓存键或文件路径）"""
        panel = self.manga.find_panel(panel_id)
        if panel is None:
            return None
        return await self.image_cache.resolve(panel.generated_image_url)

    # ------------------------------------------------------------------
    # 结构编辑
    # ------------------------------------------------------------------

    def add_panel(
        self,
        after_id: Optional[uuid.UUID] = None,
        layout: PanelLayout = PanelLayout.QUARTER_PAGE,
        prompt: str = "",
    ) -> Panel:
        """
        添加画格

        after_id 为空或找不到时追加到末尾。
        """
        panel = Panel(panel_type=layout, prompt=prompt)
        anchor = self.manga.index_of_panel(after_id) if after_id is not None else None
        index = anchor + 1 if anchor is not None else len(self.manga.panels)

        self.manga.panels.insert(index, panel)
        self.manga.resequence()
        self._undo.record(RemovePanelOp(panel_id=panel.id))
        self._notify(EditorEventKind.PANELS_CHANGED, panel.id)
        return panel

    def remove_panel(self, panel_id: uuid.UUID) -> bool:
        index = self.manga.index_of_panel(panel_id)
        if index is None:
            logger.warning("删除画格: 画格不存在 %s", panel_id)
            return False

        panel = self.manga.panels.pop(index)
        self.manga.resequence()
        self._undo.record(ReinsertPanelOp(panel=copy.deepcopy(panel), index=index))
        self._notify(EditorEventKind.PANELS_CHANGED, panel_id)
        return True

    def restore_panel(self, panel: Panel, index: int) -> None:
        """在指定位置插入画格（超出范围时截断到两端）"""
        if self.manga.index_of_panel(panel.id) is not None:
            raise InvalidInputError(f"画格已存在: {panel.id}")
        index = min(max(index, 0), len(self.manga.panels))
        self.manga.panels.insert(index, panel)
        self.manga.resequence()
        self._settle_panel(panel)
        self._undo.record(RemovePanelOp(panel_id=panel.id))
        self._notify(EditorEventKind.PANELS_CHANGED, panel.id)

    def reorder_panels(self, from_indices: Sequence[int], to_index: int) -> None:
        """
        移动画格

        与列表 move 语义一致：from_indices 处的画格按原相对顺序移动到原列表 to_index 之前，
        to_index 取值 0..n。
        """
        count = len(self.manga.panels)
        sources = sorted(set(from_indices))
        if not sources:
            return
        if sources[0] < 0 or sources[-1] >= count or not 0 <= to_index <= count:
            raise InvalidInputError(f"无效的移动位置: {list(from_indices)} -> {to_index}")

        previous = [panel.id for panel in self.manga.panels]
        moving = [self.manga.panels[i] for i in sources]
        remaining = [panel for i, panel in enumerate(self.manga.panels) if i not in set(sources)]
        insert_at = to_index - sum(1 for i in sources if i < to_index)
        self.manga.panels = remaining[:insert_at] + moving + remaining[insert_at:]
        self.manga.resequence()

        if [panel.id for panel in self.manga.panels] == previous:
            return
        self._undo.record(MovePanelsOp(panel_ids=previous))
        self._notify(EditorEventKind.PANELS_CHANGED)

    def update_panel(self, edited: Panel) -> bool:
        """
        用编辑后的画格替换同ID画格

        生成状态与图片引用由编排层维护，沿用当前值。
        """
        index = self.manga.index_of_panel(edited.id)
        if index is None:
            logger.warning("更新画格: 画格不存在 %s", edited.id)
            return False

        current = self.manga.panels[index]
        replacement = edited.model_copy(deep=True)
        replacement.generation_status = current.generation_status
        replacement.generation_progress = current.generation_progress
        replacement.estimated_time_remaining = current.estimated_time_remaining
        replacement.generated_image_url = current.generated_image_url

        self.manga.panels[index] = replacement
        self.manga.resequence()
        self._undo.record(ReplacePanelOp(panel=copy.deepcopy(current)))
        self._notify(EditorEventKind.PANEL_UPDATED, edited.id)
        return True

    # ------------------------------------------------------------------
    # 撤销/重做
    # ------------------------------------------------------------------

    @property
    def can_undo(self) -> bool:
        return self._undo.can_undo

    @property
    def can_redo(self) -> bool:
        return self._undo.can_redo

    def undo(self) -> bool:
        applied = self._undo.undo(self.manga)
        if applied:
            self._settle_panels()
            self._notify(EditorEventKind.PANELS_CHANGED)
        return applied

    def redo(self) -> bool:
        applied = self._undo.redo(self.manga)
        if applied:
            self._settle_panels()
            self._notify(EditorEventKind.PANELS_CHANGED)
        return applied

    # ------------------------------------------------------------------
    # 角色
    # ------------------------------------------------------------------

    def add_character(
        self,
        name: str,
        description: str = "",
        traits: Optional[CharacterTraits] = None,
    ) -> Character:
        if not name or not name.strip():
            raise InvalidInputError("角色名称不能为空")
        character = Character(name=name.strip(), description=description, traits=traits or CharacterTraits())
        self.manga.characters.append(character)
        self._notify(EditorEventKind.CHARACTERS_CHANGED)
        return character

    def update_character(self, character: Character) -> bool:
        for index, existing in enumerate(self.manga.characters):
            if existing.id == character.id:
                self.manga.characters[index] = character.model_copy(deep=True)
                self._notify(EditorEventKind.CHARACTERS_CHANGED)
                return True
        logger.warning("更新角色: 角色不存在 %s", character.id)
        return False

    def remove_character(self, character_id: uuid.UUID) -> bool:
        """删除角色；画格中的引用保留，之后按未知角色处理"""
        before = len(self.manga.characters)
        self.manga.characters = [c for c in self.manga.characters if c.id != character_id]
        if len(self.manga.characters) == before:
            return False
        self._notify(EditorEventKind.CHARACTERS_CHANGED)
        return True

    def resolve_character(self, character_id: uuid.UUID) -> Optional[Character]:
        return self.manga.find_character(character_id)

    # ------------------------------------------------------------------
    # 保存
    # ------------------------------------------------------------------

    @property
    def is_saving(self) -> bool:
        return self._is_saving

    async def save(self) -> bool:
        """
        保存项目

        保存进行中时跳过；失败记录到 error，项目保持打开可编辑。

        Returns:
            是否保存成功
        """
        if self._is_saving:
            logger.info("项目正在保存，跳过本次保存: %s", self.manga.id)
            return False

        self._is_saving = True
        try:
            snapshot = self.snapshot()
            snapshot.modified_date = utc_now()
            await self.repository.save(snapshot)
        except Exception as exc:
            app_error = to_app_error(exc)
            log_exception(exc, "保存项目", logger, project_id=self.manga.id)
            self._record_error(app_error)
            self._notify(EditorEventKind.SAVE_FAILED, error=app_error)
            return False
        finally:
            self._is_saving = False

        self.manga.modified_date = snapshot.modified_date
        self._notify(EditorEventKind.SAVED)
        return True

    def start_auto_save(self, interval: Optional[float] = None) -> bool:
        """启动自动保存循环（需在事件循环中调用）"""
        if not settings.auto_save_enabled and interval is None:
            logger.info("自动保存已禁用")
            return False
        if self._auto_save_task is not None and not self._auto_save_task.done():
            return True

        seconds = interval if interval is not None else settings.auto_save_interval
        self._auto_save_task = asyncio.create_task(self._auto_save_loop(seconds))
        logger.info("自动保存已启动: interval=%.0fs", seconds)
        return True

    async def _auto_save_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.save()

    async def stop_auto_save(self) -> None:
        task, self._auto_save_task = self._auto_save_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("自动保存已停止")

    async def close(self) -> None:
        """关闭项目：停止自动保存"""
        await self.stop_auto_save()
        self._undo.clear()
