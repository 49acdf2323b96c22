"""
本地文件项目存储

目录结构：
    <root>/<project_id>/metadata.json          项目数据（不含画格）
    <root>/<project_id>/panels/<index>/panel.json
    <root>/<project_id>/panels/<index>/image.png   可选，生成的图片

加载时画格图片导入图片缓存（键为画格ID），画格引用不指向会随重排移动的槽位。

JSON 使用排序键、2空格缩进、UTF-8 编码，并以临时文件 + 原子替换写入，
未修改的项目重复保存得到逐字节相同的文件。
"""

import errno
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..core.config import settings
from ..exceptions import (
    AppError,
    FileWriteFailedError,
    InsufficientDiskSpaceError,
    InvalidInputError,
    ProjectNotFoundError,
)
from ..models.manga import GenerationStatus, GenerationStatusType, Manga, Panel
from ..services.fs_utils import (
    async_exists,
    async_is_dir,
    async_iterdir,
    async_mkdir,
    async_read_bytes,
    async_read_text,
    async_rmtree,
    async_unlink,
    async_write_bytes_atomic,
    async_write_text_atomic,
)
from ..services.image_cache import ImageCache
from .base import MangaRepository, ProjectId

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
PANELS_DIR = "panels"
PANEL_FILE = "panel.json"
IMAGE_FILE = "image.png"


def dump_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False) + "\n"


class LocalMangaRepository(MangaRepository):
    """基于本地目录的项目存储"""

    def __init__(self, root: Optional[Path] = None, image_cache: Optional[ImageCache] = None):
        self.root = Path(root) if root else settings.projects_root
        self._image_cache = image_cache

    @property
    def image_cache(self) -> ImageCache:
        return self._image_cache or ImageCache.get_instance()

    @staticmethod
    def _normalize_id(project_id: ProjectId) -> str:
        try:
            return str(uuid.UUID(str(project_id)))
        except ValueError:
            raise ProjectNotFoundError(str(project_id))

    def project_dir(self, project_id: ProjectId) -> Path:
        return self.root / self._normalize_id(project_id)

    # ------------------------------------------------------------------
    # 保存
    # ------------------------------------------------------------------

    async def save(self, manga: Manga) -> None:
        project_dir = self.project_dir(manga.id)
        panels_dir = project_dir / PANELS_DIR
        try:
            await async_mkdir(panels_dir, parents=True, exist_ok=True)
            # 画格可能已重排或删除，写入任何槽位前先按画格ID读出已保存的图片
            previous = await self._read_saved_images(panels_dir)

            metadata = manga.model_dump(mode="json", exclude={"panels"})
            await async_write_text_atomic(project_dir / METADATA_FILE, dump_json(metadata))

            for index, panel in enumerate(manga.panels):
                await self._save_panel(panels_dir / str(index), panel, previous)

            await self._remove_stale_panels(panels_dir, len(manga.panels))
        except OSError as exc:
            logger.error("保存项目失败: id=%s error=%s", manga.id, exc)
            if exc.errno == errno.ENOSPC:
                raise InsufficientDiskSpaceError() from exc
            raise FileWriteFailedError(f"项目 {manga.title}") from exc

        logger.info("项目已保存: id=%s title=%s panels=%d", manga.id, manga.title, len(manga.panels))

    async def _read_saved_images(self, panels_dir: Path) -> Dict[uuid.UUID, bytes]:
        """读取已保存的画格图片，按画格ID索引"""
        images: Dict[uuid.UUID, bytes] = {}
        for entry in await async_iterdir(panels_dir):
            panel_path = entry / PANEL_FILE
            image_path = entry / IMAGE_FILE
            if not entry.name.isdigit() or not await async_exists(image_path):
                continue
            try:
                panel_id = uuid.UUID(json.loads(await async_read_text(panel_path))["id"])
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("无法识别已保存画格的ID，忽略其图片: %s (%s)", entry, exc)
                continue
            images[panel_id] = await async_read_bytes(image_path)
        return images

    async def _save_panel(self, panel_dir: Path, panel: Panel, previous: Dict[uuid.UUID, bytes]) -> None:
        await async_mkdir(panel_dir, exist_ok=True)
        await async_write_text_atomic(panel_dir / PANEL_FILE, dump_json(panel.model_dump(mode="json")))

        image_path = panel_dir / IMAGE_FILE
        data = None
        if panel.generated_image_url:
            data = await self.image_cache.resolve(panel.generated_image_url)
            if data is None:
                # 缓存已被清空时沿用该画格上次保存的图片
                data = previous.get(panel.id)
        if data is None:
            if panel.generated_image_url:
                logger.warning("画格图片不可用: panel=%s ref=%s", panel.id, panel.generated_image_url)
            await async_unlink(image_path, missing_ok=True)
            return

        if await async_exists(image_path) and await async_read_bytes(image_path) == data:
            return
        await async_write_bytes_atomic(image_path, data)

    async def _remove_stale_panels(self, panels_dir: Path, panel_count: int) -> None:
        for entry in await async_iterdir(panels_dir):
            if entry.name.isdigit() and int(entry.name) >= panel_count:
                await async_rmtree(entry)
                logger.debug("删除多余的画格目录: %s", entry)

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------

    async def load(self, project_id: ProjectId, import_images: bool = True) -> Manga:
        """
        读取项目

        Args:
            import_images: 是否把画格图片导入图片缓存（浏览项目列表时不需要）
        """
        project_dir = self.project_dir(project_id)
        metadata_path = project_dir / METADATA_FILE
        if not await async_exists(metadata_path):
            raise ProjectNotFoundError(str(project_id))

        try:
            metadata: Dict[str, Any] = json.loads(await async_read_text(metadata_path))
            panels = await self._load_panels(project_dir / PANELS_DIR, import_images)
            manga = Manga.model_validate({**metadata, "panels": []})
        except (ValueError, ValidationError) as exc:
            logger.error("项目数据损坏: id=%s error=%s", project_id, exc)
            raise InvalidInputError(f"项目数据损坏: {project_id}") from exc

        manga.panels = panels
        manga.resequence()
        return manga

    async def _load_panels(self, panels_dir: Path, import_images: bool) -> List[Panel]:
        if not await async_is_dir(panels_dir):
            return []

        indexed: List[tuple] = []
        for entry in await async_iterdir(panels_dir):
            if not entry.name.isdigit():
                logger.warning("跳过无法识别的画格目录: %s", entry)
                continue
            panel_path = entry / PANEL_FILE
            if not await async_exists(panel_path):
                logger.warning("画格目录缺少 %s: %s", PANEL_FILE, entry)
                continue
            panel = Panel.model_validate_json(await async_read_text(panel_path))

            image_path = entry / IMAGE_FILE
            if await async_exists(image_path):
                # 槽位会随重排移动，画格引用改为以画格ID命名的缓存键
                panel.generated_image_url = (
                    await self._import_image(panel, image_path) if import_images else panel.id.hex
                )
                panel.generation_status = GenerationStatus.cached()
            elif panel.generation_status.type in (
                GenerationStatusType.GENERATING,
                GenerationStatusType.COMPLETED,
                GenerationStatusType.CACHED,
            ):
                # 中断的生成或丢失的图片，需要重新生成
                panel.generated_image_url = None
                panel.generation_status = GenerationStatus.pending()
                panel.generation_progress = 0.0
            indexed.append((int(entry.name), panel))

        indexed.sort(key=lambda item: item[0])
        return [panel for _, panel in indexed]

    async def _import_image(self, panel: Panel, image_path: Path) -> str:
        key = panel.id.hex
        try:
            await self.image_cache.put(key, await async_read_bytes(image_path))
        except AppError as exc:
            # 缓存不可写时保存会沿用项目目录中的图片
            logger.warning("画格图片导入缓存失败: panel=%s error=%s", panel.id, exc)
        return key

    async def list_all(self) -> List[Manga]:
        if not await async_is_dir(self.root):
            return []

        projects: List[Manga] = []
        for entry in await async_iterdir(self.root):
            if not await async_is_dir(entry):
                continue
            try:
                projects.append(await self.load(entry.name, import_images=False))
            except (AppError, OSError) as exc:
                logger.warning("跳过无法读取的项目: %s (%s)", entry.name, exc)

        projects.sort(key=lambda manga: manga.modified_date, reverse=True)
        return projects

    async def delete(self, project_id: ProjectId) -> None:
        project_dir = self.project_dir(project_id)
        if not await async_is_dir(project_dir):
            raise ProjectNotFoundError(str(project_id))
        await async_rmtree(project_dir)
        logger.info("项目已删除: id=%s", project_id)
