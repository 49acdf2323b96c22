"""
项目管理服务

列出、创建、打开和删除项目；失败记录到 error 而不是抛出。
"""

import logging
import uuid
from typing import List, Optional, Union

from ..exceptions import AppError, to_app_error
from ..models.manga import Manga
from ..models.style import MangaStyle
from ..repositories.base import MangaRepository
from ..utils.exception_helpers import log_exception

logger = logging.getLogger(__name__)


class ProjectManagerService:
    """项目浏览"""

    def __init__(self, repository: MangaRepository):
        self.repository = repository
        self.projects: List[Manga] = []
        self.is_loading = False
        self.error: Optional[AppError] = None

    async def load_projects(self) -> List[Manga]:
        self.is_loading = True
        try:
            self.projects = await self.repository.list_all()
            self.error = None
        except Exception as exc:
            log_exception(exc, "加载项目列表", logger)
            self.error = to_app_error(exc)
        finally:
            self.is_loading = False
        return self.projects

    async def create_project(self, title: str, style: Optional[MangaStyle] = None) -> Optional[Manga]:
        manga = Manga.new(title=title, style=style)
        try:
            await self.repository.save(manga)
        except Exception as exc:
            log_exception(exc, "创建项目", logger, title=title)
            self.error = to_app_error(exc)
            return None
        self.projects.insert(0, manga)
        logger.info("项目已创建: id=%s title=%s", manga.id, title)
        return manga

    async def open_project(self, project_id: Union[uuid.UUID, str]) -> Optional[Manga]:
        try:
            return await self.repository.load(project_id)
        except Exception as exc:
            log_exception(exc, "打开项目", logger, project_id=project_id)
            self.error = to_app_error(exc)
            return None

    async def delete_project(self, project_id: Union[uuid.UUID, str]) -> bool:
        try:
            await self.repository.delete(project_id)
        except Exception as exc:
            log_exception(exc, "删除项目", logger, project_id=project_id)
            self.error = to_app_error(exc)
            return False
        self.projects = [p for p in self.projects if str(p.id) != str(project_id)]
        return True
