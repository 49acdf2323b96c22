import uuid
from abc import ABC, abstractmethod
from typing import List, Union

from ..models.manga import Manga

ProjectId = Union[uuid.UUID, str]


class MangaRepository(ABC):
    """
    项目存储接口

    编排层只依赖这四个操作，不关心底层是文件、数据库还是远端存储。
    - save 幂等：未修改的项目重复保存效果不变
    - load 不存在的ID抛出 ProjectNotFoundError
    - list_all 按修改时间倒序返回
    - delete 删除该项目的全部持久化数据
    """

    @abstractmethod
    async def save(self, manga: Manga) -> None:
        ...

    @abstractmethod
    async def load(self, project_id: ProjectId) -> Manga:
        ...

    @abstractmethod
    async def list_all(self) -> List[Manga]:
        ...

    @abstractmethod
    async def delete(self, project_id: ProjectId) -> None:
        ...
