from .base import MangaRepository
from .manga_repository import LocalMangaRepository

__all__ = ["MangaRepository", "LocalMangaRepository"]
