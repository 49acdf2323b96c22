from functools import lru_cache
from pathlib import Path
from typing import Optional
import sys

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用全局配置，所有可调参数集中于此，统一加载自环境变量。"""

    # -------------------- 基础应用配置 --------------------
    app_name: str = Field(default="AI Manga Creator", description="应用名称")
    environment: str = Field(default="development", description="当前环境标识")
    logging_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LOGGING_LEVEL", "logging_level"),
        description="应用日志级别",
    )
    log_file_max_bytes: int = Field(default=5 * 1024 * 1024, ge=0, description="单个日志文件上限（字节），0 表示不轮转")
    log_backup_count: int = Field(default=3, ge=0, description="保留的历史日志文件数")

    # -------------------- 存储路径配置 --------------------
    storage_root: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("AIMANGA_STORAGE_DIR", "storage_root"),
        description="存储根目录，未配置时使用 backend/storage",
    )
    cache_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("AIMANGA_CACHE_DIR", "cache_dir"),
        description="图片缓存目录，未配置时位于存储目录下",
    )
    projects_dir: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices("AIMANGA_PROJECTS_DIR", "projects_dir"),
        description="项目保存目录，未配置时位于存储目录下",
    )

    # -------------------- HTTP 网关配置 --------------------
    http_request_timeout: float = Field(
        default=60.0,
        gt=0,
        validation_alias=AliasChoices("HTTP_REQUEST_TIMEOUT", "http_request_timeout"),
        description="单次请求超时（秒）",
    )
    http_resource_timeout: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("HTTP_RESOURCE_TIMEOUT", "http_resource_timeout"),
        description="完整传输超时（秒），离线时最多等待这么久",
    )
    http_max_connections: int = Field(default=50, ge=1, description="连接池最大连接数")
    http_max_keepalive: int = Field(default=20, ge=0, description="连接池保持活跃的连接数")
    http_connect_retry_interval: float = Field(
        default=2.0,
        gt=0,
        description="等待网络恢复时的重连间隔（秒）",
    )

    # -------------------- 缓存配置 --------------------
    response_cache_ttl: float = Field(
        default=3600.0,
        ge=0,
        validation_alias=AliasChoices("RESPONSE_CACHE_TTL", "response_cache_ttl"),
        description="文本请求缓存有效期（秒）",
    )
    image_cache_min_free_bytes: int = Field(
        default=100_000_000,
        ge=0,
        validation_alias=AliasChoices("IMAGE_CACHE_MIN_FREE_BYTES", "image_cache_min_free_bytes"),
        description="缓存卷剩余空间下限，低于此值时清空整个图片缓存",
    )
    image_cache_size_limit_bytes: int = Field(
        default=1_000_000_000,
        ge=0,
        description="图片缓存容量上限（已声明，当前淘汰策略未使用）",
    )

    # -------------------- 编辑器配置 --------------------
    auto_save_enabled: bool = Field(default=True, description="是否开启自动保存")
    auto_save_interval: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("AUTO_SAVE_INTERVAL", "auto_save_interval"),
        description="自动保存间隔（秒）",
    )
    image_max_concurrent: int = Field(
        default=2,
        ge=1,
        le=10,
        validation_alias=AliasChoices("IMAGE_MAX_CONCURRENT", "image_max_concurrent"),
        description="图片生成最大并发数（避免 API 限流）",
    )

    # -------------------- 供应商配置 --------------------
    default_provider: str = Field(
        default="openai",
        validation_alias=AliasChoices("DEFAULT_PROVIDER", "default_provider"),
        description="默认 AI 供应商",
    )
    openai_base_url: str = Field(default="https://api.openai.com", description="OpenAI Base URL")
    openai_image_model: str = Field(default="dall-e-3", description="OpenAI 图片模型")
    openai_text_model: str = Field(default="gpt-4-turbo", description="OpenAI 提示词优化模型")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Gemini Base URL",
    )
    gemini_text_model: str = Field(default="gemini-pro", description="Gemini 提示词优化模型")
    openrouter_base_url: str = Field(default="https://openrouter.ai", description="OpenRouter Base URL")
    openrouter_text_model: str = Field(
        default="anthropic/claude-3-opus",
        description="OpenRouter 提示词优化模型",
    )
    openrouter_referer: str = Field(default="https://aimangacreator.app", description="OpenRouter 要求的来源头")
    refine_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="提示词优化的temperature值")
    refine_max_tokens: int = Field(default=200, ge=1, description="提示词优化的最大输出token数")

    model_config = SettingsConfigDict(
        env_file=(".env", "backend/.env"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("logging_level", mode="before")
    @classmethod
    def _normalize_logging_level(cls, value: Optional[str]) -> str:
        """规范日志级别配置。"""
        candidate = (value or "INFO").strip().upper()
        valid_levels = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"}
        if candidate not in valid_levels:
            raise ValueError("LOGGING_LEVEL 仅支持 CRITICAL/ERROR/WARNING/INFO/DEBUG/NOTSET")
        return candidate

    @field_validator("default_provider", mode="before")
    @classmethod
    def _normalize_default_provider(cls, value: Optional[str]) -> str:
        """统一供应商标识大小写。"""
        return (value or "openai").strip().lower()

    @property
    def storage_dir(self) -> Path:
        """存储目录根路径"""
        if self.storage_root:
            return Path(self.storage_root)
        if getattr(sys, 'frozen', False):
            # 打包环境：存储在 exe 所在目录
            return Path(sys.executable).parent / "storage"
        # 开发环境：存储在 backend/storage 目录
        return Path(__file__).resolve().parents[2] / "storage"

    @property
    def image_cache_dir(self) -> Path:
        """图片缓存目录"""
        if self.cache_dir:
            return Path(self.cache_dir)
        return self.storage_dir / "cache" / "AIMangaCreator"

    @property
    def projects_root(self) -> Path:
        """项目保存目录"""
        if self.projects_dir:
            return Path(self.projects_dir)
        return self.storage_dir / "projects"

    @property
    def log_file(self) -> Path:
        """日志文件路径"""
        return self.storage_dir / "debug.log"


@lru_cache
def get_settings() -> Settings:
    """使用 LRU 缓存确保配置只初始化一次，减少 IO 与解析开销。"""
    return Settings()


def reload_settings() -> Settings:
    """重新加载配置，清除缓存并返回新的配置实例。

    用于热更新场景，当.env文件被修改后调用此函数可立即生效。
    同时会更新当前模块中的全局settings变量。
    """
    get_settings.cache_clear()
    new_settings = get_settings()

    # 更新当前模块的全局settings变量
    current_module = sys.modules[__name__]
    setattr(current_module, 'settings', new_settings)

    return new_settings


settings = get_settings()
