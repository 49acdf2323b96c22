"""
日志配置模块

- 控制台日志写到 stderr，stdout 留给命令行输出的结果
- 文件日志按大小轮转，记录到 DEBUG 级别，附带调用位置便于排查生成失败
- httpx/httpcore/PIL 的逐请求、逐图片调试日志只保留 WARNING 以上

须在 CLI 解析参数之后、执行命令之前调用 setup_logging()。
"""

import sys
import logging
from logging.config import dictConfig
from typing import Optional

from .config import settings

# 第三方库的调试日志会淹没生成流程日志
QUIET_LOGGERS = ("httpx", "httpcore", "PIL")


def get_logging_config(console_level: Optional[str] = None) -> dict:
    """
    获取日志配置字典

    Args:
        console_level: 控制台日志级别，默认与 settings.logging_level 一致

    Returns:
        日志配置字典，可直接传递给 dictConfig
    """
    handlers = ["console", "file"]
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "format": "%(levelname)-7s %(name)s: %(message)s",
            },
            "detailed": {
                "format": "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d %(funcName)s - %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "console",
                "stream": "ext://sys.stderr",
                "level": console_level or settings.logging_level,
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "filename": str(settings.log_file),
                "maxBytes": settings.log_file_max_bytes,
                "backupCount": settings.log_backup_count,
                "formatter": "detailed",
                "encoding": "utf-8",
                "delay": True,
                "level": "DEBUG",
            },
        },
        "loggers": {
            "aimanga": {
                "level": "DEBUG",
                "handlers": handlers,
                "propagate": False,
            },
            **{
                name: {"level": "WARNING", "handlers": handlers, "propagate": False}
                for name in QUIET_LOGGERS
            },
        },
        "root": {
            "level": "WARNING",
            "handlers": handlers,
        },
    }


def setup_logging(verbose: bool = False) -> None:
    """
    配置日志系统

    Args:
        verbose: 控制台输出 DEBUG 日志（命令行 --verbose）
    """
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)
    dictConfig(get_logging_config("DEBUG" if verbose else None))


def setup_exception_hook() -> None:
    """
    设置全局异常钩子，未处理的异常写入日志文件后交还原始钩子

    Ctrl+C 不视为崩溃，直接交还原始钩子。
    """
    original_hook = sys.excepthook

    def exception_hook(exc_type, exc_value, exc_traceback):
        if not issubclass(exc_type, KeyboardInterrupt):
            logger = logging.getLogger("aimanga")
            logger.critical("未捕获的异常导致程序退出", exc_info=(exc_type, exc_value, exc_traceback))
            for handler in logger.handlers:
                handler.flush()
        original_hook(exc_type, exc_value, exc_traceback)

    sys.excepthook = exception_hook


def log_startup_info() -> None:
    """记录运行环境，只写 DEBUG 级别，不干扰命令行输出"""
    logger = logging.getLogger(__name__)
    logger.debug("%s 生成核心启动 (environment=%s)", settings.app_name, settings.environment)
    logger.debug("默认供应商: %s", settings.default_provider)
    logger.debug("日志文件: %s", settings.log_file)
    logger.debug("图片缓存目录: %s", settings.image_cache_dir)
    logger.debug("项目目录: %s", settings.projects_root)
