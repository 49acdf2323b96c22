"""
异常处理辅助工具

提供统一的异常日志记录函数，改善代码一致性。
"""

import logging
from typing import Optional

from ..exceptions import AppError

logger = logging.getLogger(__name__)


def log_exception(
    exc: Exception,
    context: str,
    logger_instance: Optional[logging.Logger] = None,
    level: str = "error",
    include_traceback: Optional[bool] = None,
    **extra_context
) -> None:
    """
    统一的异常日志记录函数

    Args:
        exc: 异常对象
        context: 上下文描述（如"生成画格"）
        logger_instance: 自定义logger，默认使用模块logger
        level: 日志级别（error/warning/info）
        include_traceback: 是否包含完整堆栈，None 时仅对非业务异常输出堆栈
        **extra_context: 额外上下文信息（如panel_id, provider等）

    Example:
        log_exception(
            exc,
            "生成画格",
            panel_id=panel_id,
            provider="openai",
        )
    """
    log = logger_instance or logger
    log_func = getattr(log, level, log.error)

    # 构建上下文字符串
    context_parts = [f"{k}={v}" for k, v in extra_context.items() if v is not None]
    context_str = f" ({', '.join(context_parts)})" if context_parts else ""

    # 构建错误消息
    exc_type = type(exc).__name__
    exc_msg = exc.detail if isinstance(exc, AppError) else str(exc)

    full_msg = f"{context}失败 [{exc_type}]: {exc_msg}{context_str}"

    if include_traceback is None:
        # 业务异常已足够说明问题，未知异常才需要堆栈
        include_traceback = not isinstance(exc, AppError)

    if include_traceback:
        log_func(full_msg, exc_info=exc)
    else:
        log_func(full_msg)
