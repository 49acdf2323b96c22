"""
统一异常体系

网关、供应商、缓存与项目存储层抛出的所有业务异常都继承自 AppError，
编排层在画格边界将其捕获并记录到画格状态和错误通道。

异常层次：
- AppError (基类)
  - InvalidInputError          输入/请求无效（HTTP 400）
  - APIError                   供应商返回的通用错误，携带 APIErrorCode
  - FileNotFoundAppError       文件不存在
    - ProjectNotFoundError     项目不存在
  - FileWriteFailedError       文件写入失败
  - ImageProcessingError       图片处理失败
  - NetworkError               网络/连接错误
  - UnsupportedOperationError  当前供应商不支持该能力
  - UnsupportedFileFormatError 不支持的文件格式
  - InsufficientDiskSpaceError 磁盘空间不足
  - UnauthorizedError          认证失败（HTTP 401/403）
  - RateLimitedError           请求被限流（HTTP 429），携带 retry_after
  - NotImplementedFeatureError 功能尚未实现
  - InvalidStateTransitionError 画格状态机不允许的转换
  - UnknownError               未分类的异常
"""

from enum import Enum
from typing import Optional

import httpx


class APIErrorCode(str, Enum):
    """供应商错误码"""
    INVALID_REQUEST = "invalid_request_error"
    AUTHENTICATION = "authentication_error"
    RATE_LIMIT = "rate_limit_error"
    SERVER = "server_error"
    UNKNOWN = "unknown_error"


class AppError(Exception):
    """
    应用基础异常类

    Attributes:
        message: 错误消息（面向用户）
        detail: 详细错误信息（可选，用于日志）
    """

    default_suggestion = "请重试，如问题持续请联系支持。"

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail or message
        super().__init__(self.message)

    @property
    def description(self) -> str:
        """面向用户的错误描述"""
        return self.message

    @property
    def recovery_suggestion(self) -> Optional[str]:
        """恢复建议"""
        return self.default_suggestion

    def __str__(self) -> str:
        return self.description


class InvalidInputError(AppError):
    """输入无效"""

    default_suggestion = "请检查输入后重试。"

    def __init__(self, message: str):
        super().__init__(message=message, detail=f"输入无效: {message}")

    @property
    def description(self) -> str:
        return f"输入无效: {self.message}"


class APIError(AppError):
    """供应商 API 错误"""

    default_suggestion = "请检查 API Key 和网络连接。"

    def __init__(self, code: APIErrorCode, message: str):
        self.code = code
        super().__init__(message=message, detail=f"API错误({code.value}): {message}")

    @property
    def description(self) -> str:
        return f"API错误 ({self.code.value}): {self.message}"


class FileNotFoundAppError(AppError):
    """文件不存在"""

    default_suggestion = "文件可能已被移动或删除。"

    def __init__(self, path: str):
        self.path = path
        super().__init__(message=f"文件不存在: {path}")


class ProjectNotFoundError(FileNotFoundAppError):
    """项目不存在"""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(path=f"项目 {project_id}")


class FileWriteFailedError(AppError):
    """文件写入失败"""

    def __init__(self, message: str):
        super().__init__(message=f"无法保存文件: {message}")


class ImageProcessingError(AppError):
    """图片处理失败"""

    def __init__(self, message: str):
        super().__init__(message=f"图片处理失败: {message}")


class NetworkError(AppError):
    """网络错误"""

    default_suggestion = "请检查 API Key 和网络连接。"

    def __init__(self, message: str = "无法连接到服务器，请检查网络连接", original_error: Optional[Exception] = None):
        self.original_error = original_error
        super().__init__(message=f"网络错误: {message}")


class UnsupportedOperationError(AppError):
    """供应商不支持该能力"""

    default_suggestion = "请切换到支持该功能的供应商。"

    def __init__(self, operation: str, provider: Optional[str] = None):
        self.operation = operation
        self.provider = provider
        prefix = f"{provider} " if provider else ""
        super().__init__(message=f"{prefix}不支持的操作: {operation}")


class UnsupportedFileFormatError(AppError):
    """不支持的文件格式"""

    def __init__(self, file_format: str):
        super().__init__(message=f"不支持的格式: {file_format}")


class InsufficientDiskSpaceError(AppError):
    """磁盘空间不足"""

    default_suggestion = "请释放磁盘空间后重试。"

    def __init__(self):
        super().__init__(message="磁盘空间不足，无法保存项目")


class UnauthorizedError(AppError):
    """认证失败"""

    default_suggestion = "请检查 API Key 和网络连接。"

    def __init__(self, message: str = "API Key 无效"):
        super().__init__(message=f"认证失败: {message}")


class RateLimitedError(AppError):
    """请求被限流"""

    def __init__(self, retry_after: float = 60.0):
        self.retry_after = retry_after
        super().__init__(message=f"请求过于频繁，请在 {int(retry_after)} 秒后重试")

    @property
    def recovery_suggestion(self) -> Optional[str]:
        return f"请等待 {int(self.retry_after)} 秒后再重试。"


class NotImplementedFeatureError(AppError):
    """功能尚未实现"""

    default_suggestion = "该功能将在后续版本中提供。"

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(message=f"功能尚未实现: {feature}")


class InvalidStateTransitionError(AppError):
    """非法状态转换"""

    def __init__(self, current_status: str, target_status: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message=f"非法的状态转换: {current_status} → {target_status}")


class UnknownError(AppError):
    """未分类异常"""

    def __init__(self, original: Exception):
        self.original = original
        text = str(original) or type(original).__name__
        super().__init__(message=f"未知错误: {text}", detail=f"{type(original).__name__}: {text}")


def to_app_error(exc: BaseException) -> AppError:
    """
    将任意异常转换为 AppError

    已是 AppError 的原样返回；httpx 传输层异常转换为 NetworkError；
    其余异常包装为 UnknownError。
    """
    if isinstance(exc, AppError):
        return exc
    if isinstance(exc, httpx.TimeoutException):
        return NetworkError("请求超时，请稍后重试", original_error=exc)
    if isinstance(exc, httpx.TransportError):
        return NetworkError(str(exc) or type(exc).__name__, original_error=exc)
    return UnknownError(exc)
