"""
HTTP 网关

对供应商 API 的 JSON 请求/响应交换做一层薄封装：
- 全局共享 httpx.AsyncClient，支持连接池复用
- 单次请求超时 60 秒，完整传输超时 300 秒；离线时在超时内等待网络恢复
- 按状态码把失败归类到统一异常体系，不做状态码层面的重试（重试策略由调用方决定）
"""

import asyncio
import base64
import logging
from typing import Any, Dict, Optional, Type, TypeVar, Union

import httpx
from pydantic import BaseModel, ValidationError

from ..core.config import settings
from ..exceptions import (
    APIError,
    APIErrorCode,
    InvalidInputError,
    NetworkError,
    RateLimitedError,
    UnauthorizedError,
    UnsupportedFileFormatError,
)
from .response_cache import ResponseCache, build_cache_key

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_RETRY_AFTER = 60.0

JSONBody = Union[BaseModel, Dict[str, Any]]


def parse_retry_after(value: Optional[str]) -> float:
    """解析 Retry-After 头（秒数），缺失或无法解析时默认60秒"""
    if not value:
        return DEFAULT_RETRY_AFTER
    try:
        seconds = float(value.strip())
    except ValueError:
        return DEFAULT_RETRY_AFTER
    return seconds if seconds >= 0 else DEFAULT_RETRY_AFTER


def build_url(endpoint: str, base_url: str) -> str:
    """
    构建请求URL

    - endpoint 以 http:// 或 https:// 开头时视为完整URL
    - 否则拼接到 base_url 之后（自动处理斜杠）
    """
    if endpoint.lower().startswith(("http://", "https://")):
        try:
            httpx.URL(endpoint)
        except httpx.InvalidURL as exc:
            raise InvalidInputError(f"无效的URL: {endpoint}") from exc
        return endpoint

    base = (base_url or "").strip()
    if not base.lower().startswith(("http://", "https://")):
        raise InvalidInputError(f"无效的 base URL: {base_url}")
    return f"{base.rstrip('/')}/{endpoint.lstrip('/')}"


def validate_response(response: httpx.Response) -> None:
    """
    校验响应状态码

    Raises:
        UnauthorizedError: 401/403
        RateLimitedError: 429（携带 Retry-After）
        InvalidInputError: 400
        APIError: 其他非2xx状态码
    """
    status = response.status_code
    if 200 <= status < 300:
        return
    if status in (401, 403):
        raise UnauthorizedError("API Key 无效")
    if status == 429:
        raise RateLimitedError(retry_after=parse_retry_after(response.headers.get("Retry-After")))
    if status == 400:
        raise InvalidInputError("请求无效")
    raise APIError(APIErrorCode.SERVER, f"HTTP {status}")


def loggable_url(url: str) -> str:
    """去掉查询参数后用于日志（Gemini 的 API Key 位于查询参数中）"""
    return url.split("?", 1)[0]


def body_to_json(body: Optional[JSONBody]) -> Optional[Dict[str, Any]]:
    if isinstance(body, BaseModel):
        return body.model_dump(mode="json", by_alias=True, exclude_none=True)
    return body


class APIClient:
    """
    HTTP 网关客户端（单例模式）

    懒加载共享的 httpx.AsyncClient，使用双重检查锁定确保只创建一次。
    """

    _instance: Optional["APIClient"] = None

    def __init__(
        self,
        request_timeout: Optional[float] = None,
        resource_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        response_cache: Optional[ResponseCache] = None,
        connect_retry_interval: Optional[float] = None,
    ):
        """
        初始化网关

        Args:
            request_timeout: 单次请求超时（秒）
            resource_timeout: 完整传输超时（秒）
            transport: 自定义传输层（测试时注入 httpx.MockTransport）
            response_cache: 文本请求使用的响应缓存，None 时使用全局单例
            connect_retry_interval: 等待网络恢复时的重连间隔（秒）
        """
        self.request_timeout = request_timeout or settings.http_request_timeout
        self.resource_timeout = resource_timeout or settings.http_resource_timeout
        self.connect_retry_interval = connect_retry_interval or settings.http_connect_retry_interval
        self._transport = transport
        self._response_cache = response_cache
        self._client: Optional[httpx.AsyncClient] = None
        self._lock: Optional[asyncio.Lock] = None

    @classmethod
    def get_instance(cls) -> "APIClient":
        """获取全局网关单例"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """
        重置单例（仅用于测试）
        """
        cls._instance = None

    @property
    def response_cache(self) -> ResponseCache:
        return self._response_cache or ResponseCache.get_instance()

    def _get_lock(self) -> asyncio.Lock:
        """获取锁实例（必须在事件循环运行时调用）"""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def get_client(self) -> httpx.AsyncClient:
        """获取共享的HTTP客户端（懒加载）"""
        # 第一次检查（无锁，快速路径）
        if self._client is not None:
            return self._client

        async with self._get_lock():
            # 第二次检查（持锁，确保只创建一次）
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.request_timeout),
                    limits=httpx.Limits(
                        max_keepalive_connections=settings.http_max_keepalive,
                        max_connections=settings.http_max_connections,
                        keepalive_expiry=30.0,
                    ),
                    transport=self._transport,
                    follow_redirects=True,
                )
                logger.info(
                    "HTTP客户端已创建: request_timeout=%.0fs resource_timeout=%.0fs",
                    self.request_timeout, self.resource_timeout,
                )
        return self._client

    async def close(self) -> None:
        """关闭HTTP客户端（应用关闭时调用）"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("HTTP客户端已关闭")

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        发送请求

        连接失败时在完整传输超时内按间隔重连（等待网络恢复），超时后抛出 NetworkError。
        """
        client = await self.get_client()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.resource_timeout

        async def attempt() -> httpx.Response:
            while True:
                try:
                    return await client.request(method, url, headers=headers, json=json_body)
                except (httpx.ConnectError, httpx.ConnectTimeout) as exc:
                    if deadline - loop.time() <= self.connect_retry_interval:
                        raise
                    logger.warning("网络不可用，%.0f 秒后重试连接: %s (%s)", self.connect_retry_interval, loggable_url(url), exc)
                    await asyncio.sleep(self.connect_retry_interval)

        try:
            return await asyncio.wait_for(attempt(), timeout=self.resource_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("请求超过完整传输超时: %s %s", method, loggable_url(url))
            raise NetworkError("请求超时，请稍后重试", original_error=exc) from exc
        except httpx.TimeoutException as exc:
            logger.error("请求超时: %s %s", method, loggable_url(url))
            raise NetworkError("请求超时，请稍后重试", original_error=exc) from exc
        except httpx.TransportError as exc:
            logger.error("请求失败: %s %s (%s)", method, loggable_url(url), type(exc).__name__)
            raise NetworkError(str(exc) or type(exc).__name__, original_error=exc) from exc

    @staticmethod
    def _decode(response: httpx.Response, response_model: Optional[Type[ModelT]]) -> Any:
        try:
            data = response.json()
        except ValueError as exc:
            raise APIError(APIErrorCode.UNKNOWN, "响应不是有效的JSON") from exc

        if response_model is None:
            return data
        try:
            return response_model.model_validate(data)
        except ValidationError as exc:
            logger.error("响应格式不符合预期: model=%s errors=%s", response_model.__name__, exc.errors()[:3])
            raise APIError(APIErrorCode.UNKNOWN, f"响应格式不符合预期: {response_model.__name__}") from exc

    async def post(
        self,
        endpoint: str,
        body: Optional[JSONBody] = None,
        headers: Optional[Dict[str, str]] = None,
        base_url: Optional[str] = None,
        response_model: Optional[Type[ModelT]] = None,
    ) -> Any:
        """
        发送JSON POST请求

        Args:
            endpoint: 路径或完整URL
            body: 请求体（pydantic 模型或字典）
            headers: 额外请求头
            base_url: 基础URL，默认 OpenAI
            response_model: 响应模型，None 时返回解析后的JSON

        Returns:
            response_model 实例或JSON数据
        """
        url = build_url(endpoint, base_url or settings.openai_base_url)
        request_headers = {"Content-Type": "application/json", **(headers or {})}

        response = await self._send("POST", url, request_headers, body_to_json(body))
        logger.debug("POST %s -> %d", loggable_url(url), response.status_code)
        validate_response(response)
        return self._decode(response, response_model)

    async def get(
        self,
        endpoint: str,
        headers: Optional[Dict[str, str]] = None,
        base_url: Optional[str] = None,
        response_model: Optional[Type[ModelT]] = None,
    ) -> Any:
        """发送GET请求并解析JSON响应"""
        url = build_url(endpoint, base_url or settings.openai_base_url)
        response = await self._send("GET", url, headers)
        logger.debug("GET %s -> %d", loggable_url(url), response.status_code)
        validate_response(response)
        return self._decode(response, response_model)

    async def get_bytes(self, url: str, headers: Optional[Dict[str, str]] = None) -> bytes:
        """
        下载二进制内容（生成的图片）

        支持 data:...;base64, 形式的内联数据。
        """
        if url.startswith("data:"):
            header, _, encoded = url.partition(",")
            mime = header[len("data:"):].split(";", 1)[0]
            if mime and not mime.startswith("image/"):
                raise UnsupportedFileFormatError(mime)
            try:
                return base64.b64decode(encoded, validate=True)
            except ValueError as exc:
                raise InvalidInputError("无效的图片数据URL") from exc

        target = build_url(url, "")
        response = await self._send("GET", target, headers)
        if not 200 <= response.status_code < 300:
            logger.error("图片下载失败: url=%s status=%d", loggable_url(target), response.status_code)
            raise NetworkError(f"下载失败: HTTP {response.status_code}")
        return response.content

    async def cached_post(
        self,
        endpoint: str,
        body: JSONBody,
        response_model: Type[ModelT],
        headers: Optional[Dict[str, str]] = None,
        base_url: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> ModelT:
        """
        带缓存的POST请求（仅用于幂等的文本请求）

        缓存键 = base_url + endpoint + 请求体指纹；同一键的并发请求只会真正发送一次。
        """
        base = base_url or settings.openai_base_url
        key = build_cache_key(base, endpoint, body)
        return await self.response_cache.cached_call(
            key,
            lambda: self.post(endpoint, body, headers=headers, base_url=base, response_model=response_model),
            ttl=ttl,
            expected_type=response_model,
        )
