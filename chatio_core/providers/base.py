"""Provider 抽象接口与公共 HTTP 逻辑。

上层不直接依赖具体厂商的 HTTP 细节，而是依赖 ProviderAdapter 协议：

- 每个厂商实现一个适配器（如 OpenAIClient）。
- test_connection: 低成本调用验证地址与凭据，从不抛异常。
- send_message: 将统一的 ChatMessage 列表转成厂商请求，发一次请求，
  把响应 JSON 解析为统一的 ProviderResponse；所有失败都抛出。

HttpProviderClient 收拢了各厂商共用的部分：请求头、单次 HTTP 调用、
非 2xx 错误解析、消息过滤与数值参数校验。
"""

import json
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx

from chatio_core.domain.exceptions import (
    BusinessError,
    NetworkError,
    NoValidMessagesError,
    VendorEmptyResponseError,
    VendorHttpError,
)
from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestRequest,
    ConnectionTestResult,
    ProviderResponse,
    ProviderSettings,
)
from chatio_core.infrastructure.logging.logger import logger


USER_AGENT = "Chatio-Plugin/1.0"


class ProviderAdapter(Protocol):
    """LLM Provider 适配器协议。

    - name: Provider 标识，用于分发与日志。
    - requires_api_key: 是否必须提供 API Key（本地 Provider 为 False）。
    """

    name: str
    requires_api_key: bool

    async def test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        ...

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        ...


def split_data_uri(uri: str) -> Optional[Tuple[str, str]]:
    """拆分 data:<mime>;base64,<data>，不是 data URI 时返回 None。"""

    if not uri.startswith("data:") or "," not in uri:
        return None
    header, data = uri.split(",", 1)
    mime_type = header[len("data:"):].replace(";base64", "")
    if not mime_type or not data:
        return None
    return mime_type, data


def in_range(value: Optional[float], low: float, high: float) -> bool:
    return value is not None and not isinstance(value, bool) and low <= value <= high


def positive(value: Optional[int]) -> bool:
    return value is not None and not isinstance(value, bool) and value > 0


class HttpProviderClient:
    """基于 httpx.AsyncClient 的适配器基类。

    子类需要定义 name / display_name，并实现 test_connection 与 send_message。
    """

    name = "base"
    display_name = "Provider"
    requires_api_key = True
    # 发给厂商的角色；system 消息是否保留在消息列表里由子类决定
    message_roles: Tuple[str, ...] = ("user", "assistant")

    def __init__(self, settings):
        # settings 只用到 http_timeout
        self._settings = settings

    # ---- 消息与参数 ----

    def _filter_messages(self, messages: Sequence[ChatMessage]) -> List[ChatMessage]:
        """保留允许的角色且 prompt_text 非空的消息，空结果直接抛 NoValidMessagesError。"""

        kept = [m for m in messages if m.role in self.message_roles and m.prompt_text().strip()]
        if not kept:
            raise NoValidMessagesError(
                code="NO_VALID_MESSAGES",
                message=f"No valid messages to send to {self.display_name}",
                provider=self.name,
            )
        return kept

    @staticmethod
    def _system_text(settings: ProviderSettings, messages: Sequence[ChatMessage] = ()) -> str:
        """配置的 system prompt 加上消息列表里 system 角色的文本。"""

        parts = []
        if settings.system_prompt and settings.system_prompt.strip():
            parts.append(settings.system_prompt.strip())
        parts.extend(m.prompt_text() for m in messages if m.role == "system" and m.prompt_text())
        return "\n\n".join(parts)

    # ---- HTTP ----

    def _headers(self, extra: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str],
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """发出唯一的一次 HTTP 请求，不做重试。"""

        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                if method == "GET":
                    return await client.get(url, headers=headers, params=params)
                return await client.post(url, headers=headers, params=params, json=payload)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__, provider=self.name)

    def _error_message(self, data: Any) -> Optional[str]:
        """从错误响应 JSON 中取厂商的错误信息，默认读 error.message。"""

        if isinstance(data, dict):
            err = data.get("error")
            if isinstance(err, dict) and err.get("message"):
                return str(err["message"])
            if isinstance(err, str) and err:
                return err
        return None

    def _http_error(self, resp: httpx.Response) -> VendorHttpError:
        text = resp.text or ""
        try:
            data = json.loads(text)
        except ValueError:
            data = {"error": {"message": text}}
        message = self._error_message(data) or f"HTTP {resp.status_code}: {resp.reason_phrase}"
        message = self._friendly_http_message(resp.status_code, message)
        logger.error(
            "provider.http_error",
            extra={"extra": {"provider": self.name, "status": resp.status_code, "error": message}},
        )
        return VendorHttpError(
            code="VENDOR_HTTP_ERROR",
            message=message,
            http_status=resp.status_code,
            provider=self.name,
        )

    def _friendly_http_message(self, status: int, message: str) -> str:
        return message

    def _ensure_ok(self, resp: httpx.Response) -> None:
        if not 200 <= resp.status_code < 300:
            raise self._http_error(resp)

    def _json(self, resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise VendorEmptyResponseError(
                code="VENDOR_EMPTY_RESPONSE",
                message=f"{self.display_name} returned a malformed response",
                provider=self.name,
                reason="malformed",
            )
        return data

    def _empty(self, message: str, reason: str = "empty") -> VendorEmptyResponseError:
        logger.error("provider.empty_response", extra={"extra": {"provider": self.name, "reason": reason}})
        return VendorEmptyResponseError(
            code="VENDOR_EMPTY_RESPONSE",
            message=message,
            provider=self.name,
            reason=reason,
        )

    # ---- 连接测试 ----

    async def test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        """执行连接测试；任何异常都转换成 success=False 的结果。"""

        try:
            return await self._test_connection(request)
        except BusinessError as e:
            logger.error(
                "provider.test_connection.failed",
                extra={"extra": {"provider": self.name, "code": e.code, "error": e.message}},
            )
            return ConnectionTestResult.failed(self._connection_error_message(e))
        except Exception as e:  # noqa: BLE001 - 连接测试对调用方从不抛异常
            logger.error(
                "provider.test_connection.failed",
                extra={"extra": {"provider": self.name, "error": str(e)}},
            )
            return ConnectionTestResult.failed(str(e) or "Connection failed")

    def _connection_error_message(self, error: BusinessError) -> str:
        return error.message or "Connection failed"

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        raise NotImplementedError

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        raise NotImplementedError
