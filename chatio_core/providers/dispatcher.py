"""Provider 分发器。

按 Provider 标识在注册表中选择适配器，并统一做前置检查（API Key 是否存在）。
新增厂商只需注册一个实现 ProviderAdapter 协议的对象，不需要改分发逻辑。

两个操作的失败通道刻意不同：
- test_connection: 总是返回 ConnectionTestResult（UI 直接展示）。
- send_message: 所有失败都抛 BusinessError 子类，由调用方自己兜底。
"""

from typing import Any, Dict, Iterable, Literal, Mapping, Sequence, Union

from chatio_core.domain.exceptions import BusinessError, MissingCredentialError, UnsupportedProviderError
from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestRequest,
    ConnectionTestResult,
    ProviderResponse,
    ProviderSettings,
    coerce_messages,
)
from chatio_core.infrastructure.logging.logger import logger
from chatio_core.providers.base import ProviderAdapter


Action = Literal["test", "send"]


class ProviderDispatcher:
    def __init__(self, adapters: Iterable[ProviderAdapter] = ()):
        self._adapters: Dict[str, ProviderAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[adapter.name.lower()] = adapter

    @property
    def provider_names(self) -> Sequence[str]:
        return tuple(self._adapters)

    def get_adapter(self, provider: str) -> ProviderAdapter:
        adapter = self._adapters.get((provider or "").lower())
        if adapter is None:
            raise UnsupportedProviderError(
                code="UNSUPPORTED_PROVIDER",
                message=f"Unsupported provider: {provider}",
                provider=provider,
            )
        return adapter

    @staticmethod
    def _check_credentials(adapter: ProviderAdapter, api_key: str) -> None:
        if adapter.requires_api_key and not (api_key or "").strip():
            raise MissingCredentialError(
                code="MISSING_CREDENTIAL",
                message=f"API key is required for {adapter.name}",
                provider=adapter.name,
            )

    async def test_connection(
        self,
        provider: str,
        request: Union[ConnectionTestRequest, Mapping[str, Any]],
    ) -> ConnectionTestResult:
        """测试连接；不认识的 Provider 或缺 Key 也只返回失败结果。"""

        try:
            if not isinstance(request, ConnectionTestRequest):
                request = ConnectionTestRequest.from_dict(request or {})
            adapter = self.get_adapter(provider)
            self._check_credentials(adapter, request.api_key)
        except BusinessError as e:
            logger.warning("dispatch.test.rejected", extra={"extra": {"provider": provider, "code": e.code}})
            return ConnectionTestResult.failed(e.message)
        logger.info("dispatch.test", extra={"extra": {"provider": adapter.name}})
        return await adapter.test_connection(request)

    async def send_message(
        self,
        messages: Sequence[Union[ChatMessage, Mapping[str, Any]]],
        settings: Union[ProviderSettings, Mapping[str, Any]],
    ) -> ProviderResponse:
        """发送消息；所有失败都抛出。"""

        if not isinstance(settings, ProviderSettings):
            settings = ProviderSettings.from_dict(settings)
        adapter = self.get_adapter(settings.provider)
        self._check_credentials(adapter, settings.api_key)
        logger.info("dispatch.send", extra={"extra": {"provider": adapter.name, "model": settings.model}})
        return await adapter.send_message(coerce_messages(messages), settings)

    async def dispatch(self, action: Action, provider: str, payload: Mapping[str, Any]):
        """统一入口：action=test 时 payload 为凭据，action=send 时为 {messages, settings}。"""

        payload = payload or {}
        if action == "test":
            return await self.test_connection(provider, payload)
        if action == "send":
            settings = dict(payload.get("settings") or {})
            settings.setdefault("provider", provider)
            return await self.send_message(payload.get("messages") or [], settings)
        raise ValueError(f"Unknown dispatch action: {action!r}")
