"""DeepSeek Provider 适配器。

接口与 OpenAI 兼容，区别在于路径没有 /v1 前缀：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

DeepSeek 模型不支持图片，图片不会发送；连接测试用一次 max_tokens=10 的补全。
"""

from typing import Any, Dict, List, Sequence

from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestRequest,
    ConnectionTestResult,
    ProviderSettings,
)
from chatio_core.providers.openai_client import OpenAIClient


_DEFAULT_BASE_URL = "https://api.deepseek.com"
_DEFAULT_MODEL = "deepseek-chat"


class DeepSeekClient(OpenAIClient):
    name = "deepseek"
    display_name = "DeepSeek"

    def _base_url(self, base_url) -> str:
        return (base_url or _DEFAULT_BASE_URL).rstrip("/")

    def _completions_url(self, base_url) -> str:
        return f"{self._base_url(base_url)}/chat/completions"

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        body = {
            "model": request.model or _DEFAULT_MODEL,
            "messages": [{"role": "user", "content": "Hello"}],
            "max_tokens": 10,
        }
        resp = await self._request(
            "POST",
            self._completions_url(request.base_url),
            headers=self._auth_headers(request.api_key),
            payload=body,
        )
        self._ensure_ok(resp)
        data = self._json(resp)
        return ConnectionTestResult.ok(
            f"{self.display_name} connection successful!",
            model=data.get("model"),
            usage=data.get("usage"),
        )

    def _build_messages(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> List[Dict[str, Any]]:
        payload: List[Dict[str, Any]] = []
        if settings.system_prompt and settings.system_prompt.strip():
            payload.append({"role": "system", "content": settings.system_prompt.strip()})
        for m in self._filter_messages(messages):
            payload.append({"role": m.role, "content": m.prompt_text()})
        return payload

    def _build_payload(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> Dict[str, Any]:
        payload = super()._build_payload(messages, settings)
        payload["model"] = settings.model or _DEFAULT_MODEL
        return payload
