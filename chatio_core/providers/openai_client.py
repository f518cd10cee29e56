"""OpenAI Provider 适配器。

- 发送: POST {base_url}/v1/chat/completions
- 测试: GET {base_url}/v1/models
- 认证: Authorization: Bearer <api_key>

system prompt 作为 system 角色消息放在列表最前面；
user 消息的图片转成 image_url 内容块（detail=high）。
"""

from typing import Any, Dict, List, Sequence

from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestRequest,
    ConnectionTestResult,
    ProviderResponse,
    ProviderSettings,
    TokenUsage,
)
from chatio_core.infrastructure.logging.logger import logger
from chatio_core.providers.base import HttpProviderClient, in_range, positive


_DEFAULT_BASE_URL = "https://api.openai.com"
_DEFAULT_MODEL = "gpt-4o"
_IMAGE_DETAIL = "high"


class OpenAIClient(HttpProviderClient):
    """OpenAI Chat Completions 客户端实现。"""

    name = "openai"
    display_name = "OpenAI"
    message_roles = ("user", "assistant", "system")

    def _base_url(self, base_url) -> str:
        return (base_url or _DEFAULT_BASE_URL).rstrip("/")

    def _auth_headers(self, api_key: str) -> Dict[str, str]:
        return self._headers({"Authorization": f"Bearer {api_key}"})

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        url = f"{self._base_url(request.base_url)}/v1/models"
        headers = self._auth_headers(request.api_key)
        headers.pop("Content-Type")
        resp = await self._request("GET", url, headers=headers)
        self._ensure_ok(resp)
        data = self._json(resp)
        models = [m.get("id") for m in data.get("data") or [] if isinstance(m, dict)]
        return ConnectionTestResult.ok(
            f"{self.display_name} connection successful!",
            availableModels=models[:10],
            totalModels=len(models),
        )

    def _build_messages(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> List[Dict[str, Any]]:
        """system prompt 在前，随后是过滤后的对话消息。"""

        payload: List[Dict[str, Any]] = []
        if settings.system_prompt and settings.system_prompt.strip():
            payload.append({"role": "system", "content": settings.system_prompt.strip()})
        for m in self._filter_messages(messages):
            text = m.prompt_text()
            if m.role == "user" and m.images:
                parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
                for image in m.images:
                    parts.append({"type": "image_url", "image_url": {"url": image, "detail": _IMAGE_DETAIL}})
                payload.append({"role": m.role, "content": parts})
            else:
                payload.append({"role": m.role, "content": text})
        return payload

    def _build_payload(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": settings.model or _DEFAULT_MODEL,
            "messages": self._build_messages(messages, settings),
        }
        if positive(settings.max_tokens):
            payload["max_tokens"] = settings.max_tokens
        if in_range(settings.temperature, 0, 2):
            payload["temperature"] = settings.temperature
        return payload

    def _completions_url(self, base_url) -> str:
        return f"{self._base_url(base_url)}/v1/chat/completions"

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        payload = self._build_payload(messages, settings)
        logger.info(
            "provider.send.start",
            extra={"extra": {"provider": self.name, "model": payload["model"], "messages": len(payload["messages"])}},
        )
        resp = await self._request(
            "POST",
            self._completions_url(settings.base_url),
            headers=self._auth_headers(settings.api_key),
            payload=payload,
        )
        self._ensure_ok(resp)
        return self._parse_response(self._json(resp))

    def _parse_response(self, data: Dict[str, Any]) -> ProviderResponse:
        """解析 Chat Completions 响应，只取第一条 choice。"""

        choices = data.get("choices") or []
        if not choices:
            raise self._empty(f"No response choices returned from {self.display_name}")
        message = choices[0].get("message") or {}
        content = (message.get("content") or "").strip()
        if not content:
            raise self._empty(f"Empty response from {self.display_name}")
        usage_raw = data.get("usage")
        usage = None
        if isinstance(usage_raw, dict):
            usage = TokenUsage.from_counts(
                usage_raw.get("prompt_tokens"),
                usage_raw.get("completion_tokens"),
                usage_raw.get("total_tokens"),
            )
        return ProviderResponse(content=content, usage=usage, model=data.get("model"), provider=self.name)
