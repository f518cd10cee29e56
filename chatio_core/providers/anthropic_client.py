"""Anthropic Provider 适配器。

- URL: POST {base_url}/v1/messages
- 认证: x-api-key + anthropic-version 头

与 OpenAI 的关键区别：
1. system prompt 不进 messages，而是顶层的 system 字段；
   消息列表中的 system 角色文本也并入该字段。
2. max_tokens 为必填字段，未提供时使用默认值。
3. temperature 合法范围为 0..1。
4. 图片转成 image 内容块（data URI 用 base64 source，其余用 url source）。
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
from chatio_core.providers.base import HttpProviderClient, in_range, positive, split_data_uri


_DEFAULT_BASE_URL = "https://api.anthropic.com"
_DEFAULT_MODEL = "claude-3-5-sonnet-20241022"
_DEFAULT_MAX_TOKENS = 4000
_API_VERSION = "2023-06-01"


class AnthropicClient(HttpProviderClient):
    name = "anthropic"
    display_name = "Anthropic"

    def _url(self, base_url) -> str:
        return f"{(base_url or _DEFAULT_BASE_URL).rstrip('/')}/v1/messages"

    def _auth_headers(self, api_key: str) -> Dict[str, str]:
        return self._headers({"x-api-key": api_key, "anthropic-version": _API_VERSION})

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        body = {
            "model": request.model or _DEFAULT_MODEL,
            "max_tokens": 10,
            "messages": [{"role": "user", "content": "Hi"}],
        }
        resp = await self._request("POST", self._url(request.base_url), headers=self._auth_headers(request.api_key), payload=body)
        self._ensure_ok(resp)
        data = self._json(resp)
        return ConnectionTestResult.ok(
            f"{self.display_name} connection successful!",
            model=data.get("model"),
            usage=data.get("usage"),
        )

    @staticmethod
    def _image_block(image: str) -> Dict[str, Any]:
        parsed = split_data_uri(image)
        if parsed:
            media_type, data = parsed
            return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}
        return {"type": "image", "source": {"type": "url", "url": image}}

    def _build_payload(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> Dict[str, Any]:
        msgs: List[Dict[str, Any]] = []
        for m in self._filter_messages(messages):
            text = m.prompt_text()
            if m.role == "user" and m.images:
                blocks = [self._image_block(image) for image in m.images]
                blocks.append({"type": "text", "text": text})
                msgs.append({"role": m.role, "content": blocks})
            else:
                msgs.append({"role": m.role, "content": text})

        payload: Dict[str, Any] = {
            "model": settings.model or _DEFAULT_MODEL,
            "max_tokens": settings.max_tokens if positive(settings.max_tokens) else _DEFAULT_MAX_TOKENS,
            "messages": msgs,
        }
        if in_range(settings.temperature, 0, 1):
            payload["temperature"] = settings.temperature
        system = self._system_text(settings, messages)
        if system:
            payload["system"] = system
        return payload

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        payload = self._build_payload(messages, settings)
        logger.info(
            "provider.send.start",
            extra={"extra": {"provider": self.name, "model": payload["model"], "messages": len(payload["messages"])}},
        )
        resp = await self._request(
            "POST",
            self._url(settings.base_url),
            headers=self._auth_headers(settings.api_key),
            payload=payload,
        )
        self._ensure_ok(resp)
        return self._parse_response(self._json(resp))

    def _parse_response(self, data: Dict[str, Any]) -> ProviderResponse:
        blocks = data.get("content") or []
        if not blocks:
            raise self._empty(f"No response content returned from {self.display_name}")
        # 取第一个 text 块；thinking 等其他块跳过
        text = next(
            (b.get("text") or "" for b in blocks if isinstance(b, dict) and b.get("type", "text") == "text"),
            "",
        )
        if not text.strip():
            raise self._empty(f"Empty response from {self.display_name}")
        usage_raw = data.get("usage")
        usage = None
        if isinstance(usage_raw, dict):
            usage = TokenUsage.from_counts(usage_raw.get("input_tokens"), usage_raw.get("output_tokens"))
        return ProviderResponse(content=text, usage=usage, model=data.get("model"), provider=self.name)
