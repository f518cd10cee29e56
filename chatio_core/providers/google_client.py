"""Google Gemini Provider 适配器。

- 发送: POST {base_url}/v1beta/models/{model}:generateContent?key=<api_key>
- 测试: GET {base_url}/v1beta/models?key=<api_key>

格式转换：
- assistant 角色改名为 model，消息文本放在 parts 里。
- system prompt（及 system 角色文本）放到顶层 systemInstruction。
- user 消息中的 data URI 图片转成 inlineData；普通 URL 不发送。
- maxTokens/temperature 放在 generationConfig 里。

空响应会按 finishReason 区分：安全过滤、复述过滤、未知原因或单纯为空。
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


_DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
_DEFAULT_MODEL = "gemini-2.5-flash"

_FINISH_REASON_ERRORS = {
    "SAFETY": (
        "safety",
        "Content was blocked by Google Gemini safety filters. Please try rephrasing your request.",
    ),
    "RECITATION": (
        "recitation",
        "Content was blocked due to recitation concerns. Please try a different approach.",
    ),
    "OTHER": (
        "other",
        "Google Gemini stopped generation for an unknown reason. Please try again.",
    ),
}


class GoogleClient(HttpProviderClient):
    name = "google"
    display_name = "Google Gemini"

    def _base_url(self, base_url) -> str:
        return (base_url or _DEFAULT_BASE_URL).rstrip("/")

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        headers = self._headers()
        headers.pop("Content-Type")
        resp = await self._request(
            "GET",
            f"{self._base_url(request.base_url)}/v1beta/models",
            headers=headers,
            params={"key": request.api_key},
        )
        self._ensure_ok(resp)
        data = self._json(resp)
        models = [
            str(m.get("name", "")).replace("models/", "")
            for m in data.get("models") or []
            if isinstance(m, dict)
        ]
        return ConnectionTestResult.ok(
            f"{self.display_name} connection successful!",
            availableModels=models[:10],
            totalModels=len(models),
        )

    def _friendly_http_message(self, status: int, message: str) -> str:
        if status == 429:
            return "Google API rate limit exceeded. Please try again in a few moments."
        if status == 503:
            return "Google Gemini service is temporarily overloaded. Please try again later."
        if status == 403:
            return "Invalid API key or insufficient permissions for Google Gemini."
        if status == 400 and "overloaded" in message:
            return "Google Gemini model is currently overloaded. Please try a different model or wait a few minutes."
        return message

    @staticmethod
    def _user_parts(message: ChatMessage) -> List[Dict[str, Any]]:
        parts: List[Dict[str, Any]] = [{"text": message.prompt_text()}]
        for image in message.images:
            parsed = split_data_uri(image)
            if parsed:
                mime_type, data = parsed
                parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
        return parts

    def _build_payload(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> Dict[str, Any]:
        contents: List[Dict[str, Any]] = []
        for m in self._filter_messages(messages):
            if m.role == "user":
                contents.append({"role": "user", "parts": self._user_parts(m)})
            else:
                contents.append({"role": "model", "parts": [{"text": m.prompt_text()}]})

        payload: Dict[str, Any] = {"contents": contents}
        generation_config: Dict[str, Any] = {}
        if positive(settings.max_tokens):
            generation_config["maxOutputTokens"] = settings.max_tokens
        if in_range(settings.temperature, 0, 2):
            generation_config["temperature"] = settings.temperature
        if generation_config:
            payload["generationConfig"] = generation_config
        system = self._system_text(settings, messages)
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        payload = self._build_payload(messages, settings)
        model = settings.model or _DEFAULT_MODEL
        logger.info(
            "provider.send.start",
            extra={"extra": {"provider": self.name, "model": model, "messages": len(payload["contents"])}},
        )
        resp = await self._request(
            "POST",
            f"{self._base_url(settings.base_url)}/v1beta/models/{model}:generateContent",
            headers=self._headers(),
            params={"key": settings.api_key},
            payload=payload,
        )
        self._ensure_ok(resp)
        return self._parse_response(self._json(resp), model)

    def _parse_response(self, data: Dict[str, Any], model: str) -> ProviderResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            raise self._empty(f"No response candidates returned from {self.display_name}")
        candidate = candidates[0] or {}
        parts = (candidate.get("content") or {}).get("parts") or []
        text = (parts[0].get("text") if parts and isinstance(parts[0], dict) else None) or ""
        if not text.strip():
            finish_reason = candidate.get("finishReason")
            reason, message = _FINISH_REASON_ERRORS.get(
                finish_reason,
                (
                    "empty",
                    "Google Gemini returned an empty response. Please try rephrasing your request or try again.",
                ),
            )
            raise self._empty(message, reason)
        meta = data.get("usageMetadata")
        usage = None
        if isinstance(meta, dict):
            usage = TokenUsage.from_counts(
                meta.get("promptTokenCount"),
                meta.get("candidatesTokenCount"),
                meta.get("totalTokenCount"),
            )
        return ProviderResponse(content=text, usage=usage, model=model, provider=self.name)
