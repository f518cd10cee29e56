"""本地 Ollama Provider 适配器。

- 发送: POST {base_url}/api/chat（stream=false，一次性返回）
- 测试: GET {base_url}/api/tags
- 认证: 无，因此 requires_api_key = False

图片以纯 base64 字符串放在 message.images 上（data URI 会去掉前缀）；
maxTokens/temperature 映射到 options.num_predict / options.temperature。
token 统计取 prompt_eval_count 与 eval_count，总数为两者之和。
"""

from typing import Any, Dict, List, Sequence

from chatio_core.domain.exceptions import BusinessError, NetworkError
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


_DEFAULT_BASE_URL = "http://localhost:11434"
_DEFAULT_MODEL = "llama3.2"


class LocalClient(HttpProviderClient):
    name = "local"
    display_name = "Local LLM"
    requires_api_key = False
    message_roles = ("user", "assistant", "system")

    def _base_url(self, base_url) -> str:
        return (base_url or _DEFAULT_BASE_URL).rstrip("/")

    def _error_message(self, data: Any):
        # Ollama 的错误体是 {"error": "..."}
        if isinstance(data, dict) and isinstance(data.get("error"), str) and data["error"]:
            return data["error"]
        return super()._error_message(data)

    async def _test_connection(self, request: ConnectionTestRequest) -> ConnectionTestResult:
        base = self._base_url(request.base_url)
        headers = self._headers()
        headers.pop("Content-Type")
        resp = await self._request("GET", f"{base}/api/tags", headers=headers)
        if not 200 <= resp.status_code < 300:
            logger.error("provider.test_connection.unreachable", extra={"extra": {"provider": self.name, "status": resp.status_code}})
            return ConnectionTestResult.failed(
                f"Ollama server not accessible: HTTP {resp.status_code}. Make sure Ollama is running on {base}"
            )
        data = self._json(resp)
        available = [m.get("name") for m in data.get("models") or [] if isinstance(m, dict) and m.get("name")]

        requested = [m.strip() for m in (request.model or "").split(",") if m.strip()]
        if requested and available:
            valid = [m for m in requested if m in available]
            invalid = [m for m in requested if m not in available]
            return ConnectionTestResult.ok(
                f"Ollama connection successful! {len(valid)}/{len(requested)} models available",
                availableModels=available,
                totalModels=len(available),
                validModels=valid,
                invalidModels=invalid,
            )
        return ConnectionTestResult.ok(
            "Ollama connection successful!",
            availableModels=available,
            totalModels=len(available),
        )

    def _connection_error_message(self, error: BusinessError) -> str:
        if isinstance(error, NetworkError):
            return (
                f"Cannot connect to Ollama server: {error.message}. "
                "Make sure Ollama is installed and running."
            )
        return super()._connection_error_message(error)

    @staticmethod
    def _raw_images(images: Sequence[str]) -> List[str]:
        raw = []
        for image in images:
            parsed = split_data_uri(image)
            data = parsed[1] if parsed else ("" if image.startswith("data:") else image)
            if data:
                raw.append(data)
        return raw

    def _build_payload(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> Dict[str, Any]:
        msgs: List[Dict[str, Any]] = []
        if settings.system_prompt and settings.system_prompt.strip():
            msgs.append({"role": "system", "content": settings.system_prompt.strip()})
        for m in self._filter_messages(messages):
            item: Dict[str, Any] = {"role": m.role, "content": m.prompt_text()}
            if m.role == "user" and m.images:
                images = self._raw_images(m.images)
                if images:
                    item["images"] = images
            msgs.append(item)

        payload: Dict[str, Any] = {
            "model": settings.model or _DEFAULT_MODEL,
            "messages": msgs,
            "stream": False,
        }
        options: Dict[str, Any] = {}
        if positive(settings.max_tokens):
            options["num_predict"] = settings.max_tokens
        if in_range(settings.temperature, 0, 2):
            options["temperature"] = settings.temperature
        if options:
            payload["options"] = options
        return payload

    async def send_message(self, messages: Sequence[ChatMessage], settings: ProviderSettings) -> ProviderResponse:
        payload = self._build_payload(messages, settings)
        logger.info(
            "provider.send.start",
            extra={"extra": {"provider": self.name, "model": payload["model"], "messages": len(payload["messages"])}},
        )
        resp = await self._request(
            "POST",
            f"{self._base_url(settings.base_url)}/api/chat",
            headers=self._headers(),
            payload=payload,
        )
        self._ensure_ok(resp)
        return self._parse_response(self._json(resp))

    def _parse_response(self, data: Dict[str, Any]) -> ProviderResponse:
        content = (data.get("message") or {}).get("content") or ""
        if not content.strip():
            raise self._empty(f"No response content returned from {self.display_name}")
        usage = TokenUsage.from_counts(data.get("prompt_eval_count"), data.get("eval_count"))
        return ProviderResponse(content=content, usage=usage, model=data.get("model"), provider=self.name)
