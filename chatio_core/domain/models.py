"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant），可带图片和附件。
- ProviderSettings: 一次调用使用的 Provider、模型、凭据与可选参数。
- ProviderResponse: 从 Provider 解析后的统一响应结果。
- ConnectionTestResult: 连接测试的结构化结果，直接给 UI 展示。

所有 Provider 适配器都只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Mapping, Optional, Sequence, Tuple

from chatio_core.domain.exceptions import ValidationError


# 消息角色只有三种；工具调用等角色不在本系统范围内
Role = Literal["user", "assistant", "system"]
ROLES: Tuple[str, ...] = ("user", "assistant", "system")

ProviderName = Literal["openai", "anthropic", "google", "deepseek", "local"]
PROVIDER_NAMES: Tuple[str, ...] = ("openai", "anthropic", "google", "deepseek", "local")


@dataclass(frozen=True)
class FileAttachment:
    """附在消息上的文件。content 为文本内容或 data URI。"""

    name: str
    mime_type: str
    content: str
    size: int = 0

    @property
    def is_binary(self) -> bool:
        return self.content.startswith("data:")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileAttachment":
        content = data.get("content") or ""
        return cls(
            name=data.get("name") or "file",
            mime_type=data.get("mimeType") or data.get("mime_type") or data.get("type") or "text/plain",
            content=content,
            size=int(data.get("size") or len(content)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "mimeType": self.mime_type, "content": self.content, "size": self.size}


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，发出后不可变。

    - role: user/assistant/system。
    - content: 纯文本内容；只有带图片或附件时才允许为空。
    - images: data URI 或 URL，有序；只有 user 消息可以带图片。
    - attached_files: 附件，有序；文本附件会拼进 prompt_text()。
    """

    role: Role
    content: str
    images: Tuple[str, ...] = ()
    attached_files: Tuple[FileAttachment, ...] = ()

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValidationError(code="INVALID_MESSAGE", message=f"Unknown message role: {self.role!r}")
        # 允许传入 list，统一收敛为 tuple 保证不可变
        object.__setattr__(self, "images", tuple(self.images or ()))
        object.__setattr__(self, "attached_files", tuple(self.attached_files or ()))
        if self.content is None:
            object.__setattr__(self, "content", "")
        if not self.content and not self.images and not self.attached_files:
            raise ValidationError(
                code="INVALID_MESSAGE",
                message="Message content may only be empty when an image or file is attached",
            )
        if self.images and self.role != "user":
            raise ValidationError(code="INVALID_MESSAGE", message="Only user messages can carry images")

    def prompt_text(self) -> str:
        """返回发给模型的文本：去掉首尾空白的 content，再拼上文本附件。"""

        parts = [self.content.strip()] if self.content.strip() else []
        for f in self.attached_files:
            if f.is_binary:
                continue
            parts.append(f"[File: {f.name} ({f.mime_type})]\n```\n{f.content}\n```")
        return "\n\n".join(parts)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChatMessage":
        files = data.get("attachedFiles") or data.get("attached_files") or data.get("files") or ()
        return cls(
            role=data.get("role"),
            content=data.get("content") or "",
            images=tuple(data.get("images") or ()),
            attached_files=tuple(
                f if isinstance(f, FileAttachment) else FileAttachment.from_dict(f) for f in files
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.images:
            payload["images"] = list(self.images)
        if self.attached_files:
            payload["attachedFiles"] = [f.to_dict() for f in self.attached_files]
        return payload


@dataclass(frozen=True)
class ProviderSettings:
    """一次 sendMessage 调用的 Provider 配置。

    base_url/model 为空时由适配器使用各自的默认值；
    max_tokens/temperature 超出厂商合法范围时会被静默忽略。
    """

    provider: str
    model: str = ""
    api_key: str = ""
    base_url: Optional[str] = None
    system_prompt: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProviderSettings":
        return cls(
            provider=str(data.get("provider") or "").lower(),
            model=data.get("model") or "",
            api_key=data.get("apiKey") or data.get("api_key") or "",
            base_url=data.get("baseUrl") or data.get("base_url") or None,
            system_prompt=data.get("systemPrompt") or data.get("system_prompt"),
            max_tokens=data.get("maxTokens", data.get("max_tokens")),
            temperature=data.get("temperature"),
        )


@dataclass(frozen=True)
class ConnectionTestRequest:
    """连接测试的凭据。model 对本地 Provider 可以是逗号分隔的多个模型。"""

    api_key: str = ""
    base_url: Optional[str] = None
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConnectionTestRequest":
        return cls(
            api_key=data.get("apiKey") or data.get("api_key") or "",
            base_url=data.get("baseUrl") or data.get("base_url") or None,
            model=data.get("model") or None,
        )


@dataclass(frozen=True)
class TokenUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int

    @classmethod
    def from_counts(cls, prompt: Optional[int], completion: Optional[int], total: Optional[int] = None) -> "TokenUsage":
        """厂商没给 total 时取两项之和。"""

        prompt = int(prompt or 0)
        completion = int(completion or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(total) if total is not None else prompt + completion,
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ProviderResponse:
    """一次 sendMessage 调用的最终结果。"""

    content: str
    provider: str
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"content": self.content, "provider": self.provider}
        if self.usage is not None:
            payload["usage"] = self.usage.to_dict()
        if self.model is not None:
            payload["model"] = self.model
        return payload


@dataclass
class ConnectionTestResult:
    """连接测试结果；testConnection 从不抛异常，失败都落在 error 上。"""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ConnectionTestResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, error: str) -> "ConnectionTestResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            payload["message"] = self.message
        if self.error is not None:
            payload["error"] = self.error
        if self.data:
            payload["data"] = self.data
        return payload


def _is_blank(data: Mapping[str, Any]) -> bool:
    files = data.get("attachedFiles") or data.get("attached_files") or data.get("files")
    return not str(data.get("content") or "").strip() and not data.get("images") and not files


def coerce_messages(messages: Sequence[Any]) -> Tuple[ChatMessage, ...]:
    """把 dict/ChatMessage 混合列表统一成 ChatMessage 元组。

    dict 形式的空白消息（无内容、无附件）直接跳过，与只含空白的消息一样在适配器里被过滤，
    全部被跳过时由适配器抛 NO_VALID_MESSAGES。
    """

    result = []
    for m in messages or ():
        if not isinstance(m, ChatMessage):
            if _is_blank(m):
                continue
            m = ChatMessage.from_dict(m)
        result.append(m)
    return tuple(result)
