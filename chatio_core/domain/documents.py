"""持久化文档模型。

整个安装只有一份 StorageDocument，结构如下（JSON 中使用 camelCase）：

    {
      "globalSettings": {
        "providers": {"openai": {"apiKey": ...}, ..., "local": {"url": ..., "models": ...}},
        "chatSettings": {"maxMessages": 25, "systemPrompt": "", "autoSave": true},
        "modelConfigs": {"<modelId>": {"id": ..., "enabled": true}},
        "customModels": [ModelItem, ...]
      },
      "projects": {"<projectKey>": {"chatHistory": [ChatSession, ...], "appState": {...}}}
    }

providers 是封闭类型：只认识五个 Provider，未知键在文档边界被拒绝。
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from chatio_core.domain.models import ROLES, ChatMessage, FileAttachment


GLOBAL_PROJECT_KEY = "global"
DEFAULT_LOCAL_URL = "http://localhost:11434"


class DocumentModel(BaseModel):
    """文档模型基类：camelCase 别名、可用字段名构造。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApiKeyCredentials(DocumentModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str = ""


class LocalCredentials(DocumentModel):
    """本地 Ollama：url 为服务地址，models 为逗号分隔的模型名。"""

    model_config = ConfigDict(extra="forbid")

    url: str = DEFAULT_LOCAL_URL
    models: str = ""
    api_key: str = ""


class ProvidersConfig(DocumentModel):
    model_config = ConfigDict(extra="forbid")

    openai: Optional[ApiKeyCredentials] = None
    anthropic: Optional[ApiKeyCredentials] = None
    google: Optional[ApiKeyCredentials] = None
    deepseek: Optional[ApiKeyCredentials] = None
    local: Optional[LocalCredentials] = None

    def api_key_for(self, provider: str) -> str:
        creds = getattr(self, provider, None) if provider in type(self).model_fields else None
        return (creds.api_key if creds is not None else "") or ""


class ChatSettings(DocumentModel):
    max_messages: int = 25
    system_prompt: str = ""
    auto_save: bool = True


class ModelItem(DocumentModel):
    id: str
    name: str
    provider: str
    is_custom: Optional[bool] = None
    is_reasoning_model: Optional[bool] = None


class ModelUserConfig(DocumentModel):
    id: str
    enabled: bool


class StoredSettings(DocumentModel):
    """getSettings/setSettings 交换的结构。"""

    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    chat_settings: Optional[ChatSettings] = None


class GlobalSettings(DocumentModel):
    providers: Optional[ProvidersConfig] = None
    chat_settings: Optional[ChatSettings] = None
    model_configs: Optional[Dict[str, ModelUserConfig]] = None
    custom_models: Optional[List[ModelItem]] = None


class StoredAttachment(DocumentModel):
    name: str
    type: str = "text/plain"
    content: str = ""
    size: int = 0


class SessionMessage(DocumentModel):
    """会话历史里保存的一条消息（比 ChatMessage 多了 id、时间与来源信息）。"""

    id: str
    role: str
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    provider: Optional[str] = None
    model: Optional[str] = None
    status: Optional[str] = None
    files: Optional[List[StoredAttachment]] = None
    images: Optional[List[str]] = None

    def to_chat_message(self) -> Optional[ChatMessage]:
        """转成发给模型的消息；出错的、空白的或角色未知的消息返回 None。"""

        if self.status == "error" or self.role not in ROLES:
            return None
        # 只有 user 消息可以带图片
        images = tuple(self.images or ()) if self.role == "user" else ()
        if not self.content.strip() and not images and not self.files:
            return None
        return ChatMessage(
            role=self.role,
            content=self.content,
            images=images,
            attached_files=tuple(
                FileAttachment(name=f.name, mime_type=f.type, content=f.content, size=f.size)
                for f in self.files or ()
            ),
        )


class ChatSession(DocumentModel):
    id: str
    title: str = ""
    messages: List[SessionMessage] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    message_count: Optional[int] = None
    selected_provider: Optional[str] = None
    selected_model: Optional[str] = None

    def to_chat_messages(self) -> List[ChatMessage]:
        return [m for m in (s.to_chat_message() for s in self.messages) if m is not None]


class AppState(DocumentModel):
    active_chat_id: str = ""
    selected_provider: Optional[str] = None
    selected_model: Optional[str] = None


class ProjectData(DocumentModel):
    chat_history: Optional[List[ChatSession]] = None
    app_state: Optional[AppState] = None


class StorageDocument(DocumentModel):
    global_settings: GlobalSettings = Field(default_factory=GlobalSettings)
    projects: Dict[str, ProjectData] = Field(default_factory=dict)

    @classmethod
    def empty(cls) -> "StorageDocument":
        return cls()

    @classmethod
    def from_storage(cls, data: Optional[Dict[str, Any]]) -> "StorageDocument":
        """从宿主存储读出的原始 dict 构造文档；None 视为空文档。"""

        if data is None:
            return cls.empty()
        doc = cls.model_validate(data)
        return doc
