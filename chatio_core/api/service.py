"""对外 API 服务模块。

ChatService 把 ProjectScopedStore 与 ProviderDispatcher 组装在一起，
给 UI 层提供一组简单的异步方法。服务应通过 create_service() 构造一次，
再以引用方式传给各个使用方，不使用模块级单例。
"""

import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from chatio_core.config.settings import settings as default_settings
from chatio_core.domain.documents import (
    ChatSession,
    ModelItem,
    ModelUserConfig,
)
from chatio_core.domain.exceptions import ValidationError
from chatio_core.domain.models import (
    ChatMessage,
    ConnectionTestRequest,
    ConnectionTestResult,
    FileAttachment,
    ProviderResponse,
    ProviderSettings,
    coerce_messages,
)
from chatio_core.infrastructure.logging.logger import logger
from chatio_core.infrastructure.storage.backends import JsonFileBackend, StorageBackend
from chatio_core.infrastructure.storage.project_store import ProjectScopedStore
from chatio_core.providers import create_dispatcher
from chatio_core.providers.capabilities import ImageSupport, supports_images
from chatio_core.providers.dispatcher import ProviderDispatcher
from chatio_core.providers.registry import ModelWithState, filter_models, models_with_state


_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_chat_id() -> str:
    """生成形如 chat_<毫秒时间戳>_<7 位 base36> 的会话 ID。"""

    suffix = "".join(random.choices(_ID_ALPHABET, k=7))
    return f"chat_{int(time.time() * 1000)}_{suffix}"


class ChatService:
    def __init__(self, store: ProjectScopedStore, dispatcher: ProviderDispatcher, config=None):
        self.store = store
        self.dispatcher = dispatcher
        self._config = config or default_settings

    # ---- Provider 调用 ----

    async def test_connection(
        self,
        provider: str,
        request: Union[ConnectionTestRequest, Mapping[str, Any]],
    ) -> ConnectionTestResult:
        return await self.dispatcher.test_connection(provider, request)

    async def send_message(
        self,
        messages: Sequence[Union[ChatMessage, Mapping[str, Any]]],
        settings: Union[ProviderSettings, Mapping[str, Any]],
    ) -> ProviderResponse:
        """只保留最近 maxMessages 条消息后发送；失败照常抛出。"""

        chat_settings = (await self.store.get_settings()).chat_settings
        msgs = coerce_messages(messages)
        limit = chat_settings.max_messages if chat_settings else 0
        if limit > 0 and len(msgs) > limit:
            msgs = msgs[-limit:]
        try:
            return await self.dispatcher.send_message(msgs, settings)
        except Exception as e:
            logger.error(f"Send failed: {e}", extra={"extra": {"error": str(e), "code": getattr(e, "code", None)}})
            raise

    async def send_session(
        self,
        session: Union[ChatSession, Mapping[str, Any]],
        settings: Union[ProviderSettings, Mapping[str, Any]],
    ) -> ProviderResponse:
        """把保存的会话转成消息后发送；出错或空白的历史消息不会发出。"""

        if not isinstance(session, ChatSession):
            session = ChatSession.model_validate(session)
        return await self.send_message(session.to_chat_messages(), settings)

    async def resolve_settings(self, provider: str, model: str = "", **overrides: Any) -> ProviderSettings:
        """用存储中的凭据与 system prompt 构造 ProviderSettings。

        overrides 可覆盖 api_key、base_url、system_prompt、max_tokens、temperature。
        """

        stored = await self.store.get_settings()
        provider = (provider or self._config.default_provider).lower()
        base_url = None
        if provider == "local" and stored.providers.local is not None:
            base_url = stored.providers.local.url or None
        values: Dict[str, Any] = {
            "provider": provider,
            "model": model,
            "api_key": stored.providers.api_key_for(provider),
            "base_url": base_url,
            "system_prompt": stored.chat_settings.system_prompt if stored.chat_settings else None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ProviderSettings(**values)

    def image_support(self, provider: str, model: str) -> ImageSupport:
        return supports_images(provider, model)

    def validate_attachments(self, files: Sequence[FileAttachment]) -> None:
        """单个附件与总大小超限时抛 ValidationError。"""

        total = 0
        for f in files:
            size = f.size or len(f.content)
            if size > self._config.max_file_size:
                raise ValidationError(
                    code="ATTACHMENT_TOO_LARGE",
                    message=f"File {f.name} exceeds the {self._config.max_file_size} byte limit",
                )
            total += size
        if total > self._config.max_total_files_size:
            raise ValidationError(
                code="ATTACHMENTS_TOO_LARGE",
                message=f"Attachments exceed the {self._config.max_total_files_size} byte total limit",
            )

    # ---- 会话 ----

    async def save_session(self, session: Union[ChatSession, Mapping[str, Any]]) -> ChatSession:
        """按 id 更新或新增会话，最新的排在最前，并刷新 messageCount。"""

        if not isinstance(session, ChatSession):
            session = ChatSession.model_validate(session)
        session = session.model_copy(update={"message_count": len(session.messages)})
        history = [s for s in await self.store.get_chat_history() if s.id != session.id]
        await self.store.set_chat_history([session] + history)
        return session

    async def delete_session(self, session_id: str) -> bool:
        history = await self.store.get_chat_history()
        remaining = [s for s in history if s.id != session_id]
        if len(remaining) == len(history):
            return False
        await self.store.set_chat_history(remaining)
        return True

    def new_session(self, title: str = "New Chat", provider: Optional[str] = None, model: Optional[str] = None) -> ChatSession:
        return ChatSession(
            id=new_chat_id(),
            title=title,
            timestamp=datetime.now(timezone.utc),
            message_count=0,
            selected_provider=provider,
            selected_model=model,
        )

    # ---- 模型目录 ----

    async def list_models(self, provider: Optional[str] = None, query: str = "") -> List[ModelWithState]:
        merged = models_with_state(await self.store.get_custom_models(), await self.store.get_model_configs())
        return filter_models(merged, provider=provider, query=query)

    async def toggle_model(self, model_id: str) -> bool:
        """切换启用状态，返回新状态。"""

        current = {m.item.id: m.enabled for m in await self.list_models()}
        if model_id not in current:
            raise ValidationError(code="UNKNOWN_MODEL", message=f"Unknown model: {model_id}")
        enabled = not current[model_id]
        configs = await self.store.get_model_configs()
        configs[model_id] = ModelUserConfig(id=model_id, enabled=enabled)
        await self.store.set_model_configs(configs)
        return enabled

    async def add_custom_model(self, model: Union[ModelItem, Mapping[str, Any]]) -> ModelItem:
        item = model if isinstance(model, ModelItem) else ModelItem.model_validate(model)
        item = item.model_copy(update={"is_custom": True})
        custom = [m for m in await self.store.get_custom_models() if m.id != item.id]
        configs = await self.store.get_model_configs()
        configs[item.id] = ModelUserConfig(id=item.id, enabled=True)
        await self.store.set_custom_models(custom + [item])
        await self.store.set_model_configs(configs)
        return item

    async def remove_custom_model(self, model_id: str) -> None:
        custom = [m for m in await self.store.get_custom_models() if m.id != model_id]
        configs = await self.store.get_model_configs()
        configs.pop(model_id, None)
        await self.store.set_custom_models(custom)
        await self.store.set_model_configs(configs)


def create_service(backend: Optional[StorageBackend] = None, config=None) -> ChatService:
    """组装默认服务：文件存储后端 + 五个内置适配器。"""

    cfg = config or default_settings
    store = ProjectScopedStore(backend or JsonFileBackend(root=cfg.storage_root, key=cfg.storage_key))
    return ChatService(store=store, dispatcher=create_dispatcher(cfg), config=cfg)
