"""按项目分区的设置/历史缓存。

整份 StorageDocument 在启动时读取一次并缓存在内存中：
- 全局部分（providers、chatSettings、modelConfigs、customModels）所有项目共享；
- 每个项目一个分区（chatHistory、appState），分区键为当前项目 ID，没有项目时为 "global"。

状态机：UNINITIALIZED -> INITIALIZING -> READY。所有读写先等待 READY，
等待用的是一次性的 asyncio.Event，不轮询。

每次修改都是“改内存缓存 -> 整份文档写回”，没有字段级的局部写。
其它实例写入新文档时直接整体替换缓存（后写者胜，不做合并）；
两个实例同时读改写会互相覆盖，这是已知且接受的限制。
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chatio_core.domain.documents import (
    GLOBAL_PROJECT_KEY,
    AppState,
    ChatSession,
    ChatSettings,
    ModelItem,
    ModelUserConfig,
    ProjectData,
    ProvidersConfig,
    StorageDocument,
    StoredSettings,
)
from chatio_core.domain.exceptions import StorageUnavailableError, ValidationError
from chatio_core.infrastructure.logging.logger import logger
from chatio_core.infrastructure.storage.backends import Document, StorageBackend


M = TypeVar("M", bound=BaseModel)

StorageChangeCallback = Callable[[StorageDocument], None]
ProjectChangeCallback = Callable[[Optional[str], Optional[str]], None]


class StoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


def _coerce(model_cls: Type[M], value: Union[M, Mapping[str, Any]]) -> M:
    """把调用方传入的模型或 dict 校验成文档模型（总是返回副本）。"""

    try:
        if isinstance(value, model_cls):
            return model_cls.model_validate(value.model_dump(by_alias=True))
        return model_cls.model_validate(value)
    except PydanticValidationError as e:
        raise ValidationError(code="INVALID_DOCUMENT", message=str(e), model=model_cls.__name__)


class ProjectScopedStore:
    """StorageDocument 的唯一读写入口。

    应在服务初始化时构造一次，并以引用方式传给所有使用者。
    如果构造时已有运行中的事件循环，会立即开始异步加载；否则在第一次操作时加载。
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend
        self._cache = StorageDocument.empty()
        self._current_project_id: Optional[str] = None
        self._state = StoreState.UNINITIALIZED
        self._ready = asyncio.Event()
        self._load_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()
        self._external_seen = False
        self._storage_callbacks: List[StorageChangeCallback] = []
        self._project_callbacks: List[ProjectChangeCallback] = []

        backend.subscribe(self._on_external_change, owner=self)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._start_loading()

    # ---- 生命周期 ----

    @property
    def state(self) -> StoreState:
        return self._state

    def _start_loading(self) -> None:
        if self._load_task is None and self._state is StoreState.UNINITIALIZED:
            self._state = StoreState.INITIALIZING
            self._load_task = asyncio.get_running_loop().create_task(self._initialize())

    async def _initialize(self) -> None:
        try:
            data = await self._backend.read()
            doc = StorageDocument.from_storage(data)
            if not self._external_seen:
                self._cache = doc
        except Exception as e:  # noqa: BLE001 - 初始化失败退化为空文档，不影响调用方
            logger.warning(
                "store.init.fallback",
                extra={"extra": {"code": "STORAGE_UNAVAILABLE", "error": str(e)}},
            )
            if not self._external_seen:
                self._cache = StorageDocument.empty()
        finally:
            self._state = StoreState.READY
            self._ready.set()
        logger.info("store.ready", extra={"extra": {"projects": len(self._cache.projects)}})

    async def wait_until_ready(self) -> None:
        if self._state is StoreState.READY:
            return
        self._start_loading()
        await self._ready.wait()

    async def _persist(self) -> None:
        """整份文档写回宿主存储；写失败直接抛给调用方。"""

        document = self._cache.to_storage()
        try:
            await self._backend.write(document, origin=self)
        except Exception as e:
            logger.error("store.write.failed", extra={"extra": {"error": str(e)}})
            raise StorageUnavailableError(code="STORAGE_UNAVAILABLE", message=str(e), http_status=503) from e

    # ---- 项目 ----

    def handle_project_change(self, project_id: Optional[str]) -> None:
        """宿主通知项目切换；None 表示没有活动项目。"""

        old = self._current_project_id
        self._current_project_id = project_id or None
        logger.info("store.project_changed", extra={"extra": {"project": project_id, "previous": old}})
        for callback in list(self._project_callbacks):
            callback(self._current_project_id, old)

    def on_project_change(self, callback: ProjectChangeCallback) -> None:
        self._project_callbacks.append(callback)

    def get_project_key(self) -> str:
        return self._current_project_id if self._current_project_id is not None else GLOBAL_PROJECT_KEY

    async def get_current_project_id(self) -> Optional[str]:
        await self.wait_until_ready()
        return self._current_project_id

    async def get_project_list(self) -> List[str]:
        await self.wait_until_ready()
        return list(self._cache.projects)

    def _partition(self, key: str) -> ProjectData:
        return self._cache.projects.setdefault(key, ProjectData())

    def _peek_partition(self, key: str) -> ProjectData:
        return self._cache.projects.get(key) or ProjectData()

    # ---- 全局设置 ----

    async def get_settings(self) -> StoredSettings:
        await self.wait_until_ready()
        gs = self._cache.global_settings
        return StoredSettings(
            providers=gs.providers.model_copy(deep=True) if gs.providers else ProvidersConfig(),
            chat_settings=gs.chat_settings.model_copy(deep=True) if gs.chat_settings else ChatSettings(),
        )

    async def set_settings(self, settings: Union[StoredSettings, Mapping[str, Any]]) -> None:
        """providers 整体替换；chatSettings 只在提供时替换。"""

        await self.wait_until_ready()
        value = _coerce(StoredSettings, settings)
        async with self._write_lock:
            gs = self._cache.global_settings
            gs.providers = value.providers
            if value.chat_settings is not None:
                gs.chat_settings = value.chat_settings
            await self._persist()

    async def get_model_configs(self) -> Dict[str, ModelUserConfig]:
        await self.wait_until_ready()
        configs = self._cache.global_settings.model_configs or {}
        return {k: v.model_copy() for k, v in configs.items()}

    async def set_model_configs(self, configs: Mapping[str, Union[ModelUserConfig, Mapping[str, Any]]]) -> None:
        await self.wait_until_ready()
        value = {k: _coerce(ModelUserConfig, v) for k, v in configs.items()}
        async with self._write_lock:
            self._cache.global_settings.model_configs = value
            await self._persist()

    async def get_custom_models(self) -> List[ModelItem]:
        await self.wait_until_ready()
        return [m.model_copy() for m in self._cache.global_settings.custom_models or []]

    async def set_custom_models(self, models: Sequence[Union[ModelItem, Mapping[str, Any]]]) -> None:
        await self.wait_until_ready()
        value = [_coerce(ModelItem, m) for m in models]
        async with self._write_lock:
            self._cache.global_settings.custom_models = value
            await self._persist()

    # ---- 项目分区 ----
    # 分区键在调用开始时确定，等待期间切换项目不会把数据写进新项目

    async def get_chat_history(self) -> List[ChatSession]:
        key = self.get_project_key()
        await self.wait_until_ready()
        return [s.model_copy(deep=True) for s in self._peek_partition(key).chat_history or []]

    async def set_chat_history(self, history: Sequence[Union[ChatSession, Mapping[str, Any]]]) -> None:
        key = self.get_project_key()
        await self._write_chat_history(key, history)

    async def set_chat_history_for_project(
        self,
        project_id: Optional[str],
        history: Sequence[Union[ChatSession, Mapping[str, Any]]],
    ) -> None:
        await self._write_chat_history(project_id or GLOBAL_PROJECT_KEY, history)

    async def _write_chat_history(self, key: str, history: Sequence[Union[ChatSession, Mapping[str, Any]]]) -> None:
        await self.wait_until_ready()
        value = [_coerce(ChatSession, s) for s in history]
        async with self._write_lock:
            self._partition(key).chat_history = value
            await self._persist()

    async def get_app_state(self) -> Optional[AppState]:
        key = self.get_project_key()
        await self.wait_until_ready()
        state = self._peek_partition(key).app_state
        return state.model_copy() if state is not None else None

    async def set_app_state(self, state: Union[AppState, Mapping[str, Any]]) -> None:
        key = self.get_project_key()
        await self.wait_until_ready()
        value = _coerce(AppState, state)
        async with self._write_lock:
            self._partition(key).app_state = value
            await self._persist()

    # ---- 清理 ----

    async def clear_all(self) -> None:
        await self.wait_until_ready()
        async with self._write_lock:
            self._cache = StorageDocument.empty()
            await self._persist()

    async def clear_chat_history(self) -> None:
        """只删当前分区的 chatHistory，appState 保留。"""

        key = self.get_project_key()
        await self.wait_until_ready()
        async with self._write_lock:
            if key in self._cache.projects:
                self._cache.projects[key].chat_history = None
            await self._persist()

    async def clear_current_project_data(self) -> None:
        key = self.get_project_key()
        await self.wait_until_ready()
        async with self._write_lock:
            self._cache.projects.pop(key, None)
            await self._persist()

    async def clear_settings(self) -> None:
        await self.wait_until_ready()
        async with self._write_lock:
            gs = self._cache.global_settings
            gs.providers = None
            gs.chat_settings = None
            gs.model_configs = None
            gs.custom_models = None
            await self._persist()

    # ---- 外部变更 ----

    def on_storage_change(self, callback: StorageChangeCallback) -> None:
        self._storage_callbacks.append(callback)

    def _on_external_change(self, document: Optional[Document]) -> None:
        """其它实例写入了新文档：整体替换缓存，然后通知回调。"""

        try:
            doc = StorageDocument.from_storage(document)
        except PydanticValidationError as e:
            logger.warning("store.external_change.invalid", extra={"extra": {"error": str(e)}})
            doc = StorageDocument.empty()
        self._cache = doc
        self._external_seen = True
        logger.info("store.external_change", extra={"extra": {"projects": len(doc.projects)}})
        for callback in list(self._storage_callbacks):
            callback(doc.model_copy(deep=True))
