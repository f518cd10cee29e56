import asyncio
import json
import tempfile
from pathlib import Path

import pytest

from chatio_core.domain.documents import ChatSettings, StoredSettings
from chatio_core.domain.exceptions import StorageUnavailableError, ValidationError
from chatio_core.infrastructure.storage.backends import JsonFileBackend, MemoryBackend
from chatio_core.infrastructure.storage.project_store import ProjectScopedStore, StoreState


def _session(sid, title="t"):
    return {"id": sid, "title": title, "messages": [], "timestamp": "2024-01-01T00:00:00Z"}


class FailingBackend(MemoryBackend):
    def __init__(self, fail_read=False, fail_write=False):
        super().__init__()
        self.fail_read = fail_read
        self.fail_write = fail_write

    async def read(self):
        if self.fail_read:
            raise OSError("disk gone")
        return await super().read()

    async def write(self, document, origin=None):
        if self.fail_write:
            raise OSError("read-only")
        await super().write(document, origin)


class GatedBackend(MemoryBackend):
    """read() 等待 gate 打开，用于模拟加载中的状态。"""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.gate = asyncio.Event()

    async def read(self):
        await self.gate.wait()
        return await super().read()


def test_store_starts_lazily_outside_loop():
    store = ProjectScopedStore(MemoryBackend())
    assert store.state is StoreState.UNINITIALIZED
    assert store.get_project_key() == "global"

    async def run():
        await store.wait_until_ready()
        return await store.get_project_list()

    assert asyncio.run(run()) == []
    assert store.state is StoreState.READY


def test_settings_defaults_and_idempotent_write():
    backend = MemoryBackend()
    store = ProjectScopedStore(backend)

    async def run():
        settings = await store.get_settings()
        assert settings.chat_settings.max_messages == 25
        value = {"providers": {"openai": {"apiKey": "sk"}}, "chatSettings": {"maxMessages": 5}}
        await store.set_settings(value)
        first = backend.dumps()
        await store.set_settings(value)
        return first, backend.dumps()

    first, second = asyncio.run(run())
    assert first == second
    assert json.loads(first)["globalSettings"]["providers"] == {"openai": {"apiKey": "sk"}}


def test_set_settings_keeps_chat_settings_when_omitted():
    store = ProjectScopedStore(MemoryBackend())

    async def run():
        await store.set_settings(StoredSettings(chat_settings=ChatSettings(max_messages=3)))
        await store.set_settings({"providers": {"google": {"apiKey": "g"}}})
        return await store.get_settings()

    settings = asyncio.run(run())
    assert settings.chat_settings.max_messages == 3
    assert settings.providers.api_key_for("google") == "g"


def test_invalid_settings_rejected():
    store = ProjectScopedStore(MemoryBackend())
    with pytest.raises(ValidationError) as exc:
        asyncio.run(store.set_settings({"providers": {"mistral": {"apiKey": "x"}}}))
    assert exc.value.code == "INVALID_DOCUMENT"


def test_history_is_partitioned_by_project():
    store = ProjectScopedStore(MemoryBackend())

    async def run():
        await store.set_chat_history([_session("g1")])
        store.handle_project_change("proj-a")
        assert await store.get_chat_history() == []
        await store.set_chat_history([_session("a1"), _session("a2")])
        a = [s.id for s in await store.get_chat_history()]
        store.handle_project_change(None)
        g = [s.id for s in await store.get_chat_history()]
        return a, g, await store.get_project_list()

    a, g, projects = asyncio.run(run())
    assert a == ["a1", "a2"]
    assert g == ["g1"]
    assert sorted(projects) == ["global", "proj-a"]


def test_project_change_callbacks():
    store = ProjectScopedStore(MemoryBackend())
    seen = []
    store.on_project_change(lambda new, old: seen.append((new, old)))
    store.handle_project_change("p1")
    store.handle_project_change("p2")
    assert seen == [("p1", None), ("p2", "p1")]
    assert store.get_project_key() == "p2"


def test_clear_chat_history_keeps_app_state():
    backend = MemoryBackend()
    store = ProjectScopedStore(backend)

    async def run():
        await store.set_chat_history([_session("c1")])
        await store.set_app_state({"activeChatId": "c1", "selectedProvider": "openai"})
        await store.clear_chat_history()
        return await store.get_chat_history(), await store.get_app_state()

    history, state = asyncio.run(run())
    assert history == []
    assert state.active_chat_id == "c1"
    assert "chatHistory" not in json.loads(backend.dumps())["projects"]["global"]


def test_clear_current_project_and_settings():
    backend = MemoryBackend()
    store = ProjectScopedStore(backend)

    async def run():
        await store.set_settings({"providers": {"openai": {"apiKey": "sk"}}})
        store.handle_project_change("p")
        await store.set_chat_history([_session("c1")])
        await store.clear_current_project_data()
        assert "p" not in await store.get_project_list()
        await store.clear_settings()
        return await store.get_settings()

    settings = asyncio.run(run())
    assert settings.providers.api_key_for("openai") == ""
    assert json.loads(backend.dumps())["globalSettings"] == {}


def test_write_uses_project_key_from_call_start():
    backend = GatedBackend()
    store = ProjectScopedStore(backend)

    async def run():
        write = asyncio.ensure_future(store.set_chat_history([_session("early")]))
        await asyncio.sleep(0)
        store.handle_project_change("later")
        backend.gate.set()
        await write
        return json.loads(backend.dumps())

    doc = asyncio.run(run())
    assert [s["id"] for s in doc["projects"]["global"]["chatHistory"]] == ["early"]
    assert "later" not in doc["projects"]


def test_external_change_replaces_cache():
    backend = MemoryBackend()
    first = ProjectScopedStore(backend)
    second = ProjectScopedStore(backend)
    notified = []
    second.on_storage_change(notified.append)
    own = []
    first.on_storage_change(own.append)

    async def run():
        await second.wait_until_ready()
        await first.set_chat_history([_session("x")])
        return await second.get_chat_history()

    history = asyncio.run(run())
    assert [s.id for s in history] == ["x"]
    assert len(notified) == 1
    assert own == []


def test_init_failure_falls_back_to_empty():
    store = ProjectScopedStore(FailingBackend(fail_read=True))

    async def run():
        return await store.get_settings(), await store.get_chat_history()

    settings, history = asyncio.run(run())
    assert store.state is StoreState.READY
    assert settings.chat_settings.max_messages == 25
    assert history == []


def test_write_failure_raises_storage_unavailable():
    store = ProjectScopedStore(FailingBackend(fail_write=True))
    with pytest.raises(StorageUnavailableError) as exc:
        asyncio.run(store.set_app_state({"activeChatId": "c"}))
    assert exc.value.code == "STORAGE_UNAVAILABLE"
    assert exc.value.http_status == 503


def test_json_file_backend_persists_across_stores():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = ProjectScopedStore(JsonFileBackend(root=root, key="chatio"))
        asyncio.run(store.set_chat_history([_session("c1", "hello")]))

        path = root / "chatio.json"
        assert path.exists()
        assert not list(root.glob("*.tmp"))

        reopened = ProjectScopedStore(JsonFileBackend(root=root, key="chatio"))
        history = asyncio.run(reopened.get_chat_history())
        assert [(s.id, s.title) for s in history] == [("c1", "hello")]


def test_json_file_backend_corrupt_file_falls_back():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d)
        (root / "chatio.json").write_text("[1, 2]", encoding="utf-8")
        store = ProjectScopedStore(JsonFileBackend(root=root, key="chatio"))
        assert asyncio.run(store.get_project_list()) == []


def test_history_can_be_written_to_another_project():
    backend = MemoryBackend()
    store = ProjectScopedStore(backend)

    async def run():
        store.handle_project_change("active")
        await store.set_chat_history_for_project("other", [_session("o1")])
        await store.set_chat_history_for_project(None, [_session("g1")])
        active = await store.get_chat_history()
        store.handle_project_change("other")
        other = [s.id for s in await store.get_chat_history()]
        return active, other

    active, other = asyncio.run(run())
    doc = json.loads(backend.dumps())
    assert active == []
    assert other == ["o1"]
    assert [s["id"] for s in doc["projects"]["global"]["chatHistory"]] == ["g1"]
    assert "active" not in doc["projects"]
