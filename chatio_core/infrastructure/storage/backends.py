"""宿主持久化原语。

StorageBackend 只认识“一份不透明的 JSON 文档”：整体读、整体写，
并在有人写入新文档时通知其它订阅者。ProjectScopedStore 是它唯一的使用者。

- JsonFileBackend: 写到 {root}/{key}.json，临时文件 + os.replace 保证原子替换。
- MemoryBackend: 进程内存，主要用于测试以及多个 store 实例共享同一份文档。
"""

import asyncio
import copy
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from uuid import uuid4

from chatio_core.config.settings import settings


Document = Dict[str, Any]
ChangeListener = Callable[[Optional[Document]], None]


class StorageBackend(Protocol):
    async def read(self) -> Optional[Document]:
        ...

    async def write(self, document: Document, origin: object = None) -> None:
        ...

    def subscribe(self, listener: ChangeListener, owner: object = None) -> None:
        ...


class _Subscribers:
    """订阅者列表；写入方自己不会收到通知。"""

    def __init__(self):
        self._items: List[Tuple[object, ChangeListener]] = []

    def add(self, listener: ChangeListener, owner: object) -> None:
        self._items.append((owner, listener))

    def notify(self, document: Optional[Document], origin: object) -> None:
        for owner, listener in list(self._items):
            if origin is not None and owner is origin:
                continue
            listener(copy.deepcopy(document))


class MemoryBackend:
    def __init__(self, initial: Optional[Document] = None):
        self._data = copy.deepcopy(initial)
        self._subscribers = _Subscribers()

    async def read(self) -> Optional[Document]:
        return copy.deepcopy(self._data)

    async def write(self, document: Document, origin: object = None) -> None:
        self._data = copy.deepcopy(document)
        self._subscribers.notify(self._data, origin)

    def subscribe(self, listener: ChangeListener, owner: object = None) -> None:
        self._subscribers.add(listener, owner)

    def dumps(self) -> str:
        """当前文档的 JSON 文本，便于比较是否逐字节一致。"""

        return json.dumps(self._data, ensure_ascii=False)


class JsonFileBackend:
    def __init__(self, root: str | Path | None = None, key: Optional[str] = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._path = self._root / f"{key or settings.storage_key}.json"
        self._subscribers = _Subscribers()

    @property
    def path(self) -> Path:
        return self._path

    async def read(self) -> Optional[Document]:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, document: Document, origin: object = None) -> None:
        await asyncio.to_thread(self._write_sync, document)
        self._subscribers.notify(document, origin)

    def subscribe(self, listener: ChangeListener, owner: object = None) -> None:
        self._subscribers.add(listener, owner)

    def _read_sync(self) -> Optional[Document]:
        if not self._path.exists():
            return None
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if data is not None and not isinstance(data, dict):
            raise ValueError(f"{self._path} does not hold a JSON object")
        return data

    def _write_sync(self, document: Document) -> None:
        self._root.mkdir(parents=True, exist_ok=True)
        tmp_path = self._root / f"{self._path.stem}.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
