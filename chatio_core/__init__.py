"""Chatio Core 顶层包。

该包提供多厂商聊天插件的核心实现，
包括配置加载、领域模型、Provider 适配与分发、
按项目分区的持久化存储，以及给 UI 层使用的 ChatService。
"""

from chatio_core.api.service import ChatService, create_service

__all__ = ["ChatService", "create_service"]
