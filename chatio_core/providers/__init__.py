"""LLM Provider 集成层。

该包下的模块负责：
- 定义适配器协议与公共 HTTP 逻辑 (base)。
- 各厂商的具体实现 (openai_client、anthropic_client、google_client、deepseek_client、local_client)。
- 按 Provider 标识分发 (dispatcher)。
- 图片能力表 (capabilities) 与内置模型目录 (registry)。
"""

from chatio_core.config.settings import settings
from chatio_core.providers.anthropic_client import AnthropicClient
from chatio_core.providers.base import ProviderAdapter
from chatio_core.providers.deepseek_client import DeepSeekClient
from chatio_core.providers.dispatcher import ProviderDispatcher
from chatio_core.providers.google_client import GoogleClient
from chatio_core.providers.local_client import LocalClient
from chatio_core.providers.openai_client import OpenAIClient


ADAPTER_CLASSES = (OpenAIClient, AnthropicClient, GoogleClient, DeepSeekClient, LocalClient)


def create_dispatcher(config=None) -> ProviderDispatcher:
    """用五个内置适配器构造分发器，默认取全局配置。"""

    cfg = config or settings
    return ProviderDispatcher(cls(cfg) for cls in ADAPTER_CLASSES)


def create_provider(name: str, config=None) -> ProviderAdapter:
    """根据名称创建单个适配器实例。"""

    return create_dispatcher(config).get_adapter(name)


__all__ = [
    "ADAPTER_CLASSES",
    "ProviderAdapter",
    "ProviderDispatcher",
    "create_dispatcher",
    "create_provider",
]
