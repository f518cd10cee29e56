"""已知模型目录。

每个 Provider 内置一组常用模型，UI 在此基础上叠加用户自定义模型，
并用 modelConfigs 覆盖启用状态。内置模型默认启用。
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from chatio_core.domain.documents import ModelItem, ModelUserConfig


@dataclass(frozen=True)
class ProviderInfo:
    """某个 Provider 的展示信息与内置模型。"""

    name: str
    display_name: str
    models: Tuple[str, ...]
    reasoning_models: Tuple[str, ...] = ()


OPENAI = ProviderInfo(
    name="openai",
    display_name="OpenAI",
    models=("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo"),
)

ANTHROPIC = ProviderInfo(
    name="anthropic",
    display_name="Anthropic",
    models=(
        "claude-sonnet-4-5-20250929",
        "claude-sonnet-4-20250514",
        "claude-opus-4-1-20250805",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
        "claude-3-haiku-20240307",
    ),
    reasoning_models=("claude-sonnet-4-5-20250929", "claude-sonnet-4-20250514", "claude-opus-4-1-20250805"),
)

GOOGLE = ProviderInfo(
    name="google",
    display_name="Google",
    models=("gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-1.5-flash", "gemini-1.5-flash-8b"),
    reasoning_models=("gemini-2.5-pro", "gemini-2.5-flash"),
)

DEEPSEEK = ProviderInfo(
    name="deepseek",
    display_name="DeepSeek",
    models=("deepseek-chat", "deepseek-reasoner"),
    reasoning_models=("deepseek-reasoner",),
)

LOCAL = ProviderInfo(
    name="local",
    display_name="Local (Ollama)",
    models=(
        "llama3.2",
        "llama3.1",
        "mistral",
        "codellama",
        "phi3",
        "qwen2.5",
        "llava",
        "llama3.2-vision",
        "bakllava",
        "moondream",
        "minicpm-v",
    ),
)


PROVIDER_REGISTRY: Mapping[str, ProviderInfo] = {
    p.name: p for p in (OPENAI, ANTHROPIC, GOOGLE, DEEPSEEK, LOCAL)
}


def get_provider_info(name: str) -> ProviderInfo:
    """根据名称获取 ProviderInfo，名称不区分大小写。"""

    key = (name or "").lower()
    if key not in PROVIDER_REGISTRY:
        raise KeyError(f"Unknown provider: {name!r}")
    return PROVIDER_REGISTRY[key]


def _catalog() -> List[ModelItem]:
    items = []
    for info in PROVIDER_REGISTRY.values():
        for model in info.models:
            items.append(
                ModelItem(
                    id=f"{info.name}/{model}",
                    name=model,
                    provider=info.name,
                    is_reasoning_model=True if model in info.reasoning_models else None,
                )
            )
    return items


DEFAULT_MODELS: Tuple[ModelItem, ...] = tuple(_catalog())
DEFAULT_ENABLED_MODELS = frozenset(m.id for m in DEFAULT_MODELS)


def get_model_by_id(model_id: str) -> Optional[ModelItem]:
    return next((m for m in DEFAULT_MODELS if m.id == model_id), None)


@dataclass(frozen=True)
class ModelWithState:
    item: ModelItem
    enabled: bool


def models_with_state(
    custom_models: Sequence[ModelItem],
    model_configs: Mapping[str, ModelUserConfig],
) -> List[ModelWithState]:
    """合并内置与自定义模型；有用户配置时以配置为准，否则内置模型默认启用。"""

    result = []
    for item in list(DEFAULT_MODELS) + list(custom_models):
        config = model_configs.get(item.id)
        enabled = config.enabled if config is not None else item.id in DEFAULT_ENABLED_MODELS
        result.append(ModelWithState(item=item, enabled=enabled))
    return result


def filter_models(
    models: Iterable[ModelWithState],
    provider: Optional[str] = None,
    query: str = "",
) -> List[ModelWithState]:
    """按 Provider 与名称/ID 关键字（不区分大小写）过滤。"""

    q = query.strip().lower()
    result = []
    for m in models:
        if provider and m.item.provider != provider:
            continue
        if q and q not in m.item.name.lower() and q not in m.item.id.lower():
            continue
        result.append(m)
    return result


def provider_model_names(models: Iterable[ModelWithState]) -> Dict[str, List[str]]:
    """按 Provider 分组列出启用的模型名，供下拉框使用。"""

    grouped: Dict[str, List[str]] = {}
    for m in models:
        if m.enabled:
            grouped.setdefault(m.item.provider, []).append(m.item.name)
    return grouped
