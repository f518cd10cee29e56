"""图片能力表。

按 (provider, model) 判断能否发送图片附件。模型匹配是大小写不敏感的子串匹配，
两个方向都算命中，以兼容带版本后缀的模型名（如 gpt-4o-mini、llava:13b）。
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class ImageSupport:
    supported: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.supported


# provider -> (支持图片的模型片段, 不支持时的提示)
_VISION_MODELS: Dict[str, Tuple[Tuple[str, ...], str]] = {
    "openai": (
        ("gpt-4o", "gpt-4-turbo", "gpt-4.1", "gpt-5", "o1", "o3", "o4"),
        "This OpenAI model does not accept images. Use GPT-4o, GPT-4 Turbo or GPT-4.1 for image analysis.",
    ),
    "anthropic": (
        ("claude-3", "claude-sonnet-4", "claude-opus-4", "claude-haiku-4"),
        "This Claude model does not accept images. Use a Claude 3 or newer model for image analysis.",
    ),
    "google": (
        ("gemini",),
        "This Google model does not accept images. Use a Gemini model for image analysis.",
    ),
    "deepseek": (
        (),
        "DeepSeek models do not support image input. Switch to OpenAI, Anthropic or Google to analyze images.",
    ),
    "local": (
        ("llava", "llama3.2-vision", "bakllava", "moondream", "minicpm-v"),
        "This local model does not accept images. Pull a vision model such as llava or llama3.2-vision.",
    ),
}


def _matches(pattern: str, model: str) -> bool:
    return pattern in model or model in pattern


def supports_images(provider: str, model: str) -> ImageSupport:
    """查询 (provider, model) 是否支持图片，不支持时附带原因。"""

    entry = _VISION_MODELS.get((provider or "").lower())
    if entry is None:
        return ImageSupport(False, f"Unknown provider: {provider!r}")
    patterns, reason = entry
    model_key = (model or "").strip().lower()
    if not model_key:
        return ImageSupport(False, "No model selected.")
    if any(_matches(p, model_key) for p in patterns):
        return ImageSupport(True)
    return ImageSupport(False, reason)
