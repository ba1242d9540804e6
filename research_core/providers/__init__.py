"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置 (registry)。
- 提供 chat/completions 兼容厂商的具体实现 (chat_client)。
"""

from typing import Optional

from research_core.config.settings import settings
from research_core.domain.exceptions import ValidationError
from research_core.providers.base import ProviderClient
from research_core.providers.chat_client import GeminiClient, GlmClient, KimiClient

_CLIENTS = {"gemini": GeminiClient, "glm": GlmClient, "kimi": KimiClient}


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider；未知名称抛出 ValidationError。"""

    provider_name = (name or getattr(settings, "default_provider", "gemini")).strip().lower()
    client_cls = _CLIENTS.get(provider_name)
    if client_cls is None:
        raise ValidationError(
            code="UNKNOWN_PROVIDER",
            message=f"Unknown provider '{provider_name}'; expected one of: {', '.join(_CLIENTS)}",
        )
    return client_cls(settings)
