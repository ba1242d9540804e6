"""MCP 服务器 prompt / 资源的交互处理。

- fill_uri_template：逐个询问 URI 模板中的 {param} 并代入。
- format_resource_contents：资源首个文本内容若是 JSON 则缩进美化。
- PromptRunner：显示服务器给出的 prompt 文本，确认后交给模型生成（不带工具）。
  既用于 Prompts 菜单，也作为服务器 sampling 请求的回调。
"""

import json
import re
from typing import Any, Dict, List, Optional

from research_core.infrastructure.logging.logger import logger
from .channel import ConfirmingChannel, HumanChannel
from .model_gateway import ModelGateway
from .retry import RetryPolicy

_TEMPLATE_PARAM_RE = re.compile(r"\{([^}]+)\}")

RUN_PROMPT_QUESTION = "Would you like to run the above prompt"


def template_params(uri: str) -> List[str]:
    return _TEMPLATE_PARAM_RE.findall(uri)


def fill_uri_template(uri: str, channel: HumanChannel) -> str:
    filled = uri
    for name in template_params(uri):
        value = channel.prompt(f"Enter value for {name}:")
        filled = filled.replace("{" + name + "}", value, 1)
    return filled


def format_resource_contents(contents: List[Dict[str, Any]]) -> str:
    if not contents:
        return ""
    first = contents[0]
    text = first.get("text")
    if not isinstance(text, str):
        return json.dumps(first, ensure_ascii=False, indent=2)
    try:
        return json.dumps(json.loads(text), ensure_ascii=False, indent=2)
    except ValueError:
        return text


class PromptRunner:
    """确认后运行一段 prompt 文本；用户拒绝时返回 None。"""

    def __init__(self, gateway: ModelGateway, channel: ConfirmingChannel, *, retry: RetryPolicy):
        self._gateway = gateway
        self._channel = channel
        self._retry = retry

    def __call__(self, text: str) -> Optional[str]:
        self._channel.display(text)
        if not self._channel.confirm(RUN_PROMPT_QUESTION, default=True):
            return None
        logger.info("Running server prompt", extra={"extra": {"prompt_chars": len(text)}})
        return self._retry.call(self._gateway.generate, text).text
