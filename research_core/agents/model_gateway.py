"""模型调用能力。

ModelGateway.generate(prompt, tools) 把"让模型生成文本，必要时调用工具"封装成一次调用：

1. 以单条 user 消息发送完整 transcript（tools 为 None 时禁用工具）。
2. 若模型返回 tool_calls，按调用顺序逐个通过 ToolInvoker 执行。
3. 返回 ModelTurnResult：文本 + 本次执行过的工具调用及其原始结果。

工具执行失败不会抛出，而是把错误文本作为该工具的结果返回，由对话引擎和模型自行处理。
"""

from typing import List, Optional

from research_core.domain.models import ChatMessage, ChatRequest, ChatResult, ModelTurnResult, ToolInvocation
from research_core.infrastructure.logging.logger import logger
from research_core.providers.base import ProviderClient
from research_core.tools.definitions import ToolDescriptor, text_payload
from research_core.tools.invoker import ToolInvoker


class ModelGateway:
    def __init__(
        self,
        provider_client: ProviderClient,
        invoker: Optional[ToolInvoker] = None,
        *,
        provider: Optional[str] = None,
        model: str = "research-chat",
        temperature: float = 0.3,
    ):
        self._provider_client = provider_client
        self._invoker = invoker
        self._provider = provider or provider_client.name
        self._model = model
        self._temperature = temperature

    def generate(self, prompt: str, tools: Optional[List[ToolDescriptor]] = None) -> ModelTurnResult:
        req = ChatRequest(
            provider=self._provider,
            model=self._model,
            messages=[ChatMessage(role="user", content=prompt)],
            temperature=self._temperature,
            tools=list(tools) if tools else None,
            tool_choice="auto" if tools else "none",
        )
        logger.info(
            "Calling provider",
            extra={
                "extra": {
                    "provider": self._provider,
                    "model": self._model,
                    "prompt_chars": len(prompt),
                    "tool_count": len(tools or []),
                }
            },
        )
        result: ChatResult = self._provider_client.chat(req)
        if not result.choices:
            return ModelTurnResult(usage=result.usage)
        message = result.choices[0].message
        invocations: List[ToolInvocation] = []
        for call in message.tool_calls or []:
            if self._invoker is None or not tools:
                logger.warning("Model requested a tool while tools are disabled", extra={"extra": {"tool_name": call.name}})
                payload = text_payload("Error: tools are disabled for this request", is_error=True)
            else:
                logger.info(
                    "Tool call received",
                    extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "tool_args": call.arguments}},
                )
                payload = self._invoker.execute(call).payload
            invocations.append(ToolInvocation(tool_name=call.name, arguments=call.arguments, result=payload))
        return ModelTurnResult(text=message.content or "", invocations=invocations, usage=result.usage)
