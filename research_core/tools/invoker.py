from typing import Any, Dict

from research_core.domain.exceptions import InvocationError
from research_core.infrastructure.logging.logger import logger
from .definitions import LocalRoute, ToolCall, ToolResult, text_payload
from .registry import ToolRegistry


class ToolInvoker:
    """按注册表路由工具调用：本地工具直接执行，远端工具转给所属 Provider。"""

    def __init__(self, registry: ToolRegistry):
        self._registry = registry

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def invoke(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        entry = self._registry.lookup(name)
        try:
            if isinstance(entry.route, LocalRoute):
                return entry.route.func(arguments)
            return entry.route.provider.call_tool(name, arguments)
        except InvocationError:
            raise
        except Exception as exc:  # noqa: BLE001 - 统一转换为 InvocationError
            raise InvocationError(name, str(exc)) from exc

    def execute(self, call: ToolCall) -> ToolResult:
        """执行一次模型发起的调用；失败时把错误文本作为结果返回给模型。"""
        try:
            payload = self.invoke(call.name, call.arguments)
        except InvocationError as exc:
            logger.warning(
                "Tool invocation failed",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "error": exc.message}},
            )
            payload = text_payload(f"Error: {exc.message}", is_error=True)
        return ToolResult(call_id=call.id, name=call.name, payload=payload)
