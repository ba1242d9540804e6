"""工具 Provider 抽象接口。

注册表与调用器不直接依赖 MCP SDK，而是依赖此协议：

- 每个远端服务（Brave Search、Alphavantage 等）实现一个 ToolProvider。
- list_tools 可能失败，失败的 Provider 在注册表里贡献零个工具。
- call_tool 原样透传 arguments，返回原始结果载荷。
"""

from typing import Any, Dict, List, Protocol

from research_core.tools.definitions import ToolDescriptor


class ToolProvider(Protocol):
    """工具服务器客户端协议。"""

    name: str

    def list_tools(self) -> List[ToolDescriptor]:
        ...

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        ...
