"""工具数据结构定义。

这些 dataclass 描述了"工具调用"的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDescriptor / ToolParam）。
- 在 ModelGateway 中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
- 在菜单中列出服务器提供的 prompt 与资源（ServerPrompt / ServerResource）。

工具结果载荷沿用 MCP 的形状：{"content": [{"type": "text", "text": ...}], "isError": bool}。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from research_core.tools.base import ToolProvider


ToolFunc = Callable[[Dict[str, Any]], Dict[str, Any]]


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义（由 input_schema 派生）。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolDescriptor:
    """一个可供 LLM 调用的工具的不可变元数据。

    input_schema 为 JSON Schema 对象：{"type": "object", "properties": {...}, "required": [...]}。
    schema 只用于提示模型以及手动输入参数，本地不做校验。
    """

    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    display_title: Optional[str] = None

    @property
    def title(self) -> str:
        return self.display_title or self.name

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required") or [])

    @property
    def params(self) -> Dict[str, ToolParam]:
        properties = self.input_schema.get("properties") or {}
        required = set(self.required)
        return {
            name: ToolParam(
                name=name,
                description=str((schema or {}).get("description") or ""),
                required=name in required,
                schema=dict(schema or {}),
            )
            for name, schema in properties.items()
        }


@dataclass(frozen=True)
class LocalTool:
    """不依赖任何远端服务器的本地能力（例如图表工具）。"""

    descriptor: ToolDescriptor
    func: ToolFunc


@dataclass(frozen=True)
class LocalRoute:
    func: ToolFunc


@dataclass(frozen=True)
class RemoteRoute:
    provider: "ToolProvider"


ToolRoute = Union[LocalRoute, RemoteRoute]


@dataclass(frozen=True)
class ToolEntry:
    """注册表中的一项：有效描述符 + 构建时确定的路由。"""

    descriptor: ToolDescriptor
    route: ToolRoute

    @property
    def is_local(self) -> bool:
        return isinstance(self.route, LocalRoute)


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class ToolResult:
    """工具执行结果的封装。"""

    call_id: str
    name: str
    payload: Dict[str, Any]

    @property
    def content(self) -> str:
        return payload_text(self.payload)

    @property
    def is_error(self) -> bool:
        return bool(self.payload.get("isError"))


@dataclass(frozen=True)
class ServerPrompt:
    """MCP 服务器声明的 prompt 模板。"""

    name: str
    description: str = ""
    arguments: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ServerResource:
    """MCP 服务器声明的资源；template 为 True 时 uri 是带 {param} 的 URI 模板。"""

    name: str
    uri: str
    description: str = ""
    template: bool = False


def text_payload(text: str, is_error: bool = False) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


def payload_text(payload: Any) -> str:
    """取载荷中第一个文本块；没有时退回整个载荷的 JSON。"""
    if isinstance(payload, dict):
        content = payload.get("content")
        if isinstance(content, list) and content:
            first = content[0]
            if isinstance(first, dict) and first.get("text"):
                return str(first["text"])
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


def title_from_name(name: str) -> str:
    """create_chart -> Create Chart"""
    return " ".join(part[:1].upper() + part[1:] for part in name.split("_") if part)
