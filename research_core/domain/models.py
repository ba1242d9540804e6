"""统一的对话与结果数据模型。

本模块定义了在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult: 从 Provider 解析后的统一响应结果。
- ToolInvocation / ModelTurnResult: 一次"让模型生成（可能顺带调用工具）"的结果，
  是对话引擎唯一关心的模型输出形态。

所有 Provider 适配器都只依赖这些模型，并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from research_core.tools.definitions import ToolCall, ToolDescriptor


Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，保存调用列表。
    """

    role: Role
    content: str
    tool_calls: Optional[List["ToolCall"]] = None


@dataclass
class ChatRequest:
    """一次完整的聊天请求。"""

    provider: str  # 逻辑 Provider 名，如 "gemini"
    model: str  # 逻辑模型名，如 "research-chat"
    messages: List[ChatMessage]
    temperature: float = 0.3
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    tools: Optional[List["ToolDescriptor"]] = None
    tool_choice: Literal["auto", "none", "required"] = "auto"


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。"""

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass
class ToolInvocation:
    """模型在一次生成中调用过的一个工具及其原始结果载荷。"""

    tool_name: str
    arguments: Dict[str, Any]
    result: Any

    @property
    def result_text(self) -> str:
        from research_core.tools.definitions import payload_text

        return payload_text(self.result)


@dataclass
class ModelTurnResult:
    """一次模型调用的结果：纯文本、工具调用、两者兼有或为空。"""

    text: str = ""
    invocations: List[ToolInvocation] = field(default_factory=list)
    usage: Optional[ChatUsage] = None

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def has_invocations(self) -> bool:
        return bool(self.invocations)

    @property
    def is_empty(self) -> bool:
        return not self.has_text and not self.has_invocations

    @property
    def tool_names(self) -> List[str]:
        """按调用顺序（而非完成顺序）返回工具名。"""
        return [inv.tool_name for inv in self.invocations if inv.tool_name]
