"""对话状态模型。

一次用户查询对应一个 ConversationState，由对话引擎独占并在每轮模型响应后修改；
对话进入终态后即被丢弃，不做持久化。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal

Speaker = Literal["User", "Assistant"]


class TerminalState(str, Enum):
    DONE = "done"
    ABORTED = "aborted"
    LOOP_PREVENTED = "loop_prevented"


@dataclass
class TranscriptEntry:
    speaker: Speaker
    text: str

    def render(self) -> str:
        return f"{self.speaker}: {self.text}"


@dataclass
class ConversationState:
    """对话引擎的可变核心状态。

    Attributes:
        entries: 有序 transcript，每条带 User / Assistant 标签。
        last_tool_signature: 上一轮调用的工具名签名（逗号拼接），无则为空串。
        consecutive_repeat_count: 连续相同签名的次数（首次出现记为 0）。
        turn_count: 已发起的主模型调用轮数。
    """

    entries: List[TranscriptEntry] = field(default_factory=list)
    last_tool_signature: str = ""
    consecutive_repeat_count: int = 0
    turn_count: int = 0

    @classmethod
    def start(cls, query: str) -> "ConversationState":
        state = cls()
        state.append_user(query)
        return state

    @property
    def transcript(self) -> str:
        """完整 transcript 文本，每次模型调用都会整体重放。"""
        return "\n".join(entry.render() for entry in self.entries)

    def append_user(self, text: str) -> None:
        self.entries.append(TranscriptEntry(speaker="User", text=text))

    def append_assistant(self, text: str) -> None:
        self.entries.append(TranscriptEntry(speaker="Assistant", text=text))


@dataclass
class ConversationOutcome:
    """对话结束时返回给调用方（菜单层）的结果。"""

    state: TerminalState
    reply: str
    conversation: ConversationState
