"""重复工具调用检测。

签名只由工具名按调用顺序拼接而成，不包含参数：两次参数不同的 search
也算相同签名。达到阈值后由对话引擎强制做一次禁用工具的最终调用。
"""

from typing import Sequence

from research_core.domain.conversation import ConversationState

LOOP_GUARD_THRESHOLD = 3


def tool_signature(tool_names: Sequence[str]) -> str:
    """["b", "a"] -> "b,a"（保持调用顺序，不排序）。"""
    return ",".join(name for name in tool_names if name)


def next_repeat_count(previous_signature: str, current_signature: str, previous_count: int) -> int:
    if current_signature and current_signature == previous_signature:
        return previous_count + 1
    return 0


class LoopGuard:
    def __init__(self, threshold: int = LOOP_GUARD_THRESHOLD):
        self.threshold = threshold

    def observe(self, state: ConversationState, signature: str) -> bool:
        """记录本轮签名并返回是否已触发阈值。"""
        count = next_repeat_count(state.last_tool_signature, signature, state.consecutive_repeat_count)
        state.consecutive_repeat_count = count
        if count == 0:
            state.last_tool_signature = signature
        return count >= self.threshold
