"""人机交互通道协议。

对话引擎只通过 prompt / display 两个动作与人交互，具体实现（rich 控制台、测试替身等）由上层注入。
"""

from typing import Protocol


class HumanChannel(Protocol):
    def prompt(self, message: str) -> str:
        """阻塞读取一行输入。"""
        ...

    def display(self, text: str) -> None:
        ...


class ConfirmingChannel(HumanChannel, Protocol):
    """额外支持是/否确认的通道（运行服务器 prompt 前使用）。"""

    def confirm(self, message: str, default: bool = True) -> bool:
        ...
