"""基于 rich 的控制台交互通道。"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, Prompt


class ConsoleChannel:
    """HumanChannel 的控制台实现。

    模型输出可能包含方括号（引用编号 [1] 等），显示时关闭 rich markup 解析。
    """

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def prompt(self, message: str) -> str:
        return Prompt.ask(f"[blue]{escape(message)}[/blue]", console=self.console)

    def confirm(self, message: str, default: bool = True) -> bool:
        return Confirm.ask(f"[blue]{escape(message)}[/blue]", default=default, console=self.console)

    def display(self, text: str) -> None:
        self.console.print(text, markup=False, highlight=False)

    def notice(self, text: str, style: str = "yellow") -> None:
        self.console.print(f"[{style}]{escape(text)}[/{style}]")
