"""提示词模板加载工具。

模板以 Markdown 文件形式按语言(locale) 放在 prompts/<locale>/ 目录下，
占位符使用 str.format 语法，例如 {query}、{output}。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_prompt(name: str, locale: str = "en") -> str:
    """按名称加载模板原文（不含首尾空白）。"""

    fname = PROMPTS_DIR / locale / f"{name}.md"
    return fname.read_text(encoding="utf-8").strip()


def render_prompt(name: str, locale: str = "en", **values: object) -> str:
    return load_prompt(name, locale).format(**values)
