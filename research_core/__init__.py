"""Research Core 顶层包。

该包提供命令行研究助手的核心实现，
包括配置加载、领域模型、Provider 适配、MCP 工具系统、
多轮工具调用对话引擎与 Web 研究流程等能力。
"""

from research_core.agents.session import ALL_SERVERS, ResearchSession

__all__ = ["ALL_SERVERS", "ResearchSession"]
