"""领域层模型与异常。

包含：
- models: ChatMessage / ChatRequest / ChatResult 以及 ModelTurnResult。
- conversation: ConversationState 与终态定义。
- exceptions: 业务异常类型定义。
"""
