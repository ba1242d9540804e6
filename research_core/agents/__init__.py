"""对话编排层：模型调用、重试、重复调用保护、对话引擎与研究流程。"""
