"""工具系统。

该包下的模块负责：
- 定义工具描述符与调用/结果结构 (definitions)。
- 定义工具 Provider 协议 (base) 及其 MCP 实现 (mcp_provider)。
- 合并多个 Provider 的工具 (registry) 并路由执行 (invoker)。
- 提供不依赖远端服务的本地图表工具 (charts)。
"""
