"""MCP 工具服务器适配器。

McpToolProvider 是 ToolProvider 的 MCP 实现（同步外观）：

- 每个 Provider 在自己的后台线程里跑一个 asyncio 事件循环。
- 一个常驻任务持有 transport 与 ClientSession 的上下文，直到 close()。
- list_tools / call_tool 通过 run_coroutine_threadsafe 提交到该循环并阻塞等待，超过 call_timeout 即取消。
- 服务器的 prompt 与资源（含 URI 模板）也通过同一会话读取。
- 服务器发起的 sampling 请求交给 sampler 回调（由会话注入，通常是"确认后调用模型"）。

支持 stdio（本地子进程，如 Brave Search）与 streamable http（如 Alphavantage）两种 transport。
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import os
import threading
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Tuple

from mcp import ClientSession, StdioServerParameters, types
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client
from pydantic import AnyUrl

from research_core.config.settings import Settings, settings as default_settings
from research_core.domain.exceptions import BusinessError, ProviderListError
from research_core.infrastructure.logging.logger import logger
from .definitions import ServerPrompt, ServerResource, ToolDescriptor

TransportType = Literal["stdio", "http"]
Sampler = Callable[[str], Optional[str]]


@dataclass
class McpServerConfig:
    """单个 MCP 服务器的连接配置。"""

    name: str
    type: TransportType
    command: Optional[str] = None
    args: List[str] = field(default_factory=list)
    env: Optional[Dict[str, str]] = None
    url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "McpServerConfig":
        name = str(data.get("name") or "").strip()
        if not name:
            raise BusinessError(code="INVALID_SERVER_CONFIG", message="MCP server config requires a name")
        transport = str(data.get("type") or ("http" if data.get("url") else "stdio")).lower()
        if transport not in ("stdio", "http"):
            raise BusinessError(code="INVALID_SERVER_CONFIG", message=f"Unknown transport type: {transport}")
        env = data.get("env")
        return cls(
            name=name,
            type=transport,  # type: ignore[arg-type]
            command=data.get("command"),
            args=[str(a) for a in data.get("args") or []],
            env={str(k): str(v) for k, v in env.items()} if isinstance(env, dict) else None,
            url=data.get("url"),
        )


def default_server_configs(cfg: Settings = default_settings) -> List[McpServerConfig]:
    """配置里没有 mcp_servers 时使用的内置服务器：网页搜索 + 金融数据。"""

    if cfg.mcp_servers:
        return [McpServerConfig.from_dict(item) for item in cfg.mcp_servers]
    return [
        McpServerConfig(
            name="Brave Search",
            type="stdio",
            command="npx",
            args=["-y", "@modelcontextprotocol/server-brave-search"],
            env={"BRAVE_API_KEY": cfg.brave_api_key or ""},
        ),
        McpServerConfig(
            name="Alphavantage",
            type="http",
            url=f"https://mcp.alphavantage.co/mcp?apikey={cfg.alphavantage_api_key}",
        ),
    ]


class McpToolProvider:
    """单个 MCP 服务器的同步客户端。"""

    def __init__(
        self,
        config: McpServerConfig,
        *,
        startup_timeout: Optional[float] = None,
        call_timeout: Optional[float] = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self._startup_timeout = startup_timeout or default_settings.mcp_startup_timeout
        self._call_timeout = call_timeout or default_settings.mcp_call_timeout
        self._session: Optional[ClientSession] = None
        self._startup_error: Optional[BaseException] = None
        self._closing: Optional[asyncio.Event] = None
        self._ready = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._serve_future = None
        self.sampler: Optional[Sampler] = None
        self.sampling_model = "research-chat"

    # ---- 生命周期 ----

    def connect(self) -> "McpToolProvider":
        if self._session is not None:
            return self
        self._loop = asyncio.new_event_loop()
        loop_ready = threading.Event()

        def _run_loop() -> None:
            asyncio.set_event_loop(self._loop)
            loop_ready.set()
            self._loop.run_forever()

        self._thread = threading.Thread(target=_run_loop, name=f"mcp-{self.name}", daemon=True)
        self._thread.start()
        loop_ready.wait(timeout=5.0)

        self._serve_future = asyncio.run_coroutine_threadsafe(self._serve(), self._loop)
        ready = self._ready.wait(timeout=self._startup_timeout)
        if not ready or self._session is None:
            reason = self._startup_error or TimeoutError(f"no response within {self._startup_timeout}s")
            self.close()
            raise BusinessError(
                code="MCP_CONNECT_ERROR",
                message=f"Failed to connect to {self.name}: {reason}",
                provider=self.name,
            )
        logger.info("MCP server connected", extra={"extra": {"provider": self.name, "transport": self.config.type}})
        return self

    async def _serve(self) -> None:
        self._closing = asyncio.Event()
        try:
            async with AsyncExitStack() as stack:
                read_stream, write_stream = await self._open_transport(stack)
                session = await stack.enter_async_context(
                    ClientSession(read_stream, write_stream, sampling_callback=self._sample)
                )
                await session.initialize()
                self._session = session
                self._ready.set()
                await self._closing.wait()
        except Exception as exc:  # noqa: BLE001 - 启动失败由 connect() 转换为 BusinessError
            self._startup_error = exc
            logger.warning("MCP session ended with error", extra={"extra": {"provider": self.name, "error": str(exc)}})
        finally:
            self._session = None
            self._ready.set()

    async def _open_transport(self, stack: AsyncExitStack) -> Tuple[Any, Any]:
        if self.config.type == "stdio":
            if not self.config.command:
                raise BusinessError(code="INVALID_SERVER_CONFIG", message=f"{self.name}: stdio server requires a command")
            params = StdioServerParameters(command=self.config.command, args=self.config.args, env=self.config.env)
            errlog = stack.enter_context(open(os.devnull, "w", encoding="utf-8"))
            read_stream, write_stream = await stack.enter_async_context(stdio_client(params, errlog=errlog))
            return read_stream, write_stream
        if not self.config.url:
            raise BusinessError(code="INVALID_SERVER_CONFIG", message=f"{self.name}: http server requires a url")
        read_stream, write_stream, _get_session_id = await stack.enter_async_context(streamablehttp_client(self.config.url))
        return read_stream, write_stream

    def close(self) -> None:
        loop = self._loop
        if loop is None:
            return
        if self._closing is not None:
            loop.call_soon_threadsafe(self._closing.set)
        if self._serve_future is not None:
            try:
                self._serve_future.result(timeout=10.0)
            except Exception as exc:  # noqa: BLE001 - 关闭阶段只记录
                logger.warning("MCP session close failed", extra={"extra": {"provider": self.name, "error": str(exc)}})
        loop.call_soon_threadsafe(loop.stop)
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self._loop = None
        self._thread = None
        self._serve_future = None

    # ---- ToolProvider 协议 ----

    def list_tools(self) -> List[ToolDescriptor]:
        try:
            result = self._submit(self._require_session().list_tools(), "list_tools")
        except Exception as exc:  # noqa: BLE001
            raise ProviderListError(self.name, str(exc)) from exc
        return [tool_to_descriptor(tool) for tool in getattr(result, "tools", None) or []]

    def call_tool(self, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
        result = self._submit(self._require_session().call_tool(name, arguments=dict(arguments or {})), name)
        return result_to_payload(result)

    # ---- prompt 与资源 ----

    def list_prompts(self) -> List[ServerPrompt]:
        result = self._request(lambda s: s.list_prompts(), "list_prompts")
        return [prompt_to_entry(p) for p in getattr(result, "prompts", None) or []]

    def get_prompt(self, name: str, arguments: Dict[str, str]) -> List[str]:
        """返回 prompt 展开后的文本消息（非文本消息跳过）。"""
        result = self._request(lambda s: s.get_prompt(name, arguments=dict(arguments)), name)
        return list(message_texts(getattr(result, "messages", None) or []))

    def list_resources(self) -> List[ServerResource]:
        """资源在前、URI 模板在后；服务器不支持的那一类按空处理。"""
        entries: List[ServerResource] = []
        try:
            result = self._request(lambda s: s.list_resources(), "list_resources")
            entries.extend(resource_to_entry(r) for r in getattr(result, "resources", None) or [])
        except BusinessError as exc:
            logger.info("MCP resources unavailable", extra={"extra": {"provider": self.name, "error": exc.message}})
        try:
            result = self._request(lambda s: s.list_resource_templates(), "list_resource_templates")
            entries.extend(resource_to_entry(t) for t in getattr(result, "resourceTemplates", None) or [])
        except BusinessError as exc:
            logger.info("MCP resource templates unavailable", extra={"extra": {"provider": self.name, "error": exc.message}})
        return entries

    def read_resource(self, uri: str) -> List[Dict[str, Any]]:
        result = self._request(lambda s: s.read_resource(AnyUrl(uri)), uri)
        return [
            content.model_dump(mode="json", exclude_none=True) if hasattr(content, "model_dump") else dict(vars(content))
            for content in getattr(result, "contents", None) or []
        ]

    # ---- sampling ----

    async def _sample(self, context: Any, params: types.CreateMessageRequestParams):
        sampler = self.sampler
        if sampler is None:
            return types.ErrorData(code=types.INVALID_REQUEST, message="Sampling is not enabled for this client")
        replies: List[str] = []
        for text in message_texts(params.messages):
            try:
                reply = await asyncio.to_thread(sampler, text)
            except BusinessError as exc:
                return types.ErrorData(code=types.INTERNAL_ERROR, message=exc.message)
            if reply is not None:
                replies.append(reply)
        logger.info("MCP sampling request served", extra={"extra": {"provider": self.name, "reply_count": len(replies)}})
        return types.CreateMessageResult(
            role="assistant",
            model=self.sampling_model,
            stopReason="endTurn",
            content=types.TextContent(type="text", text="\n".join(replies)),
        )

    # ---- 内部 ----

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise BusinessError(code="MCP_NOT_CONNECTED", message=f"MCP server '{self.name}' not connected")
        return self._session

    def _request(self, build: Callable[[ClientSession], Any], label: str) -> Any:
        """非工具请求：协议层异常统一转换为 BusinessError。"""
        try:
            return self._submit(build(self._require_session()), label)
        except BusinessError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise BusinessError(
                code="MCP_REQUEST_ERROR",
                message=f"{self.name}: {label} failed: {exc}",
                provider=self.name,
            ) from exc

    def _submit(self, coro, label: str):
        if self._loop is None:
            coro.close()
            raise BusinessError(code="MCP_NOT_CONNECTED", message=f"MCP server '{self.name}' not connected")
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return fut.result(timeout=self._call_timeout)
        except concurrent.futures.TimeoutError:
            fut.cancel()
            logger.warning(
                "MCP request timed out",
                extra={"extra": {"provider": self.name, "request": label, "timeout_s": self._call_timeout}},
            )
            raise BusinessError(
                code="MCP_TIMEOUT",
                message=f"{self.name}: {label} timed out after {self._call_timeout}s",
                provider=self.name,
            ) from None


def tool_to_descriptor(tool: Any) -> ToolDescriptor:
    """把 MCP Tool 转成 ToolDescriptor。"""

    schema = getattr(tool, "inputSchema", None)
    if not isinstance(schema, dict):
        schema = {"type": "object", "properties": {}}
    annotations = getattr(tool, "annotations", None)
    title = getattr(annotations, "title", None) or getattr(tool, "title", None)
    return ToolDescriptor(
        name=str(tool.name),
        description=str(getattr(tool, "description", None) or ""),
        input_schema=dict(schema),
        display_title=title if isinstance(title, str) else None,
    )


def prompt_to_entry(prompt: Any) -> ServerPrompt:
    return ServerPrompt(
        name=str(prompt.name),
        description=str(getattr(prompt, "description", None) or ""),
        arguments=[str(arg.name) for arg in getattr(prompt, "arguments", None) or []],
    )


def resource_to_entry(resource: Any) -> ServerResource:
    """Resource 与 ResourceTemplate 共用：有 uriTemplate 字段的是模板。"""

    template = getattr(resource, "uriTemplate", None)
    uri = template if template is not None else getattr(resource, "uri", "")
    return ServerResource(
        name=str(getattr(resource, "name", None) or uri),
        uri=str(uri),
        description=str(getattr(resource, "description", None) or ""),
        template=template is not None,
    )


def message_texts(messages: Iterable[Any]) -> Iterable[str]:
    """依次产出 PromptMessage / SamplingMessage 中的文本内容。"""

    for message in messages:
        content = getattr(message, "content", None)
        blocks = content if isinstance(content, list) else [content]
        for block in blocks:
            if getattr(block, "type", None) == "text" and isinstance(getattr(block, "text", None), str):
                yield block.text


def result_to_payload(result: Any) -> Dict[str, Any]:
    """把 CallToolResult 转成项目内统一的载荷字典。"""

    blocks: List[Dict[str, Any]] = []
    for block in getattr(result, "content", None) or []:
        text = getattr(block, "text", None)
        if isinstance(text, str):
            blocks.append({"type": "text", "text": text})
        elif hasattr(block, "model_dump"):
            blocks.append(block.model_dump(mode="json", exclude_none=True))
        else:
            blocks.append({"type": "unknown", "value": str(block)})
    payload: Dict[str, Any] = {"content": blocks, "isError": bool(getattr(result, "isError", False))}
    structured = getattr(result, "structuredContent", None)
    if isinstance(structured, dict) and structured:
        payload["structuredContent"] = structured
    return payload


def connect_providers(
    configs: List[McpServerConfig],
) -> Tuple[List[McpToolProvider], Dict[str, str]]:
    """依次连接所有服务器，返回 (已连接 Provider, {失败服务器: 原因})。"""

    providers: List[McpToolProvider] = []
    failures: Dict[str, str] = {}
    for cfg in configs:
        provider = McpToolProvider(cfg)
        try:
            providers.append(provider.connect())
        except BusinessError as exc:
            failures[cfg.name] = exc.message
            logger.error("MCP server unavailable", extra={"extra": {"provider": cfg.name, "error": exc.message}})
    return providers, failures
