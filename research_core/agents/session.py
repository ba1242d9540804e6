"""会话范围管理。

ResearchSession 持有已连接的工具服务器和模型 Provider，并维护当前的服务器范围：

- ALL_SERVERS：全部服务器 + 本地图表工具。
- 某个服务器名：仅该服务器的工具。

切换范围时重新构建注册表（注册表本身不可变），对话引擎与研究流程都从当前注册表派生。

prompt 与资源来自"目录服务器"：单服务器范围下即该服务器，全部范围下为第一个服务器。
"""

from typing import Any, Dict, List, Optional, Sequence

from research_core.config.settings import Settings, settings as default_settings
from research_core.domain.exceptions import BusinessError
from research_core.infrastructure.logging.logger import logger
from research_core.providers.base import ProviderClient
from research_core.tools.base import ToolProvider
from research_core.tools.charts import chart_tools
from research_core.tools.definitions import LocalTool, ServerPrompt, ServerResource, ToolDescriptor
from research_core.tools.invoker import ToolInvoker
from research_core.tools.registry import ToolRegistry
from .channel import ConfirmingChannel, HumanChannel
from .conversation_engine import ConversationEngine
from .loop_guard import LoopGuard
from .model_gateway import ModelGateway
from .research import ResearchAgent
from .server_prompts import PromptRunner
from .retry import RetryPolicy
from .trace import TraceRecorder

ALL_SERVERS = "__all__"


class ResearchSession:
    def __init__(
        self,
        providers: Sequence[ToolProvider],
        provider_client: ProviderClient,
        *,
        local_tools: Optional[Sequence[LocalTool]] = None,
        cfg: Settings = default_settings,
    ):
        self.providers: List[ToolProvider] = list(providers)
        self.provider_client = provider_client
        self._local_tools = list(local_tools) if local_tools is not None else chart_tools()
        self._cfg = cfg
        self.scope = ALL_SERVERS
        self._registry = self._build(ALL_SERVERS)

    @property
    def scope_names(self) -> List[str]:
        return [ALL_SERVERS] + [p.name for p in self.providers]

    @property
    def scope_label(self) -> str:
        return "All servers" if self.scope == ALL_SERVERS else self.scope

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def invoker(self) -> ToolInvoker:
        return ToolInvoker(self._registry)

    @property
    def tools(self) -> List[ToolDescriptor]:
        return self._registry.descriptors()

    def select(self, scope: str) -> ToolRegistry:
        if scope not in self.scope_names:
            raise BusinessError(code="UNKNOWN_SERVER", message=f"Unknown server: {scope}")
        self.scope = scope
        self._registry = self._build(scope)
        return self._registry

    def _build(self, scope: str) -> ToolRegistry:
        if scope == ALL_SERVERS:
            registry = ToolRegistry.build(self.providers, self._local_tools)
        else:
            registry = ToolRegistry.build([p for p in self.providers if p.name == scope])
        logger.info("Server scope selected", extra={"extra": {"scope": scope, "tool_count": len(registry)}})
        return registry

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self._cfg.max_model_attempts, backoff_ms=self._cfg.retry_backoff_ms)

    def gateway(self) -> ModelGateway:
        return ModelGateway(
            self.provider_client,
            self.invoker,
            model=self._cfg.default_model,
            temperature=self._cfg.temperature,
        )

    def engine(self, channel: HumanChannel) -> ConversationEngine:
        trace = TraceRecorder(self._cfg.trace_dir) if self._cfg.trace_dir else None
        return ConversationEngine(
            self.gateway(),
            self.tools,
            channel,
            retry=self.retry_policy(),
            loop_guard=LoopGuard(self._cfg.loop_guard_threshold),
            min_reply_words=self._cfg.min_reply_words,
            trace=trace,
        )

    def research_agent(self, channel: HumanChannel) -> ResearchAgent:
        return ResearchAgent(
            self._registry,
            self.providers,
            self.provider_client,
            channel,
            retry=self.retry_policy(),
            model=self._cfg.default_model,
            temperature=self._cfg.temperature,
        )

    # ---- 服务器 prompt 与资源 ----

    def catalog_provider(self) -> Optional[ToolProvider]:
        if self.scope == ALL_SERVERS:
            return self.providers[0] if self.providers else None
        return next((p for p in self.providers if p.name == self.scope), None)

    def prompts(self) -> List[ServerPrompt]:
        provider = self.catalog_provider()
        if provider is None or not hasattr(provider, "list_prompts"):
            return []
        try:
            return provider.list_prompts()
        except BusinessError as exc:
            logger.info("Server prompts unavailable", extra={"extra": {"provider": provider.name, "error": exc.message}})
            return []

    def resources(self) -> List[ServerResource]:
        provider = self.catalog_provider()
        if provider is None or not hasattr(provider, "list_resources"):
            return []
        return provider.list_resources()

    def get_prompt(self, name: str, arguments: Dict[str, str]) -> List[str]:
        return self._require_catalog("get_prompt").get_prompt(name, arguments)

    def read_resource(self, uri: str) -> List[Dict[str, Any]]:
        return self._require_catalog("read_resource").read_resource(uri)

    def _require_catalog(self, action: str):
        provider = self.catalog_provider()
        if provider is None or not hasattr(provider, action):
            raise BusinessError(code="UNSUPPORTED_ACTION", message=f"{self.scope_label} does not support {action}")
        return provider

    def prompt_runner(self, channel: ConfirmingChannel) -> PromptRunner:
        return PromptRunner(
            ModelGateway(self.provider_client, model=self._cfg.default_model, temperature=self._cfg.temperature),
            channel,
            retry=self.retry_policy(),
        )

    def enable_sampling(self, channel: ConfirmingChannel) -> None:
        """服务器发起的 sampling 请求经确认后由当前模型回答。"""
        runner = self.prompt_runner(channel)
        for provider in self.providers:
            if hasattr(provider, "sampler"):
                provider.sampler = runner
                provider.sampling_model = self._cfg.default_model

    def close(self) -> None:
        for provider in self.providers:
            close = getattr(provider, "close", None)
            if callable(close):
                close()
