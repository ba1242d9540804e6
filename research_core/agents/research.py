"""研究模式（Web + AI）。

流程：
1. 在当前服务器范围内寻找搜索类工具；找不到时退回到全部已连接服务器。
2. 逐个调用搜索工具，从原始文本里尽力抽取结果条目（JSON / 代码块 JSON / Markdown 链接 / 裸 URL）。
3. 按 URL（或标题）去重，保留前 top_k 条，生成带编号的来源列表。
4. 按详细程度模板拼出提示词，让模型只基于这些来源撰写 Markdown 答案；
   模型可以调用图表工具，生成的图表会被记录下来随报告返回。
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from research_core.domain.exceptions import BusinessError, FatalModelError
from research_core.infrastructure.logging.logger import logger
from research_core.prompts import render_prompt
from research_core.providers.base import ProviderClient
from research_core.tools.base import ToolProvider
from research_core.tools.charts import chart_tool_descriptors, comparison_datasets, default_chart_funcs
from research_core.tools.definitions import LocalTool, ToolDescriptor, ToolFunc, payload_text
from research_core.tools.invoker import ToolInvoker
from research_core.tools.registry import ToolRegistry
from .channel import HumanChannel
from .model_gateway import ModelGateway
from .retry import RetryPolicy

DEPTHS = ("Concise", "Detailed", "Deep-dive")
DEFAULT_TOP_K = 6

COUNT_KEYS = ("count", "num_results", "limit", "n", "k")
FRESHNESS_KEYS = ("recency", "freshness_days", "days", "time_range", "recency_days")
MIN_PAGE_SIZE = 12
FRESHNESS_DAYS = 365

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_MD_LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")
_URL_RE = re.compile(r"https?://[^\s)]+")
_CHART_URL_RE = re.compile(r"https?://\S+")

CHART_GUIDANCE = (
    "If a simple chart (bar/line/pie) would improve clarity, call the appropriate chart tool "
    "with the exact numeric data you're citing.",
    "Prefer small, tidy datasets (≤10 categories). Name datasets clearly.",
    "For comparisons over time, use line/bar; for shares, use pie/doughnut; "
    "for 2–3 groups vs categories, use the multi-dataset tool.",
    "After creating a chart, continue your answer as normal.",
    "If you cannot extract reliable numbers, do not fabricate charts.",
)

NO_RESULTS_MESSAGE = (
    "I couldn't extract any web results from the search tools. "
    "Try a more specific query or check your Brave API key."
)
NO_RESULTS_TIPS = (
    "Tips:\n"
    "- Use precise terms (e.g., 'Gartner 2024 semiconductor revenue share').\n"
    "- Increase the result count if your tool supports it.\n"
    "- Verify the Brave MCP server is running with a valid BRAVE_API_KEY."
)


def _as_score(value: Optional[str]) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


@dataclass
class SearchResult:
    title: Optional[str] = None
    url: Optional[str] = None
    snippet: Optional[str] = None
    published_at: Optional[str] = None
    source: Optional[str] = None
    score: Optional[float] = None

    @classmethod
    def from_item(cls, item: Any) -> "SearchResult":
        if not isinstance(item, dict):
            return cls(title=str(item))

        def first(*keys: str) -> Optional[str]:
            for key in keys:
                value = item.get(key)
                if value is not None:
                    return value if isinstance(value, str) else str(value)
            return None

        return cls(
            title=first("title", "name", "heading"),
            url=first("url", "link", "permalink"),
            snippet=first("snippet", "description", "summary"),
            published_at=first("publishedAt", "date", "published"),
            source=first("source", "site", "domain"),
            score=_as_score(first("score", "rating")),
        )

    @property
    def dedupe_key(self) -> str:
        key = self.url or self.title or json.dumps(self.__dict__, sort_keys=True, default=str)
        return str(key).lower()


@dataclass
class GeneratedChart:
    url: str
    type: str
    title: Optional[str]
    args: Dict[str, Any]


@dataclass
class ResearchReport:
    query: str
    depth: str
    markdown: str
    sources: List[SearchResult] = field(default_factory=list)
    charts: List[GeneratedChart] = field(default_factory=list)

    @property
    def sources_block(self) -> str:
        return build_sources_block(self.sources)


# ---- 搜索工具发现与参数 ----


def is_search_tool(descriptor: ToolDescriptor) -> bool:
    name = descriptor.name.lower()
    description = (descriptor.description or "").lower()
    return "search" in name or "search the web" in description or "web search" in description


def find_search_tools(registry: ToolRegistry) -> List[ToolDescriptor]:
    return [d for d in registry.descriptors() if is_search_tool(d)]


def find_query_prop(descriptor: ToolDescriptor) -> Optional[str]:
    """query > q > 第一个 string 属性 > 第一个属性。"""
    properties = descriptor.input_schema.get("properties") or {}
    keys = list(properties)
    if "query" in keys:
        return "query"
    if "q" in keys:
        return "q"
    for key in keys:
        if (properties[key] or {}).get("type") == "string":
            return key
    return keys[0] if keys else None


def add_paging_hints(descriptor: ToolDescriptor, arguments: Dict[str, Any], top_k: int) -> Dict[str, Any]:
    properties = descriptor.input_schema.get("properties") or {}
    count_key = next((k for k in COUNT_KEYS if k in properties), None)
    if count_key:
        arguments[count_key] = max(top_k, MIN_PAGE_SIZE)
    fresh_key = next((k for k in FRESHNESS_KEYS if k in properties), None)
    if fresh_key:
        arguments[fresh_key] = FRESHNESS_DAYS
    return arguments


def build_search_arguments(descriptor: ToolDescriptor, query: str, top_k: int) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {}
    key = find_query_prop(descriptor)
    if key:
        arguments[key] = query
    return add_paging_hints(descriptor, arguments, top_k)


# ---- 结果解析 ----


def _try_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def extract_items(raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    parsed = _try_json(raw)
    if parsed is None:
        fence = _FENCE_RE.search(raw)
        if fence:
            parsed = _try_json(fence.group(1))

    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        web = parsed.get("web")
        items = (
            parsed.get("results")
            or parsed.get("items")
            or parsed.get("data")
            or (web.get("results") if isinstance(web, dict) else None)
            or []
        )
    else:
        items = []
    if isinstance(items, list) and items:
        return items

    links = [{"title": m.group(1), "url": m.group(2)} for m in _MD_LINK_RE.finditer(raw)]
    if links:
        return links
    return [{"url": url} for url in _URL_RE.findall(raw)]


def dedupe(results: Sequence[SearchResult]) -> List[SearchResult]:
    seen = set()
    unique: List[SearchResult] = []
    for result in results:
        key = result.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


def _host(result: SearchResult) -> str:
    host = urlparse(result.url or "").hostname if result.url else None
    if not host:
        return result.source or ""
    return host[4:] if host.startswith("www.") else host


def build_sources_block(results: Sequence[SearchResult]) -> str:
    """[1] 标题 — host (日期)\\nurl，条目之间空一行。"""
    lines = []
    for index, result in enumerate(results, start=1):
        date = f" ({result.published_at})" if result.published_at else ""
        lines.append(f"[{index}] {result.title or result.url} — {_host(result)}{date}\n{result.url or ''}")
    return "\n\n".join(lines)


# ---- 详细程度模板 ----


def detail_template(depth: str) -> Tuple[int, str]:
    """返回 (目标字数, 指令文本)。"""
    if depth not in DEPTHS:
        raise BusinessError(code="INVALID_DEPTH", message=f"Unknown research depth: {depth}")
    if depth == "Deep-dive":
        target_words = 1500
        extras = [
            "- Add a short timeline if the topic involves events across time.",
            "- Include 3–5 practical recommendations or next steps.",
            "- If there are metrics or rankings, include a Markdown table with at least: "
            "Item | Metric | Date/Period | Source [#].",
        ]
    elif depth == "Detailed":
        target_words = 800
        extras = [
            "- Provide 4–7 key findings with data points.",
            "- If there are metrics or rankings, include a Markdown table.",
        ]
    else:
        target_words = 250
        extras = ["- Prioritize the single most important takeaway."]

    instructions = [
        "You are a meticulous research assistant.",
        f"Write a {depth.lower()} but clear answer that a non-expert can understand.",
        f"Target about {target_words} words.",
        "Use ONLY the sources provided; do not invent facts.",
        "Every paragraph that includes a factual claim must include inline numeric citations like [1], [2].",
        "If sources conflict, briefly note the disagreement and cite each side.",
        "Structure your response with Markdown headings where appropriate.",
        "- Begin with an **Executive summary** (bullet points).",
        "- Follow with **Key findings** with inline citations after each bullet.",
        *extras,
        "- Add **Limitations** and **What to double-check** (actionable checklist).",
        "- End with **Sources** listing the numbered sources provided.",
    ]
    return target_words, " ".join(instructions)


# ---- 图表记录 ----


class ChartRecorder:
    """包装图表工具，把成功生成的图表 URL 连同参数记录下来。"""

    def __init__(self) -> None:
        self.charts: List[GeneratedChart] = []

    def tools(self) -> List[LocalTool]:
        funcs = default_chart_funcs()
        return [
            LocalTool(descriptor=d, func=self._recording(d.name, funcs[d.name]))
            for d in chart_tool_descriptors()
        ]

    def _recording(self, name: str, func: ToolFunc) -> ToolFunc:
        def run(arguments: Dict[str, Any]) -> Dict[str, Any]:
            payload = func(arguments)
            match = _CHART_URL_RE.search(payload_text(payload))
            if match:
                self.charts.append(self._chart(name, arguments, match.group(0)))
            return payload

        return run

    @staticmethod
    def _chart(name: str, arguments: Dict[str, Any], url: str) -> GeneratedChart:
        chart_type = arguments.get("type") or "bar"
        title = arguments.get("title")
        if name == "create_chart":
            args = {"type": chart_type, "data": arguments.get("data"), "labels": arguments.get("labels"), "title": title}
        elif name == "create_comparison_chart":
            args = {"type": chart_type, "datasets": comparison_datasets(arguments), "labels": arguments.get("labels"), "title": title}
        else:
            args = {"type": chart_type, "datasets": arguments.get("datasets"), "labels": arguments.get("labels"), "title": title}
        return GeneratedChart(url=url, type=chart_type, title=title, args=args)


# ---- 研究流程 ----


class ResearchAgent:
    def __init__(
        self,
        registry: ToolRegistry,
        providers: Sequence[ToolProvider],
        provider_client: ProviderClient,
        channel: HumanChannel,
        *,
        retry: Optional[RetryPolicy] = None,
        model: str = "research-chat",
        temperature: float = 0.3,
    ):
        self._registry = registry
        self._providers = list(providers)
        self._provider_client = provider_client
        self._channel = channel
        self._retry = retry or RetryPolicy()
        self._model = model
        self._temperature = temperature

    def search_tools(self) -> Tuple[List[ToolDescriptor], ToolInvoker]:
        """当前范围内的搜索工具；没有时退回全部服务器。"""
        tools = find_search_tools(self._registry)
        if tools:
            return tools, ToolInvoker(self._registry)
        fallback = ToolRegistry.build(self._providers)
        return find_search_tools(fallback), ToolInvoker(fallback)

    def collect(self, query: str, top_k: int = DEFAULT_TOP_K) -> List[SearchResult]:
        tools, invoker = self.search_tools()
        self._channel.display(f"Found {len(tools)} search tool(s).")
        results: List[SearchResult] = []
        for descriptor in tools:
            arguments = build_search_arguments(descriptor, query, top_k)
            try:
                payload = invoker.invoke(descriptor.name, arguments)
            except BusinessError as exc:
                logger.warning(
                    "Search tool failed",
                    extra={"extra": {"tool_name": descriptor.name, "error": exc.message}},
                )
                continue
            items = extract_items(payload_text(payload))
            results.extend(SearchResult.from_item(item) for item in items)
        self._channel.display("Search complete." if results else "Search failed.")
        return dedupe(results)[: max(1, top_k)]

    def run(self, query: str, depth: str = "Detailed", top_k: int = DEFAULT_TOP_K) -> Optional[ResearchReport]:
        target_words, instructions = detail_template(depth)
        sources = self.collect(query, top_k)
        logger.info(
            "Research sources collected",
            extra={"extra": {"query": query, "depth": depth, "source_count": len(sources)}},
        )
        if not sources:
            self._channel.display("===== Research Answer =====")
            self._channel.display(NO_RESULTS_MESSAGE)
            self._channel.display(NO_RESULTS_TIPS)
            self._channel.display("===== End =====")
            return None

        recorder = ChartRecorder()
        chart_registry = ToolRegistry.build([], recorder.tools())
        gateway = ModelGateway(
            self._provider_client,
            ToolInvoker(chart_registry),
            model=self._model,
            temperature=self._temperature,
        )
        prompt = render_prompt(
            "research_synthesis",
            system=" ".join((instructions,) + CHART_GUIDANCE),
            query=query,
            sources=build_sources_block(sources),
            target_words=target_words,
        )
        try:
            turn = self._retry.call(gateway.generate, prompt, chart_registry.descriptors())
        except FatalModelError as exc:
            self._channel.display(f"Model call failed: {exc.message}")
            return None

        markdown = turn.text.strip()
        self._channel.display("===== Research Answer =====")
        self._channel.display(markdown or "No answer generated.")
        for chart in recorder.charts:
            self._channel.display(f"📊 {chart.title or chart.type}: {chart.url}")
        self._channel.display("===== End =====")
        return ResearchReport(query=query, depth=depth, markdown=markdown, sources=sources, charts=recorder.charts)
