"""工具注册表。

把多个独立 Provider 暴露的工具合并到同一个命名空间：

- 按 Provider 迭代顺序拼接，同名工具后注册者覆盖先注册者（last-write-wins）。
- 本地工具（图表等）最后追加，因此同名时总是胜出。
- 某个 Provider 列举工具失败只记日志，不影响整体构建。

注册表在构建后不可变；服务器范围切换时重新 build，而不是原地修改。
"""

from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from research_core.domain.exceptions import ProviderListError, ToolNotFound
from research_core.infrastructure.logging.logger import logger
from research_core.tools.base import ToolProvider
from research_core.tools.definitions import LocalRoute, LocalTool, RemoteRoute, ToolDescriptor, ToolEntry


class ToolRegistry:
    def __init__(self, entries: Optional[Dict[str, ToolEntry]] = None):
        self._entries: Dict[str, ToolEntry] = dict(entries or {})

    @classmethod
    def build(
        cls,
        providers: Sequence[ToolProvider],
        local_tools: Optional[Iterable[LocalTool]] = None,
    ) -> "ToolRegistry":
        entries: Dict[str, ToolEntry] = {}
        for provider in providers:
            for descriptor in _list_provider_tools(provider):
                if descriptor.name in entries:
                    logger.info(
                        "Tool name collision, later provider wins",
                        extra={"extra": {"tool_name": descriptor.name, "provider": provider.name}},
                    )
                # 先删再插，保证 descriptors() 反映最终覆盖后的顺序
                entries.pop(descriptor.name, None)
                entries[descriptor.name] = ToolEntry(descriptor=descriptor, route=RemoteRoute(provider))
        for tool in local_tools or []:
            entries.pop(tool.descriptor.name, None)
            entries[tool.descriptor.name] = ToolEntry(descriptor=tool.descriptor, route=LocalRoute(tool.func))
        logger.info(
            "Tool registry built",
            extra={"extra": {"providers": [p.name for p in providers], "tool_count": len(entries)}},
        )
        return cls(entries)

    def lookup(self, name: str) -> ToolEntry:
        entry = self._entries.get(name)
        if entry is None:
            raise ToolNotFound(name)
        return entry

    def get(self, name: str) -> Optional[ToolEntry]:
        return self._entries.get(name)

    def descriptors(self) -> List[ToolDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def names(self) -> List[str]:
        return list(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ToolEntry]:
        return iter(self._entries.values())


def _list_provider_tools(provider: ToolProvider) -> List[ToolDescriptor]:
    try:
        return list(provider.list_tools())
    except Exception as exc:  # noqa: BLE001 - 单个 Provider 失败只贡献零个工具
        error = exc if isinstance(exc, ProviderListError) else ProviderListError(provider.name, str(exc))
        logger.warning(
            "Provider failed to list tools",
            extra={"extra": {"provider": error.provider, "error": error.message}},
        )
        return []
