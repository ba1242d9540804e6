import pytest

from research_core.domain.exceptions import InvocationError, ToolNotFound
from research_core.tools.definitions import LocalTool, ToolCall, ToolDescriptor, payload_text, text_payload
from research_core.tools.invoker import ToolInvoker
from research_core.tools.registry import ToolRegistry


class FakeProvider:
    def __init__(self, name, tool_names, fail_with=None):
        self.name = name
        self._tools = [ToolDescriptor(name=n, description=n) for n in tool_names]
        self._fail_with = fail_with
        self.calls = []

    def list_tools(self):
        return list(self._tools)

    def call_tool(self, name, arguments):
        self.calls.append((name, arguments))
        if self._fail_with:
            raise self._fail_with
        return text_payload(f"{self.name} result for {arguments.get('query')}")


def _invoker(*providers, local=None):
    return ToolInvoker(ToolRegistry.build(list(providers), local))


def test_remote_call_passes_arguments_unchanged():
    provider = FakeProvider("Brave Search", ["search"])
    args = {"query": "gpu prices", "extra": [1, 2]}
    payload = _invoker(provider).invoke("search", args)
    assert provider.calls == [("search", args)]
    assert payload_text(payload) == "Brave Search result for gpu prices"


def test_local_tool_executes_bound_function():
    seen = []

    def func(args):
        seen.append(args)
        return text_payload("drawn")

    local = LocalTool(descriptor=ToolDescriptor(name="create_chart", description="chart"), func=func)
    payload = _invoker(local=[local]).invoke("create_chart", {"type": "bar"})
    assert seen == [{"type": "bar"}]
    assert payload_text(payload) == "drawn"


def test_unknown_tool_raises_tool_not_found():
    with pytest.raises(ToolNotFound):
        _invoker(FakeProvider("A", ["x"])).invoke("y", {})


def test_remote_failure_keeps_original_message():
    provider = FakeProvider("A", ["search"], fail_with=RuntimeError("quota exhausted"))
    with pytest.raises(InvocationError) as info:
        _invoker(provider).invoke("search", {"query": "q"})
    assert not isinstance(info.value, ToolNotFound)
    assert info.value.message == "quota exhausted"
    assert info.value.tool_name == "search"


def test_execute_turns_failure_into_error_payload():
    provider = FakeProvider("A", ["search"], fail_with=RuntimeError("quota exhausted"))
    result = _invoker(provider).execute(ToolCall(id="1", name="search", arguments={}))
    assert result.is_error
    assert result.content == "Error: quota exhausted"

    missing = _invoker(provider).execute(ToolCall(id="2", name="nope", arguments={}))
    assert missing.is_error
    assert missing.content == "Error: Tool 'nope' not registered"


def test_execute_success():
    result = _invoker(FakeProvider("A", ["search"])).execute(
        ToolCall(id="c1", name="search", arguments={"query": "q"})
    )
    assert result.call_id == "c1"
    assert not result.is_error
    assert result.content == "A result for q"
