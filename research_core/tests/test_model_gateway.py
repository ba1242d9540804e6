from research_core.agents.model_gateway import ModelGateway
from research_core.domain.models import ChatChoice, ChatMessage, ChatResult
from research_core.tools.definitions import LocalTool, ToolCall, ToolDescriptor, payload_text, text_payload
from research_core.tools.invoker import ToolInvoker
from research_core.tools.registry import ToolRegistry


class FakeProviderClient:
    name = "fake"

    def __init__(self, message):
        self.message = message
        self.requests = []

    def chat(self, req):
        self.requests.append(req)
        if self.message is None:
            return ChatResult(provider=self.name, model=req.model, choices=[])
        return ChatResult(provider=self.name, model=req.model, choices=[ChatChoice(index=0, message=self.message)])


def _local(name, order):
    def run(args):
        order.append(name)
        return text_payload(f"{name}:{args.get('v')}")

    return LocalTool(descriptor=ToolDescriptor(name=name, description=name), func=run)


def test_text_only_without_tools():
    client = FakeProviderClient(ChatMessage(role="assistant", content="hello"))
    turn = ModelGateway(client).generate("User: hi")
    req = client.requests[0]
    assert req.tools is None
    assert req.tool_choice == "none"
    assert req.model == "research-chat"
    assert [(m.role, m.content) for m in req.messages] == [("user", "User: hi")]
    assert turn.text == "hello"
    assert not turn.has_invocations


def test_tool_calls_run_in_call_order():
    order = []
    registry = ToolRegistry.build([], [_local("a", order), _local("b", order)])
    message = ChatMessage(
        role="assistant",
        content="",
        tool_calls=[
            ToolCall(id="1", name="b", arguments={"v": 1}),
            ToolCall(id="2", name="a", arguments={"v": 2}),
            ToolCall(id="3", name="zzz", arguments={}),
        ],
    )
    client = FakeProviderClient(message)
    turn = ModelGateway(client, ToolInvoker(registry)).generate("User: q", registry.descriptors())
    assert client.requests[0].tool_choice == "auto"
    assert order == ["b", "a"]
    assert turn.tool_names == ["b", "a", "zzz"]
    assert [inv.result_text for inv in turn.invocations] == ["b:1", "a:2", "Error: Tool 'zzz' not registered"]
    assert not turn.has_text


def test_tool_calls_rejected_when_tools_disabled():
    order = []
    registry = ToolRegistry.build([], [_local("a", order)])
    client = FakeProviderClient(
        ChatMessage(role="assistant", content="done", tool_calls=[ToolCall(id="1", name="a", arguments={})])
    )
    turn = ModelGateway(client, ToolInvoker(registry)).generate("prompt", None)
    assert order == []
    assert payload_text(turn.invocations[0].result).startswith("Error:")
    assert turn.text == "done"


def test_no_choices_is_empty():
    turn = ModelGateway(FakeProviderClient(None)).generate("prompt")
    assert turn.is_empty
