from research_core.agents.conversation_engine import (
    BEST_ANSWER_DEMAND,
    ELABORATE_INSTRUCTION,
    FINAL_ANSWER_DEMAND,
    ConversationEngine,
    is_clarification,
)
from research_core.agents.retry import RetryPolicy
from research_core.domain.conversation import TerminalState
from research_core.domain.exceptions import ApiError
from research_core.domain.models import ModelTurnResult, ToolInvocation
from research_core.tools.definitions import ToolDescriptor, text_payload

LONG_REPLY = "Here is a complete answer with plenty of words to pass the minimum length check easily."
SHORT_REPLY = "Revenue grew ten percent overall."
QUESTION = "Which time interval would you like?"
TOOLS = [ToolDescriptor(name="search", description="web search"), ToolDescriptor(name="chart", description="chart")]


class FakeChannel:
    def __init__(self, answers=None):
        self.answers = list(answers or [])
        self.prompts = []
        self.displayed = []

    def prompt(self, message):
        self.prompts.append(message)
        return self.answers.pop(0)

    def display(self, text):
        self.displayed.append(text)


class ScriptedGateway:
    """按脚本返回结果；脚本项可以是 ModelTurnResult、异常或 (prompt, tools) -> 结果 的函数。"""

    def __init__(self, script):
        self.script = script
        self.calls = []

    def generate(self, prompt, tools=None):
        self.calls.append((prompt, tools))
        step = self.script(prompt, tools) if callable(self.script) else self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def text(value):
    return ModelTurnResult(text=value)


def invoked(*names, reply="", output="raw tool output"):
    return ModelTurnResult(
        text=reply,
        invocations=[ToolInvocation(tool_name=n, arguments={"query": "q"}, result=text_payload(output)) for n in names],
    )


def make_engine(gateway, channel, sleeps=None):
    retry = RetryPolicy(sleep=(sleeps if sleeps is not None else []).append)
    return ConversationEngine(gateway, TOOLS, channel, retry=retry)


def is_summary(prompt):
    return prompt.startswith("The user asked:")


def test_clarification_patterns():
    assert is_clarification(QUESTION)
    assert is_clarification("Could you specify the ticker symbol.")
    assert is_clarification("I also need the date range")
    assert is_clarification("What format do you want")
    assert not is_clarification(LONG_REPLY)
    assert not is_clarification(SHORT_REPLY)


def test_long_reply_terminates_immediately():
    gateway = ScriptedGateway([text(LONG_REPLY)])
    channel = FakeChannel()
    outcome = make_engine(gateway, channel).run("What is the GPU market outlook?")
    assert outcome.state == TerminalState.DONE
    assert outcome.reply == LONG_REPLY
    assert len(gateway.calls) == 1
    assert gateway.calls[0] == ("User: What is the GPU market outlook?", TOOLS)
    assert [e.render() for e in outcome.conversation.entries] == ["User: What is the GPU market outlook?"]
    assert channel.displayed[-1] == "--- End of conversation ---"
    assert channel.prompts == []


def test_short_reply_triggers_one_elaboration():
    gateway = ScriptedGateway([text(SHORT_REPLY), text(LONG_REPLY)])
    outcome = make_engine(gateway, FakeChannel()).run("q")
    assert outcome.state == TerminalState.DONE
    assert len(gateway.calls) == 2
    entries = [e.render() for e in outcome.conversation.entries]
    assert entries == ["User: q", f"Assistant: {SHORT_REPLY}", f"User: {ELABORATE_INSTRUCTION}"]
    assert gateway.calls[1][0] == "\n".join(entries)


def test_clarification_answer_is_appended_once():
    gateway = ScriptedGateway([text(QUESTION), text(LONG_REPLY)])
    channel = FakeChannel(["daily"])
    outcome = make_engine(gateway, channel).run("Show me IBM prices")
    assert outcome.state == TerminalState.DONE
    assert channel.prompts == [QUESTION + " (/stop to cancel, /run to force answer)"]
    user_entries = [e for e in outcome.conversation.entries if e.speaker == "User"]
    assert [e.text for e in user_entries if "daily" in e.text] == ["daily"]
    assert [e.render() for e in outcome.conversation.entries] == [
        "User: Show me IBM prices",
        f"Assistant: {QUESTION}",
        "User: daily",
    ]
    assert len(gateway.calls) == 2


def test_short_clarification_is_not_treated_as_too_short():
    gateway = ScriptedGateway([text("Which ticker?"), text(LONG_REPLY)])
    outcome = make_engine(gateway, FakeChannel(["IBM"])).run("q")
    texts = [e.text for e in outcome.conversation.entries]
    assert ELABORATE_INSTRUCTION not in texts


def test_stop_aborts_without_appending():
    gateway = ScriptedGateway([text(QUESTION)])
    channel = FakeChannel(["/stop"])
    outcome = make_engine(gateway, channel).run("q")
    assert outcome.state == TerminalState.ABORTED
    assert len(outcome.conversation.entries) == 1
    assert len(gateway.calls) == 1
    assert channel.displayed[-1] == "--- Conversation aborted ---"


def test_run_demands_best_final_answer():
    gateway = ScriptedGateway([text(QUESTION), text(LONG_REPLY)])
    outcome = make_engine(gateway, FakeChannel(["/run"])).run("q")
    assert outcome.state == TerminalState.DONE
    assert [e.render() for e in outcome.conversation.entries][-2:] == [
        "User: /run",
        f"Assistant: {BEST_ANSWER_DEMAND}",
    ]


def test_tool_output_is_summarized_with_tools_enabled():
    gateway = ScriptedGateway([invoked("search", output="GPU revenue 2024: $120B"), text(LONG_REPLY)])
    channel = FakeChannel()
    outcome = make_engine(gateway, channel).run("gpu revenue")
    assert outcome.state == TerminalState.DONE
    summary_prompt, summary_tools = gateway.calls[1]
    assert summary_prompt.startswith('The user asked: "User: gpu revenue"')
    assert "GPU revenue 2024: $120B" in summary_prompt
    assert summary_tools == TOOLS
    assert "Tools called: search" in channel.displayed


def test_empty_summary_demands_final_answer():
    gateway = ScriptedGateway([invoked("search"), text(""), text(LONG_REPLY)])
    outcome = make_engine(gateway, FakeChannel()).run("q")
    assert outcome.state == TerminalState.DONE
    assert outcome.conversation.entries[-1].text == FINAL_ANSWER_DEMAND
    assert len(gateway.calls) == 3


def test_empty_result_demands_final_answer():
    gateway = ScriptedGateway([ModelTurnResult(), text(LONG_REPLY)])
    outcome = make_engine(gateway, FakeChannel()).run("q")
    assert outcome.state == TerminalState.DONE
    assert [e.render() for e in outcome.conversation.entries] == ["User: q", f"Assistant: {FINAL_ANSWER_DEMAND}"]
    assert outcome.conversation.turn_count == 2


def test_repeated_tool_calls_force_single_tool_free_answer():
    def script(prompt, tools):
        if tools is None:
            return text("Forced final answer.")
        return invoked("search")

    gateway = ScriptedGateway(script)
    channel = FakeChannel()
    outcome = make_engine(gateway, channel).run("q")
    assert outcome.state == TerminalState.LOOP_PREVENTED
    assert outcome.conversation.consecutive_repeat_count == 3
    assert outcome.conversation.turn_count == 4
    tool_free = [c for c in gateway.calls if c[1] is None]
    assert len(tool_free) == 1
    assert gateway.calls[-1][1] is None
    assert "Do not call any more tools" in gateway.calls[-1][0]
    assert outcome.reply == "Forced final answer."
    assert channel.displayed[-1] == "--- End of conversation (loop prevented) ---"


def test_forced_answer_terminates_even_when_empty():
    def script(prompt, tools):
        if tools is None:
            return ModelTurnResult()
        return invoked("search")

    outcome = make_engine(ScriptedGateway(script), FakeChannel()).run("q")
    assert outcome.state == TerminalState.LOOP_PREVENTED
    assert outcome.reply == ""


def test_loop_guard_runs_before_short_text_check():
    def script(prompt, tools):
        if tools is None:
            return text(LONG_REPLY)
        return invoked("search", reply="Still searching.")

    gateway = ScriptedGateway(script)
    outcome = make_engine(gateway, FakeChannel()).run("q")
    assert outcome.state == TerminalState.LOOP_PREVENTED
    assert outcome.conversation.turn_count == 4


def test_alternating_tools_never_trip_guard():
    sequence = [["search"], ["chart"], ["search"], ["search"]]

    def script(prompt, tools):
        if is_summary(prompt):
            return ModelTurnResult()
        if sequence:
            return invoked(*sequence.pop(0))
        return text(LONG_REPLY)

    gateway = ScriptedGateway(script)
    outcome = make_engine(gateway, FakeChannel()).run("q")
    assert outcome.state == TerminalState.DONE
    assert outcome.conversation.consecutive_repeat_count == 1
    assert all(tools is not None for _, tools in gateway.calls)


def test_transient_errors_are_retried_then_succeed():
    unavailable = ApiError(code="API_ERROR", message="Service Unavailable", http_status=503)
    gateway = ScriptedGateway([unavailable, unavailable, text(LONG_REPLY)])
    sleeps = []
    outcome = make_engine(gateway, FakeChannel(), sleeps).run("q")
    assert outcome.state == TerminalState.DONE
    assert len(gateway.calls) == 3
    assert sleeps == [0.6, 1.2]


def test_persistent_transient_error_aborts_after_three_attempts():
    gateway = ScriptedGateway(lambda prompt, tools: RuntimeError("503 model overloaded"))
    channel = FakeChannel()
    outcome = make_engine(gateway, channel).run("q")
    assert outcome.state == TerminalState.ABORTED
    assert len(gateway.calls) == 3
    assert channel.displayed[-1].startswith("Model call failed: Model unavailable after 3 attempts")


def test_fatal_error_aborts_immediately():
    gateway = ScriptedGateway([ApiError(code="API_ERROR", message="invalid api key", http_status=401)])
    channel = FakeChannel()
    outcome = make_engine(gateway, channel).run("q")
    assert outcome.state == TerminalState.ABORTED
    assert len(gateway.calls) == 1
    assert channel.displayed == ["Model call failed: invalid api key"]
