from research_core.agents.retry import RetryPolicy
from research_core.agents.server_prompts import (
    RUN_PROMPT_QUESTION,
    PromptRunner,
    fill_uri_template,
    format_resource_contents,
    template_params,
)
from research_core.domain.models import ModelTurnResult


class FakeChannel:
    def __init__(self, answers=(), confirm=True):
        self.answers = list(answers)
        self.prompts = []
        self.displayed = []
        self.confirmations = []
        self._confirm = confirm

    def prompt(self, message):
        self.prompts.append(message)
        return self.answers.pop(0)

    def display(self, text):
        self.displayed.append(text)

    def confirm(self, message, default=True):
        self.confirmations.append((message, default))
        return self._confirm


class FakeGateway:
    def __init__(self, reply="model reply"):
        self.reply = reply
        self.calls = []

    def generate(self, prompt, tools=None):
        self.calls.append((prompt, tools))
        return ModelTurnResult(text=self.reply)


def test_fill_uri_template_prompts_each_param():
    assert template_params("stock://{symbol}/{interval}") == ["symbol", "interval"]
    channel = FakeChannel(["IBM", "daily"])
    assert fill_uri_template("stock://{symbol}/{interval}", channel) == "stock://IBM/daily"
    assert channel.prompts == ["Enter value for symbol:", "Enter value for interval:"]
    assert fill_uri_template("quotes://all", FakeChannel()) == "quotes://all"


def test_format_resource_contents():
    assert format_resource_contents([{"uri": "x://a", "text": '{"price": 1}'}]) == '{\n  "price": 1\n}'
    assert format_resource_contents([{"uri": "x://a", "text": "plain text"}]) == "plain text"
    assert '"blob": "AAA="' in format_resource_contents([{"uri": "x://a", "blob": "AAA="}])
    assert format_resource_contents([]) == ""


def test_prompt_runner_confirms_then_generates_without_tools():
    gateway = FakeGateway()
    channel = FakeChannel()
    runner = PromptRunner(gateway, channel, retry=RetryPolicy(sleep=lambda s: None))
    assert runner("Summarize GPUs") == "model reply"
    assert channel.displayed == ["Summarize GPUs"]
    assert channel.confirmations == [(RUN_PROMPT_QUESTION, True)]
    assert gateway.calls == [("Summarize GPUs", None)]


def test_prompt_runner_declined():
    gateway = FakeGateway()
    runner = PromptRunner(gateway, FakeChannel(confirm=False), retry=RetryPolicy(sleep=lambda s: None))
    assert runner("Summarize GPUs") is None
    assert gateway.calls == []
