import json
from urllib.parse import unquote

from research_core.config.settings import settings
from research_core.tools.charts import (
    COMPARISON_COLORS,
    chart_tools,
    create_multi_dataset_chart,
    create_simple_chart,
    generate_chart_url,
)
from research_core.tools.definitions import payload_text


def _decode(url, base):
    assert url.startswith(base + "?c=")
    return json.loads(unquote(url[len(base) + 3:]))


def test_chart_url_roundtrip():
    config = create_simple_chart("bar", [1, 2], ["a b", "c&d"], "Sales")
    url = generate_chart_url(config, base_url="https://charts.test/chart")
    assert " " not in url and "&" not in url.split("?c=", 1)[1]
    assert _decode(url, "https://charts.test/chart") == config


def test_simple_chart_colours():
    pie = create_simple_chart("pie", [1, 2, 3], ["a", "b", "c"])
    dataset = pie["data"]["datasets"][0]
    assert dataset["backgroundColor"] == ["#FF6384", "#36A2EB", "#FFCE56"]
    assert dataset["label"] == "Data"
    assert pie["options"]["plugins"]["legend"]["position"] == "right"
    assert pie["options"]["title"] == {"display": False, "text": "Chart"}

    line = create_simple_chart("line", [1], ["a"], "Trend")
    assert line["data"]["datasets"][0]["borderColor"] == "#36A2EB"
    assert line["options"]["title"] == {"display": True, "text": "Trend"}


def test_multi_dataset_uses_given_or_palette_colour():
    config = create_multi_dataset_chart(
        "line",
        [{"label": "A", "data": [1]}, {"label": "B", "data": [2], "color": "#000000"}],
        ["2024"],
    )
    first, second = config["data"]["datasets"]
    assert first["backgroundColor"] == "#FF6384"
    assert second["borderColor"] == "#000000"


def test_chart_tools(monkeypatch):
    monkeypatch.setattr(settings, "quickchart_base_url", "https://charts.test/chart")
    tools = {tool.descriptor.name: tool for tool in chart_tools()}
    assert set(tools) == {"create_chart", "create_multi_dataset_chart", "create_comparison_chart"}
    assert tools["create_multi_dataset_chart"].descriptor.title == "Create Multi Dataset Chart"
    assert tools["create_chart"].descriptor.required == ["type", "data", "labels"]

    text = payload_text(tools["create_chart"].func({"type": "bar", "data": [3], "labels": ["x"]}))
    assert text.startswith("📊 Chart created: https://charts.test/chart?c=")

    text = payload_text(
        tools["create_comparison_chart"].func(
            {"data1": [1], "data2": [2], "labels": ["q1"], "label1": "AMD", "label2": "NVDA"}
        )
    )
    assert text.startswith("📊 Comparison chart created: ")
    config = _decode(text.split(": ", 1)[1], "https://charts.test/chart")
    assert config["type"] == "bar"
    assert [d["backgroundColor"] for d in config["data"]["datasets"]] == list(COMPARISON_COLORS)
