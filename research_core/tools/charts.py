"""基于 QuickChart 的本地图表工具。

只负责生成图表配置与 URL，不下载、不绘制图片。
"""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from research_core.config.settings import settings
from .definitions import LocalTool, ToolDescriptor, ToolFunc, text_payload, title_from_name

CHART_TYPES = ["bar", "line", "pie", "doughnut", "scatter", "radar"]
SIMPLE_COLORS = ["#FF6384", "#36A2EB", "#FFCE56", "#4BC0C0", "#9966FF", "#FF9F40", "#FF8C00", "#8A2BE2"]
DATASET_COLORS = SIMPLE_COLORS[:6]
COMPARISON_COLORS = ("#FF6384", "#36A2EB")


def generate_chart_url(config: Dict[str, Any], base_url: Optional[str] = None) -> str:
    base = base_url or settings.quickchart_base_url
    encoded = quote(json.dumps(config, separators=(",", ":"), ensure_ascii=False), safe="")
    return f"{base}?c={encoded}"


def create_simple_chart(
    chart_type: str,
    data: List[float],
    labels: List[str],
    title: Optional[str] = None,
) -> Dict[str, Any]:
    round_chart = chart_type in ("pie", "doughnut")
    dataset: Dict[str, Any] = {
        "label": title or "Data",
        "data": data,
        "backgroundColor": SIMPLE_COLORS[: len(data)] if round_chart else SIMPLE_COLORS[0],
    }
    if chart_type == "line":
        dataset["borderColor"] = SIMPLE_COLORS[1]
        dataset["borderWidth"] = 2
    options: Dict[str, Any] = {
        "title": {"display": bool(title), "text": title or "Chart"},
        "responsive": True,
    }
    if round_chart:
        options["plugins"] = {"legend": {"position": "right"}}
    return {"type": chart_type, "data": {"labels": labels, "datasets": [dataset]}, "options": options}


def create_multi_dataset_chart(
    chart_type: str,
    datasets: List[Dict[str, Any]],
    labels: List[str],
    title: Optional[str] = None,
) -> Dict[str, Any]:
    rendered = []
    for index, ds in enumerate(datasets):
        color = ds.get("color") or DATASET_COLORS[index % len(DATASET_COLORS)]
        item: Dict[str, Any] = {
            "label": ds.get("label"),
            "data": ds.get("data") or [],
            "backgroundColor": color,
        }
        if chart_type == "line":
            item["borderColor"] = color
            item["borderWidth"] = 2
        rendered.append(item)
    return {
        "type": chart_type,
        "data": {"labels": labels, "datasets": rendered},
        "options": {"title": {"display": bool(title), "text": title or "Chart"}, "responsive": True},
    }


def comparison_datasets(args: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {"label": args.get("label1"), "data": args.get("data1") or [], "color": COMPARISON_COLORS[0]},
        {"label": args.get("label2"), "data": args.get("data2") or [], "color": COMPARISON_COLORS[1]},
    ]


def _create_chart(args: Dict[str, Any]) -> Dict[str, Any]:
    config = create_simple_chart(args.get("type", "bar"), args.get("data") or [], args.get("labels") or [], args.get("title"))
    return text_payload(f"📊 Chart created: {generate_chart_url(config)}")


def _create_multi_dataset_chart(args: Dict[str, Any]) -> Dict[str, Any]:
    config = create_multi_dataset_chart(
        args.get("type", "bar"), args.get("datasets") or [], args.get("labels") or [], args.get("title")
    )
    return text_payload(f"📊 Multi-dataset chart created: {generate_chart_url(config)}")


def _create_comparison_chart(args: Dict[str, Any]) -> Dict[str, Any]:
    config = create_multi_dataset_chart(
        args.get("type") or "bar", comparison_datasets(args), args.get("labels") or [], args.get("title")
    )
    return text_payload(f"📊 Comparison chart created: {generate_chart_url(config)}")


_NUMBERS = {"type": "array", "items": {"type": "number"}}
_STRINGS = {"type": "array", "items": {"type": "string"}}
_TITLE = {"type": "string", "description": "Chart title (optional)"}


def chart_tool_descriptors() -> List[ToolDescriptor]:
    specs = [
        (
            "create_chart",
            "Create a chart with the given data and labels",
            {
                "type": "object",
                "required": ["type", "data", "labels"],
                "properties": {
                    "type": {"type": "string", "enum": CHART_TYPES, "description": "Chart type"},
                    "data": {**_NUMBERS, "description": "Data values"},
                    "labels": {**_STRINGS, "description": "Data labels"},
                    "title": _TITLE,
                },
            },
        ),
        (
            "create_multi_dataset_chart",
            "Create a chart with multiple datasets",
            {
                "type": "object",
                "required": ["type", "datasets", "labels"],
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["bar", "line", "scatter", "radar"],
                        "description": "Chart type (pie/doughnut not supported for multi-dataset)",
                    },
                    "datasets": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["label", "data"],
                            "properties": {
                                "label": {"type": "string", "description": "Dataset label"},
                                "data": {**_NUMBERS, "description": "Dataset values"},
                                "color": {"type": "string", "description": "Dataset color (optional, hex format)"},
                            },
                        },
                        "description": "Array of datasets with labels and data",
                    },
                    "labels": {**_STRINGS, "description": "X-axis labels"},
                    "title": _TITLE,
                },
            },
        ),
        (
            "create_comparison_chart",
            "Create a side-by-side comparison chart (bar or line)",
            {
                "type": "object",
                "required": ["data1", "data2", "labels", "label1", "label2"],
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["bar", "line"],
                        "description": "Chart type for comparison",
                        "default": "bar",
                    },
                    "data1": {**_NUMBERS, "description": "First dataset values"},
                    "data2": {**_NUMBERS, "description": "Second dataset values"},
                    "labels": {**_STRINGS, "description": "Category labels"},
                    "label1": {"type": "string", "description": "Label for first dataset"},
                    "label2": {"type": "string", "description": "Label for second dataset"},
                    "title": _TITLE,
                },
            },
        ),
    ]
    return [
        ToolDescriptor(name=name, description=desc, input_schema=schema, display_title=title_from_name(name))
        for name, desc, schema in specs
    ]


def default_chart_funcs() -> Dict[str, ToolFunc]:
    return {
        "create_chart": _create_chart,
        "create_multi_dataset_chart": _create_multi_dataset_chart,
        "create_comparison_chart": _create_comparison_chart,
    }


def chart_tools() -> List[LocalTool]:
    funcs = default_chart_funcs()
    return [LocalTool(descriptor=d, func=funcs[d.name]) for d in chart_tool_descriptors()]
