"""research-assistant 命令行入口。

启动时连接配置中的全部 MCP 服务器（单个失败只提示，不退出），选择服务器范围后进入菜单循环：
Query / Research (Web + AI) / Tools / Switch Server / Exit；
当前服务器提供资源或 prompt 时额外出现 Resources / Prompts。
"""

import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.prompt import Prompt
from rich.table import Table

from research_core.agents.research import DEPTHS
from research_core.agents.server_prompts import fill_uri_template, format_resource_contents
from research_core.agents.session import ALL_SERVERS, ResearchSession
from research_core.config.settings import Settings, settings
from research_core.domain.exceptions import BusinessError
from research_core.infrastructure.logging.logger import logger
from research_core.providers import create_provider
from research_core.tools.definitions import ServerPrompt, ServerResource, ToolDescriptor, payload_text
from research_core.tools.mcp_provider import connect_providers, default_server_configs
from .channel import ConsoleChannel

MENU = ["Query", "Research (Web + AI)", "Tools", "Switch Server", "Exit"]
DEPTH_LABELS = {"Concise": "Concise (~250 words)", "Detailed": "Detailed (~800 words)", "Deep-dive": "Deep-dive (~1500 words)"}

_JSON_TYPES = {"number", "integer", "boolean", "array", "object"}


def coerce_argument(raw: str, schema: Dict[str, Any]) -> Any:
    """手动输入的参数按 schema 类型尽量转换；解析失败时保留原字符串。"""
    if schema.get("type") not in _JSON_TYPES:
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def choose(channel: ConsoleChannel, title: str, options: List[str], default: Optional[str] = None) -> str:
    table = Table(title=title, show_header=False)
    for index, option in enumerate(options, start=1):
        table.add_row(str(index), option)
    channel.console.print(table)
    numbers = [str(i) for i in range(1, len(options) + 1)]
    default_number = str(options.index(default) + 1) if default in options else "1"
    picked = Prompt.ask("Select", choices=numbers, default=default_number, console=channel.console)
    return options[int(picked) - 1]


def select_scope(session: ResearchSession, channel: ConsoleChannel) -> None:
    labels = {ALL_SERVERS: "Query all servers"}
    options = [labels.get(name, name) for name in session.scope_names]
    picked = choose(channel, "Select a server", options)
    scope = session.scope_names[options.index(picked)]
    session.select(scope)
    channel.notice(f"Scope: {session.scope_label} ({len(session.registry)} tools)", style="green")


def handle_query(session: ResearchSession, channel: ConsoleChannel) -> None:
    query = channel.prompt("Enter your query").strip()
    if not query:
        return
    session.engine(channel).run(query)


def handle_research(session: ResearchSession, channel: ConsoleChannel, cfg: Settings) -> None:
    query = channel.prompt("What should I research?").strip()
    if not query:
        return
    label = choose(
        channel,
        "How detailed should the answer be?",
        [DEPTH_LABELS[d] for d in DEPTHS],
        default=DEPTH_LABELS[cfg.research_default_depth],
    )
    depth = DEPTHS[[DEPTH_LABELS[d] for d in DEPTHS].index(label)]
    top_k_raw = channel.prompt(f"How many top results to use? (default {cfg.research_top_k})").strip()
    top_k = int(top_k_raw) if top_k_raw.isdigit() else cfg.research_top_k
    session.research_agent(channel).run(query, depth=depth, top_k=max(1, top_k))


def handle_tool(session: ResearchSession, channel: ConsoleChannel) -> None:
    descriptors = session.tools
    if not descriptors:
        channel.notice("No tools available in this scope.")
        return
    titles = [f"{d.title} - {d.description}" if d.description else d.title for d in descriptors]
    descriptor = descriptors[titles.index(choose(channel, "Select a tool", titles))]
    arguments = read_arguments(descriptor, channel)
    try:
        payload = session.invoker.invoke(descriptor.name, arguments)
    except BusinessError as exc:
        channel.notice(f"Error: {exc.message}", style="red")
        return
    channel.display(payload_text(payload))


def read_arguments(descriptor: ToolDescriptor, channel: ConsoleChannel) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {}
    for key, param in descriptor.params.items():
        raw = channel.prompt(f"Enter value for {key} ({param.schema.get('type', 'string')}):")
        if raw == "" and not param.required:
            continue
        arguments[key] = coerce_argument(raw, param.schema)
    return arguments


def menu_options(resources: List[ServerResource], prompts: List[ServerPrompt]) -> List[str]:
    """Resources / Prompts 只在当前目录服务器提供时出现。"""
    options = list(MENU[:3])
    if resources:
        options.append("Resources")
    if prompts:
        options.append("Prompts")
    return options + list(MENU[3:])


def handle_resource(session: ResearchSession, channel: ConsoleChannel, resources: List[ServerResource]) -> None:
    labels = [f"{r.name} - {r.description}" if r.description else r.name for r in resources]
    resource = resources[labels.index(choose(channel, "Select a resource", labels))]
    uri = fill_uri_template(resource.uri, channel) if resource.template else resource.uri
    channel.display(format_resource_contents(session.read_resource(uri)))


def handle_prompt(session: ResearchSession, channel: ConsoleChannel, prompts: List[ServerPrompt]) -> None:
    labels = [f"{p.name} - {p.description}" if p.description else p.name for p in prompts]
    prompt = prompts[labels.index(choose(channel, "Select a prompt", labels))]
    arguments = {name: channel.prompt(f"Enter value for {name}:") for name in prompt.arguments}
    runner = session.prompt_runner(channel)
    for text in session.get_prompt(prompt.name, arguments):
        reply = runner(text)
        if reply:
            channel.display(reply)


def run_menu(session: ResearchSession, channel: ConsoleChannel, cfg: Settings) -> None:
    while True:
        resources = session.resources()
        prompts = session.prompts()
        option = choose(channel, f"What would you like to do? [{session.scope_label}]", menu_options(resources, prompts))
        if option == "Exit":
            return
        try:
            if option == "Query":
                handle_query(session, channel)
            elif option == "Research (Web + AI)":
                handle_research(session, channel, cfg)
            elif option == "Tools":
                handle_tool(session, channel)
            elif option == "Resources":
                handle_resource(session, channel, resources)
            elif option == "Prompts":
                handle_prompt(session, channel, prompts)
            elif option == "Switch Server":
                select_scope(session, channel)
        except BusinessError as exc:
            logger.error("Menu action failed", extra={"extra": {"option": option, "code": exc.code, "error": exc.message}})
            channel.notice(f"Error: {exc.message}", style="red")


def main() -> None:
    console = Console()
    channel = ConsoleChannel(console)
    providers, failures = connect_providers(default_server_configs(settings))
    for name, reason in failures.items():
        channel.notice(f"Could not connect to {name}: {reason}", style="red")
    for provider in providers:
        channel.notice(f"Connected to {provider.name}", style="green")

    session = ResearchSession(providers, create_provider(settings.default_provider), cfg=settings)
    session.enable_sampling(channel)
    try:
        select_scope(session, channel)
        run_menu(session, channel, settings)
    except (KeyboardInterrupt, EOFError):
        console.print()
    finally:
        session.close()
        channel.notice("Goodbye.", style="cyan")


if __name__ == "__main__":
    main()
