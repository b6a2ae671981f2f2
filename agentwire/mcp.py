"""MCP tool-server inputs for the agent CLI.

Builds the three things a request needs from the enabled MCP servers: the
config file passed with ``--mcp-config``, the appended system prompt, and
the environment variables the servers expect.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

MCP_PROMPT_HEADER = (
    "# MCP Tools Available\n"
    "The following MCP servers are enabled. Use their tools as needed:"
)
MCP_PROMPT_FOOTER = "\n**Remember**: Check CLAUDE.md for detailed usage instructions."

MCP_SYSTEM_PROMPTS = {
    "sequential-thinking": (
        "## Sequential Thinking\n"
        "**Purpose**: Structured thinking tool for complex problems\n"
        "**Core**: sequentialthinking - Break tasks into steps, supports branching & revision\n"
        "**Use cases**: Unclear requirements, iterative exploration, multi-solution comparison"
    ),
    "context7": (
        "## Context7\n"
        "**Purpose**: Fetch latest official docs, solve outdated knowledge issues\n"
        "**Core**: resolve-library-id, get-library-docs\n"
        "**When**: Unclear APIs, version differences, need official examples"
    ),
    "basic-memory": (
        "## Basic Memory\n"
        "**Purpose**: Persistent knowledge base with notes & search\n"
        "**Core**: write_note, read_note, search_notes, recent_activity, canvas"
    ),
    "playwright": (
        "## Playwright\n"
        "**Purpose**: Browser automation - web scraping, form filling, UI testing\n"
        "**Core**: navigate, screenshot, click, fill, evaluate, save_as_pdf"
    ),
}


@dataclass(frozen=True)
class McpServer:
    """One enabled MCP server."""

    name: str
    command: str
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)


def build_mcp_system_prompt(server_names: Iterable[str]) -> str:
    """Return the appended system prompt for known servers, or ``""``."""
    prompts = [
        MCP_SYSTEM_PROMPTS[name] for name in server_names if name in MCP_SYSTEM_PROMPTS
    ]
    if not prompts:
        return ""
    return "\n".join([MCP_PROMPT_HEADER, *prompts, MCP_PROMPT_FOOTER])


def merge_environment_overlays(servers: Iterable[McpServer]) -> dict[str, str]:
    """Merge server env variables; later servers win on conflicts."""
    merged: dict[str, str] = {}
    for server in servers:
        merged.update(server.env)
    return merged


def write_mcp_config(servers: Iterable[McpServer], path: Path) -> Path:
    """Write an ``mcpServers`` config file and return its path."""
    payload = {
        "mcpServers": {
            server.name: {
                "command": server.command,
                "args": list(server.args),
                "env": dict(server.env),
            }
            for server in servers
        },
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path


def load_mcp_servers(path: Path) -> list[McpServer]:
    """Read servers back from an ``mcpServers`` config file."""
    data = json.loads(path.read_text(encoding="utf-8"))
    servers_data = data.get("mcpServers") if isinstance(data, dict) else None
    if not isinstance(servers_data, dict):
        return []

    servers: list[McpServer] = []
    for name, entry in servers_data.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("command"), str):
            continue
        raw_env = entry.get("env")
        env = (
            {str(k): str(v) for k, v in raw_env.items()}
            if isinstance(raw_env, dict)
            else {}
        )
        raw_args = entry.get("args")
        args = tuple(str(a) for a in raw_args) if isinstance(raw_args, list) else ()
        servers.append(McpServer(name=name, command=entry["command"], args=args, env=env))
    return servers
