"""Main agentwire CLI orchestration.

This module wires the typed chat loop together: parse command-line options,
read prompts from the terminal, run each turn through the supervised agent
CLI process, render streamed events, and persist the session id so the next
run resumes the same conversation.
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from .arguments import compose_message
from .environment import DEFAULT_CLI_COMMAND, resolve_execution_environment
from .mcp import build_mcp_system_prompt, load_mcp_servers, merge_environment_overlays
from .models import (
    DEFAULT_MODEL,
    THINKING_INTENSITIES,
    VALID_MODELS,
    AgentWireError,
    AssistantMessage,
    ErrorEvent,
    PlainText,
    ToolResult,
    ToolUse,
)
from .session import LOGIN_HINT, ChatSession, is_login_error
from .supervisor import ProcessSupervisor

if TYPE_CHECKING:
    from .models import SemanticEvent, UsageTotals

EXIT_PHRASES = {"exit", "quit", "goodbye"}
NEW_SESSION_COMMANDS = {"/new", "/clear"}
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")
ANSI_RESET = "\033[0m"
ANSI_BOLD = "\033[1m"
SYSTEM_TEXT_COLOR = "\033[90m"
USER_LABEL_COLOR = "\033[34m"
ASSISTANT_LABEL_COLOR = "\033[32m"
ASSISTANT_TEXT_COLOR = "\033[36m"
TOOL_DETAIL_LIMIT = 50

TOOL_STATUS = {
    "Task": "Exploring project structure",
    "Bash": "Executing command",
    "Read": "Reading file",
    "Edit": "Editing file",
    "Write": "Writing file",
    "Grep": "Searching files",
    "Glob": "Finding files",
    "LS": "Listing directory",
    "TodoWrite": "Updating tasks",
    "WebFetch": "Fetching web content",
    "WebSearch": "Searching web",
    "MultiEdit": "Editing multiple files",
    "NotebookEdit": "Editing notebook",
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags for the agent chat loop."""
    parser = argparse.ArgumentParser(
        allow_abbrev=False,
        description=(
            "Chat with an agent CLI from the terminal. Each turn runs the CLI "
            "once in streaming mode and resumes the saved session."
        ),
    )

    session_group = parser.add_mutually_exclusive_group()
    session_group.add_argument(
        "--session-id",
        default=None,
        help="Resume an existing agent session id",
    )
    session_group.add_argument(
        "--new-session",
        action="store_true",
        help="Ignore any saved session and start a new one",
    )

    parser.add_argument(
        "--session-file",
        type=Path,
        default=Path(".agentwire_state.json"),
        help="Path to store the current session id",
    )
    parser.add_argument(
        "--model",
        choices=VALID_MODELS,
        default=os.getenv("AGENTWIRE_MODEL", DEFAULT_MODEL),
        help="Model passed to the CLI ('default' leaves the CLI's choice)",
    )
    parser.add_argument(
        "--thinking",
        choices=THINKING_INTENSITIES,
        default=None,
        help="Thinking intensity flag to pass with every turn",
    )
    parser.add_argument(
        "--plan",
        action="store_true",
        help="Ask the agent to plan and wait for approval before changing anything",
    )
    parser.add_argument(
        "--custom-instructions",
        default=None,
        help="Extra instructions passed with --custom-instructions",
    )
    parser.add_argument(
        "--mcp-config",
        type=Path,
        default=None,
        help="MCP config file (mcpServers JSON) passed to the CLI",
    )
    parser.add_argument(
        "--mcp-server",
        action="append",
        default=[],
        help="Enabled MCP server name for the appended system prompt (repeatable)",
    )
    parser.add_argument(
        "--cli-command",
        default=DEFAULT_CLI_COMMAND,
        help="Agent CLI command name to search for",
    )
    parser.add_argument(
        "--cli-path",
        default=os.getenv("AGENTWIRE_CLI_PATH"),
        help="Explicit path to the agent CLI executable",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the agent (defaults to the current directory)",
    )
    parser.add_argument(
        "--log-level",
        choices=LOG_LEVELS,
        default=os.getenv("AGENTWIRE_LOG_LEVEL", "WARNING").upper(),
        help="Diagnostic log level written to stderr",
    )
    return parser.parse_args(argv)


def stdout(message: str) -> None:
    """Write a message to standard output and flush immediately."""
    sys.stdout.write(message)
    sys.stdout.flush()


def stderr(message: str) -> None:
    """Write a message to standard error and flush immediately."""
    if supports_ansi(sys.stderr):
        message = f"{SYSTEM_TEXT_COLOR}{message}{ANSI_RESET}"
    sys.stderr.write(message)
    sys.stderr.flush()


def read_prompt(label: str) -> str:
    """Read one prompt line from the terminal."""
    return input(label)


def supports_ansi(stream: TextIO | None = None) -> bool:
    """Return True when terminal color output should be enabled."""
    if os.getenv("NO_COLOR") is not None:
        return False
    output_stream = stream or sys.stdout
    return output_stream.isatty()


def apply_ansi(text: str, *styles: str) -> str:
    """Wrap text in ANSI styles when terminal output supports it."""
    if not supports_ansi():
        return text

    prefix = "".join(styles)
    if not prefix:
        return text
    return f"{prefix}{text}{ANSI_RESET}"


def format_assistant_text(text: str) -> str:
    """Apply fixed ANSI style to assistant output text."""
    return apply_ansi(text, ASSISTANT_TEXT_COLOR)


def format_user_label(text: str) -> str:
    """Apply fixed ANSI style to the user speaker label."""
    return apply_ansi(text, ANSI_BOLD, USER_LABEL_COLOR)


def format_assistant_label(text: str) -> str:
    """Apply fixed ANSI style to the assistant speaker label."""
    return apply_ansi(text, ANSI_BOLD, ASSISTANT_LABEL_COLOR)


def tool_status_text(tool: ToolUse) -> str:
    """Describe a tool call for the status line."""
    status = TOOL_STATUS.get(tool.name, "Processing")
    raw_input = tool.raw_input if isinstance(tool.raw_input, dict) else {}
    detail = raw_input.get("file_path") or raw_input.get("command") or raw_input.get("pattern")
    if not isinstance(detail, str) or not detail:
        return f"{status} ({tool.name})"
    if "file_path" in raw_input:
        detail = Path(detail).name
    elif len(detail) > TOOL_DETAIL_LIMIT:
        detail = detail[:TOOL_DETAIL_LIMIT] + "..."
    return f"{status} ({tool.name}): {detail}"


def format_totals(totals: UsageTotals) -> str:
    """Render usage totals as one status line."""
    return (
        f"Session totals: ${totals.total_cost:.4f}, "
        f"{totals.total_input_tokens} input tokens, "
        f"{totals.total_output_tokens} output tokens, "
        f"{totals.request_count} requests"
    )


def render_event(event: SemanticEvent) -> None:
    """Print one streamed event from the agent."""
    if isinstance(event, AssistantMessage):
        stdout(f"{format_assistant_text(event.text)}\n\n")
    elif isinstance(event, ToolUse):
        stderr(f"{tool_status_text(event)}\n")
    elif isinstance(event, ToolResult) and not event.hidden:
        prefix = "Tool error" if event.is_error else "Tool result"
        stderr(f"{prefix}: {event.content}\n")
    elif isinstance(event, ErrorEvent):
        render_error(event.message)
    elif isinstance(event, PlainText):
        stderr(f"{event.line}\n")


def render_error(line: str) -> None:
    """Print one stderr line, mapping login failures to a hint."""
    if is_login_error(line):
        stderr(f"{LOGIN_HINT}\n")
        return
    stderr(f"{line}\n")


def load_session_id(state_path: Path) -> str | None:
    """Load the stored agent session id from disk."""
    if not state_path.exists():
        return None

    try:
        data = json.loads(state_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        stderr(f"Could not read session file {state_path}: {exc}\n")
        return None

    session_id = data.get("session_id") if isinstance(data, dict) else None
    if isinstance(session_id, str) and session_id.strip():
        return session_id.strip()
    return None


def save_session_id(state_path: Path, session_id: str) -> None:
    """Persist the active agent session id to disk."""
    state_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"session_id": session_id}
    state_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def clear_session_id(state_path: Path) -> None:
    """Remove the stored session id, if any."""
    try:
        state_path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        stderr(f"Could not remove session file {state_path}: {exc}\n")


def resolve_session_id(args: argparse.Namespace, state_path: Path) -> str | None:
    """Pick the initial session id from CLI args and stored state."""
    if args.session_id:
        try:
            save_session_id(state_path, args.session_id)
        except OSError as exc:
            stderr(
                f"Could not persist session id to {state_path}: {exc}. "
                "Continuing with in-memory session only.\n",
            )
        return str(args.session_id)
    if args.new_session:
        return None
    return load_session_id(state_path)


def build_session(args: argparse.Namespace, session_id: str | None) -> ChatSession:
    """Create the chat session and supervisor configured by ``args``."""
    resolver = functools.partial(
        resolve_execution_environment,
        args.cli_command,
        explicit_path=args.cli_path,
    )
    return ChatSession(ProcessSupervisor(resolver), session_id=session_id)


def mcp_inputs(args: argparse.Namespace) -> tuple[str | None, str | None, dict[str, str]]:
    """Return MCP config path, system prompt, and env overlay for ``args``."""
    server_names = list(args.mcp_server)
    overlay: dict[str, str] = {}
    config_path: str | None = None
    if args.mcp_config:
        config_file = args.mcp_config.expanduser().resolve()
        config_path = str(config_file)
        try:
            servers = load_mcp_servers(config_file)
        except (OSError, ValueError) as exc:
            stderr(f"Could not read MCP config {config_file}: {exc}\n")
            servers = []
        server_names.extend(server.name for server in servers)
        overlay = merge_environment_overlays(servers)
    prompt = build_mcp_system_prompt(dict.fromkeys(server_names)) or None
    return config_path, prompt, overlay


# pylint: disable=too-many-branches,too-many-statements
def run_chat(args: argparse.Namespace) -> None:  # noqa: C901, PLR0912, PLR0915
    """Run the continuous prompt/ask/reply loop."""
    state_path = args.session_file.expanduser().resolve()
    session = build_session(args, resolve_session_id(args, state_path))
    working_directory = args.cwd or str(Path.cwd())
    mcp_config_path, mcp_prompt, mcp_overlay = mcp_inputs(args)

    if session.session_id:
        stderr(f"Using agent session: {session.session_id}\n")
    else:
        stderr(
            "No saved agent session found. A new session will be created on "
            "the first prompt.\n",
        )
    stderr("Type 'exit' or 'quit' to end the loop, '/new' to start over.\n")

    while True:
        try:
            user_text = read_prompt(format_user_label("You: ")).strip()
        except (EOFError, KeyboardInterrupt):
            stderr("\nStopped.\n")
            return

        if not user_text:
            continue

        if user_text.lower() in EXIT_PHRASES:
            stderr("Exit phrase detected.\n")
            return

        if user_text.lower() in NEW_SESSION_COMMANDS:
            session.new_session()
            clear_session_id(state_path)
            stderr("Started a new session.\n")
            continue

        previous_session = session.session_id
        stdout(f"{format_assistant_label('Assistant:')}\n")
        try:
            result = session.send(
                compose_message(user_text, plan_mode=args.plan),
                working_directory=working_directory,
                model=args.model,
                thinking_intensity=args.thinking,
                custom_instructions=args.custom_instructions,
                mcp_config_path=mcp_config_path,
                mcp_system_prompt=mcp_prompt,
                environment_overlay=mcp_overlay,
                on_event=render_event,
                on_error=render_error,
            )
        except AgentWireError as exc:
            stderr(f"{exc}\n")
            continue
        except KeyboardInterrupt:
            stderr("Stopped the running request.\n")
            continue

        if result.session_id and result.session_id != previous_session:
            try:
                save_session_id(state_path, result.session_id)
                stderr(f"Saved agent session: {result.session_id} ({state_path})\n")
            except OSError as exc:
                stderr(
                    f"Could not persist discovered session id to {state_path}: {exc}\n",
                )

        if result.exit_code not in (0, None):
            stderr(f"Agent CLI exited with code {result.exit_code}.\n")
        elif not result.text:
            stderr("Agent returned no text response.\n")

        stderr(f"{format_totals(result.totals)}\n")


def main(argv: list[str] | None = None) -> None:
    """Entry point for the agentwire chat loop."""
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    run_chat(args)


if __name__ == "__main__":
    main()
