"""Shared value types and errors for driving the agent CLI.

Requests, resolved execution environments, decoded and classified stream
events, usage totals, and termination outcomes all live here so the decoder,
classifier, supervisor, and chat loop can exchange them without importing
each other.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

DEFAULT_MODEL = "default"
VALID_MODELS = ("opus", "sonnet", DEFAULT_MODEL)
THINKING_INTENSITIES = ("think", "think-hard", "think-harder", "ultrathink")


class AgentWireError(RuntimeError):
    """Base class for process supervision failures."""


class AlreadyRunningError(AgentWireError):
    """Raised when a request is started while another process is active."""


class ExecutableNotFoundError(AgentWireError):
    """Raised when the execution environment has no runnable CLI path."""


class SpawnError(AgentWireError):
    """Raised when the operating system refuses to create the CLI process."""


class TerminationError(AgentWireError):
    """Raised by a termination strategy when the kill itself fails."""


@dataclass(frozen=True)
class ProcessRequest:  # pylint: disable=too-many-instance-attributes
    """One message to send to the agent CLI plus its per-request options."""

    message: str
    working_directory: str
    session_id: str | None = None
    resume_from: str | None = None
    model: str = DEFAULT_MODEL
    thinking_intensity: str | None = None
    custom_instructions: str | None = None
    mcp_config_path: str | None = None
    mcp_system_prompt: str | None = None
    environment_overlay: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionEnvironment:
    """Spawn configuration resolved for the current operating system."""

    environment_variables: Mapping[str, str]
    use_shell: bool = False
    executable_path: str | None = None
    kills_process_tree: bool = False


@dataclass(frozen=True)
class UsageTotals:
    """Running token and cost totals for one conversation."""

    total_cost: Decimal = Decimal(0)
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    request_count: int = 0


class TerminationSignal(enum.Enum):
    """First signal or kill issued while stopping a process."""

    NONE = "none"
    SIGTERM = "SIGTERM"
    SIGKILL = "SIGKILL"
    TREE_KILL = "tree-kill"


@dataclass(frozen=True)
class TerminationOutcome:
    """Informational record of how a stop request was carried out."""

    signal_sent: TerminationSignal
    forced: bool = False
    error: str | None = None


# Decoded stream lines


@dataclass(frozen=True)
class JsonEvent:
    """A complete line that parsed as JSON."""

    data: Any
    line: str


@dataclass(frozen=True)
class TextEvent:
    """A complete line that is not JSON, kept verbatim."""

    line: str


DecodedEvent = JsonEvent | TextEvent


# Classified protocol events


@dataclass(frozen=True)
class SystemInit:
    session_id: str | None
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AssistantMessage:
    text: str


@dataclass(frozen=True)
class AssistantThinking:
    text: str


@dataclass(frozen=True)
class ToolUse:
    name: str
    raw_input: Any
    tool_use_id: str | None = None


@dataclass(frozen=True)
class ToolResult:
    content: str
    is_error: bool
    hidden: bool
    tool_use_id: str | None = None
    tool_name: str | None = None


@dataclass(frozen=True)
class TokenUpdate:
    input_tokens: int
    output_tokens: int
    cache_creation: int = 0
    cache_read: int = 0


@dataclass(frozen=True)
class FinalResult:  # pylint: disable=too-many-instance-attributes
    session_id: str | None
    usage: TokenUpdate | None
    cost_usd: Decimal | None
    duration_ms: int | None = None
    num_turns: int | None = None
    is_error: bool = False
    error: str | None = None
    result: str | None = None


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class PlainText:
    line: str


@dataclass(frozen=True)
class Unclassified:
    data: Any


SemanticEvent = (
    SystemInit
    | AssistantMessage
    | AssistantThinking
    | ToolUse
    | ToolResult
    | TokenUpdate
    | FinalResult
    | ErrorEvent
    | PlainText
    | Unclassified
)


def _ignore_event(_event: SemanticEvent) -> None:
    return None


def _ignore_error(_message: str) -> None:
    return None


def _ignore_close(_code: int | None) -> None:
    return None


@dataclass(frozen=True)
class ProcessCallbacks:
    """Sinks for stdout events, stderr lines, and process exit."""

    on_data: Callable[[SemanticEvent], None] = _ignore_event
    on_error: Callable[[str], None] = _ignore_error
    on_close: Callable[[int | None], None] = _ignore_close
