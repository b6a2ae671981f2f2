"""Command-line construction for one agent CLI request.

The CLI reads the message itself from stdin, so argv only carries flags:
the fixed streaming/print-mode base, then optional flags in a fixed order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import DEFAULT_MODEL, THINKING_INTENSITIES, VALID_MODELS

if TYPE_CHECKING:
    from .models import ProcessRequest

BASE_ARGS = (
    "-p",
    "--output-format",
    "stream-json",
    "--verbose",
    "--dangerously-skip-permissions",
)

PLAN_MODE_PREFIX = (
    "PLAN FIRST FOR THIS MESSAGE ONLY: Plan first before making any changes. "
    "Show me in detail what you will change and wait for my explicit approval "
    "in a separate message before proceeding. Do not implement anything until "
    "I confirm. This planning requirement applies ONLY to this current "
    "message.\n\n"
)


def _present(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def build_args(
    request: ProcessRequest,
    mcp_config_path: str | None = None,
) -> list[str]:
    """Build the CLI argv (without the executable) for one request."""
    args = list(BASE_ARGS)

    config_path = _present(mcp_config_path) or _present(request.mcp_config_path)
    if config_path:
        args.extend(["--mcp-config", config_path])

    resume_target = _present(request.resume_from) or _present(request.session_id)
    if resume_target:
        args.extend(["--resume", resume_target])

    if request.model != DEFAULT_MODEL and request.model in VALID_MODELS:
        args.extend(["--model", request.model])

    if request.thinking_intensity in THINKING_INTENSITIES:
        args.append(f"--{request.thinking_intensity}")

    custom_instructions = _present(request.custom_instructions)
    if custom_instructions:
        args.extend(["--custom-instructions", custom_instructions])

    mcp_prompt = _present(request.mcp_system_prompt)
    if mcp_prompt:
        args.extend(["--append-system-prompt", mcp_prompt.strip()])

    return args


def compose_message(message: str, *, plan_mode: bool = False) -> str:
    """Prefix caller-side mode instructions onto the outgoing message."""
    if plan_mode:
        return PLAN_MODE_PREFIX + message
    return message
