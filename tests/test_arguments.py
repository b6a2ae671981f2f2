"""Unit tests for agent CLI argument construction."""

from __future__ import annotations

# pylint: disable=import-error  # E0401: some lint envs miss editable imports.
from agentwire import arguments
from agentwire.models import ProcessRequest

BASE = [
    "-p",
    "--output-format",
    "stream-json",
    "--verbose",
    "--dangerously-skip-permissions",
]


def make_request(**overrides: object) -> ProcessRequest:
    """Create a request with only the required fields set."""
    values: dict[str, object] = {"message": "hello", "working_directory": "/work"}
    values.update(overrides)
    return ProcessRequest(**values)  # type: ignore[arg-type]


def test_build_args_minimal_request_has_only_base_flags() -> None:
    """Emit just the fixed streaming flags when no option is set."""
    assert arguments.build_args(make_request()) == BASE


def test_build_args_includes_optional_flags_in_fixed_order() -> None:
    """Append every optional flag in the documented order."""
    request = make_request(
        session_id="ses_123",
        model="opus",
        thinking_intensity="think-hard",
        custom_instructions="Be brief.",
        mcp_system_prompt="  # MCP Tools Available\nuse them  \n",
    )

    command = arguments.build_args(request, "/tmp/mcp.json")

    assert command == [
        *BASE,
        "--mcp-config",
        "/tmp/mcp.json",
        "--resume",
        "ses_123",
        "--model",
        "opus",
        "--think-hard",
        "--custom-instructions",
        "Be brief.",
        "--append-system-prompt",
        "# MCP Tools Available\nuse them",
    ]


def test_build_args_prefers_resume_from_over_session_id() -> None:
    """Emit only one --resume flag carrying resume_from when both are set."""
    command = arguments.build_args(
        make_request(session_id="ses_current", resume_from="ses_checkpoint"),
    )

    assert command.count("--resume") == 1
    assert command[command.index("--resume") + 1] == "ses_checkpoint"


def test_build_args_drops_default_and_unknown_models() -> None:
    """Omit --model for the default sentinel and for unrecognized names."""
    assert "--model" not in arguments.build_args(make_request(model="default"))
    assert "--model" not in arguments.build_args(make_request(model="gpt-5"))
    assert "--model" in arguments.build_args(make_request(model="sonnet"))


def test_build_args_treats_blank_and_unknown_optionals_as_absent() -> None:
    """Ignore blank strings and unrecognized thinking intensities."""
    command = arguments.build_args(
        make_request(
            session_id="  ",
            thinking_intensity="galaxy-brain",
            custom_instructions="",
            mcp_system_prompt=" \n ",
            mcp_config_path="",
        ),
    )

    assert command == BASE


def test_build_args_uses_request_mcp_config_when_no_override() -> None:
    """Fall back to the request's MCP config path."""
    command = arguments.build_args(make_request(mcp_config_path="/etc/mcp.json"))

    assert command[len(BASE) : len(BASE) + 2] == ["--mcp-config", "/etc/mcp.json"]


def test_compose_message_prefixes_plan_mode_only_when_enabled() -> None:
    """Keep the message unchanged unless plan mode is requested."""
    assert arguments.compose_message("fix it") == "fix it"

    planned = arguments.compose_message("fix it", plan_mode=True)

    assert planned.startswith("PLAN FIRST FOR THIS MESSAGE ONLY")
    assert planned.endswith("\n\nfix it")
