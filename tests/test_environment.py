"""Unit tests for execution environment resolution."""

from __future__ import annotations

# pylint: disable=import-error  # E0401: some lint envs miss editable imports.
import logging
import os
from typing import TYPE_CHECKING

from agentwire import environment
from agentwire.models import ExecutionEnvironment

if TYPE_CHECKING:
    from pathlib import Path

    import pytest


def make_cli(directory: Path, name: str = "claude") -> Path:
    """Create an executable stand-in for the CLI."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    path.chmod(0o755)
    return path


def test_resolve_finds_cli_in_native_install_dir(tmp_path: Path) -> None:
    """Prefer ~/.local/bin over later install locations."""
    native = make_cli(tmp_path / ".local" / "bin")
    make_cli(tmp_path / ".bun" / "bin")

    resolved = environment.resolve_execution_environment(
        platform="linux",
        home=tmp_path,
        base_env={"PATH": ""},
    )

    assert resolved.executable_path == str(native)
    assert resolved.use_shell is False
    assert resolved.kills_process_tree is False
    assert resolved.environment_variables["CLAUDE_HOME"] == str(tmp_path / ".claude")


def test_resolve_uses_npm_prefix_and_bun_dirs(tmp_path: Path) -> None:
    """Search the npm prefix before the Bun install directory."""
    prefix = tmp_path / "npm-global" / "bin"
    npm_cli = make_cli(prefix)
    make_cli(tmp_path / ".bun" / "bin")

    resolved = environment.resolve_execution_environment(
        platform="linux",
        home=tmp_path,
        base_env={"PATH": ""},
        npm_prefix=str(prefix),
    )

    assert resolved.executable_path == str(npm_cli)


def test_resolve_falls_back_to_path_lookup(tmp_path: Path) -> None:
    """Use the PATH when no known install directory has the CLI."""
    on_path = make_cli(tmp_path / "somewhere")

    resolved = environment.resolve_execution_environment(
        platform="linux",
        home=tmp_path / "home",
        base_env={"PATH": str(on_path.parent)},
    )

    assert resolved.executable_path == str(on_path)


def test_resolve_falls_back_to_bare_command_on_posix(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Return the bare command and log a warning when nothing is found."""
    with caplog.at_level(logging.WARNING, logger="agentwire.environment"):
        resolved = environment.resolve_execution_environment(
            platform="linux",
            home=tmp_path,
            base_env={"PATH": str(tmp_path / "empty")},
        )

    assert resolved.executable_path == "claude"
    assert "cli_not_found_falling_back" in caplog.text


def test_resolve_windows_sets_shell_and_tree_kill(tmp_path: Path) -> None:
    """Enable shell spawning, tree kills, and POSIX temp dirs on Windows."""
    cli = make_cli(tmp_path / ".local" / "bin", name="claude.cmd")

    resolved = environment.resolve_execution_environment(
        platform="win32",
        home=tmp_path,
        base_env={"PATH": ""},
    )

    assert resolved.executable_path == str(cli)
    assert resolved.use_shell is True
    assert resolved.kills_process_tree is True
    assert resolved.environment_variables["TEMP"] == "/tmp"
    assert resolved.environment_variables["TMP"] == "/tmp"
    assert resolved.environment_variables["TMPDIR"] == "/tmp"


def test_resolve_windows_without_cli_has_no_executable(tmp_path: Path) -> None:
    """Leave the path unset on Windows so spawning fails clearly."""
    resolved = environment.resolve_execution_environment(
        platform="win32",
        home=tmp_path,
        base_env={"PATH": ""},
    )

    assert resolved.executable_path is None


def test_resolve_darwin_prepends_existing_dirs_to_path(tmp_path: Path) -> None:
    """Add existing install directories in front of the inherited PATH."""
    local_bin = tmp_path / ".local" / "bin"
    make_cli(local_bin)

    resolved = environment.resolve_execution_environment(
        platform="darwin",
        home=tmp_path,
        base_env={"PATH": "/usr/bin"},
    )

    path_entries = resolved.environment_variables["PATH"].split(os.pathsep)
    assert path_entries[0] == str(local_bin)
    assert path_entries[-1] == "/usr/bin"


def test_resolve_explicit_path_wins(tmp_path: Path) -> None:
    """Use an explicitly configured path without searching."""
    make_cli(tmp_path / ".local" / "bin")

    resolved = environment.resolve_execution_environment(
        platform="linux",
        home=tmp_path,
        base_env={},
        explicit_path="/opt/agent/claude",
    )

    assert resolved.executable_path == "/opt/agent/claude"


def test_candidate_dirs_include_nvm_versions_on_darwin(tmp_path: Path) -> None:
    """List every installed nvm node version's bin directory on macOS."""
    for version in ("v18.0.0", "v20.1.0"):
        (tmp_path / ".nvm" / "versions" / "node" / version / "bin").mkdir(parents=True)

    dirs = environment.candidate_dirs(tmp_path, platform="darwin")

    assert tmp_path / ".nvm" / "versions" / "node" / "v20.1.0" / "bin" in dirs
    assert environment.candidate_dirs(tmp_path, platform="linux") == [
        tmp_path / ".local" / "bin",
        tmp_path / ".claude" / "bin",
        tmp_path / ".bun" / "bin",
    ]


def test_fix_windows_path_only_rewrites_for_shell_on_windows() -> None:
    """Convert backslashes only for Windows shell spawning."""
    shell_env = ExecutionEnvironment(environment_variables={}, use_shell=True)
    direct_env = ExecutionEnvironment(environment_variables={})

    assert environment.fix_windows_path(r"C:\work\repo", shell_env, platform="win32") == (
        "C:/work/repo"
    )
    assert environment.fix_windows_path(r"C:\work", direct_env, platform="win32") == r"C:\work"
    assert environment.fix_windows_path(r"C:\work", shell_env, platform="linux") == r"C:\work"
