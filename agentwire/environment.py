"""Resolve how to spawn the agent CLI on the current operating system.

Looks for the executable in the usual install locations (native installer,
Homebrew, nvm, npm prefix, Bun), prepares the child environment, and reports
whether the platform needs process-tree kills.
"""

from __future__ import annotations

import logging
import os
import shutil
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from .models import ExecutionEnvironment

if TYPE_CHECKING:
    from collections.abc import Mapping

LOGGER = logging.getLogger(__name__)

DEFAULT_CLI_COMMAND = "claude"
WINDOWS_EXTENSIONS = (".cmd", ".exe", "")
HOMEBREW_BINS = (Path("/opt/homebrew/bin"), Path("/usr/local/bin"))


def _is_windows(platform: str) -> bool:
    return platform.startswith("win")


def _nvm_bins(home: Path) -> list[Path]:
    nvm_dir = home / ".nvm" / "versions" / "node"
    try:
        return [version / "bin" for version in sorted(nvm_dir.iterdir())]
    except OSError:
        return []


def candidate_dirs(
    home: Path,
    *,
    platform: str,
    npm_prefix: str | None = None,
) -> list[Path]:
    """Return directories searched for the CLI, highest priority first."""
    dirs = [home / ".local" / "bin", home / ".claude" / "bin"]
    if platform == "darwin":
        dirs.extend(HOMEBREW_BINS)
        dirs.extend(_nvm_bins(home))
    if npm_prefix:
        dirs.append(Path(npm_prefix))
    dirs.append(home / ".bun" / "bin")
    return dirs


def find_cli_executable(
    cli_command: str,
    search_dirs: list[Path],
    *,
    platform: str,
) -> str | None:
    """Return the first existing CLI executable in ``search_dirs``."""
    extensions = WINDOWS_EXTENSIONS if _is_windows(platform) else ("",)
    for directory in search_dirs:
        for extension in extensions:
            candidate = directory / f"{cli_command}{extension}"
            if candidate.is_file():
                return str(candidate)
    return None


def resolve_execution_environment(  # noqa: PLR0913
    cli_command: str = DEFAULT_CLI_COMMAND,
    *,
    platform: str | None = None,
    home: Path | None = None,
    base_env: Mapping[str, str] | None = None,
    explicit_path: str | None = None,
    npm_prefix: str | None = None,
) -> ExecutionEnvironment:
    """Build the execution environment for spawning the agent CLI."""
    platform_name = platform or sys.platform
    home_dir = home or Path.home()
    env = dict(os.environ if base_env is None else base_env)
    windows = _is_windows(platform_name)

    claude_home = str(home_dir / ".claude")
    if windows:
        claude_home = claude_home.replace("\\", "/")
    env["CLAUDE_HOME"] = claude_home

    if windows:
        env["TEMP"] = "/tmp"  # nosec B108  # Git Bash expects POSIX temp paths.
        env["TMP"] = "/tmp"  # nosec B108
        env["TMPDIR"] = "/tmp"  # nosec B108

    search_dirs = candidate_dirs(home_dir, platform=platform_name, npm_prefix=npm_prefix)
    if platform_name == "darwin":
        path_additions = [str(d) for d in search_dirs if d.is_dir()]
        if path_additions:
            env["PATH"] = os.pathsep.join([*path_additions, env.get("PATH", "")])

    if explicit_path:
        executable: str | None = explicit_path
    else:
        executable = find_cli_executable(cli_command, search_dirs, platform=platform_name)
        if executable is None:
            executable = shutil.which(cli_command, path=env.get("PATH"))
        if executable is None and not windows:
            LOGGER.warning(
                "cli_not_found_falling_back",
                extra={"cli_command": cli_command},
            )
            executable = cli_command
        if executable is None:
            LOGGER.error(
                "cli_not_found",
                extra={
                    "cli_command": cli_command,
                    "searched": [str(d) for d in search_dirs],
                },
            )

    return ExecutionEnvironment(
        environment_variables=env,
        use_shell=windows,
        executable_path=executable,
        kills_process_tree=windows,
    )


def fix_windows_path(
    cwd: str,
    environment: ExecutionEnvironment,
    *,
    platform: str | None = None,
) -> str:
    """Convert a Windows working directory to forward slashes for Git Bash."""
    if _is_windows(platform or sys.platform) and environment.use_shell:
        return cwd.replace("\\", "/")
    return cwd
