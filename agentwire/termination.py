"""Platform-aware termination of the agent CLI process.

Two strategies exist. Where the CLI runs nested under a shell and signals do
not reach grandchildren (Windows), the whole process tree is killed at once.
Elsewhere a graceful SIGTERM is sent first and SIGKILL follows after a grace
period if the process is still alive. Neither strategy blocks the caller.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import os
import signal
import threading
from typing import TYPE_CHECKING, Protocol

import psutil

from .models import TerminationError, TerminationOutcome, TerminationSignal

if TYPE_CHECKING:
    import subprocess
    from collections.abc import Callable

    from .models import ExecutionEnvironment

LOGGER = logging.getLogger(__name__)

GRACE_PERIOD_SECONDS = 2.0


class Timer(Protocol):
    """Subset of ``threading.Timer`` used for the forceful follow-up."""

    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


class TerminationStrategy(abc.ABC):
    """Kill strategy selected once from the execution environment."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short strategy name for logs."""

    @abc.abstractmethod
    def terminate(
        self,
        pid: int,
        process: subprocess.Popen[bytes] | None = None,
    ) -> TerminationOutcome:
        """Start terminating ``pid`` and return without waiting for exit."""


class TreeKillStrategy(TerminationStrategy):
    """Forcefully kill a process and every descendant."""

    @property
    def name(self) -> str:
        return "tree-kill"

    def terminate(
        self,
        pid: int,
        process: subprocess.Popen[bytes] | None = None,
    ) -> TerminationOutcome:
        try:
            kill_process_tree(pid)
        except TerminationError as exc:
            LOGGER.warning("tree_kill_failed", extra={"pid": pid, "error": str(exc)})
            if process is None:
                return TerminationOutcome(
                    signal_sent=TerminationSignal.NONE,
                    forced=True,
                    error=str(exc),
                )
            with contextlib.suppress(OSError):
                process.kill()
            return TerminationOutcome(
                signal_sent=TerminationSignal.SIGKILL,
                forced=True,
                error=str(exc),
            )
        return TerminationOutcome(signal_sent=TerminationSignal.TREE_KILL, forced=True)


class SignalEscalationStrategy(TerminationStrategy):
    """Send SIGTERM now and SIGKILL after the grace period if still alive."""

    def __init__(
        self,
        grace_period: float = GRACE_PERIOD_SECONDS,
        timer_factory: Callable[[float, Callable[[], None]], Timer] | None = None,
    ) -> None:
        self.grace_period = grace_period
        self._timer_factory = timer_factory or threading.Timer

    @property
    def name(self) -> str:
        return "signal-escalation"

    def terminate(
        self,
        pid: int,
        process: subprocess.Popen[bytes] | None = None,
    ) -> TerminationOutcome:
        if process is not None:
            process.terminate()
            self._schedule(lambda: self._force_process(process))
            return TerminationOutcome(signal_sent=TerminationSignal.SIGTERM)

        try:
            os.kill(pid, signal.SIGTERM)
        except OSError as exc:
            LOGGER.warning("sigterm_failed", extra={"pid": pid, "error": str(exc)})
            return TerminationOutcome(signal_sent=TerminationSignal.NONE, error=str(exc))
        self._schedule(lambda: self._force_pid(pid))
        return TerminationOutcome(signal_sent=TerminationSignal.SIGTERM)

    def _schedule(self, callback: Callable[[], None]) -> None:
        timer = self._timer_factory(self.grace_period, callback)
        timer.daemon = True
        timer.start()

    @staticmethod
    def _force_process(process: subprocess.Popen[bytes]) -> None:
        if process.poll() is not None:
            return
        LOGGER.info("force_kill", extra={"pid": process.pid})
        with contextlib.suppress(OSError):
            process.kill()

    @staticmethod
    def _force_pid(pid: int) -> None:
        # The process may already be gone; a failed SIGKILL is expected then.
        with contextlib.suppress(OSError):
            os.kill(pid, signal.SIGKILL)


def kill_process_tree(pid: int) -> None:
    """Kill ``pid`` and all of its descendants, children first."""
    try:
        root = psutil.Process(pid)
        children = root.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    except psutil.Error as exc:
        msg = f"Could not inspect process tree of {pid}: {exc}"
        raise TerminationError(msg) from exc

    for child in reversed(children):
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as exc:
            msg = f"Could not kill child {child.pid} of {pid}: {exc}"
            raise TerminationError(msg) from exc

    try:
        root.kill()
    except psutil.NoSuchProcess:
        return
    except psutil.Error as exc:
        msg = f"Could not kill process {pid}: {exc}"
        raise TerminationError(msg) from exc


def select_termination_strategy(
    environment: ExecutionEnvironment,
) -> TerminationStrategy:
    """Pick the strategy matching the environment's process model."""
    if environment.kills_process_tree:
        return TreeKillStrategy()
    return SignalEscalationStrategy()
