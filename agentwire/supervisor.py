"""Lifecycle management for the single in-flight agent CLI process.

The supervisor spawns the CLI for one request, writes the message to its
stdin once, and pumps stdout/stderr through the stream decoder and event
classifier into caller callbacks. At most one process exists at a time;
``start``, ``stop`` and process exit all change state through one lock so a
stop cannot race a new start or a late close.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import os
import shlex
import subprocess  # nosec B404  # B404: required to spawn the agent CLI.
import threading
from dataclasses import dataclass
from typing import IO, TYPE_CHECKING

from .arguments import build_args
from .environment import fix_windows_path
from .events import EventClassifier
from .models import (
    AlreadyRunningError,
    ExecutableNotFoundError,
    JsonEvent,
    PlainText,
    SpawnError,
    TerminationError,
    TerminationOutcome,
    TerminationSignal,
)
from .stream_decoder import STDERR, STDOUT, StreamDecoder
from .termination import SignalEscalationStrategy, select_termination_strategy

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import (
        DecodedEvent,
        ExecutionEnvironment,
        ProcessCallbacks,
        ProcessRequest,
    )
    from .termination import TerminationStrategy

LOGGER = logging.getLogger(__name__)

READ_SIZE = 8192


class SupervisorState(enum.Enum):
    """Lifecycle states of the supervised process slot."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class _RunningProcess:
    process: subprocess.Popen[bytes]
    callbacks: ProcessCallbacks
    decoder: StreamDecoder

    @property
    def pid(self) -> int:
        return self.process.pid


def _command_line(command: list[str]) -> str:
    if os.name == "nt":
        return subprocess.list2cmdline(command)
    return shlex.join(command)


class ProcessSupervisor:
    """Own the one agent CLI process and route its output to callbacks."""

    def __init__(  # noqa: PLR0913
        self,
        environment_resolver: Callable[[], ExecutionEnvironment],
        *,
        argument_builder: Callable[[ProcessRequest, str | None], list[str]] = build_args,
        termination_strategy: TerminationStrategy | None = None,
        classifier: EventClassifier | None = None,
        decoder_factory: Callable[[], StreamDecoder] = StreamDecoder,
        read_size: int = READ_SIZE,
    ) -> None:
        self._environment_resolver = environment_resolver
        self._argument_builder = argument_builder
        self._strategy = termination_strategy
        self.classifier = classifier or EventClassifier()
        self._decoder_factory = decoder_factory
        self._read_size = read_size

        self._lock = threading.Lock()
        self._state = SupervisorState.IDLE
        self._current: _RunningProcess | None = None
        self._stop_requested = False

    @property
    def state(self) -> SupervisorState:
        """Current lifecycle state."""
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        """Return True while a process slot is taken."""
        return self.state is not SupervisorState.IDLE

    @property
    def pid(self) -> int | None:
        """Process id of the running CLI, if any."""
        with self._lock:
            return self._current.pid if self._current else None

    def start(self, request: ProcessRequest, callbacks: ProcessCallbacks) -> int:
        """Spawn the CLI for ``request`` and return its process id.

        Raises:
            AlreadyRunningError: Another process is starting or running.
            ExecutableNotFoundError: The environment has no CLI path.
            SpawnError: The operating system could not create the process.
        """
        with self._lock:
            if self._state is not SupervisorState.IDLE:
                msg = "An agent CLI process is already running"
                raise AlreadyRunningError(msg)
            self._state = SupervisorState.STARTING
            self._stop_requested = False

        try:
            process = self._spawn(request)
        except BaseException:
            with self._lock:
                self._state = SupervisorState.IDLE
            raise

        running = _RunningProcess(
            process=process,
            callbacks=callbacks,
            decoder=self._decoder_factory(),
        )
        with self._lock:
            cancelled = self._stop_requested
            if cancelled:
                self._state = SupervisorState.IDLE
            else:
                self._current = running
                self._state = SupervisorState.RUNNING

        self._start_pumps(running)
        if cancelled:
            LOGGER.info("process_cancelled_during_start", extra={"pid": process.pid})
            if process.stdin is not None:
                with contextlib.suppress(OSError):
                    process.stdin.close()
            self._terminate(process)
            return process.pid

        self._send_message(running, request.message)
        return process.pid

    def stop(self) -> TerminationOutcome | None:
        """Terminate the running process; a no-op when idle."""
        with self._lock:
            running = self._current
            if running is None:
                if self._state is SupervisorState.STARTING:
                    self._stop_requested = True
                return None
            # Cleared before killing so a new start or a late close cannot
            # act on the same handle.
            self._current = None
            self._state = SupervisorState.IDLE

        return self._terminate(running.process)

    def _spawn(self, request: ProcessRequest) -> subprocess.Popen[bytes]:
        environment = self._environment_resolver()
        if not environment.executable_path:
            msg = "Agent CLI executable path could not be determined"
            raise ExecutableNotFoundError(msg)
        if self._strategy is None:
            self._strategy = select_termination_strategy(environment)

        command = [
            environment.executable_path,
            *self._argument_builder(request, request.mcp_config_path),
        ]
        cwd = fix_windows_path(request.working_directory, environment) or None
        env = {
            **os.environ,
            **environment.environment_variables,
            **request.environment_overlay,
        }
        LOGGER.info(
            "process_spawn",
            extra={
                "executable": environment.executable_path,
                "argv": command[1:],
                "cwd": cwd,
                "shell": environment.use_shell,
            },
        )

        try:
            # Argv comes from a fixed flag set; shell mode only when the
            # environment requires it.
            return subprocess.Popen(  # noqa: S603  # nosec B603
                _command_line(command) if environment.use_shell else command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=env,
                shell=environment.use_shell,  # noqa: S602  # nosec B602
            )
        except FileNotFoundError as exc:
            msg = f"Agent CLI could not be launched from `{environment.executable_path}`: {exc}"
            raise SpawnError(msg) from exc
        except OSError as exc:
            msg = f"Failed to launch agent CLI: {exc}"
            raise SpawnError(msg) from exc

    def _send_message(self, running: _RunningProcess, message: str) -> None:
        stdin = running.process.stdin
        if stdin is None:
            return
        try:
            stdin.write(f"{message}\n".encode())
            stdin.flush()
        except OSError as exc:
            LOGGER.warning("stdin_write_failed", extra={"pid": running.pid, "error": str(exc)})
            running.callbacks.on_error(f"Process error: {exc}")
        finally:
            with contextlib.suppress(OSError):
                stdin.close()

    def _start_pumps(self, running: _RunningProcess) -> None:
        readers = [
            threading.Thread(
                target=self._pump,
                args=(running, stream_id, pipe),
                name=f"agentwire-{stream_id}-{running.pid}",
                daemon=True,
            )
            for stream_id, pipe in (
                (STDOUT, running.process.stdout),
                (STDERR, running.process.stderr),
            )
            if pipe is not None
        ]
        for reader in readers:
            reader.start()
        threading.Thread(
            target=self._wait_for_exit,
            args=(running, readers),
            name=f"agentwire-wait-{running.pid}",
            daemon=True,
        ).start()

    def _pump(self, running: _RunningProcess, stream_id: str, pipe: IO[bytes]) -> None:
        read = getattr(pipe, "read1", pipe.read)
        while True:
            try:
                chunk = read(self._read_size)
            except (OSError, ValueError) as exc:
                LOGGER.debug("stream_read_stopped", extra={"stream": stream_id, "error": str(exc)})
                return
            if not chunk:
                return
            # The pipe must keep draining whatever a chunk or callback does,
            # or the child blocks on a full pipe and never exits.
            try:
                events = running.decoder.feed(stream_id, chunk)
            except Exception:  # pylint: disable=broad-exception-caught
                LOGGER.exception("stream_decode_failed", extra={"stream": stream_id})
                continue
            for event in events:
                self._deliver(running, stream_id, event)

    def _wait_for_exit(self, running: _RunningProcess, readers: list[threading.Thread]) -> None:
        for reader in readers:
            reader.join()
        try:
            exit_code: int | None = running.process.wait()
        except OSError as exc:
            LOGGER.warning("process_wait_failed", extra={"pid": running.pid, "error": str(exc)})
            self._release(running)
            running.callbacks.on_error(f"Process error: {exc}")
            running.callbacks.on_close(None)
            return

        try:
            for stream_id in (STDOUT, STDERR):
                try:
                    final = running.decoder.flush(stream_id)
                except Exception:  # pylint: disable=broad-exception-caught
                    LOGGER.exception("stream_decode_failed", extra={"stream": stream_id})
                    continue
                if final is not None:
                    self._deliver(running, stream_id, final)
        finally:
            self._release(running)
            LOGGER.info("process_closed", extra={"pid": running.pid, "exit_code": exit_code})
            running.callbacks.on_close(exit_code)

    def _release(self, running: _RunningProcess) -> None:
        with self._lock:
            if self._current is running:
                self._current = None
                self._state = SupervisorState.IDLE

    def _deliver(self, running: _RunningProcess, stream_id: str, event: DecodedEvent) -> None:
        try:
            self._dispatch(running, stream_id, event)
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.exception(
                "event_dispatch_failed",
                extra={"pid": running.pid, "stream": stream_id},
            )

    def _dispatch(self, running: _RunningProcess, stream_id: str, event: DecodedEvent) -> None:
        callbacks = running.callbacks
        if stream_id == STDERR:
            callbacks.on_error(event.line)
            return
        if isinstance(event, JsonEvent):
            for semantic in self.classifier.classify_all(event.data):
                callbacks.on_data(semantic)
        else:
            callbacks.on_data(PlainText(line=event.line))

    def _terminate(self, process: subprocess.Popen[bytes]) -> TerminationOutcome:
        strategy = self._strategy or SignalEscalationStrategy()
        LOGGER.info("process_stop", extra={"pid": process.pid, "strategy": strategy.name})
        try:
            return strategy.terminate(process.pid, process)
        except (OSError, TerminationError) as exc:
            LOGGER.warning("termination_failed", extra={"pid": process.pid, "error": str(exc)})
            with contextlib.suppress(OSError):
                process.kill()
            return TerminationOutcome(
                signal_sent=TerminationSignal.SIGKILL,
                forced=True,
                error=str(exc),
            )
