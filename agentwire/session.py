"""Blocking conversation driver on top of the process supervisor.

One ``send`` call runs one CLI request to completion: it resumes the current
session, forwards classified events to the caller, keeps usage totals, and
returns the collected assistant text once the process has exited.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import (
    AssistantMessage,
    ErrorEvent,
    FinalResult,
    ProcessCallbacks,
    ProcessRequest,
    SystemInit,
    TokenUpdate,
    UsageTotals,
)
from .usage import UsageAccumulator

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .models import SemanticEvent
    from .supervisor import ProcessSupervisor

LOGIN_HINT = 'Authentication required. Please run "claude login" in your terminal.'


def is_login_error(message: str) -> bool:
    """Return True when an error line asks the user to log in."""
    return "login" in message.lower()


@dataclass
class TurnResult:
    """Outcome of one request/response turn."""

    text: str
    exit_code: int | None
    session_id: str | None
    errors: list[str] = field(default_factory=list)
    totals: UsageTotals = field(default_factory=UsageTotals)
    final: FinalResult | None = None


class ChatSession:
    """Run turns against the agent CLI and keep session state between them."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        accumulator: UsageAccumulator | None = None,
        *,
        session_id: str | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.usage = accumulator or UsageAccumulator()
        self._session_id = session_id

    @property
    def session_id(self) -> str | None:
        """Session id the next turn resumes, if any."""
        return self._session_id

    def new_session(self) -> None:
        """Forget the session id, usage totals, and remembered tool calls."""
        self._session_id = None
        self.usage.reset()
        self.supervisor.classifier.reset()

    def stop(self) -> None:
        """Stop the running turn, if any."""
        self.supervisor.stop()

    def send(  # noqa: PLR0913
        self,
        message: str,
        *,
        working_directory: str,
        model: str = "default",
        thinking_intensity: str | None = None,
        custom_instructions: str | None = None,
        mcp_config_path: str | None = None,
        mcp_system_prompt: str | None = None,
        environment_overlay: Mapping[str, str] | None = None,
        on_event: Callable[[SemanticEvent], None] | None = None,
        on_error: Callable[[str], None] | None = None,
    ) -> TurnResult:
        """Send one message and block until the CLI process exits."""
        request = ProcessRequest(
            message=message,
            working_directory=working_directory,
            session_id=self.session_id,
            model=model,
            thinking_intensity=thinking_intensity,
            custom_instructions=custom_instructions,
            mcp_config_path=mcp_config_path,
            mcp_system_prompt=mcp_system_prompt,
            environment_overlay=dict(environment_overlay or {}),
        )

        text_parts: list[str] = []
        errors: list[str] = []
        finals: list[FinalResult] = []
        closed = threading.Event()
        exit_codes: list[int | None] = []

        def handle_data(event: SemanticEvent) -> None:
            if isinstance(event, TokenUpdate):
                self.usage.apply_token_update(event)
            elif isinstance(event, FinalResult):
                self.usage.apply_final_result(event)
                finals.append(event)
                if event.session_id:
                    self._session_id = event.session_id
                if event.error:
                    errors.append(event.error)
            elif isinstance(event, SystemInit) and event.session_id:
                self._session_id = event.session_id
            elif isinstance(event, AssistantMessage):
                text_parts.append(event.text)
            elif isinstance(event, ErrorEvent):
                errors.append(event.message)
            if on_event is not None:
                on_event(event)

        def handle_error(line: str) -> None:
            errors.append(line)
            if on_error is not None:
                on_error(line)

        def handle_close(code: int | None) -> None:
            exit_codes.append(code)
            closed.set()

        self.supervisor.start(
            request,
            ProcessCallbacks(
                on_data=handle_data,
                on_error=handle_error,
                on_close=handle_close,
            ),
        )
        try:
            closed.wait()
        except KeyboardInterrupt:
            self.supervisor.stop()
            raise

        return TurnResult(
            text="\n".join(text_parts).strip(),
            exit_code=exit_codes[0] if exit_codes else None,
            session_id=self.session_id,
            errors=errors,
            totals=self.usage.get_totals(),
            final=finals[-1] if finals else None,
        )
