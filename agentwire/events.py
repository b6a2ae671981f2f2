"""Classification of decoded stream-json objects into semantic events.

The CLI protocol is loosely typed: one object may carry a usage record, text,
thinking, and tool blocks at once. Classification expands an object into the
ordered events it contains and never raises; shapes it does not recognize
pass through as ``Unclassified``.
"""

from __future__ import annotations

import json
import math
import threading
from decimal import Decimal, InvalidOperation
from typing import Any

from .models import (
    AssistantMessage,
    AssistantThinking,
    ErrorEvent,
    FinalResult,
    SemanticEvent,
    SystemInit,
    TokenUpdate,
    ToolResult,
    ToolUse,
    Unclassified,
)

MAX_RESULT_LENGTH = 50_000
TRUNCATION_MARKER = "\n\n[... truncated due to length ...]"
ALWAYS_HIDDEN_TOOLS = frozenset({"AskUserQuestion", "ExitPlanMode"})
QUIET_TOOLS = frozenset({"Read", "Edit", "TodoWrite", "MultiEdit"})
MESSAGE_TYPES = frozenset({"assistant", "user", "system"})


def _int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float) and math.isfinite(value):
        return max(int(value), 0)
    return 0


def _optional_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def _cost(value: object) -> Decimal | None:
    if isinstance(value, bool) or not isinstance(value, int | float | str):
        return None
    try:
        cost = Decimal(str(value))
    except InvalidOperation:
        return None
    return cost if cost.is_finite() else None


def _text(value: object) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def token_update_from_usage(usage: object) -> TokenUpdate | None:
    """Build a token update from a protocol ``usage`` record."""
    if not isinstance(usage, dict):
        return None
    return TokenUpdate(
        input_tokens=_int(usage.get("input_tokens")),
        output_tokens=_int(usage.get("output_tokens")),
        cache_creation=_int(usage.get("cache_creation_input_tokens")),
        cache_read=_int(usage.get("cache_read_input_tokens")),
    )


def should_hide_tool_result(tool_name: str | None, *, is_error: bool) -> bool:
    """Return True for tool results the chat view does not need to show."""
    if tool_name in ALWAYS_HIDDEN_TOOLS:
        return True
    if is_error:
        return False
    return tool_name in QUIET_TOOLS


def format_tool_result_content(content: object) -> str:
    """Render tool result content as display text, truncated when huge."""
    if content is None:
        text = ""
    elif isinstance(content, str):
        text = content
    elif isinstance(content, list) and content:
        parts = [
            item["text"]
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        text = "\n".join(parts) if parts else json.dumps(content, indent=2)
    else:
        text = json.dumps(content, indent=2)

    if len(text) > MAX_RESULT_LENGTH:
        return text[:MAX_RESULT_LENGTH] + TRUNCATION_MARKER
    return text


class EventClassifier:
    """Map protocol objects to semantic events.

    Each object is classified on its own; the only memory kept is the name
    of each tool call by id, so later tool results can be attributed and
    hidden consistently. ``reset`` clears it for a new conversation. Reader
    threads of a stopped process and of its successor may classify at the
    same time; the memory is only touched under the lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tool_names: dict[str, str] = {}
        self._last_tool_name: str | None = None

    def reset(self) -> None:
        """Forget remembered tool calls."""
        with self._lock:
            self._tool_names.clear()
            self._last_tool_name = None

    def classify(self, data: object) -> SemanticEvent:
        """Return the primary semantic event for one decoded object."""
        return self.classify_all(data)[0]

    def classify_all(self, data: object) -> list[SemanticEvent]:
        """Return every semantic event one decoded object carries, in order."""
        with self._lock:
            return self._classify(data)

    def _classify(self, data: object) -> list[SemanticEvent]:
        if not isinstance(data, dict):
            return [Unclassified(data=data)]

        msg_type = data.get("type")
        message = data.get("message")

        if msg_type == "result":
            return [self._final_result(data)]

        if msg_type == "system" and data.get("subtype") == "init":
            return [
                SystemInit(
                    session_id=_text(data.get("session_id")),
                    data={k: v for k, v in data.items() if k not in ("type", "subtype")},
                ),
            ]

        if msg_type in MESSAGE_TYPES and isinstance(message, dict):
            events = self._message_events(message, from_assistant=msg_type == "assistant")
            return events or [Unclassified(data=data)]

        if isinstance(message, dict) and isinstance(message.get("usage"), dict):
            if _text(data.get("session_id")):
                return [self._final_result(data)]
            update = token_update_from_usage(message["usage"])
            if update is not None:
                return [update]

        error = data.get("error")
        if error:
            return [ErrorEvent(message=error if isinstance(error, str) else json.dumps(error))]

        if msg_type == "tool_use" or ("name" in data and "input" in data):
            return [self._tool_use(data)]

        if msg_type == "tool_result" or ("content" in data and "is_error" in data):
            return [self._tool_result(data)]

        text = _text(data.get("text")) or (
            _text(data.get("data")) if msg_type == "text" else None
        )
        if text:
            return [AssistantMessage(text=text)]

        return [Unclassified(data=data)]

    def _message_events(
        self,
        message: dict[str, Any],
        *,
        from_assistant: bool,
    ) -> list[SemanticEvent]:
        events: list[SemanticEvent] = []
        update = token_update_from_usage(message.get("usage"))
        if update is not None:
            events.append(update)

        content = message.get("content")
        if isinstance(content, str) and content and from_assistant:
            events.append(AssistantMessage(text=content))
            return events
        if not isinstance(content, list):
            return events

        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "text":
                text = _text(block.get("text"))
                if text:
                    events.append(AssistantMessage(text=text))
            elif block_type == "thinking":
                thinking = _text(block.get("thinking")) or _text(block.get("text"))
                if thinking:
                    events.append(AssistantThinking(text=thinking))
            elif block_type == "tool_use":
                events.append(self._tool_use(block))
            elif block_type == "tool_result":
                events.append(self._tool_result(block))
        return events

    def _tool_use(self, block: dict[str, Any]) -> ToolUse:
        name = str(block.get("name") or "")
        tool_use_id = _text(block.get("id"))
        if tool_use_id:
            self._tool_names[tool_use_id] = name
        self._last_tool_name = name
        return ToolUse(name=name, raw_input=block.get("input"), tool_use_id=tool_use_id)

    def _tool_result(self, block: dict[str, Any]) -> ToolResult:
        tool_use_id = _text(block.get("tool_use_id"))
        tool_name = self._tool_names.get(tool_use_id or "", self._last_tool_name)
        is_error = block.get("is_error") is True
        return ToolResult(
            content=format_tool_result_content(block.get("content")),
            is_error=is_error,
            hidden=should_hide_tool_result(tool_name, is_error=is_error),
            tool_use_id=tool_use_id,
            tool_name=tool_name,
        )

    @staticmethod
    def _final_result(data: dict[str, Any]) -> FinalResult:
        message = data.get("message")
        usage = data.get("usage")
        if usage is None and isinstance(message, dict):
            usage = message.get("usage")
        error = data.get("error")
        return FinalResult(
            session_id=_text(data.get("session_id")),
            usage=token_update_from_usage(usage),
            cost_usd=_cost(data.get("total_cost_usd", data.get("cost_usd"))),
            duration_ms=_optional_int(data.get("duration_ms")),
            num_turns=_optional_int(data.get("num_turns")),
            is_error=data.get("is_error") is True,
            error=error if isinstance(error, str) and error else None,
            result=_text(data.get("result")),
        )
