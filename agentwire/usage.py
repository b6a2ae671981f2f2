"""Token and cost accounting across one conversation."""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import TYPE_CHECKING

from .models import UsageTotals

if TYPE_CHECKING:
    from .models import FinalResult, TokenUpdate


class UsageAccumulator:
    """Accumulate usage reported by the CLI.

    Token updates carry cumulative-so-far counts for the in-flight request,
    so they replace the in-flight counters instead of adding to them. A final
    result closes the request: its cost is added, the request counter grows
    by one, and the in-flight counters fold into the completed totals.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_cost = Decimal(0)
        self._completed_input = 0
        self._completed_output = 0
        self._current_input = 0
        self._current_output = 0
        self._request_count = 0
        self._session_id: str | None = None

    @property
    def session_id(self) -> str | None:
        """Session id captured from the latest final result."""
        return self._session_id

    def apply_token_update(self, update: TokenUpdate) -> None:
        """Record the latest cumulative token counts of the in-flight request."""
        with self._lock:
            self._current_input = max(self._current_input, update.input_tokens)
            self._current_output = max(self._current_output, update.output_tokens)

    def apply_final_result(self, result: FinalResult) -> None:
        """Close the in-flight request and add its reported cost."""
        with self._lock:
            if result.usage is not None:
                self._current_input = max(self._current_input, result.usage.input_tokens)
                self._current_output = max(self._current_output, result.usage.output_tokens)
            self._completed_input += self._current_input
            self._completed_output += self._current_output
            self._current_input = 0
            self._current_output = 0
            self._request_count += 1
            cost = result.cost_usd
            if cost is not None and cost.is_finite() and cost > 0:
                self._total_cost += cost
            if result.session_id:
                self._session_id = result.session_id

    def get_totals(self) -> UsageTotals:
        """Return a snapshot of the running totals."""
        with self._lock:
            return UsageTotals(
                total_cost=self._total_cost,
                total_input_tokens=self._completed_input + self._current_input,
                total_output_tokens=self._completed_output + self._current_output,
                request_count=self._request_count,
            )

    def reset(self) -> None:
        """Zero every counter and forget the session for a new conversation."""
        with self._lock:
            self._total_cost = Decimal(0)
            self._completed_input = 0
            self._completed_output = 0
            self._current_input = 0
            self._current_output = 0
            self._request_count = 0
            self._session_id = None
