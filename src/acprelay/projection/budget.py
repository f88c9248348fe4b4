"""Per-turn output budgets."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class BudgetTracker:
    """Counters for one turn. Counters only ever grow."""

    max_turn_chars: int
    max_meta_events: int
    text_chars: int = 0
    meta_events: int = 0
    notice_sent: bool = False

    @property
    def text_remaining(self) -> int:
        return max(0, self.max_turn_chars - self.text_chars)

    @property
    def text_exhausted(self) -> bool:
        return self.text_chars >= self.max_turn_chars

    @property
    def meta_exhausted(self) -> bool:
        return self.meta_events >= self.max_meta_events

    def add_text(self, count: int) -> None:
        if count > 0:
            self.text_chars += count

    def add_meta(self) -> None:
        self.meta_events += 1

    def mark_notice_sent(self) -> None:
        self.notice_sent = True
