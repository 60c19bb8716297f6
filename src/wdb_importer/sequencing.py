"""Per-word-unit sign positions, carried across chunk boundaries."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class SequencingState:
    """Word unit of the previous row and the next sign position."""

    last_word_unit_id: int | None = None
    sign_counter: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_word_unit_id": self.last_word_unit_id,
            "sign_counter": self.sign_counter,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SequencingState:
        return cls(
            last_word_unit_id=data.get("last_word_unit_id"),
            sign_counter=int(data.get("sign_counter", 1)),
        )


def begin_row(
    state: SequencingState, word_unit_id: int | None
) -> tuple[SequencingState, int]:
    """Return the state for a new row and that row's sign sequence.

    The counter restarts at 1 whenever the word unit changes. Rows must
    be grouped contiguously by word unit.
    """
    if word_unit_id != state.last_word_unit_id:
        state = replace(state, sign_counter=1)
    return state, state.sign_counter


def end_row(
    state: SequencingState, word_unit_id: int | None, success: bool
) -> SequencingState:
    """Advance the counter after a successful row."""
    counter = state.sign_counter + 1 if success else state.sign_counter
    return SequencingState(last_word_unit_id=word_unit_id, sign_counter=counter)
