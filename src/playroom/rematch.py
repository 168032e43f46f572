"""Two-phase rematch negotiation.

Both seats raise their ``rematch`` flag; when a client sees the flags become
both true it resets the room, but only the seat equal to the current
``startingPlayer`` writes. The reset swaps the seats, so the previous
non-starting seat label starts the next game.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .adapter import GameKindAdapter
from .game import Player, other
from .state import RoomState


def both_ready(state: RoomState) -> bool:
    return bool(state.rematch.get("X")) and bool(state.rematch.get("O"))


def is_leader(state: RoomState, seat: Optional[Player]) -> bool:
    return seat is not None and seat == state.starting_player


def build_reset(state: RoomState, adapter: GameKindAdapter[Any]) -> Dict[str, Any]:
    """Update that starts the next game instance from a finished ``state``."""

    next_start = other(state.starting_player)
    players = {
        "X": state.players["O"].to_wire() if state.players["O"] else None,
        "O": state.players["X"].to_wire() if state.players["X"] else None,
    }
    updates: Dict[str, Any] = {
        "players": players,
        "startingPlayer": next_start,
        "currentPlayer": next_start,
        "winner": None,
        "rematch": {"X": False, "O": False},
    }
    updates.update(adapter.get_rematch_state())
    return updates


class RematchCoordinator:
    """Fires the reset once per transition into the both-ready state."""

    def __init__(self, adapter: GameKindAdapter[Any]) -> None:
        self.adapter = adapter
        self._both_ready = False

    def observe(self, state: RoomState, seat: Optional[Player]) -> Optional[Dict[str, Any]]:
        """Reset update to commit for this snapshot, or ``None``."""

        ready = both_ready(state)
        edge = ready and not self._both_ready
        self._both_ready = ready
        if edge and is_leader(state, seat):
            return build_reset(state, self.adapter)
        return None
