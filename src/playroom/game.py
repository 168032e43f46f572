"""Seat labels and terminal-result types shared by every game."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Tuple

Player = str  # "X" or "O"

SEATS: Tuple[Player, Player] = ("X", "O")
DRAW = "Draw"


def other(player: Player) -> Player:
    return "O" if player == "X" else "X"


def as_seat(value: Any, default: Optional[Player] = None) -> Optional[Player]:
    """Return ``value`` if it is a seat label, else ``default``."""

    return value if value in SEATS else default


@dataclass(frozen=True)
class WinInfo:
    """Terminal result: ``winner`` is a seat or ``DRAW``; ``line`` the winning cells."""

    winner: str
    line: Tuple[Any, ...] = ()
