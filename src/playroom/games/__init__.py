"""Rules and online adapters for each game kind."""

from __future__ import annotations

from typing import Any, Dict, Optional

from ..adapter import GameKindAdapter
from .chess import ChessAdapter, ChessRules
from .connect4 import Connect4Adapter
from .crossword import CrosswordAdapter
from .gobblet import GobbletAdapter
from .tictactoe import TicTacToeAdapter


def default_adapters(chess_rules: Optional[ChessRules] = None) -> Dict[str, GameKindAdapter[Any]]:
    """One adapter per game kind, keyed by ``kind``."""

    adapters = (
        TicTacToeAdapter(),
        Connect4Adapter(),
        GobbletAdapter(),
        CrosswordAdapter(),
        ChessAdapter(chess_rules),
    )
    return {adapter.kind: adapter for adapter in adapters}


__all__ = [
    "ChessAdapter",
    "Connect4Adapter",
    "CrosswordAdapter",
    "GobbletAdapter",
    "TicTacToeAdapter",
    "default_adapters",
]
