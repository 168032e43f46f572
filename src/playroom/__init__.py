"""Playroom package exposing game rules, AI opponents, online rooms and the web application."""

from .ai import Connect4AI, TicTacToeAI
from .games import default_adapters
from .games.connect4 import Connect4Game
from .games.gobblet import GobbletGame
from .games.tictactoe import TicTacToeGame
from .rooms import join_or_create
from .session import OnlineSession
from .store import InMemoryRecordStore
from .ui import app

__all__ = [
    "Connect4AI",
    "Connect4Game",
    "GobbletGame",
    "InMemoryRecordStore",
    "OnlineSession",
    "TicTacToeAI",
    "TicTacToeGame",
    "app",
    "default_adapters",
    "join_or_create",
]
