"""Minimax opponents for Tic-Tac-Toe and Connect 4."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .game import DRAW, Player, other
from .games import connect4, tictactoe
from .games.connect4 import COLS, Connect4Game, Grid
from .games.tictactoe import TicTacToeGame

# Center-out ordering lets alpha-beta cut more branches early.
COLUMN_ORDER: Tuple[int, ...] = (3, 2, 4, 1, 5, 0, 6)
CENTER_COLUMN = COLS // 2
CENTER_WEIGHT = 3

WIN_SCORE = 100_000


@dataclass
class TicTacToeAI:
    """Full-depth minimax. Wins score ``10 - depth``, losses ``depth - 10``."""

    player: Player
    _tt: Dict[Tuple[Optional[Player], ...], int] = field(default_factory=dict, repr=False)

    def choose(self, game: TicTacToeGame) -> int:
        if game.current_player != self.player:
            raise ValueError("It is not this AI player's turn")
        return self.best_move(game.board)

    def best_move(self, board: Sequence[Optional[Player]]) -> int:
        moves = [i for i, cell in enumerate(board) if cell is None]
        if not moves or tictactoe.evaluate(board):
            raise RuntimeError("No valid moves available")

        # Scores are relative to this root, so the table is per call.
        self._tt = {}
        best_move, best_score = moves[0], -math.inf
        for move in moves:
            child = list(board)
            child[move] = self.player
            score = self._minimax(child, 1, False)
            if score > best_score:
                best_move, best_score = move, score
        return best_move

    def _minimax(self, board: List[Optional[Player]], depth: int, maximizing: bool) -> int:
        result = tictactoe.evaluate(board)
        if result:
            if result.winner == DRAW:
                return 0
            return 10 - depth if result.winner == self.player else depth - 10

        key = tuple(board)
        cached = self._tt.get(key)
        if cached is not None:
            return cached

        mark = self.player if maximizing else other(self.player)
        scores = []
        for i, cell in enumerate(board):
            if cell is not None:
                continue
            board[i] = mark
            scores.append(self._minimax(board, depth + 1, not maximizing))
            board[i] = None
        value = max(scores) if maximizing else min(scores)
        self._tt[key] = value
        return value


@dataclass
class Connect4AI:
    """Depth-limited alpha-beta with a sliding-window heuristic."""

    player: Player
    depth: int = 4

    def choose(self, game: Connect4Game) -> int:
        if game.current_player != self.player:
            raise ValueError("It is not this AI player's turn")
        return self.best_move(game.board)

    def best_move(self, board: Sequence[Sequence[Optional[Player]]]) -> int:
        moves = _valid_columns(board)
        if not moves or connect4.evaluate(board):
            raise RuntimeError("No valid moves available")

        alpha, beta = -math.inf, math.inf
        best_move, best_score = moves[0], -math.inf
        for col in moves:
            child = _drop(board, col, self.player)
            score = self._minimax(child, self.depth - 1, alpha, beta, False, 1)
            if score > best_score:
                best_move, best_score = col, score
            alpha = max(alpha, best_score)
        return best_move

    # ---- core search ----

    def _minimax(
        self,
        board: Grid,
        depth: int,
        alpha: float,
        beta: float,
        maximizing: bool,
        ply: int,
    ) -> float:
        result = connect4.evaluate(board)
        if result:
            if result.winner == DRAW:
                return 0
            if result.winner == self.player:
                return WIN_SCORE - ply
            return -WIN_SCORE + ply
        if depth == 0:
            return self.score_position(board)

        if maximizing:
            value = -math.inf
            for col in _valid_columns(board):
                child = _drop(board, col, self.player)
                value = max(value, self._minimax(child, depth - 1, alpha, beta, False, ply + 1))
                alpha = max(alpha, value)
                if alpha >= beta:
                    break
            return value

        value = math.inf
        for col in _valid_columns(board):
            child = _drop(board, col, other(self.player))
            value = min(value, self._minimax(child, depth - 1, alpha, beta, True, ply + 1))
            beta = min(beta, value)
            if alpha >= beta:
                break
        return value

    # ---- heuristics ----

    def score_position(self, board: Sequence[Sequence[Optional[Player]]]) -> float:
        me = self.player
        score = CENTER_WEIGHT * sum(1 for row in board if row[CENTER_COLUMN] == me)
        for run in connect4.WINDOWS:
            score += self._score_window([board[r][c] for r, c in run])
        return score

    def _score_window(self, window: List[Optional[Player]]) -> int:
        me, opp = self.player, other(self.player)
        mine = window.count(me)
        theirs = window.count(opp)
        empty = window.count(None)
        if mine == 4:
            return 100
        if mine == 3 and empty == 1:
            return 5
        if mine == 2 and empty == 2:
            return 2
        if theirs == 3 and empty == 1:
            return -80
        return 0


def _valid_columns(board: Sequence[Sequence[Optional[Player]]]) -> List[int]:
    return [c for c in COLUMN_ORDER if board[0][c] is None]


def _drop(board: Sequence[Sequence[Optional[Player]]], col: int, player: Player) -> Grid:
    child = connect4.copy_grid(board)
    row = connect4.drop_row(child, col)
    if row is None:
        raise ValueError(f"Column {col} is full")
    child[row][col] = player
    return child
