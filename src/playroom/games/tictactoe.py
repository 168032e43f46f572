"""Tic-Tac-Toe rules, local game model and online adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..adapter import GameKindAdapter
from ..game import DRAW, Player, WinInfo, as_seat, other
from ..state import RoomState
from ..wire import densify_cells, densify_list, sparsify_cells

SIZE = 9

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)

Board = List[Optional[Player]]


def empty_board() -> Board:
    return [None] * SIZE


def evaluate(board: Sequence[Optional[Player]]) -> Optional[WinInfo]:
    for a, b, c in WINNING_LINES:
        v = board[a]
        if v is not None and v == board[b] == board[c]:
            return WinInfo(winner=v, line=(a, b, c))
    if all(cell is not None for cell in board):
        return WinInfo(winner=DRAW)
    return None


# ---------- Local / AI game ----------


@dataclass
class TicTacToeGame:
    board: Board = field(default_factory=empty_board)
    current_player: Player = "X"
    winner: Optional[str] = None
    winning_line: Tuple[int, ...] = ()

    def available_moves(self) -> List[int]:
        if self.winner:
            return []
        return [i for i, cell in enumerate(self.board) if cell is None]

    def play_move(self, cell: int) -> None:
        if self.winner:
            raise ValueError("Game already finished")
        if not 0 <= cell < SIZE:
            raise ValueError("Cell out of range")
        if self.board[cell] is not None:
            raise ValueError("Cell already occupied")
        self.board[cell] = self.current_player
        result = evaluate(self.board)
        if result:
            self.winner = result.winner
            self.winning_line = result.line
        else:
            self.current_player = other(self.current_player)

    def clone(self) -> "TicTacToeGame":
        return TicTacToeGame(
            board=list(self.board),
            current_player=self.current_player,
            winner=self.winner,
            winning_line=self.winning_line,
        )

    def reset(self) -> None:
        self.board = empty_board()
        self.current_player = "X"
        self.winner = None
        self.winning_line = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "board": list(self.board),
            "winningLine": list(self.winning_line),
        }


# ---------- Online ----------


@dataclass
class TicTacToeRoom(RoomState):
    board: Board = field(default_factory=empty_board)
    winning_line: List[int] = field(default_factory=list)


class TicTacToeMove(BaseModel):
    cell: int = Field(ge=0, lt=SIZE)


def _cell_index(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < SIZE:
        return value
    return None


class TicTacToeAdapter(GameKindAdapter[TicTacToeRoom]):
    kind = "tictactoe"
    key = "tictactoe-games"
    state_cls = TicTacToeRoom

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "board": densify_cells(raw.get("board"), SIZE, convert=as_seat),
            "winning_line": densify_list(raw.get("winningLine"), _cell_index),
        }

    def get_rematch_state(self) -> Dict[str, Any]:
        return {"board": empty_board(), "winningLine": []}

    def game_fields(self, state: TicTacToeRoom) -> Dict[str, Any]:
        return {"board": list(state.board), "winningLine": list(state.winning_line)}

    def parse_move(self, payload: Any) -> int:
        return TicTacToeMove.model_validate(payload).cell

    def propose_move(
        self, state: TicTacToeRoom, seat: Player, move: int
    ) -> Optional[Dict[str, Any]]:
        if not 0 <= move < SIZE or state.board[move] is not None:
            return None
        board = list(state.board)
        board[move] = seat
        updates: Dict[str, Any] = {"board": board, "currentPlayer": other(seat)}
        result = evaluate(board)
        if result:
            updates["winner"] = result.winner
            updates["winningLine"] = list(result.line)
        return updates

    def encode(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        encoded = dict(updates)
        if "board" in encoded:
            encoded["board"] = sparsify_cells(encoded["board"])
        return encoded
