"""Connect 4 rules, local game model and online adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from ..adapter import GameKindAdapter
from ..game import DRAW, Player, WinInfo, as_seat, other
from ..state import RoomState
from ..wire import densify_grid, densify_list, sparsify_grid

ROWS = 6
COLS = 7
CONNECT = 4

Grid = List[List[Optional[Player]]]
Cell = Tuple[int, int]

# (dr, dc) step of each scan direction
_DIRECTIONS: Tuple[Tuple[int, int], ...] = (
    (0, 1),  # horizontal
    (1, 0),  # vertical
    (1, 1),  # diagonal down-right
    (-1, 1),  # diagonal up-right
)


def empty_grid() -> Grid:
    return [[None] * COLS for _ in range(ROWS)]


def copy_grid(grid: Sequence[Sequence[Optional[Player]]]) -> Grid:
    return [list(row) for row in grid]


def drop_row(grid: Sequence[Sequence[Optional[Player]]], col: int) -> Optional[int]:
    """Lowest empty row of ``col``, or ``None`` if the column is full."""

    for r in range(ROWS - 1, -1, -1):
        if grid[r][col] is None:
            return r
    return None


def windows() -> List[Tuple[Cell, ...]]:
    """Every run of ``CONNECT`` cells on the board, in scan order."""

    runs = []
    for dr, dc in _DIRECTIONS:
        for r in range(ROWS):
            for c in range(COLS):
                end_r = r + dr * (CONNECT - 1)
                end_c = c + dc * (CONNECT - 1)
                if 0 <= end_r < ROWS and 0 <= end_c < COLS:
                    runs.append(tuple((r + dr * i, c + dc * i) for i in range(CONNECT)))
    return runs


WINDOWS: Tuple[Tuple[Cell, ...], ...] = tuple(windows())


def evaluate(grid: Sequence[Sequence[Optional[Player]]]) -> Optional[WinInfo]:
    for run in WINDOWS:
        r, c = run[0]
        v = grid[r][c]
        if v is not None and all(grid[rr][cc] == v for rr, cc in run[1:]):
            return WinInfo(winner=v, line=run)
    # Columns fill bottom-up, so a full top row means a full board.
    if all(cell is not None for cell in grid[0]):
        return WinInfo(winner=DRAW)
    return None


# ---------- Local / AI game ----------


@dataclass
class Connect4Game:
    board: Grid = field(default_factory=empty_grid)
    current_player: Player = "X"
    winner: Optional[str] = None
    winning_line: Tuple[Cell, ...] = ()

    def available_moves(self) -> List[int]:
        if self.winner:
            return []
        return [c for c in range(COLS) if self.board[0][c] is None]

    def play_move(self, col: int) -> None:
        if self.winner:
            raise ValueError("Game already finished")
        if not 0 <= col < COLS:
            raise ValueError("Column out of range")
        row = drop_row(self.board, col)
        if row is None:
            raise ValueError("Column is full")
        self.board[row][col] = self.current_player
        result = evaluate(self.board)
        if result:
            self.winner = result.winner
            self.winning_line = result.line
        else:
            self.current_player = other(self.current_player)

    def clone(self) -> "Connect4Game":
        return Connect4Game(
            board=copy_grid(self.board),
            current_player=self.current_player,
            winner=self.winner,
            winning_line=self.winning_line,
        )

    def reset(self) -> None:
        self.board = empty_grid()
        self.current_player = "X"
        self.winner = None
        self.winning_line = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "board": copy_grid(self.board),
            "winningLine": [{"r": r, "c": c} for r, c in self.winning_line],
        }


# ---------- Online ----------


@dataclass
class Connect4Room(RoomState):
    board: Grid = field(default_factory=empty_grid)
    winning_line: List[Cell] = field(default_factory=list)


class Connect4Move(BaseModel):
    column: int = Field(ge=0, lt=COLS)


def _cell(value: Any) -> Optional[Cell]:
    if not isinstance(value, Mapping):
        return None
    r, c = value.get("r"), value.get("c")
    if isinstance(r, int) and isinstance(c, int) and 0 <= r < ROWS and 0 <= c < COLS:
        return (r, c)
    return None


class Connect4Adapter(GameKindAdapter[Connect4Room]):
    kind = "connect4"
    key = "connect4-games"
    state_cls = Connect4Room

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "board": densify_grid(raw.get("board"), ROWS, COLS, convert=as_seat),
            "winning_line": densify_list(raw.get("winningLine"), _cell),
        }

    def get_rematch_state(self) -> Dict[str, Any]:
        return {"board": empty_grid(), "winningLine": []}

    def game_fields(self, state: Connect4Room) -> Dict[str, Any]:
        return {
            "board": copy_grid(state.board),
            "winningLine": [{"r": r, "c": c} for r, c in state.winning_line],
        }

    def parse_move(self, payload: Any) -> int:
        return Connect4Move.model_validate(payload).column

    def propose_move(
        self, state: Connect4Room, seat: Player, move: int
    ) -> Optional[Dict[str, Any]]:
        if not 0 <= move < COLS:
            return None
        row = drop_row(state.board, move)
        if row is None:
            return None
        board = copy_grid(state.board)
        board[row][move] = seat
        updates: Dict[str, Any] = {"board": board, "currentPlayer": other(seat)}
        result = evaluate(board)
        if result:
            updates["winner"] = result.winner
            updates["winningLine"] = [{"r": r, "c": c} for r, c in result.line]
        return updates

    def encode(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        encoded = dict(updates)
        if "board" in encoded:
            encoded["board"] = sparsify_grid(encoded["board"])
        return encoded
