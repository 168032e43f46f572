"""Gobblet Gobblers: nested-piece Tic-Tac-Toe on a 3x3 board.

Each side owns two pieces of each size (1 small to 3 large). A move either
places a piece from the reserve or moves one of the side's own visible
pieces; a piece may cover any smaller piece. Only the top piece of each stack
counts for lines, so lifting a piece can reveal the opponent's line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field, model_validator

from ..adapter import GameKindAdapter
from ..game import SEATS, Player, WinInfo, as_seat, other
from ..state import RoomState
from ..wire import densify_cells, densify_list, sparsify_cells
from .tictactoe import WINNING_LINES

SIZE = 9
PIECE_SIZES: Tuple[int, ...] = (1, 2, 3)
PIECES_PER_SIZE = 2


@dataclass(frozen=True)
class Piece:
    owner: Player
    size: int

    def to_wire(self) -> Dict[str, Any]:
        return {"owner": self.owner, "size": self.size}

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["Piece"]:
        if not isinstance(raw, Mapping):
            return None
        owner = as_seat(raw.get("owner"))
        size = raw.get("size")
        if owner is None or size not in PIECE_SIZES:
            return None
        return cls(owner=owner, size=size)


Stacks = List[List[Piece]]
Reserves = Dict[Player, Dict[int, int]]


def empty_stacks() -> Stacks:
    return [[] for _ in range(SIZE)]


def full_reserves() -> Reserves:
    return {seat: {size: PIECES_PER_SIZE for size in PIECE_SIZES} for seat in SEATS}


def top(stack: Sequence[Piece]) -> Optional[Piece]:
    return stack[-1] if stack else None


def _lines(stacks: Sequence[Sequence[Piece]]) -> List[Tuple[Player, Tuple[int, int, int]]]:
    found = []
    for line in WINNING_LINES:
        owners = [getattr(top(stacks[i]), "owner", None) for i in line]
        if owners[0] is not None and owners[0] == owners[1] == owners[2]:
            found.append((owners[0], line))
    return found


def evaluate(stacks: Sequence[Sequence[Piece]]) -> Optional[WinInfo]:
    """First line whose three visible pieces share an owner, if any."""

    lines = _lines(stacks)
    if not lines:
        return None
    owner, line = lines[0]
    return WinInfo(winner=owner, line=line)


def winning_seats(stacks: Sequence[Sequence[Piece]]) -> Set[Player]:
    return {owner for owner, _ in _lines(stacks)}


def resolve_winner(stacks: Sequence[Sequence[Piece]], mover: Player) -> Optional[WinInfo]:
    """Result after ``mover`` played; a revealed opposing line takes priority."""

    lines = _lines(stacks)
    for owner, line in lines:
        if owner != mover:
            return WinInfo(winner=owner, line=line)
    if lines:
        owner, line = lines[0]
        return WinInfo(winner=owner, line=line)
    return None


class GobbletMove(BaseModel):
    """Place a reserve piece of ``size`` or move the top piece of ``source``."""

    target: int = Field(ge=0, lt=SIZE)
    size: Optional[int] = Field(default=None, ge=1, le=3)
    source: Optional[int] = Field(default=None, ge=0, lt=SIZE)

    @model_validator(mode="after")
    def exactly_one_origin(self) -> "GobbletMove":
        if (self.size is None) == (self.source is None):
            raise ValueError("Provide exactly one of 'size' or 'source'")
        if self.source is not None and self.source == self.target:
            raise ValueError("Source and target must differ")
        return self


def apply_move(
    stacks: Sequence[Sequence[Piece]], reserves: Reserves, seat: Player, move: GobbletMove
) -> Tuple[Stacks, Reserves]:
    """Return new stacks and reserves after ``seat`` plays ``move``.

    Raises ``ValueError`` for illegal moves; the inputs are left untouched.
    """

    new_stacks = [list(stack) for stack in stacks]
    new_reserves = {s: dict(counts) for s, counts in reserves.items()}

    if move.source is not None:
        piece = top(new_stacks[move.source])
        if piece is None or piece.owner != seat:
            raise ValueError("No piece of yours on the source cell")
        new_stacks[move.source].pop()
    elif move.size is not None:
        if new_reserves.get(seat, {}).get(move.size, 0) <= 0:
            raise ValueError(f"No size {move.size} pieces left")
        piece = Piece(owner=seat, size=move.size)
        new_reserves[seat][move.size] -= 1
    else:
        raise ValueError("Move has neither a size nor a source")

    covered = top(new_stacks[move.target])
    if covered is not None and covered.size >= piece.size:
        raise ValueError("Target cell holds an equal or larger piece")
    new_stacks[move.target].append(piece)
    return new_stacks, new_reserves


# ---------- Local game ----------


@dataclass
class GobbletGame:
    board: Stacks = field(default_factory=empty_stacks)
    reserves: Reserves = field(default_factory=full_reserves)
    current_player: Player = "X"
    winner: Optional[str] = None
    winning_line: Tuple[int, ...] = ()

    def available_moves(self) -> List[GobbletMove]:
        if self.winner:
            return []
        moves = []
        seat = self.current_player
        for target in range(SIZE):
            covered = top(self.board[target])
            for size, count in self.reserves[seat].items():
                if count > 0 and (covered is None or covered.size < size):
                    moves.append(GobbletMove(target=target, size=size))
            for source in range(SIZE):
                piece = top(self.board[source])
                if (
                    source != target
                    and piece is not None
                    and piece.owner == seat
                    and (covered is None or covered.size < piece.size)
                ):
                    moves.append(GobbletMove(target=target, source=source))
        return moves

    def play_move(self, move: GobbletMove) -> None:
        if self.winner:
            raise ValueError("Game already finished")
        self.board, self.reserves = apply_move(
            self.board, self.reserves, self.current_player, move
        )
        result = resolve_winner(self.board, self.current_player)
        if result:
            self.winner = result.winner
            self.winning_line = result.line
        else:
            self.current_player = other(self.current_player)

    def reset(self) -> None:
        self.board = empty_stacks()
        self.reserves = full_reserves()
        self.current_player = "X"
        self.winner = None
        self.winning_line = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "board": stacks_to_wire(self.board),
            "reserves": reserves_to_wire(self.reserves),
            "winningLine": list(self.winning_line),
        }


# ---------- Online ----------


def stacks_to_wire(stacks: Sequence[Sequence[Piece]]) -> List[List[Dict[str, Any]]]:
    return [[piece.to_wire() for piece in stack] for stack in stacks]


def stacks_from_wire(raw: Any) -> Stacks:
    stacks = densify_cells(raw, SIZE, convert=lambda value: densify_list(value, Piece.from_wire))
    return [stack or [] for stack in stacks]


def reserves_to_wire(reserves: Reserves) -> Dict[str, Dict[str, int]]:
    return {seat: {str(size): count for size, count in counts.items()} for seat, counts in reserves.items()}


def reserves_from_wire(raw: Any) -> Reserves:
    reserves = full_reserves()
    if not isinstance(raw, Mapping):
        return reserves
    for seat in SEATS:
        counts = raw.get(seat)
        if not isinstance(counts, (Mapping, list)):
            continue
        dense = densify_cells(counts, max(PIECE_SIZES) + 1)
        for size in PIECE_SIZES:
            value = dense[size]
            if isinstance(value, int) and not isinstance(value, bool):
                reserves[seat][size] = max(0, min(PIECES_PER_SIZE, value))
            else:
                reserves[seat][size] = 0
    return reserves


@dataclass
class GobbletRoom(RoomState):
    board: Stacks = field(default_factory=empty_stacks)
    reserves: Reserves = field(default_factory=full_reserves)
    winning_line: List[int] = field(default_factory=list)


class GobbletAdapter(GameKindAdapter[GobbletRoom]):
    kind = "gobblet"
    key = "gobblet-games"
    state_cls = GobbletRoom

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "board": stacks_from_wire(raw.get("board")),
            "reserves": reserves_from_wire(raw.get("reserves")),
            "winning_line": densify_list(
                raw.get("winningLine"),
                lambda v: v if isinstance(v, int) and 0 <= v < SIZE else None,
            ),
        }

    def get_rematch_state(self) -> Dict[str, Any]:
        return {
            "board": stacks_to_wire(empty_stacks()),
            "reserves": reserves_to_wire(full_reserves()),
            "winningLine": [],
        }

    def game_fields(self, state: GobbletRoom) -> Dict[str, Any]:
        return {
            "board": stacks_to_wire(state.board),
            "reserves": reserves_to_wire(state.reserves),
            "winningLine": list(state.winning_line),
        }

    def parse_move(self, payload: Any) -> GobbletMove:
        return GobbletMove.model_validate(payload)

    def propose_move(
        self, state: GobbletRoom, seat: Player, move: GobbletMove
    ) -> Optional[Dict[str, Any]]:
        try:
            stacks, reserves = apply_move(state.board, state.reserves, seat, move)
        except ValueError:
            return None
        updates: Dict[str, Any] = {
            "board": stacks_to_wire(stacks),
            "reserves": reserves_to_wire(reserves),
            "currentPlayer": other(seat),
        }
        result = resolve_winner(stacks, seat)
        if result:
            updates["winner"] = result.winner
            updates["winningLine"] = list(result.line)
        return updates

    def encode(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        encoded = dict(updates)
        if "board" in encoded:
            encoded["board"] = sparsify_cells(
                [stack or None for stack in encoded["board"]], sparsify_cells
            )
        return encoded
