"""Online chess: turn and network plumbing around an external rules engine.

The seat that starts a game (``startingPlayer``) plays white, so colours
follow the devices across rematches. Legality, the resulting position and the
game result all come from a ``ChessRules`` implementation;
``PythonChessRules`` wraps the ``python-chess`` library.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol

import chess
from pydantic import BaseModel, Field

from ..adapter import GameKindAdapter
from ..game import DRAW, SEATS, Player, other
from ..state import RoomState
from ..wire import densify_list

STARTING_FEN = chess.STARTING_FEN
WHITE = "w"
BLACK = "b"
SQUARE_PATTERN = r"^[a-h][1-8]$"


class ChessMove(BaseModel):
    from_square: str = Field(alias="from", pattern=SQUARE_PATTERN)
    to_square: str = Field(alias="to", pattern=SQUARE_PATTERN)
    promotion: Optional[str] = Field(default=None, pattern=r"^[qrbn]$")

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"


@dataclass(frozen=True)
class ChessMoveResult:
    """What the rules engine reports for an accepted move."""

    from_square: str
    to_square: str
    flags: str
    san: str
    fen: str
    color: str  # "w" or "b"
    captured: Optional[str] = None
    promotion: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        record = {
            "from": self.from_square,
            "to": self.to_square,
            "flags": self.flags,
            "san": self.san,
            "fen": self.fen,
            "color": self.color,
        }
        if self.captured:
            record["captured"] = self.captured
        if self.promotion:
            record["promotion"] = self.promotion
        return record

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["ChessMoveResult"]:
        if not isinstance(raw, Mapping):
            return None
        try:
            return cls(
                from_square=str(raw["from"]),
                to_square=str(raw["to"]),
                flags=str(raw.get("flags") or ""),
                san=str(raw.get("san") or ""),
                fen=str(raw.get("fen") or ""),
                color=str(raw.get("color") or "w"),
                captured=raw.get("captured") or None,
                promotion=raw.get("promotion") or None,
            )
        except KeyError:
            return None


class ChessRules(Protocol):
    def move(self, fen: str, move: ChessMove) -> Optional[ChessMoveResult]:
        """Play ``move`` on ``fen``; ``None`` when it is illegal."""

    def result(self, fen: str) -> Optional[str]:
        """``"w"``/``"b"`` for the winning colour, ``"Draw"``, or ``None``."""


class PythonChessRules:
    """``ChessRules`` backed by python-chess."""

    def move(self, fen: str, move: ChessMove) -> Optional[ChessMoveResult]:
        try:
            board = chess.Board(fen)
            parsed = chess.Move.from_uci(move.uci)
        except ValueError:
            return None
        if not board.is_legal(parsed):
            return None

        flags = []
        captured = None
        if board.is_en_passant(parsed):
            flags.append("e")
            captured = "p"
        elif board.is_capture(parsed):
            flags.append("c")
            piece = board.piece_at(parsed.to_square)
            captured = piece.symbol().lower() if piece else None
        if board.is_kingside_castling(parsed):
            flags.append("k")
        elif board.is_queenside_castling(parsed):
            flags.append("q")
        if parsed.promotion:
            flags.append("p")
        moving = board.piece_at(parsed.from_square)
        if (
            moving is not None
            and moving.piece_type == chess.PAWN
            and abs(chess.square_rank(parsed.to_square) - chess.square_rank(parsed.from_square)) == 2
        ):
            flags.append("b")

        color = WHITE if board.turn == chess.WHITE else BLACK
        san = board.san(parsed)
        board.push(parsed)
        return ChessMoveResult(
            from_square=move.from_square,
            to_square=move.to_square,
            flags="".join(flags) or "n",
            san=san,
            fen=board.fen(),
            color=color,
            captured=captured,
            promotion=move.promotion,
        )

    def result(self, fen: str) -> Optional[str]:
        try:
            board = chess.Board(fen)
        except ValueError:
            return None
        outcome = board.outcome(claim_draw=False)
        if outcome is None:
            return None
        if outcome.winner is None:
            return DRAW
        return WHITE if outcome.winner == chess.WHITE else BLACK


def seat_of_colour(colour: str, white_seat: Player) -> Player:
    return white_seat if colour == WHITE else other(white_seat)


def captured_pieces(
    history: List[ChessMoveResult], white_seat: Player = "X"
) -> Dict[Player, List[str]]:
    """Pieces each seat has taken, in capture order."""

    taken: Dict[Player, List[str]] = {"X": [], "O": []}
    for entry in history:
        if entry.captured:
            taken[seat_of_colour(entry.color, white_seat)].append(entry.captured)
    return taken


@dataclass
class ChessRoom(RoomState):
    fen: str = STARTING_FEN
    history: List[ChessMoveResult] = field(default_factory=list)

    @property
    def captured(self) -> Dict[Player, List[str]]:
        return captured_pieces(self.history, self.starting_player)

    def colour_of(self, seat: Player) -> str:
        return WHITE if seat == self.starting_player else BLACK


class ChessAdapter(GameKindAdapter[ChessRoom]):
    kind = "chess"
    key = "chess-games"
    state_cls = ChessRoom

    def __init__(self, rules: Optional[ChessRules] = None) -> None:
        self.rules: ChessRules = rules or PythonChessRules()

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        fen = raw.get("fen")
        return {
            "fen": fen if isinstance(fen, str) and fen else STARTING_FEN,
            "history": densify_list(raw.get("history"), ChessMoveResult.from_wire),
        }

    def get_rematch_state(self) -> Dict[str, Any]:
        return {"fen": STARTING_FEN, "history": []}

    def game_fields(self, state: ChessRoom) -> Dict[str, Any]:
        return {"fen": state.fen, "history": [h.to_wire() for h in state.history]}

    def to_payload(self, state: ChessRoom) -> Dict[str, Any]:
        payload = super().to_payload(state)
        payload["capturedPieces"] = state.captured
        payload["colours"] = {seat: state.colour_of(seat) for seat in SEATS}
        return payload

    def parse_move(self, payload: Any) -> ChessMove:
        return ChessMove.model_validate(payload)

    def propose_move(
        self, state: ChessRoom, seat: Player, move: ChessMove
    ) -> Optional[Dict[str, Any]]:
        result = self.rules.move(state.fen, move)
        # A seat may only move the pieces of its own colour.
        if result is None or result.color != state.colour_of(seat):
            return None
        updates: Dict[str, Any] = {
            "fen": result.fen,
            "history": [h.to_wire() for h in state.history] + [result.to_wire()],
            "currentPlayer": other(seat),
        }
        outcome = self.rules.result(result.fen)
        if outcome == DRAW:
            updates["winner"] = DRAW
        elif outcome is not None:
            updates["winner"] = seat_of_colour(outcome, state.starting_player)
        return updates
