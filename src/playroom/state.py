"""Dense in-memory form of a room record, shared by every game kind."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .game import DRAW, SEATS, Player, as_seat
from .wire import densify_list


@dataclass(frozen=True)
class PlayerProfile:
    name: str
    avatar_url: str = ""


@dataclass
class OnlinePlayer:
    device_id: str
    name: str
    avatar_url: str = ""

    def to_wire(self) -> Dict[str, str]:
        return {"deviceId": self.device_id, "name": self.name, "avatarUrl": self.avatar_url}

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["OnlinePlayer"]:
        if not isinstance(raw, Mapping) or not raw.get("deviceId"):
            return None
        return cls(
            device_id=str(raw["deviceId"]),
            name=str(raw.get("name") or ""),
            avatar_url=str(raw.get("avatarUrl") or ""),
        )


@dataclass
class ChatMessage:
    sender_symbol: Player
    type: str  # "emote" or "quickchat"
    content: str
    timestamp: float

    def to_wire(self) -> Dict[str, Any]:
        return {
            "senderSymbol": self.sender_symbol,
            "type": self.type,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["ChatMessage"]:
        if not isinstance(raw, Mapping):
            return None
        sender = as_seat(raw.get("senderSymbol"))
        if sender is None:
            return None
        try:
            timestamp = float(raw.get("timestamp") or 0)
        except (TypeError, ValueError):
            timestamp = 0.0
        return cls(
            sender_symbol=sender,
            type=str(raw.get("type") or "quickchat"),
            content=str(raw.get("content") or ""),
            timestamp=timestamp,
        )


def _empty_players() -> Dict[Player, Optional[OnlinePlayer]]:
    return {"X": None, "O": None}


def _no_rematch() -> Dict[Player, bool]:
    return {"X": False, "O": False}


@dataclass
class RoomState:
    """Fields every room record carries; games subclass this with their own."""

    players: Dict[Player, Optional[OnlinePlayer]] = field(default_factory=_empty_players)
    created_at: Optional[float] = None
    current_player: Player = "X"
    winner: Optional[str] = None
    starting_player: Player = "X"
    rematch: Dict[Player, bool] = field(default_factory=_no_rematch)
    chat_messages: List[ChatMessage] = field(default_factory=list)

    def seat_of(self, device_id: str) -> Optional[Player]:
        for seat in SEATS:
            player = self.players.get(seat)
            if player is not None and player.device_id == device_id:
                return seat
        return None

    @property
    def is_full(self) -> bool:
        return all(self.players.get(seat) is not None for seat in SEATS)

    def common_record(self) -> Dict[str, Any]:
        return {
            "players": {
                seat: (p.to_wire() if p is not None else None)
                for seat, p in self.players.items()
            },
            "createdAt": self.created_at,
            "currentPlayer": self.current_player,
            "winner": self.winner,
            "startingPlayer": self.starting_player,
            "rematch": dict(self.rematch),
            "chatMessages": [m.to_wire() for m in self.chat_messages],
        }


def read_common(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """Extract ``RoomState`` constructor arguments from a raw record.

    Missing or malformed values fall back to their initial defaults.
    """

    players_raw = raw.get("players")
    players = _empty_players()
    if isinstance(players_raw, Mapping):
        for seat in SEATS:
            players[seat] = OnlinePlayer.from_wire(players_raw.get(seat))

    rematch_raw = raw.get("rematch")
    rematch = _no_rematch()
    if isinstance(rematch_raw, Mapping):
        for seat in SEATS:
            rematch[seat] = bool(rematch_raw.get(seat, False))

    winner = raw.get("winner")
    if winner not in (*SEATS, DRAW):
        winner = None

    created_at = raw.get("createdAt")
    if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
        created_at = None

    return {
        "players": players,
        "created_at": created_at,
        "current_player": as_seat(raw.get("currentPlayer"), "X"),
        "winner": winner,
        "starting_player": as_seat(raw.get("startingPlayer"), "X"),
        "rematch": rematch,
        "chat_messages": densify_list(raw.get("chatMessages"), ChatMessage.from_wire),
    }
