"""Per-game capability set used by the generic online session code."""

from __future__ import annotations

from typing import Any, Dict, Generic, Mapping, Optional, Type, TypeVar

from .game import Player
from .state import OnlinePlayer, RoomState, read_common

S = TypeVar("S", bound=RoomState)


class GameKindAdapter(Generic[S]):
    """Initial/rematch/reconstruct triple plus move handling for one game kind.

    Subclasses provide the game-specific half: ``read_fields``,
    ``game_fields``, ``get_rematch_state``, ``parse_move`` and
    ``propose_move``. Update dicts use wire keys with dense values; ``encode``
    is the only place dense values become their sparse wire form.
    """

    kind: str = ""
    key: str = ""
    state_cls: Type[S]

    def path(self, room_id: str) -> str:
        return f"{self.key}/{room_id}"

    # ---- the triple ----

    def create_initial_state(self, name: str, device_id: str, avatar_url: str = "") -> S:
        state = self.state_cls()
        state.players["X"] = OnlinePlayer(device_id=device_id, name=name, avatar_url=avatar_url)
        return state

    def reconstruct_state(self, raw: Any) -> S:
        if not isinstance(raw, Mapping):
            raw = {}
        return self.state_cls(**read_common(raw), **self.read_fields(raw))

    def get_rematch_state(self) -> Dict[str, Any]:
        raise NotImplementedError

    # ---- game-specific hooks ----

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        """Constructor arguments for the game fields; must never raise."""

        raise NotImplementedError

    def game_fields(self, state: S) -> Dict[str, Any]:
        """Game fields of ``state`` keyed by wire name, dense values."""

        raise NotImplementedError

    def parse_move(self, payload: Any) -> Any:
        """Validate a client move payload; raises ``ValueError`` when malformed."""

        raise NotImplementedError

    def propose_move(self, state: S, seat: Player, move: Any) -> Optional[Dict[str, Any]]:
        """Fields changed by ``seat`` playing ``move``, or ``None`` if illegal.

        Turn ownership and an existing winner are checked by the caller.
        """

        raise NotImplementedError

    def encode(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(updates)

    # ---- serialization ----

    def to_record(self, state: S) -> Dict[str, Any]:
        return {**state.common_record(), **self.encode(self.game_fields(state))}

    def to_payload(self, state: S) -> Dict[str, Any]:
        return {**state.common_record(), **self.game_fields(state)}
