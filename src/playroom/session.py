"""One device's view of an online room.

An ``OnlineSession`` joins a room, turns pushed snapshots into dense state,
and writes moves, rematch flags and chat messages back to the shared record.
It never trusts its own writes: ``state`` only changes when a snapshot
arrives.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Mapping, Optional

from .adapter import GameKindAdapter
from .chat import CHAT_TYPES, append_message, chat_update
from .errors import RoomVanishedError
from .game import Player
from .rematch import RematchCoordinator
from .rooms import ROOM_TTL_SECONDS, JoinResult, join_or_create, normalize_room_id
from .state import ChatMessage, PlayerProfile, RoomState
from .store import RecordStore, Subscription, merge_patch

logger = logging.getLogger(__name__)

RecordCheck = Callable[[Mapping[str, Any]], bool]


class OnlineSession:
    def __init__(
        self,
        store: RecordStore,
        adapter: GameKindAdapter[Any],
        room_id: str,
        device_id: str,
        profile: PlayerProfile,
        ttl: float = ROOM_TTL_SECONDS,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.room_id = normalize_room_id(room_id)
        self.path = adapter.path(self.room_id)
        self.device_id = device_id
        self.profile = profile
        self.ttl = ttl
        self.seat: Optional[Player] = None
        self.state: Optional[RoomState] = None
        self.rematch = RematchCoordinator(adapter)

    # ---- lifecycle ----

    async def join(self) -> JoinResult:
        result = await join_or_create(
            self.store, self.adapter, self.room_id, self.profile, self.device_id, self.ttl
        )
        self.seat = result.seat
        self.state = result.state
        return result

    def subscribe(self) -> Subscription:
        return self.store.subscribe(self.path)

    def apply_snapshot(self, raw: Optional[Mapping[str, Any]]) -> RoomState:
        """Adopt a pushed record as ground truth.

        The seat is looked up again by device id each time, since a rematch
        swaps seats.
        """

        if raw is None:
            raise RoomVanishedError(self.room_id)
        state = self.adapter.reconstruct_state(raw)
        self.state = state
        self.seat = state.seat_of(self.device_id)
        return state

    async def handle_snapshot(self, raw: Optional[Mapping[str, Any]]) -> RoomState:
        """``apply_snapshot`` plus the rematch reset when this seat leads it."""

        state = self.apply_snapshot(raw)
        reset = self.rematch.observe(state, self.seat)
        if reset is not None:
            committed = await self.commit_if(reset, both_ready_record)
            if committed:
                logger.info("rematch reset committed for %s by %s", self.path, self.seat)
        return state

    # ---- writes ----

    async def commit_if(self, updates: Mapping[str, Any], check: RecordCheck) -> bool:
        """Merge ``updates`` into the record only while ``check`` holds on it."""

        encoded = self.adapter.encode(updates)

        def attempt(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
            if current is None or not check(current):
                return None
            return merge_patch(current, encoded)

        result = await self.store.transaction(self.path, attempt)
        return result.committed

    async def make_move(self, move: Any) -> bool:
        """Submit ``move`` for this seat; ``False`` means it was ignored.

        Nothing is written when the game is over, it is not this seat's turn,
        the opponent has not joined yet, or the game rejects the move.
        """

        state, seat = self.state, self.seat
        if state is None or seat is None:
            return False
        if state.winner is not None or state.current_player != seat or not state.is_full:
            return False
        updates = self.adapter.propose_move(state, seat, move)
        if updates is None:
            return False

        def still_my_turn(record: Mapping[str, Any]) -> bool:
            return record.get("winner") is None and record.get("currentPlayer") == seat

        committed = await self.commit_if(updates, still_my_turn)
        if not committed:
            logger.info("move by %s in %s lost to a newer snapshot", seat, self.path)
        return committed

    async def request_rematch(self) -> bool:
        state, seat = self.state, self.seat
        if state is None or seat is None or state.winner is None or state.rematch[seat]:
            return False

        def game_over(record: Mapping[str, Any]) -> bool:
            return record.get("winner") is not None

        return await self.commit_if({f"rematch/{seat}": True}, game_over)

    async def send_chat(self, type: str, content: str) -> bool:
        if type not in CHAT_TYPES:
            raise ValueError(f"Unknown chat message type {type!r}")
        state, seat = self.state, self.seat
        if state is None or seat is None:
            return False
        message = ChatMessage(
            sender_symbol=seat, type=type, content=content, timestamp=self.store.now()
        )
        messages = append_message(state.chat_messages, message)
        return await self.commit_if(chat_update(messages), room_exists)


def room_exists(record: Mapping[str, Any]) -> bool:
    # commit_if never calls its check on a removed record.
    return True


def both_ready_record(record: Mapping[str, Any]) -> bool:
    rematch = record.get("rematch")
    if not isinstance(rematch, Mapping):
        return False
    return bool(rematch.get("X")) and bool(rematch.get("O"))
