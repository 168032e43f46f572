"""Atomic room join: create, recycle, rejoin or take the free seat."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .adapter import GameKindAdapter
from .errors import RoomFullError
from .game import Player
from .state import OnlinePlayer, PlayerProfile, RoomState
from .store import SERVER_TIMESTAMP, RecordStore

logger = logging.getLogger(__name__)

ROOM_TTL_SECONDS = 60 * 60  # 1 hour


def normalize_room_id(room_id: str) -> str:
    normalized = room_id.strip().upper()
    if not normalized:
        raise ValueError("Room name must not be empty")
    if "/" in normalized:
        raise ValueError("Room name must not contain '/'")
    return normalized


@dataclass
class JoinResult:
    seat: Player
    state: RoomState
    created: bool = False


async def join_or_create(
    store: RecordStore,
    adapter: GameKindAdapter[Any],
    room_id: str,
    profile: PlayerProfile,
    device_id: str,
    ttl: float = ROOM_TTL_SECONDS,
) -> JoinResult:
    """Seat ``device_id`` in the room, as one transaction on the room record.

    Raises ``RoomFullError`` when both seats belong to other devices and
    ``TransactionAbortError`` when the store gives up on contention.
    """

    room_id = normalize_room_id(room_id)
    path = adapter.path(room_id)
    # Written by the transaction function; only its last run counts.
    outcome: Dict[str, Any] = {}

    def fresh_record() -> Dict[str, Any]:
        state = adapter.create_initial_state(profile.name, device_id, profile.avatar_url)
        record = adapter.to_record(state)
        record["createdAt"] = SERVER_TIMESTAMP
        return record

    def attempt(current: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        outcome.clear()
        if current is None:
            outcome.update(seat="X", created=True, reason="new")
            return fresh_record()

        created_at = current.get("createdAt")
        if not isinstance(created_at, (int, float)) or store.now() - created_at > ttl:
            outcome.update(seat="X", created=True, reason="expired")
            return fresh_record()

        existing = adapter.reconstruct_state(current)
        seat = existing.seat_of(device_id)
        if seat is not None:
            outcome.update(seat=seat, created=False, reason="rejoin")
            return current

        if existing.players["O"] is None:
            joined = OnlinePlayer(device_id=device_id, name=profile.name, avatar_url=profile.avatar_url)
            players = current.get("players")
            players = dict(players) if isinstance(players, dict) else {"X": None}
            players["O"] = joined.to_wire()
            outcome.update(seat="O", created=False, reason="join")
            return {**current, "players": players}

        return None

    result = await store.transaction(path, attempt)
    if not result.committed:
        logger.info("room %s is full, rejected device %s", path, device_id)
        raise RoomFullError(room_id)

    logger.info(
        "device %s joined %s as %s (%s)", device_id, path, outcome["seat"], outcome["reason"]
    )
    return JoinResult(
        seat=outcome["seat"],
        state=adapter.reconstruct_state(result.snapshot),
        created=outcome["created"],
    )
