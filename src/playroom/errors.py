"""Error types raised by the online session layer."""

from __future__ import annotations


class PlayroomError(Exception):
    """Base class for playroom errors."""


class RoomFullError(PlayroomError):
    """Raised when both seats of a live room belong to other devices."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} is full")
        self.room_id = room_id


class RoomVanishedError(PlayroomError):
    """Raised when a subscribed room record no longer exists."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} no longer exists")
        self.room_id = room_id


class TransactionAbortError(PlayroomError):
    """Raised when a store transaction could not commit after its retries."""


class ExternalServiceError(PlayroomError):
    """Raised by HTTP collaborators; callers log it and carry on."""
