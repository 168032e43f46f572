"""FastAPI application: local/AI games over REST and online rooms over websockets."""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from fastapi import (
    BackgroundTasks,
    Body,
    FastAPI,
    HTTPException,
    WebSocket,
    WebSocketDisconnect,
)
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .adapter import GameKindAdapter
from .ai import Connect4AI, TicTacToeAI
from .config import Settings
from .errors import (
    PlayroomError,
    RoomFullError,
    RoomVanishedError,
    TransactionAbortError,
)
from .games import default_adapters
from .games.connect4 import Connect4Game
from .games.crossword import PuzzlePublisher
from .games.gobblet import GobbletGame
from .games.tictactoe import TicTacToeGame
from .rooms import normalize_room_id
from .services import ChessSuggestionClient, QuestionBank
from .session import OnlineSession
from .state import PlayerProfile
from .store import InMemoryRecordStore, Subscription

logger = logging.getLogger(__name__)

SETTINGS = Settings.from_env()

LOCAL_GAMES = {
    "tictactoe": TicTacToeGame,
    "connect4": Connect4Game,
    "gobblet": GobbletGame,
}
AI_PLAYERS = {
    "tictactoe": TicTacToeAI,
    "connect4": Connect4AI,
}
# Field name of the AI's move in the move log, per game kind.
AI_MOVE_KEYS = {"tictactoe": "cell", "connect4": "column"}
AI_SEAT = "O"

AI_THINK_DELAY: Tuple[float, float] = SETTINGS.ai_think_delay
ROOM_TTL_SECONDS: float = SETTINGS.room_ttl_seconds

STORE = InMemoryRecordStore()
ADAPTERS: Dict[str, GameKindAdapter[Any]] = default_adapters()
QUESTION_BANK = QuestionBank(SETTINGS.crossword_feed_url, SETTINGS.http_timeout)
CHESS_SUGGESTIONS = ChessSuggestionClient(SETTINGS.chess_suggest_url, SETTINGS.http_timeout)


@dataclass
class GameSession:
    """Container for a local game and its optional AI opponent."""

    kind: str
    game: Any
    ai: Optional[Any]
    move_log: List[Dict[str, Any]] = field(default_factory=list)
    ai_pending: bool = False
    # Bumped on reset so a scheduled AI turn for the old game is dropped.
    generation: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


SESSIONS: Dict[str, GameSession] = {}
app = FastAPI(title="Playroom", description="Classic board games, local and online")


class NewGameRequest(BaseModel):
    """Request payload for starting a local or AI game."""

    kind: Literal["tictactoe", "connect4", "gobblet"] = "tictactoe"
    mode: Literal["local", "ai"] = "ai"

    @model_validator(mode="after")
    def ensure_ai_available(self) -> "NewGameRequest":
        if self.mode == "ai" and self.kind not in AI_PLAYERS:
            raise ValueError(
                f"No AI opponent for {self.kind}. "
                f"Choose one of {', '.join(sorted(AI_PLAYERS))}."
            )
        return self


class SuggestRequest(BaseModel):
    fen: str = Field(min_length=1)


class JoinMessage(BaseModel):
    """First websocket frame: who is joining."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["join"]
    device_id: str = Field(alias="deviceId", min_length=1)
    name: str = Field(min_length=1, max_length=40)
    avatar_url: str = Field(default="", alias="avatarUrl")


class ClientMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["move", "rematch", "chat"]
    move: Optional[Dict[str, Any]] = None
    chat_type: Optional[str] = Field(default=None, alias="chatType")
    content: Optional[str] = Field(default=None, max_length=200)


# ---------- Local and AI games ----------


def _create_session(kind: str, mode: str) -> Tuple[str, GameSession]:
    """Create a new game session and register it for later access."""

    game = LOCAL_GAMES[kind]()
    ai = AI_PLAYERS[kind](player=AI_SEAT) if mode == "ai" else None
    session = GameSession(kind=kind, game=game, ai=ai)
    session_id = uuid.uuid4().hex
    SESSIONS[session_id] = session
    return session_id, session


def _get_session(game_id: str) -> GameSession:
    try:
        return SESSIONS[game_id]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Game not found") from exc


def _run_ai_turn(game_id: str, generation: int) -> None:
    session = SESSIONS.get(game_id)
    if not session:
        return

    time.sleep(max(0.0, random.uniform(*AI_THINK_DELAY)))

    with session.lock:
        if session.generation != generation:
            return
        try:
            if not session.ai:
                return
            game = session.game
            if game.winner:
                return
            if game.current_player != session.ai.player:
                return
            move = session.ai.choose(game)
            game.play_move(move)
            session.move_log.append(
                {"player": session.ai.player, AI_MOVE_KEYS[session.kind]: move}
            )
        finally:
            session.ai_pending = False


def _dump_move(move: Any) -> Any:
    if isinstance(move, BaseModel):
        return move.model_dump(exclude_none=True, by_alias=True)
    return move


def _serialize_session(game_id: str, session: GameSession) -> Dict[str, object]:
    with session.lock:
        game = session.game
        state: Dict[str, object] = {
            "id": game_id,
            "kind": session.kind,
            "mode": "ai" if session.ai else "local",
            "currentPlayer": game.current_player,
            "winner": game.winner,
            "availableMoves": [_dump_move(m) for m in game.available_moves()],
            "moveLog": list(session.move_log),
            "aiPending": session.ai_pending,
            **game.to_payload(),
        }
        if session.move_log:
            state["lastMove"] = session.move_log[-1]
        return state


def _apply_player_move(
    game_id: str,
    session: GameSession,
    payload: Dict[str, Any],
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    try:
        move = ADAPTERS[session.kind].parse_move(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=422, detail=exc.errors(include_url=False, include_context=False)
        ) from exc

    should_schedule_ai = False
    with session.lock:
        game = session.game
        if game.winner:
            raise HTTPException(status_code=400, detail="Game already finished")

        if session.ai_pending:
            raise HTTPException(status_code=400, detail="AI is completing its move")

        player = game.current_player
        try:
            game.play_move(move)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        entry = {"player": player}
        entry.update(_dump_move(move) if isinstance(move, BaseModel) else dict(payload))
        session.move_log.append(entry)

        should_schedule_ai = bool(
            session.ai
            and not game.winner
            and game.current_player == session.ai.player
        )
        if should_schedule_ai:
            session.ai_pending = True
        generation = session.generation

    if should_schedule_ai and background_tasks is not None:
        background_tasks.add_task(_run_ai_turn, game_id, generation)


@app.post("/api/game")
def create_game(request: NewGameRequest) -> Dict[str, object]:
    game_id, session = _create_session(request.kind, request.mode)
    return _serialize_session(game_id, session)


@app.get("/api/game/{game_id}")
def get_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/move")
def make_move(
    game_id: str,
    background_tasks: BackgroundTasks,
    payload: Dict[str, Any] = Body(...),
) -> Dict[str, object]:
    session = _get_session(game_id)
    _apply_player_move(game_id, session, payload, background_tasks)
    return _serialize_session(game_id, session)


@app.post("/api/game/{game_id}/reset")
def reset_game(game_id: str) -> Dict[str, object]:
    session = _get_session(game_id)
    with session.lock:
        session.game.reset()
        session.move_log.clear()
        session.ai_pending = False
        session.generation += 1
    return _serialize_session(game_id, session)


@app.post("/api/chess/suggest")
async def suggest_chess_move(request: SuggestRequest) -> Dict[str, object]:
    suggestion = await CHESS_SUGGESTIONS.suggest(request.fen)
    return {"suggestion": suggestion.to_payload() if suggestion else None}


# ---------- Online rooms ----------


def _get_adapter(kind: str) -> GameKindAdapter[Any]:
    try:
        return ADAPTERS[kind]
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Unknown game") from exc


def _room_path(kind: str, room_id: str) -> Tuple[GameKindAdapter[Any], str]:
    adapter = _get_adapter(kind)
    try:
        normalized = normalize_room_id(room_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return adapter, adapter.path(normalized)


@app.get("/api/room/{kind}/{room_id}")
async def inspect_room(kind: str, room_id: str) -> Dict[str, object]:
    adapter, path = _room_path(kind, room_id)
    record = await STORE.get(path)
    if record is None:
        raise HTTPException(status_code=404, detail="Room not found")
    state = adapter.reconstruct_state(record)
    expired = state.created_at is None or STORE.now() - state.created_at > ROOM_TTL_SECONDS
    available_slots = [seat for seat, player in state.players.items() if player is None]
    return {
        "roomId": path.rsplit("/", 1)[-1],
        "kind": kind,
        "available": bool(available_slots) or expired,
        "availableSlots": available_slots,
        "expired": expired,
        "players": {
            seat: (player.name if player else None) for seat, player in state.players.items()
        },
    }


@app.delete("/api/room/{kind}/{room_id}")
async def remove_room(kind: str, room_id: str) -> Dict[str, object]:
    _, path = _room_path(kind, room_id)
    if await STORE.get(path) is None:
        raise HTTPException(status_code=404, detail="Room not found")
    await STORE.remove(path)
    logger.info("room %s removed", path)
    return {"removed": True}


async def _send_error(websocket: WebSocket, message: str, close: bool = False) -> None:
    await websocket.send_json({"type": "error", "message": message})
    if close:
        await websocket.close()


async def _publish_puzzle(
    websocket: WebSocket, session: OnlineSession, publisher: PuzzlePublisher
) -> None:
    try:
        await publisher.publish(session)
    except PlayroomError:
        logger.exception("puzzle publication for %s failed", session.path)
        await _send_error(websocket, "Could not publish the puzzle, try again")


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("background task failed", exc_info=task.exception())


def _schedule_publish(
    websocket: WebSocket,
    session: OnlineSession,
    state: Any,
    publisher: PuzzlePublisher,
    pending: Optional[asyncio.Task],
) -> Optional[asyncio.Task]:
    """Start a puzzle publication unless one is already running."""

    if pending is not None and not pending.done():
        return pending
    if not publisher.should_publish(state, session.seat):
        return pending
    # Claimed before the task runs so the next snapshot sees it.
    publisher.in_flight = True
    task = asyncio.create_task(_publish_puzzle(websocket, session, publisher))
    task.add_done_callback(_log_task_failure)
    return task


async def _pump_snapshots(
    websocket: WebSocket,
    session: OnlineSession,
    subscription: Subscription,
    publisher: Optional[PuzzlePublisher],
) -> None:
    """Push every room snapshot to the client, in store order."""

    publish_task: Optional[asyncio.Task] = None
    try:
        async for raw in subscription:
            try:
                state = await session.handle_snapshot(raw)
            except RoomVanishedError:
                await _send_error(websocket, "Room no longer exists", close=True)
                return
            except TransactionAbortError:
                logger.exception("rematch reset failed for %s", session.path)
                state = session.state
            await websocket.send_json(
                {
                    "type": "state",
                    "seat": session.seat,
                    "state": session.adapter.to_payload(state),
                }
            )
            if publisher is not None:
                publish_task = _schedule_publish(
                    websocket, session, state, publisher, publish_task
                )
    finally:
        if publish_task is not None and not publish_task.done():
            publish_task.cancel()


async def _handle_client_message(
    websocket: WebSocket, session: OnlineSession, data: Any
) -> None:
    try:
        message = ClientMessage.model_validate(data)
        if message.type == "move":
            move = session.adapter.parse_move(message.move or {})
            accepted = await session.make_move(move)
        elif message.type == "rematch":
            accepted = await session.request_rematch()
        else:
            accepted = await session.send_chat(message.chat_type or "", message.content or "")
    except ValueError as exc:
        await _send_error(websocket, f"Invalid message: {exc}")
        return
    except PlayroomError:
        logger.exception("write to %s failed", session.path)
        await _send_error(websocket, "Network error, try again")
        return

    if not accepted:
        await websocket.send_json({"type": "rejected", "action": message.type})


@app.websocket("/ws/{kind}/{room_id}")
async def room_socket(websocket: WebSocket, kind: str, room_id: str) -> None:
    await websocket.accept()
    adapter = ADAPTERS.get(kind)
    if adapter is None:
        await _send_error(websocket, "Unknown game", close=True)
        return

    try:
        hello = JoinMessage.model_validate(await websocket.receive_json())
        session = OnlineSession(
            STORE,
            adapter,
            room_id,
            hello.device_id,
            PlayerProfile(name=hello.name, avatar_url=hello.avatar_url),
            ttl=ROOM_TTL_SECONDS,
        )
        joined = await session.join()
    except WebSocketDisconnect:
        return
    except RoomFullError:
        await _send_error(websocket, "Room is full", close=True)
        return
    except TransactionAbortError:
        logger.exception("join of %s/%s failed", kind, room_id)
        await _send_error(websocket, "Failed to join the room, try again", close=True)
        return
    except ValueError as exc:
        await _send_error(websocket, f"Invalid join request: {exc}", close=True)
        return

    await websocket.send_json(
        {"type": "joined", "seat": joined.seat, "roomId": session.room_id}
    )

    publisher = None
    if adapter.kind == "crossword":
        publisher = PuzzlePublisher(QUESTION_BANK.load, SETTINGS.puzzle_timeout)
    subscription = session.subscribe()
    pump = asyncio.create_task(_pump_snapshots(websocket, session, subscription, publisher))

    try:
        while True:
            data = await websocket.receive_json()
            await _handle_client_message(websocket, session, data)
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        pump.cancel()
