"""Tests for the FastAPI Playroom interface."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from playroom import ui
from playroom.errors import TransactionAbortError
from playroom.games import crossword
from playroom.games.crossword import (
    ACROSS,
    DOWN,
    CrosswordAdapter,
    PlacedWord,
    Puzzle,
    PuzzlePublisher,
    Question,
)
from playroom.services import ChessSuggestionClient
from playroom.session import OnlineSession
from playroom.state import PlayerProfile
from playroom.store import InMemoryRecordStore
from playroom.ui import app


client = TestClient(app)
ui.AI_THINK_DELAY = (0.0, 0.0)


@pytest.fixture
def live_client():
    # Websockets opened from one client share its event loop, and so the store.
    with TestClient(app) as test_client:
        yield test_client


def _join(ws, device_id, name):
    ws.send_json({"type": "join", "deviceId": device_id, "name": name})
    return ws.receive_json()


# ---------- Local and AI games ----------


def test_create_game_and_first_move():
    response = client.post("/api/game", json={"kind": "tictactoe", "mode": "ai"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["currentPlayer"] == "X"
    assert payload["moveLog"] == []
    assert payload["availableMoves"] == list(range(9))

    game_id = payload["id"]
    move_response = client.post(f"/api/game/{game_id}/move", json={"cell": 0})
    assert move_response.status_code == 200
    state = move_response.json()
    assert state["moveLog"][0] == {"player": "X", "cell": 0}
    assert state["board"][0] == "X"
    assert state["currentPlayer"] == "O"
    assert state["aiPending"] is True

    follow_up = client.get(f"/api/game/{game_id}")
    assert follow_up.status_code == 200
    final_state = follow_up.json()
    assert final_state["currentPlayer"] == "X"
    assert final_state["aiPending"] is False
    assert final_state["moveLog"][-1]["player"] == "O"
    assert final_state["board"].count("O") == 1


def test_invalid_move_rejected():
    response = client.post("/api/game", json={"kind": "tictactoe", "mode": "local"})
    game_id = response.json()["id"]

    first_move = client.post(f"/api/game/{game_id}/move", json={"cell": 0})
    assert first_move.status_code == 200

    duplicate_move = client.post(f"/api/game/{game_id}/move", json={"cell": 0})
    assert duplicate_move.status_code == 400
    assert duplicate_move.json()["detail"] == "Cell already occupied"

    malformed = client.post(f"/api/game/{game_id}/move", json={"cell": 12})
    assert malformed.status_code == 422


def test_ai_only_for_supported_games():
    response = client.post("/api/game", json={"kind": "gobblet", "mode": "ai"})
    assert response.status_code == 422


def test_unknown_game_returns_404():
    assert client.get("/api/game/missing").status_code == 404


def test_connect4_local_game_to_a_win():
    game_id = client.post("/api/game", json={"kind": "connect4", "mode": "local"}).json()["id"]
    for column in (0, 6, 1, 6, 2, 6):
        assert client.post(f"/api/game/{game_id}/move", json={"column": column}).status_code == 200
    state = client.post(f"/api/game/{game_id}/move", json={"column": 3}).json()
    assert state["winner"] == "X"
    assert state["availableMoves"] == []
    assert state["winningLine"][0] == {"r": 5, "c": 0}

    finished = client.post(f"/api/game/{game_id}/move", json={"column": 4})
    assert finished.status_code == 400
    assert finished.json()["detail"] == "Game already finished"


def test_gobblet_local_move_and_reset():
    game_id = client.post("/api/game", json={"kind": "gobblet", "mode": "local"}).json()["id"]
    state = client.post(f"/api/game/{game_id}/move", json={"target": 4, "size": 3}).json()
    assert state["board"][4] == [{"owner": "X", "size": 3}]
    assert state["reserves"]["X"]["3"] == 1
    assert state["currentPlayer"] == "O"
    assert state["moveLog"] == [{"player": "X", "target": 4, "size": 3}]

    covered = client.post(f"/api/game/{game_id}/move", json={"target": 4, "size": 2})
    assert covered.status_code == 400

    reset = client.post(f"/api/game/{game_id}/reset").json()
    assert reset["board"][4] == []
    assert reset["moveLog"] == []
    assert reset["currentPlayer"] == "X"


def test_chess_suggestion_endpoint(monkeypatch):
    def handler(request):
        return httpx.Response(200, json={"bestmove": "e2e4"})

    suggestions = ChessSuggestionClient(
        "https://engine.example.test/bestmove",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    monkeypatch.setattr(ui, "CHESS_SUGGESTIONS", suggestions)
    response = client.post("/api/chess/suggest", json={"fen": "startpos"})
    assert response.status_code == 200
    assert response.json()["suggestion"]["move"] == "e2e4"


def test_chess_suggestion_unavailable(monkeypatch):
    monkeypatch.setattr(ui, "CHESS_SUGGESTIONS", ChessSuggestionClient(None))
    response = client.post("/api/chess/suggest", json={"fen": "startpos"})
    assert response.json() == {"suggestion": None}


# ---------- Online rooms ----------


def test_room_join_move_and_chat(live_client):
    with live_client.websocket_connect("/ws/tictactoe/api-room-1") as alice:
        joined = _join(alice, "dev-a", "Alice")
        assert joined == {"type": "joined", "seat": "X", "roomId": "API-ROOM-1"}
        waiting = alice.receive_json()
        assert waiting["type"] == "state"
        assert waiting["state"]["players"]["O"] is None

        with live_client.websocket_connect("/ws/tictactoe/API-ROOM-1") as bob:
            assert _join(bob, "dev-b", "Bob")["seat"] == "O"
            assert bob.receive_json()["state"]["players"]["X"]["name"] == "Alice"
            assert alice.receive_json()["state"]["players"]["O"]["name"] == "Bob"

            alice.send_json({"type": "move", "move": {"cell": 4}})
            for ws in (alice, bob):
                frame = ws.receive_json()
                assert frame["state"]["board"][4] == "X"
                assert frame["state"]["currentPlayer"] == "O"

            bob.send_json({"type": "move", "move": {"cell": 4}})
            assert bob.receive_json() == {"type": "rejected", "action": "move"}

            bob.send_json({"type": "chat", "chatType": "quickchat", "content": "Nice move!"})
            for ws in (alice, bob):
                chat = ws.receive_json()["state"]["chatMessages"]
                assert chat[-1]["senderSymbol"] == "O"
                assert chat[-1]["content"] == "Nice move!"

            bob.send_json({"type": "chat", "chatType": "shout", "content": "HEY"})
            error = bob.receive_json()
            assert error["type"] == "error"
            assert error["message"].startswith("Invalid message")


def test_room_full(live_client):
    with live_client.websocket_connect("/ws/connect4/api-room-2") as alice:
        _join(alice, "dev-a", "Alice")
        with live_client.websocket_connect("/ws/connect4/api-room-2") as bob:
            _join(bob, "dev-b", "Bob")
            with live_client.websocket_connect("/ws/connect4/api-room-2") as carol:
                carol.send_json({"type": "join", "deviceId": "dev-c", "name": "Carol"})
                message = carol.receive_json()
                assert message == {"type": "error", "message": "Room is full"}


def test_room_inspect_and_remove(live_client):
    with live_client.websocket_connect("/ws/gobblet/api-room-3") as alice:
        _join(alice, "dev-a", "Alice")
        alice.receive_json()

        info = live_client.get("/api/room/gobblet/api-room-3")
        assert info.status_code == 200
        assert info.json()["availableSlots"] == ["O"]
        assert info.json()["players"] == {"X": "Alice", "O": None}
        assert info.json()["expired"] is False

        removed = live_client.delete("/api/room/gobblet/api-room-3")
        assert removed.json() == {"removed": True}
        assert alice.receive_json() == {"type": "error", "message": "Room no longer exists"}

    assert live_client.get("/api/room/gobblet/api-room-3").status_code == 404


def test_room_rejects_unknown_game_and_bad_join(live_client):
    assert live_client.get("/api/room/poker/abc").status_code == 404

    with live_client.websocket_connect("/ws/poker/abc") as ws:
        assert ws.receive_json() == {"type": "error", "message": "Unknown game"}

    with live_client.websocket_connect("/ws/tictactoe/api-room-4") as ws:
        ws.send_json({"type": "join", "name": "No Device"})
        message = ws.receive_json()
        assert message["type"] == "error"
        assert message["message"].startswith("Invalid join request")


# ---------- Puzzle publication ----------


class RecordingSocket:
    def __init__(self):
        self.frames = []

    async def send_json(self, data):
        self.frames.append(data)

    async def close(self):
        self.frames.append("closed")


def test_failed_puzzle_publication_is_reported_once(monkeypatch):
    puzzle = Puzzle(
        words=[
            PlacedWord("CAT", "Meows", "", ACROSS, 0, 0, number=1),
            PlacedWord("COW", "Moos", "", DOWN, 0, 0, number=1),
        ],
        width=3,
        height=3,
        row_offset=0,
        col_offset=0,
    )

    async def fake_generate(questions, timeout, rng=None):
        return puzzle

    async def load():
        return [Question(prompt="Meows", answer="cat")]

    async def busy_store(updates, check):
        raise TransactionAbortError("busy")

    monkeypatch.setattr(crossword, "generate_puzzle_async", fake_generate)

    async def scenario():
        store = InMemoryRecordStore()
        adapter = CrosswordAdapter()
        alice = OnlineSession(store, adapter, "ROOM", "dev-a", PlayerProfile(name="Alice"))
        bob = OnlineSession(store, adapter, "ROOM", "dev-b", PlayerProfile(name="Bob"))
        await alice.join()
        await bob.join()
        state = alice.apply_snapshot(await store.get(alice.path))
        alice.commit_if = busy_store

        socket = RecordingSocket()
        publisher = PuzzlePublisher(load, timeout=1.0)
        task = ui._schedule_publish(socket, alice, state, publisher, None)
        # A snapshot arriving before the task runs must not start another one.
        claimed = publisher.in_flight
        again = ui._schedule_publish(socket, alice, state, publisher, task)
        await task
        return task, again, claimed, publisher.in_flight, socket.frames

    task, again, claimed, in_flight, frames = asyncio.run(scenario())
    assert again is task
    assert claimed is True
    assert in_flight is False
    assert frames == [{"type": "error", "message": "Could not publish the puzzle, try again"}]
