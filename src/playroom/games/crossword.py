"""Crossword puzzle generation and the online guessing game.

Puzzles are laid out from a bank of question/answer pairs by repeatedly
crossing new answers with already placed ones. In online play the two seats
take turns guessing clues: a correct answer scores 10 and keeps the turn, a
wrong one costs a chance and passes the turn.
"""

from __future__ import annotations

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..adapter import GameKindAdapter
from ..game import DRAW, SEATS, Player, as_seat, other
from ..state import RoomState
from ..store import Increment
from ..wire import densify_list

logger = logging.getLogger(__name__)

MIN_WORDS = 8
MAX_WORDS = 12
MAX_GRID_SIZE = 25
MAX_GENERATION_ATTEMPTS = 50
MAX_CHANCES = 3
POINTS_PER_WORD = 10

ACROSS = "across"
DOWN = "down"


class Question(BaseModel):
    """One entry of the question bank feed."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(alias="soal")
    answer: str = Field(alias="jawaban")
    explanation: str = Field(default="", alias="deskripsi")


def normalize_answer(text: str) -> str:
    return re.sub(r"[^A-Z]", "", text.upper())


@dataclass(frozen=True)
class PlacedWord:
    word: str
    clue: str
    description: str
    direction: str
    row: int
    col: int
    number: int = 0

    @property
    def key(self) -> str:
        return f"{self.number}-{self.direction}"

    def cells(self) -> List[Tuple[int, int]]:
        if self.direction == DOWN:
            return [(self.row + i, self.col) for i in range(len(self.word))]
        return [(self.row, self.col + i) for i in range(len(self.word))]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "clue": self.clue,
            "description": self.description,
            "direction": self.direction,
            "row": self.row,
            "col": self.col,
            "number": self.number,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["PlacedWord"]:
        if not isinstance(raw, Mapping):
            return None
        try:
            word = cls(
                word=str(raw["word"]),
                clue=str(raw.get("clue") or ""),
                description=str(raw.get("description") or ""),
                direction=str(raw["direction"]),
                row=int(raw["row"]),
                col=int(raw["col"]),
                number=int(raw.get("number") or 0),
            )
        except (KeyError, TypeError, ValueError):
            return None
        if word.direction not in (ACROSS, DOWN) or not word.word:
            return None
        return word


@dataclass
class Puzzle:
    words: List[PlacedWord]
    width: int
    height: int
    row_offset: int
    col_offset: int

    def clues(self, direction: str) -> List[PlacedWord]:
        return sorted(
            (w for w in self.words if w.direction == direction), key=lambda w: w.number
        )

    def word(self, key: str) -> Optional[PlacedWord]:
        for w in self.words:
            if w.key == key:
                return w
        return None

    def to_wire(self) -> Dict[str, Any]:
        return {
            "words": [w.to_wire() for w in self.words],
            "clues": {
                ACROSS: [w.to_wire() for w in self.clues(ACROSS)],
                DOWN: [w.to_wire() for w in self.clues(DOWN)],
            },
            "width": self.width,
            "height": self.height,
            "rowOffset": self.row_offset,
            "colOffset": self.col_offset,
        }

    @classmethod
    def from_wire(cls, raw: Any) -> Optional["Puzzle"]:
        if not isinstance(raw, Mapping):
            return None
        words = densify_list(raw.get("words"), PlacedWord.from_wire)
        if not words:
            return None

        def number(name: str) -> int:
            value = raw.get(name)
            return value if isinstance(value, int) and not isinstance(value, bool) else 0

        return cls(
            words=words,
            width=number("width"),
            height=number("height"),
            row_offset=number("rowOffset"),
            col_offset=number("colOffset"),
        )


# ---------- Generation ----------

Grid = List[List[Optional[str]]]


def _find_placement(grid: Grid, placed: Sequence[PlacedWord], candidate: PlacedWord) -> Optional[PlacedWord]:
    word = candidate.word
    length = len(word)
    for anchor in placed:
        direction = DOWN if anchor.direction == ACROSS else ACROSS
        for j, letter in enumerate(word):
            match = anchor.word.find(letter)
            if match == -1:
                continue
            if direction == DOWN:
                r, c = anchor.row - j, anchor.col + match
            else:
                r, c = anchor.row + match, anchor.col - j
            if r < 1 or c < 1:
                continue
            if direction == DOWN and r + length >= MAX_GRID_SIZE - 1:
                continue
            if direction == ACROSS and c + length >= MAX_GRID_SIZE - 1:
                continue
            # Nothing may touch either end of the word.
            if direction == DOWN:
                if grid[r - 1][c] is not None or grid[r + length][c] is not None:
                    continue
            elif grid[r][c - 1] is not None or grid[r][c + length] is not None:
                continue

            valid = True
            for k in range(length):
                if k == j:
                    continue
                rr, cc = (r + k, c) if direction == DOWN else (r, c + k)
                if grid[rr][cc] is not None:
                    valid = False
                    break
                if direction == DOWN:
                    neighbours = (grid[rr][cc - 1], grid[rr][cc + 1])
                else:
                    neighbours = (grid[rr - 1][cc], grid[rr + 1][cc])
                if any(n is not None for n in neighbours):
                    valid = False
                    break
            if valid:
                return PlacedWord(
                    word=word,
                    clue=candidate.clue,
                    description=candidate.description,
                    direction=direction,
                    row=r,
                    col=c,
                )
    return None


def _write(grid: Grid, word: PlacedWord) -> None:
    for (r, c), letter in zip(word.cells(), word.word):
        grid[r][c] = letter


def _number(placed: Sequence[PlacedWord]) -> Puzzle:
    min_r = min(w.row for w in placed)
    min_c = min(w.col for w in placed)
    max_r = max(r for w in placed for r, _ in w.cells())
    max_c = max(c for w in placed for _, c in w.cells())

    starts: Dict[Tuple[int, int], int] = {}
    numbered = []
    for w in sorted(placed, key=lambda w: (w.row, w.col)):
        start = (w.row, w.col)
        if start not in starts:
            starts[start] = len(starts) + 1
        numbered.append(
            PlacedWord(
                word=w.word,
                clue=w.clue,
                description=w.description,
                direction=w.direction,
                row=w.row,
                col=w.col,
                number=starts[start],
            )
        )
    return Puzzle(
        words=numbered,
        width=max_c - min_c + 1,
        height=max_r - min_r + 1,
        row_offset=min_r,
        col_offset=min_c,
    )


def generate_puzzle(
    questions: Sequence[Question], rng: Optional[random.Random] = None
) -> Optional[Puzzle]:
    """One layout attempt; ``None`` when fewer than ``MIN_WORDS`` fit."""

    rng = rng or random.Random()
    target = rng.randint(MIN_WORDS, MAX_WORDS)
    shuffled = list(questions)
    rng.shuffle(shuffled)
    available = []
    for q in shuffled:
        word = normalize_answer(q.answer)
        if 2 < len(word) < 15:
            available.append(
                PlacedWord(
                    word=word,
                    clue=q.prompt,
                    description=q.explanation,
                    direction=ACROSS,
                    row=0,
                    col=0,
                )
            )
    if not available:
        return None

    grid: Grid = [[None] * MAX_GRID_SIZE for _ in range(MAX_GRID_SIZE)]
    first = available.pop(0)
    first = PlacedWord(
        word=first.word,
        clue=first.clue,
        description=first.description,
        direction=ACROSS,
        row=MAX_GRID_SIZE // 2,
        col=(MAX_GRID_SIZE - len(first.word)) // 2,
    )
    _write(grid, first)
    placed = [first]

    while len(placed) < target and available:
        for i, candidate in enumerate(available):
            placement = _find_placement(grid, placed, candidate)
            if placement is not None:
                _write(grid, placement)
                placed.append(placement)
                del available[i]
                break
        else:
            break

    if len(placed) < MIN_WORDS:
        return None
    return _number(placed)


async def generate_puzzle_async(
    questions: Sequence[Question],
    timeout: float,
    rng: Optional[random.Random] = None,
    attempts: int = MAX_GENERATION_ATTEMPTS,
) -> Optional[Puzzle]:
    """Retry ``generate_puzzle`` cooperatively; ``None`` on failure or timeout."""

    async def run() -> Optional[Puzzle]:
        for _ in range(attempts):
            puzzle = generate_puzzle(questions, rng)
            if puzzle is not None:
                return puzzle
            await asyncio.sleep(0)
        return None

    try:
        return await asyncio.wait_for(run(), timeout)
    except asyncio.TimeoutError:
        logger.warning("puzzle generation timed out after %.1fs", timeout)
        return None


# ---------- Online ----------


@dataclass
class CrosswordRoom(RoomState):
    puzzle: Optional[Puzzle] = None
    # clue key -> seat that solved it
    solved: Dict[str, Player] = field(default_factory=dict)
    scores: Dict[Player, int] = field(default_factory=lambda: {"X": 0, "O": 0})
    chances: Dict[Player, int] = field(
        default_factory=lambda: {"X": MAX_CHANCES, "O": MAX_CHANCES}
    )


class CrosswordGuess(BaseModel):
    clue: str = Field(min_length=1, description="Clue key such as '3-across'")
    answer: str


def _per_seat(raw: Any, default: int) -> Dict[Player, int]:
    values = {"X": default, "O": default}
    if isinstance(raw, Mapping):
        for seat in SEATS:
            value = raw.get(seat)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values[seat] = int(value)
    return values


class CrosswordAdapter(GameKindAdapter[CrosswordRoom]):
    kind = "crossword"
    key = "crossword-games"
    state_cls = CrosswordRoom

    def read_fields(self, raw: Mapping[str, Any]) -> Dict[str, Any]:
        solved: Dict[str, Player] = {}
        game_state = raw.get("gameState")
        if isinstance(game_state, Mapping):
            for key, entry in game_state.items():
                if isinstance(entry, Mapping) and entry.get("status") == "correct":
                    seat = as_seat(entry.get("solvedBy"))
                    if seat is not None:
                        solved[str(key)] = seat
        return {
            "puzzle": Puzzle.from_wire(raw.get("puzzle")),
            "solved": solved,
            "scores": _per_seat(raw.get("scores"), 0),
            "chances": _per_seat(raw.get("chances"), MAX_CHANCES),
        }

    def get_rematch_state(self) -> Dict[str, Any]:
        return {
            "puzzle": None,
            "gameState": {},
            "scores": {"X": 0, "O": 0},
            "chances": {"X": MAX_CHANCES, "O": MAX_CHANCES},
            "chatMessages": [],
        }

    def game_fields(self, state: CrosswordRoom) -> Dict[str, Any]:
        return {
            "puzzle": state.puzzle.to_wire() if state.puzzle else None,
            "gameState": {
                key: {"status": "correct", "solvedBy": seat}
                for key, seat in state.solved.items()
            },
            "scores": dict(state.scores),
            "chances": dict(state.chances),
        }

    def parse_move(self, payload: Any) -> CrosswordGuess:
        return CrosswordGuess.model_validate(payload)

    def propose_move(
        self, state: CrosswordRoom, seat: Player, move: CrosswordGuess
    ) -> Optional[Dict[str, Any]]:
        if state.puzzle is None or state.chances[seat] <= 0:
            return None
        if move.clue in state.solved:
            return None
        word = state.puzzle.word(move.clue)
        if word is None:
            return None

        opponent = other(seat)
        correct = normalize_answer(move.answer) == word.word
        scores = dict(state.scores)
        updates: Dict[str, Any] = {}
        if correct:
            updates[f"gameState/{move.clue}"] = {"status": "correct", "solvedBy": seat}
            updates[f"scores/{seat}"] = Increment(POINTS_PER_WORD)
            scores[seat] += POINTS_PER_WORD
            solved = set(state.solved) | {move.clue}
            game_over = all(w.key in solved for w in state.puzzle.words)
        else:
            remaining = state.chances[seat] - 1
            updates[f"chances/{seat}"] = remaining
            # The turn only passes to a seat that can still guess.
            if state.chances[opponent] > 0:
                updates["currentPlayer"] = opponent
            game_over = remaining <= 0 and state.chances[opponent] <= 0

        if game_over:
            if scores[seat] > scores[opponent]:
                updates["winner"] = seat
            elif scores[opponent] > scores[seat]:
                updates["winner"] = opponent
            else:
                updates["winner"] = DRAW
        return updates

    def encode(self, updates: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(updates)


class PuzzlePublisher:
    """Generates and publishes the puzzle for a room from the ``X`` seat.

    ``load_questions`` is the question-bank fetch; at most one publication
    runs at a time and nothing is written once generation has timed out.
    """

    def __init__(
        self,
        load_questions: Callable[[], Awaitable[List[Question]]],
        timeout: float,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._load_questions = load_questions
        self._timeout = timeout
        self._rng = rng
        self.in_flight = False

    def should_publish(self, state: CrosswordRoom, seat: Optional[Player]) -> bool:
        return (
            seat == "X"
            and state.is_full
            and state.puzzle is None
            and state.winner is None
            and not self.in_flight
        )

    async def publish(self, session: Any) -> bool:
        self.in_flight = True
        try:
            questions = await self._load_questions()
            if not questions:
                logger.error("no crossword questions available for room %s", session.room_id)
                return False
            puzzle = await generate_puzzle_async(questions, self._timeout, self._rng)
            if puzzle is None:
                logger.error("failed to generate a puzzle for room %s", session.room_id)
                return False
            return await session.commit_if(
                {"puzzle": puzzle.to_wire()},
                lambda record: not record.get("puzzle"),
            )
        finally:
            self.in_flight = False
