"""HTTP collaborators: the crossword question bank and chess move suggestions.

Both wrap their failures in ``ExternalServiceError`` internally and the
public ``load``/``suggest`` calls log and swallow it, so a flaky service never
ends a session.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from .errors import ExternalServiceError
from .games.crossword import Question

logger = logging.getLogger(__name__)

SUGGESTION_PATTERN = re.compile(r"([a-h][1-8])([a-h][1-8])([qrbn]?)")


async def _get_json(
    client: Optional[httpx.AsyncClient],
    url: str,
    timeout: float,
    params: Optional[Dict[str, str]] = None,
) -> Any:
    try:
        if client is not None:
            response = await client.get(url, params=params, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                response = await owned.get(url, params=params)
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise ExternalServiceError(f"GET {url} failed: {exc}") from exc


class QuestionBank:
    """Cached crossword questions fetched from a JSON feed."""

    def __init__(
        self, url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client
        self._questions: Optional[List[Question]] = None

    async def fetch(self) -> List[Question]:
        data = await _get_json(self._client, self.url, self.timeout)
        if not isinstance(data, list):
            raise ExternalServiceError(f"Question feed at {self.url} is not a list")
        questions = []
        for item in data:
            try:
                questions.append(Question.model_validate(item))
            except ValidationError:
                continue
        if not questions:
            raise ExternalServiceError(f"Question feed at {self.url} has no usable entries")
        return questions

    async def load(self) -> List[Question]:
        if self._questions is not None:
            return self._questions
        try:
            self._questions = await self.fetch()
        except ExternalServiceError:
            logger.exception("could not load crossword questions")
            return []
        logger.info("loaded %d crossword questions", len(self._questions))
        return self._questions


@dataclass(frozen=True)
class ChessSuggestion:
    from_square: str
    to_square: str
    promotion: Optional[str] = None

    @property
    def uci(self) -> str:
        return f"{self.from_square}{self.to_square}{self.promotion or ''}"

    def to_payload(self) -> Dict[str, Optional[str]]:
        return {
            "from": self.from_square,
            "to": self.to_square,
            "promotion": self.promotion,
            "move": self.uci,
        }


def parse_suggestion(data: Any) -> ChessSuggestion:
    """Read a coordinate move such as ``e7e8q`` out of a service response."""

    if isinstance(data, dict):
        for key in ("bestmove", "bestMove", "move"):
            if data.get(key):
                data = data[key]
                break
    match = SUGGESTION_PATTERN.search(str(data)) if data else None
    if match is None:
        raise ExternalServiceError(f"No move in suggestion response {data!r}")
    from_square, to_square, promotion = match.groups()
    return ChessSuggestion(from_square, to_square, promotion or None)


class ChessSuggestionClient:
    def __init__(
        self,
        url: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    async def fetch(self, fen: str) -> ChessSuggestion:
        if not self.url:
            raise ExternalServiceError("No chess suggestion endpoint configured")
        data = await _get_json(self._client, self.url, self.timeout, params={"fen": fen})
        return parse_suggestion(data)

    async def suggest(self, fen: str) -> Optional[ChessSuggestion]:
        try:
            return await self.fetch(fen)
        except ExternalServiceError as exc:
            logger.warning("chess suggestion failed: %s", exc)
            return None
