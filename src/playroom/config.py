"""Runtime settings read from ``PLAYROOM_*`` environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

DEFAULT_CROSSWORD_FEED_URL = (
    "https://cdn.jsdelivr.net/gh/rikikangsc2-eng/metadata@main/caklontong.json"
)


def _parse_delay(raw: str) -> Tuple[float, float]:
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if len(parts) == 1:
        low = high = float(parts[0])
    elif len(parts) == 2:
        low, high = float(parts[0]), float(parts[1])
    else:
        raise ValueError(f"Invalid think delay {raw!r}, expected 'min,max'")
    if low < 0 or high < low:
        raise ValueError(f"Invalid think delay {raw!r}")
    return low, high


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    room_ttl_seconds: float = 60 * 60  # 1 hour
    ai_think_delay: Tuple[float, float] = (0.5, 1.0)
    chess_suggest_url: Optional[str] = None
    crossword_feed_url: str = DEFAULT_CROSSWORD_FEED_URL
    http_timeout: float = 10.0
    puzzle_timeout: float = 20.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("PLAYROOM_HOST", cls.host),
            port=int(env.get("PLAYROOM_PORT", str(cls.port))),
            log_level=env.get("PLAYROOM_LOG_LEVEL", cls.log_level).lower(),
            room_ttl_seconds=float(
                env.get("PLAYROOM_ROOM_TTL_SECONDS", str(cls.room_ttl_seconds))
            ),
            ai_think_delay=_parse_delay(env.get("PLAYROOM_AI_THINK_DELAY", "0.5,1.0")),
            chess_suggest_url=env.get("PLAYROOM_CHESS_SUGGEST_URL") or None,
            crossword_feed_url=env.get(
                "PLAYROOM_CROSSWORD_FEED_URL", DEFAULT_CROSSWORD_FEED_URL
            ),
            http_timeout=float(env.get("PLAYROOM_HTTP_TIMEOUT", str(cls.http_timeout))),
            puzzle_timeout=float(
                env.get("PLAYROOM_PUZZLE_TIMEOUT", str(cls.puzzle_timeout))
            ),
        )
