"""Transactional keyed record store with change subscriptions.

Rooms live in a ``RecordStore``: whole records addressed by a path such as
``"connect4-games/ABC123"``. The session layer only relies on the protocol
below; ``InMemoryRecordStore`` is the implementation the web app serves and
the tests run against.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from .errors import TransactionAbortError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
TransactionFn = Callable[[Optional[Record]], Optional[Record]]


class _ServerTimestamp:
    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __copy__(self) -> "_ServerTimestamp":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "_ServerTimestamp":
        return self


# Replaced by the store clock when the write commits.
SERVER_TIMESTAMP: Any = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Patch value adding ``delta`` to the current number at that path."""

    delta: float


@dataclass(frozen=True)
class TransactionResult:
    committed: bool
    snapshot: Optional[Record]


def _split(path: str) -> List[str]:
    parts = [p for p in path.split("/") if p]
    if not parts:
        raise ValueError(f"Empty path {path!r}")
    return parts


def merge_patch(record: Optional[Record], patch: Dict[str, Any]) -> Record:
    """Return ``record`` with each ``a/b``-style patch path written.

    ``None`` deletes the leaf; ``Increment`` is applied to the current value.
    The input record is not modified.
    """

    merged: Record = copy.deepcopy(record) if record else {}
    for key, value in patch.items():
        parts = _split(key)
        target = merged
        for part in parts[:-1]:
            child = target.get(part)
            if not isinstance(child, dict):
                child = {}
                target[part] = child
            target = child
        leaf = parts[-1]
        if isinstance(value, Increment):
            current = target.get(leaf)
            base = current if isinstance(current, (int, float)) else 0
            value = base + value.delta
        if value is None:
            target.pop(leaf, None)
        else:
            target[leaf] = copy.deepcopy(value)
    return merged


def _resolve_timestamps(value: Any, now: float) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: _resolve_timestamps(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_timestamps(v, now) for v in value]
    return value


class Subscription:
    """Ordered feed of full-record snapshots; ``None`` means removed."""

    def __init__(self, path: str, on_close: Callable[["Subscription"], None]):
        self.path = path
        self.closed = False
        self._queue: "asyncio.Queue[Optional[Record]]" = asyncio.Queue()
        self._on_close = on_close

    def deliver(self, snapshot: Optional[Record]) -> None:
        if not self.closed:
            self._queue.put_nowait(copy.deepcopy(snapshot))

    async def get(self) -> Optional[Record]:
        return await self._queue.get()

    def drain(self) -> List[Optional[Record]]:
        """Return every snapshot delivered so far without waiting."""

        items = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._on_close(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Optional[Record]:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class RecordStore(Protocol):
    def now(self) -> float: ...

    async def get(self, path: str) -> Optional[Record]: ...

    async def set(self, path: str, value: Record) -> None: ...

    async def update(self, path: str, patch: Dict[str, Any]) -> None: ...

    async def transaction(
        self, path: str, fn: TransactionFn, max_retries: int = ...
    ) -> TransactionResult: ...

    async def remove(self, path: str) -> None: ...

    def subscribe(self, path: str) -> Subscription: ...


class InMemoryRecordStore:
    """Single-process ``RecordStore`` with optimistic-concurrency transactions.

    Every committed write bumps the record's version and is pushed, in commit
    order, to each subscription on that path.
    """

    def __init__(
        self, clock: Callable[[], float] = time.time, max_retries: int = 25
    ) -> None:
        self._clock = clock
        self.max_retries = max_retries
        self._records: Dict[str, Record] = {}
        self._versions: Dict[str, int] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}

    def now(self) -> float:
        return self._clock()

    def paths(self) -> List[str]:
        return sorted(self._records)

    async def get(self, path: str) -> Optional[Record]:
        record = self._records.get(path)
        return copy.deepcopy(record) if record is not None else None

    async def set(self, path: str, value: Record) -> None:
        self._commit(path, value)

    async def update(self, path: str, patch: Dict[str, Any]) -> None:
        if not patch:
            return
        self._commit(path, merge_patch(self._records.get(path), patch))

    async def transaction(
        self, path: str, fn: TransactionFn, max_retries: Optional[int] = None
    ) -> TransactionResult:
        """Run ``fn`` against the current record and commit its result.

        ``fn`` returning ``None`` aborts. If another write lands between the
        read and the commit, ``fn`` is re-run on the fresh record.
        """

        retries = self.max_retries if max_retries is None else max_retries
        for attempt in range(retries):
            version = self._versions.get(path, 0)
            current = await self.get(path)
            candidate = fn(current)
            if candidate is None:
                return TransactionResult(committed=False, snapshot=current)
            # Round trip to the store; concurrent writers may land here.
            await asyncio.sleep(0)
            if self._versions.get(path, 0) != version:
                logger.debug("transaction on %s lost race (attempt %d)", path, attempt + 1)
                continue
            return TransactionResult(committed=True, snapshot=self._commit(path, candidate))
        raise TransactionAbortError(
            f"Transaction on {path} did not commit after {retries} attempts"
        )

    async def remove(self, path: str) -> None:
        if path not in self._records:
            return
        del self._records[path]
        self._versions[path] = self._versions.get(path, 0) + 1
        self._publish(path, None)

    def subscribe(self, path: str) -> Subscription:
        subscription = Subscription(path, self._unsubscribe)
        self._subscribers.setdefault(path, []).append(subscription)
        subscription.deliver(self._records.get(path))
        return subscription

    # ---- helpers ----

    def _commit(self, path: str, value: Record) -> Record:
        record = _resolve_timestamps(copy.deepcopy(value), self.now())
        self._records[path] = record
        self._versions[path] = self._versions.get(path, 0) + 1
        self._publish(path, record)
        return copy.deepcopy(record)

    def _publish(self, path: str, record: Optional[Record]) -> None:
        for subscription in list(self._subscribers.get(path, [])):
            subscription.deliver(record)

    def _unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.path, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
        if not subscribers:
            self._subscribers.pop(subscription.path, None)
