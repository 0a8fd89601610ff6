# prepstream/feed_manager.py
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set, Tuple

from fastapi import WebSocket

from prepstream.errors import MalformedResponse, NetworkFailure, StaleEpoch
from prepstream.schemas import DEFAULT_FILTERS, Filters, Question
from prepstream.templates import ProceduralGenerator

logger = logging.getLogger(__name__)

SEED_SIZE = 3
BATCH_SIZE = 2
TAIL_THRESHOLD = 2


class FeedState(str, Enum):
    IDLE = "idle"
    SEEDED = "seeded"
    AWAITING_REMOTE = "awaiting_remote"
    STEADY = "steady"


@dataclass(frozen=True)
class FeedSnapshot:
    epoch: int
    questions: Tuple[Question, ...]
    loading: bool
    state: FeedState

    def to_message(self) -> dict:
        return {
            "type": "FEED_CHANGED",
            "epoch": self.epoch,
            "loading": self.loading,
            "questions": [q.model_dump(mode="json", by_alias=True) for q in self.questions],
        }


class FeedController:
    """
    Owns one feed: an append-only question sequence for the current epoch.

    Every handler runs to completion on the event loop, so the sequence and
    the pending request are never touched concurrently. A filter change
    starts a new epoch; requests issued under an older epoch still complete
    but can no longer write their results into the sequence.
    """

    def __init__(self, generator: ProceduralGenerator, remote, store=None, feed_id: str = "default", *,
                 seed_size: int = SEED_SIZE, batch_size: int = BATCH_SIZE, tail_threshold: int = TAIL_THRESHOLD,
                 on_change: Optional[Callable[[FeedSnapshot], None]] = None):
        self.generator = generator
        self.remote = remote
        self.store = store
        self.feed_id = feed_id
        self.seed_size = seed_size
        self.batch_size = batch_size
        self.tail_threshold = tail_threshold
        self.on_change = on_change

        self.filters: Optional[Filters] = None
        self.epoch = 0
        self.state = FeedState.IDLE
        self.consumption_index = 0
        self._questions: List[Question] = []
        self._ids: Set[str] = set()
        self._pending: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._background: Set[asyncio.Task] = set()
        self._staged: Optional[Filters] = None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def questions(self) -> Tuple[Question, ...]:
        return tuple(self._questions)

    @property
    def loading(self) -> bool:
        return self._pending is not None

    def snapshot(self) -> FeedSnapshot:
        return FeedSnapshot(self.epoch, self.questions, self.loading, self.state)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def mount(self) -> None:
        """Loads the persisted selection (or defaults) and starts the first epoch."""
        filters = DEFAULT_FILTERS
        if self.store is not None:
            try:
                filters = await self.store.get_filters(self.feed_id)
            except Exception:
                logger.warning("Filter store unavailable for feed %s, using defaults", self.feed_id, exc_info=True)
        if self.filters is not None:
            # a consumer committed filters while the store was being read
            logger.info("Feed %s already has filters, ignoring persisted selection", self.feed_id)
            return
        self.set_filters(filters, persist=False)

    def set_filters(self, filters: Filters, persist: bool = True) -> bool:
        if filters == self.filters:
            return False

        self.epoch += 1
        self.filters = filters
        self._questions = []
        self._ids = set()
        self.consumption_index = 0
        self._staged = None
        # the old epoch's task keeps running and lands in the stale branch
        self._pending = None
        logger.info("Feed %s: epoch %d for %s", self.feed_id, self.epoch, filters.model_dump())

        self._append(self.generator.generate_batch(filters, self.seed_size))
        self.state = FeedState.SEEDED
        self._notify()

        if persist and self.store is not None:
            self._spawn(self.store.set_filters(self.feed_id, filters), self._log_persist_failure)
        self._request_remote(self.batch_size)
        return True

    def stage_filters(self, filters: Filters) -> None:
        """Records a selection without reloading; commit_filters() applies it."""
        self._staged = filters

    def commit_filters(self) -> bool:
        if self._staged is None:
            return False
        return self.set_filters(self._staged)

    def report_consumption(self, index: int) -> bool:
        """Returns True when this report triggered replenishment."""
        self.consumption_index = max(0, index)
        if self.filters is None or self._pending is not None:
            return False
        if self.consumption_index >= len(self._questions) - self.tail_threshold:
            self._request_remote(self.batch_size)
            return True
        return False

    # ------------------------------------------------------------------
    # Remote requests
    # ------------------------------------------------------------------

    def _request_remote(self, count: int) -> None:
        task = asyncio.create_task(self._fetch(self.epoch, self.filters, count))
        self._pending = task
        self._inflight.add(task)
        task.add_done_callback(self._handle_fetch_completion)
        self.state = FeedState.AWAITING_REMOTE
        self._notify()

    async def _fetch(self, epoch: int, filters: Filters, count: int) -> None:
        try:
            batch = await self.remote.request_batch(filters, count)
        except (NetworkFailure, MalformedResponse):
            logger.warning("Remote generation failed for feed %s epoch %d, using procedural fallback",
                           self.feed_id, epoch, exc_info=True)
            batch = None
        try:
            self._complete(epoch, count, batch)
        except StaleEpoch as e:
            logger.info("Feed %s: discarding remote result: %s", self.feed_id, e)
            # backfill under the current filters; the current epoch's request stays pending
            self._append(self.generator.generate_batch(self.filters, count))
            self._notify()

    def _complete(self, epoch: int, count: int, batch: Optional[List[Question]]) -> None:
        if epoch != self.epoch:
            raise StaleEpoch(epoch, self.epoch)
        if batch is None:
            batch = self.generator.generate_batch(self.filters, count)
        else:
            batch = batch[:count]
            if len(batch) < count:
                batch += self.generator.generate_batch(self.filters, count - len(batch))
        self._append(batch)
        self._pending = None
        self.state = FeedState.STEADY
        self._notify()

    def _handle_fetch_completion(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            if self._pending is task:
                self._pending = None
            return
        if task.exception() is None:
            return
        logger.error("Remote fetch task for feed %s failed unexpectedly", self.feed_id, exc_info=task.exception())
        if self._pending is task:
            self._pending = None
            self._append(self.generator.generate_batch(self.filters, self.batch_size))
            self.state = FeedState.STEADY
            self._notify()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _append(self, batch: List[Question]) -> None:
        for q in batch:
            if q.id in self._ids:
                logger.debug("Skipping duplicate question id %s", q.id)
                continue
            self._ids.add(q.id)
            self._questions.append(q)

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self.snapshot())

    def _spawn(self, coro, callback) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(callback)

    def _log_persist_failure(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Could not persist filters for feed %s", self.feed_id, exc_info=task.exception())

    async def wait_idle(self) -> None:
        """Waits until no remote request (current or stale) is in flight."""
        while self._inflight:
            await asyncio.wait(set(self._inflight))

    async def close(self) -> None:
        tasks = list(self._inflight) + list(self._background)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending = None


class FeedHub:
    """
    Maps feed ids to FeedControllers and their WebSocket consumers.
    Every feed change is pushed to all sockets attached to that feed.
    """

    def __init__(self, generator_factory: Callable[[], ProceduralGenerator], remote, store=None):
        self.generator_factory = generator_factory
        self.remote = remote
        self.store = store
        self.feeds: Dict[str, FeedController] = {}
        self.connections: Dict[str, Set[WebSocket]] = {}
        self._broadcasts: Set[asyncio.Task] = set()

    async def get_feed(self, feed_id: str) -> FeedController:
        feed = self.feeds.get(feed_id)
        if feed is None:
            feed = FeedController(
                self.generator_factory(), self.remote, self.store, feed_id,
                on_change=lambda snapshot: self._schedule_broadcast(feed_id),
            )
            self.feeds[feed_id] = feed
            await feed.mount()
            logger.info("Mounted feed %s", feed_id)
        return feed

    async def connect(self, feed_id: str, websocket: WebSocket) -> FeedController:
        """Accepts a consumer, mounting the feed on first use, and sends it the current snapshot."""
        await websocket.accept()
        self.connections.setdefault(feed_id, set()).add(websocket)
        logger.info("Client connected to feed %s. Total connections: %d", feed_id, len(self.connections[feed_id]))
        feed = await self.get_feed(feed_id)
        await websocket.send_json(feed.snapshot().to_message())
        return feed

    async def disconnect(self, feed_id: str, websocket: WebSocket) -> None:
        conns = self.connections.get(feed_id)
        if conns and websocket in conns:
            conns.remove(websocket)
            logger.info("Client disconnected from feed %s. Remaining connections: %d", feed_id, len(conns))
            if not conns:
                del self.connections[feed_id]

    def _schedule_broadcast(self, feed_id: str) -> None:
        if not self.connections.get(feed_id):
            return
        task = asyncio.create_task(self._broadcast(feed_id))
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcasts.discard)

    async def _broadcast(self, feed_id: str) -> None:
        feed = self.feeds.get(feed_id)
        active = list(self.connections.get(feed_id, ()))
        if feed is None or not active:
            return
        # send the state as of now; an older scheduled broadcast never regresses a client
        message = feed.snapshot().to_message()
        results = await asyncio.gather(*(ws.send_json(message) for ws in active), return_exceptions=True)
        for ws, result in zip(active, results):
            if isinstance(result, Exception):
                logger.warning("Failed to send to client on feed %s, disconnecting: %s", feed_id, result)
                await self.disconnect(feed_id, ws)

    async def close(self) -> None:
        for feed in self.feeds.values():
            await feed.close()
        for task in list(self._broadcasts):
            task.cancel()
        await asyncio.gather(*self._broadcasts, return_exceptions=True)
        if self.store is not None:
            await self.store.close()
