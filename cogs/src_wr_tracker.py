from __future__ import annotations

import asyncio
import enum
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .src_wr_classifier import ClassificationError, RecordJudge, RunClassifier, make_judge
from .src_wr_client import SrcClient, SrcRequestError
from .src_wr_models import NewRecord, NewRun, Run, Slot, SlotKey, Taxonomy
from .src_wr_shared import METADATA_TTL, MODE, POLL_SECONDS, RUN_PAGE_SIZE, SEEN_WINDOW, logger
from .src_wr_storage import SlotStore, WRStorage
from .src_wr_taxonomy import build_taxonomy, expand_taxonomy

Event = Union[NewRun, NewRecord]
Listener = Callable[[Event], Awaitable[None]]


class TrackerState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    UPDATING = "updating"
    SLEEPING = "sleeping"


class RecordTracker:
    """Polls newly verified runs of one game and keeps the record of every leaderboard.

    ``start`` builds the taxonomy, expands it into slots and restores the
    persisted snapshot. After that each ``run_cycle`` fetches the newest
    verified runs, classifies the unseen ones and updates the matching
    slot when a run beats its record. Listeners receive ``NewRun`` and
    ``NewRecord`` events in the order they happen.
    """

    def __init__(
        self,
        client: SrcClient,
        storage: Optional[WRStorage],
        game_id: str,
        *,
        mode: str = MODE,
        poll_seconds: float = POLL_SECONDS,
        seen_window: int = SEEN_WINDOW,
        metadata_ttl: float = METADATA_TTL,
    ):
        self.client = client
        self.storage = storage
        self.game_id = game_id
        self.mode = mode
        self.poll_seconds = poll_seconds
        self.seen_window = seen_window
        self.metadata_ttl = metadata_ttl
        self.state = TrackerState.IDLE
        self.taxonomy: Optional[Taxonomy] = None
        self.store: Optional[SlotStore] = None
        self.classifier: Optional[RunClassifier] = None
        self.judge: RecordJudge = make_judge(mode, client, game_id)
        self.seen_ids: List[str] = []
        self.last_cycle_at: Optional[datetime] = None
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    async def emit(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.exception("Listener failed for %s", type(event).__name__)

    async def _load_game_payload(self) -> Dict[str, Any]:
        cached = None
        if self.storage is not None:
            cached = await asyncio.to_thread(self.storage.load_game_payload, self.game_id)
            if cached and time.time() - cached[1] < self.metadata_ttl:
                return cached[0]
        try:
            payload = await self.client.get_game(self.game_id)
        except SrcRequestError:
            if cached:
                logger.warning("Using stale metadata for game %s", self.game_id)
                return cached[0]
            raise
        if self.storage is not None:
            await asyncio.to_thread(self.storage.save_game_payload, self.game_id, payload)
        return payload

    async def start(self, *, seed: bool = False) -> None:
        payload = await self._load_game_payload()
        self.taxonomy = build_taxonomy(payload, self.game_id)
        self.store = SlotStore(self.game_id, expand_taxonomy(self.taxonomy), self.storage)
        restored = await asyncio.to_thread(self.store.load)
        if self.storage is not None:
            self.seen_ids = await asyncio.to_thread(self.storage.load_seen_ids, self.game_id)
        self.classifier = RunClassifier(self.store)
        logger.info(
            "Tracking %s: %s leaderboards, %s records restored, %s known runs",
            self.taxonomy.name,
            len(self.store),
            restored,
            len(self.seen_ids),
        )
        if seed:
            await self.seed_records()

    async def seed_records(self) -> int:
        seeded = 0
        for slot in self.store.empty():
            try:
                top = await self.client.top_run(
                    self.game_id,
                    slot.node.category_id,
                    level_id=slot.node.level_id,
                    variables=slot.fixed_values(),
                )
            except SrcRequestError:
                logger.warning("Could not seed leaderboard %s", slot.key)
                continue
            if top is not None:
                slot.set_record(*top)
                seeded += 1
        if seeded:
            await asyncio.to_thread(self.store.save)
        logger.info("Seeded %s leaderboards from the site", seeded)
        return seeded

    async def seed_seen_ids(self, run_ids: List[str]) -> None:
        if self.seen_ids or not run_ids:
            return
        self.seen_ids = list(run_ids)[: self.seen_window]
        if self.storage is not None:
            await asyncio.to_thread(self.storage.save_seen_ids, self.game_id, self.seen_ids)

    async def fetch_new_runs(self) -> List[Dict[str, Any]]:
        raw_runs = await self.client.verified_runs(self.game_id, RUN_PAGE_SIZE)
        seen = set(self.seen_ids)
        fresh: List[Dict[str, Any]] = []
        for raw in raw_runs:
            if raw.get("id") in seen:
                break
            fresh.append(raw)
        return fresh

    async def classify_run(self, run: Run) -> Optional[Slot]:
        await self.emit(NewRun(run))
        self.state = TrackerState.CLASSIFYING
        try:
            return self.classifier.classify(run)
        except ClassificationError as exc:
            logger.warning("Skipping run %s: %s", run.id, exc)
            return None

    async def record_run(self, run: Run, slot: Slot) -> bool:
        if not await self.judge.is_new_record(run, slot):
            return False
        self.state = TrackerState.UPDATING
        previous_id, previous_time = slot.wr_run_id, slot.wr_time
        slot.set_record(run.id, run.time)
        await asyncio.to_thread(self.store.save)
        logger.info("New record %s in %s by %s (%.3f)", run.id, slot.key, run.player_name, run.time)
        await self.emit(NewRecord(run, slot, previous_id, previous_time))
        return True

    async def run_cycle(self) -> List[Slot]:
        if self.store is None or self.classifier is None:
            raise RuntimeError("RecordTracker.start() has not completed")
        self.state = TrackerState.FETCHING
        raw_runs = await self.fetch_new_runs()
        classified: List[Tuple[Run, Slot]] = []
        for raw in raw_runs:
            try:
                run = Run.from_api(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unparseable run %s: %s", raw.get("id"), exc)
                continue
            slot = await self.classify_run(run)
            if slot is not None:
                classified.append((run, slot))

        # oldest first; within a cycle only the fastest run per slot can hold it,
        # the earliest verified one on ties
        ordered = list(reversed(classified))
        fastest: Dict[SlotKey, Run] = {}
        for run, slot in ordered:
            best = fastest.get(slot.key)
            if best is None or run.time < best.time:
                fastest[slot.key] = run
        updated: List[Slot] = []
        for run, slot in ordered:
            if fastest[slot.key] is run and await self.record_run(run, slot):
                updated.append(slot)

        new_ids = [str(raw["id"]) for raw in raw_runs if raw.get("id")]
        self.seen_ids = (new_ids + self.seen_ids)[: self.seen_window]
        if new_ids and self.storage is not None:
            await asyncio.to_thread(self.storage.save_seen_ids, self.game_id, self.seen_ids)
        self.last_cycle_at = datetime.now(timezone.utc)
        return updated

    async def run_forever(self) -> None:
        while True:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error during record cycle for %s, continuing", self.game_id)
            self.state = TrackerState.SLEEPING
            await asyncio.sleep(self.poll_seconds)
