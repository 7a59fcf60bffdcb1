from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from .src_wr_models import Run, Slot
from .src_wr_storage import SlotStore

if TYPE_CHECKING:
    from .src_wr_client import SrcClient


class ClassificationError(Exception):
    def __init__(self, run: Run, message: str):
        super().__init__(message)
        self.run = run


class UnmatchedRunError(ClassificationError):
    pass


class AmbiguousRunError(ClassificationError):
    def __init__(self, run: Run, candidates: List[Slot]):
        keys = ", ".join(s.variant_key or "<none>" for s in candidates)
        super().__init__(run, f"Run {run.id} matches {len(candidates)} leaderboards: {keys}")
        self.candidates = candidates


def slot_accepts(slot: Slot, run: Run) -> bool:
    for choice in slot.choices:
        value_id = run.values.get(choice.variant_id)
        if value_id is not None and value_id != choice.value_id:
            return False
    return True


class RunClassifier:
    def __init__(self, store: SlotStore):
        self.store = store

    def candidates(self, run: Run) -> List[Slot]:
        return [s for s in self.store.for_node(run.category_id, run.level_id) if slot_accepts(s, run)]

    def classify(self, run: Run) -> Slot:
        found = self.candidates(run)
        if not found:
            where = f"level {run.level_id} " if run.level_id else ""
            raise UnmatchedRunError(run, f"Run {run.id} has no leaderboard in {where}category {run.category_id}")
        if len(found) > 1:
            raise AmbiguousRunError(run, found)
        return found[0]


class RecordJudge:
    """Decides whether a classified run takes its slot's record."""

    async def is_new_record(self, run: Run, slot: Slot) -> bool:
        raise NotImplementedError


class CachedRecordJudge(RecordJudge):
    async def is_new_record(self, run: Run, slot: Slot) -> bool:
        if slot.is_empty or slot.wr_time is None:
            return True
        return run.time < slot.wr_time


class LeaderboardQueryJudge(RecordJudge):
    def __init__(self, client: "SrcClient", game_id: str):
        self.client = client
        self.game_id = game_id

    async def is_new_record(self, run: Run, slot: Slot) -> bool:
        place = await self.client.run_place(
            self.game_id,
            slot.node.category_id,
            run.id,
            level_id=slot.node.level_id,
            variables=slot.fixed_values(),
        )
        if place != 1:
            return False
        # ties share first place on the site; only a strictly faster time moves the slot
        if slot.is_empty or slot.wr_time is None:
            return True
        return run.time < slot.wr_time


def make_judge(mode: str, client: Optional["SrcClient"], game_id: str) -> RecordJudge:
    if mode == "query":
        if client is None:
            raise ValueError("query mode needs a client")
        return LeaderboardQueryJudge(client, game_id)
    return CachedRecordJudge()
