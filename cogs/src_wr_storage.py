from __future__ import annotations

import json
import sqlite3
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .src_wr_models import NodeKey, Slot, SlotKey
from .src_wr_shared import DB_FILE, SEEN_WINDOW, ensure_dirs


class SnapshotError(RuntimeError):
    pass


class WRStorage:
    def __init__(self, db_path: str = DB_FILE):
        self.db_path = db_path
        self._lock = threading.Lock()
        ensure_dirs(db_path)
        try:
            self._ensure_schema()
        except sqlite3.DatabaseError as exc:
            raise SnapshotError(f"Snapshot database {db_path} is unreadable: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS slots (
                    game_id TEXT NOT NULL,
                    level_id TEXT NOT NULL,
                    category_id TEXT NOT NULL,
                    variant_key TEXT NOT NULL,
                    wr_run_id TEXT,
                    wr_time REAL,
                    PRIMARY KEY (game_id, level_id, category_id, variant_key)
                );
                CREATE TABLE IF NOT EXISTS seen_runs (
                    game_id TEXT PRIMARY KEY,
                    run_ids TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS game_cache (
                    game_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    fetched_at REAL NOT NULL
                );
                """
            )

    def load_slots(self, game_id: str) -> Dict[SlotKey, Tuple[Optional[str], Optional[float]]]:
        with self._lock:
            try:
                with self._connect() as conn:
                    result: Dict[SlotKey, Tuple[Optional[str], Optional[float]]] = {}
                    for row in conn.execute(
                        "SELECT level_id, category_id, variant_key, wr_run_id, wr_time FROM slots WHERE game_id=?",
                        (game_id,),
                    ):
                        key = (row["level_id"], row["category_id"], row["variant_key"])
                        wr_time = float(row["wr_time"]) if row["wr_time"] is not None else None
                        result[key] = (row["wr_run_id"], wr_time)
                    return result
            except (sqlite3.DatabaseError, ValueError) as exc:
                raise SnapshotError(f"Failed reading slot snapshot for {game_id}: {exc}") from exc

    def save_slots(self, game_id: str, slots: Iterable[Tuple[SlotKey, Optional[str], Optional[float]]]) -> None:
        with self._lock:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("DELETE FROM slots WHERE game_id=?", (game_id,))
                for (level_id, category_id, variant_key), run_id, wr_time in slots:
                    cur.execute(
                        """
                        INSERT INTO slots (game_id, level_id, category_id, variant_key, wr_run_id, wr_time)
                        VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (game_id, level_id, category_id, variant_key, run_id, wr_time),
                    )

    def load_seen_ids(self, game_id: str) -> List[str]:
        with self._lock:
            try:
                with self._connect() as conn:
                    row = conn.execute("SELECT run_ids FROM seen_runs WHERE game_id=?", (game_id,)).fetchone()
                    if row is None:
                        return []
                    return [str(r) for r in json.loads(row["run_ids"])]
            except (sqlite3.DatabaseError, ValueError) as exc:
                raise SnapshotError(f"Failed reading seen runs for {game_id}: {exc}") from exc

    def save_seen_ids(self, game_id: str, run_ids: List[str]) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO seen_runs (game_id, run_ids) VALUES (?, ?)
                    ON CONFLICT(game_id) DO UPDATE SET run_ids=excluded.run_ids
                    """,
                    (game_id, json.dumps(run_ids[:SEEN_WINDOW])),
                )

    def load_game_payload(self, game_id: str) -> Optional[Tuple[Dict[str, Any], float]]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT payload, fetched_at FROM game_cache WHERE game_id=?", (game_id,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["payload"]), float(row["fetched_at"])
        except ValueError:
            return None

    def save_game_payload(self, game_id: str, payload: Dict[str, Any], fetched_at: Optional[float] = None) -> None:
        stamp = time.time() if fetched_at is None else fetched_at
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO game_cache (game_id, payload, fetched_at) VALUES (?, ?, ?)
                    ON CONFLICT(game_id) DO UPDATE SET payload=excluded.payload, fetched_at=excluded.fetched_at
                    """,
                    (game_id, json.dumps(payload), stamp),
                )


class SlotStore:
    """Every slot of one game, keyed for lookup and snapshotting."""

    def __init__(self, game_id: str, slots: Iterable[Slot], storage: Optional[WRStorage] = None):
        self.game_id = game_id
        self.storage = storage
        self._slots: Dict[SlotKey, Slot] = {}
        self._by_node: Dict[NodeKey, List[Slot]] = {}
        for slot in slots:
            self._slots[slot.key] = slot
            self._by_node.setdefault(slot.node.key, []).append(slot)

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self):
        return iter(self._slots.values())

    def get(self, key: SlotKey) -> Optional[Slot]:
        return self._slots.get(key)

    def for_node(self, category_id: str, level_id: Optional[str] = None) -> List[Slot]:
        return list(self._by_node.get((level_id or None, category_id), []))

    def held(self) -> List[Slot]:
        return [s for s in self._slots.values() if not s.is_empty]

    def empty(self) -> List[Slot]:
        return [s for s in self._slots.values() if s.is_empty]

    def snapshot(self) -> List[Tuple[SlotKey, Optional[str], Optional[float]]]:
        return [(key, slot.wr_run_id, slot.wr_time) for key, slot in self._slots.items()]

    def load(self) -> int:
        if self.storage is None:
            return 0
        restored = 0
        for key, (run_id, wr_time) in self.storage.load_slots(self.game_id).items():
            slot = self._slots.get(key)
            if slot is None or run_id is None:
                continue
            slot.set_record(run_id, wr_time)
            restored += 1
        return restored

    def save(self) -> None:
        if self.storage is not None:
            self.storage.save_slots(self.game_id, self.snapshot())
