from __future__ import annotations

import logging
import os
import re
from typing import Iterable, Optional

API_BASE = "https://www.speedrun.com/api/v1"
SITE_BASE = "https://www.speedrun.com"
DATA_DIR = "data"

GAME_ID = os.getenv("SRC_WR_GAME_ID", "76rqjqd8")
CHANNEL_ID = int(os.getenv("SRC_WR_CHANNEL_ID") or 0) or None
DB_FILE = os.getenv("SRC_WR_DB_FILE", os.path.join(DATA_DIR, "src_wr.sqlite3"))
POLL_SECONDS = float(os.getenv("SRC_WR_POLL_SECONDS", "30"))
MODE = os.getenv("SRC_WR_MODE", "cached").lower()
SEED_RECORDS = os.getenv("SRC_WR_SEED_RECORDS", "1").lower() not in {"0", "false", "no", ""}
METADATA_TTL = float(os.getenv("SRC_WR_METADATA_TTL", "86400"))

RUN_PAGE_SIZE = 30
SEEN_WINDOW = 30
REQUEST_RETRIES = 3
RETRY_DELAY = 5.0
SEPARATING_TOGGLES = ("amiibo",)
EMBED_COLOUR = 0xFFCD2E

RUN_LINK_RE = re.compile(r"https://www\.speedrun\.com/.+/run/([0-9a-z]+)")

logger = logging.getLogger("src_wr")


def ensure_dirs(db_file: str = DB_FILE) -> None:
    folder = os.path.dirname(db_file)
    if folder:
        os.makedirs(folder, exist_ok=True)


def format_time(seconds: float) -> str:
    """Render elapsed seconds as ``1h 01m 05.250s``.

    Hours only when non-zero, minutes only when the minute-of-hour is
    non-zero, seconds always; a ``.000`` fraction is dropped.
    """
    seconds = float(seconds)
    sec_str = f"{seconds % 60:06.3f}"
    if sec_str.endswith(".000"):
        sec_str = sec_str[:-4]
    minutes = int(seconds // 60 % 60)
    min_str = f"{minutes:02d}m " if minutes else ""
    hours = int(seconds // 3600)
    hour_str = f"{hours}h " if hours else ""
    return f"{hour_str}{min_str}{sec_str}s"


def run_link(abbreviation: str, run_id: str) -> str:
    return f"{SITE_BASE}/{abbreviation}/run/{run_id}"


def run_id_from_link(link: Optional[str]) -> Optional[str]:
    if not link:
        return None
    match = RUN_LINK_RE.match(link)
    return match.group(1) if match else None


def category_label(category: str, level: Optional[str], value_labels: Iterable[str]) -> str:
    labels = ", ".join(value_labels)
    name = f"{level} {category}" if level else category
    return f"{name} ({labels})"
