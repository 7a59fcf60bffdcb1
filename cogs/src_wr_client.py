from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from .src_wr_shared import API_BASE, REQUEST_RETRIES, RETRY_DELAY, RUN_PAGE_SIZE, logger


class SrcRequestError(RuntimeError):
    def __init__(self, url: str, attempts: int):
        super().__init__(f"too many retries for url {url} ({attempts} attempts)")
        self.url = url
        self.attempts = attempts


class SrcClient:
    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        base_url: str = API_BASE,
        retries: int = REQUEST_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self._owns_session = session is None

    async def close(self) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    async def _fetch(self, url: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        async with self.session.get(url, params=params) as resp:
            resp.raise_for_status()
            return await resp.json()

    async def src_get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        for attempt in range(1, self.retries + 1):
            try:
                return await self._fetch(url, params)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                logger.warning("Request %s failed (attempt %s/%s): %s", url, attempt, self.retries, exc)
            if attempt < self.retries:
                await asyncio.sleep(self.retry_delay)
        raise SrcRequestError(url, self.retries)

    async def get_game(self, game_id: str) -> Dict[str, Any]:
        return await self.src_get(f"games/{game_id}", params={"embed": "categories,variables,levels"})

    async def verified_runs(self, game_id: str, limit: int = RUN_PAGE_SIZE) -> List[Dict[str, Any]]:
        params = {
            "game": game_id,
            "status": "verified",
            "direction": "desc",
            "orderby": "verify-date",
            "embed": "players",
            "max": limit,
        }
        data = await self.src_get("runs", params=params)
        return data.get("data", [])

    async def leaderboard(
        self,
        game_id: str,
        category_id: str,
        *,
        level_id: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        top: Optional[int] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {f"var-{vid}": value for vid, value in (variables or {}).items()}
        if top is not None:
            params["top"] = top
        if level_id:
            path = f"leaderboards/{game_id}/level/{level_id}/{category_id}"
        else:
            path = f"leaderboards/{game_id}/category/{category_id}"
        data = await self.src_get(path, params=params or None)
        return data.get("data", {})

    async def top_run(
        self,
        game_id: str,
        category_id: str,
        *,
        level_id: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
    ) -> Optional[Tuple[str, float]]:
        board = await self.leaderboard(game_id, category_id, level_id=level_id, variables=variables, top=1)
        for placement in board.get("runs", []):
            run = placement.get("run") or {}
            if placement.get("place") == 1 and run.get("id"):
                return str(run["id"]), float((run.get("times") or {}).get("primary_t") or 0.0)
        return None

    async def run_place(
        self,
        game_id: str,
        category_id: str,
        run_id: str,
        *,
        level_id: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
    ) -> Optional[int]:
        board = await self.leaderboard(game_id, category_id, level_id=level_id, variables=variables)
        for placement in board.get("runs", []):
            if (placement.get("run") or {}).get("id") == run_id:
                return placement.get("place")
        return None
