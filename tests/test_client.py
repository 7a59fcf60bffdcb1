from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from cogs.src_wr_client import SrcClient, SrcRequestError


@pytest.mark.asyncio
async def test_src_get_retries_then_succeeds():
    client = SrcClient(session=object(), retry_delay=0)
    with patch.object(client, "_fetch", AsyncMock(side_effect=[aiohttp.ClientError("boom"), {"data": []}])) as fetch:
        result = await client.src_get("runs", params={"game": "g1"})
    assert result == {"data": []}
    assert fetch.call_count == 2
    fetch.assert_called_with("https://www.speedrun.com/api/v1/runs", {"game": "g1"})


@pytest.mark.asyncio
async def test_src_get_gives_up_after_budget():
    client = SrcClient(session=object(), retries=3, retry_delay=0)
    with patch.object(client, "_fetch", AsyncMock(side_effect=aiohttp.ClientError("down"))) as fetch:
        with pytest.raises(SrcRequestError) as info:
            await client.src_get("games/g1")
    assert fetch.call_count == 3
    assert info.value.attempts == 3
    assert info.value.url.endswith("/games/g1")


@pytest.mark.asyncio
async def test_verified_runs_query():
    client = SrcClient(session=object())
    with patch.object(client, "src_get", AsyncMock(return_value={"data": [{"id": "r1"}]})) as get:
        runs = await client.verified_runs("g1")
    assert runs == [{"id": "r1"}]
    path, = get.call_args.args
    params = get.call_args.kwargs["params"]
    assert path == "runs"
    assert params["status"] == "verified"
    assert params["orderby"] == "verify-date"
    assert params["direction"] == "desc"
    assert params["max"] == 30


@pytest.mark.asyncio
async def test_leaderboard_paths_and_variables():
    client = SrcClient(session=object())
    with patch.object(client, "src_get", AsyncMock(return_value={"data": {"runs": []}})) as get:
        await client.leaderboard("g1", "c1", variables={"v1": "a"}, top=1)
        get.assert_called_with("leaderboards/g1/category/c1", params={"var-v1": "a", "top": 1})
        await client.leaderboard("g1", "c1", level_id="l1")
        get.assert_called_with("leaderboards/g1/level/l1/c1", params=None)


@pytest.mark.asyncio
async def test_top_run_and_run_place():
    board = {
        "data": {
            "runs": [
                {"place": 1, "run": {"id": "fast", "times": {"primary_t": 90.5}}},
                {"place": 2, "run": {"id": "slow", "times": {"primary_t": 95}}},
            ]
        }
    }
    client = SrcClient(session=object())
    with patch.object(client, "src_get", AsyncMock(return_value=board)):
        assert await client.top_run("g1", "c1") == ("fast", 90.5)
        assert await client.run_place("g1", "c1", "slow") == 2
        assert await client.run_place("g1", "c1", "missing") is None


@pytest.mark.asyncio
async def test_top_run_of_empty_board():
    client = SrcClient(session=object())
    with patch.object(client, "src_get", AsyncMock(return_value={"data": {"runs": []}})):
        assert await client.top_run("g1", "c1", level_id="l1", variables={"v": "x"}) is None


@pytest.mark.asyncio
async def test_src_get_retries_undecodable_body():
    client = SrcClient(session=object(), retry_delay=0)
    bad_body = aiohttp.ContentTypeError(None, (), message="text/html")
    with patch.object(client, "_fetch", AsyncMock(side_effect=[ValueError("Expecting value"), bad_body, {"data": {}}])) as fetch:
        assert await client.src_get("games/g1") == {"data": {}}
    assert fetch.call_count == 3
