import pytest

from cogs.src_wr_client import SrcRequestError


def make_variable(var_id, name, values, *, scope="global", category=None, level=None, subcategory=True):
    scope_payload = {"type": scope}
    if level is not None:
        scope_payload["level"] = level
    return {
        "id": var_id,
        "name": name,
        "category": category,
        "scope": scope_payload,
        "is-subcategory": subcategory,
        "values": {"values": {vid: {"label": label} for vid, label in values.items()}},
    }


def make_game(categories, levels=(), variables=(), *, game_id="g1", name="Breath of the Wild", abbreviation="botw"):
    return {
        "data": {
            "id": game_id,
            "abbreviation": abbreviation,
            "names": {"international": name},
            "categories": {"data": [{"id": cid, "name": cname, "type": ctype} for cid, cname, ctype in categories]},
            "levels": {"data": [{"id": lid, "name": lname} for lid, lname in levels]},
            "variables": {"data": list(variables)},
        }
    }


def make_run(run_id, category, time, values=None, *, level=None, player="Runner"):
    return {
        "id": run_id,
        "category": category,
        "level": level,
        "times": {"primary_t": time},
        "values": values or {},
        "players": {"data": [{"id": f"p-{player}", "names": {"international": player}}]},
        "weblink": f"https://www.speedrun.com/botw/run/{run_id}",
    }


@pytest.fixture
def game_payload():
    """A game exercising every variable scope rule."""
    return make_game(
        categories=[
            ("c_any", "Any%", "per-game"),
            ("c_100", "100%", "per-game"),
            ("lc_fast", "Fastest", "per-level"),
            ("lc_all", "All Chests", "per-level"),
        ],
        levels=[("l1", "Oman Au"), ("l2", "Ja Baij")],
        variables=[
            make_variable("v_amiibo", "amiibo", {"a_yes": "amiibo", "a_no": "No amiibo"}, scope="full-game", category="c_any", subcategory=False),
            make_variable("v_diff", "Difficulty", {"d_norm": "Normal", "d_master": "Master Mode"}, scope="global"),
            make_variable("v_platform", "Platform", {"p_wiiu": "Wii U", "p_nx": "Switch"}, scope="global", subcategory=False),
            make_variable("v_dlc", "DLC", {"dlc_on": "DLC", "dlc_off": "No DLC"}, scope="all-levels"),
            make_variable("v_glitch", "Glitches", {"g_yes": "Glitched", "g_no": "Glitchless"}, scope="single-level", level="l1", category="lc_fast"),
            make_variable("v_seed", "Seed", {"s1": "Seed 1", "s2": "Seed 2", "s3": "Seed 3"}, scope="single-level", level="l2"),
            make_variable("v_ghost", "Ghost", {"x1": "X"}, scope="full-game", category="missing"),
            make_variable("v_route", "Route", {"r1": "Route 1", "r2": "Route 2"}, scope="all-levels", category="lc_all"),
        ],
    )


@pytest.fixture
def simple_payload():
    return make_game(
        categories=[("cat", "Any%", "per-game")],
        variables=[make_variable("var", "Mode", {"A": "Mode A", "B": "Mode B"})],
    )


class FakeSrcClient:
    """Stands in for SrcClient; serves canned pages and leaderboard answers."""

    def __init__(self, game, pages=None):
        self.game = game
        self.pages = list(pages or [])
        self.game_calls = 0
        self.fail_game = False
        self.fail_runs = False
        self.tops = {}
        self.places = {}
        self.place_calls = []

    async def get_game(self, game_id):
        self.game_calls += 1
        if self.fail_game:
            raise SrcRequestError(f"games/{game_id}", 3)
        return self.game

    async def verified_runs(self, game_id, limit=30):
        if self.fail_runs:
            raise SrcRequestError("runs", 3)
        if not self.pages:
            return []
        if len(self.pages) == 1:
            return self.pages[0][:limit]
        return self.pages.pop(0)[:limit]

    async def top_run(self, game_id, category_id, *, level_id=None, variables=None):
        key = (level_id, category_id, tuple(sorted((variables or {}).items())))
        return self.tops.get(key)

    async def run_place(self, game_id, category_id, run_id, *, level_id=None, variables=None):
        self.place_calls.append((category_id, level_id, dict(variables or {}), run_id))
        return self.places.get(run_id)
