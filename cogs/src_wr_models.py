from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

NodeKey = Tuple[Optional[str], str]
SlotKey = Tuple[str, str, str]


@dataclass(frozen=True)
class Variant:
    id: str
    name: str
    values: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def label(self, value_id: str) -> str:
        return self.values.get(value_id, "")


@dataclass(frozen=True)
class VariantChoice:
    variant_id: str
    variant_name: str
    value_id: str
    value_label: str


@dataclass
class TaxonomyNode:
    """One scorable category, either full-game or under a single level."""

    category_id: str
    name: str
    level_id: Optional[str] = None
    level_name: Optional[str] = None
    variants: Dict[str, Variant] = field(default_factory=dict)

    @property
    def key(self) -> NodeKey:
        return (self.level_id, self.category_id)

    def add_variant(self, variant: Variant) -> None:
        self.variants[variant.id] = variant

    def copy_for_level(self, level_id: str, level_name: str) -> "TaxonomyNode":
        return TaxonomyNode(
            category_id=self.category_id,
            name=self.name,
            level_id=level_id,
            level_name=level_name,
            variants=dict(self.variants),
        )


@dataclass
class Level:
    id: str
    name: str
    categories: Dict[str, TaxonomyNode] = field(default_factory=dict)


@dataclass
class Taxonomy:
    game_id: str
    name: str
    abbreviation: str
    categories: Dict[str, TaxonomyNode] = field(default_factory=dict)
    levels: Dict[str, Level] = field(default_factory=dict)
    full_game_variables: Dict[str, Variant] = field(default_factory=dict)
    level_variables: Dict[str, Variant] = field(default_factory=dict)

    def nodes(self) -> List[TaxonomyNode]:
        out = list(self.categories.values())
        for level in self.levels.values():
            out.extend(level.categories.values())
        return out

    def node(self, category_id: str, level_id: Optional[str] = None) -> Optional[TaxonomyNode]:
        if level_id:
            level = self.levels.get(level_id)
            if level is None:
                return None
            return level.categories.get(category_id)
        return self.categories.get(category_id)

    def resolve_choices(self, run: "Run") -> List[VariantChoice]:
        node = self.node(run.category_id, run.level_id)
        if node is None:
            return []
        pool = self.level_variables if run.level_id else self.full_game_variables
        known: Dict[str, Variant] = dict(pool)
        known.update(node.variants)
        out: List[VariantChoice] = []
        for variant_id, value_id in run.values.items():
            variant = known.get(variant_id)
            if variant is None:
                continue
            out.append(VariantChoice(variant.id, variant.name, value_id, variant.label(value_id)))
        return out


@dataclass
class Slot:
    node: TaxonomyNode
    choices: Tuple[VariantChoice, ...] = ()
    wr_run_id: Optional[str] = None
    wr_time: Optional[float] = None

    @property
    def variant_key(self) -> str:
        return "&".join(f"{c.variant_id}={c.value_id}" for c in self.choices)

    @property
    def key(self) -> SlotKey:
        return (self.node.level_id or "", self.node.category_id, self.variant_key)

    @property
    def is_empty(self) -> bool:
        return self.wr_run_id is None

    def choice_for(self, variant_id: str) -> Optional[VariantChoice]:
        for choice in self.choices:
            if choice.variant_id == variant_id:
                return choice
        return None

    def fixed_values(self) -> Dict[str, str]:
        return {c.variant_id: c.value_id for c in self.choices}

    def set_record(self, run_id: str, time: float) -> None:
        self.wr_run_id = run_id
        self.wr_time = time


@dataclass(frozen=True)
class Run:
    id: str
    time: float
    category_id: str
    level_id: Optional[str] = None
    player_name: str = "Unknown"
    player_id: Optional[str] = None
    values: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)
    weblink: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Run":
        name, player_id = _first_player(payload.get("players"))
        times = payload.get("times") or {}
        values = payload.get("values") or {}
        if times.get("primary_t") is None:
            raise ValueError(f"run {payload.get('id')} has no primary time")
        return cls(
            id=str(payload["id"]),
            time=float(times["primary_t"]),
            category_id=str(payload.get("category") or ""),
            level_id=payload.get("level") or None,
            player_name=name,
            player_id=player_id,
            values={str(k): str(v) for k, v in values.items()},
            weblink=payload.get("weblink"),
        )


def _first_player(raw_players: Any) -> Tuple[str, Optional[str]]:
    entries: List[Any] = []
    if isinstance(raw_players, dict):
        data = raw_players.get("data")
        if isinstance(data, list):
            entries.extend(data)
    elif isinstance(raw_players, list):
        entries.extend(raw_players)
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        pid = entry.get("id")
        name = (entry.get("names") or {}).get("international") or entry.get("name")
        if name or pid:
            return name or str(pid), pid
    return "Unknown", None


@dataclass(frozen=True)
class NewRun:
    run: Run


@dataclass(frozen=True)
class NewRecord:
    run: Run
    slot: Slot
    previous_run_id: Optional[str] = None
    previous_time: Optional[float] = None
