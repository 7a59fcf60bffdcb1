from __future__ import annotations

import itertools
from typing import Any, Dict, Iterable, List, Optional

from .src_wr_models import Level, Slot, Taxonomy, TaxonomyNode, Variant, VariantChoice
from .src_wr_shared import SEPARATING_TOGGLES, logger


def is_separating(raw: Dict[str, Any], toggles: Iterable[str] = SEPARATING_TOGGLES) -> bool:
    return bool(raw.get("is-subcategory")) or raw.get("name") in set(toggles)


def parse_variant(raw: Dict[str, Any]) -> Variant:
    values: Dict[str, str] = {}
    raw_values = (raw.get("values") or {}).get("values") or {}
    for value_id, value in raw_values.items():
        label = value.get("label") if isinstance(value, dict) else value
        values[str(value_id)] = str(label or "")
    return Variant(id=str(raw["id"]), name=str(raw.get("name") or raw["id"]), values=values)


def _assign(node: Optional[TaxonomyNode], variant: Variant, where: str) -> None:
    if node is None:
        logger.debug("Dropping variable %s: category missing for %s", variant.id, where)
        return
    node.add_variant(variant)


def build_taxonomy(payload: Dict[str, Any], game_id: Optional[str] = None, toggles: Iterable[str] = SEPARATING_TOGGLES) -> Taxonomy:
    """Build the category/level tree from a ``games/{id}?embed=categories,variables,levels`` payload.

    Accepts either the full response or its ``data`` member. Only
    separating variables are kept; each is attached to every node its
    scope resolves to, and pool variables are also kept on the taxonomy.
    """
    data = payload.get("data", payload)
    taxonomy = Taxonomy(
        game_id=str(game_id or data.get("id")),
        name=(data.get("names") or {}).get("international") or data.get("name") or "",
        abbreviation=data.get("abbreviation") or "",
    )

    level_templates: List[TaxonomyNode] = []
    for cat in (data.get("categories") or {}).get("data", []):
        if cat.get("type") == "per-game":
            taxonomy.categories[cat["id"]] = TaxonomyNode(category_id=cat["id"], name=cat.get("name") or cat["id"])
        elif cat.get("type") == "per-level":
            level_templates.append(TaxonomyNode(category_id=cat["id"], name=cat.get("name") or cat["id"]))

    for lvl in (data.get("levels") or {}).get("data", []):
        level = Level(id=lvl["id"], name=lvl.get("name") or lvl["id"])
        for template in level_templates:
            level.categories[template.category_id] = template.copy_for_level(level.id, level.name)
        taxonomy.levels[level.id] = level

    for raw in (data.get("variables") or {}).get("data", []):
        if not is_separating(raw, toggles):
            continue
        variant = parse_variant(raw)
        scope = raw.get("scope") or {}
        scope_type = scope.get("type")
        category_id = raw.get("category")

        if scope_type in ("global", "full-game"):
            if category_id is not None:
                _assign(taxonomy.categories.get(category_id), variant, "full game")
            else:
                taxonomy.full_game_variables[variant.id] = variant
                for node in taxonomy.categories.values():
                    node.add_variant(variant)
        elif scope_type == "all-levels":
            if category_id is not None:
                for level in taxonomy.levels.values():
                    node = level.categories.get(category_id)
                    if node is not None:
                        node.add_variant(variant)
            else:
                taxonomy.level_variables[variant.id] = variant
                for level in taxonomy.levels.values():
                    for node in level.categories.values():
                        node.add_variant(variant)
        elif scope_type == "single-level":
            level = taxonomy.levels.get(scope.get("level"))
            if level is None:
                logger.debug("Dropping variable %s: unknown level %s", variant.id, scope.get("level"))
                continue
            if category_id is not None:
                _assign(level.categories.get(category_id), variant, f"level {level.id}")
            else:
                for node in level.categories.values():
                    node.add_variant(variant)
        else:
            logger.debug("Ignoring variable %s with scope %r", variant.id, scope_type)

    return taxonomy


def expand_slots(node: TaxonomyNode) -> List[Slot]:
    axes: List[List[VariantChoice]] = []
    for variant in node.variants.values():
        if not variant.values:
            # no values to split on; the node keeps one leaderboard for it
            continue
        axes.append([VariantChoice(variant.id, variant.name, vid, label) for vid, label in variant.values.items()])
    return [Slot(node=node, choices=tuple(combo)) for combo in itertools.product(*axes)]


def expand_taxonomy(taxonomy: Taxonomy) -> List[Slot]:
    slots: List[Slot] = []
    for node in taxonomy.nodes():
        slots.extend(expand_slots(node))
    return slots
