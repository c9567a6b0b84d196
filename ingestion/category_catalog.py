from __future__ import annotations

import argparse
import json
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable

DEFAULT_CATALOG_PATH = Path(
    os.getenv(
        "CATEGORY_CATALOG_PATH",
        str(Path(__file__).resolve().parent.parent / "data" / "category_catalog.json"),
    )
)

KIND_FOOD_TRIGGER = "food_trigger"
KIND_MEDICATION_CLASS = "medication_class"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def _norm(value: str | None) -> str:
    return " ".join(_NON_ALNUM.sub(" ", (value or "").strip().lower()).split())


def _keyword_pattern(keywords: Iterable[str]) -> re.Pattern[str] | None:
    tokens = sorted({_norm(word) for word in keywords if _norm(word)}, key=len, reverse=True)
    if not tokens:
        return None
    # keyword must start a word: "oat" matches "oatmeal" but not "goat"
    return re.compile(r"(?<![a-z0-9])(" + "|".join(re.escape(token) for token in tokens) + r")")


@dataclass(frozen=True)
class CategoryCatalog:
    version: str
    food_trigger_tags: frozenset[str]
    medication_class_tags: frozenset[str]
    items: dict[str, frozenset[str]] = field(default_factory=dict)
    food_keywords: dict[str, re.Pattern[str]] = field(default_factory=dict)
    food_categories: dict[str, frozenset[str]] = field(default_factory=dict)
    allergens: dict[str, frozenset[str]] = field(default_factory=dict)
    medication_keywords: dict[str, re.Pattern[str]] = field(default_factory=dict)
    medication_categories: dict[str, frozenset[str]] = field(default_factory=dict)

    @property
    def all_tags(self) -> frozenset[str]:
        return self.food_trigger_tags | self.medication_class_tags

    def kind_for_tag(self, tag: str) -> str:
        if tag in self.medication_class_tags:
            return KIND_MEDICATION_CLASS
        return KIND_FOOD_TRIGGER

    def tags_for_food(
        self,
        name: str | None,
        *,
        category: str | None = None,
        allergens: Iterable[str] | None = None,
    ) -> set[str]:
        normalized = _norm(name)
        tags: set[str] = set(self.items.get(normalized, frozenset()))
        for tag, pattern in self.food_keywords.items():
            if normalized and pattern.search(normalized):
                tags.add(tag)
        tags.update(self.food_categories.get(_norm(category), frozenset()))
        for allergen in allergens or ():
            tags.update(self.allergens.get(_norm(allergen), frozenset()))
        return tags

    def tags_for_medication(self, name: str | None, *, category: str | None = None) -> set[str]:
        normalized = _norm(name)
        tags: set[str] = set(self.items.get(normalized, frozenset()))
        for tag, pattern in self.medication_keywords.items():
            if normalized and pattern.search(normalized):
                tags.add(tag)
        tags.update(self.medication_categories.get(_norm(category), frozenset()))
        return tags


def _tag_mapping(payload: Any, *, section: str, known_tags: frozenset[str]) -> dict[str, frozenset[str]]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"catalog section '{section}' must be an object")
    mapping: dict[str, frozenset[str]] = {}
    for raw_key, raw_tags in payload.items():
        if not isinstance(raw_tags, list):
            raise ValueError(f"catalog section '{section}' entry '{raw_key}' must be a list")
        tags = frozenset(str(tag).strip() for tag in raw_tags if str(tag).strip())
        unknown = tags - known_tags
        if unknown:
            raise ValueError(f"catalog section '{section}' uses unknown tags: {sorted(unknown)}")
        mapping[_norm(str(raw_key))] = tags
    return mapping


def _keyword_mapping(payload: Any, *, section: str, known_tags: frozenset[str]) -> dict[str, re.Pattern[str]]:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"catalog section '{section}' must be an object")
    mapping: dict[str, re.Pattern[str]] = {}
    for tag, keywords in payload.items():
        if tag not in known_tags:
            raise ValueError(f"catalog section '{section}' uses unknown tag: {tag}")
        if not isinstance(keywords, list):
            raise ValueError(f"catalog section '{section}' entry '{tag}' must be a list")
        pattern = _keyword_pattern(str(word) for word in keywords)
        if pattern is not None:
            mapping[tag] = pattern
    return mapping


def parse_catalog(payload: Any) -> CategoryCatalog:
    if not isinstance(payload, dict):
        raise ValueError("Catalog must be a JSON object")
    food_tags = frozenset(str(tag) for tag in payload.get("food_trigger_tags") or [])
    medication_tags = frozenset(str(tag) for tag in payload.get("medication_class_tags") or [])
    if not food_tags and not medication_tags:
        raise ValueError("Catalog declares no category tags")
    overlap = food_tags & medication_tags
    if overlap:
        raise ValueError(f"Catalog tags declared as both food and medication: {sorted(overlap)}")
    known = food_tags | medication_tags
    return CategoryCatalog(
        version=str(payload.get("version") or "unversioned"),
        food_trigger_tags=food_tags,
        medication_class_tags=medication_tags,
        items=_tag_mapping(payload.get("items"), section="items", known_tags=known),
        food_keywords=_keyword_mapping(payload.get("food_keywords"), section="food_keywords", known_tags=food_tags),
        food_categories=_tag_mapping(payload.get("food_categories"), section="food_categories", known_tags=food_tags),
        allergens=_tag_mapping(payload.get("allergens"), section="allergens", known_tags=food_tags),
        medication_keywords=_keyword_mapping(
            payload.get("medication_keywords"), section="medication_keywords", known_tags=medication_tags
        ),
        medication_categories=_tag_mapping(
            payload.get("medication_categories"), section="medication_categories", known_tags=medication_tags
        ),
    )


# loaded once per process; tests pass explicit catalogs instead of touching the cache
@lru_cache(maxsize=4)
def load_category_catalog(path: Path = DEFAULT_CATALOG_PATH) -> CategoryCatalog:
    return parse_catalog(json.loads(Path(path).read_text()))


def main() -> None:
    parser = argparse.ArgumentParser(description="Show category tags assigned to a food or medication name.")
    parser.add_argument("--name", type=str, required=True, help="Raw item name as logged")
    parser.add_argument("--category", type=str, default=None, help="Item category column, if any")
    parser.add_argument("--medication", action="store_true", help="Treat the name as a medication")
    parser.add_argument("--path", type=str, default=str(DEFAULT_CATALOG_PATH), help="Path to catalog JSON file")
    args = parser.parse_args()
    catalog = load_category_catalog(Path(args.path))
    if args.medication:
        tags = catalog.tags_for_medication(args.name, category=args.category)
    else:
        tags = catalog.tags_for_food(args.name, category=args.category)
    print({"catalog_version": catalog.version, "name": args.name, "tags": sorted(tags)})


if __name__ == "__main__":
    main()
