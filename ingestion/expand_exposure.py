from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable

from ingestion.category_catalog import CategoryCatalog, load_category_catalog
from ingestion.time_utils import floor_to_hour, to_utc

logger = logging.getLogger(__name__)

SOURCE_MEAL = "meal"
SOURCE_MEDICATION = "medication"


@dataclass(frozen=True)
class LagBucket:
    label: str
    start_hours: int
    end_hours: int


# hours before the outcome; start inclusive, end exclusive
LAG_BUCKETS = (
    LagBucket("0_6h", 0, 6),
    LagBucket("6_12h", 6, 12),
    LagBucket("12_24h", 12, 24),
    LagBucket("24_48h", 24, 48),
)


# one meal-food or medication-log row as read from the log tables
@dataclass
class RawExposureRow:
    source: str
    subject_id: int
    user_id: int
    item_name: str | None
    occurred_at: datetime | str | None
    item_category: str | None = None
    allergens: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ExposureEvent:
    subject_id: int
    subject_name: str
    category: str
    category_kind: str
    occurred_at: datetime
    user_id: int


def parse_allergens(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(item) for item in value if str(item).strip()]
    text = str(value).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except ValueError:
        return [part.strip() for part in text.split(",") if part.strip()]
    if isinstance(parsed, list):
        return [str(item) for item in parsed if str(item).strip()]
    return []


def _tags_for_row(row: RawExposureRow, catalog: CategoryCatalog) -> set[str]:
    if row.source == SOURCE_MEDICATION:
        return catalog.tags_for_medication(row.item_name, category=row.item_category)
    return catalog.tags_for_food(row.item_name, category=row.item_category, allergens=row.allergens)


# expand raw rows into one exposure event per (row, category tag)
# rows without a usable timestamp or outside the window are dropped silently
# rows with no mapped tag are skipped with a warning, never an error
def expand_exposure_rows(
    rows: Iterable[RawExposureRow],
    *,
    window_start: datetime,
    window_end: datetime,
    catalog: CategoryCatalog | None = None,
) -> list[ExposureEvent]:
    catalog = catalog or load_category_catalog()
    events: list[ExposureEvent] = []
    unmapped: set[str] = set()
    for row in rows:
        occurred_at = to_utc(row.occurred_at)
        if occurred_at is None:
            continue
        if occurred_at < window_start or occurred_at > window_end:
            continue
        tags = _tags_for_row(row, catalog)
        if not tags:
            name = (row.item_name or "").strip() or "<unnamed>"
            if name.lower() not in unmapped:
                unmapped.add(name.lower())
                logger.warning(
                    "No category mapping for %s item %r; skipping",
                    row.source,
                    name,
                    extra={"user_id": row.user_id, "catalog_version": catalog.version},
                )
            continue
        for tag in tags:
            events.append(
                ExposureEvent(
                    subject_id=int(row.subject_id),
                    subject_name=(row.item_name or "").strip(),
                    category=tag,
                    category_kind=catalog.kind_for_tag(tag),
                    occurred_at=occurred_at,
                    user_id=int(row.user_id),
                )
            )
    events.sort(key=lambda event: (event.occurred_at, event.category, event.subject_id))
    return events


def build_hourly_exposure_index(events: Iterable[ExposureEvent]) -> dict[datetime, set[str]]:
    index: dict[datetime, set[str]] = {}
    for event in events:
        index.setdefault(floor_to_hour(event.occurred_at), set()).add(event.category)
    return index


def lag_buckets_for_window(time_window_hours: int) -> tuple[LagBucket, ...]:
    window = int(time_window_hours)
    selected = tuple(bucket for bucket in LAG_BUCKETS if bucket.start_hours < window)
    return selected or LAG_BUCKETS[:1]


def category_present(
    index: dict[datetime, set[str]],
    category: str,
    at: datetime,
    bucket: LagBucket,
) -> bool:
    for hours_before in range(bucket.start_hours, bucket.end_hours):
        tags = index.get(floor_to_hour(at - timedelta(hours=hours_before)))
        if tags and category in tags:
            return True
    return False


def feature_name(category: str, bucket: LagBucket) -> str:
    return f"{category}_{bucket.label}"


# "histamine_12_24h" -> "Histamine (12–24h prior)"
def pretty_feature_name(name: str) -> str:
    parts = name.split("_")
    if len(parts) < 3:
        return name
    category = " ".join(parts[:-2])
    lag_start = parts[-2]
    lag_end = parts[-1].rstrip("h")
    category_label = " ".join(word.capitalize() for word in category.split())
    return f"{category_label} ({lag_start}–{lag_end}h prior)"


def pretty_category_name(category: str) -> str:
    return " ".join(word.capitalize() for word in category.split("_") if word)


def build_lag_feature_row(
    index: dict[datetime, set[str]],
    at: datetime,
    *,
    categories: Iterable[str],
    buckets: Iterable[LagBucket] = LAG_BUCKETS,
) -> dict[str, int]:
    bucket_list = tuple(buckets)
    row: dict[str, int] = {}
    for category in categories:
        for bucket in bucket_list:
            row[feature_name(category, bucket)] = 1 if category_present(index, category, at, bucket) else 0
    return row
