from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence, TypeVar

from ingestion.expand_exposure import (
    LAG_BUCKETS,
    ExposureEvent,
    LagBucket,
    build_hourly_exposure_index,
    build_lag_feature_row,
    feature_name,
)
from ingestion.normalize_outcome import OutcomeEvent

T = TypeVar("T")


@dataclass
class OutcomeTrainingSet:
    outcome_id: str
    outcome_name: str
    feature_names: list[str]
    features: list[list[int]] = field(default_factory=list)
    labels: list[int] = field(default_factory=list)

    @property
    def positives(self) -> int:
        return sum(self.labels)

    @property
    def negatives(self) -> int:
        return len(self.labels) - self.positives


def feature_names_for(categories: Iterable[str], buckets: Iterable[LagBucket] = LAG_BUCKETS) -> list[str]:
    bucket_list = tuple(buckets)
    return [feature_name(category, bucket) for category in categories for bucket in bucket_list]


# one row per outcome occurrence in time order; every category gets all lag buckets
def build_outcome_training_rows(
    exposures: Iterable[ExposureEvent],
    occurrences: Iterable[OutcomeEvent],
    *,
    high_severity_threshold: float,
    categories: Sequence[str] | None = None,
    buckets: Sequence[LagBucket] = LAG_BUCKETS,
) -> OutcomeTrainingSet:
    exposure_list = list(exposures)
    ordered = sorted(occurrences, key=lambda event: (event.occurred_at, event.source_id))
    category_list = sorted(set(categories) if categories is not None else {e.category for e in exposure_list})
    names = feature_names_for(category_list, buckets)
    index = build_hourly_exposure_index(exposure_list)

    training = OutcomeTrainingSet(
        outcome_id=ordered[0].outcome_id if ordered else "",
        outcome_name=ordered[0].outcome_name if ordered else "",
        feature_names=names,
    )
    for event in ordered:
        row = build_lag_feature_row(index, event.occurred_at, categories=category_list, buckets=buckets)
        training.features.append([row[name] for name in names])
        training.labels.append(1 if event.severity >= high_severity_threshold else 0)
    return training


# earlier rows train, later rows test; never shuffled
def chronological_split(items: Sequence[T], *, train_fraction: float) -> tuple[list[T], list[T]]:
    total = len(items)
    if total < 2:
        return list(items), []
    cut = int(round(total * train_fraction))
    cut = max(1, min(total - 1, cut))
    return list(items[:cut]), list(items[cut:])
