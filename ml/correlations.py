from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable

from api.repositories.correlations import (
    list_beneficial_items,
    list_stored_correlations,
    list_triggers_for_outcome,
    replace_user_correlations,
)
from api.repositories.logs import fetch_bowel_rows, fetch_exposure_rows, fetch_sleep_rows, fetch_symptom_rows
from ingestion.expand_exposure import (
    ExposureEvent,
    LagBucket,
    build_hourly_exposure_index,
    category_present,
    expand_exposure_rows,
    lag_buckets_for_window,
)
from ingestion.normalize_outcome import MAX_SEVERITY, OutcomeEvent, extract_outcomes
from ingestion.time_utils import floor_to_hour, to_utc_iso, window_bounds

logger = logging.getLogger(__name__)

MIN_SAMPLE_SIZE = int(os.getenv("CORRELATION_MIN_SAMPLE_SIZE", "3"))
MIN_CONFIDENCE = float(os.getenv("CORRELATION_MIN_CONFIDENCE", "0.3"))
# confidence = n / (n + k); larger k demands more observations for the same confidence
CONFIDENCE_K = float(os.getenv("CORRELATION_CONFIDENCE_K", "5"))
# beneficial items must be clearly protective, not just slightly negative
BENEFICIAL_MAX_SCORE = float(os.getenv("BENEFICIAL_MAX_SCORE", "-0.2"))
BENEFICIAL_MIN_CONFIDENCE = float(os.getenv("BENEFICIAL_MIN_CONFIDENCE", "0.4"))
DEFAULT_DAYS_BACK = 90
DEFAULT_TIME_WINDOW_HOURS = 24


@dataclass
class CorrelationRecord:
    user_id: int
    exposure_category: str
    exposure_kind: str
    outcome_id: str
    outcome_type: str
    outcome_name: str
    correlation_score: float
    confidence_level: float
    sample_size: int
    lag_bucket: str
    time_window_hours: int
    mean_severity_exposed: float
    mean_severity_unexposed: float | None
    computed_at: str

    @property
    def strength(self) -> float:
        return abs(self.correlation_score) * self.confidence_level

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _BucketResult:
    bucket: LagBucket
    score: float
    confidence: float
    sample_size: int
    mean_exposed: float
    mean_unexposed: float | None


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def confidence_for_sample(sample_size: int, *, k: float = CONFIDENCE_K) -> float:
    if sample_size <= 0:
        return 0.0
    return sample_size / (sample_size + k)


def record_from_row(row: dict[str, Any]) -> CorrelationRecord:
    unexposed = row.get("mean_severity_unexposed")
    return CorrelationRecord(
        user_id=int(row["user_id"]),
        exposure_category=str(row["exposure_category"]),
        exposure_kind=str(row.get("exposure_kind") or "food_trigger"),
        outcome_id=str(row["outcome_id"]),
        outcome_type=str(row.get("outcome_type") or "symptom"),
        outcome_name=str(row.get("outcome_name") or row["outcome_id"]),
        correlation_score=float(row["correlation_score"]),
        confidence_level=float(row["confidence_level"]),
        sample_size=int(row["sample_size"]),
        lag_bucket=str(row.get("lag_bucket") or ""),
        time_window_hours=int(row.get("time_window_hours") or DEFAULT_TIME_WINDOW_HOURS),
        mean_severity_exposed=float(row.get("mean_severity_exposed") or 0.0),
        mean_severity_unexposed=float(unexposed) if unexposed is not None else None,
        computed_at=str(row["computed_at"]),
    )


def sort_by_strength(records: Iterable[CorrelationRecord]) -> list[CorrelationRecord]:
    return sorted(records, key=lambda record: (-record.strength, record.exposure_category, record.outcome_id))


# exposures of the category with a full horizon after them and no occurrence inside it
def _quiet_exposure_count(
    exposure_hours: list[datetime],
    occurrences: list[OutcomeEvent],
    *,
    horizon: timedelta,
    window_end: datetime,
) -> int:
    count = 0
    for hour in exposure_hours:
        if hour + horizon > window_end:
            continue
        if any(hour < occurrence.occurred_at <= hour + horizon for occurrence in occurrences):
            continue
        count += 1
    return count


def _score_pair(
    category: str,
    occurrences: list[OutcomeEvent],
    exposure_hours: list[datetime],
    index: dict[datetime, set[str]],
    *,
    buckets: tuple[LagBucket, ...],
    window_start: datetime,
    window_end: datetime,
    minimum_sample_size: int,
    confidence_k: float,
) -> _BucketResult | None:
    horizon = timedelta(hours=max(bucket.end_hours for bucket in buckets))
    known = [occurrence for occurrence in occurrences if occurrence.occurred_at - horizon >= window_start]
    if len(known) < minimum_sample_size:
        return None

    quiet = _quiet_exposure_count(exposure_hours, occurrences, horizon=horizon, window_end=window_end)
    presence = [
        (occurrence, {bucket.label for bucket in buckets if category_present(index, category, occurrence.occurred_at, bucket)})
        for occurrence in known
    ]
    unexposed = [occurrence.severity for occurrence, present in presence if not present]

    best: _BucketResult | None = None
    for bucket in buckets:
        exposed = [occurrence.severity for occurrence, present in presence if bucket.label in present]
        exposed.extend([0.0] * quiet)
        sample_size = len(exposed) + len(unexposed)
        if sample_size < minimum_sample_size or not exposed:
            continue
        mean_exposed = _mean(exposed)
        mean_unexposed = _mean(unexposed) if unexposed else None
        baseline = mean_unexposed if mean_unexposed is not None else 0.0
        score = _clamp((mean_exposed - baseline) / MAX_SEVERITY, -1.0, 1.0)
        confidence = confidence_for_sample(sample_size, k=confidence_k)
        # strict comparison keeps the earlier bucket on ties
        if best is None or abs(score) * confidence > abs(best.score) * best.confidence:
            best = _BucketResult(
                bucket=bucket,
                score=score,
                confidence=confidence,
                sample_size=sample_size,
                mean_exposed=mean_exposed,
                mean_unexposed=mean_unexposed,
            )
    return best


def compute_correlations(
    exposures: Iterable[ExposureEvent],
    outcomes: Iterable[OutcomeEvent],
    *,
    user_id: int,
    window_start: datetime,
    window_end: datetime,
    time_window_hours: int = DEFAULT_TIME_WINDOW_HOURS,
    min_confidence: float = MIN_CONFIDENCE,
    minimum_sample_size: int = MIN_SAMPLE_SIZE,
    confidence_k: float = CONFIDENCE_K,
    computed_at: str | None = None,
) -> list[CorrelationRecord]:
    exposure_list = list(exposures)
    outcome_list = sorted(outcomes, key=lambda event: (event.occurred_at, event.outcome_id, event.source_id))
    if not exposure_list or not outcome_list:
        return []

    buckets = lag_buckets_for_window(time_window_hours)
    index = build_hourly_exposure_index(exposure_list)
    computed_at = computed_at or to_utc_iso(window_end)

    exposure_hours: dict[str, set[datetime]] = {}
    category_kinds: dict[str, str] = {}
    for event in exposure_list:
        exposure_hours.setdefault(event.category, set()).add(floor_to_hour(event.occurred_at))
        category_kinds.setdefault(event.category, event.category_kind)

    occurrences_by_outcome: dict[str, list[OutcomeEvent]] = {}
    for event in outcome_list:
        occurrences_by_outcome.setdefault(event.outcome_id, []).append(event)

    records: list[CorrelationRecord] = []
    for category in sorted(exposure_hours):
        hours = sorted(exposure_hours[category])
        for outcome_id in sorted(occurrences_by_outcome):
            occurrences = occurrences_by_outcome[outcome_id]
            result = _score_pair(
                category,
                occurrences,
                hours,
                index,
                buckets=buckets,
                window_start=window_start,
                window_end=window_end,
                minimum_sample_size=minimum_sample_size,
                confidence_k=confidence_k,
            )
            if result is None:
                continue
            if result.sample_size < minimum_sample_size or result.confidence < min_confidence:
                continue
            first = occurrences[0]
            records.append(
                CorrelationRecord(
                    user_id=int(user_id),
                    exposure_category=category,
                    exposure_kind=category_kinds[category],
                    outcome_id=outcome_id,
                    outcome_type=first.outcome_type,
                    outcome_name=first.outcome_name,
                    correlation_score=round(result.score, 4),
                    confidence_level=round(result.confidence, 4),
                    sample_size=result.sample_size,
                    lag_bucket=result.bucket.label,
                    time_window_hours=int(time_window_hours),
                    mean_severity_exposed=round(result.mean_exposed, 2),
                    mean_severity_unexposed=(
                        round(result.mean_unexposed, 2) if result.mean_unexposed is not None else None
                    ),
                    computed_at=computed_at,
                )
            )
    return sort_by_strength(records)


def load_user_events(
    user_id: int,
    *,
    window_start: datetime,
    window_end: datetime,
    conn=None,
) -> tuple[list[ExposureEvent], list[OutcomeEvent]]:
    exposure_rows = fetch_exposure_rows(user_id, window_start=window_start, window_end=window_end, conn=conn)
    exposures = expand_exposure_rows(exposure_rows, window_start=window_start, window_end=window_end)
    outcomes = extract_outcomes(
        fetch_symptom_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        fetch_bowel_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        fetch_sleep_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        window_start=window_start,
        window_end=window_end,
    )
    return exposures, outcomes


def calculate_correlations(
    user_id: int,
    *,
    days_back: int = DEFAULT_DAYS_BACK,
    time_window_hours: int = DEFAULT_TIME_WINDOW_HOURS,
    min_confidence: float = MIN_CONFIDENCE,
    now: datetime | None = None,
    conn=None,
) -> list[CorrelationRecord]:
    window_start, window_end = window_bounds(days_back, now=now)
    exposures, outcomes = load_user_events(user_id, window_start=window_start, window_end=window_end, conn=conn)
    records = compute_correlations(
        exposures,
        outcomes,
        user_id=user_id,
        window_start=window_start,
        window_end=window_end,
        time_window_hours=time_window_hours,
        min_confidence=min_confidence,
    )
    replace_user_correlations(user_id, records, conn=conn)
    logger.info(
        "Computed %d correlation records for user %s from %d exposures and %d outcomes",
        len(records),
        user_id,
        len(exposures),
        len(outcomes),
    )
    return records


def get_stored_correlations(
    user_id: int,
    *,
    min_confidence: float = MIN_CONFIDENCE,
    limit: int | None = 50,
) -> list[CorrelationRecord]:
    rows = list_stored_correlations(user_id, min_confidence=min_confidence, limit=limit)
    return [record_from_row(row) for row in rows]


def get_top_triggers_for_outcome(user_id: int, outcome_id: str, *, limit: int = 10) -> list[CorrelationRecord]:
    return [record_from_row(row) for row in list_triggers_for_outcome(user_id, outcome_id, limit=limit)]


def get_beneficial_items(
    user_id: int,
    *,
    limit: int = 10,
    max_score: float = BENEFICIAL_MAX_SCORE,
    min_confidence: float = BENEFICIAL_MIN_CONFIDENCE,
) -> list[CorrelationRecord]:
    rows = list_beneficial_items(user_id, max_score=max_score, min_confidence=min_confidence, limit=limit)
    return [record_from_row(row) for row in rows]
