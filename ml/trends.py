from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable

from api.repositories.logs import fetch_bowel_rows, fetch_sleep_rows, fetch_symptom_rows
from ingestion.normalize_outcome import OutcomeEvent, extract_outcomes
from ingestion.time_utils import to_utc, utc_now

DEFAULT_TREND_DAYS = 30


# columns are outcome names; a name shared by distinct outcomes gets its type, or its id if the type clashes too
def _column_labels(outcomes: dict[str, OutcomeEvent]) -> dict[str, str]:
    ids_by_name: dict[str, list[str]] = {}
    for outcome_id, event in outcomes.items():
        ids_by_name.setdefault(event.outcome_name, []).append(outcome_id)

    labels: dict[str, str] = {}
    for name, outcome_ids in ids_by_name.items():
        if len(outcome_ids) == 1:
            labels[outcome_ids[0]] = name
            continue
        types = [outcomes[outcome_id].outcome_type for outcome_id in outcome_ids]
        for outcome_id, outcome_type in zip(outcome_ids, types):
            if types.count(outcome_type) == 1:
                labels[outcome_id] = f"{name} ({outcome_type})"
            else:
                labels[outcome_id] = f"{name} ({outcome_id})"
    return labels


# one row per calendar day, oldest first; every outcome seen in range gets a value on every day
def build_symptom_trends(
    outcomes: Iterable[OutcomeEvent],
    *,
    end_date: date,
    days: int = DEFAULT_TREND_DAYS,
) -> list[dict[str, Any]]:
    if days <= 0:
        return []
    start_date = end_date - timedelta(days=days - 1)

    severities: dict[tuple[date, str], list[float]] = {}
    seen: dict[str, OutcomeEvent] = {}
    for event in outcomes:
        day = event.occurred_at.date()
        if day < start_date or day > end_date:
            continue
        seen.setdefault(event.outcome_id, event)
        severities.setdefault((day, event.outcome_id), []).append(event.severity)

    labels = _column_labels(seen)
    columns = sorted(labels.items(), key=lambda item: (item[1], item[0]))
    series: list[dict[str, Any]] = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        point: dict[str, Any] = {"date": day.isoformat()}
        for outcome_id, label in columns:
            values = severities.get((day, outcome_id))
            point[label] = round(sum(values) / len(values), 1) if values else 0.0
        series.append(point)
    return series


def generate_symptom_trends(
    user_id: int,
    *,
    days: int = DEFAULT_TREND_DAYS,
    now: datetime | None = None,
    conn=None,
) -> list[dict[str, Any]]:
    if days <= 0:
        return []
    window_end = to_utc(now) if now is not None else utc_now()
    end_date = window_end.date()
    window_start = datetime.combine(end_date - timedelta(days=days - 1), time(0, 0), tzinfo=timezone.utc)
    outcomes = extract_outcomes(
        fetch_symptom_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        fetch_bowel_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        fetch_sleep_rows(user_id, window_start=window_start, window_end=window_end, conn=conn),
        window_start=window_start,
        window_end=window_end,
    )
    return build_symptom_trends(outcomes, end_date=end_date, days=days)
