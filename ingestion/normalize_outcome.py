# turn symptom, bowel-movement and sleep log rows into outcome events
# one raw severity field becomes exactly one OutcomeEvent, no aggregation here

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Iterable

from ingestion.time_utils import combine_date_time

logger = logging.getLogger(__name__)

OUTCOME_SYMPTOM = "symptom"
OUTCOME_BOWEL = "bowel"
OUTCOME_SLEEP = "sleep"

MIN_SEVERITY = 0.0
MAX_SEVERITY = 10.0

# sleep logs only carry a date; stamp them at wake-up time
SLEEP_LOG_HOUR = int(os.getenv("SLEEP_LOG_HOUR", "7"))

BOWEL_OUTCOME_ID = "bowel:bristol"
BOWEL_OUTCOME_NAME = "Bowel movement (Bristol)"

# Bristol 1-2 (constipation) and 6-7 (diarrhea) read as high severity, 3-5 as normal
BRISTOL_SEVERITY = {
    1: 8.0,
    2: 7.0,
    3: 4.0,
    4: 3.0,
    5: 4.0,
    6: 7.0,
    7: 9.0,
}

SLEEP_CHANNELS = (
    ("dry_eye_severity", "Dry eye (sleep)"),
    ("morning_grogginess", "Morning grogginess"),
    ("next_day_fatigue", "Next-day fatigue"),
)


@dataclass
class RawSymptomRow:
    log_id: int
    user_id: int
    symptom_id: int
    symptom_name: str | None
    severity: float | None
    log_date: date | str | None
    log_time: time | str | None


@dataclass
class RawBowelRow:
    log_id: int
    user_id: int
    bristol_scale: int | None
    log_date: date | str | None
    log_time: time | str | None


@dataclass
class RawSleepRow:
    log_id: int
    user_id: int
    log_date: date | str | None
    dry_eye_severity: float | None = None
    morning_grogginess: float | None = None
    next_day_fatigue: float | None = None


@dataclass(frozen=True)
class OutcomeEvent:
    outcome_id: str
    outcome_type: str
    outcome_name: str
    severity: float
    occurred_at: datetime
    user_id: int
    source_id: int


def clamp_severity(value: float) -> float:
    return max(MIN_SEVERITY, min(MAX_SEVERITY, float(value)))


def symptom_outcome_id(symptom_id: int) -> str:
    return f"{OUTCOME_SYMPTOM}:{int(symptom_id)}"


def bristol_to_severity(bristol_scale: int | None) -> float | None:
    if bristol_scale is None:
        return None
    try:
        return BRISTOL_SEVERITY.get(int(bristol_scale))
    except (TypeError, ValueError):
        return None


def symptom_outcomes(rows: Iterable[RawSymptomRow]) -> list[OutcomeEvent]:
    out: list[OutcomeEvent] = []
    for row in rows:
        occurred_at = combine_date_time(row.log_date, row.log_time)
        if occurred_at is None or row.severity is None:
            continue
        out.append(
            OutcomeEvent(
                outcome_id=symptom_outcome_id(row.symptom_id),
                outcome_type=OUTCOME_SYMPTOM,
                outcome_name=(row.symptom_name or "").strip() or f"Symptom {row.symptom_id}",
                severity=clamp_severity(row.severity),
                occurred_at=occurred_at,
                user_id=int(row.user_id),
                source_id=int(row.log_id),
            )
        )
    return out


def bowel_outcomes(rows: Iterable[RawBowelRow]) -> list[OutcomeEvent]:
    out: list[OutcomeEvent] = []
    for row in rows:
        occurred_at = combine_date_time(row.log_date, row.log_time)
        if occurred_at is None:
            continue
        severity = bristol_to_severity(row.bristol_scale)
        if severity is None:
            logger.warning(
                "Bowel log %s has invalid Bristol value %r; skipping",
                row.log_id,
                row.bristol_scale,
                extra={"user_id": row.user_id},
            )
            continue
        out.append(
            OutcomeEvent(
                outcome_id=BOWEL_OUTCOME_ID,
                outcome_type=OUTCOME_BOWEL,
                outcome_name=BOWEL_OUTCOME_NAME,
                severity=severity,
                occurred_at=occurred_at,
                user_id=int(row.user_id),
                source_id=int(row.log_id),
            )
        )
    return out


def sleep_outcomes(rows: Iterable[RawSleepRow], *, log_hour: int = SLEEP_LOG_HOUR) -> list[OutcomeEvent]:
    out: list[OutcomeEvent] = []
    for row in rows:
        occurred_at = combine_date_time(row.log_date, None, default_hour=log_hour)
        if occurred_at is None:
            continue
        for field_name, label in SLEEP_CHANNELS:
            value = getattr(row, field_name)
            if value is None:
                continue
            out.append(
                OutcomeEvent(
                    outcome_id=f"{OUTCOME_SLEEP}:{field_name}",
                    outcome_type=OUTCOME_SLEEP,
                    outcome_name=label,
                    severity=clamp_severity(value),
                    occurred_at=occurred_at,
                    user_id=int(row.user_id),
                    source_id=int(row.log_id),
                )
            )
    return out


def extract_outcomes(
    symptoms: Iterable[RawSymptomRow] = (),
    bowel_movements: Iterable[RawBowelRow] = (),
    sleep_logs: Iterable[RawSleepRow] = (),
    *,
    window_start: datetime | None = None,
    window_end: datetime | None = None,
) -> list[OutcomeEvent]:
    events = symptom_outcomes(symptoms) + bowel_outcomes(bowel_movements) + sleep_outcomes(sleep_logs)
    if window_start is not None:
        events = [event for event in events if event.occurred_at >= window_start]
    if window_end is not None:
        events = [event for event in events if event.occurred_at <= window_end]
    events.sort(key=lambda event: (event.occurred_at, event.outcome_id, event.source_id))
    return events
