from __future__ import annotations

from datetime import datetime

from api.db import get_connection
from ingestion.expand_exposure import SOURCE_MEAL, SOURCE_MEDICATION, RawExposureRow, parse_allergens
from ingestion.normalize_outcome import RawBowelRow, RawSleepRow, RawSymptomRow
from ingestion.time_utils import combine_date_time

# reads raw log rows for one user; date filters are day-granular and widened,
# exact window filtering happens in the ingestion layer


def fetch_exposure_rows(
    user_id: int,
    *,
    window_start: datetime,
    window_end: datetime,
    conn=None,
) -> list[RawExposureRow]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        # meal foods: one row per food eaten in a meal
        meal_rows = conn.execute(
            """
            SELECT
                mf.id AS subject_id,
                m.user_id AS user_id,
                f.name AS item_name,
                f.category AS item_category,
                f.allergens AS allergens,
                m.meal_date AS log_date,
                m.meal_time AS log_time
            FROM meal_foods mf
            JOIN meals m ON m.id = mf.meal_id
            JOIN foods f ON f.id = mf.food_id
            WHERE m.user_id = %s
              AND m.meal_date >= %s
              AND m.meal_date <= %s
            ORDER BY m.meal_date, m.meal_time, mf.id
            """,
            (user_id, window_start.date(), window_end.date()),
        ).fetchall()
        medication_rows = conn.execute(
            """
            SELECT
                ml.id AS subject_id,
                ml.user_id AS user_id,
                md.name AS item_name,
                md.category AS item_category,
                ml.log_date AS log_date,
                ml.log_time AS log_time
            FROM medication_logs ml
            JOIN medications md ON md.id = ml.medication_id
            WHERE ml.user_id = %s
              AND ml.log_date >= %s
              AND ml.log_date <= %s
            ORDER BY ml.log_date, ml.log_time, ml.id
            """,
            (user_id, window_start.date(), window_end.date()),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()

    rows: list[RawExposureRow] = []
    for row in meal_rows:
        rows.append(
            RawExposureRow(
                source=SOURCE_MEAL,
                subject_id=int(row["subject_id"]),
                user_id=int(row["user_id"]),
                item_name=row["item_name"],
                occurred_at=combine_date_time(row["log_date"], row["log_time"]),
                item_category=row["item_category"],
                allergens=parse_allergens(row["allergens"]),
            )
        )
    for row in medication_rows:
        rows.append(
            RawExposureRow(
                source=SOURCE_MEDICATION,
                subject_id=int(row["subject_id"]),
                user_id=int(row["user_id"]),
                item_name=row["item_name"],
                occurred_at=combine_date_time(row["log_date"], row["log_time"]),
                item_category=row["item_category"],
            )
        )
    return rows


def fetch_symptom_rows(
    user_id: int,
    *,
    window_start: datetime,
    window_end: datetime,
    conn=None,
) -> list[RawSymptomRow]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT
                sl.id AS log_id,
                sl.user_id AS user_id,
                sl.symptom_id AS symptom_id,
                s.name AS symptom_name,
                sl.severity AS severity,
                sl.log_date AS log_date,
                sl.log_time AS log_time
            FROM symptom_logs sl
            JOIN symptoms s ON s.id = sl.symptom_id
            WHERE sl.user_id = %s
              AND sl.log_date >= %s
              AND sl.log_date <= %s
            ORDER BY sl.log_date, sl.log_time, sl.id
            """,
            (user_id, window_start.date(), window_end.date()),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [
        RawSymptomRow(
            log_id=int(row["log_id"]),
            user_id=int(row["user_id"]),
            symptom_id=int(row["symptom_id"]),
            symptom_name=row["symptom_name"],
            severity=float(row["severity"]) if row["severity"] is not None else None,
            log_date=row["log_date"],
            log_time=row["log_time"],
        )
        for row in rows
    ]


def fetch_bowel_rows(
    user_id: int,
    *,
    window_start: datetime,
    window_end: datetime,
    conn=None,
) -> list[RawBowelRow]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT id AS log_id, user_id, bristol_scale, log_date, log_time
            FROM bowel_movements
            WHERE user_id = %s
              AND log_date >= %s
              AND log_date <= %s
            ORDER BY log_date, log_time, id
            """,
            (user_id, window_start.date(), window_end.date()),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [
        RawBowelRow(
            log_id=int(row["log_id"]),
            user_id=int(row["user_id"]),
            bristol_scale=row["bristol_scale"],
            log_date=row["log_date"],
            log_time=row["log_time"],
        )
        for row in rows
    ]


def fetch_sleep_rows(
    user_id: int,
    *,
    window_start: datetime,
    window_end: datetime,
    conn=None,
) -> list[RawSleepRow]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        rows = conn.execute(
            """
            SELECT
                id AS log_id,
                user_id,
                log_date,
                dry_eye_severity,
                morning_grogginess,
                next_day_fatigue
            FROM sleep_logs
            WHERE user_id = %s
              AND log_date >= %s
              AND log_date <= %s
            ORDER BY log_date, id
            """,
            (user_id, window_start.date(), window_end.date()),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [
        RawSleepRow(
            log_id=int(row["log_id"]),
            user_id=int(row["user_id"]),
            log_date=row["log_date"],
            dry_eye_severity=row["dry_eye_severity"],
            morning_grogginess=row["morning_grogginess"],
            next_day_fatigue=row["next_day_fatigue"],
        )
        for row in rows
    ]
