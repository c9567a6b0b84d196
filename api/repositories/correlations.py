from __future__ import annotations

from typing import Any, Iterable

from api.db import get_connection

_SELECT_COLUMNS = """
    user_id,
    exposure_category,
    exposure_kind,
    outcome_id,
    outcome_type,
    outcome_name,
    correlation_score,
    confidence_level,
    sample_size,
    lag_bucket,
    time_window_hours,
    mean_severity_exposed,
    mean_severity_unexposed,
    computed_at
"""


# swap the user's whole correlation set in one transaction
# readers see either the previous set or the new one, never a mix
def replace_user_correlations(user_id: int, records: Iterable[Any], *, conn=None) -> int:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    written = 0
    try:
        conn.execute("DELETE FROM exposure_outcome_correlations WHERE user_id = %s", (user_id,))
        for record in records:
            conn.execute(
                """
                INSERT INTO exposure_outcome_correlations (
                    user_id, exposure_category, exposure_kind,
                    outcome_id, outcome_type, outcome_name,
                    correlation_score, confidence_level, sample_size,
                    lag_bucket, time_window_hours,
                    mean_severity_exposed, mean_severity_unexposed, computed_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, exposure_category, outcome_id) DO UPDATE SET
                    exposure_kind = EXCLUDED.exposure_kind,
                    outcome_type = EXCLUDED.outcome_type,
                    outcome_name = EXCLUDED.outcome_name,
                    correlation_score = EXCLUDED.correlation_score,
                    confidence_level = EXCLUDED.confidence_level,
                    sample_size = EXCLUDED.sample_size,
                    lag_bucket = EXCLUDED.lag_bucket,
                    time_window_hours = EXCLUDED.time_window_hours,
                    mean_severity_exposed = EXCLUDED.mean_severity_exposed,
                    mean_severity_unexposed = EXCLUDED.mean_severity_unexposed,
                    computed_at = EXCLUDED.computed_at
                """,
                (
                    user_id,
                    record.exposure_category,
                    record.exposure_kind,
                    record.outcome_id,
                    record.outcome_type,
                    record.outcome_name,
                    record.correlation_score,
                    record.confidence_level,
                    record.sample_size,
                    record.lag_bucket,
                    record.time_window_hours,
                    record.mean_severity_exposed,
                    record.mean_severity_unexposed,
                    record.computed_at,
                ),
            )
            written += 1
        if owns_connection:
            conn.commit()
        return written
    except Exception:
        if owns_connection:
            conn.rollback()
        raise
    finally:
        if owns_connection:
            conn.close()


def list_stored_correlations(
    user_id: int,
    *,
    min_confidence: float = 0.0,
    limit: int | None = None,
    conn=None,
) -> list[dict[str, Any]]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        query = f"""
            SELECT {_SELECT_COLUMNS}
            FROM exposure_outcome_correlations
            WHERE user_id = %s
              AND confidence_level >= %s
            ORDER BY ABS(correlation_score) * confidence_level DESC, exposure_category, outcome_id
        """
        params: list[Any] = [user_id, min_confidence]
        if limit is not None:
            query += " LIMIT %s"
            params.append(int(limit))
        rows = conn.execute(query, tuple(params)).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [dict(row) for row in rows]


def list_triggers_for_outcome(
    user_id: int,
    outcome_id: str,
    *,
    limit: int = 10,
    conn=None,
) -> list[dict[str, Any]]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        rows = conn.execute(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM exposure_outcome_correlations
            WHERE user_id = %s
              AND outcome_id = %s
              AND correlation_score > 0
            ORDER BY correlation_score * confidence_level DESC, exposure_category
            LIMIT %s
            """,
            (user_id, outcome_id, int(limit)),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [dict(row) for row in rows]


# only clearly protective records: score strictly below max_score and confidence strictly above min_confidence
def list_beneficial_items(
    user_id: int,
    *,
    max_score: float,
    min_confidence: float,
    limit: int = 10,
    conn=None,
) -> list[dict[str, Any]]:
    owns_connection = conn is None
    if conn is None:
        conn = get_connection()
    try:
        rows = conn.execute(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM exposure_outcome_correlations
            WHERE user_id = %s
              AND correlation_score < %s
              AND confidence_level > %s
            ORDER BY correlation_score ASC, confidence_level DESC, exposure_category, outcome_id
            LIMIT %s
            """,
            (user_id, float(max_score), float(min_confidence), int(limit)),
        ).fetchall()
    finally:
        if owns_connection:
            conn.close()
    return [dict(row) for row in rows]
