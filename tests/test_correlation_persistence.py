from __future__ import annotations

import unittest
from datetime import datetime, timezone

from psycopg import Error as DatabaseError

import api.db
from api.repositories.correlations import (
    list_beneficial_items,
    list_stored_correlations,
    list_triggers_for_outcome,
    replace_user_correlations,
)
from ml.correlations import CorrelationRecord, calculate_correlations, get_beneficial_items, get_stored_correlations
from ml.insights import get_correlation_insights
from ml.trends import generate_symptom_trends
from tests.db_test_utils import reset_test_database

NOW = datetime(2026, 1, 31, tzinfo=timezone.utc)


def _record(category: str, outcome_id: str, score: float, confidence: float) -> CorrelationRecord:
    return CorrelationRecord(
        user_id=1,
        exposure_category=category,
        exposure_kind="food_trigger",
        outcome_id=outcome_id,
        outcome_type="symptom",
        outcome_name="Bloating",
        correlation_score=score,
        confidence_level=confidence,
        sample_size=8,
        lag_bucket="0_6h",
        time_window_hours=24,
        mean_severity_exposed=5.0,
        mean_severity_unexposed=2.0,
        computed_at=NOW.isoformat(),
    )


class CorrelationPersistenceTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_test_database()
        self._exec("INSERT INTO users (id, name, created_at) VALUES (1, 'u', '2026-01-01T00:00:00Z')")
        self._exec("INSERT INTO users (id, name, created_at) VALUES (2, 'v', '2026-01-01T00:00:00Z')")

    def _exec(self, sql: str, params: tuple = ()) -> None:
        conn = api.db.get_connection()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def _seed_dairy_bloating_logs(self) -> None:
        self._exec("INSERT INTO foods (id, user_id, name, category) VALUES (1, 1, 'Dairy', NULL)")
        self._exec("INSERT INTO symptoms (id, user_id, name) VALUES (1, 1, 'Bloating')")
        for meal_id, day in enumerate((5, 10, 15, 20, 23, 26), start=1):
            self._exec(
                "INSERT INTO meals (id, user_id, meal_type, meal_date, meal_time) VALUES (%s, 1, 'breakfast', %s, '08:00')",
                (meal_id, f"2026-01-{day:02d}"),
            )
            self._exec("INSERT INTO meal_foods (meal_id, food_id, quantity) VALUES (%s, 1, 1)", (meal_id,))
        for day in (5, 10, 15):
            self._exec(
                "INSERT INTO symptom_logs (user_id, symptom_id, severity, log_date, log_time) VALUES (1, 1, 8, %s, '11:00')",
                (f"2026-01-{day:02d}",),
            )

    def test_replace_swaps_the_whole_user_set(self) -> None:
        replace_user_correlations(1, [_record("dairy", "symptom:1", 0.5, 0.6), _record("ginger", "symptom:1", -0.4, 0.7)])
        replace_user_correlations(2, [_record("soy", "symptom:1", 0.3, 0.5)])
        replace_user_correlations(1, [_record("gluten", "symptom:1", 0.2, 0.4)])

        rows = list_stored_correlations(1)
        self.assertEqual([row["exposure_category"] for row in rows], ["gluten"])
        self.assertEqual(len(list_stored_correlations(2)), 1)

    def test_failed_write_keeps_previous_set(self) -> None:
        replace_user_correlations(1, [_record("dairy", "symptom:1", 0.5, 0.6)])
        bad = _record("gluten", "symptom:1", 2.5, 0.6)
        with self.assertRaises(DatabaseError):
            replace_user_correlations(1, [_record("soy", "symptom:1", 0.3, 0.5), bad])
        rows = list_stored_correlations(1)
        self.assertEqual([row["exposure_category"] for row in rows], ["dairy"])

    def test_queries_order_and_filter(self) -> None:
        replace_user_correlations(
            1,
            [
                _record("dairy", "symptom:1", 0.5, 0.6),
                _record("gluten", "symptom:1", 0.9, 0.4),
                _record("ginger", "symptom:1", -0.4, 0.7),
                _record("oats", "symptom:1", -0.6, 0.35),
                _record("soy", "symptom:2", 0.7, 0.9),
            ],
        )
        stored = get_stored_correlations(1, min_confidence=0.5)
        self.assertEqual([record.exposure_category for record in stored], ["soy", "dairy", "ginger"])
        self.assertEqual(len(get_stored_correlations(1, min_confidence=0.0, limit=2)), 2)

        triggers = list_triggers_for_outcome(1, "symptom:1")
        self.assertEqual([row["exposure_category"] for row in triggers], ["gluten", "dairy"])
        beneficial = list_beneficial_items(1, max_score=0.0, min_confidence=0.0)
        self.assertEqual([row["exposure_category"] for row in beneficial], ["oats", "ginger"])

    def test_beneficial_items_need_a_clear_negative_score_and_confidence(self) -> None:
        replace_user_correlations(
            1,
            [
                _record("ginger", "symptom:1", -0.4, 0.7),
                _record("turmeric", "symptom:1", -0.5, 0.5),
                _record("rice", "symptom:1", -0.05, 0.9),
                _record("oats", "symptom:1", -0.6, 0.35),
                _record("peppermint", "symptom:1", -0.2, 0.8),
                _record("fennel", "symptom:1", -0.3, 0.4),
            ],
        )
        beneficial = get_beneficial_items(1)
        self.assertEqual([record.exposure_category for record in beneficial], ["turmeric", "ginger"])

    def test_initialize_creates_correlation_table_next_to_existing_logs(self) -> None:
        self._exec("DROP TABLE exposure_outcome_correlations")
        api.db.initialize_database()
        replace_user_correlations(1, [_record("dairy", "symptom:1", 0.5, 0.6)])
        self.assertEqual(len(list_stored_correlations(1)), 1)
        self.assertEqual(len(list_stored_correlations(2)), 0)

    def test_calculate_from_raw_logs_is_persisted_and_deterministic(self) -> None:
        self._seed_dairy_bloating_logs()
        first = calculate_correlations(1, days_back=30, now=NOW)
        second = calculate_correlations(1, days_back=30, now=NOW)
        self.assertEqual(first, second)
        self.assertEqual(len(first), 1)
        self.assertEqual(first[0].sample_size, 6)

        stored = get_stored_correlations(1, min_confidence=0.0)
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0], first[0])

        insights = get_correlation_insights(1)
        self.assertEqual(insights.top_triggers[0].exposure_category, "dairy")
        self.assertGreater(insights.risk_score, 0.0)

    def test_trends_from_raw_logs(self) -> None:
        self._seed_dairy_bloating_logs()
        series = generate_symptom_trends(1, days=30, now=NOW)
        self.assertEqual(len(series), 30)
        by_date = {point["date"]: point for point in series}
        self.assertEqual(by_date["2026-01-05"]["Bloating"], 8.0)
        self.assertEqual(by_date["2026-01-06"]["Bloating"], 0.0)


if __name__ == "__main__":
    unittest.main()
