from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone

from ingestion.normalize_outcome import (
    BOWEL_OUTCOME_ID,
    RawBowelRow,
    RawSleepRow,
    RawSymptomRow,
    bristol_to_severity,
    extract_outcomes,
)


class NormalizeOutcomeTests(unittest.TestCase):
    def test_symptom_rows_become_clamped_outcomes(self) -> None:
        outcomes = extract_outcomes(
            symptoms=[
                RawSymptomRow(1, 1, 3, "Bloating", 12, "2026-01-05", "11:00"),
                RawSymptomRow(2, 1, 3, "Bloating", 4, date(2026, 1, 4), time(9, 30)),
            ]
        )
        self.assertEqual([o.outcome_id for o in outcomes], ["symptom:3", "symptom:3"])
        self.assertEqual([o.severity for o in outcomes], [4.0, 10.0])
        self.assertEqual(outcomes[0].occurred_at, datetime(2026, 1, 4, 9, 30, tzinfo=timezone.utc))
        self.assertEqual(outcomes[1].outcome_name, "Bloating")

    def test_symptom_rows_without_time_are_dropped(self) -> None:
        outcomes = extract_outcomes(symptoms=[RawSymptomRow(1, 1, 3, "Bloating", 5, "2026-01-05", None)])
        self.assertEqual(outcomes, [])

    def test_bristol_scale_maps_to_severity_proxy(self) -> None:
        self.assertEqual(bristol_to_severity(1), 8.0)
        self.assertEqual(bristol_to_severity(4), 3.0)
        self.assertEqual(bristol_to_severity(7), 9.0)
        self.assertIsNone(bristol_to_severity(0))
        self.assertIsNone(bristol_to_severity(None))

    def test_invalid_bristol_values_are_skipped_with_warning(self) -> None:
        rows = [
            RawBowelRow(1, 1, 6, "2026-01-05", "07:45"),
            RawBowelRow(2, 1, 9, "2026-01-06", "07:45"),
        ]
        with self.assertLogs("ingestion.normalize_outcome", level="WARNING") as logs:
            outcomes = extract_outcomes(bowel_movements=rows)
        self.assertEqual(len(outcomes), 1)
        self.assertEqual(outcomes[0].outcome_id, BOWEL_OUTCOME_ID)
        self.assertEqual(outcomes[0].severity, 7.0)
        self.assertEqual(len(logs.records), 1)

    def test_sleep_channels_are_independent_events_at_wake_time(self) -> None:
        outcomes = extract_outcomes(
            sleep_logs=[RawSleepRow(5, 1, "2026-01-07", dry_eye_severity=6, morning_grogginess=None, next_day_fatigue=3)]
        )
        self.assertEqual(
            [o.outcome_id for o in outcomes],
            ["sleep:dry_eye_severity", "sleep:next_day_fatigue"],
        )
        self.assertTrue(all(o.occurred_at == datetime(2026, 1, 7, 7, 0, tzinfo=timezone.utc) for o in outcomes))
        self.assertTrue(all(o.source_id == 5 for o in outcomes))

    def test_window_filter_and_ordering(self) -> None:
        outcomes = extract_outcomes(
            symptoms=[RawSymptomRow(1, 1, 2, "Headache", 6, "2026-01-10", "18:00")],
            bowel_movements=[RawBowelRow(2, 1, 1, "2026-01-10", "06:00")],
            sleep_logs=[RawSleepRow(3, 1, "2026-02-10", next_day_fatigue=4)],
            window_start=datetime(2026, 1, 1, tzinfo=timezone.utc),
            window_end=datetime(2026, 1, 31, tzinfo=timezone.utc),
        )
        self.assertEqual([o.outcome_type for o in outcomes], ["bowel", "symptom"])


if __name__ == "__main__":
    unittest.main()
