from __future__ import annotations

import unittest
from unittest.mock import patch

from fastapi import HTTPException
from fastapi.testclient import TestClient

from api.main import (
    CalculateCorrelationsIn,
    MLAnalysisRunIn,
    _resolve_request_user_id,
    app,
    calculate_user_correlations,
    get_insights,
    get_ml_results,
    list_outcome_triggers,
    run_user_ml_analysis,
)
from ml.correlations import CorrelationRecord
from ml.feature_importance import MLAnalysisRun
from ml.insights import InsightSummary


def _record() -> CorrelationRecord:
    return CorrelationRecord(
        user_id=7,
        exposure_category="dairy",
        exposure_kind="food_trigger",
        outcome_id="symptom:1",
        outcome_type="symptom",
        outcome_name="Bloating",
        correlation_score=0.4,
        confidence_level=0.5455,
        sample_size=6,
        lag_bucket="0_6h",
        time_window_hours=24,
        mean_severity_exposed=4.0,
        mean_severity_unexposed=None,
        computed_at="2026-01-31T00:00:00+00:00",
    )


class RequestUserResolutionTests(unittest.TestCase):
    def test_requires_a_user(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            _resolve_request_user_id(explicit_user_id=None, header_user_id=None)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_rejects_mismatched_explicit_user_id(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            _resolve_request_user_id(explicit_user_id=8, header_user_id=7)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_accepts_header_or_explicit_user(self) -> None:
        self.assertEqual(_resolve_request_user_id(explicit_user_id=7, header_user_id=7), 7)
        self.assertEqual(_resolve_request_user_id(explicit_user_id=None, header_user_id=7), 7)
        self.assertEqual(_resolve_request_user_id(explicit_user_id=5, header_user_id=None), 5)


class AnalysisEndpointTests(unittest.TestCase):
    def test_calculate_delegates_with_payload_settings(self) -> None:
        with patch("api.main.calculate_correlations", return_value=[_record()]) as calc_mock:
            result = calculate_user_correlations(
                CalculateCorrelationsIn(days_back=30, time_window_hours=48, min_confidence=0.5),
                x_user_id=7,
            )
        calc_mock.assert_called_once_with(7, days_back=30, time_window_hours=48, min_confidence=0.5)
        self.assertEqual(result["status"], "ok")
        self.assertEqual(result["count"], 1)
        self.assertEqual(result["correlations"][0]["exposure_category"], "dairy")

    def test_calculate_requires_user(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            calculate_user_correlations(CalculateCorrelationsIn(), x_user_id=None)
        self.assertEqual(ctx.exception.status_code, 401)

    def test_triggers_for_outcome(self) -> None:
        with patch("api.main.get_top_triggers_for_outcome", return_value=[_record()]) as triggers_mock:
            result = list_outcome_triggers("symptom:1", user_id=None, limit=3, x_user_id=7)
        triggers_mock.assert_called_once_with(7, "symptom:1", limit=3)
        self.assertEqual(result[0]["outcome_name"], "Bloating")

    def test_insights_payload(self) -> None:
        summary = InsightSummary(risk_score=12.5, top_triggers=[_record()], recommendations=["x"])
        with patch("api.main.get_correlation_insights", return_value=summary):
            result = get_insights(user_id=7, min_confidence=0.3, x_user_id=None)
        self.assertEqual(result["risk_score"], 12.5)
        self.assertEqual(result["beneficial_items"], [])

    def test_ml_results_empty_until_a_run_exists(self) -> None:
        with patch("api.main.get_cached_ml_results", return_value=None):
            self.assertEqual(get_ml_results(user_id=None, x_user_id=7), {"status": "empty", "run": None})
        run = MLAnalysisRun(user_id=7, computed_at="2026-01-31T00:00:00+00:00")
        with patch("api.main.get_cached_ml_results", return_value=run) as cached_mock:
            result = get_ml_results(user_id=None, x_user_id=7)
        cached_mock.assert_called_once_with(7)
        self.assertEqual(result["status"], "ok")
        self.assertEqual(result["run"]["user_id"], 7)

    def test_ml_run_delegates(self) -> None:
        run = MLAnalysisRun(user_id=7)
        with patch("api.main.run_ml_analysis", return_value=run) as run_mock:
            result = run_user_ml_analysis(MLAnalysisRunIn(user_id=7, days_back=120), x_user_id=None)
        run_mock.assert_called_once_with(7, days_back=120)
        self.assertEqual(result["reports"], [])


class AnalysisHttpTests(unittest.TestCase):
    def setUp(self) -> None:
        # no context manager: lifespan (database bootstrap) is not triggered
        self.client = TestClient(app)

    def test_header_user_and_validation(self) -> None:
        with patch("api.main.get_stored_correlations", return_value=[_record()]) as stored_mock:
            response = self.client.get("/analysis/correlations", headers={"X-User-Id": "7"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()[0]["sample_size"], 6)
        stored_mock.assert_called_once_with(7, min_confidence=0.3, limit=50)

        response = self.client.get("/analysis/correlations", params={"user_id": 8}, headers={"X-User-Id": "7"})
        self.assertEqual(response.status_code, 403)

        response = self.client.get("/analysis/trends", headers={"X-User-Id": "7"}, params={"days": 0})
        self.assertEqual(response.status_code, 422)

    def test_trends_over_http(self) -> None:
        series = [{"date": "2026-01-30", "Bloating": 0.0}, {"date": "2026-01-31", "Bloating": 6.5}]
        with patch("api.main.generate_symptom_trends", return_value=series) as trends_mock:
            response = self.client.get("/analysis/trends", params={"user_id": 7, "days": 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), series)
        trends_mock.assert_called_once_with(7, days=2)


if __name__ == "__main__":
    unittest.main()
