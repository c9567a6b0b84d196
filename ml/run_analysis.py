from __future__ import annotations

import argparse
import json
import logging
from typing import Any

from ml.correlations import DEFAULT_DAYS_BACK, DEFAULT_TIME_WINDOW_HOURS, MIN_CONFIDENCE, calculate_correlations
from ml.feature_importance import run_ml_analysis
from ml.insights import get_correlation_insights


def run_analysis(
    user_id: int,
    *,
    days_back: int = DEFAULT_DAYS_BACK,
    time_window_hours: int = DEFAULT_TIME_WINDOW_HOURS,
    min_confidence: float = MIN_CONFIDENCE,
    skip_ml: bool = False,
) -> dict[str, Any]:
    records = calculate_correlations(
        user_id,
        days_back=days_back,
        time_window_hours=time_window_hours,
        min_confidence=min_confidence,
    )
    insights = get_correlation_insights(user_id, min_confidence=min_confidence)
    summary: dict[str, Any] = {
        "user_id": user_id,
        "correlations": len(records),
        "top_correlations": [record.to_dict() for record in records[:5]],
        "risk_score": insights.risk_score,
        "recommendations": insights.recommendations,
    }
    if not skip_ml:
        ml_payload = run_ml_analysis(user_id).to_dict()
        summary["ml_reports"] = ml_payload["reports"]
        summary["ml_skipped"] = ml_payload["skipped"]
    return summary


def main() -> None:
    parser = argparse.ArgumentParser(description="Recompute exposure-outcome correlations for one user.")
    parser.add_argument("--user-id", type=int, required=True, help="User to analyze")
    parser.add_argument("--days-back", type=int, default=DEFAULT_DAYS_BACK, help="History window in days")
    parser.add_argument(
        "--time-window-hours",
        type=int,
        default=DEFAULT_TIME_WINDOW_HOURS,
        help="Largest lag considered before an outcome",
    )
    parser.add_argument(
        "--min-confidence",
        type=float,
        default=MIN_CONFIDENCE,
        help="Drop correlations below this confidence",
    )
    parser.add_argument("--skip-ml", action="store_true", help="Skip the feature-importance pass")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    print(
        json.dumps(
            run_analysis(
                args.user_id,
                days_back=args.days_back,
                time_window_hours=args.time_window_hours,
                min_confidence=args.min_confidence,
                skip_ml=args.skip_ml,
            ),
            indent=2,
            default=str,
        )
    )


if __name__ == "__main__":
    main()
