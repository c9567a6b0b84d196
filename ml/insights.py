from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from psycopg import Error as DatabaseError

from ingestion.expand_exposure import pretty_category_name
from ingestion.time_utils import to_utc, to_utc_iso, utc_now
from ml.correlations import MIN_CONFIDENCE, CorrelationRecord, get_stored_correlations, sort_by_strength
from ml.trends import generate_symptom_trends

logger = logging.getLogger(__name__)

INSIGHTS_TOP_N = int(os.getenv("INSIGHTS_TOP_N", "5"))
STRONG_TRIGGER_SCORE = 0.5
DASHBOARD_STRONG_SCORE = 0.6
PROVIDER_RISK_THRESHOLD = 60.0
KEEP_LOGGING_MIN_RECORDS = 3
DASHBOARD_CORRELATION_LIMIT = 10
DASHBOARD_TREND_DAYS = 7

KEEP_LOGGING_TEXT = "Continue logging consistently to identify more patterns"
PROVIDER_TEXT = "Consider consulting with a healthcare provider about your symptom patterns"


@dataclass
class InsightSummary:
    risk_score: float = 0.0
    top_triggers: list[CorrelationRecord] = field(default_factory=list)
    beneficial_items: list[CorrelationRecord] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_score": self.risk_score,
            "top_triggers": [record.to_dict() for record in self.top_triggers],
            "beneficial_items": [record.to_dict() for record in self.beneficial_items],
            "recommendations": list(self.recommendations),
        }


# each of the top N triggers contributes at most 100 / N points
def compute_risk_score(triggers: Iterable[CorrelationRecord], *, top_n: int = INSIGHTS_TOP_N) -> float:
    if top_n <= 0:
        return 0.0
    weight = 100.0 / top_n
    total = sum(record.correlation_score * record.confidence_level * weight for record in list(triggers)[:top_n])
    return round(max(0.0, min(100.0, total)), 1)


def _recommendations(
    top_triggers: list[CorrelationRecord],
    beneficial_items: list[CorrelationRecord],
    *,
    risk_score: float,
    record_count: int,
) -> list[str]:
    recommendations: list[str] = []
    if top_triggers:
        trigger = top_triggers[0]
        category = pretty_category_name(trigger.exposure_category)
        if trigger.correlation_score >= STRONG_TRIGGER_SCORE:
            recommendations.append(
                f"Strong trigger identified: consider avoiding {category}, "
                f"which shows a strong correlation with {trigger.outcome_name}"
            )
        else:
            recommendations.append(
                f"Possible trigger: {category} may be linked to {trigger.outcome_name}; keep an eye on it"
            )
    if beneficial_items:
        item = beneficial_items[0]
        recommendations.append(
            f"Try including more {pretty_category_name(item.exposure_category)}, "
            f"which may help reduce {item.outcome_name}"
        )
    if risk_score > PROVIDER_RISK_THRESHOLD:
        recommendations.append(PROVIDER_TEXT)
    if record_count < KEEP_LOGGING_MIN_RECORDS:
        recommendations.append(KEEP_LOGGING_TEXT)
    return recommendations


def build_insight_summary(records: Iterable[CorrelationRecord], *, top_n: int = INSIGHTS_TOP_N) -> InsightSummary:
    ranked = sort_by_strength(records)
    top_triggers = [record for record in ranked if record.correlation_score > 0][:top_n]
    beneficial_items = [record for record in ranked if record.correlation_score < 0][:top_n]
    risk_score = compute_risk_score(top_triggers, top_n=top_n)
    return InsightSummary(
        risk_score=risk_score,
        top_triggers=top_triggers,
        beneficial_items=beneficial_items,
        recommendations=_recommendations(
            top_triggers,
            beneficial_items,
            risk_score=risk_score,
            record_count=len(ranked),
        ),
    )


def get_correlation_insights(user_id: int, *, min_confidence: float = MIN_CONFIDENCE) -> InsightSummary:
    records = get_stored_correlations(user_id, min_confidence=min_confidence, limit=None)
    return build_insight_summary(records)


def get_analysis_dashboard(user_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    current = to_utc(now) if now is not None else utc_now()
    records = get_stored_correlations(user_id, min_confidence=MIN_CONFIDENCE, limit=DASHBOARD_CORRELATION_LIMIT)
    insights = get_correlation_insights(user_id)
    try:
        trends = generate_symptom_trends(user_id, days=DASHBOARD_TREND_DAYS, now=current)
    except DatabaseError:
        # dashboard still renders correlations when the outcome logs cannot be read
        logger.exception("Trend generation failed for dashboard", extra={"user_id": int(user_id)})
        trends = []
    average_confidence = (
        sum(record.confidence_level for record in records) / len(records) if records else 0.0
    )
    return {
        "summary": {
            "strong_triggers": sum(1 for record in records if record.correlation_score > DASHBOARD_STRONG_SCORE),
            "total_correlations": len(records),
            "average_confidence_pct": int(round(average_confidence * 100)),
            "risk_score": insights.risk_score,
        },
        "correlations": [record.to_dict() for record in records[:5]],
        "trends": trends,
        "insights": insights.to_dict(),
        "last_updated": to_utc_iso(current),
    }
