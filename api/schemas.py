# request and response models for the /analysis and /ml-analysis endpoints

import os
from typing import Any, Optional

from pydantic import BaseModel, Field


# Validate input for /analysis/calculate; user_id may also arrive via X-User-Id
class CalculateCorrelationsIn(BaseModel):
    user_id: Optional[int] = None
    days_back: int = Field(default=90, ge=1, le=3650)
    time_window_hours: int = Field(default=24, ge=1, le=48)
    min_confidence: float = Field(
        default_factory=lambda: float(os.getenv("CORRELATION_MIN_CONFIDENCE", "0.3")),
        ge=0.0,
        le=1.0,
    )


# One persisted (category, outcome) relationship
class CorrelationOut(BaseModel):
    user_id: int
    exposure_category: str
    exposure_kind: str
    outcome_id: str
    outcome_type: str
    outcome_name: str
    correlation_score: float = Field(ge=-1.0, le=1.0)
    confidence_level: float = Field(ge=0.0, le=1.0)
    sample_size: int = Field(ge=0)
    lag_bucket: str
    time_window_hours: int
    mean_severity_exposed: float
    mean_severity_unexposed: Optional[float] = None
    computed_at: str


class CalculateCorrelationsOut(BaseModel):
    status: str
    user_id: int
    count: int
    correlations: list[CorrelationOut]


class InsightSummaryOut(BaseModel):
    risk_score: float = Field(ge=0.0, le=100.0)
    top_triggers: list[CorrelationOut]
    beneficial_items: list[CorrelationOut]
    recommendations: list[str]


class DashboardSummaryOut(BaseModel):
    strong_triggers: int
    total_correlations: int
    average_confidence_pct: int
    risk_score: float


# trend rows are {"date": "YYYY-MM-DD", <outcome name>: severity, ...}
class DashboardOut(BaseModel):
    summary: DashboardSummaryOut
    correlations: list[CorrelationOut]
    trends: list[dict[str, Any]]
    insights: InsightSummaryOut
    last_updated: Optional[str] = None


class MLAnalysisRunIn(BaseModel):
    user_id: Optional[int] = None
    days_back: int = Field(
        default_factory=lambda: int(os.getenv("ML_DAYS_BACK", "365")),
        ge=1,
        le=3650,
    )


class FeatureImportanceOut(BaseModel):
    feature_name: str
    pretty_name: str
    correlation_importance: float
    correlation_coefficient: float


class ModelQualityReportOut(BaseModel):
    outcome_id: str
    symptom_name: str
    test_accuracy: float
    baseline_accuracy: float
    test_precision: float
    test_recall: float
    pr_auc: float
    train_size: int
    test_size: int
    feature_importance: list[FeatureImportanceOut]


class SkippedOutcomeOut(BaseModel):
    outcome_id: str
    outcome_name: str
    reason: str


class MLAnalysisRunOut(BaseModel):
    user_id: int
    reports: list[ModelQualityReportOut]
    skipped: list[SkippedOutcomeOut]
    computed_at: Optional[str] = None


# /ml-analysis/results returns status "empty" with no run until a run finishes
class MLResultsOut(BaseModel):
    status: str
    run: Optional[MLAnalysisRunOut] = None
