from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable

import numpy as np

from ingestion.expand_exposure import ExposureEvent, pretty_feature_name
from ingestion.normalize_outcome import OutcomeEvent
from ingestion.time_utils import to_utc_iso, window_bounds
from ml.correlations import load_user_events
from ml.evaluator import baseline_accuracy, binary_metrics, pearson_correlation, pr_auc
from ml.training_data import build_outcome_training_rows, chronological_split

logger = logging.getLogger(__name__)

HIGH_SEVERITY_THRESHOLD = float(os.getenv("ML_HIGH_SEVERITY_THRESHOLD", "7"))
MIN_CLASS_INSTANCES = int(os.getenv("ML_MIN_CLASS_INSTANCES", "10"))
TRAIN_FRACTION = float(os.getenv("ML_TRAIN_FRACTION", "0.7"))
ML_DAYS_BACK = int(os.getenv("ML_DAYS_BACK", "365"))
TOP_FEATURES = 3


@dataclass
class FeatureImportance:
    feature_name: str
    pretty_name: str
    correlation_importance: float
    correlation_coefficient: float


@dataclass
class ModelQualityReport:
    outcome_id: str
    symptom_name: str
    test_accuracy: float
    baseline_accuracy: float
    test_precision: float
    test_recall: float
    pr_auc: float
    train_size: int
    test_size: int
    feature_importance: list[FeatureImportance] = field(default_factory=list)


@dataclass
class SkippedOutcome:
    outcome_id: str
    outcome_name: str
    reason: str


@dataclass
class MLAnalysisRun:
    user_id: int
    reports: list[ModelQualityReport] = field(default_factory=list)
    skipped: list[SkippedOutcome] = field(default_factory=list)
    computed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class MLResultCache:
    """Latest ML run per user.

    A run for one user never hides or replaces another user's results. Starting
    a run drops that user's previous entry so a failed run cannot leave stale
    reports behind.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._runs: dict[int, MLAnalysisRun] = {}

    def get(self, user_id: int) -> MLAnalysisRun | None:
        with self._lock:
            return self._runs.get(int(user_id))

    def set(self, user_id: int, run: MLAnalysisRun) -> None:
        with self._lock:
            self._runs[int(user_id)] = run

    def invalidate(self, user_id: int) -> None:
        with self._lock:
            self._runs.pop(int(user_id), None)

    def clear(self) -> None:
        with self._lock:
            self._runs.clear()


ML_RESULT_CACHE = MLResultCache()


def _skip(skipped: list[SkippedOutcome], occurrence: OutcomeEvent, reason: str) -> None:
    logger.warning("Skipping ML analysis for %s (%s): %s", occurrence.outcome_name, occurrence.outcome_id, reason)
    skipped.append(
        SkippedOutcome(outcome_id=occurrence.outcome_id, outcome_name=occurrence.outcome_name, reason=reason)
    )


def score_feature_importance(
    exposures: Iterable[ExposureEvent],
    outcomes: Iterable[OutcomeEvent],
    *,
    high_severity_threshold: float = HIGH_SEVERITY_THRESHOLD,
    min_class_instances: int = MIN_CLASS_INSTANCES,
    train_fraction: float = TRAIN_FRACTION,
    top_features: int = TOP_FEATURES,
) -> tuple[list[ModelQualityReport], list[SkippedOutcome]]:
    exposure_list = list(exposures)
    categories = sorted({event.category for event in exposure_list})

    by_outcome: dict[str, list[OutcomeEvent]] = {}
    for event in outcomes:
        by_outcome.setdefault(event.outcome_id, []).append(event)

    reports: list[ModelQualityReport] = []
    skipped: list[SkippedOutcome] = []
    for outcome_id in sorted(by_outcome):
        occurrences = sorted(by_outcome[outcome_id], key=lambda event: (event.occurred_at, event.source_id))
        first = occurrences[0]
        training = build_outcome_training_rows(
            exposure_list,
            occurrences,
            high_severity_threshold=high_severity_threshold,
            categories=categories,
        )
        if training.positives < min_class_instances or training.negatives < min_class_instances:
            _skip(
                skipped,
                first,
                f"needs at least {min_class_instances} high and low severity instances "
                f"(has {training.positives} high, {training.negatives} low)",
            )
            continue
        if not categories:
            _skip(skipped, first, "no exposure categories logged in window")
            continue

        train_x, test_x = chronological_split(training.features, train_fraction=train_fraction)
        train_y, test_y = chronological_split(training.labels, train_fraction=train_fraction)
        if len(set(train_y)) < 2 or len(set(test_y)) < 2:
            _skip(skipped, first, "chronological split left train or test with a single class")
            continue

        x_train = np.asarray(train_x, dtype=float)
        x_test = np.asarray(test_x, dtype=float)
        # all-zero columns carry no signal
        kept = [j for j in range(x_train.shape[1]) if x_train[:, j].any()]
        if not kept:
            _skip(skipped, first, "no exposure feature is ever present before this outcome")
            continue

        coefficients = np.asarray([pearson_correlation(x_train[:, j], train_y) for j in kept], dtype=float)
        scores = x_test[:, kept] @ coefficients
        threshold = float(np.median(scores))
        predictions = [1 if float(score) >= threshold else 0 for score in scores]
        metrics = binary_metrics(test_y, predictions)

        ranked = sorted(
            zip((training.feature_names[j] for j in kept), coefficients),
            key=lambda pair: (-abs(float(pair[1])), pair[0]),
        )
        reports.append(
            ModelQualityReport(
                outcome_id=outcome_id,
                symptom_name=first.outcome_name,
                test_accuracy=round(metrics["accuracy"], 4),
                baseline_accuracy=round(baseline_accuracy(test_y), 4),
                test_precision=round(metrics["precision"], 4),
                test_recall=round(metrics["recall"], 4),
                pr_auc=round(pr_auc(test_y, [float(score) for score in scores]), 4),
                train_size=len(train_y),
                test_size=len(test_y),
                feature_importance=[
                    FeatureImportance(
                        feature_name=name,
                        pretty_name=pretty_feature_name(name),
                        correlation_importance=round(abs(float(coefficient)), 4),
                        correlation_coefficient=round(float(coefficient), 4),
                    )
                    for name, coefficient in ranked[:top_features]
                ],
            )
        )
    return reports, skipped


def run_ml_analysis(
    user_id: int,
    *,
    days_back: int = ML_DAYS_BACK,
    now: datetime | None = None,
    cache: MLResultCache = ML_RESULT_CACHE,
    conn=None,
) -> MLAnalysisRun:
    cache.invalidate(user_id)
    window_start, window_end = window_bounds(days_back, now=now)
    exposures, outcomes = load_user_events(user_id, window_start=window_start, window_end=window_end, conn=conn)
    reports, skipped = score_feature_importance(exposures, outcomes)
    run = MLAnalysisRun(user_id=int(user_id), reports=reports, skipped=skipped, computed_at=to_utc_iso(window_end))
    cache.set(user_id, run)
    logger.info(
        "ML analysis for user %s: %d outcome reports, %d skipped",
        user_id,
        len(reports),
        len(skipped),
    )
    return run


def get_cached_ml_results(user_id: int, *, cache: MLResultCache = ML_RESULT_CACHE) -> MLAnalysisRun | None:
    return cache.get(user_id)
