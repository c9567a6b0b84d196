from __future__ import annotations

import math
from typing import Any, Sequence

import numpy as np
from sklearn.metrics import accuracy_score, auc, precision_recall_curve, precision_score, recall_score


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


# constant columns have no defined correlation; report 0 instead of nan
def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    if len(xs) != len(ys) or len(xs) < 2:
        return 0.0
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    if float(np.std(x)) == 0.0 or float(np.std(y)) == 0.0:
        return 0.0
    return clamp(_safe_float(np.corrcoef(x, y)[0, 1]), -1.0, 1.0)


def baseline_accuracy(labels: Sequence[int]) -> float:
    if not labels:
        return 0.0
    positive_share = sum(1 for label in labels if int(label) == 1) / len(labels)
    return max(positive_share, 1.0 - positive_share)


def binary_metrics(labels: Sequence[int], predictions: Sequence[int]) -> dict[str, float]:
    if not labels or len(labels) != len(predictions):
        return {"accuracy": 0.0, "precision": 0.0, "recall": 0.0}
    y_true = [int(label) for label in labels]
    y_pred = [int(prediction) for prediction in predictions]
    return {
        "accuracy": float(accuracy_score(y_true, y_pred)),
        "precision": float(precision_score(y_true, y_pred, zero_division=0)),
        "recall": float(recall_score(y_true, y_pred, zero_division=0)),
    }


def pr_auc(labels: Sequence[int], scores: Sequence[float]) -> float:
    if len(labels) != len(scores) or len(set(int(label) for label in labels)) < 2:
        return 0.0
    precision, recall, _ = precision_recall_curve([int(label) for label in labels], [float(s) for s in scores])
    return clamp(_safe_float(auc(recall, precision)), 0.0, 1.0)
