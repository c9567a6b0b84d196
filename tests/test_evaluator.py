from __future__ import annotations

import unittest

from ml.evaluator import baseline_accuracy, binary_metrics, clamp, pearson_correlation, pr_auc


class EvaluatorTests(unittest.TestCase):
    def test_baseline_accuracy_is_majority_share(self) -> None:
        self.assertEqual(baseline_accuracy([1, 0, 0, 0]), 0.75)
        self.assertEqual(baseline_accuracy([1, 1, 1, 0, 0]), 0.6)
        self.assertEqual(baseline_accuracy([1, 0]), 0.5)
        self.assertEqual(baseline_accuracy([]), 0.0)

    def test_pearson_correlation(self) -> None:
        self.assertAlmostEqual(pearson_correlation([0, 1, 0, 1], [0, 1, 0, 1]), 1.0, places=6)
        self.assertAlmostEqual(pearson_correlation([1, 0, 1, 0], [0, 1, 0, 1]), -1.0, places=6)
        self.assertEqual(pearson_correlation([1, 1, 1, 1], [0, 1, 0, 1]), 0.0)
        self.assertEqual(pearson_correlation([1], [1]), 0.0)
        self.assertEqual(pearson_correlation([1, 0], [1, 0, 1]), 0.0)

    def test_binary_metrics(self) -> None:
        metrics = binary_metrics([1, 1, 0, 0], [1, 0, 1, 0])
        self.assertEqual(metrics, {"accuracy": 0.5, "precision": 0.5, "recall": 0.5})
        # no positive predictions must not divide by zero
        metrics = binary_metrics([1, 0, 0], [0, 0, 0])
        self.assertEqual(metrics["precision"], 0.0)
        self.assertEqual(metrics["recall"], 0.0)
        self.assertAlmostEqual(metrics["accuracy"], 2 / 3)
        self.assertEqual(binary_metrics([], []), {"accuracy": 0.0, "precision": 0.0, "recall": 0.0})

    def test_pr_auc(self) -> None:
        self.assertAlmostEqual(pr_auc([0, 0, 1, 1], [0.1, 0.2, 0.8, 0.9]), 1.0)
        self.assertEqual(pr_auc([1, 1, 1], [0.1, 0.2, 0.3]), 0.0)
        mixed = pr_auc([0, 1, 0, 1], [0.9, 0.2, 0.4, 0.8])
        self.assertGreaterEqual(mixed, 0.0)
        self.assertLess(mixed, 1.0)

    def test_clamp(self) -> None:
        self.assertEqual(clamp(2.0, -1.0, 1.0), 1.0)
        self.assertEqual(clamp(-3.0, -1.0, 1.0), -1.0)
        self.assertEqual(clamp(0.25, 0.0, 1.0), 0.25)


if __name__ == "__main__":
    unittest.main()
