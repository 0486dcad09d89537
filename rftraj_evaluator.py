"""Evaluation of a fitted forest on the held-out trajectories.

Classification runs (model discrimination, or normal versus anomalous
diffusion) are summarised by a confusion matrix and the accuracy
``trace(C) / N``, which holds for any number of classes. Regression runs are
summarised by the mean squared error, the mean absolute error and a
normalised histogram of the absolute errors with one bin per exponent of the
grid.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import matplotlib

matplotlib.use("Agg")  # non-interactive backend, plots go to files
import matplotlib.pyplot as plt
from sklearn.metrics import confusion_matrix, mean_squared_error

from config_rftraj import TASK_MODES
from rftraj_errors import ConfigurationError, EvaluationFailure

ArrayLike = np.ndarray


@dataclass
class ClassificationResult:
    """Confusion matrix and accuracy of a classification run."""

    confusion_matrix: ArrayLike
    labels: List[object]
    accuracy: float
    per_class_accuracy: Dict[str, float]
    n_samples: int
    predictions: ArrayLike = field(repr=False, default_factory=lambda: np.zeros(0))
    task_mode: str = "discrimination"

    def summary(self) -> str:
        if self.task_mode == "anomalous":
            return f"The accuracy of the anomalous diffusion detecting RF algorithm is {self.accuracy:.2f}"
        return f"The accuracy of the process discriminating RF algorithm is {self.accuracy:.2f}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_mode": self.task_mode,
            "accuracy": self.accuracy,
            "per_class_accuracy": self.per_class_accuracy,
            "confusion_matrix": self.confusion_matrix.tolist(),
            "labels": [str(label) for label in self.labels],
            "n_samples": self.n_samples,
        }


@dataclass
class RegressionResult:
    """Error statistics of an exponent regression run."""

    mse: float
    mae: float
    histogram: ArrayLike
    bin_edges: ArrayLike
    n_samples: int
    errors: ArrayLike = field(repr=False, default_factory=lambda: np.zeros(0))
    predictions: ArrayLike = field(repr=False, default_factory=lambda: np.zeros(0))

    task_mode = "regression"

    def summary(self) -> str:
        return f"Mean squared error = {self.mse:.4f}, mean absolute error = {self.mae:.2f}"

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_mode": self.task_mode,
            "mse": self.mse,
            "mae": self.mae,
            "histogram": self.histogram.tolist(),
            "bin_edges": self.bin_edges.tolist(),
            "n_samples": self.n_samples,
        }


EvaluationResult = Union[ClassificationResult, RegressionResult]


# ----------------------------------------------------------------------
# Metrics
# ----------------------------------------------------------------------
def confusion_accuracy(
    y_true: Sequence,
    y_pred: Sequence,
    labels: Optional[Sequence] = None,
) -> Tuple[ArrayLike, float]:
    """
    Confusion matrix and accuracy = trace(C) / N

    Args:
        y_true: true class labels
        y_pred: predicted class labels
        labels: label order of the matrix, defaults to the sorted union

    Returns:
        (confusion matrix, accuracy)
    """
    y_true = np.asarray(y_true)
    y_pred = np.asarray(y_pred)
    if len(y_true) == 0:
        raise EvaluationFailure("cannot compute an accuracy on an empty test set")
    if len(y_true) != len(y_pred):
        raise EvaluationFailure(f"{len(y_pred)} predictions for {len(y_true)} test labels")
    if labels is None:
        labels = np.unique(np.concatenate([y_true, y_pred]))
    matrix = confusion_matrix(y_true, y_pred, labels=list(labels))
    return matrix, float(np.trace(matrix) / len(y_true))


def error_histogram(errors: Sequence[float], n_bins: int) -> Tuple[ArrayLike, ArrayLike]:
    """
    Probability mass of absolute errors in ``n_bins`` equal-width bins

    The bins span the observed error range; the masses sum to one.
    """
    errors = np.asarray(errors, dtype=float)
    if len(errors) == 0:
        raise EvaluationFailure("cannot histogram an empty error sample")
    if n_bins < 1:
        raise EvaluationFailure(f"need at least one histogram bin, got {n_bins}")
    counts, edges = np.histogram(errors, bins=int(n_bins))
    return counts / len(errors), edges


def regression_metrics(y_true: Sequence[float], y_pred: Sequence[float], n_bins: int) -> RegressionResult:
    """MSE, MAE and error histogram of numeric predictions."""
    try:
        y_true = np.asarray(y_true, dtype=float)
        y_pred = np.asarray(y_pred, dtype=float).ravel()
    except (TypeError, ValueError) as exc:
        raise EvaluationFailure(f"labels or predictions are not numeric: {exc}") from exc
    if len(y_true) == 0:
        raise EvaluationFailure("cannot compute errors on an empty test set")
    if len(y_true) != len(y_pred):
        raise EvaluationFailure(f"{len(y_pred)} predictions for {len(y_true)} test labels")

    errors = np.abs(y_pred - y_true)
    histogram, edges = error_histogram(errors, n_bins)
    return RegressionResult(
        mse=float(mean_squared_error(y_true, y_pred)),
        mae=float(np.mean(errors)),
        histogram=histogram,
        bin_edges=edges,
        n_samples=int(len(y_true)),
        errors=errors,
        predictions=y_pred,
    )


# ----------------------------------------------------------------------
# Evaluation
# ----------------------------------------------------------------------
def predict(fitted_model, test_features: ArrayLike) -> ArrayLike:
    """Predictions of ``fitted_model``, any failure surfaces as EvaluationFailure."""
    try:
        X = np.asarray(test_features, dtype=float)
    except (TypeError, ValueError) as exc:
        raise EvaluationFailure(f"test features are not a numeric matrix: {exc}") from exc
    if X.ndim != 2:
        raise EvaluationFailure(f"test features must be a 2D matrix, got shape {X.shape}")
    try:
        predictions = np.asarray(fitted_model.predict(X))
    except (ValueError, RuntimeError, TypeError, AttributeError) as exc:
        raise EvaluationFailure(f"prediction failed: {exc}") from exc
    if len(predictions) != X.shape[0]:
        raise EvaluationFailure(f"model returned {len(predictions)} predictions for {X.shape[0]} rows")
    return predictions


def evaluate(
    fitted_model,
    test_features: ArrayLike,
    test_labels: Sequence,
    task_mode: str,
    exponent_grid: Sequence[float],
    *,
    class_labels: Optional[Sequence] = None,
    class_names: Optional[Sequence[str]] = None,
) -> EvaluationResult:
    """
    Run ``fitted_model`` on the test set and summarise the result

    Args:
        fitted_model: object with ``predict(features)``
        test_features: (n, n_features) matrix
        test_labels: numeric test labels
        task_mode: "discrimination", "anomalous" or "regression"
        exponent_grid: exponents of the dataset, sets the histogram bins
        class_labels: label order of the confusion matrix
        class_names: display names matching ``class_labels``

    Returns:
        ClassificationResult or RegressionResult
    """
    if task_mode not in TASK_MODES:
        raise ConfigurationError(f"task mode must be one of {TASK_MODES}, got {task_mode!r}", parameter="proc_expo")
    test_labels = np.asarray(test_labels)
    if len(test_labels) == 0:
        raise EvaluationFailure("the test set is empty", parameter="ratio_tT")
    try:
        test_features = np.asarray(test_features, dtype=float)
    except (TypeError, ValueError) as exc:
        raise EvaluationFailure(f"test features are not a numeric matrix: {exc}") from exc
    if test_features.ndim != 2 or len(test_features) != len(test_labels):
        raise EvaluationFailure(
            f"test features of shape {test_features.shape} do not match {len(test_labels)} labels"
        )

    predictions = predict(fitted_model, test_features)

    if task_mode == "regression":
        return regression_metrics(test_labels, predictions, len(exponent_grid))

    # same decoding on both sides: predictions live in the label space of the trainer
    if predictions.dtype.kind != test_labels.dtype.kind:
        try:
            predictions = predictions.astype(test_labels.dtype)
        except (TypeError, ValueError) as exc:
            raise EvaluationFailure(f"predictions cannot be decoded to the label space: {exc}") from exc

    matrix, accuracy = confusion_accuracy(test_labels, predictions, labels=class_labels)
    labels = list(class_labels) if class_labels is not None else list(np.unique(np.concatenate([test_labels, predictions])))
    names = list(class_names) if class_names is not None else [str(label) for label in labels]
    row_totals = matrix.sum(axis=1)
    per_class = {
        str(name): float(matrix[i, i] / row_totals[i]) if row_totals[i] > 0 else 0.0
        for i, name in enumerate(names)
    }
    return ClassificationResult(
        confusion_matrix=matrix,
        labels=labels,
        accuracy=accuracy,
        per_class_accuracy=per_class,
        n_samples=int(len(test_labels)),
        predictions=predictions,
        task_mode=task_mode,
    )


# ----------------------------------------------------------------------
# Plot sink
# ----------------------------------------------------------------------
def plot_error_histogram(result: RegressionResult, output_path: str | Path) -> Path:
    """Bar chart of the normalised error histogram."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    widths = np.diff(result.bin_edges)

    fig, ax = plt.subplots(figsize=(7, 4.5))
    ax.bar(result.bin_edges[:-1], result.histogram, width=widths, align="edge", edgecolor="black")
    ax.set_ylabel("Normalized number of trajectories")
    ax.set_xlabel("Error")
    ax.set_title(f"Mean absolute error = {result.mae:.2f}")
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path


def plot_confusion_matrix(result: ClassificationResult, class_names: Sequence[str], output_path: str | Path) -> Path:
    """Heat map of the confusion matrix with counts."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    cm = result.confusion_matrix
    n_classes = cm.shape[0]

    fig, ax = plt.subplots(figsize=(6, 5))
    im = ax.imshow(cm, cmap="Blues")
    ax.set_xticks(range(n_classes))
    ax.set_yticks(range(n_classes))
    ax.set_xticklabels(class_names, rotation=45, ha="right")
    ax.set_yticklabels(class_names)
    ax.set_xlabel("Predicted")
    ax.set_ylabel("True")
    ax.set_title(f"Confusion Matrix (accuracy {result.accuracy:.2f})")
    for i in range(n_classes):
        for j in range(n_classes):
            ax.text(j, i, cm[i, j], ha="center", va="center", color="black")
    fig.colorbar(im, ax=ax)
    fig.tight_layout()
    fig.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)
    return output_path
