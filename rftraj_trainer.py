"""Random forest trainers for the trajectory benchmark.

Two variants share one small capability, ``fit`` and ``predict``:

* :class:`ForestClassifierTrainer` - discriminates diffusion models, or
  normal from anomalous diffusion. A ``LabelEncoder`` sits at the boundary
  so that any label space (class indices or model names) is handed to the
  forest as categorical codes and decoded back on prediction.
* :class:`ForestRegressorTrainer` - predicts the anomalous exponent. Labels
  are coerced to float before fitting.

Both forests compute out-of-bag predictions, so a run reports a generalisation
estimate without touching the test split.
"""
from __future__ import annotations

import time
from typing import Optional, Sequence

import numpy as np
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor
from sklearn.preprocessing import LabelEncoder

from config_rftraj import CLASSIFICATION_MODES, N_ESTIMATORS, RANDOM_SEED, TASK_MODES
from rftraj_errors import ConfigurationError, TrainingFailure

ArrayLike = np.ndarray


class ForestTrainer:
    """Common validation and bookkeeping of the forest variants."""

    task_mode = ""

    def __init__(self, n_estimators: int = N_ESTIMATORS, random_state: int = RANDOM_SEED, n_jobs: Optional[int] = None) -> None:
        self.n_estimators = int(n_estimators)
        self.random_state = int(random_state)
        self.n_jobs = n_jobs
        self.model = None
        self.n_features_: Optional[int] = None
        self.training_seconds: Optional[float] = None

    @property
    def is_fitted(self) -> bool:
        return self.model is not None

    @property
    def oob_score(self) -> Optional[float]:
        score = getattr(self.model, "oob_score_", None)
        return float(score) if score is not None else None

    @property
    def feature_importances(self) -> Optional[ArrayLike]:
        return getattr(self.model, "feature_importances_", None)

    def fit(self, features: ArrayLike, labels: Sequence, *, verbose: bool = False) -> "ForestTrainer":
        """Fit the forest on a feature matrix and its labels."""
        X = _feature_matrix(features)
        y = self._prepare_labels(labels)
        if X.shape[0] == 0:
            raise TrainingFailure("cannot train on an empty training set", parameter="num_traj")
        if X.shape[0] != len(y):
            raise TrainingFailure(f"{X.shape[0]} feature vectors but {len(y)} labels")

        model = self._build_model(n_samples=X.shape[0])
        started = time.perf_counter()
        try:
            model.fit(X, y)
        except ValueError as exc:
            raise TrainingFailure(f"random forest fit failed: {exc}") from exc
        self.training_seconds = time.perf_counter() - started
        self.model = model
        self.n_features_ = X.shape[1]

        if verbose:
            print(f"Training has taken {self.training_seconds:.2f} secs.")
            if self.oob_score is not None:
                print(f"Out-of-bag score: {self.oob_score:.4f}")
        return self

    def predict(self, features: ArrayLike) -> ArrayLike:
        if self.model is None:
            raise RuntimeError("Train the forest with fit() before calling predict().")
        X = np.asarray(features, dtype=float)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.ndim != 2 or X.shape[1] != self.n_features_:
            raise ValueError(f"expected feature rows of length {self.n_features_}, got shape {X.shape}")
        return self._decode(self.model.predict(X))

    # subclass hooks
    def _prepare_labels(self, labels: Sequence) -> ArrayLike:
        raise NotImplementedError

    def _build_model(self, n_samples: int):
        raise NotImplementedError

    def _decode(self, predictions: ArrayLike) -> ArrayLike:
        return predictions


class ForestClassifierTrainer(ForestTrainer):
    """Random forest classifier with a categorical label adapter."""

    task_mode = "discrimination"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.label_encoder = LabelEncoder()

    @property
    def classes_(self) -> ArrayLike:
        return self.label_encoder.classes_

    def _prepare_labels(self, labels: Sequence) -> ArrayLike:
        labels = np.asarray(labels)
        if labels.ndim != 1:
            raise TrainingFailure(f"labels must be one-dimensional, got shape {labels.shape}")
        try:
            return self.label_encoder.fit_transform(labels)
        except (TypeError, ValueError) as exc:
            raise TrainingFailure(f"labels cannot be encoded as categories: {exc}") from exc

    def _build_model(self, n_samples: int) -> RandomForestClassifier:
        return RandomForestClassifier(
            n_estimators=self.n_estimators,
            oob_score=n_samples > 1,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )

    def _decode(self, predictions: ArrayLike) -> ArrayLike:
        return self.label_encoder.inverse_transform(predictions.astype(int))


class ForestRegressorTrainer(ForestTrainer):
    """Random forest regressor for the anomalous exponent."""

    task_mode = "regression"

    def _prepare_labels(self, labels: Sequence) -> ArrayLike:
        try:
            # text labels decode through float(), exactly like text_to_label
            values = np.array([float(label) for label in labels], dtype=float)
        except (TypeError, ValueError) as exc:
            raise TrainingFailure(f"regression labels must be numeric: {exc}") from exc
        if not np.all(np.isfinite(values)):
            raise TrainingFailure("regression labels contain NaN or infinite values")
        return values

    def _build_model(self, n_samples: int) -> RandomForestRegressor:
        return RandomForestRegressor(
            n_estimators=self.n_estimators,
            oob_score=n_samples > 1,
            random_state=self.random_state,
            n_jobs=self.n_jobs,
        )


def make_trainer(
    task_mode: str,
    *,
    n_estimators: int = N_ESTIMATORS,
    random_state: int = RANDOM_SEED,
    n_jobs: Optional[int] = None,
) -> ForestTrainer:
    """Trainer variant for ``task_mode``."""
    if task_mode in CLASSIFICATION_MODES:
        trainer = ForestClassifierTrainer(n_estimators=n_estimators, random_state=random_state, n_jobs=n_jobs)
        trainer.task_mode = task_mode
        return trainer
    if task_mode == "regression":
        return ForestRegressorTrainer(n_estimators=n_estimators, random_state=random_state, n_jobs=n_jobs)
    raise ConfigurationError(f"task mode must be one of {TASK_MODES}, got {task_mode!r}", parameter="proc_expo")


def train(
    features: ArrayLike,
    labels: Sequence,
    task_mode: str,
    *,
    n_estimators: int = N_ESTIMATORS,
    random_state: int = RANDOM_SEED,
    n_jobs: Optional[int] = None,
    verbose: bool = False,
) -> ForestTrainer:
    """Fit the forest matching ``task_mode`` and return it."""
    trainer = make_trainer(task_mode, n_estimators=n_estimators, random_state=random_state, n_jobs=n_jobs)
    return trainer.fit(features, labels, verbose=verbose)


def _feature_matrix(features) -> ArrayLike:
    """2D float matrix, rejecting ragged rows."""
    if isinstance(features, np.ndarray):
        rows = features
    else:
        rows = list(features)
        lengths = {len(np.atleast_1d(row)) for row in rows}
        if len(lengths) > 1:
            raise TrainingFailure(f"feature vectors of inconsistent lengths {sorted(lengths)}")
    try:
        X = np.asarray(rows, dtype=float)
    except (TypeError, ValueError) as exc:
        raise TrainingFailure(f"features are not a numeric matrix: {exc}") from exc
    if X.ndim != 2:
        raise TrainingFailure(f"features must be a 2D matrix, got shape {X.shape}")
    if not np.all(np.isfinite(X)):
        raise TrainingFailure("features contain NaN or infinite values")
    return X
