"""Error taxonomy of the RF trajectory benchmark.

Every failure is fatal for a run. The exceptions carry the pipeline stage and,
where one is known, the offending parameter so that the operator can see what
went wrong without a traceback.
"""
from __future__ import annotations

from typing import Optional


class BenchmarkError(Exception):
    """Base class for all errors surfaced by the benchmark pipeline."""

    stage = "benchmark"

    def __init__(self, message: str, *, parameter: Optional[str] = None, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.parameter = parameter
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.parameter:
            text += f" (parameter: {self.parameter})"
        return text


class ConfigurationError(BenchmarkError, ValueError):
    """Invalid parameter combination, raised before any generation starts."""

    stage = "configuration"


class InvalidTrajectory(BenchmarkError, ValueError):
    """Malformed or too short trajectory reaching the feature extractor."""

    stage = "feature extraction"


class TrainingFailure(BenchmarkError, RuntimeError):
    """Shape or label mismatch reaching the random forest trainer."""

    stage = "training"


class EvaluationFailure(BenchmarkError, RuntimeError):
    """Shape mismatch or decode failure at prediction time."""

    stage = "evaluation"
