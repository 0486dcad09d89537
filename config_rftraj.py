"""
CONFIGURATION - RANDOM FOREST TRAJECTORY BENCHMARK
===================================================

Default parameters and the immutable run configuration for benchmarking a
random forest against simulated anomalous-diffusion trajectories.

The forest is asked one of two questions about a trajectory:

- discrimination: which theoretical model generated it (classification)
- regression: what its anomalous exponent alpha is

SCIENTIFIC BASIS:
[1] Munoz-Gil, Garcia-March, Manzo, Martin-Guerrero, Lewenstein (2019) -
    Single trajectory characterization via machine learning,
    arXiv:1903.02850
[2] Metzler, Jeon, Cherstvy, Barkai (2014) - Anomalous diffusion models and
    their properties
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple
import numbers
import warnings

import numpy as np

from rftraj_errors import ConfigurationError
from rftraj_feature_extractor import FEATURE_SETS
from rftraj_trajectory_generator import available_models, exponent_limits, supports_exponent

# =============================================================================
# 1. TRAJECTORIES
# =============================================================================

# Time length of the trajectories [frames]
T_MAX = 1000

# Trajectories per (model, alpha) bucket. The paper used 1e4; 1e3 keeps a
# default run within laptop memory.
NUM_TRAJ = 1000

# Theoretical models included in the training set
PROCESSES = ("fbm",)

# Anomalous exponents to consider (0.5, 0.6, ..., 1.5)
ALPHA_RANGE = tuple(float(a) for a in np.round(np.arange(0.5, 1.5 + 1e-9, 0.1), 2))

# =============================================================================
# 2. DATASET
# =============================================================================

# Fraction of every bucket used for training, the rest is the test set
RATIO_TT = 0.8

# "discrimination" (classify the model), "anomalous" (normal vs anomalous
# diffusion) or "regression" (predict alpha)
TASK_MODES = ("discrimination", "anomalous", "regression")
CLASSIFICATION_MODES = ("discrimination", "anomalous")

# Classes of the "anomalous" task; alpha == NORMAL_EXPONENT is normal diffusion
ANOMALY_CLASSES = ("normal", "anomalous")
NORMAL_EXPONENT = 1.0
PROC_EXPO = "regression"

# Window of the displacement preprocessing. 0 keeps the raw trajectory.
T_LAG = 0

# Feature schema: "raw" (normalised trajectory) or "physics" (summary stats)
FEATURE_SET = "raw"

# Where simulated trajectories are cached between runs
PATH_TRAJECTORIES = "~/MLtraj_data/trajs/"

# =============================================================================
# 3. RANDOM FOREST
# =============================================================================

N_ESTIMATORS = 100

# =============================================================================
# 4. OUTPUT & REPRODUCIBILITY
# =============================================================================

OUTPUT_DIR = "./rftraj_results"
RANDOM_SEED = 42


# =============================================================================
# RUN CONFIGURATION
# =============================================================================

def balanced_anomalous_ratio(alpha_range: Sequence[float]) -> float:
    """Ratio anomalous/normal that gives every alpha the same weight."""
    if len(alpha_range) == 0:
        raise ConfigurationError("alpha_range must not be empty", parameter="alpha_range")
    return 1.0 / len(alpha_range)


def is_normal_exponent(alpha: float) -> bool:
    return abs(float(alpha) - NORMAL_EXPONENT) < 1e-12


def split_count(n_samples: int, split_ratio: float) -> int:
    """Training rows of a bucket with ``n_samples`` rows (round half up)."""
    return int(np.clip(np.floor(split_ratio * n_samples + 0.5), 0, n_samples))


def _check_integer(value, parameter: str, label: str) -> int:
    # integral floats such as 10.0 pass, 2.7 or "10" do not
    if isinstance(value, bool) or not isinstance(value, (numbers.Integral, float)) or int(value) != value:
        raise ConfigurationError(f"{label} must be an integer, got {value!r}", parameter=parameter)
    return int(value)


def validate_parameters(
    *,
    num_per_class: int,
    exponent_grid: Sequence[float],
    models: Sequence[str],
    t_max: int,
    task_mode: str,
    lag_window: int,
    split_ratio: float,
    anomalous_ratio: Optional[float] = None,
    feature_set: str = FEATURE_SET,
    n_jobs: int = 1,
) -> None:
    """Check a parameter combination before anything is generated.

    Raises:
        ConfigurationError: naming the first offending parameter.
    """
    if not 0.0 < float(split_ratio) < 1.0:
        raise ConfigurationError(
            f"split ratio must lie strictly between 0 and 1, got {split_ratio}", parameter="ratio_tT"
        )
    if len(exponent_grid) == 0:
        raise ConfigurationError("exponent grid is empty", parameter="alpha_range")
    num_per_class = _check_integer(num_per_class, "num_traj", "trajectories per class")
    if num_per_class < 1:
        raise ConfigurationError(
            f"need at least one trajectory per class, got {num_per_class}", parameter="num_traj"
        )
    n_train = split_count(num_per_class, split_ratio)
    if n_train == 0 or n_train == num_per_class:
        raise ConfigurationError(
            f"split ratio {split_ratio} leaves {n_train} of {num_per_class} trajectories per bucket "
            "for training; every bucket needs training and test rows",
            parameter="ratio_tT",
        )
    t_max = _check_integer(t_max, "t_max", "t_max")
    if t_max < 1:
        raise ConfigurationError(f"t_max must be a positive integer, got {t_max}", parameter="t_max")
    if len(models) == 0:
        raise ConfigurationError("no diffusion model configured", parameter="processes")
    if len(set(models)) != len(models):
        raise ConfigurationError(f"duplicate models in {list(models)}", parameter="processes")
    if len(set(exponent_grid)) != len(exponent_grid):
        raise ConfigurationError(f"duplicate exponents in {list(exponent_grid)}", parameter="alpha_range")
    if task_mode not in TASK_MODES:
        raise ConfigurationError(
            f"task mode must be one of {TASK_MODES}, got {task_mode!r}", parameter="proc_expo"
        )
    if task_mode == "anomalous":
        n_normal = sum(is_normal_exponent(alpha) for alpha in exponent_grid)
        if n_normal == 0 or n_normal == len(exponent_grid):
            raise ConfigurationError(
                f"the anomalous task needs alpha={NORMAL_EXPONENT:g} and at least one other exponent "
                f"in the grid, got {list(exponent_grid)}",
                parameter="alpha_range",
            )
    lag_window = _check_integer(lag_window, "T_lag", "lag window")
    if lag_window < 0:
        raise ConfigurationError(f"lag window must be >= 0, got {lag_window}", parameter="T_lag")
    if lag_window >= t_max:
        raise ConfigurationError(
            f"lag window {lag_window} leaves no displacement in a trajectory of length {t_max}",
            parameter="T_lag",
        )
    if feature_set not in FEATURE_SETS:
        raise ConfigurationError(
            f"feature set must be one of {FEATURE_SETS}, got {feature_set!r}", parameter="feature_set"
        )
    n_jobs = _check_integer(n_jobs, "n_jobs", "n_jobs")
    if n_jobs == 0 or n_jobs < -1:
        raise ConfigurationError(
            f"n_jobs must be a positive number of workers or -1 for all cores, got {n_jobs}", parameter="n_jobs"
        )

    known = available_models()
    for model in models:
        if model not in known:
            raise ConfigurationError(f"unknown diffusion model {model!r}, known: {known}", parameter="processes")
        for alpha in exponent_grid:
            if not supports_exponent(model, alpha):
                low, high = exponent_limits(model)
                raise ConfigurationError(
                    f"model {model!r} cannot produce alpha={alpha} (valid range {low} - {high})",
                    parameter="alpha_range",
                )

    if anomalous_ratio is not None:
        balanced = balanced_anomalous_ratio(exponent_grid)
        if abs(float(anomalous_ratio) - balanced) > 1e-9:
            warnings.warn(
                f"ratio_aN={anomalous_ratio:.4f} differs from 1/{len(exponent_grid)}; "
                "every (model, alpha) bucket still receives the same number of trajectories"
            )


@dataclass(frozen=True)
class BenchmarkConfig:
    """Immutable description of one benchmark run."""

    t_max: int = T_MAX
    num_traj: int = NUM_TRAJ
    processes: Tuple[str, ...] = PROCESSES
    alpha_range: Tuple[float, ...] = ALPHA_RANGE
    ratio_tT: float = RATIO_TT
    proc_expo: str = PROC_EXPO
    ratio_aN: Optional[float] = None
    T_lag: int = T_LAG
    path_trajectories: Optional[Path] = None
    feature_set: str = FEATURE_SET
    n_estimators: int = N_ESTIMATORS
    n_jobs: int = 1
    random_seed: int = RANDOM_SEED
    output_dir: Path = field(default_factory=lambda: Path(OUTPUT_DIR))

    def __post_init__(self) -> None:
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "processes", tuple(str(p).strip().lower() for p in self.processes))
        object.__setattr__(self, "alpha_range", tuple(float(a) for a in self.alpha_range))
        object.__setattr__(self, "proc_expo", str(self.proc_expo).strip().lower())
        object.__setattr__(self, "feature_set", str(self.feature_set).strip().lower())
        if self.path_trajectories is not None:
            object.__setattr__(self, "path_trajectories", Path(self.path_trajectories).expanduser())
        object.__setattr__(self, "output_dir", Path(self.output_dir).expanduser())

    @property
    def anomalous_ratio(self) -> float:
        if self.ratio_aN is not None:
            return float(self.ratio_aN)
        return balanced_anomalous_ratio(self.alpha_range)

    @property
    def is_regression(self) -> bool:
        return self.proc_expo == "regression"

    def validate(self) -> "BenchmarkConfig":
        validate_parameters(
            num_per_class=self.num_traj,
            exponent_grid=self.alpha_range,
            models=self.processes,
            t_max=self.t_max,
            task_mode=self.proc_expo,
            lag_window=self.T_lag,
            split_ratio=self.ratio_tT,
            anomalous_ratio=self.ratio_aN,
            feature_set=self.feature_set,
            n_jobs=self.n_jobs,
        )
        if _check_integer(self.n_estimators, "n_estimators", "n_estimators") < 1:
            raise ConfigurationError(
                f"the forest needs at least one tree, got {self.n_estimators}", parameter="n_estimators"
            )
        return self

    def with_overrides(self, **changes) -> "BenchmarkConfig":
        """Copy with some fields replaced, ``None`` values are ignored."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def signature(self) -> Dict[str, object]:
        """JSON friendly view, used in reports."""
        payload = asdict(self)
        payload["path_trajectories"] = str(self.path_trajectories) if self.path_trajectories else None
        payload["output_dir"] = str(self.output_dir)
        payload["processes"] = list(self.processes)
        payload["alpha_range"] = list(self.alpha_range)
        payload["anomalous_ratio"] = self.anomalous_ratio
        return payload

    def summary_lines(self) -> Iterable[str]:
        yield f"  Trajectory length t_max: {self.t_max} frames"
        yield f"  Trajectories per class:  {self.num_traj}"
        yield f"  Models:                  {', '.join(self.processes)}"
        yield f"  Alpha range:             {', '.join(f'{a:g}' for a in self.alpha_range)}"
        yield f"  Train/test ratio:        {self.ratio_tT:.2f} / {1 - self.ratio_tT:.2f}"
        yield f"  Task:                    {self.proc_expo}"
        yield f"  Ratio anomalous/normal:  {self.anomalous_ratio:.3f}"
        yield f"  Lag window T_lag:        {self.T_lag}"
        yield f"  Feature set:             {self.feature_set}"
        yield f"  Trees:                   {self.n_estimators}"
        yield f"  Trajectory cache:        {self.path_trajectories or 'disabled'}"


def print_config_summary(config: Optional[BenchmarkConfig] = None) -> None:
    """Print the configuration in the console banner style."""
    config = config or BenchmarkConfig()
    print("=" * 80)
    print("RF TRAJECTORY BENCHMARK - CONFIGURATION")
    print("=" * 80)
    for line in config.summary_lines():
        print(line)
    print("\nMODEL EXPONENT LIMITS:")
    for model in available_models():
        low, high = exponent_limits(model)
        print(f"  {model:6s}: alpha in {low} - {high}")
    print("=" * 80 + "\n")


if __name__ == "__main__":
    print_config_summary()
