"""Balanced dataset construction for the RF trajectory benchmark.

The :func:`build_dataset` function generates the same number of trajectories
for every (model, alpha) bucket, converts them to feature vectors and splits
every bucket on its own into training and test rows. Labels are kept numeric
throughout:

* discrimination - index of the generating model in ``class_names``
* anomalous      - 0 ("normal") for alpha == 1, 1 ("anomalous") otherwise
* regression     - the anomalous exponent as float

:func:`label_to_text` and :func:`text_to_label` provide the canonical textual
form of a label (used for cache files and reports); decoding the text always
returns the exact value that was encoded.

Every bucket draws from its own random generator seeded from
``(random_seed, model, alpha)``, which makes the dataset independent of the
order in which buckets are produced and allows them to be generated in
parallel or loaded from the trajectory cache.
"""
from __future__ import annotations

import json
import time
import zlib
from dataclasses import dataclass, field
from multiprocessing import Pool, cpu_count
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from config_rftraj import ANOMALY_CLASSES, BenchmarkConfig, is_normal_exponent, split_count, validate_parameters
from rftraj_errors import ConfigurationError
from rftraj_feature_extractor import TrajectoryFeatureExtractor
from rftraj_trajectory_generator import generate_trajectory, generate_trajectory_set

ArrayLike = np.ndarray
Bucket = Tuple[str, float]


@dataclass
class DatasetBundle:
    """Feature matrices, numeric labels and bucket bookkeeping of one run."""

    X_train: ArrayLike
    y_train: ArrayLike
    X_test: ArrayLike
    y_test: ArrayLike
    bucket_train: ArrayLike
    bucket_test: ArrayLike
    buckets: List[Bucket]
    class_names: List[str]
    exponent_grid: List[float]
    task_mode: str
    feature_names: List[str]
    metadata: Dict[str, object] = field(default_factory=dict)

    def as_arrays(self) -> Tuple[ArrayLike, ArrayLike, ArrayLike, ArrayLike]:
        return self.X_train, self.y_train, self.X_test, self.y_test

    @property
    def n_train(self) -> int:
        return int(len(self.y_train))

    @property
    def n_test(self) -> int:
        return int(len(self.y_test))

    def bucket_counts(self, split: str = "train") -> Dict[Bucket, int]:
        """Number of rows per (model, alpha) bucket in ``split``."""
        indices = self._split(split)[1]
        counts = np.bincount(indices.astype(int), minlength=len(self.buckets))
        return {bucket: int(count) for bucket, count in zip(self.buckets, counts)}

    def text_labels(self, split: str = "train") -> List[str]:
        labels = self._split(split)[0]
        return [label_to_text(label, self.task_mode, self.class_names) for label in labels]

    def _split(self, split: str) -> Tuple[ArrayLike, ArrayLike]:
        if split == "train":
            return self.y_train, self.bucket_train
        if split == "test":
            return self.y_test, self.bucket_test
        raise ValueError(f"split must be 'train' or 'test', got {split!r}")


# ----------------------------------------------------------------------
# Label codec
# ----------------------------------------------------------------------
def label_to_text(label: object, task_mode: str, class_names: Optional[Sequence[str]] = None) -> str:
    """Canonical textual representation of a numeric label."""
    if task_mode == "regression":
        # repr() of a float is the shortest string that parses back to it
        return repr(float(label))
    if class_names is None:
        raise ValueError("class_names are required to encode class labels")
    return str(class_names[int(label)])


def text_to_label(text: str, task_mode: str, class_names: Optional[Sequence[str]] = None):
    """Inverse of :func:`label_to_text`."""
    if task_mode == "regression":
        return float(text)
    if class_names is None:
        raise ValueError("class_names are required to decode class labels")
    try:
        return list(class_names).index(str(text))
    except ValueError:
        raise ValueError(f"unknown class label {text!r}, expected one of {list(class_names)}") from None


# ----------------------------------------------------------------------
# Dataset construction
# ----------------------------------------------------------------------
def build_dataset(
    num_per_class: int,
    exponent_grid: Sequence[float],
    models: Sequence[str],
    t_max: int,
    anomalous_ratio: Optional[float] = None,
    task_mode: str = "regression",
    lag_window: int = 0,
    split_ratio: float = 0.8,
    *,
    feature_set: str = "raw",
    random_seed: int = 42,
    n_jobs: int = 1,
    cache_dir: Optional[str | Path] = None,
    generator: Callable[..., np.ndarray] = generate_trajectory,
    verbose: bool = False,
) -> DatasetBundle:
    """
    Generate, featurise, label and split a balanced trajectory dataset

    Args:
        num_per_class: trajectories per (model, alpha) bucket
        exponent_grid: anomalous exponents
        models: diffusion model identifiers
        t_max: trajectory length
        anomalous_ratio: informational, buckets are always balanced
        task_mode: "discrimination", "anomalous" or "regression"
        lag_window: displacement window of the feature extractor
        split_ratio: training fraction of every bucket, in (0, 1)
        feature_set: "raw" or "physics"
        random_seed: seed of the whole dataset
        n_jobs: worker processes for trajectory generation
        cache_dir: directory for cached trajectories, None disables the cache
        generator: callable ``(model, alpha, t_max, rng) -> positions``
        verbose: print progress

    Returns:
        DatasetBundle

    Raises:
        ConfigurationError: before anything is generated
        InvalidTrajectory: if the generator returns malformed trajectories
    """
    validate_parameters(
        num_per_class=num_per_class,
        exponent_grid=exponent_grid,
        models=models,
        t_max=t_max,
        task_mode=task_mode,
        lag_window=lag_window,
        split_ratio=split_ratio,
        anomalous_ratio=anomalous_ratio,
        feature_set=feature_set,
        n_jobs=n_jobs,
    )
    if int(random_seed) < 0:
        raise ConfigurationError(f"random seed must be >= 0, got {random_seed}", parameter="random_seed")

    num_per_class = int(num_per_class)
    t_max = int(t_max)
    models = [str(m) for m in models]
    exponent_grid = [float(a) for a in exponent_grid]
    buckets: List[Bucket] = [(model, alpha) for model in models for alpha in exponent_grid]
    extractor = TrajectoryFeatureExtractor(lag_window=lag_window, feature_set=feature_set)
    feature_names = extractor.feature_names(t_max)

    if verbose:
        print("=" * 80)
        print("DATASET GENERATION")
        print("=" * 80)
        print(f"Models: {', '.join(models)}")
        print(f"Alpha grid: {', '.join(f'{a:g}' for a in exponent_grid)}")
        print(f"Trajectories per bucket: {num_per_class} x {len(buckets)} buckets, t_max={t_max}")
        print(f"Task: {task_mode}, split {split_ratio:.2f}/{1 - split_ratio:.2f}, T_lag={lag_window}")
        print("=" * 80)

    started = time.perf_counter()
    X_train: List[ArrayLike] = []
    X_test: List[ArrayLike] = []
    y_train: List[ArrayLike] = []
    y_test: List[ArrayLike] = []
    b_train: List[ArrayLike] = []
    b_test: List[ArrayLike] = []

    n_train_per_bucket = split_count(num_per_class, split_ratio)
    bucket_stream = _bucket_trajectories(
        buckets,
        num_per_class,
        t_max,
        random_seed,
        generator=generator,
        n_jobs=n_jobs,
        cache_dir=cache_dir,
        verbose=verbose,
    )
    for index, (bucket, trajectories, split_seq) in enumerate(bucket_stream):
        model, alpha = bucket
        features = extractor.extract_batch(trajectories)
        del trajectories

        label = bucket_label(model, alpha, task_mode, models)
        order = np.random.default_rng(split_seq).permutation(num_per_class)
        train_idx = order[:n_train_per_bucket]
        test_idx = order[n_train_per_bucket:]

        X_train.append(features[train_idx])
        X_test.append(features[test_idx])
        y_train.append(np.full(len(train_idx), label))
        y_test.append(np.full(len(test_idx), label))
        b_train.append(np.full(len(train_idx), index, dtype=int))
        b_test.append(np.full(len(test_idx), index, dtype=int))

    label_dtype = float if task_mode == "regression" else int
    n_features = len(feature_names)
    bundle = DatasetBundle(
        X_train=_stack(X_train, n_features),
        y_train=np.concatenate(y_train).astype(label_dtype),
        X_test=_stack(X_test, n_features),
        y_test=np.concatenate(y_test).astype(label_dtype),
        bucket_train=np.concatenate(b_train),
        bucket_test=np.concatenate(b_test),
        buckets=buckets,
        class_names=class_names_for(task_mode, models),
        exponent_grid=exponent_grid,
        task_mode=task_mode,
        feature_names=feature_names,
    )
    bundle.metadata = {
        "models": list(models),
        "exponent_grid": exponent_grid,
        "t_max": t_max,
        "num_per_class": num_per_class,
        "task_mode": task_mode,
        "class_names": bundle.class_names,
        "lag_window": int(lag_window),
        "feature_set": feature_set,
        "split_ratio": float(split_ratio),
        "random_seed": int(random_seed),
        "n_features": n_features,
        "n_train": bundle.n_train,
        "n_test": bundle.n_test,
        "total_samples": num_per_class * len(buckets),
        "generation_seconds": round(time.perf_counter() - started, 3),
    }

    if verbose:
        print("=" * 80)
        print(f"Dataset ready: train={bundle.n_train}, test={bundle.n_test}, features={n_features}")
        print("=" * 80 + "\n")
    return bundle


def build_from_config(
    config: BenchmarkConfig,
    *,
    generator: Callable[..., np.ndarray] = generate_trajectory,
    verbose: bool = False,
) -> DatasetBundle:
    """Build the dataset described by a validated :class:`BenchmarkConfig`."""
    config.validate()
    return build_dataset(
        config.num_traj,
        config.alpha_range,
        config.processes,
        config.t_max,
        anomalous_ratio=config.ratio_aN,
        task_mode=config.proc_expo,
        lag_window=config.T_lag,
        split_ratio=config.ratio_tT,
        feature_set=config.feature_set,
        random_seed=config.random_seed,
        n_jobs=config.n_jobs,
        cache_dir=config.path_trajectories,
        generator=generator,
        verbose=verbose,
    )


def bucket_label(model: str, alpha: float, task_mode: str, models: Sequence[str]):
    """Numeric label of every trajectory in the (model, alpha) bucket."""
    if task_mode == "discrimination":
        return list(models).index(model)
    if task_mode == "anomalous":
        return 0 if is_normal_exponent(alpha) else 1
    return float(alpha)


def class_names_for(task_mode: str, models: Sequence[str]) -> List[str]:
    """Display names of the class indices of a classification task."""
    if task_mode == "anomalous":
        return list(ANOMALY_CLASSES)
    return list(models)


def bucket_seed_sequence(random_seed: int, model: str, alpha: float) -> np.random.SeedSequence:
    """Seed of one bucket, a function of the bucket identity only."""
    return np.random.SeedSequence(
        [int(random_seed), zlib.crc32(model.encode("utf-8")), zlib.crc32(repr(float(alpha)).encode("utf-8"))]
    )


# ----------------------------------------------------------------------
# Internal helpers
# ----------------------------------------------------------------------
def _generate_bucket(task: Tuple[str, float, int, int, np.random.SeedSequence, Callable]) -> ArrayLike:
    model, alpha, n_trajectories, t_max, seed_seq, generator = task
    rng = np.random.default_rng(seed_seq)
    return generate_trajectory_set(model, alpha, n_trajectories, t_max, rng, generator=generator)


def _bucket_trajectories(
    buckets: Sequence[Bucket],
    num_per_class: int,
    t_max: int,
    random_seed: int,
    *,
    generator: Callable[..., np.ndarray],
    n_jobs: int,
    cache_dir: Optional[str | Path],
    verbose: bool,
) -> Iterator[Tuple[Bucket, ArrayLike, np.random.SeedSequence]]:
    """Yield ``(bucket, trajectories, split_seed)`` in bucket order."""
    cache_path = Path(cache_dir).expanduser() if cache_dir else None
    if cache_path is not None:
        cache_path.mkdir(parents=True, exist_ok=True)

    tasks = []
    split_seeds = []
    for model, alpha in buckets:
        generation_seq, split_seq = bucket_seed_sequence(random_seed, model, alpha).spawn(2)
        tasks.append((model, alpha, num_per_class, t_max, generation_seq, generator))
        split_seeds.append(split_seq)

    signatures = [_bucket_signature(model, alpha, num_per_class, t_max, random_seed, generator) for model, alpha in buckets]
    files = [_cache_file(cache_path, sig) if cache_path else None for sig in signatures]

    cached: Dict[int, ArrayLike] = {}
    for index, path in enumerate(files):
        if path is not None and path.is_file():
            trajectories = _load_cached_bucket(path, signatures[index])
            if trajectories is not None:
                cached[index] = trajectories

    missing = [index for index in range(len(buckets)) if index not in cached]
    workers = max(1, cpu_count() - 1) if n_jobs == -1 else max(1, int(n_jobs))
    generated: Dict[int, ArrayLike] = {}
    if workers > 1 and len(missing) > 1:
        if verbose:
            print(f"Generating {len(missing)} buckets with {workers} processes...")
        with Pool(processes=min(workers, len(missing))) as pool:
            results = pool.map(_generate_bucket, [tasks[index] for index in missing])
        generated = dict(zip(missing, results))

    for index, bucket in enumerate(buckets):
        model, alpha = bucket
        source = "cache"
        if index in cached:
            trajectories = cached.pop(index)
        else:
            source = "generated"
            trajectories = generated.pop(index) if index in generated else _generate_bucket(tasks[index])
            if files[index] is not None:
                _store_cached_bucket(files[index], trajectories, signatures[index])
        if verbose:
            print(f"[{index + 1}/{len(buckets)}] {model} alpha={alpha:g}: {len(trajectories)} trajectories ({source})")
        yield bucket, trajectories, split_seeds[index]


def _bucket_signature(
    model: str,
    alpha: float,
    num_per_class: int,
    t_max: int,
    random_seed: int,
    generator: Callable,
) -> Dict[str, object]:
    return {
        "model": model,
        "alpha": label_to_text(alpha, "regression"),
        "t_max": int(t_max),
        "n_trajectories": int(num_per_class),
        "random_seed": int(random_seed),
        "generator": f"{getattr(generator, '__module__', '')}.{getattr(generator, '__qualname__', repr(generator))}",
    }


def _cache_file(cache_dir: Path, signature: Dict[str, object]) -> Path:
    return cache_dir / (
        f"{signature['model']}_alpha{signature['alpha']}_T{signature['t_max']}"
        f"_N{signature['n_trajectories']}_seed{signature['random_seed']}.npz"
    )


def _load_cached_bucket(path: Path, expected: Dict[str, object]) -> Optional[ArrayLike]:
    try:
        with np.load(path, allow_pickle=False) as data:
            stored = json.loads(str(data["metadata"]))
            trajectories = np.asarray(data["trajectories"], dtype=float)
    except (OSError, KeyError, ValueError):
        return None
    if stored != expected:
        return None
    if trajectories.shape != (expected["n_trajectories"], expected["t_max"]):
        return None
    return trajectories


def _store_cached_bucket(path: Path, trajectories: ArrayLike, signature: Dict[str, object]) -> None:
    np.savez_compressed(path, trajectories=trajectories, metadata=np.array(json.dumps(signature)))


def _stack(parts: List[ArrayLike], n_features: int) -> ArrayLike:
    non_empty = [part for part in parts if len(part)]
    if not non_empty:
        return np.zeros((0, n_features))
    return np.vstack(non_empty)
