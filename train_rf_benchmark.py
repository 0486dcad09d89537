"""End-to-end random forest benchmark on simulated anomalous diffusion.

:class:`RFTrajectoryBenchmark` ties the pipeline together:

    build dataset -> fit forest -> evaluate on the held-out split -> report

A run either discriminates the generating model, separates normal from
anomalous diffusion (both: confusion matrix and accuracy) or regresses the
anomalous exponent (MSE, MAE and an error histogram). The report, a JSON
file with metrics and configuration plus one PNG chart, is written to
``output_dir/run_<timestamp>/``.

Run ``rftraj-benchmark --help`` (or ``python train_rf_benchmark.py --help``)
for the command line options.
"""
from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import numpy as np

from config_rftraj import (
    ALPHA_RANGE,
    BenchmarkConfig,
    PATH_TRAJECTORIES,
    TASK_MODES,
    print_config_summary,
)
from rftraj_dataset import DatasetBundle, build_from_config
from rftraj_errors import BenchmarkError
from rftraj_evaluator import (
    ClassificationResult,
    EvaluationResult,
    RegressionResult,
    evaluate,
    plot_confusion_matrix,
    plot_error_histogram,
)
from rftraj_feature_extractor import FEATURE_SETS
from rftraj_trainer import ForestTrainer, make_trainer
from rftraj_trajectory_generator import available_models, generate_trajectory


class RFTrajectoryBenchmark:
    """Random forest benchmark for one :class:`BenchmarkConfig`."""

    def __init__(
        self,
        config: Optional[BenchmarkConfig] = None,
        *,
        generator: Callable[..., np.ndarray] = generate_trajectory,
    ) -> None:
        self.config = (config or BenchmarkConfig()).validate()
        self.generator = generator
        self.output_dir = self.config.output_dir

        self.dataset: Optional[DatasetBundle] = None
        self.trainer: Optional[ForestTrainer] = None
        self.result: Optional[EvaluationResult] = None

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def generate_training_data(self, *, verbose: bool = True) -> DatasetBundle:
        self.dataset = build_from_config(self.config, generator=self.generator, verbose=verbose)
        return self.dataset

    def train(self, *, verbose: bool = True) -> ForestTrainer:
        if self.dataset is None:
            raise RuntimeError("Generate the dataset with generate_training_data() before training.")
        if verbose:
            kind = "regressor" if self.dataset.task_mode == "regression" else "classifier"
            print(f"Training random forest {kind} with {self.config.n_estimators} trees "
                  f"on {self.dataset.n_train} trajectories...")
        trainer = make_trainer(
            self.dataset.task_mode,
            n_estimators=self.config.n_estimators,
            random_state=self.config.random_seed,
            n_jobs=self.config.n_jobs,
        )
        self.trainer = trainer.fit(self.dataset.X_train, self.dataset.y_train, verbose=verbose)
        return self.trainer

    def evaluate(self, *, verbose: bool = True) -> EvaluationResult:
        if self.dataset is None or self.trainer is None:
            raise RuntimeError("Nothing to evaluate - run generate_training_data() and train() first.")
        dataset = self.dataset
        class_labels = None if dataset.task_mode == "regression" else list(range(len(dataset.class_names)))
        self.result = evaluate(
            self.trainer,
            dataset.X_test,
            dataset.y_test,
            dataset.task_mode,
            dataset.exponent_grid,
            class_labels=class_labels,
            class_names=dataset.class_names if class_labels is not None else None,
        )

        if verbose:
            print("=" * 80)
            print("EVALUATION")
            print("=" * 80)
            if isinstance(self.result, ClassificationResult):
                print("Confusion matrix (rows: true, columns: predicted):")
                print(f"  classes: {', '.join(dataset.class_names)}")
                print(self.result.confusion_matrix)
            else:
                print("Error histogram (normalised):")
                for low, high, mass in zip(self.result.bin_edges[:-1], self.result.bin_edges[1:], self.result.histogram):
                    print(f"  [{low:.3f}, {high:.3f}): {mass:.3f}")
            print(self.result.summary())
            print("=" * 80)
        return self.result

    def save_report(self, *, verbose: bool = True) -> Path:
        """Write metrics, configuration and the chart of the last evaluation."""
        if self.result is None or self.dataset is None:
            raise RuntimeError("Evaluate the forest before calling save_report().")

        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        target_dir = self.output_dir / f"run_{timestamp}"
        target_dir.mkdir(parents=True, exist_ok=True)

        report = {
            "config": self.config.signature(),
            "dataset": self.dataset.metadata,
            "metrics": self.result.to_dict(),
            "training_seconds": self.trainer.training_seconds if self.trainer else None,
            "oob_score": self.trainer.oob_score if self.trainer else None,
        }
        metrics_path = target_dir / "metrics.json"
        with open(metrics_path, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, default=_json_converter)

        if isinstance(self.result, RegressionResult):
            plot_error_histogram(self.result, target_dir / "error_histogram.png")
        else:
            plot_confusion_matrix(self.result, self.dataset.class_names, target_dir / "confusion_matrix.png")

        if verbose:
            print(f"Report saved to {target_dir}")
        return target_dir

    # ------------------------------------------------------------------
    # Convenience orchestration
    # ------------------------------------------------------------------
    def run_complete_benchmark(self, *, save: bool = True, verbose: bool = True) -> EvaluationResult:
        if verbose:
            print_config_summary(self.config)
        self.generate_training_data(verbose=verbose)
        self.train(verbose=verbose)
        result = self.evaluate(verbose=verbose)
        if save:
            self.save_report(verbose=verbose)
        return result


def _json_converter(obj):
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serialisable")


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------
def _float_list(text: str) -> List[float]:
    """Comma separated exponents, or a ``start:step:stop`` range (stop inclusive)."""
    text = text.strip()
    try:
        if ":" in text:
            start, step, stop = (float(part) for part in text.split(":"))
            if step <= 0:
                raise ValueError("step must be positive")
            values = np.arange(start, stop + step / 2.0, step)
            return [float(v) for v in np.round(values, 10)]
        return [float(part) for part in text.split(",") if part.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid alpha range {text!r}: {exc}") from exc


def _model_list(text: str) -> List[str]:
    return [part.strip().lower() for part in text.split(",") if part.strip()]


def build_parser() -> argparse.ArgumentParser:
    defaults = BenchmarkConfig()
    parser = argparse.ArgumentParser(
        description="Benchmark a random forest on simulated anomalous diffusion trajectories"
    )
    parser.add_argument("--t-max", type=int, help=f"trajectory length (default {defaults.t_max})")
    parser.add_argument("--num-traj", type=int, help=f"trajectories per (model, alpha) (default {defaults.num_traj})")
    parser.add_argument(
        "--processes",
        type=_model_list,
        help=f"comma separated diffusion models out of {', '.join(available_models())} (default {','.join(defaults.processes)})",
    )
    parser.add_argument(
        "--alpha-range",
        type=_float_list,
        help=f"exponents as 'a,b,c' or 'start:step:stop' (default {ALPHA_RANGE[0]}:0.1:{ALPHA_RANGE[-1]})",
    )
    parser.add_argument("--ratio-tt", type=float, help=f"training fraction per bucket (default {defaults.ratio_tT})")
    parser.add_argument("--task", choices=TASK_MODES, help=f"what the forest predicts (default {defaults.proc_expo})")
    parser.add_argument("--ratio-an", type=float, help="anomalous/normal ratio, informational only")
    parser.add_argument("--t-lag", type=int, help=f"displacement lag window, 0 keeps positions (default {defaults.T_lag})")
    parser.add_argument("--feature-set", choices=FEATURE_SETS, help=f"feature schema (default {defaults.feature_set})")
    parser.add_argument("--path-trajectories", type=Path, help=f"trajectory cache directory, e.g. {PATH_TRAJECTORIES}")
    parser.add_argument("--n-estimators", type=int, help=f"trees in the forest (default {defaults.n_estimators})")
    parser.add_argument("--n-jobs", type=int, help="worker processes for generation and forest threads, -1 for all cores")
    parser.add_argument("--seed", type=int, help=f"random seed (default {defaults.random_seed})")
    parser.add_argument("--output-dir", type=Path, help=f"report directory (default {defaults.output_dir})")
    parser.add_argument("--no-report", action="store_true", help="do not write metrics and chart files")
    parser.add_argument("--quiet", action="store_true", help="only print the final summary")
    return parser


def config_from_args(args: argparse.Namespace) -> BenchmarkConfig:
    return BenchmarkConfig().with_overrides(
        t_max=args.t_max,
        num_traj=args.num_traj,
        processes=tuple(args.processes) if args.processes is not None else None,
        alpha_range=tuple(args.alpha_range) if args.alpha_range is not None else None,
        ratio_tT=args.ratio_tt,
        proc_expo=args.task,
        ratio_aN=args.ratio_an,
        T_lag=args.t_lag,
        feature_set=args.feature_set,
        path_trajectories=args.path_trajectories,
        n_estimators=args.n_estimators,
        n_jobs=args.n_jobs,
        random_seed=args.seed,
        output_dir=args.output_dir,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    verbose = not args.quiet
    try:
        benchmark = RFTrajectoryBenchmark(config_from_args(args))
        result = benchmark.run_complete_benchmark(save=not args.no_report, verbose=verbose)
    except BenchmarkError as exc:
        print(f"Benchmark aborted: {exc}", file=sys.stderr)
        return 1

    if not verbose:
        print(result.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
