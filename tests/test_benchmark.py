"""End-to-end tests of the benchmark driver and its command line."""

from __future__ import annotations

import json
import warnings

import numpy as np
import pytest

from config_rftraj import ALPHA_RANGE, BenchmarkConfig, balanced_anomalous_ratio
from rftraj_errors import ConfigurationError
from rftraj_evaluator import ClassificationResult, RegressionResult
from train_rf_benchmark import RFTrajectoryBenchmark, _float_list, build_parser, config_from_args, main


class TestBenchmarkConfig:

    def test_defaults(self):
        config = BenchmarkConfig()
        assert config.processes == ("fbm",)
        assert config.alpha_range == ALPHA_RANGE
        assert len(ALPHA_RANGE) == 11
        assert config.anomalous_ratio == pytest.approx(1 / 11)
        assert config.is_regression

    def test_normalisation(self):
        config = BenchmarkConfig(processes=[" FBM ", "sbm"], alpha_range=[1, 2 // 2], proc_expo="Discrimination")
        assert config.processes == ("fbm", "sbm")
        assert config.alpha_range == (1.0, 1.0)
        assert config.proc_expo == "discrimination"

    def test_frozen(self):
        with pytest.raises(AttributeError):
            BenchmarkConfig().t_max = 5

    def test_overrides_ignore_none(self):
        config = BenchmarkConfig().with_overrides(t_max=64, num_traj=None)
        assert config.t_max == 64
        assert config.num_traj == BenchmarkConfig().num_traj

    def test_signature_is_json(self, small_config):
        payload = json.loads(json.dumps(small_config.signature()))
        assert payload["alpha_range"] == [0.5, 1.0, 1.5]
        assert payload["path_trajectories"] is None

    def test_validate_trees(self):
        with pytest.raises(ConfigurationError) as exc_info:
            BenchmarkConfig(n_estimators=0).validate()
        assert exc_info.value.parameter == "n_estimators"

    @pytest.mark.parametrize("n_jobs", [0, -2, 1.5, "2"])
    def test_validate_workers(self, n_jobs):
        with pytest.raises(ConfigurationError) as exc_info:
            BenchmarkConfig(n_jobs=n_jobs).validate()
        assert exc_info.value.parameter == "n_jobs"

    @pytest.mark.parametrize("overrides,parameter", [({"num_traj": 10.5}, "num_traj"), ({"t_max": 32.5}, "t_max")])
    def test_validate_integral_sizes(self, small_config, overrides, parameter):
        with pytest.raises(ConfigurationError) as exc_info:
            small_config.with_overrides(**overrides).validate()
        assert exc_info.value.parameter == parameter

    def test_validate_split_leaves_test_rows(self, small_config):
        with pytest.raises(ConfigurationError) as exc_info:
            small_config.with_overrides(num_traj=1).validate()
        assert exc_info.value.parameter == "ratio_tT"
        assert "training and test rows" in str(exc_info.value)

    def test_unbalanced_ratio_warns(self, small_config):
        with pytest.warns(UserWarning, match="ratio_aN"):
            small_config.with_overrides(ratio_aN=0.5).validate()

    def test_balanced_ratio_silent(self, small_config):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            small_config.with_overrides(ratio_aN=balanced_anomalous_ratio((0.5, 1.0, 1.5))).validate()


class TestRFTrajectoryBenchmark:

    def test_regression_run(self, small_config):
        benchmark = RFTrajectoryBenchmark(small_config)
        result = benchmark.run_complete_benchmark(verbose=False)

        assert isinstance(result, RegressionResult)
        assert benchmark.dataset.n_train == 24
        assert benchmark.dataset.n_test == 6
        assert len(result.histogram) == 3
        assert result.histogram.sum() == pytest.approx(1.0)
        assert result.mse >= 0.0

        run_dirs = list(small_config.output_dir.glob("run_*"))
        assert len(run_dirs) == 1
        assert (run_dirs[0] / "error_histogram.png").is_file()
        with open(run_dirs[0] / "metrics.json", encoding="utf-8") as f:
            report = json.load(f)
        assert report["metrics"]["mse"] == pytest.approx(result.mse)
        assert report["dataset"]["n_train"] == 24
        assert report["config"]["processes"] == ["fbm"]

    def test_discrimination_run(self, small_config):
        config = small_config.with_overrides(processes=("fbm", "sbm"), proc_expo="discrimination")
        benchmark = RFTrajectoryBenchmark(config)
        result = benchmark.run_complete_benchmark(verbose=False)

        assert isinstance(result, ClassificationResult)
        assert result.confusion_matrix.shape == (2, 2)
        assert result.confusion_matrix.sum() == benchmark.dataset.n_test == 12
        assert 0.0 <= result.accuracy <= 1.0
        assert set(result.per_class_accuracy) == {"fbm", "sbm"}
        run_dir = next(config.output_dir.glob("run_*"))
        assert (run_dir / "confusion_matrix.png").is_file()

    def test_anomalous_run(self, small_config):
        config = small_config.with_overrides(processes=("fbm", "sbm"), proc_expo="anomalous")
        benchmark = RFTrajectoryBenchmark(config)
        result = benchmark.run_complete_benchmark(verbose=False)

        assert isinstance(result, ClassificationResult)
        assert result.task_mode == "anomalous"
        assert result.confusion_matrix.shape == (2, 2)
        assert result.confusion_matrix.sum() == benchmark.dataset.n_test == 12
        # one normal bucket per model, two anomalous ones
        assert result.confusion_matrix.sum(axis=1).tolist() == [4, 8]
        assert set(result.per_class_accuracy) == {"normal", "anomalous"}
        assert "anomalous diffusion detecting" in result.summary()
        assert benchmark.dataset.bucket_counts("train") == {
            (model, alpha): 8 for model in ("fbm", "sbm") for alpha in (0.5, 1.0, 1.5)
        }
        run_dir = next(config.output_dir.glob("run_*"))
        with open(run_dir / "metrics.json", encoding="utf-8") as f:
            assert json.load(f)["metrics"]["task_mode"] == "anomalous"

    def test_verbose_summary(self, small_config, capsys):
        RFTrajectoryBenchmark(small_config).run_complete_benchmark(save=False, verbose=True)
        out = capsys.readouterr().out
        assert "RF TRAJECTORY BENCHMARK - CONFIGURATION" in out
        assert "Training has taken" in out
        assert "mean absolute error" in out

    def test_invalid_config_rejected_upfront(self, small_config):
        with pytest.raises(ConfigurationError):
            RFTrajectoryBenchmark(small_config.with_overrides(ratio_tT=1.5))

    def test_invalid_workers_rejected_before_generation(self, small_config):
        calls = []

        def counting(model, alpha, t_max, rng):
            calls.append(model)
            return np.zeros(t_max + 1)

        with pytest.raises(ConfigurationError) as exc_info:
            RFTrajectoryBenchmark(small_config.with_overrides(n_jobs=0), generator=counting).run_complete_benchmark(
                verbose=False
            )
        assert exc_info.value.parameter == "n_jobs"
        assert calls == []
        assert not small_config.output_dir.exists()

    def test_stage_order(self, small_config):
        benchmark = RFTrajectoryBenchmark(small_config)
        with pytest.raises(RuntimeError):
            benchmark.train(verbose=False)
        with pytest.raises(RuntimeError):
            benchmark.evaluate(verbose=False)
        with pytest.raises(RuntimeError):
            benchmark.save_report(verbose=False)

    def test_reproducible(self, small_config):
        a = RFTrajectoryBenchmark(small_config).run_complete_benchmark(save=False, verbose=False)
        b = RFTrajectoryBenchmark(small_config).run_complete_benchmark(save=False, verbose=False)
        np.testing.assert_array_equal(a.predictions, b.predictions)


class TestCommandLine:

    ARGS = ["--t-max", "32", "--num-traj", "10", "--alpha-range", "0.5,1.0,1.5", "--n-estimators", "5"]

    def test_success(self, tmp_path, capsys):
        code = main(self.ARGS + ["--output-dir", str(tmp_path), "--quiet"])
        assert code == 0
        assert "mean absolute error" in capsys.readouterr().out
        assert len(list(tmp_path.glob("run_*/metrics.json"))) == 1

    def test_no_report(self, tmp_path):
        assert main(self.ARGS + ["--output-dir", str(tmp_path), "--quiet", "--no-report"]) == 0
        assert not list(tmp_path.glob("run_*"))

    def test_configuration_error_exit_code(self, tmp_path, capsys):
        code = main(self.ARGS + ["--ratio-tt", "1.5", "--output-dir", str(tmp_path), "--quiet"])
        captured = capsys.readouterr()
        assert code == 1
        assert "ratio_tT" in captured.err
        assert "[configuration]" in captured.err

    def test_discrimination_flags(self, tmp_path):
        args = build_parser().parse_args(
            ["--task", "discrimination", "--processes", "fbm,SBM", "--t-lag", "2", "--output-dir", str(tmp_path)]
        )
        config = config_from_args(args)
        assert config.proc_expo == "discrimination"
        assert config.processes == ("fbm", "sbm")
        assert config.T_lag == 2
        assert config.t_max == BenchmarkConfig().t_max

    def test_anomalous_flag(self, tmp_path):
        args = build_parser().parse_args(["--task", "anomalous", "--output-dir", str(tmp_path)])
        assert config_from_args(args).proc_expo == "anomalous"

    def test_cache_flag(self, tmp_path):
        args = build_parser().parse_args(["--path-trajectories", str(tmp_path / "trajs")])
        assert config_from_args(args).path_trajectories == tmp_path / "trajs"

    def test_start_step_stop_range(self):
        assert _float_list("0.5:0.5:1.5") == [0.5, 1.0, 1.5]
        assert _float_list("0.5:0.1:0.8") == [0.5, 0.6, 0.7, 0.8]
