"""Tests for the anomalous diffusion trajectory generators."""

from __future__ import annotations

import numpy as np
import pytest

from rftraj_errors import ConfigurationError, InvalidTrajectory
from rftraj_trajectory_generator import (
    available_models,
    exponent_limits,
    generate_fgn_davies_harte,
    generate_trajectory,
    generate_trajectory_set,
    supports_exponent,
)


def _ensemble_slope(trajectories: np.ndarray, t_short: int, t_long: int) -> float:
    msd_short = np.mean(trajectories[:, t_short] ** 2)
    msd_long = np.mean(trajectories[:, t_long] ** 2)
    return float(np.log(msd_long / msd_short) / np.log(t_long / t_short))


def _time_averaged_slope(trajectories: np.ndarray, lag_short: int, lag_long: int) -> float:
    """Slope of the time averaged MSD, pooled over trajectories and origins."""
    tamsd_short = np.mean((trajectories[:, lag_short:] - trajectories[:, :-lag_short]) ** 2)
    tamsd_long = np.mean((trajectories[:, lag_long:] - trajectories[:, :-lag_long]) ** 2)
    return float(np.log(tamsd_long / tamsd_short) / np.log(lag_long / lag_short))


class TestGenerateTrajectory:

    @pytest.mark.parametrize("model,alpha", [("fbm", 0.7), ("sbm", 1.3), ("ctrw", 0.6), ("lw", 1.5)])
    def test_length_and_origin(self, model, alpha, rng):
        traj = generate_trajectory(model, alpha, 64, rng)
        assert traj.shape == (64,)
        assert traj[0] == 0.0
        assert np.all(np.isfinite(traj))

    @pytest.mark.parametrize("model", ["fbm", "sbm", "ctrw", "lw"])
    def test_single_position(self, model):
        low, high = exponent_limits(model)
        alpha = 1.0 if supports_exponent(model, 1.0) else low
        traj = generate_trajectory(model, alpha, 1, np.random.default_rng(3))
        np.testing.assert_array_equal(traj, [0.0])

    def test_same_seed_same_trajectory(self):
        a = generate_trajectory("fbm", 0.8, 100, np.random.default_rng(11))
        b = generate_trajectory("fbm", 0.8, 100, np.random.default_rng(11))
        np.testing.assert_array_equal(a, b)

    def test_unknown_model(self, rng):
        with pytest.raises(ConfigurationError, match="unknown diffusion model"):
            generate_trajectory("attm", 0.5, 10, rng)

    def test_unsupported_exponent(self, rng):
        with pytest.raises(ConfigurationError) as exc_info:
            generate_trajectory("ctrw", 1.5, 10, rng)
        assert exc_info.value.parameter == "alpha_range"

    def test_non_positive_length(self, rng):
        with pytest.raises(ConfigurationError):
            generate_trajectory("fbm", 1.0, 0, rng)

    def test_lw_is_unit_speed(self, rng):
        traj = generate_trajectory("lw", 1.5, 200, rng)
        assert np.all(np.abs(np.diff(traj)) <= 1.0 + 1e-9)


class TestModelRegistry:

    def test_models(self):
        assert available_models() == ["fbm", "sbm", "ctrw", "lw"]

    def test_fbm_bounds_are_exclusive(self):
        assert not supports_exponent("fbm", 0.0)
        assert not supports_exponent("fbm", 2.0)
        assert supports_exponent("fbm", 1.999)

    def test_ctrw_includes_one(self):
        assert supports_exponent("ctrw", 1.0)
        assert not supports_exponent("ctrw", 1.1)

    def test_lw_includes_one(self):
        assert supports_exponent("lw", 1.0)
        assert not supports_exponent("lw", 0.9)

    def test_limits(self):
        assert exponent_limits("lw") == (1.0, 2.0)


class TestScaling:
    """MSD of every model grows as t^alpha."""

    @pytest.mark.parametrize("alpha", [0.5, 1.0, 1.5])
    def test_fbm_ensemble_exponent(self, alpha):
        trajs = generate_trajectory_set("fbm", alpha, 600, 128, np.random.default_rng(5))
        assert _ensemble_slope(trajs, 10, 100) == pytest.approx(alpha, abs=0.2)

    @pytest.mark.parametrize("alpha", [0.5, 1.5])
    def test_sbm_ensemble_exponent(self, alpha):
        trajs = generate_trajectory_set("sbm", alpha, 600, 128, np.random.default_rng(6))
        assert _ensemble_slope(trajs, 10, 100) == pytest.approx(alpha, abs=0.2)

    def test_ctrw_subdiffusive_exponent(self):
        trajs = generate_trajectory_set("ctrw", 0.5, 800, 1000, np.random.default_rng(7))
        assert _ensemble_slope(trajs, 40, 800) == pytest.approx(0.5, abs=0.2)

    def test_lw_superdiffusive_exponent(self):
        trajs = generate_trajectory_set("lw", 1.5, 300, 1000, np.random.default_rng(8))
        assert _time_averaged_slope(trajs, 20, 200) == pytest.approx(1.5, abs=0.25)

    def test_fgn_unit_variance(self):
        noise = generate_fgn_davies_harte(20000, 0.35, np.random.default_rng(2))
        assert np.var(noise) == pytest.approx(1.0, rel=0.1)

    def test_fgn_empty(self):
        assert generate_fgn_davies_harte(0, 0.5).shape == (0,)


class TestGenerateTrajectorySet:

    def test_shape(self, rng):
        trajs = generate_trajectory_set("sbm", 1.0, 5, 20, rng)
        assert trajs.shape == (5, 20)

    def test_wrong_length_from_generator(self, rng):
        def short_generator(model, alpha, t_max, rng):
            return np.zeros(t_max - 1)

        with pytest.raises(InvalidTrajectory) as exc_info:
            generate_trajectory_set("fbm", 1.0, 3, 20, rng, generator=short_generator)
        assert exc_info.value.stage == "generation"
