"""Tests for the trajectory feature extractor."""

from __future__ import annotations

import numpy as np
import pytest

from rftraj_errors import ConfigurationError, InvalidTrajectory
from rftraj_feature_extractor import (
    PHYSICS_FEATURES,
    TrajectoryFeatureExtractor,
    extract,
    lag_displacements,
)
from rftraj_trajectory_generator import generate_trajectory


@pytest.fixture
def trajectory():
    return generate_trajectory("fbm", 0.7, 100, np.random.default_rng(4))


class TestRawSchema:

    def test_positions_schema(self, trajectory):
        extractor = TrajectoryFeatureExtractor()
        vector = extractor.extract(trajectory)
        assert vector.shape == (100,)
        assert vector[0] == 0.0
        assert extractor.feature_names(100)[:2] == ["x_0", "x_1"]

    def test_normalised_steps(self, trajectory):
        vector = extract(trajectory)
        assert np.std(np.diff(vector)) == pytest.approx(1.0)

    def test_scale_invariant(self, trajectory):
        np.testing.assert_allclose(extract(trajectory), extract(7.5 * trajectory + 3.0))

    def test_lag_schema(self, trajectory):
        extractor = TrajectoryFeatureExtractor(lag_window=5)
        vector = extractor.extract(trajectory)
        assert vector.shape == (95,)
        assert extractor.feature_names(100)[0] == "dx5_0"
        assert len(extractor.feature_names(100)) == 95

    def test_constant_trajectory(self):
        vector = extract(np.zeros(10))
        np.testing.assert_array_equal(vector, np.zeros(10))

    def test_column_vector_accepted(self, trajectory):
        np.testing.assert_array_equal(extract(trajectory.reshape(-1, 1)), extract(trajectory))


class TestDeterminism:

    @pytest.mark.parametrize("feature_set", ["raw", "physics"])
    @pytest.mark.parametrize("lag", [0, 3])
    def test_repeated_extraction_identical(self, trajectory, feature_set, lag):
        first = extract(trajectory, lag, feature_set)
        second = extract(trajectory, lag, feature_set)
        np.testing.assert_array_equal(first, second)


class TestPhysicsSchema:

    def test_twelve_features(self, trajectory):
        extractor = TrajectoryFeatureExtractor(feature_set="physics")
        vector = extractor.extract(trajectory)
        assert vector.shape == (len(PHYSICS_FEATURES),) == (12,)
        assert np.all(np.isfinite(vector))

    def test_lag_suffix(self):
        names = TrajectoryFeatureExtractor(lag_window=4, feature_set="physics").feature_names(100)
        assert "gaussianity_lag4" in names
        assert "msd_alpha" in names
        assert len(names) == 12

    def test_ballistic_msd_exponent(self):
        features = TrajectoryFeatureExtractor(feature_set="physics").extract_all_features(np.arange(100.0))
        assert features["msd_alpha"] == pytest.approx(2.0)
        assert features["msd_fit_quality"] == pytest.approx(1.0)
        assert features["straightness"] == pytest.approx(1.0)

    def test_gaussian_increments(self):
        steps = np.random.default_rng(8).standard_normal(5000)
        stats = TrajectoryFeatureExtractor().compute_increment_statistics(steps)
        assert stats["kurtosis"] == pytest.approx(3.0, abs=0.3)
        assert stats["velocity_autocorr_lag1"] == pytest.approx(0.0, abs=0.05)

    def test_short_trajectory_defaults(self):
        features = TrajectoryFeatureExtractor(feature_set="physics").extract_all_features(np.array([0.0, 1.0]))
        assert features["gaussianity"] == 3.0
        assert features["radius_ratio"] == 1.0


class TestInvalidInput:

    def test_empty(self):
        with pytest.raises(InvalidTrajectory, match="empty"):
            extract(np.array([]))

    def test_shorter_than_lag(self):
        with pytest.raises(InvalidTrajectory) as exc_info:
            extract(np.zeros(3), lag_window=5)
        assert exc_info.value.parameter == "T_lag"

    def test_equal_to_lag(self):
        with pytest.raises(InvalidTrajectory):
            extract(np.zeros(5), lag_window=5)

    def test_not_finite(self):
        with pytest.raises(InvalidTrajectory):
            extract(np.array([0.0, np.nan, 1.0]))

    def test_two_dimensional(self):
        with pytest.raises(InvalidTrajectory, match="1D"):
            extract(np.zeros((10, 2)))

    def test_negative_lag(self):
        with pytest.raises(ConfigurationError):
            TrajectoryFeatureExtractor(lag_window=-1)

    def test_unknown_feature_set(self):
        with pytest.raises(ConfigurationError):
            TrajectoryFeatureExtractor(feature_set="wavelets")


class TestBatch:

    def test_matrix_shape(self, rng):
        trajs = [generate_trajectory("sbm", 1.0, 40, rng) for _ in range(6)]
        matrix = TrajectoryFeatureExtractor(lag_window=2).extract_batch(trajs)
        assert matrix.shape == (6, 38)

    def test_inconsistent_lengths(self):
        with pytest.raises(InvalidTrajectory, match="different lengths"):
            TrajectoryFeatureExtractor().extract_batch([np.arange(10.0), np.arange(12.0)])

    def test_empty_batch(self):
        assert TrajectoryFeatureExtractor().extract_batch([]).shape == (0, 0)


def test_lag_displacements():
    np.testing.assert_array_equal(lag_displacements(np.array([0.0, 1.0, 3.0, 6.0]), 2), [3.0, 5.0])
