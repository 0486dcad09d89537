"""Shared fixtures for the RF trajectory benchmark tests."""

from pathlib import Path

import numpy as np
import pytest

from config_rftraj import BenchmarkConfig


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: tests taking more than a few seconds")


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def small_config(tmp_path: Path) -> BenchmarkConfig:
    """Regression run small enough for a unit test."""
    return BenchmarkConfig(
        t_max=32,
        num_traj=10,
        processes=("fbm",),
        alpha_range=(0.5, 1.0, 1.5),
        ratio_tT=0.8,
        proc_expo="regression",
        n_estimators=10,
        output_dir=tmp_path / "results",
    )
