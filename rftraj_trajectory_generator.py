"""
ANOMALOUS DIFFUSION TRAJECTORY GENERATOR - 1D
=============================================

Synthetic single-particle trajectories for benchmarking machine learning
characterisation of diffusion. Every generator returns ``t_max`` positions
starting at the origin, sampled at integer times, for a prescribed anomalous
exponent alpha (MSD ~ t^alpha).

Models:
- fbm:  Fractional Brownian motion (Mandelbrot & Van Ness, 1968)
- sbm:  Scaled Brownian motion (Lim & Muniandy, 2002)
- ctrw: Continuous-time random walk (Montroll & Weiss, 1965)
- lw:   Levy walk (Shlesinger, Klafter & Wong, 1982)

All randomness flows through an explicit ``numpy.random.Generator`` so that a
dataset is reproducible from its seed.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from rftraj_errors import ConfigurationError, InvalidTrajectory

TrajectoryFunction = Callable[[float, int, np.random.Generator], np.ndarray]


def _as_rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def _positions_from_increments(increments: np.ndarray) -> np.ndarray:
    return np.concatenate([[0.0], np.cumsum(increments)])


def generate_fgn_davies_harte(n_steps: int, H: float, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Exact fractional Gaussian noise via the Davies-Harte algorithm

    fGn is the stationary increment process of fBm with autocovariance

        gamma(k) = (1/2)*[(k+1)^(2H) - 2k^(2H) + |k-1|^(2H)]

    The covariance is embedded in a circulant matrix of size 2n whose
    eigenvalues are obtained with one FFT.

    Args:
        n_steps: number of increments
        H: Hurst exponent in (0, 1)
           H<0.5: anti-persistent (subdiffusion)
           H=0.5: Brownian motion
           H>0.5: persistent (superdiffusion)
        rng: random generator

    Returns:
        fGn increments [n_steps] with unit variance

    References:
    - Davies, R. B., & Harte, D. S. (1987). Biometrika, 74(1), 95-101.
    - Wood, A. T. A., & Chan, G. (1994). J. Comput. Graph. Stat., 3(4), 409-432.
    """
    rng = _as_rng(rng)
    if n_steps <= 0:
        return np.zeros(0)

    k = np.arange(n_steps + 1, dtype=float)
    r = 0.5 * ((k + 1) ** (2 * H) - 2 * k ** (2 * H) + np.abs(k - 1) ** (2 * H))

    # circulant embedding: [r0 .. rn, r(n-1) .. r1]
    r_extended = np.concatenate([r, r[1:-1][::-1]])
    eigenvalues = np.fft.fft(r_extended).real
    # tiny negative eigenvalues are round-off
    eigenvalues = np.maximum(eigenvalues, 0.0)

    n_extended = len(r_extended)
    noise = rng.standard_normal(n_extended) + 1j * rng.standard_normal(n_extended)
    W = np.fft.fft(np.sqrt(eigenvalues / n_extended) * noise)
    return W[:n_steps].real


def generate_fbm(alpha: float, t_max: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Fractional Brownian motion with MSD ~ t^alpha (H = alpha/2)

    Args:
        alpha: anomalous exponent in (0, 2)
        t_max: number of positions
        rng: random generator

    Returns:
        positions [t_max]
    """
    increments = generate_fgn_davies_harte(t_max - 1, alpha / 2.0, rng)
    return _positions_from_increments(increments)


def generate_sbm(alpha: float, t_max: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Scaled Brownian motion: Gaussian, independent increments with a
    time-dependent diffusivity, Var[x(t)] = t^alpha.

    The step from t-1 to t has variance t^alpha - (t-1)^alpha.
    """
    rng = _as_rng(rng)
    t = np.arange(1, t_max, dtype=float)
    variances = t ** alpha - (t - 1) ** alpha
    increments = rng.standard_normal(len(t)) * np.sqrt(variances)
    return _positions_from_increments(increments)


def _pareto_times(exponent: float, t_max: int, rng: np.random.Generator) -> np.ndarray:
    """Cumulative Pareto(exponent) event times, x_min = 1, until t_max is passed."""
    chunk = max(16, int(t_max))
    times: List[np.ndarray] = []
    total = 0.0
    while total <= t_max:
        # inverse transform of P(tau > x) = x^(-exponent)
        waits = (1.0 - rng.random(chunk)) ** (-1.0 / exponent)
        cumulative = total + np.cumsum(waits)
        times.append(cumulative)
        total = cumulative[-1]
    return np.concatenate(times)


def generate_ctrw(alpha: float, t_max: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Continuous-time random walk with heavy-tailed waiting times

    Waiting times follow psi(tau) ~ tau^(-1-alpha); jumps are standard
    Gaussian. For 0 < alpha < 1 the mean waiting time diverges and the
    ensemble MSD grows as t^alpha.

    Args:
        alpha: anomalous exponent in (0, 1]
        t_max: number of positions
        rng: random generator

    Returns:
        positions observed at t = 0 .. t_max-1
    """
    rng = _as_rng(rng)
    jump_times = _pareto_times(alpha, t_max, rng)
    jumps = rng.standard_normal(len(jump_times))
    walk = _positions_from_increments(jumps)

    observation = np.arange(t_max, dtype=float)
    n_jumps_done = np.searchsorted(jump_times, observation, side="right")
    return walk[n_jumps_done]


def generate_lw(alpha: float, t_max: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """
    Levy walk at unit speed

    Flight durations follow psi(tau) ~ tau^(-1-sigma) with sigma = 3 - alpha;
    every flight picks a random direction. For 1 < alpha < 2 the walk is
    superdiffusive, alpha = 1 is the diffusive border case (sigma = 2).

    Args:
        alpha: anomalous exponent in [1, 2)
        t_max: number of positions
        rng: random generator

    Returns:
        positions observed at t = 0 .. t_max-1
    """
    rng = _as_rng(rng)
    flight_ends = _pareto_times(3.0 - alpha, t_max, rng)
    flight_starts = np.concatenate([[0.0], flight_ends[:-1]])
    velocities = rng.choice([-1.0, 1.0], size=len(flight_ends))
    start_positions = _positions_from_increments(velocities * (flight_ends - flight_starts))[:-1]

    observation = np.arange(t_max, dtype=float)
    flight = np.searchsorted(flight_ends, observation, side="right")
    return start_positions[flight] + velocities[flight] * (observation - flight_starts[flight])


# (generator, lower, upper, lower inclusive, upper inclusive)
_MODELS: Dict[str, Tuple[TrajectoryFunction, float, float, bool, bool]] = {
    "fbm": (generate_fbm, 0.0, 2.0, False, False),
    "sbm": (generate_sbm, 0.0, np.inf, False, False),
    "ctrw": (generate_ctrw, 0.0, 1.0, False, True),
    "lw": (generate_lw, 1.0, 2.0, True, False),
}


def available_models() -> List[str]:
    return list(_MODELS)


def _lookup(model: str) -> Tuple[TrajectoryFunction, float, float, bool, bool]:
    try:
        return _MODELS[model]
    except KeyError:
        raise ConfigurationError(
            f"unknown diffusion model {model!r}, known: {available_models()}", parameter="processes"
        ) from None


def exponent_limits(model: str) -> Tuple[float, float]:
    """(lower, upper) bound of the exponents ``model`` can produce."""
    _, low, high, _, _ = _lookup(model)
    return low, high


def supports_exponent(model: str, alpha: float) -> bool:
    _, low, high, low_inclusive, high_inclusive = _lookup(model)
    alpha = float(alpha)
    above = alpha >= low if low_inclusive else alpha > low
    below = alpha <= high if high_inclusive else alpha < high
    return above and below


def generate_trajectory(
    model: str,
    alpha: float,
    t_max: int,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Generate one trajectory of ``model`` with exponent ``alpha``

    Args:
        model: one of :func:`available_models`
        alpha: anomalous exponent, must be supported by the model
        t_max: number of positions
        rng: random generator

    Returns:
        positions [t_max]
    """
    func = _lookup(model)[0]
    if not supports_exponent(model, alpha):
        low, high = exponent_limits(model)
        raise ConfigurationError(
            f"model {model!r} cannot produce alpha={alpha} (valid range {low} - {high})", parameter="alpha_range"
        )
    if int(t_max) < 1:
        raise ConfigurationError(f"t_max must be a positive integer, got {t_max}", parameter="t_max")
    return func(float(alpha), int(t_max), _as_rng(rng))


def generate_trajectory_set(
    model: str,
    alpha: float,
    n_trajectories: int,
    t_max: int,
    rng: Optional[np.random.Generator] = None,
    generator: Callable[..., np.ndarray] = generate_trajectory,
) -> np.ndarray:
    """
    Generate ``n_trajectories`` independent trajectories of one (model, alpha)

    Returns:
        (n_trajectories, t_max) array
    """
    rng = _as_rng(rng)
    trajectories = np.zeros((n_trajectories, t_max))
    for i in range(n_trajectories):
        traj = np.asarray(generator(model, alpha, t_max, rng), dtype=float).ravel()
        if traj.shape[0] != t_max:
            raise InvalidTrajectory(
                f"generator returned {traj.shape[0]} positions for model {model!r}, alpha={alpha}, expected {t_max}",
                parameter="t_max",
                stage="generation",
            )
        trajectories[i] = traj
    return trajectories


if __name__ == "__main__":
    rng = np.random.default_rng(0)
    print("=" * 80)
    print("TEST: anomalous diffusion trajectories")
    print("=" * 80)
    lags = np.array([1, 10, 100])
    for model in available_models():
        low, high = exponent_limits(model)
        alpha = 1.0 if supports_exponent(model, 1.0) else 0.5 * (low + min(high, 2.0))
        trajs = generate_trajectory_set(model, alpha, 200, 1000, rng)
        msd = [np.mean((trajs[:, lag:] - trajs[:, :-lag]) ** 2) for lag in lags]
        slope = np.polyfit(np.log(lags), np.log(msd), 1)[0]
        print(f"  {model:5s} alpha={alpha:.2f}  fitted MSD slope={slope:.2f}")
    print("=" * 80)
