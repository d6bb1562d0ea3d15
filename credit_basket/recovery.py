"""Recovery curves and recovery distributions.

Supports:
- RecoveryCurve: deterministic recovery rate, flat or term structured
- BetaRecovery: Beta-distributed recovery scaled to [floor, cap]
- EmpiricalRecovery: empirical distribution from historical recoveries

The semi-analytic engines use ``discretize`` to turn a recovery distribution
into a handful of weighted points; the Monte Carlo engine uses ``sample``.
"""

from typing import List, Optional, Sequence, Tuple, Union
import numpy as np
from scipy import stats
from scipy.interpolate import interp1d

from .curves import next_version
from .errors import BasketConfigurationError


def _legendre_probabilities(n_points: int) -> Tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre nodes and weights mapped to (0, 1)."""
    nodes, weights = np.polynomial.legendre.leggauss(n_points)
    return 0.5 * (nodes + 1.0), 0.5 * weights


class RecoveryCurve:
    """Deterministic recovery rate.

    A single ``rate`` gives a flat curve. With ``tenors`` and ``rates`` the
    rate is linearly interpolated in time and extrapolated flat.
    """

    def __init__(self, rate: Optional[float] = None,
                 tenors: Optional[Sequence[float]] = None,
                 rates: Optional[Sequence[float]] = None,
                 name: Optional[str] = None):
        """Initialize a recovery curve.

        Args:
            rate: Flat recovery rate (between 0 and 1)
            tenors: Optional tenor times for a term structure
            rates: Recovery rates at the tenors
            name: Optional name
        """
        if tenors is None:
            if rate is None:
                raise BasketConfigurationError("Specify either a flat rate or tenors and rates")
            tenors, rates = [0.0], [rate]
        tenors = np.asarray(tenors, dtype=float)
        rates = np.asarray(rates, dtype=float)
        if tenors.size == 0 or tenors.shape != rates.shape:
            raise BasketConfigurationError(
                f"tenors and rates must be non-empty and of the same length, "
                f"got {tenors.size} and {rates.size}"
            )
        if np.any(np.diff(tenors) <= 0):
            raise BasketConfigurationError("Recovery tenors must be strictly increasing")
        self._check_rates(rates)
        self.name = name
        self._tenors = tenors
        self._rates = rates.copy()
        self._version = next_version()

    @staticmethod
    def _check_rates(rates: np.ndarray) -> None:
        if np.any(rates < 0) or np.any(rates > 1):
            raise BasketConfigurationError(
                f"Recovery rate must be between 0 and 1, got {rates.tolist()}"
            )

    @property
    def version(self) -> int:
        return self._version

    @property
    def dispersion(self) -> float:
        """Standard deviation of the recovery rate (zero when deterministic)."""
        return 0.0

    @property
    def is_random(self) -> bool:
        return self.dispersion > 0

    def recovery_rate(self, t: Union[float, np.ndarray] = 0.0) -> Union[float, np.ndarray]:
        """Expected recovery rate at time t."""
        rate = np.interp(np.asarray(t, dtype=float), self._tenors, self._rates)
        return float(rate) if np.ndim(rate) == 0 else rate

    def set_rate(self, rate: float) -> None:
        """Replace the curve with a flat rate in place."""
        rates = np.asarray([rate], dtype=float)
        self._check_rates(rates)
        self._tenors = np.asarray([0.0])
        self._rates = rates
        self._version = next_version()

    def discretize(self, t: float, n_points: int) -> Tuple[np.ndarray, np.ndarray]:
        """Recovery outcomes and their probabilities at time t."""
        return np.array([self.recovery_rate(t)]), np.array([1.0])

    def sample(self, t: float, n_samples: int,
               random_state: Optional[Union[int, np.random.Generator]] = None) -> np.ndarray:
        """Draw recovery rates at time t."""
        return np.full(n_samples, self.recovery_rate(t))

    def validate(self, errors: List[str]) -> List[str]:
        """Append domain violations to ``errors`` and return it."""
        label = self.name or "recovery curve"
        if np.any(~np.isfinite(self._rates)):
            errors.append(f"{label}: recovery rates must be finite")
        elif np.any(self._rates < 0) or np.any(self._rates > 1):
            errors.append(f"{label}: recovery rate must be between 0 and 1")
        return errors

    def __repr__(self) -> str:
        if self._rates.size == 1:
            return f"RecoveryCurve(rate={self._rates[0]:.4f})"
        return f"RecoveryCurve(tenors={self._tenors.tolist()}, rates={self._rates.tolist()})"


class BetaRecovery(RecoveryCurve):
    """Beta-distributed recovery rate.

    Model:
        Base recovery ~ Beta(alpha, beta) scaled to [floor, cap], with alpha
        and beta fitted to ``mean`` and ``std`` by the method of moments.
    """

    def __init__(self, mean: float, std: float,
                 floor: float = 0.0, cap: float = 1.0,
                 name: Optional[str] = None):
        """Initialize Beta recovery distribution.

        Args:
            mean: Mean recovery rate (between floor and cap)
            std: Standard deviation of the recovery rate
            floor: Minimum recovery
            cap: Maximum recovery
            name: Optional name
        """
        if not 0 <= floor < cap <= 1:
            raise BasketConfigurationError("Must have 0 <= floor < cap <= 1")
        if not floor <= mean <= cap:
            raise BasketConfigurationError("Mean must be between floor and cap")
        if std < 0:
            raise BasketConfigurationError("Std must be non-negative")
        super().__init__(rate=mean, name=name)

        self._std = std
        self._floor = floor
        self._cap = cap

        range_size = cap - floor
        normalized_mean = (mean - floor) / range_size
        if std > 0 and 0 < normalized_mean < 1:
            normalized_std = std / range_size
            max_std = np.sqrt(normalized_mean * (1 - normalized_mean))
            normalized_std = min(normalized_std, max_std * 0.99)

            variance = normalized_std ** 2
            common = normalized_mean * (1 - normalized_mean) / variance - 1
            self._alpha = normalized_mean * common
            self._beta = (1 - normalized_mean) * common
        else:
            self._alpha = None
            self._beta = None

    @property
    def dispersion(self) -> float:
        return self._std if self._alpha is not None else 0.0

    def set_rate(self, rate: float) -> None:
        raise BasketConfigurationError("Recreate the BetaRecovery to change its mean")

    def discretize(self, t: float, n_points: int) -> Tuple[np.ndarray, np.ndarray]:
        """Quantiles of the Beta distribution at Gauss-Legendre probabilities.

        The values are shifted so the discrete mean equals the model mean.
        """
        if self._alpha is None or n_points <= 1:
            return super().discretize(t, n_points)
        probs, weights = _legendre_probabilities(n_points)
        base = stats.beta.ppf(probs, self._alpha, self._beta)
        values = self._floor + base * (self._cap - self._floor)
        values += self.recovery_rate(t) - float(np.dot(weights, values))
        return np.clip(values, self._floor, self._cap), weights

    def sample(self, t: float, n_samples: int,
               random_state: Optional[Union[int, np.random.Generator]] = None) -> np.ndarray:
        """Sample recovery rates from the Beta distribution."""
        if self._alpha is None:
            return super().sample(t, n_samples)
        rng = np.random.default_rng(random_state)
        base_samples = rng.beta(self._alpha, self._beta, size=n_samples)
        return self._floor + base_samples * (self._cap - self._floor)

    def __repr__(self) -> str:
        return (f"BetaRecovery(mean={self.recovery_rate():.4f}, std={self._std:.4f}, "
                f"floor={self._floor:.2f}, cap={self._cap:.2f})")


class EmpiricalRecovery(RecoveryCurve):
    """Empirical recovery distribution calibrated from historical data.

    Sampling applies the inverse empirical CDF to uniform draws.
    """

    def __init__(self, historical_recovery: Union[Sequence[float], np.ndarray],
                 interpolation: str = 'linear', name: Optional[str] = None):
        """Initialize Empirical recovery distribution.

        Args:
            historical_recovery: Historical recovery observations
            interpolation: Interpolation method ('linear', 'nearest', 'cubic')
            name: Optional name
        """
        historical = np.asarray(historical_recovery, dtype=float)
        if len(historical) < 2:
            raise BasketConfigurationError("Need at least 2 historical observations")
        self._check_rates(historical)
        super().__init__(rate=float(np.mean(historical)), name=name)

        self._historical = np.sort(historical)
        self._std_val = float(np.std(historical))
        floor, cap = float(self._historical[0]), float(self._historical[-1])

        n = len(self._historical)
        ecdf_y = np.arange(1, n + 1) / n
        self._inverse_cdf = interp1d(
            np.concatenate([[0.0], ecdf_y]),
            np.concatenate([[floor], self._historical]),
            kind=interpolation,
            bounds_error=False,
            fill_value=(floor, cap)
        )

    @property
    def dispersion(self) -> float:
        return self._std_val

    @property
    def n_observations(self) -> int:
        return len(self._historical)

    def set_rate(self, rate: float) -> None:
        raise BasketConfigurationError("Recreate the EmpiricalRecovery to change its data")

    def discretize(self, t: float, n_points: int) -> Tuple[np.ndarray, np.ndarray]:
        if self._std_val == 0 or n_points <= 1:
            return super().discretize(t, n_points)
        probs, weights = _legendre_probabilities(n_points)
        values = np.asarray(self._inverse_cdf(probs), dtype=float)
        values += self.recovery_rate(t) - float(np.dot(weights, values))
        return np.clip(values, 0.0, 1.0), weights

    def sample(self, t: float, n_samples: int,
               random_state: Optional[Union[int, np.random.Generator]] = None) -> np.ndarray:
        rng = np.random.default_rng(random_state)
        u = rng.uniform(0, 1, size=n_samples)
        return np.clip(self._inverse_cdf(u), 0.0, 1.0)

    def __repr__(self) -> str:
        return (f"EmpiricalRecovery(n_obs={self.n_observations}, "
                f"mean={self.recovery_rate():.4f}, std={self._std_val:.4f})")


def create_recovery(recovery_type: str, **kwargs) -> RecoveryCurve:
    """Factory function to create recovery curves.

    Args:
        recovery_type: Type of recovery ('constant', 'beta', 'empirical')
        **kwargs: Arguments passed to the constructor

    Returns:
        RecoveryCurve instance

    Examples:
        >>> create_recovery('constant', rate=0.4)
        >>> create_recovery('beta', mean=0.4, std=0.1)
        >>> create_recovery('empirical', historical_recovery=[0.3, 0.4, 0.5])
    """
    recovery_type = recovery_type.lower()

    if recovery_type == 'constant':
        return RecoveryCurve(**kwargs)
    elif recovery_type == 'beta':
        return BetaRecovery(**kwargs)
    elif recovery_type == 'empirical':
        return EmpiricalRecovery(**kwargs)
    else:
        raise BasketConfigurationError(
            f"Unknown recovery type: {recovery_type}. "
            f"Choose from: 'constant', 'beta', 'empirical'"
        )
