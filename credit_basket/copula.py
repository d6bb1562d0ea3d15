"""Factor copulas: quadrature rules, conditional default probabilities and
latent variable sampling.

All three families share the conditioning step. Given the common factor the
names default independently, with probability

    p(z) = F_ε((threshold × s - β × z) / √(1 - β²))

where ``s`` is a per-node scale (1 except for the Student-t mixing variable)
and ``F_ε`` the idiosyncratic CDF.
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Optional, Tuple, Union
import numpy as np
from scipy import special, stats
from scipy.optimize import brentq

from .errors import CopulaConfigurationError

# Half width of the table used to invert the double-t latent marginal
_DOUBLE_T_RANGE = 40.0
_DOUBLE_T_TABLE_SIZE = 4001


class CopulaType(str, Enum):
    GAUSS = "gauss"
    STUDENT_T = "student_t"
    DOUBLE_T = "double_t"


@dataclass(frozen=True, eq=False)
class Quadrature:
    """Nodes of the common factor rule.

    Attributes:
        factors: Common factor value per node
        scales: Threshold scale per node
        weights: Probability weight per node (sums to 1)
    """
    factors: np.ndarray
    scales: np.ndarray
    weights: np.ndarray

    def __len__(self) -> int:
        return self.weights.size


def _unit_t_cdf(x, df: float):
    """CDF of a Student-t scaled to unit variance."""
    return stats.t.cdf(np.asarray(x) * np.sqrt(df / (df - 2.0)), df)


def _unit_t_ppf(u, df: float):
    return stats.t.ppf(u, df) * np.sqrt((df - 2.0) / df)


@lru_cache(maxsize=64)
def _hermite_rule(n: int) -> Tuple[np.ndarray, np.ndarray]:
    nodes, weights = np.polynomial.hermite.hermgauss(n)
    return nodes * np.sqrt(2.0), weights / np.sqrt(np.pi)


@dataclass(frozen=True)
class Copula:
    """Factor copula family and its numerical parameters.

    Attributes:
        copula_type: 'gauss', 'student_t' or 'double_t'
        df_common: Degrees of freedom of the Student-t mixing variable, or of
            the common factor for the double-t copula
        df_idiosyncratic: Degrees of freedom of the idiosyncratic factor
            (double-t only)
        integration_points_first: Nodes over the common factor
        integration_points_second: Nodes over the Student-t mixing variable
    """
    copula_type: Union[CopulaType, str] = CopulaType.GAUSS
    df_common: float = 0.0
    df_idiosyncratic: float = 0.0
    integration_points_first: int = 25
    integration_points_second: int = 5

    def __post_init__(self):
        try:
            kind = CopulaType(str(getattr(self.copula_type, "value", self.copula_type)).lower())
        except ValueError:
            raise CopulaConfigurationError(
                f"Unsupported copula type: {self.copula_type}. "
                f"Choose from: {', '.join(c.value for c in CopulaType)}"
            )
        object.__setattr__(self, "copula_type", kind)

        if kind == CopulaType.STUDENT_T and self.df_common <= 0:
            raise CopulaConfigurationError(
                f"Student-t copula needs positive degrees of freedom, got {self.df_common}"
            )
        if kind == CopulaType.DOUBLE_T and (self.df_common <= 2 or self.df_idiosyncratic <= 2):
            raise CopulaConfigurationError(
                "Double-t copula needs degrees of freedom above 2, got "
                f"{self.df_common} and {self.df_idiosyncratic}"
            )
        if self.integration_points_first < 1 or self.integration_points_second < 1:
            raise CopulaConfigurationError("Integration point counts must be positive")

    @classmethod
    def gauss(cls, integration_points: int = 25) -> "Copula":
        return cls(CopulaType.GAUSS, integration_points_first=integration_points)

    @classmethod
    def student_t(cls, df: float, integration_points_first: int = 25,
                  integration_points_second: int = 5) -> "Copula":
        return cls(CopulaType.STUDENT_T, df_common=df,
                   integration_points_first=integration_points_first,
                   integration_points_second=integration_points_second)

    @classmethod
    def double_t(cls, df_common: float, df_idiosyncratic: float,
                 integration_points: int = 40) -> "Copula":
        return cls(CopulaType.DOUBLE_T, df_common=df_common,
                   df_idiosyncratic=df_idiosyncratic,
                   integration_points_first=integration_points)

    # Quadrature

    @lru_cache(maxsize=16)
    def quadrature(self) -> Quadrature:
        """Nodes and weights approximating the integral over the common factor."""
        if self.copula_type == CopulaType.GAUSS:
            z, w = _hermite_rule(self.integration_points_first)
            return Quadrature(z, np.ones_like(z), w)

        if self.copula_type == CopulaType.STUDENT_T:
            z, wz = _hermite_rule(self.integration_points_first)
            # Chi-square(df) mixing variable V = 2x with x ~ Gamma(df / 2)
            x, wx = special.roots_genlaguerre(self.integration_points_second,
                                              self.df_common / 2.0 - 1.0)
            wx = wx / wx.sum()
            scales = np.sqrt(2.0 * x / self.df_common)
            return Quadrature(
                np.repeat(z, scales.size),
                np.tile(scales, z.size),
                np.outer(wz, wx).ravel(),
            )

        u, w = np.polynomial.legendre.leggauss(self.integration_points_first)
        u = 0.5 * (u + 1.0)
        z = _unit_t_ppf(u, self.df_common)
        return Quadrature(z, np.ones_like(z), 0.5 * w)

    # Marginals and thresholds

    def _idiosyncratic_cdf(self, x):
        if self.copula_type == CopulaType.DOUBLE_T:
            return _unit_t_cdf(x, self.df_idiosyncratic)
        return stats.norm.cdf(x)

    def conditional_default_probability(self, threshold, beta, factor, scale=1.0):
        """Default probability conditional on one node of the common factor.

        Arguments broadcast against each other. Loadings of exactly ±1 give
        the degenerate limit: default if and only if the factor is below the
        threshold.
        """
        threshold = np.asarray(threshold, dtype=float)
        beta = np.asarray(beta, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            numerator = threshold * scale - beta * factor
            idio = np.sqrt(np.maximum(1.0 - beta * beta, 0.0))
            p = self._idiosyncratic_cdf(numerator / idio)
            degenerate = np.where(numerator > 0, 1.0, 0.0)
        p = np.where(idio == 0, degenerate, p)
        p = np.where(np.isneginf(threshold), 0.0, p)
        p = np.where(np.isposinf(threshold), 1.0, p)
        return p

    def marginal_cdf(self, x, beta=0.0):
        """CDF of the latent variable of a name with loading ``beta``."""
        if self.copula_type == CopulaType.GAUSS:
            return stats.norm.cdf(x)
        if self.copula_type == CopulaType.STUDENT_T:
            return stats.t.cdf(x, self.df_common)
        x = np.asarray(x, dtype=float)
        beta = np.broadcast_to(np.asarray(beta, dtype=float), x.shape)
        result = np.empty_like(x)
        for b in np.unique(beta):
            mask = beta == b
            grid, cdf = self._double_t_table(float(b))
            result[mask] = np.interp(x[mask], grid, cdf, left=0.0, right=1.0)
        return result if result.ndim else float(result)

    def _double_t_marginal(self, x: float, beta: float) -> float:
        q = self.quadrature()
        return float(np.dot(q.weights, self.conditional_default_probability(x, beta, q.factors)))

    @lru_cache(maxsize=256)
    def _double_t_table(self, beta: float) -> Tuple[np.ndarray, np.ndarray]:
        grid = np.linspace(-_DOUBLE_T_RANGE, _DOUBLE_T_RANGE, _DOUBLE_T_TABLE_SIZE)
        q = self.quadrature()
        cdf = self.conditional_default_probability(
            grid[:, None], beta, q.factors[None, :]) @ q.weights
        return grid, np.maximum.accumulate(cdf)

    def threshold(self, probabilities, beta=0.0):
        """Latent threshold matching unconditional default probabilities.

        Args:
            probabilities: Default probabilities (any shape)
            beta: Loading(s) broadcastable to ``probabilities``

        Returns:
            Thresholds; -inf for probability 0 and +inf for probability 1
        """
        p = np.asarray(probabilities, dtype=float)
        if self.copula_type == CopulaType.GAUSS:
            return stats.norm.ppf(p)
        if self.copula_type == CopulaType.STUDENT_T:
            return stats.t.ppf(p, self.df_common)

        beta = np.broadcast_to(np.asarray(beta, dtype=float), p.shape)
        result = np.empty(p.shape)
        solved = {}
        for idx in np.ndindex(p.shape):
            key = (float(p[idx]), float(beta[idx]))
            if key not in solved:
                solved[key] = self._double_t_threshold(*key)
            result[idx] = solved[key]
        return result if result.ndim else float(result)

    def _double_t_threshold(self, p: float, beta: float) -> float:
        if p <= 0:
            return -np.inf
        if p >= 1:
            return np.inf
        lo, hi = -1.0, 1.0
        while self._double_t_marginal(lo, beta) > p:
            lo *= 2.0
            if lo < -1e6:
                return -np.inf
        while self._double_t_marginal(hi, beta) < p:
            hi *= 2.0
            if hi > 1e6:
                return np.inf
        return brentq(lambda x: self._double_t_marginal(x, beta) - p, lo, hi, xtol=1e-12)

    # Sampling

    def _mixing_scale(self, n_paths: int, rng: np.random.Generator) -> np.ndarray:
        if self.copula_type != CopulaType.STUDENT_T:
            return np.ones(n_paths)
        return np.sqrt(self.df_common / rng.chisquare(self.df_common, size=n_paths))

    def sample_factor_model(self, loadings: np.ndarray, n_paths: int,
                            rng: np.random.Generator) -> np.ndarray:
        """Draw latent variables of a factor model.

        Args:
            loadings: Factor loading per name
            n_paths: Number of simulation paths
            rng: Random generator

        Returns:
            Array of shape (n_paths, num_names)
        """
        loadings = np.asarray(loadings, dtype=float)
        n_names = loadings.size
        idio_weights = np.sqrt(np.maximum(1.0 - loadings ** 2, 0.0))
        if self.copula_type == CopulaType.DOUBLE_T:
            common = _unit_t_ppf(rng.uniform(size=(n_paths, 1)), self.df_common)
            shocks = _unit_t_ppf(rng.uniform(size=(n_paths, n_names)), self.df_idiosyncratic)
            return common * loadings + shocks * idio_weights

        common = rng.standard_normal((n_paths, 1))
        shocks = rng.standard_normal((n_paths, n_names))
        latent = common * loadings + shocks * idio_weights
        return latent * self._mixing_scale(n_paths, rng)[:, None]

    def sample_correlated(self, cholesky: np.ndarray, n_paths: int,
                          rng: np.random.Generator) -> np.ndarray:
        """Draw latent variables with a general correlation matrix."""
        if self.copula_type == CopulaType.DOUBLE_T:
            raise CopulaConfigurationError(
                "The double-t copula needs a factor correlation model"
            )
        independent = rng.standard_normal((n_paths, cholesky.shape[0]))
        latent = independent @ cholesky.T
        return latent * self._mixing_scale(n_paths, rng)[:, None]

    def to_uniform(self, latent: np.ndarray, loadings: Optional[np.ndarray] = None) -> np.ndarray:
        """Map latent draws of shape (n_paths, num_names) to uniforms."""
        if self.copula_type == CopulaType.DOUBLE_T:
            return self.marginal_cdf(latent, np.broadcast_to(loadings, latent.shape))
        return self.marginal_cdf(latent)
