"""Correlation models describing the dependency between names.

Factor models use the latent variable:
    X_i = β_i × Z + √(1 - β_i²) × ε_i

Where:
    - Z: Common systematic factor
    - β_i: Factor loading of name i
    - ε_i: Idiosyncratic shock

A name defaults by time t when X_i falls below the copula threshold of its
default probability. The pairwise correlation of two names is β_i × β_j.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Union
import numpy as np

from .curves import next_version
from .errors import BasketConfigurationError

NameIds = Union[Sequence[str], "NameCollection"]


def _ids(names) -> List[str]:
    if names is None:
        return []
    return list(getattr(names, "name_ids", names))


def _check_loadings(loadings: np.ndarray) -> None:
    if np.any(~np.isfinite(loadings)) or np.any(np.abs(loadings) > 1):
        raise BasketConfigurationError(
            f"Factor loadings must be between -1 and 1, got {np.asarray(loadings).tolist()}"
        )


class CorrelationModel(ABC):
    """Dependency structure among the names of a basket."""

    def __init__(self):
        self._version = next_version()

    @property
    def version(self) -> int:
        """Version stamp, renewed by every mutation."""
        return self._version

    def _touch(self) -> None:
        self._version = next_version()

    @property
    def is_factor_model(self) -> bool:
        return True

    @abstractmethod
    def factor_loadings(self, names: NameIds) -> np.ndarray:
        """Factor loading per name, in the given order."""

    def correlation_matrix(self, names: NameIds) -> np.ndarray:
        """Pairwise correlation matrix implied by the factor loadings."""
        beta = self.factor_loadings(names)
        corr = np.outer(beta, beta)
        np.fill_diagonal(corr, 1.0)
        return corr

    def cholesky(self, names: NameIds) -> np.ndarray:
        """Lower Cholesky factor of the correlation matrix.

        A small diagonal jitter keeps singular matrices factorizable.
        """
        corr = self.correlation_matrix(names)
        return np.linalg.cholesky(corr + np.eye(corr.shape[0]) * 1e-10)

    @abstractmethod
    def bump(self, amount: float, relative: bool = False) -> None:
        """Shift the correlation parameters in place."""

    def validate(self, errors: List[str]) -> List[str]:
        return errors


class SingleFactorCorrelation(CorrelationModel):
    """One factor loading shared by every name."""

    def __init__(self, names: Optional[NameIds], factor: float):
        """Initialize the model.

        Args:
            names: Names covered by the model (informational)
            factor: Common factor loading in [-1, 1]
        """
        _check_loadings(np.array([factor], dtype=float))
        super().__init__()
        self.names = _ids(names)
        self._factor = float(factor)

    @classmethod
    def from_correlation(cls, names: Optional[NameIds],
                         correlation: float) -> "SingleFactorCorrelation":
        """Model with a flat pairwise correlation (factor = √correlation)."""
        if not 0 <= correlation <= 1:
            raise BasketConfigurationError(
                f"Flat correlation must be between 0 and 1, got {correlation}"
            )
        return cls(names, float(np.sqrt(correlation)))

    @property
    def factor(self) -> float:
        return self._factor

    @property
    def correlation(self) -> float:
        return self._factor ** 2

    def set_factor(self, factor: float) -> None:
        _check_loadings(np.array([factor], dtype=float))
        self._factor = float(factor)
        self._touch()

    def factor_loadings(self, names: NameIds) -> np.ndarray:
        return np.full(len(_ids(names)), self._factor)

    def bump(self, amount: float, relative: bool = False) -> None:
        self.set_factor(self._factor * (1.0 + amount) if relative else self._factor + amount)

    def __repr__(self) -> str:
        return f"SingleFactorCorrelation(factor={self._factor:.4f})"


class FactorCorrelation(CorrelationModel):
    """One factor loading per name."""

    def __init__(self, names: NameIds, factors: Sequence[float]):
        names = _ids(names)
        factors = np.asarray(factors, dtype=float)
        if len(names) != factors.size:
            raise BasketConfigurationError(
                f"Expected {len(names)} factors to match names, got {factors.size}"
            )
        if len(set(names)) != len(names):
            raise BasketConfigurationError("Duplicate names in factor correlation")
        _check_loadings(factors)
        super().__init__()
        self._loadings: Dict[str, float] = dict(zip(names, factors.tolist()))

    @property
    def names(self) -> List[str]:
        return list(self._loadings)

    def set_factors(self, factors: Sequence[float]) -> None:
        """Replace every loading, in the model's name order."""
        factors = np.asarray(factors, dtype=float)
        if factors.size != len(self._loadings):
            raise BasketConfigurationError(
                f"Expected {len(self._loadings)} factors, got {factors.size}"
            )
        _check_loadings(factors)
        self._loadings = dict(zip(self._loadings, factors.tolist()))
        self._touch()

    def set_factor(self, name: str, factor: float) -> None:
        if name not in self._loadings:
            raise KeyError(f"Name '{name}' not found in correlation model")
        _check_loadings(np.array([factor], dtype=float))
        self._loadings[name] = float(factor)
        self._touch()

    def factor_loadings(self, names: NameIds) -> np.ndarray:
        ids = _ids(names)
        missing = [n for n in ids if n not in self._loadings]
        if missing:
            raise BasketConfigurationError(f"No factor loading for names: {missing}")
        return np.array([self._loadings[n] for n in ids], dtype=float)

    def bump(self, amount: float, relative: bool = False) -> None:
        factors = np.array(list(self._loadings.values()))
        self.set_factors(factors * (1.0 + amount) if relative else factors + amount)

    def __repr__(self) -> str:
        return f"FactorCorrelation(num_names={len(self._loadings)})"


class GeneralCorrelation(CorrelationModel):
    """Full pairwise correlation matrix.

    Only the Monte Carlo strategy can use a general matrix. Positive
    semi-definiteness is the caller's responsibility and is not checked.
    """

    def __init__(self, names: NameIds, matrix: np.ndarray):
        names = _ids(names)
        super().__init__()
        self._names = names
        self._index = {n: i for i, n in enumerate(names)}
        if len(self._index) != len(names):
            raise BasketConfigurationError("Duplicate names in correlation matrix")
        self._matrix = self._checked(np.asarray(matrix, dtype=float))

    @classmethod
    def from_factor_model(cls, names: NameIds, loadings: np.ndarray,
                          factor_correlation: Optional[np.ndarray] = None) -> "GeneralCorrelation":
        """Asset correlations of a multi-factor model.

        The correlation of names i and j is:
            ρ_ij = β_i' × Σ × β_j

        Args:
            names: Names, one per row of ``loadings``
            loadings: Loading matrix of shape (num_names, num_factors)
            factor_correlation: Factor correlation matrix Σ (identity if None)
        """
        loadings = np.atleast_2d(np.asarray(loadings, dtype=float))
        k = loadings.shape[1]
        sigma = np.eye(k) if factor_correlation is None else np.asarray(factor_correlation)
        if sigma.shape != (k, k):
            raise BasketConfigurationError(
                f"Factor correlation matrix must be {k}x{k}, got {sigma.shape}"
            )
        systematic = np.einsum("ik,kl,il->i", loadings, sigma, loadings)
        if np.any(systematic > 1 + 1e-12):
            raise BasketConfigurationError("Systematic variance of a name exceeds 1")
        corr = loadings @ sigma @ loadings.T
        np.fill_diagonal(corr, 1.0)
        return cls(names, corr)

    def _checked(self, matrix: np.ndarray) -> np.ndarray:
        n = len(self._names)
        if matrix.shape != (n, n):
            raise BasketConfigurationError(
                f"Correlation matrix must be {n}x{n}, got {matrix.shape}"
            )
        if not np.allclose(matrix, matrix.T):
            raise BasketConfigurationError("Correlation matrix must be symmetric")
        if not np.allclose(np.diag(matrix), 1.0):
            raise BasketConfigurationError("Diagonal elements must be 1")
        if np.any(matrix < -1) or np.any(matrix > 1):
            raise BasketConfigurationError("Correlations must be between -1 and 1")
        return matrix.copy()

    @property
    def is_factor_model(self) -> bool:
        return False

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def set_matrix(self, matrix: np.ndarray) -> None:
        self._matrix = self._checked(np.asarray(matrix, dtype=float))
        self._touch()

    def factor_loadings(self, names: NameIds) -> np.ndarray:
        raise BasketConfigurationError(
            "A general correlation matrix has no factor loadings; "
            "use the Monte Carlo strategy"
        )

    def correlation_matrix(self, names: NameIds) -> np.ndarray:
        ids = _ids(names)
        missing = [n for n in ids if n not in self._index]
        if missing:
            raise BasketConfigurationError(f"No correlation entries for names: {missing}")
        idx = [self._index[n] for n in ids]
        return self._matrix[np.ix_(idx, idx)]

    def bump(self, amount: float, relative: bool = False) -> None:
        """Shift every off-diagonal correlation."""
        bumped = self._matrix * (1.0 + amount) if relative else self._matrix + amount
        np.fill_diagonal(bumped, 1.0)
        self.set_matrix(bumped)

    def __repr__(self) -> str:
        return f"GeneralCorrelation(num_names={len(self._names)})"
