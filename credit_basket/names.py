"""Names and name collections forming a credit basket."""

from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union
import numpy as np
import pandas as pd

from .curves import SurvivalCurve
from .errors import BasketConfigurationError
from .recovery import RecoveryCurve


@dataclass(frozen=True)
class Name:
    """Represents a single reference entity in the basket.

    Attributes:
        name: Unique identifier for the name
        survival_curve: Survival curve of the name
        recovery_curve: Recovery curve (or recovery distribution)
        principal: Notional amount of the name in the basket
        last_default_index: Optional tag of the last-default position for
            first-to-default-of-basket structures (carried, not interpreted)
        sector: Optional industry sector classification
    """
    name: str
    survival_curve: SurvivalCurve
    recovery_curve: RecoveryCurve
    principal: float = 1.0
    last_default_index: Optional[int] = None
    sector: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise BasketConfigurationError("Name must have a non-empty identifier")
        if self.principal < 0:
            raise BasketConfigurationError(
                f"Principal must be non-negative, got {self.principal}"
            )
        if self.survival_curve is None:
            raise BasketConfigurationError(f"Name '{self.name}' has no survival curve")
        if self.recovery_curve is None:
            raise BasketConfigurationError(f"Name '{self.name}' has no recovery curve")

    def loss_given_default(self, t: float = 0.0) -> float:
        """Loss amount if the name defaults at time t."""
        return self.principal * (1.0 - self.recovery_curve.recovery_rate(t))

    def expected_loss(self, t: float) -> float:
        """Expected loss amount up to time t."""
        return self.survival_curve.default_probability(t) * self.loss_given_default(t)


class NameCollection:
    """Ordered collection of names forming a credit basket.

    Insertion order is the order in which the semi-analytic recursion
    convolves the names, so ``refit(i)`` refers to positions in this order.
    """

    def __init__(self, names: Optional[Sequence[Name]] = None, label: str = "Basket"):
        self.label = label
        self._names: Dict[str, Name] = {}
        for name in names or []:
            self.add(name)

    @classmethod
    def from_arrays(cls, names: Sequence[str],
                    survival_curves: Sequence[SurvivalCurve],
                    recovery_curves: Sequence[Union[float, RecoveryCurve]],
                    principals: Optional[Sequence[float]] = None,
                    label: str = "Basket") -> "NameCollection":
        """Build a collection from parallel arrays.

        Recovery entries given as plain numbers become flat recovery curves.
        Principals default to 1 for every name.
        """
        n = len(names)
        if principals is None:
            principals = [1.0] * n
        lengths = {
            "survival_curves": len(survival_curves),
            "recovery_curves": len(recovery_curves),
            "principals": len(principals),
        }
        mismatched = {key: size for key, size in lengths.items() if size != n}
        if mismatched:
            raise BasketConfigurationError(
                f"Expected {n} entries to match names, got {mismatched}"
            )

        collection = cls(label=label)
        for name, survival, recovery, principal in zip(names, survival_curves,
                                                       recovery_curves, principals):
            if not isinstance(recovery, RecoveryCurve):
                recovery = RecoveryCurve(rate=float(recovery))
            collection.add(Name(name, survival, recovery, float(principal)))
        return collection

    def add(self, name: Name) -> None:
        """Add a name at the end of the collection."""
        if name.name in self._names:
            raise BasketConfigurationError(f"Name '{name.name}' already exists in basket")
        self._names[name.name] = name

    def remove(self, name: str) -> Name:
        """Remove and return a name from the collection."""
        if name not in self._names:
            raise KeyError(f"Name '{name}' not found in basket")
        return self._names.pop(name)

    def get(self, name: str) -> Name:
        """Get a name by identifier."""
        if name not in self._names:
            raise KeyError(f"Name '{name}' not found in basket")
        return self._names[name]

    def index(self, name: str) -> int:
        """Position of a name in recursion order."""
        try:
            return list(self._names).index(name)
        except ValueError:
            raise KeyError(f"Name '{name}' not found in basket")

    @property
    def names(self) -> List[Name]:
        return list(self._names.values())

    @property
    def name_ids(self) -> List[str]:
        return list(self._names.keys())

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[Name]:
        return iter(self._names.values())

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __getitem__(self, index: int) -> Name:
        return self.names[index]

    @property
    def principals(self) -> np.ndarray:
        return np.array([n.principal for n in self._names.values()], dtype=float)

    @property
    def total_principal(self) -> float:
        """Total principal across all names."""
        return float(self.principals.sum())

    @property
    def weights(self) -> np.ndarray:
        """Principal weights (principal / total principal)."""
        total = self.total_principal
        if total <= 0:
            return np.zeros(len(self))
        return self.principals / total

    @property
    def survival_curves(self) -> List[SurvivalCurve]:
        return [n.survival_curve for n in self._names.values()]

    @property
    def recovery_curves(self) -> List[RecoveryCurve]:
        return [n.recovery_curve for n in self._names.values()]

    def survival_probabilities(self, dates: Sequence[float]) -> np.ndarray:
        """Survival probability matrix of shape (num_names, num_dates)."""
        dates = np.asarray(dates, dtype=float)
        result = np.ones((len(self), dates.size))
        for i, name in enumerate(self._names.values()):
            result[i] = name.survival_curve.survival_probability(dates)
        return result

    def recovery_rates(self, dates: Sequence[float]) -> np.ndarray:
        """Expected recovery rate matrix of shape (num_names, num_dates)."""
        dates = np.asarray(dates, dtype=float)
        result = np.zeros((len(self), dates.size))
        for i, name in enumerate(self._names.values()):
            result[i] = name.recovery_curve.recovery_rate(dates)
        return result

    def recovery_dispersions(self) -> np.ndarray:
        return np.array([n.recovery_curve.dispersion for n in self._names.values()])

    def expected_loss(self, t: float) -> float:
        """Expected basket loss at time t as a fraction of total principal."""
        total = self.total_principal
        if total <= 0:
            return 0.0
        return sum(n.expected_loss(t) for n in self._names.values()) / total

    def curve_versions(self) -> List[Tuple[int, int]]:
        """(survival, recovery) version stamps per name, in recursion order."""
        return [(n.survival_curve.version, n.recovery_curve.version)
                for n in self._names.values()]

    def composition_hash(self) -> int:
        """Hash of the names, their order, principals and curve identities.

        Curve versions are not part of the hash: a bumped curve changes the
        inputs of a basket but not its composition.
        """
        return hash(tuple(
            (n.name, n.principal, id(n.survival_curve), id(n.recovery_curve))
            for n in self._names.values()
        ))

    def is_homogeneous(self, dates: Sequence[float],
                       loadings: Optional[np.ndarray] = None,
                       tolerance: float = 1e-14) -> bool:
        """Whether every name has the same inputs on the date grid.

        Checks survival probabilities, recovery rates (which must carry no
        dispersion), principals and, if given, factor loadings.
        """
        if len(self) <= 1:
            return True
        if np.any(self.recovery_dispersions() > 0):
            return False

        def same(values: np.ndarray) -> bool:
            values = np.asarray(values, dtype=float)
            return bool(np.all(np.abs(values - values[0]) <= tolerance))

        if not same(self.principals):
            return False
        if loadings is not None and not same(loadings):
            return False
        return (same(self.survival_probabilities(dates))
                and same(self.recovery_rates(dates)))

    def with_survival_curves(self, curves: Sequence[SurvivalCurve]) -> "NameCollection":
        """New collection with each name's survival curve replaced."""
        if len(curves) != len(self):
            raise BasketConfigurationError(
                f"Expected {len(self)} survival curves, got {len(curves)}"
            )
        return NameCollection(
            [replace(n, survival_curve=c) for n, c in zip(self._names.values(), curves)],
            label=self.label,
        )

    def validate(self, errors: List[str]) -> List[str]:
        """Append domain violations of every name to ``errors``."""
        for n in self._names.values():
            n.survival_curve.validate(errors)
            n.recovery_curve.validate(errors)
            if not np.isfinite(n.principal):
                errors.append(f"{n.name}: principal must be finite")
        if len(self) > 0 and self.total_principal <= 0:
            errors.append(f"{self.label}: total principal must be positive")
        return errors

    def copy(self) -> "NameCollection":
        """Copy of the collection with independent survival curves.

        Recovery curves are shared with the original.
        """
        return NameCollection(
            [replace(n, survival_curve=n.survival_curve.copy()) for n in self._names.values()],
            label=f"{self.label}_copy",
        )

    def to_frame(self, t: float) -> pd.DataFrame:
        """Summary of the names at time t."""
        rows = []
        for n in self._names.values():
            rows.append({
                "name": n.name,
                "principal": n.principal,
                "weight": n.principal / self.total_principal if self.total_principal else 0.0,
                "survival_probability": n.survival_curve.survival_probability(t),
                "recovery_rate": n.recovery_curve.recovery_rate(t),
                "expected_loss": n.expected_loss(t),
                "sector": n.sector,
            })
        return pd.DataFrame(rows, columns=["name", "principal", "weight",
                                           "survival_probability", "recovery_rate",
                                           "expected_loss", "sector"])
