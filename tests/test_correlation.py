"""Tests for correlation.py - factor and general correlation models."""

import pytest
import numpy as np

from credit_basket import (
    BasketConfigurationError,
    FactorCorrelation,
    GeneralCorrelation,
    SingleFactorCorrelation,
)


class TestSingleFactorCorrelation:
    """Tests for the single factor model."""

    def test_from_correlation(self):
        """Test that the loading is the square root of the correlation."""
        model = SingleFactorCorrelation.from_correlation(["A", "B"], 0.25)
        assert model.factor == pytest.approx(0.5)
        assert model.correlation == pytest.approx(0.25)

    def test_loadings_for_names(self, five_names):
        """Test one loading per name."""
        model = SingleFactorCorrelation(five_names, 0.6)
        assert np.allclose(model.factor_loadings(five_names), 0.6)

    def test_correlation_matrix(self):
        """Test the implied pairwise correlations."""
        model = SingleFactorCorrelation(None, 0.5)
        corr = model.correlation_matrix(["A", "B", "C"])
        assert np.allclose(np.diag(corr), 1.0)
        assert corr[0, 1] == pytest.approx(0.25)

    def test_invalid_factor(self):
        """Test that loadings outside [-1, 1] raise."""
        with pytest.raises(BasketConfigurationError, match="between -1 and 1"):
            SingleFactorCorrelation(None, 1.5)

    def test_set_factor_renews_version(self):
        """Test that mutations renew the version stamp."""
        model = SingleFactorCorrelation(None, 0.5)
        version = model.version
        model.set_factor(0.6)
        assert model.version > version
        assert model.factor == pytest.approx(0.6)

    def test_bump(self):
        """Test absolute and relative bumps."""
        model = SingleFactorCorrelation(None, 0.5)
        model.bump(0.1)
        assert model.factor == pytest.approx(0.6)
        model.bump(0.5, relative=True)
        assert model.factor == pytest.approx(0.9)


class TestFactorCorrelation:
    """Tests for the per-name factor model."""

    def test_loadings_follow_name_order(self, mixed_names, mixed_correlation):
        """Test that loadings are returned in the requested order."""
        loadings = mixed_correlation.factor_loadings(["Util_F", "Auto_A"])
        assert np.allclose(loadings, [0.3, 0.5])
        assert mixed_correlation.factor_loadings(mixed_names).size == 6

    def test_missing_name(self, mixed_correlation):
        """Test that unknown names raise."""
        with pytest.raises(BasketConfigurationError, match="No factor loading"):
            mixed_correlation.factor_loadings(["Nobody"])

    def test_length_mismatch(self):
        """Test that names and factors must match."""
        with pytest.raises(BasketConfigurationError, match="Expected 2 factors"):
            FactorCorrelation(["A", "B"], [0.5])

    def test_set_single_factor(self, mixed_correlation):
        """Test replacing one loading."""
        version = mixed_correlation.version
        mixed_correlation.set_factor("Bank_B", 0.7)
        assert mixed_correlation.factor_loadings(["Bank_B"])[0] == pytest.approx(0.7)
        assert mixed_correlation.version > version

    def test_set_factor_unknown_name(self, mixed_correlation):
        """Test that unknown names raise KeyError."""
        with pytest.raises(KeyError):
            mixed_correlation.set_factor("Nobody", 0.5)

    def test_cholesky(self, mixed_names, mixed_correlation):
        """Test that the Cholesky factor reproduces the matrix."""
        chol = mixed_correlation.cholesky(mixed_names)
        corr = mixed_correlation.correlation_matrix(mixed_names)
        assert np.allclose(chol @ chol.T, corr, atol=1e-8)


class TestGeneralCorrelation:
    """Tests for the general correlation matrix."""

    def test_valid_matrix(self):
        """Test a valid matrix."""
        matrix = np.array([[1.0, 0.3], [0.3, 1.0]])
        model = GeneralCorrelation(["A", "B"], matrix)
        assert not model.is_factor_model
        assert np.allclose(model.correlation_matrix(["B", "A"]), matrix[::-1, ::-1])

    def test_not_symmetric(self):
        """Test that asymmetric matrices raise."""
        with pytest.raises(BasketConfigurationError, match="symmetric"):
            GeneralCorrelation(["A", "B"], np.array([[1.0, 0.3], [0.2, 1.0]]))

    def test_bad_diagonal(self):
        """Test that the diagonal must be one."""
        with pytest.raises(BasketConfigurationError, match="Diagonal"):
            GeneralCorrelation(["A", "B"], np.array([[0.9, 0.3], [0.3, 1.0]]))

    def test_wrong_shape(self):
        """Test that the shape must match the names."""
        with pytest.raises(BasketConfigurationError, match="must be 3x3"):
            GeneralCorrelation(["A", "B", "C"], np.eye(2))

    def test_no_factor_loadings(self):
        """Test that a general matrix has no loadings."""
        model = GeneralCorrelation(["A", "B"], np.eye(2))
        with pytest.raises(BasketConfigurationError, match="Monte Carlo"):
            model.factor_loadings(["A", "B"])

    def test_from_factor_model(self):
        """Test building asset correlations from factor loadings."""
        loadings = np.array([[0.3, 0.4], [0.4, 0.0], [0.0, 0.5]])
        sigma = np.array([[1.0, 0.5], [0.5, 1.0]])
        model = GeneralCorrelation.from_factor_model(["A", "B", "C"], loadings, sigma)
        corr = model.matrix
        assert corr[0, 1] == pytest.approx(loadings[0] @ sigma @ loadings[1])
        assert np.allclose(np.diag(corr), 1.0)

    def test_bump_keeps_diagonal(self):
        """Test that bumps shift only off-diagonal entries."""
        model = GeneralCorrelation(["A", "B"], np.array([[1.0, 0.3], [0.3, 1.0]]))
        model.bump(0.1)
        assert np.allclose(model.matrix, [[1.0, 0.4], [0.4, 1.0]])
