"""Tests for config.py - settings from code, YAML files and environment."""

import numpy as np
import pytest
import yaml

from credit_basket import (
    BasketConfigurationError,
    BasketPricer,
    BasketSettings,
    CopulaType,
    HeterogeneousStrategy,
    HomogeneousStrategy,
    MonteCarloStrategy,
    PaymentSchedule,
    load_settings,
)
from credit_basket.errors import CopulaConfigurationError


class TestBasketSettings:
    """Tests for the BasketSettings dataclass."""

    def test_defaults(self):
        """Test documented defaults."""
        settings = BasketSettings()
        assert settings.strategy == "heterogeneous"
        assert settings.integration_points_first == 25
        assert settings.checkpoint_interval == 20
        assert settings.auto_refit

    def test_unknown_strategy(self):
        """Test that unknown strategies raise."""
        with pytest.raises(BasketConfigurationError, match="Unknown strategy"):
            BasketSettings(strategy="analytic")

    def test_from_dict_rejects_unknown_keys(self):
        """Test that misspelled settings are reported."""
        with pytest.raises(BasketConfigurationError, match="grid_sise"):
            BasketSettings.from_dict({"grid_sise": 0.01})

    @pytest.mark.parametrize("strategy,expected", [
        ("homogeneous", HomogeneousStrategy),
        ("heterogeneous", HeterogeneousStrategy),
        ("monte_carlo", MonteCarloStrategy),
    ])
    def test_create_strategy(self, strategy, expected):
        """Test building each strategy."""
        assert isinstance(BasketSettings(strategy=strategy).create_strategy(), expected)

    def test_create_copula(self):
        """Test building the copula."""
        copula = BasketSettings(copula_type="student_t", df_common=5.0).create_copula()
        assert copula.copula_type == CopulaType.STUDENT_T
        assert copula.df_common == 5.0

    def test_invalid_copula(self):
        """Test that invalid copula settings raise on creation."""
        with pytest.raises(CopulaConfigurationError):
            BasketSettings(copula_type="double_t", df_common=1.0).create_copula()

    def test_monte_carlo_parameters(self):
        """Test that Monte Carlo settings reach the strategy."""
        strategy = BasketSettings(strategy="monte_carlo", sample_size=500, seed=3,
                                  batch_size=100, num_workers=2).create_strategy()
        assert strategy.sample_size == 500
        assert strategy.seed == 3
        assert strategy._batches() == [100] * 5

    def test_create_basket(self, five_names, flat_correlation):
        """Test building a basket from settings."""
        settings = BasketSettings(grid_size=0.02, step_size=6, auto_refit=False)
        basket = settings.create_basket(five_names, flat_correlation, maturity=1.0)
        assert isinstance(basket, BasketPricer)
        assert not basket.auto_refit
        assert list(basket.dates) == [0.0, 0.5, 1.0]
        assert basket.expected_loss(1.0) == pytest.approx(0.03, rel=1e-6)

    def test_create_basket_on_payment_dates(self, five_names, flat_correlation):
        """Test building a Monte Carlo basket on a schedule's payment dates."""
        settings = BasketSettings(strategy="monte_carlo", sample_size=2000, batch_size=500)
        schedule = PaymentSchedule.regular(1.0, frequency=3)
        basket = settings.create_basket(five_names, flat_correlation, maturity=1.0,
                                        add_grid_dates=schedule.payment_dates)
        assert np.allclose(basket.dates, [0.0, 0.25, 1 / 3, 0.5, 2 / 3, 0.75, 1.0])

    def test_round_trip_dict(self):
        """Test that to_dict feeds back into from_dict."""
        settings = BasketSettings(strategy="monte_carlo", seed=None)
        assert BasketSettings.from_dict(settings.to_dict()) == settings


class TestEnvironment:
    """Tests for BasketSettings.from_env."""

    def test_from_env(self):
        """Test reading prefixed variables."""
        settings = BasketSettings.from_env({
            "CREDIT_BASKET_STRATEGY": "monte_carlo",
            "CREDIT_BASKET_SAMPLE_SIZE": "2000",
            "CREDIT_BASKET_GRID_SIZE": "0.01",
            "CREDIT_BASKET_AUTO_REFIT": "false",
            "CREDIT_BASKET_SEED": "none",
            "UNRELATED": "1",
        })
        assert settings.strategy == "monte_carlo"
        assert settings.sample_size == 2000
        assert settings.grid_size == 0.01
        assert settings.auto_refit is False
        assert settings.seed is None

    def test_invalid_number(self):
        """Test that malformed numbers raise."""
        with pytest.raises(BasketConfigurationError, match="CREDIT_BASKET_SAMPLE_SIZE"):
            BasketSettings.from_env({"CREDIT_BASKET_SAMPLE_SIZE": "many"})

    def test_os_environ(self, monkeypatch):
        """Test reading the process environment."""
        monkeypatch.setenv("CREDIT_BASKET_STEP_UNIT", "Q")
        assert BasketSettings.from_env().step_unit == "Q"


class TestLoadSettings:
    """Tests for load_settings."""

    def test_load_top_level(self, tmp_path):
        """Test a file with settings at top level."""
        path = tmp_path / "basket.yaml"
        path.write_text(yaml.safe_dump({"strategy": "homogeneous", "grid_size": 0.005}))
        settings = load_settings(path)
        assert settings.strategy == "homogeneous"
        assert settings.grid_size == 0.005

    def test_load_nested(self, tmp_path):
        """Test a file with a basket section."""
        path = tmp_path / "config.yaml"
        path.write_text("basket:\n  copula_type: student_t\n  df_common: 4\n")
        settings = load_settings(str(path))
        assert settings.copula_type == "student_t"
        assert settings.create_copula().df_common == 4

    def test_empty_file(self, tmp_path):
        """Test that an empty file gives defaults."""
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_settings(path) == BasketSettings()

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yaml")

    def test_not_a_mapping(self, tmp_path):
        """Test that a list document is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(BasketConfigurationError, match="mapping"):
            load_settings(path)
