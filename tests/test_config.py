# tests/test_config.py
"""
Tests for Config - defaults, env loading, package split validation.
"""
from decimal import Decimal

import pytest

from config import Config, ConfigurationError
from mlm_system.config.compensation import get_compensation_plan


class TestDefaults:

    def test_default_split_balanced(self):
        Config.validate_package_split()
        plan = get_compensation_plan()

        assert plan.packageFee == Decimal("20")
        assert plan.splitTotal == Decimal("20")
        assert plan.isBalanced()

    def test_expected_members(self):
        plan = get_compensation_plan()
        assert plan.expectedMembersAtLevel(1) == 2
        assert plan.expectedMembersAtLevel(15) == 32768


class TestValidation:

    def test_unbalanced_split(self):
        Config.set(Config.CREATOR_FEE, Decimal("3"))

        with pytest.raises(ConfigurationError):
            Config.validate_package_split()

    def test_negative_part(self):
        Config.set(Config.DEVELOPMENT_FEE, Decimal("-1"))
        Config.set(Config.CREATOR_FEE, Decimal("4"))

        with pytest.raises(ConfigurationError):
            Config.validate_package_split()

    def test_plan_refuses_unbalanced_split(self):
        Config.set(Config.LEVEL_INCOME, Decimal("2"))

        with pytest.raises(ConfigurationError):
            get_compensation_plan()

    def test_rebalanced_split_accepted(self):
        Config.set(Config.PACKAGE_FEE, Decimal("35"))
        Config.set(Config.LEVEL_INCOME, Decimal("2"))

        assert get_compensation_plan().isBalanced()


class TestEnvironment:

    def test_values_from_env(self, monkeypatch):
        monkeypatch.setenv("PACKAGE_FEE", "35")
        monkeypatch.setenv("LEVEL_INCOME", "2")
        monkeypatch.setenv("RECONCILE_INTERVAL_MINUTES", "5")
        monkeypatch.setenv("CREATOR_USERNAME", "founder")
        monkeypatch.delenv("ROOT_USERNAME", raising=False)

        Config.initialize_from_env()

        assert Config.get(Config.PACKAGE_FEE) == Decimal("35")
        assert Config.get(Config.RECONCILE_INTERVAL_MINUTES) == 5
        assert Config.get(Config.ROOT_USERNAME) == "founder"

    def test_unparseable_value(self, monkeypatch):
        monkeypatch.setenv("MAX_LEVELS", "fifteen")

        with pytest.raises(ConfigurationError):
            Config.initialize_from_env()

    def test_unbalanced_env(self, monkeypatch):
        monkeypatch.setenv("PACKAGE_FEE", "25")

        with pytest.raises(ConfigurationError):
            Config.initialize_from_env()
