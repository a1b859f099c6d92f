# levelpack/config.py
"""
Configuration management for the LevelPack compensation engine.
Loads from .env, validates the package split.
"""
import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        fee = Config.get(Config.PACKAGE_FEE)

        # Override at runtime (tests, admin tooling)
        Config.set(Config.LEVEL_STATS_CACHE_TTL, 0)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Designated members
    CREATOR_USERNAME = "CREATOR_USERNAME"
    ROOT_USERNAME = "ROOT_USERNAME"

    # Package split
    PACKAGE_FEE = "PACKAGE_FEE"
    DIRECT_BONUS = "DIRECT_BONUS"
    LEVEL_INCOME = "LEVEL_INCOME"
    CREATOR_FEE = "CREATOR_FEE"
    DEVELOPMENT_FEE = "DEVELOPMENT_FEE"

    # Level rules
    MAX_LEVELS = "MAX_LEVELS"
    TEAM_FULLY_BUILT_THRESHOLD = "TEAM_FULLY_BUILT_THRESHOLD"

    # Engine tuning
    LEVEL_STATS_CACHE_TTL = "LEVEL_STATS_CACHE_TTL"
    POSTING_RETRY_ATTEMPTS = "POSTING_RETRY_ATTEMPTS"

    # Scheduler
    RECONCILE_INTERVAL_MINUTES = "RECONCILE_INTERVAL_MINUTES"
    EARNINGS_AUDIT_HOUR = "EARNINGS_AUDIT_HOUR"

    # ═══════════════════════════════════════════════════════════════════════
    # DEFAULTS (USDT, $20 package)
    # ═══════════════════════════════════════════════════════════════════════

    DEFAULTS: Dict[str, Any] = {
        DATABASE_URL: "sqlite:///levelpack.db",
        CREATOR_USERNAME: "creator",
        ROOT_USERNAME: "creator",
        PACKAGE_FEE: Decimal("20"),
        DIRECT_BONUS: Decimal("2"),
        LEVEL_INCOME: Decimal("1"),
        CREATOR_FEE: Decimal("2"),
        DEVELOPMENT_FEE: Decimal("1"),
        MAX_LEVELS: 15,
        TEAM_FULLY_BUILT_THRESHOLD: 100,
        LEVEL_STATS_CACHE_TTL: 300,
        POSTING_RETRY_ATTEMPTS: 3,
        RECONCILE_INTERVAL_MINUTES: 30,
        EARNINGS_AUDIT_HOUR: 0,
    }

    MONEY_KEYS = [PACKAGE_FEE, DIRECT_BONUS, LEVEL_INCOME, CREATOR_FEE, DEVELOPMENT_FEE]

    INT_KEYS = [
        MAX_LEVELS,
        TEAM_FULLY_BUILT_THRESHOLD,
        LEVEL_STATS_CACHE_TTL,
        POSTING_RETRY_ATTEMPTS,
        RECONCILE_INTERVAL_MINUTES,
        EARNINGS_AUDIT_HOUR,
    ]

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = dict(DEFAULTS)
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed or the package
                split does not add up to the package fee
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                cls.DEFAULTS[cls.DATABASE_URL]
            )
            cls._config[cls.CREATOR_USERNAME] = os.getenv(
                "CREATOR_USERNAME",
                cls.DEFAULTS[cls.CREATOR_USERNAME]
            )
            cls._config[cls.ROOT_USERNAME] = os.getenv(
                "ROOT_USERNAME",
                cls._config[cls.CREATOR_USERNAME]
            )

            for key in cls.MONEY_KEYS:
                raw = os.getenv(key)
                cls._config[key] = Decimal(raw) if raw else cls.DEFAULTS[key]

            for key in cls.INT_KEYS:
                raw = os.getenv(key)
                cls._config[key] = int(raw) if raw else cls.DEFAULTS[key]

        except (InvalidOperation, ValueError) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

        cls.validate_package_split()

        cls._initialized = True
        logger.info("Configuration loaded from environment successfully")

    @classmethod
    def validate_package_split(cls) -> None:
        """
        Check F = D + MAX_LEVELS × L₁ + C + V exactly.

        Raises:
            ConfigurationError: If the split does not add up or a part is negative
        """
        fee = cls.get(cls.PACKAGE_FEE)
        parts = {
            key: cls.get(key)
            for key in (cls.DIRECT_BONUS, cls.LEVEL_INCOME, cls.CREATOR_FEE, cls.DEVELOPMENT_FEE)
        }

        negative = [key for key, value in parts.items() if value < 0]
        if negative:
            raise ConfigurationError(f"Negative split amounts: {', '.join(negative)}")

        max_levels = cls.get(cls.MAX_LEVELS)
        if max_levels < 1:
            raise ConfigurationError(f"MAX_LEVELS must be positive, got {max_levels}")

        total = (
                parts[cls.DIRECT_BONUS]
                + parts[cls.LEVEL_INCOME] * max_levels
                + parts[cls.CREATOR_FEE]
                + parts[cls.DEVELOPMENT_FEE]
        )

        if total != fee:
            error_msg = (
                f"Package split {total} does not equal package fee {fee} "
                f"(D={parts[cls.DIRECT_BONUS]}, L1={parts[cls.LEVEL_INCOME]} x {max_levels}, "
                f"C={parts[cls.CREATOR_FEE]}, V={parts[cls.DEVELOPMENT_FEE]})"
            )
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.debug(f"Package split validated: {fee} ✓")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def reset(cls) -> None:
        """Restore defaults. Used by tests."""
        cls._config = dict(cls.DEFAULTS)
        cls._initialized = False

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()
