# referral_graph/config.py
"""
Configuration management for the referral graph engine.
Loads from .env, exposes a class-level registry with runtime overrides.
"""
import os
import json
import logging
from typing import Any, Dict, List
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
        roots = Config.get(Config.ROOT_PARTNER_IDS)

        # Override at runtime
        Config.set(Config.RECENT_ORPHAN_DAYS, 14)
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Referral graph
    ROOT_PARTNER_IDS = "ROOT_PARTNER_IDS"
    MAX_CHAIN_DEPTH = "MAX_CHAIN_DEPTH"
    RECENT_ORPHAN_DAYS = "RECENT_ORPHAN_DAYS"
    SIMILAR_IDS_LIMIT = "SIMILAR_IDS_LIMIT"

    # Commissions
    DEFAULT_SKU = "DEFAULT_SKU"
    GUEST_UPLINE_DEPTH = "GUEST_UPLINE_DEPTH"
    PARTNER_UPLINE_DEPTH = "PARTNER_UPLINE_DEPTH"
    PRODUCT_DEFAULTS = "PRODUCT_DEFAULTS"

    # ═══════════════════════════════════════════════════════════════════════
    # DEFAULTS (used when initialize_from_env() was never called)
    # ═══════════════════════════════════════════════════════════════════════

    DEFAULTS: Dict[str, Any] = {
        DATABASE_URL: "sqlite:///referral_graph.db",
        ROOT_PARTNER_IDS: ["001"],
        MAX_CHAIN_DEPTH: 100,
        RECENT_ORPHAN_DAYS: 30,
        SIMILAR_IDS_LIMIT: 5,
        DEFAULT_SKU: "H2-1",
        GUEST_UPLINE_DEPTH: 3,
        PARTNER_UPLINE_DEPTH: 5,
        PRODUCT_DEFAULTS: {},
    }

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                cls.DEFAULTS[cls.DATABASE_URL]
            )

            # Root allow-list (comma separated partner ids)
            roots_str = os.getenv("ROOT_PARTNER_IDS", "")
            if roots_str:
                cls._config[cls.ROOT_PARTNER_IDS] = [
                    x.strip() for x in roots_str.split(',') if x.strip()
                ]
            else:
                cls._config[cls.ROOT_PARTNER_IDS] = list(cls.DEFAULTS[cls.ROOT_PARTNER_IDS])

            # Integer tunables
            for key in (cls.MAX_CHAIN_DEPTH, cls.RECENT_ORPHAN_DAYS, cls.SIMILAR_IDS_LIMIT,
                        cls.GUEST_UPLINE_DEPTH, cls.PARTNER_UPLINE_DEPTH):
                cls._config[key] = int(os.getenv(key, str(cls.DEFAULTS[key])))

            cls._config[cls.DEFAULT_SKU] = os.getenv("DEFAULT_SKU", cls.DEFAULTS[cls.DEFAULT_SKU])

            # Product defaults override (JSON format)
            defaults_str = os.getenv("PRODUCT_DEFAULTS", "")
            if defaults_str:
                try:
                    cls._config[cls.PRODUCT_DEFAULTS] = json.loads(defaults_str)
                except json.JSONDecodeError as e:
                    logger.error(f"Failed to parse PRODUCT_DEFAULTS JSON: {e}")
                    cls._config[cls.PRODUCT_DEFAULTS] = {}
            else:
                cls._config[cls.PRODUCT_DEFAULTS] = {}

            cls._initialized = True
            logger.info("Configuration loaded from environment successfully")

        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Falls back to the built-in default for known keys, then to `default`.
        """
        if key in cls._config:
            return cls._config[key]
        if default is not None:
            return default
        return cls.DEFAULTS.get(key)

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
        """Drop all loaded and runtime values."""
        cls._config = {}
        cls._initialized = False

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """Get all configuration values (defaults merged with loaded ones)."""
        merged = dict(cls.DEFAULTS)
        merged.update(cls._config)
        return merged

    @classmethod
    def root_ids(cls) -> List[str]:
        """Root/administrative partner ids exempt from orphan detection."""
        return list(cls.get(cls.ROOT_PARTNER_IDS) or [])

    @classmethod
    def is_root(cls, partner_id: str) -> bool:
        """
        Check if partner id is on the root allow-list.

        Args:
            partner_id: Partner id

        Returns:
            True if partner is a root
        """
        return partner_id in cls.root_ids()
