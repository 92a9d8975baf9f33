"""
Commission levels, default prices and default per-SKU commission tables.
Config.PRODUCT_DEFAULTS can override or extend the built-in SKU table.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


# L0 = direct seller/referrer (guest sales only), L1..L5 = ancestors 1..5
LEVELS = ("L0", "L1", "L2", "L3", "L4", "L5")
GUEST_LEVELS = ("L0", "L1", "L2", "L3")
PARTNER_LEVELS = ("L1", "L2", "L3", "L4", "L5")

FALLBACK_SKU = "H2-1"

BUILTIN_PRODUCT_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "H2-1": {
        "retail": "6500",
        "partner": "4900",
        "commission": {
            "guest": {"L0": "1600"},
            "partner": {"L1": "900", "L2": "500", "L3": "200"},
        },
    },
    "H2-3": {
        "retail": "18000",
        "partner": "13500",
        "commission": {
            "guest": {"L0": "4500"},
            "partner": {"L1": "1800", "L2": "1200", "L3": "600"},
        },
    },
}


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a stored amount to Decimal; None for missing or unparseable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite():
        return None
    return amount


def default_sku() -> str:
    from config import Config
    return Config.get(Config.DEFAULT_SKU) or FALLBACK_SKU


def get_product_defaults() -> Dict[str, Dict[str, Any]]:
    """
    Built-in SKU defaults merged with Config.PRODUCT_DEFAULTS.

    Returns:
        Mapping sku -> {"retail", "partner", "commission"}
    """
    from config import Config

    defaults = {sku: dict(data) for sku, data in BUILTIN_PRODUCT_DEFAULTS.items()}

    overrides = Config.get(Config.PRODUCT_DEFAULTS) or {}
    if not isinstance(overrides, dict):
        logger.error(f"PRODUCT_DEFAULTS must be a mapping, got {type(overrides).__name__}")
        return defaults

    for sku, data in overrides.items():
        if not isinstance(data, dict):
            logger.warning(f"Ignoring PRODUCT_DEFAULTS entry for '{sku}': not a mapping")
            continue
        merged = dict(defaults.get(sku, {}))
        merged.update(data)
        defaults[sku] = merged

    return defaults


def get_sku_defaults(sku: Optional[str]) -> Dict[str, Any]:
    """
    Defaults for a SKU, falling back to the default SKU, then to the built-in
    fallback SKU. Never raises.
    """
    defaults = get_product_defaults()
    if sku and sku in defaults:
        return defaults[sku]

    fallback = default_sku()
    if sku:
        logger.debug(f"Unknown SKU '{sku}', using defaults of '{fallback}'")
    return defaults.get(fallback) or defaults.get(FALLBACK_SKU) or {}
