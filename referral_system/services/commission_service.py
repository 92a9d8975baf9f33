# referral_system/services/commission_service.py
"""
Commission calculation service - turns one order into a price and an ordered
list of level payouts walking the sponsor chain.

Everything except CommissionService.processOrder is a pure function: no
clock, no randomness, no storage. Identical inputs give identical outputs,
which is what audit replay relies on.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import logging

from config import Config
from referral_system.config.commissions import (
    GUEST_LEVELS,
    PARTNER_LEVELS,
    get_sku_defaults,
    to_decimal,
)
from referral_system.graph.store import GraphStore
from referral_system.utils.chain_walker import findUpline

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass
class CommissionTable:
    """Per-level amounts for guest sales and partner purchases."""
    guest: Dict[str, Decimal] = field(default_factory=dict)
    partner: Dict[str, Decimal] = field(default_factory=dict)

    def isEmpty(self) -> bool:
        return not self.guest and not self.partner

    def amountFor(self, level: str, buyerIsPartner: bool) -> Decimal:
        """
        Amount paid at a level, ZERO when the level is not defined.

        Guest sales pay L1..L3 from the guest table when it defines the level,
        otherwise from the partner table.
        """
        if buyerIsPartner:
            if level not in PARTNER_LEVELS:
                return ZERO
            return self.partner.get(level, ZERO)

        if level not in GUEST_LEVELS:
            return ZERO
        if level in self.guest:
            return self.guest[level]
        if level == "L0":
            return ZERO
        return self.partner.get(level, ZERO)


@dataclass(frozen=True)
class Payout:
    recipientId: str
    level: str
    amount: Decimal


@dataclass
class OrderCalculation:
    price: Decimal
    payouts: List[Payout] = field(default_factory=list)
    buyerId: Optional[str] = None
    sku: Optional[str] = None
    buyerIsPartner: bool = False

    @property
    def totalPayout(self) -> Decimal:
        return sum((p.amount for p in self.payouts), ZERO)


def _attr(obj: Any, *names: str) -> Any:
    """First non-empty attribute (or mapping key) of obj among names."""
    if obj is None:
        return None
    for name in names:
        if isinstance(obj, Mapping):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None and value != "":
            return value
    return None


def _levels(raw: Any, allowed: Sequence[str]) -> Dict[str, Decimal]:
    if not isinstance(raw, Mapping):
        return {}
    levels = {}
    for level in allowed:
        amount = to_decimal(raw.get(level))
        if amount is not None:
            levels[level] = amount
    return levels


def _table_from_mapping(raw: Any) -> CommissionTable:
    if not isinstance(raw, Mapping):
        return CommissionTable()
    return CommissionTable(
        guest=_levels(raw.get("guest"), GUEST_LEVELS),
        partner=_levels(raw.get("partner"), PARTNER_LEVELS),
    )


def resolveCommissions(product: Any = None, sku: Optional[str] = None) -> CommissionTable:
    """
    Commission table applicable to a product.

    Product-level override wins when present and non-empty; otherwise the
    default table of the product's SKU (or `sku`), falling back to the
    default SKU's table. Never raises: bad data yields an empty table.
    """
    try:
        override = _table_from_mapping(_attr(product, "commission"))
        if not override.isEmpty():
            return override

        effective_sku = _attr(product, "sku") or sku
        defaults = get_sku_defaults(effective_sku)
        return _table_from_mapping(defaults.get("commission"))

    except Exception as e:
        logger.error(f"Failed to resolve commissions (sku={sku}): {e}", exc_info=True)
        return CommissionTable()


def resolvePrice(buyerIsPartner: bool, sku: Optional[str], product: Any = None) -> Decimal:
    """
    Order price: product override (partner or retail) first, then SKU default.
    """
    if buyerIsPartner:
        override = to_decimal(_attr(product, "partnerPrice", "partner_price"))
        key = "partner"
    else:
        override = to_decimal(_attr(product, "retailPrice", "retail_price"))
        key = "retail"

    if override is not None and override > 0:
        return override

    defaults = get_sku_defaults(_attr(product, "sku") or sku)
    return to_decimal(defaults.get(key)) or ZERO


def calcOrder(
        buyerIsPartner: bool,
        sku: Optional[str],
        product: Any = None,
        referrerId: Optional[str] = None,
        upline: Sequence[Optional[str]] = ()
) -> OrderCalculation:
    """
    Calculate price and payouts for one order.

    Guest sale: L0 to referrerId, L1/L2/L3 to upline[0..2].
    Partner purchase: L1..L5 to upline[0..4], never L0.
    A level is omitted (not zero-filled) when its recipient slot is empty or
    its table amount is missing/zero.

    Args:
        buyerIsPartner: Buyer is a partner (partner price, partner table)
        sku: Product SKU ('H2-1', 'H2-3', ...)
        product: Optional product with price/commission overrides
        referrerId: Seller who referred the guest (guest sales only)
        upline: Ancestor ids, nearest first

    Returns:
        OrderCalculation with payouts in level order
    """
    table = resolveCommissions(product, sku)
    price = resolvePrice(buyerIsPartner, sku, product)
    slots = list(upline or [])
    payouts: List[Payout] = []

    def add(recipient: Optional[str], level: str) -> None:
        amount = table.amountFor(level, buyerIsPartner)
        if recipient and amount > 0:
            payouts.append(Payout(recipientId=recipient, level=level, amount=amount))

    if not buyerIsPartner:
        add(referrerId, "L0")
        for i, level in enumerate(GUEST_LEVELS[1:]):
            add(slots[i] if i < len(slots) else None, level)
    else:
        for i, level in enumerate(PARTNER_LEVELS):
            add(slots[i] if i < len(slots) else None, level)

    logger.debug(
        f"calcOrder sku={sku} partner={buyerIsPartner}: price={price}, "
        f"payouts={[(p.recipientId, p.level, str(p.amount)) for p in payouts]}"
    )

    return OrderCalculation(
        price=price,
        payouts=payouts,
        sku=_attr(product, "sku") or sku,
        buyerIsPartner=buyerIsPartner,
    )


def incomePotential(skuOrProduct: Union[str, Any]) -> Dict[str, Decimal]:
    """
    Income a full chain earns from one sale of a product: L0 from the guest
    table, L1..L5 from the partner table, plus the total.
    """
    if isinstance(skuOrProduct, str):
        table = resolveCommissions(None, skuOrProduct)
    else:
        table = resolveCommissions(skuOrProduct)

    potential = {"L0": table.guest.get("L0", ZERO)}
    for level in PARTNER_LEVELS:
        potential[level] = table.partner.get(level, ZERO)
    potential["total"] = sum(potential.values(), ZERO)
    return potential


class CommissionService:
    """Processes orders against a live graph snapshot."""

    def __init__(self, store: GraphStore):
        self.store = store

    def processOrder(
            self,
            buyerId: str,
            buyerIsPartner: bool,
            sku: Optional[str],
            product: Any = None,
            referrerId: Optional[str] = None,
            allNodes=None
    ) -> OrderCalculation:
        """
        Compute the payouts of one order.

        Partner purchase: upline of the buyer (PARTNER_UPLINE_DEPTH levels).
        Guest sale: upline of the referrer (GUEST_UPLINE_DEPTH levels).
        Balances are not touched; settlement is the caller's job.
        """
        snapshot = allNodes if allNodes is not None else self.store.listAll()

        if buyerIsPartner:
            upline = findUpline(buyerId, snapshot, Config.get(Config.PARTNER_UPLINE_DEPTH))
        elif referrerId:
            upline = findUpline(referrerId, snapshot, Config.get(Config.GUEST_UPLINE_DEPTH))
        else:
            upline = []

        result = calcOrder(
            buyerIsPartner,
            sku,
            product=product,
            referrerId=None if buyerIsPartner else referrerId,
            upline=upline,
        )
        result.buyerId = buyerId

        logger.info(
            f"Processed order for {buyerId} (sku={result.sku}, partner={buyerIsPartner}): "
            f"price {result.price}, {len(result.payouts)} payouts, "
            f"total {result.totalPayout}"
        )
        return result
