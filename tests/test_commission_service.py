# tests/test_commission_service.py
"""
Tests for commission resolution and order calculation.

Default H2-1 table: retail 6500, partner 4900,
guest L0 1600, partner L1 900 / L2 500 / L3 200.

Run:
    pytest tests/test_commission_service.py -v
"""
from decimal import Decimal

import pytest

from config import Config
from models import Product
from referral_system.services.commission_service import (
    CommissionService,
    Payout,
    calcOrder,
    incomePotential,
    resolveCommissions,
    resolvePrice,
)


def as_tuples(calc):
    return [(p.recipientId, p.level, p.amount) for p in calc.payouts]


# =============================================================================
# TEST CLASS: resolveCommissions
# =============================================================================

class TestResolveCommissions:
    """Product override first, then SKU defaults, then the default SKU."""

    def test_sku_defaults(self):
        table = resolveCommissions(sku="H2-3")

        assert table.guest == {"L0": Decimal("4500")}
        assert table.partner == {
            "L1": Decimal("1800"),
            "L2": Decimal("1200"),
            "L3": Decimal("600"),
        }

    def test_unknown_sku_falls_back_to_default_sku(self):
        assert resolveCommissions(sku="NOPE") == resolveCommissions(sku="H2-1")

    def test_product_override_wins(self):
        product = Product(sku="H2-1", commission={"guest": {"L0": 1000}, "partner": {"L1": "700"}})

        table = resolveCommissions(product)

        assert table.guest == {"L0": Decimal("1000")}
        assert table.partner == {"L1": Decimal("700")}

    def test_empty_override_uses_product_sku(self):
        product = Product(sku="H2-3", commission={})

        assert resolveCommissions(product).guest == {"L0": Decimal("4500")}

    def test_malformed_data_never_raises(self):
        table = resolveCommissions({"commission": "garbage", "sku": 42})

        # falls back to the default SKU table
        assert table.guest["L0"] == Decimal("1600")

    def test_unparseable_amounts_dropped(self):
        table = resolveCommissions({"commission": {"guest": {"L0": "abc"}, "partner": {"L1": "50"}}})

        assert table.guest == {}
        assert table.partner == {"L1": Decimal("50")}

    def test_configured_product_defaults(self):
        Config.set(Config.PRODUCT_DEFAULTS, {
            "H2-9": {
                "retail": "9000",
                "partner": "7000",
                "commission": {"guest": {"L0": "2000"}, "partner": {"L1": "1000"}},
            }
        })

        assert resolveCommissions(sku="H2-9").guest == {"L0": Decimal("2000")}
        assert resolvePrice(False, "H2-9") == Decimal("9000")


# =============================================================================
# TEST CLASS: calcOrder
# =============================================================================

class TestCalcOrder:
    """Price selection and level payouts."""

    def test_guest_purchase_full_chain(self):
        calc = calcOrder(False, "H2-1", referrerId="A", upline=["B", "C", "D"])

        assert calc.price == Decimal("6500")
        assert as_tuples(calc) == [
            ("A", "L0", Decimal("1600")),
            ("B", "L1", Decimal("900")),
            ("C", "L2", Decimal("500")),
            ("D", "L3", Decimal("200")),
        ]

    def test_missing_upline_omits_levels(self):
        calc = calcOrder(False, "H2-1", referrerId="A", upline=["B"])

        assert as_tuples(calc) == [
            ("A", "L0", Decimal("1600")),
            ("B", "L1", Decimal("900")),
        ]

    def test_guest_without_referrer_skips_l0(self):
        calc = calcOrder(False, "H2-1", upline=["B", "C"])

        assert [p.level for p in calc.payouts] == ["L1", "L2"]

    def test_empty_upline_slot_skipped(self):
        calc = calcOrder(False, "H2-1", referrerId="A", upline=["B", None, "D"])

        assert [p.level for p in calc.payouts] == ["L0", "L1", "L3"]

    def test_partner_purchase_excludes_l0(self):
        calc = calcOrder(True, "H2-1", referrerId="A", upline=["B", "C", "D"])

        assert calc.price == Decimal("4900")
        assert as_tuples(calc) == [
            ("B", "L1", Decimal("900")),
            ("C", "L2", Decimal("500")),
            ("D", "L3", Decimal("200")),
        ]

    def test_partner_purchase_pays_five_levels_when_defined(self):
        product = {
            "sku": "H2-1",
            "commission": {
                "guest": {"L0": "1600"},
                "partner": {"L1": "900", "L2": "500", "L3": "200", "L4": "100", "L5": "50"},
            },
        }

        calc = calcOrder(True, "H2-1", product=product, upline=["B", "C", "D", "E", "F", "G"])

        assert [p.level for p in calc.payouts] == ["L1", "L2", "L3", "L4", "L5"]
        assert calc.payouts[-1] == Payout("F", "L5", Decimal("50"))

    def test_zero_amount_level_omitted(self):
        product = {"commission": {"guest": {"L0": "0"}, "partner": {"L1": "900"}}}

        calc = calcOrder(False, "H2-1", product=product, referrerId="A", upline=["B"])

        assert as_tuples(calc) == [("B", "L1", Decimal("900"))]

    def test_product_price_override(self):
        product = Product(sku="H2-1", retailPrice=Decimal("7000"), partnerPrice=Decimal("5200"))

        assert calcOrder(False, "H2-1", product=product).price == Decimal("7000")
        assert calcOrder(True, "H2-1", product=product).price == Decimal("5200")

    def test_deterministic(self):
        first = calcOrder(False, "H2-3", referrerId="A", upline=["B", "C", "D"])
        second = calcOrder(False, "H2-3", referrerId="A", upline=["B", "C", "D"])

        assert first == second
        assert repr(first) == repr(second)

    def test_total_payout(self):
        calc = calcOrder(False, "H2-1", referrerId="A", upline=["B", "C", "D"])

        assert calc.totalPayout == Decimal("3200")


# =============================================================================
# TEST CLASS: incomePotential
# =============================================================================

class TestIncomePotential:

    def test_h2_1(self):
        potential = incomePotential("H2-1")

        assert potential["L0"] == Decimal("1600")
        assert potential["L4"] == Decimal("0")
        assert potential["total"] == Decimal("3200")

    def test_product_override(self):
        potential = incomePotential({"commission": {"guest": {"L0": "10"}, "partner": {"L1": "5"}}})

        assert potential["total"] == Decimal("15")


# =============================================================================
# TEST CLASS: CommissionService
# =============================================================================

class TestCommissionService:
    """Orders against a stored graph."""

    def test_guest_sale_walks_referrer_upline(self, store, seed, tree_nodes):
        seed(tree_nodes)

        calc = CommissionService(store).processOrder("guest-1", False, "H2-1", referrerId="D")

        assert calc.buyerId == "guest-1"
        assert as_tuples(calc) == [
            ("D", "L0", Decimal("1600")),
            ("B", "L1", Decimal("900")),
            ("A", "L2", Decimal("500")),
            ("001", "L3", Decimal("200")),
        ]

    def test_partner_purchase_walks_buyer_upline(self, store, seed, tree_nodes):
        seed(tree_nodes)

        calc = CommissionService(store).processOrder("D", True, "H2-1")

        assert calc.price == Decimal("4900")
        assert as_tuples(calc) == [
            ("B", "L1", Decimal("900")),
            ("A", "L2", Decimal("500")),
            ("001", "L3", Decimal("200")),
        ]

    def test_guest_depth_is_configurable(self, store, tree_nodes):
        Config.set(Config.GUEST_UPLINE_DEPTH, 1)

        calc = CommissionService(store).processOrder(
            "guest-1", False, "H2-1", referrerId="D", allNodes=tree_nodes
        )

        assert [p.level for p in calc.payouts] == ["L0", "L1"]

    def test_unknown_buyer_gets_no_chain(self, store, tree_nodes):
        calc = CommissionService(store).processOrder("ghost", True, "H2-1", allNodes=tree_nodes)

        assert calc.payouts == []
        assert calc.price == Decimal("4900")
