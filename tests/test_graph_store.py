# tests/test_graph_store.py
"""
Tests for the SQL graph store adapter.

Run:
    pytest tests/test_graph_store.py -v
"""
from datetime import datetime
from decimal import Decimal

import pytest

from core.db import bind_engine, reset_engine
from models import Partner
from referral_system.errors import GraphStoreError, RecordNotFoundError
from referral_system.graph.store import SqlGraphStore


class TestSqlGraphStore:

    def test_list_all_includes_duplicates(self, store, seed, tree_nodes, make_node):
        seed(tree_nodes + [make_node("C", sponsorId="A", referralCode="dup")])

        nodes = store.listAll()

        assert [n.id for n in nodes] == ["001", "A", "B", "C", "D", "C"]
        assert nodes[3].recordKey != nodes[5].recordKey

    def test_get_one_returns_oldest_record(self, store, seed, tree_nodes, make_node):
        seed(tree_nodes + [make_node("C", sponsorId="A", referralCode="dup")])

        assert store.getOne("C").referralCode == "REF-C"

    def test_get_one_missing(self, store):
        assert store.getOne("ghost") is None
        assert store.getOne("") is None

    def test_put_creates(self, store, make_node):
        registered = datetime(2026, 1, 2, 3, 4, 5)
        store.put("N", make_node("N", sponsorId="001", team=["K"], firstname="Ann", registeredAt=registered))

        node = store.getOne("N")
        assert node.sponsorId == "001"
        assert node.team == ["K"]
        assert node.displayName == "Ann"
        assert node.registeredAt == registered

    def test_put_updates_team_in_place(self, store, seed, tree_nodes):
        seed(tree_nodes)
        node = store.getOne("A")

        node.team.append("E")
        store.put("A", node)

        assert store.getOne("A").team == ["B", "C", "E"]
        assert len(store.listAll()) == 5

    def test_put_without_id(self, store, make_node):
        with pytest.raises(GraphStoreError):
            store.put("", make_node("x"))

    def test_delete(self, store, seed, tree_nodes):
        seed(tree_nodes)

        store.delete("D")

        assert store.getOne("D") is None
        assert len(store.listAll()) == 4

    def test_delete_missing(self, store):
        with pytest.raises(RecordNotFoundError) as exc:
            store.delete("ghost")

        assert exc.value.nodeId == "ghost"

    def test_null_team_entries_dropped(self, store, session_factory):
        session = session_factory()
        session.add(Partner(partnerId="N", team=[None, "K"]))
        session.commit()
        session.close()

        assert store.getOne("N").team == ["K"]

    def test_default_session_factory_uses_bound_engine(self, engine, make_node):
        bind_engine(engine)
        try:
            default_store = SqlGraphStore()
            default_store.put("N", make_node("N"))

            assert default_store.getOne("N").referralCode == "REF-N"
        finally:
            reset_engine()

    def test_update_never_writes_balances(self, store, seed, tree_nodes, session_factory):
        seed(tree_nodes)
        session = session_factory()
        session.query(Partner).filter(Partner.partnerId == "B").update({"balanceActive": Decimal("50.00")})
        session.commit()
        session.close()

        stale = store.getOne("B").copy(balanceActive=Decimal("0"), team=["D", "E"])
        store.put("B", stale)

        node = store.getOne("B")
        assert node.team == ["D", "E"]
        assert node.balanceActive == Decimal("50.00")

    def test_create_copies_record_data(self, store, make_node):
        created = datetime(2025, 5, 6, 7, 8, 9)
        store.put("N", make_node("N", balanceActive=Decimal("10.00"), balancePassive=Decimal("2.50"),
                                 createdAt=created))

        node = store.getOne("N")
        assert node.balanceActive == Decimal("10.00")
        assert node.balancePassive == Decimal("2.50")
        assert node.createdAt == created
