# tests/conftest.py
"""
Pytest configuration and shared fixtures for the referral graph tests.

Every test gets a fresh in-memory SQLite database (StaticPool keeps the one
connection alive across the store's per-call sessions).

Run:
    pytest tests -v
"""
from typing import Iterable, Optional, Set

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from config import Config
from models import Base, Partner
from referral_system.errors import GraphStoreError
from referral_system.graph.node import GraphNode
from referral_system.graph.store import GraphStore, SqlGraphStore

# =============================================================================
# CONSTANTS
# =============================================================================

ROOT_ID = "001"


# =============================================================================
# CONFIG
# =============================================================================

@pytest.fixture(autouse=True)
def reset_config():
    """Known configuration for every test, nothing leaks between tests."""
    Config.reset()
    Config.set(Config.ROOT_PARTNER_IDS, [ROOT_ID])
    yield
    Config.reset()


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
def engine():
    """In-memory database engine for one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def store(session_factory):
    """SqlGraphStore bound to the test database."""
    return SqlGraphStore(session_factory)


# =============================================================================
# GRAPH FIXTURES
# =============================================================================

@pytest.fixture
def make_node():
    """Factory for GraphNode with test-friendly defaults."""

    def _make(nodeId, sponsorId=None, team=(), referralCode=None, invitationCode=None, depth=0, **kwargs):
        return GraphNode(
            id=nodeId,
            sponsorId=sponsorId,
            team=list(team),
            referralCode=referralCode if referralCode is not None else f"REF-{nodeId}",
            invitationCode=invitationCode,
            depth=depth,
            **kwargs
        )

    return _make


@pytest.fixture
def tree_nodes(make_node):
    """
    Consistent tree:

        001 (root)
        └─ A
           ├─ B
           │  └─ D
           └─ C
    """
    return [
        make_node(ROOT_ID, team=["A"], depth=0),
        make_node("A", sponsorId=ROOT_ID, team=["B", "C"], invitationCode=f"REF-{ROOT_ID}", depth=1),
        make_node("B", sponsorId="A", team=["D"], invitationCode="REF-A", depth=2),
        make_node("C", sponsorId="A", invitationCode="REF-A", depth=2),
        make_node("D", sponsorId="B", invitationCode="REF-B", depth=3),
    ]


@pytest.fixture
def seed(session_factory):
    """Insert GraphNodes as Partner rows (duplicates allowed)."""

    def _seed(nodes: Iterable[GraphNode]):
        session = session_factory()
        try:
            for node in nodes:
                session.add(Partner(
                    partnerId=node.id,
                    sponsorId=node.sponsorId,
                    team=list(node.team),
                    referralCode=node.referralCode,
                    invitationCode=node.invitationCode,
                    depth=node.depth,
                    firstname=node.firstname,
                    surname=node.surname,
                    isAdmin=node.isAdmin,
                    registeredAt=node.registeredAt,
                ))
            session.commit()
        finally:
            session.close()

    return _seed


# =============================================================================
# FAILURE INJECTION
# =============================================================================

class FlakyStore(GraphStore):
    """Delegating store whose writes fail for selected ids."""

    def __init__(self, inner: GraphStore, failPuts: Optional[Set[str]] = None,
                 failDeletes: Optional[Set[str]] = None):
        self.inner = inner
        self.failPuts = set(failPuts or [])
        self.failDeletes = set(failDeletes or [])
        self.puts = []

    def listAll(self):
        return self.inner.listAll()

    def getOne(self, nodeId):
        return self.inner.getOne(nodeId)

    def put(self, nodeId, node):
        if nodeId in self.failPuts:
            raise GraphStoreError(f"simulated write failure for {nodeId}")
        self.puts.append(nodeId)
        self.inner.put(nodeId, node)

    def delete(self, nodeId):
        if nodeId in self.failDeletes:
            raise GraphStoreError(f"simulated delete failure for {nodeId}")
        self.inner.delete(nodeId)


@pytest.fixture
def flaky_store(store):
    """Factory: FlakyStore over the test store."""

    def _make(failPuts=None, failDeletes=None):
        return FlakyStore(store, failPuts=failPuts, failDeletes=failDeletes)

    return _make
